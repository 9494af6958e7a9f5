from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    BigInteger,
    Numeric,
    String,
    UniqueConstraint,
    PrimaryKeyConstraint,
    Text,
)
from sqlalchemy import JSON
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# IMPORTANT (SQLite autoincrement):
# SQLite only auto-increments when the PRIMARY KEY column is exactly "INTEGER PRIMARY KEY".
# Using BIGINT for an autoincrement PK will NOT bind to rowid and will fail inserts (id stays NULL).
AUTO_PK = Integer().with_variant(BigInteger, "postgresql")

USD = Numeric(18, 2)


# ---------------------------
# Players / companies / wallets
# ---------------------------

class Player(Base):
    __tablename__ = "players"

    player_id = Column(String(32), primary_key=True)
    display_name = Column(String(128), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)


class Company(Base):
    __tablename__ = "companies"

    company_id = Column(String(32), primary_key=True)
    player_id = Column(String(32), ForeignKey("players.player_id"), nullable=False, index=True)
    name = Column(String(128), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)


class Wallet(Base):
    """One per player. Mutated exclusively through core.ledger."""

    __tablename__ = "wallets"

    player_id = Column(String(32), ForeignKey("players.player_id"), primary_key=True)
    balance_usd = Column(USD, nullable=False, default=0)
    balance_xp = Column(BigInteger, nullable=False, default=0)
    balance_diamond = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("balance_xp >= 0", name="ck_wallets_xp_non_negative"),
        CheckConstraint("balance_diamond >= 0", name="ck_wallets_diamond_non_negative"),
    )


class GameClock(Base):
    """Exactly one row per company. Advanced only by core.orchestrator (optimistic lock on version)."""

    __tablename__ = "game_clocks"

    company_id = Column(String(32), ForeignKey("companies.company_id"), primary_key=True)
    current_day_key = Column(Date, nullable=False)
    started_at_day_key = Column(Date, nullable=False)
    version = Column(Integer, nullable=False, default=0)
    last_advanced_at = Column(DateTime(timezone=True), nullable=True)


class FinanceScheduleConfig(Base):
    __tablename__ = "finance_schedule_configs"

    company_id = Column(String(32), ForeignKey("companies.company_id"), primary_key=True)
    payroll_day_of_month = Column(Integer, nullable=True)
    rent_day_of_month = Column(Integer, nullable=True)
    overhead_day_of_month = Column(Integer, nullable=True)
    payout_days = Column(String(32), nullable=True)  # CSV, e.g. "5,20"


# ---------------------------
# Buildings / staff
# ---------------------------

class CompanyBuilding(Base):
    __tablename__ = "company_buildings"

    building_id = Column(String(32), primary_key=True)
    company_id = Column(String(32), ForeignKey("companies.company_id"), nullable=False, index=True)
    role = Column(String(16), nullable=False)  # HQ / WAREHOUSE
    name = Column(String(128), nullable=True)
    market_zone = Column(String(64), nullable=True)
    country_code = Column(String(8), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class BuildingMetricState(Base):
    __tablename__ = "building_metric_states"

    building_id = Column(String(32), ForeignKey("company_buildings.building_id"), nullable=False)
    metric_type = Column(String(32), nullable=False)  # SALES_COUNT / STORAGE / ...
    current_level = Column(Integer, nullable=False, default=1)
    rent_monthly = Column(USD, nullable=True)
    overhead_monthly = Column(USD, nullable=True)

    __table_args__ = (PrimaryKeyConstraint("building_id", "metric_type", name="pk_building_metric_states"),)


class MetricLevelConfig(Base):
    __tablename__ = "metric_level_configs"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    building_role = Column(String(16), nullable=False)
    metric_type = Column(String(32), nullable=False)
    level = Column(Integer, nullable=False)
    max_allowed = Column(Integer, nullable=False, default=0)  # daily shipping capacity for SALES_COUNT

    __table_args__ = (UniqueConstraint("building_role", "metric_type", "level", name="uq_metric_level"),)


class CompanyStaff(Base):
    __tablename__ = "company_staff"

    staff_id = Column(String(32), primary_key=True)
    company_id = Column(String(32), ForeignKey("companies.company_id"), nullable=False, index=True)
    building_id = Column(String(32), ForeignKey("company_buildings.building_id"), nullable=False, index=True)
    monthly_salary = Column(USD, nullable=False)
    hired_on = Column(Date, nullable=False)
    fired_on = Column(Date, nullable=True)


# ---------------------------
# Catalog (read-only here)
# ---------------------------

class CategoryNode(Base):
    __tablename__ = "category_nodes"

    category_id = Column(String(32), primary_key=True)
    level = Column(String(4), nullable=False)  # L1 / L2 / L3
    parent_id = Column(String(32), ForeignKey("category_nodes.category_id"), nullable=True, index=True)
    name = Column(String(128), nullable=False, default="")


class ProductTemplate(Base):
    __tablename__ = "product_templates"

    template_id = Column(String(32), primary_key=True)
    name = Column(String(128), nullable=False, default="")
    category_l3_id = Column(String(32), ForeignKey("category_nodes.category_id"), nullable=False, index=True)
    quality = Column(String(16), nullable=False, default="STANDARD")  # STANDARD / PREMIUM / LUXURY
    suggested_sale_price = Column(USD, nullable=False, default=0)
    shipping_profile = Column(String(16), nullable=False, default="MEDIUM")  # SMALL / MEDIUM / LARGE


class MarketZonePriceIndex(Base):
    __tablename__ = "market_zone_price_indexes"

    market_zone = Column(String(64), primary_key=True)
    multiplier = Column(Float, nullable=False, default=1.0)


class SalesBandConfig(Base):
    __tablename__ = "sales_band_configs"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    category_id = Column(String(32), ForeignKey("category_nodes.category_id"), nullable=False)  # L3, or L2 for fallback bands
    quality = Column(String(16), nullable=False)
    tier_min = Column(Integer, nullable=False, default=0)
    tier_max = Column(Integer, nullable=False, default=99)
    min_daily = Column(Integer, nullable=False)
    max_daily = Column(Integer, nullable=False)
    expected_mode = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("ix_sales_band_lookup", "category_id", "quality", "tier_min", "tier_max"),)


# ---------------------------
# Warehouse stock / showcase
# ---------------------------

class InventoryItem(Base):
    __tablename__ = "inventory_items"

    building_id = Column(String(32), ForeignKey("company_buildings.building_id"), nullable=False)
    template_id = Column(String(32), ForeignKey("product_templates.template_id"), nullable=False)
    qty_on_hand = Column(Integer, nullable=False, default=0)
    avg_unit_cost = Column(USD, nullable=False, default=0)

    __table_args__ = (
        PrimaryKeyConstraint("building_id", "template_id", name="pk_inventory_items"),
        CheckConstraint("qty_on_hand >= 0", name="ck_inventory_qty_non_negative"),
    )


class Listing(Base):
    __tablename__ = "listings"

    listing_id = Column(String(32), primary_key=True)
    company_id = Column(String(32), ForeignKey("companies.company_id"), nullable=False, index=True)
    warehouse_id = Column(String(32), ForeignKey("company_buildings.building_id"), nullable=False, index=True)
    template_id = Column(String(32), ForeignKey("product_templates.template_id"), nullable=False, index=True)

    status = Column(String(16), nullable=False, default="LISTED")  # LISTED / PAUSED
    paused_reason = Column(String(32), nullable=True)  # OUT_OF_STOCK / PLAYER
    paused_at = Column(DateTime(timezone=True), nullable=True)

    sale_price = Column(USD, nullable=False)
    list_price = Column(USD, nullable=True)
    market_zone = Column(String(64), nullable=True)

    # Recomputed every tick by core.marketing.
    positive_boost_pct = Column(Integer, nullable=False, default=0)
    negative_boost_pct = Column(Integer, nullable=False, default=0)
    # Never reset; always part of the positive base.
    permanent_positive_boost_pct = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False)

    template = relationship("ProductTemplate")

    __table_args__ = (
        CheckConstraint("positive_boost_pct BETWEEN 0 AND 100", name="ck_listing_pos_boost_range"),
        CheckConstraint("negative_boost_pct BETWEEN 0 AND 100", name="ck_listing_neg_boost_range"),
        Index("ix_listings_wh_status", "warehouse_id", "status"),
    )


# ---------------------------
# Marketing
# ---------------------------

class MarketingPackage(Base):
    __tablename__ = "marketing_packages"

    package_id = Column(String(32), primary_key=True)
    scope = Column(String(16), nullable=False)  # WAREHOUSE / CATEGORY / PRODUCT
    key = Column(String(32), nullable=False)
    title = Column(String(128), nullable=False, default="")
    duration_days = Column(Integer, nullable=False, default=7)
    positive_boost_pct = Column(Integer, nullable=False, default=0)
    negative_boost_pct = Column(Integer, nullable=False, default=0)
    price_usd = Column(USD, nullable=False, default=0)
    awareness_gain = Column(Numeric(10, 4), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_index = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("scope", "key", name="uq_marketing_package_scope_key"),)


class MarketingPricingRule(Base):
    __tablename__ = "marketing_pricing_rules"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    scope = Column(String(16), nullable=False)
    min_sku = Column(Integer, nullable=False, default=0)
    max_sku = Column(Integer, nullable=True)  # NULL = open ended
    multiplier = Column(Numeric(8, 3), nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    sort_index = Column(Integer, nullable=False, default=0)


class _CampaignColumns:
    # Campaign ids are unique across the three scopes (they key the end-of-campaign message).
    campaign_id = Column(String(32), primary_key=True)
    company_id = Column(String(32), nullable=False, index=True)
    warehouse_id = Column(String(32), nullable=False, index=True)
    package_id = Column(String(32), nullable=True)
    package_key_snapshot = Column(String(32), nullable=True)
    title = Column(String(128), nullable=True)

    start_day_key = Column(Date, nullable=False)
    end_day_key = Column(Date, nullable=False)  # inclusive
    positive_boost_pct = Column(Integer, nullable=False, default=0)
    negative_boost_pct = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="SCHEDULED")  # SCHEDULED / ACTIVE / COMPLETED / CANCELLED

    created_at = Column(DateTime(timezone=True), nullable=False)


class WarehouseMarketingCampaign(_CampaignColumns, Base):
    __tablename__ = "warehouse_marketing_campaigns"

    __table_args__ = (Index("ix_wh_campaign_window", "warehouse_id", "start_day_key", "end_day_key"),)


class CategoryMarketingCampaign(_CampaignColumns, Base):
    __tablename__ = "category_marketing_campaigns"

    category_id = Column(String(32), nullable=False, index=True)  # L2 node

    __table_args__ = (Index("ix_cat_campaign_window", "warehouse_id", "start_day_key", "end_day_key"),)


class ProductMarketingCampaign(_CampaignColumns, Base):
    __tablename__ = "product_marketing_campaigns"

    listing_id = Column(String(32), nullable=False, index=True)

    __table_args__ = (Index("ix_prod_campaign_window", "warehouse_id", "start_day_key", "end_day_key"),)


class WarehouseAwarenessState(Base):
    __tablename__ = "warehouse_awareness_states"

    warehouse_id = Column(String(32), ForeignKey("company_buildings.building_id"), primary_key=True)
    company_id = Column(String(32), nullable=False, index=True)
    awareness = Column(Numeric(10, 4), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), nullable=False)


# ---------------------------
# Orders / sales logs
# ---------------------------

class DailyOrder(Base):
    __tablename__ = "daily_orders"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    company_id = Column(String(32), nullable=False, index=True)
    warehouse_id = Column(String(32), ForeignKey("company_buildings.building_id"), nullable=False)
    day_key = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.sort_index")

    __table_args__ = (UniqueConstraint("warehouse_id", "day_key", name="uq_daily_order_wh_day"),)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("daily_orders.id", ondelete="CASCADE"), nullable=False, index=True)
    listing_id = Column(String(32), nullable=True, index=True)
    template_id = Column(String(32), nullable=False)
    qty_ordered = Column(Integer, nullable=False)
    qty_fulfilled = Column(Integer, nullable=False, default=0)
    qty_shipped = Column(Integer, nullable=False, default=0)
    sort_index = Column(Integer, nullable=False)
    sale_price_usd = Column(USD, nullable=True)

    order = relationship("DailyOrder", back_populates="items")

    __table_args__ = (CheckConstraint("qty_fulfilled <= qty_ordered", name="ck_order_item_fulfilled_le_ordered"),)


class DailyProductSalesLog(Base):
    __tablename__ = "daily_product_sales_logs"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    company_id = Column(String(32), nullable=False, index=True)
    listing_id = Column(String(32), nullable=False)
    warehouse_id = Column(String(32), nullable=False, index=True)
    template_id = Column(String(32), nullable=False)
    market_zone = Column(String(64), nullable=True)
    day_key = Column(Date, nullable=False, index=True)
    qty_ordered = Column(Integer, nullable=False, default=0)
    qty_shipped = Column(Integer, nullable=False, default=0)
    sale_price = Column(USD, nullable=True)
    list_price = Column(USD, nullable=True)

    __table_args__ = (UniqueConstraint("listing_id", "day_key", name="uq_sales_log_listing_day"),)


# ---------------------------
# Settlement
# ---------------------------

class PlatformFeeLevelConfig(Base):
    __tablename__ = "platform_fee_level_configs"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    level_min = Column(Integer, nullable=False)
    level_max = Column(Integer, nullable=False)
    commission_rate = Column(Numeric(6, 4), nullable=False)
    logistics_multiplier = Column(Numeric(6, 3), nullable=False, default=1)
    return_rate_min = Column(Float, nullable=False, default=0.02)
    return_rate_max = Column(Float, nullable=False, default=0.05)
    is_active = Column(Boolean, nullable=False, default=True)


class ShippingProfileFeeConfig(Base):
    __tablename__ = "shipping_profile_fee_configs"

    shipping_profile = Column(String(16), primary_key=True)
    base_unit_fee_usd = Column(USD, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Settlement(Base):
    __tablename__ = "settlements"

    settlement_id = Column(String(32), primary_key=True)  # deterministic: utils.ids.settlement_id
    company_id = Column(String(32), nullable=False, index=True)
    warehouse_id = Column(String(32), nullable=False, index=True)
    period_start_day_key = Column(Date, nullable=False)
    period_end_day_key = Column(Date, nullable=False)
    payout_day_key = Column(Date, nullable=False)
    total_net_usd = Column(USD, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)

    lines = relationship("SettlementLine", back_populates="settlement")

    __table_args__ = (
        UniqueConstraint(
            "company_id", "warehouse_id", "period_start_day_key", "period_end_day_key", name="uq_settlement_period"
        ),
    )


class SettlementLine(Base):
    __tablename__ = "settlement_lines"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    settlement_id = Column(String(32), ForeignKey("settlements.settlement_id", ondelete="CASCADE"), nullable=False, index=True)
    template_id = Column(String(32), nullable=False)
    listing_id = Column(String(32), nullable=True)

    fulfilled_qty = Column(Integer, nullable=False)
    sale_price_usd = Column(USD, nullable=False)
    gross_revenue_usd = Column(USD, nullable=False)
    commission_rate_snapshot = Column(Numeric(6, 4), nullable=False)
    commission_fee_usd = Column(USD, nullable=False)
    shipping_profile_snapshot = Column(String(16), nullable=False)
    logistics_unit_fee_usd = Column(USD, nullable=False)
    logistics_fee_usd = Column(USD, nullable=False)
    return_rate_snapshot = Column(Numeric(6, 4), nullable=False)
    return_qty = Column(Integer, nullable=False)
    return_deduction_usd = Column(USD, nullable=False)
    net_revenue_usd = Column(USD, nullable=False)
    tier_snapshot = Column(Integer, nullable=False)

    settlement = relationship("Settlement", back_populates="lines")


# ---------------------------
# Finance: ledger + wallet transactions (append-only)
# ---------------------------

class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    company_id = Column(String(32), nullable=False, index=True)
    day_key = Column(Date, nullable=False, index=True)

    direction = Column(String(4), nullable=False)  # IN / OUT
    amount_usd = Column(USD, nullable=False)
    category = Column(String(32), nullable=False)  # PAYROLL / RENT / OVERHEAD / SALES / FEES / OTHER ...

    scope_type = Column(String(16), nullable=False, default="COMPANY")  # COMPANY / BUILDING
    scope_id = Column(String(32), nullable=True)
    counterparty_type = Column(String(16), nullable=False, default="SYSTEM")  # SYSTEM / MARKETPLACE / SUPPLIER
    counterparty_id = Column(String(32), nullable=True)
    ref_type = Column(String(32), nullable=True)
    ref_id = Column(String(64), nullable=True)

    idempotency_key = Column(String(128), nullable=False, unique=True)
    note = Column(String(256), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("amount_usd > 0", name="ck_ledger_amount_positive"),
        CheckConstraint("direction IN ('IN', 'OUT')", name="ck_ledger_direction"),
        Index("ix_ledger_company_day", "company_id", "day_key"),
    )


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    player_id = Column(String(32), nullable=False, index=True)
    company_id = Column(String(32), nullable=True)
    day_key = Column(Date, nullable=False)

    currency = Column(String(8), nullable=False)  # XP / DIAMOND
    direction = Column(String(4), nullable=False)  # IN / OUT
    amount = Column(BigInteger, nullable=False)
    category = Column(String(32), nullable=False)
    ref_type = Column(String(32), nullable=True)
    ref_id = Column(String(64), nullable=True)

    idempotency_key = Column(String(128), nullable=False, unique=True)
    note = Column(String(256), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (CheckConstraint("amount > 0", name="ck_wallet_tx_amount_positive"),)


# ---------------------------
# Inbox
# ---------------------------

class PlayerMessage(Base):
    __tablename__ = "player_messages"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    player_id = Column(String(32), nullable=False, index=True)

    category = Column(String(16), nullable=False)  # OPERATION / MARKETING / FINANCE
    department = Column(String(16), nullable=False)  # LOGISTICS / MARKETING / FINANCE
    level = Column(String(16), nullable=False, default="INFO")  # INFO / WARNING / CRITICAL
    kind = Column(String(16), nullable=False, default="INFO")  # INFO / ACTION

    title = Column(String(256), nullable=False)
    body = Column(Text, nullable=False, default="")
    context = Column(JSON, nullable=False, default=dict)

    cta_type = Column(String(32), nullable=True)
    cta_label = Column(String(64), nullable=True)
    cta_payload = Column(JSON, nullable=True)

    dedupe_key = Column(String(160), nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)  # set by the inbox UI layer
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (UniqueConstraint("player_id", "dedupe_key", name="uq_player_message_dedupe"),)


# ---------------------------
# Audit
# ---------------------------

class SystemEvent(Base):
    __tablename__ = "system_events"

    id = Column(AUTO_PK, primary_key=True, autoincrement=True)
    event_type = Column(String(64), nullable=False, index=True)
    severity = Column(String(16), nullable=False, default="INFO")

    correlation_id = Column(String(64), nullable=True, index=True)
    company_id = Column(String(32), nullable=True, index=True)

    payload = Column(JSON, nullable=False, default=dict)
    time = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (Index("ix_system_events_type_time", "event_type", "time"),)
