from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from modasim.config import settings
from modasim.database import models
from modasim.database.engine import SessionLocal, bind_engine, configure_sqlite
from modasim.utils.time import UTC_TZ

T0 = datetime(2025, 1, 1, tzinfo=UTC_TZ)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    configure_sqlite(eng)
    models.Base.metadata.create_all(eng)
    bind_engine(eng)
    yield eng
    models.Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture()
def s(engine):
    with SessionLocal() as session:
        yield session


@pytest.fixture(autouse=True)
def quiet_jitter(monkeypatch):
    # Most tests want exact quantities; demand tests re-enable jitter explicitly.
    monkeypatch.setattr(settings, "DEMAND_JITTER_FRACTION", 0.0)
    monkeypatch.setattr(settings, "SIM_TEST_MODE", False)


class World:
    """A seeded company: player P1, company C1, HQ H1, warehouse W1, one listing LST1."""

    company_id = "C1"
    player_id = "P1"
    warehouse_id = "W1"
    hq_id = "H1"
    l2_id = "CAT_L2"
    l3_id = "CAT_L3"
    template_id = "TPL1"
    listing_id = "LST1"

    def __init__(self, s):
        self.s = s
        self._seq = 0

    def _ts(self) -> datetime:
        self._seq += 1
        return T0 + timedelta(seconds=self._seq)

    def seed(self, balance_usd: str = "1000.00", capacity: int = 5, start_day: date | None = None):
        s = self.s
        s.add(models.Player(player_id=self.player_id, display_name="p", created_at=T0))
        s.flush()
        s.add(models.Company(company_id=self.company_id, player_id=self.player_id, name="Acme", created_at=T0))
        s.flush()
        s.add(
            models.Wallet(
                player_id=self.player_id,
                balance_usd=Decimal(balance_usd),
                balance_xp=0,
                balance_diamond=0,
                updated_at=T0,
            )
        )
        s.add(models.CompanyBuilding(building_id=self.hq_id, company_id=self.company_id, role="HQ", created_at=T0))
        s.add(
            models.CompanyBuilding(
                building_id=self.warehouse_id,
                company_id=self.company_id,
                role="WAREHOUSE",
                name=None,
                market_zone="TURKIYE",
                country_code="TR",
                created_at=T0,
            )
        )
        s.flush()
        s.add(models.BuildingMetricState(building_id=self.warehouse_id, metric_type="SALES_COUNT", current_level=1))
        if capacity:
            s.add(
                models.MetricLevelConfig(
                    building_role="WAREHOUSE", metric_type="SALES_COUNT", level=1, max_allowed=capacity
                )
            )
        s.add(models.CategoryNode(category_id="CAT_L1", level="L1", parent_id=None, name="Apparel"))
        s.flush()
        s.add(models.CategoryNode(category_id=self.l2_id, level="L2", parent_id="CAT_L1", name="Tops"))
        s.flush()
        s.add(models.CategoryNode(category_id=self.l3_id, level="L3", parent_id=self.l2_id, name="T-Shirts"))
        s.flush()
        self.add_template(self.template_id, self.l3_id)
        self.add_listing(self.listing_id, self.template_id, stock=50)
        if start_day is not None:
            self.set_day(start_day)
        s.flush()
        return self

    def add_template(self, template_id: str, category_l3_id: str, suggested: str = "10.00", profile: str = "MEDIUM"):
        self.s.add(
            models.ProductTemplate(
                template_id=template_id,
                name=template_id,
                category_l3_id=category_l3_id,
                quality="STANDARD",
                suggested_sale_price=Decimal(suggested),
                shipping_profile=profile,
            )
        )
        self.s.flush()

    def add_listing(
        self,
        listing_id: str,
        template_id: str,
        stock: int = 50,
        sale_price: str = "10.00",
        permanent: int = 0,
        market_zone: str | None = None,
    ) -> models.Listing:
        listing = models.Listing(
            listing_id=listing_id,
            company_id=self.company_id,
            warehouse_id=self.warehouse_id,
            template_id=template_id,
            status="LISTED",
            sale_price=Decimal(sale_price),
            list_price=Decimal(sale_price),
            market_zone=market_zone,
            positive_boost_pct=0,
            negative_boost_pct=0,
            permanent_positive_boost_pct=permanent,
            created_at=self._ts(),
        )
        self.s.add(listing)
        inv = self.s.get(models.InventoryItem, {"building_id": self.warehouse_id, "template_id": template_id})
        if inv is None:
            self.s.add(
                models.InventoryItem(
                    building_id=self.warehouse_id, template_id=template_id, qty_on_hand=stock, avg_unit_cost=Decimal("4.00")
                )
            )
        else:
            inv.qty_on_hand = stock
        self.s.flush()
        return listing

    def add_band(self, category_id: str, expected_mode=None, min_daily: int = 2, max_daily: int = 6, tier_min=0, tier_max=99):
        self.s.add(
            models.SalesBandConfig(
                category_id=category_id,
                quality="STANDARD",
                tier_min=tier_min,
                tier_max=tier_max,
                min_daily=min_daily,
                max_daily=max_daily,
                expected_mode=expected_mode,
                is_active=True,
            )
        )
        self.s.flush()

    def set_day(self, day: date, version: int = 0) -> models.GameClock:
        clock = self.s.get(models.GameClock, self.company_id)
        if clock is None:
            clock = models.GameClock(
                company_id=self.company_id, current_day_key=day, started_at_day_key=day, version=version
            )
            self.s.add(clock)
        else:
            clock.current_day_key = day
            clock.version = version
        self.s.flush()
        return clock

    def add_campaign(self, model, campaign_id: str, start: date, end: date, pos: int = 0, neg: int = 0, **extra):
        c = model(
            campaign_id=campaign_id,
            company_id=self.company_id,
            warehouse_id=self.warehouse_id,
            start_day_key=start,
            end_day_key=end,
            positive_boost_pct=pos,
            negative_boost_pct=neg,
            status=extra.pop("status", "SCHEDULED"),
            created_at=self._ts(),
            **extra,
        )
        self.s.add(c)
        self.s.flush()
        return c

    def add_order(self, day: date, items: list[tuple[str, int, int, str]]) -> models.DailyOrder:
        """items: (template_id, qty_ordered, qty_fulfilled, sale_price)"""
        order = models.DailyOrder(
            company_id=self.company_id, warehouse_id=self.warehouse_id, day_key=day, created_at=self._ts()
        )
        self.s.add(order)
        self.s.flush()
        for i, (tpl, ordered, fulfilled, price) in enumerate(items, start=1):
            self.s.add(
                models.OrderItem(
                    order_id=order.id,
                    listing_id=self.listing_id,
                    template_id=tpl,
                    qty_ordered=ordered,
                    qty_fulfilled=fulfilled,
                    qty_shipped=fulfilled,
                    sort_index=i,
                    sale_price_usd=Decimal(price),
                )
            )
        self.s.flush()
        return order

    def add_staff(self, staff_id: str, salary: str, hired_on: date, fired_on: date | None = None, building_id=None):
        self.s.add(
            models.CompanyStaff(
                staff_id=staff_id,
                company_id=self.company_id,
                building_id=building_id or self.hq_id,
                monthly_salary=Decimal(salary),
                hired_on=hired_on,
                fired_on=fired_on,
            )
        )
        self.s.flush()

    def wallet(self) -> models.Wallet:
        w = self.s.get(models.Wallet, self.player_id)
        self.s.refresh(w)
        return w


@pytest.fixture()
def world(s) -> World:
    w = World(s).seed()
    s.commit()
    return w


@pytest.fixture()
def file_world(tmp_path):
    """Seeded world in a file database, so each thread gets its own connection. Clock on 2025-10-06, version 0."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'sim.sqlite3'}",
        future=True,
        connect_args={"check_same_thread": False},
    )
    configure_sqlite(eng)
    models.Base.metadata.create_all(eng)
    bind_engine(eng)
    with SessionLocal() as session:
        World(session).seed(start_day=date(2025, 10, 6))
        session.commit()
    yield eng
    eng.dispose()
