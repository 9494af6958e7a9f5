from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import select, update, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from modasim.config import settings
from modasim.database import models
from modasim.utils.time import now_utc


@dataclass
class SystemEventsRepo:
    s: Session

    def write_event(
        self,
        event_type: str,
        correlation_id: str | None,
        severity: str,
        payload: dict,
        company_id: str | None = None,
    ) -> None:
        self.s.add(
            models.SystemEvent(
                event_type=event_type,
                severity=severity,
                correlation_id=correlation_id,
                company_id=company_id,
                payload=payload,
                time=now_utc(),
            )
        )


@dataclass
class CompaniesRepo:
    s: Session

    def get(self, company_id: str) -> models.Company | None:
        return self.s.get(models.Company, company_id)

    def warehouses(self, company_id: str) -> list[models.CompanyBuilding]:
        return (
            self.s.execute(
                select(models.CompanyBuilding)
                .where(
                    models.CompanyBuilding.company_id == company_id,
                    models.CompanyBuilding.role == "WAREHOUSE",
                )
                .order_by(models.CompanyBuilding.building_id.asc())
            )
            .scalars()
            .all()
        )

    def buildings(self, company_id: str) -> list[models.CompanyBuilding]:
        # HQ first, then warehouses; stable for message bodies.
        return (
            self.s.execute(
                select(models.CompanyBuilding)
                .where(models.CompanyBuilding.company_id == company_id)
                .order_by(models.CompanyBuilding.role.asc(), models.CompanyBuilding.building_id.asc())
            )
            .scalars()
            .all()
        )

    def sales_level(self, building_id: str) -> int:
        row = self.s.get(models.BuildingMetricState, {"building_id": building_id, "metric_type": "SALES_COUNT"})
        return int(row.current_level) if row else 1

    def sales_capacity(self, building_id: str) -> int:
        level = self.sales_level(building_id)
        cfg = self.s.execute(
            select(models.MetricLevelConfig).where(
                models.MetricLevelConfig.building_role == "WAREHOUSE",
                models.MetricLevelConfig.metric_type == "SALES_COUNT",
                models.MetricLevelConfig.level == level,
            )
        ).scalar_one_or_none()
        return int(cfg.max_allowed) if cfg else 0


@dataclass
class GameClockRepo:
    s: Session

    def get(self, company_id: str) -> models.GameClock | None:
        return self.s.get(models.GameClock, company_id)

    def get_or_create(self, company_id: str) -> models.GameClock:
        row = self.get(company_id)
        if row is not None:
            return row
        start = settings.GAME_START_DAY
        row = models.GameClock(
            company_id=company_id,
            current_day_key=start,
            started_at_day_key=start,
            version=0,
            last_advanced_at=None,
        )
        try:
            with self.s.begin_nested():
                self.s.add(row)
                self.s.flush()
        except IntegrityError:
            # another request created it first; the CAS decides who advances
            row = self.get(company_id)
        return row

    def compare_and_advance(self, company_id: str, expected_version: int, new_day_key: date) -> bool:
        """Optimistic lock: only succeeds if the stored version still equals expected_version."""
        res = self.s.execute(
            update(models.GameClock)
            .where(
                models.GameClock.company_id == company_id,
                models.GameClock.version == int(expected_version),
            )
            .values(
                current_day_key=new_day_key,
                version=int(expected_version) + 1,
                last_advanced_at=now_utc(),
            )
            .execution_options(synchronize_session=False)
        )
        return res.rowcount == 1


@dataclass
class FinanceScheduleRepo:
    s: Session

    def resolve(self, company_id: str) -> dict:
        row = self.s.get(models.FinanceScheduleConfig, company_id)
        payout_days = settings.payout_days()
        if row is not None and row.payout_days:
            parsed = sorted({int(x) for x in row.payout_days.split(",") if x.strip().isdigit()})
            payout_days = [d for d in parsed if 1 <= d <= 31] or payout_days
        return {
            "payroll_day": (row.payroll_day_of_month if row and row.payroll_day_of_month else settings.DEFAULT_PAYROLL_DAY),
            "rent_day": (row.rent_day_of_month if row and row.rent_day_of_month else settings.DEFAULT_RENT_DAY),
            "overhead_day": (row.overhead_day_of_month if row and row.overhead_day_of_month else settings.DEFAULT_OVERHEAD_DAY),
            "payout_days": payout_days,
        }


@dataclass
class CatalogRepo:
    s: Session

    def template(self, template_id: str) -> models.ProductTemplate | None:
        return self.s.get(models.ProductTemplate, template_id)

    def parent_l2_of(self, category_l3_id: str) -> str | None:
        node = self.s.get(models.CategoryNode, category_l3_id)
        if node is None or node.level != "L3" or not node.parent_id:
            return None
        return node.parent_id

    def l3_to_l2(self, l3_ids: list[str]) -> dict[str, str]:
        if not l3_ids:
            return {}
        rows = self.s.execute(
            select(models.CategoryNode.category_id, models.CategoryNode.parent_id).where(
                models.CategoryNode.category_id.in_(l3_ids),
                models.CategoryNode.level == "L3",
            )
        ).all()
        return {cid: pid for cid, pid in rows if pid is not None}

    def find_band(self, category_id: str, quality: str, tier: int) -> models.SalesBandConfig | None:
        return (
            self.s.execute(
                select(models.SalesBandConfig)
                .where(
                    models.SalesBandConfig.category_id == category_id,
                    models.SalesBandConfig.quality == quality,
                    models.SalesBandConfig.is_active.is_(True),
                    models.SalesBandConfig.tier_min <= int(tier),
                    models.SalesBandConfig.tier_max >= int(tier),
                )
                .order_by(models.SalesBandConfig.tier_min.desc(), models.SalesBandConfig.id.asc())
                .limit(1)
            )
            .scalars()
            .first()
        )

    def market_zone_multiplier(self, market_zone: str | None) -> float | None:
        if not market_zone:
            return None
        row = self.s.get(models.MarketZonePriceIndex, market_zone)
        return float(row.multiplier) if row and row.multiplier is not None else None


@dataclass
class ListingsRepo:
    s: Session

    def listed_in_warehouse(self, company_id: str, warehouse_id: str) -> list[models.Listing]:
        return (
            self.s.execute(
                select(models.Listing)
                .where(
                    models.Listing.company_id == company_id,
                    models.Listing.warehouse_id == warehouse_id,
                    models.Listing.status == "LISTED",
                )
                .order_by(models.Listing.created_at.asc(), models.Listing.listing_id.asc())
            )
            .scalars()
            .all()
        )

    def pause_out_of_stock(self, listing: models.Listing) -> None:
        listing.status = "PAUSED"
        listing.paused_reason = "OUT_OF_STOCK"
        listing.paused_at = now_utc()


@dataclass
class CampaignsRepo:
    s: Session

    def active_for_day(self, model, company_id: str, warehouse_id: str, day: date) -> list:
        return (
            self.s.execute(
                select(model)
                .where(
                    model.company_id == company_id,
                    model.warehouse_id == warehouse_id,
                    model.status.in_(("SCHEDULED", "ACTIVE")),
                    model.start_day_key <= day,
                    model.end_day_key >= day,
                )
                .order_by(model.campaign_id.asc())
            )
            .scalars()
            .all()
        )

    def ended_on(self, model, company_id: str, day: date) -> list:
        return (
            self.s.execute(
                select(model)
                .where(
                    model.company_id == company_id,
                    model.end_day_key == day,
                    model.status != "CANCELLED",
                )
                .order_by(model.campaign_id.asc())
            )
            .scalars()
            .all()
        )


@dataclass
class InventoryRepo:
    s: Session

    def get(self, building_id: str, template_id: str) -> models.InventoryItem | None:
        return self.s.get(models.InventoryItem, {"building_id": building_id, "template_id": template_id})


@dataclass
class OrdersRepo:
    s: Session

    def for_day(self, warehouse_id: str, day: date) -> models.DailyOrder | None:
        return self.s.execute(
            select(models.DailyOrder).where(
                models.DailyOrder.warehouse_id == warehouse_id,
                models.DailyOrder.day_key == day,
            )
        ).scalar_one_or_none()

    def open_backlog(self, company_id: str, warehouse_id: str) -> list[models.OrderItem]:
        """Unfulfilled items, FIFO: oldest order day first, then sort index."""
        return (
            self.s.execute(
                select(models.OrderItem)
                .join(models.DailyOrder, models.OrderItem.order_id == models.DailyOrder.id)
                .where(
                    models.DailyOrder.company_id == company_id,
                    models.DailyOrder.warehouse_id == warehouse_id,
                    models.OrderItem.qty_fulfilled < models.OrderItem.qty_ordered,
                )
                .order_by(models.DailyOrder.day_key.asc(), models.OrderItem.sort_index.asc(), models.OrderItem.id.asc())
            )
            .scalars()
            .all()
        )

    def backlog_units(self, company_id: str, warehouse_id: str) -> int:
        return sum(int(i.qty_ordered) - int(i.qty_fulfilled) for i in self.open_backlog(company_id, warehouse_id))

    def upsert_sales_log(
        self,
        listing: models.Listing | None,
        company_id: str,
        warehouse_id: str,
        template_id: str,
        listing_id: str,
        day: date,
        qty_ordered: int = 0,
        qty_shipped: int = 0,
    ) -> models.DailyProductSalesLog:
        row = self.s.execute(
            select(models.DailyProductSalesLog).where(
                models.DailyProductSalesLog.listing_id == listing_id,
                models.DailyProductSalesLog.day_key == day,
            )
        ).scalar_one_or_none()
        if row is None:
            row = models.DailyProductSalesLog(
                company_id=company_id,
                listing_id=listing_id,
                warehouse_id=warehouse_id,
                template_id=template_id,
                market_zone=listing.market_zone if listing else None,
                day_key=day,
                qty_ordered=0,
                qty_shipped=0,
                sale_price=listing.sale_price if listing else None,
                list_price=listing.list_price if listing else None,
            )
            self.s.add(row)
        row.qty_ordered = int(row.qty_ordered or 0) + int(qty_ordered)
        row.qty_shipped = int(row.qty_shipped or 0) + int(qty_shipped)
        if listing is not None:
            row.sale_price = listing.sale_price
            row.list_price = listing.list_price
        return row


@dataclass
class LedgerRepo:
    s: Session

    def get_by_key(self, idempotency_key: str) -> models.LedgerEntry | None:
        return self.s.execute(
            select(models.LedgerEntry).where(models.LedgerEntry.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def wallet_tx_by_key(self, idempotency_key: str) -> models.WalletTransaction | None:
        return self.s.execute(
            select(models.WalletTransaction).where(models.WalletTransaction.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def entries_for_day(self, company_id: str, day: date, categories: tuple[str, ...] = ()) -> list[models.LedgerEntry]:
        q = select(models.LedgerEntry).where(
            models.LedgerEntry.company_id == company_id,
            models.LedgerEntry.day_key == day,
        )
        if categories:
            q = q.where(models.LedgerEntry.category.in_(categories))
        return self.s.execute(q.order_by(models.LedgerEntry.id.asc())).scalars().all()


@dataclass
class MessagesRepo:
    s: Session

    def get_by_dedupe(self, player_id: str, dedupe_key: str) -> models.PlayerMessage | None:
        return self.s.execute(
            select(models.PlayerMessage).where(
                models.PlayerMessage.player_id == player_id,
                models.PlayerMessage.dedupe_key == dedupe_key,
            )
        ).scalar_one_or_none()

    def list_for_player(self, player_id: str, unread_only: bool = False, limit: int = 50) -> list[models.PlayerMessage]:
        q = select(models.PlayerMessage).where(models.PlayerMessage.player_id == player_id)
        if unread_only:
            q = q.where(models.PlayerMessage.read_at.is_(None))
        q = q.order_by(models.PlayerMessage.created_at.desc(), models.PlayerMessage.id.desc()).limit(limit)
        return self.s.execute(q).scalars().all()


@dataclass
class StaffRepo:
    s: Session

    def active_on(self, company_id: str, day: date) -> list[models.CompanyStaff]:
        return (
            self.s.execute(
                select(models.CompanyStaff)
                .where(
                    models.CompanyStaff.company_id == company_id,
                    models.CompanyStaff.hired_on <= day,
                    or_(models.CompanyStaff.fired_on.is_(None), models.CompanyStaff.fired_on > day),
                )
                .order_by(models.CompanyStaff.staff_id.asc())
            )
            .scalars()
            .all()
        )

    def first_metric_amount(self, building_id: str, field: str):
        """First non-null rent_monthly / overhead_monthly across the building's metric rows (by metric type)."""
        rows = (
            self.s.execute(
                select(models.BuildingMetricState)
                .where(models.BuildingMetricState.building_id == building_id)
                .order_by(models.BuildingMetricState.metric_type.asc())
            )
            .scalars()
            .all()
        )
        for r in rows:
            v = getattr(r, field)
            if v is not None:
                return v
        return None


@dataclass
class Repo:
    s: Session

    @property
    def system_events(self) -> SystemEventsRepo:
        return SystemEventsRepo(self.s)

    @property
    def companies(self) -> CompaniesRepo:
        return CompaniesRepo(self.s)

    @property
    def clock(self) -> GameClockRepo:
        return GameClockRepo(self.s)

    @property
    def finance_schedule(self) -> FinanceScheduleRepo:
        return FinanceScheduleRepo(self.s)

    @property
    def catalog(self) -> CatalogRepo:
        return CatalogRepo(self.s)

    @property
    def listings(self) -> ListingsRepo:
        return ListingsRepo(self.s)

    @property
    def campaigns(self) -> CampaignsRepo:
        return CampaignsRepo(self.s)

    @property
    def inventory(self) -> InventoryRepo:
        return InventoryRepo(self.s)

    @property
    def orders(self) -> OrdersRepo:
        return OrdersRepo(self.s)

    @property
    def ledger(self) -> LedgerRepo:
        return LedgerRepo(self.s)

    @property
    def messages(self) -> MessagesRepo:
        return MessagesRepo(self.s)

    @property
    def staff(self) -> StaffRepo:
        return StaffRepo(self.s)
