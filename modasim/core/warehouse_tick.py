from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from modasim.config import settings
from modasim.core.demand import DemandSeed, desired_qty
from modasim.core.marketing import BoostState, boost_demand_multiplier
from modasim.core.pricing import listing_price_multiplier
from modasim.database import models
from modasim.database.repo import Repo
from modasim.utils.time import normalize_day_key, format_day_key, now_utc


@dataclass
class WarehouseTickResult:
    order_created: bool
    items_ordered: int
    items_fulfilled: int
    units_shipped: int
    backlog_units: int


def generate_daily_order(
    s: Session,
    company_id: str,
    warehouse_id: str,
    day: date,
    boosts: dict[str, BoostState] | None = None,
) -> tuple[bool, int]:
    """
    Step A: one DailyOrder per (warehouse, day).

    Ordered qty never exceeds stock on hand; stock itself only moves at fulfillment.
    """
    repo = Repo(s)
    if repo.orders.for_day(warehouse_id, day) is not None:
        return False, 0

    listings = repo.listings.listed_in_warehouse(company_id, warehouse_id)
    order = models.DailyOrder(company_id=company_id, warehouse_id=warehouse_id, day_key=day, created_at=now_utc())
    s.add(order)
    s.flush()

    tier = repo.companies.sales_level(warehouse_id)
    seed = DemandSeed(company_id=company_id, warehouse_id=warehouse_id, day_key=day)

    sort_index = 1
    for listing in listings:
        inv = repo.inventory.get(warehouse_id, listing.template_id)
        on_hand = int(inv.qty_on_hand) if inv is not None else 0
        if on_hand <= 0:
            repo.listings.pause_out_of_stock(listing)
            continue

        mult = listing_price_multiplier(s, listing)
        if settings.DEMAND_APPLY_MARKETING_BOOST and boosts:
            mult *= boost_demand_multiplier(boosts.get(listing.listing_id))

        desired = desired_qty(s, listing.template_id, tier, price_multiplier=mult, seed=seed)
        ordered = min(desired, on_hand)
        if ordered <= 0:
            continue

        s.add(
            models.OrderItem(
                order_id=order.id,
                listing_id=listing.listing_id,
                template_id=listing.template_id,
                qty_ordered=ordered,
                qty_fulfilled=0,
                qty_shipped=0,
                sort_index=sort_index,
                sale_price_usd=listing.sale_price,
            )
        )
        repo.orders.upsert_sales_log(
            listing,
            company_id=company_id,
            warehouse_id=warehouse_id,
            template_id=listing.template_id,
            listing_id=listing.listing_id,
            day=day,
            qty_ordered=ordered,
        )
        if on_hand - ordered == 0:
            repo.listings.pause_out_of_stock(listing)
        sort_index += 1

    s.flush()
    return True, sort_index - 1


def fulfill_backlog(s: Session, company_id: str, warehouse_id: str, day: date) -> tuple[int, int]:
    """Step B: ship FIFO up to the warehouse's daily capacity. Partial fills allowed."""
    repo = Repo(s)
    remaining_capacity = repo.companies.sales_capacity(warehouse_id)
    items_fulfilled = 0
    shipped_total = 0

    for item in repo.orders.open_backlog(company_id, warehouse_id):
        if remaining_capacity <= 0:
            break
        remaining = int(item.qty_ordered) - int(item.qty_fulfilled)
        if remaining <= 0:
            continue
        inv = repo.inventory.get(warehouse_id, item.template_id)
        available = int(inv.qty_on_hand) if inv is not None else 0
        ship = min(remaining, remaining_capacity, available)
        if ship <= 0:
            continue

        inv.qty_on_hand = available - ship
        item.qty_fulfilled = int(item.qty_fulfilled) + ship
        item.qty_shipped = int(item.qty_shipped) + ship
        remaining_capacity -= ship
        items_fulfilled += 1
        shipped_total += ship

        listing = s.get(models.Listing, item.listing_id) if item.listing_id else None
        if item.listing_id:
            repo.orders.upsert_sales_log(
                listing,
                company_id=company_id,
                warehouse_id=warehouse_id,
                template_id=item.template_id,
                listing_id=item.listing_id,
                day=day,
                qty_shipped=ship,
            )
        if inv.qty_on_hand == 0 and listing is not None and listing.status == "LISTED":
            repo.listings.pause_out_of_stock(listing)

    s.flush()
    return items_fulfilled, shipped_total


def run_warehouse_day_tick(
    s: Session,
    company_id: str,
    warehouse_id: str,
    day_key: date,
    boosts: dict[str, BoostState] | None = None,
) -> WarehouseTickResult:
    day = normalize_day_key(day_key)
    order_created, items_ordered = generate_daily_order(s, company_id, warehouse_id, day, boosts)
    items_fulfilled, shipped = fulfill_backlog(s, company_id, warehouse_id, day)
    backlog = Repo(s).orders.backlog_units(company_id, warehouse_id)

    Repo(s).system_events.write_event(
        event_type="WAREHOUSE_TICK",
        correlation_id=warehouse_id,
        severity="INFO",
        company_id=company_id,
        payload={
            "day_key": format_day_key(day),
            "order_created": order_created,
            "items_ordered": items_ordered,
            "items_fulfilled": items_fulfilled,
            "units_shipped": shipped,
            "backlog_units": backlog,
        },
    )
    return WarehouseTickResult(
        order_created=order_created,
        items_ordered=items_ordered,
        items_fulfilled=items_fulfilled,
        units_shipped=shipped,
        backlog_units=backlog,
    )
