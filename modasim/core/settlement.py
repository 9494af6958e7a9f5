from __future__ import annotations

import calendar
import math
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from modasim.config import settings
from modasim.core.errors import NotFoundError
from modasim.core.ledger import LedgerPostRequest, post_ledger_entry
from modasim.database import models
from modasim.database.repo import Repo
from modasim.utils.crypto import seeded_unit_float
from modasim.utils.ids import settlement_id as make_settlement_id, settlement_entry_key
from modasim.utils.money import usd, to_decimal, ZERO
from modasim.utils.time import add_days, normalize_day_key, format_day_key, now_utc

DEFAULT_SHIPPING_PROFILE = "MEDIUM"
RATE_Q = Decimal("0.0001")


@dataclass
class SettlementResult:
    settlement_id: str
    total_net_usd: Decimal
    is_new: bool


@dataclass
class FeeTerms:
    commission_rate: Decimal
    logistics_multiplier: Decimal
    return_rate_min: float
    return_rate_max: float


def _clamped_day(year: int, month: int, dom: int) -> date:
    return date(year, month, min(dom, calendar.monthrange(year, month)[1]))


def payout_period(day_key: date, payout_days: list[int]) -> tuple[date, date] | None:
    """
    The period a payout day closes: from the previous payout day up to yesterday.

    With 5,20: the 20th covers 5th..19th, the 5th covers last month's 20th..4th.
    """
    day = normalize_day_key(day_key)
    days = sorted({int(d) for d in payout_days})
    if day.day not in days:
        return None
    idx = days.index(day.day)
    if idx > 0:
        start = _clamped_day(day.year, day.month, days[idx - 1])
    else:
        year, month = (day.year, day.month - 1) if day.month > 1 else (day.year - 1, 12)
        start = _clamped_day(year, month, days[-1])
    return start, add_days(day, -1)


def fee_terms(s: Session, level: int) -> FeeTerms:
    cfg = (
        s.execute(
            select(models.PlatformFeeLevelConfig)
            .where(
                models.PlatformFeeLevelConfig.is_active.is_(True),
                models.PlatformFeeLevelConfig.level_min <= int(level),
                models.PlatformFeeLevelConfig.level_max >= int(level),
            )
            .order_by(models.PlatformFeeLevelConfig.level_min.asc())
            .limit(1)
        )
        .scalars()
        .first()
    )
    if cfg is None:
        return FeeTerms(
            commission_rate=to_decimal(settings.SETTLEMENT_DEFAULT_COMMISSION_RATE),
            logistics_multiplier=to_decimal(settings.SETTLEMENT_DEFAULT_LOGISTICS_MULTIPLIER),
            return_rate_min=float(settings.SETTLEMENT_DEFAULT_RETURN_RATE_MIN),
            return_rate_max=float(settings.SETTLEMENT_DEFAULT_RETURN_RATE_MAX),
        )
    return FeeTerms(
        commission_rate=to_decimal(cfg.commission_rate),
        logistics_multiplier=to_decimal(cfg.logistics_multiplier),
        return_rate_min=float(cfg.return_rate_min),
        return_rate_max=float(cfg.return_rate_max),
    )


def unit_fees(s: Session) -> dict[str, Decimal]:
    rows = (
        s.execute(select(models.ShippingProfileFeeConfig).where(models.ShippingProfileFeeConfig.is_active.is_(True)))
        .scalars()
        .all()
    )
    return {r.shipping_profile: to_decimal(r.base_unit_fee_usd) for r in rows}


def return_rate(seed: str, lo: float, hi: float) -> float:
    return lo + seeded_unit_float(seed) * (hi - lo)


def _aggregate(s: Session, company_id: str, warehouse_id: str, start: date, end: date) -> dict[str, dict]:
    items = (
        s.execute(
            select(models.OrderItem)
            .join(models.DailyOrder, models.OrderItem.order_id == models.DailyOrder.id)
            .where(
                models.DailyOrder.company_id == company_id,
                models.DailyOrder.warehouse_id == warehouse_id,
                models.DailyOrder.day_key >= start,
                models.DailyOrder.day_key <= end,
                models.OrderItem.qty_fulfilled > 0,
            )
            .order_by(models.DailyOrder.day_key.asc(), models.OrderItem.sort_index.asc())
        )
        .scalars()
        .all()
    )
    agg: dict[str, dict] = {}
    for it in items:
        price = usd(it.sale_price_usd)
        row = agg.setdefault(
            it.template_id, {"qty": 0, "gross": ZERO, "price": price, "listing_id": it.listing_id}
        )
        row["qty"] += int(it.qty_fulfilled)
        row["gross"] += price * int(it.qty_fulfilled)
        # last seen price / listing wins for the snapshot
        row["price"] = price
        row["listing_id"] = it.listing_id or row["listing_id"]
    return agg


def build_and_post_settlement(
    s: Session, company_id: str, warehouse_id: str, payout_day_key: date
) -> SettlementResult | None:
    """
    Settle one warehouse for the period closed by payout_day_key.

    Idempotent per (company, warehouse, period): the settlement id and every ledger key are derived from it.
    Returns None when the day is not a payout day or nothing was fulfilled in the period.
    """
    payout_day = normalize_day_key(payout_day_key)
    repo = Repo(s)
    company = repo.companies.get(company_id)
    if company is None:
        raise NotFoundError(f"company_not_found:{company_id}")

    period = payout_period(payout_day, repo.finance_schedule.resolve(company_id)["payout_days"])
    if period is None:
        return None
    start, end = period

    sid = make_settlement_id(company_id, warehouse_id, start, end)
    existing = s.get(models.Settlement, sid)
    if existing is not None:
        return SettlementResult(settlement_id=sid, total_net_usd=usd(existing.total_net_usd), is_new=False)

    agg = _aggregate(s, company_id, warehouse_id, start, end)
    if not agg:
        return None

    level = repo.companies.sales_level(warehouse_id)
    terms = fee_terms(s, level)
    fees = unit_fees(s)
    default_fee = to_decimal(settings.SETTLEMENT_DEFAULT_UNIT_FEE_USD)

    settlement = models.Settlement(
        settlement_id=sid,
        company_id=company_id,
        warehouse_id=warehouse_id,
        period_start_day_key=start,
        period_end_day_key=end,
        payout_day_key=payout_day,
        total_net_usd=ZERO,
        created_at=now_utc(),
    )
    s.add(settlement)

    totals = {"GROSS": ZERO, "COMMISSION": ZERO, "LOGISTICS": ZERO, "RETURNS": ZERO}
    for template_id in sorted(agg):
        row = agg[template_id]
        tpl = repo.catalog.template(template_id)
        profile = (tpl.shipping_profile if tpl is not None else None) or DEFAULT_SHIPPING_PROFILE

        qty = row["qty"]
        gross = usd(row["gross"])
        commission = usd(gross * terms.commission_rate)
        unit_fee = usd(fees.get(profile, default_fee) * terms.logistics_multiplier)
        logistics = usd(unit_fee * qty)
        rate = return_rate(f"{sid}:{template_id}", terms.return_rate_min, terms.return_rate_max)
        return_qty = min(qty, math.ceil(qty * rate))
        returns = usd(row["price"] * return_qty)
        net = gross - commission - logistics - returns

        s.add(
            models.SettlementLine(
                settlement_id=sid,
                template_id=template_id,
                listing_id=row["listing_id"],
                fulfilled_qty=qty,
                sale_price_usd=row["price"],
                gross_revenue_usd=gross,
                commission_rate_snapshot=terms.commission_rate,
                commission_fee_usd=commission,
                shipping_profile_snapshot=profile,
                logistics_unit_fee_usd=unit_fee,
                logistics_fee_usd=logistics,
                return_rate_snapshot=Decimal(str(rate)).quantize(RATE_Q),
                return_qty=return_qty,
                return_deduction_usd=returns,
                net_revenue_usd=net,
                tier_snapshot=level,
            )
        )
        totals["GROSS"] += gross
        totals["COMMISSION"] += commission
        totals["LOGISTICS"] += logistics
        totals["RETURNS"] += returns

    total_net = totals["GROSS"] - totals["COMMISSION"] - totals["LOGISTICS"] - totals["RETURNS"]
    settlement.total_net_usd = total_net
    s.flush()

    postings = (
        ("GROSS", "IN", "SALES", "Marketplace gross revenue"),
        ("COMMISSION", "OUT", "FEES", "Marketplace commission fees"),
        ("LOGISTICS", "OUT", "FEES", "Marketplace logistics fees"),
        ("RETURNS", "OUT", "RETURNS", "Marketplace returns deduction"),
    )
    for kind, direction, category, note in postings:
        amount = totals[kind]
        if amount <= 0:
            continue
        post_ledger_entry(
            s,
            company.player_id,
            LedgerPostRequest(
                company_id=company_id,
                day_key=payout_day,
                direction=direction,
                amount_usd=amount,
                category=category,
                idempotency_key=settlement_entry_key(kind, sid),
                scope_type="BUILDING",
                scope_id=warehouse_id,
                counterparty_type="MARKETPLACE",
                ref_type="SETTLEMENT",
                ref_id=sid,
                note=note,
            ),
        )

    repo.system_events.write_event(
        event_type="SETTLEMENT_POSTED",
        correlation_id=sid,
        severity="INFO",
        company_id=company_id,
        payload={
            "warehouse_id": warehouse_id,
            "period_start": format_day_key(start),
            "period_end": format_day_key(end),
            "payout_day": format_day_key(payout_day),
            "totals": {k: str(v) for k, v in totals.items()},
            "total_net_usd": str(total_net),
        },
    )
    return SettlementResult(settlement_id=sid, total_net_usd=total_net, is_new=True)
