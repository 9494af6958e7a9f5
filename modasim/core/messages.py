from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from modasim.config import settings
from modasim.database import models
from modasim.database.repo import Repo
from modasim.utils.ids import backlog_warning_key, finance_costs_message_key, campaign_end_key
from modasim.utils.money import format_usd, usd, to_decimal, ZERO
from modasim.utils.time import normalize_day_key, format_day_key, now_utc

COST_SECTIONS = (
    ("PAYROLL", "Payroll processed", "Total payroll"),
    ("RENT", "Rent posted", "Total rent"),
    ("OVERHEAD", "Overhead posted", "Total overhead"),
)


def create_message_once(s: Session, player_id: str, dedupe_key: str, **fields) -> models.PlayerMessage | None:
    """
    At most one message per (player_id, dedupe_key).

    Returns the new row, or None when it already existed (including a lost insert race).
    """
    repo = Repo(s)
    if repo.messages.get_by_dedupe(player_id, dedupe_key) is not None:
        return None

    fields.setdefault("context", {})
    msg = models.PlayerMessage(player_id=player_id, dedupe_key=dedupe_key, created_at=now_utc(), **fields)
    try:
        with s.begin_nested():
            s.add(msg)
            s.flush()
    except IntegrityError:
        return None
    return msg


def warehouse_label(building: models.CompanyBuilding | None) -> str:
    if building is not None and building.name and building.name.strip():
        return building.name.strip()
    zone = (building.market_zone if building is not None else None) or "-"
    return f"Warehouse - {zone.replace('_', ' ')}"


def building_label(building: models.CompanyBuilding) -> str:
    if building.role == "HQ":
        return "Headquarters"
    zone = (building.market_zone or "").strip()
    if zone.lower().startswith("warehouse"):
        zone = zone[len("warehouse"):].lstrip(" -").strip()
    return f"Warehouse {zone or '-'}"


def format_cost_date(day: date) -> str:
    """Feb 1, 2026"""
    return f"{day.strftime('%b')} {day.day}, {day.year}"


def backlog_level(backlog: int, capacity: int) -> tuple[str, float | None]:
    if capacity <= 0:
        return "CRITICAL", None
    days_eq = backlog / float(capacity)
    level = "CRITICAL" if days_eq > float(settings.BACKLOG_CRITICAL_DAYS) else "WARNING"
    return level, days_eq


def create_backlog_warning_if_needed(
    s: Session, company: models.Company, warehouse_id: str, day_key: date
) -> models.PlayerMessage | None:
    day = normalize_day_key(day_key)
    repo = Repo(s)
    key = backlog_warning_key(company.company_id, warehouse_id, day)
    if repo.messages.get_by_dedupe(company.player_id, key) is not None:
        return None

    backlog = repo.orders.backlog_units(company.company_id, warehouse_id)
    if backlog <= 0:
        return None

    capacity = repo.companies.sales_capacity(warehouse_id)
    level, days_eq = backlog_level(backlog, capacity)
    label = warehouse_label(s.get(models.CompanyBuilding, warehouse_id))

    body = "\n".join(
        [
            f"{label}: Orders exceeded daily shipping capacity.",
            f"Backlog remaining: {backlog} units",
            f"Today's capacity: {capacity} units",
            "Suggested action: Review Logistics or use part-time staff to clear backlog.",
        ]
    )
    return create_message_once(
        s,
        company.player_id,
        key,
        category="OPERATION",
        department="LOGISTICS",
        level=level,
        kind="ACTION",
        title="Backlog warning - capacity exceeded",
        body=body,
        context={
            "buildingId": warehouse_id,
            "dayKey": format_day_key(day),
            "backlogAfter": backlog,
            "capacity": capacity,
            "backlogDaysEq": days_eq,
        },
        cta_type="GO_TO_PAGE",
        cta_label="Open Logistics",
        cta_payload={"route": "/player/warehouse/logistics", "buildingId": warehouse_id},
    )


def create_finance_summary_if_needed(s: Session, company: models.Company, day_key: date, costs) -> models.PlayerMessage | None:
    """One FINANCE message per company per day when any scheduled cost was posted."""
    if not costs.any_posted:
        return None
    day = normalize_day_key(day_key)
    repo = Repo(s)
    key = finance_costs_message_key(company.company_id, day)
    if repo.messages.get_by_dedupe(company.player_id, key) is not None:
        return None

    buildings = repo.companies.buildings(company.company_id)
    date_str = format_cost_date(day)
    parts: list[str] = []
    for kind, heading, total_label in COST_SECTIONS:
        if not costs.posted(kind):
            continue
        breakdown = costs.by_building.get(kind, {})
        rows = []
        total = ZERO
        for b in buildings:
            amount = breakdown.get(b.building_id)
            if amount is not None and amount > 0:
                rows.append(f"{building_label(b)}: {format_usd(amount)}")
                total += amount
        parts.append("\n".join([f"{heading} ({date_str})", *rows, "", f"{total_label}: {format_usd(total)}"]))

    totals: dict[str, Decimal] = {k: ZERO for k, _, _ in COST_SECTIONS}
    for e in repo.ledger.entries_for_day(company.company_id, day, categories=tuple(totals)):
        if e.direction == "OUT":
            totals[e.category] += usd(e.amount_usd)

    return create_message_once(
        s,
        company.player_id,
        key,
        category="OPERATION",
        department="FINANCE",
        level="INFO",
        kind="INFO",
        title="Monthly expenses posted",
        body="\n\n".join(parts),
        context={
            "companyId": company.company_id,
            "dayKey": format_day_key(day),
            "payrollTotalUsd": str(totals["PAYROLL"]),
            "rentTotalUsd": str(totals["RENT"]),
            "overheadTotalUsd": str(totals["OVERHEAD"]),
        },
    )


def create_campaign_end_message(
    s: Session, player_id: str, campaign, awareness_gain: Decimal
) -> models.PlayerMessage | None:
    title = (campaign.title or "").strip() or campaign.package_key_snapshot or "-"
    gain = _plain(awareness_gain)
    return create_message_once(
        s,
        player_id,
        campaign_end_key(campaign.campaign_id),
        category="MARKETING",
        department="MARKETING",
        level="INFO",
        kind="INFO",
        title=f"Campaign ended: {title}",
        body=f"Permanent awareness +{gain} added to warehouse.",
        context={
            "campaignId": campaign.campaign_id,
            "warehouseId": campaign.warehouse_id,
            "awarenessGain": gain,
        },
    )


def _plain(d) -> str:
    # 2.5000 -> "2.5", 3.0000 -> "3"
    return format(to_decimal(d).normalize(), "f")
