from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from modasim.core.errors import NotFoundError
from modasim.core.ledger import LedgerPostRequest, post_ledger_entry
from modasim.database.repo import Repo
from modasim.utils.ids import scheduled_cost_key
from modasim.utils.money import usd, ZERO
from modasim.utils.time import normalize_day_key, format_day_key

KINDS = ("PAYROLL", "RENT", "OVERHEAD")
NOTES = {"PAYROLL": "Monthly payroll", "RENT": "Monthly rent", "OVERHEAD": "Monthly overhead"}


@dataclass
class ScheduledCostsResult:
    payroll_posted: bool = False
    rent_posted: bool = False
    overhead_posted: bool = False
    amounts: dict[str, Decimal] = field(default_factory=dict)
    # kind -> building_id -> amount, for the finance inbox breakdown
    by_building: dict[str, dict[str, Decimal]] = field(default_factory=dict)

    @property
    def any_posted(self) -> bool:
        return self.payroll_posted or self.rent_posted or self.overhead_posted

    def posted(self, kind: str) -> bool:
        return bool(getattr(self, f"{kind.lower()}_posted"))


def payroll_by_building(s: Session, company_id: str, day: date) -> dict[str, Decimal]:
    out: dict[str, Decimal] = {}
    for st in Repo(s).staff.active_on(company_id, day):
        out[st.building_id] = out.get(st.building_id, ZERO) + usd(st.monthly_salary)
    return out


def building_cost_by_building(s: Session, company_id: str, field_name: str) -> dict[str, Decimal]:
    """Per building: first non-null rent_monthly / overhead_monthly over its metric rows."""
    repo = Repo(s)
    out: dict[str, Decimal] = {}
    for b in repo.companies.buildings(company_id):
        v = repo.staff.first_metric_amount(b.building_id, field_name)
        if v is not None:
            out[b.building_id] = usd(v)
    return out


def post_scheduled_costs(s: Session, company_id: str, day_key: date) -> ScheduledCostsResult:
    """
    Post payroll / rent / overhead when the day of month matches the company schedule.

    The ledger idempotency key ({KIND}:{company}:{YYYY-MM}) is the only guard against double posting.
    """
    day = normalize_day_key(day_key)
    repo = Repo(s)
    company = repo.companies.get(company_id)
    if company is None:
        raise NotFoundError(f"company_not_found:{company_id}")

    schedule = repo.finance_schedule.resolve(company_id)
    trigger = {
        "PAYROLL": schedule["payroll_day"],
        "RENT": schedule["rent_day"],
        "OVERHEAD": schedule["overhead_day"],
    }

    result = ScheduledCostsResult()
    for kind in KINDS:
        if day.day != int(trigger[kind]):
            continue

        if kind == "PAYROLL":
            breakdown = payroll_by_building(s, company_id, day)
        elif kind == "RENT":
            breakdown = building_cost_by_building(s, company_id, "rent_monthly")
        else:
            breakdown = building_cost_by_building(s, company_id, "overhead_monthly")

        total = usd(sum(breakdown.values(), ZERO))
        if total <= 0:
            # empty payroll (or no rented buildings): no ledger row
            continue

        post_ledger_entry(
            s,
            company.player_id,
            LedgerPostRequest(
                company_id=company_id,
                day_key=day,
                direction="OUT",
                amount_usd=total,
                category=kind,
                idempotency_key=scheduled_cost_key(kind, company_id, day),
                scope_type="COMPANY",
                scope_id=company_id,
                counterparty_type="SYSTEM",
                ref_type="SCHEDULED_COST",
                ref_id=company_id,
                note=NOTES[kind],
            ),
        )
        setattr(result, f"{kind.lower()}_posted", True)
        result.amounts[kind] = total
        result.by_building[kind] = breakdown

    if result.any_posted:
        repo.system_events.write_event(
            event_type="SCHEDULED_COSTS_POSTED",
            correlation_id=company_id,
            severity="INFO",
            company_id=company_id,
            payload={
                "day_key": format_day_key(day),
                "amounts": {k: str(v) for k, v in result.amounts.items()},
            },
        )
    return result
