from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from modasim.core.campaign_end import apply_campaign_end_awareness
from modasim.core.errors import ConcurrentAdvanceError, NotFoundError
from modasim.core.game_clock import get_or_create_clock
from modasim.core.marketing import apply_marketing_layers
from modasim.core.messages import create_backlog_warning_if_needed, create_finance_summary_if_needed
from modasim.core.scheduled_costs import ScheduledCostsResult, post_scheduled_costs
from modasim.core.settlement import build_and_post_settlement
from modasim.core.warehouse_tick import run_warehouse_day_tick
from modasim.database.engine import SessionLocal
from modasim.database.repo import Repo
from modasim.utils.time import add_days, format_day_key


@dataclass
class AdvanceDayResult:
    company_id: str
    previous_day_key: date
    new_day_key: date
    version: int
    warehouses_ticked: int = 0
    settlements_run: int = 0
    campaigns_ended: int = 0
    scheduled_costs: ScheduledCostsResult = field(default_factory=ScheduledCostsResult)

    def as_dict(self) -> dict:
        return {
            "previousDayKey": format_day_key(self.previous_day_key),
            "newDayKey": format_day_key(self.new_day_key),
            "version": self.version,
            "warehousesTicked": self.warehouses_ticked,
            "settlementsRun": self.settlements_run,
        }


def advance_day(s: Session, company_id: str, expected_version: int | None = None) -> AdvanceDayResult:
    """
    Move the company clock forward one day and run everything that day triggers.

    All work happens in the caller's session; the caller commits once. A stale version
    raises ConcurrentAdvanceError before any side effect. Never retried here.
    """
    repo = Repo(s)
    company = repo.companies.get(company_id)
    if company is None:
        raise NotFoundError(f"company_not_found:{company_id}")

    clock = get_or_create_clock(s, company_id)
    observed = int(clock.version) if expected_version is None else int(expected_version)
    previous_day = clock.current_day_key
    new_day = add_days(previous_day, 1)

    if not repo.clock.compare_and_advance(company_id, observed, new_day):
        raise ConcurrentAdvanceError(f"company={company_id} expected_version={observed}")
    s.expire(clock)

    result = AdvanceDayResult(
        company_id=company_id,
        previous_day_key=previous_day,
        new_day_key=new_day,
        version=observed + 1,
    )

    warehouses = repo.companies.warehouses(company_id)

    # sequential per warehouse: keeps ledger keys and dedupe keys race-free
    for wh in warehouses:
        boosts = apply_marketing_layers(s, company_id, wh.building_id, new_day)
        run_warehouse_day_tick(s, company_id, wh.building_id, new_day, boosts)
        create_backlog_warning_if_needed(s, company, wh.building_id, new_day)
        result.warehouses_ticked += 1

    result.campaigns_ended = apply_campaign_end_awareness(s, company, new_day)

    result.scheduled_costs = post_scheduled_costs(s, company_id, new_day)

    if new_day.day in repo.finance_schedule.resolve(company_id)["payout_days"]:
        for wh in warehouses:
            if build_and_post_settlement(s, company_id, wh.building_id, new_day) is not None:
                result.settlements_run += 1

    create_finance_summary_if_needed(s, company, new_day, result.scheduled_costs)

    repo.system_events.write_event(
        event_type="DAY_ADVANCED",
        correlation_id=company_id,
        severity="INFO",
        company_id=company_id,
        payload={
            "previous_day_key": format_day_key(previous_day),
            "new_day_key": format_day_key(new_day),
            "version": result.version,
            "warehouses_ticked": result.warehouses_ticked,
            "settlements_run": result.settlements_run,
            "campaigns_ended": result.campaigns_ended,
            "scheduled_costs": sorted(result.scheduled_costs.amounts),
        },
    )
    s.flush()
    return result


def run_advance_day(company_id: str, expected_version: int | None = None) -> AdvanceDayResult:
    """One transaction per advancement: commit on success, roll back everything on any error."""
    with SessionLocal() as s:
        try:
            result = advance_day(s, company_id, expected_version=expected_version)
            s.commit()
            return result
        except Exception:
            s.rollback()
            raise
