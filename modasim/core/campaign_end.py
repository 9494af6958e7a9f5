from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from modasim.core.messages import create_campaign_end_message
from modasim.database import models
from modasim.database.repo import Repo
from modasim.utils.ids import campaign_end_key
from modasim.utils.money import to_decimal, ZERO
from modasim.utils.time import add_days, normalize_day_key, format_day_key, now_utc

CAMPAIGN_MODELS = (
    models.WarehouseMarketingCampaign,
    models.CategoryMarketingCampaign,
    models.ProductMarketingCampaign,
)


def ending_campaigns(s: Session, company_id: str, current_day_key: date) -> list:
    """Campaigns whose last active day was yesterday (they stay visible as active through end_day_key)."""
    yesterday = add_days(normalize_day_key(current_day_key), -1)
    repo = Repo(s)
    out = []
    for model in CAMPAIGN_MODELS:
        out.extend(repo.campaigns.ended_on(model, company_id, yesterday))
    return out


def _awareness_gain(s: Session, campaign) -> Decimal:
    if not campaign.package_id:
        return ZERO
    pkg = s.get(models.MarketingPackage, campaign.package_id)
    return to_decimal(pkg.awareness_gain) if pkg is not None else ZERO


def _add_awareness(s: Session, company_id: str, warehouse_id: str, gain: Decimal) -> None:
    state = s.get(models.WarehouseAwarenessState, warehouse_id)
    if state is None:
        s.add(
            models.WarehouseAwarenessState(
                warehouse_id=warehouse_id, company_id=company_id, awareness=gain, updated_at=now_utc()
            )
        )
    else:
        state.awareness = to_decimal(state.awareness) + gain
        state.updated_at = now_utc()


def apply_campaign_end_awareness(s: Session, company: models.Company, current_day_key: date) -> int:
    """
    One-time permanent awareness per ended campaign, guarded by the MKT_CAMPAIGN_END message key.

    Returns how many campaigns were applied now.
    """
    repo = Repo(s)
    applied = 0
    for campaign in ending_campaigns(s, company.company_id, current_day_key):
        if repo.messages.get_by_dedupe(company.player_id, campaign_end_key(campaign.campaign_id)) is not None:
            continue

        gain = _awareness_gain(s, campaign)
        msg = create_campaign_end_message(s, company.player_id, campaign, gain)
        if msg is None:
            continue

        _add_awareness(s, company.company_id, campaign.warehouse_id, gain)
        campaign.status = "COMPLETED"
        applied += 1

        repo.system_events.write_event(
            event_type="CAMPAIGN_END_APPLIED",
            correlation_id=campaign.campaign_id,
            severity="INFO",
            company_id=company.company_id,
            payload={
                "warehouse_id": campaign.warehouse_id,
                "awareness_gain": str(gain),
                "day_key": format_day_key(normalize_day_key(current_day_key)),
            },
        )

    s.flush()
    return applied
