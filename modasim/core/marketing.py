from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Mapping

from sqlalchemy.orm import Session

from modasim.database import models
from modasim.database.repo import Repo
from modasim.utils.time import normalize_day_key

ACTIVE_STATUSES = ("SCHEDULED", "ACTIVE")
MIN_PCT = 0
MAX_PCT = 100


def clamp_pct(n) -> int:
    return min(MAX_PCT, max(MIN_PCT, int(round(float(n or 0)))))


@dataclass(frozen=True)
class BoostState:
    """Listing boost between layers. Both values always lie in [0, 100]."""

    positive: int = 0
    negative: int = 0

    def layer(self, positive: int, negative: int) -> "BoostState":
        return BoostState(
            positive=clamp_pct(self.positive + int(positive or 0)),
            negative=clamp_pct(self.negative + int(negative or 0)),
        )


def sum_boosts(campaigns: Iterable) -> tuple[int, int]:
    pos = 0
    neg = 0
    for c in campaigns:
        pos += int(c.positive_boost_pct or 0)
        neg += int(c.negative_boost_pct or 0)
    return pos, neg


def warehouse_layer(permanent_positive_pct: int, campaigns: Iterable) -> BoostState:
    # starts from zero every tick; the permanent boost is always part of the positive base
    pos, neg = sum_boosts(campaigns)
    return BoostState().layer(int(permanent_positive_pct or 0) + pos, neg)


def category_layer(state: BoostState, l2_id: str | None, campaigns_by_l2: Mapping[str, tuple[int, int]]) -> BoostState:
    if not l2_id or l2_id not in campaigns_by_l2:
        return state
    pos, neg = campaigns_by_l2[l2_id]
    return state.layer(pos, neg)


def product_layer(
    state: BoostState, listing_id: str, campaigns_by_listing: Mapping[str, tuple[int, int]]
) -> BoostState:
    if listing_id not in campaigns_by_listing:
        return state
    pos, neg = campaigns_by_listing[listing_id]
    return state.layer(pos, neg)


def compose_boost(
    listing_id: str,
    permanent_positive_pct: int,
    l2_id: str | None,
    warehouse_campaigns: Iterable,
    campaigns_by_l2: Mapping[str, tuple[int, int]],
    campaigns_by_listing: Mapping[str, tuple[int, int]],
) -> BoostState:
    """warehouse -> category -> product, clamped after each layer."""
    state = warehouse_layer(permanent_positive_pct, warehouse_campaigns)
    state = category_layer(state, l2_id, campaigns_by_l2)
    return product_layer(state, listing_id, campaigns_by_listing)


def _group(campaigns: Iterable, attr: str) -> dict[str, tuple[int, int]]:
    out: dict[str, tuple[int, int]] = {}
    for c in campaigns:
        key = getattr(c, attr)
        pos, neg = out.get(key, (0, 0))
        out[key] = (pos + int(c.positive_boost_pct or 0), neg + int(c.negative_boost_pct or 0))
    return out


def apply_marketing_layers(s: Session, company_id: str, warehouse_id: str, day_key: date) -> dict[str, BoostState]:
    """
    Recompute positive/negative boost of every LISTED listing of the warehouse for the day.

    Values are written fresh each tick; nothing from yesterday's boost carries over
    except the listing's permanent positive boost.
    """
    day = normalize_day_key(day_key)
    repo = Repo(s)

    listings = repo.listings.listed_in_warehouse(company_id, warehouse_id)
    if not listings:
        return {}

    wh_campaigns = repo.campaigns.active_for_day(models.WarehouseMarketingCampaign, company_id, warehouse_id, day)
    by_l2 = _group(
        repo.campaigns.active_for_day(models.CategoryMarketingCampaign, company_id, warehouse_id, day), "category_id"
    )
    by_listing = _group(
        repo.campaigns.active_for_day(models.ProductMarketingCampaign, company_id, warehouse_id, day), "listing_id"
    )

    l3_ids = sorted({l.template.category_l3_id for l in listings if l.template is not None})
    l3_to_l2 = repo.catalog.l3_to_l2(l3_ids) if by_l2 else {}

    out: dict[str, BoostState] = {}
    for listing in listings:
        l3 = listing.template.category_l3_id if listing.template is not None else None
        state = compose_boost(
            listing_id=listing.listing_id,
            permanent_positive_pct=listing.permanent_positive_boost_pct,
            l2_id=l3_to_l2.get(l3) if l3 else None,
            warehouse_campaigns=wh_campaigns,
            campaigns_by_l2=by_l2,
            campaigns_by_listing=by_listing,
        )
        listing.positive_boost_pct = state.positive
        listing.negative_boost_pct = state.negative
        out[listing.listing_id] = state

    s.flush()
    return out


def boost_demand_multiplier(state: BoostState | None) -> float:
    if state is None:
        return 1.0
    return max(0.0, 1.0 + (state.positive - state.negative) / 100.0)
