from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from modasim.config import settings
from modasim.database.repo import Repo
from modasim.utils.crypto import seeded_unit_float
from modasim.utils.time import format_day_key

# Reserved for seasonal / hemisphere factors.
POTENTIAL_MULTIPLIER = 1.0


@dataclass(frozen=True)
class DemandSeed:
    """Makes jitter deterministic per (company, warehouse, day, template)."""

    company_id: str
    warehouse_id: str
    day_key: date

    def for_template(self, template_id: str) -> str:
        return f"{self.company_id}:{self.warehouse_id}:{format_day_key(self.day_key)}:{template_id}"


@dataclass
class DemandResult:
    desired_qty: int
    band_matched: bool
    resolved_band_category_id: str | None
    base_units: float


def round_half_away(x: float) -> int:
    return int(math.floor(abs(x) + 0.5)) * (1 if x >= 0 else -1)


def jitter(value: float, template_id: str, seed: DemandSeed | None = None) -> float:
    """Uniform in [-f*value, +f*value]."""
    span = value * float(settings.DEMAND_JITTER_FRACTION)
    if seed is not None:
        t = seeded_unit_float(seed.for_template(template_id))
    else:
        t = random.random()
    return (t * 2.0 - 1.0) * span


def apply_test_multiplier(qty: int) -> int:
    mult = settings.test_demand_multiplier()
    if mult is None:
        return qty
    return round_half_away(qty * mult)


def desired_qty_with_meta(
    s: Session,
    product_template_id: str,
    tier: int,
    price_multiplier: float = 1.0,
    seed: DemandSeed | None = None,
) -> DemandResult:
    repo = Repo(s)
    tpl = repo.catalog.template(product_template_id)
    if tpl is None:
        return DemandResult(desired_qty=0, band_matched=False, resolved_band_category_id=None, base_units=0.0)

    band = repo.catalog.find_band(tpl.category_l3_id, tpl.quality, tier)
    resolved = tpl.category_l3_id if band is not None else None
    if band is None:
        parent = repo.catalog.parent_l2_of(tpl.category_l3_id)
        if parent:
            band = repo.catalog.find_band(parent, tpl.quality, tier)
            if band is not None:
                resolved = parent

    if band is None:
        # never fully starve a product without a band
        base = float(settings.DEMAND_BASELINE_UNITS)
    elif band.expected_mode is not None:
        base = float(band.expected_mode)
    else:
        base = float(round_half_away((int(band.min_daily) + int(band.max_daily)) / 2.0))

    try:
        pm = float(price_multiplier)
    except (TypeError, ValueError):
        pm = 1.0
    if not math.isfinite(pm) or pm < 0:
        pm = 1.0

    value = base * POTENTIAL_MULTIPLIER * pm
    value = value + jitter(value, product_template_id, seed)
    qty = max(0, round_half_away(value))

    return DemandResult(
        desired_qty=apply_test_multiplier(qty),
        band_matched=band is not None,
        resolved_band_category_id=resolved,
        base_units=base,
    )


def desired_qty(
    s: Session,
    product_template_id: str,
    tier: int,
    price_multiplier: float = 1.0,
    seed: DemandSeed | None = None,
) -> int:
    return desired_qty_with_meta(s, product_template_id, tier, price_multiplier, seed).desired_qty
