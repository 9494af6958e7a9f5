from __future__ import annotations

import math

from sqlalchemy.orm import Session

from modasim.database import models
from modasim.database.repo import Repo

# (upper bound of price index, demand multiplier); checked in order, first match wins.
PRICE_CURVE: tuple[tuple[float, float], ...] = (
    (0.70, 1.30),
    (0.80, 1.20),
    (0.90, 1.10),
    (1.05, 1.00),
    (1.10, 0.85),
    (1.15, 0.60),
)
# Above the last bound nobody buys.
OVERPRICED_MULTIPLIER = 0.0


def _finite_positive(x) -> float | None:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v) or v <= 0:
        return None
    return v


def price_index(sale_price, suggested_sale_price, market_zone_multiplier=1.0) -> float:
    """
    sale_price / (suggested_sale_price * market_zone_multiplier).

    A missing zone multiplier counts as 1.0. Bad inputs (missing suggested price,
    non-positive or non-finite normal price, non-finite index) resolve to 1.0.
    """
    suggested = _finite_positive(suggested_sale_price)
    if suggested is None:
        return 1.0
    try:
        zone = 1.0 if market_zone_multiplier is None else float(market_zone_multiplier)
    except (TypeError, ValueError):
        return 1.0
    normal_price = suggested * zone
    if not math.isfinite(normal_price) or normal_price <= 0:
        return 1.0
    try:
        idx = float(sale_price) / normal_price
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(idx):
        return 1.0
    return idx


def price_multiplier(index: float) -> float:
    try:
        idx = float(index)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(idx):
        return 1.0
    for upper, mult in PRICE_CURVE:
        if idx <= upper:
            return mult
    return OVERPRICED_MULTIPLIER


def market_zone_multiplier(s: Session, market_zone: str | None) -> float:
    """Stored value as-is (price_index rejects unusable ones); 1.0 when the zone has no row."""
    m = Repo(s).catalog.market_zone_multiplier(market_zone)
    return 1.0 if m is None else m


def listing_price_multiplier(s: Session, listing: models.Listing, template: models.ProductTemplate | None = None) -> float:
    tpl = template or listing.template
    if tpl is None:
        return 1.0
    zone = market_zone_multiplier(s, listing.market_zone)
    return price_multiplier(price_index(listing.sale_price, tpl.suggested_sale_price, zone))
