from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from modasim.database import models
from modasim.database.repo import Repo
from modasim.utils.money import usd, to_decimal

SCOPES = ("WAREHOUSE", "CATEGORY", "PRODUCT")
DEFAULT_MULTIPLIER = Decimal("1.000")
MULT_Q = Decimal("0.001")


@dataclass
class PricingPreview:
    scope: str
    sku_count: int
    multiplier: Decimal
    base_price: Decimal
    total_price: Decimal

    def as_dict(self) -> dict:
        return {
            "scope": self.scope,
            "skuCount": self.sku_count,
            "multiplier": str(self.multiplier),
            "basePrice": str(self.base_price),
            "totalPrice": str(self.total_price),
        }


def warehouse_sku_count(s: Session, company_id: str, warehouse_id: str) -> int:
    return int(
        s.execute(
            select(func.count())
            .select_from(models.Listing)
            .where(
                models.Listing.company_id == company_id,
                models.Listing.warehouse_id == warehouse_id,
                models.Listing.status == "LISTED",
            )
        ).scalar_one()
    )


def category_sku_count(s: Session, company_id: str, warehouse_id: str, category_l2_id: str) -> int:
    """LISTED listings whose template's L3 category hangs under the given L2."""
    listings = Repo(s).listings.listed_in_warehouse(company_id, warehouse_id)
    l3_ids = sorted({l.template.category_l3_id for l in listings if l.template is not None})
    l3_to_l2 = Repo(s).catalog.l3_to_l2(l3_ids)
    n = 0
    for l in listings:
        if l.template is not None and l3_to_l2.get(l.template.category_l3_id) == category_l2_id:
            n += 1
    return n


def pricing_multiplier(s: Session, scope: str, sku_count: int) -> Decimal:
    """Tightest matching rule wins: smallest max_sku, open-ended rules last, then sort_index."""
    rule = (
        s.execute(
            select(models.MarketingPricingRule)
            .where(
                models.MarketingPricingRule.scope == scope,
                models.MarketingPricingRule.is_active.is_(True),
                models.MarketingPricingRule.min_sku <= int(sku_count),
                or_(
                    models.MarketingPricingRule.max_sku.is_(None),
                    models.MarketingPricingRule.max_sku >= int(sku_count),
                ),
            )
            .order_by(
                models.MarketingPricingRule.max_sku.is_(None).asc(),
                models.MarketingPricingRule.max_sku.asc(),
                models.MarketingPricingRule.sort_index.asc(),
                models.MarketingPricingRule.id.asc(),
            )
            .limit(1)
        )
        .scalars()
        .first()
    )
    if rule is None or rule.multiplier is None:
        return DEFAULT_MULTIPLIER
    return to_decimal(rule.multiplier).quantize(MULT_Q)


def package_price(s: Session, package_id: str | None, scope: str) -> Decimal | None:
    if not package_id:
        return None
    pkg = s.get(models.MarketingPackage, package_id)
    if pkg is None or not pkg.is_active or pkg.scope != scope:
        return None
    return usd(pkg.price_usd)


def pricing_preview(
    s: Session,
    company_id: str,
    scope: str,
    warehouse_id: str | None = None,
    category_id: str | None = None,
    listing_id: str | None = None,
    package_id: str | None = None,
) -> PricingPreview:
    """
    What a marketing purchase would cost right now. Read-only.

    An unknown or inactive package previews as price 0.
    """
    scope = (scope or "").upper()
    if scope not in SCOPES:
        raise ValueError("scope must be WAREHOUSE, CATEGORY or PRODUCT")

    if scope == "WAREHOUSE":
        if not warehouse_id:
            raise ValueError("warehouseId is required for WAREHOUSE scope")
        sku = warehouse_sku_count(s, company_id, warehouse_id)
        mult = pricing_multiplier(s, scope, sku)
    elif scope == "CATEGORY":
        if not warehouse_id or not category_id:
            raise ValueError("warehouseId and categoryId are required for CATEGORY scope")
        sku = category_sku_count(s, company_id, warehouse_id, category_id)
        mult = pricing_multiplier(s, scope, sku)
    else:
        # listing_id is display-only; a product campaign always prices one SKU
        sku = 1
        mult = DEFAULT_MULTIPLIER

    base = package_price(s, package_id, scope)
    if base is None:
        return PricingPreview(scope=scope, sku_count=sku, multiplier=mult, base_price=usd(0), total_price=usd(0))
    return PricingPreview(scope=scope, sku_count=sku, multiplier=mult, base_price=base, total_price=usd(base * mult))
