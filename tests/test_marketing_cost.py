from decimal import Decimal

import pytest

from modasim.core.marketing_cost import category_sku_count, pricing_multiplier, pricing_preview
from modasim.database import models


def _rule(s, scope, min_sku, max_sku, mult, sort_index=0, active=True):
    s.add(
        models.MarketingPricingRule(
            scope=scope,
            min_sku=min_sku,
            max_sku=max_sku,
            multiplier=Decimal(mult),
            sort_index=sort_index,
            is_active=active,
        )
    )
    s.flush()


def _package(s, package_id="PKG_W", scope="WAREHOUSE", price="100.00", active=True):
    s.add(
        models.MarketingPackage(
            package_id=package_id, scope=scope, key=package_id, title=package_id, price_usd=Decimal(price), is_active=active
        )
    )
    s.flush()


def test_tightest_rule_wins(s, world):
    _rule(s, "WAREHOUSE", 0, None, "3.000")
    _rule(s, "WAREHOUSE", 0, 10, "1.500")
    _rule(s, "WAREHOUSE", 0, 5, "1.250")
    _rule(s, "WAREHOUSE", 0, 5, "9.000", active=False)

    assert pricing_multiplier(s, "WAREHOUSE", 3) == Decimal("1.250")
    assert pricing_multiplier(s, "WAREHOUSE", 7) == Decimal("1.500")
    assert pricing_multiplier(s, "WAREHOUSE", 50) == Decimal("3.000")
    assert pricing_multiplier(s, "CATEGORY", 3) == Decimal("1.000")


def test_warehouse_preview(s, world):
    world.add_listing("LST2", world.template_id)
    _rule(s, "WAREHOUSE", 2, 4, "1.250")
    _package(s)

    p = pricing_preview(s, world.company_id, "warehouse", warehouse_id=world.warehouse_id, package_id="PKG_W")

    assert p.sku_count == 2
    assert p.total_price == Decimal("125.00")
    assert p.as_dict() == {
        "scope": "WAREHOUSE",
        "skuCount": 2,
        "multiplier": "1.250",
        "basePrice": "100.00",
        "totalPrice": "125.00",
    }


def test_category_sku_count_only_counts_children(s, world):
    s.add(models.CategoryNode(category_id="CAT_L2B", level="L2", parent_id="CAT_L1", name="Bottoms"))
    s.add(models.CategoryNode(category_id="CAT_L3B", level="L3", parent_id="CAT_L2B", name="Jeans"))
    s.flush()
    world.add_template("TPL2", "CAT_L3B")
    world.add_listing("LST2", "TPL2")

    assert category_sku_count(s, world.company_id, world.warehouse_id, world.l2_id) == 1
    assert category_sku_count(s, world.company_id, world.warehouse_id, "CAT_L2B") == 1


def test_product_preview_prices_one_sku(s, world):
    _package(s, "PKG_P", scope="PRODUCT", price="20.00")
    p = pricing_preview(s, world.company_id, "PRODUCT", listing_id=world.listing_id, package_id="PKG_P")
    assert (p.sku_count, p.multiplier, p.total_price) == (1, Decimal("1.000"), Decimal("20.00"))


def test_unknown_or_mismatched_package_is_free(s, world):
    _package(s, "PKG_P", scope="PRODUCT")
    p = pricing_preview(s, world.company_id, "WAREHOUSE", warehouse_id=world.warehouse_id, package_id="PKG_P")
    assert p.base_price == Decimal("0.00")
    assert p.total_price == Decimal("0.00")


@pytest.mark.parametrize(
    "scope,kwargs",
    [
        ("GLOBAL", {"warehouse_id": "W1"}),
        ("WAREHOUSE", {}),
        ("CATEGORY", {"warehouse_id": "W1"}),
    ],
)
def test_bad_requests(s, world, scope, kwargs):
    with pytest.raises(ValueError):
        pricing_preview(s, world.company_id, scope, **kwargs)
