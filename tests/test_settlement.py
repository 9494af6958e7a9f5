from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from modasim.core.settlement import build_and_post_settlement, payout_period, return_rate
from modasim.database import models


@pytest.mark.parametrize(
    "day,days,expected",
    [
        (date(2025, 10, 20), [5, 20], (date(2025, 10, 5), date(2025, 10, 19))),
        (date(2025, 10, 5), [5, 20], (date(2025, 9, 20), date(2025, 10, 4))),
        (date(2025, 1, 5), [5, 20], (date(2024, 12, 20), date(2025, 1, 4))),
        (date(2025, 10, 10), [10], (date(2025, 9, 10), date(2025, 10, 9))),
        (date(2025, 3, 1), [1, 31], (date(2025, 2, 28), date(2025, 2, 28))),
    ],
)
def test_payout_period(day, days, expected):
    assert payout_period(day, days) == expected


def test_not_a_payout_day():
    assert payout_period(date(2025, 10, 6), [5, 20]) is None


def test_return_rate_is_deterministic_and_bounded():
    r = return_rate("STL:TPL1", 0.02, 0.05)
    assert r == return_rate("STL:TPL1", 0.02, 0.05)
    assert 0.02 <= r < 0.05


def _ledger(s):
    return s.execute(select(models.LedgerEntry).order_by(models.LedgerEntry.id.asc())).scalars().all()


def test_settlement_posts_gross_and_fees(s, world):
    world.add_order(date(2025, 10, 6), [(world.template_id, 12, 10, "20.00")])
    # outside the period: not settled here
    world.add_order(date(2025, 10, 20), [(world.template_id, 5, 5, "20.00")])

    res = build_and_post_settlement(s, world.company_id, world.warehouse_id, date(2025, 10, 20))

    assert res is not None and res.is_new is True
    # gross 200, commission 10% = 20, logistics 1.20 * 10 = 12, returns ceil(10 * [2%..5%]) = 1 unit = 20
    assert res.total_net_usd == Decimal("148.00")

    st = s.get(models.Settlement, res.settlement_id)
    assert (st.period_start_day_key, st.period_end_day_key) == (date(2025, 10, 5), date(2025, 10, 19))
    assert len(st.lines) == 1
    line = st.lines[0]
    assert line.fulfilled_qty == 10
    assert line.return_qty == 1
    assert line.tier_snapshot == 1
    assert line.shipping_profile_snapshot == "MEDIUM"

    entries = {e.idempotency_key: e for e in _ledger(s)}
    sid = res.settlement_id
    assert entries[f"SETTLEMENT:GROSS:{sid}"].direction == "IN"
    assert entries[f"SETTLEMENT:GROSS:{sid}"].amount_usd == Decimal("200.00")
    assert entries[f"SETTLEMENT:COMMISSION:{sid}"].amount_usd == Decimal("20.00")
    assert entries[f"SETTLEMENT:LOGISTICS:{sid}"].amount_usd == Decimal("12.00")
    assert entries[f"SETTLEMENT:RETURNS:{sid}"].amount_usd == Decimal("20.00")
    assert world.wallet().balance_usd == Decimal("1148.00")


def test_settlement_is_idempotent(s, world):
    world.add_order(date(2025, 10, 6), [(world.template_id, 10, 10, "20.00")])
    first = build_and_post_settlement(s, world.company_id, world.warehouse_id, date(2025, 10, 20))
    second = build_and_post_settlement(s, world.company_id, world.warehouse_id, date(2025, 10, 20))

    assert second.is_new is False
    assert second.settlement_id == first.settlement_id
    assert second.total_net_usd == first.total_net_usd
    assert len(_ledger(s)) == 4


def test_fee_configs_override_defaults(s, world):
    s.add(
        models.PlatformFeeLevelConfig(
            level_min=1,
            level_max=3,
            commission_rate=Decimal("0.05"),
            logistics_multiplier=Decimal("2"),
            return_rate_min=0.0,
            return_rate_max=0.0,
            is_active=True,
        )
    )
    s.add(models.ShippingProfileFeeConfig(shipping_profile="MEDIUM", base_unit_fee_usd=Decimal("0.50"), is_active=True))
    world.add_order(date(2025, 10, 6), [(world.template_id, 10, 10, "20.00")])

    res = build_and_post_settlement(s, world.company_id, world.warehouse_id, date(2025, 10, 20))

    # 200 - 10 (5%) - 10 (0.50 * 2 * 10) - 0 returns
    assert res.total_net_usd == Decimal("180.00")
    keys = {e.idempotency_key.split(":")[1] for e in _ledger(s)}
    assert keys == {"GROSS", "COMMISSION", "LOGISTICS"}


def test_empty_period_returns_none(s, world):
    world.add_order(date(2025, 10, 6), [(world.template_id, 10, 0, "20.00")])
    assert build_and_post_settlement(s, world.company_id, world.warehouse_id, date(2025, 10, 20)) is None
    assert _ledger(s) == []


def test_non_payout_day_returns_none(s, world):
    world.add_order(date(2025, 10, 6), [(world.template_id, 10, 10, "20.00")])
    assert build_and_post_settlement(s, world.company_id, world.warehouse_id, date(2025, 10, 21)) is None
