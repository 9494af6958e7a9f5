import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from modasim.core import orchestrator
from modasim.core.errors import ConcurrentAdvanceError, NotFoundError
from modasim.core.orchestrator import run_advance_day
from modasim.database import models
from modasim.database.engine import SessionLocal
from modasim.database.repo import GameClockRepo


def _clock(s, world) -> models.GameClock:
    s.expire_all()
    return s.get(models.GameClock, world.company_id)


def _events(s, event_type):
    return s.execute(select(models.SystemEvent).where(models.SystemEvent.event_type == event_type)).scalars().all()


def test_advance_moves_day_and_version(s, world):
    world.set_day(date(2025, 10, 6), version=3)
    s.commit()

    res = run_advance_day(world.company_id)

    assert res.previous_day_key == date(2025, 10, 6)
    assert res.new_day_key == date(2025, 10, 7)
    assert res.version == 4
    assert res.warehouses_ticked == 1
    assert res.as_dict()["newDayKey"] == "2025-10-07"

    clock = _clock(s, world)
    assert clock.current_day_key == date(2025, 10, 7)
    assert clock.version == 4
    assert clock.last_advanced_at is not None
    assert len(_events(s, "DAY_ADVANCED")) == 1


def test_clock_is_created_lazily(s, world):
    res = run_advance_day(world.company_id)
    assert res.previous_day_key == date(2025, 9, 10)
    assert res.version == 1


def test_stale_version_is_rejected(s, world):
    world.set_day(date(2025, 10, 6), version=3)
    s.commit()

    with pytest.raises(ConcurrentAdvanceError):
        run_advance_day(world.company_id, expected_version=2)

    clock = _clock(s, world)
    assert clock.version == 3
    assert clock.current_day_key == date(2025, 10, 6)
    assert s.execute(select(models.DailyOrder)).first() is None


def test_second_advance_with_same_observed_version_conflicts(s, world):
    world.set_day(date(2025, 10, 6), version=0)
    s.commit()
    observed = _clock(s, world).version
    s.commit()

    run_advance_day(world.company_id, expected_version=observed)
    with pytest.raises(ConcurrentAdvanceError):
        run_advance_day(world.company_id, expected_version=observed)

    assert _clock(s, world).version == observed + 1


def test_unknown_company(s, world):
    with pytest.raises(NotFoundError):
        run_advance_day("NOPE")


def test_tick_creates_order_and_ships(s, world):
    world.add_band(world.l2_id, expected_mode=3)
    world.set_day(date(2025, 10, 6))
    s.commit()

    run_advance_day(world.company_id)

    s.expire_all()
    order = s.execute(select(models.DailyOrder)).scalars().one()
    assert order.day_key == date(2025, 10, 7)
    (item,) = order.items
    assert (item.qty_ordered, item.qty_fulfilled) == (3, 3)
    inv = s.get(models.InventoryItem, {"building_id": world.warehouse_id, "template_id": world.template_id})
    assert inv.qty_on_hand == 47


def test_payroll_day_posts_costs_and_finance_message(s, world):
    world.set_day(date(2025, 9, 30))
    world.add_staff("ST1", "2500.00", hired_on=date(2025, 1, 1))
    s.commit()

    res = run_advance_day(world.company_id)

    assert res.scheduled_costs.payroll_posted is True
    s.expire_all()
    msg = s.execute(
        select(models.PlayerMessage).where(models.PlayerMessage.dedupe_key == "FINANCE_COSTS_MESSAGE:C1:2025-10:1")
    ).scalar_one()
    assert msg.department == "FINANCE"
    assert msg.context["payrollTotalUsd"] == "2500.00"
    assert "Headquarters: $2,500.00" in msg.body
    assert world.wallet().balance_usd == Decimal("-1500.00")


def test_payout_day_runs_settlement(s, world):
    world.set_day(date(2025, 10, 19))
    world.add_order(date(2025, 10, 6), [(world.template_id, 10, 10, "20.00")])
    s.commit()

    res = run_advance_day(world.company_id)

    assert res.new_day_key == date(2025, 10, 20)
    assert res.settlements_run == 1
    assert world.wallet().balance_usd == Decimal("1148.00")


def test_campaign_end_is_applied_the_day_after(s, world):
    world.add_campaign(models.WarehouseMarketingCampaign, "CMP1", date(2025, 10, 1), date(2025, 10, 5), pos=10)
    world.set_day(date(2025, 10, 4))
    s.commit()

    assert run_advance_day(world.company_id).campaigns_ended == 0
    assert run_advance_day(world.company_id).campaigns_ended == 1
    assert run_advance_day(world.company_id).campaigns_ended == 0


def test_failure_rolls_back_everything(s, world, monkeypatch):
    world.set_day(date(2025, 10, 6), version=1)
    s.commit()

    def boom(*args, **kwargs):
        raise RuntimeError("costs unavailable")

    monkeypatch.setattr(orchestrator, "post_scheduled_costs", boom)
    with pytest.raises(RuntimeError):
        run_advance_day(world.company_id)

    clock = _clock(s, world)
    assert clock.version == 1
    assert clock.current_day_key == date(2025, 10, 6)
    assert s.execute(select(models.DailyOrder)).first() is None
    assert _events(s, "WAREHOUSE_TICK") == []


def test_lost_clock_insert_race_reuses_existing_clock(s, world, monkeypatch):
    world.set_day(date(2025, 10, 6), version=5)
    s.commit()
    s.expunge_all()

    real = GameClockRepo.get
    calls = {"n": 0}

    def blind_first_lookup(self, company_id):
        # another request inserted the clock between our lookup and our insert
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real(self, company_id)

    monkeypatch.setattr(GameClockRepo, "get", blind_first_lookup)
    clock = GameClockRepo(s).get_or_create(world.company_id)

    assert clock.version == 5
    assert clock.current_day_key == date(2025, 10, 6)
    assert s.execute(select(func.count()).select_from(models.GameClock)).scalar_one() == 1


def test_concurrent_advances_move_the_clock_once(file_world):
    barrier = threading.Barrier(2)
    outcomes = []
    lock = threading.Lock()

    def advance():
        barrier.wait()
        try:
            res = run_advance_day("C1", expected_version=0)
            outcome = ("ok", res.version)
        except ConcurrentAdvanceError:
            outcome = ("conflict", None)
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=advance) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert sorted(outcomes) == [("conflict", None), ("ok", 1)]
    with SessionLocal() as s:
        clock = s.get(models.GameClock, "C1")
        assert clock.version == 1
        assert clock.current_day_key == date(2025, 10, 7)
        orders = s.execute(select(models.DailyOrder).where(models.DailyOrder.day_key == date(2025, 10, 7))).all()
        assert len(orders) == 1
