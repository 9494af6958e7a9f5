from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from modasim.core.errors import InsufficientBalanceError, NotFoundError
from modasim.core.ledger import (
    LedgerPostRequest,
    WalletPostRequest,
    post_ledger_entry,
    post_wallet_transaction,
)
from modasim.database import models
from modasim.database.repo import LedgerRepo

DAY = date(2025, 10, 1)


def _req(key="TEST:1", amount="12.34", direction="OUT", category="OTHER"):
    return LedgerPostRequest(
        company_id="C1",
        day_key=DAY,
        direction=direction,
        amount_usd=Decimal(amount),
        category=category,
        idempotency_key=key,
    )


def _count(s, model):
    return s.execute(select(func.count()).select_from(model)).scalar_one()


def _events(s, event_type):
    return s.execute(
        select(func.count()).select_from(models.SystemEvent).where(models.SystemEvent.event_type == event_type)
    ).scalar_one()


def test_post_once_moves_balance_once(s, world):
    first = post_ledger_entry(s, "P1", _req())
    second = post_ledger_entry(s, "P1", _req())

    assert first.is_new is True
    assert second.is_new is False
    assert second.entry.id == first.entry.id
    assert _count(s, models.LedgerEntry) == 1
    assert world.wallet().balance_usd == Decimal("987.66")
    assert _events(s, "LEDGER_POSTED") == 1
    assert _events(s, "LEDGER_DUPLICATE_IGNORED") == 1


def test_in_credits_and_out_may_go_negative(s, world):
    post_ledger_entry(s, "P1", _req(key="IN:1", amount="50", direction="IN"))
    post_ledger_entry(s, "P1", _req(key="OUT:1", amount="2000", direction="OUT", category="PAYROLL"))
    assert world.wallet().balance_usd == Decimal("-950.00")


def test_rejects_non_positive_amount(s, world):
    with pytest.raises(ValueError):
        post_ledger_entry(s, "P1", _req(amount="0"))
    with pytest.raises(ValueError):
        post_ledger_entry(s, "P1", _req(amount="-1"))
    assert _count(s, models.LedgerEntry) == 0


def test_rejects_bad_direction(s, world):
    with pytest.raises(ValueError):
        post_ledger_entry(s, "P1", _req(direction="SIDEWAYS"))


def test_missing_wallet_writes_nothing(s, world):
    with pytest.raises(NotFoundError):
        post_ledger_entry(s, "NOBODY", _req())
    assert _count(s, models.LedgerEntry) == 0


def test_lost_insert_race_is_a_noop(s, world, monkeypatch):
    post_ledger_entry(s, "P1", _req())
    s.commit()

    real = LedgerRepo.get_by_key
    calls = {"n": 0}

    def blind_first_lookup(self, key):
        # the concurrent writer committed between our pre-check and our insert
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return real(self, key)

    monkeypatch.setattr(LedgerRepo, "get_by_key", blind_first_lookup)
    res = post_ledger_entry(s, "P1", _req())

    assert res.is_new is False
    assert _count(s, models.LedgerEntry) == 1
    assert world.wallet().balance_usd == Decimal("987.66")


def _xp(key, amount, direction):
    return WalletPostRequest(
        player_id="P1",
        day_key=DAY,
        currency="XP",
        direction=direction,
        amount=amount,
        category="REWARD",
        idempotency_key=key,
        company_id="C1",
    )


def test_wallet_transaction_is_idempotent(s, world):
    assert post_wallet_transaction(s, _xp("XP:1", 10, "IN")).is_new is True
    assert post_wallet_transaction(s, _xp("XP:1", 10, "IN")).is_new is False
    assert world.wallet().balance_xp == 10
    assert _count(s, models.WalletTransaction) == 1


def test_wallet_debit_cannot_overdraw(s, world):
    post_wallet_transaction(s, _xp("XP:1", 10, "IN"))
    with pytest.raises(InsufficientBalanceError):
        post_wallet_transaction(s, _xp("XP:2", 15, "OUT"))
    assert world.wallet().balance_xp == 10
    assert _count(s, models.WalletTransaction) == 1

    post_wallet_transaction(s, _xp("XP:3", 10, "OUT"))
    assert world.wallet().balance_xp == 0


def test_wallet_rejects_unknown_currency(s, world):
    req = _xp("GOLD:1", 1, "IN")
    req.currency = "GOLD"
    with pytest.raises(ValueError):
        post_wallet_transaction(s, req)
