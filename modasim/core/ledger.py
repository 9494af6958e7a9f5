from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from modasim.core.errors import InsufficientBalanceError, NotFoundError
from modasim.database import models
from modasim.database.repo import Repo
from modasim.utils.money import usd
from modasim.utils.time import normalize_day_key, now_utc, format_day_key

DIRECTIONS = {"IN", "OUT"}
CURRENCIES = {"XP": "balance_xp", "DIAMOND": "balance_diamond"}


@dataclass
class LedgerPostRequest:
    company_id: str
    day_key: date
    direction: str
    amount_usd: Decimal
    category: str
    idempotency_key: str
    scope_type: str = "COMPANY"
    scope_id: str | None = None
    counterparty_type: str = "SYSTEM"
    counterparty_id: str | None = None
    ref_type: str | None = None
    ref_id: str | None = None
    note: str | None = None


@dataclass
class LedgerPostResult:
    entry: models.LedgerEntry
    is_new: bool


@dataclass
class WalletPostRequest:
    player_id: str
    day_key: date
    currency: str
    direction: str
    amount: int
    category: str
    idempotency_key: str
    company_id: str | None = None
    ref_type: str | None = None
    ref_id: str | None = None
    note: str | None = None


@dataclass
class WalletPostResult:
    tx: models.WalletTransaction
    is_new: bool


def _check_direction(direction: str) -> str:
    d = str(direction).upper()
    if d not in DIRECTIONS:
        raise ValueError(f"direction must be IN or OUT, got {direction!r}")
    return d


def post_ledger_entry(s: Session, player_id: str, req: LedgerPostRequest) -> LedgerPostResult:
    """
    Idempotent USD posting.

    - one LedgerEntry per idempotency_key, ever
    - the wallet balance moves exactly once, atomically (balance = balance +/- amount)
    - an existing key returns the stored row untouched (is_new=False)
    - USD may go negative: system obligations (payroll, rent) are always posted
    """
    direction = _check_direction(req.direction)
    amount = usd(req.amount_usd)
    if amount <= 0:
        raise ValueError("amount_usd must be > 0")

    repo = Repo(s)
    existing = repo.ledger.get_by_key(req.idempotency_key)
    if existing is not None:
        _duplicate_event(repo, req, player_id)
        return LedgerPostResult(entry=existing, is_new=False)

    wallet = s.get(models.Wallet, player_id)
    if wallet is None:
        raise NotFoundError(f"wallet_not_found:{player_id}")

    entry = models.LedgerEntry(
        company_id=req.company_id,
        day_key=normalize_day_key(req.day_key),
        direction=direction,
        amount_usd=amount,
        category=req.category.upper(),
        scope_type=req.scope_type,
        scope_id=req.scope_id,
        counterparty_type=req.counterparty_type,
        counterparty_id=req.counterparty_id,
        ref_type=req.ref_type,
        ref_id=req.ref_id,
        idempotency_key=req.idempotency_key,
        note=req.note,
        created_at=now_utc(),
    )
    delta = amount if direction == "IN" else -amount

    try:
        with s.begin_nested():
            s.add(entry)
            s.flush()
            s.execute(
                update(models.Wallet)
                .where(models.Wallet.player_id == player_id)
                .values(balance_usd=models.Wallet.balance_usd + delta, updated_at=now_utc())
                .execution_options(synchronize_session=False)
            )
    except IntegrityError:
        # lost the race on the unique key: someone else posted it, balance already moved once
        existing = repo.ledger.get_by_key(req.idempotency_key)
        if existing is None:
            raise
        _duplicate_event(repo, req, player_id)
        return LedgerPostResult(entry=existing, is_new=False)

    s.expire(wallet)

    repo.system_events.write_event(
        event_type="LEDGER_POSTED",
        correlation_id=req.idempotency_key[:64],
        severity="INFO",
        company_id=req.company_id,
        payload={
            "player_id": player_id,
            "idempotency_key": req.idempotency_key,
            "day_key": format_day_key(entry.day_key),
            "direction": direction,
            "amount_usd": str(amount),
            "category": entry.category,
            "ref_type": req.ref_type,
            "ref_id": req.ref_id,
        },
    )
    return LedgerPostResult(entry=entry, is_new=True)


def _duplicate_event(repo: Repo, req: LedgerPostRequest, player_id: str) -> None:
    repo.system_events.write_event(
        event_type="LEDGER_DUPLICATE_IGNORED",
        correlation_id=req.idempotency_key[:64],
        severity="INFO",
        company_id=req.company_id,
        payload={"player_id": player_id, "idempotency_key": req.idempotency_key},
    )


def post_wallet_transaction(s: Session, req: WalletPostRequest) -> WalletPostResult:
    """Same contract as post_ledger_entry for XP / DIAMOND, except debits may not overdraw."""
    direction = _check_direction(req.direction)
    currency = str(req.currency).upper()
    column_name = CURRENCIES.get(currency)
    if column_name is None:
        raise ValueError(f"unsupported currency {req.currency!r}")
    amount = int(req.amount)
    if amount <= 0:
        raise ValueError("amount must be > 0")

    repo = Repo(s)
    existing = repo.ledger.wallet_tx_by_key(req.idempotency_key)
    if existing is not None:
        return WalletPostResult(tx=existing, is_new=False)

    wallet = s.get(models.Wallet, req.player_id)
    if wallet is None:
        raise NotFoundError(f"wallet_not_found:{req.player_id}")

    tx = models.WalletTransaction(
        player_id=req.player_id,
        company_id=req.company_id,
        day_key=normalize_day_key(req.day_key),
        currency=currency,
        direction=direction,
        amount=amount,
        category=req.category.upper(),
        ref_type=req.ref_type,
        ref_id=req.ref_id,
        idempotency_key=req.idempotency_key,
        note=req.note,
        created_at=now_utc(),
    )
    column = getattr(models.Wallet, column_name)

    try:
        with s.begin_nested():
            s.add(tx)
            s.flush()
            stmt = update(models.Wallet).where(models.Wallet.player_id == req.player_id)
            if direction == "OUT":
                stmt = stmt.where(column >= amount).values({column_name: column - amount, "updated_at": now_utc()})
            else:
                stmt = stmt.values({column_name: column + amount, "updated_at": now_utc()})
            res = s.execute(stmt.execution_options(synchronize_session=False))
            if res.rowcount != 1:
                # leaving the block with an exception rolls the savepoint (and the tx row) back
                raise InsufficientBalanceError(f"{currency}:{req.player_id}")
    except IntegrityError:
        existing = repo.ledger.wallet_tx_by_key(req.idempotency_key)
        if existing is None:
            raise
        return WalletPostResult(tx=existing, is_new=False)

    s.expire(wallet)
    return WalletPostResult(tx=tx, is_new=True)
