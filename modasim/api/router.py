from __future__ import annotations

from fastapi import APIRouter, Header, HTTPException, Query

from modasim.core.errors import ConcurrentAdvanceError, NotFoundError
from modasim.core.game_clock import get_or_create_clock
from modasim.core.marketing_cost import pricing_preview
from modasim.core.orchestrator import run_advance_day
from modasim.database import models
from modasim.database.engine import SessionLocal
from modasim.database.repo import Repo
from modasim.utils.time import format_day_key, now_utc


router = APIRouter()


def _company_id(x_company_id: str | None) -> str:
    # Resolved upstream by the session layer; we only check it is present.
    cid = (x_company_id or "").strip()
    if not cid:
        raise HTTPException(status_code=400, detail="X-Company-Id header is required")
    return cid


def _require_company(s, company_id: str) -> models.Company:
    company = Repo(s).companies.get(company_id)
    if company is None:
        raise HTTPException(status_code=404, detail="company_not_found")
    return company


@router.get("/health")
def health() -> dict:
    return {"ok": True, "time": now_utc().isoformat()}


@router.post("/player/advance-day")
def advance_day(
    x_company_id: str | None = Header(default=None),
    expected_version: int | None = Query(default=None, alias="expectedVersion"),
) -> dict:
    company_id = _company_id(x_company_id)
    try:
        res = run_advance_day(company_id, expected_version=expected_version)
    except ConcurrentAdvanceError:
        # the advancing transaction rolled back; record the conflict on its own
        with SessionLocal() as s:
            Repo(s).system_events.write_event(
                event_type=ConcurrentAdvanceError.code,
                correlation_id=company_id,
                severity="WARN",
                company_id=company_id,
                payload={"expected_version": expected_version},
            )
            s.commit()
        raise HTTPException(status_code=409, detail=ConcurrentAdvanceError.code)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="company_not_found")
    return {"ok": True, **res.as_dict()}


@router.get("/player/game-clock")
def game_clock(x_company_id: str | None = Header(default=None)) -> dict:
    company_id = _company_id(x_company_id)
    with SessionLocal() as s:
        _require_company(s, company_id)
        clock = get_or_create_clock(s, company_id)
        out = {
            "companyId": company_id,
            "currentDayKey": format_day_key(clock.current_day_key),
            "version": int(clock.version),
            "lastAdvancedAt": clock.last_advanced_at.isoformat() if clock.last_advanced_at else None,
        }
        # lazily created clock must survive the request
        s.commit()
        return out


@router.get("/player/marketing-pricing-preview")
def marketing_pricing_preview(
    scope: str = Query(...),
    warehouse_id: str | None = Query(default=None, alias="warehouseId"),
    category_id: str | None = Query(default=None, alias="categoryId"),
    listing_id: str | None = Query(default=None, alias="listingId"),
    package_id: str | None = Query(default=None, alias="packageId"),
    x_company_id: str | None = Header(default=None),
) -> dict:
    company_id = _company_id(x_company_id)
    with SessionLocal() as s:
        _require_company(s, company_id)
        if warehouse_id:
            wh = s.get(models.CompanyBuilding, warehouse_id)
            if wh is None or wh.company_id != company_id or wh.role != "WAREHOUSE":
                raise HTTPException(status_code=404, detail="warehouse_not_found")
        try:
            preview = pricing_preview(
                s,
                company_id,
                scope,
                warehouse_id=warehouse_id,
                category_id=category_id,
                listing_id=listing_id,
                package_id=package_id,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return preview.as_dict()


@router.get("/player/wallet")
def wallet(x_company_id: str | None = Header(default=None)) -> dict:
    company_id = _company_id(x_company_id)
    with SessionLocal() as s:
        company = _require_company(s, company_id)
        w = s.get(models.Wallet, company.player_id)
        if w is None:
            raise HTTPException(status_code=404, detail="wallet_not_found")
        return {
            "playerId": w.player_id,
            "balanceUsd": f"{w.balance_usd:.2f}",
            "balanceXp": int(w.balance_xp),
            "balanceDiamond": int(w.balance_diamond),
        }


@router.get("/player/messages")
def messages(
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    limit: int = Query(default=50, ge=1, le=200),
    x_company_id: str | None = Header(default=None),
) -> dict:
    company_id = _company_id(x_company_id)
    with SessionLocal() as s:
        company = _require_company(s, company_id)
        rows = Repo(s).messages.list_for_player(company.player_id, unread_only=unread_only, limit=limit)
        return {
            "messages": [
                {
                    "id": m.id,
                    "category": m.category,
                    "department": m.department,
                    "level": m.level,
                    "kind": m.kind,
                    "title": m.title,
                    "body": m.body,
                    "context": m.context or {},
                    "ctaType": m.cta_type,
                    "ctaLabel": m.cta_label,
                    "ctaPayload": m.cta_payload,
                    "dedupeKey": m.dedupe_key,
                    "readAt": m.read_at.isoformat() if m.read_at else None,
                    "createdAt": m.created_at.isoformat() if m.created_at else None,
                }
                for m in rows
            ]
        }
