from __future__ import annotations

from sqlalchemy.orm import Session

from modasim.core.errors import NotFoundError
from modasim.database import models
from modasim.database.repo import Repo


def get_or_create_clock(s: Session, company_id: str) -> models.GameClock:
    """One clock per company, created lazily at GAME_START_DAY with version 0."""
    repo = Repo(s)
    if repo.companies.get(company_id) is None:
        raise NotFoundError(f"company_not_found:{company_id}")
    return repo.clock.get_or_create(company_id)
