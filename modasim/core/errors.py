from __future__ import annotations


class SimError(Exception):
    """Base for simulation errors. `code` is stable and goes to the HTTP detail."""

    code = "SIM_ERROR"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code)


class ConcurrentAdvanceError(SimError):
    code = "ADVANCE_DAY_CONCURRENT"


class NotFoundError(SimError):
    code = "NOT_FOUND"


class InsufficientBalanceError(SimError):
    code = "INSUFFICIENT_BALANCE"
