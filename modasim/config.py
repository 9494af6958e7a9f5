from __future__ import annotations

from datetime import date

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime / env ---
    ENV: str = "prod"

    # Reverse proxy prefix (e.g. Nginx mounts the API at /modasim/api/*)
    API_ROOT_PATH: str = ""

    # --- Database ---
    DATABASE_URL: str = "sqlite:////app/db/modasim.sqlite3"

    # --- Game clock ---
    # All new companies start on this in-game day (UTC calendar day).
    GAME_START_DAY: date = date(2025, 9, 10)

    # --- Finance schedule defaults (used when a company has no FinanceScheduleConfig row) ---
    DEFAULT_PAYROLL_DAY: int = 1
    DEFAULT_RENT_DAY: int = 15
    DEFAULT_OVERHEAD_DAY: int = 15
    DEFAULT_PAYOUT_DAYS: str = "5,20"

    # --- Demand ---
    DEMAND_JITTER_FRACTION: float = 0.15
    DEMAND_BASELINE_UNITS: int = 1
    # Listing boost (positive - negative) scales tick demand.
    DEMAND_APPLY_MARKETING_BOOST: bool = True

    # TEST ONLY: scales desired quantity for backlog stress runs.
    # Honoured only when SIM_TEST_MODE is on AND ENV is not "prod" AND the value is >= 2.
    SIM_TEST_MODE: bool = False
    SIM_TEST_DEMAND_MULT: int = 0

    # --- Settlement fallbacks (when fee config tables have no matching row) ---
    SETTLEMENT_DEFAULT_COMMISSION_RATE: str = "0.10"
    SETTLEMENT_DEFAULT_LOGISTICS_MULTIPLIER: str = "1"
    SETTLEMENT_DEFAULT_RETURN_RATE_MIN: float = 0.02
    SETTLEMENT_DEFAULT_RETURN_RATE_MAX: float = 0.05
    SETTLEMENT_DEFAULT_UNIT_FEE_USD: str = "1.20"

    # --- Logistics inbox ---
    BACKLOG_CRITICAL_DAYS: float = 3.0

    @field_validator("API_ROOT_PATH", mode="before")
    @classmethod
    def _root_path_strip(cls, v: object) -> str:
        s = "" if v is None else str(v).strip()
        if not s:
            return ""
        # normalize: ensure leading slash, no trailing slash
        if not s.startswith("/"):
            s = "/" + s
        return s.rstrip("/")

    @field_validator("DEFAULT_PAYOUT_DAYS", mode="before")
    @classmethod
    def _coerce_payout_days(cls, v: object) -> str:
        if v is None:
            return "5,20"
        if isinstance(v, (list, tuple)):
            v = ",".join(str(x) for x in v)
        s = str(v).strip()
        return s or "5,20"

    @field_validator("ENV", mode="before")
    @classmethod
    def _coerce_env(cls, v: object) -> str:
        s = "" if v is None else str(v).strip().lower()
        return s or "prod"

    def payout_days(self) -> list[int]:
        days = []
        for x in self.DEFAULT_PAYOUT_DAYS.split(","):
            x = x.strip()
            if x.isdigit() and 1 <= int(x) <= 31:
                days.append(int(x))
        return sorted(set(days))

    def test_demand_multiplier(self) -> int | None:
        if not self.SIM_TEST_MODE or self.ENV == "prod":
            return None
        mult = int(self.SIM_TEST_DEMAND_MULT or 0)
        return mult if mult >= 2 else None


settings = Settings()
