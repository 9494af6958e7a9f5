from __future__ import annotations

from datetime import date

from modasim.utils.crypto import sha256_hex
from modasim.utils.time import cycle_key, format_day_key


def deterministic_id(prefix: str, material: str) -> str:
    return sha256_hex(f"{prefix}|{material}".encode("utf-8"))


def scheduled_cost_key(category: str, company_id: str, day: date) -> str:
    # One posting per (category, company, month). This IS the dedupe boundary.
    return f"{category.upper()}:{company_id}:{cycle_key(day)}"


def settlement_id(company_id: str, warehouse_id: str, period_start: date, period_end: date) -> str:
    material = f"{company_id}|{warehouse_id}|{format_day_key(period_start)}|{format_day_key(period_end)}"
    return deterministic_id("STL", material)[:32]


def settlement_entry_key(kind: str, settlement_id_: str) -> str:
    return f"SETTLEMENT:{kind.upper()}:{settlement_id_}"


def backlog_warning_key(company_id: str, warehouse_id: str, day: date) -> str:
    return f"BACKLOG_WARNING:{company_id}:{warehouse_id}:{format_day_key(day)}"


def finance_costs_message_key(company_id: str, day: date) -> str:
    return f"FINANCE_COSTS_MESSAGE:{company_id}:{cycle_key(day)}:{day.day}"


def campaign_end_key(campaign_id: str) -> str:
    return f"MKT_CAMPAIGN_END:{campaign_id}"
