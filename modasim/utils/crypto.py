from __future__ import annotations

import hashlib


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def seeded_unit_float(seed: str) -> float:
    """Deterministic float in [0, 1) from a seed string. Same seed => same result."""
    h = sha256_hex(seed.encode("utf-8"))
    return int(h[:13], 16) / float(16 ** 13)
