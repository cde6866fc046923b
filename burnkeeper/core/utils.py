"""
Utility helpers.
"""

from __future__ import annotations

import importlib
import math
import secrets
import time
from decimal import ROUND_DOWN, Decimal
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


def new_record_id() -> str:
    return f"{now_ms()}-{secrets.token_hex(4)}"


def to_base_units(amount: float, decimals: int) -> int:
    """
    Convert a human-readable amount to integer base units.

    Goes through Decimal(str(amount)) so 0.1-style binary artefacts never
    round a unit up; remainder below one base unit is dropped.
    """
    if decimals < 0:
        raise ValueError(f"decimals must be >= 0, got {decimals}")
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(raw: int, decimals: int) -> float:
    return float(Decimal(raw) / (Decimal(10) ** decimals))


def floor_amount(amount: float) -> float:
    """Round a token amount down to a whole token."""
    return float(math.floor(amount + 1e-9))


PERCENT_DECIMALS = 4


def percent_of_supply(amount: float, supply: float) -> float:
    return round(amount / supply * 100, PERCENT_DECIMALS)


def dig(data: Any, path: str) -> Any:
    """
    Walk a dotted path through nested dicts/lists: "pairs.0.marketCap".

    Returns None when any segment is missing.
    """
    cur = data
    for part in path.split("."):
        if isinstance(cur, list):
            try:
                cur = cur[int(part)]
            except (ValueError, IndexError):
                return None
        elif isinstance(cur, dict):
            if part not in cur:
                return None
            cur = cur[part]
        else:
            return None
    return cur


def load_object(path: str) -> Any:
    """Import "package.module:attr" and return the attribute."""
    module_name, sep, attr = path.partition(":")
    if not sep or not attr:
        raise ValueError(f"expected 'module:attribute', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)
