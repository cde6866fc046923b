"""
Fast JSON utilities for structured logs and record files.

Uses orjson (3-10x faster than stdlib json) for event payloads, journal
lines and collection files.

Usage:
    from burnkeeper.core.json_utils import dumps, loads

    log.info(dumps({"event": "burn_submitted", "amount": 1000.0}))
"""

from __future__ import annotations

from typing import Any

import orjson


def dumps(obj: Any) -> str:
    """Fast JSON encode to string."""
    return orjson.dumps(obj, default=str).decode("utf-8")


def dumps_pretty(obj: Any) -> str:
    """Indented JSON for files an operator may open by hand."""
    return orjson.dumps(obj, default=str, option=orjson.OPT_INDENT_2).decode("utf-8")


def dumps_bytes(obj: Any) -> bytes:
    """Fast JSON encode to bytes (skip utf-8 decode)."""
    return orjson.dumps(obj, default=str)


def loads(s: str | bytes) -> Any:
    """Fast JSON decode."""
    return orjson.loads(s)


# orjson raises its own error type; callers catch this alias
JSONDecodeError = orjson.JSONDecodeError
