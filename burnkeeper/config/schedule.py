"""Milestone burn schedule.

The built-in schedule covers $100k to $100M market cap. An operator may
replace it with a YAML file (env `BURN_SCHEDULE_PATH`) holding a list of
entries:

    - valuation_threshold: 100000
      burn_amount: 50000000
      percent_of_supply: 5.0   # optional
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

# (valuation threshold in USD, tokens burned from the reserve)
_DEFAULT_STEPS = (
    (100_000, 50_000_000),
    (200_000, 25_000_000),
    (300_000, 20_000_000),
    (500_000, 20_000_000),
    (750_000, 15_000_000),
    (1_000_000, 15_000_000),
    (1_500_000, 12_500_000),
    (2_500_000, 12_500_000),
    (3_500_000, 10_000_000),
    (5_000_000, 10_000_000),
    (7_500_000, 10_000_000),
    (10_000_000, 10_000_000),
    (15_000_000, 7_500_000),
    (25_000_000, 7_500_000),
    (35_000_000, 5_000_000),
    (50_000_000, 5_000_000),
    (75_000_000, 7_500_000),
    (90_000_000, 7_500_000),
    (100_000_000, 50_000_000),
)

DEFAULT_SCHEDULE: List[Dict[str, float]] = [
    {"valuation_threshold": float(t), "burn_amount": float(a)} for t, a in _DEFAULT_STEPS
]


def load_schedule(path: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Return the milestone schedule.

    Falls back to DEFAULT_SCHEDULE when no path is given. A path that is set
    but missing or malformed is an error: burning on the wrong schedule is
    worse than not starting.
    """
    if path is None:
        return [dict(e) for e in DEFAULT_SCHEDULE]
    p = Path(path)
    with p.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if isinstance(data, dict):
        data = data.get("milestones")
    if not isinstance(data, list) or not data:
        raise ValueError(f"{path}: expected a non-empty list of milestones")

    schedule: List[Dict[str, Any]] = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"{path}: entry {i} is not a mapping")
        try:
            item: Dict[str, Any] = {
                "valuation_threshold": float(entry["valuation_threshold"]),
                "burn_amount": float(entry["burn_amount"]),
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"{path}: entry {i} is invalid: {exc}") from exc
        if entry.get("percent_of_supply") is not None:
            item["percent_of_supply"] = float(entry["percent_of_supply"])
        if item["burn_amount"] <= 0:
            raise ValueError(f"{path}: entry {i} burn_amount must be > 0")
        schedule.append(item)
    return schedule
