"""
Eligibility rules for both burn paths. Pure functions over records.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List

from burnkeeper.core.models import Milestone


@dataclass
class EligibilityEvaluator:
    reward_threshold: float = 0.5

    def eligible_milestones(self, valuation: float, milestones: Iterable[Milestone]) -> List[Milestone]:
        """Uncompleted milestones whose threshold is met, lowest threshold first."""
        ready = [
            m for m in milestones
            if not m.completed and m.valuation_threshold <= valuation
        ]
        return sorted(ready, key=lambda m: m.valuation_threshold)

    def reward_cycle_eligible(self, pool_balance: float) -> bool:
        return pool_balance >= self.reward_threshold

    def milestone_progress(self, valuation: float, milestones: Iterable[Milestone]) -> List[Dict[str, Any]]:
        rows = []
        for m in sorted(milestones, key=lambda m: m.valuation_threshold):
            row = m.to_dict()
            row["eligible"] = not m.completed and m.valuation_threshold <= valuation
            row["progress_pct"] = min(100.0, round(valuation / m.valuation_threshold * 100, 2))
            rows.append(row)
        return rows
