"""
Read side for the dashboard and the announcement consumer.

The HTTP layer and the social bot are outside this package; they call these
objects and serialize the plain dicts they return.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from burnkeeper.core.errors import ValuationUnavailableError
from burnkeeper.core.json_utils import dumps
from burnkeeper.core.models import Burn, BurnType, RewardStatus
from burnkeeper.execution.eligibility import EligibilityEvaluator
from burnkeeper.metrics.projector import MetricsProjector
from burnkeeper.state.records import LedgerOfRecord

if TYPE_CHECKING:
    from burnkeeper.market.valuation import ValuationFeed

log = logging.getLogger("burnkeeper")


def _pagination(total: int, page: int, limit: int) -> Dict[str, int]:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def _page_args(page: int, limit: int) -> tuple[int, int]:
    page = max(1, int(page))
    limit = max(1, int(limit))
    return page, limit


class DashboardQueries:
    """
    Usage:
        queries = DashboardQueries(records, projector, valuation_feed=feed)
        await queries.list_burns(page=1, limit=10, burn_type=BurnType.MILESTONE)
        await queries.milestones()
    """

    def __init__(
        self,
        records: LedgerOfRecord,
        projector: MetricsProjector,
        valuation_feed: Optional["ValuationFeed"] = None,
        eligibility: Optional[EligibilityEvaluator] = None,
    ) -> None:
        self.records = records
        self.projector = projector
        self.valuation_feed = valuation_feed
        self.eligibility = eligibility or EligibilityEvaluator()

    async def list_burns(
        self,
        page: int = 1,
        limit: int = 10,
        burn_type: Optional[BurnType] = None,
    ) -> Dict[str, Any]:
        """Burns newest first with pagination metadata."""
        page, limit = _page_args(page, limit)
        burns = await self.records.list_burns(burn_type=burn_type, skip=(page - 1) * limit, limit=limit)
        total = await self.records.count_burns(burn_type)
        return {
            "burns": [b.to_dict() for b in burns],
            "pagination": _pagination(total, page, limit),
        }

    async def milestones(self, valuation: Optional[float] = None) -> Dict[str, Any]:
        if valuation is None and self.valuation_feed is not None:
            try:
                valuation = await self.valuation_feed.current_valuation()
            except ValuationUnavailableError as exc:
                log.warning(dumps({"event": "dashboard_valuation_unavailable", "error": str(exc)}))

        milestones = await self.records.list_milestones()
        if valuation is None:
            rows = [{**m.to_dict(), "eligible": False} for m in milestones]
        else:
            rows = self.eligibility.milestone_progress(valuation, milestones)
        next_milestone = next((r for r in rows if not r["completed"]), None)
        return {
            "milestones": rows,
            "valuation": valuation,
            "progress": {
                "completed_count": sum(1 for m in milestones if m.completed),
                "total_count": len(milestones),
                "next_milestone": next_milestone,
            },
        }

    async def reward_cycles(
        self,
        status: Optional[RewardStatus] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Dict[str, Any]:
        page, limit = _page_args(page, limit)
        cycles = await self.records.list_reward_cycles(status)
        cycles.reverse()  # newest first
        start = (page - 1) * limit
        return {
            "reward_cycles": [c.to_dict() for c in cycles[start:start + limit]],
            "pagination": _pagination(len(cycles), page, limit),
        }

    async def latest_metrics(self) -> Dict[str, Any]:
        latest = await self.projector.latest()
        if latest is None:
            reserve = self.projector.initial_supply * self.projector.initial_reserve_pct
            return {
                "total_supply": self.projector.initial_supply,
                "circulating_supply": self.projector.initial_supply - reserve,
                "reserve_balance": reserve,
                "total_burned": 0.0,
                "buyback_burned": 0.0,
                "milestone_burned": 0.0,
                "last_updated": None,
            }
        return {**latest.to_dict(), "last_updated": latest.timestamp}

    async def metrics_history(self, page: int = 1, limit: int = 24) -> Dict[str, Any]:
        page, limit = _page_args(page, limit)
        snapshots = await self.records.list_snapshots()
        start = (page - 1) * limit
        return {
            "metrics": [s.to_dict() for s in snapshots[start:start + limit]],
            "pagination": _pagination(len(snapshots), page, limit),
        }

    async def burn_summary(self) -> Dict[str, Any]:
        """Totals by burn type, computed from Burn records."""
        by_type: Dict[str, Dict[str, float]] = {
            t.value: {"count": 0, "amount": 0.0} for t in BurnType
        }
        for burn in await self.records.list_burns(newest_first=False):
            bucket = by_type[burn.burn_type.value]
            bucket["count"] += 1
            bucket["amount"] += burn.amount
        milestone_total = sum(v["amount"] for k, v in by_type.items() if BurnType(k).is_milestone)
        buyback_total = sum(v["amount"] for k, v in by_type.items() if BurnType(k).is_buyback)
        return {
            "by_type": by_type,
            "milestone_burned": milestone_total,
            "buyback_burned": buyback_total,
            "total_burned": milestone_total + buyback_total,
        }

    async def force_metrics_refresh(self) -> Dict[str, Any]:
        """Re-derive metrics from Burn records. Safe to call repeatedly."""
        snapshot = await self.projector.refresh()
        if self.valuation_feed is not None:
            try:
                await self.valuation_feed.refresh()
            except ValuationUnavailableError as exc:
                log.warning(dumps({"event": "dashboard_valuation_unavailable", "error": str(exc)}))
        return snapshot.to_dict()


class AnnouncementFeed:
    """
    At-least-once hand-off of burns to an external announcer.

    The consumer reads pending(), announces, then calls mark_announced(). A
    crash between the two re-delivers the burn; the core never waits on it.
    """

    def __init__(self, records: LedgerOfRecord) -> None:
        self.records = records

    async def pending(self, limit: Optional[int] = None) -> List[Burn]:
        rows = await self.records.burns.find(
            lambda r: not r.get("announced"),
            sort_key=lambda r: r["timestamp"],
            limit=limit,
        )
        return [Burn.from_dict(r) for r in rows]

    async def mark_announced(self, burn_id: str) -> Burn:
        return await self.records.mark_announced(burn_id)
