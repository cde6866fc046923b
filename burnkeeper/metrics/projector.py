"""
Metrics Projector: the only writer of MetricsSnapshot records.

Each snapshot is derived from the previous one, so supply figures form a
chain:

    total_supply(n)  = total_supply(n-1) - amount
    milestone burns  -> reserve_balance decreases
    buyback burns    -> circulating_supply decreases
    total_burned     = milestone_burned + buyback_burned

Burn records stay the source of truth; refresh() re-derives the bucket
totals from them when a snapshot chain has drifted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from burnkeeper.core.json_utils import dumps
from burnkeeper.core.models import BurnType, MetricsSnapshot, SnapshotReason
from burnkeeper.core.utils import new_record_id
from burnkeeper.state.records import LedgerOfRecord

log = logging.getLogger("burnkeeper")

_EPS = 1e-6


class MetricsProjector:
    """
    Usage:
        projector = MetricsProjector(records, initial_supply=1e9, initial_reserve_pct=0.3)
        await projector.ensure_initial_snapshot(reserve_balance=3e8)
        await projector.apply_burn(5e7, BurnType.MILESTONE, burn.id)
    """

    def __init__(
        self,
        records: LedgerOfRecord,
        initial_supply: float,
        initial_reserve_pct: float = 0.30,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.records = records
        self.initial_supply = initial_supply
        self.initial_reserve_pct = initial_reserve_pct
        self._lock = asyncio.Lock()
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    async def latest(self) -> Optional[MetricsSnapshot]:
        return await self.records.latest_snapshot()

    async def ensure_initial_snapshot(self, reserve_balance: Optional[float] = None) -> MetricsSnapshot:
        """Write the first snapshot unless one exists. Returns the latest snapshot."""
        async with self._lock:
            return await self._ensure_initial(reserve_balance)

    async def _ensure_initial(self, reserve_balance: Optional[float] = None) -> MetricsSnapshot:
        existing = await self.records.latest_snapshot()
        if existing is not None:
            return existing
        if reserve_balance is None:
            reserve_balance = self.initial_supply * self.initial_reserve_pct
        snapshot = MetricsSnapshot(
            id=new_record_id(),
            total_supply=self.initial_supply,
            circulating_supply=self.initial_supply - reserve_balance,
            reserve_balance=reserve_balance,
            total_burned=0.0,
            buyback_burned=0.0,
            milestone_burned=0.0,
            reason=SnapshotReason.INITIAL,
        )
        await self.records.append_snapshot(snapshot)
        self._log_event(
            "metrics_initialized",
            total_supply=snapshot.total_supply,
            reserve_balance=snapshot.reserve_balance,
        )
        return snapshot

    async def apply_burn(self, amount: float, burn_type: BurnType, burn_id: Optional[str] = None) -> MetricsSnapshot:
        async with self._lock:
            prev = await self._ensure_initial()
            reserve = prev.reserve_balance
            circulating = prev.circulating_supply
            milestone_burned = prev.milestone_burned
            buyback_burned = prev.buyback_burned
            if burn_type.is_milestone:
                reserve -= amount
                milestone_burned += amount
            else:
                circulating -= amount
                buyback_burned += amount

            snapshot = MetricsSnapshot(
                id=new_record_id(),
                total_supply=prev.total_supply - amount,
                circulating_supply=circulating,
                reserve_balance=reserve,
                total_burned=milestone_burned + buyback_burned,
                buyback_burned=buyback_burned,
                milestone_burned=milestone_burned,
                reason=SnapshotReason.BURN,
                burn_id=burn_id,
            )
            await self.records.append_snapshot(snapshot)
            self._log_event(
                "metrics_burn_applied",
                burn_type=burn_type.value,
                amount=amount,
                total_supply=snapshot.total_supply,
                total_burned=snapshot.total_burned,
            )
            return snapshot

    async def apply_reserve_correction(self, actual_reserve: float) -> MetricsSnapshot:
        """Append a snapshot that moves reserve_balance to the on-ledger figure."""
        async with self._lock:
            prev = await self._ensure_initial()
            discrepancy = actual_reserve - prev.reserve_balance
            snapshot = MetricsSnapshot(
                id=new_record_id(),
                total_supply=prev.total_supply,
                circulating_supply=prev.total_supply - actual_reserve,
                reserve_balance=actual_reserve,
                total_burned=prev.total_burned,
                buyback_burned=prev.buyback_burned,
                milestone_burned=prev.milestone_burned,
                reason=SnapshotReason.CORRECTION,
                correction=True,
                discrepancy=discrepancy,
                previous_reserve_balance=prev.reserve_balance,
            )
            await self.records.append_snapshot(snapshot)
            log.warning(dumps({
                "event": "reserve_balance_corrected",
                "previous_reserve_balance": prev.reserve_balance,
                "reserve_balance": actual_reserve,
                "discrepancy": discrepancy,
            }))
            return snapshot

    async def refresh(self) -> MetricsSnapshot:
        """
        Recompute burn totals from Burn records.

        Appends a refresh snapshot only when the latest snapshot disagrees,
        so calling it repeatedly changes nothing after the first call.
        """
        async with self._lock:
            prev = await self._ensure_initial()
            milestone_total = 0.0
            buyback_total = 0.0
            for burn in await self.records.list_burns(newest_first=False):
                if burn.burn_type.is_milestone:
                    milestone_total += burn.amount
                else:
                    buyback_total += burn.amount

            if (
                abs(prev.milestone_burned - milestone_total) < _EPS
                and abs(prev.buyback_burned - buyback_total) < _EPS
                and prev.totals_consistent
            ):
                return prev

            total_burned = milestone_total + buyback_total
            total_supply = self.initial_supply - total_burned
            reserve = prev.reserve_balance - (milestone_total - prev.milestone_burned)
            snapshot = MetricsSnapshot(
                id=new_record_id(),
                total_supply=total_supply,
                circulating_supply=total_supply - reserve,
                reserve_balance=reserve,
                total_burned=total_burned,
                buyback_burned=buyback_total,
                milestone_burned=milestone_total,
                reason=SnapshotReason.REFRESH,
            )
            await self.records.append_snapshot(snapshot)
            self._log_event(
                "metrics_refreshed",
                total_burned=total_burned,
                previous_total_burned=prev.total_burned,
            )
            return snapshot
