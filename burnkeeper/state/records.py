"""
Ledger of Record: the four persisted record families.

Typed accessors over RecordStore collections plus the invariants the store
itself cannot express:

- a Burn's tx_ref is unique
- a milestone has at most one milestone-family Burn
- Burn fields never change, except the one-way `announced` flag

Reference integrity (Burn.reference_id pointing at a real milestone or reward
cycle) is the caller's responsibility.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from burnkeeper.core.errors import DuplicateBurnError, RecordNotFoundError
from burnkeeper.core.json_utils import dumps
from burnkeeper.core.models import (
    Burn,
    BurnType,
    MetricsSnapshot,
    Milestone,
    RewardCycle,
    RewardStatus,
)
from burnkeeper.core.utils import PERCENT_DECIMALS, new_record_id, percent_of_supply
from burnkeeper.state.store import RecordStore

log = logging.getLogger("burnkeeper")


class LedgerOfRecord:
    """
    Durable store for milestones, reward cycles, burns and metrics snapshots.

    Usage:
        records = LedgerOfRecord(state_dir)
        await records.load()
        await records.seed_milestones(schedule, initial_supply=1e9)
        burn = await records.append_burn(Burn(...))
    """

    def __init__(
        self,
        state_dir: str,
        fsync: bool = True,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.burns = RecordStore(state_dir, "burns", fsync=fsync)
        self.milestones = RecordStore(state_dir, "milestones", fsync=fsync)
        self.reward_cycles = RecordStore(state_dir, "reward_cycles", fsync=fsync)
        self.metrics = RecordStore(state_dir, "metrics", fsync=fsync)
        # Serializes the duplicate checks with the append that follows them
        self._burn_lock = asyncio.Lock()
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    async def load(self) -> None:
        for store in (self.burns, self.milestones, self.reward_cycles, self.metrics):
            await store.load()

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    async def seed_milestones(
        self,
        schedule: Iterable[Mapping[str, Any]],
        initial_supply: float,
    ) -> List[Milestone]:
        """
        Create milestones from a schedule the first time the store is used.

        Args:
            schedule: Entries with valuation_threshold, burn_amount and
                optionally percent_of_supply
            initial_supply: Denominator for percent_of_supply when an entry
                does not carry one

        Returns:
            All milestones, ascending by threshold. Existing milestones are
            returned unchanged.

        Raises:
            ValueError: thresholds not strictly increasing
        """
        entries = list(schedule)
        thresholds = [float(e["valuation_threshold"]) for e in entries]
        for prev, cur in zip(thresholds, thresholds[1:]):
            if cur <= prev:
                raise ValueError(
                    f"milestone thresholds must be strictly increasing: {prev} then {cur}"
                )

        if await self.milestones.count() > 0:
            return await self.list_milestones()

        created: List[Milestone] = []
        for entry in entries:
            burn_amount = float(entry["burn_amount"])
            pct = entry.get("percent_of_supply")
            if pct is None:
                pct = percent_of_supply(burn_amount, initial_supply)
            milestone = Milestone(
                id=new_record_id(),
                valuation_threshold=float(entry["valuation_threshold"]),
                burn_amount=burn_amount,
                percent_of_supply=round(float(pct), PERCENT_DECIMALS),
            )
            await self.milestones.append(milestone.to_dict())
            created.append(milestone)

        self._log_event("milestones_seeded", count=len(created))
        return created

    async def get_milestone(self, milestone_id: str) -> Milestone:
        row = await self.milestones.get(milestone_id)
        if row is None:
            raise RecordNotFoundError(f"milestone {milestone_id}")
        return Milestone.from_dict(row)

    async def list_milestones(self) -> List[Milestone]:
        rows = await self.milestones.find(sort_key=lambda r: r["valuation_threshold"])
        return [Milestone.from_dict(r) for r in rows]

    async def save_milestone(self, milestone: Milestone) -> Milestone:
        await self.milestones.update(milestone.id, milestone.to_dict())
        return milestone

    # ------------------------------------------------------------------
    # Reward cycles
    # ------------------------------------------------------------------

    async def create_reward_cycle(self, cycle: RewardCycle) -> RewardCycle:
        await self.reward_cycles.append(cycle.to_dict())
        return cycle

    async def get_reward_cycle(self, cycle_id: str) -> RewardCycle:
        row = await self.reward_cycles.get(cycle_id)
        if row is None:
            raise RecordNotFoundError(f"reward cycle {cycle_id}")
        return RewardCycle.from_dict(row)

    async def save_reward_cycle(self, cycle: RewardCycle) -> RewardCycle:
        await self.reward_cycles.update(cycle.id, cycle.to_dict())
        return cycle

    async def list_reward_cycles(self, status: Optional[RewardStatus] = None) -> List[RewardCycle]:
        predicate = None
        if status is not None:
            predicate = lambda r: r["status"] == status.value  # noqa: E731
        rows = await self.reward_cycles.find(predicate, sort_key=lambda r: r["created_at"])
        return [RewardCycle.from_dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Burns
    # ------------------------------------------------------------------

    async def append_burn(self, burn: Burn) -> Burn:
        """
        Append a Burn after checking uniqueness.

        Raises:
            DuplicateBurnError: tx_ref already recorded, or the milestone
                already has a milestone-family burn
        """
        async with self._burn_lock:
            if await self.burns.count(lambda r: r["tx_ref"] == burn.tx_ref):
                raise DuplicateBurnError(f"tx_ref {burn.tx_ref} already recorded")
            if burn.burn_type.is_milestone:
                existing = await self.burn_for_milestone(burn.reference_id)
                if existing is not None:
                    raise DuplicateBurnError(
                        f"milestone {burn.reference_id} already burned in {existing.tx_ref}"
                    )
            await self.burns.append(burn.to_dict())
        return burn

    async def get_burn(self, burn_id: str) -> Burn:
        row = await self.burns.get(burn_id)
        if row is None:
            raise RecordNotFoundError(f"burn {burn_id}")
        return Burn.from_dict(row)

    async def find_burn_by_tx(self, tx_ref: str) -> Optional[Burn]:
        rows = await self.burns.find(lambda r: r["tx_ref"] == tx_ref, limit=1)
        return Burn.from_dict(rows[0]) if rows else None

    async def burn_for_milestone(self, milestone_id: str) -> Optional[Burn]:
        milestone_types = {t.value for t in BurnType if t.is_milestone}
        rows = await self.burns.find(
            lambda r: r["reference_id"] == milestone_id and r["burn_type"] in milestone_types,
            limit=1,
        )
        return Burn.from_dict(rows[0]) if rows else None

    async def list_burns(
        self,
        burn_type: Optional[BurnType] = None,
        skip: int = 0,
        limit: Optional[int] = None,
        newest_first: bool = True,
    ) -> List[Burn]:
        predicate = None
        if burn_type is not None:
            predicate = lambda r: r["burn_type"] == burn_type.value  # noqa: E731
        rows = await self.burns.find(
            predicate,
            sort_key=lambda r: r["timestamp"],
            descending=newest_first,
            skip=skip,
            limit=limit,
        )
        return [Burn.from_dict(r) for r in rows]

    async def count_burns(self, burn_type: Optional[BurnType] = None) -> int:
        if burn_type is None:
            return await self.burns.count()
        return await self.burns.count(lambda r: r["burn_type"] == burn_type.value)

    async def mark_announced(self, burn_id: str) -> Burn:
        """Set the one mutable Burn field. Idempotent."""
        row = await self.burns.get(burn_id)
        if row is None:
            raise RecordNotFoundError(f"burn {burn_id}")
        if not row.get("announced"):
            row = await self.burns.update(burn_id, {"announced": True})
        return Burn.from_dict(row)

    # ------------------------------------------------------------------
    # Metrics snapshots
    # ------------------------------------------------------------------

    async def append_snapshot(self, snapshot: MetricsSnapshot) -> MetricsSnapshot:
        await self.metrics.append(snapshot.to_dict())
        return snapshot

    async def latest_snapshot(self) -> Optional[MetricsSnapshot]:
        rows = await self.metrics.all()
        if not rows:
            return None
        # Insertion order breaks timestamp ties
        _, latest = max(enumerate(rows), key=lambda pair: (pair[1]["timestamp"], pair[0]))
        return MetricsSnapshot.from_dict(latest)

    async def list_snapshots(self, limit: Optional[int] = None) -> List[MetricsSnapshot]:
        rows = await self.metrics.find(descending=True, limit=limit)
        return [MetricsSnapshot.from_dict(r) for r in rows]

    async def stats(self) -> Dict[str, int]:
        return {
            "burns": await self.burns.count(),
            "milestones": await self.milestones.count(),
            "reward_cycles": await self.reward_cycles.count(),
            "metrics": await self.metrics.count(),
        }
