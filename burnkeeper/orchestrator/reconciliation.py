"""
ReconciliationEngine: brings the Ledger of Record back in line with the ledger.

A sweep runs four passes in order:
1. Journal resolution: submissions with unknown outcome are settled (tx
   confirmed on the ledger -> Burn recorded) or abandoned (never landed ->
   milestone / cycle marked failed).
2. Milestone recovery: failed or interrupted milestones whose threshold is
   still met are burned again as milestone-recovery.
3. Reward cycle recovery: cycles that bought tokens but failed to burn them
   are burned as buyback-recovery, capped by what the operating pool holds.
4. Reserve balance: the latest snapshot's reserve is compared with the
   ledger; drift beyond tolerance produces a correction snapshot.

On a clean record set a sweep writes nothing, so it is safe to run as often
as the scheduler likes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from burnkeeper.core.errors import ValuationUnavailableError
from burnkeeper.core.json_utils import dumps
from burnkeeper.core.models import BurnType, MetricsSnapshot, MilestoneStatus, RewardStatus
from burnkeeper.core.utils import floor_amount, now_ms
from burnkeeper.orchestrator.lifecycle import LifecycleOrchestrator

if TYPE_CHECKING:
    from burnkeeper.monitoring.alerting import AlertManager

log = logging.getLogger("burnkeeper")


@dataclass
class ReconciliationConfig:
    """Configuration for ReconciliationEngine."""
    # Journal intents younger than this are left alone
    orphan_grace_sec: float = 300.0
    # Reserve drift (tokens) tolerated before a correction snapshot
    reserve_drift_tolerance: float = 0.0

    # Logging callback
    log_event_callback: Optional[Callable[..., None]] = None


@dataclass
class SweepResult:
    valuation: Optional[float] = None
    settled: List[str] = field(default_factory=list)
    abandoned: List[str] = field(default_factory=list)
    milestones_recovered: List[str] = field(default_factory=list)
    milestones_failed: List[str] = field(default_factory=list)
    cycles_recovered: List[str] = field(default_factory=list)
    cycles_failed: List[str] = field(default_factory=list)
    correction: Optional[MetricsSnapshot] = None
    errors: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(
            self.settled
            or self.abandoned
            or self.milestones_recovered
            or self.milestones_failed
            or self.cycles_recovered
            or self.cycles_failed
            or self.correction
        )


class ReconciliationEngine:
    """
    Usage:
        engine = ReconciliationEngine(orchestrator, config=ReconciliationConfig())
        result = await engine.run_sweep()
    """

    def __init__(
        self,
        orchestrator: LifecycleOrchestrator,
        alerts: Optional["AlertManager"] = None,
        config: Optional[ReconciliationConfig] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.records = orchestrator.records
        self.journal = orchestrator.journal
        self.gateway = orchestrator.gateway
        self.projector = orchestrator.projector
        self.metrics = orchestrator.metrics
        self.alerts = alerts
        self.config = config or ReconciliationConfig()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    @property
    def asset(self) -> str:
        return self.orchestrator.config.asset

    async def run_sweep(self, valuation: Optional[float] = None) -> SweepResult:
        result = SweepResult()
        self._log_event("reconciliation_started")

        await self.resolve_journal(result)

        if valuation is None and self.orchestrator.valuation_feed is not None:
            try:
                valuation = await self.orchestrator.valuation_feed.current_valuation()
            except ValuationUnavailableError as exc:
                log.warning(dumps({"event": "reconciliation_no_valuation", "error": str(exc)}))
        result.valuation = valuation

        if valuation is not None:
            await self.recover_milestones(valuation, result)
        await self.recover_reward_cycles(result)
        await self.reconcile_reserve_balance(result)

        dropped = await self.journal.compact()
        self._log_event(
            "reconciliation_finished",
            valuation=valuation,
            settled=len(result.settled),
            abandoned=len(result.abandoned),
            milestones_recovered=len(result.milestones_recovered),
            milestones_failed=len(result.milestones_failed),
            cycles_recovered=len(result.cycles_recovered),
            cycles_failed=len(result.cycles_failed),
            corrected=result.correction is not None,
            errors=len(result.errors),
            journal_compacted=dropped,
        )
        return result

    async def resolve_journal(self, result: Optional[SweepResult] = None) -> SweepResult:
        result = result or SweepResult()
        now = now_ms()
        for entry in await self.journal.unresolved():
            try:
                if entry.tx_ref:
                    detail = await self.gateway.get_transaction_detail(entry.tx_ref)
                    if detail is not None and detail.confirmed:
                        burn = await self.orchestrator.settle_orphaned_submission(entry, detail)
                        if burn is not None:
                            result.settled.append(entry.intent_id)
                        continue
                    if entry.age_sec(now) > self.config.orphan_grace_sec:
                        await self.orchestrator.abandon_intent(
                            entry, f"UNCONFIRMED: {entry.tx_ref} not found on the ledger"
                        )
                        result.abandoned.append(entry.intent_id)
                elif entry.age_sec(now) > self.config.orphan_grace_sec:
                    await self.orchestrator.abandon_intent(entry, "INTERRUPTED: no submission recorded")
                    result.abandoned.append(entry.intent_id)
            except Exception as exc:
                log.error(dumps({
                    "event": "journal_resolution_error",
                    "intent_id": entry.intent_id,
                    "error": str(exc),
                }))
                result.errors.append(f"{entry.intent_id}: {exc}")
        return result

    async def recover_milestones(self, valuation: float, result: Optional[SweepResult] = None) -> SweepResult:
        result = result or SweepResult(valuation=valuation)
        for milestone in await self.records.list_milestones():
            if milestone.completed:
                continue
            if milestone.attempt_count == 0 and milestone.status is not MilestoneStatus.EXECUTING:
                continue
            if milestone.valuation_threshold > valuation:
                self._log_event(
                    "milestone_recovery_deferred",
                    milestone_id=milestone.id,
                    threshold=milestone.valuation_threshold,
                    valuation=valuation,
                )
                continue
            try:
                outcome = await self.orchestrator.execute_milestone_burn(milestone.id, valuation, recovery=True)
            except Exception as exc:
                log.error(dumps({"event": "milestone_recovery_error", "milestone_id": milestone.id, "error": str(exc)}))
                result.errors.append(f"{milestone.id}: {exc}")
                continue
            if outcome.success:
                result.milestones_recovered.append(milestone.id)
            elif not outcome.skipped:
                result.milestones_failed.append(milestone.id)
        return result

    async def recover_reward_cycles(self, result: Optional[SweepResult] = None) -> SweepResult:
        result = result or SweepResult()
        candidates = [
            c for c in await self.records.list_reward_cycles(RewardStatus.FAILED)
            if c.awaiting_recovery
        ]
        if not candidates:
            return result

        try:
            held = await self.gateway.get_balance(self.orchestrator.operating_signer.address, self.asset)
        except Exception as exc:
            log.error(dumps({"event": "recovery_balance_error", "error": str(exc)}))
            result.errors.append(f"operating balance: {exc}")
            return result

        for cycle in candidates:
            planned = self.orchestrator.planned_burn_amount(cycle)
            amount = floor_amount(min(planned, held))
            if amount <= 0:
                log.warning(dumps({
                    "event": "buyback_recovery_no_funds",
                    "cycle_id": cycle.id,
                    "planned": planned,
                    "held": held,
                }))
                continue
            try:
                outcome = await self.orchestrator.burn_reward_cycle(cycle.id, recovery=True, amount=amount)
            except Exception as exc:
                log.error(dumps({"event": "buyback_recovery_error", "cycle_id": cycle.id, "error": str(exc)}))
                result.errors.append(f"{cycle.id}: {exc}")
                continue
            if outcome.success:
                held -= outcome.burn.amount
                result.cycles_recovered.append(cycle.id)
            elif not outcome.skipped:
                result.cycles_failed.append(cycle.id)
        return result

    async def reconcile_reserve_balance(self, result: Optional[SweepResult] = None) -> SweepResult:
        result = result or SweepResult()
        # Milestone burns hold the lock from submit through apply_burn.
        async with self.orchestrator.milestone_lock:
            pending = [
                p for p in await self.journal.unresolved()
                if BurnType(p.burn_type).is_milestone
            ]
            if pending:
                self._log_event(
                    "reserve_check_deferred",
                    pending_intents=[p.intent_id for p in pending],
                )
                return result

            latest = await self.projector.latest()
            if latest is None:
                return result
            try:
                actual = await self.gateway.get_balance(self.orchestrator.reserve_signer.address, self.asset)
            except Exception as exc:
                log.error(dumps({"event": "reserve_balance_error", "error": str(exc)}))
                result.errors.append(f"reserve balance: {exc}")
                return result

            drift = actual - latest.reserve_balance
            if abs(drift) <= self.config.reserve_drift_tolerance:
                return result

            result.correction = await self.projector.apply_reserve_correction(actual)

        if self.metrics:
            self.metrics.reserve_discrepancy.set(drift)
            self.metrics.reserve_balance.set(actual)
        if self.alerts:
            await self.alerts.alert_reserve_drift(latest.reserve_balance, actual)
        return result
