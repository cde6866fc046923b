"""
LifecycleOrchestrator: drives milestone and buyback burns to a recorded outcome.

Milestone path:
    eligible milestones (lowest threshold first)
      -> guard (reload under lock, skip completed)
      -> EXECUTING persisted, intent journaled
      -> burn with retries and submission-context refresh
      -> success: Burn record, milestone COMPLETED, metrics snapshot
      -> failure: attempt_count += 1, reason stored, FAILED, alert

Buyback path:
    pool balance >= threshold -> claim -> RewardCycle "claimed"
      -> buy -> "bought" (tokens_bought)
      -> burn floor(tokens_bought * (1 - slippage_buffer))
      -> "burned", or "failed" with tokens_bought kept for recovery

Every terminal outcome is persisted before the call returns. The milestone
and reward-cycle locks are shared with ReconciliationEngine, which re-drives
failed records through the same methods with recovery=True.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Protocol

from burnkeeper.core.errors import (
    DuplicateBurnError,
    ErrorKind,
    ValuationUnavailableError,
    classify_error,
)
from burnkeeper.core.json_utils import dumps
from burnkeeper.core.models import (
    Burn,
    BurnType,
    Milestone,
    MilestoneStatus,
    RewardCycle,
    RewardStatus,
    utc_now_iso,
)
from burnkeeper.core.utils import floor_amount, new_record_id, percent_of_supply
from burnkeeper.execution.burn_executor import BurnExecutor, ExecutionResult
from burnkeeper.execution.eligibility import EligibilityEvaluator
from burnkeeper.execution.gateway import LedgerGateway, Signer, SubmissionContext, TransactionDetail
from burnkeeper.execution.retry import RetryController, RetryStatus
from burnkeeper.metrics.projector import MetricsProjector
from burnkeeper.state.journal import BurnJournal, PendingIntent
from burnkeeper.state.records import LedgerOfRecord

if TYPE_CHECKING:
    from burnkeeper.market.valuation import ValuationFeed
    from burnkeeper.monitoring.alerting import AlertManager
    from burnkeeper.monitoring.metrics_rich import BurnMetrics

log = logging.getLogger("burnkeeper")

MILESTONE_INITIATOR = "milestone-scheduler"
BUYBACK_INITIATOR = "buyback-scheduler"
RECOVERY_INITIATOR = "reconciliation"


@dataclass
class ClaimReceipt:
    amount: float
    tx_ref: str
    amount_usd: Optional[float] = None


@dataclass
class BuyReceipt:
    tx_ref: str
    expected_out: float
    tokens_received: Optional[float] = None  # settled amount when the venue reports it


class RewardVenue(Protocol):
    """Claims protocol rewards and swaps them for the token. External collaborator."""

    async def pool_balance(self) -> float: ...

    async def claim(self, amount: float) -> ClaimReceipt: ...

    async def buy(self, amount: float) -> BuyReceipt: ...


@dataclass
class LifecycleConfig:
    """Configuration for LifecycleOrchestrator."""
    asset: str = ""
    initial_supply: float = 1_000_000_000
    reward_threshold: float = 0.5
    buy_input_ratio: float = 0.95
    slippage_buffer: float = 0.01
    max_context_refreshes: int = 2

    # Logging callback
    log_event_callback: Optional[Callable[..., None]] = None


@dataclass
class BurnOutcome:
    """Result of driving one milestone or reward cycle through a burn."""
    success: bool
    reference_id: str
    burn: Optional[Burn] = None
    error_kind: Optional[ErrorKind] = None
    reason: Optional[str] = None
    skipped: bool = False


@dataclass
class MilestoneTickResult:
    valuation: Optional[float]
    eligible: int = 0
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None


@dataclass
class BuybackCycleResult:
    status: str  # stopped, below_threshold, claim_failed, buy_failed, burned, burn_failed
    pool_balance: Optional[float] = None
    cycle: Optional[RewardCycle] = None
    burn: Optional[Burn] = None
    error: Optional[str] = None


class LifecycleOrchestrator:
    """
    Usage:
        orchestrator = LifecycleOrchestrator(
            records=records, executor=executor, retry=retry, gateway=gateway,
            projector=projector, journal=journal, valuation_feed=feed,
            venue=venue, reserve_signer=reserve, operating_signer=operating,
            config=LifecycleConfig(asset=mint),
        )
        await orchestrator.run_milestone_tick()
        await orchestrator.run_buyback_cycle()
    """

    def __init__(
        self,
        records: LedgerOfRecord,
        executor: BurnExecutor,
        retry: RetryController,
        gateway: LedgerGateway,
        projector: MetricsProjector,
        journal: BurnJournal,
        reserve_signer: Signer,
        operating_signer: Signer,
        valuation_feed: Optional["ValuationFeed"] = None,
        venue: Optional[RewardVenue] = None,
        eligibility: Optional[EligibilityEvaluator] = None,
        alerts: Optional["AlertManager"] = None,
        metrics: Optional["BurnMetrics"] = None,
        config: Optional[LifecycleConfig] = None,
    ) -> None:
        self.records = records
        self.executor = executor
        self.retry = retry
        self.gateway = gateway
        self.projector = projector
        self.journal = journal
        self.reserve_signer = reserve_signer
        self.operating_signer = operating_signer
        self.valuation_feed = valuation_feed
        self.venue = venue
        self.config = config or LifecycleConfig()
        self.eligibility = eligibility or EligibilityEvaluator(self.config.reward_threshold)
        self.alerts = alerts
        self.metrics = metrics

        # Shared with ReconciliationEngine
        self.milestone_lock = asyncio.Lock()
        self.cycle_lock = asyncio.Lock()
        self._stop_requested = False
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    def request_stop(self) -> None:
        """Finish the burn in progress, start no new ones."""
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    # ------------------------------------------------------------------
    # Milestone path
    # ------------------------------------------------------------------

    async def run_milestone_tick(self, valuation: Optional[float] = None) -> MilestoneTickResult:
        if self._stop_requested:
            return MilestoneTickResult(valuation=valuation, skipped_reason="stopping")

        if valuation is None:
            if self.valuation_feed is None:
                raise RuntimeError("no valuation given and no valuation feed configured")
            try:
                valuation = await self.valuation_feed.current_valuation()
            except ValuationUnavailableError as exc:
                log.warning(dumps({"event": "milestone_tick_no_valuation", "error": str(exc)}))
                if self.alerts:
                    await self.alerts.alert_valuation_unavailable(str(exc))
                return MilestoneTickResult(valuation=None, skipped_reason="valuation_unavailable")

        if self.metrics:
            self.metrics.valuation.set(valuation)

        milestones = await self.records.list_milestones()
        eligible = self.eligibility.eligible_milestones(valuation, milestones)
        result = MilestoneTickResult(valuation=valuation, eligible=len(eligible))
        if not eligible:
            self._log_event("milestone_tick_idle", valuation=valuation)
            return result

        self._log_event(
            "milestone_tick",
            valuation=valuation,
            eligible=[m.valuation_threshold for m in eligible],
        )
        for milestone in eligible:
            if self._stop_requested:
                result.skipped_reason = "stopping"
                break
            outcome = await self.execute_milestone_burn(milestone.id, valuation)
            if outcome.success:
                result.completed.append(milestone.id)
            elif not outcome.skipped:
                result.failed.append(milestone.id)
        return result

    async def execute_milestone_burn(
        self,
        milestone_id: str,
        valuation: float,
        recovery: bool = False,
    ) -> BurnOutcome:
        async with self.milestone_lock:
            milestone = await self.records.get_milestone(milestone_id)
            if milestone.completed:
                return BurnOutcome(False, milestone_id, skipped=True, reason="already_completed")
            if milestone.valuation_threshold > valuation:
                return BurnOutcome(False, milestone_id, skipped=True, reason="threshold_not_met")

            existing = await self.records.burn_for_milestone(milestone_id)
            if existing is not None:
                # Burn recorded but the milestone update was lost
                await self._complete_milestone(milestone, existing)
                return BurnOutcome(True, milestone_id, burn=existing)

            if milestone.status is MilestoneStatus.EXECUTING:
                pending = [p for p in await self.journal.unresolved() if p.reference_id == milestone_id]
                if pending:
                    log.warning(dumps({
                        "event": "milestone_awaiting_reconciliation",
                        "milestone_id": milestone_id,
                        "intent_id": pending[0].intent_id,
                    }))
                    return BurnOutcome(False, milestone_id, skipped=True, reason="awaiting_reconciliation")
            else:
                milestone.transition(MilestoneStatus.EXECUTING)
                await self.records.save_milestone(milestone)

            burn_type = BurnType.MILESTONE_RECOVERY if recovery else BurnType.MILESTONE
            intent_id = new_record_id()
            await self.journal.record_intent(
                intent_id,
                burn_type.value,
                milestone.id,
                milestone.burn_amount,
                self.config.asset,
                valuation=valuation,
            )
            self._log_event(
                "milestone_burn_started",
                milestone_id=milestone.id,
                threshold=milestone.valuation_threshold,
                amount=milestone.burn_amount,
                valuation=valuation,
                recovery=recovery,
            )

            started = time.monotonic()
            result = await self._burn_with_retries(self.reserve_signer, milestone.burn_amount, burn_type, intent_id)
            if not result.success:
                return await self._fail_milestone(milestone, result, intent_id, recovery)

            burn = await self._record_burn(
                burn_type=burn_type,
                amount=milestone.burn_amount,
                result=result,
                initiator=RECOVERY_INITIATOR if recovery else MILESTONE_INITIATOR,
                reference_id=milestone.id,
                extra={
                    "market_cap_at_burn": valuation,
                    "milestone_threshold": milestone.valuation_threshold,
                    "attempt_count": milestone.attempt_count,
                },
            )
            await self._complete_milestone(milestone, burn)
            await self.journal.record_recorded(intent_id, burn.id)
            if self.metrics:
                self.metrics.burn_latency_sec.labels(path="milestone").observe(time.monotonic() - started)
                if recovery:
                    self.metrics.recoveries.labels(path="milestone").inc()
            self._log_event(
                "milestone_burn_completed",
                milestone_id=milestone.id,
                threshold=milestone.valuation_threshold,
                amount=burn.amount,
                tx_ref=burn.tx_ref,
                burn_type=burn_type.value,
            )
            return BurnOutcome(True, milestone.id, burn=burn)

    async def _complete_milestone(self, milestone: Milestone, burn: Burn) -> None:
        if milestone.status is MilestoneStatus.PENDING:
            milestone.transition(MilestoneStatus.EXECUTING)
        if not milestone.completed:
            milestone.transition(MilestoneStatus.COMPLETED)
        milestone.tx_ref = burn.tx_ref
        milestone.completed_at = burn.timestamp
        milestone.burn_id = burn.id
        await self.records.save_milestone(milestone)
        if self.metrics:
            done = sum(1 for m in await self.records.list_milestones() if m.completed)
            self.metrics.milestones_completed.set(done)

    async def _fail_milestone(
        self,
        milestone: Milestone,
        result: ExecutionResult,
        intent_id: str,
        recovery: bool,
    ) -> BurnOutcome:
        reason = result.failure_reason or "UNKNOWN"
        milestone.attempt_count += 1
        milestone.last_failure_reason = reason
        milestone.transition(MilestoneStatus.FAILED)
        await self.records.save_milestone(milestone)
        await self.journal.record_failed(intent_id, reason)

        kind = result.error_kind or ErrorKind.UNKNOWN
        if self.metrics:
            self.metrics.burn_failures.labels(path="milestone", error_kind=kind.label).inc()
        log.error(dumps({
            "event": "milestone_burn_failed",
            "milestone_id": milestone.id,
            "threshold": milestone.valuation_threshold,
            "attempt_count": milestone.attempt_count,
            "reason": reason,
            "recovery": recovery,
        }))
        if self.alerts:
            if recovery:
                await self.alerts.alert_recovery_failed("milestone", milestone.id, reason)
            else:
                await self.alerts.alert_burn_failed(
                    "milestone", milestone.id, reason, threshold=milestone.valuation_threshold
                )
        return BurnOutcome(False, milestone.id, error_kind=kind, reason=reason)

    # ------------------------------------------------------------------
    # Buyback path
    # ------------------------------------------------------------------

    async def run_buyback_cycle(self) -> BuybackCycleResult:
        if self._stop_requested:
            return BuybackCycleResult(status="stopped")
        if self.venue is None:
            raise RuntimeError("no reward venue configured")

        balance = await self.venue.pool_balance()
        if not self.eligibility.reward_cycle_eligible(balance):
            self._log_event(
                "buyback_below_threshold",
                pool_balance=balance,
                threshold=self.eligibility.reward_threshold,
            )
            return BuybackCycleResult(status="below_threshold", pool_balance=balance)

        try:
            claim = await self.venue.claim(balance)
        except Exception as exc:
            log.error(dumps({"event": "reward_claim_failed", "pool_balance": balance, "error": str(exc)}))
            return BuybackCycleResult(status="claim_failed", pool_balance=balance, error=str(exc))

        async with self.cycle_lock:
            cycle = RewardCycle(
                id=new_record_id(),
                claimed_amount=claim.amount,
                claim_tx_ref=claim.tx_ref,
                claimed_amount_usd=claim.amount_usd,
            )
            await self.records.create_reward_cycle(cycle)
            self._log_event("reward_claimed", cycle_id=cycle.id, amount=claim.amount, tx_ref=claim.tx_ref)

            buy_amount = claim.amount * self.config.buy_input_ratio
            try:
                receipt = await self.venue.buy(buy_amount)
            except Exception as exc:
                kind = classify_error(exc)
                cycle.error_message = f"{kind}: {exc}"
                cycle.transition(RewardStatus.FAILED)
                await self.records.save_reward_cycle(cycle)
                log.error(dumps({
                    "event": "buyback_buy_failed",
                    "cycle_id": cycle.id,
                    "input_amount": buy_amount,
                    "error": cycle.error_message,
                }))
                if self.alerts:
                    await self.alerts.alert_burn_failed("buyback", cycle.id, cycle.error_message, stage="buy")
                return BuybackCycleResult(status="buy_failed", pool_balance=balance, cycle=cycle, error=cycle.error_message)

            tokens = receipt.expected_out
            if receipt.tokens_received is not None:
                tokens = min(receipt.tokens_received, receipt.expected_out)
            cycle.buy_tx_ref = receipt.tx_ref
            cycle.tokens_bought = tokens
            cycle.transition(RewardStatus.BOUGHT)
            await self.records.save_reward_cycle(cycle)
            self._log_event(
                "buyback_bought",
                cycle_id=cycle.id,
                input_amount=buy_amount,
                tokens_bought=tokens,
                tx_ref=receipt.tx_ref,
            )

        outcome = await self.burn_reward_cycle(cycle.id)
        cycle = await self.records.get_reward_cycle(cycle.id)
        if outcome.success:
            return BuybackCycleResult(status="burned", pool_balance=balance, cycle=cycle, burn=outcome.burn)
        return BuybackCycleResult(status="burn_failed", pool_balance=balance, cycle=cycle, error=outcome.reason)

    def planned_burn_amount(self, cycle: RewardCycle) -> float:
        """Whole tokens to burn for a cycle, never more than was acquired."""
        if cycle.tokens_bought is None:
            return 0.0
        return floor_amount(cycle.tokens_bought * (1 - self.config.slippage_buffer))

    async def burn_reward_cycle(
        self,
        cycle_id: str,
        recovery: bool = False,
        amount: Optional[float] = None,
    ) -> BurnOutcome:
        """
        Burn the tokens a reward cycle bought.

        Args:
            cycle_id: Reward cycle to burn for
            recovery: Re-drive a failed cycle (status must be failed with
                tokens_bought set and tokens_burned unset)
            amount: Upper bound on the burn, e.g. tokens still held

        Returns:
            BurnOutcome; the cycle is persisted as burned, recovered or
            failed before this returns
        """
        async with self.cycle_lock:
            cycle = await self.records.get_reward_cycle(cycle_id)
            if recovery and not cycle.awaiting_recovery:
                return BurnOutcome(False, cycle_id, skipped=True, reason="not_awaiting_recovery")
            if not recovery and cycle.status is not RewardStatus.BOUGHT:
                return BurnOutcome(False, cycle_id, skipped=True, reason=f"status_{cycle.status.value}")

            burn_amount = self.planned_burn_amount(cycle)
            if amount is not None:
                burn_amount = floor_amount(min(burn_amount, amount))

            burn_type = BurnType.BUYBACK_RECOVERY if recovery else BurnType.BUYBACK
            intent_id = new_record_id()
            await self.journal.record_intent(
                intent_id,
                burn_type.value,
                cycle.id,
                burn_amount,
                self.config.asset,
            )

            started = time.monotonic()
            result = await self._burn_with_retries(self.operating_signer, burn_amount, burn_type, intent_id)
            if not result.success:
                return await self._fail_cycle(cycle, result, intent_id, recovery)

            burn = await self._record_burn(
                burn_type=burn_type,
                amount=burn_amount,
                result=result,
                initiator=RECOVERY_INITIATOR if recovery else BUYBACK_INITIATOR,
                reference_id=cycle.id,
                extra={
                    "buy_tx_ref": cycle.buy_tx_ref,
                    "claimed_amount": cycle.claimed_amount,
                    "claimed_amount_usd": cycle.claimed_amount_usd,
                    "tokens_bought": cycle.tokens_bought,
                },
            )
            await self._complete_cycle(cycle, burn)
            await self.journal.record_recorded(intent_id, burn.id)
            if self.metrics:
                self.metrics.burn_latency_sec.labels(path="buyback").observe(time.monotonic() - started)
                if recovery:
                    self.metrics.recoveries.labels(path="buyback").inc()
            self._log_event(
                "buyback_burn_completed",
                cycle_id=cycle.id,
                amount=burn.amount,
                tx_ref=burn.tx_ref,
                burn_type=burn_type.value,
            )
            return BurnOutcome(True, cycle.id, burn=burn)

    async def _complete_cycle(self, cycle: RewardCycle, burn: Burn) -> None:
        cycle.burn_tx_ref = burn.tx_ref
        cycle.tokens_burned = burn.amount
        if cycle.status is RewardStatus.FAILED:
            cycle.transition(RewardStatus.RECOVERED)
            cycle.recovered_at = utc_now_iso()
        elif cycle.status is RewardStatus.BOUGHT:
            cycle.transition(RewardStatus.BURNED)
        await self.records.save_reward_cycle(cycle)

    async def _fail_cycle(
        self,
        cycle: RewardCycle,
        result: ExecutionResult,
        intent_id: str,
        recovery: bool,
    ) -> BurnOutcome:
        reason = result.failure_reason or "UNKNOWN"
        cycle.error_message = reason
        cycle.transition(RewardStatus.FAILED)
        await self.records.save_reward_cycle(cycle)
        await self.journal.record_failed(intent_id, reason)

        kind = result.error_kind or ErrorKind.UNKNOWN
        if self.metrics:
            self.metrics.burn_failures.labels(path="buyback", error_kind=kind.label).inc()
        log.error(dumps({
            "event": "buyback_burn_failed",
            "cycle_id": cycle.id,
            "tokens_bought": cycle.tokens_bought,
            "reason": reason,
            "recovery": recovery,
        }))
        if self.alerts:
            if recovery:
                await self.alerts.alert_recovery_failed("buyback", cycle.id, reason)
            else:
                await self.alerts.alert_burn_failed("buyback", cycle.id, reason, stage="burn")
        return BurnOutcome(False, cycle.id, error_kind=kind, reason=reason)

    # ------------------------------------------------------------------
    # Shared burn plumbing
    # ------------------------------------------------------------------

    async def _burn_with_retries(
        self,
        signer: Signer,
        amount: float,
        burn_type: BurnType,
        intent_id: str,
    ) -> ExecutionResult:
        """
        Retry Controller plus submission-context refresh.

        A CONTEXT_EXPIRED outcome gets a fresh context and a new retry round,
        at most max_context_refreshes times.
        """
        context = await self._fresh_context()
        refreshes = 0
        while True:
            outcome = await self.retry.run(
                lambda: self.executor.execute(signer, amount, self.config.asset, burn_type, context=context)
            )
            if outcome.status is RetryStatus.CONTEXT_EXPIRED:
                if refreshes < self.config.max_context_refreshes:
                    refreshes += 1
                    if self.metrics:
                        self.metrics.context_refreshes.inc()
                    log.warning(dumps({
                        "event": "submission_context_expired",
                        "intent_id": intent_id,
                        "refresh": refreshes,
                    }))
                    context = await self._fresh_context()
                    continue
                result = outcome.result
                return ExecutionResult(
                    success=False,
                    amount=result.amount,
                    raw_amount=result.raw_amount,
                    decimals=result.decimals,
                    error_kind=ErrorKind.MAX_RETRIES_EXCEEDED,
                    detail=f"submission context expired {refreshes + 1} times: {result.detail}",
                )
            if outcome.succeeded:
                await self.journal.record_submitted(intent_id, outcome.result.tx_ref)
            return outcome.result

    async def _fresh_context(self) -> Optional[SubmissionContext]:
        try:
            return await self.gateway.get_submission_context()
        except Exception as exc:
            # The gateway builds its own context when handed None
            log.warning(dumps({"event": "submission_context_error", "error": str(exc)}))
            return None

    async def _transaction_detail(self, tx_ref: str) -> Optional[TransactionDetail]:
        try:
            return await self.gateway.get_transaction_detail(tx_ref)
        except Exception as exc:
            log.warning(dumps({"event": "transaction_detail_error", "tx_ref": tx_ref, "error": str(exc)}))
            return None

    async def _record_burn(
        self,
        burn_type: BurnType,
        amount: float,
        result: ExecutionResult,
        initiator: str,
        reference_id: str,
        extra: Optional[Dict[str, Any]] = None,
        detail: Optional[TransactionDetail] = None,
    ) -> Burn:
        if detail is None:
            detail = await self._transaction_detail(result.tx_ref)
        details: Dict[str, Any] = {
            "decimals": result.decimals,
            "raw_amount": result.raw_amount,
            "percent_of_supply": percent_of_supply(amount, self.config.initial_supply),
            **(extra or {}),
        }
        if detail is not None:
            details.update(block_time=detail.confirmed_at, fee=detail.fee, slot=detail.slot)

        burn = Burn(
            id=new_record_id(),
            burn_type=burn_type,
            amount=amount,
            tx_ref=result.tx_ref,
            initiator=initiator,
            reference_id=reference_id,
            details=details,
        )
        try:
            await self.records.append_burn(burn)
        except DuplicateBurnError as exc:
            existing = await self.records.find_burn_by_tx(burn.tx_ref)
            if existing is None and burn_type.is_milestone:
                existing = await self.records.burn_for_milestone(reference_id)
            log.critical(dumps({
                "event": "duplicate_burn_detected",
                "tx_ref": burn.tx_ref,
                "reference_id": reference_id,
                "existing_tx_ref": existing.tx_ref if existing else None,
                "error": str(exc),
            }))
            if existing is None:
                raise
            return existing

        await self.projector.apply_burn(amount, burn_type, burn.id)
        if self.metrics:
            self.metrics.burns_total.labels(burn_type=burn_type.value).inc()
            self.metrics.burned_tokens.labels(burn_type=burn_type.value).inc(amount)
            latest = await self.projector.latest()
            if latest is not None:
                self.metrics.total_supply.set(latest.total_supply)
                self.metrics.reserve_balance.set(latest.reserve_balance)
                self.metrics.total_burned.set(latest.total_burned)
        self._log_event(
            "burn_recorded",
            burn_id=burn.id,
            burn_type=burn_type.value,
            amount=amount,
            tx_ref=burn.tx_ref,
            reference_id=reference_id,
        )
        return burn

    # ------------------------------------------------------------------
    # Journal resolution (called by reconciliation)
    # ------------------------------------------------------------------

    async def settle_orphaned_submission(self, entry: PendingIntent, detail: TransactionDetail) -> Optional[Burn]:
        """
        Record a journaled burn that landed on the ledger without a Burn record.

        Returns:
            The Burn now on record, or None when the entry could not be settled
        """
        if not entry.tx_ref:
            return None
        burn_type = BurnType(entry.burn_type)
        lock = self.milestone_lock if burn_type.is_milestone else self.cycle_lock
        async with lock:
            # An in-flight burn holds the lock; once we get it, it has closed its intent
            if not await self._still_unresolved(entry):
                return await self.records.find_burn_by_tx(entry.tx_ref)
            burn = await self.records.find_burn_by_tx(entry.tx_ref)
            created = burn is None
            if created:
                result = ExecutionResult(success=True, tx_ref=entry.tx_ref, amount=entry.amount)
                burn = await self._record_burn(
                    burn_type=burn_type,
                    amount=entry.amount,
                    result=result,
                    initiator=RECOVERY_INITIATOR,
                    reference_id=entry.reference_id,
                    extra={"intent_id": entry.intent_id, "orphaned": True},
                    detail=detail,
                )
            else:
                # Burn on record, snapshot chain may be missing it
                await self.projector.refresh()

            if burn_type.is_milestone:
                milestone = await self.records.get_milestone(entry.reference_id)
                if not milestone.completed or milestone.burn_id != burn.id:
                    await self._complete_milestone(milestone, burn)
            else:
                cycle = await self.records.get_reward_cycle(entry.reference_id)
                if cycle.status not in (RewardStatus.BURNED, RewardStatus.RECOVERED):
                    await self._complete_cycle(cycle, burn)
            await self.journal.record_recorded(entry.intent_id, burn.id)

        if self.metrics:
            self.metrics.orphaned_submissions.inc()
        log.warning(dumps({
            "event": "orphaned_submission_settled",
            "intent_id": entry.intent_id,
            "tx_ref": entry.tx_ref,
            "reference_id": entry.reference_id,
            "burn_created": created,
        }))
        if self.alerts and created:
            await self.alerts.alert_orphaned_submission(entry.tx_ref, entry.reference_id, entry.burn_type)
        return burn

    async def abandon_intent(self, entry: PendingIntent, reason: str) -> None:
        """
        Close a journaled attempt that never landed and fail its record, so
        recovery can pick it up.
        """
        burn_type = BurnType(entry.burn_type)
        lock = self.milestone_lock if burn_type.is_milestone else self.cycle_lock
        async with lock:
            if not await self._still_unresolved(entry):
                return
            if burn_type.is_milestone:
                milestone = await self.records.get_milestone(entry.reference_id)
                if milestone.status is MilestoneStatus.EXECUTING:
                    milestone.attempt_count += 1
                    milestone.last_failure_reason = reason
                    milestone.transition(MilestoneStatus.FAILED)
                    await self.records.save_milestone(milestone)
            else:
                cycle = await self.records.get_reward_cycle(entry.reference_id)
                if cycle.status is RewardStatus.BOUGHT:
                    cycle.error_message = reason
                    cycle.transition(RewardStatus.FAILED)
                    await self.records.save_reward_cycle(cycle)
            await self.journal.record_failed(entry.intent_id, reason)
        log.warning(dumps({
            "event": "intent_abandoned",
            "intent_id": entry.intent_id,
            "reference_id": entry.reference_id,
            "reason": reason,
        }))

    async def _still_unresolved(self, entry: PendingIntent) -> bool:
        return any(p.intent_id == entry.intent_id for p in await self.journal.unresolved())
