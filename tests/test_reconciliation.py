"""
Tests for ReconciliationEngine.
"""
import asyncio
import time

import pytest
from unittest.mock import patch

from burnkeeper.core.errors import ErrorKind, LedgerError
from burnkeeper.core.models import BurnType, MilestoneStatus, SnapshotReason
from burnkeeper.execution.gateway import TransactionDetail
from burnkeeper.orchestrator.lifecycle import RECOVERY_INITIATOR

from conftest import ASSET, RESERVE


def _an_hour_later():
    return int(time.time() * 1000) + 3_600_000


async def _crash_mid_milestone(h, tx_ref=None):
    """Leave a milestone EXECUTING with an open journal intent, as after a crash."""
    m = await h.milestone_at(100_000)
    m.transition(MilestoneStatus.EXECUTING)
    await h.records.save_milestone(m)
    await h.journal.record_intent("i-crash", BurnType.MILESTONE.value, m.id, m.burn_amount, ASSET)
    if tx_ref:
        await h.journal.record_submitted("i-crash", tx_ref)
    return m


class TestIdempotence:

    @pytest.mark.asyncio
    async def test_sweep_on_clean_records_changes_nothing(self, harness_factory):
        h = await harness_factory(valuation=200_000)
        await h.orchestrator.run_milestone_tick()
        await h.orchestrator.run_buyback_cycle()
        before = await h.records.stats()
        milestones_before = [m.to_dict() for m in await h.records.list_milestones()]

        first = await h.engine.run_sweep()
        second = await h.engine.run_sweep()

        assert not first.changed
        assert not second.changed
        assert await h.records.stats() == before
        assert [m.to_dict() for m in await h.records.list_milestones()] == milestones_before
        assert len(h.gateway.submissions) == 3
        await h.close()


class TestMilestoneRecovery:

    @pytest.mark.asyncio
    async def test_failed_milestone_recovered_when_threshold_still_met(self, harness_factory):
        h = await harness_factory()
        h.gateway.submit_errors = [LedgerError(ErrorKind.INSUFFICIENT_FUNDS, "fee payer empty")]
        await h.orchestrator.run_milestone_tick(valuation=120_000)

        result = await h.engine.run_sweep(valuation=120_000)

        m100 = await h.milestone_at(100_000)
        assert result.milestones_recovered == [m100.id]
        assert m100.completed
        assert m100.attempt_count == 1
        burn = await h.records.burn_for_milestone(m100.id)
        assert burn.burn_type is BurnType.MILESTONE_RECOVERY
        assert burn.initiator == RECOVERY_INITIATOR
        await h.close()

    @pytest.mark.asyncio
    async def test_recovery_deferred_below_threshold(self, harness_factory):
        h = await harness_factory()
        h.gateway.submit_errors = [LedgerError(ErrorKind.INSUFFICIENT_FUNDS, "fee payer empty")]
        await h.orchestrator.run_milestone_tick(valuation=120_000)

        result = await h.engine.run_sweep(valuation=90_000)
        assert result.milestones_recovered == []
        assert (await h.milestone_at(100_000)).status is MilestoneStatus.FAILED
        await h.close()

    @pytest.mark.asyncio
    async def test_untouched_pending_milestones_are_not_recovered(self, harness_factory):
        h = await harness_factory()
        result = await h.engine.run_sweep(valuation=500_000)
        assert result.milestones_recovered == []
        assert h.gateway.submissions == []
        await h.close()

    @pytest.mark.asyncio
    async def test_recovery_failure_increments_attempts(self, harness_factory):
        h = await harness_factory()
        h.gateway.submit_errors = [
            LedgerError(ErrorKind.INSUFFICIENT_FUNDS, "first"),
            LedgerError(ErrorKind.INSUFFICIENT_FUNDS, "second"),
        ]
        await h.orchestrator.run_milestone_tick(valuation=120_000)
        result = await h.engine.run_sweep(valuation=120_000)

        m100 = await h.milestone_at(100_000)
        assert result.milestones_failed == [m100.id]
        assert m100.attempt_count == 2
        assert m100.last_failure_reason == "INSUFFICIENT_FUNDS: second"
        h.alerts.alert_recovery_failed.assert_awaited_once()
        await h.close()


class TestJournalResolution:

    @pytest.mark.asyncio
    async def test_confirmed_orphan_is_recorded_once(self, harness_factory):
        h = await harness_factory()
        m = await _crash_mid_milestone(h, tx_ref="tx-landed")
        h.gateway.details["tx-landed"] = TransactionDetail(tx_ref="tx-landed", slot=42)
        h.gateway.balances[RESERVE] -= m.burn_amount

        result = await h.engine.run_sweep()

        assert result.settled == ["i-crash"]
        assert result.correction is None
        burn = await h.records.find_burn_by_tx("tx-landed")
        assert burn.reference_id == m.id
        assert burn.initiator == RECOVERY_INITIATOR
        assert burn.details["orphaned"] is True
        assert burn.details["slot"] == 42
        assert (await h.milestone_at(100_000)).completed
        assert await h.journal.unresolved() == []
        assert (await h.projector.latest()).reserve_balance == 250_000_000
        h.alerts.alert_orphaned_submission.assert_awaited_once()

        again = await h.engine.run_sweep()
        assert not again.changed
        assert await h.records.count_burns() == 1
        await h.close()

    @pytest.mark.asyncio
    async def test_young_unconfirmed_intent_is_left_alone(self, harness_factory):
        h = await harness_factory()
        await _crash_mid_milestone(h, tx_ref="tx-pending")

        result = await h.engine.run_sweep()
        assert result.settled == [] and result.abandoned == []
        assert (await h.milestone_at(100_000)).status is MilestoneStatus.EXECUTING
        assert len(await h.journal.unresolved()) == 1
        await h.close()

    @pytest.mark.asyncio
    async def test_unconfirmed_intent_past_grace_is_abandoned(self, harness_factory):
        h = await harness_factory()
        await _crash_mid_milestone(h, tx_ref="tx-lost")

        with patch("burnkeeper.orchestrator.reconciliation.now_ms", return_value=_an_hour_later()):
            result = await h.engine.resolve_journal()

        assert result.abandoned == ["i-crash"]
        m = await h.milestone_at(100_000)
        assert m.status is MilestoneStatus.FAILED
        assert m.attempt_count == 1
        assert m.last_failure_reason.startswith("UNCONFIRMED")
        assert await h.journal.unresolved() == []

        # Now eligible for a recovery burn
        sweep = await h.engine.run_sweep(valuation=120_000)
        assert sweep.milestones_recovered == [m.id]
        await h.close()

    @pytest.mark.asyncio
    async def test_intent_without_submission_is_interrupted(self, harness_factory):
        h = await harness_factory()
        await _crash_mid_milestone(h)

        with patch("burnkeeper.orchestrator.reconciliation.now_ms", return_value=_an_hour_later()):
            result = await h.engine.resolve_journal()

        assert result.abandoned == ["i-crash"]
        m = await h.milestone_at(100_000)
        assert m.last_failure_reason == "INTERRUPTED: no submission recorded"
        await h.close()

    @pytest.mark.asyncio
    async def test_orphan_for_existing_burn_only_closes_intent(self, harness_factory):
        h = await harness_factory()
        await h.orchestrator.run_milestone_tick(valuation=120_000)
        m = await h.milestone_at(100_000)
        # Crash between the Burn record and the RECORDED journal entry
        await h.journal.record_intent("i-late", BurnType.MILESTONE.value, m.id, m.burn_amount, ASSET)
        await h.journal.record_submitted("i-late", m.tx_ref)

        result = await h.engine.resolve_journal()
        assert result.settled == ["i-late"]
        assert await h.records.count_burns() == 1
        assert await h.journal.unresolved() == []
        h.alerts.alert_orphaned_submission.assert_not_awaited()
        await h.close()


class TestReserveReconciliation:

    @pytest.mark.asyncio
    async def test_drift_appends_correction_snapshot(self, harness_factory):
        h = await harness_factory()
        h.gateway.balances[RESERVE] = 290_000_000.0

        result = await h.engine.run_sweep()

        snap = result.correction
        assert snap is not None
        assert snap.correction is True
        assert snap.reason is SnapshotReason.CORRECTION
        assert snap.reserve_balance == 290_000_000
        assert snap.previous_reserve_balance == 300_000_000
        assert snap.discrepancy == -10_000_000
        assert snap.circulating_supply == 710_000_000
        assert snap.total_burned == 0
        h.alerts.alert_reserve_drift.assert_awaited_once_with(300_000_000, 290_000_000.0)

        again = await h.engine.run_sweep()
        assert again.correction is None
        await h.close()

    @pytest.mark.asyncio
    async def test_drift_within_tolerance_ignored(self, harness_factory):
        h = await harness_factory()
        h.engine.config.reserve_drift_tolerance = 5.0
        h.gateway.balances[RESERVE] = 300_000_003.0
        result = await h.engine.run_sweep()
        assert result.correction is None
        await h.close()


def _pause_transaction_detail(gateway):
    """Hold get_transaction_detail (after submit has landed) until released."""
    reached = asyncio.Event()
    release = asyncio.Event()
    original = gateway.get_transaction_detail

    async def paused(tx_ref):
        reached.set()
        await release.wait()
        return await original(tx_ref)

    gateway.get_transaction_detail = paused
    return reached, release


class TestConcurrentJobs:

    @pytest.mark.asyncio
    async def test_reserve_check_waits_for_in_flight_milestone_burn(self, harness_factory):
        h = await harness_factory()
        reached, release = _pause_transaction_detail(h.gateway)

        tick = asyncio.create_task(h.orchestrator.run_milestone_tick(valuation=120_000))
        await reached.wait()
        assert h.gateway.balances[RESERVE] == 250_000_000

        check = asyncio.create_task(h.engine.reconcile_reserve_balance())
        for _ in range(5):
            await asyncio.sleep(0)
        assert not check.done()

        release.set()
        await tick
        result = await check

        assert result.correction is None
        latest = await h.projector.latest()
        assert latest.reserve_balance == 250_000_000 == h.gateway.balances[RESERVE]
        assert latest.total_burned == 50_000_000
        h.alerts.alert_reserve_drift.assert_not_awaited()
        await h.close()

    @pytest.mark.asyncio
    async def test_reserve_check_deferred_while_milestone_outcome_unknown(self, harness_factory):
        h = await harness_factory()
        await _crash_mid_milestone(h, tx_ref="tx-pending")
        h.gateway.balances[RESERVE] = 250_000_000.0

        result = await h.engine.reconcile_reserve_balance()
        assert result.correction is None
        assert (await h.projector.latest()).reserve_balance == 300_000_000
        await h.close()

    @pytest.mark.asyncio
    async def test_tick_and_recovery_sweep_burn_failed_milestone_once(self, harness_factory):
        h = await harness_factory()
        h.gateway.submit_errors = [LedgerError(ErrorKind.INSUFFICIENT_FUNDS, "fee payer empty")]
        await h.orchestrator.run_milestone_tick(valuation=120_000)
        assert (await h.milestone_at(100_000)).status is MilestoneStatus.FAILED

        await asyncio.gather(
            h.orchestrator.run_milestone_tick(valuation=120_000),
            h.engine.run_sweep(valuation=120_000),
        )

        m = await h.milestone_at(100_000)
        assert m.completed
        assert await h.records.count_burns() == 1
        assert len(h.gateway.submissions) == 1
        assert h.gateway.balances[RESERVE] == 250_000_000
        assert (await h.projector.latest()).reserve_balance == 250_000_000
        await h.close()

    @pytest.mark.asyncio
    async def test_jobs_running_together_keep_snapshot_chain_consistent(self, harness_factory):
        h = await harness_factory()

        await asyncio.gather(
            h.orchestrator.run_milestone_tick(valuation=200_000),
            h.orchestrator.run_buyback_cycle(),
            h.engine.run_sweep(valuation=200_000),
        )

        latest = await h.projector.latest()
        assert latest.reserve_balance == h.gateway.balances[RESERVE] == 225_000_000
        assert latest.milestone_burned == 75_000_000
        assert latest.buyback_burned == 990
        assert not any(s.correction for s in await h.records.list_snapshots())
        assert (await h.projector.refresh()).id == latest.id
        await h.close()
