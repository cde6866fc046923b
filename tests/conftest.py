"""
Pytest configuration and fixtures.
Adds the repo root to sys.path so tests can import burnkeeper without an install.
"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from burnkeeper.execution.burn_executor import BurnExecutor, BurnExecutorConfig  # noqa: E402
from burnkeeper.execution.eligibility import EligibilityEvaluator  # noqa: E402
from burnkeeper.execution.gateway import BurnMode, SubmissionContext, TransactionDetail  # noqa: E402
from burnkeeper.execution.retry import RetryController  # noqa: E402
from burnkeeper.market.valuation import StaticValuationFeed  # noqa: E402
from burnkeeper.metrics.projector import MetricsProjector  # noqa: E402
from burnkeeper.orchestrator.lifecycle import (  # noqa: E402
    BuyReceipt,
    ClaimReceipt,
    LifecycleConfig,
    LifecycleOrchestrator,
)
from burnkeeper.orchestrator.reconciliation import ReconciliationConfig, ReconciliationEngine  # noqa: E402
from burnkeeper.state.journal import BurnJournal  # noqa: E402
from burnkeeper.state.records import LedgerOfRecord  # noqa: E402

ASSET = "TokenMint1111"
RESERVE = "reserve-wallet"
OPERATING = "operating-wallet"
INITIAL_SUPPLY = 1_000_000_000.0

TEST_SCHEDULE = [
    {"valuation_threshold": 100_000, "burn_amount": 50_000_000},
    {"valuation_threshold": 150_000, "burn_amount": 25_000_000},
    {"valuation_threshold": 300_000, "burn_amount": 20_000_000},
]


class Signer:
    """Signer stub; only the address matters to burnkeeper."""
    def __init__(self, address):
        self.address = address


class MockGateway:
    """In-memory ledger with scripted submit failures."""
    def __init__(self, balances=None, decimals=6):
        self.balances: Dict[str, float] = dict(balances or {})
        self.decimals = decimals
        self.submit_errors: List[Exception] = []
        self.submissions: List[Dict[str, Any]] = []
        self.details: Dict[str, TransactionDetail] = {}
        self.context_calls = 0
        self._n = 0

    async def get_balance(self, owner, asset):
        return self.balances.get(owner, 0.0)

    async def get_asset_precision(self, asset):
        if isinstance(self.decimals, Exception):
            raise self.decimals
        return self.decimals

    async def get_submission_context(self):
        self.context_calls += 1
        return SubmissionContext(freshness_token=f"ctx-{self.context_calls}")

    async def submit_burn(self, signer, asset, raw_amount, *, context=None, mode=BurnMode.NATIVE):
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        self._n += 1
        tx_ref = f"tx-{self._n}"
        decimals = self.decimals if isinstance(self.decimals, int) else 6
        amount = raw_amount / 10 ** decimals
        self.balances[signer.address] = self.balances.get(signer.address, 0.0) - amount
        self.submissions.append({
            "tx_ref": tx_ref,
            "signer": signer.address,
            "asset": asset,
            "raw_amount": raw_amount,
            "context": context,
            "mode": mode,
        })
        self.details[tx_ref] = TransactionDetail(
            tx_ref=tx_ref,
            confirmed_at="2026-01-01T00:00:00+00:00",
            fee=0.000005,
            slot=1000 + self._n,
        )
        return tx_ref

    async def get_transaction_detail(self, tx_ref):
        return self.details.get(tx_ref)


class MockVenue:
    """Reward venue that credits bought tokens to the operating wallet."""
    def __init__(self, gateway, pool=1.0, expected_out=1000.0, tokens_received=None):
        self.gateway = gateway
        self.pool = pool
        self.expected_out = expected_out
        self.tokens_received = tokens_received
        self.claim_error: Optional[Exception] = None
        self.buy_error: Optional[Exception] = None
        self.claims: List[float] = []
        self.buys: List[float] = []

    async def pool_balance(self):
        return self.pool

    async def claim(self, amount):
        if self.claim_error:
            raise self.claim_error
        self.claims.append(amount)
        self.pool -= amount
        return ClaimReceipt(amount=amount, tx_ref=f"claim-{len(self.claims)}", amount_usd=amount * 150)

    async def buy(self, amount):
        if self.buy_error:
            raise self.buy_error
        self.buys.append(amount)
        received = self.tokens_received if self.tokens_received is not None else self.expected_out
        self.gateway.balances[OPERATING] = self.gateway.balances.get(OPERATING, 0.0) + received
        return BuyReceipt(
            tx_ref=f"buy-{len(self.buys)}",
            expected_out=self.expected_out,
            tokens_received=self.tokens_received,
        )


def make_alerts():
    alerts = MagicMock()
    for name in (
        "alert_burn_failed",
        "alert_recovery_failed",
        "alert_reserve_drift",
        "alert_orphaned_submission",
        "alert_valuation_unavailable",
    ):
        setattr(alerts, name, AsyncMock(return_value=True))
    return alerts


@dataclass
class Harness:
    records: LedgerOfRecord
    journal: BurnJournal
    gateway: MockGateway
    venue: MockVenue
    projector: MetricsProjector
    orchestrator: LifecycleOrchestrator
    engine: ReconciliationEngine
    alerts: Any
    sleeps: List[float] = field(default_factory=list)

    async def milestone_at(self, threshold):
        for m in await self.records.list_milestones():
            if m.valuation_threshold == threshold:
                return m
        raise AssertionError(f"no milestone at {threshold}")

    async def close(self):
        await self.journal.close()


async def build_harness(
    state_dir,
    reserve_balance=300_000_000.0,
    operating_balance=0.0,
    valuation=None,
    schedule=None,
    max_attempts=3,
    max_context_refreshes=2,
):
    sleeps: List[float] = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    gateway = MockGateway(balances={RESERVE: reserve_balance, OPERATING: operating_balance})
    venue = MockVenue(gateway)
    records = LedgerOfRecord(str(state_dir), fsync=False)
    await records.load()
    await records.seed_milestones(schedule or TEST_SCHEDULE, INITIAL_SUPPLY)
    journal = BurnJournal(str(state_dir), fsync=False)
    await journal.initialize()
    projector = MetricsProjector(records, INITIAL_SUPPLY, 0.30)
    await projector.ensure_initial_snapshot(reserve_balance)
    alerts = make_alerts()

    orchestrator = LifecycleOrchestrator(
        records=records,
        executor=BurnExecutor(gateway, BurnExecutorConfig(default_decimals=6)),
        retry=RetryController(base_delay=1.0, max_attempts=max_attempts, sleep=fake_sleep),
        gateway=gateway,
        projector=projector,
        journal=journal,
        reserve_signer=Signer(RESERVE),
        operating_signer=Signer(OPERATING),
        valuation_feed=StaticValuationFeed(valuation) if valuation is not None else None,
        venue=venue,
        eligibility=EligibilityEvaluator(0.5),
        alerts=alerts,
        config=LifecycleConfig(
            asset=ASSET,
            initial_supply=INITIAL_SUPPLY,
            max_context_refreshes=max_context_refreshes,
        ),
    )
    engine = ReconciliationEngine(
        orchestrator,
        alerts=alerts,
        config=ReconciliationConfig(orphan_grace_sec=300.0, reserve_drift_tolerance=0.0),
    )
    return Harness(
        records=records,
        journal=journal,
        gateway=gateway,
        venue=venue,
        projector=projector,
        orchestrator=orchestrator,
        engine=engine,
        alerts=alerts,
        sleeps=sleeps,
    )


@pytest.fixture
def harness_factory(tmp_path):
    """Returns a coroutine function building a fully wired orchestrator in tmp_path."""
    async def factory(**kwargs):
        return await build_harness(tmp_path, **kwargs)
    return factory
