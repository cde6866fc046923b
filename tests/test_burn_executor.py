"""
Tests for BurnExecutor.
"""
import pytest

from burnkeeper.core.errors import ErrorKind, LedgerError
from burnkeeper.core.models import BurnType
from burnkeeper.execution.burn_executor import BurnExecutor, BurnExecutorConfig, ExecutionResult
from burnkeeper.execution.gateway import BurnMode, SubmissionContext

from conftest import ASSET, RESERVE, MockGateway, Signer


class TestBurnExecutor:

    @pytest.fixture
    def gateway(self):
        return MockGateway(balances={RESERVE: 1_000.0}, decimals=6)

    @pytest.fixture
    def executor(self, gateway):
        return BurnExecutor(gateway, BurnExecutorConfig(default_decimals=9))

    @pytest.mark.asyncio
    async def test_successful_burn_converts_to_base_units(self, executor, gateway):
        ctx = SubmissionContext(freshness_token="abc")
        result = await executor.execute(Signer(RESERVE), 500.0, ASSET, BurnType.MILESTONE, context=ctx)

        assert result.success
        assert result.tx_ref == "tx-1"
        assert result.raw_amount == 500_000_000
        assert result.decimals == 6
        assert gateway.submissions[0]["raw_amount"] == 500_000_000
        assert gateway.submissions[0]["context"] is ctx
        assert gateway.submissions[0]["mode"] is BurnMode.NATIVE

    @pytest.mark.asyncio
    async def test_insufficient_tokens_submits_nothing(self, executor, gateway):
        gateway.balances[RESERVE] = 400.0
        result = await executor.execute(Signer(RESERVE), 500.0, ASSET, BurnType.MILESTONE)

        assert not result.success
        assert result.error_kind is ErrorKind.INSUFFICIENT_TOKENS
        assert gateway.submissions == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, None])
    async def test_non_positive_amount_rejected(self, executor, gateway, amount):
        result = await executor.execute(Signer(RESERVE), amount, ASSET, BurnType.BUYBACK)
        assert result.error_kind is ErrorKind.PROCESSING_ERROR
        assert gateway.submissions == []

    @pytest.mark.asyncio
    async def test_amount_below_one_base_unit_rejected(self, gateway):
        gateway.decimals = 0
        executor = BurnExecutor(gateway)
        result = await executor.execute(Signer(RESERVE), 0.4, ASSET, BurnType.BUYBACK)
        assert result.error_kind is ErrorKind.PROCESSING_ERROR
        assert gateway.submissions == []

    @pytest.mark.asyncio
    async def test_precision_lookup_failure_uses_configured_default(self, executor, gateway):
        gateway.decimals = LedgerError(ErrorKind.NETWORK_ERROR, "mint lookup failed")
        result = await executor.execute(Signer(RESERVE), 2.0, ASSET, BurnType.MILESTONE)
        assert result.success
        assert result.decimals == 9
        assert result.raw_amount == 2_000_000_000

    @pytest.mark.asyncio
    async def test_submit_failure_is_classified_not_raised(self, executor, gateway):
        gateway.submit_errors = [RuntimeError("Blockhash not found")]
        result = await executor.execute(Signer(RESERVE), 1.0, ASSET, BurnType.MILESTONE)
        assert not result.success
        assert result.error_kind is ErrorKind.BLOCKHASH_EXPIRED
        assert result.failure_reason == "BLOCKHASH_EXPIRED: Blockhash not found"

    @pytest.mark.asyncio
    async def test_incinerator_mode_is_passed_to_gateway(self, gateway):
        executor = BurnExecutor(gateway, BurnExecutorConfig(burn_mode=BurnMode.INCINERATOR))
        await executor.execute(Signer(RESERVE), 1.0, ASSET, BurnType.BUYBACK)
        assert gateway.submissions[0]["mode"] is BurnMode.INCINERATOR


def test_failure_reason_without_detail():
    result = ExecutionResult(success=False, error_kind=ErrorKind.TIMEOUT)
    assert result.failure_reason == "TIMEOUT"
    assert ExecutionResult(success=True).failure_reason is None
