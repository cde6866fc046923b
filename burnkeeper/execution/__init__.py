"""
Execution package.

This package contains the ledger gateway boundary, eligibility rules, the
burn executor and the retry controller.
"""

from burnkeeper.execution.burn_executor import BurnExecutor, BurnExecutorConfig, ExecutionResult
from burnkeeper.execution.eligibility import EligibilityEvaluator
from burnkeeper.execution.gateway import (
    AsyncLedgerGateway,
    BurnMode,
    LedgerConnection,
    LedgerGateway,
    SubmissionContext,
    TransactionDetail,
)
from burnkeeper.execution.retry import RetryController, RetryOutcome, RetryStatus

__all__ = [
    "BurnExecutor",
    "BurnExecutorConfig",
    "ExecutionResult",
    "EligibilityEvaluator",
    "AsyncLedgerGateway",
    "BurnMode",
    "LedgerConnection",
    "LedgerGateway",
    "SubmissionContext",
    "TransactionDetail",
    "RetryController",
    "RetryOutcome",
    "RetryStatus",
]
