"""
BurnExecutor: one destruction transaction, end to end.

Steps for a single attempt:
- reject non-positive amounts
- resolve asset precision (ledger, else configured default)
- convert to integer base units, rounding down
- check the signer's balance covers the amount
- submit and classify any failure

The executor never raises and never touches the Ledger of Record; callers
get an ExecutionResult either way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from burnkeeper.core.errors import ErrorKind, classify_error
from burnkeeper.core.json_utils import dumps
from burnkeeper.core.models import BurnType
from burnkeeper.core.utils import to_base_units
from burnkeeper.execution.gateway import BurnMode, LedgerGateway, Signer, SubmissionContext

log = logging.getLogger("burnkeeper")


@dataclass
class ExecutionResult:
    """Result of one burn attempt."""
    success: bool
    tx_ref: Optional[str] = None
    amount: float = 0.0
    raw_amount: int = 0
    decimals: Optional[int] = None
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @property
    def failure_reason(self) -> Optional[str]:
        if self.success:
            return None
        if not self.detail:
            return str(self.error_kind)
        return f"{self.error_kind}: {self.detail}"


@dataclass
class BurnExecutorConfig:
    default_decimals: int = 6
    burn_mode: BurnMode = BurnMode.NATIVE


class BurnExecutor:
    """
    Usage:
        executor = BurnExecutor(gateway, BurnExecutorConfig(default_decimals=6))
        result = await executor.execute(signer, 5e7, asset, BurnType.MILESTONE, context=ctx)
        if not result.success:
            ...  # result.error_kind decides retry
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        config: Optional[BurnExecutorConfig] = None,
        log_event: Optional[Callable[..., None]] = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or BurnExecutorConfig()
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    async def execute(
        self,
        signer: Signer,
        amount: float,
        asset: str,
        burn_type: BurnType,
        context: Optional[SubmissionContext] = None,
    ) -> ExecutionResult:
        try:
            return await self._execute(signer, amount, asset, burn_type, context)
        except Exception as exc:
            kind = classify_error(exc)
            self._log_event(
                "burn_submit_failed",
                burn_type=burn_type.value,
                amount=amount,
                error_kind=kind.label,
                error=str(exc),
            )
            return ExecutionResult(success=False, amount=amount, error_kind=kind, detail=str(exc))

    async def _execute(
        self,
        signer: Signer,
        amount: float,
        asset: str,
        burn_type: BurnType,
        context: Optional[SubmissionContext],
    ) -> ExecutionResult:
        if amount is None or amount <= 0:
            return ExecutionResult(
                success=False,
                amount=amount or 0.0,
                error_kind=ErrorKind.PROCESSING_ERROR,
                detail=f"burn amount must be positive, got {amount}",
            )

        decimals = await self._resolve_decimals(asset)
        raw_amount = to_base_units(amount, decimals)
        if raw_amount <= 0:
            return ExecutionResult(
                success=False,
                amount=amount,
                decimals=decimals,
                error_kind=ErrorKind.PROCESSING_ERROR,
                detail=f"amount {amount} is below one base unit at {decimals} decimals",
            )

        balance = await self.gateway.get_balance(signer.address, asset)
        if to_base_units(balance, decimals) < raw_amount:
            self._log_event(
                "burn_insufficient_tokens",
                burn_type=burn_type.value,
                amount=amount,
                balance=balance,
            )
            return ExecutionResult(
                success=False,
                amount=amount,
                raw_amount=raw_amount,
                decimals=decimals,
                error_kind=ErrorKind.INSUFFICIENT_TOKENS,
                detail=f"balance {balance} < {amount}",
            )

        tx_ref = await self.gateway.submit_burn(
            signer,
            asset,
            raw_amount,
            context=context,
            mode=self.config.burn_mode,
        )
        self._log_event(
            "burn_submitted",
            burn_type=burn_type.value,
            amount=amount,
            raw_amount=raw_amount,
            decimals=decimals,
            tx_ref=tx_ref,
        )
        return ExecutionResult(
            success=True,
            tx_ref=tx_ref,
            amount=amount,
            raw_amount=raw_amount,
            decimals=decimals,
        )

    async def _resolve_decimals(self, asset: str) -> int:
        try:
            decimals = int(await self.gateway.get_asset_precision(asset))
            if decimals < 0:
                raise ValueError(f"negative precision {decimals}")
            return decimals
        except Exception as exc:
            log.warning(dumps({
                "event": "precision_fallback",
                "asset": asset,
                "default_decimals": self.config.default_decimals,
                "error": str(exc),
            }))
            return self.config.default_decimals
