"""
Ledger Gateway boundary.

The ledger SDK is an external collaborator. Everything burnkeeper needs from
it is the LedgerGateway protocol below; AsyncLedgerGateway adapts any client
exposing the same method names, sync or async, onto it with bounded calls.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from burnkeeper.core.errors import ErrorKind, LedgerError


class BurnMode(Enum):
    NATIVE = "native"            # burn instruction, supply shrinks on-chain
    INCINERATOR = "incinerator"  # transfer to the burn address


@dataclass(frozen=True)
class SubmissionContext:
    """Recent-state token a transaction is built against. Expires."""
    freshness_token: str
    fetched_at: float = 0.0


@dataclass(frozen=True)
class TransactionDetail:
    tx_ref: str
    confirmed_at: Optional[str] = None
    fee: Optional[float] = None
    slot: Optional[int] = None

    @property
    def confirmed(self) -> bool:
        return self.confirmed_at is not None or self.slot is not None


class Signer(Protocol):
    address: str


class LedgerGateway(Protocol):
    async def get_balance(self, owner: str, asset: str) -> float: ...

    async def get_asset_precision(self, asset: str) -> int: ...

    async def get_submission_context(self) -> SubmissionContext: ...

    async def submit_burn(
        self,
        signer: Signer,
        asset: str,
        raw_amount: int,
        *,
        context: Optional[SubmissionContext] = None,
        mode: BurnMode = BurnMode.NATIVE,
    ) -> str: ...

    async def get_transaction_detail(self, tx_ref: str) -> Optional[TransactionDetail]: ...


@dataclass
class LedgerConnection:
    """What a gateway factory hands back: the gateway and one signer per pool."""
    client: LedgerGateway
    reserve_signer: Signer
    operating_signer: Signer


class AsyncLedgerGateway:
    """
    Bounded async facade over a ledger client.

    Sync client methods run on a dedicated thread pool; async ones are awaited
    directly. Every call is wrapped in asyncio.wait_for, and a timeout becomes
    LedgerError(TIMEOUT) so it flows through the retry taxonomy.

    Usage:
        gateway = AsyncLedgerGateway(sdk_client, rpc_timeout=10.0, settlement_timeout=60.0)
        raw = to_base_units(amount, await gateway.get_asset_precision(asset))
        tx_ref = await gateway.submit_burn(signer, asset, raw, context=ctx)
    """

    def __init__(
        self,
        client: Any,
        rpc_timeout: float = 10.0,
        settlement_timeout: float = 60.0,
        max_workers: int = 4,
        burn_mode: BurnMode = BurnMode.NATIVE,
    ) -> None:
        self._client = client
        self._rpc_timeout = rpc_timeout
        self._settlement_timeout = settlement_timeout
        self._burn_mode = burn_mode
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ledger")

    @property
    def burn_mode(self) -> BurnMode:
        return self._burn_mode

    async def get_balance(self, owner: str, asset: str) -> float:
        return float(await self._call("get_balance", owner, asset))

    async def get_asset_precision(self, asset: str) -> int:
        return int(await self._call("get_asset_precision", asset))

    async def get_submission_context(self) -> SubmissionContext:
        ctx = await self._call("get_submission_context")
        if isinstance(ctx, SubmissionContext):
            return ctx
        return SubmissionContext(freshness_token=str(ctx), fetched_at=time.time())

    async def submit_burn(
        self,
        signer: Signer,
        asset: str,
        raw_amount: int,
        *,
        context: Optional[SubmissionContext] = None,
        mode: Optional[BurnMode] = None,
    ) -> str:
        tx_ref = await self._call(
            "submit_burn",
            signer,
            asset,
            raw_amount,
            context=context,
            mode=mode or self._burn_mode,
            timeout=self._settlement_timeout,
        )
        if not tx_ref:
            raise LedgerError(ErrorKind.UNKNOWN, "ledger returned no transaction reference")
        return str(tx_ref)

    async def get_transaction_detail(self, tx_ref: str) -> Optional[TransactionDetail]:
        return await self._call("get_transaction_detail", tx_ref)

    async def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        closer = getattr(self._client, "close", None)
        if closer is not None:
            result = closer()
            if inspect.isawaitable(result):
                await result

    async def _call(self, method: str, *args: Any, timeout: Optional[float] = None, **kwargs: Any) -> Any:
        fn: Callable[..., Any] = getattr(self._client, method)
        limit = timeout if timeout is not None else self._rpc_timeout
        if inspect.iscoroutinefunction(fn):
            awaitable = fn(*args, **kwargs)
        else:
            loop = asyncio.get_running_loop()
            awaitable = loop.run_in_executor(self._executor, lambda: fn(*args, **kwargs))
        try:
            return await asyncio.wait_for(awaitable, timeout=limit)
        except asyncio.TimeoutError as exc:
            raise LedgerError(ErrorKind.TIMEOUT, f"{method} timed out after {limit}s") from exc
