"""
Retry Controller: bounded exponential backoff over burn attempts.

The operation returns an ExecutionResult; the controller only looks at its
error_kind:

- success                 -> SUCCEEDED
- non-retryable kind      -> FAILED at once, nothing retried
- BLOCKHASH_EXPIRED       -> CONTEXT_EXPIRED at once; the caller fetches a
                             fresh submission context and calls run() again
- other retryable kinds   -> sleep base * 2^attempt, try again
- attempts exhausted      -> FAILED with MAX_RETRIES_EXCEEDED
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from burnkeeper.core.errors import ErrorKind
from burnkeeper.core.json_utils import dumps
from burnkeeper.execution.burn_executor import ExecutionResult

log = logging.getLogger("burnkeeper")


class RetryStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CONTEXT_EXPIRED = "context_expired"


@dataclass
class RetryOutcome:
    status: RetryStatus
    result: ExecutionResult
    attempts: int
    delays: List[float] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is RetryStatus.SUCCEEDED


class RetryController:
    def __init__(
        self,
        base_delay: float = 1.0,
        max_attempts: int = 3,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_retry: Optional[Callable[[ErrorKind], None]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.base_delay = base_delay
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._on_retry = on_retry

    async def run(self, operation: Callable[[], Awaitable[ExecutionResult]]) -> RetryOutcome:
        delays: List[float] = []
        result: Optional[ExecutionResult] = None
        for attempt in range(self.max_attempts):
            result = await operation()
            if result.success:
                return RetryOutcome(RetryStatus.SUCCEEDED, result, attempt + 1, delays)

            kind = result.error_kind or ErrorKind.UNKNOWN
            if kind.needs_fresh_context:
                return RetryOutcome(RetryStatus.CONTEXT_EXPIRED, result, attempt + 1, delays)
            if not kind.retryable:
                return RetryOutcome(RetryStatus.FAILED, result, attempt + 1, delays)
            if attempt + 1 >= self.max_attempts:
                break

            delay = self.base_delay * (2 ** attempt)
            log.warning(dumps({
                "event": "burn_retry",
                "attempt": attempt + 1,
                "error_kind": kind.label,
                "delay_sec": delay,
            }))
            if self._on_retry:
                self._on_retry(kind)
            delays.append(delay)
            await self._sleep(delay)

        exhausted = ExecutionResult(
            success=False,
            amount=result.amount,
            raw_amount=result.raw_amount,
            decimals=result.decimals,
            error_kind=ErrorKind.MAX_RETRIES_EXCEEDED,
            detail=f"{self.max_attempts} attempts, last error {result.error_kind}: {result.detail}",
        )
        return RetryOutcome(RetryStatus.FAILED, exhausted, self.max_attempts, delays)
