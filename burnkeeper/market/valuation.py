"""
Valuation Feed: current market valuation of the token.

The last good value lives in an explicit ValuationCache owned by the feed,
so every caller sees the same freshness rules.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Optional

import httpx

from burnkeeper.core.errors import ValuationUnavailableError
from burnkeeper.core.json_utils import dumps
from burnkeeper.core.utils import dig

log = logging.getLogger("burnkeeper")


class ValuationCache:
    """
    Last known valuation with a TTL and a hard staleness ceiling.

    fresh() returns the value while younger than ttl_sec; stale() returns it
    while younger than max_stale_sec. Both return None otherwise.
    """
    __slots__ = ("_value", "_fetched_at", "_ttl", "_max_stale", "_clock", "_lock")

    def __init__(
        self,
        ttl_sec: float = 30.0,
        max_stale_sec: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._value: Optional[float] = None
        self._fetched_at: float = 0.0
        self._ttl = ttl_sec
        self._max_stale = max_stale_sec
        self._clock = clock
        self._lock = threading.Lock()

    def set(self, value: float) -> None:
        if value <= 0:
            return
        with self._lock:
            self._value = value
            self._fetched_at = self._clock()

    def age(self) -> Optional[float]:
        with self._lock:
            if self._value is None:
                return None
            return self._clock() - self._fetched_at

    def fresh(self) -> Optional[float]:
        age = self.age()
        if age is None or age >= self._ttl:
            return None
        return self._value

    def stale(self) -> Optional[float]:
        age = self.age()
        if age is None or age >= self._max_stale:
            return None
        return self._value

    def clear(self) -> None:
        with self._lock:
            self._value = None
            self._fetched_at = 0.0


class ValuationFeed:
    """
    HTTP-backed valuation source.

    Usage:
        feed = ValuationFeed("https://api.dexscreener.com/latest/dex/tokens/<mint>",
                             field="pairs.0.marketCap")
        valuation = await feed.current_valuation()
    """

    def __init__(
        self,
        url: str,
        field: str = "pairs.0.marketCap",
        cache: Optional[ValuationCache] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        on_valuation: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.url = url
        self.field = field
        self.cache = cache or ValuationCache()
        self._on_valuation = on_valuation
        # A shared client passed in is not closed by close()
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def current_valuation(self) -> float:
        """
        Cached value within TTL, else a fresh fetch, else a stale value within
        the staleness ceiling.

        Raises:
            ValuationUnavailableError: nothing usable
        """
        cached = self.cache.fresh()
        if cached is not None:
            return cached
        return await self.refresh()

    async def refresh(self) -> float:
        try:
            value = await self._fetch()
        except (httpx.HTTPError, ValueError) as exc:
            stale = self.cache.stale()
            if stale is not None:
                log.warning(dumps({
                    "event": "valuation_stale_served",
                    "age_sec": round(self.cache.age() or 0.0, 1),
                    "error": str(exc),
                }))
                return stale
            log.error(dumps({"event": "valuation_fetch_error", "error": str(exc)}))
            raise ValuationUnavailableError(str(exc)) from exc

        self.cache.set(value)
        if self._on_valuation:
            self._on_valuation(value)
        return value

    async def _fetch(self) -> float:
        resp = await self.client.get(self.url)
        resp.raise_for_status()
        data: Any = resp.json()
        raw = dig(data, self.field)
        if raw is None:
            raise ValueError(f"valuation field {self.field!r} missing from response")
        value = float(raw)
        if value <= 0:
            raise ValueError(f"non-positive valuation {value}")
        return value


class StaticValuationFeed:
    """Fixed valuation for manual runs and tests."""

    def __init__(self, value: float) -> None:
        self.value = value

    async def current_valuation(self) -> float:
        return self.value

    async def refresh(self) -> float:
        return self.value

    async def close(self) -> None:
        return None
