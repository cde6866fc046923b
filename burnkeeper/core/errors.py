"""
Error taxonomy for burn submission and bookkeeping.

Every failure that crosses the executor boundary is reduced to an ErrorKind.
The kind decides what happens next:

    kind                  retryable   fresh context
    INSUFFICIENT_TOKENS   no          -
    INSUFFICIENT_FUNDS    no          -
    RATE_LIMIT            yes         no
    TIMEOUT               yes         no
    BLOCKHASH_EXPIRED     yes         yes
    NETWORK_ERROR         yes         no
    TOKEN_ACCOUNT_ERROR   no          -
    MAX_RETRIES_EXCEEDED  no          -
    PROCESSING_ERROR      no          -
    UNKNOWN               no          -

Non-retryable kinds are terminal for the current attempt and end up on the
milestone / reward cycle as its failure reason.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import httpx


class ErrorKind(Enum):
    """Classified failure kinds with their retry policy baked in."""

    INSUFFICIENT_TOKENS = ("INSUFFICIENT_TOKENS", False, False)
    INSUFFICIENT_FUNDS = ("INSUFFICIENT_FUNDS", False, False)
    RATE_LIMIT = ("RATE_LIMIT", True, False)
    TIMEOUT = ("TIMEOUT", True, False)
    BLOCKHASH_EXPIRED = ("BLOCKHASH_EXPIRED", True, True)
    NETWORK_ERROR = ("NETWORK_ERROR", True, False)
    TOKEN_ACCOUNT_ERROR = ("TOKEN_ACCOUNT_ERROR", False, False)
    MAX_RETRIES_EXCEEDED = ("MAX_RETRIES_EXCEEDED", False, False)
    PROCESSING_ERROR = ("PROCESSING_ERROR", False, False)
    UNKNOWN = ("UNKNOWN", False, False)

    def __init__(self, label: str, retryable: bool, needs_fresh_context: bool) -> None:
        self.label = label
        self.retryable = retryable
        self.needs_fresh_context = needs_fresh_context

    def __str__(self) -> str:
        return self.label

    @classmethod
    def from_label(cls, label: str) -> "ErrorKind":
        for kind in cls:
            if kind.label == label:
                return kind
        return cls.UNKNOWN


class BurnkeeperError(Exception):
    """Base class for errors raised inside burnkeeper."""


class LedgerError(BurnkeeperError):
    """Raised by gateway adapters when the failure kind is already known."""

    def __init__(self, kind: ErrorKind, message: str = "") -> None:
        super().__init__(message or kind.label)
        self.kind = kind


class InvalidTransitionError(BurnkeeperError):
    """A record was asked to move to a state its current state does not allow."""


class DuplicateBurnError(BurnkeeperError):
    """A second burn record for the same milestone or tx reference."""


class RecordNotFoundError(BurnkeeperError):
    """Lookup by id found nothing."""


class ValuationUnavailableError(BurnkeeperError):
    """No valuation could be served, not even a stale one."""


# Ordered: first match wins. Fragments are matched against the lowercased message.
_MESSAGE_RULES: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (ErrorKind.INSUFFICIENT_FUNDS, ("insufficient funds", "insufficient lamports")),
    (ErrorKind.RATE_LIMIT, ("rate limit", "429", "too many requests")),
    (ErrorKind.BLOCKHASH_EXPIRED, ("blockhash not found", "block height exceeded", "blockhash expired")),
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
    (ErrorKind.TOKEN_ACCOUNT_ERROR, (
        "could not find account",
        "account not found",
        "tokenaccountnotfound",
        "invalid account owner",
        "invalidaccountdata",
    )),
    (ErrorKind.NETWORK_ERROR, ("network error", "connection refused", "connection reset", "econnreset")),
)


def classify_message(message: Optional[str]) -> ErrorKind:
    """Map a raw ledger error message onto the taxonomy."""
    text = (message or "").lower()
    for kind, fragments in _MESSAGE_RULES:
        if any(fragment in text for fragment in fragments):
            return kind
    return ErrorKind.UNKNOWN


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Classify an exception raised by a ledger call.

    Explicit kinds (LedgerError) win, then transport exception types, then
    the message text.
    """
    if isinstance(exc, LedgerError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 429:
        return ErrorKind.RATE_LIMIT
    if isinstance(exc, (httpx.NetworkError, ConnectionError)):
        return ErrorKind.NETWORK_ERROR
    return classify_message(str(exc))
