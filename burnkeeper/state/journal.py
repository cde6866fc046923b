"""
Burn submission journal.

Append-only, fsync'd log of every burn attempt:

1. INTENT is written BEFORE the transaction is submitted
2. SUBMITTED records the tx reference the ledger returned
3. RECORDED is written after the Burn record is durable
4. FAILED closes an attempt that ended without a burn

An intent with neither RECORDED nor FAILED after restart is a submission
whose outcome is unknown locally. Reconciliation resolves those against the
ledger so a burn that landed on-chain is never left without a record.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, IO, List, Optional

from burnkeeper.core.json_utils import dumps, dumps_bytes, loads

log = logging.getLogger("burnkeeper")


class JournalEntryType(Enum):
    INTENT = "intent"
    SUBMITTED = "submitted"
    RECORDED = "recorded"
    FAILED = "failed"


@dataclass
class JournalEntry:
    sequence: int
    entry_type: JournalEntryType
    intent_id: str
    timestamp_ms: int
    data: Dict[str, Any]
    checksum: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.sequence,
            "type": self.entry_type.value,
            "intent": self.intent_id,
            "ts": self.timestamp_ms,
            "data": self.data,
            "csum": self.checksum,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "JournalEntry":
        return cls(
            sequence=d["seq"],
            entry_type=JournalEntryType(d["type"]),
            intent_id=d["intent"],
            timestamp_ms=d["ts"],
            data=d["data"],
            checksum=d.get("csum"),
        )


@dataclass
class PendingIntent:
    """An attempt whose outcome is not yet known locally."""
    intent_id: str
    burn_type: str
    reference_id: str
    amount: float
    asset: str
    created_ms: int
    tx_ref: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def age_sec(self, now_ms: Optional[int] = None) -> float:
        now = now_ms if now_ms is not None else int(time.time() * 1000)
        return (now - self.created_ms) / 1000.0


def _checksum(entry: Dict[str, Any]) -> str:
    body = {k: v for k, v in entry.items() if k != "csum"}
    content = dumps_bytes(_sorted(body))
    return hashlib.md5(content).hexdigest()[:8]


def _sorted(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _sorted(value[k]) for k in sorted(value)}
    if isinstance(value, list):
        return [_sorted(v) for v in value]
    return value


class BurnJournal:
    """
    Crash-safe journal of burn submissions.

    Usage:
        journal = BurnJournal(state_dir)
        await journal.initialize()

        await journal.record_intent(intent_id, "milestone", milestone.id, 5e7, asset)
        await journal.record_submitted(intent_id, tx_ref)
        await journal.record_recorded(intent_id, burn.id)

        for pending in await journal.unresolved():
            ...
    """

    def __init__(
        self,
        state_dir: str,
        on_error: Optional[Callable[[str], None]] = None,
        fsync: bool = True,
    ) -> None:
        """
        Args:
            state_dir: Directory for the journal file
            on_error: Callback for write errors
            fsync: Whether to fsync after each write (disable for testing)
        """
        self.state_dir = Path(state_dir)
        self.path = self.state_dir / "burn_journal.log"
        self._on_error = on_error
        self._fsync = fsync
        self._sequence = 0
        self._lock = asyncio.Lock()
        self._file: Optional[IO[str]] = None
        self._stats = {
            "entries_written": 0,
            "corrupt_entries": 0,
            "compactions": 0,
            "write_errors": 0,
        }

    async def initialize(self) -> None:
        """Create the directory, pick up the last sequence number and open for append."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        entries = await self._load_entries()
        if entries:
            self._sequence = max(e.sequence for e in entries)
        await self._open()

    async def _open(self) -> None:
        loop = asyncio.get_running_loop()
        self._file = await loop.run_in_executor(
            None, lambda: open(self.path, "a", encoding="utf-8")
        )

    async def close(self) -> None:
        if self._file:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._file.close)
            self._file = None

    async def append(
        self,
        entry_type: JournalEntryType,
        intent_id: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Append an entry and fsync.

        Returns:
            Sequence number of the entry

        Raises:
            IOError: the write failed; the caller must not proceed as if the
                entry were durable
        """
        if self._file is None:
            raise IOError("journal not initialized")
        async with self._lock:
            self._sequence += 1
            entry = JournalEntry(
                sequence=self._sequence,
                entry_type=entry_type,
                intent_id=intent_id,
                timestamp_ms=int(time.time() * 1000),
                data=data or {},
            )
            raw = entry.to_dict()
            raw["csum"] = _checksum(raw)
            line = dumps(raw) + "\n"

            loop = asyncio.get_running_loop()

            def _write_and_sync() -> None:
                self._file.write(line)
                self._file.flush()
                if self._fsync:
                    os.fsync(self._file.fileno())

            try:
                await loop.run_in_executor(None, _write_and_sync)
            except OSError as exc:
                self._stats["write_errors"] += 1
                if self._on_error:
                    self._on_error(str(exc))
                raise IOError(f"journal write failed: {exc}") from exc

            self._stats["entries_written"] += 1
            return self._sequence

    async def record_intent(
        self,
        intent_id: str,
        burn_type: str,
        reference_id: str,
        amount: float,
        asset: str,
        **extra: Any,
    ) -> int:
        """Must be called BEFORE the burn is submitted."""
        return await self.append(
            JournalEntryType.INTENT,
            intent_id,
            {
                "burn_type": burn_type,
                "reference_id": reference_id,
                "amount": amount,
                "asset": asset,
                **extra,
            },
        )

    async def record_submitted(self, intent_id: str, tx_ref: str) -> int:
        return await self.append(JournalEntryType.SUBMITTED, intent_id, {"tx_ref": tx_ref})

    async def record_recorded(self, intent_id: str, burn_id: str) -> int:
        return await self.append(JournalEntryType.RECORDED, intent_id, {"burn_id": burn_id})

    async def record_failed(self, intent_id: str, reason: str) -> int:
        return await self.append(JournalEntryType.FAILED, intent_id, {"reason": reason})

    async def _load_entries(self) -> List[JournalEntry]:
        loop = asyncio.get_running_loop()

        def _read() -> List[JournalEntry]:
            entries: List[JournalEntry] = []
            if not self.path.exists():
                return entries
            with open(self.path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        raw = loads(line)
                        if raw.get("csum") and _checksum(raw) != raw["csum"]:
                            raise ValueError("checksum mismatch")
                        entries.append(JournalEntry.from_dict(raw))
                    except (ValueError, KeyError, TypeError) as exc:
                        self._stats["corrupt_entries"] += 1
                        log.warning(dumps({"event": "journal_corrupt_entry", "error": str(exc)}))
            return entries

        return await loop.run_in_executor(None, _read)

    async def unresolved(self) -> List[PendingIntent]:
        """Intents with neither a RECORDED nor a FAILED entry, oldest first."""
        async with self._lock:
            entries = await self._load_entries()
        return self._fold(entries)

    @staticmethod
    def _fold(entries: List[JournalEntry]) -> List[PendingIntent]:
        pending: Dict[str, PendingIntent] = {}
        closed: set = set()
        for entry in sorted(entries, key=lambda e: e.sequence):
            if entry.entry_type is JournalEntryType.INTENT:
                data = dict(entry.data)
                pending[entry.intent_id] = PendingIntent(
                    intent_id=entry.intent_id,
                    burn_type=data.pop("burn_type"),
                    reference_id=data.pop("reference_id"),
                    amount=float(data.pop("amount")),
                    asset=data.pop("asset", ""),
                    created_ms=entry.timestamp_ms,
                    extra=data,
                )
            elif entry.entry_type is JournalEntryType.SUBMITTED:
                if entry.intent_id in pending:
                    pending[entry.intent_id].tx_ref = entry.data.get("tx_ref")
            else:
                closed.add(entry.intent_id)
        return [p for iid, p in pending.items() if iid not in closed]

    async def compact(self) -> int:
        """
        Rewrite the journal keeping only entries of unresolved intents.

        Returns:
            Number of entries dropped
        """
        async with self._lock:
            entries = await self._load_entries()
            open_ids = {p.intent_id for p in self._fold(entries)}
            keep = [e for e in entries if e.intent_id in open_ids]
            dropped = len(entries) - len(keep)
            if dropped == 0:
                return 0

            loop = asyncio.get_running_loop()

            def _rewrite() -> None:
                if self._file:
                    self._file.close()
                tmp = self.path.with_suffix(".tmp")
                with open(tmp, "w", encoding="utf-8") as f:
                    for e in keep:
                        raw = e.to_dict()
                        raw["csum"] = _checksum(raw)
                        f.write(dumps(raw) + "\n")
                    f.flush()
                    if self._fsync:
                        os.fsync(f.fileno())
                tmp.replace(self.path)

            await loop.run_in_executor(None, _rewrite)
            await self._open()
            self._stats["compactions"] += 1
            return dropped

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "sequence": self._sequence}
