"""
File-backed record collections.

Each collection is a JSON array on disk, rewritten atomically (tmp file then
replace) on every mutation. File IO runs in the default executor and all
access is serialized by an asyncio.Lock so interleaved writers cannot lose
updates.
"""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from burnkeeper.core.errors import RecordNotFoundError
from burnkeeper.core.json_utils import JSONDecodeError, dumps, dumps_bytes, loads

log = logging.getLogger("burnkeeper")

Record = Dict[str, Any]


class RecordStore:
    """
    One collection of records keyed by "id".

    Usage:
        store = RecordStore(state_dir, "burns")
        await store.load()
        await store.append({"id": "...", ...})
        rows = await store.find(lambda r: r["burn_type"] == "milestone")
    """

    def __init__(self, state_dir: str, collection: str, fsync: bool = True) -> None:
        self.collection = collection
        self.path = Path(state_dir) / f"{collection}.json"
        self.tmp = self.path.with_suffix(".tmp")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fsync = fsync
        self._rows: List[Record] = []
        self._index: Dict[str, int] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    def _read(self) -> List[Record]:
        if not self.path.exists():
            return []
        raw = self.path.read_bytes()
        if not raw.strip():
            return []
        data = loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"{self.path}: expected a JSON array")
        return data

    def _write(self, rows: List[Record]) -> None:
        with open(self.tmp, "wb") as f:
            f.write(dumps_bytes(rows))
            f.flush()
            if self._fsync:
                os.fsync(f.fileno())
        self.tmp.replace(self.path)

    async def load(self) -> None:
        async with self._lock:
            await self._ensure_loaded()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        loop = asyncio.get_running_loop()
        try:
            rows = await loop.run_in_executor(None, self._read)
        except (JSONDecodeError, ValueError) as exc:
            log.error(dumps({"event": "store_load_error", "collection": self.collection, "error": str(exc)}))
            raise
        self._rows = rows
        self._index = {row["id"]: i for i, row in enumerate(rows)}
        self._loaded = True

    async def _flush(self, rows: List[Record]) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write, rows)

    async def append(self, record: Record) -> Record:
        if "id" not in record:
            raise ValueError("record must carry an 'id'")
        async with self._lock:
            await self._ensure_loaded()
            if record["id"] in self._index:
                raise ValueError(f"{self.collection}: duplicate id {record['id']}")
            rows = self._rows + [dict(record)]
            await self._flush(rows)
            self._rows = rows
            self._index[record["id"]] = len(rows) - 1
            return dict(record)

    async def update(self, record_id: str, changes: Record) -> Record:
        async with self._lock:
            await self._ensure_loaded()
            pos = self._index.get(record_id)
            if pos is None:
                raise RecordNotFoundError(f"{self.collection}: {record_id}")
            updated = {**self._rows[pos], **changes, "id": record_id}
            rows = list(self._rows)
            rows[pos] = updated
            await self._flush(rows)
            self._rows = rows
            return dict(updated)

    async def get(self, record_id: str) -> Optional[Record]:
        async with self._lock:
            await self._ensure_loaded()
            pos = self._index.get(record_id)
            return dict(self._rows[pos]) if pos is not None else None

    async def find(
        self,
        predicate: Optional[Callable[[Record], bool]] = None,
        sort_key: Optional[Callable[[Record], Any]] = None,
        descending: bool = False,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """
        Filter, sort and page the collection.

        Without a sort_key rows come back in insertion order (reversed when
        descending).
        """
        async with self._lock:
            await self._ensure_loaded()
            rows = [dict(r) for r in self._rows if predicate is None or predicate(r)]
        if sort_key is not None:
            rows.sort(key=sort_key, reverse=descending)
        elif descending:
            rows.reverse()
        end = None if limit is None else skip + limit
        return rows[skip:end]

    async def count(self, predicate: Optional[Callable[[Record], bool]] = None) -> int:
        async with self._lock:
            await self._ensure_loaded()
            if predicate is None:
                return len(self._rows)
            return sum(1 for r in self._rows if predicate(r))

    async def all(self) -> List[Record]:
        return await self.find()
