import asyncio

import pytest

from burnkeeper.core.errors import RecordNotFoundError
from burnkeeper.state.store import RecordStore


def test_append_persists_and_reloads(tmp_path):
    async def inner():
        store = RecordStore(str(tmp_path), "burns", fsync=False)
        await store.append({"id": "a", "n": 1})
        await store.append({"id": "b", "n": 2})

        again = RecordStore(str(tmp_path), "burns", fsync=False)
        await again.load()
        rows = await again.all()
        assert [r["id"] for r in rows] == ["a", "b"]
        assert not (tmp_path / "burns.tmp").exists()

    asyncio.run(inner())


def test_duplicate_id_rejected(tmp_path):
    async def inner():
        store = RecordStore(str(tmp_path), "burns", fsync=False)
        await store.append({"id": "a"})
        with pytest.raises(ValueError):
            await store.append({"id": "a"})
        with pytest.raises(ValueError):
            await store.append({"no_id": True})

    asyncio.run(inner())


def test_update_merges_and_keeps_id(tmp_path):
    async def inner():
        store = RecordStore(str(tmp_path), "milestones", fsync=False)
        await store.append({"id": "m", "status": "pending", "threshold": 1})
        updated = await store.update("m", {"status": "executing", "id": "other"})
        assert updated == {"id": "m", "status": "executing", "threshold": 1}
        with pytest.raises(RecordNotFoundError):
            await store.update("missing", {"status": "x"})

    asyncio.run(inner())


def test_find_sorts_and_pages(tmp_path):
    async def inner():
        store = RecordStore(str(tmp_path), "rows", fsync=False)
        for i, v in enumerate([5, 1, 4, 2, 3]):
            await store.append({"id": str(i), "v": v})

        rows = await store.find(sort_key=lambda r: r["v"], descending=True, skip=1, limit=2)
        assert [r["v"] for r in rows] == [4, 3]

        odd = await store.find(lambda r: r["v"] % 2 == 1)
        assert [r["v"] for r in odd] == [5, 1, 3]

        newest = await store.find(descending=True, limit=1)
        assert newest[0]["id"] == "4"

        assert await store.count(lambda r: r["v"] > 2) == 3

    asyncio.run(inner())


def test_returned_rows_are_copies(tmp_path):
    async def inner():
        store = RecordStore(str(tmp_path), "rows", fsync=False)
        await store.append({"id": "a", "v": 1})
        row = await store.get("a")
        row["v"] = 99
        assert (await store.get("a"))["v"] == 1
        assert await store.get("missing") is None

    asyncio.run(inner())


def test_corrupt_file_raises(tmp_path):
    (tmp_path / "burns.json").write_text("{not json")

    async def inner():
        store = RecordStore(str(tmp_path), "burns", fsync=False)
        with pytest.raises(ValueError):
            await store.load()

    asyncio.run(inner())
