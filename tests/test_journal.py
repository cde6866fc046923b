"""
Tests for BurnJournal.
"""
import pytest

from burnkeeper.core.json_utils import dumps, loads
from burnkeeper.state.journal import BurnJournal


@pytest.fixture
def journal(tmp_path):
    return BurnJournal(str(tmp_path), fsync=False)


@pytest.mark.asyncio
async def test_unresolved_tracks_open_intents(journal):
    await journal.initialize()
    await journal.record_intent("i1", "milestone", "m1", 5e7, "mint", valuation=200_000)
    await journal.record_intent("i2", "buyback", "c1", 990.0, "mint")
    await journal.record_submitted("i1", "tx-1")
    await journal.record_recorded("i2", "b2")

    pending = await journal.unresolved()
    assert [p.intent_id for p in pending] == ["i1"]
    assert pending[0].tx_ref == "tx-1"
    assert pending[0].reference_id == "m1"
    assert pending[0].amount == 5e7
    assert pending[0].extra == {"valuation": 200_000}
    await journal.close()


@pytest.mark.asyncio
async def test_failed_closes_an_intent(journal):
    await journal.initialize()
    await journal.record_intent("i1", "milestone", "m1", 1.0, "mint")
    await journal.record_failed("i1", "TIMEOUT")
    assert await journal.unresolved() == []
    await journal.close()


@pytest.mark.asyncio
async def test_sequence_survives_restart(tmp_path):
    j1 = BurnJournal(str(tmp_path), fsync=False)
    await j1.initialize()
    await j1.record_intent("i1", "milestone", "m1", 1.0, "mint")
    await j1.record_submitted("i1", "tx-1")
    await j1.close()

    j2 = BurnJournal(str(tmp_path), fsync=False)
    await j2.initialize()
    seq = await j2.record_recorded("i1", "b1")
    assert seq == 3
    assert await j2.unresolved() == []
    await j2.close()


@pytest.mark.asyncio
async def test_corrupt_line_is_skipped(tmp_path):
    j = BurnJournal(str(tmp_path), fsync=False)
    await j.initialize()
    await j.record_intent("i1", "milestone", "m1", 1.0, "mint")
    await j.close()

    path = tmp_path / "burn_journal.log"
    line = loads(path.read_text().strip())
    line["data"]["amount"] = 999.0  # checksum no longer matches
    with open(path, "a") as f:
        f.write("not json\n")
        f.write(dumps(line) + "\n")

    j2 = BurnJournal(str(tmp_path), fsync=False)
    await j2.initialize()
    pending = await j2.unresolved()
    assert len(pending) == 1
    assert pending[0].amount == 1.0
    assert j2.get_stats()["corrupt_entries"] >= 2
    await j2.close()


@pytest.mark.asyncio
async def test_compact_keeps_only_open_intents(journal):
    await journal.initialize()
    await journal.record_intent("i1", "milestone", "m1", 1.0, "mint")
    await journal.record_recorded("i1", "b1")
    await journal.record_intent("i2", "buyback", "c1", 2.0, "mint")

    dropped = await journal.compact()
    assert dropped == 2
    assert [p.intent_id for p in await journal.unresolved()] == ["i2"]

    # Still writable after the rewrite
    await journal.record_failed("i2", "UNKNOWN")
    assert await journal.unresolved() == []
    assert await journal.compact() == 2
    await journal.close()


@pytest.mark.asyncio
async def test_append_before_initialize_raises(journal):
    with pytest.raises(IOError):
        await journal.record_intent("i1", "milestone", "m1", 1.0, "mint")
