"""Tests for batched recording upserts and quarantine handling."""

import pytest
from sqlmodel import select

from recindex.db.db import db_session
from recindex.models.recording import QuarantinedFile, Recording
from recindex.services.change_detector import FileEntry
from recindex.services.filename_parser import parse_recording_filename
from recindex.services.upsert_writer import IndexItem, iter_batches, load_known_files, write_batch


def _item(path: str, mtime_ns: int = 1_000, size: int = 10) -> IndexItem:
    return IndexItem(entry=FileEntry(path, mtime_ns, size), parsed=parse_recording_filename(path))


async def _write(items):
    async with db_session() as session:
        async with session.begin():
            return await write_batch(session, "alice", items)


async def _rows(model):
    async with db_session() as session:
        return list((await session.execute(select(model))).scalars().all())


def test_iter_batches_splits_in_order():
    items = [_item(f"s_20240101_120000_call{i}.wav") for i in range(5)]
    batches = list(iter_batches(items, 2))
    assert [len(b) for b in batches] == [2, 2, 1]
    assert [i for b in batches for i in b] == items


def test_iter_batches_rejects_zero_size():
    with pytest.raises(ValueError):
        list(iter_batches([], 0))


class TestWriteBatch:
    async def test_inserts_new_rows_with_playback_segments(self, database):
        stats = await _write([_item("2024/svcA_20240101_120000_bob_call123.wav")])

        assert stats.inserted == 1
        [row] = await _rows(Recording)
        assert row.agent_id == "alice"
        assert row.call_id == "call123"
        assert row.other_party == "bob"
        assert row.playback_segments == ["alice", "2024", "svcA_20240101_120000_bob_call123.wav"]
        assert row.deleted_at is None

    async def test_rewriting_same_batch_is_a_no_op(self, database):
        items = [_item("svcA_20240101_120000_bob_call123.wav"), _item("svcA_20240101_130000_bob_call124.wav")]
        await _write(items)
        before = {r.path: r.updated_at for r in await _rows(Recording)}

        stats = await _write(items)

        assert stats.inserted == 0 and stats.updated == 0
        assert stats.unchanged == 2
        assert {r.path: r.updated_at for r in await _rows(Recording)} == before

    async def test_newer_mtime_updates_in_place(self, database):
        await _write([_item("svcA_20240101_120000_bob_call123.wav", mtime_ns=1_000)])
        [original] = await _rows(Recording)

        stats = await _write([_item("svcA_20240101_120000_bob_call123.wav", mtime_ns=2_000, size=99)])

        assert stats.updated == 1
        [row] = await _rows(Recording)
        assert row.id == original.id
        assert row.file_mtime_ns == 2_000
        assert row.file_size == 99

    async def test_soft_deleted_row_is_revived(self, database):
        await _write([_item("svcA_20240101_120000_bob_call123.wav")])
        async with db_session() as session:
            row = (await session.execute(select(Recording))).scalar_one()
            row.deleted_at = row.created_at
            await session.commit()

        stats = await _write([_item("svcA_20240101_120000_bob_call123.wav")])

        assert stats.updated == 1
        [row] = await _rows(Recording)
        assert row.deleted_at is None

    async def test_unparseable_file_is_quarantined_not_indexed(self, database):
        stats = await _write([_item("svcA_20240101_120000_bob.wav"), _item("garbage.wav")])

        assert stats.quarantined == 2
        assert await _rows(Recording) == []
        reasons = {q.path: q.reason for q in await _rows(QuarantinedFile)}
        assert reasons == {
            "svcA_20240101_120000_bob.wav": "missing_call_id",
            "garbage.wav": "missing_segment",
        }

    async def test_unchanged_quarantined_file_is_not_rewritten(self, database):
        await _write([_item("garbage.wav")])
        stats = await _write([_item("garbage.wav")])
        assert stats.quarantined == 0
        assert stats.unchanged == 1

    async def test_load_known_files_covers_recordings_and_quarantine(self, database):
        await _write([_item("svcA_20240101_120000_bob_call123.wav", mtime_ns=5), _item("garbage.wav", mtime_ns=7)])

        async with db_session() as session:
            known = await load_known_files(session, "alice")

        assert known == {"svcA_20240101_120000_bob_call123.wav": 5, "garbage.wav": 7}

    async def test_live_row_that_stops_parsing_is_counted_as_soft_deleted(self, database):
        path = "svcA_20240101_120000_bob_call123.wav"
        await _write([_item(path)])
        strict = IndexItem(
            entry=FileEntry(path, 2_000, 10),
            parsed=parse_recording_filename(path, call_id_pattern=r"^CID\d+$"),
        )

        stats = await _write([strict])

        assert stats.quarantined == 1
        assert stats.soft_deleted == 1
        [row] = await _rows(Recording)
        assert row.deleted_at is not None
