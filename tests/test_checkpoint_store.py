"""Tests for the checkpoint cursor and its persistence."""

from datetime import datetime, timezone

from recindex.db.db import db_session
from recindex.services.checkpoint_store import (
    CheckpointCursor,
    advance_cursor,
    list_checkpoints,
    load_checkpoint,
    mark_run_complete,
)


class TestCursorOrdering:
    def test_mtime_dominates(self):
        cursor = CheckpointCursor(mtime_ns=100, path="z.wav")
        assert cursor.is_before(101, "a.wav")
        assert not cursor.is_before(99, "zz.wav")

    def test_ties_break_on_utf8_bytes(self):
        cursor = CheckpointCursor(mtime_ns=100, path="b.wav")
        assert cursor.is_before(100, "c.wav")
        assert not cursor.is_before(100, "a.wav")
        assert not cursor.is_before(100, "b.wav")
        # "é" encodes above every ASCII byte
        assert cursor.is_before(100, "é.wav")

    def test_from_datetime_admits_files_at_that_instant(self):
        since = datetime(2024, 1, 1, 12, 0, 0, 500, tzinfo=timezone.utc)
        cursor = CheckpointCursor.from_datetime(since)
        exact_ns = 1704110400 * 1_000_000_000 + 500_000
        assert cursor.is_before(exact_ns, "a.wav")
        assert not cursor.is_before(exact_ns - 1, "a.wav")


class TestPersistence:
    async def test_unknown_agent_has_no_cursor(self, database):
        async with db_session() as session:
            state = await load_checkpoint(session, "alice")
        assert state.cursor is None
        assert state.checkpoint_at is None

    async def test_cursor_only_moves_forward(self, database):
        async with db_session() as session:
            async with session.begin():
                await advance_cursor(session, "alice", CheckpointCursor(200, "b.wav"))
        async with db_session() as session:
            async with session.begin():
                kept = await advance_cursor(session, "alice", CheckpointCursor(100, "z.wav"))

        assert kept == CheckpointCursor(200, "b.wav")
        async with db_session() as session:
            state = await load_checkpoint(session, "alice")
        assert state.cursor == CheckpointCursor(200, "b.wav")

    async def test_uncommitted_advance_is_not_persisted(self, database):
        async with db_session() as session:
            await advance_cursor(session, "alice", CheckpointCursor(200, "b.wav"))
            await session.rollback()

        async with db_session() as session:
            state = await load_checkpoint(session, "alice")
        assert state.cursor is None

    async def test_mark_run_complete_stamps_reconciliation(self, database):
        now = datetime(2024, 6, 1, tzinfo=timezone.utc)
        async with db_session() as session:
            async with session.begin():
                await mark_run_complete(session, "alice", reconciled=True, full_reconcile=False, now=now)

        async with db_session() as session:
            [state] = await list_checkpoints(session)
        assert state.checkpoint_at == now
        assert state.last_reconciled_at == now
        assert state.last_full_reconciled_at is None
