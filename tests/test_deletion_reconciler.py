"""Tests for deletion reconciliation."""

from datetime import datetime, timezone

import pytest
from sqlmodel import select

from recindex.db.db import db_session
from recindex.models.recording import QuarantinedFile, Recording
from recindex.services.change_detector import FileEntry, WalkResult
from recindex.services.deletion_reconciler import find_missing_paths, reconcile_deletions
from recindex.services.filename_parser import parse_recording_filename
from recindex.services.job_coordinator import claim_agent
from recindex.services.upsert_writer import IndexItem, write_batch


def test_missing_paths_exclude_unreadable_scope():
    store = ["a.wav", "locked/b.wav", "locked2/c.wav", "link.wav", "gone.wav"]
    listing = {"a.wav": object()}

    missing = find_missing_paths(store, listing, skipped_dirs=["locked"], skipped_files=["link.wav"])

    assert missing == ["gone.wav", "locked2/c.wav"]


async def _seed(paths):
    items = [IndexItem(entry=FileEntry(p, 1_000, 1), parsed=parse_recording_filename(p)) for p in paths]
    async with db_session() as session:
        async with session.begin():
            await write_batch(session, "alice", items)


def _walk(*present, skipped_dirs=()):
    return WalkResult(listing={p: FileEntry(p, 1_000, 1) for p in present}, skipped_dirs=list(skipped_dirs))


async def _live_paths():
    async with db_session() as session:
        rows = (await session.execute(select(Recording))).scalars().all()
    return sorted(r.path for r in rows if r.deleted_at is None)


class TestReconcileDeletions:
    async def test_soft_deletes_rows_missing_from_listing(self, database, pipeline_settings):
        await _seed([
            "svcA_20240101_120000_bob_call123.wav",
            "svcA_20240101_130500_carol_call124.wav",
            "svcA_20240101_140000_dave_call125.wav",
        ])
        claim = await claim_agent("alice")

        stats = await reconcile_deletions(
            "alice",
            _walk("svcA_20240101_130500_carol_call124.wav"),
            claim_token=claim.claim_token,
        )

        assert stats.compared == 3
        assert stats.soft_deleted == 2
        assert await _live_paths() == ["svcA_20240101_130500_carol_call124.wav"]

    async def test_unreadable_directory_is_left_alone(self, database, pipeline_settings):
        await _seed(["locked/svcA_20240101_120000_bob_call123.wav"])
        claim = await claim_agent("alice")

        stats = await reconcile_deletions("alice", _walk(skipped_dirs=["locked"]), claim_token=claim.claim_token)

        assert stats.soft_deleted == 0
        assert await _live_paths() == ["locked/svcA_20240101_120000_bob_call123.wav"]

    async def test_window_limits_comparison_to_recent_rows(self, database, pipeline_settings):
        await _seed(["svcA_20230101_120000_bob_call1.wav", "svcA_20240601_120000_bob_call2.wav"])
        claim = await claim_agent("alice")

        stats = await reconcile_deletions(
            "alice",
            _walk(),
            claim_token=claim.claim_token,
            window_start=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        assert stats.compared == 1
        assert await _live_paths() == ["svcA_20230101_120000_bob_call1.wav"]

    async def test_vanished_quarantined_files_are_cleared(self, database, pipeline_settings):
        await _seed(["garbage.wav"])
        claim = await claim_agent("alice")

        stats = await reconcile_deletions("alice", _walk(), claim_token=claim.claim_token)

        assert stats.quarantine_cleared == 1
        async with db_session() as session:
            assert (await session.execute(select(QuarantinedFile))).scalars().all() == []

    async def test_requires_full_listing(self, database):
        claim = await claim_agent("alice")
        with pytest.raises(ValueError):
            await reconcile_deletions("alice", WalkResult(listing=None), claim_token=claim.claim_token)
