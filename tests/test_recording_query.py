"""Tests for the read-side recording search."""

from datetime import date

import pytest

from recindex.db.db import db_session
from recindex.services.change_detector import FileEntry
from recindex.services.errors import InvalidCursorError
from recindex.services.filename_parser import parse_recording_filename
from recindex.services.recording_query import (
    RecordingQuery,
    build_playback_url,
    decode_cursor,
    get_recording,
    search_recordings,
)
from recindex.services.upsert_writer import IndexItem, write_batch

AGENTS = {
    "alice": [
        "svcA_20240101_120000_bob_call123.wav",
        "svcA_20240101_130500_carol_call124.wav",
        "svcB_20240102_090000_Bob_billing_call125.wav",
        "svcB_20240105_170000_dave_call126.wav",
        "2024/svcA_20240110_080000_call127.wav",
    ],
    "bob": ["svcA_20240101_120000_alice_call200.wav"],
    "carol": ["svcC_20240101_120000_bob_call300.wav"],
}


@pytest.fixture
async def seeded(database):
    for agent_id, paths in AGENTS.items():
        items = [IndexItem(entry=FileEntry(p, 1_000, 1), parsed=parse_recording_filename(p)) for p in paths]
        async with db_session() as session:
            async with session.begin():
                await write_batch(session, agent_id, items)


async def _search(**kwargs):
    kwargs.setdefault("agent_id", "alice")
    async with db_session() as session:
        return await search_recordings(session, RecordingQuery(**kwargs))


async def _ids(**kwargs):
    return [item.call_id for item in (await _search(**kwargs)).items]


class TestFilters:
    async def test_agent_scope_and_newest_first(self, seeded):
        assert await _ids() == ["call127", "call126", "call125", "call124", "call123"]
        assert await _ids(agent_id="bob") == ["call200"]
        assert await _ids(agent_id="nobody") == []

    async def test_date_range_is_inclusive(self, seeded):
        assert await _ids(date_from=date(2024, 1, 1), date_to=date(2024, 1, 2)) == [
            "call125",
            "call124",
            "call123",
        ]
        assert await _ids(date_from=date(2024, 1, 5), date_to=date(2024, 1, 5)) == ["call126"]

    async def test_participant_is_case_insensitive(self, seeded):
        assert await _ids(participant="BOB") == ["call125", "call123"]

    async def test_filters_combine(self, seeded):
        assert await _ids(participant="bob", service_group="svcA") == ["call123"]
        assert await _ids(call_id="call124") == ["call124"]

    async def test_total_counts_all_matches(self, seeded):
        page = await _search(limit=2)
        assert page.total == 5
        assert page.has_more


class TestPagination:
    async def test_cursor_pages_cover_every_row_once(self, seeded):
        seen = []
        cursor = None
        while True:
            page = await _search(limit=2, cursor=cursor)
            seen.extend(item.call_id for item in page.items)
            if not page.has_more:
                break
            cursor = page.next_cursor
        assert seen == ["call127", "call126", "call125", "call124", "call123"]

    async def test_offset_paging(self, seeded):
        assert await _ids(limit=2, offset=2) == ["call125", "call124"]

    async def test_last_page_has_no_cursor(self, seeded):
        page = await _search(limit=10)
        assert not page.has_more
        assert page.next_cursor is None

    def test_garbage_cursor_is_rejected(self):
        with pytest.raises(InvalidCursorError):
            decode_cursor("not-a-cursor")


class TestViews:
    async def test_view_carries_playback_segments(self, seeded):
        [item] = (await _search(call_id="call127")).items
        assert item.playback_segments == ["alice", "2024", "svcA_20240110_080000_call127.wav"]
        assert item.playback_url == "/media/recordings/alice/2024/svcA_20240110_080000_call127.wav"
        assert item.other_party is None

        async with db_session() as session:
            fetched = await get_recording(session, item.id)
        assert fetched == item

    def test_playback_url_escapes_segments(self):
        assert build_playback_url(["alice", "a b#1.wav"]) == "/media/recordings/alice/a%20b%231.wav"
