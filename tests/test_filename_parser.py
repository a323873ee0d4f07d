"""Tests for the recording filename parser."""

from datetime import datetime, timezone

import pytest

from recindex.services.filename_parser import (
    ParsedRecording,
    ParseFailure,
    ParseFailureReason,
    build_playback_segments,
    parse_recording_filename,
)


class TestParsedFilenames:
    """Well-formed and partially populated names."""

    def test_full_name(self):
        result = parse_recording_filename("svcA_20240101_120000_bob_call123.wav")
        assert result == ParsedRecording(
            service_group="svcA",
            other_party="bob",
            description=None,
            call_id="call123",
            recorded_at=datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
        )

    def test_description_segments_are_joined(self):
        result = parse_recording_filename("sales_20240315_093000_carol_billing_dispute_C-9981.mp3")
        assert isinstance(result, ParsedRecording)
        assert result.other_party == "carol"
        assert result.description == "billing dispute"
        assert result.call_id == "C-9981"

    def test_missing_other_party_is_absent_not_inferred(self):
        result = parse_recording_filename("svcA_20240101_120000_call123.wav")
        assert isinstance(result, ParsedRecording)
        assert result.other_party is None
        assert result.description is None
        assert result.call_id == "call123"

    def test_empty_service_group_is_absent(self):
        result = parse_recording_filename("_20240101_120000_bob_call123.wav")
        assert isinstance(result, ParsedRecording)
        assert result.service_group is None

    def test_accepts_relative_paths(self):
        result = parse_recording_filename("2024/01/svcA_20240101_130500_carol_call124.wav")
        assert isinstance(result, ParsedRecording)
        assert result.call_id == "call124"

    def test_timestamp_interpreted_in_configured_zone(self):
        result = parse_recording_filename(
            "svcA_20240701_120000_bob_call1.wav", timezone_name="America/New_York"
        )
        assert isinstance(result, ParsedRecording)
        # EDT is UTC-4
        assert result.recorded_at == datetime(2024, 7, 1, 16, 0, 0, tzinfo=timezone.utc)

    def test_deterministic(self):
        name = "svcA_20240101_120000_bob_call123.wav"
        assert parse_recording_filename(name) == parse_recording_filename(name)


class TestParseFailures:
    """Names that must be quarantined."""

    def test_missing_call_id_segment(self):
        result = parse_recording_filename("svcA_20240101_120000_bob.wav")
        assert isinstance(result, ParseFailure)
        assert result.reason is ParseFailureReason.MISSING_CALL_ID

    def test_only_timestamp_segments(self):
        result = parse_recording_filename("svcA_20240101_120000.wav")
        assert isinstance(result, ParseFailure)
        assert result.reason is ParseFailureReason.MISSING_CALL_ID

    def test_too_few_segments(self):
        result = parse_recording_filename("recording.wav")
        assert isinstance(result, ParseFailure)
        assert result.reason is ParseFailureReason.MISSING_SEGMENT

    @pytest.mark.parametrize(
        "name",
        [
            "svcA_2024011_120000_bob_call1.wav",
            "svcA_20241301_120000_bob_call1.wav",
            "svcA_20240101_256000_bob_call1.wav",
            "svcA_yesterday_noon_bob_call1.wav",
        ],
    )
    def test_malformed_timestamp(self, name):
        result = parse_recording_filename(name)
        assert isinstance(result, ParseFailure)
        assert result.reason is ParseFailureReason.MALFORMED_TIMESTAMP

    def test_custom_call_id_pattern(self):
        result = parse_recording_filename(
            "svcA_20240101_120000_bob_call123.wav", call_id_pattern=r"^CID\d+$"
        )
        assert isinstance(result, ParseFailure)
        assert result.reason is ParseFailureReason.MISSING_CALL_ID


def test_playback_segments():
    assert build_playback_segments("alice", "2024/01/a_20240101_120000_call1.wav") == [
        "alice",
        "2024",
        "01",
        "a_20240101_120000_call1.wav",
    ]
