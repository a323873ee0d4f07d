"""Recording filename parser.

All knowledge of the filename layout lives here:

    <service_group>_<YYYYMMDD>_<HHMMSS>[_<other_party>[_<description...>]]_<call_id>.<ext>

e.g. ``svcA_20240101_120000_bob_call123.wav``. Parsing is pure: the same
filename (and settings) always produce the same result, so files can be
reprocessed safely.

Optional segments that are missing or empty are recorded as ``None``. The
call id and the timestamp are required; without them the file is
quarantined instead of becoming a recording.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from pathlib import PurePosixPath
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

from recindex.config.settings import DEFAULT_CALL_ID_PATTERN


SEGMENT_SEPARATOR = "_"
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

# Minimum number of segments: service group, date, time, call id
MIN_SEGMENTS = 4


class ParseFailureReason(str, Enum):
    MISSING_SEGMENT = "missing_segment"
    MALFORMED_TIMESTAMP = "malformed_timestamp"
    MISSING_CALL_ID = "missing_call_id"


@dataclass(frozen=True)
class ParsedRecording:
    """Fields derived from one recording filename."""

    service_group: Optional[str]
    other_party: Optional[str]
    description: Optional[str]
    call_id: str
    recorded_at: datetime


@dataclass(frozen=True)
class ParseFailure:
    reason: ParseFailureReason
    detail: str


ParseResult = Union[ParsedRecording, ParseFailure]


@lru_cache(maxsize=32)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern)


@lru_cache(maxsize=32)
def _zone(name: str):
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _optional(segment: str) -> Optional[str]:
    segment = segment.strip()
    return segment or None


def parse_recording_filename(
    filename: str,
    *,
    timezone_name: str = "UTC",
    call_id_pattern: str = DEFAULT_CALL_ID_PATTERN,
) -> ParseResult:
    """Parse a recording filename (a bare name or a relative path).

    Returns a ``ParsedRecording``, or a ``ParseFailure`` when the call id or
    the timestamp cannot be determined.
    """
    stem = PurePosixPath(filename).stem
    segments = stem.split(SEGMENT_SEPARATOR)

    if len(segments) < 3:
        return ParseFailure(
            ParseFailureReason.MISSING_SEGMENT,
            f"expected at least {MIN_SEGMENTS} '{SEGMENT_SEPARATOR}'-separated segments, got {len(segments)}",
        )

    date_part, time_part = segments[1].strip(), segments[2].strip()
    if not (len(date_part) == 8 and len(time_part) == 6 and date_part.isdigit() and time_part.isdigit()):
        return ParseFailure(
            ParseFailureReason.MALFORMED_TIMESTAMP,
            f"timestamp segments '{date_part}_{time_part}' are not YYYYMMDD_HHMMSS",
        )
    try:
        local = datetime.strptime(date_part + time_part, TIMESTAMP_FORMAT)
    except ValueError as exc:
        return ParseFailure(ParseFailureReason.MALFORMED_TIMESTAMP, str(exc))
    recorded_at = local.replace(tzinfo=_zone(timezone_name)).astimezone(timezone.utc)

    if len(segments) < MIN_SEGMENTS:
        return ParseFailure(ParseFailureReason.MISSING_CALL_ID, "no call id segment")

    call_id = segments[-1].strip()
    if not call_id or not _compile(call_id_pattern).match(call_id):
        return ParseFailure(
            ParseFailureReason.MISSING_CALL_ID,
            f"last segment '{call_id}' is not a call id",
        )

    other_party = _optional(segments[3]) if len(segments) >= 5 else None
    description = None
    if len(segments) >= 6:
        description = _optional(" ".join(s.strip() for s in segments[4:-1] if s.strip()))

    return ParsedRecording(
        service_group=_optional(segments[0]),
        other_party=other_party,
        description=description,
        call_id=call_id,
        recorded_at=recorded_at,
    )


def build_playback_segments(agent_id: str, path: str) -> List[str]:
    """URL path segments for streaming a recording: agent id then path parts."""
    return [agent_id, *PurePosixPath(path).parts]
