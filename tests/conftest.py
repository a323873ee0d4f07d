"""Shared fixtures: a throwaway SQLite index store and recordings tree."""

import os
from datetime import datetime, timezone
from pathlib import Path

os.environ.setdefault("LOG_TO_FILE", "false")

import pytest

from recindex.config.settings import settings
from recindex.db.db import close_db, init_db


# 2024-01-01 12:00:00 UTC
BASE_MTIME_NS = int(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc).timestamp()) * 1_000_000_000


@pytest.fixture
def recordings_root(tmp_path, monkeypatch) -> Path:
    root = tmp_path / "recordings"
    root.mkdir()
    monkeypatch.setattr(settings, "RECORDINGS_ROOT", str(root))
    return root


@pytest.fixture
def make_recording(recordings_root):
    """Create a recording file for an agent with an explicit mtime (seconds offset)."""

    def _make(agent_id: str, name: str, offset_seconds: int = 0, content: bytes = b"RIFF0000WAVE") -> Path:
        path = recordings_root / agent_id / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        mtime_ns = BASE_MTIME_NS + offset_seconds * 1_000_000_000
        os.utime(path, ns=(mtime_ns, mtime_ns))
        return path

    return _make


@pytest.fixture
async def database(tmp_path):
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'index.db'}")
    yield
    await close_db()


@pytest.fixture
def pipeline_settings(monkeypatch):
    """Small batches and immediate retries so tests exercise batch boundaries."""
    monkeypatch.setattr(settings, "BATCH_SIZE", 2)
    monkeypatch.setattr(settings, "RETRY_BACKOFF_BASE_SECONDS", 0.0)
    monkeypatch.setattr(settings, "RETRY_BACKOFF_MAX_SECONDS", 0.0)
    monkeypatch.setattr(settings, "RECONCILE_INTERVAL_SECONDS", 0.0)
    monkeypatch.setattr(settings, "FULL_RECONCILE_INTERVAL_SECONDS", 0.0)
    monkeypatch.setattr(settings, "RECONCILE_WINDOW_DAYS", 0)
    return settings


@pytest.fixture
def base_mtime_ns() -> int:
    return BASE_MTIME_NS
