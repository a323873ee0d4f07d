"""Incremental directory walker for one agent's recordings.

The walk is a function of (directory contents, checkpoint cursor): there is
no hidden traversal state. It yields the files that sort after the cursor
and, when reconciliation is due, the full listing used for deletion
detection.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from recindex.config.logger import app_logger
from recindex.services.checkpoint_store import CheckpointCursor, CheckpointState, path_sort_key
from recindex.services.errors import AgentDirectoryNotFoundError


@dataclass(frozen=True)
class FileEntry:
    path: str  # relative to the agent directory, POSIX separators
    mtime_ns: int
    size: int

    @property
    def cursor(self) -> CheckpointCursor:
        return CheckpointCursor(mtime_ns=self.mtime_ns, path=self.path)


def entry_sort_key(entry: FileEntry) -> Tuple[int, bytes]:
    return (entry.mtime_ns, path_sort_key(entry.path))


@dataclass
class WalkResult:
    """Outcome of one walk.

    ``skipped_dirs`` and ``skipped_files`` were present but unreadable; the
    deletion reconciler must leave rows under them alone. ``transient_skips``
    counts entries that vanished while the walk was in progress.
    """

    candidates: List[FileEntry] = field(default_factory=list)
    listing: Optional[Dict[str, FileEntry]] = None
    skipped_dirs: List[str] = field(default_factory=list)
    skipped_files: List[str] = field(default_factory=list)
    transient_skips: int = 0
    files_seen: int = 0

    @property
    def errored(self) -> int:
        return len(self.skipped_dirs) + len(self.skipped_files)


def _has_extension(name: str, extensions: Tuple[str, ...]) -> bool:
    return not extensions or name.lower().endswith(extensions)


def walk_agent_directory(
    root: Path,
    cursor: Optional[CheckpointCursor],
    *,
    extensions: Iterable[str] = (),
    collect_listing: bool = True,
) -> WalkResult:
    """Walk ``root`` and collect files after ``cursor``.

    Uses an iterative ``os.scandir`` stack. Symlinked directories are not
    descended into; symlinked files are followed. Permission and link errors
    skip the entry with a warning instead of failing the walk.

    Raises:
        AgentDirectoryNotFoundError: the agent directory itself is missing or
            unreadable.
    """
    extensions = tuple(ext.lower() for ext in extensions)
    result = WalkResult(listing={} if collect_listing else None)

    if not root.is_dir():
        raise AgentDirectoryNotFoundError(f"Agent directory not found: {root}")

    stack: List[Tuple[str, str]] = [("", str(root))]
    while stack:
        rel_dir, abs_dir = stack.pop()
        try:
            with os.scandir(abs_dir) as it:
                entries = list(it)
        except FileNotFoundError:
            if not rel_dir:
                raise AgentDirectoryNotFoundError(f"Agent directory vanished: {root}")
            result.transient_skips += 1
            app_logger.debug(f"Directory vanished during walk: {abs_dir}")
            continue
        except OSError as exc:
            if not rel_dir:
                raise AgentDirectoryNotFoundError(f"Agent directory unreadable: {root} ({exc})") from exc
            app_logger.warning(f"Skipping unreadable directory {abs_dir}: {exc}")
            result.skipped_dirs.append(rel_dir)
            continue

        for entry in entries:
            rel_path = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
            try:
                if entry.is_dir(follow_symlinks=False):
                    stack.append((rel_path, entry.path))
                    continue
                if not _has_extension(entry.name, extensions):
                    continue
                if entry.is_symlink() and entry.is_dir():
                    app_logger.debug(f"Not descending into symlinked directory {entry.path}")
                    continue
                st = entry.stat(follow_symlinks=True)
            except FileNotFoundError:
                if _is_symlink(entry):
                    app_logger.warning(f"Skipping broken symlink {entry.path}")
                    result.skipped_files.append(rel_path)
                else:
                    result.transient_skips += 1
                    app_logger.debug(f"File vanished during walk: {entry.path}")
                continue
            except OSError as exc:
                app_logger.warning(f"Skipping unreadable file {entry.path}: {exc}")
                result.skipped_files.append(rel_path)
                continue

            if not stat.S_ISREG(st.st_mode):
                continue

            file_entry = FileEntry(path=rel_path, mtime_ns=st.st_mtime_ns, size=st.st_size)
            result.files_seen += 1
            if result.listing is not None:
                result.listing[rel_path] = file_entry
            if cursor is None or cursor.is_before(file_entry.mtime_ns, file_entry.path):
                result.candidates.append(file_entry)

    result.candidates.sort(key=entry_sort_key)
    return result


def _is_symlink(entry: os.DirEntry) -> bool:
    try:
        return entry.is_symlink()
    except OSError:
        return False


def merge_unindexed(walk: WalkResult, known: Mapping[str, int]) -> int:
    """Add listed files the store does not know (or knows at another mtime).

    Catches files written with a back-dated mtime and restored files, which
    the cursor alone would never select. Returns how many were added.
    """
    if walk.listing is None:
        return 0
    already = {entry.path for entry in walk.candidates}
    added = [
        entry
        for path, entry in walk.listing.items()
        if path not in already and known.get(path) != entry.mtime_ns
    ]
    if added:
        walk.candidates.extend(added)
        walk.candidates.sort(key=entry_sort_key)
    return len(added)


@dataclass(frozen=True)
class ReconcilePlan:
    due: bool
    full: bool
    window_start: Optional[datetime] = None


def plan_reconciliation(
    state: CheckpointState,
    now: datetime,
    *,
    force: bool = False,
    interval_seconds: float,
    window_days: int,
    full_interval_seconds: float,
) -> ReconcilePlan:
    """Decide whether this run lists the full tree and reconciles deletions.

    Deletion detection runs at a slower cadence than new-file detection. With
    a rolling window, regular passes only compare recent rows and a periodic
    full pass covers the rest.
    """
    last_full = state.last_full_reconciled_at
    if force or last_full is None or now - last_full >= timedelta(seconds=full_interval_seconds):
        return ReconcilePlan(due=True, full=True)

    last = state.last_reconciled_at
    due = last is None or now - last >= timedelta(seconds=interval_seconds)
    if not due:
        return ReconcilePlan(due=False, full=False)
    if window_days <= 0:
        return ReconcilePlan(due=True, full=True)
    return ReconcilePlan(due=True, full=False, window_start=now - timedelta(days=window_days))
