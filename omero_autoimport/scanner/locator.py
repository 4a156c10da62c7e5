"""Time-window file discovery for watch directories.

A file is "new" when its creation (birth) time falls inside the trailing
scan window. Modification time is not used: copies onto network shares
preserve or bypass it unpredictably, while the birth time on the mount
reflects when the file became visible locally.
"""

import fnmatch
import logging
import os
import stat
import subprocess
from collections.abc import Callable, Iterable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from omero_autoimport.schemas.ingest import CandidateFile

logger = logging.getLogger(__name__)

# Values GNU stat prints for %W when the file system has no birth time
_UNKNOWN_BIRTH = {"", "0", "-", "?"}


class NoBirthTime(Exception):
    """The file system does not record a creation time for this file."""


class SkippedPath(BaseModel):
    """A path dropped during discovery because it could not be dated."""

    path: Path
    reason: str


class LocateResult(BaseModel):
    """Files found in one discovery pass.

    ``misconfigured`` is set when the pass could not run at all (no suffixes,
    unreadable root), so callers can tell that apart from "found nothing".
    """

    candidates: list[CandidateFile] = Field(default_factory=list)
    skipped: list[SkippedPath] = Field(default_factory=list)
    misconfigured: str | None = None


class NewFileFilter(Protocol):
    """Decides whether a discovered file still needs processing."""

    def is_new(self, candidate: CandidateFile) -> bool: ...


class TimeWindow:
    """Trailing window ``(now - span, +inf)``: old edge exclusive, ``now`` included."""

    def __init__(self, span: timedelta, now: datetime) -> None:
        if now.tzinfo is None:
            raise ValueError("now must be timezone-aware")
        self.span = span
        self.now = now

    @property
    def cutoff(self) -> datetime:
        return self.now - self.span

    def is_new(self, candidate: CandidateFile) -> bool:
        return candidate.created_at > self.cutoff

    def __repr__(self) -> str:
        return f"TimeWindow(cutoff={self.cutoff.isoformat()}, now={self.now.isoformat()})"


def read_birth_time(path: Path) -> float:
    """Return the creation time of ``path`` as a POSIX timestamp.

    Uses ``st_birthtime`` where the platform exposes it, otherwise GNU
    ``stat --format=%W`` (statx). The inode change time is never used in its
    place: a chmod or rename would make an old file look new.

    Raises:
        NoBirthTime: If the file system does not record a birth time.
        OSError: If the path cannot be stat'ed or ``stat`` cannot be run.
        subprocess.CalledProcessError: If ``stat`` fails.
        ValueError: If ``stat`` prints something that is not a number.
    """
    st = os.lstat(path)
    birth = getattr(st, "st_birthtime", None)
    if birth:
        return float(birth)

    result = subprocess.run(
        ["stat", "--format=%W", "--", str(path)],
        capture_output=True,
        text=True,
        check=True,
    )
    value = result.stdout.strip()
    if value in _UNKNOWN_BIRTH:
        raise NoBirthTime(f"no birth time recorded for {path}")
    return float(value)


def suffix_matcher(suffixes: Iterable[str]) -> Callable[[str], bool]:
    """Case-insensitive ``endswith`` match against any of ``suffixes``."""
    lowered = tuple(s.strip().lower() for s in suffixes if s.strip())

    def _match(name: str) -> bool:
        return name.lower().endswith(lowered)

    return _match


def glob_matcher(pattern: str) -> Callable[[str], bool]:
    """Case-insensitive shell glob match on the file name."""
    lowered = pattern.lower()

    def _match(name: str) -> bool:
        return fnmatch.fnmatchcase(name.lower(), lowered)

    return _match


def _check_root(root: Path) -> str | None:
    """Return why ``root`` cannot be scanned, or None if it can."""
    if not root.is_dir():
        return f"{root} is not a directory"
    try:
        with os.scandir(root):
            pass
    except OSError as exc:
        return f"cannot read {root}: {exc.strerror or exc}"
    return None


def _iter_names(root: Path, recursive: bool, skipped: list[SkippedPath]) -> Iterator[Path]:
    def _on_error(exc: OSError) -> None:
        failed = Path(exc.filename) if exc.filename else root
        logger.warning("Cannot read directory %s: %s", failed, exc.strerror or exc)
        skipped.append(SkippedPath(path=failed, reason=f"unreadable directory: {exc.strerror or exc}"))

    if recursive:
        for dirpath, _dirnames, filenames in os.walk(root, onerror=_on_error):
            for name in filenames:
                yield Path(dirpath) / name
        return

    try:
        with os.scandir(root) as entries:
            names = [entry.name for entry in entries]
    except OSError as exc:
        _on_error(exc)
        return
    for name in names:
        yield root / name


def find_new_files(
    root: str | Path,
    match: Callable[[str], bool],
    window: NewFileFilter,
    *,
    recursive: bool = True,
    birth_time: Callable[[Path], float] = read_birth_time,
) -> LocateResult:
    """Find regular files under ``root`` whose names match and that are new.

    Symlinks are not followed. A path whose metadata cannot be read is
    recorded in ``skipped`` and the scan continues.
    """
    root = Path(root).absolute()
    problem = _check_root(root)
    if problem:
        return LocateResult(misconfigured=problem)

    result = LocateResult()
    seen: set[Path] = set()
    for path in _iter_names(root, recursive, result.skipped):
        if not match(path.name) or path in seen:
            continue
        seen.add(path)
        try:
            if not stat.S_ISREG(os.lstat(path).st_mode):
                continue
            created_at = datetime.fromtimestamp(birth_time(path), UTC)
        except NoBirthTime:
            logger.warning("Skipping %s: file system reports no birth time", path)
            result.skipped.append(SkippedPath(path=path, reason="no birth time"))
            continue
        except (OSError, subprocess.CalledProcessError, ValueError) as exc:
            logger.warning("Skipping %s: cannot read creation time (%s)", path, exc)
            result.skipped.append(SkippedPath(path=path, reason=f"unreadable metadata: {exc}"))
            continue

        candidate = CandidateFile(path=path, created_at=created_at)
        if window.is_new(candidate):
            result.candidates.append(candidate)

    result.candidates.sort(key=lambda c: c.path)
    return result


def locate(
    root: str | Path,
    suffixes: Iterable[str],
    window: timedelta,
    now: datetime,
    *,
    birth_time: Callable[[Path], float] = read_birth_time,
) -> LocateResult:
    """Find files under ``root`` with an allow-listed suffix created within ``window``."""
    suffixes = [s for s in suffixes if s.strip()]
    if not suffixes:
        return LocateResult(misconfigured="empty suffix list")
    return find_new_files(
        root,
        suffix_matcher(suffixes),
        TimeWindow(window, now),
        birth_time=birth_time,
    )
