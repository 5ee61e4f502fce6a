"""Location and retention of the diagnostic log files."""

import os
import re
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

from .errors import LogDirectoryError

MAX_LOG_FILES = 20
LOG_SUFFIX = ".log"

APP_QUALIFIER = "dev"
APP_ORGANIZATION = "probe-cli"
APP_NAME = "probe-cli"

_ILLEGAL_CHARS = re.compile(r'[/?<>\\:*|"]')
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x80-\x9f]")
_RESERVED_NAMES = re.compile(r"^\.+$")
_WINDOWS_RESERVED = re.compile(r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?$", re.IGNORECASE)
_WINDOWS_TRAILING = re.compile(r"[. ]+$")
_MAX_NAME_BYTES = 255


def sanitize_filename(name: str, replacement: str = "_") -> str:
    """Make `name` safe to use as a single path component on any platform."""
    sanitized = _ILLEGAL_CHARS.sub(replacement, name)
    sanitized = _CONTROL_CHARS.sub(replacement, sanitized)
    sanitized = _RESERVED_NAMES.sub(replacement, sanitized)
    sanitized = _WINDOWS_RESERVED.sub(replacement, sanitized)
    sanitized = _WINDOWS_TRAILING.sub(replacement, sanitized)

    encoded = sanitized.encode("utf-8")
    if len(encoded) > _MAX_NAME_BYTES:
        sanitized = encoded[:_MAX_NAME_BYTES].decode("utf-8", errors="ignore")

    return sanitized or replacement


def data_dir() -> Path:
    """Per-application data directory, following each platform's convention."""
    try:
        if sys.platform.startswith("win"):
            base = os.environ.get("APPDATA")
            root = Path(base) if base else Path.home() / "AppData" / "Roaming"
            return root / APP_ORGANIZATION / APP_NAME / "data"
        if sys.platform == "darwin":
            return (
                Path.home() / "Library" / "Application Support" / f"{APP_QUALIFIER}.{APP_ORGANIZATION}.{APP_NAME}"
            )

        xdg = os.environ.get("XDG_DATA_HOME")
        if xdg and Path(xdg).is_absolute():
            return Path(xdg) / APP_NAME
        return Path.home() / ".local" / "share" / APP_NAME
    except RuntimeError as e:
        raise LogDirectoryError(f"the application storage directory could not be determined: {e}") from e


def default_logfile_location(now: float | None = None, directory: Path | None = None) -> Path:
    """Determine the default location for the log file.

    The file name is the current time in milliseconds since the epoch. The
    containing directory is created if needed; the file itself is not.
    """
    directory = directory if directory is not None else data_dir()
    timestamp = time.time() if now is None else now
    logname = sanitize_filename(f"{int(timestamp * 1000)}{LOG_SUFFIX}")

    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise LogDirectoryError(f"{str(directory)!r} could not be created: {e}") from e

    return directory / logname


@dataclass(frozen=True)
class LogFileEntry:
    path: Path
    created: float


@dataclass(frozen=True)
class SkippedEntry:
    path: Path
    reason: str


@dataclass
class PruneReport:
    removed: list[Path] = field(default_factory=list)
    skipped: list[SkippedEntry] = field(default_factory=list)
    failed: list[SkippedEntry] = field(default_factory=list)


def creation_time(stat: os.stat_result) -> float:
    # Linux does not expose birth times through os.stat; log files are never
    # rewritten after their run, so the modification time stands in.
    birthtime = getattr(stat, "st_birthtime", None)
    if birthtime is not None:
        return birthtime
    return stat.st_mtime


def scan_log_files(directory: Path) -> list[LogFileEntry | SkippedEntry]:
    """List the log files in `directory`, one outcome per candidate entry."""
    try:
        children = list(directory.iterdir())
    except OSError as e:
        raise LogDirectoryError(f"log directory {str(directory)!r} could not be read: {e}") from e

    outcomes: list[LogFileEntry | SkippedEntry] = []
    for path in children:
        if path.suffix != LOG_SUFFIX:
            continue
        try:
            if not path.is_file():
                continue
            outcomes.append(LogFileEntry(path=path, created=creation_time(path.stat())))
        except OSError as e:
            outcomes.append(SkippedEntry(path=path, reason=str(e)))
    return outcomes


def prune_logs(directory: Path, keep: int = MAX_LOG_FILES) -> PruneReport:
    """Delete all but the `keep` most recently created log files in `directory`."""
    report = PruneReport()
    entries: list[LogFileEntry] = []
    for outcome in scan_log_files(directory):
        if isinstance(outcome, SkippedEntry):
            report.skipped.append(outcome)
        else:
            entries.append(outcome)

    # Newest first; equal creation times fall back to the file name.
    entries.sort(key=lambda entry: (entry.created, entry.path.name), reverse=True)

    for entry in entries[keep:]:
        try:
            entry.path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            report.failed.append(SkippedEntry(path=entry.path, reason=str(e)))
        else:
            report.removed.append(entry.path)

    return report
