"""Capture of the local UTC offset.

Resolving the local offset reads process-wide timezone state, which is only
safe while no other thread exists. The offset is therefore captured exactly
once, first thing in the pipeline, and handed to the subcommands that print
local timestamps.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from .errors import TimeOffsetError


@dataclass(frozen=True)
class TimeContext:
    utc_offset: timedelta

    @property
    def tzinfo(self) -> timezone:
        return timezone(self.utc_offset)

    def now(self) -> datetime:
        return datetime.now(self.tzinfo)


def current_local_offset() -> timedelta | None:
    if threading.active_count() > 1:
        return None
    return datetime.now().astimezone().utcoffset()


def capture_time_context() -> TimeContext:
    """Capture the local UTC offset. Must run before any thread is started."""
    try:
        offset = current_local_offset()
    except (OSError, OverflowError, ValueError) as e:
        raise TimeOffsetError(f"Failed to determine local time for timestamps: {e}") from e
    if offset is None:
        raise TimeOffsetError(
            "Failed to determine local time for timestamps: the local offset is indeterminate "
            "once the process is multi-threaded"
        )
    return TimeContext(utc_offset=offset)
