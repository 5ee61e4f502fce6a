import threading
from datetime import datetime, timedelta, timezone

import pytest

from probe_cli import timecontext
from probe_cli.errors import TimeOffsetError
from probe_cli.timecontext import TimeContext, capture_time_context


def test_capture_while_single_threaded(monkeypatch):
    monkeypatch.setattr(threading, "active_count", lambda: 1)

    context = capture_time_context()

    assert context.utc_offset == datetime.now().astimezone().utcoffset()


def test_capture_fails_once_threads_exist():
    release = threading.Event()
    worker = threading.Thread(target=release.wait)
    worker.start()
    try:
        with pytest.raises(TimeOffsetError, match="Failed to determine local time"):
            capture_time_context()
    finally:
        release.set()
        worker.join()


def test_capture_wraps_platform_errors(monkeypatch):
    def broken():
        raise OSError("no zoneinfo")

    monkeypatch.setattr(timecontext, "current_local_offset", broken)

    with pytest.raises(TimeOffsetError, match="no zoneinfo"):
        capture_time_context()


def test_now_uses_captured_offset():
    context = TimeContext(utc_offset=timedelta(hours=-5))

    now = context.now()

    assert now.utcoffset() == timedelta(hours=-5)
    assert context.tzinfo == timezone(timedelta(hours=-5))
