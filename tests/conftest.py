from datetime import timedelta

import pytest

from probe_cli import commands, main
from probe_cli.timecontext import TimeContext


@pytest.fixture(autouse=True)
def clean_handlers():
    yield
    commands._handlers.clear()


@pytest.fixture()
def handler_calls():
    """Register recording handlers: ``handler_calls.register("run")``."""

    class Calls(list):
        def register(self, name, result=0):
            def handler(cmd, context):
                self.append((name, cmd, context))
                return result

            commands.register_handler(name, handler)
            return handler

    return Calls()


@pytest.fixture()
def fixed_time(monkeypatch):
    context = TimeContext(utc_offset=timedelta(hours=2))
    monkeypatch.setattr(main, "capture_time_context", lambda: context)
    return context
