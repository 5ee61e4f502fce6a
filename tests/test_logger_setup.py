import io
import json
import logging
import queue
import threading

import pytest

from probe_cli import logger_setup
from probe_cli.errors import LoggingSetupError
from probe_cli.logger_setup import (
    BUFFERED_LINES_LIMIT,
    OFF,
    TRACE,
    BlockingQueueHandler,
    EnvFilter,
    JsonFormatter,
    get_logger,
    setup_logging,
    span,
)


def _read_records(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def _messages(records):
    return [record["fields"]["message"] for record in records]


def test_console_only_without_log_path():
    stream = io.StringIO()
    root = logging.getLogger()

    with setup_logging(None, env_filter=EnvFilter.parse("info"), stream=stream) as context:
        assert context.log_path is None
        assert context.queue_handler is None
        get_logger("test").info("hello %s", "there")
        get_logger("test").debug("hidden")
        context.mark_started()

    output = stream.getvalue()
    assert "INFO probe_cli.test: hello there" in output
    assert "hidden" not in output
    assert "Writing log to" not in output
    assert context.console_handler not in root.handlers


def test_console_defaults_to_errors(monkeypatch):
    monkeypatch.delenv("PROBE_CLI_LOG", raising=False)
    stream = io.StringIO()

    with setup_logging(None, stream=stream):
        get_logger("test").warning("a warning")
        get_logger("test").error("an error")

    output = stream.getvalue()
    assert "a warning" not in output
    assert "ERROR probe_cli.test: an error" in output


def test_console_filter_from_environment(monkeypatch):
    monkeypatch.setenv("PROBE_CLI_LOG", "probe_cli.noisy=off,debug")
    stream = io.StringIO()

    with setup_logging(None, stream=stream):
        get_logger("noisy").error("suppressed")
        get_logger("quiet").debug("shown")

    output = stream.getvalue()
    assert "suppressed" not in output
    assert "shown" in output


def test_file_sink_writes_json_records(tmp_path):
    log_path = tmp_path / "run.log"
    stream = io.StringIO()

    with setup_logging(log_path, env_filter=EnvFilter.parse("error"), stream=stream) as context:
        context.mark_started()
        get_logger("test").log(TRACE, "very detailed")
        get_logger("test").info("with fields", extra={"fields": {"chip": "esp32c3"}})
        context.mark_complete()

    records = _read_records(log_path)
    messages = _messages(records)
    assert messages[0] == f"Writing log to {log_path}"
    assert messages[-1] == f"Wrote log to {log_path}"
    assert "very detailed" in messages

    detailed = next(r for r in records if r["fields"]["message"] == "with fields")
    assert detailed["level"] == "INFO"
    assert detailed["target"] == "probe_cli.test"
    assert detailed["fields"]["chip"] == "esp32c3"
    assert detailed["filename"].endswith("test_logger_setup.py")
    assert isinstance(detailed["line_number"], int)
    assert stream.getvalue() == ""


def test_exceptions_are_recorded(tmp_path):
    log_path = tmp_path / "run.log"

    with setup_logging(log_path, env_filter=EnvFilter.parse("off"), stream=io.StringIO()):
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            get_logger("test").exception("failed")

    (record,) = _read_records(log_path)
    assert "RuntimeError: boom" in record["fields"]["exception"]


def test_spans_emit_lifecycle_events(tmp_path):
    log_path = tmp_path / "run.log"
    stream = io.StringIO()

    with setup_logging(log_path, env_filter=EnvFilter.parse("info"), stream=stream):
        with span("flash", chip="nrf52"):
            with span("erase"):
                get_logger("test").info("inside")

    records = _read_records(log_path)
    flash_events = [r["fields"]["message"] for r in records if r.get("span", {}).get("name") == "flash"]
    assert flash_events == ["new", "enter", "exit", "close"]

    inside = next(r for r in records if r["fields"]["message"] == "inside")
    assert [s["name"] for s in inside["spans"]] == ["flash", "erase"]
    assert inside["span"] == {"name": "erase"}

    close = next(r for r in records if r["fields"]["message"] == "close" and r["span"]["name"] == "flash")
    assert close["span"]["chip"] == "nrf52"
    assert "time.busy" in close["fields"]

    output = stream.getvalue()
    assert "flash:erase: probe_cli.test: inside" in output
    assert "enter" not in output


def test_close_flushes_every_record(tmp_path):
    log_path = tmp_path / "run.log"

    context = setup_logging(log_path, env_filter=EnvFilter.parse("off"), stream=io.StringIO())
    for i in range(2000):
        get_logger("test").debug("record %d", i)
    context.close()
    context.close()

    assert len(_read_records(log_path)) == 2000
    assert context.queue_handler not in logging.getLogger().handlers


def test_file_sink_queue_is_bounded_and_blocking(tmp_path):
    with setup_logging(tmp_path / "run.log", stream=io.StringIO()) as context:
        assert context.queue_handler.queue.maxsize == BUFFERED_LINES_LIMIT == 131072


def test_queue_handler_blocks_instead_of_dropping():
    class RecordingQueue(queue.Queue):
        def __init__(self):
            super().__init__(maxsize=1)
            self.blocking = []

        def put(self, item, block=True, timeout=None):
            self.blocking.append(block)
            super().put(item, block, timeout)

    records = RecordingQueue()
    handler = BlockingQueueHandler(records)
    record = logging.LogRecord("probe_cli.test", logging.INFO, __file__, 1, "value %d", (42,), None)

    handler.handle(record)

    assert records.blocking == [True]
    queued = records.get_nowait()
    assert queued.msg == "value 42"
    assert queued.args is None


def test_close_waits_for_room_in_a_full_queue(tmp_path, monkeypatch):
    release = threading.Event()

    class SlowFormatter(JsonFormatter):
        def format(self, record):
            release.wait(timeout=10)
            return super().format(record)

    monkeypatch.setattr(logger_setup, "BUFFERED_LINES_LIMIT", 4)
    monkeypatch.setattr(logger_setup, "JsonFormatter", SlowFormatter)
    log_path = tmp_path / "run.log"

    context = setup_logging(log_path, env_filter=EnvFilter.parse("off"), stream=io.StringIO())
    for i in range(5):
        get_logger("test").info("record %d", i)
    assert context.queue_handler.queue.full()

    timer = threading.Timer(0.2, release.set)
    timer.start()
    context.close()
    timer.join()

    assert _messages(_read_records(log_path)) == [f"record {i}" for i in range(5)]
    assert context.listener._thread is None
    assert context.file_handler.stream is None
    assert context.queue_handler not in logging.getLogger().handlers


def test_span_fields_may_be_called_name(tmp_path):
    log_path = tmp_path / "run.log"

    with setup_logging(log_path, stream=io.StringIO()):
        with span("subcommand", name="ignored", command="download"):
            pass

    records = _read_records(log_path)
    assert _messages(records) == ["new", "enter", "exit", "close"]
    assert records[1]["span"] == {"name": "subcommand", "command": "download"}


def test_log_file_creation_failure(tmp_path):
    before = list(logging.getLogger().handlers)

    with pytest.raises(LoggingSetupError, match="could not create log file"):
        setup_logging(tmp_path, stream=io.StringIO())

    assert logging.getLogger().handlers == before


@pytest.mark.parametrize(
    "value, name, expected",
    [
        (None, "probe_cli.main", logging.ERROR),
        ("", "probe_cli.main", logging.ERROR),
        ("info", "probe_cli.main", logging.INFO),
        ("warn,probe_cli.formats=debug", "probe_cli.formats", logging.DEBUG),
        ("warn,probe_cli.formats=debug", "probe_cli.formats.idf", logging.DEBUG),
        ("warn,probe_cli.formats=debug", "probe_cli.formatsx", logging.WARNING),
        ("warn,probe_cli.formats=debug", "probe_cli.main", logging.WARNING),
        ("probe_cli=info,probe_cli.logfiles=trace", "probe_cli.logfiles", TRACE),
        ("probe_cli::formats=trace", "probe_cli.formats", TRACE),
        ("probe_cli.probes", "probe_cli.probes", TRACE),
        ("off", "probe_cli.main", OFF),
        ("loud, =info, probe_cli=shouty, debug", "probe_cli.main", logging.DEBUG),
    ],
)
def test_env_filter_levels(value, name, expected):
    assert EnvFilter.parse(value).level_for(name) == expected


def test_env_filter_from_environment():
    assert EnvFilter.from_env({"PROBE_CLI_LOG": "info"}).default_level == logging.INFO
    assert EnvFilter.from_env({}).default_level == logging.ERROR
