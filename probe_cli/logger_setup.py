"""Logging setup for the command line.

Two sinks are installed on the root logger:

* a compact, human readable handler on stderr, filtered by the directives in
  the ``PROBE_CLI_LOG`` environment variable (default: errors only);
* optionally, a JSON-lines file handler receiving every record, including the
  lifecycle events of spans. Records are handed to a background listener
  through a bounded queue, so the emitting thread only blocks when the queue
  is full.

``setup_logging`` returns a :class:`LoggingContext`, which must stay open for
the whole run; closing it drains the queue and closes the file.
"""

import contextvars
import json
import logging
import logging.handlers
import os
import queue
import sys
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from .errors import LoggingSetupError

LOGGER_NAME = "probe_cli"
LOG_ENV_VAR = "PROBE_CLI_LOG"
BUFFERED_LINES_LIMIT = 128 * 1024

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

OFF = logging.CRITICAL + 10

_LEVELS = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "off": OFF,
}


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a logger inside the probe_cli hierarchy."""
    if not name or name == LOGGER_NAME:
        return logging.getLogger(LOGGER_NAME)
    if name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


# Spans


@dataclass
class Span:
    name: str
    target: str
    level: int
    fields: dict = field(default_factory=dict)

    def as_json(self) -> dict:
        return {**self.fields, "name": self.name}


_current_spans: contextvars.ContextVar[tuple[Span, ...]] = contextvars.ContextVar("probe_cli_spans", default=())


def current_spans() -> tuple[Span, ...]:
    return _current_spans.get()


@contextmanager
def span(name: str, /, level: int = logging.INFO, logger: logging.Logger | None = None, **fields) -> Iterator[Span]:
    """Log an interval with explicit new/enter/exit/close events."""
    logger = logger or get_logger()
    current = Span(name=name, target=logger.name, level=level, fields=fields)
    stack = current_spans() + (current,)

    def emit(event: str, extra_fields: dict | None = None) -> None:
        if logger.isEnabledFor(level):
            logger.log(
                level,
                event,
                extra={
                    "span_event": event,
                    "fields": extra_fields or {},
                    "spans": [s.as_json() for s in stack],
                },
                stacklevel=4,
            )

    emit("new")
    token = _current_spans.set(stack)
    started = time.perf_counter()
    emit("enter")
    try:
        yield current
    finally:
        busy = time.perf_counter() - started
        emit("exit")
        _current_spans.reset(token)
        emit("close", {"time.busy": f"{busy * 1000:.3f}ms", "time.idle": "0.000ms"})


class SpanContextFilter(logging.Filter):
    """Attach the active span stack to each record at emission time."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "spans"):
            record.spans = [s.as_json() for s in current_spans()]
        return True


# Console sink


@dataclass(frozen=True)
class Directive:
    target: str | None
    level: int


class EnvFilter(logging.Filter):
    """Filter records by level, optionally per logger-name prefix.

    The directive syntax is a comma separated list of ``level`` or
    ``target=level`` entries; the most specific matching target wins.
    """

    def __init__(self, directives: list[Directive], default_level: int = logging.ERROR) -> None:
        super().__init__()
        self.default_level = default_level
        self.directives = sorted(
            (d for d in directives if d.target is not None),
            key=lambda d: len(d.target),
            reverse=True,
        )
        for directive in directives:
            if directive.target is None:
                self.default_level = directive.level

    @classmethod
    def parse(cls, value: str | None, default_level: int = logging.ERROR) -> "EnvFilter":
        directives = []
        for raw in (value or "").split(","):
            directive = parse_directive(raw)
            if directive is not None:
                directives.append(directive)
        return cls(directives, default_level=default_level)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EnvFilter":
        environ = os.environ if environ is None else environ
        return cls.parse(environ.get(LOG_ENV_VAR))

    def level_for(self, name: str) -> int:
        for directive in self.directives:
            if name == directive.target or name.startswith(directive.target + "."):
                return directive.level
        return self.default_level

    @property
    def min_level(self) -> int:
        return min([self.default_level, *(d.level for d in self.directives)])

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "span_event", None) is not None:
            return False
        return record.levelno >= self.level_for(record.name)


def parse_directive(raw: str) -> Directive | None:
    text = raw.strip()
    if not text:
        return None
    target, sep, level_text = text.rpartition("=")
    if not sep:
        level = _LEVELS.get(text.lower())
        if level is not None:
            return Directive(target=None, level=level)
        # A bare target enables everything below it.
        if _is_valid_target(text):
            return Directive(target=text.replace("::", "."), level=TRACE)
        return None
    level = _LEVELS.get(level_text.strip().lower())
    target = target.strip().replace("::", ".")
    if level is None or not _is_valid_target(target):
        return None
    return Directive(target=target, level=level)


def _is_valid_target(target: str) -> bool:
    return bool(target) and all(ch.isalnum() or ch in "_.:-" for ch in target)


class CompactFormatter(logging.Formatter):
    """``LEVEL span:span: target: message`` without a timestamp."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        fields = getattr(record, "fields", None) or {}
        if fields:
            message = " ".join([message, *(f"{key}={value}" for key, value in fields.items())])
        spans = "".join(f"{s['name']}:" for s in getattr(record, "spans", []))
        line = f"{record.levelname:>5} {spans}{' ' if spans else ''}{record.name}: {message}"
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            line = f"{line}\n{record.exc_text}"
        return line


# File sink


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with source location and span context."""

    def format(self, record: logging.LogRecord) -> str:
        fields = {"message": record.getMessage()}
        fields.update(getattr(record, "fields", None) or {})
        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            fields["exception"] = record.exc_text

        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "fields": fields,
            "target": record.name,
            "filename": record.pathname,
            "line_number": record.lineno,
            "threadName": record.threadName,
        }
        spans = getattr(record, "spans", None) or []
        if spans:
            payload["span"] = spans[-1]
            payload["spans"] = spans
        return json.dumps(payload, default=str)


class BlockingQueueHandler(logging.handlers.QueueHandler):
    """A queue handler that waits for room instead of dropping records."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Render arguments and tracebacks here; the listener thread only sees
        # plain data.
        record = logging.makeLogRecord(record.__dict__)
        record.msg = record.getMessage()
        record.args = None
        if record.exc_info:
            record.exc_text = logging.Formatter().formatException(record.exc_info)
            record.exc_info = None
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        self.queue.put(record, block=True)


class BlockingQueueListener(logging.handlers.QueueListener):
    """A queue listener whose stop waits for room for its sentinel."""

    def enqueue_sentinel(self) -> None:
        self.queue.put(self._sentinel, block=True)


class LoggingContext:
    """Process-lifetime logging state; closing it flushes the file sink."""

    def __init__(
        self,
        console_handler: logging.Handler,
        log_path: Path | None = None,
        queue_handler: logging.Handler | None = None,
        listener: BlockingQueueListener | None = None,
        file_handler: logging.Handler | None = None,
        previous_level: int = logging.WARNING,
    ) -> None:
        self.log_path = log_path
        self.console_handler = console_handler
        self.queue_handler = queue_handler
        self.listener = listener
        self.file_handler = file_handler
        self._previous_level = previous_level
        self._closed = False

    @property
    def handlers(self) -> list[logging.Handler]:
        return [h for h in (self.console_handler, self.queue_handler) if h is not None]

    def logger(self, name: str | None = None) -> logging.Logger:
        return get_logger(name)

    def mark_started(self) -> None:
        if self.log_path is not None:
            get_logger().info("Writing log to %s", self.log_path)

    def mark_complete(self) -> None:
        if self.log_path is not None and not self._closed:
            get_logger().info("Wrote log to %s", self.log_path)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        root = logging.getLogger()
        for handler in self.handlers:
            root.removeHandler(handler)
        try:
            if self.listener is not None:
                self.listener.stop()
        finally:
            for handler in (self.console_handler, self.queue_handler, self.file_handler):
                if handler is not None:
                    handler.close()
            root.setLevel(self._previous_level)

    def __enter__(self) -> "LoggingContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def setup_logging(
    log_path: Path | str | None,
    env_filter: EnvFilter | None = None,
    stream=None,
) -> LoggingContext:
    """Install the console sink and, with a log path, the JSON file sink."""
    env_filter = env_filter or EnvFilter.from_env()
    root = logging.getLogger()
    previous_level = root.level
    span_filter = SpanContextFilter()

    console = logging.StreamHandler(stream if stream is not None else sys.stderr)
    console.setFormatter(CompactFormatter())
    console.addFilter(span_filter)
    console.addFilter(env_filter)

    if log_path is None:
        root.setLevel(env_filter.min_level)
        root.addHandler(console)
        return LoggingContext(console_handler=console, previous_level=previous_level)

    file_path = Path(log_path)
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(file_path, mode="w", encoding="utf-8")
    except OSError as e:
        console.close()
        raise LoggingSetupError(f"could not create log file {str(file_path)!r}: {e}") from e
    file_handler.setFormatter(JsonFormatter())

    records: queue.Queue = queue.Queue(maxsize=BUFFERED_LINES_LIMIT)
    queue_handler = BlockingQueueHandler(records)
    queue_handler.addFilter(span_filter)
    listener = BlockingQueueListener(records, file_handler, respect_handler_level=True)
    listener.start()

    root.setLevel(TRACE)
    root.addHandler(console)
    root.addHandler(queue_handler)
    return LoggingContext(
        console_handler=console,
        log_path=file_path,
        queue_handler=queue_handler,
        listener=listener,
        file_handler=file_handler,
        previous_level=previous_level,
    )
