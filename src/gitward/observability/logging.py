"""
gitward — structured logging

File: src/gitward/observability/logging.py
Last updated: 2026-10-19

Purpose
- One JSON-lines sink per run, fed through a bounded queue so callers never block on I/O.

What should be included in this file
- stdlib ``logging`` records and ``structlog`` events rendered by the same
  ``structlog`` processor chain.
- Redaction of credentials, secret-shaped strings and content-bearing fields
  (prompt text and raw process output).
- Correlation fields bound through ``structlog.contextvars``.

Functional requirements
- Every emitted line is a single JSON object with ``timestamp``, ``level``,
  ``logger``, ``message`` and ``run_id``; extras are nested under ``fields``.
- A full queue drops records and counts them rather than blocking.

Non-functional requirements
- Shutdown is idempotent and returns the logger to its pre-setup state.
"""

from __future__ import annotations

import atexit
import json
import logging
import logging.handlers
import math
import queue
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog
from structlog.typing import EventDict, WrappedLogger

from gitward.config.settings import ObservabilitySettings
from gitward.security.redaction import REDACTED_VALUE, is_sensitive_key, redact_text

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]

DEFAULT_LOGGER_NAME: Final[str] = "gitward"
_DEFAULT_LOG_FILENAME: Final[str] = "gitward.jsonl"
_DEFAULT_QUEUE_SIZE: Final[int] = 4096

CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "run_id",
    "correlation_id",
    "operation",
    "repository",
)

# Prompt bodies and raw process output never reach log sinks.
_CONTENT_KEY_TERMS: Final[tuple[str, ...]] = ("prompt_text", "stdout", "stderr", "raw_response")

_RESERVED_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
    | {"message", "asctime", "correlation"}
)

_active_lock = threading.Lock()
_active: StructuredLoggingHandle | None = None
_atexit_registered = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for queue-backed structured logging."""

    run_id: str
    base_log_dir: Path | str = Path("logs")
    logger_name: str = DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    queue_size: int = _DEFAULT_QUEUE_SIZE
    log_filename: str = _DEFAULT_LOG_FILENAME
    log_to_stdout: bool = False
    redact: bool = True


def setup_logging(
    settings: ObservabilitySettings | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
) -> logging.Logger:
    """Configure logging from typed settings and return the ``gitward`` logger."""

    effective = settings if settings is not None else ObservabilitySettings()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=log_dir if log_dir is not None else effective.log_dir,
            level=effective.log_level,
            log_to_stdout=effective.log_to_stdout,
            redact=effective.redact_secrets,
        )
    )
    return handle.logger


def configure_structlog() -> None:
    """Hand ``structlog`` events to stdlib logging; rendering happens in the sink formatter."""

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


# ---------------------------------------------------------------------------
# Queue plumbing
# ---------------------------------------------------------------------------


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    """Stamps the caller's correlation context and never blocks on a full queue."""

    def __init__(self, log_queue: queue.Queue[Any]) -> None:
        super().__init__(log_queue)
        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread cannot see the caller's contextvars.
        record.correlation = get_correlation_context()
        prepared: logging.LogRecord = super().prepare(record)
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _RecordEnricher:
    """First processor: lift stdlib record metadata into the event dict."""

    run_id: str

    def __call__(self, _: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        record: logging.LogRecord = event_dict["_record"]
        event_dict["timestamp"] = _iso8601z(record.created)
        event_dict["level"] = record.levelname
        event_dict["logger"] = record.name

        correlation = {"run_id": self.run_id}
        carried = getattr(record, "correlation", None)
        if isinstance(carried, Mapping):
            correlation.update(
                {k: v for k, v in carried.items() if isinstance(k, str) and isinstance(v, str)}
            )
        fields: dict[str, JSONValue] = {}
        for key, value in vars(record).items():
            if key in _RESERVED_RECORD_ATTRIBUTES or key.startswith("_"):
                continue
            if key in CORRELATION_KEYS:
                if isinstance(value, str) and value.strip():
                    correlation[key] = value.strip()
                continue
            fields[key] = _normalize_json_value(value)

        event_dict.update(correlation)
        if fields:
            event_dict["fields"] = fields
        return event_dict


@dataclass(frozen=True, slots=True)
class _RedactionProcessor:
    redactor: LogRedactor

    def __call__(self, _: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
        for key in ("event", "exception"):
            if key in event_dict:
                event_dict[key] = _as_text(self.redactor(_as_text(event_dict[key])))
        if "fields" in event_dict:
            event_dict["fields"] = self.redactor(event_dict["fields"])
        return event_dict


def _json_line_formatter(*, run_id: str, redactor: LogRedactor) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[_RecordEnricher(run_id)],
        processors=[
            structlog.processors.format_exc_info,
            _RedactionProcessor(redactor),
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(
                sort_keys=True, separators=(",", ":"), ensure_ascii=False
            ),
        ],
    )


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class StructuredLoggingHandle:
    """Runtime handle for an active structured logging setup."""

    logger: logging.Logger
    run_id: str
    log_path: Path
    _queue: queue.Queue[Any]
    _queue_handler: _CorrelatingQueueHandler
    _sinks: tuple[logging.Handler, ...]
    _listener: logging.handlers.QueueListener
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _closed: bool = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self._sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self._closed:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self._listener.stop()
            self.logger.removeHandler(self._queue_handler)
            self.logger.propagate = True
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._closed = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Attach a queue-backed JSON-lines sink under ``<base_log_dir>/<run_id>/``."""

    shutdown_logging()

    run_id = _require_text(config.run_id, "run_id")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    log_filename = _require_text(config.log_filename, "log_filename")
    if Path(log_filename).name != log_filename:
        raise ValueError("log_filename must not include path separators")
    level = _parse_log_level(config.level)
    logger_name = _require_text(config.logger_name, "logger_name")

    log_path = Path(config.base_log_dir) / run_id / log_filename
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _json_line_formatter(
        run_id=run_id,
        redactor=default_log_redactor if config.redact else _normalize_json_value,
    )
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stdout:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    log_queue: queue.Queue[Any] = queue.Queue(maxsize=config.queue_size)
    queue_handler = _CorrelatingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(log_queue, *sinks, respect_handler_level=True)
    listener.start()
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        run_id=run_id,
        log_path=log_path,
        _queue=log_queue,
        _queue_handler=queue_handler,
        _sinks=tuple(sinks),
        _listener=listener,
    )
    global _active, _atexit_registered
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    return handle


def flush_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    resolved = handle if handle is not None else get_active_logging_handle()
    if resolved is not None:
        resolved.flush(timeout_seconds=timeout_seconds)


def shutdown_logging(
    handle: StructuredLoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    """Drain the queue, stop the listener and close all sinks."""

    global _active
    resolved = handle if handle is not None else get_active_logging_handle()
    if resolved is None:
        return
    resolved.shutdown(timeout_seconds=timeout_seconds)
    with _active_lock:
        if _active is resolved:
            _active = None


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _active_lock:
        return _active


# ---------------------------------------------------------------------------
# Correlation
# ---------------------------------------------------------------------------


def get_correlation_context() -> dict[str, str]:
    bound = structlog.contextvars.get_contextvars()
    return {key: value for key, value in bound.items() if isinstance(value, str)}


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for the block; ``None`` hides an outer binding."""

    previous = get_correlation_context()
    hidden = [key for key, value in fields.items() if value is None and key in previous]
    bound = {
        _require_text(key, "correlation key"): _require_text(value, "correlation value")
        for key, value in fields.items()
        if value is not None
    }
    structlog.contextvars.unbind_contextvars(*hidden)
    tokens = structlog.contextvars.bind_contextvars(**bound)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)
        if hidden:
            structlog.contextvars.bind_contextvars(**{key: previous[key] for key in hidden})


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Deep redaction: sensitive keys, content-bearing keys and secret-shaped strings."""

    return _redact(_normalize_json_value(value), key=None)


def _redact(value: JSONValue, *, key: str | None) -> JSONValue:
    if key is not None and any(term in key.lower() for term in _CONTENT_KEY_TERMS):
        return REDACTED_VALUE
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, list):
        return [_redact(item, key=None) for item in value]
    if isinstance(value, dict):
        return {
            name: REDACTED_VALUE
            if is_sensitive_key(name) and item is not None
            else _redact(item, key=name)
            for name, item in value.items()
        }
    return value


def _normalize_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else REDACTED_VALUE
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return _iso8601z(aware.timestamp())
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): _normalize_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_json_value(item) for item in value]
    if isinstance(value, (set, frozenset)):
        items = [_normalize_json_value(item) for item in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True))
    return repr(value)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_text(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{name} must not be empty")
    return normalized


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(str(value).strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _iso8601z(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_text(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = [
    "CORRELATION_KEYS",
    "DEFAULT_LOGGER_NAME",
    "JSONScalar",
    "JSONValue",
    "LogRedactor",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
