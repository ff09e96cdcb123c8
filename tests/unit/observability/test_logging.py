"""
gitward — unit tests for observability logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-19

Purpose
- Validate JSON-lines logging with redaction, correlation metadata and queue-backed sinks.

What this test file should cover
- Redaction of secrets, credential keys and content-bearing keys.
- Correlation field propagation and scoping.
- structlog events routed through the same sinks.
- Queue drain, drop accounting and shutdown behavior.

Functional requirements
- Offline operation.

Non-functional requirements
- Deterministic and non-flaky.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from gitward.config.settings import ObservabilitySettings
from gitward.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    default_log_redactor,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"gitward.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


def _setup(
    tmp_path: Path, run_id: str, **overrides: object
) -> tuple[StructuredLoggingHandle, logging.Logger]:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(
            run_id=run_id,
            base_log_dir=tmp_path,
            logger_name=logger_name,
            **overrides,  # type: ignore[arg-type]
        )
    )
    return handle, logging.getLogger(logger_name)


def test_secrets_and_credential_keys_are_redacted(tmp_path: Path) -> None:
    handle, logger = _setup(tmp_path, "run-redaction")

    with correlation_scope(operation="commit", repository="/srv/repo"):
        logger.info(
            "push failed token=ghp_FAKEFAKEFAKEFAKEFAKE1234",
            extra={"nested": {"password": "hunter22", "safe": "ok"}},
        )

    shutdown_logging(handle)

    parsed = _read_json_lines(handle.log_path)
    assert len(parsed) == 1
    event = parsed[0]
    assert event["run_id"] == "run-redaction"
    assert event["operation"] == "commit"
    assert event["repository"] == "/srv/repo"
    assert event["fields"] == {"nested": {"password": "***REDACTED***", "safe": "ok"}}

    line = handle.log_path.read_text(encoding="utf-8")
    assert "ghp_FAKE" not in line
    assert "hunter22" not in line


def test_content_bearing_fields_never_reach_the_sink(tmp_path: Path) -> None:
    handle, logger = _setup(tmp_path, "run-content")

    logger.warning(
        "backend call failed",
        extra={
            "stdout": "full diff body",
            "stderr": "trace",
            "prompt_text": "=== SYSTEM INSTRUCTIONS ===",
            "exit_code": 1,
        },
    )
    shutdown_logging(handle)

    fields = _read_json_lines(handle.log_path)[0]["fields"]
    assert fields == {
        "stdout": "***REDACTED***",
        "stderr": "***REDACTED***",
        "prompt_text": "***REDACTED***",
        "exit_code": 1,
    }


def test_redaction_can_be_disabled(tmp_path: Path) -> None:
    handle, logger = _setup(tmp_path, "run-plain", redact=False)

    logger.info("plain", extra={"stdout": "visible"})
    shutdown_logging(handle)

    assert _read_json_lines(handle.log_path)[0]["fields"] == {"stdout": "visible"}


def test_correlation_scope_is_restored_on_exit() -> None:
    assert get_correlation_context() == {}

    with correlation_scope(operation="branch"):
        with correlation_scope(operation="commit", correlation_id="c-1"):
            assert get_correlation_context() == {"operation": "commit", "correlation_id": "c-1"}
        with correlation_scope(operation=None):
            assert get_correlation_context() == {}
        assert get_correlation_context() == {"operation": "branch"}

    assert get_correlation_context() == {}


def test_setup_logging_uses_observability_settings(tmp_path: Path) -> None:
    logger = setup_logging(
        ObservabilitySettings(log_level="WARNING", log_dir=str(tmp_path)),
        run_id="run-wrapper",
    )

    logger.info("dropped by level")
    logger.warning("kept", extra={"token": "t-123456"})
    handle = get_active_logging_handle()
    assert handle is not None
    shutdown_logging()

    events = _read_json_lines(tmp_path / "run-wrapper" / "gitward.jsonl")
    assert [event["message"] for event in events] == ["kept"]
    assert "t-123456" not in json.dumps(events)


def test_structlog_events_share_the_json_sink(tmp_path: Path) -> None:
    handle, _ = _setup(tmp_path, "run-structlog")

    structlog.get_logger(handle.logger.name).warning(
        "synthesis_backend_retry", attempt=2, api_key="sk-FAKEFAKEFAKEFAKEFAKE12"
    )
    shutdown_logging(handle)

    event = _read_json_lines(handle.log_path)[0]
    assert event["message"] == "synthesis_backend_retry"
    assert event["level"] == "WARNING"
    assert event["fields"] == {"attempt": 2, "api_key": "***REDACTED***"}


def test_multithreaded_logging_produces_valid_json_lines(tmp_path: Path) -> None:
    handle, logger = _setup(tmp_path, "run-threaded", queue_size=4096)

    total_threads = 6
    per_thread = 30

    def worker(thread_idx: int) -> None:
        for i in range(per_thread):
            logger.info("thread=%s index=%s password=pw-%s-%s", thread_idx, i, thread_idx, i)

    threads = [threading.Thread(target=worker, args=(idx,)) for idx in range(total_threads)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    lines = handle.log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == total_threads * per_thread
    for line in lines:
        assert isinstance(json.loads(line), dict)
        assert "pw-" not in line


def test_shutdown_flushes_and_restores_propagation(tmp_path: Path) -> None:
    handle, logger = _setup(tmp_path, "run-flush", queue_size=10_000)

    assert logger.propagate is False
    assert any(isinstance(h, logging.handlers.QueueHandler) for h in logger.handlers)

    for i in range(200):
        logger.info("message %s", i)

    shutdown_logging(handle)
    shutdown_logging(handle)

    assert handle.is_shutdown is True
    assert handle.dropped_records == 0
    assert len(handle.log_path.read_text(encoding="utf-8").splitlines()) == 200
    assert logger.propagate is True
    assert logger.handlers == []


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"queue_size": 0}, "queue_size must be > 0"),
        ({"log_filename": "../escape.jsonl"}, "path separators"),
        ({"level": "LOUD"}, "unsupported logging level"),
    ],
)
def test_invalid_logging_config(
    tmp_path: Path, overrides: dict[str, object], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        _setup(tmp_path, "run-invalid", **overrides)


def test_default_redactor_handles_non_json_values() -> None:
    value = {"limits": {3, 1}, "ratio": float("nan")}

    redacted = default_log_redactor(value)  # type: ignore[arg-type]

    assert redacted == {"limits": [1, 3], "ratio": "***REDACTED***"}
