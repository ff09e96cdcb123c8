"""
gitward — observability

File: src/gitward/observability/__init__.py
Last updated: 2026-10-19

Purpose
- Structured JSON-lines logging shared by the CLI and library callers.

What should be included in this file
- Logging setup and correlation helpers.

Functional requirements
- Log sinks never receive unredacted secrets or prompt bodies.

Non-functional requirements
- Logging must not block callers when sinks are slow.
"""

from gitward.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    configure_structlog,
    correlation_scope,
    default_log_redactor,
    flush_logging,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
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
