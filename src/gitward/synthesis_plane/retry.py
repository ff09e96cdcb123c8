"""
gitward — bounded retry with exponential backoff

File: src/gitward/synthesis_plane/retry.py
Last updated: 2026-10-19

Purpose
- Retry transient backend failures with capped, jittered exponential backoff.

What should be included in this file
- Backoff policy model and the delay formula.
- An explicit retry loop that tracks attempt count and the last error.

Functional requirements
- Only errors flagged retryable are retried; everything else is re-raised at once.
- A permanently failing retryable operation runs exactly ``max_retries + 1`` times.

Non-functional requirements
- Deterministic under injected ``sleep`` and ``random_fn``.
"""

from __future__ import annotations

import asyncio
import random as random_module
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeAlias, TypeVar

from gitward.config.settings import BackendSettings
from gitward.errors import (
    RETRYABLE_MESSAGE_PATTERNS,
    GitwardError,
    is_retryable_error,
    is_retryable_message,
)

SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
RandomFn: TypeAlias = Callable[[], float]

DEFAULT_JITTER_RATIO = 0.25

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Bounded exponential backoff policy."""

    max_retries: int = 3
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    jitter_ratio: float = DEFAULT_JITTER_RATIO

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        if not (0.0 <= self.jitter_ratio < 1.0 / 3.0):
            # Larger ratios let a jittered delay undercut the previous one.
            raise ValueError("jitter_ratio must be in [0.0, 1/3)")

    @classmethod
    def from_settings(cls, settings: BackendSettings) -> BackoffConfig:
        return cls(
            max_retries=settings.max_retries,
            base_delay_seconds=settings.base_retry_delay_ms / 1000.0,
            max_delay_seconds=settings.max_retry_delay_ms / 1000.0,
        )


def compute_backoff_delay(
    *,
    attempt: int,
    config: BackoffConfig,
    random_fn: RandomFn = random_module.random,
) -> float:
    """Delay in seconds after failed attempt ``attempt`` (0-based).

    ``base * 2**attempt`` is jittered by up to ``jitter_ratio`` either way and
    then capped at ``max_delay_seconds``.
    """

    if attempt < 0:
        raise ValueError("attempt must be >= 0")

    delay = config.base_delay_seconds * (2**attempt)
    if config.jitter_ratio:
        random_value = random_fn()
        if not (0.0 <= random_value <= 1.0):
            raise ValueError("random_fn must return values in [0.0, 1.0]")
        delay += delay * config.jitter_ratio * ((random_value * 2.0) - 1.0)
    return max(0.0, min(config.max_delay_seconds, delay))


@dataclass(slots=True)
class RetryState:
    """Transient per-call retry bookkeeping."""

    attempt: int = 0
    last_error: GitwardError | None = None
    delays: list[float] = field(default_factory=list)


RetryCallback: TypeAlias = Callable[[RetryState, float], None]


async def run_with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    backoff: BackoffConfig,
    sleep: SleepFn = asyncio.sleep,
    random_fn: RandomFn = random_module.random,
    on_retry: RetryCallback | None = None,
    state: RetryState | None = None,
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or retries run out."""

    retry_state = state if state is not None else RetryState()
    while True:
        retry_state.attempt += 1
        try:
            return await operation()
        except GitwardError as exc:
            retry_state.last_error = exc
            if not is_retryable_error(exc) or retry_state.attempt > backoff.max_retries:
                raise

            delay_seconds = compute_backoff_delay(
                attempt=retry_state.attempt - 1,
                config=backoff,
                random_fn=random_fn,
            )
            retry_state.delays.append(delay_seconds)
            if on_retry is not None:
                on_retry(retry_state, delay_seconds)
            await sleep(delay_seconds)


__all__ = [
    "BackoffConfig",
    "DEFAULT_JITTER_RATIO",
    "RETRYABLE_MESSAGE_PATTERNS",
    "RandomFn",
    "RetryCallback",
    "RetryState",
    "SleepFn",
    "compute_backoff_delay",
    "is_retryable_message",
    "run_with_retries",
]
