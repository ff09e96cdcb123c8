"""
gitward — safe process invoker

File: src/gitward/integration_plane/invoker.py
Last updated: 2026-10-19

Purpose
- The only place gitward spawns OS processes (git and the AI backend CLI).

What should be included in this file
- ``CommandSpec`` / ``ProcessResult`` value types.
- Allow-list and per-argument validation before spawn, path-class arguments
  checked by the path validator against the working directory.
- Bounded output capture, wall-clock timeout with SIGTERM then SIGKILL.
- All-or-nothing batching for large path lists.

Functional requirements
- Never builds a shell string: argv is ``(binary_path, subcommand?, *arguments)``.
- stdin is closed and ``GIT_TERMINAL_PROMPT=0`` so nothing can block on a prompt.
- Every chunk of a batch is validated before the first spawn.
- The invoker never retries; retry policy belongs to the caller.

Non-functional requirements
- No global locks; concurrent ``run`` calls are independent.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass, replace
from typing import Final

from gitward.config.settings import GitSettings
from gitward.errors import (
    ArgumentRejectedError,
    BatchRejectedError,
    CommandNotAllowedError,
    InputValidationError,
    PathRejectedError,
    ProcessExitError,
    ProcessSpawnError,
    ProcessTimeoutError,
    ResourceLimitError,
    is_retryable_message,
)
from gitward.integration_plane.arguments import (
    DEFAULT_PROMPT_ARGUMENT_LIMIT,
    GIT_POLICY,
    Argument,
    ArgumentKind,
    BinaryPolicy,
    ValidatedInvocation,
    validate_invocation,
)
from gitward.security.path_validator import PathValidator, SecurityPolicy
from gitward.security.security_log import SecurityEventLevel

_logger = logging.getLogger(__name__)

_READ_CHUNK_SIZE: Final[int] = 8192
DEFAULT_KILL_GRACE_SECONDS: Final[float] = 2.0


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """One requested invocation, before validation."""

    binary: str
    subcommand: str | None = None
    arguments: tuple[str | Argument, ...] = ()
    working_directory: str | os.PathLike[str] | None = None
    timeout_ms: int | None = None
    confirmed_destructive: bool = False
    check: bool = True
    declared_flags: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", tuple(self.arguments))
        object.__setattr__(self, "declared_flags", frozenset(self.declared_flags))
        if self.timeout_ms is not None:
            if isinstance(self.timeout_ms, bool) or not isinstance(self.timeout_ms, int):
                raise TypeError("timeout_ms must be an integer")
            if self.timeout_ms <= 0:
                raise ValueError("timeout_ms must be > 0")


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Captured outcome of one spawned process."""

    argv: tuple[str, ...]
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    stdout_truncated: bool = False
    stderr_truncated: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass(frozen=True, slots=True)
class _PreparedCommand:
    binary: str
    argv: tuple[str, ...]
    cwd: str
    timeout_ms: int
    check: bool


class _BoundedBuffer:
    """Keeps the first ``limit`` bytes of a stream and counts the rest."""

    __slots__ = ("_chunks", "_limit", "_size", "truncated")

    def __init__(self, limit: int) -> None:
        self._chunks: list[bytes] = []
        self._limit = limit
        self._size = 0
        self.truncated = False

    def append(self, chunk: bytes) -> None:
        room = self._limit - self._size
        if room <= 0:
            self.truncated = True
            return
        if len(chunk) > room:
            chunk = chunk[:room]
            self.truncated = True
        self._chunks.append(chunk)
        self._size += len(chunk)

    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


class SafeProcessInvoker:
    """Validate-then-spawn gateway for allow-listed binaries."""

    def __init__(
        self,
        binaries: Iterable[BinaryPolicy] | None = None,
        validator: PathValidator | None = None,
        policy: SecurityPolicy | None = None,
        settings: GitSettings | None = None,
        *,
        prompt_length_limit: int = DEFAULT_PROMPT_ARGUMENT_LIMIT,
        which: Callable[[str], str | None] = shutil.which,
        kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
    ) -> None:
        policies = tuple(binaries) if binaries is not None else (GIT_POLICY,)
        self._binaries: dict[str, BinaryPolicy] = {item.name: item for item in policies}
        self._validator = validator if validator is not None else PathValidator()
        self._policy = policy if policy is not None else SecurityPolicy.strict((os.getcwd(),))
        self._settings = settings if settings is not None else GitSettings()
        self._limits: Mapping[ArgumentKind, int] = {ArgumentKind.PROMPT: prompt_length_limit}
        self._which = which
        self._kill_grace_seconds = kill_grace_seconds

    @property
    def settings(self) -> GitSettings:
        return self._settings

    @property
    def policy(self) -> SecurityPolicy:
        return self._policy

    @property
    def validator(self) -> PathValidator:
        return self._validator

    def with_binary(self, policy: BinaryPolicy) -> SafeProcessInvoker:
        """Return an invoker that additionally allows ``policy``'s binary."""

        return SafeProcessInvoker(
            (*self._binaries.values(), policy),
            self._validator,
            self._policy,
            self._settings,
            prompt_length_limit=self._limits[ArgumentKind.PROMPT],
            which=self._which,
            kill_grace_seconds=self._kill_grace_seconds,
        )

    async def run(self, spec: CommandSpec) -> ProcessResult:
        """Validate ``spec`` and run it once."""

        prepared = await self._prepare(spec)
        return await self._execute(prepared)

    async def run_batched(
        self,
        spec: CommandSpec,
        items: Sequence[str | Argument],
        *,
        batch_size: int | None = None,
    ) -> tuple[ProcessResult, ...]:
        """Run ``spec`` once per chunk of ``items`` appended to its arguments.

        Nothing is spawned unless every chunk validates.
        """

        size = batch_size if batch_size is not None else self._settings.batch_size
        if size <= 0:
            raise ValueError("batch_size must be > 0")
        if len(items) > self._settings.max_files_per_operation:
            raise ResourceLimitError(
                f"{len(items)} items exceed the per-operation limit of "
                f"{self._settings.max_files_per_operation}"
            )
        if not items:
            return ()

        prepared: list[_PreparedCommand] = []
        for batch_index, start in enumerate(range(0, len(items), size)):
            chunk = tuple(items[start : start + size])
            try:
                prepared.append(
                    await self._prepare(replace(spec, arguments=(*spec.arguments, *chunk)))
                )
            except InputValidationError as exc:
                raise BatchRejectedError(batch_index, exc) from exc

        _logger.debug("running %d validated batch(es) for %s", len(prepared), spec.binary)
        return tuple([await self._execute(command) for command in prepared])

    async def run_command(
        self,
        binary: str,
        subcommand: str | None,
        args: Sequence[str | Argument] = (),
        cwd: str | os.PathLike[str] | None = None,
        timeout_ms: int | None = None,
        *,
        check: bool = True,
        confirmed_destructive: bool = False,
    ) -> ProcessResult:
        return await self.run(
            CommandSpec(
                binary=binary,
                subcommand=subcommand,
                arguments=tuple(args),
                working_directory=cwd,
                timeout_ms=timeout_ms,
                check=check,
                confirmed_destructive=confirmed_destructive,
            )
        )

    def validate(self, spec: CommandSpec) -> ValidatedInvocation:
        """Allow-list and sanitize ``spec`` without touching the filesystem."""

        policy = self._binaries.get(spec.binary)
        try:
            if policy is None:
                raise CommandNotAllowedError(f"binary not allowed: {spec.binary}")
            invocation = validate_invocation(
                policy,
                spec.subcommand,
                spec.arguments,
                declared_flags=spec.declared_flags,
                confirmed_destructive=spec.confirmed_destructive,
                limits=self._limits,
            )
            self._check_file_count(invocation)
            return invocation
        except (CommandNotAllowedError, ArgumentRejectedError, ResourceLimitError) as exc:
            self._validator.log.record(SecurityEventLevel.ERROR, exc.detail, spec.binary)
            raise

    def _check_file_count(self, invocation: ValidatedInvocation) -> None:
        cap = self._settings.max_files_per_operation
        count = len(invocation.path_arguments())
        if count > cap:
            raise ResourceLimitError(
                f"{count} path arguments exceed the per-operation limit of {cap}"
            )

    async def _prepare(self, spec: CommandSpec) -> _PreparedCommand:
        invocation = self.validate(spec)
        cwd = await self._working_directory(spec.working_directory)

        for index, value in invocation.path_arguments():
            result = await self._validator.validate_async(value, cwd, self._policy)
            if not result.is_valid:
                raise PathRejectedError(value, result.violations)
            _logger.debug("path argument %d accepted: %s", index, result.canonical_path)

        executable = self._resolve_executable(invocation.binary)
        argv = (executable, *_optional(invocation.subcommand), *invocation.argument_values)
        timeout_ms = spec.timeout_ms if spec.timeout_ms is not None else self._settings.timeout_ms
        return _PreparedCommand(
            binary=invocation.binary,
            argv=argv,
            cwd=cwd,
            timeout_ms=timeout_ms,
            check=spec.check,
        )

    async def _working_directory(self, raw: str | os.PathLike[str] | None) -> str:
        candidate = os.getcwd() if raw is None else raw
        result = await self._validator.validate_async(candidate, None, self._policy)
        if not result.is_valid:
            raise PathRejectedError(os.fspath(candidate), result.violations)
        if not os.path.isdir(result.canonical_path):
            raise PathRejectedError(
                os.fspath(candidate), ("Working directory does not exist or is not a directory",)
            )
        return result.canonical_path

    def _resolve_executable(self, binary: str) -> str:
        candidate = self._settings.binary if binary == GIT_POLICY.name else binary
        resolved = self._which(candidate)
        if resolved is None:
            raise ProcessSpawnError(binary, self._missing_message(binary))
        return resolved

    def _missing_message(self, binary: str) -> str:
        policy = self._binaries.get(binary)
        if policy is not None and policy.missing_message:
            return policy.missing_message
        return f"{binary} is not installed or not on PATH"

    async def _execute(self, command: _PreparedCommand) -> ProcessResult:
        env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        limit = self._settings.max_output_bytes
        stdout_buffer = _BoundedBuffer(limit)
        stderr_buffer = _BoundedBuffer(limit)
        timeout_seconds = command.timeout_ms / 1000

        _logger.debug(
            "spawning %s with %d argument(s) in %s",
            command.binary,
            len(command.argv) - 1,
            command.cwd,
        )
        start = time.perf_counter()
        try:
            proc = await asyncio.create_subprocess_exec(
                *command.argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=command.cwd,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ProcessSpawnError(command.binary, self._missing_message(command.binary)) from exc
        except OSError as exc:
            raise ProcessSpawnError(
                command.binary, f"{command.binary} could not be started ({type(exc).__name__})"
            ) from exc

        async def _drain(stream: asyncio.StreamReader | None, buffer: _BoundedBuffer) -> None:
            if stream is None:
                return
            while True:
                chunk = await stream.read(_READ_CHUNK_SIZE)
                if not chunk:
                    break
                buffer.append(chunk)

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    _drain(proc.stdout, stdout_buffer),
                    _drain(proc.stderr, stderr_buffer),
                    proc.wait(),
                ),
                timeout=timeout_seconds,
            )
        except (TimeoutError, asyncio.TimeoutError):
            await self._terminate(proc)
            _logger.warning("%s timed out after %dms", command.binary, command.timeout_ms)
            raise ProcessTimeoutError(command.binary, command.timeout_ms) from None
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise

        duration_ms = int((time.perf_counter() - start) * 1000)
        result = ProcessResult(
            argv=command.argv,
            stdout=stdout_buffer.text(),
            stderr=stderr_buffer.text(),
            exit_code=proc.returncode if proc.returncode is not None else -1,
            duration_ms=duration_ms,
            stdout_truncated=stdout_buffer.truncated,
            stderr_truncated=stderr_buffer.truncated,
        )
        if result.stdout_truncated or result.stderr_truncated:
            _logger.warning("%s output truncated at %d bytes", command.binary, limit)

        if command.check and result.exit_code != 0:
            raise ProcessExitError(
                command.binary,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                retryable=is_retryable_message(f"{result.stderr}\n{result.stdout}"),
            )
        return result

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        with suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._kill_grace_seconds)
        except (TimeoutError, asyncio.TimeoutError):
            with suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()


def _optional(value: str | None) -> tuple[str, ...]:
    return () if value is None else (value,)


__all__ = [
    "CommandSpec",
    "DEFAULT_KILL_GRACE_SECONDS",
    "ProcessResult",
    "SafeProcessInvoker",
]
