"""
gitward — unit tests for the safe process invoker

File: tests/unit/integration_plane/test_invoker.py
Last updated: 2026-10-19

Purpose
- Validate that nothing reaches ``create_subprocess_exec`` unless it passed the
  allow-list, argument sanitization and path checks, and that spawned processes
  are bounded in output and time.

What this test file should cover
- argv shape and spawn options.
- Rejections before spawn (binary, flag, metacharacters, paths, destructive ops).
- All-or-nothing batching and the per-operation file cap.
- Exit, spawn and timeout error mapping.

Functional requirements
- Offline; the only real processes spawned are ``sleep`` and ``echo``.

Non-functional requirements
- Deterministic.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from gitward.config.settings import GitSettings
from gitward.errors import (
    ArgumentRejectedError,
    BatchRejectedError,
    CommandNotAllowedError,
    PathRejectedError,
    ProcessExitError,
    ProcessSpawnError,
    ProcessTimeoutError,
    ResourceLimitError,
)
from gitward.integration_plane.arguments import (
    GIT_POLICY,
    Argument,
    ArgumentKind,
    BinaryPolicy,
    SubcommandPolicy,
    backend_policy,
)
from gitward.integration_plane.invoker import CommandSpec, SafeProcessInvoker
from gitward.security.path_validator import PathValidator, SecurityPolicy
from gitward.security.security_log import SecurityEventLevel, SecurityLog


class _FakeProcess:
    def __init__(self, stdout: bytes, stderr: bytes, returncode: int) -> None:
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.stdout.feed_data(stdout)
        self.stdout.feed_eof()
        self.stderr.feed_data(stderr)
        self.stderr.feed_eof()
        self.returncode = returncode

    async def wait(self) -> int:
        return self.returncode


class _SpawnRecorder:
    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> None:
        self.calls: list[tuple[tuple[str, ...], dict[str, Any]]] = []
        self._stdout = stdout
        self._stderr = stderr
        self._returncode = returncode

    async def __call__(self, *argv: str, **kwargs: Any) -> _FakeProcess:
        self.calls.append((argv, kwargs))
        return _FakeProcess(self._stdout, self._stderr, self._returncode)


def _which(name: str) -> str:
    return f"/usr/bin/{name}"


def _invoker(
    root: Path,
    *,
    log: SecurityLog | None = None,
    settings: GitSettings | None = None,
    which: Callable[[str], str | None] = _which,
    binaries: tuple[BinaryPolicy, ...] = (GIT_POLICY, backend_policy("claude")),
) -> SafeProcessInvoker:
    return SafeProcessInvoker(
        binaries,
        PathValidator(log if log is not None else SecurityLog()),
        SecurityPolicy.strict((root,)),
        settings,
        which=which,
    )


@pytest.fixture
def spawn(monkeypatch: pytest.MonkeyPatch) -> _SpawnRecorder:
    recorder = _SpawnRecorder(stdout=b"ok\n")
    monkeypatch.setattr(asyncio, "create_subprocess_exec", recorder)
    return recorder


def _use(monkeypatch: pytest.MonkeyPatch, recorder: _SpawnRecorder) -> _SpawnRecorder:
    monkeypatch.setattr(asyncio, "create_subprocess_exec", recorder)
    return recorder


def test_argv_is_binary_subcommand_then_arguments(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    (tmp_path / "a.txt").write_text("a", encoding="utf-8")
    spec = CommandSpec("git", "add", ("--", "a.txt"), working_directory=tmp_path)

    result = asyncio.run(_invoker(tmp_path).run(spec))

    argv, kwargs = spawn.calls[0]
    assert argv == ("/usr/bin/git", "add", "--", "a.txt")
    assert kwargs["stdin"] == asyncio.subprocess.DEVNULL
    assert kwargs["cwd"] == os.path.realpath(tmp_path)
    assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"
    assert "shell" not in kwargs
    assert result.ok is True
    assert result.stdout == "ok\n"
    assert result.argv == argv


def test_message_argument_is_passed_verbatim(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    message = "feat: add endpoint\n\nBody with 'quotes' and \"doubles\"."

    asyncio.run(
        _invoker(tmp_path).run_command("git", "commit", ["-m", message], cwd=tmp_path)
    )

    assert spawn.calls[0][0][-1] == message


@pytest.mark.parametrize(
    ("spec", "error"),
    [
        (CommandSpec("bash", None, ("-c", "id")), CommandNotAllowedError),
        (CommandSpec("git", "log", ("--exec-path",)), CommandNotAllowedError),
        (
            CommandSpec("git", "log", ("-c",), declared_flags=frozenset({"-c"})),
            CommandNotAllowedError,
        ),
        (CommandSpec("git", "commit", ("-m", "$(whoami)")), ArgumentRejectedError),
        (CommandSpec("git", "log", ("--format=%H;ls",)), ArgumentRejectedError),
        (CommandSpec("git", "push", ("--force",)), CommandNotAllowedError),
        (CommandSpec("git", "checkout", ("main;ls",)), ArgumentRejectedError),
    ],
)
def test_rejected_invocations_never_spawn(
    tmp_path: Path,
    spawn: _SpawnRecorder,
    spec: CommandSpec,
    error: type[Exception],
) -> None:
    log = SecurityLog()

    with pytest.raises(error):
        asyncio.run(_invoker(tmp_path, log=log).run(spec))

    assert spawn.calls == []
    assert log.snapshot()[-1].level is SecurityEventLevel.ERROR


def test_confirmed_destructive_push_is_spawned(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    spec = CommandSpec(
        "git", "push", ("--force",), working_directory=tmp_path, confirmed_destructive=True
    )

    asyncio.run(_invoker(tmp_path).run(spec))

    assert spawn.calls[0][0] == ("/usr/bin/git", "push", "--force")


def test_path_arguments_are_checked_against_the_working_directory(
    tmp_path: Path, spawn: _SpawnRecorder
) -> None:
    spec = CommandSpec("git", "add", ("--", "../../etc/passwd"), working_directory=tmp_path)

    with pytest.raises(PathRejectedError) as excinfo:
        asyncio.run(_invoker(tmp_path).run(spec))

    assert excinfo.value.path == "../../etc/passwd"
    assert spawn.calls == []


def test_working_directory_outside_policy_is_rejected(
    tmp_path: Path, spawn: _SpawnRecorder
) -> None:
    repo = tmp_path / "repo"
    other = tmp_path / "other"
    repo.mkdir()
    other.mkdir()

    with pytest.raises(PathRejectedError):
        asyncio.run(_invoker(repo).run(CommandSpec("git", "status", working_directory=other)))
    with pytest.raises(PathRejectedError, match="not a directory"):
        asyncio.run(
            _invoker(repo).run(CommandSpec("git", "status", working_directory=repo / "missing"))
        )

    assert spawn.calls == []


def test_batches_run_in_order(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    settings = GitSettings(batch_size=2)
    spec = CommandSpec("git", "add", ("--",), working_directory=tmp_path)
    items = [Argument.path(f"file{index}.txt") for index in range(5)]

    results = asyncio.run(_invoker(tmp_path, settings=settings).run_batched(spec, items))

    assert len(results) == 3
    assert [call[0][3:] for call in spawn.calls] == [
        ("file0.txt", "file1.txt"),
        ("file2.txt", "file3.txt"),
        ("file4.txt",),
    ]


def test_one_bad_batch_rejects_the_whole_operation(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    settings = GitSettings(batch_size=2)
    spec = CommandSpec("git", "add", ("--",), working_directory=tmp_path)
    items = ["a.txt", "b.txt", "c.txt", "d.txt", "../escape.txt"]

    with pytest.raises(BatchRejectedError) as excinfo:
        asyncio.run(_invoker(tmp_path, settings=settings).run_batched(spec, items))

    assert excinfo.value.batch_index == 2
    assert excinfo.value.violations
    assert spawn.calls == []


def test_batched_item_count_is_capped(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    settings = GitSettings(max_files_per_operation=3)
    spec = CommandSpec("git", "add", ("--",), working_directory=tmp_path)

    with pytest.raises(ResourceLimitError):
        asyncio.run(_invoker(tmp_path, settings=settings).run_batched(spec, ["a", "b", "c", "d"]))
    assert asyncio.run(_invoker(tmp_path).run_batched(spec, [])) == ()
    assert spawn.calls == []


def test_single_run_path_count_is_capped(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    log = SecurityLog()
    settings = GitSettings(batch_size=5, max_files_per_operation=10)
    paths = tuple(f"file{index}.txt" for index in range(30))
    spec = CommandSpec("git", "add", ("--", *paths), working_directory=tmp_path)

    with pytest.raises(ResourceLimitError, match="30 path arguments"):
        asyncio.run(_invoker(tmp_path, log=log, settings=settings).run(spec))

    assert spawn.calls == []
    assert log.snapshot()[-1].level is SecurityEventLevel.ERROR


def test_flags_do_not_count_against_the_path_cap(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    settings = GitSettings(batch_size=1, max_files_per_operation=1)
    spec = CommandSpec(
        "claude",
        None,
        ("-p", "hello", "--model", "sonnet", "--output-format", "json"),
        working_directory=tmp_path,
    )

    asyncio.run(_invoker(tmp_path, settings=settings).run(spec))

    assert len(spawn.calls) == 1


def test_nonzero_exit_raises_with_retryability(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _use(monkeypatch, _SpawnRecorder(stderr=b"fatal: connection reset by peer", returncode=128))

    with pytest.raises(ProcessExitError) as excinfo:
        asyncio.run(_invoker(tmp_path).run_command("git", "fetch", cwd=tmp_path))

    assert excinfo.value.exit_code == 128
    assert excinfo.value.retryable is True
    assert "connection reset" in excinfo.value.stderr


def test_nonzero_exit_without_transient_signature_is_not_retryable(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _use(monkeypatch, _SpawnRecorder(stderr=b"fatal: not a git repository", returncode=128))

    with pytest.raises(ProcessExitError) as excinfo:
        asyncio.run(_invoker(tmp_path).run_command("git", "status", cwd=tmp_path))

    assert excinfo.value.retryable is False


def test_check_false_returns_nonzero_result(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _use(monkeypatch, _SpawnRecorder(stdout=b"partial", returncode=1))

    result = asyncio.run(
        _invoker(tmp_path).run_command("git", "diff", ["--quiet"], cwd=tmp_path, check=False)
    )

    assert result.ok is False
    assert result.exit_code == 1
    assert result.stdout == "partial"


def test_output_is_truncated_at_the_configured_limit(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _use(monkeypatch, _SpawnRecorder(stdout=b"0123456789abcdef", stderr=b"err"))
    settings = GitSettings(max_output_bytes=8)

    result = asyncio.run(
        _invoker(tmp_path, settings=settings).run_command("git", "log", cwd=tmp_path)
    )

    assert result.stdout == "01234567"
    assert result.stdout_truncated is True
    assert result.stderr == "err"
    assert result.stderr_truncated is False


def test_missing_binary_maps_to_spawn_error(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    invoker = _invoker(tmp_path, which=lambda name: None)

    with pytest.raises(ProcessSpawnError, match="git is not installed or not on PATH"):
        asyncio.run(invoker.run_command("git", "status", cwd=tmp_path))
    with pytest.raises(ProcessSpawnError, match="claude CLI not found on PATH"):
        asyncio.run(invoker.run_command("claude", None, ["--version"], cwd=tmp_path))

    assert spawn.calls == []


def test_spawn_failure_is_normalized(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    async def _raise(*argv: str, **kwargs: Any) -> None:
        raise FileNotFoundError(argv[0])

    monkeypatch.setattr(asyncio, "create_subprocess_exec", _raise)

    with pytest.raises(ProcessSpawnError) as excinfo:
        asyncio.run(_invoker(tmp_path).run_command("git", "status", cwd=tmp_path))

    assert excinfo.value.retryable is False
    assert isinstance(excinfo.value.__cause__, FileNotFoundError)


def test_backend_prompt_argument_bypasses_metacharacter_check(
    tmp_path: Path, spawn: _SpawnRecorder
) -> None:
    prompt = "Summarize: `a && b` costs $5; ok?"

    asyncio.run(
        _invoker(tmp_path).run_command(
            "claude", None, ["-p", prompt, "--output-format", "json"], cwd=tmp_path
        )
    )

    assert spawn.calls[0][0] == ("/usr/bin/claude", "-p", prompt, "--output-format", "json")


def test_prompt_length_limit_is_enforced(tmp_path: Path, spawn: _SpawnRecorder) -> None:
    invoker = SafeProcessInvoker(
        (backend_policy("claude"),),
        policy=SecurityPolicy.strict((tmp_path,)),
        prompt_length_limit=10,
        which=_which,
    )

    with pytest.raises(ArgumentRejectedError, match="exceeds maximum length"):
        asyncio.run(invoker.run_command("claude", None, ["-p", "x" * 11], cwd=tmp_path))
    assert spawn.calls == []


def test_with_binary_extends_the_allow_list() -> None:
    invoker = SafeProcessInvoker((GIT_POLICY,), which=_which)
    spec = CommandSpec("claude", None, ("--version",))

    with pytest.raises(CommandNotAllowedError):
        invoker.validate(spec)

    invocation = invoker.with_binary(backend_policy("claude")).validate(spec)
    assert invocation.argument_values == ("--version",)


def test_command_spec_rejects_bad_timeouts() -> None:
    with pytest.raises(ValueError):
        CommandSpec("git", "status", timeout_ms=0)
    with pytest.raises(TypeError):
        CommandSpec("git", "status", timeout_ms=True)


_REAL_POLICIES = (
    BinaryPolicy("sleep", direct=SubcommandPolicy(positional=ArgumentKind.GENERIC)),
    BinaryPolicy("echo", direct=SubcommandPolicy(positional=ArgumentKind.GENERIC)),
)


@pytest.mark.skipif(shutil.which("sleep") is None, reason="sleep not available")
def test_real_process_is_terminated_on_timeout(tmp_path: Path) -> None:
    invoker = SafeProcessInvoker(
        _REAL_POLICIES,
        policy=SecurityPolicy.strict((tmp_path,)),
        kill_grace_seconds=0.5,
    )
    spec = CommandSpec("sleep", None, ("5",), working_directory=tmp_path, timeout_ms=200)

    with pytest.raises(ProcessTimeoutError) as excinfo:
        asyncio.run(invoker.run(spec))

    assert excinfo.value.retryable is True
    assert excinfo.value.timeout_ms == 200


@pytest.mark.skipif(shutil.which("echo") is None, reason="echo not available")
def test_real_process_output_is_captured(tmp_path: Path) -> None:
    invoker = SafeProcessInvoker(_REAL_POLICIES, policy=SecurityPolicy.strict((tmp_path,)))
    spec = CommandSpec("echo", None, ("hello",), working_directory=tmp_path)

    result = asyncio.run(invoker.run(spec))

    assert result.stdout.strip() == "hello"
    assert result.exit_code == 0
    assert result.duration_ms >= 0
