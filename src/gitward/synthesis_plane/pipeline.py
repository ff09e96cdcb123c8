"""
gitward — external-service request pipeline

File: src/gitward/synthesis_plane/pipeline.py
Last updated: 2026-10-19

Purpose
- The only path from caller text to the AI backend CLI and back.

What should be included in this file
- ``call(fragments, required_fields)``: bounded prompt, injection scan, invoker
  spawn with retry/backoff, response parsing and required-field validation.
- Commit, branch, pull-request, change-analysis, comprehensive and
  conflict-resolution generators built on ``call``.
- A health probe that runs ``--version`` through the invoker.

Functional requirements
- Input and response failures are never retried; process failures are retried
  only when classified retryable.
- Injection rejections happen before any spawn and are recorded in the
  security log.

Non-functional requirements
- Retry decisions are emitted as structured ``structlog`` events.
- Backoff sleeps suspend only the in-flight call.
"""

from __future__ import annotations

import asyncio
import os
import random as random_module
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Final

import structlog

from gitward.config.settings import GitwardSettings
from gitward.errors import (
    EmptyResponseError,
    GitwardError,
    ProcessExecutionError,
    ProcessExitError,
    PromptLimitError,
    PromptRejectedError,
    is_retryable_message,
)
from gitward.integration_plane.arguments import backend_policy
from gitward.integration_plane.invoker import CommandSpec, SafeProcessInvoker
from gitward.security.path_validator import PathValidator, SecurityPolicy
from gitward.security.security_log import SecurityEventLevel
from gitward.synthesis_plane.payload import ParsedPayload, parse_payload
from gitward.synthesis_plane.prompt_builder import (
    BuiltPrompt,
    PromptFragments,
    bounded_files,
    build_prompt,
    diff_excerpt,
    render_instructions,
)
from gitward.synthesis_plane.retry import (
    BackoffConfig,
    RandomFn,
    RetryState,
    SleepFn,
    run_with_retries,
)
from gitward.synthesis_plane.suggestions import (
    AUTO_RESOLVE_CONFIDENCE_THRESHOLD,
    BRANCH_REQUIRED_FIELDS,
    CHANGE_ANALYSIS_REQUIRED_FIELDS,
    CHANGE_TYPES,
    COMMIT_REQUIRED_FIELDS,
    COMMIT_TYPES,
    COMPREHENSIVE_REQUIRED_FIELDS,
    CONFLICT_REQUIRED_FIELDS,
    PULL_REQUEST_REQUIRED_FIELDS,
    BranchSuggestion,
    ChangeAnalysis,
    CommitSuggestion,
    ComprehensiveAnalysis,
    ConflictResolution,
    PullRequestSuggestion,
    project_branch,
    project_change_analysis,
    project_commit,
    project_comprehensive,
    project_conflict_resolution,
    project_pull_request,
)
from gitward.utils.fs import PathLike

OUTPUT_FORMAT: Final[str] = "json"
HEALTH_PROBE_TIMEOUT_MS: Final[int] = 10_000
BRANCH_PREFIXES: Final[tuple[str, ...]] = (
    "feature/",
    "fix/",
    "docs/",
    "refactor/",
    "test/",
    "chore/",
)
SECURITY_ESCALATION_REASON: Final[str] = (
    "Security check failed: potential prompt injection detected in conflict data"
)
SECURITY_ESCALATION_WARNING: Final[str] = "Manual resolution required due to security concerns"

_MAX_RECENT_COMMITS: Final[int] = 5
_MAX_CONFLICT_SECTIONS: Final[int] = 10
_TRUNCATION_MARKER: Final[str] = "... [truncated]"


@dataclass(frozen=True, slots=True)
class PipelineResponse:
    """Outcome of one ``call``: ``{success, content, error?}`` plus the parsed payload."""

    success: bool
    content: str
    payload: ParsedPayload | None = None
    error: GitwardError | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            "success": self.success,
            "content": self.content,
            "attempts": self.attempts,
        }
        if self.error is not None:
            out["error"] = self.error.to_dict()
        return out


@dataclass(frozen=True, slots=True)
class ConflictSection:
    """One conflicted hunk as seen by the caller."""

    path: str
    ours: str
    theirs: str
    context: str = ""
    start_line: int = 0
    end_line: int = 0

    def render(self, limit: int) -> str:
        return (
            f"File: {self.path} (lines {max(0, self.start_line)}-{max(0, self.end_line)})\n"
            f"Our version: {_clip(self.ours, limit)}\n"
            f"Their version: {_clip(self.theirs, limit)}\n"
            f"Context: {_clip(self.context, limit)}"
        )


class RequestPipeline:
    """Validated request/response path to the AI backend CLI."""

    def __init__(
        self,
        settings: GitwardSettings | None = None,
        invoker: SafeProcessInvoker | None = None,
        *,
        working_directory: PathLike | None = None,
        sleep: SleepFn = asyncio.sleep,
        random_fn: RandomFn = random_module.random,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings if settings is not None else GitwardSettings()
        backend = self._settings.backend
        if invoker is None:
            root = os.fspath(working_directory) if working_directory is not None else os.getcwd()
            invoker = SafeProcessInvoker(
                (),
                PathValidator(),
                SecurityPolicy.strict((root,)),
                self._settings.git,
                prompt_length_limit=self._settings.limits.max_prompt_length,
            )
        self._invoker = invoker.with_binary(backend_policy(backend.command))
        self._working_directory = working_directory
        self._backoff = BackoffConfig.from_settings(backend)
        self._sleep = sleep
        self._random_fn = random_fn
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> GitwardSettings:
        return self._settings

    @property
    def backoff(self) -> BackoffConfig:
        return self._backoff

    async def call(
        self,
        fragments: PromptFragments,
        required_fields: Sequence[str] = (),
        *,
        instructions: str | None = None,
    ) -> PipelineResponse:
        """Build, scan, invoke with retries, then parse and validate.

        Plain-string ``instructions`` are scanned like the fragments; only
        text from :func:`render_instructions` is trusted as-is.

        Raises the categorized :mod:`gitward.errors` types on failure.
        """

        prompt = self._build(fragments, required_fields, instructions)
        state = RetryState()
        raw = await run_with_retries(
            lambda: self._invoke(prompt.text),
            backoff=self._backoff,
            sleep=self._sleep,
            random_fn=self._random_fn,
            on_retry=self._log_retry,
            state=state,
        )
        payload = parse_payload(raw, required_fields)
        self._logger.debug(
            "synthesis_backend_call_succeeded",
            attempts=state.attempt,
            prompt_length=len(prompt),
            redacted_diff=prompt.redacted_diff,
        )
        return PipelineResponse(
            success=True,
            content=raw,
            payload=payload,
            attempts=state.attempt,
        )

    async def try_call(
        self,
        fragments: PromptFragments,
        required_fields: Sequence[str] = (),
        *,
        instructions: str | None = None,
    ) -> PipelineResponse:
        """Like :meth:`call`, but categorized failures become ``success=False``."""

        try:
            return await self.call(fragments, required_fields, instructions=instructions)
        except GitwardError as exc:
            return PipelineResponse(success=False, content="", error=exc)

    async def generate_commit_message(
        self,
        *,
        diff: str,
        files: Sequence[str] = (),
        staged_files: Sequence[str] = (),
        recent_commits: Sequence[str] = (),
    ) -> CommitSuggestion:
        limits = self._settings.limits
        sections = {
            "staged_files": _file_lines(staged_files, limits.max_file_count),
            "recent_commits": self._commit_lines(recent_commits[:3]),
        }
        fragments = self._fragments(diff=diff, files=files, sections=sections)
        instructions = render_instructions(
            "commit_message",
            commit_types=COMMIT_TYPES,
            subject_length=50,
        )
        response = await self.call(fragments, COMMIT_REQUIRED_FIELDS, instructions=instructions)
        return project_commit(_payload(response))

    async def generate_branch_name(
        self,
        *,
        change_type: str,
        files: Sequence[str] = (),
        commit_message: str | None = None,
        description: str | None = None,
    ) -> BranchSuggestion:
        sections = {
            "change_type": _clip(change_type, 50),
            "commit_message": commit_message or "",
            "description": _clip(description or "", 200),
        }
        fragments = self._fragments(files=files[:10], sections=sections)
        instructions = render_instructions("branch_name", prefixes=BRANCH_PREFIXES, max_length=50)
        response = await self.call(fragments, BRANCH_REQUIRED_FIELDS, instructions=instructions)
        return project_branch(_payload(response))

    async def generate_pull_request(
        self,
        *,
        branch: str,
        base_branch: str,
        files: Sequence[str] = (),
        commits: Sequence[str] = (),
        diff: str | None = None,
        template: str | None = None,
    ) -> PullRequestSuggestion:
        sections = {
            "branch_info": f"{_clip(branch, 100)} -> {_clip(base_branch, 100)}",
            "commits": self._commit_lines(commits[:10]),
            "template": _clip(template or "", 1000),
        }
        fragments = self._fragments(
            diff=diff, files=files[:15], sections=sections, total=len(files)
        )
        instructions = render_instructions("pull_request", title_length=72)
        response = await self.call(
            fragments, PULL_REQUEST_REQUIRED_FIELDS, instructions=instructions
        )
        return project_pull_request(_payload(response))

    async def analyze_changes(
        self,
        *,
        diff: str,
        files: Sequence[str] = (),
        commits: Sequence[str] = (),
        branch: str | None = None,
    ) -> ChangeAnalysis:
        sections = {
            "branch": _clip(branch or "", 100),
            "recent_commits": self._commit_lines(commits[:_MAX_RECENT_COMMITS]),
        }
        fragments = self._fragments(diff=diff, files=files, sections=sections)
        instructions = render_instructions("change_analysis", change_types=CHANGE_TYPES)
        response = await self.call(
            fragments, CHANGE_ANALYSIS_REQUIRED_FIELDS, instructions=instructions
        )
        return project_change_analysis(_payload(response))

    async def generate_comprehensive_analysis(
        self,
        *,
        diff: str,
        files: Sequence[str] = (),
        staged_files: Sequence[str] = (),
        branch: str | None = None,
        base_branch: str = "main",
        recent_commits: Sequence[str] = (),
    ) -> ComprehensiveAnalysis:
        limits = self._settings.limits
        sections = {
            "staged_files": _file_lines(staged_files, limits.max_file_count),
            "current_branch": _clip(branch or "", 100),
            "base_branch": _clip(base_branch, 100),
            "recent_commits": self._commit_lines(recent_commits[:3]),
        }
        fragments = self._fragments(diff=diff, files=files, sections=sections)
        instructions = render_instructions(
            "comprehensive",
            commit_types=COMMIT_TYPES,
            change_types=CHANGE_TYPES,
        )
        response = await self.call(
            fragments, COMPREHENSIVE_REQUIRED_FIELDS, instructions=instructions
        )
        return project_comprehensive(_payload(response))

    async def resolve_conflicts(
        self,
        *,
        files: Sequence[str],
        sections: Sequence[ConflictSection] = (),
        branch: str = "",
        base_branch: str = "",
        commits: Sequence[str] = (),
        threshold: int = AUTO_RESOLVE_CONFIDENCE_THRESHOLD,
    ) -> ConflictResolution:
        """Ask the backend for a resolution; injection-shaped input escalates instead."""

        limits = self._settings.limits
        per_side = max(1, limits.max_section_length // 4)
        rendered = "\n---\n".join(
            section.render(per_side) for section in sections[:_MAX_CONFLICT_SECTIONS]
        )
        fragment_sections = {
            "branch_info": f"{_clip(branch, 100)} -> {_clip(base_branch, 100)}",
            "recent_commits": self._commit_lines(commits[:_MAX_RECENT_COMMITS]),
            "conflict_sections": _clip(rendered, limits.max_section_length),
        }
        fragments = self._fragments(files=files[:20], sections=fragment_sections)
        instructions = render_instructions("conflict_resolution", threshold=threshold)
        try:
            response = await self.call(
                fragments, CONFLICT_REQUIRED_FIELDS, instructions=instructions
            )
        except PromptRejectedError:
            return ConflictResolution.escalated(
                files,
                SECURITY_ESCALATION_REASON,
                (SECURITY_ESCALATION_WARNING,),
            )
        return project_conflict_resolution(
            _payload(response), threshold=threshold, conflicted_files=files
        )

    async def is_available(self) -> bool:
        """Health probe: the backend CLI exists and answers ``--version``."""

        backend = self._settings.backend
        spec = CommandSpec(
            binary=backend.command,
            arguments=("--version",),
            working_directory=self._working_directory,
            timeout_ms=min(HEALTH_PROBE_TIMEOUT_MS, backend.timeout_ms),
            check=False,
        )
        try:
            result = await self._invoker.run(spec)
        except ProcessExecutionError as exc:
            self._logger.info(
                "synthesis_backend_unavailable", command=backend.command, code=exc.code
            )
            return False
        return result.ok and bool(result.stdout.strip())

    def _build(
        self,
        fragments: PromptFragments,
        required_fields: Sequence[str],
        instructions: str | None,
    ) -> BuiltPrompt:
        text = instructions
        if text is None:
            text = render_instructions("generic", fields=tuple(required_fields))
        log = self._invoker.validator.log
        try:
            return build_prompt(fragments, text, self._settings.limits)
        except PromptRejectedError as exc:
            log.record(SecurityEventLevel.CRITICAL, exc.detail, "prompt")
            raise
        except PromptLimitError as exc:
            log.record(SecurityEventLevel.WARNING, exc.detail, "prompt")
            raise

    async def _invoke(self, prompt: str) -> str:
        backend = self._settings.backend
        result = await self._invoker.run(
            CommandSpec(
                binary=backend.command,
                arguments=(
                    "-p",
                    prompt,
                    "--model",
                    backend.model,
                    "--output-format",
                    OUTPUT_FORMAT,
                ),
                working_directory=self._working_directory,
                timeout_ms=backend.timeout_ms,
                check=False,
            )
        )
        if result.stdout.strip():
            return result.stdout
        if result.ok:
            raise EmptyResponseError()
        raise ProcessExitError(
            backend.command,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            retryable=is_retryable_message(result.stderr),
        )

    def _log_retry(self, state: RetryState, delay_seconds: float) -> None:
        error = state.last_error
        self._logger.warning(
            "synthesis_backend_retry",
            attempt=state.attempt,
            max_retries=self._backoff.max_retries,
            delay_seconds=round(delay_seconds, 3),
            code=error.code if error is not None else None,
            detail=error.detail if error is not None else None,
        )

    def _fragments(
        self,
        *,
        diff: str | None = None,
        files: Sequence[str] = (),
        sections: dict[str, str] | None = None,
        total: int | None = None,
    ) -> PromptFragments:
        limits = self._settings.limits
        kept, omitted = bounded_files(list(files), limits.max_file_count)
        omitted += (total - len(files)) if total is not None else 0
        named = {
            key: _clip(value, limits.max_section_length)
            for key, value in (sections or {}).items()
            if value
        }
        if "commit_message" in named:
            named["commit_message"] = _clip(
                named["commit_message"], limits.max_commit_message_length
            )
        if omitted > 0:
            named["additional_files"] = f"... and {omitted} more files"
        return PromptFragments(
            diff=diff_excerpt(diff, limits.max_diff_length) if diff else None,
            files=kept,
            sections=named,
        )

    def _commit_lines(self, commits: Sequence[str]) -> str:
        limit = self._settings.limits.max_commit_message_length
        return "\n".join(_clip(item, limit) for item in commits if item)


def _payload(response: PipelineResponse) -> ParsedPayload:
    if response.payload is None:
        raise EmptyResponseError()
    return response.payload


def _file_lines(files: Sequence[str], limit: int) -> str:
    return "\n".join(f"- {item}" for item in files[:limit])


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    keep = max(0, limit - len(_TRUNCATION_MARKER))
    return text[:keep] + _TRUNCATION_MARKER[: limit - keep]


__all__ = [
    "BRANCH_PREFIXES",
    "ConflictSection",
    "HEALTH_PROBE_TIMEOUT_MS",
    "OUTPUT_FORMAT",
    "PipelineResponse",
    "RequestPipeline",
    "SECURITY_ESCALATION_REASON",
    "SECURITY_ESCALATION_WARNING",
]
