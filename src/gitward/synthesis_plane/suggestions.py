"""
gitward — typed backend results

File: src/gitward/synthesis_plane/suggestions.py
Last updated: 2026-10-19

Purpose
- Project validated ``ParsedPayload`` objects into a closed set of typed results.

What should be included in this file
- Commit, branch, pull-request, change-analysis and conflict-resolution results.
- Required-field lists per result kind.
- The automatic-resolution confidence rule.

Functional requirements
- Optional fields fall back to safe defaults; enum-like fields are normalized.
- ``strategy="auto"`` survives only with confidence at or above the threshold
  and at least one resolved file; otherwise it becomes ``escalate``.
- Resolved files come from the backend: paths must pass the raw path-pattern
  scan, stay relative and name a conflicted file; content is bounded. Any
  dropped entry also forces ``escalate``.

Non-functional requirements
- Projections are pure and deterministic.
"""

from __future__ import annotations

import os
import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Final

from gitward.security.path_validator import scan_path_patterns
from gitward.synthesis_plane.payload import ParsedPayload

AUTO_RESOLVE_CONFIDENCE_THRESHOLD: Final[int] = 90
MAX_RESOLVED_CONTENT_LENGTH: Final[int] = 50_000
DEFAULT_COMMIT_TYPE: Final[str] = "chore"
COMMIT_TYPES: Final[tuple[str, ...]] = (
    "feat",
    "fix",
    "docs",
    "style",
    "refactor",
    "perf",
    "test",
    "build",
    "ci",
    "chore",
)
CHANGE_TYPES: Final[tuple[str, ...]] = (
    "feature",
    "bugfix",
    "refactor",
    "docs",
    "config",
    "test",
    "chore",
)

COMMIT_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("type", "message")
BRANCH_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("name",)
PULL_REQUEST_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("title", "description")
CHANGE_ANALYSIS_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("changeType", "impact", "summary")
COMPREHENSIVE_REQUIRED_FIELDS: Final[tuple[str, ...]] = (
    "commit.message",
    "commit.type",
    "branch.name",
    "analysis.changeType",
    "analysis.impact",
    "analysis.summary",
    "pr.title",
    "pr.description",
)
CONFLICT_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("strategy", "confidence", "reasoning")

_SCOPED_SUBJECT_RE = re.compile(r"^(\w+)(\([^)]+\))(:)")
_PLAIN_SUBJECT_RE = re.compile(r"^(\w+)(:)")


class ImpactLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ResolutionStrategy(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    ESCALATE = "escalate"


@dataclass(frozen=True, slots=True)
class CommitSuggestion:
    message: str
    type: str = DEFAULT_COMMIT_TYPE
    scope: str | None = None
    description: str = ""
    breaking: bool = False
    body: str | None = None
    footer: str | None = None


@dataclass(frozen=True, slots=True)
class BranchSuggestion:
    name: str
    description: str = ""
    alternative: str | None = None


@dataclass(frozen=True, slots=True)
class PullRequestSuggestion:
    title: str
    description: str
    labels: tuple[str, ...] = ()
    reviewers: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ChangeAnalysis:
    change_type: str
    impact: ImpactLevel
    risks: tuple[str, ...]
    suggestions: tuple[str, ...]
    summary: str


@dataclass(frozen=True, slots=True)
class ComprehensiveAnalysis:
    commit: CommitSuggestion
    branch: BranchSuggestion
    analysis: ChangeAnalysis
    pull_request: PullRequestSuggestion


@dataclass(frozen=True, slots=True)
class ResolvedFile:
    path: str
    content: str
    changes: str = ""
    reasoning: str = ""


@dataclass(frozen=True, slots=True)
class ConflictResolution:
    """Backend proposal for a merge conflict after the confidence cross-check."""

    strategy: ResolutionStrategy
    confidence: float
    resolved_files: tuple[ResolvedFile, ...]
    unresolved: tuple[str, ...]
    reasoning: str
    warnings: tuple[str, ...] = ()

    @property
    def is_automatic(self) -> bool:
        return self.strategy is ResolutionStrategy.AUTO

    @classmethod
    def escalated(
        cls,
        files: Sequence[str],
        reasoning: str,
        warnings: Sequence[str] = (),
    ) -> ConflictResolution:
        return cls(
            strategy=ResolutionStrategy.ESCALATE,
            confidence=0.0,
            resolved_files=(),
            unresolved=tuple(files),
            reasoning=reasoning,
            warnings=tuple(warnings),
        )


def project_commit(payload: ParsedPayload) -> CommitSuggestion:
    commit_type = payload.get_string("type").strip().lower() or DEFAULT_COMMIT_TYPE
    scope = payload.get_string("scope").strip() or None
    breaking = payload.get_boolean("breaking")
    message = mark_breaking(payload.get_string("message").strip(), breaking=breaking)
    return CommitSuggestion(
        message=message,
        type=commit_type,
        scope=scope,
        description=payload.get_string("description"),
        breaking=breaking,
        body=payload.get_string("body") or None,
        footer=payload.get_string("footer") or None,
    )


def mark_breaking(message: str, *, breaking: bool) -> str:
    """Insert ``!`` after ``type`` or ``type(scope)`` of a breaking commit subject."""

    if not breaking or re.match(r"^\w+(\([^)]+\))?!:", message):
        return message
    if _SCOPED_SUBJECT_RE.match(message):
        return _SCOPED_SUBJECT_RE.sub(r"\1\2!\3", message, count=1)
    return _PLAIN_SUBJECT_RE.sub(r"\1!\2", message, count=1)


def project_branch(payload: ParsedPayload) -> BranchSuggestion:
    return BranchSuggestion(
        name=payload.get_string("name").strip(),
        description=payload.get_string("description"),
        alternative=payload.get_string("alternative").strip() or None,
    )


def project_pull_request(payload: ParsedPayload) -> PullRequestSuggestion:
    return PullRequestSuggestion(
        title=payload.get_string("title").strip(),
        description=payload.get_string("description"),
        labels=payload.get_string_list("labels"),
        reviewers=payload.get_string_list("reviewers"),
    )


def project_change_analysis(payload: ParsedPayload) -> ChangeAnalysis:
    return ChangeAnalysis(
        change_type=payload.get_string("changeType").strip() or DEFAULT_COMMIT_TYPE,
        impact=normalize_impact(payload.get_string("impact")),
        risks=payload.get_string_list("risks"),
        suggestions=payload.get_string_list("suggestions"),
        summary=payload.get_string("summary"),
    )


def project_comprehensive(payload: ParsedPayload) -> ComprehensiveAnalysis:
    return ComprehensiveAnalysis(
        commit=project_commit(payload.get_object("commit")),
        branch=project_branch(payload.get_object("branch")),
        analysis=project_change_analysis(payload.get_object("analysis")),
        pull_request=project_pull_request(payload.get_object("pr")),
    )


def project_conflict_resolution(
    payload: ParsedPayload,
    *,
    threshold: int = AUTO_RESOLVE_CONFIDENCE_THRESHOLD,
    conflicted_files: Sequence[str] | None = None,
    max_content_length: int = MAX_RESOLVED_CONTENT_LENGTH,
) -> ConflictResolution:
    """Project a conflict payload and cross-check its claimed confidence.

    With ``conflicted_files`` given, a resolved path outside that set is dropped.
    """

    warnings = list(payload.get_string_list("warnings"))
    expected = None if conflicted_files is None else {item.strip() for item in conflicted_files}
    resolved: list[ResolvedFile] = []
    dropped = 0
    for item in payload.get_list("resolvedFiles"):
        if not isinstance(item, dict):
            warnings.append("ignored a resolved file entry that is not an object")
            continue
        entry = ParsedPayload(item)
        path = entry.get_string("path").strip()
        if not path:
            warnings.append("ignored a resolved file entry without a path")
            continue
        content = entry.get_string("content")
        reason = _resolved_file_violation(path, content, expected, max_content_length)
        if reason is not None:
            dropped += 1
            warnings.append(f"rejected resolved file {path!r}: {reason}")
            continue
        resolved.append(
            ResolvedFile(
                path=path,
                content=content,
                changes=entry.get_string("changes"),
                reasoning=entry.get_string("reasoning"),
            )
        )

    confidence = clamp_confidence(payload.get_number("confidence"))
    strategy = normalize_strategy(payload.get_string("strategy"))
    if strategy is ResolutionStrategy.AUTO:
        if confidence < threshold:
            strategy = ResolutionStrategy.ESCALATE
            warnings.append(
                f"automatic resolution downgraded to escalate: confidence {confidence:g} "
                f"is below the required {threshold}"
            )
        elif not resolved:
            strategy = ResolutionStrategy.ESCALATE
            warnings.append(
                "automatic resolution downgraded to escalate: no resolved files were returned"
            )
        elif dropped:
            strategy = ResolutionStrategy.ESCALATE
            warnings.append(
                f"automatic resolution downgraded to escalate: {dropped} resolved "
                "file(s) failed validation"
            )

    return ConflictResolution(
        strategy=strategy,
        confidence=confidence,
        resolved_files=tuple(resolved),
        unresolved=tuple(item.strip() for item in payload.get_string_list("unresolved")),
        reasoning=payload.get_string("reasoning"),
        warnings=tuple(warnings),
    )


def _resolved_file_violation(
    path: str,
    content: str,
    expected: set[str] | None,
    max_content_length: int,
) -> str | None:
    patterns = scan_path_patterns(path)
    if patterns:
        return "unsafe path (" + ", ".join(patterns) + ")"
    if os.path.isabs(path) or path.startswith(("/", "\\")):
        return "absolute path"
    if expected is not None and path not in expected:
        return "not one of the conflicted files"
    if len(content) > max_content_length:
        return f"content exceeds {max_content_length} characters"
    return None


def normalize_impact(value: str) -> ImpactLevel:
    try:
        return ImpactLevel(value.strip().lower())
    except ValueError:
        return ImpactLevel.MEDIUM


def normalize_strategy(value: str) -> ResolutionStrategy:
    try:
        return ResolutionStrategy(value.strip().lower())
    except ValueError:
        return ResolutionStrategy.ESCALATE


def clamp_confidence(value: float) -> float:
    return max(0.0, min(100.0, value))


__all__ = [
    "AUTO_RESOLVE_CONFIDENCE_THRESHOLD",
    "BRANCH_REQUIRED_FIELDS",
    "CHANGE_ANALYSIS_REQUIRED_FIELDS",
    "CHANGE_TYPES",
    "COMMIT_REQUIRED_FIELDS",
    "COMMIT_TYPES",
    "COMPREHENSIVE_REQUIRED_FIELDS",
    "CONFLICT_REQUIRED_FIELDS",
    "BranchSuggestion",
    "ChangeAnalysis",
    "CommitSuggestion",
    "ComprehensiveAnalysis",
    "ConflictResolution",
    "DEFAULT_COMMIT_TYPE",
    "ImpactLevel",
    "MAX_RESOLVED_CONTENT_LENGTH",
    "PullRequestSuggestion",
    "ResolutionStrategy",
    "ResolvedFile",
    "clamp_confidence",
    "mark_breaking",
    "normalize_impact",
    "normalize_strategy",
    "project_branch",
    "project_change_analysis",
    "project_commit",
    "project_comprehensive",
    "project_conflict_resolution",
]
