"""
gitward — bounded prompt assembly

File: src/gitward/synthesis_plane/prompt_builder.py
Last updated: 2026-10-19

Purpose
- Turn caller fragments (diff excerpt, file list, named sections) into one
  delimited prompt under independent per-fragment and global ceilings.

What should be included in this file
- Fragment model and per-dimension limit checks.
- Injection scan of every caller-supplied text before assembly, caller
  instructions included.
- Trusted instruction templates rendered with strict placeholders.

Functional requirements
- Any ceiling violation fails fast with ``PromptLimitError`` naming the dimension.
- Diff text is redacted for secrets before it enters the prompt.
- Rendering is deterministic for the same inputs.

Non-functional requirements
- Caller text never lands inside the system-instruction block.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Final

from jinja2 import Environment, StrictUndefined

from gitward.config.settings import PromptLimits
from gitward.errors import PromptLimitError
from gitward.security.prompt_hygiene import assert_no_injection
from gitward.security.redaction import redact_text

SYSTEM_INSTRUCTIONS_DELIMITER: Final[str] = "=== SYSTEM INSTRUCTIONS ==="
USER_DATA_START_DELIMITER: Final[str] = "=== USER DATA START ==="
USER_DATA_END_DELIMITER: Final[str] = "=== USER DATA END ==="
CLOSING_INSTRUCTION: Final[str] = (
    "Please analyze the user data above and respond according to the system instructions."
)

DIFF_TRUNCATION_MARKER: Final[str] = "\n... [diff truncated]"

_SECTION_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,63}$")

# Sections with their own ceiling instead of ``max_section_length``.
_SECTION_LIMIT_FIELDS: Final[Mapping[str, str]] = MappingProxyType(
    {"commit_message": "max_commit_message_length"}
)


@dataclass(frozen=True, slots=True)
class PromptFragments:
    """Untrusted caller text destined for the user-data block."""

    diff: str | None = None
    files: tuple[str, ...] = ()
    sections: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.diff is not None and not isinstance(self.diff, str):
            raise TypeError("PromptFragments.diff must be a string or None")
        files = tuple(self.files)
        for item in files:
            if not isinstance(item, str):
                raise TypeError("PromptFragments.files must contain strings")
        sections: dict[str, str] = {}
        for name, value in self.sections.items():
            if not isinstance(name, str) or _SECTION_NAME_RE.fullmatch(name) is None:
                raise ValueError(f"invalid section name: {name!r}")
            if not isinstance(value, str):
                raise TypeError(f"section {name} must be a string")
            sections[name] = value
        object.__setattr__(self, "files", files)
        object.__setattr__(self, "sections", MappingProxyType(sections))

    def texts(self) -> tuple[str, ...]:
        """Every caller-supplied string, in prompt order."""

        out: list[str] = list(self.files)
        if self.diff:
            out.append(self.diff)
        out.extend(value for value in self.sections.values() if value)
        return tuple(out)


@dataclass(frozen=True, slots=True)
class BuiltPrompt:
    text: str
    redacted_diff: bool = False

    def __len__(self) -> int:
        return len(self.text)


class TrustedInstructions(str):
    """Instruction text rendered from a built-in template; not scanned for injection."""

    __slots__ = ()


def check_fragment_limits(fragments: PromptFragments, limits: PromptLimits) -> None:
    """Raise :class:`PromptLimitError` for the first fragment over its ceiling."""

    if fragments.diff is not None and len(fragments.diff) > limits.max_diff_length:
        raise PromptLimitError(
            "diff", limit=limits.max_diff_length, actual=len(fragments.diff)
        )
    if len(fragments.files) > limits.max_file_count:
        raise PromptLimitError(
            "file_count", limit=limits.max_file_count, actual=len(fragments.files)
        )
    for name in fragments.files:
        if len(name) > limits.max_filename_length:
            raise PromptLimitError(
                "file_name", limit=limits.max_filename_length, actual=len(name)
            )
    for section, value in fragments.sections.items():
        limit_field = _SECTION_LIMIT_FIELDS.get(section, "max_section_length")
        limit = int(getattr(limits, limit_field))
        if len(value) > limit:
            raise PromptLimitError(f"section:{section}", limit=limit, actual=len(value))


def build_prompt(
    fragments: PromptFragments,
    instructions: str,
    limits: PromptLimits | None = None,
) -> BuiltPrompt:
    """Assemble the delimited prompt.

    Order matters: per-fragment ceilings first, then the injection scan over
    raw caller text, then diff redaction, then the global length ceiling on
    the assembled prompt. Plain ``str`` instructions count as caller text;
    only :class:`TrustedInstructions` skip the scan.
    """

    effective = limits or PromptLimits()
    check_fragment_limits(fragments, effective)
    caller_texts = list(fragments.texts())
    if not isinstance(instructions, TrustedInstructions):
        caller_texts.append(instructions)
    assert_no_injection(*caller_texts)

    blocks: list[str] = []
    redacted = False
    if fragments.files:
        listing = "\n".join(f"- {name}" for name in fragments.files)
        blocks.append(f"FILES:\n{listing}")
    if fragments.diff:
        diff = redact_text(fragments.diff)
        redacted = diff != fragments.diff
        blocks.append(f"DIFF:\n{diff}")
    for section, value in fragments.sections.items():
        if value:
            blocks.append(f"{section.upper()}:\n{value}")

    user_data = "".join(f"{block}\n\n" for block in blocks)
    text = (
        f"{SYSTEM_INSTRUCTIONS_DELIMITER}\n{instructions.strip()}\n\n"
        f"{USER_DATA_START_DELIMITER}\n{user_data}{USER_DATA_END_DELIMITER}\n\n"
        f"{CLOSING_INSTRUCTION}"
    )
    if len(text) > effective.max_prompt_length:
        raise PromptLimitError("prompt", limit=effective.max_prompt_length, actual=len(text))
    return BuiltPrompt(text=text, redacted_diff=redacted)


def diff_excerpt(diff: str, limit: int) -> str:
    """Cut ``diff`` to at most ``limit`` characters, marking the cut."""

    if len(diff) <= limit:
        return diff
    keep = max(0, limit - len(DIFF_TRUNCATION_MARKER))
    return diff[:keep] + DIFF_TRUNCATION_MARKER[: limit - keep]


def bounded_files(files: tuple[str, ...] | list[str], limit: int) -> tuple[tuple[str, ...], int]:
    """First ``limit`` files and how many were left out."""

    kept = tuple(files[:limit])
    return kept, len(files) - len(kept)


# --- instruction templates --------------------------------------------------

_ENVIRONMENT = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=False,
)

INSTRUCTION_TEMPLATES: Final[Mapping[str, str]] = MappingProxyType(
    {
        "generic": """\
Analyze the user data and respond with a single JSON object.
{% if fields %}
The object must contain these fields: {{ fields | join(', ') }}.
{% endif %}
Return only the JSON object, without markdown fences or commentary.""",
        "commit_message": """\
Analyze the provided git changes and generate a Conventional Commits message.

RESPOND WITH JSON ONLY:
{
  "message": "type(scope): description",
  "type": "{{ commit_types | join('|') }}",
  "scope": "optional scope (kebab-case)",
  "description": "imperative mood description",
  "breaking": false,
  "body": "optional multiline body",
  "footer": "optional footer for breaking changes"
}

RULES:
1. Type must be lowercase and one of: {{ commit_types | join(', ') }}.
2. Scope is optional, lowercase, kebab-case.
3. Description: imperative mood, lowercase, no period, under {{ subject_length }} chars.
4. Breaking changes are marked with "!" or a "BREAKING CHANGE:" footer.""",
        "branch_name": """\
Generate a git branch name for the provided changes.

RESPOND WITH JSON ONLY:
{
  "name": "prefix/branch-name-in-kebab-case",
  "description": "brief explanation",
  "alternative": "alternative-branch-name"
}

RULES:
- Use kebab-case with a prefix such as {{ prefixes | join(', ') }}.
- Keep under {{ max_length }} characters.
- Avoid special characters except hyphens and one slash.""",
        "pull_request": """\
Generate a pull request title and description for the provided changes.

RESPOND WITH JSON ONLY:
{
  "title": "Clear, descriptive PR title",
  "description": "Detailed PR description with markdown formatting",
  "labels": ["optional", "labels"],
  "reviewers": []
}

RULES:
- Title under {{ title_length }} characters.
- Description covers a summary, notable files, a testing checklist and breaking changes.
- Do not suggest specific usernames for reviewers.""",
        "change_analysis": """\
Analyze the provided git changes and report on them.

RESPOND WITH JSON ONLY:
{
  "changeType": "{{ change_types | join('|') }}",
  "impact": "low|medium|high",
  "risks": ["potential risks or concerns"],
  "suggestions": ["improvement suggestions"],
  "summary": "brief summary of what these changes accomplish"
}

Consider code quality, security, performance, breaking changes, tests and docs.""",
        "comprehensive": """\
Analyze the provided git changes for a complete commit, branch and pull request workflow.

RESPOND WITH JSON ONLY:
{
  "commit": {
    "message": "type(scope): description",
    "type": "{{ commit_types | join('|') }}",
    "scope": "optional scope",
    "description": "imperative mood description",
    "breaking": false,
    "body": "optional body",
    "footer": "optional footer"
  },
  "branch": {"name": "prefix/kebab-case-name", "description": "why", "alternative": "other-name"},
  "analysis": {
    "changeType": "{{ change_types | join('|') }}",
    "impact": "low|medium|high",
    "risks": [],
    "suggestions": [],
    "summary": "what the changes accomplish"
  },
  "pr": {"title": "PR title", "description": "markdown description", "labels": [], "reviewers": []}
}

Return only the JSON object, without markdown fences or commentary.""",
        "conflict_resolution": """\
Analyze the provided merge conflicts and propose a resolution.

CONFIDENCE LEVELS:
- {{ threshold }}-100: simple, non-overlapping changes that can be merged automatically
- below {{ threshold }}: changes that need human review

RESPOND WITH JSON ONLY:
{
  "strategy": "auto|manual|escalate",
  "confidence": 0-100,
  "reasoning": "explanation of the analysis",
  "resolvedFiles": [
    {"path": "file", "content": "resolved content", "changes": "summary", "reasoning": "why"}
  ],
  "unresolved": ["files that need manual resolution"],
  "warnings": ["issues to watch out for"]
}

RULES:
- Use "auto" only with confidence of at least {{ threshold }} and complete file contents.
- Use "escalate" when the conflict is risky and explain why.
- Prioritize code safety over convenience.""",
    }
)


def render_instructions(name: str, **variables: object) -> TrustedInstructions:
    """Render a trusted instruction template; unknown names and missing variables raise."""

    try:
        source = INSTRUCTION_TEMPLATES[name]
    except KeyError as exc:
        raise KeyError(f"unknown instruction template: {name}") from exc
    return TrustedInstructions(_ENVIRONMENT.from_string(source).render(**variables))


__all__ = [
    "BuiltPrompt",
    "CLOSING_INSTRUCTION",
    "DIFF_TRUNCATION_MARKER",
    "INSTRUCTION_TEMPLATES",
    "PromptFragments",
    "SYSTEM_INSTRUCTIONS_DELIMITER",
    "TrustedInstructions",
    "USER_DATA_END_DELIMITER",
    "USER_DATA_START_DELIMITER",
    "bounded_files",
    "build_prompt",
    "check_fragment_limits",
    "diff_excerpt",
    "render_instructions",
]
