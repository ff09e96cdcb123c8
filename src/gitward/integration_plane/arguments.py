"""
gitward — process argument allow-lists and sanitization

File: src/gitward/integration_plane/arguments.py
Last updated: 2026-10-19

Purpose
- Decide, before anything is spawned, whether a binary/subcommand/argument list
  is permitted and what class each argument belongs to.

What should be included in this file
- ``ArgumentKind`` classes with their length ceilings.
- ``SubcommandPolicy`` / ``BinaryPolicy`` allow-lists for git and the AI backend CLI.
- Per-argument sanitization and whole-invocation classification.

Functional requirements
- Unknown binaries, subcommands and undeclared flags are rejected.
- Destructive subcommands, flags and positional verbs need explicit confirmation.
- Arguments following ``--`` are paths; arguments following a value-taking flag
  take that flag's class.
- PROMPT values skip the metacharacter check; they are never seen by a shell and
  are scanned for injection by the request pipeline instead.

Non-functional requirements
- Pure and deterministic: no filesystem or process access here. Path-class
  arguments are checked against the filesystem by the invoker.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Final

from gitward.errors import ArgumentRejectedError, CommandNotAllowedError


class ArgumentKind(str, Enum):
    """Sanitization class of one process argument."""

    SUBCOMMAND = "subcommand"
    GENERIC = "generic"
    FLAG = "flag"
    BRANCH = "branch"
    PATH = "path"
    MESSAGE = "message"
    PROMPT = "prompt"


DEFAULT_PROMPT_ARGUMENT_LIMIT: Final[int] = 50_000

ARGUMENT_LENGTH_LIMITS: Final[Mapping[ArgumentKind, int]] = MappingProxyType(
    {
        ArgumentKind.SUBCOMMAND: 50,
        ArgumentKind.GENERIC: 255,
        ArgumentKind.FLAG: 255,
        ArgumentKind.BRANCH: 255,
        ArgumentKind.PATH: 4096,
        ArgumentKind.MESSAGE: 2048,
        ArgumentKind.PROMPT: DEFAULT_PROMPT_ARGUMENT_LIMIT,
    }
)

END_OF_OPTIONS: Final[str] = "--"

_SHELL_METACHARACTERS: Final[frozenset[str]] = frozenset(";&|`$()<>*?[]{}\n\r")
_MESSAGE_METACHARACTERS: Final[frozenset[str]] = frozenset(";&|`$()<>*?[]{}")
_CONTROL_CHARACTERS = re.compile(r"[\x00-\x1f\x7f]")
_MESSAGE_CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")
_SUBCOMMAND_RE = re.compile(r"^[a-z][a-z0-9-]*$")
_FLAG_NAME_RE = re.compile(r"^--?[A-Za-z0-9][A-Za-z0-9-]*$")
_REF_FORBIDDEN_CHARACTERS: Final[frozenset[str]] = frozenset(" ~^:\\")

# Never accepted, even when a caller declares them: they redirect git to other
# repositories, configs or helper programs.
NEVER_ALLOWED_FLAGS: Final[frozenset[str]] = frozenset(
    {
        "-c",
        "-C",
        "--config-env",
        "--exec",
        "--exec-path",
        "--git-dir",
        "--namespace",
        "--receive-pack",
        "--upload-pack",
        "--work-tree",
        "--ext-diff",
        "--textconv",
        "--output",
    }
)


@dataclass(frozen=True, slots=True)
class Argument:
    """One caller-supplied argument with an optional explicit class."""

    value: str
    kind: ArgumentKind | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.value, str):
            raise TypeError("Argument.value must be a string")
        if self.kind is not None:
            object.__setattr__(self, "kind", ArgumentKind(self.kind))

    @classmethod
    def path(cls, value: str) -> Argument:
        return cls(value, ArgumentKind.PATH)

    @classmethod
    def message(cls, value: str) -> Argument:
        return cls(value, ArgumentKind.MESSAGE)

    @classmethod
    def branch(cls, value: str) -> Argument:
        return cls(value, ArgumentKind.BRANCH)

    @classmethod
    def prompt(cls, value: str) -> Argument:
        return cls(value, ArgumentKind.PROMPT)

    @classmethod
    def generic(cls, value: str) -> Argument:
        return cls(value, ArgumentKind.GENERIC)


@dataclass(frozen=True, slots=True)
class ClassifiedArgument:
    """A sanitized argument and the class it was checked as."""

    value: str
    kind: ArgumentKind


@dataclass(frozen=True, slots=True)
class SubcommandPolicy:
    """Flags and positional class permitted for one subcommand."""

    flags: frozenset[str] = frozenset()
    value_flags: Mapping[str, ArgumentKind] = field(default_factory=dict)
    destructive_flags: frozenset[str] = frozenset()
    destructive_positionals: frozenset[str] = frozenset()
    positional: ArgumentKind | None = ArgumentKind.GENERIC
    destructive: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "value_flags", MappingProxyType(dict(self.value_flags)))

    def allows_flag(self, name: str) -> bool:
        return name in self.flags or name in self.value_flags or name in self.destructive_flags


@dataclass(frozen=True, slots=True)
class BinaryPolicy:
    """Allow-list for one binary.

    ``direct`` is used for binaries invoked without a subcommand.
    """

    name: str
    subcommands: Mapping[str, SubcommandPolicy] = field(default_factory=dict)
    direct: SubcommandPolicy | None = None
    missing_message: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "subcommands", MappingProxyType(dict(self.subcommands)))

    def policy_for(self, subcommand: str | None) -> SubcommandPolicy:
        if subcommand is None:
            if self.direct is None:
                raise CommandNotAllowedError(f"{self.name} requires a subcommand")
            return self.direct
        policy = self.subcommands.get(subcommand)
        if policy is None:
            raise CommandNotAllowedError(f"{self.name} subcommand not allowed: {subcommand}")
        return policy


@dataclass(frozen=True, slots=True)
class ValidatedInvocation:
    """Allow-listed and sanitized invocation, ready to become an argv."""

    binary: str
    subcommand: str | None
    arguments: tuple[ClassifiedArgument, ...]

    @property
    def argument_values(self) -> tuple[str, ...]:
        return tuple(item.value for item in self.arguments)

    def path_arguments(self) -> tuple[tuple[int, str], ...]:
        return tuple(
            (index, item.value)
            for index, item in enumerate(self.arguments)
            if item.kind is ArgumentKind.PATH
        )


def sanitize_argument(
    value: object,
    kind: ArgumentKind,
    *,
    limit: int | None = None,
    index: int | None = None,
) -> str:
    """Check one argument against its class rules and return it unchanged."""

    kind = ArgumentKind(kind)

    def _reject(reason: str) -> ArgumentRejectedError:
        return ArgumentRejectedError(reason, index=index, kind=kind.value)

    if not isinstance(value, str):
        raise _reject(f"must be a string, got {type(value).__name__}")
    ceiling = limit if limit is not None else ARGUMENT_LENGTH_LIMITS[kind]
    if len(value) > ceiling:
        raise _reject(f"{kind.value} exceeds maximum length ({len(value)} > {ceiling})")
    if "\x00" in value:
        raise _reject("contains null byte")

    if kind is ArgumentKind.PROMPT:
        return value

    if kind is ArgumentKind.MESSAGE:
        if not value.strip():
            raise _reject("message cannot be empty")
        if any(ch in _MESSAGE_METACHARACTERS for ch in value):
            raise _reject("message contains shell metacharacters")
        if _MESSAGE_CONTROL_CHARACTERS.search(value):
            raise _reject("message contains control characters")
        return value

    if value == "":
        raise _reject(f"{kind.value} cannot be empty")
    if any(ch in _SHELL_METACHARACTERS for ch in value):
        raise _reject(f"{kind.value} contains shell metacharacters")
    if _CONTROL_CHARACTERS.search(value):
        raise _reject(f"{kind.value} contains control characters")

    if kind is ArgumentKind.SUBCOMMAND and not _SUBCOMMAND_RE.fullmatch(value):
        raise _reject("subcommand contains unsupported characters")
    if kind is ArgumentKind.FLAG and not _FLAG_NAME_RE.fullmatch(value.split("=", 1)[0]):
        raise _reject("flag has an unsupported shape")
    if kind is ArgumentKind.BRANCH:
        reason = ref_format_violation(value)
        if reason is not None:
            raise _reject(reason)
    return value


def ref_format_violation(name: str) -> str | None:
    """Return why ``name`` is not a valid git ref name, or ``None``."""

    if name.startswith("-"):
        return "ref name cannot start with '-'"
    if name == "@":
        return "ref name cannot be '@'"
    if ".." in name:
        return "ref name cannot contain '..'"
    if "@{" in name:
        return "ref name cannot contain '@{'"
    if any(ch in _REF_FORBIDDEN_CHARACTERS for ch in name):
        return "ref name contains forbidden characters"
    if name.startswith("/") or name.endswith("/") or "//" in name:
        return "ref name has an empty component"
    if name.endswith(".") or name.endswith(".lock"):
        return "ref name cannot end with '.' or '.lock'"
    if any(part.startswith(".") for part in name.split("/")):
        return "ref name component cannot start with '.'"
    return None


def validate_invocation(
    policy: BinaryPolicy,
    subcommand: str | None,
    arguments: Sequence[str | Argument],
    *,
    declared_flags: Iterable[str] = (),
    confirmed_destructive: bool = False,
    limits: Mapping[ArgumentKind, int] | None = None,
) -> ValidatedInvocation:
    """Allow-list and classify a full invocation.

    Raises :class:`CommandNotAllowedError` for anything off the allow-list
    (including unconfirmed destructive use) and :class:`ArgumentRejectedError`
    for a malformed argument.
    """

    ceilings = dict(ARGUMENT_LENGTH_LIMITS)
    if limits:
        ceilings.update(limits)

    if subcommand is not None:
        _checked(subcommand, ArgumentKind.SUBCOMMAND, ceilings, None)
    sub_policy = policy.policy_for(subcommand)
    label = policy.name if subcommand is None else f"{policy.name} {subcommand}"
    if sub_policy.destructive and not confirmed_destructive:
        raise CommandNotAllowedError(f"{label} is destructive and requires confirmation")

    extra_flags = frozenset(declared_flags)
    classified: list[ClassifiedArgument] = []
    pending: ArgumentKind | None = None
    after_separator = False

    for index, raw in enumerate(arguments):
        explicit = raw.kind if isinstance(raw, Argument) else None
        value = raw.value if isinstance(raw, Argument) else raw
        if not isinstance(value, str):
            raise ArgumentRejectedError(
                f"must be a string, got {type(value).__name__}", index=index
            )

        if pending is not None:
            kind = explicit or pending
            if kind is ArgumentKind.PROMPT and pending is not ArgumentKind.PROMPT:
                raise ArgumentRejectedError(
                    "prompt values are only accepted after a prompt flag", index=index
                )
            pending = None
            classified.append(ClassifiedArgument(_checked(value, kind, ceilings, index), kind))
            continue

        if after_separator:
            kind = explicit or ArgumentKind.PATH
            _reject_leading_dash(value, kind, index, allow=kind is ArgumentKind.PATH)
            classified.append(ClassifiedArgument(_checked(value, kind, ceilings, index), kind))
            continue

        if value == END_OF_OPTIONS and explicit in (None, ArgumentKind.FLAG):
            after_separator = True
            classified.append(ClassifiedArgument(value, ArgumentKind.FLAG))
            continue

        if explicit is ArgumentKind.PROMPT:
            raise ArgumentRejectedError(
                "prompt values are only accepted after a prompt flag", index=index
            )

        if explicit in (None, ArgumentKind.FLAG) and value.startswith("-"):
            pending = _check_flag(
                value, sub_policy, extra_flags, label, index, ceilings, confirmed_destructive
            )
            classified.append(ClassifiedArgument(value, ArgumentKind.FLAG))
            continue

        kind = explicit or sub_policy.positional
        if kind is None:
            raise CommandNotAllowedError(f"{label} does not accept positional arguments")
        _reject_leading_dash(value, kind, index, allow=False)
        checked = _checked(value, kind, ceilings, index)
        if checked in sub_policy.destructive_positionals and not confirmed_destructive:
            raise CommandNotAllowedError(
                f"{label} {checked} is destructive and requires confirmation"
            )
        classified.append(ClassifiedArgument(checked, kind))

    if pending is not None:
        raise ArgumentRejectedError(
            "flag expects a value", index=len(arguments) - 1, kind=pending.value
        )

    return ValidatedInvocation(
        binary=policy.name,
        subcommand=subcommand,
        arguments=tuple(classified),
    )


def _checked(
    value: str,
    kind: ArgumentKind,
    ceilings: Mapping[ArgumentKind, int],
    index: int | None,
) -> str:
    return sanitize_argument(value, kind, limit=ceilings[kind], index=index)


def _reject_leading_dash(value: str, kind: ArgumentKind, index: int, *, allow: bool) -> None:
    if value.startswith("-") and not allow and kind is not ArgumentKind.MESSAGE:
        raise ArgumentRejectedError(
            "starts with '-' (potential option injection)", index=index, kind=kind.value
        )


def _check_flag(
    value: str,
    sub_policy: SubcommandPolicy,
    extra_flags: frozenset[str],
    label: str,
    index: int,
    ceilings: Mapping[ArgumentKind, int],
    confirmed_destructive: bool,
) -> ArgumentKind | None:
    sanitize_argument(value, ArgumentKind.FLAG, limit=ceilings[ArgumentKind.FLAG], index=index)
    name, separator, inline_value = value.partition("=")
    if name in NEVER_ALLOWED_FLAGS:
        raise CommandNotAllowedError(f"{label}: flag {name} is never allowed")
    if not (sub_policy.allows_flag(name) or name in extra_flags):
        raise CommandNotAllowedError(
            f"{label}: undeclared flag {name} rejected (potential argument injection)"
        )
    if name in sub_policy.destructive_flags and not confirmed_destructive:
        raise CommandNotAllowedError(f"{label} {name} is destructive and requires confirmation")
    if separator:
        _checked(inline_value, ArgumentKind.GENERIC, ceilings, index)
        return None
    return sub_policy.value_flags.get(name)


def _sub(
    *flags: str,
    values: Mapping[str, ArgumentKind] | None = None,
    destructive_flags: Iterable[str] = (),
    destructive_positionals: Iterable[str] = (),
    positional: ArgumentKind | None = ArgumentKind.GENERIC,
    destructive: bool = False,
) -> SubcommandPolicy:
    return SubcommandPolicy(
        flags=frozenset(flags),
        value_flags=dict(values or {}),
        destructive_flags=frozenset(destructive_flags),
        destructive_positionals=frozenset(destructive_positionals),
        positional=positional,
        destructive=destructive,
    )


_G = ArgumentKind.GENERIC
_B = ArgumentKind.BRANCH
_M = ArgumentKind.MESSAGE

GIT_SUBCOMMANDS: Final[Mapping[str, SubcommandPolicy]] = MappingProxyType(
    {
        "status": _sub(
            "--porcelain", "-s", "--short", "-b", "--branch", "-z", "-u",
            "--untracked-files", "--ignored",
            positional=ArgumentKind.PATH,
        ),
        "add": _sub(
            "-A", "--all", "-u", "--update", "-N", "--intent-to-add", "-v", "--verbose",
            "--dry-run", "-n",
            destructive_flags=("-f", "--force"),
            positional=ArgumentKind.PATH,
        ),
        "commit": _sub(
            "--allow-empty", "-a", "--all", "-s", "--signoff", "--no-edit", "-q", "--quiet",
            values={"-m": _M, "--message": _M},
            destructive_flags=("--amend", "--no-verify", "-n"),
            positional=ArgumentKind.PATH,
        ),
        "diff": _sub(
            "--cached", "--staged", "--stat", "--shortstat", "--name-only", "--name-status",
            "--numstat", "--no-color", "--no-ext-diff", "--no-renames", "-M", "--find-renames",
            "--diff-filter", "--unified", "--check", "--quiet", "--exit-code",
            values={"-U": _G},
        ),
        "log": _sub(
            "--oneline", "--no-merges", "--reverse", "--format", "--pretty", "--since",
            "--until", "--author", "--max-count", "--stat", "--name-only", "--no-color",
            "--decorate", "--graph", "--first-parent",
            values={"-n": _G},
        ),
        "branch": _sub(
            "-a", "--all", "-r", "--remotes", "--list", "--show-current", "-v", "-vv",
            "--merged", "--no-merged", "--format", "-d", "--delete", "-m", "--move",
            "--set-upstream-to", "--unset-upstream", "--contains",
            destructive_flags=("-D", "-f", "--force", "-M"),
            positional=_B,
        ),
        "checkout": _sub(
            "--detach", "-q", "--quiet", "--ours", "--theirs", "--no-track", "--track",
            values={"-b": _B},
            destructive_flags=("-f", "--force", "-B"),
            positional=_B,
        ),
        "merge": _sub(
            "--no-ff", "--ff-only", "--squash", "--abort", "--continue", "--no-edit",
            "--no-commit", "-q", "--quiet",
            values={"-m": _M},
            positional=_B,
        ),
        "rebase": _sub(
            "--continue", "--abort", "--skip", "-q", "--quiet", "--autostash",
            values={"--onto": _B},
            positional=_B,
        ),
        "stash": _sub(
            "-u", "--include-untracked", "--keep-index", "-q", "--quiet",
            values={"-m": _M, "--message": _M},
            destructive_positionals=("drop", "clear"),
        ),
        "reset": _sub(
            "--soft", "--mixed", "--keep", "--merge", "-q", "--quiet",
            destructive_flags=("--hard",),
        ),
        "fetch": _sub("--all", "--prune", "--tags", "--no-tags", "-q", "--quiet", "--depth"),
        "pull": _sub("--rebase", "--no-rebase", "--ff-only", "--no-edit", "-q", "--quiet"),
        "push": _sub(
            "-u", "--set-upstream", "--tags", "--follow-tags", "-q", "--quiet", "--dry-run",
            "--porcelain",
            destructive_flags=(
                "-f", "--force", "--force-with-lease", "--force-if-includes", "--delete",
                "-d", "--no-verify", "--mirror", "--prune",
            ),
        ),
        "show": _sub("--stat", "--name-only", "--name-status", "--format", "--pretty",
                     "--no-patch", "-s", "--no-color"),
        "rev-parse": _sub("--abbrev-ref", "--short", "--verify", "--show-toplevel",
                          "--is-inside-work-tree", "--absolute-git-dir", "-q", "--quiet"),
        "rev-list": _sub("--count", "--max-count", "--left-right", "--no-merges", "--reverse"),
        "show-ref": _sub("--verify", "--quiet", "-q", "--heads", "--tags", "--hash"),
        "symbolic-ref": _sub("--short", "-q", "--quiet"),
        "remote": _sub(
            "-v", "--verbose",
            destructive_positionals=("add", "remove", "rm", "rename", "set-url", "prune"),
        ),
        "tag": _sub(
            "-l", "--list", "-a", "--annotate", "-n", "--sort", "--points-at",
            values={"-m": _M, "--message": _M},
            destructive_flags=("-d", "--delete", "-f", "--force"),
            positional=_B,
        ),
        "cherry-pick": _sub("--continue", "--abort", "--skip", "--no-commit", "-n", "-x"),
        "count-objects": _sub("-v", "--verbose", "-H", "--human-readable", positional=None),
        "clean": _sub("-n", "--dry-run", "-f", "--force", "-d", "-x", "-X", "-q",
                      positional=ArgumentKind.PATH, destructive=True),
        "gc": _sub("--aggressive", "--auto", "--prune", "-q", "--quiet",
                   positional=None, destructive=True),
        "prune": _sub("-n", "--dry-run", "-v", "--verbose", destructive=True),
        "reflog": _sub("--date", "-n", destructive=True),
        "config": _sub("--local", "--get", "--get-all", "--list", "-l", "--unset",
                       destructive=True),
        "init": _sub("-q", "--quiet", "--bare", values={"--initial-branch": _B, "-b": _B},
                     positional=ArgumentKind.PATH, destructive=True),
        "filter-branch": _sub("--force", "-f", "--prune-empty", destructive=True),
        "update-ref": _sub("-d", "--no-deref", "-m", destructive=True),
    }
)

GIT_POLICY: Final[BinaryPolicy] = BinaryPolicy(
    name="git",
    subcommands=GIT_SUBCOMMANDS,
    missing_message="git is not installed or not on PATH",
)


def backend_policy(command: str) -> BinaryPolicy:
    """Allow-list for the AI backend CLI: no subcommand, prompt/model/format only."""

    return BinaryPolicy(
        name=command,
        direct=_sub(
            "--version",
            values={
                "-p": ArgumentKind.PROMPT,
                "--model": _G,
                "--output-format": _G,
            },
            positional=None,
        ),
        missing_message=f"{command} CLI not found on PATH",
    )


__all__ = [
    "ARGUMENT_LENGTH_LIMITS",
    "Argument",
    "ArgumentKind",
    "BinaryPolicy",
    "ClassifiedArgument",
    "DEFAULT_PROMPT_ARGUMENT_LIMIT",
    "END_OF_OPTIONS",
    "GIT_POLICY",
    "GIT_SUBCOMMANDS",
    "NEVER_ALLOWED_FLAGS",
    "SubcommandPolicy",
    "ValidatedInvocation",
    "backend_policy",
    "ref_format_violation",
    "sanitize_argument",
    "validate_invocation",
]
