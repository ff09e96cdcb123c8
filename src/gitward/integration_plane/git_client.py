"""Typed git helpers built only on :class:`SafeProcessInvoker`."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from gitward.config.settings import GitSettings
from gitward.errors import ArgumentRejectedError
from gitward.integration_plane.arguments import (
    END_OF_OPTIONS,
    GIT_POLICY,
    Argument,
    ref_format_violation,
)
from gitward.integration_plane.invoker import CommandSpec, ProcessResult, SafeProcessInvoker
from gitward.security.path_validator import PathValidator, SecurityPolicy, canonicalize_root
from gitward.utils.fs import PathLike


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """One ``git status --porcelain=v1 -z`` record."""

    index_status: str
    worktree_status: str
    path: str
    original_path: str | None = None

    @property
    def is_untracked(self) -> bool:
        return self.index_status == "?" and self.worktree_status == "?"

    @property
    def is_staged(self) -> bool:
        return self.index_status not in (" ", "?", "!")

    @property
    def is_conflicted(self) -> bool:
        pair = self.index_status + self.worktree_status
        return "U" in pair or pair in ("AA", "DD")


class GitClient:
    """Repository-scoped git operations; every call goes through the invoker."""

    def __init__(
        self,
        repo_root: PathLike,
        invoker: SafeProcessInvoker | None = None,
        *,
        settings: GitSettings | None = None,
        validator: PathValidator | None = None,
    ) -> None:
        self._repo_root = canonicalize_root(repo_root)
        if invoker is None:
            invoker = SafeProcessInvoker(
                (GIT_POLICY,),
                validator,
                SecurityPolicy.strict((self._repo_root,)),
                settings,
            )
        self._invoker = invoker

    @property
    def repo_root(self) -> str:
        return self._repo_root

    async def status_porcelain(self) -> tuple[StatusEntry, ...]:
        result = await self._git("status", "--porcelain=v1", "-z")
        return parse_porcelain_z(result.stdout)

    async def changed_files(self) -> tuple[str, ...]:
        """Paths with staged, unstaged or untracked changes, in status order."""

        entries = await self.status_porcelain()
        return tuple(dict.fromkeys(entry.path for entry in entries))

    async def add(self, paths: Sequence[str]) -> tuple[ProcessResult, ...]:
        """Stage ``paths`` in validated batches; nothing runs if any path is rejected."""

        spec = CommandSpec(
            binary=GIT_POLICY.name,
            subcommand="add",
            arguments=(END_OF_OPTIONS,),
            working_directory=self._repo_root,
        )
        return await self._invoker.run_batched(spec, [Argument.path(item) for item in paths])

    async def commit(self, message: str) -> str:
        """Commit the index with ``message`` and return the new HEAD sha."""

        await self._git("commit", "-m", Argument.message(message))
        return await self.rev_parse("HEAD")

    async def create_branch(
        self,
        name: str,
        *,
        checkout: bool = True,
        start_point: str | None = None,
    ) -> None:
        reason = ref_format_violation(name)
        if reason is not None:
            raise ArgumentRejectedError(reason, kind="branch")
        base = (Argument.branch(start_point),) if start_point else ()
        if checkout:
            await self._git("checkout", "-b", Argument.branch(name), *base)
        else:
            await self._git("branch", Argument.branch(name), *base)

    async def current_branch(self) -> str | None:
        """Current branch name, or ``None`` on a detached HEAD."""

        result = await self._git("branch", "--show-current")
        name = result.stdout.strip()
        return name or None

    async def rev_parse(self, ref: str) -> str:
        result = await self._git("rev-parse", "--verify", Argument.generic(ref))
        return result.stdout.strip()

    async def diff(self, *, staged: bool = False, paths: Sequence[str] = ()) -> str:
        args: list[str | Argument] = ["--no-color", "--no-ext-diff"]
        if staged:
            args.append("--cached")
        if paths:
            args.append(END_OF_OPTIONS)
            args.extend(Argument.path(item) for item in paths)
        result = await self._git("diff", *args)
        return result.stdout

    async def _git(self, subcommand: str, *args: str | Argument) -> ProcessResult:
        return await self._invoker.run(
            CommandSpec(
                binary=GIT_POLICY.name,
                subcommand=subcommand,
                arguments=args,
                working_directory=self._repo_root,
            )
        )


def parse_porcelain_z(output: str) -> tuple[StatusEntry, ...]:
    """Parse NUL-separated porcelain v1 output; renames carry their source path."""

    tokens = output.split("\x00")
    entries: list[StatusEntry] = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        if len(token) < 4:
            continue
        x, y, path = token[0], token[1], token[3:]
        original: str | None = None
        if x in ("R", "C") or y in ("R", "C"):
            if index < len(tokens):
                original = tokens[index]
                index += 1
        entries.append(StatusEntry(x, y, path, original))
    return tuple(entries)


__all__ = ["GitClient", "StatusEntry", "parse_porcelain_z"]
