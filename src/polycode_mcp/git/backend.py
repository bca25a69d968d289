"""Git host backed by the git CLI on local, SSH and WSL locations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from ..host.protocol import ExecutionHostError, HostUnavailableError
from ..locations.models import Location, local_location
from .models import GitBranches, GitStatus, MergeResult
from .porcelain import (
    parse_ahead_behind,
    parse_merge_conflicts,
    parse_numstat,
    parse_refs,
    parse_status,
)
from .runner import GitExecutionResult, GitRunner, GitRunnerError

logger = logging.getLogger(__name__)

MessageGenerator = Callable[[str], Awaitable[str]]

COMMIT_PROMPT = (
    "Generate a concise git commit message for the following diff. Follow conventional "
    'commit format (e.g., "feat:", "fix:", "refactor:", "docs:", "style:", "test:", '
    '"chore:"). Output ONLY the commit message, nothing else. No quotes, no explanation.'
)


def build_commit_prompt(diff: str, limit: int) -> str:
    if len(diff) > limit:
        diff = diff[:limit] + "\n... (truncated)"
    return f"{COMMIT_PROMPT}\n\n{diff}"


class GitBackend:
    """Implements the git half of the execution host by shelling out to git.

    Workspace paths are matched against the configured locations; a path with
    no matching location runs locally.
    """

    def __init__(
        self,
        runner: GitRunner,
        *,
        locations: Iterable[Location] = (),
        remote_name: str = "origin",
        diff_limit: int = 4000,
        message_generator: MessageGenerator | None = None,
    ) -> None:
        self._runner = runner
        self._locations = {location.path: location for location in locations}
        self._remote = remote_name
        self._diff_limit = diff_limit
        self._message_generator = message_generator

    def location_for(self, path: str) -> Location:
        return self._locations.get(path) or local_location(path)

    async def _git(self, path: str, *args: str, check: bool = True) -> GitExecutionResult:
        location = self.location_for(path)
        try:
            return await self._runner.run(location, *args, check=check)
        except GitRunnerError as exc:
            raise ExecutionHostError(str(exc)) from exc

    async def _output(self, path: str, *args: str) -> str | None:
        result = await self._git(path, *args, check=False)
        return result.stdout.strip() if result.ok else None

    async def git_status(self, path: str) -> GitStatus | None:
        porcelain = await self._git(path, "status", "--porcelain", check=False)
        if not porcelain.ok:
            logger.warning(
                "git status failed",
                extra={"path": path, "returncode": porcelain.returncode, "stderr": porcelain.stderr.strip()},
            )
            return None

        branch, counts, numstat = await asyncio.gather(
            self._output(path, "rev-parse", "--abbrev-ref", "HEAD"),
            self._output(path, "rev-list", "--left-right", "--count", "@{u}...HEAD"),
            self._output(path, "diff", "--numstat", "HEAD"),
        )
        ahead, behind = parse_ahead_behind(counts or "")
        additions, deletions = parse_numstat(numstat or "")
        return GitStatus(
            branch=branch or "HEAD",
            ahead=ahead,
            behind=behind,
            additions=additions,
            deletions=deletions,
            files=tuple(parse_status(porcelain.stdout)),
        )

    async def git_stage(self, path: str, file_path: str) -> None:
        await self._git(path, "add", "--", file_path)

    async def git_unstage(self, path: str, file_path: str) -> None:
        await self._git(path, "restore", "--staged", "--", file_path)

    async def git_stage_all(self, path: str) -> None:
        await self._git(path, "add", "-A")

    async def git_unstage_all(self, path: str) -> None:
        await self._git(path, "restore", "--staged", ".")

    async def git_stage_files(self, path: str, file_paths: list[str]) -> None:
        if not file_paths:
            return
        await self._git(path, "add", "--", *file_paths)

    async def git_commit(self, path: str, message: str) -> None:
        await self._git(path, "commit", "-m", message)

    async def git_push(self, path: str) -> None:
        await self._git(path, "push")

    async def git_pull(self, path: str) -> None:
        await self._git(path, "pull")

    async def git_generate_commit_message(self, path: str) -> str:
        if self._message_generator is None:
            raise HostUnavailableError("No commit message generator is configured")

        diff = await self._output(path, "diff", "--cached") or ""
        if not diff:
            diff = await self._output(path, "diff") or ""
        if not diff:
            return ""

        message = await self._message_generator(build_commit_prompt(diff, self._diff_limit))
        return message.strip()

    async def git_branches(self, path: str) -> GitBranches:
        current, local, remote = await asyncio.gather(
            self._output(path, "rev-parse", "--abbrev-ref", "HEAD"),
            self._output(path, "for-each-ref", "--format=%(refname:short)", "refs/heads/"),
            self._output(path, "for-each-ref", "--format=%(refname:short)", "refs/remotes/"),
        )
        return GitBranches(
            current=current or "HEAD",
            local=tuple(parse_refs(local or "")),
            remote=tuple(parse_refs(remote or "", remote=True)),
        )

    async def git_checkout(self, path: str, branch: str) -> None:
        prefix = f"{self._remote}/"
        if not branch.startswith(prefix):
            await self._git(path, "checkout", branch)
            return

        local_name = branch[len(prefix):]
        existing = await self._git(path, "checkout", local_name, check=False)
        if not existing.ok:
            await self._git(path, "checkout", "-b", local_name, "--track", branch)

    async def git_create_branch(self, path: str, name: str, base: str, pull_first: bool) -> None:
        if not pull_first:
            await self._git(path, "checkout", "-b", name, base)
            return

        prefix = f"{self._remote}/"
        base_name = base[len(prefix):] if base.startswith(prefix) else base
        fetched = await self._git(path, "fetch", self._remote, base_name, check=False)
        if not fetched.ok:
            logger.warning(
                "Fetching base branch failed; branching from the last known ref",
                extra={"path": path, "base": base, "stderr": fetched.stderr.strip()},
            )
        await self._git(path, "checkout", "-b", name, prefix + base_name)

    async def git_merge(self, path: str, source: str) -> MergeResult:
        result = await self._git(path, "merge", source, check=False)
        if result.ok:
            return MergeResult(source=source)

        conflicts = parse_merge_conflicts(result.output)
        if conflicts is None:
            detail = result.stderr.strip() or result.stdout.strip()
            raise ExecutionHostError(f"git merge {source} failed: {detail}")
        return MergeResult(source=source, conflicts=tuple(conflicts))


__all__ = ["COMMIT_PROMPT", "GitBackend", "MessageGenerator", "build_commit_prompt"]
