"""Per-workspace git state: snapshots, staging, commits and branch workflows."""

from __future__ import annotations

import logging
from typing import Awaitable

from ..host.protocol import GitHost
from .models import BranchSwitchResult, GitBranches, GitStatus, MergeResult

logger = logging.getLogger(__name__)

DIRTY_WORKTREE_WARNING = "Uncommitted changes will be carried over to the new branch"


class BranchWorkflowError(ValueError):
    """Raised when a branch switch, creation or merge request is not allowed."""


class GitWorkspaceController:
    """Keeps one status snapshot per workspace path.

    Snapshots are never patched locally. Every mutation is sent to the host
    and followed by a refetch, whether or not the mutation succeeded.
    """

    def __init__(self, host: GitHost, *, remote_name: str = "origin") -> None:
        self._host = host
        self._remote = remote_name
        self._status: dict[str, GitStatus] = {}
        self._branches: dict[str, GitBranches] = {}
        self._drafts: dict[str, str] = {}
        self._loading: set[str] = set()
        self._stale: set[str] = set()
        self._generating: set[str] = set()
        self._pushing: set[str] = set()
        self._pulling: set[str] = set()

    # selectors

    def status(self, path: str) -> GitStatus | None:
        return self._status.get(path)

    def branches(self, path: str) -> GitBranches | None:
        return self._branches.get(path)

    def draft(self, path: str) -> str:
        return self._drafts.get(path, "")

    def is_loading(self, path: str) -> bool:
        return path in self._loading

    def is_generating(self, path: str) -> bool:
        return path in self._generating

    def is_pushing(self, path: str) -> bool:
        return path in self._pushing

    def is_pulling(self, path: str) -> bool:
        return path in self._pulling

    def set_draft(self, path: str, message: str) -> None:
        self._drafts[path] = message

    # snapshot

    async def fetch(self, path: str) -> GitStatus | None:
        """Replace the snapshot for ``path``.

        A call made while a fetch for the same path is in flight marks the
        snapshot stale and returns; the in-flight fetch then runs once more.
        """

        if path in self._loading:
            self._stale.add(path)
            return self._status.get(path)

        self._loading.add(path)
        try:
            while True:
                self._stale.discard(path)
                try:
                    status = await self._host.git_status(path)
                except Exception:
                    logger.exception("git status request failed", extra={"path": path})
                    raise
                if status is None:
                    self._status.pop(path, None)
                else:
                    self._status[path] = status
                if path not in self._stale:
                    return status
        finally:
            self._loading.discard(path)
            self._stale.discard(path)

    async def _mutate(self, verb: str, path: str, request: Awaitable[object]):
        try:
            return await self._call(verb, path, request)
        finally:
            await self._refresh(path)

    async def _refresh(self, path: str) -> None:
        """Refetch the snapshot; a failure is logged, never raised."""

        try:
            await self.fetch(path)
        except Exception:
            logger.warning("Snapshot left stale after git request", extra={"path": path})

    async def stage(self, path: str, file_path: str) -> None:
        await self._mutate("stage", path, self._host.git_stage(path, file_path))

    async def unstage(self, path: str, file_path: str) -> None:
        await self._mutate("unstage", path, self._host.git_unstage(path, file_path))

    async def stage_all(self, path: str) -> None:
        await self._mutate("stage_all", path, self._host.git_stage_all(path))

    async def unstage_all(self, path: str) -> None:
        await self._mutate("unstage_all", path, self._host.git_unstage_all(path))

    async def stage_files(self, path: str, file_paths: list[str]) -> None:
        await self._mutate("stage_files", path, self._host.git_stage_files(path, list(file_paths)))

    async def commit(self, path: str, message: str | None = None) -> None:
        """Commit staged changes with ``message`` or the current draft.

        The draft is cleared as soon as the host accepts the commit.
        """

        text = (message if message is not None else self.draft(path)).strip()
        if not text:
            raise ValueError("Commit message must not be empty")
        try:
            await self._call("commit", path, self._host.git_commit(path, text))
            self._drafts.pop(path, None)
        finally:
            await self._refresh(path)
        logger.info("Committed workspace changes", extra={"path": path})

    async def generate_commit_message(self, path: str) -> str | None:
        """Write a generated message into the draft; ``None`` if one is already pending."""

        if path in self._generating:
            return None
        self._generating.add(path)
        try:
            message = await self._host.git_generate_commit_message(path)
        except Exception:
            logger.exception("Commit message generation failed", extra={"path": path})
            raise
        finally:
            self._generating.discard(path)
        if message:
            self._drafts[path] = message
        return message

    async def push(self, path: str) -> bool:
        return await self._exclusive(self._pushing, "push", path, self._host.git_push)

    async def pull(self, path: str) -> bool:
        return await self._exclusive(self._pulling, "pull", path, self._host.git_pull)

    async def _exclusive(self, flags: set[str], verb: str, path: str, request) -> bool:
        if path in flags:
            return False
        flags.add(path)
        try:
            await self._mutate(verb, path, request(path))
        finally:
            flags.discard(path)
        return True

    # branches

    async def fetch_branches(self, path: str) -> GitBranches:
        try:
            branches = await self._host.git_branches(path)
        except Exception:
            logger.exception("git branches request failed", extra={"path": path})
            raise
        self._branches[path] = branches
        return branches

    async def _refresh_branches(self, path: str) -> None:
        try:
            await self.fetch_branches(path)
        except Exception:
            logger.warning("Branch list left stale after git request", extra={"path": path})

    def _is_current(self, branches: GitBranches, branch: str) -> bool:
        return branch in (branches.current, f"{self._remote}/{branches.current}")

    def branch_choices(self, path: str) -> list[str]:
        branches = self._branches.get(path)
        if branches is None:
            return []
        names = [*branches.local, *branches.remote]
        return [name for name in names if not self._is_current(branches, name)]

    async def switch_branch(
        self,
        path: str,
        branch: str,
        merge_from: str | None = None,
    ) -> BranchSwitchResult:
        branches = self._branches.get(path) or await self.fetch_branches(path)
        if self._is_current(branches, branch):
            raise BranchWorkflowError(f"'{branch}' is already checked out")

        warnings: list[str] = []
        snapshot = await self.fetch(path)
        if snapshot is not None and snapshot.is_dirty:
            warnings.append(DIRTY_WORKTREE_WARNING)

        merge: MergeResult | None = None
        try:
            await self._call("checkout", path, self._host.git_checkout(path, branch))
            if merge_from:
                merge = await self._call("merge", path, self._host.git_merge(path, merge_from))
        finally:
            await self._refresh(path)
            await self._refresh_branches(path)

        current = self._branches.get(path, branches).current
        logger.info(
            "Switched branch",
            extra={"path": path, "branch": current, "conflicts": len(merge.conflicts) if merge else 0},
        )
        return BranchSwitchResult(branch=current, warnings=tuple(warnings), merge=merge)

    async def create_branch(
        self,
        path: str,
        name: str,
        base: str,
        pull_base_first: bool = False,
    ) -> GitBranches:
        name = name.strip()
        if not name:
            raise BranchWorkflowError("Branch name must not be empty")
        try:
            await self._call(
                "create_branch",
                path,
                self._host.git_create_branch(path, name, base, pull_base_first),
            )
        finally:
            await self._refresh(path)
        return await self.fetch_branches(path)

    async def merge_branch(self, path: str, source: str) -> MergeResult:
        """Merge ``source`` into the current branch.

        Conflicts come back in the result and show up in the refreshed
        snapshot as unstaged modifications.
        """

        branches = self._branches.get(path)
        if branches is not None and self._is_current(branches, source):
            raise BranchWorkflowError(f"Cannot merge '{source}' into itself")
        result = await self._mutate("merge", path, self._host.git_merge(path, source))
        if result.has_conflicts:
            logger.warning(
                "Merge produced conflicts",
                extra={"path": path, "source": source, "conflicts": list(result.conflicts)},
            )
        return result

    async def _call(self, verb: str, path: str, request):
        try:
            return await request
        except Exception:
            logger.exception("git request failed", extra={"verb": verb, "path": path})
            raise


__all__ = ["BranchWorkflowError", "DIRTY_WORKTREE_WARNING", "GitWorkspaceController"]
