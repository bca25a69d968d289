from __future__ import annotations

import asyncio

import pytest

from polycode_mcp.git import BranchWorkflowError, GitBranches, GitFileChange, GitStatus, GitWorkspaceController
from polycode_mcp.git.controller import DIRTY_WORKTREE_WARNING
from polycode_mcp.host import ExecutionHostError
from polycode_mcp.host.fake import FakeExecutionHost

REPO = "/work/repo"


def make_controller(*files: GitFileChange, branch: str = "main") -> tuple[FakeExecutionHost, GitWorkspaceController]:
    host = FakeExecutionHost()
    host.git_statuses[REPO] = GitStatus(branch=branch, files=tuple(files))
    host.branch_sets[REPO] = GitBranches(
        current=branch,
        local=("main", "feature"),
        remote=("origin/main", "origin/feature", "origin/release"),
    )
    return host, GitWorkspaceController(host)


def test_stage_refetches_snapshot_from_host() -> None:
    host, controller = make_controller(GitFileChange(path="a.py", status="M"))

    asyncio.run(controller.stage(REPO, "a.py"))

    status = controller.status(REPO)
    assert [change.staged for change in status.files] == [True]
    assert [verb for verb, _ in host.invocations] == ["git_stage", "git_status"]


def test_failed_mutation_still_refetches() -> None:
    host, controller = make_controller(GitFileChange(path="a.py", status="M"))
    host.fail("git_stage_all")

    with pytest.raises(ExecutionHostError):
        asyncio.run(controller.stage_all(REPO))

    assert host.calls("git_status") == [(REPO,)]
    assert controller.status(REPO) is not None


def test_fetch_coalesces_overlapping_requests() -> None:
    host, controller = make_controller()

    async def scenario() -> None:
        first = asyncio.create_task(controller.fetch(REPO))
        await asyncio.sleep(0)
        assert controller.is_loading(REPO)
        await controller.fetch(REPO)
        await first

    asyncio.run(scenario())

    assert len(host.calls("git_status")) == 2
    assert not controller.is_loading(REPO)


def test_commit_clears_draft_only_on_success() -> None:
    host, controller = make_controller(GitFileChange(path="a.py", status="M"))
    controller.set_draft(REPO, "feat: add a")

    with pytest.raises(ExecutionHostError):
        asyncio.run(controller.commit(REPO))
    assert controller.draft(REPO) == "feat: add a"

    asyncio.run(controller.stage(REPO, "a.py"))
    asyncio.run(controller.commit(REPO))

    assert controller.draft(REPO) == ""
    assert host.calls("git_commit")[-1] == (REPO, "feat: add a")
    assert controller.status(REPO).ahead == 1
    assert controller.status(REPO).files == ()


def test_commit_that_lands_clears_draft_even_if_refetch_fails() -> None:
    host, controller = make_controller(GitFileChange(path="a.py", status="M", staged=True))
    controller.set_draft(REPO, "feat: x")
    host.fail("git_status")

    asyncio.run(controller.commit(REPO))

    assert host.calls("git_commit") == [(REPO, "feat: x")]
    assert controller.draft(REPO) == ""
    assert not controller.is_loading(REPO)


def test_failed_request_error_survives_failed_refetch() -> None:
    host, controller = make_controller(GitFileChange(path="a.py", status="M"))
    host.fail("git_stage")
    host.fail("git_status")

    with pytest.raises(ExecutionHostError, match="git_stage failed"):
        asyncio.run(controller.stage(REPO, "a.py"))
    assert host.calls("git_status") == [(REPO,)]


def test_commit_requires_a_message() -> None:
    host, controller = make_controller()

    with pytest.raises(ValueError):
        asyncio.run(controller.commit(REPO, "   "))
    assert host.invocations == []


def test_generate_commit_message_is_exclusive_and_fills_draft() -> None:
    host, controller = make_controller()
    host.generated_message = "fix: handle empty input"

    async def scenario() -> tuple[str | None, str | None]:
        first = asyncio.create_task(controller.generate_commit_message(REPO))
        await asyncio.sleep(0)
        second = await controller.generate_commit_message(REPO)
        return await first, second

    first, second = asyncio.run(scenario())

    assert first == "fix: handle empty input"
    assert second is None
    assert len(host.calls("git_generate_commit_message")) == 1
    assert controller.draft(REPO) == "fix: handle empty input"
    assert not controller.is_generating(REPO)


def test_push_and_pull_are_exclusive_per_path() -> None:
    host, controller = make_controller()
    host.git_statuses[REPO] = GitStatus(branch="main", ahead=2, behind=1)

    async def scenario() -> list[bool]:
        push = asyncio.create_task(controller.push(REPO))
        await asyncio.sleep(0)
        duplicate = await controller.push(REPO)
        pulled = await controller.pull(REPO)
        return [await push, duplicate, pulled]

    results = asyncio.run(scenario())

    assert results == [True, False, True]
    status = controller.status(REPO)
    assert (status.ahead, status.behind) == (0, 0)


def test_merge_conflicts_are_reported_and_snapshot_refetched() -> None:
    host, controller = make_controller()
    host.merge_conflicts["feature"] = ["a.ts", "b.ts"]

    result = asyncio.run(controller.merge_branch(REPO, "feature"))

    assert result.has_conflicts
    assert list(result.conflicts) == ["a.ts", "b.ts"]
    unstaged = [(c.path, c.status) for c in controller.status(REPO).unstaged]
    assert unstaged == [("a.ts", "M"), ("b.ts", "M")]


def test_merge_into_itself_is_rejected() -> None:
    host, controller = make_controller()
    asyncio.run(controller.fetch_branches(REPO))

    with pytest.raises(BranchWorkflowError):
        asyncio.run(controller.merge_branch(REPO, "origin/main"))
    assert host.calls("git_merge") == []


def test_branch_choices_exclude_current_branch() -> None:
    host, controller = make_controller()
    asyncio.run(controller.fetch_branches(REPO))

    assert controller.branch_choices(REPO) == ["feature", "origin/feature", "origin/release"]


def test_switch_branch_warns_on_dirty_tree_and_merges() -> None:
    host, controller = make_controller(GitFileChange(path="notes.md", status="?"))

    async def scenario():
        await controller.fetch(REPO)
        return await controller.switch_branch(REPO, "origin/release", merge_from="main")

    result = asyncio.run(scenario())

    assert result.branch == "release"
    assert result.warnings == (DIRTY_WORKTREE_WARNING,)
    assert result.merge is not None and not result.merge.has_conflicts
    assert host.calls("git_checkout") == [(REPO, "origin/release")]
    assert controller.status(REPO).branch == "release"


def test_switch_branch_reads_fresh_status_before_warning() -> None:
    host, controller = make_controller(GitFileChange(path="a.py", status="M"))

    result = asyncio.run(controller.switch_branch(REPO, "feature"))

    assert result.warnings == (DIRTY_WORKTREE_WARNING,)
    assert result.branch == "feature"
    assert [verb for verb, _ in host.invocations][:3] == ["git_branches", "git_status", "git_checkout"]


def test_switch_to_current_branch_is_rejected() -> None:
    host, controller = make_controller()

    with pytest.raises(BranchWorkflowError):
        asyncio.run(controller.switch_branch(REPO, "main"))
    assert host.calls("git_checkout") == []


def test_create_branch_pulls_base_first_when_asked() -> None:
    host, controller = make_controller()

    branches = asyncio.run(controller.create_branch(REPO, "topic", "main", pull_base_first=True))

    assert branches.current == "topic"
    assert host.calls("git_create_branch") == [(REPO, "topic", "main", True)]
    assert controller.status(REPO).branch == "topic"


def test_create_existing_branch_fails_but_refetches() -> None:
    host, controller = make_controller()

    with pytest.raises(ExecutionHostError):
        asyncio.run(controller.create_branch(REPO, "feature", "main"))
    assert host.calls("git_status") == [(REPO,)]
