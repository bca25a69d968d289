from __future__ import annotations

import asyncio

import pytest

from polycode_mcp.git.backend import GitBackend, build_commit_prompt
from polycode_mcp.git.runner import FakeGitRunner
from polycode_mcp.host import ExecutionHostError, HostUnavailableError
from polycode_mcp.locations import Location, WslConfig

REPO = "/work/repo"


def git_args(invocation: tuple[str, ...]) -> tuple[str, ...]:
    """Strip the executable and ``-C <path>`` prefix from a recorded argv."""

    index = invocation.index("-C")
    return invocation[index + 2:]


def test_status_combines_porcelain_counts_and_numstat() -> None:
    runner = FakeGitRunner()
    runner.queue("M  app.py\n?? notes.md\n")
    runner.queue("feature\n")
    runner.queue("1\t2\n")
    runner.queue("5\t1\tapp.py\n")
    backend = GitBackend(runner)

    status = asyncio.run(backend.git_status(REPO))

    assert status.branch == "feature"
    assert (status.ahead, status.behind) == (2, 1)
    assert (status.additions, status.deletions) == (5, 1)
    assert [(c.path, c.staged) for c in status.files] == [("app.py", True), ("notes.md", False)]
    assert git_args(runner.invocations[2]) == ("rev-list", "--left-right", "--count", "@{u}...HEAD")


def test_status_is_none_outside_a_repository() -> None:
    runner = FakeGitRunner()
    runner.queue(returncode=128, stderr="fatal: not a git repository")

    assert asyncio.run(GitBackend(runner).git_status(REPO)) is None
    assert len(runner.invocations) == 1


def test_missing_upstream_reads_as_zero_counts() -> None:
    runner = FakeGitRunner()
    runner.queue("")
    runner.queue("main")
    runner.queue(returncode=128, stderr="fatal: no upstream configured")
    runner.queue("")

    status = asyncio.run(GitBackend(runner).git_status(REPO))

    assert (status.branch, status.ahead, status.behind, status.files) == ("main", 0, 0, ())


def test_failed_command_becomes_host_error() -> None:
    runner = FakeGitRunner()
    runner.queue(returncode=1, stderr="nothing added to commit")

    with pytest.raises(ExecutionHostError):
        asyncio.run(GitBackend(runner).git_commit(REPO, "feat: x"))


def test_checkout_remote_branch_falls_back_to_tracking_branch() -> None:
    runner = FakeGitRunner()
    runner.queue(returncode=1, stderr="error: pathspec 'release' did not match")
    runner.queue("")

    asyncio.run(GitBackend(runner).git_checkout(REPO, "origin/release"))

    assert [git_args(argv) for argv in runner.invocations] == [
        ("checkout", "release"),
        ("checkout", "-b", "release", "--track", "origin/release"),
    ]


def test_create_branch_pull_first_ignores_fetch_failure() -> None:
    runner = FakeGitRunner()
    runner.queue(returncode=128, stderr="fatal: unable to access remote")
    runner.queue("")

    asyncio.run(GitBackend(runner).git_create_branch(REPO, "topic", "main", True))

    assert [git_args(argv) for argv in runner.invocations] == [
        ("fetch", "origin", "main"),
        ("checkout", "-b", "topic", "origin/main"),
    ]


def test_merge_conflicts_are_a_result() -> None:
    runner = FakeGitRunner()
    runner.queue(
        "CONFLICT (content): Merge conflict in a.ts\nCONFLICT (content): Merge conflict in b.ts\n",
        returncode=1,
    )

    result = asyncio.run(GitBackend(runner).git_merge(REPO, "feature"))

    assert result.conflicts == ("a.ts", "b.ts")


def test_merge_failure_without_conflicts_raises() -> None:
    runner = FakeGitRunner()
    runner.queue(returncode=1, stderr="merge: nope - not something we can merge")

    with pytest.raises(ExecutionHostError):
        asyncio.run(GitBackend(runner).git_merge(REPO, "nope"))


def test_generate_commit_message_requires_generator() -> None:
    with pytest.raises(HostUnavailableError):
        asyncio.run(GitBackend(FakeGitRunner()).git_generate_commit_message(REPO))


def test_generate_commit_message_uses_unstaged_diff_when_nothing_staged() -> None:
    prompts: list[str] = []

    async def generator(prompt: str) -> str:
        prompts.append(prompt)
        return "  feat: add parser\n"

    runner = FakeGitRunner()
    runner.queue("")
    runner.queue("diff --git a/x b/x\n" + "+" * 500)
    backend = GitBackend(runner, diff_limit=256, message_generator=generator)

    message = asyncio.run(backend.git_generate_commit_message(REPO))

    assert message == "feat: add parser"
    assert prompts[0].endswith("... (truncated)")
    assert git_args(runner.invocations[1]) == ("diff",)


def test_build_commit_prompt_keeps_short_diffs_intact() -> None:
    prompt = build_commit_prompt("+one line", 4000)

    assert prompt.endswith("\n\n+one line")


def test_configured_location_is_used_for_matching_path() -> None:
    runner = FakeGitRunner()
    location = Location(id="wsl", connection_type="wsl", path=REPO, wsl=WslConfig(distro="Debian"))

    asyncio.run(GitBackend(runner, locations=[location]).git_push(REPO))

    assert runner.invocations[0][:4] == ("wsl", "-d", "Debian", "--")
