from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from polycode_mcp.git.runner import (
    FakeGitRunner,
    GitCommandError,
    GitExecutionResult,
    GitNotFoundError,
    GitRunner,
)
from polycode_mcp.git.utils import sanitize_environment
from polycode_mcp.locations import Location, SshConfig, WslConfig, local_location


def _script(tmp_path: Path, body: str) -> Path:
    script = tmp_path / "git"
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return script


def test_git_runner_executes_script(tmp_path: Path) -> None:
    runner = GitRunner(_script(tmp_path, "echo 'git version 2.99.0'"))

    result = asyncio.run(runner.version())

    assert result.ok
    assert "git version 2.99.0" in result.stdout


def test_run_targets_location_path(tmp_path: Path) -> None:
    runner = GitRunner(_script(tmp_path, 'echo "$@"'))

    result = asyncio.run(runner.run(local_location("/work/repo"), "status", "--porcelain"))

    assert result.stdout.strip() == "-C /work/repo status --porcelain"


def test_non_zero_exit_raises_command_error(tmp_path: Path) -> None:
    runner = GitRunner(_script(tmp_path, "echo 'fatal: not a git repository' >&2; exit 128"))

    with pytest.raises(GitCommandError) as excinfo:
        asyncio.run(runner.run(local_location("/tmp"), "status"))

    assert excinfo.value.result.returncode == 128
    assert "not a git repository" in str(excinfo.value)

    unchecked = asyncio.run(runner.run(local_location("/tmp"), "status", check=False))
    assert not unchecked.ok


def test_git_not_found(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitRunner(tmp_path / "missing")


def test_remote_locations_wrap_argv() -> None:
    runner = FakeGitRunner()
    ssh = Location(
        id="build-box",
        connection_type="ssh",
        path="/srv/app",
        ssh=SshConfig(host="build.example.com", user="dev", port=2222, key_path="~/.ssh/id_ed25519"),
    )
    wsl = Location(id="wsl", connection_type="wsl", path="/home/dev/app", wsl=WslConfig(distro="Ubuntu"))

    asyncio.run(runner.run(ssh, "commit", "-m", "it's done"))
    asyncio.run(runner.run(wsl, "status"))

    ssh_argv, wsl_argv = runner.invocations
    assert ssh_argv[:2] == ("ssh", "-T")
    assert "ConnectTimeout=10" in ssh_argv
    assert ssh_argv[ssh_argv.index("-p") + 1] == "2222"
    assert ssh_argv[ssh_argv.index("-i") + 1] == "~/.ssh/id_ed25519"
    assert ssh_argv[-2] == "dev@build.example.com"
    assert ssh_argv[-1].startswith("bash -lc ")
    assert "git -C /srv/app commit -m" in ssh_argv[-1]
    assert wsl_argv == ("wsl", "-d", "Ubuntu", "--", "git", "-C", "/home/dev/app", "status")


def test_fake_git_runner_replays_responses() -> None:
    fake = FakeGitRunner([GitExecutionResult(args=("status",), returncode=0, stdout="ok", stderr="")])

    result = asyncio.run(fake._invoke("status"))

    assert result.stdout == "ok"
    assert fake.invocations == [("status",)]


def test_sanitize_environment_disables_prompts(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere/.git")
    env = sanitize_environment({"EXTRA": "1"})

    assert "GIT_DIR" not in env
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["EXTRA"] == "1"
