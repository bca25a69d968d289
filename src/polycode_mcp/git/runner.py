"""Async runner for the git CLI on local, SSH and WSL locations."""

from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from ..locations.models import Location
from .utils import sanitize_environment

logger = logging.getLogger(__name__)


class GitRunnerError(RuntimeError):
    """Base class for git runner errors."""


class GitNotFoundError(GitRunnerError):
    """Raised when the git executable cannot be located."""


@dataclass(slots=True)
class GitExecutionResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class GitCommandError(GitRunnerError):
    """Raised when git exits with a non-zero status."""

    def __init__(self, result: GitExecutionResult) -> None:
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.returncode}"
        super().__init__(f"git {' '.join(result.args[-3:])} failed: {detail}")
        self.result = result


class GitRunner:
    """Execute git commands asynchronously.

    Local locations use the resolved executable; SSH and WSL locations run
    ``git`` from the remote PATH.
    """

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> GitExecutionResult:
        return await self._invoke(str(self._executable_path), "--version")

    async def run(self, location: Location, *args: str, check: bool = True) -> GitExecutionResult:
        executable = str(self._executable_path) if location.is_local else "git"
        result = await self._invoke(*location.git_command(executable, *args))
        if check and not result.ok:
            logger.debug(
                "git command failed",
                extra={"location_id": location.id, "returncode": result.returncode},
            )
            raise GitCommandError(result)
        return result

    async def _invoke(self, *cmd: str) -> GitExecutionResult:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeGitRunner(GitRunner):
    """Test double that replays canned git responses."""

    def __init__(self, responses: Iterable[GitExecutionResult] | None = None) -> None:  # type: ignore[override]
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-git")

    async def _invoke(self, *args: str) -> GitExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        if self._responses:
            return self._responses.pop(0)
        return GitExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    def queue(self, stdout: str = "", *, returncode: int = 0, stderr: str = "") -> None:
        self._responses.append(
            GitExecutionResult(args=(), returncode=returncode, stdout=stdout, stderr=stderr)
        )

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations
