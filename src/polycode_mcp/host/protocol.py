"""Request/response and push-event contracts of the execution host."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Protocol

if TYPE_CHECKING:
    from ..git.models import GitBranches, GitStatus, MergeResult
    from ..logbuffer import LogLine
    from ..models import CommandDefinition, Question, SendOptions, Thread

Unsubscribe = Callable[[], None]
PushCallback = Callable[..., None]

THREAD_EVENTS = ("status", "title", "complete", "usage", "pid")
COMMAND_EVENTS = ("status", "log", "complete")


class ExecutionHostError(RuntimeError):
    """Raised when a request to the execution host fails."""


class HostUnavailableError(ExecutionHostError):
    """Raised when no execution host is configured for a request."""


def thread_channel(event: str, thread_id: str) -> str:
    return f"thread:{event}:{thread_id}"


def command_channel(event: str, key: str) -> str:
    return f"command:{event}:{key}"


class PushChannel(Protocol):
    def subscribe(self, channel: str, callback: PushCallback) -> Unsubscribe:
        ...


class ThreadHost(PushChannel, Protocol):
    async def list_threads(self, project_id: str) -> list[Thread]:
        ...

    async def list_archived_threads(self, project_id: str) -> list[Thread]:
        ...

    async def archived_thread_count(self, project_id: str) -> int:
        ...

    async def create_thread(self, project_id: str, name: str, location_id: str) -> Thread:
        ...

    async def delete_thread(self, thread_id: str) -> None:
        ...

    async def archive_thread(self, thread_id: str) -> str:
        ...

    async def unarchive_thread(self, thread_id: str) -> None:
        ...

    async def rename_thread(self, thread_id: str, name: str) -> None:
        ...

    async def set_thread_model(self, thread_id: str, model: str) -> None:
        ...

    async def set_thread_provider_and_model(self, thread_id: str, provider: str, model: str) -> None:
        ...

    async def set_thread_wsl(self, thread_id: str, use_wsl: bool, wsl_distro: str | None) -> None:
        ...

    async def start_thread(self, thread_id: str) -> None:
        ...

    async def stop_thread(self, thread_id: str) -> None:
        ...

    async def send_message(self, thread_id: str, content: str, options: SendOptions) -> None:
        ...

    async def approve_plan(self, thread_id: str) -> None:
        ...

    async def reject_plan(self, thread_id: str) -> None:
        ...

    async def get_questions(self, thread_id: str) -> list[Question]:
        ...

    async def answer_question(
        self,
        thread_id: str,
        answers: dict[str, str],
        question_comments: dict[str, str],
        general_comment: str,
    ) -> None:
        ...

    async def get_thread_pid(self, thread_id: str) -> int | None:
        ...


class CommandHost(PushChannel, Protocol):
    async def list_commands(self, project_id: str) -> list[CommandDefinition]:
        ...

    async def create_command(
        self,
        project_id: str,
        name: str,
        command: str,
        cwd: str | None,
        shell: str | None,
    ) -> CommandDefinition:
        ...

    async def update_command(
        self,
        definition_id: str,
        name: str,
        command: str,
        cwd: str | None,
        shell: str | None,
    ) -> None:
        ...

    async def delete_command(self, definition_id: str) -> None:
        ...

    async def start_command(self, definition_id: str, location_id: str) -> None:
        ...

    async def stop_command(self, definition_id: str, location_id: str) -> None:
        ...

    async def restart_command(self, definition_id: str, location_id: str) -> None:
        ...

    async def get_command_status(self, definition_id: str, location_id: str) -> str:
        ...

    async def get_command_logs(self, definition_id: str, location_id: str) -> list[LogLine]:
        ...

    async def get_command_pid(self, definition_id: str, location_id: str) -> int | None:
        ...


class GitHost(Protocol):
    async def git_status(self, path: str) -> GitStatus | None:
        ...

    async def git_stage(self, path: str, file_path: str) -> None:
        ...

    async def git_unstage(self, path: str, file_path: str) -> None:
        ...

    async def git_stage_all(self, path: str) -> None:
        ...

    async def git_unstage_all(self, path: str) -> None:
        ...

    async def git_stage_files(self, path: str, file_paths: list[str]) -> None:
        ...

    async def git_commit(self, path: str, message: str) -> None:
        ...

    async def git_push(self, path: str) -> None:
        ...

    async def git_pull(self, path: str) -> None:
        ...

    async def git_generate_commit_message(self, path: str) -> str:
        ...

    async def git_branches(self, path: str) -> GitBranches:
        ...

    async def git_checkout(self, path: str, branch: str) -> None:
        ...

    async def git_create_branch(self, path: str, name: str, base: str, pull_first: bool) -> None:
        ...

    async def git_merge(self, path: str, source: str) -> MergeResult:
        ...


def describe_payload(payload: Any) -> str:
    """Short representation of a push payload for log records."""

    text = repr(payload)
    return text if len(text) <= 120 else text[:117] + "..."


__all__ = [
    "COMMAND_EVENTS",
    "CommandHost",
    "ExecutionHostError",
    "GitHost",
    "HostUnavailableError",
    "PushCallback",
    "PushChannel",
    "THREAD_EVENTS",
    "ThreadHost",
    "Unsubscribe",
    "command_channel",
    "describe_payload",
    "thread_channel",
]
