"""In-memory execution host used by tests and local experiments."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

from ..git.models import GitBranches, GitFileChange, GitStatus, MergeResult
from ..keys import instance_key
from ..logbuffer import LogLine
from ..models import CommandDefinition, Question, SendOptions, Thread
from .bus import PushBus
from .protocol import ExecutionHostError, command_channel, thread_channel


class FakeExecutionHost(PushBus):
    """Test double that answers every host request from in-memory state.

    Requests are recorded in ``invocations`` and yield to the event loop once,
    so interleavings behave like a real out-of-process host. Push events are
    never produced implicitly; tests drive them with ``push_thread`` and
    ``push_command``.
    """

    def __init__(self) -> None:
        super().__init__()
        self.threads: dict[str, Thread] = {}
        self.commands: dict[str, CommandDefinition] = {}
        self.command_statuses: dict[str, str] = {}
        self.command_logs: dict[str, list[LogLine]] = {}
        self.command_pids: dict[str, int] = {}
        self.thread_pids: dict[str, int] = {}
        self.questions: dict[str, list[Question]] = {}
        self.git_statuses: dict[str, GitStatus] = {}
        self.branch_sets: dict[str, GitBranches] = {}
        self.merge_conflicts: dict[str, list[str]] = {}
        self.generated_message = "chore: update files"
        self.failures: dict[str, Exception] = {}
        self._invocations: list[tuple[str, tuple[Any, ...]]] = []
        self._ids = itertools.count(1)

    @property
    def invocations(self) -> list[tuple[str, tuple[Any, ...]]]:
        return self._invocations

    def calls(self, verb: str) -> list[tuple[Any, ...]]:
        return [args for name, args in self._invocations if name == verb]

    def fail(self, verb: str, error: Exception | None = None) -> None:
        self.failures[verb] = error or ExecutionHostError(f"{verb} failed")

    def push_thread(self, event: str, thread_id: str, *payload: Any) -> int:
        return self.emit(thread_channel(event, thread_id), *payload)

    def push_command(self, event: str, definition_id: str, location_id: str, *payload: Any) -> int:
        return self.emit(command_channel(event, instance_key(definition_id, location_id)), *payload)

    async def _record(self, verb: str, *args: Any) -> None:
        self._invocations.append((verb, args))
        await asyncio.sleep(0)
        error = self.failures.get(verb)
        if error is not None:
            raise error

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _thread(self, thread_id: str) -> Thread:
        try:
            return self.threads[thread_id]
        except KeyError as exc:
            raise ExecutionHostError(f"Thread '{thread_id}' not found") from exc

    # threads

    async def list_threads(self, project_id: str) -> list[Thread]:
        await self._record("list_threads", project_id)
        return [t for t in self.threads.values() if t.project_id == project_id and not t.archived]

    async def list_archived_threads(self, project_id: str) -> list[Thread]:
        await self._record("list_archived_threads", project_id)
        return [t for t in self.threads.values() if t.project_id == project_id and t.archived]

    async def archived_thread_count(self, project_id: str) -> int:
        await self._record("archived_thread_count", project_id)
        return sum(1 for t in self.threads.values() if t.project_id == project_id and t.archived)

    async def create_thread(self, project_id: str, name: str, location_id: str) -> Thread:
        await self._record("create_thread", project_id, name, location_id)
        thread = Thread(
            id=self._next_id("thread"),
            project_id=project_id,
            location_id=location_id,
            name=name,
        )
        self.threads[thread.id] = thread
        return thread

    async def delete_thread(self, thread_id: str) -> None:
        await self._record("delete_thread", thread_id)
        self.threads.pop(thread_id, None)

    async def archive_thread(self, thread_id: str) -> str:
        await self._record("archive_thread", thread_id)
        thread = self._thread(thread_id)
        if not thread.has_messages:
            del self.threads[thread_id]
            return "deleted"
        self.threads[thread_id] = thread.model_copy(update={"archived": True})
        return "archived"

    async def unarchive_thread(self, thread_id: str) -> None:
        await self._record("unarchive_thread", thread_id)
        thread = self._thread(thread_id)
        self.threads[thread_id] = thread.model_copy(update={"archived": False})

    async def rename_thread(self, thread_id: str, name: str) -> None:
        await self._record("rename_thread", thread_id, name)
        self.threads[thread_id] = self._thread(thread_id).model_copy(update={"name": name})

    async def set_thread_model(self, thread_id: str, model: str) -> None:
        await self._record("set_thread_model", thread_id, model)
        self.threads[thread_id] = self._thread(thread_id).model_copy(update={"model": model})

    async def set_thread_provider_and_model(self, thread_id: str, provider: str, model: str) -> None:
        await self._record("set_thread_provider_and_model", thread_id, provider, model)
        self.threads[thread_id] = self._thread(thread_id).model_copy(
            update={"provider": provider, "model": model}
        )

    async def set_thread_wsl(self, thread_id: str, use_wsl: bool, wsl_distro: str | None) -> None:
        await self._record("set_thread_wsl", thread_id, use_wsl, wsl_distro)
        self.threads[thread_id] = self._thread(thread_id).model_copy(
            update={"use_wsl": use_wsl, "wsl_distro": wsl_distro}
        )

    async def start_thread(self, thread_id: str) -> None:
        await self._record("start_thread", thread_id)

    async def stop_thread(self, thread_id: str) -> None:
        await self._record("stop_thread", thread_id)

    async def send_message(self, thread_id: str, content: str, options: SendOptions) -> None:
        await self._record("send_message", thread_id, content, options)
        self.threads[thread_id] = self._thread(thread_id).model_copy(update={"has_messages": True})

    async def approve_plan(self, thread_id: str) -> None:
        await self._record("approve_plan", thread_id)

    async def reject_plan(self, thread_id: str) -> None:
        await self._record("reject_plan", thread_id)

    async def get_questions(self, thread_id: str) -> list[Question]:
        await self._record("get_questions", thread_id)
        return list(self.questions.get(thread_id, []))

    async def answer_question(
        self,
        thread_id: str,
        answers: dict[str, str],
        question_comments: dict[str, str],
        general_comment: str,
    ) -> None:
        await self._record("answer_question", thread_id, answers, question_comments, general_comment)
        self.questions.pop(thread_id, None)

    async def get_thread_pid(self, thread_id: str) -> int | None:
        await self._record("get_thread_pid", thread_id)
        return self.thread_pids.get(thread_id)

    # commands

    async def list_commands(self, project_id: str) -> list[CommandDefinition]:
        await self._record("list_commands", project_id)
        return [c for c in self.commands.values() if c.project_id == project_id]

    async def create_command(
        self,
        project_id: str,
        name: str,
        command: str,
        cwd: str | None,
        shell: str | None,
    ) -> CommandDefinition:
        await self._record("create_command", project_id, name, command, cwd, shell)
        definition = CommandDefinition(
            id=self._next_id("cmd"),
            project_id=project_id,
            name=name,
            command=command,
            cwd=cwd,
            shell=shell,
        )
        self.commands[definition.id] = definition
        return definition

    async def update_command(
        self,
        definition_id: str,
        name: str,
        command: str,
        cwd: str | None,
        shell: str | None,
    ) -> None:
        await self._record("update_command", definition_id, name, command, cwd, shell)
        definition = self.commands.get(definition_id)
        if definition is None:
            raise ExecutionHostError(f"Command '{definition_id}' not found")
        self.commands[definition_id] = definition.model_copy(
            update={"name": name, "command": command, "cwd": cwd, "shell": shell}
        )

    async def delete_command(self, definition_id: str) -> None:
        await self._record("delete_command", definition_id)
        self.commands.pop(definition_id, None)

    async def start_command(self, definition_id: str, location_id: str) -> None:
        await self._record("start_command", definition_id, location_id)

    async def stop_command(self, definition_id: str, location_id: str) -> None:
        await self._record("stop_command", definition_id, location_id)

    async def restart_command(self, definition_id: str, location_id: str) -> None:
        await self._record("restart_command", definition_id, location_id)

    async def get_command_status(self, definition_id: str, location_id: str) -> str:
        await self._record("get_command_status", definition_id, location_id)
        return self.command_statuses.get(instance_key(definition_id, location_id), "idle")

    async def get_command_logs(self, definition_id: str, location_id: str) -> list[LogLine]:
        await self._record("get_command_logs", definition_id, location_id)
        return list(self.command_logs.get(instance_key(definition_id, location_id), []))

    async def get_command_pid(self, definition_id: str, location_id: str) -> int | None:
        await self._record("get_command_pid", definition_id, location_id)
        return self.command_pids.get(instance_key(definition_id, location_id))

    # git

    def _git(self, path: str) -> GitStatus:
        return self.git_statuses.get(path) or GitStatus()

    def _set_files(self, path: str, files: list[GitFileChange], **changes: Any) -> None:
        self.git_statuses[path] = self._git(path).model_copy(update={"files": tuple(files), **changes})

    async def git_status(self, path: str) -> GitStatus | None:
        await self._record("git_status", path)
        return self.git_statuses.get(path)

    async def git_stage(self, path: str, file_path: str) -> None:
        await self._record("git_stage", path, file_path)
        files = [
            change.model_copy(update={"staged": True}) if change.path == file_path else change
            for change in self._git(path).files
        ]
        self._set_files(path, files)

    async def git_unstage(self, path: str, file_path: str) -> None:
        await self._record("git_unstage", path, file_path)
        files = [
            change.model_copy(update={"staged": False}) if change.path == file_path else change
            for change in self._git(path).files
        ]
        self._set_files(path, files)

    async def git_stage_all(self, path: str) -> None:
        await self._record("git_stage_all", path)
        self._set_files(path, [c.model_copy(update={"staged": True}) for c in self._git(path).files])

    async def git_unstage_all(self, path: str) -> None:
        await self._record("git_unstage_all", path)
        self._set_files(path, [c.model_copy(update={"staged": False}) for c in self._git(path).files])

    async def git_stage_files(self, path: str, file_paths: list[str]) -> None:
        await self._record("git_stage_files", path, list(file_paths))
        wanted = set(file_paths)
        files = [
            change.model_copy(update={"staged": True}) if change.path in wanted else change
            for change in self._git(path).files
        ]
        self._set_files(path, files)

    async def git_commit(self, path: str, message: str) -> None:
        await self._record("git_commit", path, message)
        status = self._git(path)
        if not status.staged:
            raise ExecutionHostError("nothing to commit")
        self._set_files(path, status.unstaged, ahead=status.ahead + 1)

    async def git_push(self, path: str) -> None:
        await self._record("git_push", path)
        self.git_statuses[path] = self._git(path).model_copy(update={"ahead": 0})

    async def git_pull(self, path: str) -> None:
        await self._record("git_pull", path)
        self.git_statuses[path] = self._git(path).model_copy(update={"behind": 0})

    async def git_generate_commit_message(self, path: str) -> str:
        await self._record("git_generate_commit_message", path)
        return self.generated_message

    async def git_branches(self, path: str) -> GitBranches:
        await self._record("git_branches", path)
        return self.branch_sets.get(path) or GitBranches(current=self._git(path).branch)

    async def git_checkout(self, path: str, branch: str) -> None:
        await self._record("git_checkout", path, branch)
        branches = self.branch_sets.get(path) or GitBranches()
        local_name = branch.split("/", 1)[1] if branch in branches.remote else branch
        local = branches.local if local_name in branches.local else (*branches.local, local_name)
        self.branch_sets[path] = branches.model_copy(update={"current": local_name, "local": local})
        self.git_statuses[path] = self._git(path).model_copy(update={"branch": local_name})

    async def git_create_branch(self, path: str, name: str, base: str, pull_first: bool) -> None:
        await self._record("git_create_branch", path, name, base, pull_first)
        branches = self.branch_sets.get(path) or GitBranches()
        if name in branches.local:
            raise ExecutionHostError(f"A branch named '{name}' already exists")
        self.branch_sets[path] = branches.model_copy(
            update={"current": name, "local": (*branches.local, name)}
        )
        self.git_statuses[path] = self._git(path).model_copy(update={"branch": name})

    async def git_merge(self, path: str, source: str) -> MergeResult:
        await self._record("git_merge", path, source)
        conflicts = list(self.merge_conflicts.get(source, []))
        if conflicts:
            files = [c for c in self._git(path).files if c.path not in conflicts]
            files.extend(GitFileChange(path=name, status="M", staged=False) for name in conflicts)
            self._set_files(path, files)
        return MergeResult(source=source, conflicts=tuple(conflicts))


__all__ = ["FakeExecutionHost"]
