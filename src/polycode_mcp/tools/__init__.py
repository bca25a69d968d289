"""Tool registration for Polycode MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from fastmcp import Context, FastMCP

from ..commands import CommandInstanceController
from ..config import PolycodeSettings
from ..git import GitWorkspaceController
from ..locations import LocationLoader
from ..logbuffer import LogLine
from ..models import SendOptions, Thread
from ..threads import ThreadSessionController


@dataclass(slots=True)
class ToolHandles:
    list_threads: Any
    create_thread: Any
    send_message: Any
    queue_message: Any
    stop_thread: Any
    archive_thread: Any
    unarchive_thread: Any
    resolve_plan: Any
    answer_question: Any
    list_commands: Any
    command_status: Any
    control_command: Any
    command_logs: Any
    pin_command: Any
    delete_command: Any
    git_status: Any
    git_stage: Any
    git_commit: Any
    git_generate_commit_message: Any
    git_sync: Any
    git_branches: Any
    git_switch_branch: Any
    git_create_branch: Any
    git_merge: Any
    list_locations: Any


def _thread_summary(thread: Thread, controller: ThreadSessionController) -> dict[str, Any]:
    usage = controller.usage(thread.id)
    queued = controller.queued_message(thread.id)
    return {
        "id": thread.id,
        "name": thread.name,
        "location_id": thread.location_id,
        "provider": thread.provider,
        "model": thread.model,
        "status": controller.status(thread.id),
        "run_started_at": controller.run_started_at(thread.id),
        "usage": None
        if usage is None
        else {
            "input_tokens": usage.input_tokens,
            "output_tokens": usage.output_tokens,
            "context_window": usage.context_window,
        },
        "queued_message": queued.content if queued else None,
        "pid": controller.pid(thread.id),
    }


def _log_payload(line: LogLine) -> dict[str, Any]:
    return {"stream": line.stream, "text": line.text, "timestamp": line.timestamp}


def register_tools(
    server: FastMCP,
    *,
    settings: PolycodeSettings,
    threads: ThreadSessionController | None,
    commands: CommandInstanceController | None,
    git: GitWorkspaceController | None,
    locations: LocationLoader,
) -> ToolHandles:
    """Register Polycode's MCP tools on the server."""

    def _require_threads() -> ThreadSessionController:
        if threads is None:
            raise RuntimeError("Thread host is unavailable; configure an execution host first")
        return threads

    def _require_commands() -> CommandInstanceController:
        if commands is None:
            raise RuntimeError("Command host is unavailable; configure an execution host first")
        return commands

    def _require_git() -> GitWorkspaceController:
        if git is None:
            raise RuntimeError("git is unavailable; install git or set GIT_PATH")
        return git

    # threads

    async def _list_threads(
        project_id: str,
        include_archived: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Refresh and list the threads of a project."""

        controller = _require_threads()
        await controller.fetch(project_id)
        payload: dict[str, Any] = {
            "threads": [_thread_summary(t, controller) for t in controller.threads(project_id)],
            "archived_count": controller.archived_count(project_id),
        }
        if include_archived:
            await controller.fetch_archived(project_id)
            payload["archived"] = [
                {"id": t.id, "name": t.name} for t in controller.archived_threads(project_id)
            ]
        _emit_log(
            context,
            "debug",
            "Listed threads",
            extra={"project_id": project_id, "count": len(payload["threads"])},
        )
        return payload

    async def _create_thread(
        project_id: str,
        location_id: str,
        name: str = "New thread",
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_threads()
        thread = await controller.create(project_id, name, location_id)
        _emit_log(context, "info", "Created thread", extra={"thread_id": thread.id})
        return _thread_summary(thread, controller)

    async def _send_message(
        thread_id: str,
        content: str,
        plan_mode: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Send a message; the thread reads as running until the host reports otherwise."""

        controller = _require_threads()
        await controller.send(thread_id, content, SendOptions(plan_mode=plan_mode))
        _emit_log(context, "info", "Sent message", extra={"thread_id": thread_id})
        return {"thread_id": thread_id, "status": controller.status(thread_id)}

    async def _queue_message(
        thread_id: str,
        content: str | None = None,
        plan_mode: bool = False,
        send_now: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_threads()
        if content is not None:
            controller.queue_message(thread_id, content, plan_mode)
        sent = await controller.send_queued(thread_id) if send_now else False
        queued = controller.queued_message(thread_id)
        return {
            "thread_id": thread_id,
            "sent": sent,
            "queued_message": queued.content if queued else None,
        }

    async def _stop_thread(thread_id: str, context: Context | None = None) -> dict[str, Any]:
        controller = _require_threads()
        await controller.stop(thread_id)
        _emit_log(context, "info", "Stop requested", extra={"thread_id": thread_id})
        return {"thread_id": thread_id, "status": controller.status(thread_id)}

    async def _archive_thread(
        thread_id: str,
        project_id: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Archive a thread; threads without messages are deleted instead."""

        outcome = await _require_threads().archive(thread_id, project_id)
        _emit_log(
            context,
            "info",
            "Archived thread",
            extra={"thread_id": thread_id, "outcome": outcome},
        )
        return {"thread_id": thread_id, "outcome": outcome}

    async def _unarchive_thread(
        thread_id: str,
        project_id: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_threads()
        await controller.unarchive(thread_id, project_id)
        return {"thread_id": thread_id, "archived_count": controller.archived_count(project_id)}

    async def _resolve_plan(
        thread_id: str,
        approve: bool,
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_threads()
        if approve:
            await controller.approve_plan(thread_id)
        else:
            await controller.reject_plan(thread_id)
        _emit_log(
            context,
            "info",
            "Plan resolved",
            extra={"thread_id": thread_id, "approved": approve},
        )
        return {"thread_id": thread_id, "status": controller.status(thread_id)}

    async def _answer_question(
        thread_id: str,
        answers: dict[str, str] | None = None,
        question_comments: dict[str, str] | None = None,
        general_comment: str = "",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Answer pending questions, or list them when no answers are given."""

        controller = _require_threads()
        if not answers:
            questions = await controller.get_questions(thread_id)
            return {"thread_id": thread_id, "questions": [q.model_dump() for q in questions]}
        await controller.answer_question(thread_id, answers, question_comments, general_comment)
        return {"thread_id": thread_id, "status": controller.status(thread_id)}

    tool_list_threads = server.tool(
        name="list_threads",
        description="Refresh and list a project's agent threads with live status and token usage.",
    )(_list_threads)
    tool_create_thread = server.tool(
        name="create_thread",
        description="Create an agent thread on a location and select it.",
    )(_create_thread)
    tool_send_message = server.tool(
        name="send_message",
        description="Send a message to an agent thread (optionally in plan mode).",
    )(_send_message)
    tool_queue_message = server.tool(
        name="queue_message",
        description="Queue a follow-up message for a running thread, or send the queued one now.",
    )(_queue_message)
    tool_stop_thread = server.tool(
        name="stop_thread",
        description="Ask the execution host to stop a running thread.",
    )(_stop_thread)
    tool_archive_thread = server.tool(
        name="archive_thread",
        description="Archive a thread. Returns 'deleted' when the thread had no messages.",
    )(_archive_thread)
    tool_unarchive_thread = server.tool(
        name="unarchive_thread",
        description="Restore an archived thread to the active list.",
    )(_unarchive_thread)
    tool_resolve_plan = server.tool(
        name="resolve_plan",
        description="Approve or reject the plan a thread is waiting on.",
    )(_resolve_plan)
    tool_answer_question = server.tool(
        name="answer_question",
        description="List or answer the questions a thread is waiting on.",
    )(_answer_question)

    # commands

    async def _list_commands(
        project_id: str,
        location_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List command definitions, with per-instance status when a location is given."""

        controller = _require_commands()
        definitions = await controller.fetch(project_id)
        statuses = await controller.fetch_statuses(project_id, location_id) if location_id else {}
        _emit_log(
            context,
            "debug",
            "Listed commands",
            extra={"project_id": project_id, "count": len(definitions)},
        )
        return {
            "commands": [definition.model_dump() for definition in definitions],
            "statuses": statuses,
        }

    async def _command_status(
        command_id: str,
        location_id: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_commands()
        pid = await controller.fetch_pid(command_id, location_id)
        return {
            "command_id": command_id,
            "location_id": location_id,
            "status": controller.status(command_id, location_id),
            "pid": pid,
            "instances": controller.instances_of(command_id),
        }

    async def _control_command(
        command_id: str,
        location_id: str,
        action: Literal["start", "stop", "restart"],
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_commands()
        operations = {
            "start": controller.start,
            "stop": controller.stop,
            "restart": controller.restart,
        }
        if action not in operations:
            raise ValueError(f"Unknown action '{action}'")
        await operations[action](command_id, location_id)
        _emit_log(
            context,
            "info",
            "Command action requested",
            extra={"command_id": command_id, "location_id": location_id, "action": action},
        )
        return {
            "command_id": command_id,
            "location_id": location_id,
            "status": controller.status(command_id, location_id),
        }

    async def _command_logs(
        command_id: str,
        location_id: str,
        refresh: bool = False,
        tail: int = 200,
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_commands()
        lines = (
            await controller.fetch_logs(command_id, location_id)
            if refresh
            else controller.logs(command_id, location_id)
        )
        controller.select_instance(command_id, location_id)
        window = lines[-tail:] if tail > 0 else lines
        return {
            "command_id": command_id,
            "location_id": location_id,
            "total": len(lines),
            "lines": [_log_payload(line) for line in window],
        }

    async def _pin_command(
        command_id: str,
        location_id: str,
        pinned: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_commands()
        if pinned:
            controller.pin_instance(command_id, location_id)
        else:
            controller.unpin_instance(command_id, location_id)
        return {"visible": controller.visible_instances()}

    async def _delete_command(
        command_id: str,
        project_id: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        removed = await _require_commands().remove(command_id, project_id)
        _emit_log(
            context,
            "warning",
            "Deleted command",
            extra={"command_id": command_id, "instances": len(removed)},
        )
        return {"command_id": command_id, "removed_instances": removed}

    tool_list_commands = server.tool(
        name="list_commands",
        description="List a project's command definitions and their status at one location.",
    )(_list_commands)
    tool_command_status = server.tool(
        name="command_status",
        description="Report the status and process id of one command instance.",
    )(_command_status)
    tool_control_command = server.tool(
        name="control_command",
        description="Start, stop or restart a command on a location.",
    )(_control_command)
    tool_command_logs = server.tool(
        name="command_logs",
        description="Return the most recent log lines of a command instance (bounded buffer).",
    )(_command_logs)
    tool_pin_command = server.tool(
        name="pin_command",
        description="Pin or unpin a command instance so its logs keep streaming.",
    )(_pin_command)
    tool_delete_command = server.tool(
        name="delete_command",
        description="Delete a command definition and every instance of it on all locations.",
    )(_delete_command)

    # git

    async def _git_status(path: str, context: Context | None = None) -> dict[str, Any]:
        controller = _require_git()
        status = await controller.fetch(path)
        return {
            "path": path,
            "status": status.model_dump() if status is not None else None,
            "draft": controller.draft(path),
        }

    async def _git_stage(
        path: str,
        files: list[str] | None = None,
        unstage: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Stage or unstage files; omit ``files`` to apply to every change."""

        controller = _require_git()
        if files is None:
            await (controller.unstage_all(path) if unstage else controller.stage_all(path))
        elif unstage:
            for file_path in files:
                await controller.unstage(path, file_path)
        else:
            await controller.stage_files(path, files)
        status = controller.status(path)
        return {"path": path, "status": status.model_dump() if status is not None else None}

    async def _git_commit(
        path: str,
        message: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_git()
        await controller.commit(path, message)
        _emit_log(context, "info", "Committed changes", extra={"path": path})
        status = controller.status(path)
        return {"path": path, "ahead": status.ahead if status is not None else 0}

    async def _git_generate_commit_message(
        path: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_git()
        message = await controller.generate_commit_message(path)
        return {"path": path, "in_progress": message is None, "draft": controller.draft(path)}

    async def _git_sync(
        path: str,
        direction: Literal["push", "pull"],
        context: Context | None = None,
    ) -> dict[str, Any]:
        controller = _require_git()
        if direction == "push":
            started = await controller.push(path)
        elif direction == "pull":
            started = await controller.pull(path)
        else:
            raise ValueError(f"Unknown direction '{direction}'")
        _emit_log(
            context,
            "info",
            "Synchronized with remote",
            extra={"path": path, "direction": direction, "started": started},
        )
        status = controller.status(path)
        return {
            "path": path,
            "direction": direction,
            "started": started,
            "status": status.model_dump() if status is not None else None,
        }

    async def _git_branches(path: str, context: Context | None = None) -> dict[str, Any]:
        controller = _require_git()
        branches = await controller.fetch_branches(path)
        return {"current": branches.current, "choices": controller.branch_choices(path)}

    async def _git_switch_branch(
        path: str,
        branch: str,
        merge_from: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Check out a branch, optionally merging another branch into it afterwards."""

        result = await _require_git().switch_branch(path, branch, merge_from)
        for warning in result.warnings:
            _emit_log(context, "warning", warning, extra={"path": path, "branch": branch})
        return result.model_dump()

    async def _git_create_branch(
        path: str,
        name: str,
        base: str | None = None,
        pull_base_first: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        branches = await _require_git().create_branch(
            path, name, base or settings.default_branch, pull_base_first
        )
        _emit_log(context, "info", "Created branch", extra={"path": path, "branch": name})
        return {"current": branches.current}

    async def _git_merge(
        path: str,
        source: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Merge ``source`` into the current branch; conflicts are listed, not raised."""

        controller = _require_git()
        result = await controller.merge_branch(path, source)
        status = controller.status(path)
        return {
            "source": result.source,
            "conflicts": list(result.conflicts),
            "status": status.model_dump() if status is not None else None,
        }

    tool_git_status = server.tool(
        name="git_status",
        description="Refresh and return the git status snapshot of a workspace path.",
    )(_git_status)
    tool_git_stage = server.tool(
        name="git_stage",
        description="Stage or unstage files in a workspace, then refresh its status.",
    )(_git_stage)
    tool_git_commit = server.tool(
        name="git_commit",
        description="Commit staged changes using the given message or the current draft.",
    )(_git_commit)
    tool_git_generate = server.tool(
        name="git_generate_commit_message",
        description="Generate a commit message from the workspace diff into the draft.",
    )(_git_generate_commit_message)
    tool_git_sync = server.tool(
        name="git_sync",
        description="Push to or pull from the upstream branch.",
    )(_git_sync)
    tool_git_branches = server.tool(
        name="git_branches",
        description="List the branches that can be switched to or merged.",
    )(_git_branches)
    tool_git_switch = server.tool(
        name="git_switch_branch",
        description="Switch branches, warning about uncommitted changes.",
    )(_git_switch_branch)
    tool_git_create = server.tool(
        name="git_create_branch",
        description="Create and check out a new branch, optionally pulling the base first.",
    )(_git_create_branch)
    tool_git_merge = server.tool(
        name="git_merge",
        description="Merge a branch into the current one and report conflicting files.",
    )(_git_merge)

    # locations

    def _list_locations(context: Context | None = None) -> list[dict[str, Any]]:
        catalog = [
            {
                "id": location.id,
                "label": location.label,
                "connection_type": location.connection_type,
                "path": location.path,
            }
            for location in locations.load_all().values()
        ]
        _emit_log(context, "debug", "Listing locations", extra={"count": len(catalog)})
        return catalog

    tool_list_locations = server.tool(
        name="list_locations",
        description="List configured execution locations (local, SSH, WSL).",
    )(_list_locations)

    return ToolHandles(
        list_threads=tool_list_threads,
        create_thread=tool_create_thread,
        send_message=tool_send_message,
        queue_message=tool_queue_message,
        stop_thread=tool_stop_thread,
        archive_thread=tool_archive_thread,
        unarchive_thread=tool_unarchive_thread,
        resolve_plan=tool_resolve_plan,
        answer_question=tool_answer_question,
        list_commands=tool_list_commands,
        command_status=tool_command_status,
        control_command=tool_control_command,
        command_logs=tool_command_logs,
        pin_command=tool_pin_command,
        delete_command=tool_delete_command,
        git_status=tool_git_status,
        git_stage=tool_git_stage,
        git_commit=tool_git_commit,
        git_generate_commit_message=tool_git_generate,
        git_sync=tool_git_sync,
        git_branches=tool_git_branches,
        git_switch_branch=tool_git_switch,
        git_create_branch=tool_git_create,
        git_merge=tool_git_merge,
        list_locations=tool_list_locations,
    )


__all__ = ["register_tools", "ToolHandles"]

logger = logging.getLogger(__name__)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when one is attached, else the module logger."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
