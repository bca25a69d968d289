"""FastMCP server bootstrap for Polycode."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from fastmcp import Context, FastMCP

from . import __version__
from .commands import CommandInstanceController
from .config import PolycodeSettings, get_settings
from .git import GitBackend, GitNotFoundError, GitRunner, GitWorkspaceController
from .host import CommandHost, GitHost, ThreadHost
from .locations import LocationLoadError, LocationLoader
from .threads import ThreadSessionController
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the Polycode server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def create_server(
    settings: Optional[PolycodeSettings] = None,
    *,
    thread_host: ThreadHost | None = None,
    command_host: CommandHost | None = None,
    git_host: GitHost | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server and the controllers behind its tools."""

    settings = settings or get_settings()
    logger = logging.getLogger(__name__)

    location_loader = LocationLoader(settings.location_paths)
    try:
        configured_locations = list(location_loader.load_all().values())
    except LocationLoadError as exc:
        logger.warning("Ignoring invalid location files", extra={"error": str(exc)})
        configured_locations = []

    git_metadata = {
        "available": False,
        "version": None,
        "error": None,
    }

    if git_host is None:
        try:
            runner = GitRunner(Path(settings.git_path) if settings.git_path else None)
            git_metadata["available"] = True
            version_result = _run_sync(runner.version())
            if version_result.ok:
                git_metadata["version"] = version_result.stdout.strip()
            else:
                git_metadata["error"] = version_result.stderr.strip() or "git --version failed"
            git_host = GitBackend(
                runner,
                locations=configured_locations,
                remote_name=settings.remote_name,
                diff_limit=settings.commit_diff_limit,
            )
        except GitNotFoundError as exc:
            git_metadata["error"] = str(exc)
    else:
        git_metadata["available"] = True

    threads = ThreadSessionController(thread_host) if thread_host is not None else None
    commands = (
        CommandInstanceController(command_host, log_capacity=settings.log_ring_size)
        if command_host is not None
        else None
    )
    git = (
        GitWorkspaceController(git_host, remote_name=settings.remote_name)
        if git_host is not None
        else None
    )

    detached = [
        name
        for name, controller in (("thread", threads), ("command", commands), ("git", git))
        if controller is None
    ]
    instructions = (
        "Polycode supervises agent threads, shell commands and git workspaces across "
        "local, SSH and WSL locations. Statuses update optimistically and are "
        "corrected by the execution host."
    )
    if detached:
        logger.warning("Tools disabled without an execution host", extra={"surfaces": detached})
        instructions += (
            f" No execution host is attached for the {', '.join(detached)} tools; "
            "they fail until the server is built with create_server(thread_host=..., "
            "command_host=..., git_host=...)."
        )

    server = FastMCP(
        name="Polycode MCP",
        version=__version__,
        instructions=instructions,
    )

    handles = register_tools(
        server,
        settings=settings,
        threads=threads,
        commands=commands,
        git=git,
        locations=location_loader,
    )

    @server.resource(
        "resource://polycode/status",
        name="polycode_status",
        title="Polycode MCP Status",
        description="Provides the current runtime status for the Polycode MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        try:
            location_ids = sorted(location_loader.load_all())
            location_error: str | None = None
        except LocationLoadError as exc:
            location_ids = []
            location_error = str(exc)

        thread_counts: dict[str, int] = {}
        if threads is not None:
            for status in threads.statuses().values():
                thread_counts[status] = thread_counts.get(status, 0) + 1

        command_counts: dict[str, int] = {}
        if commands is not None:
            for status in commands.statuses().values():
                command_counts[status] = command_counts.get(status, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "locations": {
                "count": len(location_ids),
                "ids": location_ids,
                "error": location_error,
            },
            "threads": {
                "available": threads is not None,
                "status_counts": thread_counts,
                "subscriptions": len(threads.subscribed_thread_ids()) if threads else 0,
            },
            "commands": {
                "available": commands is not None,
                "status_counts": command_counts,
                "pinned": commands.pinned_keys if commands else [],
                "subscriptions": len(commands.subscribed_keys()) if commands else 0,
            },
            "git": {
                "path": settings.git_path,
                "remote": settings.remote_name,
                **git_metadata,
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "location_loader", location_loader)
    setattr(server, "git_metadata", git_metadata)
    setattr(server, "thread_controller", threads)
    setattr(server, "command_controller", commands)
    setattr(server, "git_controller", git)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Polycode MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Polycode MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "git_available": getattr(server, "git_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
