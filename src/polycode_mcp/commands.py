"""Command definitions and their per-location running instances."""

from __future__ import annotations

import asyncio
import logging
from contextlib import ExitStack

from .host.protocol import COMMAND_EVENTS, CommandHost, command_channel
from .keys import belongs_to, definition_prefix, instance_key, parse_instance_key
from .logbuffer import EMPTY_LOGS, LOG_RING_BUFFER_SIZE, LogLine, LogRingBuffer
from .models import CommandDefinition
from .status import INSTANCE_STATUSES, InstanceStatusMachine
from .subscriptions import SubscriptionManager, Unsubscribe

logger = logging.getLogger(__name__)


class CommandInstanceController:
    """Tracks command definitions per project and instances per composite key.

    One definition fans out to one instance per location, keyed by
    ``definition_id:location_id``. Status starts optimistic on ``start`` and
    ``restart`` and is overwritten by whatever the host pushes. Log lines are
    kept in a bounded ring per instance.
    """

    def __init__(self, host: CommandHost, *, log_capacity: int = LOG_RING_BUFFER_SIZE) -> None:
        self._host = host
        self._definitions: dict[str, list[CommandDefinition]] = {}
        self._status = InstanceStatusMachine(statuses=INSTANCE_STATUSES, name="commands")
        self._logs = LogRingBuffer(log_capacity)
        self._pids: dict[str, int | None] = {}
        self._pinned: dict[str, None] = {}
        self._subscriptions = SubscriptionManager(self._open_listeners, name="commands")
        self.selected_key: str | None = None

    # selectors

    def definitions(self, project_id: str) -> tuple[CommandDefinition, ...]:
        return tuple(self._definitions.get(project_id, ()))

    def find(self, definition_id: str) -> CommandDefinition | None:
        for definitions in self._definitions.values():
            for definition in definitions:
                if definition.id == definition_id:
                    return definition
        return None

    def status(self, definition_id: str, location_id: str) -> str:
        return self._status.get(instance_key(definition_id, location_id))

    def statuses(self):
        return self._status.snapshot()

    def logs(self, definition_id: str, location_id: str) -> tuple[LogLine, ...]:
        return self._logs.get(instance_key(definition_id, location_id))

    def pid(self, definition_id: str, location_id: str) -> int | None:
        return self._pids.get(instance_key(definition_id, location_id))

    @property
    def pinned_keys(self) -> list[str]:
        return list(self._pinned)

    def instances_of(self, definition_id: str) -> list[str]:
        return [key for key in self._tracked_keys() if belongs_to(key, definition_id)]

    def visible_instances(self) -> list[str]:
        """Keys whose logs are on screen: the selection first, then pins."""

        visible = dict.fromkeys([self.selected_key] if self.selected_key else [])
        visible.update(self._pinned)
        return list(visible)

    def subscribed_keys(self) -> list[str]:
        return self._subscriptions.keys()

    # definitions

    async def fetch(self, project_id: str) -> tuple[CommandDefinition, ...]:
        definitions = await self._call(
            "list_commands", self._host.list_commands(project_id), project_id=project_id
        )
        self._definitions[project_id] = list(definitions)
        logger.info(
            "Fetched command definitions",
            extra={"project_id": project_id, "definitions": len(definitions)},
        )
        return self.definitions(project_id)

    async def fetch_statuses(self, project_id: str, location_id: str) -> dict[str, str]:
        definitions = self.definitions(project_id)
        statuses = await asyncio.gather(
            *(
                self._call(
                    "get_command_status",
                    self._host.get_command_status(definition.id, location_id),
                    definition_id=definition.id,
                    location_id=location_id,
                )
                for definition in definitions
            )
        )

        current = {definition.id for definition in self.definitions(project_id)}
        merged: dict[str, str] = {}
        for definition, status in zip(definitions, statuses):
            if definition.id not in current:
                continue
            key = instance_key(definition.id, location_id)
            self._status.seed(key, status)
            merged[key] = status
        self._sync_subscriptions()
        return merged

    async def create(
        self,
        project_id: str,
        name: str,
        command: str,
        cwd: str | None = None,
        shell: str | None = None,
    ) -> CommandDefinition:
        definition = await self._call(
            "create_command",
            self._host.create_command(project_id, name, command, cwd, shell),
            project_id=project_id,
        )
        self._definitions.setdefault(project_id, []).append(definition)
        return definition

    async def update(
        self,
        definition_id: str,
        name: str,
        command: str,
        cwd: str | None = None,
        shell: str | None = None,
    ) -> None:
        await self._call(
            "update_command",
            self._host.update_command(definition_id, name, command, cwd, shell),
            definition_id=definition_id,
        )
        changes = {"name": name, "command": command, "cwd": cwd, "shell": shell}
        for project_id, definitions in self._definitions.items():
            self._definitions[project_id] = [
                d.model_copy(update=changes) if d.id == definition_id else d for d in definitions
            ]

    async def remove(self, definition_id: str, project_id: str) -> list[str]:
        """Delete a definition and every instance of it across all locations."""

        await self._call(
            "delete_command", self._host.delete_command(definition_id), definition_id=definition_id
        )
        self._definitions[project_id] = [
            d for d in self._definitions.get(project_id, []) if d.id != definition_id
        ]

        prefix = definition_prefix(definition_id)
        removed = set(self._status.discard_prefix(prefix))
        removed.update(self._logs.discard_prefix(prefix))
        for key in [k for k in self._pids if belongs_to(k, definition_id)]:
            del self._pids[key]
            removed.add(key)
        for key in [k for k in self._pinned if belongs_to(k, definition_id)]:
            del self._pinned[key]
            removed.add(key)
        if self.selected_key is not None and belongs_to(self.selected_key, definition_id):
            removed.add(self.selected_key)
            self.selected_key = None

        self._sync_subscriptions()
        logger.info(
            "Removed command definition",
            extra={"definition_id": definition_id, "instances": len(removed)},
        )
        return sorted(removed)

    # instances

    async def start(self, definition_id: str, location_id: str) -> None:
        key = instance_key(definition_id, location_id)
        self._status.mark_running(key)
        self._sync_subscriptions()
        await self._call(
            "start_command",
            self._host.start_command(definition_id, location_id),
            key=key,
        )

    async def stop(self, definition_id: str, location_id: str) -> None:
        key = instance_key(definition_id, location_id)
        await self._call("stop_command", self._host.stop_command(definition_id, location_id), key=key)

    async def restart(self, definition_id: str, location_id: str) -> None:
        key = instance_key(definition_id, location_id)
        self._status.mark_running(key)
        self._sync_subscriptions()
        await self._call(
            "restart_command",
            self._host.restart_command(definition_id, location_id),
            key=key,
        )

    def set_status(self, definition_id: str, location_id: str, status: str) -> None:
        self._status.apply(instance_key(definition_id, location_id), status)

    def complete(self, definition_id: str, location_id: str) -> bool:
        return self._status.complete(instance_key(definition_id, location_id))

    def append_log(self, definition_id: str, location_id: str, line: LogLine) -> None:
        self._logs.append(instance_key(definition_id, location_id), line)

    async def fetch_logs(self, definition_id: str, location_id: str) -> tuple[LogLine, ...]:
        key = instance_key(definition_id, location_id)
        lines = await self._call(
            "get_command_logs", self._host.get_command_logs(definition_id, location_id), key=key
        )
        self._logs.replace(key, lines)
        return self._logs.get(key)

    async def fetch_pid(self, definition_id: str, location_id: str) -> int | None:
        key = instance_key(definition_id, location_id)
        pid = await self._call(
            "get_command_pid", self._host.get_command_pid(definition_id, location_id), key=key
        )
        self._pids[key] = pid
        return pid

    def clear_logs(self, definition_id: str, location_id: str) -> None:
        self._logs.discard(instance_key(definition_id, location_id))

    # panels

    def select_instance(self, definition_id: str | None, location_id: str | None = None) -> str | None:
        if definition_id is None or location_id is None:
            self.selected_key = None
        else:
            self.selected_key = instance_key(definition_id, location_id)
        self._sync_subscriptions()
        return self.selected_key

    def pin_instance(self, definition_id: str, location_id: str) -> str:
        key = instance_key(definition_id, location_id)
        self._pinned[key] = None
        self._sync_subscriptions()
        return key

    def unpin_instance(self, definition_id: str, location_id: str) -> bool:
        key = instance_key(definition_id, location_id)
        if key not in self._pinned:
            return False
        del self._pinned[key]
        self._sync_subscriptions()
        return True

    # push events

    def _open_listeners(self, key: str) -> Unsubscribe:
        definition_id, location_id = parse_instance_key(key)
        handlers = {
            "status": lambda status: self.set_status(definition_id, location_id, status),
            "log": lambda line: self.append_log(definition_id, location_id, _coerce_line(line)),
            "complete": lambda *_: self.complete(definition_id, location_id),
        }
        with ExitStack() as stack:
            for event in COMMAND_EVENTS:
                stack.callback(self._host.subscribe(command_channel(event, key), handlers[event]))
            return stack.pop_all().close

    def _tracked_keys(self) -> list[str]:
        keys = dict.fromkeys(self._status.keys())
        if self.selected_key is not None:
            keys[self.selected_key] = None
        keys.update(self._pinned)
        return list(keys)

    def _sync_subscriptions(self) -> None:
        self._subscriptions.sync(self._tracked_keys())

    def close(self) -> None:
        self._subscriptions.close()

    async def __aenter__(self) -> "CommandInstanceController":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()

    async def _call(self, verb: str, request, **context):
        try:
            return await request
        except Exception:
            logger.exception("Command host request failed", extra={"verb": verb, **context})
            raise


def _coerce_line(line) -> LogLine:
    if isinstance(line, LogLine):
        return line
    if isinstance(line, str):
        return LogLine(stream="stdout", text=line)
    return LogLine(
        stream=line.get("stream", "stdout"),
        text=line.get("text", ""),
        timestamp=line.get("timestamp"),
    )


__all__ = ["CommandInstanceController", "EMPTY_LOGS"]
