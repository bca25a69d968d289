"""Per-instance status tracking with optimistic writes and authoritative overrides."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Callable, Iterable, Literal, Mapping

InstanceStatus = Literal["idle", "running", "error", "stopped"]

IDLE = "idle"
RUNNING = "running"
INSTANCE_STATUSES: frozenset[str] = frozenset({"idle", "running", "error", "stopped"})

TransitionListener = Callable[[str, str, str], None]

logger = logging.getLogger(__name__)


class InstanceStatusMachine:
    """Status map keyed by entity id or composite instance key.

    Local code may only write ``running`` (``mark_running``), ahead of the
    request it reflects. Everything else comes from the execution host:
    ``apply`` for pushed status changes and ``seed`` for fetch responses, both
    unconditional. ``complete`` is the fallback for a completion signal that
    arrived without a status: it moves a key still reading ``running`` to
    ``idle`` and leaves every other state alone.
    """

    def __init__(
        self,
        *,
        statuses: Iterable[str] = INSTANCE_STATUSES,
        on_transition: TransitionListener | None = None,
        name: str = "instances",
    ) -> None:
        self._allowed = frozenset(statuses)
        self._on_transition = on_transition
        self._name = name
        self._state: dict[str, str] = {}

    @property
    def allowed(self) -> frozenset[str]:
        return self._allowed

    def get(self, key: str) -> str:
        return self._state.get(key, IDLE)

    def mark_running(self, key: str) -> None:
        self._write(key, RUNNING, source="optimistic")

    def apply(self, key: str, status: str) -> None:
        self._write(key, self._validate(status), source="push")

    def seed(self, key: str, status: str) -> None:
        self._write(key, self._validate(status), source="fetch")

    def complete(self, key: str) -> bool:
        if self._state.get(key) != RUNNING:
            return False
        self._write(key, IDLE, source="safety_net")
        return True

    def discard(self, key: str) -> bool:
        return self._state.pop(key, None) is not None

    def discard_prefix(self, prefix: str) -> list[str]:
        removed = [key for key in self._state if key.startswith(prefix)]
        for key in removed:
            del self._state[key]
        return removed

    def keys(self) -> list[str]:
        return list(self._state)

    def snapshot(self) -> Mapping[str, str]:
        return MappingProxyType(dict(self._state))

    def __contains__(self, key: object) -> bool:
        return key in self._state

    def __len__(self) -> int:
        return len(self._state)

    def _validate(self, status: str) -> str:
        if status not in self._allowed:
            raise ValueError(
                f"Unknown status {status!r} for {self._name}; expected one of {sorted(self._allowed)}"
            )
        return status

    def _write(self, key: str, status: str, *, source: str) -> None:
        previous = self._state.get(key, IDLE)
        self._state[key] = status
        logger.debug(
            "Status write",
            extra={
                "machine": self._name,
                "key": key,
                "previous": previous,
                "status": status,
                "source": source,
            },
        )
        if self._on_transition is not None:
            self._on_transition(key, previous, status)


__all__ = [
    "IDLE",
    "INSTANCE_STATUSES",
    "RUNNING",
    "InstanceStatus",
    "InstanceStatusMachine",
    "TransitionListener",
]
