"""Keeps exactly one push-event listener alive per entity of interest."""

from __future__ import annotations

import logging
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator

Unsubscribe = Callable[[], None]
ListenerFactory = Callable[[str], Unsubscribe]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SyncResult:
    opened: list[str] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)


class SubscriptionManager:
    """Diff-based listener lifecycle.

    ``sync`` receives the full desired key set every time. Keys that are no
    longer desired are torn down first, then keys that are newly desired get a
    listener from the factory. A key never holds more than one teardown handle.
    ``close`` (also run on context exit) releases everything; every teardown is
    attempted even if an earlier one raises.
    """

    def __init__(self, factory: ListenerFactory, *, name: str = "subscriptions") -> None:
        self._factory = factory
        self._name = name
        self._active: dict[str, Unsubscribe] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def sync(self, desired: Iterable[str]) -> SyncResult:
        if self._closed:
            raise RuntimeError(f"{self._name} subscription manager is closed")

        wanted = dict.fromkeys(desired)
        result = SyncResult()

        stale = [key for key in self._active if key not in wanted]
        self._teardown(stale, result.closed)

        for key in wanted:
            if key in self._active:
                continue
            self._active[key] = self._factory(key)
            result.opened.append(key)

        if result.opened or result.closed:
            logger.debug(
                "Subscriptions synced",
                extra={
                    "manager": self._name,
                    "opened": len(result.opened),
                    "closed": len(result.closed),
                    "active": len(self._active),
                },
            )
        return result

    def release(self, key: str) -> bool:
        if key not in self._active:
            return False
        self._teardown([key], [])
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._teardown(list(self._active), [])

    def _teardown(self, keys: list[str], closed: list[str]) -> None:
        with ExitStack() as stack:
            for key in keys:
                unsubscribe = self._active.pop(key)
                closed.append(key)
                stack.callback(self._run_teardown, key, unsubscribe)

    def _run_teardown(self, key: str, unsubscribe: Unsubscribe) -> None:
        try:
            unsubscribe()
        except Exception:
            logger.exception(
                "Listener teardown failed", extra={"manager": self._name, "key": key}
            )
            raise

    def keys(self) -> list[str]:
        return list(self._active)

    def __contains__(self, key: object) -> bool:
        return key in self._active

    def __len__(self) -> int:
        return len(self._active)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._active))

    def __enter__(self) -> "SubscriptionManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    async def __aenter__(self) -> "SubscriptionManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


__all__ = ["ListenerFactory", "SubscriptionManager", "SyncResult", "Unsubscribe"]
