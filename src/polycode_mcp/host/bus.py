"""In-process fan-out of push events."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any

from .protocol import PushCallback, Unsubscribe, describe_payload

logger = logging.getLogger(__name__)


class PushBus:
    """Delivers push events to the callbacks registered for a channel.

    Delivery is synchronous and in emit order. A callback registered while an
    event is being delivered only sees later events.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[PushCallback]] = defaultdict(list)

    def subscribe(self, channel: str, callback: PushCallback) -> Unsubscribe:
        self._listeners[channel].append(callback)
        released = False

        def unsubscribe() -> None:
            nonlocal released
            if released:
                return
            released = True
            listeners = self._listeners.get(channel)
            if listeners is None:
                return
            listeners.remove(callback)
            if not listeners:
                del self._listeners[channel]

        return unsubscribe

    def emit(self, channel: str, *payload: Any) -> int:
        listeners = list(self._listeners.get(channel, ()))
        logger.debug(
            "Push event",
            extra={
                "channel": channel,
                "listeners": len(listeners),
                "payload": describe_payload(payload),
            },
        )
        for callback in listeners:
            callback(*payload)
        return len(listeners)

    def listener_count(self, channel: str) -> int:
        return len(self._listeners.get(channel, ()))

    def channels(self) -> list[str]:
        return sorted(self._listeners)


__all__ = ["PushBus"]
