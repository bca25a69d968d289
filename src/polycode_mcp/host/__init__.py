"""Execution host boundary: request protocols and push-event delivery."""

from .protocol import (
    COMMAND_EVENTS,
    THREAD_EVENTS,
    CommandHost,
    ExecutionHostError,
    GitHost,
    HostUnavailableError,
    PushChannel,
    ThreadHost,
    Unsubscribe,
    command_channel,
    thread_channel,
)
from .bus import PushBus

__all__ = [
    "COMMAND_EVENTS",
    "THREAD_EVENTS",
    "CommandHost",
    "ExecutionHostError",
    "GitHost",
    "HostUnavailableError",
    "PushBus",
    "PushChannel",
    "ThreadHost",
    "Unsubscribe",
    "command_channel",
    "thread_channel",
]
