"""Bounded per-instance output history."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterable, Iterator, Literal

LOG_RING_BUFFER_SIZE = 1000

LogStream = Literal["stdout", "stderr"]


@dataclass(frozen=True, slots=True)
class LogLine:
    """One line of process output."""

    stream: LogStream
    text: str
    timestamp: str | None = None


EMPTY_LOGS: tuple[LogLine, ...] = ()


class LogRingBuffer:
    """Keeps the most recent ``capacity`` lines per key, in arrival order.

    ``get`` hands out immutable snapshots. The snapshot for a key is reused
    until that key's buffer changes, and missing keys always yield the shared
    ``EMPTY_LOGS`` tuple.
    """

    def __init__(self, capacity: int = LOG_RING_BUFFER_SIZE) -> None:
        if capacity < 1:
            raise ValueError("Log ring buffer capacity must be >= 1")
        self._capacity = capacity
        self._buffers: dict[str, deque[LogLine]] = {}
        self._snapshots: dict[str, tuple[LogLine, ...]] = {}

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, key: str, line: LogLine) -> None:
        buffer = self._buffers.get(key)
        if buffer is None:
            buffer = self._buffers[key] = deque(maxlen=self._capacity)
        buffer.append(line)
        self._snapshots.pop(key, None)

    def replace(self, key: str, lines: Iterable[LogLine]) -> None:
        """Swap the history for ``key`` with ``lines`` (most recent ``capacity`` kept)."""

        self._buffers[key] = deque(lines, maxlen=self._capacity)
        self._snapshots.pop(key, None)

    def get(self, key: str) -> tuple[LogLine, ...]:
        snapshot = self._snapshots.get(key)
        if snapshot is not None:
            return snapshot
        buffer = self._buffers.get(key)
        if not buffer:
            return EMPTY_LOGS
        snapshot = self._snapshots[key] = tuple(buffer)
        return snapshot

    def discard(self, key: str) -> bool:
        self._snapshots.pop(key, None)
        return self._buffers.pop(key, None) is not None

    def discard_prefix(self, prefix: str) -> list[str]:
        removed = [key for key in self._buffers if key.startswith(prefix)]
        for key in removed:
            self.discard(key)
        return removed

    def keys(self) -> list[str]:
        return list(self._buffers)

    def __contains__(self, key: object) -> bool:
        return key in self._buffers

    def __len__(self) -> int:
        return len(self._buffers)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._buffers))


__all__ = ["EMPTY_LOGS", "LOG_RING_BUFFER_SIZE", "LogLine", "LogRingBuffer", "LogStream"]
