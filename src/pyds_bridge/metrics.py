"""Byte counters reported by scan and write operators."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Iterable

BYTES_SENT = "bytesSent"
BYTES_RECEIVED = "bytesReceived"

_UNITS = ("KiB", "MiB", "GiB", "TiB", "PiB", "EiB")


def format_bytes(size: int) -> str:
    """Render a byte count the way execution metrics are displayed, e.g. ``2.5 KiB``."""
    if size < 0:
        raise ValueError("Byte counts cannot be negative")
    value = float(size)
    unit = "B"
    for candidate in _UNITS:
        if value < 2 * 1024:
            break
        value /= 1024
        unit = candidate
    return f"{value:.1f} {unit}"


class TaskMetrics:
    """Per-task counters; both only ever grow while the task runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bytes_sent = 0
        self._bytes_received = 0

    def add_sent(self, count: int) -> None:
        if count < 0:
            raise ValueError("Byte counters are monotonically non-decreasing")
        with self._lock:
            self._bytes_sent += count

    def add_received(self, count: int) -> None:
        if count < 0:
            raise ValueError("Byte counters are monotonically non-decreasing")
        with self._lock:
            self._bytes_received += count

    @property
    def bytes_sent(self) -> int:
        with self._lock:
            return self._bytes_sent

    @property
    def bytes_received(self) -> int:
        with self._lock:
            return self._bytes_received


@dataclass(frozen=True)
class OperatorMetrics:
    """Totals for one executed scan or write operator."""

    bytes_sent: int = 0
    bytes_received: int = 0
    task_count: int = 0

    @classmethod
    def aggregate(cls, tasks: Iterable[TaskMetrics]) -> "OperatorMetrics":
        sent = received = count = 0
        for task in tasks:
            sent += task.bytes_sent
            received += task.bytes_received
            count += 1
        return cls(bytes_sent=sent, bytes_received=received, task_count=count)

    def as_dict(self) -> Dict[str, int]:
        return {BYTES_SENT: self.bytes_sent, BYTES_RECEIVED: self.bytes_received}

    def formatted(self) -> Dict[str, str]:
        return {name: format_bytes(value) for name, value in self.as_dict().items()}


__all__ = [
    "BYTES_RECEIVED",
    "BYTES_SENT",
    "OperatorMetrics",
    "TaskMetrics",
    "format_bytes",
]
