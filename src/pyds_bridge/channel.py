"""Framed, bounded, flow-controlled channel between a task and its worker process."""
from __future__ import annotations

import pickle
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import cloudpickle

from .errors import ChannelError, ChannelTimeout, ErrorOrigin, TaskCancelledError
from .metrics import TaskMetrics


class FrameKind(str, Enum):
    START = "start"
    RESULT = "result"
    ROW = "row"
    END = "end"
    COMMIT = "commit"
    ERROR = "error"
    DONE = "done"


@dataclass(frozen=True)
class Frame:
    kind: FrameKind
    payload: bytes = b""


def encode(obj: Any) -> bytes:
    return cloudpickle.dumps(obj)


def decode(payload: bytes) -> Any:
    return pickle.loads(payload)


class FrameChannel:
    """One end of a pair of bounded queues.

    ``outbound`` and ``inbound`` are ``multiprocessing`` queues created with a
    ``maxsize``; a full outbound queue blocks the sender until the peer
    consumes, an empty inbound queue blocks the receiver until the peer
    produces. Every wait is sliced by ``poll_interval`` so that a dead peer or
    a cancelled task is noticed instead of blocking forever.
    """

    def __init__(
        self,
        outbound,
        inbound,
        *,
        poll_interval: float,
        is_peer_alive: Callable[[], bool],
        cancelled: Optional[threading.Event] = None,
        metrics: Optional[TaskMetrics] = None,
    ) -> None:
        self._outbound = outbound
        self._inbound = inbound
        self._poll_interval = poll_interval
        self._is_peer_alive = is_peer_alive
        self._cancelled = cancelled
        self._metrics = metrics

    def send(self, kind: FrameKind, payload: bytes = b"", timeout: Optional[float] = None) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.try_send(kind, payload):
            self.check_peer()
            if deadline is not None and time.monotonic() >= deadline:
                raise ChannelTimeout(f"Timed out sending {kind.value} frame")

    def try_send(self, kind: FrameKind, payload: bytes = b"") -> bool:
        self._check_cancelled()
        try:
            self._outbound.put((kind.value, payload), timeout=self._poll_interval)
        except queue.Full:
            return False
        if self._metrics is not None:
            self._metrics.add_sent(len(payload))
        return True

    def send_unless_interrupted(self, kind: FrameKind, payload: bytes = b"") -> Optional[Frame]:
        """Send ``payload``; if the peer answers while the queue is full, return that frame instead."""
        while not self.try_send(kind, payload):
            frame = self.poll()
            if frame is not None:
                return frame
            self.check_peer()
        return None

    def receive(self, timeout: Optional[float] = None) -> Frame:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            self._check_cancelled()
            frame = self._get(self._poll_interval)
            if frame is not None:
                return frame
            if not self._is_peer_alive():
                # A peer that exited may still have frames in flight.
                frame = self.poll()
                if frame is not None:
                    return frame
                raise ChannelError("Peer process exited before completing the protocol")
            if deadline is not None and time.monotonic() >= deadline:
                raise ChannelTimeout(f"No frame received within {timeout} seconds")

    def poll(self) -> Optional[Frame]:
        try:
            kind, payload = self._inbound.get_nowait()
        except queue.Empty:
            return None
        return self._received(kind, payload)

    def check_peer(self) -> None:
        self._check_cancelled()
        if not self._is_peer_alive():
            raise ChannelError("Peer process exited before completing the protocol")

    def close(self, abandon: bool = False) -> None:
        """Release both queues; ``abandon`` drops frames the peer never consumed."""
        for q in (self._outbound, self._inbound):
            if abandon:
                q.cancel_join_thread()
            q.close()

    def _get(self, timeout: float) -> Optional[Frame]:
        try:
            kind, payload = self._inbound.get(timeout=timeout)
        except queue.Empty:
            return None
        return self._received(kind, payload)

    def _received(self, kind: str, payload: bytes) -> Frame:
        if self._metrics is not None:
            self._metrics.add_received(len(payload))
        return Frame(FrameKind(kind), payload)

    def _check_cancelled(self) -> None:
        if self._cancelled is not None and self._cancelled.is_set():
            raise TaskCancelledError.create("Task was cancelled", origin=ErrorOrigin.BRIDGE)


__all__ = ["Frame", "FrameChannel", "FrameKind", "decode", "encode"]
