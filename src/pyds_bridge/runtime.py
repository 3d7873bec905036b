"""Lifecycle of extension-runtime worker processes."""
from __future__ import annotations

import logging
import multiprocessing
import threading
from typing import Callable, Optional

from .channel import FrameChannel
from .config import WorkerConfig
from .metrics import TaskMetrics

logger = logging.getLogger(__name__)


def supports_fork() -> bool:
    """Return True when the fork start method is available and the process is single-threaded."""
    if "fork" not in multiprocessing.get_all_start_methods():
        return False
    return threading.active_count() <= 1


class WorkerProcess:
    """A started worker plus the driver's end of its channel.

    Each worker serves exactly one planning call, task or finalization and is
    owned exclusively by its caller; use it as a context manager.
    """

    def __init__(self, process, channel: FrameChannel, grace_seconds: float) -> None:
        self.process = process
        self.channel = channel
        self._grace_seconds = grace_seconds
        self._closed = False

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    def shutdown(self, force: bool = False) -> None:
        if self._closed:
            return
        self._closed = True
        if force and self.process.is_alive():
            logger.debug("Terminating worker %s", self.process.name)
            self.process.terminate()
        self.process.join(self._grace_seconds)
        if self.process.is_alive():
            logger.warning(
                "Worker %s did not exit within %.1fs; killing it",
                self.process.name,
                self._grace_seconds,
            )
            self.process.kill()
            self.process.join()
        self.channel.close(abandon=force)

    def __enter__(self) -> "WorkerProcess":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.shutdown(force=exc_type is not None)
        return False


class ExtensionRuntime:
    """Spawns one isolated worker process per unit of extension work."""

    def __init__(self, config: WorkerConfig | None = None) -> None:
        self.config = config or WorkerConfig()

    def _context(self):
        if self.config.start_method:
            return multiprocessing.get_context(self.config.start_method)
        return multiprocessing.get_context("fork" if supports_fork() else "spawn")

    def start(
        self,
        target: Callable[..., None],
        name: str,
        metrics: Optional[TaskMetrics] = None,
        cancelled: Optional[threading.Event] = None,
    ) -> WorkerProcess:
        ctx = self._context()
        capacity = self.config.channel_capacity
        to_worker = ctx.Queue(maxsize=capacity)
        from_worker = ctx.Queue(maxsize=capacity)
        process = ctx.Process(
            target=target,
            name=name,
            args=(to_worker, from_worker, self.config.log_level, self.config.poll_interval_seconds),
            daemon=True,
        )
        process.start()
        logger.debug("Started worker %s pid=%s via %s", name, process.pid, ctx.get_start_method())
        channel = FrameChannel(
            to_worker,
            from_worker,
            poll_interval=self.config.poll_interval_seconds,
            is_peer_alive=process.is_alive,
            cancelled=cancelled,
            metrics=metrics,
        )
        return WorkerProcess(process, channel, self.config.shutdown_grace_seconds)


__all__ = ["ExtensionRuntime", "WorkerProcess", "supports_fork"]
