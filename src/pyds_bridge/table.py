"""Physical operators that run planned extension scans and writes."""
from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from .commit import CommitCoordinator, CommitHook, JobState, WriteJob
from .errors import (
    DataSourceError,
    ErrorOrigin,
    ErrorReason,
    ExtensionFailure,
    TaskCancelledError,
    WriteError,
)
from .metrics import OperatorMetrics, TaskMetrics
from .planner import Mode, PlanSession, SourceInstanceHandle
from .reader import PartitionReaderBridge, ReadTask
from .runtime import ExtensionRuntime
from .types import Row, StructType
from .writer import WriterBridge, WriteTask

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class ExtensionTable:
    """A logical table whose scan is delegated to the extension runtime."""

    name: str
    schema: StructType
    partitions: Tuple[bytes, ...] = field(repr=False, default=())
    handle: Optional[SourceInstanceHandle] = field(repr=False, default=None)

    @classmethod
    def from_session(cls, session: PlanSession) -> "ExtensionTable":
        if session.mode is not Mode.READ:
            raise ValueError(f"Cannot scan a table planned for {session.mode.value}")
        return cls(
            name=session.source_name,
            schema=session.schema,
            partitions=session.partitions,
            handle=session.handle,
        )

    @property
    def num_partitions(self) -> int:
        return max(1, len(self.partitions))

    def read_tasks(self) -> List[ReadTask]:
        if not self.partitions:
            return [ReadTask(0, None, self.handle)]
        return [
            ReadTask(index, descriptor, self.handle)
            for index, descriptor in enumerate(self.partitions)
        ]


class TaskScheduler:
    """Runs independent tasks on a bounded thread pool.

    The first failure sets ``cancelled`` so running siblings stop at their
    next channel operation; pending ones never start.
    """

    def __init__(self, max_parallel_tasks: int = 4) -> None:
        if max_parallel_tasks < 1:
            raise ValueError("max_parallel_tasks must be at least 1")
        self.max_parallel_tasks = max_parallel_tasks

    def run(
        self,
        tasks: Sequence[T],
        fn: Callable[[T], R],
        cancelled: threading.Event,
    ) -> List[R]:
        if not tasks:
            return []
        results: List[Optional[R]] = [None] * len(tasks)
        first_error: Optional[BaseException] = None
        workers = min(self.max_parallel_tasks, len(tasks))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pyds-task") as pool:
            futures = {pool.submit(fn, task): position for position, task in enumerate(tasks)}
            for future in as_completed(futures):
                if future.cancelled():
                    continue
                position = futures[future]
                try:
                    results[position] = future.result()
                except Exception as exc:
                    if first_error is None or (
                        isinstance(first_error, TaskCancelledError)
                        and not isinstance(exc, TaskCancelledError)
                    ):
                        first_error = exc
                    if not cancelled.is_set():
                        logger.info("Task %s failed; cancelling remaining tasks", position)
                        cancelled.set()
                    for pending in futures:
                        pending.cancel()
        if first_error is not None:
            raise first_error
        return results  # type: ignore[return-value]


class ScanExec:
    """Executes every read task of an :class:`ExtensionTable`."""

    def __init__(
        self,
        table: ExtensionTable,
        runtime: ExtensionRuntime,
        scheduler: TaskScheduler,
    ) -> None:
        self.table = table
        self._runtime = runtime
        self._scheduler = scheduler
        self.metrics: Optional[OperatorMetrics] = None

    def execute_partitions(self) -> List[List[Row]]:
        """Rows of each partition, in partition index order."""
        cancelled = threading.Event()
        tasks = self.table.read_tasks()
        task_metrics = [TaskMetrics() for _ in tasks]
        bridge = PartitionReaderBridge(self._runtime, self.table.schema, cancelled)

        def run(task: ReadTask) -> List[Row]:
            return list(bridge.execute(task, task_metrics[task.index]))

        logger.info("Scanning %s with %s task(s)", self.table.name, len(tasks))
        try:
            return self._scheduler.run(tasks, run, cancelled)
        finally:
            self.metrics = OperatorMetrics.aggregate(task_metrics)

    def execute(self) -> List[Row]:
        return [row for partition in self.execute_partitions() for row in partition]


class WriteExec:
    """Runs one write task per input partition and finalizes the job."""

    def __init__(
        self,
        session: PlanSession,
        runtime: ExtensionRuntime,
        scheduler: TaskScheduler,
        hook: Optional[CommitHook] = None,
    ) -> None:
        if session.mode is not Mode.WRITE:
            raise ValueError(f"Cannot write through a session planned for {session.mode.value}")
        self.session = session
        self._runtime = runtime
        self._scheduler = scheduler
        self._hook = hook
        self.metrics: Optional[OperatorMetrics] = None

    def execute(self, partitions: Sequence[Sequence[Sequence]]) -> List[bytes]:
        """Write ``partitions`` and return the committed messages in task order."""
        inputs = list(partitions) or [()]
        handle = self.session.handle
        cancelled = threading.Event()
        coordinator = CommitCoordinator(
            WriteJob(job_id=handle.handle_id, required_task_count=len(inputs)),
            cancelled,
        )
        tasks = [WriteTask(index, handle, rows) for index, rows in enumerate(inputs)]
        task_metrics = [TaskMetrics() for _ in tasks]
        bridge = WriterBridge(self._runtime, self.session.schema, cancelled)

        def run(task: WriteTask) -> bytes:
            try:
                message = bridge.execute(task, task_metrics[task.index])
            except DataSourceError as exc:
                coordinator.report_failure(task.index, exc)
                raise
            except Exception as exc:
                error = WriteError(
                    ExtensionFailure.from_exception(
                        ErrorReason.WRITE_ERROR,
                        exc,
                        origin=ErrorOrigin.BRIDGE,
                        message=f"Write task {task.index} failed in the driver",
                    ),
                    task.index,
                )
                coordinator.report_failure(task.index, error)
                raise error from exc
            if cancelled.is_set():
                coordinator.report_failure(
                    task.index,
                    TaskCancelledError.create(
                        f"Task {task.index} finished after the job was cancelled",
                        origin=ErrorOrigin.BRIDGE,
                    ),
                )
            else:
                coordinator.report_success(task.index, message)
            return message

        logger.info("Writing %s with %s task(s)", self.session.source_name, len(tasks))
        try:
            self._scheduler.run(tasks, run, cancelled)
        except DataSourceError:
            # re-raised below from the coordinator, after abort ran
            pass
        finally:
            self.metrics = OperatorMetrics.aggregate(task_metrics)

        if coordinator.state is JobState.COMMITTED:
            messages = coordinator.messages()
            self._commit(messages)
            return messages
        self._abort(coordinator.discarded())
        failure = coordinator.failure
        if failure is None:
            raise WriteError.create(
                f"Write job {handle.handle_id} finished without a decision",
                origin=ErrorOrigin.BRIDGE,
            )
        raise failure

    def _commit(self, messages: List[bytes]) -> None:
        if self._hook is None:
            return
        try:
            self._hook.commit(messages)
        except WriteError:
            raise
        except DataSourceError as exc:
            raise WriteError(
                exc.failure.wrap(ErrorReason.WRITE_ERROR, "Unable to commit the write job")
            ) from exc

    def _abort(self, messages: List[bytes]) -> None:
        if self._hook is None:
            return
        try:
            self._hook.abort(messages)
        except DataSourceError as exc:
            logger.error("Abort of %s failed: %s", self.session.source_name, exc)


__all__ = ["ExtensionTable", "ScanExec", "TaskScheduler", "WriteExec"]
