"""Turn per-task write outcomes into one atomic job decision."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence

from .channel import FrameKind, decode, encode
from .errors import (
    ChannelError,
    DataSourceError,
    ErrorOrigin,
    ErrorReason,
    ExtensionFailure,
    WriteError,
    execution_error,
)
from .planner import SourceInstanceHandle
from .runtime import ExtensionRuntime
from .worker import bootstrap, bridge_failure, child_channel, receive_start, send_failure

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    RUNNING = "running"
    COMMITTED = "committed"
    ABORTED = "aborted"


@dataclass
class WriteJob:
    """Outcome bookkeeping for one distributed write; owned by the coordinator."""

    job_id: str
    required_task_count: int
    received_messages: Dict[int, bytes] = field(default_factory=dict)
    discarded_messages: Dict[int, bytes] = field(default_factory=dict)
    state: JobState = JobState.RUNNING
    failure: Optional[DataSourceError] = None


class CommitCoordinator:
    """Serializes task reports and decides commit or abort.

    The job commits when every task index delivered a message while the job
    was still running; the first failure aborts it, discards every message
    received so far and sets ``cancelled`` so in-flight siblings stop. A job
    that reached a terminal state never changes again.
    """

    def __init__(self, job: WriteJob, cancelled: Optional[threading.Event] = None) -> None:
        self._job = job
        self._lock = threading.Lock()
        self.cancelled = cancelled or threading.Event()
        if job.required_task_count == 0:
            job.state = JobState.COMMITTED

    @property
    def state(self) -> JobState:
        with self._lock:
            return self._job.state

    @property
    def failure(self) -> Optional[DataSourceError]:
        with self._lock:
            return self._job.failure

    def report_success(self, index: int, message: Optional[bytes]) -> JobState:
        if message is None:
            return self.report_failure(
                index,
                WriteError(
                    ExtensionFailure(
                        reason=ErrorReason.WRITE_NO_COMMIT_MESSAGE,
                        message=f"Task {index} reported success without a commit message",
                        origin=ErrorOrigin.BRIDGE,
                    ),
                    index,
                ),
            )
        with self._lock:
            self._check_index(index)
            job = self._job
            if job.state is not JobState.RUNNING:
                logger.info(
                    "Ignoring commit message of task %s; job %s is %s",
                    index,
                    job.job_id,
                    job.state.value,
                )
                if job.state is JobState.ABORTED:
                    job.discarded_messages.setdefault(index, message)
                return job.state
            if index in job.received_messages:
                logger.info("Ignoring duplicate commit message of task %s", index)
                return job.state
            job.received_messages[index] = message
            if len(job.received_messages) == job.required_task_count:
                job.state = JobState.COMMITTED
                logger.info("Job %s committed with %s message(s)", job.job_id, len(job.received_messages))
            return job.state

    def report_failure(self, index: int, error: DataSourceError) -> JobState:
        with self._lock:
            self._check_index(index)
            job = self._job
            if job.state is not JobState.RUNNING:
                logger.info(
                    "Ignoring failure of task %s; job %s is already %s",
                    index,
                    job.job_id,
                    job.state.value,
                )
                return job.state
            job.state = JobState.ABORTED
            job.failure = error
            job.discarded_messages.update(job.received_messages)
            job.received_messages.clear()
            logger.warning("Job %s aborted by task %s: %s", job.job_id, index, error)
        self.cancelled.set()
        return JobState.ABORTED

    def messages(self) -> List[bytes]:
        """Commit messages ordered by task index; empty unless committed."""
        with self._lock:
            if self._job.state is not JobState.COMMITTED:
                return []
            return [self._job.received_messages[i] for i in sorted(self._job.received_messages)]

    def discarded(self) -> List[bytes]:
        with self._lock:
            return [self._job.discarded_messages[i] for i in sorted(self._job.discarded_messages)]

    def _check_index(self, index: int) -> None:
        if not 0 <= index < max(self._job.required_task_count, 1):
            raise ValueError(
                f"Task index {index} is outside 0..{self._job.required_task_count - 1}"
            )


class CommitHook(Protocol):
    """Finalizes the output of a decided write job."""

    def commit(self, messages: Sequence[bytes]) -> None:
        """Publish the job's output; called once after the job committed."""

    def abort(self, messages: Sequence[bytes]) -> None:
        """Clean up after an aborted job; ``messages`` were discarded."""


@dataclass(frozen=True)
class FinalizeRequest:
    action: str
    writer: bytes
    messages: Sequence[bytes]


class ExtensionCommitHook:
    """Runs ``DataSourceWriter.commit`` or ``abort`` in the extension runtime."""

    def __init__(self, runtime: ExtensionRuntime, handle: SourceInstanceHandle) -> None:
        self._runtime = runtime
        self._handle = handle

    def commit(self, messages: Sequence[bytes]) -> None:
        self._finalize("commit", messages)

    def abort(self, messages: Sequence[bytes]) -> None:
        self._finalize("abort", messages)

    def _finalize(self, action: str, messages: Sequence[bytes]) -> None:
        request = FinalizeRequest(action, self._handle.payload, tuple(messages))
        with self._runtime.start(serve_finalize, name=f"{action}-{self._handle.source_name}") as worker:
            try:
                worker.channel.send(FrameKind.START, encode(request))
                frame = worker.channel.receive()
            except ChannelError as exc:
                raise WriteError(
                    ExtensionFailure(
                        reason=ErrorReason.WRITE_ERROR,
                        message=f"Extension process failed during {action}: {exc}",
                        origin=ErrorOrigin.BRIDGE,
                    )
                ) from exc
        if frame.kind is FrameKind.ERROR:
            raise execution_error(decode(frame.payload))
        if frame.kind is not FrameKind.DONE:
            raise WriteError(
                ExtensionFailure(
                    reason=ErrorReason.WRITE_ERROR,
                    message=f"Unexpected {frame.kind.value} frame during {action}",
                    origin=ErrorOrigin.BRIDGE,
                )
            )
        logger.info("Ran %s for %s with %s message(s)", action, self._handle.source_name, len(messages))


def serve_finalize(inbound, outbound, log_level: str, poll_interval: float) -> None:
    """Worker entry point for the commit/abort hook."""
    bootstrap(log_level)
    channel = child_channel(inbound, outbound, poll_interval)
    try:
        request: FinalizeRequest = receive_start(channel)
    except ChannelError:
        logger.warning("Driver went away before sending a finalize request")
        return
    try:
        writer = decode(request.writer)
        messages = [decode(payload) for payload in request.messages]
    except Exception as exc:
        send_failure(
            channel,
            bridge_failure(ErrorReason.WRITE_ERROR, exc, f"Unable to restore the writer for {request.action}"),
        )
        return
    try:
        getattr(writer, request.action)(messages)
    except Exception as exc:
        send_failure(
            channel,
            ExtensionFailure.from_exception(
                ErrorReason.WRITE_ERROR, exc, message=f"{request.action}() failed"
            ),
        )
        return
    channel.send(FrameKind.DONE)


__all__ = [
    "CommitCoordinator",
    "CommitHook",
    "ExtensionCommitHook",
    "FinalizeRequest",
    "JobState",
    "WriteJob",
    "serve_finalize",
]
