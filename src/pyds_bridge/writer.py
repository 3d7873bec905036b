"""Per-partition streaming execution of write tasks."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional, Sequence, Tuple

from .channel import Frame, FrameChannel, FrameKind, decode, encode
from .datasource import TaskContext, WriterCommitMessage, _set_task_context
from .errors import (
    ChannelError,
    ErrorOrigin,
    ErrorReason,
    ExtensionFailure,
    WriteError,
    execution_error,
)
from .metrics import TaskMetrics
from .planner import SourceInstanceHandle
from .runtime import ExtensionRuntime
from .types import Row, StructType
from .worker import bootstrap, bridge_failure, child_channel, receive_start, send_failure

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class WriteTask:
    index: int
    handle: SourceInstanceHandle = field(repr=False)
    rows: Iterable[Sequence[Any]] = field(repr=False, default=())


@dataclass(frozen=True)
class WriteRequest:
    index: int
    writer: bytes
    names: Tuple[str, ...]


class WriterBridge:
    """Pushes a task's rows into its own worker process and collects the commit message."""

    def __init__(
        self,
        runtime: ExtensionRuntime,
        schema: StructType,
        cancelled: Optional[threading.Event] = None,
    ) -> None:
        self._runtime = runtime
        self._schema = schema
        self._cancelled = cancelled

    def execute(self, task: WriteTask, metrics: Optional[TaskMetrics] = None) -> bytes:
        """Return the serialized commit message of ``task`` or raise a :class:`WriteError`."""
        metrics = metrics if metrics is not None else TaskMetrics()
        worker = self._runtime.start(
            serve_write,
            name=f"write-{task.handle.source_name}-{task.index}",
            metrics=metrics,
            cancelled=self._cancelled,
        )
        completed = False
        try:
            channel = worker.channel
            request = WriteRequest(task.index, task.handle.payload, tuple(self._schema.names))
            channel.send(FrameKind.START, encode(request))
            early = self._push_rows(channel, task)
            message = self._await_commit(channel, task, early)
            completed = True
        except ChannelError as exc:
            raise WriteError(
                ExtensionFailure(
                    reason=ErrorReason.WRITE_ERROR,
                    message=f"Extension process failed while writing: {exc}",
                    origin=ErrorOrigin.BRIDGE,
                ),
                task.index,
            ) from exc
        finally:
            worker.shutdown(force=not completed)
        logger.debug(
            "Write task %s finished: sent=%s received=%s",
            task.index,
            metrics.bytes_sent,
            metrics.bytes_received,
        )
        return message

    def _push_rows(self, channel: FrameChannel, task: WriteTask) -> Optional[Frame]:
        width = len(self._schema.names)
        for row_number, row in enumerate(task.rows):
            values = tuple(row)
            if len(values) != width:
                raise WriteError(
                    ExtensionFailure(
                        reason=ErrorReason.WRITE_ERROR,
                        message=(
                            f"Input row {row_number} has {len(values)} value(s) but the schema "
                            f"{self._schema.simple_string()} expects {width}"
                        ),
                        origin=ErrorOrigin.BRIDGE,
                    ),
                    task.index,
                )
            try:
                payload = encode(values)
            except Exception as exc:
                raise WriteError(
                    ExtensionFailure.from_exception(
                        ErrorReason.WRITE_ERROR,
                        exc,
                        origin=ErrorOrigin.BRIDGE,
                        message=f"Input row {row_number} cannot be serialized",
                    ),
                    task.index,
                ) from exc
            early = channel.send_unless_interrupted(FrameKind.ROW, payload)
            if early is not None:
                return early
        return channel.send_unless_interrupted(FrameKind.END)

    def _await_commit(
        self, channel: FrameChannel, task: WriteTask, frame: Optional[Frame]
    ) -> bytes:
        message: Optional[bytes] = None
        while True:
            if frame is None:
                frame = channel.receive()
            if frame.kind is FrameKind.COMMIT:
                message = frame.payload
            elif frame.kind is FrameKind.DONE:
                break
            elif frame.kind is FrameKind.ERROR:
                raise execution_error(decode(frame.payload), task.index)
            else:
                raise ChannelError(f"Unexpected {frame.kind.value} frame from writer")
            frame = None
        if message is None:
            raise ChannelError("Writer finished without a commit frame")
        return message


def _input_rows(channel: FrameChannel, names: Tuple[str, ...]) -> Iterator[Row]:
    while True:
        frame = channel.receive()
        if frame.kind is FrameKind.END:
            return
        if frame.kind is not FrameKind.ROW:
            raise ChannelError(f"Unexpected {frame.kind.value} frame while reading input rows")
        yield Row.from_values(names, decode(frame.payload))


def serve_write(inbound, outbound, log_level: str, poll_interval: float) -> None:
    """Worker entry point for one write task."""
    bootstrap(log_level)
    channel = child_channel(inbound, outbound, poll_interval)
    try:
        request: WriteRequest = receive_start(channel)
    except ChannelError:
        logger.warning("Driver went away before sending a write request")
        return
    try:
        writer = decode(request.writer)
    except Exception as exc:
        send_failure(
            channel, bridge_failure(ErrorReason.WRITE_ERROR, exc, "Unable to restore the writer")
        )
        return

    _set_task_context(TaskContext(partition_id=request.index))
    try:
        message = writer.write(_input_rows(channel, request.names))
    except ChannelError:
        logger.warning("Driver stopped feeding write task %s", request.index)
        return
    except Exception as exc:
        send_failure(channel, ExtensionFailure.from_exception(ErrorReason.WRITE_ERROR, exc))
        return
    finally:
        _set_task_context(None)

    if message is None:
        send_failure(
            channel,
            ExtensionFailure(
                reason=ErrorReason.WRITE_NO_COMMIT_MESSAGE,
                message=f"write() of task {request.index} finished without returning a commit message",
            ),
        )
        return
    if not isinstance(message, WriterCommitMessage):
        send_failure(
            channel,
            ExtensionFailure(
                reason=ErrorReason.WRITE_ERROR,
                message=(
                    "write() must return a WriterCommitMessage, "
                    f"got {type(message).__name__}"
                ),
                parameters={"actual": type(message).__name__},
            ),
        )
        return
    try:
        payload = encode(message)
    except Exception as exc:
        send_failure(
            channel,
            ExtensionFailure.from_exception(
                ErrorReason.WRITE_ERROR, exc, message="Commit message cannot be serialized"
            ),
        )
        return
    channel.send(FrameKind.COMMIT, payload)
    channel.send(FrameKind.DONE)


__all__ = ["WriteRequest", "WriteTask", "WriterBridge", "serve_write"]
