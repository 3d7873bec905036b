"""Per-partition streaming execution of read tasks."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional, Sequence, Tuple

from .channel import FrameKind, decode, encode
from .datasource import TaskContext, _set_task_context
from .errors import (
    ChannelError,
    ErrorOrigin,
    ErrorReason,
    ExtensionFailure,
    ReadError,
    execution_error,
)
from .metrics import TaskMetrics
from .planner import SourceInstanceHandle
from .runtime import ExtensionRuntime
from .types import Row, StructType
from .worker import bootstrap, bridge_failure, child_channel, receive_start, send_failure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadTask:
    """One partition of a scan.

    ``descriptor`` is ``None`` when the reader reported no partitions; the
    extension then receives ``None`` instead of an :class:`InputPartition`.
    """

    index: int
    descriptor: Optional[bytes]
    handle: SourceInstanceHandle = field(repr=False)

    @property
    def has_descriptor(self) -> bool:
        return self.descriptor is not None


@dataclass(frozen=True)
class ReadRequest:
    index: int
    descriptor: Optional[bytes]
    reader: bytes


class PartitionReaderBridge:
    """Streams the rows of a read task out of its own worker process."""

    def __init__(
        self,
        runtime: ExtensionRuntime,
        schema: StructType,
        cancelled: Optional[threading.Event] = None,
    ) -> None:
        self._runtime = runtime
        self._schema = schema
        self._cancelled = cancelled

    def execute(self, task: ReadTask, metrics: Optional[TaskMetrics] = None) -> Iterator[Row]:
        """Lazily yield validated rows; the worker only runs ahead by the channel capacity."""
        metrics = metrics if metrics is not None else TaskMetrics()
        worker = self._runtime.start(
            serve_read,
            name=f"read-{task.handle.source_name}-{task.index}",
            metrics=metrics,
            cancelled=self._cancelled,
        )
        completed = False
        row_count = 0
        try:
            try:
                request = ReadRequest(task.index, task.descriptor, task.handle.payload)
                worker.channel.send(FrameKind.START, encode(request))
                while True:
                    frame = worker.channel.receive()
                    if frame.kind is FrameKind.ROW:
                        names, values = self._decode_row(task, row_count, frame.payload)
                        row = self._validate(task, row_count, names, values)
                        row_count += 1
                        yield row
                    elif frame.kind is FrameKind.END:
                        break
                    elif frame.kind is FrameKind.ERROR:
                        raise execution_error(decode(frame.payload), task.index)
                    else:
                        raise ChannelError(f"Unexpected {frame.kind.value} frame from reader")
            except ChannelError as exc:
                raise ReadError(
                    ExtensionFailure(
                        reason=ErrorReason.READ_ERROR,
                        message=f"Extension process failed while reading: {exc}",
                        origin=ErrorOrigin.BRIDGE,
                    ),
                    task.index,
                ) from exc
            completed = True
            logger.debug(
                "Read task %s finished: rows=%s sent=%s received=%s",
                task.index,
                row_count,
                metrics.bytes_sent,
                metrics.bytes_received,
            )
        finally:
            worker.shutdown(force=not completed)

    def _decode_row(
        self, task: ReadTask, row_number: int, payload: bytes
    ) -> Tuple[Optional[Sequence[str]], Tuple[Any, ...]]:
        try:
            names, values = decode(payload)
            values = tuple(values)
        except Exception as exc:
            raise ReadError(
                ExtensionFailure.from_exception(
                    ErrorReason.READ_ERROR,
                    exc,
                    origin=ErrorOrigin.BRIDGE,
                    message=f"Row {row_number} cannot be decoded",
                ),
                task.index,
            ) from exc
        return names, values

    def _validate(
        self,
        task: ReadTask,
        row_number: int,
        names: Optional[Sequence[str]],
        values: Tuple[Any, ...],
    ) -> Row:
        expected = self._schema.names
        if len(values) != len(expected):
            raise ReadError(
                ExtensionFailure(
                    reason=ErrorReason.READ_ERROR,
                    message=(
                        f"Row {row_number} has {len(values)} value(s) but the schema "
                        f"{self._schema.simple_string()} expects {len(expected)}"
                    ),
                    parameters={"expected": str(len(expected)), "actual": str(len(values))},
                ),
                task.index,
            )
        if names is not None and list(names) != expected:
            raise ReadError(
                ExtensionFailure(
                    reason=ErrorReason.READ_ERROR,
                    message=(
                        f"Row {row_number} has fields {list(names)} but the schema "
                        f"expects {expected}"
                    ),
                ),
                task.index,
            )
        return Row.from_values(expected, values)


class _InvalidRow(Exception):
    pass


def _row_payload(produced: Any) -> Tuple[Optional[Tuple[str, ...]], Tuple[Any, ...]]:
    if isinstance(produced, Row):
        return (produced.__fields__ or None), tuple(produced)
    if isinstance(produced, (tuple, list)):
        return None, tuple(produced)
    raise _InvalidRow(f"read() must yield tuples, lists or Rows, got {type(produced).__name__}")


def serve_read(inbound, outbound, log_level: str, poll_interval: float) -> None:
    """Worker entry point for one read task."""
    bootstrap(log_level)
    channel = child_channel(inbound, outbound, poll_interval)
    try:
        request: ReadRequest = receive_start(channel)
    except ChannelError:
        logger.warning("Driver went away before sending a read request")
        return
    try:
        reader = decode(request.reader)
        partition = decode(request.descriptor) if request.descriptor is not None else None
    except Exception as exc:
        send_failure(
            channel, bridge_failure(ErrorReason.READ_ERROR, exc, "Unable to restore the reader")
        )
        return

    _set_task_context(TaskContext(partition_id=request.index))
    try:
        for produced in reader.read(partition):
            channel.send(FrameKind.ROW, encode(_row_payload(produced)))
    except ChannelError:
        logger.warning("Driver stopped consuming read task %s", request.index)
        return
    except _InvalidRow as exc:
        send_failure(channel, ExtensionFailure(reason=ErrorReason.READ_ERROR, message=str(exc)))
        return
    except Exception as exc:
        send_failure(channel, ExtensionFailure.from_exception(ErrorReason.READ_ERROR, exc))
        return
    finally:
        _set_task_context(None)
    channel.send(FrameKind.END)


__all__ = ["PartitionReaderBridge", "ReadRequest", "ReadTask", "serve_read"]
