"""Error taxonomy shared by the driver and the extension runtime.

Failures are described by :class:`ExtensionFailure`, a plain dataclass that can
be pickled across the process boundary. Exceptions raised on the driver side
wrap one of these records so callers can inspect the reason, the origin and the
nested cause chain without parsing messages.
"""
from __future__ import annotations

import traceback as _traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional, Tuple


class ErrorReason(str, Enum):
    CREATE_ERROR = "CREATE_ERROR"
    SCHEMA_INVALID = "SCHEMA_INVALID"
    METHOD_NOT_IMPLEMENTED = "METHOD_NOT_IMPLEMENTED"
    TYPE_MISMATCH = "TYPE_MISMATCH"
    PARTITION_INVALID = "PARTITION_INVALID"
    READ_ERROR = "READ_ERROR"
    WRITE_ERROR = "WRITE_ERROR"
    WRITE_NO_COMMIT_MESSAGE = "WRITE_NO_COMMIT_MESSAGE"
    NOT_FOUND = "NOT_FOUND"
    UNSUPPORTED_SAVE_MODE = "UNSUPPORTED_SAVE_MODE"
    CANCELLED = "CANCELLED"


PLANNING_REASONS = frozenset(
    {
        ErrorReason.CREATE_ERROR,
        ErrorReason.SCHEMA_INVALID,
        ErrorReason.METHOD_NOT_IMPLEMENTED,
        ErrorReason.TYPE_MISMATCH,
        ErrorReason.PARTITION_INVALID,
    }
)


class ErrorOrigin(str, Enum):
    """Who failed: the bridge protocol itself or the user's extension code."""

    BRIDGE = "bridge"
    EXTENSION = "extension"


@dataclass(frozen=True)
class ExtensionFailure:
    """Picklable description of a failure, with an optional nested cause."""

    reason: ErrorReason
    message: str
    origin: ErrorOrigin = ErrorOrigin.EXTENSION
    exception_type: Optional[str] = None
    traceback: Optional[str] = None
    parameters: Mapping[str, str] = field(default_factory=dict)
    cause: Optional["ExtensionFailure"] = None

    @classmethod
    def from_exception(
        cls,
        reason: ErrorReason,
        exc: BaseException,
        origin: ErrorOrigin = ErrorOrigin.EXTENSION,
        message: Optional[str] = None,
        parameters: Optional[Mapping[str, str]] = None,
    ) -> "ExtensionFailure":
        text = str(exc) or type(exc).__name__
        return cls(
            reason=reason,
            message=f"{message}: {text}" if message else text,
            origin=origin,
            exception_type=f"{type(exc).__module__}.{type(exc).__qualname__}",
            traceback="".join(_traceback.format_exception(type(exc), exc, exc.__traceback__)),
            parameters=dict(parameters or {}),
        )

    def wrap(
        self,
        reason: ErrorReason,
        message: str,
        origin: Optional[ErrorOrigin] = None,
    ) -> "ExtensionFailure":
        """Return a new failure with ``self`` as its cause."""
        return ExtensionFailure(
            reason=reason,
            message=f"{message}: [{self.reason.value}] {self.message}",
            origin=origin or self.origin,
            exception_type=self.exception_type,
            parameters=dict(self.parameters),
            cause=self,
        )

    def reasons(self) -> Tuple[ErrorReason, ...]:
        chain = []
        current: Optional[ExtensionFailure] = self
        while current is not None:
            chain.append(current.reason)
            current = current.cause
        return tuple(chain)

    def render(self) -> str:
        rendered = f"[{self.reason.value}] {self.message}"
        if self.exception_type and self.origin is ErrorOrigin.EXTENSION:
            rendered = f"{rendered} ({self.exception_type})"
        return rendered


class DataSourceError(Exception):
    """Base class for every error raised by the bridge."""

    default_reason: ErrorReason = ErrorReason.CREATE_ERROR

    def __init__(self, failure: ExtensionFailure) -> None:
        self.failure = failure
        super().__init__(self._format(failure))

    def _format(self, failure: ExtensionFailure) -> str:
        return failure.render()

    @classmethod
    def create(
        cls,
        message: str,
        reason: Optional[ErrorReason] = None,
        origin: ErrorOrigin = ErrorOrigin.BRIDGE,
        parameters: Optional[Mapping[str, str]] = None,
    ) -> "DataSourceError":
        return cls(
            ExtensionFailure(
                reason=reason or cls.default_reason,
                message=message,
                origin=origin,
                parameters=dict(parameters or {}),
            )
        )

    @property
    def reason(self) -> ErrorReason:
        return self.failure.reason

    @property
    def reasons(self) -> Tuple[ErrorReason, ...]:
        return self.failure.reasons()

    @property
    def origin(self) -> ErrorOrigin:
        return self.failure.origin

    @property
    def parameters(self) -> Mapping[str, str]:
        return self.failure.parameters


class DataSourceNotFoundError(DataSourceError):
    default_reason = ErrorReason.NOT_FOUND


class PlanningError(DataSourceError):
    """Umbrella failure for every planning-phase reason.

    The specific sub-reason is available as ``reason``; ``reasons`` holds the
    whole chain, e.g. ``(CREATE_ERROR, PARTITION_INVALID)``.
    """

    def __init__(self, failure: ExtensionFailure, source_name: str = "") -> None:
        self.source_name = source_name
        super().__init__(failure)

    def _format(self, failure: ExtensionFailure) -> str:
        return f"Failed to plan data source '{self.source_name}': {failure.render()}"


class UnsupportedSaveModeError(DataSourceError):
    default_reason = ErrorReason.UNSUPPORTED_SAVE_MODE


class ExecutionError(DataSourceError):
    """Failure of a single read or write task."""

    def __init__(self, failure: ExtensionFailure, task_index: Optional[int] = None) -> None:
        self.task_index = task_index
        super().__init__(failure)

    def _format(self, failure: ExtensionFailure) -> str:
        prefix = "" if self.task_index is None else f"Task {self.task_index} failed: "
        return f"{prefix}{failure.render()}"


class ReadError(ExecutionError):
    default_reason = ErrorReason.READ_ERROR


class WriteError(ExecutionError):
    default_reason = ErrorReason.WRITE_ERROR


class WriteNoCommitMessageError(WriteError):
    default_reason = ErrorReason.WRITE_NO_COMMIT_MESSAGE


class TaskCancelledError(ExecutionError):
    default_reason = ErrorReason.CANCELLED


class ChannelError(Exception):
    """The row channel or its peer process broke the protocol."""


class ChannelTimeout(ChannelError):
    """No frame arrived before the caller's deadline."""


_EXECUTION_ERRORS = {
    ErrorReason.READ_ERROR: ReadError,
    ErrorReason.WRITE_ERROR: WriteError,
    ErrorReason.WRITE_NO_COMMIT_MESSAGE: WriteNoCommitMessageError,
    ErrorReason.CANCELLED: TaskCancelledError,
}


def execution_error(failure: ExtensionFailure, task_index: Optional[int] = None) -> ExecutionError:
    """Build the driver-side exception matching ``failure.reason``."""
    error_cls = _EXECUTION_ERRORS.get(failure.reason, ExecutionError)
    return error_cls(failure, task_index=task_index)


__all__ = [
    "ChannelError",
    "ChannelTimeout",
    "DataSourceError",
    "DataSourceNotFoundError",
    "ErrorOrigin",
    "ErrorReason",
    "ExecutionError",
    "ExtensionFailure",
    "PLANNING_REASONS",
    "PlanningError",
    "ReadError",
    "TaskCancelledError",
    "UnsupportedSaveModeError",
    "WriteError",
    "WriteNoCommitMessageError",
    "execution_error",
]
