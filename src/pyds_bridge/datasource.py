"""Base classes user code subclasses to implement a data source.

Query execution instantiates these classes inside the extension runtime only.
The ``pyds-bridge probe`` command is the one in-process caller, and it only
constructs the source and asks for its capabilities.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, Optional, Sequence, Tuple, Union

from .types import Row, StructType


class Capability(str, Enum):
    READER = "reader"
    WRITER = "writer"


@dataclass(frozen=True)
class CapabilitySet:
    """Answer to a capability query: reader, writer, both or neither."""

    capabilities: FrozenSet[Capability] = frozenset()

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    @property
    def variant(self) -> str:
        if not self.capabilities:
            return "neither"
        return "+".join(c.value for c in Capability if c in self.capabilities)


class InputPartition:
    """Descriptor of one slice of a scan; subclass to carry richer state."""

    def __init__(self, value: Any = None) -> None:
        self.value = value

    def __repr__(self) -> str:
        attributes = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({attributes})"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self) -> int:
        return hash(type(self))


class WriterCommitMessage:
    """Token a writer returns once its partition was written successfully."""

    def __repr__(self) -> str:
        attributes = ", ".join(f"{k}={v!r}" for k, v in vars(self).items())
        return f"{type(self).__name__}({attributes})"


class DataSourceReader:
    """Produces partitions at plan time and rows at execution time."""

    def partitions(self) -> Sequence[InputPartition]:
        """Return the descriptors to scan; an empty sequence means one unpartitioned read."""
        return []

    def read(self, partition: Optional[InputPartition]) -> Iterator[Union[Tuple, Row]]:
        """Yield rows for ``partition`` (``None`` for an unpartitioned read)."""
        raise NotImplementedError


class DataSourceWriter:
    """Consumes the rows of one partition and returns a commit message."""

    def write(self, iterator: Iterator[Row]) -> WriterCommitMessage:
        raise NotImplementedError

    def commit(self, messages: Sequence[WriterCommitMessage]) -> None:
        """Called once with every task's message after all tasks succeeded."""

    def abort(self, messages: Sequence[WriterCommitMessage]) -> None:
        """Called once after the job was aborted, with the discarded messages."""


class DataSource:
    """Entry point of a user data source."""

    def __init__(self, options: Dict[str, str]) -> None:
        self.options = options

    @classmethod
    def name(cls) -> str:
        return cls.__name__

    def schema(self) -> Union[StructType, str]:
        raise NotImplementedError

    def reader(self, schema: StructType) -> DataSourceReader:
        raise NotImplementedError

    def writer(self, schema: StructType, overwrite: bool) -> DataSourceWriter:
        raise NotImplementedError

    def capabilities(self) -> CapabilitySet:
        """Declared capabilities; by default whatever the subclass implements."""
        declared = set()
        if overrides(type(self), DataSource, "reader"):
            declared.add(Capability.READER)
        if overrides(type(self), DataSource, "writer"):
            declared.add(Capability.WRITER)
        return CapabilitySet(frozenset(declared))


def overrides(cls: type, base: type, method: str) -> bool:
    """True when ``cls`` provides its own implementation of ``base.method``."""
    implementation = getattr(cls, method, None)
    if implementation is None or not callable(implementation):
        return False
    return implementation is not getattr(base, method, None)


def probe_capabilities(source: DataSource) -> CapabilitySet:
    """Capabilities the source both declares and actually implements."""
    declared = source.capabilities()
    implemented = set()
    if overrides(type(source), DataSource, "reader"):
        implemented.add(Capability.READER)
    if overrides(type(source), DataSource, "writer"):
        implemented.add(Capability.WRITER)
    return CapabilitySet(frozenset(declared.capabilities & implemented))


def declares_schema(source: DataSource) -> bool:
    return overrides(type(source), DataSource, "schema")


@dataclass(frozen=True)
class TaskContext:
    """Identity of the task a reader or writer is currently running in."""

    partition_id: int
    attempt_number: int = 0

    @staticmethod
    def get() -> Optional["TaskContext"]:
        return getattr(_task_local, "context", None)


_task_local = threading.local()


def _set_task_context(context: Optional[TaskContext]) -> None:
    _task_local.context = context


__all__ = [
    "Capability",
    "CapabilitySet",
    "DataSource",
    "DataSourceReader",
    "DataSourceWriter",
    "InputPartition",
    "TaskContext",
    "WriterCommitMessage",
    "declares_schema",
    "overrides",
    "probe_capabilities",
]
