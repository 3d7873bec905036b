"""Plan a scan or write with a single round-trip to the extension runtime.

The driver sends a :class:`PlanRequest` to a fresh worker, which instantiates
the data source, resolves the schema, probes the reader or writer capability
and, for reads, asks for partitions. The worker answers with a
:class:`PlanSession` or with the failure of the first step that went wrong.
"""
from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

import cloudpickle

from .channel import FrameKind, decode, encode
from .config import PlannerConfig
from .datasource import (
    Capability,
    DataSource,
    DataSourceReader,
    DataSourceWriter,
    InputPartition,
    declares_schema,
    overrides,
    probe_capabilities,
)
from .errors import (
    ChannelError,
    ChannelTimeout,
    ErrorOrigin,
    ErrorReason,
    ExtensionFailure,
    PlanningError,
)
from .registry import DataSourceDefinition, Registration
from .runtime import ExtensionRuntime
from .types import SchemaNotStructError, SchemaParseError, StructType, to_struct_type
from .worker import bootstrap, bridge_failure, child_channel, receive_start, send_failure

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class SourceInstanceHandle:
    """Opaque reference to the planned reader or writer, valid for one query."""

    handle_id: str
    source_name: str
    mode: Mode
    payload: bytes = field(repr=False)


@dataclass(frozen=True)
class PlanRequest:
    source_name: str
    definition: DataSourceDefinition
    options: Mapping[str, str]
    mode: Mode
    declared_schema: Optional[StructType] = None
    overwrite: bool = False


@dataclass(frozen=True)
class PlanSession:
    """Everything planning produced; discarded once the physical plan is fixed."""

    source_name: str
    mode: Mode
    schema: StructType
    options: Mapping[str, str]
    partitions: Tuple[bytes, ...]
    handle: SourceInstanceHandle


class PlannerRunner:
    """Driver side of the planning round-trip."""

    def __init__(self, runtime: ExtensionRuntime, config: PlannerConfig | None = None) -> None:
        self._runtime = runtime
        self._config = config or PlannerConfig()

    def plan(
        self,
        registration: Registration,
        options: Mapping[str, str],
        mode: Mode,
        declared_schema: Any = None,
        overwrite: bool = False,
    ) -> PlanSession:
        name = registration.name
        schema = None
        if declared_schema is not None:
            schema = validate_schema(name, declared_schema, origin=ErrorOrigin.BRIDGE)
        request = PlanRequest(
            source_name=name,
            definition=registration.definition,
            options=dict(options),
            mode=mode,
            declared_schema=schema,
            overwrite=overwrite,
        )
        timeout = self._config.timeout_seconds
        deadline = time.monotonic() + timeout
        logger.info("Planning %s of data source %s", mode.value, name)
        with self._runtime.start(serve_plan, name=f"plan-{name}") as worker:
            try:
                worker.channel.send(FrameKind.START, encode(request), timeout=timeout)
                frame = worker.channel.receive(timeout=max(deadline - time.monotonic(), 0.0))
            except ChannelTimeout as exc:
                raise PlanningError(
                    ExtensionFailure(
                        reason=ErrorReason.CREATE_ERROR,
                        message=f"Planning did not finish within {timeout} seconds",
                        origin=ErrorOrigin.BRIDGE,
                        parameters={"timeoutSeconds": str(timeout)},
                    ),
                    name,
                ) from exc
            except ChannelError as exc:
                raise PlanningError(
                    ExtensionFailure(
                        reason=ErrorReason.CREATE_ERROR,
                        message=f"Extension process failed while planning: {exc}",
                        origin=ErrorOrigin.BRIDGE,
                    ),
                    name,
                ) from exc
        if frame.kind is FrameKind.ERROR:
            failure = decode(frame.payload)
            logger.info("Planning %s failed: %s", name, failure.render())
            raise PlanningError(failure, name)
        if frame.kind is not FrameKind.RESULT:
            raise PlanningError(
                ExtensionFailure(
                    reason=ErrorReason.CREATE_ERROR,
                    message=f"Unexpected {frame.kind.value} frame from planner",
                    origin=ErrorOrigin.BRIDGE,
                ),
                name,
            )
        session: PlanSession = decode(frame.payload)
        logger.info(
            "Planned %s: schema=%s partitions=%s handle=%s",
            name,
            session.schema.simple_string(),
            len(session.partitions),
            session.handle.handle_id,
        )
        return session


def validate_schema(
    source_name: str, value: Any, origin: ErrorOrigin = ErrorOrigin.EXTENSION
) -> StructType:
    try:
        return to_struct_type(value)
    except SchemaNotStructError as exc:
        raise PlanningError(
            ExtensionFailure(
                reason=ErrorReason.SCHEMA_INVALID,
                message=str(exc),
                origin=origin,
                parameters=exc.parameters,
            ),
            source_name,
        ) from exc
    except SchemaParseError as exc:
        raise PlanningError(
            ExtensionFailure(
                reason=ErrorReason.SCHEMA_INVALID,
                message=str(exc),
                origin=origin,
                parameters={"inputSchema": exc.text},
            ),
            source_name,
        ) from exc


def serve_plan(inbound, outbound, log_level: str, poll_interval: float) -> None:
    """Worker entry point for the planning round-trip."""
    bootstrap(log_level)
    channel = child_channel(inbound, outbound, poll_interval)
    try:
        request: PlanRequest = receive_start(channel)
    except ChannelError:
        logger.warning("Driver went away before sending a plan request")
        return
    try:
        session = plan_data_source(request)
        payload = encode(session)
    except PlanningError as exc:
        send_failure(channel, exc.failure)
        return
    except Exception as exc:
        send_failure(
            channel,
            bridge_failure(ErrorReason.CREATE_ERROR, exc, "Planning failed in the extension runtime"),
        )
        return
    channel.send(FrameKind.RESULT, payload)
    channel.send(FrameKind.DONE)


def plan_data_source(request: PlanRequest) -> PlanSession:
    """Run every planning step; only called inside the extension runtime."""
    name = request.source_name
    source = _instantiate(request)
    schema = _resolve_schema(source, request)
    instance = _create_capability_object(source, schema, request)
    partitions: Tuple[bytes, ...] = ()
    if request.mode is Mode.READ:
        partitions = _plan_partitions(name, instance)
    try:
        payload = cloudpickle.dumps(instance)
    except Exception as exc:
        raise PlanningError(
            ExtensionFailure.from_exception(
                ErrorReason.CREATE_ERROR,
                exc,
                message=f"The {request.mode.value} object of {name} cannot be serialized",
            ),
            name,
        ) from exc
    handle = SourceInstanceHandle(
        handle_id=uuid.uuid4().hex,
        source_name=name,
        mode=request.mode,
        payload=payload,
    )
    return PlanSession(
        source_name=name,
        mode=request.mode,
        schema=schema,
        options=dict(request.options),
        partitions=partitions,
        handle=handle,
    )


def _instantiate(request: PlanRequest) -> DataSource:
    name = request.source_name
    entry_point = request.definition.entry_point
    try:
        source_cls = request.definition.load()
    except Exception as exc:
        raise PlanningError(
            ExtensionFailure.from_exception(
                ErrorReason.CREATE_ERROR, exc, message=f"Unable to load {entry_point}"
            ),
            name,
        ) from exc
    if not (isinstance(source_cls, type) and issubclass(source_cls, DataSource)):
        actual = source_cls.__name__ if isinstance(source_cls, type) else type(source_cls).__name__
        raise PlanningError(
            ExtensionFailure(
                reason=ErrorReason.TYPE_MISMATCH,
                message=f"{entry_point} must be a subclass of DataSource, got {actual}",
                parameters={"expected": "DataSource", "actual": actual},
            ),
            name,
        )
    try:
        return source_cls(dict(request.options))
    except Exception as exc:
        raise PlanningError(
            ExtensionFailure.from_exception(
                ErrorReason.CREATE_ERROR, exc, message=f"Unable to create data source {name}"
            ),
            name,
        ) from exc


def _resolve_schema(source: DataSource, request: PlanRequest) -> StructType:
    name = request.source_name
    if request.mode is Mode.READ and declares_schema(source):
        try:
            declared = source.schema()
        except Exception as exc:
            raise PlanningError(
                ExtensionFailure.from_exception(
                    ErrorReason.CREATE_ERROR, exc, message="Unable to get the data source schema"
                ),
                name,
            ) from exc
        schema = validate_schema(name, declared)
        if request.declared_schema is not None and request.declared_schema != schema:
            logger.warning(
                "Data source %s declares schema %s; ignoring caller schema %s",
                name,
                schema.simple_string(),
                request.declared_schema.simple_string(),
            )
        return schema
    if request.declared_schema is not None:
        return request.declared_schema
    raise PlanningError(
        ExtensionFailure(
            reason=ErrorReason.METHOD_NOT_IMPLEMENTED,
            message=f"Data source {name} does not implement schema() and no schema was provided",
            parameters={"method": "schema"},
        ),
        name,
    )


def _create_capability_object(source: DataSource, schema: StructType, request: PlanRequest):
    name = request.source_name
    required = Capability.READER if request.mode is Mode.READ else Capability.WRITER
    try:
        capabilities = probe_capabilities(source)
    except Exception as exc:
        raise PlanningError(
            ExtensionFailure.from_exception(
                ErrorReason.CREATE_ERROR, exc, message="Unable to query data source capabilities"
            ),
            name,
        ) from exc
    if not capabilities.supports(required):
        raise PlanningError(
            ExtensionFailure(
                reason=ErrorReason.METHOD_NOT_IMPLEMENTED,
                message=(
                    f"Data source {name} does not implement {required.value}() "
                    f"(capabilities: {capabilities.variant})"
                ),
                parameters={"method": required.value, "capabilities": capabilities.variant},
            ),
            name,
        )
    try:
        if required is Capability.READER:
            instance = source.reader(schema)
        else:
            instance = source.writer(schema, request.overwrite)
    except Exception as exc:
        raise PlanningError(
            ExtensionFailure.from_exception(
                ErrorReason.CREATE_ERROR,
                exc,
                message=f"Unable to create the data source {required.value}",
            ),
            name,
        ) from exc

    base, method = (
        (DataSourceReader, "read") if required is Capability.READER else (DataSourceWriter, "write")
    )
    if not isinstance(instance, base):
        raise PlanningError(
            ExtensionFailure(
                reason=ErrorReason.TYPE_MISMATCH,
                message=(
                    f"{required.value}() must return a {base.__name__}, "
                    f"got {type(instance).__name__}"
                ),
                parameters={"expected": base.__name__, "actual": type(instance).__name__},
            ),
            name,
        )
    if not overrides(type(instance), base, method):
        raise PlanningError(
            ExtensionFailure(
                reason=ErrorReason.TYPE_MISMATCH,
                message=f"{type(instance).__name__} does not implement {method}()",
                parameters={"expected": f"{base.__name__}.{method}", "actual": type(instance).__name__},
            ),
            name,
        )
    return instance


def _plan_partitions(name: str, reader: DataSourceReader) -> Tuple[bytes, ...]:
    if not overrides(type(reader), DataSourceReader, "partitions"):
        return ()
    try:
        partitions = reader.partitions()
    except Exception as exc:
        failure = ExtensionFailure.from_exception(
            ErrorReason.PARTITION_INVALID, exc, message="partitions() raised"
        )
        raise _partition_error(name, failure) from exc

    if isinstance(partitions, (str, bytes)) or not isinstance(partitions, SequenceABC):
        raise _partition_error(
            name,
            ExtensionFailure(
                reason=ErrorReason.PARTITION_INVALID,
                message=(
                    "partitions() must return a list of InputPartition, "
                    f"got {type(partitions).__name__}"
                ),
                parameters={"actual": type(partitions).__name__},
            ),
        )
    encoded = []
    for index, partition in enumerate(partitions):
        if not isinstance(partition, InputPartition):
            raise _partition_error(
                name,
                ExtensionFailure(
                    reason=ErrorReason.PARTITION_INVALID,
                    message=(
                        f"partitions() element {index} must be an InputPartition, "
                        f"got {type(partition).__name__}"
                    ),
                    parameters={"index": str(index), "actual": type(partition).__name__},
                ),
            )
        try:
            encoded.append(cloudpickle.dumps(partition))
        except Exception as exc:
            failure = ExtensionFailure.from_exception(
                ErrorReason.PARTITION_INVALID,
                exc,
                message=f"Partition {index} cannot be serialized",
            )
            raise _partition_error(name, failure) from exc
    return tuple(encoded)


def _partition_error(name: str, failure: ExtensionFailure) -> PlanningError:
    return PlanningError(
        failure.wrap(ErrorReason.CREATE_ERROR, "Unable to create the data source reader"),
        name,
    )


__all__ = [
    "Mode",
    "PlanRequest",
    "PlanSession",
    "PlannerRunner",
    "SourceInstanceHandle",
    "plan_data_source",
    "serve_plan",
    "validate_schema",
]
