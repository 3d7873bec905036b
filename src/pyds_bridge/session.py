"""Thin host engine surface: sessions, data frames and read/write builders."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .commit import ExtensionCommitHook
from .config import BridgeConfig, ConfigLoader
from .errors import ErrorOrigin, UnsupportedSaveModeError
from .metrics import OperatorMetrics
from .planner import Mode, PlannerRunner
from .registry import DataSourceDefinition, DataSourceRegistry, Registration
from .runtime import ExtensionRuntime
from .table import ExtensionTable, ScanExec, TaskScheduler, WriteExec
from .types import Row, StructType, to_struct_type

logger = logging.getLogger(__name__)

SAVE_MODES = ("append", "overwrite", "ignore", "error", "errorifexists")
EXTENSION_SAVE_MODES = ("append", "overwrite")

_MODE_DISPLAY = {
    "append": "Append",
    "overwrite": "Overwrite",
    "ignore": "Ignore",
    "error": "ErrorIfExists",
    "errorifexists": "ErrorIfExists",
}


class LocalRelation:
    """In-memory rows split into contiguous partitions."""

    def __init__(self, rows: Iterable[Sequence[Any]], schema: StructType, num_partitions: int = 1) -> None:
        if num_partitions < 1:
            raise ValueError("num_partitions must be at least 1")
        names = schema.names
        self.schema = schema
        self.num_partitions = num_partitions
        self._rows = [Row.from_values(names, tuple(row)) for row in rows]

    def partitions(self) -> List[List[Row]]:
        total = len(self._rows)
        size, extra = divmod(total, self.num_partitions)
        slices: List[List[Row]] = []
        start = 0
        for index in range(self.num_partitions):
            end = start + size + (1 if index < extra else 0)
            slices.append(self._rows[start:end])
            start = end
        return slices


class DataFrame:
    def __init__(self, session: "Session", relation: Union[ExtensionTable, LocalRelation]) -> None:
        self._session = session
        self._relation = relation
        self._metrics: Optional[OperatorMetrics] = None

    @property
    def schema(self) -> StructType:
        return self._relation.schema

    @property
    def num_partitions(self) -> int:
        return self._relation.num_partitions

    @property
    def metrics(self) -> Optional[OperatorMetrics]:
        """Byte counters of the most recent scan, ``None`` before the first one."""
        return self._metrics

    def partitions(self) -> List[List[Row]]:
        if isinstance(self._relation, LocalRelation):
            return self._relation.partitions()
        scan = ScanExec(self._relation, self._session.runtime, self._session.scheduler)
        try:
            return scan.execute_partitions()
        finally:
            self._metrics = scan.metrics

    def collect(self) -> List[Row]:
        return [row for partition in self.partitions() for row in partition]

    def count(self) -> int:
        return len(self.collect())

    @property
    def write(self) -> "DataFrameWriter":
        return DataFrameWriter(self._session, self)

    def __repr__(self) -> str:
        return f"DataFrame[{self.schema.simple_string()}]"


class DataSourceRegistration:
    """``session.data_source``: register and look up extension data sources."""

    def __init__(self, registry: DataSourceRegistry) -> None:
        self._registry = registry

    def register_python(
        self, name: str, definition: Union[DataSourceDefinition, type, str]
    ) -> Registration:
        if isinstance(definition, type):
            definition = DataSourceDefinition.from_class(definition)
        elif isinstance(definition, str):
            definition = DataSourceDefinition.from_entry_point(definition)
        return self._registry.register(name, definition)

    def data_source_exists(self, name: str) -> bool:
        return self._registry.exists(name)


class DataFrameReader:
    def __init__(self, session: "Session") -> None:
        self._session = session
        self._format: Optional[str] = None
        self._schema: Any = None
        self._options: Dict[str, str] = {}

    def format(self, name: str) -> "DataFrameReader":
        self._format = name
        return self

    def schema(self, schema: Union[str, StructType]) -> "DataFrameReader":
        self._schema = schema
        return self

    def option(self, key: str, value: Any) -> "DataFrameReader":
        self._options[key] = _option_value(value)
        return self

    def options(self, **options: Any) -> "DataFrameReader":
        for key, value in options.items():
            self.option(key, value)
        return self

    def load(self, *paths: str) -> DataFrame:
        if self._format is None:
            raise ValueError("A data source format is required; call format() first")
        options = dict(self._options)
        if len(paths) == 1:
            options["path"] = paths[0]
        elif len(paths) > 1:
            options["paths"] = json.dumps(list(paths))
        registration = self._session.registry.resolve(self._format)
        plan = self._session.planner.plan(
            registration, options, Mode.READ, declared_schema=self._schema
        )
        return DataFrame(self._session, ExtensionTable.from_session(plan))


class DataFrameWriter:
    def __init__(self, session: "Session", df: DataFrame) -> None:
        self._session = session
        self._df = df
        self._format: Optional[str] = None
        self._mode = "errorifexists"
        self._options: Dict[str, str] = {}
        self.metrics: Optional[OperatorMetrics] = None

    def format(self, name: str) -> "DataFrameWriter":
        self._format = name
        return self

    def mode(self, save_mode: str) -> "DataFrameWriter":
        normalized = save_mode.strip().lower()
        if normalized not in SAVE_MODES:
            raise ValueError(
                f"Unknown save mode {save_mode!r}; accepted: {', '.join(SAVE_MODES)}"
            )
        self._mode = normalized
        return self

    def option(self, key: str, value: Any) -> "DataFrameWriter":
        self._options[key] = _option_value(value)
        return self

    def options(self, **options: Any) -> "DataFrameWriter":
        for key, value in options.items():
            self.option(key, value)
        return self

    def save(self, path: Optional[str] = None) -> None:
        if self._format is None:
            raise ValueError("A data source format is required; call format() first")
        registration = self._session.registry.resolve(self._format)
        if self._mode not in EXTENSION_SAVE_MODES:
            raise UnsupportedSaveModeError.create(
                f"Data source {registration.name} cannot be written with "
                f"{_MODE_DISPLAY[self._mode]} mode, please use Append or Overwrite modes instead.",
                origin=ErrorOrigin.BRIDGE,
                parameters={"source": registration.name, "mode": self._mode},
            )
        options = dict(self._options)
        if path is not None:
            options["path"] = path
        plan = self._session.planner.plan(
            registration,
            options,
            Mode.WRITE,
            declared_schema=self._df.schema,
            overwrite=self._mode == "overwrite",
        )
        partitions = self._df.partitions()
        hook = ExtensionCommitHook(self._session.runtime, plan.handle)
        operator = WriteExec(plan, self._session.runtime, self._session.scheduler, hook)
        try:
            operator.execute(partitions)
        finally:
            self.metrics = operator.metrics


class Session:
    """Owns the registry, the extension runtime and the schedulers of one query session."""

    def __init__(self, config: Optional[BridgeConfig] = None) -> None:
        self.config = config or ConfigLoader().model
        self.registry = DataSourceRegistry()
        self.runtime = ExtensionRuntime(self.config.worker)
        self.planner = PlannerRunner(self.runtime, self.config.planner)
        self.scheduler = TaskScheduler(self.config.scheduler.max_parallel_tasks)
        self.data_source = DataSourceRegistration(self.registry)

    @property
    def read(self) -> DataFrameReader:
        return DataFrameReader(self)

    def create_dataframe(
        self,
        rows: Iterable[Sequence[Any]],
        schema: Union[str, StructType],
        num_partitions: int = 1,
    ) -> DataFrame:
        return DataFrame(self, LocalRelation(rows, to_struct_type(schema), num_partitions))

    def close(self) -> None:
        self.registry.clear()
        logger.debug("Session closed")

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


def _option_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


__all__ = [
    "DataFrame",
    "DataFrameReader",
    "DataFrameWriter",
    "DataSourceRegistration",
    "LocalRelation",
    "Session",
]
