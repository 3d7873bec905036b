"""Process-scoped registry of extension data source definitions."""
from __future__ import annotations

import importlib
import importlib.util
import logging
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping, Optional

import cloudpickle

from .errors import DataSourceNotFoundError, ErrorOrigin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataSourceDefinition:
    """Opaque handler blob plus the entry point it was built from.

    ``entry_point`` is either ``"package.module:Class"`` or
    ``"path/to/file.py:Class"``. When ``payload`` is set it holds the class
    serialized with cloudpickle and takes precedence over the entry point.
    """

    entry_point: str
    payload: Optional[bytes] = field(default=None, repr=False)

    @classmethod
    def from_class(cls, data_source_cls: type) -> "DataSourceDefinition":
        entry_point = f"{data_source_cls.__module__}:{data_source_cls.__qualname__}"
        return cls(entry_point=entry_point, payload=cloudpickle.dumps(data_source_cls))

    @classmethod
    def from_entry_point(cls, entry_point: str) -> "DataSourceDefinition":
        if ":" not in entry_point:
            raise ValueError(
                f"Entry point {entry_point!r} must look like 'module:Class' or 'file.py:Class'"
            )
        return cls(entry_point=entry_point)

    def load(self) -> type:
        """Materialize the handler class; only called inside the extension runtime."""
        if self.payload is not None:
            return cloudpickle.loads(self.payload)
        target, attribute = self.entry_point.rsplit(":", 1)
        if target.endswith(".py"):
            spec = importlib.util.spec_from_file_location("__datasource__", target)
            if spec is None or spec.loader is None:
                raise ImportError(f"Cannot load data source module from {target}")
            module = importlib.util.module_from_spec(spec)
            sys.modules["__datasource__"] = module
            spec.loader.exec_module(module)
            # workers that never imported the file restore its objects by value
            cloudpickle.register_pickle_by_value(module)
        else:
            module = importlib.import_module(target)
        obj = module
        for part in attribute.split("."):
            obj = getattr(obj, part)
        return obj


@dataclass(frozen=True)
class Registration:
    name: str
    definition: DataSourceDefinition
    registered_at: datetime


def normalize_name(name: str) -> str:
    return name.strip().lower()


class DataSourceRegistry:
    """Thread-safe name -> definition map; last completed registration wins.

    Entries are immutable and replaced wholesale under a lock, so readers see
    either the previous or the new registration, never a mix. The registry
    lives as long as its owning session and is emptied by :meth:`clear`.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, Registration] = {}

    def register(self, name: str, definition: DataSourceDefinition) -> Registration:
        if not name or not name.strip():
            raise ValueError("Data source name must be a non-empty string")
        registration = Registration(
            name=name,
            definition=definition,
            registered_at=datetime.now(timezone.utc),
        )
        key = normalize_name(name)
        with self._lock:
            replaced = key in self._entries
            self._entries[key] = registration
        if replaced:
            logger.info("Replaced data source %s with %s", name, definition.entry_point)
        else:
            logger.info("Registered data source %s from %s", name, definition.entry_point)
        return registration

    def resolve(self, name: str) -> Registration:
        with self._lock:
            registration = self._entries.get(normalize_name(name))
        if registration is None:
            raise DataSourceNotFoundError.create(
                f"Data source '{name}' is not registered",
                origin=ErrorOrigin.BRIDGE,
                parameters={"name": name},
            )
        return registration

    def exists(self, name: str) -> bool:
        with self._lock:
            return normalize_name(name) in self._entries

    def snapshot(self) -> Mapping[str, Registration]:
        with self._lock:
            return MappingProxyType(dict(self._entries))

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.debug("Cleared %s data source registration(s)", count)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = [
    "DataSourceDefinition",
    "DataSourceRegistry",
    "Registration",
    "normalize_name",
]
