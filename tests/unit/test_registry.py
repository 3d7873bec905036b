"""Unit tests for the data source registry."""
from __future__ import annotations

import threading
from pathlib import Path

import pytest

from pyds_bridge.errors import DataSourceNotFoundError, ErrorReason
from pyds_bridge.registry import DataSourceDefinition, DataSourceRegistry

import datasources


def test_register_and_resolve_case_insensitively() -> None:
    registry = DataSourceRegistry()
    definition = DataSourceDefinition.from_class(datasources.SimpleDataSource)

    registry.register("SimpleDataSource", definition)

    assert registry.exists("simpledatasource")
    assert registry.resolve("SIMPLEDATASOURCE").definition is definition
    assert len(registry) == 1


def test_reregistering_replaces_previous_definition() -> None:
    registry = DataSourceRegistry()
    first = registry.register("src", DataSourceDefinition.from_class(datasources.StringSchemaDataSource))
    second = registry.register("src", DataSourceDefinition.from_class(datasources.ReplacementDataSource))

    resolved = registry.resolve("src")

    assert resolved is second
    assert resolved is not first
    assert resolved.definition.load() is datasources.ReplacementDataSource
    assert len(registry) == 1


def test_resolve_unknown_name() -> None:
    registry = DataSourceRegistry()

    with pytest.raises(DataSourceNotFoundError) as excinfo:
        registry.resolve("nope")

    assert excinfo.value.reason is ErrorReason.NOT_FOUND
    assert excinfo.value.parameters == {"name": "nope"}


def test_register_rejects_blank_name() -> None:
    with pytest.raises(ValueError):
        DataSourceRegistry().register("  ", DataSourceDefinition.from_entry_point("datasources:SimpleDataSource"))


def test_clear_and_snapshot() -> None:
    registry = DataSourceRegistry()
    registry.register("a", DataSourceDefinition.from_entry_point("datasources:SimpleDataSource"))
    snapshot = registry.snapshot()

    registry.clear()

    assert "a" in snapshot
    assert not registry.exists("a")
    assert len(registry) == 0


def test_concurrent_registrations_leave_one_complete_entry() -> None:
    registry = DataSourceRegistry()
    definitions = [
        DataSourceDefinition.from_entry_point(f"datasources:SimpleDataSource{i}") for i in range(20)
    ]
    barrier = threading.Barrier(len(definitions))

    def register(definition: DataSourceDefinition) -> None:
        barrier.wait()
        registry.register("shared", definition)

    threads = [threading.Thread(target=register, args=(d,)) for d in definitions]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(registry) == 1
    assert registry.resolve("shared").definition in definitions


def test_entry_point_definitions_load_modules_and_files(tmp_path: Path) -> None:
    assert DataSourceDefinition.from_entry_point("datasources:RangeDataSource").load() is datasources.RangeDataSource

    script = tmp_path / "custom_source.py"
    script.write_text(
        "from pyds_bridge.datasource import DataSource\n"
        "class FileSource(DataSource):\n"
        "    pass\n"
    )
    loaded = DataSourceDefinition.from_entry_point(f"{script}:FileSource").load()
    assert loaded.__name__ == "FileSource"


def test_entry_point_requires_attribute() -> None:
    with pytest.raises(ValueError):
        DataSourceDefinition.from_entry_point("datasources")
