"""Unit tests for data source capability probing."""
from __future__ import annotations

import pytest

from pyds_bridge.datasource import (
    Capability,
    DataSource,
    DataSourceReader,
    InputPartition,
    TaskContext,
    declares_schema,
    probe_capabilities,
)

import datasources


@pytest.mark.parametrize(
    "source_cls, variant",
    [
        (datasources.EmptyDataSource, "neither"),
        (datasources.SimpleDataSource, "reader"),
        (datasources.JsonLinesDataSource, "writer"),
        (datasources.ReadWriteDataSource, "reader+writer"),
        (datasources.ReaderOnlyDeclaredDataSource, "reader"),
    ],
)
def test_probe_reports_implemented_and_declared_capabilities(source_cls, variant) -> None:
    capabilities = probe_capabilities(source_cls({}))

    assert capabilities.variant == variant


def test_probe_never_calls_the_capability_methods() -> None:
    class Exploding(DataSource):
        def reader(self, schema):
            raise AssertionError("reader() must not be called while probing")

    capabilities = probe_capabilities(Exploding({}))

    assert capabilities.supports(Capability.READER)
    assert not capabilities.supports(Capability.WRITER)


def test_declares_schema() -> None:
    assert declares_schema(datasources.StringSchemaDataSource({}))
    assert not declares_schema(datasources.SimpleDataSource({}))


def test_default_reader_has_no_partitions() -> None:
    assert DataSourceReader().partitions() == []


def test_input_partition_equality() -> None:
    assert InputPartition(1) == InputPartition(1)
    assert InputPartition(1) != InputPartition(2)
    assert datasources.RangePartition(1, 2) == datasources.RangePartition(1, 2)
    assert repr(InputPartition("a")) == "InputPartition(value='a')"


def test_task_context_is_empty_outside_tasks() -> None:
    assert TaskContext.get() is None


def test_data_source_name_defaults_to_class_name() -> None:
    assert datasources.SimpleDataSource.name() == "SimpleDataSource"
    assert datasources.PathsDataSource.name() == "test"
