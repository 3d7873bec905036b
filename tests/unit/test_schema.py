"""Unit tests for schema parsing and rows."""
from __future__ import annotations

import pickle

import pytest

from pyds_bridge.types import (
    ArrayType,
    DecimalType,
    IntegerType,
    MapType,
    Row,
    SchemaNotStructError,
    SchemaParseError,
    StringType,
    StructField,
    StructType,
    parse_ddl,
    to_struct_type,
)


def test_parse_field_list() -> None:
    schema = parse_ddl("id INT, name STRING NOT NULL COMMENT 'display name', score: decimal(5, 2)")

    assert isinstance(schema, StructType)
    assert schema.names == ["id", "name", "score"]
    assert schema.fields[1] == StructField("name", StringType(), False, "display name")
    assert schema.fields[2].data_type == DecimalType(5, 2)
    assert schema.simple_string() == "struct<id:int,name:string,score:decimal(5,2)>"


def test_parse_nested_types() -> None:
    schema = to_struct_type("tags ARRAY<STRING>, attrs MAP<STRING, BIGINT>, inner STRUCT<a: INT>")

    assert schema.fields[0].data_type == ArrayType(StringType())
    assert isinstance(schema.fields[1].data_type, MapType)
    assert schema.fields[2].data_type == StructType([StructField("a", IntegerType())])


def test_single_struct_type_is_accepted() -> None:
    assert to_struct_type("STRUCT<a: INT, b: STRING>").names == ["a", "b"]


def test_non_struct_schema_is_rejected_with_parameters() -> None:
    with pytest.raises(SchemaNotStructError) as excinfo:
        to_struct_type("INT")

    assert excinfo.value.parameters == {"inputSchema": "INT", "dataType": '"INT"'}


def test_unparseable_schema() -> None:
    with pytest.raises(SchemaParseError):
        to_struct_type("id INT,")
    with pytest.raises(SchemaParseError):
        to_struct_type("id UNKNOWNTYPE")


def test_struct_type_round_trips_through_ddl() -> None:
    schema = to_struct_type("id INT, partition INT NOT NULL")

    assert to_struct_type(schema.to_ddl()) == schema
    assert to_struct_type(schema) is schema


def test_row_behaves_like_a_named_tuple() -> None:
    row = Row.from_values(["id", "value"], (1, "a"))

    assert row == (1, "a")
    assert row.id == 1
    assert row.as_dict() == {"id": 1, "value": "a"}
    assert repr(row) == "Row(id=1, value='a')"
    with pytest.raises(AttributeError):
        row.missing

    restored = pickle.loads(pickle.dumps(row))
    assert restored.__fields__ == ("id", "value")
    assert restored == row


def test_row_keyword_constructor() -> None:
    row = Row(status="ok", count=2)

    assert tuple(row) == ("ok", 2)
    assert row.as_dict() == {"status": "ok", "count": 2}
