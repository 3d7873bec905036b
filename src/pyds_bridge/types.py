"""Schema data types, DDL parsing and the row type exchanged with extensions."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union


class DataType:
    """Base class of all schema data types."""

    type_name: str = ""

    def sql(self) -> str:
        return self.type_name.upper()

    def simple_string(self) -> str:
        return self.type_name

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __eq__(self, other: object) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))


class BooleanType(DataType):
    type_name = "boolean"


class ByteType(DataType):
    type_name = "tinyint"


class ShortType(DataType):
    type_name = "smallint"


class IntegerType(DataType):
    type_name = "int"


class LongType(DataType):
    type_name = "bigint"


class FloatType(DataType):
    type_name = "float"


class DoubleType(DataType):
    type_name = "double"


class StringType(DataType):
    type_name = "string"


class BinaryType(DataType):
    type_name = "binary"


class DateType(DataType):
    type_name = "date"


class TimestampType(DataType):
    type_name = "timestamp"


@dataclass(frozen=True, eq=True, repr=True)
class DecimalType(DataType):
    precision: int = 10
    scale: int = 0

    def simple_string(self) -> str:
        return f"decimal({self.precision},{self.scale})"

    def sql(self) -> str:
        return f"DECIMAL({self.precision},{self.scale})"


@dataclass(frozen=True, eq=True, repr=True)
class ArrayType(DataType):
    element_type: DataType
    contains_null: bool = True

    def simple_string(self) -> str:
        return f"array<{self.element_type.simple_string()}>"

    def sql(self) -> str:
        return f"ARRAY<{self.element_type.sql()}>"


@dataclass(frozen=True, eq=True, repr=True)
class MapType(DataType):
    key_type: DataType
    value_type: DataType
    value_contains_null: bool = True

    def simple_string(self) -> str:
        return f"map<{self.key_type.simple_string()},{self.value_type.simple_string()}>"

    def sql(self) -> str:
        return f"MAP<{self.key_type.sql()}, {self.value_type.sql()}>"


@dataclass(frozen=True, eq=True, repr=True)
class StructField:
    name: str
    data_type: DataType
    nullable: bool = True
    comment: Optional[str] = None

    def simple_string(self) -> str:
        return f"{self.name}:{self.data_type.simple_string()}"


@dataclass(frozen=True, eq=True, repr=True)
class StructType(DataType):
    fields: Tuple[StructField, ...] = field(default_factory=tuple)

    def __init__(self, fields: Iterable[StructField] = ()) -> None:
        object.__setattr__(self, "fields", tuple(fields))

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.fields]

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self):
        return iter(self.fields)

    def simple_string(self) -> str:
        return "struct<" + ",".join(f.simple_string() for f in self.fields) + ">"

    def sql(self) -> str:
        return "STRUCT<" + ", ".join(f"{f.name}: {f.data_type.sql()}" for f in self.fields) + ">"

    def to_ddl(self) -> str:
        parts = []
        for f in self.fields:
            part = f"{f.name} {f.data_type.sql()}"
            if not f.nullable:
                part += " NOT NULL"
            parts.append(part)
        return ", ".join(parts)


class SchemaParseError(ValueError):
    """A DDL string could not be parsed."""

    def __init__(self, text: str, detail: str) -> None:
        self.text = text
        super().__init__(f"Unable to parse schema {text!r}: {detail}")


class SchemaNotStructError(ValueError):
    """A schema resolved to a type other than a struct."""

    def __init__(self, input_schema: str, data_type: str) -> None:
        self.input_schema = input_schema
        self.data_type = data_type
        super().__init__(
            f"Schema {input_schema!r} resolved to {data_type}, which is not a struct type"
        )

    @property
    def parameters(self) -> Dict[str, str]:
        return {"inputSchema": self.input_schema, "dataType": self.data_type}


_ATOMIC_TYPES = {
    "boolean": BooleanType,
    "tinyint": ByteType,
    "byte": ByteType,
    "smallint": ShortType,
    "short": ShortType,
    "int": IntegerType,
    "integer": IntegerType,
    "bigint": LongType,
    "long": LongType,
    "float": FloatType,
    "real": FloatType,
    "double": DoubleType,
    "string": StringType,
    "binary": BinaryType,
    "date": DateType,
    "timestamp": TimestampType,
}

_TOKEN_RE = re.compile(
    r"\s*(?:(?P<quoted>`(?:[^`]|``)*`)|(?P<string>'(?:[^'\\]|\\.)*')"
    r"|(?P<number>\d+)|(?P<ident>[A-Za-z_][A-Za-z0-9_]*)|(?P<punct>[<>(),:]))"
)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens = []
    pos = 0
    stripped = text.rstrip()
    while pos < len(stripped):
        match = _TOKEN_RE.match(stripped, pos)
        if not match or match.end() == pos:
            raise SchemaParseError(text, f"unexpected character at position {pos}")
        kind = match.lastgroup
        value = match.group(kind)
        if kind == "quoted":
            value = value[1:-1].replace("``", "`")
            kind = "ident"
        elif kind == "string":
            value = value[1:-1]
        tokens.append((kind, value))
        pos = match.end()
    return tokens


class _DdlParser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = _tokenize(text)
        self.pos = 0

    def _peek(self) -> Optional[Tuple[str, str]]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> Tuple[str, str]:
        token = self._peek()
        if token is None:
            raise SchemaParseError(self.text, "unexpected end of input")
        self.pos += 1
        return token

    def _expect(self, value: str) -> None:
        kind, actual = self._next()
        if actual.lower() != value:
            raise SchemaParseError(self.text, f"expected {value!r} but found {actual!r}")

    def _accept(self, value: str) -> bool:
        token = self._peek()
        if token is not None and token[1].lower() == value:
            self.pos += 1
            return True
        return False

    def _at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def parse_field_list(self) -> StructType:
        fields = [self._parse_field()]
        while self._accept(","):
            fields.append(self._parse_field())
        if not self._at_end():
            raise SchemaParseError(self.text, f"unexpected token {self._peek()[1]!r}")
        return StructType(fields)

    def parse_single_type(self) -> DataType:
        data_type = self._parse_type()
        if not self._at_end():
            raise SchemaParseError(self.text, f"unexpected token {self._peek()[1]!r}")
        return data_type

    def _parse_field(self) -> StructField:
        kind, name = self._next()
        if kind != "ident":
            raise SchemaParseError(self.text, f"expected a field name but found {name!r}")
        self._accept(":")
        data_type = self._parse_type()
        nullable = True
        comment = None
        while True:
            if self._accept("not"):
                self._expect("null")
                nullable = False
            elif self._accept("comment"):
                kind, comment = self._next()
                if kind != "string":
                    raise SchemaParseError(self.text, "COMMENT requires a quoted string")
            else:
                break
        return StructField(name, data_type, nullable, comment)

    def _parse_type(self) -> DataType:
        kind, word = self._next()
        if kind != "ident":
            raise SchemaParseError(self.text, f"expected a type but found {word!r}")
        name = word.lower()
        if name in _ATOMIC_TYPES:
            return _ATOMIC_TYPES[name]()
        if name in ("varchar", "char"):
            self._expect("(")
            self._next()
            self._expect(")")
            return StringType()
        if name in ("decimal", "dec", "numeric"):
            if self._accept("("):
                precision = int(self._next()[1])
                scale = 0
                if self._accept(","):
                    scale = int(self._next()[1])
                self._expect(")")
                return DecimalType(precision, scale)
            return DecimalType()
        if name == "array":
            self._expect("<")
            element = self._parse_type()
            self._expect(">")
            return ArrayType(element)
        if name == "map":
            self._expect("<")
            key = self._parse_type()
            self._expect(",")
            value = self._parse_type()
            self._expect(">")
            return MapType(key, value)
        if name == "struct":
            self._expect("<")
            fields: List[StructField] = []
            if not self._accept(">"):
                fields.append(self._parse_field())
                while self._accept(","):
                    fields.append(self._parse_field())
                self._expect(">")
            return StructType(fields)
        raise SchemaParseError(self.text, f"unknown data type {word!r}")


def parse_ddl(text: str) -> DataType:
    """Parse a DDL string as a field list, falling back to a single type."""
    if not text or not text.strip():
        raise SchemaParseError(text, "empty schema")
    try:
        return _DdlParser(text).parse_field_list()
    except SchemaParseError as field_list_error:
        try:
            return _DdlParser(text).parse_single_type()
        except SchemaParseError:
            raise field_list_error from None


def to_struct_type(value: Union[str, DataType, Any]) -> StructType:
    """Resolve ``value`` to a :class:`StructType` or raise."""
    if isinstance(value, StructType):
        return value
    if isinstance(value, DataType):
        raise SchemaNotStructError(value.simple_string(), f'"{value.sql()}"')
    if isinstance(value, str):
        resolved = parse_ddl(value)
        if not isinstance(resolved, StructType):
            raise SchemaNotStructError(value, f'"{resolved.sql()}"')
        return resolved
    raise SchemaNotStructError(repr(value), f'"{type(value).__name__}"')


class Row(tuple):
    """A tuple with field names, as handed to writers and returned by scans."""

    __fields__: Tuple[str, ...] = ()

    def __new__(cls, *values: Any, **named: Any) -> "Row":
        if values and named:
            raise ValueError("Row accepts either positional or keyword values, not both")
        if named:
            row = tuple.__new__(cls, named.values())
            row.__fields__ = tuple(named.keys())
            return row
        return tuple.__new__(cls, values)

    @classmethod
    def from_values(cls, names: Sequence[str], values: Sequence[Any]) -> "Row":
        if len(names) != len(values):
            raise ValueError(f"Expected {len(names)} values but got {len(values)}")
        row = tuple.__new__(cls, values)
        row.__fields__ = tuple(names)
        return row

    def as_dict(self) -> Dict[str, Any]:
        if not self.__fields__:
            raise ValueError("Cannot convert a Row without field names to a dict")
        return dict(zip(self.__fields__, self))

    def __getattr__(self, item: str) -> Any:
        if item.startswith("__"):
            raise AttributeError(item)
        fields = self.__fields__
        if item in fields:
            return self[fields.index(item)]
        raise AttributeError(item)

    def __reduce__(self):
        return (Row.from_values, (self.__fields__, tuple(self))) if self.__fields__ else (Row, tuple(self))

    def __repr__(self) -> str:
        if self.__fields__:
            return "Row(" + ", ".join(f"{k}={v!r}" for k, v in zip(self.__fields__, self)) + ")"
        return "Row(" + ", ".join(repr(v) for v in self) + ")"


__all__ = [
    "ArrayType",
    "BinaryType",
    "BooleanType",
    "ByteType",
    "DataType",
    "DateType",
    "DecimalType",
    "DoubleType",
    "FloatType",
    "IntegerType",
    "LongType",
    "MapType",
    "Row",
    "SchemaNotStructError",
    "SchemaParseError",
    "ShortType",
    "StringType",
    "StructField",
    "StructType",
    "TimestampType",
    "parse_ddl",
    "to_struct_type",
]
