"""Logical row schema for icehouse tables.

Fields carry a stable integer id which is the durable identity of a column.
The id is written into every Parquet file as ``PARQUET:field_id`` so files
can be matched back to the schema even if a column is later renamed.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Mapping
from typing import Optional
from typing import Tuple
from typing import Union

import pyarrow as pa

from .exceptions import SchemaInvalid
from .exceptions import SchemaMismatch

FIELD_ID_KEY = b"PARQUET:field_id"

# number of row problems included in a SchemaMismatch message
_MAX_REPORTED = 5


class PrimitiveType(str, Enum):
    BOOLEAN = "boolean"
    INT = "int"
    LONG = "long"
    FLOAT = "float"
    DOUBLE = "double"
    STRING = "string"
    BINARY = "binary"
    DATE = "date"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class ListType:
    element_id: int
    element_type: "FieldType"
    element_required: bool = False


FieldType = Union[PrimitiveType, ListType]


@dataclass(frozen=True)
class NestedField:
    field_id: int
    name: str
    field_type: FieldType
    required: bool = False
    doc: Optional[str] = None


_ARROW_TYPES = {
    PrimitiveType.BOOLEAN: pa.bool_(),
    PrimitiveType.INT: pa.int32(),
    PrimitiveType.LONG: pa.int64(),
    PrimitiveType.FLOAT: pa.float32(),
    PrimitiveType.DOUBLE: pa.float64(),
    PrimitiveType.STRING: pa.string(),
    PrimitiveType.BINARY: pa.binary(),
    PrimitiveType.DATE: pa.date32(),
    PrimitiveType.TIMESTAMP: pa.timestamp("us"),
}

_INT_RANGES = {
    PrimitiveType.INT: (-(1 << 31), (1 << 31) - 1),
    PrimitiveType.LONG: (-(1 << 63), (1 << 63) - 1),
}


def _arrow_field(field_id: int, name: str, field_type: FieldType, required: bool) -> pa.Field:
    return pa.field(
        name,
        _arrow_type(field_type),
        nullable=not required,
        metadata={FIELD_ID_KEY: str(field_id).encode()},
    )


def _arrow_type(field_type: FieldType) -> pa.DataType:
    if isinstance(field_type, ListType):
        return pa.list_(
            _arrow_field(
                field_type.element_id,
                "element",
                field_type.element_type,
                field_type.element_required,
            )
        )
    return _ARROW_TYPES[field_type]


def _type_to_json(field_type: FieldType) -> Any:
    if isinstance(field_type, ListType):
        return {
            "type": "list",
            "element-id": field_type.element_id,
            "element-type": _type_to_json(field_type.element_type),
            "element-required": field_type.element_required,
        }
    return field_type.value


def _type_from_json(value: Any) -> FieldType:
    if isinstance(value, dict):
        if value.get("type") != "list":
            raise SchemaInvalid(f"Unsupported nested type: {value.get('type')!r}")
        return ListType(
            element_id=int(value["element-id"]),
            element_type=_type_from_json(value["element-type"]),
            element_required=bool(value.get("element-required", False)),
        )
    try:
        return PrimitiveType(value)
    except ValueError:
        raise SchemaInvalid(f"Unsupported type: {value!r}") from None


def same_arrow_type(actual: pa.DataType, expected: pa.DataType) -> bool:
    # list child names differ between producers ("item" vs "element")
    if pa.types.is_list(actual) and pa.types.is_list(expected):
        return same_arrow_type(actual.value_type, expected.value_type)
    return actual.equals(expected)


@dataclass(frozen=True)
class Schema:
    fields: Tuple[NestedField, ...]
    schema_id: int = 0

    @classmethod
    def of(cls, *fields: NestedField, schema_id: int = 0) -> "Schema":
        return cls(fields=tuple(fields), schema_id=schema_id)

    @property
    def field_ids(self) -> List[int]:
        return [f.field_id for f in self.fields]

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.fields]

    def find_field(self, name: str) -> Optional[NestedField]:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def same_fields(self, other: "Schema") -> bool:
        return self.fields == other.fields

    def validate(self) -> "Schema":
        """Raise SchemaInvalid unless ids and names are unique and types known."""
        if not self.fields:
            raise SchemaInvalid("Schema must have at least one field")

        seen_ids: set = set()
        seen_names: set = set()

        def _check_id(field_id: Any, where: str) -> None:
            if not isinstance(field_id, int) or isinstance(field_id, bool) or field_id < 0:
                raise SchemaInvalid(f"Invalid field id {field_id!r} for {where}")
            if field_id in seen_ids:
                raise SchemaInvalid(f"Duplicate field id {field_id} ({where})")
            seen_ids.add(field_id)

        def _check_type(field_type: Any, where: str) -> None:
            if isinstance(field_type, ListType):
                _check_id(field_type.element_id, f"{where}.element")
                _check_type(field_type.element_type, f"{where}.element")
            elif not isinstance(field_type, PrimitiveType):
                raise SchemaInvalid(f"Unsupported type {field_type!r} for {where}")

        for f in self.fields:
            if not f.name:
                raise SchemaInvalid(f"Field {f.field_id} has no name")
            if f.name in seen_names:
                raise SchemaInvalid(f"Duplicate field name {f.name!r}")
            seen_names.add(f.name)
            _check_id(f.field_id, f.name)
            _check_type(f.field_type, f.name)
        return self

    def as_arrow(self) -> pa.Schema:
        return pa.schema(
            [_arrow_field(f.field_id, f.name, f.field_type, f.required) for f in self.fields]
        )

    def to_columns(self) -> List[dict]:
        """Describe the schema as plain dicts for storage in the catalog."""
        return [
            {
                "id": f.field_id,
                "name": f.name,
                "type": _type_to_json(f.field_type),
                "required": f.required,
                "doc": f.doc,
            }
            for f in self.fields
        ]

    @classmethod
    def from_columns(cls, columns: Iterable[Mapping[str, Any]], schema_id: int = 0) -> "Schema":
        fields = []
        for c in columns:
            try:
                fields.append(
                    NestedField(
                        field_id=int(c["id"]),
                        name=c["name"],
                        field_type=_type_from_json(c["type"]),
                        required=bool(c.get("required", False)),
                        doc=c.get("doc"),
                    )
                )
            except (KeyError, TypeError, ValueError) as err:
                raise SchemaInvalid(f"Malformed column description {dict(c)!r}: {err}") from err
        return cls(fields=tuple(fields), schema_id=schema_id)


# The schema every table created by the manager uses unless told otherwise.
DEFAULT_SCHEMA = Schema.of(
    NestedField(field_id=0, name="id", field_type=PrimitiveType.INT, required=True),
    NestedField(field_id=1, name="value", field_type=PrimitiveType.STRING, required=True),
)


def _value_problem(value: Any, field_type: FieldType) -> Optional[str]:
    if isinstance(field_type, ListType):
        if not isinstance(value, (list, tuple)):
            return f"expected list, got {type(value).__name__}"
        for i, item in enumerate(value):
            if item is None:
                if field_type.element_required:
                    return f"element {i} is null"
                continue
            problem = _value_problem(item, field_type.element_type)
            if problem:
                return f"element {i}: {problem}"
        return None

    if field_type == PrimitiveType.BOOLEAN:
        ok = isinstance(value, bool)
    elif field_type in _INT_RANGES:
        if not isinstance(value, int) or isinstance(value, bool):
            return f"expected {field_type.value}, got {type(value).__name__}"
        low, high = _INT_RANGES[field_type]
        if not low <= value <= high:
            return f"{value} out of range for {field_type.value}"
        return None
    elif field_type in (PrimitiveType.FLOAT, PrimitiveType.DOUBLE):
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif field_type == PrimitiveType.STRING:
        ok = isinstance(value, str)
    elif field_type == PrimitiveType.BINARY:
        ok = isinstance(value, (bytes, bytearray))
    elif field_type == PrimitiveType.DATE:
        ok = isinstance(value, datetime.date) and not isinstance(value, datetime.datetime)
    else:
        ok = isinstance(value, datetime.datetime)
    if not ok:
        return f"expected {field_type.value}, got {type(value).__name__}"
    return None


def validate_rows(schema: Schema, rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Check every row against `schema` and return them normalised.

    Missing optional fields become None. Nothing is returned unless all rows
    pass; otherwise a single SchemaMismatch lists the first problems found.
    """
    names = set(schema.names)
    problems: List[str] = []
    normalised: List[Dict[str, Any]] = []

    for index, row in enumerate(rows):
        if not isinstance(row, Mapping):
            problems.append(f"row {index}: expected a mapping, got {type(row).__name__}")
            continue
        extra = set(row) - names
        if extra:
            problems.append(f"row {index}: unknown fields {sorted(extra)}")
        out = {}
        for f in schema.fields:
            value = row.get(f.name)
            if value is None:
                if f.required:
                    problems.append(f"row {index}: required field {f.name!r} is null or missing")
            else:
                problem = _value_problem(value, f.field_type)
                if problem:
                    problems.append(f"row {index}: field {f.name!r} {problem}")
            out[f.name] = value
        normalised.append(out)

    if problems:
        shown = "; ".join(problems[:_MAX_REPORTED])
        more = len(problems) - _MAX_REPORTED
        if more > 0:
            shown += f"; and {more} more"
        raise SchemaMismatch(f"{len(problems)} problem(s) in rows: {shown}")
    return normalised


def to_record_batch(schema: Schema, data: Any) -> pa.RecordBatch:
    """Validate `data` against `schema` and lay it out as one RecordBatch.

    `data` may be a sequence of mappings, a pyarrow.Table or a
    pyarrow.RecordBatch.
    """
    arrow_schema = schema.as_arrow()

    if isinstance(data, (pa.Table, pa.RecordBatch)):
        if data.schema.names != arrow_schema.names:
            raise SchemaMismatch(
                f"Column names {data.schema.names} do not match schema {arrow_schema.names}"
            )
        columns = []
        for f, expected in zip(schema.fields, arrow_schema):
            column = data.column(f.name)
            if isinstance(column, pa.ChunkedArray):
                column = column.combine_chunks()
            if not same_arrow_type(column.type, expected.type):
                raise SchemaMismatch(
                    f"Column {f.name!r} has type {column.type}, expected {expected.type}"
                )
            if f.required and column.null_count:
                raise SchemaMismatch(f"Required column {f.name!r} contains nulls")
            if not column.type.equals(expected.type):
                column = column.cast(expected.type)
            columns.append(column)
        return pa.RecordBatch.from_arrays(columns, schema=arrow_schema)

    if isinstance(data, (str, bytes, Mapping)) or not isinstance(data, Iterable):
        raise SchemaMismatch(
            "Rows must be a sequence of mappings, a pyarrow.Table or a RecordBatch, "
            f"got {type(data).__name__}"
        )
    rows = validate_rows(schema, data)
    try:
        return pa.RecordBatch.from_pylist(rows, schema=arrow_schema)
    except (pa.ArrowInvalid, pa.ArrowTypeError) as err:
        raise SchemaMismatch(f"Rows could not be converted to columns: {err}") from err
