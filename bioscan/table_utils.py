"""Columnar building blocks: schemas, column builders and record batches."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

logger = logging.getLogger(__name__)


class SchemaError(ValueError):
    """Raised when a builder or schema is used with the wrong data type."""


class ExecutionError(RuntimeError):
    """Raised when a record batch cannot be assembled."""


class DataType(Enum):
    NULL = "null"
    BOOLEAN = "boolean"
    INT32 = "int32"
    UINT32 = "uint32"
    FLOAT32 = "float32"
    UTF8 = "utf8"
    STRUCT = "struct"


@dataclass(frozen=True)
class ListType:
    """A list column whose elements are of type ``item``."""

    item: DataType


ColumnType = Union[DataType, ListType]


@dataclass(frozen=True)
class Field:
    name: str
    data_type: ColumnType
    nullable: bool = True


@dataclass(frozen=True)
class Schema:
    fields: tuple[Field, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", tuple(self.fields))

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self):
        return iter(self.fields)

    @property
    def names(self) -> list[str]:
        return [field.name for field in self.fields]

    def field(self, index: int) -> Field:
        """Return the field at ``index``; raises IndexError when out of range."""
        return self.fields[index]

    def project(self, projection: Sequence[int] | None) -> Schema:
        """Return the schema restricted to the given column indices."""
        return project_schema(self, projection)


class RecordBatch:
    """A set of equally long columns matching a schema."""

    __slots__ = ("schema", "columns")

    def __init__(self, schema: Schema, columns: Sequence[Sequence[Any]]) -> None:
        columns = [list(column) for column in columns]
        if len(columns) != len(schema):
            raise ValueError(
                f"number of columns ({len(columns)}) must match number of fields "
                f"({len(schema)}) in schema"
            )
        lengths = {len(column) for column in columns}
        if len(lengths) > 1:
            raise ValueError("all columns in a record batch must have the same length")
        for field, column in zip(schema, columns):
            if field.data_type is DataType.NULL:
                if any(value is not None for value in column):
                    raise ValueError(f"column '{field.name}' of type Null holds values")
            elif not field.nullable and any(value is None for value in column):
                raise ValueError(
                    f"column '{field.name}' is declared as non-nullable but contains null values"
                )
        self.schema = schema
        self.columns = columns

    @property
    def num_rows(self) -> int:
        return len(self.columns[0]) if self.columns else 0

    @property
    def num_columns(self) -> int:
        return len(self.columns)

    def __len__(self) -> int:
        return self.num_rows

    def column(self, name: str) -> list[Any]:
        """Return the column with the given field name."""
        try:
            return self.columns[self.schema.names.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def to_pylist(self) -> list[dict[str, Any]]:
        """Return the rows as dictionaries keyed by field name."""
        names = self.schema.names
        return [dict(zip(names, row)) for row in zip(*self.columns)]

    def __repr__(self) -> str:
        return f"RecordBatch(columns={self.schema.names}, rows={self.num_rows})"


@dataclass(frozen=True)
class Attribute:
    tag: str
    value: str | None = None


_SUPPORTED_TYPES: dict[ColumnType, str] = {
    DataType.INT32: "Int32Builder",
    DataType.FLOAT32: "Float32Builder",
    DataType.UTF8: "Utf8Builder",
    DataType.BOOLEAN: "BooleanBuilder",
    ListType(DataType.INT32): "ArrayInt32Builder",
    ListType(DataType.FLOAT32): "ArrayFloat32Builder",
    ListType(DataType.UTF8): "ArrayUtf8Builder",
    ListType(DataType.BOOLEAN): "ArrayBooleanBuilder",
    ListType(DataType.STRUCT): "ArrayStructBuilder",
}


class OptionalField:
    """Accumulates the values of one optional column, nulls included."""

    def __init__(self, data_type: ColumnType, batch_size: int) -> None:
        if data_type not in _SUPPORTED_TYPES:
            if isinstance(data_type, ListType):
                raise SchemaError("Unsupported list inner data type")
            raise SchemaError("Unsupported data type")
        self.data_type = data_type
        self.batch_size = batch_size
        self._values: list[Any] = []

    @property
    def builder_name(self) -> str:
        return _SUPPORTED_TYPES[self.data_type]

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"{self.builder_name}(len={len(self._values)})"

    def _require(self, data_type: ColumnType, message: str) -> None:
        if self.data_type != data_type:
            raise SchemaError(message)

    def append_array_struct(self, items: Iterable[Attribute]) -> None:
        if self.data_type != ListType(DataType.STRUCT):
            raise SchemaError(f"Expected ArrayStructBuilder, found {self!r}")
        self._values.append([{"tag": item.tag, "value": item.value} for item in items])

    def append_int(self, value: int) -> None:
        self._require(DataType.INT32, "Invalid builder")
        self._values.append(value)

    def append_boolean(self, value: bool) -> None:
        self._require(DataType.BOOLEAN, "Expected BooleanBuilder")
        self._values.append(value)

    def append_array_int(self, value: Iterable[int]) -> None:
        self._require(ListType(DataType.INT32), "Expected ArrayInt32Builder")
        self._values.append(list(value))

    def append_float(self, value: float) -> None:
        self._require(DataType.FLOAT32, "Expected Float32Builder")
        self._values.append(value)

    def append_array_float(self, value: Iterable[float]) -> None:
        self._require(ListType(DataType.FLOAT32), "Expected ArrayFloat32Builder")
        self._values.append(list(value))

    def append_string(self, value: str) -> None:
        self._require(DataType.UTF8, "Expected Utf8Builder")
        self._values.append(value)

    def append_array_string(self, value: Iterable[str]) -> None:
        self._require(ListType(DataType.UTF8), "Expected ArrayUtf8Builder")
        self._values.append(list(value))

    def append_null(self) -> None:
        self._values.append(None)

    def finish(self) -> list[Any]:
        """Return the accumulated column and start a new, empty one."""
        values, self._values = self._values, []
        return values


def builders_to_arrays(builders: Iterable[OptionalField]) -> list[list[Any]]:
    """Finish every builder, in order."""
    return [builder.finish() for builder in builders]


def project_schema(schema: Schema, projection: Sequence[int] | None) -> Schema:
    """Restrict a schema to a projection; an empty one yields a single null dummy column."""
    if projection is None:
        return schema
    if not projection:
        return Schema((Field("dummy", DataType.NULL, True),))
    return Schema(tuple(schema.field(index) for index in projection))


def build_record_batch(
    schema: Schema,
    columns: Sequence[Sequence[Any]],
    projection: Sequence[int] | None,
) -> RecordBatch:
    """Assemble a batch from full-width columns, picking the projected ones.

    ``schema`` is the (already projected) output schema; ``columns`` are in the
    order of the full table. Projected indices beyond the table give null columns.
    """
    row_count = len(columns[0]) if columns else 0
    if projection is None:
        selected = list(columns)
    elif not projection:
        logger.debug("Empty projection creating a dummy field")
        selected = [[None] * row_count]
    else:
        selected = [
            columns[index] if 0 <= index < len(columns) else [None] * row_count
            for index in projection
        ]
    try:
        return RecordBatch(schema, selected)
    except ValueError as error:
        raise ExecutionError(f"Error creating batch: {error}") from error