"""Semantic column types and their Arrow representation."""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
import json
import uuid

import pyarrow as pa


class ColumnType(str, Enum):
    """Semantic type of a column, independent of the wire representation."""
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STRING = "string"
    BYTES = "bytes"
    TIMESTAMP = "timestamp"
    DATE = "date"
    UUID = "uuid"
    JSON = "json"
    STRING_LIST = "string_list"

    @property
    def is_primary(self) -> bool:
        return self in PRIMARY_TYPES


PRIMARY_TYPES = frozenset({
    ColumnType.BOOL,
    ColumnType.INT,
    ColumnType.FLOAT,
    ColumnType.STRING,
    ColumnType.BYTES,
    ColumnType.TIMESTAMP,
})


_ARROW_TYPES = {
    ColumnType.BOOL: pa.bool_(),
    ColumnType.INT: pa.int64(),
    ColumnType.FLOAT: pa.float64(),
    ColumnType.STRING: pa.string(),
    ColumnType.BYTES: pa.binary(),
    ColumnType.TIMESTAMP: pa.timestamp("us", tz="UTC"),
    ColumnType.DATE: pa.date32(),
    # uuid and json travel as strings; the field's type tag restores them.
    ColumnType.UUID: pa.string(),
    ColumnType.JSON: pa.string(),
    ColumnType.STRING_LIST: pa.list_(pa.string()),
}


def arrow_type(column_type: ColumnType) -> pa.DataType:
    """Arrow data type used on the wire for a semantic type."""
    return _ARROW_TYPES[column_type]


def to_wire_value(column_type: ColumnType, value: Any) -> Any:
    """Check ``value`` against ``column_type`` and convert it for Arrow.

    Raises:
        TypeError: if the runtime type does not match the column type
    """
    if value is None:
        return None

    if column_type == ColumnType.BOOL:
        if isinstance(value, bool):
            return value
    elif column_type == ColumnType.INT:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif column_type == ColumnType.FLOAT:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    elif column_type == ColumnType.STRING:
        if isinstance(value, str):
            return value
    elif column_type == ColumnType.BYTES:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
    elif column_type == ColumnType.TIMESTAMP:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)
    elif column_type == ColumnType.DATE:
        if isinstance(value, date) and not isinstance(value, datetime):
            return value
    elif column_type == ColumnType.UUID:
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, str):
            try:
                return str(uuid.UUID(value))
            except ValueError:
                pass
    elif column_type == ColumnType.JSON:
        try:
            return json.dumps(value, sort_keys=True, default=_json_default)
        except (TypeError, ValueError):
            pass
    elif column_type == ColumnType.STRING_LIST:
        if isinstance(value, (list, tuple)) and all(
            isinstance(item, str) or item is None for item in value
        ):
            return list(value)

    raise TypeError(
        f"expected {column_type.value}, got {type(value).__name__}"
    )


def from_wire_value(column_type: ColumnType, value: Any) -> Any:
    """Convert a value read from Arrow back to its Python form."""
    if value is None:
        return None
    if column_type == ColumnType.UUID:
        return uuid.UUID(value)
    if column_type == ColumnType.JSON:
        return json.loads(value)
    if column_type == ColumnType.TIMESTAMP and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")
