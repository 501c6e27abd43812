"""Columnar record batches and their self-describing wire format.

Batches travel as Arrow IPC streams. The Arrow schema carries everything a
decoder needs without a prior handshake: the codec version, the table and
client the rows belong to, and a semantic type tag on every field.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import pyarrow as pa

from ..errors import DecodingError, EncodingError
from ..schema.table import Column, Table
from ..schema.types import ColumnType, arrow_type, from_wire_value, to_wire_value


CODEC_VERSION = "1.0"

META_VERSION = b"tablesync.codec_version"
META_TABLE = b"tablesync.table"
META_CLIENT = b"tablesync.client_id"
META_ROWS = b"tablesync.num_rows"
FIELD_TYPE = b"tablesync.type"
FIELD_PRIMARY_KEY = b"tablesync.primary_key"

# End-of-stream marker written when an IPC stream writer is closed.
EOS_MARKER = b"\xff\xff\xff\xff\x00\x00\x00\x00"

# Types whose string wire form must parse back into a Python value.
_PARSED_TYPES = frozenset({ColumnType.UUID, ColumnType.JSON})

# Used when a field arrives without a type tag, e.g. from an older encoder.
_INFERRED_TYPES = [
    (pa.types.is_boolean, ColumnType.BOOL),
    (pa.types.is_integer, ColumnType.INT),
    (pa.types.is_floating, ColumnType.FLOAT),
    (pa.types.is_string, ColumnType.STRING),
    (pa.types.is_large_string, ColumnType.STRING),
    (pa.types.is_binary, ColumnType.BYTES),
    (pa.types.is_timestamp, ColumnType.TIMESTAMP),
    (pa.types.is_date, ColumnType.DATE),
    (pa.types.is_list, ColumnType.STRING_LIST),
]


@dataclass
class RecordBatch:
    """Rows of one table for one client, stored column by column."""

    table_name: str
    client_id: Optional[str]
    columns: List[Column]
    data: pa.RecordBatch

    @property
    def num_rows(self) -> int:
        return self.data.num_rows

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def column_values(self, name: str) -> List[Any]:
        """Python values of one column."""
        for index, column in enumerate(self.columns):
            if column.name == name:
                return [
                    from_wire_value(column.type, value)
                    for value in self.data.column(index).to_pylist()
                ]
        raise KeyError(name)

    def to_pylist(self) -> List[Dict[str, Any]]:
        """Rows as dictionaries with Python values."""
        types = {column.name: column.type for column in self.columns}
        return [
            {name: from_wire_value(types[name], value) for name, value in row.items()}
            for row in self.data.to_pylist()
        ]


def arrow_schema(table: Table, client_id: Optional[str] = None, num_rows: Optional[int] = None) -> pa.Schema:
    """Arrow schema, with tablesync metadata, for a table."""
    fields = [
        pa.field(
            column.name,
            arrow_type(column.type),
            nullable=not column.primary_key,
            metadata={
                FIELD_TYPE: column.type.value.encode(),
                FIELD_PRIMARY_KEY: b"1" if column.primary_key else b"0",
            },
        )
        for column in table.columns
    ]
    metadata = {
        META_VERSION: CODEC_VERSION.encode(),
        META_TABLE: table.name.encode(),
    }
    if client_id is not None:
        metadata[META_CLIENT] = client_id.encode()
    if num_rows is not None:
        metadata[META_ROWS] = str(num_rows).encode()
    return pa.schema(fields, metadata=metadata)


def encode(table: Table, resources: Iterable[Any], client_id: Optional[str] = None) -> RecordBatch:
    """Encode resolved resources into a record batch.

    Args:
        table: Table the resources belong to
        resources: Resources (anything with a ``values`` dict) or plain mappings
        client_id: Identity of the multiplexed client that produced them

    Raises:
        EncodingError: if a primary key value is missing or a value does not
            match its column's declared type
    """
    rows = [_row_values(resource) for resource in resources]
    columns_data: List[List[Any]] = []

    for column in table.columns:
        values = []
        for index, row in enumerate(rows):
            value = row.get(column.name)
            if value is None and column.primary_key:
                raise EncodingError(
                    f"Row {index} is missing primary key column '{column.name}'",
                    table=table.name,
                    client_id=client_id
                )
            try:
                values.append(to_wire_value(column.type, value))
            except TypeError as e:
                raise EncodingError(
                    f"Row {index} column '{column.name}': {e}",
                    table=table.name,
                    client_id=client_id
                ) from e
        columns_data.append(values)

    schema = arrow_schema(table, client_id, num_rows=len(rows))
    try:
        arrays = [
            pa.array(values, type=field.type)
            for values, field in zip(columns_data, schema)
        ]
        data = pa.RecordBatch.from_arrays(arrays, schema=schema)
    except (pa.ArrowException, OverflowError) as e:
        raise EncodingError(f"Arrow conversion failed: {e}", table=table.name, client_id=client_id) from e

    return RecordBatch(
        table_name=table.name,
        client_id=client_id,
        columns=[Column(column.name, column.type, primary_key=column.primary_key) for column in table.columns],
        data=data,
    )


def serialize(batch: RecordBatch) -> bytes:
    """Write a record batch as an Arrow IPC stream."""
    sink = pa.BufferOutputStream()
    with pa.ipc.new_stream(sink, batch.data.schema) as writer:
        writer.write_batch(batch.data)
    return sink.getvalue().to_pybytes()


def decode(payload: bytes) -> RecordBatch:
    """Decode wire bytes produced by :func:`serialize`.

    Raises:
        DecodingError: on malformed or truncated input, an incompatible codec
            version, a type tag that is unknown or disagrees with the Arrow
            type, or a uuid or json value that does not parse
    """
    if not payload:
        raise DecodingError("Empty record batch payload")
    if not payload.endswith(EOS_MARKER):
        raise DecodingError("Truncated record batch stream")

    try:
        reader = pa.ipc.open_stream(pa.py_buffer(payload))
        schema = reader.schema
        batches = list(reader)
    except (pa.ArrowException, OSError, ValueError) as e:
        raise DecodingError(f"Malformed record batch: {e}") from e

    metadata = schema.metadata or {}
    table_name = metadata.get(META_TABLE, b"").decode()
    client_id = metadata[META_CLIENT].decode() if META_CLIENT in metadata else None

    version = metadata.get(META_VERSION, CODEC_VERSION.encode()).decode()
    if version.split(".")[0] != CODEC_VERSION.split(".")[0]:
        raise DecodingError(
            f"Unsupported codec version {version}, expected {CODEC_VERSION}",
            table=table_name or None,
            client_id=client_id
        )

    columns = [_column_from_field(field, table_name) for field in schema]

    if not batches:
        data = pa.RecordBatch.from_arrays([pa.array([], type=field.type) for field in schema], schema=schema)
    elif len(batches) == 1:
        data = batches[0]
    else:
        data = pa.Table.from_batches(batches, schema=schema).combine_chunks().to_batches()[0]

    expected_rows = metadata.get(META_ROWS)
    if expected_rows is not None:
        try:
            expected = int(expected_rows)
        except ValueError:
            raise DecodingError(
                "Malformed row count metadata",
                table=table_name or None,
                client_id=client_id
            ) from None
        if expected != data.num_rows:
            raise DecodingError(
                f"Expected {expected} rows, decoded {data.num_rows}",
                table=table_name or None,
                client_id=client_id
            )

    _check_values(columns, data, table_name, client_id)

    return RecordBatch(table_name=table_name, client_id=client_id, columns=columns, data=data)


def _check_values(columns: List[Column], data: pa.RecordBatch, table_name: str, client_id: Optional[str]) -> None:
    for index, column in enumerate(columns):
        if column.type not in _PARSED_TYPES:
            continue
        for value in data.column(index).to_pylist():
            try:
                from_wire_value(column.type, value)
            except (TypeError, ValueError) as e:
                raise DecodingError(
                    f"Invalid {column.type.value} value in column '{column.name}': {e}",
                    table=table_name or None,
                    client_id=client_id
                ) from e


def _column_from_field(field: pa.Field, table_name: str) -> Column:
    metadata = field.metadata or {}
    tag = metadata.get(FIELD_TYPE)
    if tag is not None:
        try:
            column_type = ColumnType(tag.decode())
        except ValueError:
            raise DecodingError(
                f"Unknown type tag '{tag.decode()}' on column '{field.name}'",
                table=table_name or None
            ) from None
        if field.type != arrow_type(column_type):
            raise DecodingError(
                f"Column '{field.name}' is tagged {column_type.value} but has Arrow type {field.type}",
                table=table_name or None
            )
    else:
        column_type = _infer_type(field, table_name)

    return Column(
        name=field.name,
        type=column_type,
        primary_key=metadata.get(FIELD_PRIMARY_KEY) == b"1",
    )


def _infer_type(field: pa.Field, table_name: str) -> ColumnType:
    for predicate, column_type in _INFERRED_TYPES:
        if predicate(field.type):
            return column_type
    raise DecodingError(
        f"Cannot map Arrow type {field.type} of column '{field.name}'",
        table=table_name or None
    )


def _row_values(resource: Any) -> Mapping:
    if isinstance(resource, Mapping):
        return resource
    return resource.values
