"""Incremental state store interface and cursor serialization."""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional


Cursors = Dict[str, Dict[str, Any]]
"""Cursor values keyed by table name, then client identity."""


class StateStore(ABC):
    """Persists per (table, client) cursors between syncs.

    ``put`` is last-write-wins per key. Implementations must make a single
    key's upsert atomic; no coordination across keys is required.
    """

    @abstractmethod
    async def get(self, table: str, client_id: str) -> Optional[Any]:
        """Return the stored cursor or None."""

    @abstractmethod
    async def put(self, table: str, client_id: str, cursor: Any) -> None:
        """Store a cursor, replacing any previous value."""

    @abstractmethod
    async def snapshot(self, tables: Optional[Iterable[str]] = None) -> Cursors:
        """Return every stored cursor, optionally limited to ``tables``."""

    async def close(self) -> None:
        """Release any resources held by the store."""


def encode_cursor(cursor: Any) -> Any:
    """Convert a cursor into a JSON-compatible value.

    Datetimes and dates are tagged so :func:`decode_cursor` restores them.
    """
    if isinstance(cursor, datetime):
        return {"__datetime__": cursor.isoformat()}
    if isinstance(cursor, date):
        return {"__date__": cursor.isoformat()}
    if isinstance(cursor, (list, tuple)):
        return [encode_cursor(item) for item in cursor]
    if isinstance(cursor, dict):
        return {key: encode_cursor(value) for key, value in cursor.items()}
    return cursor


def decode_cursor(value: Any) -> Any:
    """Inverse of :func:`encode_cursor`."""
    if isinstance(value, dict):
        if set(value) == {"__datetime__"}:
            return datetime.fromisoformat(value["__datetime__"])
        if set(value) == {"__date__"}:
            return date.fromisoformat(value["__date__"])
        return {key: decode_cursor(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_cursor(item) for item in value]
    return value


def encode_cursors(cursors: Cursors) -> Dict[str, Dict[str, Any]]:
    return {
        table: {client_id: encode_cursor(cursor) for client_id, cursor in clients.items()}
        for table, clients in cursors.items()
    }


def decode_cursors(data: Dict[str, Dict[str, Any]]) -> Cursors:
    return {
        table: {client_id: decode_cursor(cursor) for client_id, cursor in clients.items()}
        for table, clients in (data or {}).items()
    }
