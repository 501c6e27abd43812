"""In-memory state store."""

import copy
from typing import Any, Iterable, Optional

from .base import Cursors, StateStore


class MemoryStateStore(StateStore):
    """Keeps cursors in a dictionary for the lifetime of the process."""

    def __init__(self, cursors: Optional[Cursors] = None):
        self._cursors: Cursors = copy.deepcopy(cursors) if cursors else {}

    async def get(self, table: str, client_id: str) -> Optional[Any]:
        return self._cursors.get(table, {}).get(client_id)

    async def put(self, table: str, client_id: str, cursor: Any) -> None:
        self._cursors.setdefault(table, {})[client_id] = cursor

    async def snapshot(self, tables: Optional[Iterable[str]] = None) -> Cursors:
        wanted = set(tables) if tables is not None else None
        return {
            table: dict(clients)
            for table, clients in self._cursors.items()
            if wanted is None or table in wanted
        }
