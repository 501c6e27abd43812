"""In-memory destination."""

from collections import defaultdict
from typing import Any, Dict, List, Sequence

from ..codec import RecordBatch
from ..errors import DestinationError
from ..schema.table import Table
from ..utils.logging import LoggerMixin
from .base import Destination


class MemoryDestination(LoggerMixin, Destination):
    """Keeps rows in memory: written rows are staged, flushed rows committed."""

    def __init__(self):
        self.tables: Dict[str, Table] = {}
        self.staged: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.committed: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.batches: Dict[str, List[RecordBatch]] = defaultdict(list)

    async def migrate(self, tables: Sequence[Table]) -> None:
        for table in tables:
            self.tables[table.name] = table
        self.logger.debug("Destination migrated", tables=[table.name for table in tables])

    async def write(self, table_name: str, batch: RecordBatch) -> None:
        if self.tables and table_name not in self.tables:
            raise DestinationError("Table was not migrated", table=table_name, client_id=batch.client_id)
        self.batches[table_name].append(batch)
        self.staged[table_name].extend(batch.to_pylist())

    async def flush(self, table_name: str) -> None:
        rows = self.staged.pop(table_name, [])
        self.committed[table_name].extend(rows)

    def rows(self, table_name: str) -> List[Dict[str, Any]]:
        """Committed rows of a table."""
        return list(self.committed.get(table_name, []))
