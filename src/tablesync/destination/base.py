"""Destination interface."""

from abc import ABC, abstractmethod
from typing import Sequence

from ..codec import RecordBatch
from ..schema.table import Table


class Destination(ABC):
    """Accepts ordered record batches per table.

    Implementations raise :class:`~tablesync.errors.DestinationError` when a
    write or flush fails.
    """

    async def migrate(self, tables: Sequence[Table]) -> None:
        """Prepare storage for the tables about to be synced."""

    @abstractmethod
    async def write(self, table_name: str, batch: RecordBatch) -> None:
        """Write one batch. Batches of a table arrive in stream order."""

    @abstractmethod
    async def flush(self, table_name: str) -> None:
        """Make every batch written so far for a table durable."""

    async def close(self) -> None:
        """Release resources."""
