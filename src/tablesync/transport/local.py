"""In-process transport."""

from typing import AsyncIterator, List, Optional, Sequence

from ..config.schema import ZeroRowCursorPolicy
from ..schema.table import Table
from ..state.base import Cursors
from .base import PluginTransport
from .messages import SyncMessage


class InProcessTransport(PluginTransport):
    """Calls a plugin living in the same event loop.

    Tables are copied through their serialized form so the engine never sees
    plugin resolvers, and batches still travel as encoded bytes.
    """

    def __init__(self, plugin):
        self.plugin = plugin

    async def negotiate_schema(self) -> List[Table]:
        tables = await self.plugin.negotiate_schema()
        return [Table.from_dict(table.to_dict()) for table in tables]

    async def sync(
        self,
        selected: Optional[Sequence[str]],
        cursors: Cursors,
        zero_row_policy: Optional[ZeroRowCursorPolicy] = None
    ) -> AsyncIterator[SyncMessage]:
        stream = self.plugin.sync(selected, cursors, zero_row_policy)
        try:
            async for message in stream:
                yield message
        finally:
            await stream.aclose()
