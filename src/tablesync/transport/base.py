"""Plugin transport interface."""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional, Sequence

from ..config.schema import ZeroRowCursorPolicy
from ..schema.table import Table
from ..state.base import Cursors
from .messages import SyncMessage


class PluginTransport(ABC):
    """Engine-side handle on a source plugin.

    Implementations raise :class:`~tablesync.errors.TransportError` on
    connection loss, deadlines and malformed streams. Application errors
    travel inside the stream as error messages.
    """

    @abstractmethod
    async def negotiate_schema(self) -> List[Table]:
        """Fetch the plugin's tables, parents first. Resolvers are not included."""

    @abstractmethod
    def sync(
        self,
        selected: Optional[Sequence[str]],
        cursors: Cursors,
        zero_row_policy: Optional[ZeroRowCursorPolicy] = None
    ) -> AsyncIterator[SyncMessage]:
        """Start a sync and stream its messages.

        A complete stream ends with exactly one summary message. The plugin
        default applies when ``zero_row_policy`` is None.
        """

    async def close(self) -> None:
        """Release connections held by the transport."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
