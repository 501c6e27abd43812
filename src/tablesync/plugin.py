"""Source plugin: owns the tables of one integration and serves syncs."""

from typing import Any, AsyncIterator, Iterable, List, Optional, Sequence

from .config.schema import ZeroRowCursorPolicy
from .config.settings import EngineSettings, get_settings
from .core.scheduler import ResolverScheduler
from .schema.registry import SchemaRegistry
from .schema.table import Table
from .state.base import Cursors
from .state.memory import MemoryStateStore
from .transport.messages import SyncMessage
from .utils.logging import get_logger


class SourcePlugin:
    """An integration exposing tables through the plugin protocol.

    Example:
        plugin = SourcePlugin("github", "1.0.0", [orgs, repos], root_client=api)
    """

    def __init__(
        self,
        name: str,
        version: str,
        tables: Sequence[Table],
        root_client: Any = None,
        settings: Optional[EngineSettings] = None,
        zero_row_policy: ZeroRowCursorPolicy = ZeroRowCursorPolicy.FETCH_START
    ):
        self.name = name
        self.version = version
        self.root_client = root_client
        self.settings = settings or get_settings().engine
        self.zero_row_policy = zero_row_policy
        self.logger = get_logger(self.__class__.__name__)

        self.registry = SchemaRegistry(tables, require_resolvers=True)

        self.logger.info("Source plugin initialized", plugin=name, version=version, tables=len(self.registry))

    async def negotiate_schema(self) -> List[Table]:
        """Every table of the plugin, parents first."""
        return self.registry.resolve_dependency_order()

    async def sync(
        self,
        selected: Optional[Iterable[str]] = None,
        cursors: Optional[Cursors] = None,
        zero_row_policy: Optional[ZeroRowCursorPolicy] = None
    ) -> AsyncIterator[SyncMessage]:
        """Stream the selected tables.

        Args:
            selected: Table names to sync; every table when None
            cursors: Stored cursors by table then client identity
            zero_row_policy: Overrides the plugin default for this sync
        """
        self.registry.freeze()

        scheduler = ResolverScheduler(
            self.registry,
            root_client=self.root_client,
            settings=self.settings,
            zero_row_policy=zero_row_policy or self.zero_row_policy
        )
        state = MemoryStateStore(cursors)

        async for message in scheduler.sync(state, selected):
            yield message
