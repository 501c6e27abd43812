"""tablesync: resolver-driven table extraction over a plugin boundary."""

from .config import SyncSpec, ZeroRowCursorPolicy, get_settings
from .core import (
    CallbackMultiplexer,
    ClientContext,
    FetchContext,
    Multiplexer,
    Resource,
    SyncEngine,
    SyncReport,
    SyncStatus
)
from .destination import Destination, MemoryDestination
from .plugin import SourcePlugin
from .schema import Column, ColumnType, SchemaRegistry, Table
from .state import create_state_store
from .transport import HttpTransport, InProcessTransport, PluginServer

__version__ = "0.1.0"

__all__ = [
    "SyncSpec",
    "ZeroRowCursorPolicy",
    "get_settings",
    "CallbackMultiplexer",
    "ClientContext",
    "FetchContext",
    "Multiplexer",
    "Resource",
    "SyncEngine",
    "SyncReport",
    "SyncStatus",
    "Destination",
    "MemoryDestination",
    "SourcePlugin",
    "Column",
    "ColumnType",
    "SchemaRegistry",
    "Table",
    "create_state_store",
    "HttpTransport",
    "InProcessTransport",
    "PluginServer"
]
