"""Core sync logic package."""

from .engine import SyncEngine, SyncReport, SyncStatus
from .multiplexer import CallbackMultiplexer, ClientContext, Multiplexer, as_multiplexer, client_identity, expand
from .resource import FetchContext, Resource
from .scheduler import ResolverScheduler

__all__ = [
    "SyncEngine",
    "SyncReport",
    "SyncStatus",
    "Multiplexer",
    "CallbackMultiplexer",
    "as_multiplexer",
    "ClientContext",
    "client_identity",
    "expand",
    "FetchContext",
    "Resource",
    "ResolverScheduler"
]
