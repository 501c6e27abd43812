"""Messages streamed from a plugin to the engine during a sync."""

from dataclasses import dataclass, field
from typing import Any, Dict, Union

from ..errors import SyncError


@dataclass
class BatchMessage:
    """Encoded record batch for one (table, client)."""

    table: str
    client_id: str
    payload: bytes


@dataclass
class CursorMessage:
    """New cursor for a (table, client) whose fetch task fully succeeded.

    Sent after the task's last batch, so every row it covers precedes it in
    the stream.
    """

    table: str
    client_id: str
    cursor: Any


@dataclass
class ErrorMessage:
    """A table-scoped error collected by the scheduler."""

    error: SyncError


@dataclass
class SummaryMessage:
    """Last message of a complete sync stream."""

    stats: Dict[str, Any] = field(default_factory=dict)


SyncMessage = Union[BatchMessage, CursorMessage, ErrorMessage, SummaryMessage]
