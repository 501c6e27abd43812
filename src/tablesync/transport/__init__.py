"""Plugin transports and the sync message stream."""

from .base import PluginTransport
from .http import HttpTransport, PluginServer, encode_frame, read_frame
from .local import InProcessTransport
from .messages import BatchMessage, CursorMessage, ErrorMessage, SummaryMessage, SyncMessage

__all__ = [
    "PluginTransport",
    "InProcessTransport",
    "HttpTransport",
    "PluginServer",
    "encode_frame",
    "read_frame",
    "BatchMessage",
    "CursorMessage",
    "ErrorMessage",
    "SummaryMessage",
    "SyncMessage"
]
