"""Incremental state store package."""

from typing import Optional

from ..config.settings import StateSettings, get_settings
from .base import (
    Cursors,
    StateStore,
    encode_cursor,
    decode_cursor,
    encode_cursors,
    decode_cursors
)
from .memory import MemoryStateStore
from .file import FileStateStore
from .sql import SqlStateStore, CursorModel


def create_state_store(settings: Optional[StateSettings] = None) -> StateStore:
    """Create the state store configured in settings.

    Raises:
        ValueError: If the backend is not supported
    """
    settings = settings or get_settings().state
    backend = settings.backend.lower()

    if backend == "memory":
        return MemoryStateStore()
    if backend == "file":
        return FileStateStore(settings.path)
    if backend == "sql":
        return SqlStateStore(settings.url)

    raise ValueError(f"Unsupported state backend: {settings.backend}")


__all__ = [
    "Cursors",
    "StateStore",
    "encode_cursor",
    "decode_cursor",
    "encode_cursors",
    "decode_cursors",

    "MemoryStateStore",
    "FileStateStore",
    "SqlStateStore",
    "CursorModel",

    "create_state_store"
]
