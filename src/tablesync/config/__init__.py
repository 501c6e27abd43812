"""Configuration package for tablesync."""

from .settings import (
    EngineSettings,
    StateSettings,
    TransportSettings,
    LoggingSettings,
    AppSettings,
    get_settings
)

from .schema import (
    SyncSpec,
    ZeroRowCursorPolicy
)

__all__ = [
    "EngineSettings",
    "StateSettings",
    "TransportSettings",
    "LoggingSettings",
    "AppSettings",
    "get_settings",

    "SyncSpec",
    "ZeroRowCursorPolicy"
]
