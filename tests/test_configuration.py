"""Tests for settings and sync specs."""

import logging

import pytest
import structlog
from pydantic import ValidationError

from tablesync.config import (
    AppSettings,
    EngineSettings,
    StateSettings,
    SyncSpec,
    ZeroRowCursorPolicy,
    get_settings
)
from tablesync.errors import ResolverError, SyncError, TransportError
from tablesync.utils.logging import get_logger, setup_logging, sync_context


class TestSyncSpec:
    """Test per-sync options."""

    def test_defaults(self):
        """Test that the default SyncSpec selects every table."""
        spec = SyncSpec()

        assert spec.tables == ["*"]
        assert spec.skip_tables == []
        assert spec.skip_dependent_tables is False
        assert spec.zero_row_cursor_policy == ZeroRowCursorPolicy.FETCH_START

    def test_patterns_are_stripped(self):
        """Test pattern normalization."""
        spec = SyncSpec(tables=[" orgs ", "repo*"], skip_tables=["repo_archive "])

        assert spec.tables == ["orgs", "repo*"]
        assert spec.skip_tables == ["repo_archive"]

    def test_empty_patterns_rejected(self):
        """Test that empty selections are invalid."""
        with pytest.raises(ValidationError):
            SyncSpec(tables=[])
        with pytest.raises(ValidationError):
            SyncSpec(tables=["orgs", "  "])
        with pytest.raises(ValidationError):
            SyncSpec(skip_tables=[""])

    def test_policy_from_string(self):
        """Test that policies parse from their values."""
        assert SyncSpec(zero_row_cursor_policy="keep").zero_row_cursor_policy == ZeroRowCursorPolicy.KEEP
        with pytest.raises(ValidationError):
            SyncSpec(zero_row_cursor_policy="rewind")


class TestSettings:
    """Test environment driven settings."""

    def test_engine_defaults(self):
        """Test default engine limits."""
        settings = EngineSettings()

        assert settings.max_concurrency == 10
        assert settings.max_pending == 100
        assert settings.batch_size == 500
        assert settings.sync_timeout_seconds is None

    def test_engine_from_environment(self, monkeypatch):
        """Test the engine environment prefix."""
        monkeypatch.setenv("TABLESYNC_ENGINE_MAX_CONCURRENCY", "4")
        monkeypatch.setenv("TABLESYNC_ENGINE_SYNC_TIMEOUT_SECONDS", "30")

        settings = EngineSettings()

        assert settings.max_concurrency == 4
        assert settings.sync_timeout_seconds == 30.0

    def test_limits_validated(self):
        """Test that pool limits must be positive."""
        with pytest.raises(ValidationError):
            EngineSettings(max_concurrency=0)
        with pytest.raises(ValidationError):
            EngineSettings(batch_size=0)

    def test_state_from_environment(self, monkeypatch):
        """Test the state environment prefix."""
        monkeypatch.setenv("TABLESYNC_STATE_BACKEND", "file")
        monkeypatch.setenv("TABLESYNC_STATE_PATH", "/tmp/cursors.json")

        settings = StateSettings()

        assert settings.backend == "file"
        assert settings.path == "/tmp/cursors.json"

    def test_app_settings(self):
        """Test the aggregated settings."""
        settings = AppSettings()

        assert settings.name == "tablesync"
        assert isinstance(settings.engine, EngineSettings)
        assert isinstance(get_settings(), AppSettings)


class TestErrors:
    """Test the error taxonomy."""

    def test_round_trip(self):
        """Test that errors survive serialization with their scope."""
        error = ResolverError("bad value", table="orgs", client_id="a", column="name")

        rebuilt = SyncError.from_dict(error.to_dict())

        assert isinstance(rebuilt, ResolverError)
        assert rebuilt.column == "name"
        assert str(rebuilt) == "bad value (table=orgs, client=a)"

    def test_unknown_kind(self):
        """Test that unknown kinds fall back to the base class."""
        rebuilt = SyncError.from_dict({"kind": "something_new", "message": "x"})

        assert type(rebuilt) is SyncError
        assert str(rebuilt) == "x"

    def test_kinds(self):
        """Test error kinds."""
        assert TransportError("down").kind == "transport_error"
        assert isinstance(TransportError("down"), SyncError)


class TestLogging:
    """Test logging setup."""

    def test_setup_logging(self, tmp_path):
        """Test console and file logging, and that a second setup replaces handlers."""
        log_file = tmp_path / "logs" / "tablesync.log"
        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level

        try:
            setup_logging(log_level="DEBUG", log_format="json", log_file=str(log_file))
            installed = len(root.handlers)
            get_logger("test").info("Logging configured", table="orgs")

            setup_logging(log_level="DEBUG", log_format="json", log_file=str(log_file))

            assert log_file.exists()
            assert "Logging configured" in log_file.read_text(encoding="utf-8")
            assert installed == len(handlers) + 2
            assert len(root.handlers) == installed
        finally:
            for handler in root.handlers[len(handlers):]:
                root.removeHandler(handler)
                handler.close()
            root.setLevel(level)

    def test_sync_context(self):
        """Test that bound values are visible only inside the block."""
        with sync_context(sync_id="abc"):
            assert structlog.contextvars.get_contextvars()["sync_id"] == "abc"

        assert "sync_id" not in structlog.contextvars.get_contextvars()
