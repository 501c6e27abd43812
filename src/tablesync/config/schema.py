"""Per-sync configuration: which tables to sync and how cursors advance."""

from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator


class ZeroRowCursorPolicy(str, Enum):
    """What an incremental fetch that returned no rows does to its cursor."""
    FETCH_START = "fetch_start"
    KEEP = "keep"


class SyncSpec(BaseModel):
    """Selection and cursor options for one sync run."""

    tables: List[str] = Field(default_factory=lambda: ["*"], description="Glob patterns of tables to sync")
    skip_tables: List[str] = Field(default_factory=list, description="Glob patterns of tables to leave out")
    skip_dependent_tables: bool = Field(default=False, description="Do not pull in child tables automatically")
    zero_row_cursor_policy: ZeroRowCursorPolicy = Field(
        default=ZeroRowCursorPolicy.FETCH_START,
        description="Cursor handling for incremental fetches that yield nothing",
    )

    @field_validator("tables")
    @classmethod
    def validate_tables(cls, v):
        if not v:
            raise ValueError("At least one table pattern is required")
        return cls._check_patterns(v)

    @field_validator("skip_tables")
    @classmethod
    def validate_skip_tables(cls, v):
        return cls._check_patterns(v)

    @staticmethod
    def _check_patterns(patterns: List[str]) -> List[str]:
        cleaned = [pattern.strip() for pattern in patterns]
        if any(not pattern for pattern in cleaned):
            raise ValueError("Table patterns must not be empty")
        return cleaned
