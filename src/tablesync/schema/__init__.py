"""Table schema definitions and registry."""

from .types import ColumnType, PRIMARY_TYPES, arrow_type
from .table import (
    Column,
    Table,
    TableResolver,
    FunctionResolver,
    ColumnResolver,
    default_column_resolver,
    path_resolver,
    parent_column_resolver
)
from .registry import SchemaRegistry

__all__ = [
    "ColumnType",
    "PRIMARY_TYPES",
    "arrow_type",

    "Column",
    "Table",
    "TableResolver",
    "FunctionResolver",
    "ColumnResolver",
    "default_column_resolver",
    "path_resolver",
    "parent_column_resolver",

    "SchemaRegistry"
]
