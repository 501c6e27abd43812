"""Table and column definitions."""

import weakref
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable

from .types import ColumnType


@runtime_checkable
class TableResolver(Protocol):
    """Produces the raw records of one table for one fetch context.

    ``resolve`` may return an async iterable or a plain iterable. It is
    called once per fetch task and iterated exactly once.
    """

    def resolve(self, context: Any, parent: Optional[Any]) -> Any:
        ...


class FunctionResolver:
    """Adapts a plain function or async generator function to TableResolver."""

    def __init__(self, func: Callable[[Any, Optional[Any]], Any]):
        self.func = func

    def resolve(self, context: Any, parent: Optional[Any]) -> Any:
        return self.func(context, parent)

    def __repr__(self) -> str:
        return f"FunctionResolver({getattr(self.func, '__name__', self.func)!r})"


def as_table_resolver(resolver: Any) -> Optional[TableResolver]:
    """Return ``resolver`` as a TableResolver, wrapping callables."""
    if resolver is None or isinstance(resolver, TableResolver):
        return resolver
    if callable(resolver):
        return FunctionResolver(resolver)
    raise TypeError(f"{resolver!r} is neither a TableResolver nor callable")


ColumnResolver = Callable[[Any, "Column"], Any]


def default_column_resolver(resource: Any, column: "Column") -> Any:
    """Read the same-named field from the resource's raw record."""
    return _lookup(resource.item, column.name)


def path_resolver(path: str) -> ColumnResolver:
    """Column resolver reading a dotted path such as ``owner.login``."""
    parts = path.split(".")

    def resolve(resource: Any, column: "Column") -> Any:
        value = resource.item
        for part in parts:
            value = _lookup(value, part)
            if value is None:
                return None
        return value

    return resolve


def parent_column_resolver(name: str) -> ColumnResolver:
    """Column resolver copying an already resolved column of the parent resource."""

    def resolve(resource: Any, column: "Column") -> Any:
        if resource.parent is None:
            return None
        return resource.parent.get(name)

    return resolve


def _lookup(item: Any, name: str) -> Any:
    if item is None:
        return None
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


@dataclass
class Column:
    """A typed column of a table."""

    name: str
    type: ColumnType
    resolver: Optional[ColumnResolver] = None
    primary_key: bool = False
    description: str = ""

    def __post_init__(self):
        self.type = ColumnType(self.type)

    def resolve(self, resource: Any) -> Any:
        resolver = self.resolver or default_column_resolver
        return resolver(resource, self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "primary_key": self.primary_key,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            name=data["name"],
            type=ColumnType(data["type"]),
            primary_key=bool(data.get("primary_key", False)),
            description=data.get("description", ""),
        )


class Table:
    """Static definition of one table.

    A table with a parent is dependent: its resolver runs once per parent
    row, with the parent resource as context. The parent is held as a weak
    reference and always known by name.
    """

    def __init__(
        self,
        name: str,
        columns: Sequence[Column],
        resolver: Any = None,
        parent: Union["Table", str, None] = None,
        multiplexer: Any = None,
        cursor_column: Optional[str] = None,
        description: str = "",
    ):
        from ..core.multiplexer import as_multiplexer  # core imports this module

        self.name = name
        self.columns: List[Column] = list(columns)
        self.resolver = as_table_resolver(resolver)
        self.multiplexer = as_multiplexer(multiplexer)
        self.cursor_column = cursor_column
        self.description = description

        self._parent_ref = None
        if isinstance(parent, Table):
            self._parent_ref = weakref.ref(parent)
            self.parent_name: Optional[str] = parent.name
        else:
            self.parent_name = parent

    @property
    def parent(self) -> Optional["Table"]:
        """Parent table if it is still alive and was given as an object."""
        if self._parent_ref is None:
            return None
        return self._parent_ref()

    @property
    def is_dependent(self) -> bool:
        return self.parent_name is not None

    @property
    def is_incremental(self) -> bool:
        return self.cursor_column is not None

    @property
    def primary_keys(self) -> List[str]:
        return [column.name for column in self.columns if column.primary_key]

    def column(self, name: str) -> Optional[Column]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Resolver-free description used during schema negotiation."""
        return {
            "name": self.name,
            "description": self.description,
            "parent": self.parent_name,
            "cursor_column": self.cursor_column,
            "multiplexed": self.multiplexer is not None,
            "columns": [column.to_dict() for column in self.columns],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Table":
        return cls(
            name=data["name"],
            columns=[Column.from_dict(column) for column in data.get("columns", [])],
            parent=data.get("parent"),
            cursor_column=data.get("cursor_column"),
            description=data.get("description", ""),
        )

    def __repr__(self) -> str:
        return f"Table({self.name!r}, parent={self.parent_name!r})"

