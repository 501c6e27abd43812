"""Table schema registry: validation, dependency order and selection."""

import fnmatch
import re
from typing import Dict, Iterable, List, Optional, Sequence

from ..errors import SchemaError
from ..utils.logging import get_logger
from .table import Table


NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_]*$")


class SchemaRegistry:
    """Holds the static definition of every table of a plugin.

    Tables must be registered parents first. Once a sync starts the registry
    is frozen and further registration fails.
    """

    def __init__(self, tables: Iterable[Table] = (), require_resolvers: bool = False):
        """Initialize the registry.

        Args:
            tables: Tables to register, parents before children
            require_resolvers: Reject tables without a table resolver
        """
        self.require_resolvers = require_resolvers
        self.logger = get_logger(self.__class__.__name__)

        self._tables: Dict[str, Table] = {}
        self._children: Dict[str, List[Table]] = {}
        self._frozen = False

        for table in tables:
            self.register(table)

    @property
    def tables(self) -> List[Table]:
        """Registered tables in registration order."""
        return list(self._tables.values())

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, name: str) -> bool:
        return name in self._tables

    def __len__(self) -> int:
        return len(self._tables)

    def freeze(self) -> None:
        """Make the registry read-only."""
        self._frozen = True

    def register(self, table: Table) -> Table:
        """Register a table.

        Raises:
            SchemaError: on a duplicate name, an unregistered parent or an
                invalid table definition
        """
        if self._frozen:
            raise SchemaError("Schema registry is frozen once a sync has started", table=table.name)

        if table.name in self._tables:
            raise SchemaError(f"Duplicate table name '{table.name}'", table=table.name)

        self._validate(table)

        if table.is_dependent and table.parent_name not in self._tables:
            raise SchemaError(
                f"Parent table '{table.parent_name}' is not registered",
                table=table.name
            )

        self._tables[table.name] = table
        self._children.setdefault(table.name, [])
        if table.is_dependent:
            self._children[table.parent_name].append(table)
            if table.multiplexer is not None:
                self.logger.debug(
                    "Multiplexer on dependent table is ignored, parent client is used",
                    table=table.name
                )

        return table

    def get(self, name: str) -> Table:
        try:
            return self._tables[name]
        except KeyError:
            raise SchemaError(f"Unknown table '{name}'", table=name) from None

    def parent_of(self, table: Table) -> Optional[Table]:
        if not table.is_dependent:
            return None
        return self._tables.get(table.parent_name)

    def children(self, table: Table) -> List[Table]:
        """Dependent tables of ``table`` in registration order."""
        return list(self._children.get(table.name, ()))

    def descendants(self, table: Table) -> List[Table]:
        found = []
        stack = list(reversed(self.children(table)))
        while stack:
            child = stack.pop()
            found.append(child)
            stack.extend(reversed(self.children(child)))
        return found

    def resolve_dependency_order(self) -> List[Table]:
        """Return every table with parents ahead of their children.

        Raises:
            SchemaError: if the parent links form a cycle
        """
        order: List[Table] = []
        state: Dict[str, int] = {}  # 1 = visiting, 2 = done

        def visit(table: Table, path: List[str]) -> None:
            mark = state.get(table.name)
            if mark == 2:
                return
            if mark == 1:
                cycle = " -> ".join(path + [table.name])
                raise SchemaError(f"Cyclic table dependency: {cycle}", table=table.name)

            state[table.name] = 1
            parent = self._tables.get(table.parent_name) if table.is_dependent else None
            if table.is_dependent and parent is None:
                raise SchemaError(
                    f"Parent table '{table.parent_name}' is not registered",
                    table=table.name
                )
            if parent is not None:
                visit(parent, path + [table.name])
            state[table.name] = 2
            order.append(table)

        for table in self._tables.values():
            visit(table, [])

        return order

    def select(
        self,
        patterns: Sequence[str] = ("*",),
        skip: Sequence[str] = (),
        skip_dependent_tables: bool = False
    ) -> List[Table]:
        """Select tables by glob pattern.

        Ancestors of a selected table are always included because their rows
        drive it. Descendants are included unless ``skip_dependent_tables``.
        Tables matching ``skip`` are removed together with their descendants.

        Returns:
            Selected tables in dependency order

        Raises:
            SchemaError: if a pattern matches no table
        """
        names = list(self._tables)
        selected = set()

        for pattern in patterns:
            matched = fnmatch.filter(names, pattern)
            if not matched:
                raise SchemaError(f"Table pattern '{pattern}' matches no table")
            selected.update(matched)

        if not skip_dependent_tables:
            for name in list(selected):
                selected.update(child.name for child in self.descendants(self._tables[name]))

        skipped = set()
        for pattern in skip:
            for name in fnmatch.filter(names, pattern):
                skipped.add(name)
                skipped.update(child.name for child in self.descendants(self._tables[name]))

        # Descendants of a skipped table are skipped too, so no ancestor
        # walked here can be in ``skipped``.
        selected -= skipped
        for name in list(selected):
            table = self._tables[name]
            while table.is_dependent:
                table = self._tables[table.parent_name]
                selected.add(table.name)

        return [table for table in self.resolve_dependency_order() if table.name in selected]

    def _validate(self, table: Table) -> None:
        if not NAME_PATTERN.match(table.name or ""):
            raise SchemaError(f"Invalid table name '{table.name}'", table=table.name)

        if not table.columns:
            raise SchemaError("Table has no columns", table=table.name)

        seen = set()
        for column in table.columns:
            if not NAME_PATTERN.match(column.name or ""):
                raise SchemaError(f"Invalid column name '{column.name}'", table=table.name)
            if column.name in seen:
                raise SchemaError(f"Duplicate column name '{column.name}'", table=table.name)
            seen.add(column.name)

        if table.cursor_column is not None:
            if table.cursor_column not in seen:
                raise SchemaError(
                    f"Cursor column '{table.cursor_column}' is not a column of the table",
                    table=table.name
                )
            if table.is_dependent:
                raise SchemaError(
                    "Incremental cursors are only supported on top-level tables",
                    table=table.name
                )

        if table.parent_name == table.name:
            raise SchemaError("Table cannot be its own parent", table=table.name)

        if self.require_resolvers and table.resolver is None:
            raise SchemaError("Table has no resolver", table=table.name)
