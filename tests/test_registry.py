"""Tests for table definitions and the schema registry."""

import pytest

from tablesync.errors import SchemaError
from tablesync.schema import Column, ColumnType, SchemaRegistry, Table


def make_table(name, parent=None, cursor_column=None, resolver=None):
    columns = [Column("id", ColumnType.INT, primary_key=True), Column("updated_at", ColumnType.TIMESTAMP)]
    return Table(name, columns, resolver=resolver, parent=parent, cursor_column=cursor_column)


class TestSchemaRegistry:
    """Test registration rules."""

    def setup_method(self):
        """Set up a small table tree."""
        self.orgs = make_table("orgs")
        self.repos = make_table("repos", parent=self.orgs)
        self.issues = make_table("issues", parent=self.repos)
        self.users = make_table("users")
        self.registry = SchemaRegistry([self.orgs, self.repos, self.issues, self.users])

    def test_children_and_descendants(self):
        """Test parent and child lookups."""
        assert self.registry.children(self.orgs) == [self.repos]
        assert [t.name for t in self.registry.descendants(self.orgs)] == ["repos", "issues"]
        assert self.registry.parent_of(self.issues) is self.repos
        assert self.registry.parent_of(self.orgs) is None

    def test_dependency_order_puts_parents_first(self):
        """Test that every table follows its parent."""
        order = [table.name for table in self.registry.resolve_dependency_order()]

        assert order.index("orgs") < order.index("repos") < order.index("issues")
        assert set(order) == {"orgs", "repos", "issues", "users"}

    def test_cycle_detected_in_dependency_order(self):
        """Test that parent links forming a loop are reported with their path."""
        self.orgs.parent_name = "issues"

        with pytest.raises(SchemaError, match="orgs -> issues -> repos -> orgs") as info:
            self.registry.resolve_dependency_order()

        assert info.value.table == "orgs"

    def test_duplicate_name_rejected(self):
        """Test that table names are unique."""
        with pytest.raises(SchemaError, match="Duplicate"):
            self.registry.register(make_table("orgs"))

    def test_unregistered_parent_rejected(self):
        """Test that a parent must be registered first."""
        registry = SchemaRegistry()
        with pytest.raises(SchemaError, match="not registered"):
            registry.register(make_table("repos", parent="orgs"))

    def test_invalid_definitions_rejected(self):
        """Test column and name validation."""
        registry = SchemaRegistry()

        with pytest.raises(SchemaError):
            registry.register(make_table("Bad-Name"))
        with pytest.raises(SchemaError, match="no columns"):
            registry.register(Table("empty", []))
        with pytest.raises(SchemaError, match="Duplicate column"):
            registry.register(Table("dup", [Column("id", ColumnType.INT), Column("id", ColumnType.STRING)]))
        with pytest.raises(SchemaError, match="Cursor column"):
            registry.register(make_table("orgs", cursor_column="missing"))

    def test_cursor_only_on_top_level_tables(self):
        """Test that dependent tables cannot be incremental."""
        with pytest.raises(SchemaError, match="top-level"):
            self.registry.register(make_table("events", parent=self.orgs, cursor_column="updated_at"))

    def test_self_parent_rejected(self):
        """Test that a table naming itself as parent is rejected."""
        with pytest.raises(SchemaError):
            SchemaRegistry([make_table("loop", parent="loop")])

    def test_resolver_required(self):
        """Test that plugin registries need resolvers."""
        with pytest.raises(SchemaError, match="no resolver"):
            SchemaRegistry([make_table("orgs")], require_resolvers=True)

        registry = SchemaRegistry([make_table("orgs", resolver=lambda context, parent: [])], require_resolvers=True)
        assert "orgs" in registry

    def test_frozen_registry_rejects_registration(self):
        """Test that registration fails once frozen."""
        self.registry.freeze()

        assert self.registry.frozen
        with pytest.raises(SchemaError, match="frozen"):
            self.registry.register(make_table("events"))

    def test_unknown_table(self):
        """Test lookups of unknown tables."""
        with pytest.raises(SchemaError, match="Unknown table"):
            self.registry.get("missing")


class TestTableSelection:
    """Test glob based table selection."""

    def setup_method(self):
        """Set up a small table tree."""
        self.orgs = make_table("orgs")
        self.repos = make_table("repos", parent=self.orgs)
        self.issues = make_table("issues", parent=self.repos)
        self.users = make_table("users")
        self.registry = SchemaRegistry([self.orgs, self.repos, self.issues, self.users])

    def names(self, tables):
        return [table.name for table in tables]

    def test_select_all(self):
        """Test the default selection."""
        assert set(self.names(self.registry.select())) == {"orgs", "repos", "issues", "users"}

    def test_select_includes_descendants(self):
        """Test that children follow their parent."""
        assert self.names(self.registry.select(["orgs"])) == ["orgs", "repos", "issues"]

    def test_skip_dependent_tables(self):
        """Test selection without automatic children."""
        assert self.names(self.registry.select(["orgs"], skip_dependent_tables=True)) == ["orgs"]

    def test_select_child_pulls_in_ancestors(self):
        """Test that a child cannot be fetched without its parents."""
        assert self.names(self.registry.select(["issues"])) == ["orgs", "repos", "issues"]

    def test_skip_removes_subtree(self):
        """Test that skipping a table skips its descendants."""
        assert self.names(self.registry.select(["orgs"], skip=["repos"])) == ["orgs"]

    def test_glob_patterns(self):
        """Test wildcard matching."""
        assert set(self.names(self.registry.select(["*s"], skip=["u*"]))) == {"orgs", "repos", "issues"}

    def test_unmatched_pattern(self):
        """Test that a pattern matching nothing is an error."""
        with pytest.raises(SchemaError, match="matches no table"):
            self.registry.select(["nothing*"])


class TestTableSerialization:
    """Test resolver-free table descriptions."""

    def test_round_trip(self):
        """Test that negotiation output rebuilds the table."""
        orgs = make_table("orgs", cursor_column="updated_at", resolver=lambda context, parent: [])
        repos = make_table("repos", parent=orgs)

        rebuilt = Table.from_dict(repos.to_dict())

        assert rebuilt.name == "repos"
        assert rebuilt.parent_name == "orgs"
        assert rebuilt.resolver is None
        assert rebuilt.primary_keys == ["id"]
        assert [column.type for column in rebuilt.columns] == [ColumnType.INT, ColumnType.TIMESTAMP]

        data = orgs.to_dict()
        assert data["cursor_column"] == "updated_at"
        assert data["multiplexed"] is False
        assert Table.from_dict(data).is_incremental
