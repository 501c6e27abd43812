"""Shared table definitions for the test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from tablesync.core.multiplexer import CallbackMultiplexer, ClientContext
from tablesync.schema import Column, ColumnType, Table, parent_column_resolver


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def build_github_tables(clients=("a", "b"), orgs_per_client=3, repos_per_org=2, fail_client=None):
    """``orgs`` multiplexed over ``clients`` with a dependent ``repos`` table."""

    def discover(root):
        return [ClientContext(id=client_id) for client_id in clients]

    async def resolve_orgs(context, parent):
        if context.client.id == fail_client:
            raise RuntimeError(f"API unavailable for {context.client.id}")
        for index in range(orgs_per_client):
            yield {
                "id": f"{context.client.id}-org{index}",
                "name": f"Org {index}",
                "updated_at": BASE_TIME + timedelta(hours=index),
            }

    def resolve_repos(context, parent):
        return [
            {"id": f"{parent.get('id')}-repo{index}", "stars": index * 10}
            for index in range(repos_per_org)
        ]

    orgs = Table(
        "orgs",
        columns=[
            Column("id", ColumnType.STRING, primary_key=True),
            Column("name", ColumnType.STRING),
            Column("updated_at", ColumnType.TIMESTAMP),
        ],
        resolver=resolve_orgs,
        multiplexer=CallbackMultiplexer(discover),
        cursor_column="updated_at",
    )
    repos = Table(
        "repos",
        columns=[
            Column("id", ColumnType.STRING, primary_key=True),
            Column("org_id", ColumnType.STRING, resolver=parent_column_resolver("id")),
            Column("stars", ColumnType.INT),
        ],
        resolver=resolve_repos,
        parent=orgs,
    )
    return [orgs, repos]


@pytest.fixture
def github_tables():
    """Factory for the orgs/repos table tree."""
    return build_github_tables
