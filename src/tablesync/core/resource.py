"""Resources and fetch contexts handed to resolvers."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..schema.table import Table


@dataclass
class FetchContext:
    """Execution context of one fetch task.

    ``cursor`` is the stored cursor for an incremental table, a lower bound
    the resolver may use to skip data it already delivered. A resolver that
    knows a better watermark than the rows it emits reports it with
    :meth:`report_watermark`.
    """

    table: Table
    client: Any
    client_id: str
    started_at: datetime
    cursor: Any = None
    watermark: Any = None

    def report_watermark(self, value: Any) -> None:
        self.watermark = value


@dataclass
class Resource:
    """One row of one table, produced by one resolver invocation."""

    table: Table
    item: Any
    client: Any = None
    parent: Optional["Resource"] = None
    values: Dict[str, Any] = field(default_factory=dict)

    def get(self, name: str) -> Any:
        return self.values.get(name)

    def set(self, name: str, value: Any) -> None:
        self.values[name] = value
