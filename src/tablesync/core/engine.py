"""Sync engine: drives one sync from schema negotiation to cursor commits."""

import asyncio
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from ..codec import decode
from ..config.schema import SyncSpec
from ..config.settings import EngineSettings, get_settings
from ..destination import Destination
from ..errors import DecodingError, DestinationError, SyncError, TransportError
from ..schema.registry import SchemaRegistry
from ..state.base import Cursors, StateStore
from ..transport.base import PluginTransport
from ..transport.messages import BatchMessage, CursorMessage, ErrorMessage, SummaryMessage
from ..utils.logging import get_logger, log_async_execution_time, sync_context


class SyncStatus(str, Enum):
    """Outcome of a sync run."""
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    CANCELLED = "cancelled"


@dataclass
class SyncReport:
    """Result of a sync run."""

    sync_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: SyncStatus = SyncStatus.SUCCESS
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    tables: List[str] = field(default_factory=list)
    rows: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    batches: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    cursors: Cursors = field(default_factory=dict)
    top_level_tasks: int = 0
    child_tasks: int = 0
    errors: List[SyncError] = field(default_factory=list)
    plugin_stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return (end - self.started_at).total_seconds()

    @property
    def total_rows(self) -> int:
        return sum(self.rows.values())

    @property
    def failures(self) -> Dict[str, List[str]]:
        """Client identities with errors, by table."""
        failures: Dict[str, Set[str]] = defaultdict(set)
        for error in self.errors:
            clients = failures[error.table or "<sync>"]
            if error.client_id:
                clients.add(error.client_id)
        return {table: sorted(clients) for table, clients in sorted(failures.items())}

    def summary(self) -> str:
        """Human readable report itemizing failing tables and clients."""
        lines = [
            f"Sync {self.sync_id} {self.status.value}: {self.total_rows} rows in "
            f"{sum(self.batches.values())} batches across {len(self.tables)} tables "
            f"({self.top_level_tasks} top-level tasks, {self.child_tasks} child tasks, "
            f"{self.duration_seconds:.2f}s)"
        ]
        for table in self.tables:
            if self.rows.get(table):
                lines.append(f"  {table}: {self.rows[table]} rows")
        if self.errors:
            lines.append(f"Errors ({len(self.errors)}):")
            for table, clients in self.failures.items():
                lines.append(f"  {table}: {', '.join(clients) if clients else 'all clients'}")
            for error in self.errors:
                lines.append(f"    [{error.kind}] {error}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sync_id": self.sync_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "tables": list(self.tables),
            "rows": dict(self.rows),
            "batches": dict(self.batches),
            "top_level_tasks": self.top_level_tasks,
            "child_tasks": self.child_tasks,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass
class _StreamState:
    blocked: Set[Tuple[str, str]] = field(default_factory=set)
    failed_tables: Set[str] = field(default_factory=set)
    dirty: Set[str] = field(default_factory=set)
    summary: Optional[SummaryMessage] = None


class SyncEngine:
    """Engine side of a sync: selects tables, writes batches, commits cursors.

    A cursor is committed only after the destination flushed its table, and
    only for a (table, client) whose batches were all decoded and written.
    """

    def __init__(
        self,
        transport: PluginTransport,
        destination: Destination,
        state_store: StateStore,
        settings: Optional[EngineSettings] = None
    ):
        """Initialize the sync engine.

        Args:
            transport: Connection to the source plugin
            destination: Where decoded batches are written
            state_store: Where committed cursors are persisted
            settings: Engine settings; the global settings when omitted
        """
        self.transport = transport
        self.destination = destination
        self.state_store = state_store
        self.settings = settings or get_settings().engine
        self.logger = get_logger(self.__class__.__name__)

        self._cancel_requested: Optional[asyncio.Event] = None

    def cancel(self) -> None:
        """Stop the running sync. Cursors of unfinished tasks are not written."""
        if self._cancel_requested is not None:
            self._cancel_requested.set()

    @log_async_execution_time
    async def run(self, spec: Optional[SyncSpec] = None, timeout: Optional[float] = None) -> SyncReport:
        """Run one sync.

        Args:
            spec: Table selection and cursor options
            timeout: Seconds before the sync is cancelled; falls back to
                ``sync_timeout_seconds``

        Returns:
            The sync report

        Raises:
            SchemaError: if the negotiated schema is invalid or a pattern
                matches no table
            TransportError: if the plugin connection fails
        """
        report = SyncReport()
        if timeout is None:
            timeout = self.settings.sync_timeout_seconds

        with sync_context(sync_id=report.sync_id):
            return await self._run(report, spec or SyncSpec(), timeout)

    async def _run(self, report: SyncReport, spec: SyncSpec, timeout: Optional[float]) -> SyncReport:
        self._cancel_requested = asyncio.Event()
        self.logger.info("Starting sync", tables=spec.tables, skip=spec.skip_tables)

        registry = SchemaRegistry(await self.transport.negotiate_schema())
        selected = registry.select(
            spec.tables,
            skip=spec.skip_tables,
            skip_dependent_tables=spec.skip_dependent_tables
        )
        report.tables = [table.name for table in selected]

        await self.destination.migrate(selected)
        cursors = await self.state_store.snapshot([table.name for table in selected if table.is_incremental])

        consumer = asyncio.create_task(self._consume(report, cursors, spec))
        cancel_waiter = asyncio.create_task(self._cancel_requested.wait())
        try:
            await asyncio.wait({consumer, cancel_waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_waiter.cancel()
            if not consumer.done():
                consumer.cancel()
                await asyncio.gather(consumer, return_exceptions=True)

        report.finished_at = datetime.now(timezone.utc)

        if consumer.cancelled():
            report.status = SyncStatus.CANCELLED
            self.logger.warning(
                "Sync cancelled",
                reason="cancel requested" if self._cancel_requested.is_set() else "timeout",
                rows=report.total_rows
            )
            return report

        try:
            consumer.result()
        except TransportError as e:
            self.logger.error("Sync aborted by transport failure", error=str(e))
            raise

        report.status = SyncStatus.PARTIAL_SUCCESS if report.errors else SyncStatus.SUCCESS
        self.logger.info(
            "Sync completed",
            status=report.status.value,
            rows=report.total_rows,
            errors=len(report.errors)
        )
        return report

    async def _consume(self, report: SyncReport, cursors: Cursors, spec: SyncSpec) -> None:
        state = _StreamState()
        stream = self.transport.sync(report.tables, cursors, spec.zero_row_cursor_policy)
        try:
            async for message in stream:
                if state.summary is not None:
                    raise TransportError("Message received after the summary")

                if isinstance(message, BatchMessage):
                    await self._handle_batch(report, state, message)
                elif isinstance(message, CursorMessage):
                    await self._handle_cursor(report, state, message)
                elif isinstance(message, ErrorMessage):
                    self._record_error(report, message.error)
                elif isinstance(message, SummaryMessage):
                    state.summary = message
                else:
                    raise TransportError(f"Unexpected message type: {type(message).__name__}")
        finally:
            await stream.aclose()

        if state.summary is None:
            raise TransportError("Sync stream ended without a summary")

        report.plugin_stats = dict(state.summary.stats)
        report.top_level_tasks = int(state.summary.stats.get("top_level_tasks", 0))
        report.child_tasks = int(state.summary.stats.get("child_tasks", 0))

        for table in sorted(state.dirty - state.failed_tables):
            try:
                await self.destination.flush(table)
            except DestinationError as e:
                self._fail_table(report, state, table, e)

    async def _handle_batch(self, report: SyncReport, state: _StreamState, message: BatchMessage) -> None:
        if message.table in state.failed_tables:
            return

        try:
            batch = decode(message.payload)
            if batch.table_name != message.table:
                raise DecodingError(f"Batch belongs to table '{batch.table_name}'")
        except DecodingError as e:
            e.table = e.table or message.table
            e.client_id = e.client_id or message.client_id
            state.blocked.add((message.table, message.client_id))
            self._record_error(report, e)
            return

        try:
            await self.destination.write(message.table, batch)
        except DestinationError as e:
            self._fail_table(report, state, message.table, e)
            return

        report.rows[message.table] += batch.num_rows
        report.batches[message.table] += 1
        state.dirty.add(message.table)

    async def _handle_cursor(self, report: SyncReport, state: _StreamState, message: CursorMessage) -> None:
        if message.table in state.failed_tables or (message.table, message.client_id) in state.blocked:
            self.logger.info(
                "Cursor not committed after failed batches",
                table=message.table,
                client_id=message.client_id
            )
            return

        try:
            await self.destination.flush(message.table)
        except DestinationError as e:
            self._fail_table(report, state, message.table, e)
            return
        state.dirty.discard(message.table)

        await self.state_store.put(message.table, message.client_id, message.cursor)
        report.cursors.setdefault(message.table, {})[message.client_id] = message.cursor
        self.logger.debug("Cursor committed", table=message.table, client_id=message.client_id)

    def _fail_table(self, report: SyncReport, state: _StreamState, table: str, error: DestinationError) -> None:
        error.table = error.table or table
        state.failed_tables.add(table)
        self._record_error(report, error)

    def _record_error(self, report: SyncReport, error: SyncError) -> None:
        report.errors.append(error)
        self.logger.warning(
            "Sync error",
            kind=error.kind,
            table=error.table,
            client_id=error.client_id,
            error=error.message
        )

    async def close(self) -> None:
        """Close the transport, the destination and the state store."""
        await self.transport.close()
        await self.destination.close()
        await self.state_store.close()
