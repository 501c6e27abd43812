"""Resolver scheduler: drives table resolvers and streams encoded rows."""

import asyncio
import inspect
import time
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set

from ..codec import encode, serialize
from ..config.schema import ZeroRowCursorPolicy
from ..config.settings import EngineSettings, get_settings
from ..errors import EncodingError, MultiplexError, ResolverError, SyncError
from ..performance import AsyncRateLimiter, FetchPool
from ..schema.registry import SchemaRegistry
from ..schema.table import Table
from ..schema.types import ColumnType
from ..state.base import StateStore
from ..transport.messages import BatchMessage, CursorMessage, ErrorMessage, SummaryMessage, SyncMessage
from ..utils.logging import get_logger
from .multiplexer import client_identity, expand
from .resource import FetchContext, Resource


_DONE = object()


class _SyncRun:
    """Mutable state of one scheduler pass."""

    def __init__(self, selected: Set[str], state: StateStore, pool: FetchPool, queue_size: int):
        self.selected = selected
        self.state = state
        self.pool = pool
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)

        self.started = time.time()
        self.top_level_tasks = 0
        self.child_tasks = 0
        self.batches = 0
        self.errors = 0
        self.rows: Dict[str, int] = defaultdict(int)

    async def emit(self, message: Any) -> None:
        await self.queue.put(message)

    def summary(self) -> Dict[str, Any]:
        return {
            "top_level_tasks": self.top_level_tasks,
            "child_tasks": self.child_tasks,
            "rows": dict(self.rows),
            "batches": self.batches,
            "errors": self.errors,
            "peak_concurrency": self.pool.peak_active,
            "duration_seconds": round(time.time() - self.started, 4),
        }


class ResolverScheduler:
    """Walks the table tree and runs every fetch task in one bounded pool.

    Top-level tables are expanded through their multiplexer into one fetch
    task per client. Every resolved row submits one child fetch task per
    selected dependent table, through the same pool. Errors are tagged with
    table and client and streamed; they never cancel sibling tasks.
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        root_client: Any = None,
        settings: Optional[EngineSettings] = None,
        zero_row_policy: ZeroRowCursorPolicy = ZeroRowCursorPolicy.FETCH_START
    ):
        """Initialize the scheduler.

        Args:
            registry: Registry holding the tables and their resolvers
            root_client: Context passed to multiplexers and unmultiplexed tables
            settings: Engine settings (concurrency, batch size, rate limit)
            zero_row_policy: Cursor handling when an incremental fetch yields nothing
        """
        self.registry = registry
        self.root_client = root_client
        self.settings = settings or get_settings().engine
        self.zero_row_policy = ZeroRowCursorPolicy(zero_row_policy)
        self.logger = get_logger(self.__class__.__name__)

        self.rate_limiter: Optional[AsyncRateLimiter] = None
        if self.settings.rate_limit_calls and self.settings.rate_limit_window:
            self.rate_limiter = AsyncRateLimiter(self.settings.rate_limit_calls, self.settings.rate_limit_window)

    async def sync(
        self,
        state: StateStore,
        tables: Optional[Iterable[str]] = None
    ) -> AsyncIterator[SyncMessage]:
        """Resolve the selected tables and yield messages as rows are encoded.

        Args:
            state: Store the cursors of incremental tables are read from
            tables: Names of the tables to sync; every table when None

        Yields:
            Batch, cursor and error messages, then one summary message

        Raises:
            SchemaError: if a selected table is unknown
        """
        order = self.registry.resolve_dependency_order()
        if tables is None:
            selected = {table.name for table in order}
        else:
            selected = set(tables)
            for name in selected:
                self.registry.get(name)

        pool = FetchPool(self.settings.max_concurrency, self.settings.max_pending)
        run = _SyncRun(selected, state, pool, self.settings.queue_size)

        self.logger.info(
            "Starting resolver scheduler",
            tables=len(selected),
            max_concurrency=pool.max_concurrency,
            batch_size=self.settings.batch_size
        )

        driver = asyncio.create_task(self._drive(run, order))
        try:
            while True:
                message = await run.queue.get()
                if message is _DONE:
                    break
                yield message
            await driver
        finally:
            if not driver.done():
                driver.cancel()
                await pool.cancel()
                await asyncio.gather(driver, return_exceptions=True)
                self.logger.info("Resolver scheduler cancelled", outstanding_tasks=pool.outstanding)

    async def _drive(self, run: _SyncRun, order: List[Table]) -> None:
        try:
            for table in order:
                if table.is_dependent or table.name not in run.selected:
                    continue

                try:
                    pairs = await expand(
                        table,
                        self.root_client,
                        max_retries=self.settings.multiplex_max_retries,
                        retry_delay=self.settings.multiplex_retry_delay
                    )
                except MultiplexError as e:
                    await self._record_error(run, e)
                    continue

                for client, _ in pairs:
                    run.top_level_tasks += 1
                    await run.pool.submit(self._fetch, run, table, client, None)

            await run.pool.join()

            summary = run.summary()
            self.logger.info("Resolver scheduler finished", **summary)
            await run.emit(SummaryMessage(stats=summary))
        except asyncio.CancelledError:
            raise
        except Exception:
            await run.pool.cancel()
            await run.emit(_DONE)
            raise
        await run.emit(_DONE)

    async def _fetch(self, run: _SyncRun, table: Table, client: Any, parent: Optional[Resource]) -> None:
        client_id = client_identity(client)
        context = FetchContext(
            table=table,
            client=client,
            client_id=client_id,
            started_at=datetime.now(timezone.utc)
        )
        children = [child for child in self.registry.children(table) if child.name in run.selected]

        buffer: List[Resource] = []
        rows = 0
        max_cursor = None
        clean = True

        try:
            if table.is_incremental:
                context.cursor = await run.state.get(table.name, client_id)

            if self.rate_limiter:
                await self.rate_limiter.acquire()

            async for item in _iterate(table.resolver.resolve(context, parent)):
                resource = Resource(table=table, item=item, client=client, parent=parent)
                if not await self._resolve_columns(run, resource, client_id):
                    clean = False
                rows += 1

                if table.is_incremental:
                    value = _comparable(resource.get(table.cursor_column))
                    if value is not None and (max_cursor is None or value > max_cursor):
                        max_cursor = value

                buffer.append(resource)

                for child in children:
                    run.child_tasks += 1
                    await run.pool.submit(self._fetch, run, child, client, resource)

                if len(buffer) >= self.settings.batch_size:
                    clean = await self._flush(run, table, client_id, buffer) and clean
                    buffer = []

        except asyncio.CancelledError:
            raise
        except Exception as e:
            clean = False
            await self._record_error(run, _as_resolver_error(e, table.name, client_id))

        if buffer:
            clean = await self._flush(run, table, client_id, buffer) and clean

        if clean and table.is_incremental:
            cursor = self._next_cursor(table, context, rows, max_cursor)
            if cursor is not None:
                await run.emit(CursorMessage(table=table.name, client_id=client_id, cursor=cursor))

        self.logger.debug(
            "Fetch task finished",
            table=table.name,
            client_id=client_id,
            rows=rows,
            clean=clean
        )

    async def _resolve_columns(self, run: _SyncRun, resource: Resource, client_id: str) -> bool:
        ok = True
        for column in resource.table.columns:
            try:
                value = column.resolve(resource)
                if inspect.isawaitable(value):
                    value = await value
            except asyncio.CancelledError:
                raise
            except Exception as e:
                ok = False
                value = None
                await self._record_error(run, ResolverError(
                    f"Column resolver failed: {e}",
                    table=resource.table.name,
                    client_id=client_id,
                    column=column.name
                ))
            resource.set(column.name, value)
        return ok

    async def _flush(self, run: _SyncRun, table: Table, client_id: str, resources: List[Resource]) -> bool:
        try:
            payload = serialize(encode(table, resources, client_id=client_id))
        except EncodingError as e:
            await self._record_error(run, e)
            return False

        run.rows[table.name] += len(resources)
        run.batches += 1
        await run.emit(BatchMessage(table=table.name, client_id=client_id, payload=payload))
        return True

    def _next_cursor(self, table: Table, context: FetchContext, rows: int, max_cursor: Any) -> Any:
        if context.watermark is not None:
            return context.watermark
        if rows:
            return max_cursor

        if self.zero_row_policy != ZeroRowCursorPolicy.FETCH_START:
            return None
        if table.column(table.cursor_column).type != ColumnType.TIMESTAMP:
            return None

        previous = _comparable(context.cursor)
        if isinstance(previous, datetime) and previous > context.started_at:
            return previous
        return context.started_at

    async def _record_error(self, run: _SyncRun, error: SyncError) -> None:
        run.errors += 1
        self.logger.warning(
            "Table error collected",
            kind=error.kind,
            table=error.table,
            client_id=error.client_id,
            error=error.message
        )
        await run.emit(ErrorMessage(error=error))


async def _iterate(result: Any) -> AsyncIterator[Any]:
    """Iterate over what a table resolver returned, sync or async."""
    if inspect.isawaitable(result):
        result = await result
    if result is None:
        return
    if hasattr(result, "__aiter__"):
        async for item in result:
            yield item
    else:
        for item in result:
            yield item


def _comparable(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _as_resolver_error(error: Exception, table: str, client_id: str) -> ResolverError:
    if isinstance(error, ResolverError):
        error.table = error.table or table
        error.client_id = error.client_id or client_id
        return error
    message = error.message if isinstance(error, SyncError) else str(error)
    return ResolverError(f"Resolver failed: {message}", table=table, client_id=client_id)
