"""HTTP plugin transport built on aiohttp.

A sync is one ``POST /sync`` whose response body is a sequence of frames::

    kind (1 byte) | header length (4) | JSON header | body length (4) | body

Lengths are big-endian. ``kind`` is ``B`` (batch, body holds the encoded
record batch), ``C`` (cursor), ``E`` (error) or ``S`` (summary, always
last). Only batches carry a body.
"""

import asyncio
import json
import struct
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiohttp
from aiohttp import ClientSession, ClientTimeout, web

from ..config.schema import ZeroRowCursorPolicy
from ..config.settings import TransportSettings, get_settings
from ..errors import SchemaError, SyncError, TransportError
from ..schema.table import Table
from ..state.base import Cursors, decode_cursor, decode_cursors, encode_cursor, encode_cursors
from ..utils.logging import get_logger
from .base import PluginTransport
from .messages import BatchMessage, CursorMessage, ErrorMessage, SummaryMessage, SyncMessage


FRAME_CONTENT_TYPE = "application/vnd.tablesync.frames"
MAX_HEADER_SIZE = 1024 * 1024
MAX_BODY_SIZE = 512 * 1024 * 1024

KIND_BATCH = b"B"
KIND_CURSOR = b"C"
KIND_ERROR = b"E"
KIND_SUMMARY = b"S"

_LENGTH = struct.Struct(">I")


def encode_frame(message: SyncMessage) -> bytes:
    """Encode one sync message as a frame."""
    body = b""
    if isinstance(message, BatchMessage):
        kind = KIND_BATCH
        header: Dict[str, Any] = {"table": message.table, "client_id": message.client_id}
        body = message.payload
    elif isinstance(message, CursorMessage):
        kind = KIND_CURSOR
        header = {
            "table": message.table,
            "client_id": message.client_id,
            "cursor": encode_cursor(message.cursor),
        }
    elif isinstance(message, ErrorMessage):
        kind = KIND_ERROR
        header = message.error.to_dict()
    elif isinstance(message, SummaryMessage):
        kind = KIND_SUMMARY
        header = message.stats
    else:
        raise TypeError(f"Unsupported message type: {type(message).__name__}")

    header_bytes = json.dumps(header, default=str).encode("utf-8")
    return b"".join([kind, _LENGTH.pack(len(header_bytes)), header_bytes, _LENGTH.pack(len(body)), body])


async def read_frame(reader) -> Optional[SyncMessage]:
    """Read one frame from a stream reader.

    Returns None at a clean end of stream, i.e. when no byte of a new frame
    was read.

    Raises:
        TransportError: on a truncated or malformed frame
    """
    try:
        kind = await reader.readexactly(1)
    except asyncio.IncompleteReadError as e:
        if not e.partial:
            return None
        raise TransportError("Truncated frame") from e

    try:
        (header_length,) = _LENGTH.unpack(await reader.readexactly(_LENGTH.size))
        if header_length > MAX_HEADER_SIZE:
            raise TransportError(f"Frame header too large: {header_length} bytes")
        header_bytes = await reader.readexactly(header_length)
        (body_length,) = _LENGTH.unpack(await reader.readexactly(_LENGTH.size))
        if body_length > MAX_BODY_SIZE:
            raise TransportError(f"Frame body too large: {body_length} bytes")
        body = await reader.readexactly(body_length)
    except asyncio.IncompleteReadError as e:
        raise TransportError("Truncated frame") from e

    try:
        header = json.loads(header_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise TransportError(f"Malformed frame header: {e}") from e
    if not isinstance(header, dict):
        raise TransportError("Malformed frame header: expected an object")

    try:
        if kind == KIND_BATCH:
            return BatchMessage(table=header["table"], client_id=header["client_id"], payload=body)
        if kind == KIND_CURSOR:
            return CursorMessage(
                table=header["table"],
                client_id=header["client_id"],
                cursor=decode_cursor(header.get("cursor"))
            )
    except KeyError as e:
        raise TransportError(f"Frame header missing field {e}") from e
    if kind == KIND_ERROR:
        return ErrorMessage(error=SyncError.from_dict(header))
    if kind == KIND_SUMMARY:
        return SummaryMessage(stats=header)

    raise TransportError(f"Unknown frame kind: {kind!r}")


class PluginServer:
    """Serves a source plugin over HTTP.

    Routes:
        GET  /health  liveness
        GET  /schema  the plugin's tables as JSON
        POST /sync    ``{"tables", "cursors", "zero_row_cursor_policy"}``,
                      answered with a frame stream
    """

    def __init__(self, plugin):
        self.plugin = plugin
        self.logger = get_logger(self.__class__.__name__)

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.health)
        app.router.add_get("/schema", self.schema)
        app.router.add_post("/sync", self.sync)
        return app

    async def serve(self, host: Optional[str] = None, port: Optional[int] = None) -> web.AppRunner:
        """Start listening and return the runner; call ``runner.cleanup()`` to stop.

        Host and port default to the ``TABLESYNC_TRANSPORT_`` settings.
        """
        settings = get_settings().transport
        host = settings.host if host is None else host
        port = settings.port if port is None else port

        runner = web.AppRunner(self.create_app())
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        self.logger.info("Plugin server listening", plugin=self.plugin.name, host=host, port=port)
        return runner

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok",
            "plugin": self.plugin.name,
            "version": self.plugin.version,
        })

    async def schema(self, request: web.Request) -> web.Response:
        tables = await self.plugin.negotiate_schema()
        return web.json_response({
            "plugin": self.plugin.name,
            "version": self.plugin.version,
            "tables": [table.to_dict() for table in tables],
        })

    async def sync(self, request: web.Request) -> web.StreamResponse:
        try:
            body = await request.json()
        except json.JSONDecodeError:
            body = None
        if not isinstance(body, dict):
            return web.json_response(SchemaError("Request body must be a JSON object").to_dict(), status=400)

        selected = body.get("tables")
        cursors = decode_cursors(body.get("cursors") or {})
        policy = None
        if body.get("zero_row_cursor_policy"):
            try:
                policy = ZeroRowCursorPolicy(body["zero_row_cursor_policy"])
            except ValueError as e:
                return web.json_response(SchemaError(str(e)).to_dict(), status=400)
        stream = self.plugin.sync(selected, cursors, policy)

        # Selection errors surface on the first message, before any frame is sent
        try:
            first = await stream.__anext__()
        except SchemaError as e:
            await stream.aclose()
            self.logger.warning("Sync request rejected", error=str(e))
            return web.json_response(e.to_dict(), status=400)

        response = web.StreamResponse(status=200, headers={"Content-Type": FRAME_CONTENT_TYPE})
        await response.prepare(request)

        frames = 0
        try:
            await response.write(encode_frame(first))
            frames += 1
            async for message in stream:
                await response.write(encode_frame(message))
                frames += 1
        except ConnectionResetError:
            self.logger.warning("Engine disconnected during sync", frames=frames)
            return response
        finally:
            await stream.aclose()

        await response.write_eof()
        self.logger.info("Sync stream completed", frames=frames)
        return response


class HttpTransport(PluginTransport):
    """Engine-side client of a :class:`PluginServer`."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[ClientSession] = None,
        settings: Optional[TransportSettings] = None
    ):
        """Initialize the transport.

        Args:
            endpoint: Base URL of the plugin server
            timeout: Connect and per-read deadline in seconds
            session: Session to reuse; the transport owns the session it creates
            settings: Fallback for ``endpoint`` and ``timeout``
        """
        settings = settings or get_settings().transport
        endpoint = endpoint or settings.endpoint
        if not endpoint:
            raise ValueError("HttpTransport needs an endpoint")

        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout or settings.request_timeout_seconds
        self.logger = get_logger(self.__class__.__name__)

        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                timeout=ClientTimeout(total=None, connect=self.timeout, sock_read=self.timeout),
                headers={"User-Agent": "tablesync/0.1"}
            )
            self._owns_session = True
        return self._session

    async def negotiate_schema(self) -> List[Table]:
        session = await self._get_session()
        url = f"{self.endpoint}/schema"
        try:
            async with session.get(url) as response:
                if response.status != 200:
                    raise TransportError(f"Schema request failed with HTTP {response.status}")
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Schema request to {url} failed: {e}") from e

        tables = [Table.from_dict(table) for table in data.get("tables", [])]
        self.logger.info("Schema negotiated", plugin=data.get("plugin"), tables=len(tables))
        return tables

    async def sync(
        self,
        selected: Optional[Sequence[str]],
        cursors: Cursors,
        zero_row_policy: Optional[ZeroRowCursorPolicy] = None
    ) -> AsyncIterator[SyncMessage]:
        session = await self._get_session()
        url = f"{self.endpoint}/sync"
        payload = {
            "tables": list(selected) if selected is not None else None,
            "cursors": encode_cursors(cursors),
            "zero_row_cursor_policy": ZeroRowCursorPolicy(zero_row_policy).value if zero_row_policy else None,
        }

        summary_seen = False
        try:
            async with session.post(url, json=payload) as response:
                if response.status == 400:
                    raise SyncError.from_dict(await response.json())
                if response.status != 200:
                    raise TransportError(f"Sync request failed with HTTP {response.status}")

                while True:
                    message = await read_frame(response.content)
                    if message is None:
                        break
                    if summary_seen:
                        raise TransportError("Frame received after the summary")
                    if isinstance(message, SummaryMessage):
                        summary_seen = True
                    yield message
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Sync stream from {url} failed: {e}") from e

        if not summary_seen:
            raise TransportError("Sync stream ended without a summary")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
