"""Tests for the plugin transports and wire framing."""

import asyncio
import struct
from datetime import datetime, timedelta, timezone

import pytest
from aiohttp import ClientSession, test_utils, web

from tablesync.codec import decode, encode, serialize
from tablesync.config import TransportSettings
from tablesync.errors import ResolverError, SchemaError, TransportError
from tablesync.plugin import SourcePlugin
from tablesync.schema import Column, ColumnType, Table
from tablesync.transport import (
    BatchMessage,
    CursorMessage,
    ErrorMessage,
    HttpTransport,
    InProcessTransport,
    PluginServer,
    SummaryMessage,
    encode_frame,
    read_frame
)


BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def reader_for(data):
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


async def read_all(reader):
    messages = []
    while True:
        message = await read_frame(reader)
        if message is None:
            return messages
        messages.append(message)


async def collect(stream):
    return [message async for message in stream]


class TestFraming:
    """Test frame encoding and decoding."""

    @pytest.mark.asyncio
    async def test_round_trip(self):
        """Test every message kind through the framing."""
        table = Table("orgs", [Column("id", ColumnType.STRING, primary_key=True)])
        payload = serialize(encode(table, [{"id": "x"}], client_id="a"))
        messages = [
            BatchMessage(table="orgs", client_id="a", payload=payload),
            CursorMessage(table="orgs", client_id="a", cursor=BASE_TIME),
            ErrorMessage(error=ResolverError("bad column", table="orgs", client_id="a", column="name")),
            SummaryMessage(stats={"rows": {"orgs": 1}}),
        ]

        decoded = await read_all(reader_for(b"".join(encode_frame(message) for message in messages)))

        assert len(decoded) == 4
        assert decoded[0] == messages[0]
        assert decode(decoded[0].payload).to_pylist() == [{"id": "x"}]
        assert decoded[1] == messages[1]
        error = decoded[2].error
        assert isinstance(error, ResolverError)
        assert (error.message, error.table, error.client_id, error.column) == ("bad column", "orgs", "a", "name")
        assert decoded[3] == messages[3]

    @pytest.mark.asyncio
    async def test_truncated_frame(self):
        """Test that a frame cut anywhere is a transport error."""
        frame = encode_frame(BatchMessage(table="orgs", client_id="a", payload=b"0123456789"))

        for cut in (1, 3, 7, len(frame) - 1):
            with pytest.raises(TransportError, match="Truncated"):
                await read_frame(reader_for(frame[:cut]))

    @pytest.mark.asyncio
    async def test_unknown_kind(self):
        """Test that unknown frame kinds are rejected."""
        frame = b"X" + struct.pack(">I", 2) + b"{}" + struct.pack(">I", 0)

        with pytest.raises(TransportError, match="Unknown frame kind"):
            await read_frame(reader_for(frame))

    @pytest.mark.asyncio
    async def test_malformed_header(self):
        """Test that a header that is not a JSON object is rejected."""
        for header in (b"{nope", b"[1, 2]"):
            frame = b"S" + struct.pack(">I", len(header)) + header + struct.pack(">I", 0)
            with pytest.raises(TransportError, match="Malformed"):
                await read_frame(reader_for(frame))

    @pytest.mark.asyncio
    async def test_missing_header_field(self):
        """Test that batch frames need their table and client."""
        frame = b"B" + struct.pack(">I", 2) + b"{}" + struct.pack(">I", 0)

        with pytest.raises(TransportError, match="missing field"):
            await read_frame(reader_for(frame))


class TestHttpTransport:
    """Test the HTTP transport against a live plugin server."""

    async def start(self, app):
        server = test_utils.TestServer(app)
        await server.start_server()
        return server, HttpTransport(f"http://{server.host}:{server.port}", timeout=5)

    def test_settings_fallback(self):
        """Test that endpoint and timeout default to the transport settings."""
        transport = HttpTransport(settings=TransportSettings(endpoint="http://plugin:7777/", request_timeout_seconds=7))

        assert transport.endpoint == "http://plugin:7777"
        assert transport.timeout == 7
        with pytest.raises(ValueError, match="endpoint"):
            HttpTransport(settings=TransportSettings(endpoint=None))

    @pytest.mark.asyncio
    async def test_health(self, github_tables):
        """Test the liveness route."""
        server, transport = await self.start(PluginServer(SourcePlugin("github", "1.2.0", github_tables())).create_app())
        try:
            async with ClientSession() as session:
                async with session.get(f"{transport.endpoint}/health") as response:
                    data = await response.json()
        finally:
            await transport.close()
            await server.close()

        assert data == {"status": "ok", "plugin": "github", "version": "1.2.0"}

    @pytest.mark.asyncio
    async def test_negotiate_schema(self, github_tables):
        """Test that tables arrive without resolvers, parents first."""
        server, transport = await self.start(PluginServer(SourcePlugin("github", "1.0.0", github_tables())).create_app())
        try:
            tables = await transport.negotiate_schema()
        finally:
            await transport.close()
            await server.close()

        assert [table.name for table in tables] == ["orgs", "repos"]
        assert tables[0].cursor_column == "updated_at"
        assert tables[1].parent_name == "orgs"
        assert all(table.resolver is None for table in tables)

    @pytest.mark.asyncio
    async def test_sync_stream(self, github_tables):
        """Test a full sync over HTTP."""
        server, transport = await self.start(PluginServer(SourcePlugin("github", "1.0.0", github_tables())).create_app())
        try:
            messages = await collect(transport.sync(["orgs", "repos"], {"orgs": {"a": BASE_TIME}}))
        finally:
            await transport.close()
            await server.close()

        rows = sum(decode(m.payload).num_rows for m in messages if isinstance(m, BatchMessage))
        cursors = {m.client_id: m.cursor for m in messages if isinstance(m, CursorMessage)}

        assert rows == 18
        assert cursors == {"a": BASE_TIME + timedelta(hours=2), "b": BASE_TIME + timedelta(hours=2)}
        assert isinstance(messages[-1], SummaryMessage)
        assert messages[-1].stats["child_tasks"] == 6

    @pytest.mark.asyncio
    async def test_errors_travel_in_stream(self, github_tables):
        """Test that resolver errors arrive as error messages."""
        plugin = SourcePlugin("github", "1.0.0", github_tables(fail_client="b"))
        server, transport = await self.start(PluginServer(plugin).create_app())
        try:
            messages = await collect(transport.sync(None, {}))
        finally:
            await transport.close()
            await server.close()

        errors = [m.error for m in messages if isinstance(m, ErrorMessage)]
        assert len(errors) == 1
        assert isinstance(errors[0], ResolverError)
        assert (errors[0].table, errors[0].client_id) == ("orgs", "b")

    @pytest.mark.asyncio
    async def test_unknown_table_rejected(self, github_tables):
        """Test that the plugin rejects unknown tables before streaming."""
        server, transport = await self.start(PluginServer(SourcePlugin("github", "1.0.0", github_tables())).create_app())
        try:
            with pytest.raises(SchemaError, match="Unknown table"):
                await collect(transport.sync(["missing"], {}))
        finally:
            await transport.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_stream_without_summary(self):
        """Test that a stream ending early is a transport error."""
        async def handler(request):
            response = web.StreamResponse()
            await response.prepare(request)
            await response.write(encode_frame(CursorMessage(table="orgs", client_id="a", cursor=1)))
            await response.write_eof()
            return response

        app = web.Application()
        app.router.add_post("/sync", handler)
        server, transport = await self.start(app)
        try:
            with pytest.raises(TransportError, match="without a summary"):
                await collect(transport.sync(None, {}))
        finally:
            await transport.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_server_error_status(self):
        """Test that unexpected HTTP statuses are transport errors."""
        app = web.Application()
        server, transport = await self.start(app)
        try:
            with pytest.raises(TransportError, match="HTTP 404"):
                await transport.negotiate_schema()
        finally:
            await transport.close()
            await server.close()

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """Test that an unreachable plugin is a transport error."""
        transport = HttpTransport("http://127.0.0.1:1", timeout=2)
        try:
            with pytest.raises(TransportError):
                await transport.negotiate_schema()
            with pytest.raises(TransportError):
                await collect(transport.sync(None, {}))
        finally:
            await transport.close()


class TestInProcessTransport:
    """Test the in-process transport."""

    @pytest.mark.asyncio
    async def test_schema_is_copied(self, github_tables):
        """Test that negotiated tables do not expose plugin resolvers."""
        plugin = SourcePlugin("github", "1.0.0", github_tables())
        transport = InProcessTransport(plugin)

        tables = await transport.negotiate_schema()

        assert [table.name for table in tables] == ["orgs", "repos"]
        assert all(table.resolver is None for table in tables)
        assert plugin.registry.get("orgs").resolver is not None

    @pytest.mark.asyncio
    async def test_sync_passes_encoded_batches(self, github_tables):
        """Test that batches stay encoded across the in-process boundary."""
        transport = InProcessTransport(SourcePlugin("github", "1.0.0", github_tables()))

        messages = await collect(transport.sync(["orgs"], {}))
        batches = [m for m in messages if isinstance(m, BatchMessage)]

        assert batches and all(isinstance(m.payload, bytes) for m in batches)
        assert {m.table for m in batches} == {"orgs"}
