"""Error taxonomy shared by the engine, the scheduler and the transports."""

from typing import Any, Dict, Optional, Type


class SyncError(Exception):
    """Base class for every error raised or collected during a sync.

    Errors carry the table and client they are scoped to so that a sync
    report can itemize them, and serialize to a plain dictionary so they
    can travel across the plugin transport.
    """

    kind = "sync_error"

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        client_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.table = table
        self.client_id = client_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return {
            "kind": self.kind,
            "message": self.message,
            "table": self.table,
            "client_id": self.client_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncError":
        """Rebuild an error from :meth:`to_dict` output."""
        error_class = _ERROR_KINDS.get(data.get("kind", ""), SyncError)
        error = error_class.__new__(error_class)
        SyncError.__init__(
            error,
            data.get("message", ""),
            table=data.get("table"),
            client_id=data.get("client_id"),
        )
        if isinstance(error, ResolverError):
            error.column = data.get("column")
        if isinstance(error, RateLimitError):
            error.retry_after = data.get("retry_after")
        return error

    def __str__(self) -> str:
        scope = []
        if self.table:
            scope.append(f"table={self.table}")
        if self.client_id:
            scope.append(f"client={self.client_id}")
        if scope:
            return f"{self.message} ({', '.join(scope)})"
        return self.message


class SchemaError(SyncError):
    """Malformed or cyclic table definitions. Fatal at startup."""

    kind = "schema_error"


class MultiplexError(SyncError):
    """Client enumeration for a top-level table failed."""

    kind = "multiplex_error"


class ResolverError(SyncError):
    """A table or column resolver failed for one client."""

    kind = "resolver_error"

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        client_id: Optional[str] = None,
        column: Optional[str] = None,
    ):
        super().__init__(message, table=table, client_id=client_id)
        self.column = column

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["column"] = self.column
        return data


class EncodingError(SyncError):
    """Rows could not be encoded into a record batch."""

    kind = "encoding_error"


class DecodingError(SyncError):
    """Wire bytes could not be decoded into a record batch."""

    kind = "decoding_error"


class TransportError(SyncError):
    """RPC or connection failure. Always fatal to the whole sync."""

    kind = "transport_error"


class DestinationError(SyncError):
    """The destination rejected a write or a flush."""

    kind = "destination_error"


class RateLimitError(SyncError):
    """Raised by resolvers or multiplexers when a third-party API throttles."""

    kind = "rate_limit_error"

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        table: Optional[str] = None,
        client_id: Optional[str] = None,
    ):
        super().__init__(message, table=table, client_id=client_id)
        self.retry_after = retry_after

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data


_ERROR_KINDS: Dict[str, Type[SyncError]] = {
    error_class.kind: error_class
    for error_class in (
        SyncError,
        SchemaError,
        MultiplexError,
        ResolverError,
        EncodingError,
        DecodingError,
        TransportError,
        DestinationError,
        RateLimitError,
    )
}
