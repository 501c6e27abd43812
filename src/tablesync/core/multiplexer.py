"""Expansion of top-level tables into per-client fetch pairs."""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from ..errors import MultiplexError, RateLimitError
from ..schema.table import Table
from ..utils.logging import get_logger


logger = get_logger("multiplexer")


@dataclass(frozen=True)
class ClientContext:
    """A multiplexed client: an identity plus whatever the resolvers need."""

    id: str
    context: Any = None


def client_identity(client: Any) -> str:
    """Stable identity of a client, used to key cursors and errors."""
    if client is None:
        return "default"
    if isinstance(client, str):
        return client
    identity = getattr(client, "id", None)
    if identity is not None:
        return str(identity)
    return repr(client)


class Multiplexer(ABC):
    """Discovers the clients one top-level table is fetched with."""

    @abstractmethod
    async def discover(self, root: Any) -> Sequence[Any]:
        """Return one client per independent fetch, e.g. one per organization."""


class CallbackMultiplexer(Multiplexer):
    """Multiplexer backed by a plain or async callable taking the root client."""

    def __init__(self, func: Callable[[Any], Any]):
        self.func = func

    async def discover(self, root: Any) -> Sequence[Any]:
        result = self.func(root)
        if inspect.isawaitable(result):
            result = await result
        return list(result)


def as_multiplexer(multiplexer: Any) -> Optional[Multiplexer]:
    """Return ``multiplexer`` as a Multiplexer, wrapping plain callables."""
    if multiplexer is None or isinstance(multiplexer, Multiplexer):
        return multiplexer
    if callable(getattr(multiplexer, "discover", None)):
        return multiplexer
    if callable(multiplexer):
        return CallbackMultiplexer(multiplexer)
    raise TypeError(f"{multiplexer!r} is neither a Multiplexer nor callable")


FetchPair = Tuple[Any, Table]


async def expand(
    table: Table,
    root: Any,
    max_retries: int = 3,
    retry_delay: float = 1.0
) -> List[FetchPair]:
    """Expand a table into ``(client, table)`` pairs.

    A table without a multiplexer yields a single pair using ``root``.
    Client order is whatever discovery returns and carries no meaning.

    Raises:
        MultiplexError: if client discovery fails
    """
    if table.multiplexer is None:
        return [(root, table)]

    for attempt in range(max_retries + 1):
        try:
            clients = await table.multiplexer.discover(root)
            break
        except RateLimitError as e:
            if attempt < max_retries:
                backoff = e.retry_after if e.retry_after is not None else retry_delay
                logger.warning(
                    "Rate limit during client discovery, retrying after backoff",
                    table=table.name,
                    attempt=attempt + 1,
                    backoff_seconds=backoff
                )
                await asyncio.sleep(backoff)
                continue
            raise MultiplexError(
                f"Client discovery rate limited after {max_retries} retries: {e.message}",
                table=table.name
            ) from e
        except MultiplexError as e:
            e.table = e.table or table.name
            raise
        except Exception as e:
            raise MultiplexError(f"Client discovery failed: {e}", table=table.name) from e

    logger.debug("Table multiplexed", table=table.name, clients=len(clients))
    return [(client, table) for client in clients]
