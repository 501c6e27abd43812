"""JSON file backed state store."""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from ..utils.logging import LoggerMixin
from .base import Cursors, StateStore, decode_cursors, encode_cursors


class FileStateStore(LoggerMixin, StateStore):
    """Stores every cursor in one JSON document.

    Each ``put`` rewrites the document through a temporary file and
    ``os.replace``, so readers see either the old or the new state.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._cursors: Optional[Cursors] = None

    async def get(self, table: str, client_id: str) -> Optional[Any]:
        cursors = await self._load()
        return cursors.get(table, {}).get(client_id)

    async def put(self, table: str, client_id: str, cursor: Any) -> None:
        async with self._lock:
            current = await self._load()
            cursors = {name: dict(clients) for name, clients in current.items()}
            cursors.setdefault(table, {})[client_id] = cursor
            await asyncio.get_running_loop().run_in_executor(None, self._write, encode_cursors(cursors))
            # Only a persisted document becomes visible to readers.
            self._cursors = cursors

        self.logger.debug("Cursor stored", table=table, client_id=client_id, path=str(self.path))

    async def snapshot(self, tables: Optional[Iterable[str]] = None) -> Cursors:
        cursors = await self._load()
        wanted = set(tables) if tables is not None else None
        return {
            table: dict(clients)
            for table, clients in cursors.items()
            if wanted is None or table in wanted
        }

    async def _load(self) -> Cursors:
        if self._cursors is None:
            data = await asyncio.get_running_loop().run_in_executor(None, self._read)
            self._cursors = decode_cursors(data)
        return self._cursors

    def _read(self) -> dict:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
