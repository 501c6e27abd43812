"""SQLAlchemy backed state store."""

import asyncio
import json
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Generator, Iterable, Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint, create_engine, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from ..utils.logging import get_logger
from .base import Cursors, StateStore, decode_cursor, encode_cursor


Base = declarative_base()

logger = get_logger("state.sql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CursorModel(Base):
    """One cursor per (table, client)."""

    __tablename__ = "sync_cursors"
    __table_args__ = (UniqueConstraint("table_name", "client_id", name="uq_sync_cursors_key"),)

    id = Column(Integer, primary_key=True)
    table_name = Column(String(255), nullable=False, index=True)
    client_id = Column(String(255), nullable=False)
    cursor = Column(Text, nullable=False)  # JSON, see encode_cursor
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)


class SqlStateStore(StateStore):
    """Cursor store on any SQLAlchemy supported database.

    Upserts use the dialect's ``ON CONFLICT`` on SQLite and PostgreSQL, which
    makes a single key's write atomic. SQLAlchemy calls are blocking and run
    in the default executor.
    """

    def __init__(self, database_url: str, create_tables: bool = True):
        self.database_url = database_url

        if database_url.startswith("sqlite"):
            if database_url.startswith("sqlite:///") and database_url != "sqlite:///:memory:":
                db_path = database_url.replace("sqlite:///", "")
                if os.path.dirname(db_path):
                    os.makedirs(os.path.dirname(db_path), exist_ok=True)
            self.engine = create_engine(
                database_url,
                poolclass=StaticPool,
                connect_args={
                    "check_same_thread": False,
                    "timeout": 20
                },
                echo=False
            )
        else:
            self.engine = create_engine(
                database_url,
                pool_pre_ping=True,
                pool_recycle=300,
                echo=False
            )

        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

        if create_tables:
            Base.metadata.create_all(bind=self.engine)

        logger.info("SQL state store initialized", database_url=database_url)

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error("State store transaction rolled back", error=str(e))
            raise
        finally:
            session.close()

    async def get(self, table: str, client_id: str) -> Optional[Any]:
        return await self._run(self._get, table, client_id)

    async def put(self, table: str, client_id: str, cursor: Any) -> None:
        await self._run(self._put, table, client_id, cursor)

    async def snapshot(self, tables: Optional[Iterable[str]] = None) -> Cursors:
        return await self._run(self._snapshot, list(tables) if tables is not None else None)

    async def close(self) -> None:
        self.engine.dispose()

    async def _run(self, func, *args):
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    def _get(self, table: str, client_id: str) -> Optional[Any]:
        with self.session_scope() as session:
            row = session.execute(
                select(CursorModel.cursor).where(
                    CursorModel.table_name == table,
                    CursorModel.client_id == client_id
                )
            ).scalar_one_or_none()
        if row is None:
            return None
        return decode_cursor(json.loads(row))

    def _put(self, table: str, client_id: str, cursor: Any) -> None:
        payload = json.dumps(encode_cursor(cursor))
        now = _utcnow()
        dialect = self.engine.dialect.name

        with self.session_scope() as session:
            if dialect in ("sqlite", "postgresql"):
                if dialect == "sqlite":
                    from sqlalchemy.dialects.sqlite import insert
                else:
                    from sqlalchemy.dialects.postgresql import insert

                statement = insert(CursorModel).values(
                    table_name=table, client_id=client_id, cursor=payload, updated_at=now
                )
                statement = statement.on_conflict_do_update(
                    index_elements=["table_name", "client_id"],
                    set_={"cursor": payload, "updated_at": now}
                )
                session.execute(statement)
            else:
                existing = session.execute(
                    select(CursorModel).where(
                        CursorModel.table_name == table,
                        CursorModel.client_id == client_id
                    ).with_for_update()
                ).scalar_one_or_none()
                if existing is None:
                    session.add(CursorModel(table_name=table, client_id=client_id, cursor=payload, updated_at=now))
                else:
                    existing.cursor = payload
                    existing.updated_at = now

    def _snapshot(self, tables: Optional[list]) -> Cursors:
        query = select(CursorModel.table_name, CursorModel.client_id, CursorModel.cursor)
        if tables is not None:
            query = query.where(CursorModel.table_name.in_(tables))

        cursors: Cursors = {}
        with self.session_scope() as session:
            for table_name, client_id, payload in session.execute(query):
                cursors.setdefault(table_name, {})[client_id] = decode_cursor(json.loads(payload))
        return cursors
