from __future__ import annotations

import logging
from collections.abc import Generator
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from ..models import db as _db_models  # noqa: F401 - ensure models register with metadata

logger = logging.getLogger(__name__)


def create_engine_for_url(database_url: str, *, sqlite_busy_timeout_ms: int = 5000) -> Engine:
    connect_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    engine = create_engine(
        database_url,
        echo=False,
        connect_args=connect_args,
        pool_pre_ping=not database_url.startswith("sqlite"),
    )

    if engine.dialect.name == "sqlite":
        # SQLite ignores FOR UPDATE. Opening every transaction with BEGIN IMMEDIATE
        # takes the database write lock up front, which serializes balance mutations
        # the same way a row lock does on PostgreSQL.
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, _):
            dbapi_connection.isolation_level = None
            cur = dbapi_connection.cursor()
            cur.execute(f"PRAGMA busy_timeout={int(sqlite_busy_timeout_ms)};")
            cur.execute("PRAGMA foreign_keys=ON;")
            cur.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


class Database:
    """Owns the engine and connection pool for one process.

    Built explicitly at startup and passed to whatever needs sessions; ``dispose``
    drains the pool at shutdown.
    """

    def __init__(self, database_url: str, *, sqlite_busy_timeout_ms: int = 5000) -> None:
        self.url = database_url
        self.engine = create_engine_for_url(
            database_url, sqlite_busy_timeout_ms=sqlite_busy_timeout_ms
        )

    def init_schema(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def drop_schema(self) -> None:
        SQLModel.metadata.drop_all(self.engine)

    def new_session(self) -> Session:
        return Session(self.engine)

    def session(self) -> Generator[Session, None, None]:
        with Session(self.engine) as session:
            yield session

    def dispose(self) -> None:
        logger.info("database.dispose", extra={"dialect": self.engine.dialect.name})
        self.engine.dispose()
