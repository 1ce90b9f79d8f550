from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite
import asyncpg

from core.errors import PersistenceError

LOGGER = logging.getLogger(__name__)

DRIVER_ERRORS: tuple[type[BaseException], ...] = (
    sqlite3.Error,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
)


@dataclass(slots=True)
class DatabaseDsn:
    driver: str
    value: str


def parse_database_dsn(url: str) -> DatabaseDsn:
    if url.startswith("sqlite:///"):
        return DatabaseDsn(driver="sqlite", value=url.replace("sqlite:///", "", 1))
    if url.startswith("postgresql://") or url.startswith("postgres://"):
        return DatabaseDsn(driver="postgresql", value=url)
    raise ValueError("Unsupported database URL. Use sqlite:/// or postgresql://")


def _qmark_to_dollar(query: str) -> str:
    idx = 1
    out: list[str] = []
    for char in query:
        if char == "?":
            out.append(f"${idx}")
            idx += 1
        else:
            out.append(char)
    return "".join(out)


def _affected_rows(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 3" or "INSERT 0 1".
    tail = status.rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else 0


class Database:
    """Async SQL access for SQLite (single connection) or PostgreSQL (pool).

    Queries are written with ``?`` placeholders and converted for asyncpg.
    Driver failures surface as :class:`PersistenceError`.
    """

    def __init__(self, url: str, timeout_seconds: int = 30, pool_min_size: int = 2, pool_max_size: int = 10) -> None:
        self._dsn = parse_database_dsn(url)
        self._timeout_seconds = timeout_seconds
        self._pool_min_size = pool_min_size
        self._pool_max_size = pool_max_size
        self._sqlite: aiosqlite.Connection | None = None
        self._pg_pool: asyncpg.Pool | None = None
        self._sqlite_lock = asyncio.Lock()

    @property
    def driver(self) -> str:
        return self._dsn.driver

    @property
    def connected(self) -> bool:
        return self._sqlite is not None or self._pg_pool is not None

    async def connect(self) -> None:
        async with self._translate_errors("connect"):
            if self.driver == "sqlite":
                sqlite_path = Path(self._dsn.value)
                sqlite_path.parent.mkdir(parents=True, exist_ok=True)
                self._sqlite = await aiosqlite.connect(sqlite_path, timeout=self._timeout_seconds)
                self._sqlite.row_factory = aiosqlite.Row
                await self._sqlite.execute("PRAGMA journal_mode = WAL;")
                await self._sqlite.execute("PRAGMA foreign_keys = ON;")
                await self._sqlite.commit()
                LOGGER.info("Connected to SQLite: %s", sqlite_path)
                return
            self._pg_pool = await asyncpg.create_pool(
                dsn=self._dsn.value,
                min_size=self._pool_min_size,
                max_size=self._pool_max_size,
                timeout=self._timeout_seconds,
            )
            LOGGER.info("Connected to PostgreSQL")

    async def close(self) -> None:
        if self._sqlite:
            await self._sqlite.close()
            self._sqlite = None
        if self._pg_pool:
            await self._pg_pool.close()
            self._pg_pool = None

    @asynccontextmanager
    async def _translate_errors(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except DRIVER_ERRORS as exc:
            LOGGER.warning("Database %s failed: %s", operation, exc)
            raise PersistenceError(f"Database {operation} failed: {exc}") from exc

    def _require_sqlite(self) -> aiosqlite.Connection:
        if self._sqlite is None:
            raise PersistenceError("SQLite connection is not open")
        return self._sqlite

    def _require_pool(self) -> asyncpg.Pool:
        if self._pg_pool is None:
            raise PersistenceError("PostgreSQL pool is not open")
        return self._pg_pool

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> int:
        """Run a write statement and return the number of affected rows."""
        params = params or []
        async with self._translate_errors("execute"):
            if self.driver == "sqlite":
                conn = self._require_sqlite()
                async with self._sqlite_lock:
                    cursor = await conn.execute(query, tuple(params))
                    await conn.commit()
                    return max(cursor.rowcount, 0)

            async with self._require_pool().acquire() as conn:
                status = await conn.execute(_qmark_to_dollar(query), *params)
            return _affected_rows(status)

    async def fetchone(self, query: str, params: Sequence[Any] | None = None) -> dict[str, Any] | None:
        params = params or []
        async with self._translate_errors("fetchone"):
            if self.driver == "sqlite":
                conn = self._require_sqlite()
                async with self._sqlite_lock:
                    cursor = await conn.execute(query, tuple(params))
                    row = await cursor.fetchone()
                return dict(row) if row is not None else None

            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow(_qmark_to_dollar(query), *params)
            return dict(row) if row is not None else None

    async def fetchall(self, query: str, params: Sequence[Any] | None = None) -> list[dict[str, Any]]:
        params = params or []
        async with self._translate_errors("fetchall"):
            if self.driver == "sqlite":
                conn = self._require_sqlite()
                async with self._sqlite_lock:
                    cursor = await conn.execute(query, tuple(params))
                    rows = await cursor.fetchall()
                return [dict(row) for row in rows]

            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch(_qmark_to_dollar(query), *params)
            return [dict(row) for row in rows]

    async def executescript(self, sql_script: str) -> None:
        async with self._translate_errors("executescript"):
            if self.driver == "sqlite":
                conn = self._require_sqlite()
                async with self._sqlite_lock:
                    await conn.executescript(sql_script)
                    await conn.commit()
                return

            async with self._require_pool().acquire() as conn:
                await conn.execute(sql_script)

    async def insert_returning(self, query: str, params: Sequence[Any] | None = None) -> dict[str, Any]:
        """Run an ``INSERT ... RETURNING`` statement, commit it and return the produced row."""
        params = params or []
        async with self._translate_errors("insert"):
            if self.driver == "sqlite":
                conn = self._require_sqlite()
                async with self._sqlite_lock:
                    cursor = await conn.execute(query, tuple(params))
                    row = await cursor.fetchone()
                    await conn.commit()
            else:
                async with self._require_pool().acquire() as conn:
                    row = await conn.fetchrow(_qmark_to_dollar(query), *params)
        if row is None:
            raise PersistenceError("Insert returned no row")
        return dict(row)
