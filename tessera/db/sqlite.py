"""
Tessera DB Backend — SQLite adapter via aiosqlite.

Wraps a single aiosqlite connection. The adapter itself performs no
locking: every call reaches it through the ``Database`` execution
channel, which guarantees one operation in flight at a time.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from ..config import StoreConfig

logger = logging.getLogger("tessera.db.sqlite")

__all__ = ["SQLiteAdapter", "ColumnInfo", "ExecuteResult"]


@dataclass(frozen=True)
class ExecuteResult:
    """Outcome of a write statement, read before its cursor is closed."""

    lastrowid: Optional[int]
    rowcount: int


@dataclass
class ColumnInfo:
    """Introspection result for a single column."""

    name: str
    data_type: str
    nullable: bool = True
    default: Optional[str] = None
    primary_key: bool = False


class SQLiteAdapter:
    """
    SQLite adapter using aiosqlite.

    The connection runs in autocommit mode; ``begin``/``commit``/``rollback``
    issue explicit statements so that multi-statement work (schema building,
    raw bulk writes) can be grouped.
    """

    def __init__(self):
        self._connection: Optional[aiosqlite.Connection] = None
        self._in_transaction = False

    async def connect(self, path: str, config: StoreConfig) -> None:
        if self._connection is not None:
            return
        self._connection = await aiosqlite.connect(path, isolation_level=None)
        self._connection.row_factory = aiosqlite.Row
        await self._statement(f"PRAGMA journal_mode={config.journal_mode}")
        await self._statement(
            f"PRAGMA foreign_keys={'ON' if config.foreign_keys else 'OFF'}"
        )
        await self._statement(f"PRAGMA busy_timeout={int(config.busy_timeout_ms)}")
        logger.info(f"SQLite connected: {path}")

    async def disconnect(self) -> None:
        if self._connection is None:
            return
        await self._connection.close()
        self._connection = None
        self._in_transaction = False
        logger.info("SQLite disconnected")

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Not connected")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    async def _statement(self, sql: str) -> None:
        async with self.connection.execute(sql):
            pass

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> ExecuteResult:
        cursor = await self.connection.execute(sql, list(params or []))
        try:
            return ExecuteResult(lastrowid=cursor.lastrowid, rowcount=cursor.rowcount)
        finally:
            await cursor.close()

    async def execute_many(self, sql: str, params_list: Sequence[Sequence[Any]]) -> None:
        cursor = await self.connection.executemany(sql, [list(p) for p in params_list])
        await cursor.close()

    async def fetch_all(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        cursor = await self.connection.execute(sql, list(params or []))
        try:
            rows = await cursor.fetchall()
        finally:
            await cursor.close()
        return [dict(row) for row in rows]

    async def fetch_one(self, sql: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
        cursor = await self.connection.execute(sql, list(params or []))
        try:
            row = await cursor.fetchone()
        finally:
            await cursor.close()
        if row is None:
            return None
        return dict(row)

    async def fetch_column(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Any]:
        cursor = await self.connection.execute(sql, list(params or []))
        try:
            rows = await cursor.fetchall()
        finally:
            await cursor.close()
        return [row[0] for row in rows]

    async def fetch_val(self, sql: str, params: Optional[Sequence[Any]] = None) -> Any:
        cursor = await self.connection.execute(sql, list(params or []))
        try:
            row = await cursor.fetchone()
        finally:
            await cursor.close()
        if row is None:
            return None
        return row[0]

    # ── Transactions ─────────────────────────────────────────────────

    async def begin(self) -> None:
        await self._statement("BEGIN")
        self._in_transaction = True

    async def commit(self) -> None:
        await self._statement("COMMIT")
        self._in_transaction = False

    async def rollback(self) -> None:
        try:
            await self._statement("ROLLBACK")
        finally:
            self._in_transaction = False

    # ── Introspection ────────────────────────────────────────────────

    async def get_columns(self, table_name: str) -> List[ColumnInfo]:
        rows = await self.fetch_all(f'PRAGMA table_info("{table_name}")')
        return [
            ColumnInfo(
                name=row["name"],
                data_type=row["type"] or "",
                nullable=not row["notnull"],
                default=row["dflt_value"],
                primary_key=bool(row["pk"]),
            )
            for row in rows
        ]

    async def get_user_version(self) -> int:
        return int(await self.fetch_val("PRAGMA user_version") or 0)

    async def set_user_version(self, version: int) -> None:
        await self._statement(f"PRAGMA user_version = {int(version)}")
