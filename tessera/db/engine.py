"""
Tessera Database Engine — the single ordered execution channel.

Provides:
- Database: async connection manager whose every operation is serialized
  through one FIFO channel, so exactly one statement is in flight at a time
- run(): schedule raw operations against the connection on that channel
- attempt(): execute and hand back the failure as a value
- Structured faults (DatabaseConnectionFault, QueryFault) instead of bare
  driver exceptions
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import sqlite3
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar, Union

import aiosqlite

from ..config import StoreConfig
from ..faults.domains import DatabaseConnectionFault, QueryFault, SchemaFault
from .sqlite import ColumnInfo, ExecuteResult, SQLiteAdapter

logger = logging.getLogger("tessera.db")

__all__ = ["Database", "Operation"]

T = TypeVar("T")

Operation = Callable[[aiosqlite.Connection], Union[T, Awaitable[T]]]


class Database:
    """
    Async SQLite engine with a single ordered execution channel.

    All reads and writes are scheduled on ``_channel`` (an ``asyncio.Lock``,
    which wakes waiters in FIFO order). Callers from any task may submit
    work; operations never run concurrently with each other, and the
    awaiting caller resumes only after its operation completed.

    Usage:
        db = Database("app.db")
        await db.connect()
        rows = await db.fetch_all("SELECT * FROM people WHERE age > ?", [18])
        await db.run(lambda conn: conn.execute("UPDATE people SET age = age + 1"))
        await db.disconnect()
    """

    __slots__ = (
        "_path",
        "_config",
        "_adapter",
        "_channel",
        "_connected",
    )

    def __init__(self, path: str, config: Optional[StoreConfig] = None):
        """
        Initialize database engine.

        Args:
            path: SQLite file path, or ``:memory:``
            config: Store options (journal mode, retries, ...)
        """
        self._path = path
        self._config = config or StoreConfig()
        self._adapter = SQLiteAdapter()
        self._channel = asyncio.Lock()
        self._connected = False

    # ── Connection management ────────────────────────────────────────

    async def connect(self) -> None:
        """Open database connection with retry logic."""
        if self._connected:
            return

        async with self._channel:
            last_exc: Optional[Exception] = None
            for attempt in range(1, self._config.connect_retries + 1):
                try:
                    await self._adapter.connect(self._path, self._config)
                    self._connected = True
                    logger.info(f"Database connected ({self._path}), attempt {attempt}")
                    return
                except (sqlite3.Error, OSError) as exc:
                    last_exc = exc
                    await self._adapter.disconnect()
                    if attempt < self._config.connect_retries:
                        logger.warning(
                            f"Connection attempt {attempt} failed: {exc}, "
                            f"retrying in {self._config.connect_retry_delay}s..."
                        )
                        await asyncio.sleep(self._config.connect_retry_delay)

            raise DatabaseConnectionFault(
                url=self._path,
                reason=f"Failed after {self._config.connect_retries} attempts: {last_exc}",
            )

    async def disconnect(self) -> None:
        """Close database connection once in-flight work has drained."""
        if not self._connected:
            return
        async with self._channel:
            try:
                await self._adapter.disconnect()
            except sqlite3.Error as exc:
                raise DatabaseConnectionFault(
                    url=self._path,
                    reason=f"Disconnect failed: {exc}",
                ) from exc
            finally:
                self._connected = False
            logger.info("Database disconnected")

    def _ensure_connected(self, operation: str) -> None:
        if not self._connected or not self._adapter.is_connected:
            raise DatabaseConnectionFault(
                url=self._path,
                reason=f"Not connected (during {operation})",
            )

    # ── Raw operations ───────────────────────────────────────────────

    async def run(self, operation: Operation, *, model: str = "<raw>") -> Any:
        """
        Run ``operation(connection)`` on the execution channel.

        The operation may be a plain function or return an awaitable. Use
        this for bulk writes the model layer does not know about, then call
        ``Store.data_was_updated_externally()`` so cached instances reload.

        Raises:
            QueryFault: When the operation raises a SQLite error
        """
        self._ensure_connected("run")
        async with self._channel:
            try:
                result = operation(self._adapter.connection)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except sqlite3.Error as exc:
                raise QueryFault(model=model, operation="run", reason=str(exc)) from exc

    async def run_in_transaction(self, operation: Operation) -> Any:
        """
        Run ``operation(connection)`` inside BEGIN/COMMIT on the channel.

        Any exception rolls the transaction back and propagates.
        """
        self._ensure_connected("run_in_transaction")
        async with self._channel:
            await self._adapter.begin()
            try:
                result = operation(self._adapter.connection)
                if inspect.isawaitable(result):
                    result = await result
            except BaseException:
                await self._adapter.rollback()
                raise
            await self._adapter.commit()
            return result

    # ── Query execution ──────────────────────────────────────────────

    async def execute(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        *,
        model: str = "<raw>",
    ) -> ExecuteResult:
        """
        Execute a SQL statement.

        Args:
            sql: SQL statement with ? placeholders
            params: Parameter values
            model: Model name used to label faults

        Returns:
            ExecuteResult with lastrowid and rowcount

        Raises:
            QueryFault: When query execution fails
        """
        self._ensure_connected("execute")
        async with self._channel:
            logger.debug(f"execute: {sql} {list(params or [])!r}")
            try:
                return await self._adapter.execute(sql, params)
            except sqlite3.Error as exc:
                raise QueryFault(
                    model=model,
                    operation="execute",
                    reason=str(exc),
                    metadata={"sql": sql[:200]},
                ) from exc

    async def attempt(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        *,
        model: str = "<raw>",
    ) -> Optional[QueryFault]:
        """Execute a statement, returning the fault instead of raising it."""
        try:
            await self.execute(sql, params, model=model)
        except QueryFault as fault:
            logger.debug(f"attempt failed: {fault}")
            return fault
        return None

    async def execute_many(
        self,
        sql: str,
        params_list: Sequence[Sequence[Any]],
        *,
        model: str = "<raw>",
    ) -> None:
        """Execute a SQL statement with multiple parameter sets."""
        self._ensure_connected("execute_many")
        async with self._channel:
            try:
                await self._adapter.execute_many(sql, params_list)
            except sqlite3.Error as exc:
                raise QueryFault(
                    model=model,
                    operation="execute_many",
                    reason=str(exc),
                    metadata={"sql": sql[:200]},
                ) from exc

    async def fetch_all(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        *,
        model: str = "<raw>",
    ) -> List[Dict[str, Any]]:
        """
        Execute query and return all rows as dicts.

        Raises:
            QueryFault: When query execution fails
        """
        return await self._fetch("fetch_all", sql, params, model)

    async def fetch_one(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        *,
        model: str = "<raw>",
    ) -> Optional[Dict[str, Any]]:
        """Execute query and return first row as dict, or None."""
        return await self._fetch("fetch_one", sql, params, model)

    async def fetch_column(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        *,
        model: str = "<raw>",
    ) -> List[Any]:
        """Execute query and return the first column of every row."""
        return await self._fetch("fetch_column", sql, params, model)

    async def fetch_val(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        *,
        model: str = "<raw>",
    ) -> Any:
        """Execute query and return scalar value from first row, first column."""
        return await self._fetch("fetch_val", sql, params, model)

    async def _fetch(self, kind: str, sql: str, params: Optional[Sequence[Any]], model: str) -> Any:
        self._ensure_connected(kind)
        async with self._channel:
            logger.debug(f"{kind}: {sql} {list(params or [])!r}")
            try:
                return await getattr(self._adapter, kind)(sql, params)
            except sqlite3.Error as exc:
                raise QueryFault(
                    model=model,
                    operation=kind,
                    reason=str(exc),
                    metadata={"sql": sql[:200]},
                ) from exc

    # ── Introspection ────────────────────────────────────────────────

    async def get_columns(self, table_name: str) -> List[ColumnInfo]:
        """Get column metadata for a table."""
        self._ensure_connected("get_columns")
        async with self._channel:
            try:
                return await self._adapter.get_columns(table_name)
            except sqlite3.Error as exc:
                raise SchemaFault(table=table_name, reason=str(exc)) from exc

    async def get_user_version(self) -> int:
        self._ensure_connected("get_user_version")
        async with self._channel:
            return await self._adapter.get_user_version()

    # ── Properties ───────────────────────────────────────────────────

    @property
    def adapter(self) -> SQLiteAdapter:
        """Direct access to the underlying adapter (used while holding the channel)."""
        return self._adapter

    @property
    def is_connected(self) -> bool:
        return self._connected and self._adapter.is_connected

    @property
    def path(self) -> str:
        return self._path

    @property
    def config(self) -> StoreConfig:
        return self._config
