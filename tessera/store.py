"""
Tessera Store — opens a database file and wires the model layer to it.

Usage:
    async def build_schema(conn, version):
        if version.value < 1:
            await conn.execute(
                "CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT NOT NULL DEFAULT '')"
            )
            version.value = 1

    store = await open_store("app.db", build_schema)
    person = await Person.instance_with_primary_key(1)
    ...
    await store.close()

A store owns one ``Database`` channel, one instance cache, one event
registry and the field metadata of every bound model. Models bind to the
most recently opened store.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
import os
import threading
from typing import Any, Awaitable, Callable, Coroutine, Mapping, Optional, Sequence, Set, Type, Union

import aiosqlite

from .config import StoreConfig
from .db.engine import Database
from .faults.core import Fault
from .faults.domains import (
    QueryFault,
    SchemaFault,
    StoreAlreadyOpenFault,
    StoreNotOpenFault,
)
from .models.base import Model
from .models.cache import InstanceCache
from .models.metadata import FieldInfo, MetadataRegistry
from .models.persistence import SavePipeline
from .models.query import ExpandedQuery
from .models.registry import ModelRegistry
from .models.reload import ReloadResolver
from .models.signals import EventRegistry

logger = logging.getLogger("tessera.store")

__all__ = ["Store", "SchemaVersion", "open_store", "get_store"]


class SchemaVersion:
    """Mutable schema-version cell handed to the schema builder."""

    __slots__ = ("value",)

    def __init__(self, value: int = 0):
        self.value = value

    def __repr__(self) -> str:
        return f"SchemaVersion({self.value})"


SchemaBuilder = Callable[[aiosqlite.Connection, SchemaVersion], Union[None, Awaitable[None]]]
Initializer = Callable[[aiosqlite.Connection], Union[None, Awaitable[None]]]


class Store:
    """
    An open database plus the model-layer state bound to it.

    Create stores with ``Store.open`` (or ``open_store``); the constructor
    does no I/O.
    """

    _open_paths: Set[str] = set()
    _open_lock = threading.Lock()

    def __init__(self, path: str, config: Optional[StoreConfig] = None):
        self.path = path
        self.config = config or StoreConfig()
        self.database = Database(path, self.config)
        self.cache = InstanceCache()
        self.events = EventRegistry()
        self.metadata = MetadataRegistry()
        self.pipeline = SavePipeline(self.database, self.cache, self.events)
        self.resolver = ReloadResolver(self.database, self.cache, self.events, self.config)
        self.version = SchemaVersion()
        self._key = _path_key(path)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._open = False

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return f"<Store {self.path!r} {state} v{self.version.value}>"

    # ── Lifecycle ────────────────────────────────────────────────────

    @classmethod
    async def open(
        cls,
        path: str,
        schema_builder: SchemaBuilder,
        initializer: Optional[Initializer] = None,
        config: Optional[StoreConfig] = None,
    ) -> Store:
        """
        Open ``path``, build its schema and bind every registered model.

        Raises:
            StoreAlreadyOpenFault: ``path`` is already open
            DatabaseConnectionFault: the file cannot be opened
            SchemaFault: the schema builder failed, or a model does not
                match its table
        """
        store = cls(path, config)
        store._claim_path()
        try:
            await store._open_database(schema_builder, initializer)
        except BaseException:
            await store.database.disconnect()
            store._release_path()
            raise
        return store

    async def _open_database(self, schema_builder: SchemaBuilder, initializer: Optional[Initializer]) -> None:
        await self.database.connect()
        self._loop = asyncio.get_running_loop()

        if initializer is not None:
            await self.database.run(initializer)

        self.version.value = await self.database.get_user_version()
        start_version = self.version.value

        async def build(conn: aiosqlite.Connection) -> None:
            result = schema_builder(conn, self.version)
            if inspect.isawaitable(result):
                await result
            if self.version.value != start_version:
                await self.database.adapter.set_user_version(self.version.value)

        try:
            await self.database.run_in_transaction(build)
        except Fault:
            raise
        except Exception as exc:
            raise SchemaFault(table="<schema>", reason=f"schema builder failed: {exc}") from exc
        if self.version.value != start_version:
            logger.info(f"Schema of {self.path} migrated v{start_version} -> v{self.version.value}")

        for model_cls in ModelRegistry.all_models():
            await self._bind(model_cls, required=False)
        self._open = True
        _set_current(self)
        logger.info(f"Store opened: {self.path} (schema v{self.version.value})")

    async def close(self) -> None:
        """Disconnect, drop cached instances and unbind models."""
        if not self._open:
            return
        self._open = False
        for model_cls in self.metadata.models():
            if model_cls._store is self:
                model_cls._store = None
        self.cache.invalidate()
        self.events.clear()
        try:
            await self.database.disconnect()
        finally:
            self._release_path()
            _clear_current(self)
        logger.info(f"Store closed: {self.path}")

    def _claim_path(self) -> None:
        if self._key is None:
            return
        with Store._open_lock:
            if self._key in Store._open_paths:
                raise StoreAlreadyOpenFault(self.path)
            Store._open_paths.add(self._key)

    def _release_path(self) -> None:
        if self._key is None:
            return
        with Store._open_lock:
            Store._open_paths.discard(self._key)

    async def __aenter__(self) -> Store:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def is_open(self) -> bool:
        return self._open

    # ── Models & metadata ────────────────────────────────────────────

    async def register_model(self, model_cls: Type[Model]) -> None:
        """
        Bind a model defined after the store opened.

        Raises:
            SchemaFault: the model's table is missing or does not match
        """
        self._ensure_open("register_model")
        ModelRegistry.register(model_cls)
        await self._bind(model_cls, required=True)

    async def _bind(self, model_cls: Type[Model], required: bool) -> None:
        columns = await self.database.get_columns(model_cls._table_name)
        if not columns and not required:
            logger.debug(f"No table '{model_cls._table_name}' for {model_cls.__name__}; not bound")
            return
        self.metadata.build(model_cls, columns)
        model_cls._store = self
        logger.debug(f"Bound {model_cls.__name__} to {self.path}")

    def field_info(self, model_cls: Type[Model]) -> Mapping[str, FieldInfo]:
        self._ensure_open("field_info")
        return self.metadata.field_info(model_cls)

    def primary_key_field_name(self, model_cls: Type[Model]) -> str:
        self._ensure_open("primary_key_field_name")
        return self.metadata.primary_key_field_name(model_cls)

    def _ensure_open(self, operation: str) -> None:
        if not self._open:
            raise StoreNotOpenFault(operation)

    # ── External writes ──────────────────────────────────────────────

    async def data_was_updated_externally(self, model: Optional[Type[Model]] = None) -> None:
        """
        Reload live instances of ``model`` (all models when None).

        Raises:
            ReloadConflictFault: a conflict reached a model without a resolver
        """
        self._ensure_open("data_was_updated_externally")
        await self.resolver.reload(model)

    async def execute_update_query(
        self,
        query: str,
        params: Sequence[Any] = (),
        model: Optional[Type[Model]] = None,
    ) -> Optional[QueryFault]:
        """
        Run a write statement, then reload the affected scope.

        ``$T``/``$PK`` are expanded against ``model``; with no model the
        statement must not use them and every model reloads.
        """
        self._ensure_open("execute_update_query")
        if model is not None:
            expanded = ExpandedQuery.build(model, query, params)
        elif "$T" in query or "$PK" in query:
            raise ValueError("Query placeholders need a model to expand against")
        else:
            expanded = ExpandedQuery(query, tuple(params))

        fault = await self.database.attempt(
            expanded.sql,
            expanded.params,
            model=model.__name__ if model is not None else "<raw>",
        )
        if fault is not None:
            return fault
        await self.resolver.reload(model)
        return None

    async def run(self, operation: Callable[[aiosqlite.Connection], Any]) -> Any:
        """Schedule a raw operation on the database channel."""
        self._ensure_open("run")
        return await self.database.run(operation)

    # ── Threads ──────────────────────────────────────────────────────

    def submit_threadsafe(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """
        Schedule ``coro`` on the store's event loop from another thread.

        Usage:
            future = store.submit_threadsafe(person.save())
            result = future.result()
        """
        self._ensure_open("submit_threadsafe")
        return asyncio.run_coroutine_threadsafe(coro, self._loop)


# ── Module-level accessor ───────────────────────────────────────────────────

_current_store: Optional[Store] = None


def _path_key(path: str) -> Optional[str]:
    """Identity of a database file; None for private in-memory databases."""
    if path in ("", ":memory:"):
        return None
    if path.startswith("file:"):
        return path
    return os.path.abspath(path)


def _set_current(store: Store) -> None:
    global _current_store
    _current_store = store


def _clear_current(store: Store) -> None:
    global _current_store
    if _current_store is store:
        _current_store = None


def get_store() -> Store:
    """
    Return the most recently opened store.

    Raises:
        StoreNotOpenFault: no store is open
    """
    if _current_store is None or not _current_store.is_open:
        raise StoreNotOpenFault("get_store")
    return _current_store


async def open_store(
    path: str,
    schema_builder: SchemaBuilder,
    initializer: Optional[Initializer] = None,
    config: Optional[StoreConfig] = None,
) -> Store:
    """Open a store and make it the current one."""
    return await Store.open(path, schema_builder, initializer=initializer, config=config)
