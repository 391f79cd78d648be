"""
Tessera Save/Delete Pipeline — the per-instance persistence state machine.

save():
    1. exists and nothing dirty       -> NO_CHANGES (no SQL)
    2. should_insert/should_update    -> False: save_was_refused(), REFUSED
    3. INSERT all values, or UPDATE exactly the dirty fields by primary key
    4. error   -> last_error, save_did_fail(), FAILED (state untouched)
       success -> synced, cached, did_insert/did_update, events, SUCCEEDED

delete() follows the same shape around a DELETE by primary key.

Storage failures never raise out of ``save``/``delete``: they come back as
``SaveResult.FAILED`` with the fault on ``instance.last_error``.
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Type, TYPE_CHECKING

from ..faults.domains import DuplicateInstanceFault, QueryFault
from .base import maybe_await
from .fields import TextField
from .registry import ModelRegistry
from .signals import ModelEvent
from .sql_builder import DeleteBuilder, InsertBuilder, UpdateBuilder, quote

if TYPE_CHECKING:
    from ..db.engine import Database
    from ..faults.core import Fault
    from .base import Model
    from .cache import InstanceCache
    from .signals import EventRegistry

logger = logging.getLogger("tessera.models.persistence")

__all__ = ["SaveResult", "SavePipeline"]


class SaveResult(str, Enum):
    """Outcome of ``save()`` / ``delete()``."""

    FAILED = "failed"
    REFUSED = "refused"
    SUCCEEDED = "succeeded"
    NO_CHANGES = "no_changes"


class SavePipeline:
    """
    Runs saves and deletes for one store.

    Every statement goes through the store's ``Database`` channel; the
    awaiting caller resumes after the write, the cache update, the hooks
    and the change events have all completed.
    """

    def __init__(self, database: Database, cache: InstanceCache, events: EventRegistry):
        self._database = database
        self._cache = cache
        self._events = events

    # ── Save ─────────────────────────────────────────────────────────

    async def save(self, instance: Model) -> SaveResult:
        model_cls = type(instance)
        dirty = set(instance._collect_dirty())
        creating = not instance._exists

        if not creating and not dirty:
            return SaveResult.NO_CHANGES

        allowed = instance.should_insert() if creating else instance.should_update()
        if not await maybe_await(allowed):
            logger.debug(f"{model_cls.__name__}(pk={instance.primary_key!r}) save refused")
            await maybe_await(instance.save_was_refused())
            return SaveResult.REFUSED

        if creating:
            fault = await self._insert(instance)
        else:
            fault = await self._update(instance, dirty)

        if fault is not None:
            return await self._fail(instance, fault)

        instance._mark_synced()

        if creating:
            logger.debug(f"Inserted {model_cls.__name__}(pk={instance.primary_key!r})")
            await maybe_await(instance.did_insert())
            await self._events.emit(ModelEvent.INSERT, model_cls, instance=instance)
        else:
            logger.debug(f"Updated {model_cls.__name__}(pk={instance.primary_key!r}) {sorted(dirty)}")
            await maybe_await(instance.did_update())
            await self._events.emit(
                ModelEvent.UPDATE, model_cls, instance=instance, changed_fields=sorted(dirty)
            )
        await self._events.emit(ModelEvent.SAVE, model_cls, instance=instance, created=creating)
        return SaveResult.SUCCEEDED

    async def _insert(self, instance: Model) -> Optional[Fault]:
        """
        INSERT the instance and register it in the cache.

        Key choice, the INSERT and cache registration run in one hold of the
        execution channel, so no other operation can cache a second instance
        for the new key in between.
        """
        model_cls = type(instance)
        pk_name = model_cls._pk_name
        pk = instance.primary_key
        if pk is None and isinstance(model_cls._fields[pk_name], TextField):
            pk = uuid.uuid4().hex
        values = {
            name: instance.serialize_value(name, instance._values.get(name))
            for name in model_cls._fields
            if name != pk_name
        }

        async def insert(conn: Any) -> Optional[Fault]:
            key = pk
            if key is not None:
                holder = self._cache.get(model_cls, key)
                if holder is not None and holder is not instance:
                    return DuplicateInstanceFault(model_cls.__name__, key)
            else:
                key = await self._reserve_key(model_cls)

            row: Dict[str, Any] = {}
            for name in model_cls._fields:
                if name != pk_name:
                    row[name] = values[name]
                elif key is not None:
                    row[name] = instance.serialize_value(name, key)
            sql, params = InsertBuilder(model_cls._table_name).from_dict(row).build()
            logger.debug(f"execute: {sql} {params!r}")
            result = await self._database.adapter.execute(sql, params)

            if key is None:
                key = model_cls._normalize_pk(result.lastrowid)
            instance._values[pk_name] = key
            self._cache.register(instance)
            return None

        try:
            return await self._database.run(insert, model=model_cls.__name__)
        except QueryFault as fault:
            return fault

    async def _reserve_key(self, model_cls: Type[Model]) -> Optional[int]:
        """
        Pick an integer key above every cached key, or None to let SQLite
        assign one.
        """
        held = [
            instance.primary_key
            for instance in self._cache.live_instances([model_cls])
            if isinstance(instance.primary_key, int)
        ]
        if not held:
            return None
        table_max = await self._database.adapter.fetch_val(
            f"SELECT MAX({quote(model_cls._pk_name)}) FROM {quote(model_cls._table_name)}"
        )
        return max([table_max or 0, *held]) + 1

    async def _update(self, instance: Model, dirty: set) -> Optional[Fault]:
        model_cls = type(instance)
        data = {name: instance.serialize_value(name, instance._values.get(name)) for name in sorted(dirty)}
        pk_value = instance.serialize_value(model_cls._pk_name, instance.primary_key)
        sql, params = (
            UpdateBuilder(model_cls._table_name)
            .set_dict(data)
            .where_eq(model_cls._pk_name, pk_value)
            .build()
        )
        try:
            result = await self._database.execute(sql, params, model=model_cls.__name__)
        except QueryFault as fault:
            return fault
        if result.rowcount == 0:
            return QueryFault(
                model=model_cls.__name__,
                operation="update",
                reason=f"row with {model_cls._pk_name}={instance.primary_key!r} not found",
            )
        return None

    async def _fail(self, instance: Model, fault: Fault) -> SaveResult:
        logger.debug(f"{type(instance).__name__}(pk={instance.primary_key!r}) write failed: {fault}")
        instance._last_error = fault
        await maybe_await(instance.save_did_fail())
        return SaveResult.FAILED

    # ── Delete ───────────────────────────────────────────────────────

    async def delete(self, instance: Model) -> SaveResult:
        model_cls = type(instance)
        if not instance._exists:
            return SaveResult.NO_CHANGES

        if not await maybe_await(instance.should_delete()):
            logger.debug(f"{model_cls.__name__}(pk={instance.primary_key!r}) delete refused")
            await maybe_await(instance.save_was_refused())
            return SaveResult.REFUSED

        pk_value = instance.serialize_value(model_cls._pk_name, instance.primary_key)
        sql, params = DeleteBuilder(model_cls._table_name).where_eq(model_cls._pk_name, pk_value).build()
        try:
            await self._database.execute(sql, params, model=model_cls.__name__)
        except QueryFault as fault:
            return await self._fail(instance, fault)

        instance._exists = False
        instance._last_error = None
        self._cache.remove(model_cls, instance.primary_key)
        logger.debug(f"Deleted {model_cls.__name__}(pk={instance.primary_key!r})")
        await maybe_await(instance.did_delete())
        await self._events.emit(ModelEvent.DELETE, model_cls, instance=instance)
        return SaveResult.SUCCEEDED

    # ── Bulk ─────────────────────────────────────────────────────────

    async def save_all(self, model_cls: Optional[Type[Model]] = None) -> List[Tuple[Model, SaveResult]]:
        """
        Save every live instance in scope that has unsaved changes.

        ``None`` covers all models; a model class covers itself and its
        registered subclasses.
        """
        scope = ModelRegistry.scope(model_cls)
        pending = [
            instance
            for instance in self._cache.live_instances(scope)
            if instance.has_unsaved_changes
        ]
        results = []
        for instance in pending:
            results.append((instance, await self.save(instance)))
        logger.debug(f"save_all saved {len(results)} instance(s)")
        return results
