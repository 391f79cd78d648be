"""
Tessera Reload Resolver — reconcile live instances after external writes.

Writes made outside ``save``/``delete`` (raw SQL on the database channel,
another process) are never detected automatically. After such a write the
caller signals ``data_was_updated_externally`` and every live cached
instance in scope is re-read:

    row gone              -> exists_in_database = False, reload event
    clean field           -> current = original = database value
    dirty, db == original -> edit kept, original = database value
    dirty, db != original -> resolve_reload_conflict(field, db_value)
                             decides the current value; field becomes clean

The default ``resolve_reload_conflict`` raises ``ReloadConflictFault``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type, TYPE_CHECKING

from .base import _snapshot, maybe_await
from .registry import ModelRegistry
from .signals import ModelEvent
from .sql_builder import SelectBuilder

if TYPE_CHECKING:
    from ..config import StoreConfig
    from ..db.engine import Database
    from .base import Model
    from .cache import InstanceCache
    from .signals import EventRegistry

logger = logging.getLogger("tessera.models.reload")

__all__ = ["ReloadResolver"]


class ReloadResolver:
    """Re-reads cached instances and applies the conflict rules."""

    def __init__(
        self,
        database: Database,
        cache: InstanceCache,
        events: EventRegistry,
        config: StoreConfig,
    ):
        self._database = database
        self._cache = cache
        self._events = events
        self._config = config

    async def reload(self, model_cls: Optional[Type[Model]] = None) -> int:
        """
        Reload every live instance of the scope.

        Returns the number of instances processed. ``ReloadConflictFault``
        from an unresolved conflict propagates to the caller.
        """
        count = 0
        for scoped in ModelRegistry.scope(model_cls):
            count += await self._reload_model(scoped)
        logger.debug(f"Reloaded {count} instance(s)")
        return count

    async def _reload_model(self, model_cls: Type[Model]) -> int:
        instances = [
            instance
            for instance in self._cache.live_instances([model_cls])
            if instance.primary_key is not None
        ]
        if not instances:
            return 0

        pk_field = model_cls._fields[model_cls._pk_name]
        chunk_size = self._config.primary_key_chunk_size
        for start in range(0, len(instances), chunk_size):
            chunk = instances[start:start + chunk_size]
            sql, params = (
                SelectBuilder(model_cls._table_name)
                .where_in(model_cls._pk_name, [pk_field.to_db(instance.primary_key) for instance in chunk])
                .build()
            )
            rows = await self._database.fetch_all(sql, params, model=model_cls.__name__)
            by_pk: Dict[Any, Dict[str, Any]] = {
                model_cls._normalize_pk(row[model_cls._pk_name]): row for row in rows
            }
            for instance in chunk:
                await self._apply(instance, by_pk.get(instance.primary_key))
        return len(instances)

    async def _apply(self, instance: Model, row: Optional[Dict[str, Any]]) -> None:
        model_cls = type(instance)
        if row is None:
            if instance._exists:
                logger.debug(f"{model_cls.__name__}(pk={instance.primary_key!r}) no longer exists")
            instance._exists = False
            await self._events.emit(ModelEvent.RELOAD, model_cls, instance=instance, changed_fields=[])
            return

        instance._exists = True
        dirty = instance._collect_dirty()
        changed: List[str] = []
        for name in model_cls._fields:
            if name == model_cls._pk_name or name not in row:
                continue
            db_value = instance.deserialize_value(name, row[name])
            current = instance._values.get(name)
            original = instance._original.get(name)

            if name not in dirty:
                if instance._value_differs(name, db_value, current):
                    changed.append(name)
                instance._values[name] = db_value
                instance._original[name] = _snapshot(db_value)
                instance._settled.pop(name, None)
            elif not instance._value_differs(name, db_value, original):
                instance._original[name] = _snapshot(db_value)
            else:
                logger.debug(
                    f"{model_cls.__name__}(pk={instance.primary_key!r}) conflict on '{name}'"
                )
                resolved = await maybe_await(instance.resolve_reload_conflict(name, db_value))
                if instance._value_differs(name, resolved, current):
                    changed.append(name)
                instance._values[name] = resolved
                instance._original[name] = _snapshot(db_value)
                instance._settled[name] = _snapshot(resolved)
                dirty.discard(name)

        await self._events.emit(ModelEvent.RELOAD, model_cls, instance=instance, changed_fields=changed)
