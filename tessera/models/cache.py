"""
Tessera Instance Cache — one live object per row.

Maps (model type, primary key) to the live instance representing that row
through ``weakref.WeakValueDictionary``: the cache never keeps an instance
alive, and entries vanish once nothing else references the instance.

Every method takes the cache lock, so lookups and registrations are safe
from any thread or task.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Any, Dict, Iterable, List, Mapping, Optional, Type, TYPE_CHECKING

if TYPE_CHECKING:
    from .base import Model

logger = logging.getLogger("tessera.models.cache")

__all__ = ["InstanceCache"]


class InstanceCache:
    """
    Weak identity map of live model instances.

    Usage:
        person = cache.get_or_create(Person, 1, row_values={"id": 1, "name": "Ann"})
        assert cache.get(Person, 1) is person
    """

    def __init__(self):
        self._entries: Dict[Type[Model], weakref.WeakValueDictionary] = {}
        self._lock = threading.RLock()

    def _table(self, model_cls: Type[Model]) -> weakref.WeakValueDictionary:
        table = self._entries.get(model_cls)
        if table is None:
            table = self._entries[model_cls] = weakref.WeakValueDictionary()
        return table

    def get(self, model_cls: Type[Model], pk: Any) -> Optional[Model]:
        with self._lock:
            table = self._entries.get(model_cls)
            if table is None:
                return None
            return table.get(pk)

    def get_or_create(
        self,
        model_cls: Type[Model],
        pk: Any,
        row_values: Optional[Mapping[str, Any]] = None,
        create_if_absent: bool = False,
    ) -> Optional[Model]:
        """
        Return the canonical instance for ``(model_cls, pk)``.

        - live instance: returned as is, ``row_values`` ignored
        - ``row_values`` given: a loaded instance is built and registered
        - ``create_if_absent``: an unsaved instance with defaults is registered
        - otherwise None
        """
        with self._lock:
            table = self._table(model_cls)
            instance = table.get(pk)
            if instance is not None:
                return instance
            if row_values is not None:
                instance = model_cls._from_database_row(pk, row_values)
            elif create_if_absent:
                instance = model_cls._new_unsaved(pk)
            else:
                return None
            table[pk] = instance
            logger.debug(f"Cached {model_cls.__name__}(pk={pk!r})")
            return instance

    def register(self, instance: Model) -> bool:
        """
        Make ``instance`` the cached entry for its key.

        Returns False (and leaves the cache untouched) when a different
        live instance already holds the key.
        """
        model_cls = type(instance)
        pk = instance.primary_key
        with self._lock:
            table = self._table(model_cls)
            current = table.get(pk)
            if current is not None and current is not instance:
                return False
            table[pk] = instance
            return True

    def remove(self, model_cls: Type[Model], pk: Any) -> None:
        with self._lock:
            table = self._entries.get(model_cls)
            if table is not None:
                table.pop(pk, None)
                logger.debug(f"Evicted {model_cls.__name__}(pk={pk!r})")

    def invalidate(self, models: Optional[Iterable[Type[Model]]] = None) -> None:
        """Drop every entry for ``models`` (all models when None)."""
        with self._lock:
            if models is None:
                self._entries.clear()
                logger.debug("Instance cache cleared")
                return
            for model_cls in models:
                self._entries.pop(model_cls, None)
                logger.debug(f"Instance cache cleared for {model_cls.__name__}")

    def live_instances(self, models: Optional[Iterable[Type[Model]]] = None) -> List[Model]:
        """Strong references to every live instance in scope."""
        with self._lock:
            scope = list(self._entries) if models is None else list(models)
            instances: List[Model] = []
            for model_cls in scope:
                table = self._entries.get(model_cls)
                if table is not None:
                    instances.extend(table.values())
            return instances

    def count(self, model_cls: Optional[Type[Model]] = None) -> int:
        with self._lock:
            if model_cls is not None:
                table = self._entries.get(model_cls)
                return len(table) if table is not None else 0
            return sum(len(table) for table in self._entries.values())

    def __contains__(self, key: Any) -> bool:
        model_cls, pk = key
        return self.get(model_cls, pk) is not None
