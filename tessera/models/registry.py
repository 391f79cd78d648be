"""
Tessera Model Registry — global registry of Model subclasses.

Tracks every concrete model and an explicit type → subtypes map used to
resolve scoped operations (``save_all``, ``data_was_updated_externally``):
called on ``Model`` they cover every model, called on a model class they
cover that class and the models derived from it.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Set, Type, TYPE_CHECKING

if TYPE_CHECKING:
    from .base import Model

logger = logging.getLogger("tessera.models.registry")

__all__ = ["ModelRegistry"]


class ModelRegistry:
    """
    Global registry for all Model subclasses.

    Registration happens in the metaclass; stores bind every registered
    model when they open.
    """

    _models: Dict[str, Type[Model]] = {}
    _subtypes: Dict[Type[Model], List[Type[Model]]] = {}
    _lock = threading.RLock()

    @classmethod
    def register(cls, model_cls: Type[Model]) -> None:
        """Register a model class and record it as a subtype of its model bases."""
        with cls._lock:
            name = model_cls.__name__
            previous = cls._models.get(name)
            if previous is not None and previous is not model_cls:
                logger.warning(f"Model name '{name}' re-registered; replacing {previous!r}")
                cls.unregister(previous)
            cls._models[name] = model_cls
            cls._subtypes.setdefault(model_cls, [])
            for base in model_cls.__mro__[1:]:
                if base in cls._subtypes and model_cls not in cls._subtypes[base]:
                    cls._subtypes[base].append(model_cls)

    @classmethod
    def unregister(cls, model_cls: Type[Model]) -> None:
        with cls._lock:
            if cls._models.get(model_cls.__name__) is model_cls:
                del cls._models[model_cls.__name__]
            cls._subtypes.pop(model_cls, None)
            for subtypes in cls._subtypes.values():
                if model_cls in subtypes:
                    subtypes.remove(model_cls)

    @classmethod
    def get(cls, name: str) -> Optional[Type[Model]]:
        """Get model class by name."""
        return cls._models.get(name)

    @classmethod
    def all_models(cls) -> List[Type[Model]]:
        """Get all registered models, in registration order."""
        with cls._lock:
            return list(cls._models.values())

    @classmethod
    def subtypes(cls, model_cls: Type[Model]) -> Set[Type[Model]]:
        """Registered models derived from ``model_cls`` (excluding itself)."""
        with cls._lock:
            return set(cls._subtypes.get(model_cls, ()))

    @classmethod
    def scope(cls, model_cls: Optional[Type[Model]] = None) -> List[Type[Model]]:
        """
        Resolve an operation scope to concrete model classes.

        ``None`` (or the ``Model`` base itself, which is never registered)
        means every registered model.
        """
        with cls._lock:
            if model_cls is None or model_cls not in cls._subtypes:
                if model_cls is not None and not getattr(model_cls, "_is_base_model", False):
                    return []
                return list(cls._models.values())
            return [model_cls] + list(cls._subtypes[model_cls])
