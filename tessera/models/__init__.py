"""
Tessera Model System — uniqued, change-tracking row objects.

Usage:
    from tessera.models import Model
    from tessera.models.fields import IntegerField, TextField

    class Person(Model):
        table = "people"

        id = IntegerField(primary_key=True)
        name = TextField()

Public API:
    - Model: Base class for all models
    - Fields: Text, Integer, Real, Boolean, Blob, DateTime, JSON
    - SaveResult: Outcome of save()/delete()
    - ModelEvent / EventRegistry / Signal: Change events
    - ModelRegistry: Global model registry (subtype scopes)
    - InstanceCache, MetadataRegistry: Per-store state
"""

from .base import Model, ModelMeta

from .fields import (
    Field,
    FieldValidationError,
    TextField,
    IntegerField,
    RealField,
    BooleanField,
    BlobField,
    DateTimeField,
    JSONField,
)

from .metadata import (
    FieldInfo,
    FieldType,
    MetadataRegistry,
    ModelMetadata,
)

from .registry import ModelRegistry
from .cache import InstanceCache
from .persistence import SavePipeline, SaveResult
from .reload import ReloadResolver
from .query import ExpandedQuery, expand_query
from .signals import EventRegistry, ModelEvent, Signal

__all__ = [
    # Core
    "Model",
    "ModelMeta",
    "ModelRegistry",
    # Fields
    "Field",
    "FieldValidationError",
    "TextField",
    "IntegerField",
    "RealField",
    "BooleanField",
    "BlobField",
    "DateTimeField",
    "JSONField",
    # Metadata
    "FieldInfo",
    "FieldType",
    "MetadataRegistry",
    "ModelMetadata",
    # Persistence
    "InstanceCache",
    "SavePipeline",
    "SaveResult",
    "ReloadResolver",
    # Queries
    "ExpandedQuery",
    "expand_query",
    # Events
    "EventRegistry",
    "ModelEvent",
    "Signal",
]
