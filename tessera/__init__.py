"""
Tessera - uniquing async object layer over embedded SQLite

Complete integration of:
- Store: open/close, schema versioning, external-write contract
- Models: one live instance per row, dirty tracking, save/delete hooks
- Reload: explicit refresh with per-field conflict resolution
- Queries: $T/$PK templates returning cached instances
- Events: typed per-store change signals
- Faults: Structured error handling with fault domains
"""

__version__ = "0.1.0"

# ============================================================================
# Store
# ============================================================================

from .store import Store, SchemaVersion, open_store, get_store
from .config import StoreConfig, ConfigLoader
from .db import Database

# ============================================================================
# Models
# ============================================================================

from .models import (
    Model,
    ModelRegistry,
    SaveResult,
    ModelEvent,
    FieldInfo,
    FieldType,
    Field,
    FieldValidationError,
    TextField,
    IntegerField,
    RealField,
    BooleanField,
    BlobField,
    DateTimeField,
    JSONField,
    expand_query,
)

# ============================================================================
# Faults
# ============================================================================

from .faults import (
    Fault,
    FaultDomain,
    Severity,
    ConfigInvalidFault,
    QueryFault,
    DatabaseConnectionFault,
    SchemaFault,
    StoreNotOpenFault,
    StoreAlreadyOpenFault,
    ModelNotRegisteredFault,
    PrimaryKeyImmutableFault,
    DuplicateInstanceFault,
    ReloadConflictFault,
)

__all__ = [
    "__version__",
    # Store
    "Store",
    "SchemaVersion",
    "open_store",
    "get_store",
    "StoreConfig",
    "ConfigLoader",
    "Database",
    # Models
    "Model",
    "ModelRegistry",
    "SaveResult",
    "ModelEvent",
    "FieldInfo",
    "FieldType",
    "Field",
    "FieldValidationError",
    "TextField",
    "IntegerField",
    "RealField",
    "BooleanField",
    "BlobField",
    "DateTimeField",
    "JSONField",
    "expand_query",
    # Faults
    "Fault",
    "FaultDomain",
    "Severity",
    "ConfigInvalidFault",
    "QueryFault",
    "DatabaseConnectionFault",
    "SchemaFault",
    "StoreNotOpenFault",
    "StoreAlreadyOpenFault",
    "ModelNotRegisteredFault",
    "PrimaryKeyImmutableFault",
    "DuplicateInstanceFault",
    "ReloadConflictFault",
]
