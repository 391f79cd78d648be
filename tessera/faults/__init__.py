"""
Tessera Faults - typed fault signals for the model layer.

Storage failures are values: a failed ``save()`` returns
``SaveResult.FAILED`` and keeps the fault on ``instance.last_error``.
Contract violations (no open store, mutating a primary key, an unresolved
reload conflict) are raised.
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .domains import (
    ConfigFault,
    ConfigInvalidFault,
    ModelFault,
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
    # Core types
    "Fault",
    "FaultDomain",
    "Severity",
    # Config
    "ConfigFault",
    "ConfigInvalidFault",
    # Model
    "ModelFault",
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
