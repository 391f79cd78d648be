"""
Tessera Faults - Domain-specific fault types.

Provides concrete fault classes for each domain:
- CONFIG faults
- MODEL faults (store lifecycle, queries, schema, instance contract)
"""

from typing import Any, Optional
from .core import Fault, FaultDomain, Severity


# ============================================================================
# CONFIG Faults
# ============================================================================

class ConfigFault(Fault):
    """Base class for configuration faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.FATAL,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.CONFIG,
            severity=severity,
            retryable=False,
            metadata=metadata,
        )


class ConfigInvalidFault(ConfigFault):
    """Configuration value is invalid."""

    def __init__(self, key: str, reason: str, **kwargs):
        super().__init__(
            code="CONFIG_INVALID",
            message=f"Configuration key '{key}' is invalid: {reason}",
            metadata={"key": key, "reason": reason, **kwargs.get("metadata", {})},
        )


# ============================================================================
# MODEL Faults (ORM / Database)
# ============================================================================

class ModelFault(Fault):
    """Base class for model and database faults."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        retryable: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.MODEL,
            severity=severity,
            retryable=retryable,
            metadata=metadata,
        )


class QueryFault(ModelFault):
    """Query execution failed (constraint violation, I/O error, ...)."""

    def __init__(self, model: str, operation: str, reason: str, **kwargs):
        super().__init__(
            code="QUERY_FAILED",
            message=f"Query on '{model}' ({operation}) failed: {reason}",
            retryable=True,
            metadata={"model": model, "operation": operation, "reason": reason, **kwargs.get("metadata", {})},
        )
        self.reason = reason


class DatabaseConnectionFault(ModelFault):
    """Database connection failed."""

    def __init__(self, url: str, reason: str, **kwargs):
        super().__init__(
            code="DB_CONNECTION_FAILED",
            message=f"Database connection failed ({url}): {reason}",
            severity=Severity.FATAL,
            retryable=True,
            metadata={"url": url, "reason": reason, **kwargs.get("metadata", {})},
        )


class SchemaFault(ModelFault):
    """Schema creation, migration or introspection failed."""

    def __init__(self, table: str, reason: str, **kwargs):
        super().__init__(
            code="SCHEMA_FAULT",
            message=f"Schema error for table '{table}': {reason}",
            severity=Severity.FATAL,
            metadata={"table": table, "reason": reason, **kwargs.get("metadata", {})},
        )


class StoreNotOpenFault(ModelFault):
    """A store operation or metadata lookup happened before open()."""

    def __init__(self, operation: str, **kwargs):
        super().__init__(
            code="STORE_NOT_OPEN",
            message=f"Cannot {operation}: no store is open",
            metadata={"operation": operation, **kwargs.get("metadata", {})},
        )


class StoreAlreadyOpenFault(ModelFault):
    """open() was called twice for the same database path."""

    def __init__(self, path: str, **kwargs):
        super().__init__(
            code="STORE_ALREADY_OPEN",
            message=f"A store is already open for '{path}'",
            metadata={"path": path, **kwargs.get("metadata", {})},
        )


class ModelNotRegisteredFault(ModelFault):
    """Model has no metadata in the open store."""

    def __init__(self, model_name: str, **kwargs):
        super().__init__(
            code="MODEL_NOT_REGISTERED",
            message=f"Model '{model_name}' is not registered with the open store",
            metadata={"model": model_name, **kwargs.get("metadata", {})},
        )


class PrimaryKeyImmutableFault(ModelFault):
    """Attempted to assign a new primary key to an existing instance."""

    def __init__(self, model_name: str, current: Any, attempted: Any, **kwargs):
        super().__init__(
            code="PRIMARY_KEY_IMMUTABLE",
            message=(
                f"Cannot change primary key of {model_name} from "
                f"{current!r} to {attempted!r}"
            ),
            metadata={"model": model_name, "current": current, "attempted": attempted,
                      **kwargs.get("metadata", {})},
        )


class DuplicateInstanceFault(ModelFault):
    """A second live instance was requested for an already-cached key."""

    def __init__(self, model_name: str, pk: Any, **kwargs):
        super().__init__(
            code="DUPLICATE_INSTANCE",
            message=(
                f"A live {model_name} instance already exists for primary key {pk!r}; "
                f"use {model_name}.instance_with_primary_key()"
            ),
            metadata={"model": model_name, "pk": pk, **kwargs.get("metadata", {})},
        )


class ReloadConflictFault(ModelFault):
    """
    Unresolved reload conflict.

    Raised when an externally-updated row changes a field that also has an
    unsaved in-memory edit, and the model does not override
    ``resolve_reload_conflict``. Picking either value would lose data.
    """

    def __init__(self, model_name: str, pk: Any, field_name: str, database_value: Any, **kwargs):
        super().__init__(
            code="RELOAD_CONFLICT",
            message=(
                f"{model_name}(pk={pk!r}).{field_name} has an unsaved change but was "
                f"updated externally to {database_value!r}; override "
                f"resolve_reload_conflict() to reconcile"
            ),
            severity=Severity.FATAL,
            metadata={"model": model_name, "pk": pk, "field": field_name,
                      "database_value": database_value, **kwargs.get("metadata", {})},
        )
        self.field_name = field_name
        self.database_value = database_value
