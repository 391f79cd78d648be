"""
Tessera Model Base — uniqued, change-tracking row objects.

Usage:
    from tessera.models import Model
    from tessera.models.fields import IntegerField, TextField

    class Person(Model):
        table = "people"

        id = IntegerField(primary_key=True)
        name = TextField()

    person = await Person.instance_with_primary_key(1)
    person.name = "Bob"
    result = await person.save()      # SaveResult.SUCCEEDED

Every row is represented by at most one live instance. Instances are
obtained through ``instance_with_primary_key`` and the query classmethods,
which consult the store's instance cache before building anything.
Subclasses customise persistence by overriding the hook methods
(``should_insert``, ``did_update``, ``resolve_reload_conflict``, ...).
"""

from __future__ import annotations

import copy
import inspect
import logging
from typing import (
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
    TYPE_CHECKING,
)

from ..faults.domains import (
    DuplicateInstanceFault,
    ModelNotRegisteredFault,
    PrimaryKeyImmutableFault,
    ReloadConflictFault,
)
from .fields import Field, FieldValidationError, IntegerField
from .query import QueryMixin
from .registry import ModelRegistry

if TYPE_CHECKING:
    from ..faults.core import Fault
    from ..faults.domains import QueryFault
    from ..store import Store
    from .metadata import FieldInfo
    from .persistence import SaveResult

logger = logging.getLogger("tessera.models")

__all__ = ["Model", "ModelMeta", "maybe_await"]


async def maybe_await(value: Any) -> Any:
    """Resolve hook results that may be plain values or awaitables."""
    if inspect.isawaitable(value):
        return await value
    return value


def _snapshot(value: Any) -> Any:
    """Copy mutable containers so in-place edits show up as changes."""
    if isinstance(value, (dict, list, bytearray)):
        return copy.deepcopy(value)
    return value


def _differs(a: Any, b: Any) -> bool:
    if a is b:
        return False
    if type(a) is not type(b) and (a is None or b is None):
        return True
    try:
        return bool(a != b)
    except Exception:
        return True


# ── Model Metaclass ──────────────────────────────────────────────────────────


class ModelMeta(type):
    """
    Metaclass for Tessera models.

    Handles:
    - Field collection (inherited fields first)
    - Auto-PK injection (``id`` IntegerField)
    - ``table = "..."`` parsing
    - Model registration
    - Construction: ``Person(name="Ann")`` builds an unsaved instance
    """

    def __new__(
        mcs,
        name: str,
        bases: Tuple[type, ...],
        namespace: Dict[str, Any],
        **kwargs,
    ) -> ModelMeta:
        # Don't process the base Model class itself
        parents = [b for b in bases if isinstance(b, ModelMeta)]
        if not parents:
            return super().__new__(mcs, name, bases, namespace)

        table_attr = namespace.pop("table", None) or namespace.pop("table_name", None)

        fields: Dict[str, Field] = {}
        for parent in bases:
            if hasattr(parent, "_fields"):
                fields.update(parent._fields)

        new_fields: Dict[str, Field] = {}
        for key, value in list(namespace.items()):
            if isinstance(value, Field):
                fields[key] = value
                new_fields[key] = value

        pk_names = [fname for fname, field in fields.items() if field.primary_key]
        if not pk_names:
            pk_field = IntegerField(primary_key=True)
            pk_field.__set_name__(None, "id")
            fields = {"id": pk_field, **fields}
            namespace["id"] = pk_field
            new_fields["id"] = pk_field
        elif len(pk_names) > 1:
            raise TypeError(f"Model {name} declares more than one primary key: {pk_names}")

        cls = super().__new__(mcs, name, bases, namespace)

        cls._fields = fields
        cls._table_name = table_attr or name.lower()
        cls._pk_name = pk_names[0] if pk_names else "id"
        cls._store = None
        cls._is_base_model = False

        for field in new_fields.values():
            field.model = cls

        ModelRegistry.register(cls)
        return cls

    def __call__(cls, **values: Any) -> Model:
        """
        Create an unsaved instance.

        Columns not given take the schema default. Passing a primary key
        that already has a live instance raises DuplicateInstanceFault.
        """
        unknown = set(values) - set(cls._fields)
        if unknown:
            raise TypeError(f"{cls.__name__} has no field(s) {sorted(unknown)}")

        pk = values.pop(cls._pk_name, None)
        instance = cls._new_unsaved(None)
        for name, value in values.items():
            setattr(instance, name, value)
        if pk is not None:
            instance._set_field_value(cls._pk_name, pk)
        return instance


# ── Model Base Class ─────────────────────────────────────────────────────────


class Model(QueryMixin, metaclass=ModelMeta):
    """
    Tessera Model base class.

    Instance state:
        _values     current field values
        _original   last-synced field values
        _dirty      fields changed since the last sync
        _settled    values accepted as clean by a reload conflict
        _exists     whether the row is believed to exist
        _last_error fault from the last failed save/delete
    """

    _fields: ClassVar[Dict[str, Field]] = {}
    _table_name: ClassVar[str] = ""
    _pk_name: ClassVar[str] = "id"
    _store: ClassVar[Optional[Store]] = None
    _is_base_model: ClassVar[bool] = True

    _values: Dict[str, Any]
    _original: Dict[str, Any]
    _dirty: Set[str]
    _settled: Dict[str, Any]
    _exists: bool
    _last_error: Optional[Fault]

    def __repr__(self) -> str:
        state = "" if self._exists else " unsaved"
        return f"<{self.__class__.__name__} pk={self.primary_key!r}{state}>"

    # ── Store binding ────────────────────────────────────────────────

    @classmethod
    def _get_store(cls) -> Store:
        store = cls._store
        if store is None or not store.is_open:
            from ..store import get_store
            get_store()  # raises StoreNotOpenFault when nothing is open
            raise ModelNotRegisteredFault(cls.__name__)
        return store

    @classmethod
    def _scope(cls) -> Optional[Type[Model]]:
        return None if cls._is_base_model else cls

    @classmethod
    def _normalize_pk(cls, pk: Any) -> Any:
        if pk is None:
            return None
        return cls._fields[cls._pk_name].to_python(pk)

    # ── Construction (used by the instance cache) ────────────────────

    @classmethod
    def _from_database_row(cls, pk: Any, row: Mapping[str, Any]) -> Model:
        """Build a loaded instance from a database row."""
        instance = cls.__new__(cls)
        instance._init_state(exists=True)
        for name in cls._fields:
            if name == cls._pk_name:
                instance._values[name] = pk
            elif name in row:
                instance._values[name] = instance.deserialize_value(name, row[name])
        instance._original = {name: _snapshot(value) for name, value in instance._values.items()}
        return instance

    @classmethod
    def _new_unsaved(cls, pk: Any) -> Model:
        """Build an unsaved instance holding schema defaults."""
        instance = cls.__new__(cls)
        instance._init_state(exists=False)
        infos: Mapping[str, FieldInfo] = {}
        if cls._store is not None and cls._store.is_open:
            infos = cls._store.metadata.field_info(cls)
        for name in cls._fields:
            if name == cls._pk_name:
                instance._values[name] = pk
                continue
            info = infos.get(name)
            default = info.default if info is not None else None
            instance._values[name] = instance.deserialize_value(name, default)
        instance._original = {name: _snapshot(value) for name, value in instance._values.items()}
        return instance

    def _init_state(self, exists: bool) -> None:
        self._values = {}
        self._original = {}
        self._dirty = set()
        self._settled = {}
        self._exists = exists
        self._last_error = None

    # ── Field mutation & dirty tracking ──────────────────────────────

    def _set_field_value(self, name: str, value: Any) -> None:
        cls = type(self)
        if name == cls._pk_name:
            self._assign_primary_key(value)
            return
        self._values[name] = value
        self._settled.pop(name, None)
        if self._value_differs(name, value, self._original.get(name)):
            self._dirty.add(name)
        else:
            self._dirty.discard(name)

    def _assign_primary_key(self, value: Any) -> None:
        cls = type(self)
        value = cls._normalize_pk(value)
        current = self._values.get(cls._pk_name)
        if current is not None:
            if _differs(value, current):
                raise PrimaryKeyImmutableFault(cls.__name__, current, value)
            return
        if value is None:
            return
        store = cls._store
        if store is not None and store.is_open:
            self._values[cls._pk_name] = value
            if not store.cache.register(self):
                self._values[cls._pk_name] = None
                raise DuplicateInstanceFault(cls.__name__, value)
        else:
            self._values[cls._pk_name] = value
        self._original[cls._pk_name] = value

    def _collect_dirty(self) -> Set[str]:
        """Pick up in-place edits of mutable values (dicts, lists)."""
        for name, value in self._values.items():
            if isinstance(value, (dict, list, bytearray)) and name not in self._dirty:
                baseline = self._settled.get(name, self._original.get(name))
                if self._value_differs(name, value, baseline):
                    self._dirty.add(name)
        return self._dirty

    def _value_differs(self, name: str, a: Any, b: Any) -> bool:
        """Compare two values of ``name`` as they would be stored."""
        if not _differs(a, b):
            return False
        try:
            return _differs(self.serialize_value(name, a), self.serialize_value(name, b))
        except FieldValidationError:
            return True

    def _mark_synced(self) -> None:
        self._original = {name: _snapshot(value) for name, value in self._values.items()}
        self._dirty.clear()
        self._settled.clear()
        self._exists = True
        self._last_error = None

    def revert_unsaved_changes(self) -> bool:
        """
        Restore every field to its last-synced value.

        Returns True if anything was reverted. Performs no database I/O.
        """
        dirty = set(self._collect_dirty())
        if not dirty:
            return False
        for name in dirty:
            self._values[name] = _snapshot(self._original.get(name))
            self._settled.pop(name, None)
        self._dirty.clear()
        return True

    def revert_unsaved_change(self, field_name: str) -> bool:
        """Restore one field to its last-synced value; True if it was dirty."""
        if field_name not in self._fields:
            raise KeyError(f"{type(self).__name__} has no field '{field_name}'")
        if field_name not in self._collect_dirty():
            return False
        self._values[field_name] = _snapshot(self._original.get(field_name))
        self._settled.pop(field_name, None)
        self._dirty.discard(field_name)
        return True

    # ── Public state ─────────────────────────────────────────────────

    @property
    def primary_key(self) -> Any:
        return self._values.get(type(self)._pk_name)

    @property
    def exists_in_database(self) -> bool:
        return self._exists

    @property
    def has_unsaved_changes(self) -> bool:
        return bool(self._collect_dirty())

    @property
    def dirty_fields(self) -> FrozenSet[str]:
        return frozenset(self._collect_dirty())

    @property
    def last_error(self) -> Optional[Fault]:
        return self._last_error

    @property
    def all_fields(self) -> Dict[str, Any]:
        """Current values of every field, primary key included."""
        return dict(self._values)

    def original_value(self, field_name: str) -> Any:
        """Last-synced value of ``field_name``."""
        return self._original.get(field_name)

    # ── Value codecs (override point) ────────────────────────────────

    def serialize_value(self, field_name: str, value: Any) -> Any:
        """
        Convert a field value to its database representation.

        Override to customise a field; call ``super()`` for the rest.
        """
        return self._fields[field_name].to_db(value)

    def deserialize_value(self, field_name: str, database_value: Any) -> Any:
        """
        Convert a database value to the field's Python value.

        Override to customise a field; call ``super()`` for the rest.
        """
        return self._fields[field_name].to_python(database_value)

    # ── Hooks (override in subclasses; may be coroutines) ────────────

    def should_insert(self) -> bool:
        return True

    def should_update(self) -> bool:
        return True

    def should_delete(self) -> bool:
        return True

    def did_insert(self) -> None:
        pass

    def did_update(self) -> None:
        pass

    def did_delete(self) -> None:
        pass

    def save_was_refused(self) -> None:
        pass

    def save_did_fail(self) -> None:
        pass

    def resolve_reload_conflict(self, field_name: str, database_value: Any) -> Any:
        """
        Pick the value of a field changed both here (unsaved) and in the
        database (externally).

        The return value becomes the field's current value. There is no safe
        default, so the base implementation raises ReloadConflictFault; any
        model that uses ``data_was_updated_externally`` or
        ``execute_update_query`` while holding unsaved edits must override it.
        """
        raise ReloadConflictFault(type(self).__name__, self.primary_key, field_name, database_value)

    # ── Persistence API ──────────────────────────────────────────────

    async def save(self) -> SaveResult:
        """Insert or update this instance's row."""
        return await self._get_store().pipeline.save(self)

    async def delete(self) -> SaveResult:
        """Delete this instance's row."""
        return await self._get_store().pipeline.delete(self)

    @classmethod
    async def save_all(cls) -> List[Tuple[Model, SaveResult]]:
        """
        Save every live instance with unsaved changes.

        Called on ``Model`` it covers all models; on a model class it covers
        that class and its registered subclasses.
        """
        return await cls._get_base_store().pipeline.save_all(cls._scope())

    @classmethod
    async def instance_with_primary_key(cls, pk: Any, create_if_absent: bool = True) -> Optional[Model]:
        """
        Return the live instance for ``pk``, loading it if needed.

        When no row exists an unsaved instance with default values is
        returned, or None if ``create_if_absent`` is False.
        """
        store = cls._get_store()
        pk = cls._normalize_pk(pk)
        if pk is None:
            raise ValueError(f"{cls.__name__}.instance_with_primary_key requires a key")
        cached = store.cache.get(cls, pk)
        if cached is not None:
            return cached
        row = await store.database.fetch_one(
            cls.expand_query("SELECT * FROM $T WHERE $PK = ?"),
            [cls._fields[cls._pk_name].to_db(pk)],
            model=cls.__name__,
        )
        return store.cache.get_or_create(cls, pk, row_values=row, create_if_absent=create_if_absent)

    # ── External writes ──────────────────────────────────────────────

    @classmethod
    def _get_base_store(cls) -> Store:
        if not cls._is_base_model:
            return cls._get_store()
        from ..store import get_store
        return get_store()

    @classmethod
    async def data_was_updated_externally(cls) -> None:
        """
        Reload live instances after writes made outside ``save``/``delete``.

        On ``Model`` every model reloads; on a model class, that class and
        its subclasses.
        """
        await cls._get_base_store().data_was_updated_externally(cls._scope())

    @classmethod
    async def execute_update_query(cls, query: str, params: Sequence[Any] = ()) -> Optional[QueryFault]:
        """
        Run a templated write, then reload the affected scope.

        Returns the fault if the statement failed, otherwise None.
        """
        return await cls._get_base_store().execute_update_query(query, params, model=cls._scope())

    # ── Metadata ─────────────────────────────────────────────────────

    @classmethod
    def field_info(cls) -> Mapping[str, FieldInfo]:
        return cls._get_store().field_info(cls)

    @classmethod
    def primary_key_field_name(cls) -> str:
        return cls._get_store().primary_key_field_name(cls)
