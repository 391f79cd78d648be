"""
Tessera Query Expander — ``$T`` / ``$PK`` templates over the instance cache.

Expansion is a separate, textual stage that runs before parameter binding:

    >>> expand_query(Person, "SELECT * FROM $T WHERE $PK = ?")
    'SELECT * FROM people WHERE id = ?'

Every classmethod that returns instances builds them through the store's
instance cache, so running the same query twice yields the same objects.
The raw variants (``result_dicts_from_query``, ``first_column_from_query``,
``first_value_from_query``) hand back plain data and never touch the cache.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TYPE_CHECKING

from .sql_builder import SelectBuilder

if TYPE_CHECKING:
    from ..store import Store
    from .base import Model

__all__ = ["expand_query", "ExpandedQuery", "QueryMixin"]

TABLE_TOKEN = "$T"
PRIMARY_KEY_TOKEN = "$PK"

_TRAILING_LIMIT = re.compile(r"\bLIMIT\b[^)]*$", re.IGNORECASE)


def expand_query(model_cls: Type[Model], template: str) -> str:
    """Substitute the model's table and primary-key names into ``template``."""
    sql = template.replace(PRIMARY_KEY_TOKEN, model_cls._pk_name)
    return sql.replace(TABLE_TOKEN, model_cls._table_name)


def _limit_one(fragment: str) -> str:
    """Append ``LIMIT 1`` unless the fragment already ends in a LIMIT clause."""
    if _TRAILING_LIMIT.search(fragment):
        return fragment
    return f"{fragment} LIMIT 1"


@dataclass(frozen=True)
class ExpandedQuery:
    """A template after token substitution, ready for binding."""

    sql: str
    params: Tuple[Any, ...] = field(default_factory=tuple)

    @classmethod
    def build(cls, model_cls: Type[Model], template: str, params: Sequence[Any] = ()) -> ExpandedQuery:
        return cls(expand_query(model_cls, template), tuple(params))


class QueryMixin:
    """Query classmethods mixed into ``Model``."""

    @classmethod
    def expand_query(cls, template: str) -> str:
        return expand_query(cls, template)

    # ── Internals ────────────────────────────────────────────────────

    @classmethod
    async def _fetch_rows(cls, template: str, params: Sequence[Any]) -> List[Dict[str, Any]]:
        store: Store = cls._get_store()
        query = ExpandedQuery.build(cls, template, params)
        return await store.database.fetch_all(query.sql, query.params, model=cls.__name__)

    @classmethod
    def _materialize(cls, rows: Iterable[Dict[str, Any]]) -> List[Model]:
        store: Store = cls._get_store()
        instances = []
        for row in rows:
            pk = cls._normalize_pk(row.get(cls._pk_name))
            instance = store.cache.get_or_create(cls, pk, row_values=row)
            if instance is not None:
                instances.append(instance)
        return instances

    @staticmethod
    def _keyed(instances: Iterable[Model]) -> Dict[Any, Model]:
        return {instance.primary_key: instance for instance in instances}

    @staticmethod
    def _first(instances: List[Model]) -> Optional[Model]:
        return instances[0] if instances else None

    # ── Full templated queries ───────────────────────────────────────

    @classmethod
    async def instances_from_query(cls, query: str, params: Sequence[Any] = ()) -> List[Model]:
        """
        Run a full SELECT template and return uniqued instances.

        The result set must include the primary-key column.
        """
        return cls._materialize(await cls._fetch_rows(query, params))

    @classmethod
    async def first_instance_from_query(cls, query: str, params: Sequence[Any] = ()) -> Optional[Model]:
        return cls._first(await cls.instances_from_query(query, params))

    @classmethod
    async def keyed_instances_from_query(cls, query: str, params: Sequence[Any] = ()) -> Dict[Any, Model]:
        return cls._keyed(await cls.instances_from_query(query, params))

    # ── All / where / ordered ────────────────────────────────────────

    @classmethod
    async def all_instances(cls) -> List[Model]:
        return await cls.instances_from_query("SELECT * FROM $T")

    @classmethod
    async def keyed_all_instances(cls) -> Dict[Any, Model]:
        return cls._keyed(await cls.all_instances())

    @classmethod
    async def first_instance(cls) -> Optional[Model]:
        """Any one instance of the model, or None for an empty table."""
        return await cls.first_instance_from_query("SELECT * FROM $T LIMIT 1")

    @classmethod
    async def instances_where(cls, predicate: str, params: Sequence[Any] = ()) -> List[Model]:
        """
        Instances matching a WHERE fragment.

        Usage:
            adults = await Person.instances_where("age >= ? ORDER BY name", [18])
        """
        return await cls.instances_from_query(f"SELECT * FROM $T WHERE {predicate}", params)

    @classmethod
    async def first_instance_where(cls, predicate: str, params: Sequence[Any] = ()) -> Optional[Model]:
        return cls._first(await cls.instances_where(_limit_one(predicate), params))

    @classmethod
    async def keyed_instances_where(cls, predicate: str, params: Sequence[Any] = ()) -> Dict[Any, Model]:
        return cls._keyed(await cls.instances_where(predicate, params))

    @classmethod
    async def instances_ordered_by(cls, ordering: str, params: Sequence[Any] = ()) -> List[Model]:
        return await cls.instances_from_query(f"SELECT * FROM $T ORDER BY {ordering}", params)

    @classmethod
    async def first_instance_ordered_by(cls, ordering: str, params: Sequence[Any] = ()) -> Optional[Model]:
        return cls._first(await cls.instances_ordered_by(_limit_one(ordering), params))

    @classmethod
    async def keyed_instances_ordered_by(cls, ordering: str, params: Sequence[Any] = ()) -> Dict[Any, Model]:
        return cls._keyed(await cls.instances_ordered_by(ordering, params))

    # ── Explicit key sets ────────────────────────────────────────────

    @classmethod
    async def instances_with_primary_key_values(cls, keys: Iterable[Any]) -> List[Model]:
        """
        Instances for the given keys, in input order.

        Keys without a row are skipped. Cached instances are returned as is
        and only the remaining keys are read, in chunks.
        """
        store: Store = cls._get_store()
        pk_field = cls._fields[cls._pk_name]
        wanted = []
        seen = set()
        for key in keys:
            key = cls._normalize_pk(key)
            if key is None or key in seen:
                continue
            seen.add(key)
            wanted.append(key)

        found: Dict[Any, Model] = {}
        missing = []
        for key in wanted:
            cached = store.cache.get(cls, key)
            if cached is not None and cached.exists_in_database:
                found[key] = cached
            else:
                missing.append(key)

        chunk_size = store.config.primary_key_chunk_size
        for start in range(0, len(missing), chunk_size):
            chunk = missing[start:start + chunk_size]
            sql, params = (
                SelectBuilder(cls._table_name)
                .where_in(cls._pk_name, [pk_field.to_db(key) for key in chunk])
                .build()
            )
            rows = await cls._fetch_rows(sql, params)
            for instance in cls._materialize(rows):
                found[instance.primary_key] = instance

        return [found[key] for key in wanted if key in found]

    @classmethod
    async def first_instance_with_primary_key_values(cls, keys: Iterable[Any]) -> Optional[Model]:
        """The instance for the first key that has a row."""
        return cls._first(await cls.instances_with_primary_key_values(keys))

    @classmethod
    async def keyed_instances_with_primary_key_values(cls, keys: Iterable[Any]) -> Dict[Any, Model]:
        return cls._keyed(await cls.instances_with_primary_key_values(keys))

    # ── Raw results (bypass the cache) ───────────────────────────────

    @classmethod
    async def result_dicts_from_query(cls, query: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        return await cls._fetch_rows(query, params)

    @classmethod
    async def first_column_from_query(cls, query: str, params: Sequence[Any] = ()) -> List[Any]:
        store: Store = cls._get_store()
        expanded = ExpandedQuery.build(cls, query, params)
        return await store.database.fetch_column(expanded.sql, expanded.params, model=cls.__name__)

    @classmethod
    async def first_value_from_query(cls, query: str, params: Sequence[Any] = ()) -> Any:
        store: Store = cls._get_store()
        expanded = ExpandedQuery.build(cls, query, params)
        return await store.database.fetch_val(expanded.sql, expanded.params, model=cls.__name__)
