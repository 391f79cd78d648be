"""
Tessera SQL Builder — safe, parameterized SQL generation.

Produces parameterized SQL and bind-parameter lists; every value is bound
as a parameter, identifiers are double-quoted.

Usage:
    sql, params = (
        SelectBuilder("people")
        .where_in("id", [1, 2, 3])
        .build()
    )
    # sql = 'SELECT * FROM "people" WHERE ("id" IN (?, ?, ?))'
    # params = [1, 2, 3]
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence, Tuple


__all__ = [
    "SelectBuilder",
    "InsertBuilder",
    "UpdateBuilder",
    "DeleteBuilder",
    "quote",
]


def quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class SelectBuilder:
    """SELECT * query builder."""

    def __init__(self, table: str):
        self._table = table
        self._wheres: List[str] = []
        self._params: List[Any] = []

    def where_in(self, column: str, values: Sequence[Any]) -> SelectBuilder:
        """Add WHERE column IN (...) clause."""
        if not values:
            self._wheres.append("0")  # Always false
        else:
            placeholders = ", ".join("?" for _ in values)
            self._wheres.append(f"{quote(column)} IN ({placeholders})")
            self._params.extend(values)
        return self

    def build(self) -> Tuple[str, List[Any]]:
        sql = f"SELECT * FROM {quote(self._table)}"
        if self._wheres:
            sql += " WHERE " + " AND ".join(f"({w})" for w in self._wheres)
        return sql, list(self._params)


class InsertBuilder:
    """INSERT query builder."""

    def __init__(self, table: str):
        self._table = table
        self._columns: List[str] = []
        self._values: List[Any] = []

    def from_dict(self, data: Dict[str, Any]) -> InsertBuilder:
        """Set columns and values from a dict."""
        self._columns = list(data.keys())
        self._values = list(data.values())
        return self

    def build(self) -> Tuple[str, List[Any]]:
        if not self._columns:
            return f"INSERT INTO {quote(self._table)} DEFAULT VALUES", []
        col_names = ", ".join(quote(c) for c in self._columns)
        placeholders = ", ".join("?" for _ in self._columns)
        sql = f"INSERT INTO {quote(self._table)} ({col_names}) VALUES ({placeholders})"
        return sql, list(self._values)


class UpdateBuilder:
    """UPDATE query builder."""

    def __init__(self, table: str):
        self._table = table
        self._sets: Dict[str, Any] = {}
        self._wheres: List[str] = []
        self._params: List[Any] = []

    def set_dict(self, data: Dict[str, Any]) -> UpdateBuilder:
        self._sets.update(data)
        return self

    def where_eq(self, column: str, value: Any) -> UpdateBuilder:
        self._wheres.append(f"{quote(column)} = ?")
        self._params.append(value)
        return self

    def build(self) -> Tuple[str, List[Any]]:
        if not self._sets:
            raise ValueError("UPDATE requires at least one column")
        set_parts = [f"{quote(k)} = ?" for k in self._sets]
        sql = f"UPDATE {quote(self._table)} SET {', '.join(set_parts)}"
        params = list(self._sets.values())
        if self._wheres:
            sql += " WHERE " + " AND ".join(self._wheres)
            params.extend(self._params)
        return sql, params


class DeleteBuilder:
    """DELETE query builder."""

    def __init__(self, table: str):
        self._table = table
        self._wheres: List[str] = []
        self._params: List[Any] = []

    def where_eq(self, column: str, value: Any) -> DeleteBuilder:
        self._wheres.append(f"{quote(column)} = ?")
        self._params.append(value)
        return self

    def build(self) -> Tuple[str, List[Any]]:
        sql = f"DELETE FROM {quote(self._table)}"
        if self._wheres:
            sql += " WHERE " + " AND ".join(self._wheres)
        return sql, list(self._params)
