"""
Tessera Database — serialized access to an embedded SQLite store.

Provides:
- Database: connection manager and single ordered execution channel
- SQLiteAdapter: aiosqlite-backed driver
- Structured faults (DatabaseConnectionFault, QueryFault, SchemaFault)
"""

from .engine import Database, Operation
from .sqlite import ColumnInfo, ExecuteResult, SQLiteAdapter

from ..faults.domains import (
    DatabaseConnectionFault,
    QueryFault,
    SchemaFault,
)

__all__ = [
    "Database",
    "Operation",
    "ColumnInfo",
    "ExecuteResult",
    "SQLiteAdapter",
    "DatabaseConnectionFault",
    "QueryFault",
    "SchemaFault",
]
