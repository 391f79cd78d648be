"""
Tessera Field Metadata — per-model field information read from the schema.

Built once per model type when a store opens (or when a model is registered
afterwards) by introspecting ``PRAGMA table_info``; read-only from then on.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Type, TYPE_CHECKING

from ..faults.domains import ModelNotRegisteredFault, SchemaFault

if TYPE_CHECKING:
    from ..db.sqlite import ColumnInfo
    from .base import Model

logger = logging.getLogger("tessera.models.metadata")

__all__ = [
    "FieldType",
    "FieldInfo",
    "ModelMetadata",
    "MetadataRegistry",
    "field_type_for_declaration",
    "parse_column_default",
]


class FieldType(str, Enum):
    """Storage type tag of a column."""

    TEXT = "text"
    INTEGER = "integer"
    REAL = "real"
    BOOLEAN = "boolean"
    OTHER = "other"


_ZERO_VALUES = {
    FieldType.TEXT: "",
    FieldType.INTEGER: 0,
    FieldType.REAL: 0.0,
    FieldType.BOOLEAN: False,
}


@dataclass(frozen=True)
class FieldInfo:
    """Type tag, NULL rule and default value of one column."""

    type: FieldType
    nullable: bool
    default: Any = None

    def __repr__(self) -> str:
        null = "NULL" if self.nullable else "NOT NULL"
        return f"<FieldInfo {self.type.value} {null} default={self.default!r}>"


@dataclass(frozen=True)
class ModelMetadata:
    """Table name, primary-key field and field infos for one model type."""

    table_name: str
    primary_key: str
    fields: Mapping[str, FieldInfo]

    @property
    def field_names(self) -> List[str]:
        return list(self.fields)


def field_type_for_declaration(declared: str) -> FieldType:
    """
    Map a declared column type to a type tag.

    Follows SQLite's affinity rules, with BOOL checked first so that
    ``BOOLEAN`` columns are not classified as text or numeric.
    """
    decl = (declared or "").upper()
    if "BOOL" in decl:
        return FieldType.BOOLEAN
    if "INT" in decl:
        return FieldType.INTEGER
    if "CHAR" in decl or "CLOB" in decl or "TEXT" in decl:
        return FieldType.TEXT
    if "REAL" in decl or "FLOA" in decl or "DOUB" in decl or "NUMERIC" in decl or "DECIMAL" in decl:
        return FieldType.REAL
    return FieldType.OTHER


def parse_column_default(raw: Optional[str], field_type: FieldType) -> Any:
    """
    Convert a ``PRAGMA table_info`` default expression into a value.

    Expressions that are not literals (``CURRENT_TIMESTAMP``, function
    calls) yield None.
    """
    if raw is None:
        return None
    text = raw.strip()
    if text.upper() == "NULL":
        return None
    if text.startswith("(") and text.endswith(")"):
        return parse_column_default(text[1:-1], field_type)

    quoted = len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"')
    if quoted:
        text = text[1:-1].replace(text[0] * 2, text[0])
        if field_type in (FieldType.TEXT, FieldType.OTHER):
            return text

    try:
        if field_type is FieldType.INTEGER:
            return int(text)
        if field_type is FieldType.REAL:
            return float(text)
        if field_type is FieldType.BOOLEAN:
            if text.upper() in ("TRUE", "FALSE"):
                return text.upper() == "TRUE"
            return bool(int(text))
        if field_type is FieldType.OTHER:
            return float(text) if "." in text else int(text)
    except ValueError:
        logger.debug(f"Non-literal default {raw!r} ignored")
        return None
    # Unquoted default on a text column is an expression (CURRENT_TIMESTAMP, ...)
    return None


def build_field_info(column: ColumnInfo) -> FieldInfo:
    field_type = field_type_for_declaration(column.data_type)
    default = parse_column_default(column.default, field_type)
    if default is None and not column.nullable and not column.primary_key:
        default = _ZERO_VALUES.get(field_type)
    return FieldInfo(type=field_type, nullable=column.nullable, default=default)


class MetadataRegistry:
    """
    Per-store table of ModelMetadata, keyed by model class.

    Entries are added while the store opens (or by ``register``) and never
    mutated afterwards; lookups are plain dictionary reads.
    """

    def __init__(self):
        self._metadata: Dict[Type[Model], ModelMetadata] = {}
        self._lock = threading.Lock()

    def build(self, model_cls: Type[Model], columns: List[ColumnInfo]) -> ModelMetadata:
        """
        Build and store metadata for ``model_cls`` from its table's columns.

        Raises:
            SchemaFault: table missing, a declared field has no column, or
                the primary key does not match the table
        """
        table = model_cls._table_name
        if not columns:
            raise SchemaFault(table=table, reason=f"table for model {model_cls.__name__} does not exist")

        by_name = {column.name: column for column in columns}
        missing = [name for name in model_cls._fields if name not in by_name]
        if missing:
            raise SchemaFault(
                table=table,
                reason=f"declared field(s) {missing} of {model_cls.__name__} have no column",
            )

        pk_columns = [column.name for column in columns if column.primary_key]
        if pk_columns != [model_cls._pk_name]:
            raise SchemaFault(
                table=table,
                reason=(
                    f"primary key of {model_cls.__name__} is '{model_cls._pk_name}' "
                    f"but table declares {pk_columns or 'none'}"
                ),
            )

        infos: Dict[str, FieldInfo] = {}
        for column in columns:
            if column.name not in model_cls._fields:
                logger.debug(f"{table}.{column.name} has no field on {model_cls.__name__}, ignored")
                continue
            infos[column.name] = build_field_info(column)

        metadata = ModelMetadata(
            table_name=table,
            primary_key=model_cls._pk_name,
            fields=MappingProxyType(infos),
        )
        with self._lock:
            self._metadata[model_cls] = metadata
        logger.debug(f"Metadata built for {model_cls.__name__}: {dict(infos)}")
        return metadata

    def get(self, model_cls: Type[Model]) -> ModelMetadata:
        try:
            return self._metadata[model_cls]
        except KeyError:
            raise ModelNotRegisteredFault(model_cls.__name__) from None

    def field_info(self, model_cls: Type[Model]) -> Mapping[str, FieldInfo]:
        return self.get(model_cls).fields

    def primary_key_field_name(self, model_cls: Type[Model]) -> str:
        return self.get(model_cls).primary_key

    def __contains__(self, model_cls: object) -> bool:
        return model_cls in self._metadata

    def models(self) -> List[Type[Model]]:
        return list(self._metadata)
