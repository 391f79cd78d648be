"""
Tessera Model Fields — descriptors with built-in value codecs.

Each field class owns the codec for its storage class:

    TextField      str          <-> TEXT
    IntegerField   int          <-> INTEGER
    RealField      float        <-> REAL
    BooleanField   bool         <-> INTEGER 0/1
    BlobField      bytes        <-> BLOB
    DateTimeField  datetime     <-> INTEGER/REAL seconds since the epoch (UTC)
    JSONField      dict / list  <-> TEXT

Models customise serialization per field by overriding
``Model.serialize_value`` / ``Model.deserialize_value`` and delegating to
``super()`` for everything they do not handle.

    class Person(Model):
        table = "people"

        id = IntegerField(primary_key=True)
        name = TextField()
        active = BooleanField()
"""

from __future__ import annotations

import datetime
import json
from typing import Any, Optional, Type, TYPE_CHECKING

from .metadata import FieldType

if TYPE_CHECKING:
    from .base import Model

__all__ = [
    "FieldValidationError",
    "Field",
    "TextField",
    "IntegerField",
    "RealField",
    "BooleanField",
    "BlobField",
    "DateTimeField",
    "JSONField",
]


class FieldValidationError(ValueError):
    """Raised when a value cannot be converted by a field codec."""

    def __init__(self, field_name: str, message: str, value: Any = None):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Field '{field_name}': {message}")


class Field:
    """
    Base field descriptor.

    Reading the attribute on an instance returns its current value; writing
    it goes through ``Model._set_field_value`` which maintains the dirty set
    and guards the primary key.

    Parameters:
        primary_key – Mark as the model's primary key
    """

    field_type: FieldType = FieldType.OTHER
    _python_type: type = object

    _creation_counter = 0

    def __init__(self, *, primary_key: bool = False):
        self.primary_key = primary_key

        # Set by metaclass
        self.name: str = ""
        self.model: Optional[Type[Model]] = None

        self._order = Field._creation_counter
        Field._creation_counter += 1

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}: {self.name}>"

    def __get__(self, instance: Optional[Model], owner: type) -> Any:
        if instance is None:
            return self
        return instance._values.get(self.name)

    def __set__(self, instance: Model, value: Any) -> None:
        instance._set_field_value(self.name, value)

    def to_python(self, value: Any) -> Any:
        """Convert database value to Python object."""
        return value

    def to_db(self, value: Any) -> Any:
        """Convert Python value to database-ready value."""
        return value


class TextField(Field):
    field_type = FieldType.TEXT
    _python_type = str

    def to_python(self, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return str(value)

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        return str(value)


class IntegerField(Field):
    field_type = FieldType.INTEGER
    _python_type = int

    def to_python(self, value: Any) -> Any:
        if value is None:
            return None
        return int(value)

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, bool):
            return int(value)
        if not isinstance(value, int):
            try:
                return int(value)
            except (TypeError, ValueError):
                raise FieldValidationError(self.name, f"Expected integer, got {type(value).__name__}", value)
        return value


class RealField(Field):
    field_type = FieldType.REAL
    _python_type = float

    def to_python(self, value: Any) -> Any:
        if value is None:
            return None
        return float(value)

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            raise FieldValidationError(self.name, f"Expected number, got {type(value).__name__}", value)


class BooleanField(Field):
    """Boolean field, stored as INTEGER 0/1."""

    field_type = FieldType.BOOLEAN
    _python_type = bool

    def to_python(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            return value.lower() in ("1", "true", "yes")
        return bool(value)

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        return 1 if value else 0


class BlobField(Field):
    """Binary data field, stored as BLOB."""

    field_type = FieldType.OTHER
    _python_type = bytes

    def to_python(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, memoryview):
            return bytes(value)
        return value

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise FieldValidationError(self.name, f"Expected bytes, got {type(value).__name__}", value)
        return bytes(value)


class DateTimeField(Field):
    """
    Datetime stored as seconds since the epoch.

    Naive datetimes are taken to be UTC; loaded values are timezone-aware UTC.
    """

    field_type = FieldType.INTEGER
    _python_type = datetime.datetime

    def to_python(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, datetime.datetime):
            return value
        return datetime.datetime.fromtimestamp(float(value), tz=datetime.timezone.utc)

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (int, float)):
            return value
        if not isinstance(value, datetime.datetime):
            raise FieldValidationError(self.name, f"Expected datetime, got {type(value).__name__}", value)
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        seconds = value.timestamp()
        return int(seconds) if seconds.is_integer() else seconds


class JSONField(Field):
    """Dict/list stored as JSON text."""

    field_type = FieldType.TEXT
    _python_type = object

    def to_python(self, value: Any) -> Any:
        if value is None or not isinstance(value, (str, bytes)):
            return value
        return json.loads(value)

    def to_db(self, value: Any) -> Any:
        if value is None:
            return None
        return json.dumps(value, sort_keys=True)
