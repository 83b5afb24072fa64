"""Attribute casting.

A cast declaration ("int", "decimal:2", "datetime:%d/%m/%Y", a caster class,
...) is parsed once, when the entity type is registered, into a CastSpec.
Unknown declarations raise InvalidCastError at that point rather than on
first use.

Attributes are held in their storage form. ``to_storage`` converts a value
assigned by the caller into that form; ``from_storage`` converts it back
when the attribute is read; ``for_serialization`` renders the read value for
to_dict()/to_json().

Storage forms:
    int / float / string  -> the Python scalar
    decimal:N             -> fixed-point text with N places
    bool                  -> 1 or 0
    json / array / object -> JSON text
    collection            -> JSON text of a list
    encrypted             -> base64 payload (see encryption.py)
    datetime / date       -> text in the configured storage format
    timestamp             -> unix seconds (int)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from dateutil import parser as date_parser

from orm_engine.domain.exceptions import DateFormatError, InvalidCastError

TRUTHY_STRINGS = frozenset({"1", "true", "yes", "on"})
DATE_STORAGE_FORMAT = "%Y-%m-%d"


class CastKind(str, Enum):
    """Kinds of attribute cast."""

    INT = "int"
    FLOAT = "float"
    DECIMAL = "decimal"
    BOOL = "bool"
    STRING = "string"
    JSON = "json"
    COLLECTION = "collection"
    ENCRYPTED = "encrypted"
    DATETIME = "datetime"
    DATE = "date"
    TIMESTAMP = "timestamp"
    CUSTOM = "custom"


_ALIASES: dict[str, CastKind] = {
    "int": CastKind.INT,
    "integer": CastKind.INT,
    "float": CastKind.FLOAT,
    "double": CastKind.FLOAT,
    "real": CastKind.FLOAT,
    "decimal": CastKind.DECIMAL,
    "bool": CastKind.BOOL,
    "boolean": CastKind.BOOL,
    "str": CastKind.STRING,
    "string": CastKind.STRING,
    "array": CastKind.JSON,
    "json": CastKind.JSON,
    "object": CastKind.JSON,
    "collection": CastKind.COLLECTION,
    "encrypted": CastKind.ENCRYPTED,
    "datetime": CastKind.DATETIME,
    "immutable_datetime": CastKind.DATETIME,
    "date": CastKind.DATE,
    "immutable_date": CastKind.DATE,
    "timestamp": CastKind.TIMESTAMP,
}


@dataclass(frozen=True)
class CastSpec:
    """A parsed cast declaration.

    Attributes:
        kind: The cast kind
        argument: Decimal places for DECIMAL, display format for DATETIME/DATE
        caster: Caster instance for CUSTOM casts
    """

    kind: CastKind
    argument: str | None = None
    caster: Any = None

    @property
    def is_date(self) -> bool:
        return self.kind in (CastKind.DATETIME, CastKind.DATE, CastKind.TIMESTAMP)


DATETIME_CAST = CastSpec(CastKind.DATETIME)


def parse_cast(declaration: Any) -> CastSpec:
    """Parse a cast declaration.

    Args:
        declaration: A cast name with an optional ":argument", a caster class
            or a caster instance (anything with get and set methods)

    Returns:
        The parsed CastSpec

    Raises:
        InvalidCastError: If the declaration is not understood
    """
    if isinstance(declaration, CastSpec):
        return declaration

    if not isinstance(declaration, str):
        caster = declaration() if isinstance(declaration, type) else declaration
        if callable(getattr(caster, "get", None)) and callable(getattr(caster, "set", None)):
            return CastSpec(CastKind.CUSTOM, caster=caster)
        raise InvalidCastError(f"Caster {declaration!r} must define get() and set()")

    name, _, argument = declaration.partition(":")
    kind = _ALIASES.get(name.strip().lower())
    if kind is None:
        raise InvalidCastError(f"Unknown cast type [{declaration}]")

    if kind is CastKind.DECIMAL:
        if not argument.strip().isdigit():
            raise InvalidCastError(f"Decimal cast needs a digit count, got [{declaration}]")
        return CastSpec(kind, argument.strip())
    if kind in (CastKind.DATETIME, CastKind.DATE):
        return CastSpec(kind, argument or None)
    if argument:
        raise InvalidCastError(f"Cast [{name}] does not take an argument")
    return CastSpec(kind)


def is_truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY_STRINGS
    return bool(value)


def parse_datetime(value: Any, storage_format: str) -> datetime:
    """Parse value into a datetime.

    Tries the storage format, then ISO 8601, then dateutil's lenient parser.

    Raises:
        DateFormatError: If value cannot be interpreted as a date/time
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    if not isinstance(value, str) or not value.strip():
        raise DateFormatError(f"Cannot parse {value!r} as a date")

    text = value.strip()
    try:
        return datetime.strptime(text, storage_format)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    try:
        return date_parser.parse(text)
    except (ValueError, OverflowError) as e:
        raise DateFormatError(f"Cannot parse {value!r} as a date") from e


def _encrypter():
    from orm_engine.domain.services.encryption import get_encrypter

    return get_encrypter()


def _decimal(value: Any, places: str) -> Decimal:
    try:
        return Decimal(str(value)).quantize(Decimal(1).scaleb(-int(places)))
    except InvalidOperation as e:
        raise ValueError(f"Cannot cast {value!r} to decimal:{places}") from e


def _json_ready(value: Any) -> Any:
    if hasattr(value, "to_list"):
        return value.to_list()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


def to_storage(spec: CastSpec, value: Any, storage_format: str, model: Any = None, key: str = "") -> Any:
    """Convert an assigned value to its storage form."""
    if spec.kind is CastKind.CUSTOM:
        return spec.caster.set(model, key, value)
    if value is None:
        return None

    kind = spec.kind
    if kind is CastKind.INT:
        return int(float(value)) if isinstance(value, str) and "." in value else int(value)
    if kind is CastKind.FLOAT:
        return float(value)
    if kind is CastKind.DECIMAL:
        return format(_decimal(value, spec.argument), "f")
    if kind is CastKind.BOOL:
        return 1 if is_truthy(value) else 0
    if kind is CastKind.STRING:
        return str(value)
    if kind is CastKind.JSON:
        return json.dumps(_json_ready(value), default=str)
    if kind is CastKind.COLLECTION:
        return json.dumps([_json_ready(item) for item in value], default=str)
    if kind is CastKind.ENCRYPTED:
        return _encrypter().encrypt(str(value))
    if kind is CastKind.DATETIME:
        return parse_datetime(value, storage_format).strftime(storage_format)
    if kind is CastKind.DATE:
        return parse_datetime(value, DATE_STORAGE_FORMAT).strftime(DATE_STORAGE_FORMAT)
    if kind is CastKind.TIMESTAMP:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
        moment = parse_datetime(value, storage_format)
        return int(moment.replace(tzinfo=moment.tzinfo or timezone.utc).timestamp())
    raise InvalidCastError(f"Unhandled cast kind {kind}")


def from_storage(spec: CastSpec, value: Any, storage_format: str, model: Any = None, key: str = "") -> Any:
    """Convert a stored value to the form returned by attribute reads."""
    if spec.kind is CastKind.CUSTOM:
        return spec.caster.get(model, key, value)
    if spec.kind is CastKind.COLLECTION:
        from orm_engine.domain.entities.collection import Collection

        if value is None or value == "":
            return Collection()
        items = json.loads(value) if isinstance(value, (str, bytes)) else value
        return Collection(items)
    if value is None:
        return None

    kind = spec.kind
    if kind is CastKind.INT:
        return int(float(value)) if isinstance(value, str) and "." in value else int(value)
    if kind is CastKind.FLOAT:
        return float(value)
    if kind is CastKind.DECIMAL:
        return _decimal(value, spec.argument)
    if kind is CastKind.BOOL:
        return is_truthy(value)
    if kind is CastKind.STRING:
        return str(value)
    if kind is CastKind.JSON:
        return json.loads(value) if isinstance(value, (str, bytes)) else value
    if kind is CastKind.ENCRYPTED:
        return _encrypter().decrypt(value)
    if kind is CastKind.DATETIME:
        return parse_datetime(value, storage_format)
    if kind is CastKind.DATE:
        return parse_datetime(value, DATE_STORAGE_FORMAT).date()
    if kind is CastKind.TIMESTAMP:
        return parse_datetime(int(value) if str(value).isdigit() else value, storage_format)
    raise InvalidCastError(f"Unhandled cast kind {kind}")


def storage_equivalent(spec: CastSpec, current: Any, original: Any) -> bool:
    """Whether two stored values represent the same attribute value.

    Encrypted payloads carry a random salt and IV, so the same plaintext
    encrypts differently on every assignment; they are compared decrypted.
    """
    if current == original:
        return True
    if spec.kind is not CastKind.ENCRYPTED or current is None or original is None:
        return False
    encrypter = _encrypter()
    return encrypter.decrypt(current) == encrypter.decrypt(original)


def for_serialization(spec: CastSpec, value: Any, storage_format: str) -> Any:
    """Render a read value for to_dict()."""
    if value is None:
        return None
    if spec.kind is CastKind.DATETIME:
        return value.strftime(spec.argument or storage_format)
    if spec.kind is CastKind.DATE:
        return value.strftime(spec.argument or DATE_STORAGE_FORMAT)
    if spec.kind is CastKind.TIMESTAMP:
        return int(value.replace(tzinfo=value.tzinfo or timezone.utc).timestamp())
    if spec.kind is CastKind.DECIMAL:
        return format(value, "f")
    if spec.kind is CastKind.COLLECTION:
        return value.to_list()
    return value


def fresh_timestamp() -> datetime:
    """Current local time at second precision, as stored in managed timestamp columns."""
    return datetime.now().replace(microsecond=0)
