"""Unit tests for attribute casting."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

import pytest

from orm_engine.domain.entities.collection import Collection
from orm_engine.domain.exceptions import DateFormatError, InvalidCastError
from orm_engine.domain.services.casting import (
    CastKind,
    CastSpec,
    for_serialization,
    from_storage,
    parse_cast,
    parse_datetime,
    to_storage,
)

FMT = "%Y-%m-%d %H:%M:%S"


class UpperCaster:
    def get(self, model, key, value):
        return value.lower() if value else value

    def set(self, model, key, value):
        return value.upper() if value else value


@pytest.mark.unit
class TestParseCast:
    """Tests for cast declaration parsing."""

    @pytest.mark.parametrize(
        "declaration, kind",
        [
            ("int", CastKind.INT),
            ("integer", CastKind.INT),
            ("boolean", CastKind.BOOL),
            ("array", CastKind.JSON),
            ("collection", CastKind.COLLECTION),
            ("immutable_datetime", CastKind.DATETIME),
            ("timestamp", CastKind.TIMESTAMP),
        ],
    )
    def test_aliases(self, declaration: str, kind: CastKind) -> None:
        assert parse_cast(declaration).kind is kind

    def test_decimal_places(self) -> None:
        assert parse_cast("decimal:2") == CastSpec(CastKind.DECIMAL, "2")

    def test_datetime_display_format(self) -> None:
        assert parse_cast("datetime:%d/%m/%Y").argument == "%d/%m/%Y"

    def test_custom_caster_class(self) -> None:
        spec = parse_cast(UpperCaster)
        assert spec.kind is CastKind.CUSTOM
        assert isinstance(spec.caster, UpperCaster)

    @pytest.mark.parametrize("declaration", ["uuid", "decimal", "decimal:x", "int:3", object()])
    def test_invalid_declarations(self, declaration) -> None:
        with pytest.raises(InvalidCastError):
            parse_cast(declaration)


@pytest.mark.unit
class TestStorageConversion:
    """Tests for to_storage / from_storage."""

    def test_int(self) -> None:
        spec = parse_cast("int")
        assert to_storage(spec, "42", FMT) == 42
        assert to_storage(spec, "4.7", FMT) == 4
        assert from_storage(spec, "7", FMT) == 7

    def test_bool(self) -> None:
        spec = parse_cast("bool")
        assert to_storage(spec, True, FMT) == 1
        assert to_storage(spec, "no", FMT) == 0
        assert to_storage(spec, "yes", FMT) == 1
        assert from_storage(spec, 0, FMT) is False
        assert from_storage(spec, "1", FMT) is True

    def test_decimal(self) -> None:
        spec = parse_cast("decimal:2")
        assert to_storage(spec, 3.14159, FMT) == "3.14"
        assert from_storage(spec, "3.10", FMT) == Decimal("3.10")
        assert for_serialization(spec, Decimal("3.10"), FMT) == "3.10"

    def test_json(self) -> None:
        spec = parse_cast("json")
        stored = to_storage(spec, {"a": [1, 2]}, FMT)
        assert isinstance(stored, str)
        assert from_storage(spec, stored, FMT) == {"a": [1, 2]}

    def test_collection(self) -> None:
        spec = parse_cast("collection")
        stored = to_storage(spec, Collection([1, 2]), FMT)
        value = from_storage(spec, stored, FMT)
        assert isinstance(value, Collection)
        assert value.all() == [1, 2]
        assert from_storage(spec, None, FMT) == Collection()

    def test_datetime(self) -> None:
        spec = parse_cast("datetime:%d/%m/%Y")
        assert to_storage(spec, datetime(2024, 3, 1, 12, 30), FMT) == "2024-03-01 12:30:00"
        value = from_storage(spec, "2024-03-01 12:30:00", FMT)
        assert value == datetime(2024, 3, 1, 12, 30)
        assert for_serialization(spec, value, FMT) == "01/03/2024"

    def test_date(self) -> None:
        spec = parse_cast("date")
        assert to_storage(spec, "2024-03-01T08:00:00", FMT) == "2024-03-01"
        assert from_storage(spec, "2024-03-01", FMT) == date(2024, 3, 1)

    def test_timestamp(self) -> None:
        spec = parse_cast("timestamp")
        assert to_storage(spec, 1700000000, FMT) == 1700000000
        moment = from_storage(spec, 1700000000, FMT)
        assert for_serialization(spec, moment, FMT) == 1700000000

    def test_none_passes_through(self) -> None:
        for declaration in ("int", "bool", "json", "datetime", "decimal:2"):
            spec = parse_cast(declaration)
            assert to_storage(spec, None, FMT) is None
            assert from_storage(spec, None, FMT) is None

    def test_custom_caster(self) -> None:
        spec = parse_cast(UpperCaster())
        assert to_storage(spec, "abc", FMT) == "ABC"
        assert from_storage(spec, "ABC", FMT) == "abc"

    def test_encrypted_round_trip(self, encryption_key: str) -> None:
        spec = parse_cast("encrypted")
        stored = to_storage(spec, "secret", FMT)
        assert stored != "secret"
        assert from_storage(spec, stored, FMT) == "secret"


@pytest.mark.unit
class TestParseDatetime:
    """Tests for lenient date parsing."""

    def test_storage_format(self) -> None:
        assert parse_datetime("2024-01-02 03:04:05", FMT) == datetime(2024, 1, 2, 3, 4, 5)

    def test_iso_format(self) -> None:
        assert parse_datetime("2024-01-02T03:04:05", FMT) == datetime(2024, 1, 2, 3, 4, 5)

    def test_lenient_format(self) -> None:
        assert parse_datetime("March 5 2024", FMT) == datetime(2024, 3, 5)

    def test_date_promoted(self) -> None:
        assert parse_datetime(date(2024, 1, 2), FMT) == datetime(2024, 1, 2)

    @pytest.mark.parametrize("value", ["", "not a date at all", None, True])
    def test_unparseable(self, value) -> None:
        with pytest.raises(DateFormatError):
            parse_datetime(value, FMT)
