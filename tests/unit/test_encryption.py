"""Unit tests for attribute encryption."""

from __future__ import annotations

import base64

import pytest

from orm_engine.domain.exceptions import DecryptionError, MissingEncryptionKeyError
from orm_engine.domain.services.encryption import IV_SIZE, SALT_SIZE, Encrypter, get_encrypter


@pytest.fixture
def encrypter() -> Encrypter:
    return Encrypter("unit-test-key", iterations=1000)


@pytest.mark.unit
class TestEncrypter:
    """Tests for Encrypter."""

    def test_round_trip(self, encrypter: Encrypter) -> None:
        payload = encrypter.encrypt("s3cret value")
        assert payload != "s3cret value"
        assert encrypter.decrypt(payload) == "s3cret value"

    def test_fresh_salt_and_iv_per_value(self, encrypter: Encrypter) -> None:
        """Encrypting the same text twice yields different payloads."""
        first = encrypter.encrypt("same")
        second = encrypter.encrypt("same")
        assert first != second
        raw_first, raw_second = base64.b64decode(first), base64.b64decode(second)
        assert raw_first[: SALT_SIZE + IV_SIZE] != raw_second[: SALT_SIZE + IV_SIZE]

    def test_wrong_key_rejected(self, encrypter: Encrypter) -> None:
        payload = encrypter.encrypt("text")
        other = Encrypter("another-key", iterations=1000)
        with pytest.raises(DecryptionError):
            other.decrypt(payload)

    def test_malformed_payload_rejected(self, encrypter: Encrypter) -> None:
        with pytest.raises(DecryptionError):
            encrypter.decrypt("not base64!!")
        with pytest.raises(DecryptionError):
            encrypter.decrypt(base64.b64encode(b"short").decode())

    def test_missing_key(self) -> None:
        encrypter = Encrypter(None)
        assert not encrypter.has_key
        with pytest.raises(MissingEncryptionKeyError):
            encrypter.encrypt("text")

    def test_configured_encrypter(self, encryption_key: str) -> None:
        encrypter = get_encrypter()
        assert encrypter.has_key
        assert encrypter.decrypt(encrypter.encrypt("hello")) == "hello"
