from __future__ import annotations

import pytest

from caseflow.core.errors import ValidationFailedError
from caseflow.services.cases import validate_pin
from caseflow.services.vault import hash_pin, verify_pin


def test_hash_pin_round_trip() -> None:
    stored = hash_pin("482913", iterations=1000)
    assert stored.startswith("pbkdf2_sha256$1000$")
    assert "482913" not in stored
    assert verify_pin("482913", stored) is True
    assert verify_pin("482914", stored) is False


def test_hash_pin_uses_fresh_salt() -> None:
    first = hash_pin("1234", iterations=1000)
    second = hash_pin("1234", iterations=1000)
    assert first != second
    assert verify_pin("1234", first) and verify_pin("1234", second)


def test_verify_pin_rejects_missing_or_malformed_values() -> None:
    assert verify_pin(None, hash_pin("1234", iterations=1000)) is False
    assert verify_pin("1234", None) is False
    assert verify_pin("1234", "not-a-hash") is False
    assert verify_pin("1234", "md5$10$abcd$ffff") is False


@pytest.mark.parametrize("pin", ["1234", "000000", "123456789012"])
def test_validate_pin_accepts_digit_strings(pin: str) -> None:
    assert validate_pin(pin) == pin


@pytest.mark.parametrize("pin", ["", "123", "1234567890123", "12a4", " 1234"])
def test_validate_pin_rejects_bad_shapes(pin: str) -> None:
    with pytest.raises(ValidationFailedError) as exc_info:
        validate_pin(pin)
    assert exc_info.value.code == "VALIDATION_ERROR"
