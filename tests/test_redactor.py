"""Unit tests for identifier redaction."""

from __future__ import annotations

import hashlib

import pytest

from services.errors import InvalidIdentifier, InvalidInput
from services.redactor import redact, redact_all


def test_redact_is_deterministic_hex_sha256() -> None:
    token = redact("AA:BB:CC:DD:EE:FF")

    assert token == hashlib.sha256(b"AA:BB:CC:DD:EE:FF").hexdigest()
    assert redact("AA:BB:CC:DD:EE:FF") == token
    assert len(token) == 64


def test_redact_ignores_surrounding_whitespace() -> None:
    assert redact("  aa:bb  ") == redact("aa:bb")


def test_redact_salt_changes_token() -> None:
    assert redact("aa:bb", salt="site-1") != redact("aa:bb")
    assert redact("aa:bb", salt="site-1") == redact("aa:bb", salt="site-1")


@pytest.mark.parametrize("raw", ["", "   "])
def test_redact_rejects_empty_identifier(raw: str) -> None:
    with pytest.raises(InvalidIdentifier):
        redact(raw)


def test_invalid_identifier_is_client_error() -> None:
    with pytest.raises(InvalidInput):
        redact("")


def test_redact_all_drops_duplicates_and_keeps_order() -> None:
    tokens = redact_all(["b", "a", "b", " a "])

    assert tokens == [redact("b"), redact("a")]
