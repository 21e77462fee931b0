"""One-way redaction of raw wireless identifiers."""

from __future__ import annotations

import hashlib
from typing import Iterable, List

from services.errors import InvalidIdentifier


def redact(raw_identifier: str, salt: str = "") -> str:
    """Return the hex SHA-256 token for ``raw_identifier``.

    Equal inputs always produce equal tokens for the same salt. Surrounding
    whitespace is ignored so ``" aa:bb "`` and ``"aa:bb"`` redact alike.
    """
    if not isinstance(raw_identifier, str):
        raise InvalidIdentifier("Identifiers must be strings.")
    candidate = raw_identifier.strip()
    if not candidate:
        raise InvalidIdentifier("Identifier is empty.")
    digest = hashlib.sha256()
    digest.update(salt.encode("utf-8"))
    digest.update(candidate.encode("utf-8"))
    return digest.hexdigest()


def redact_all(raw_identifiers: Iterable[str], salt: str = "") -> List[str]:
    """Redact a batch, keeping first-seen order and dropping duplicate tokens."""
    tokens: List[str] = []
    seen: set[str] = set()
    for raw in raw_identifiers:
        token = redact(raw, salt)
        if token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tokens
