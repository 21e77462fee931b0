"""Domain models shared across services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional


@dataclass(slots=True, frozen=True)
class Sighting:
    """A redacted identifier observed by one sensor at one instant."""

    token: str
    sensor_id: int
    observed_at: datetime
    rssi: Optional[int] = None


@dataclass(slots=True, frozen=True)
class Window:
    """Counting interval, open at ``start`` and closed at ``end``.

    A sighting stamped exactly on a boundary belongs to the earlier window,
    so the instant an event is recorded at is always inside the window that
    ends at that instant.
    """

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start < instant <= self.end

    @property
    def length(self) -> timedelta:
        return self.end - self.start


@dataclass(slots=True, frozen=True)
class PresenceCounts:
    """Distinct-token counts for the current window and the one before it."""

    current: int = 0
    previous: int = 0


def as_utc(instant: datetime) -> datetime:
    """Normalize ``instant`` to an aware UTC datetime; naive values are taken as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)
