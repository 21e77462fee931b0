"""Windowed distinct-presence counting."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Iterable, Protocol

from models.records import PresenceCounts, Window, as_utc

CURRENT = 0
PREVIOUS = 1


class PresenceSource(Protocol):
    """Anything that answers batched distinct-count queries."""

    def distinct_count(self, sensor_ids: Iterable[int], window: Window) -> Dict[int, int]:
        ...


def window(now: datetime, length: timedelta, index: int = CURRENT) -> Window:
    """Return window ``index`` counted back from ``now``.

    Index 0 ends at ``now``; index 1 ends where index 0 starts. Consecutive
    windows share only their boundary instant, which belongs to the older one.
    """
    if length <= timedelta(0):
        raise ValueError("Window length must be positive.")
    if index < 0:
        raise ValueError("Window index must not be negative.")
    end = as_utc(now) - length * index
    return Window(start=end - length, end=end)


class Aggregator:
    """Counts distinct tokens per sensor for the current and previous window."""

    def __init__(self, window_length: timedelta = timedelta(seconds=60)) -> None:
        if window_length <= timedelta(0):
            raise ValueError("Window length must be positive.")
        self.window_length = window_length

    def aggregate(
        self, source: PresenceSource, sensor_id: int, now: datetime
    ) -> PresenceCounts:
        return self.aggregate_many(source, [sensor_id], now)[sensor_id]

    def aggregate_many(
        self, source: PresenceSource, sensor_ids: Iterable[int], now: datetime
    ) -> Dict[int, PresenceCounts]:
        ids = list(dict.fromkeys(sensor_ids))
        current = source.distinct_count(ids, window(now, self.window_length, CURRENT))
        previous = source.distinct_count(ids, window(now, self.window_length, PREVIOUS))
        return {
            sensor_id: PresenceCounts(
                current=int(current.get(sensor_id, 0)),
                previous=int(previous.get(sensor_id, 0)),
            )
            for sensor_id in ids
        }
