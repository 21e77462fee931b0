"""Short-term headcount extrapolation over a sensor and its neighbors."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable

from services.aggregator import Aggregator, PresenceSource


@dataclass(frozen=True)
class TrendForecast:
    current: int
    previous: int
    predicted: int


def predict_count(current: int, previous: int) -> int:
    """One-step linear extrapolation, never below zero."""
    delta = current - previous
    return max(0, round(current + delta))


def participants(sensor_id: int, neighbors: Iterable[int]) -> list[int]:
    """The sensor itself first, then its neighbors in declared order, without repeats."""
    return list(dict.fromkeys([sensor_id, *neighbors]))


class NeighborTrendPredictor:
    """Forecasts each participant independently from its own two windows."""

    def __init__(self, aggregator: Aggregator) -> None:
        self.aggregator = aggregator

    def predict(
        self,
        source: PresenceSource,
        sensor_id: int,
        neighbors: Iterable[int],
        now: datetime,
    ) -> Dict[int, TrendForecast]:
        counts = self.aggregator.aggregate_many(source, participants(sensor_id, neighbors), now)
        return {
            participant_id: TrendForecast(
                current=presence.current,
                previous=presence.previous,
                predicted=predict_count(presence.current, presence.previous),
            )
            for participant_id, presence in counts.items()
        }
