"""Set-similarity between token snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Iterable, List, Sequence

from app.schemas import CrowdSnapshot, MobilityStep


@dataclass(frozen=True)
class SimilarityResult:
    intersection_size: int
    union_size: int
    jaccard: float
    mobility: float


def similarity(set_a: Iterable[str], set_b: Iterable[str]) -> SimilarityResult:
    """Jaccard similarity and mobility (``1 - jaccard``) of two token sets.

    Two empty sets count as identical: an empty-to-empty transition shows no
    churn, so jaccard is 1.0 and mobility 0.0.
    """
    a: AbstractSet[str] = set_a if isinstance(set_a, (set, frozenset)) else set(set_a)
    b: AbstractSet[str] = set_b if isinstance(set_b, (set, frozenset)) else set(set_b)
    intersection = len(a & b)
    union = len(a | b)
    if union == 0:
        return SimilarityResult(intersection_size=0, union_size=0, jaccard=1.0, mobility=0.0)
    jaccard = intersection / union
    return SimilarityResult(
        intersection_size=intersection,
        union_size=union,
        jaccard=jaccard,
        mobility=1.0 - jaccard,
    )


def mobility_trend(snapshots: Sequence[CrowdSnapshot], precision: int = 4) -> List[MobilityStep]:
    """Mobility between each snapshot and its predecessor, oldest first."""
    ordered = sorted(snapshots, key=lambda snapshot: snapshot.created_at)
    steps: List[MobilityStep] = []
    for previous, current in zip(ordered, ordered[1:]):
        result = similarity(previous.tokens, current.tokens)
        steps.append(
            MobilityStep(
                from_=previous.created_at,
                to=current.created_at,
                mobility=round(result.mobility, precision),
            )
        )
    return steps
