"""Heuristic quality score for a generated recommendation set."""
from typing import Iterable

from recsynth.schemas.recommendations import RecommendationSet, Suggestion


class QualityAssessor:
    """Scores a set in [0, 1] as field completeness x how full the lists are.

    Completeness weighs a reason and an external id per suggestion; fullness is
    the item count relative to `expected_per_list` for each requested list.
    Never raises.
    """

    def __init__(self, expected_per_list: int = 10, reason_weight: float = 0.6, id_weight: float = 0.4):
        self.expected_per_list = max(1, expected_per_list)
        self.reason_weight = reason_weight
        self.id_weight = id_weight

    def _completeness(self, items: Iterable[Suggestion]) -> float:
        scores = [
            self.reason_weight * bool(s.reason) + self.id_weight * bool(s.external_id)
            for s in items
        ]
        if not scores:
            return 0.0
        return sum(scores) / (len(scores) * (self.reason_weight + self.id_weight))

    def assess(self, recs: RecommendationSet, lists: int = 2) -> float:
        total = recs.total
        if total == 0:
            return 0.0
        expected = self.expected_per_list * max(1, lists)
        fullness = min(1.0, total / expected)
        completeness = self._completeness([*recs.movies, *recs.tv_series])
        return round(max(0.0, min(1.0, completeness * fullness)), 4)
