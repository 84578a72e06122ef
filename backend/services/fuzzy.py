from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, TypeVar

from rapidfuzz.distance import Levenshtein

from utils.text import compact_query, sanitize_query

T = TypeVar("T")

DistanceFunction = Callable[[str, str], int]


def levenshtein_distance(a: str, b: str) -> int:
    return int(Levenshtein.distance(a, b))


def similarity(a: str, b: str, distance: DistanceFunction = levenshtein_distance) -> float:
    """1 - editDistance / max(len(a), len(b)); empty inputs never match."""
    longest = max(len(a), len(b))
    if not a or not b or longest == 0:
        return 0.0
    return 1.0 - (distance(a, b) / longest)


@dataclass(frozen=True)
class FuzzyMatch:
    candidate: object
    score: float
    form: str  # spaced | compact


class FuzzyMatcher:
    """Best-of-two-forms edit-distance matching over a bounded candidate list."""

    def __init__(self, distance: DistanceFunction | None = None):
        self._distance = distance or levenshtein_distance

    def score(self, query: str, candidate: str) -> tuple[float, str]:
        spaced = similarity(sanitize_query(query), sanitize_query(candidate), self._distance)
        compact = similarity(compact_query(query), compact_query(candidate), self._distance)
        if compact > spaced:
            return compact, "compact"
        return spaced, "spaced"

    def best_match(
        self,
        query: str,
        candidates: Iterable[T],
        names: Callable[[T], Iterable[str]],
        threshold: float,
    ) -> FuzzyMatch | None:
        """Return the highest-scoring candidate strictly above threshold, or None."""
        best: FuzzyMatch | None = None
        for candidate in candidates:
            for name in names(candidate):
                score, form = self.score(query, name)
                if best is None or score > best.score:
                    best = FuzzyMatch(candidate=candidate, score=score, form=form)
        if best is None or best.score <= threshold:
            return None
        return best
