"""Result ranker: merge results from several sources into one list."""

from __future__ import annotations

from collections.abc import Iterable
from functools import cmp_to_key

from dialog_core.schemas.knowledge import KnowledgeResult

DEFAULT_MAX_RESULTS = 5
DEFAULT_TIE_EPSILON = 0.1


def rank_results(
    *result_sets: Iterable[KnowledgeResult],
    max_results: int = DEFAULT_MAX_RESULTS,
    tie_epsilon: float = DEFAULT_TIE_EPSILON,
) -> list[KnowledgeResult]:
    """Concatenate, order by confidence, and truncate.

    Confidences within tie_epsilon of each other count as a tie, and the
    lower-latency result wins the tie.
    """
    merged: list[KnowledgeResult] = [r for results in result_sets for r in results]

    def _compare(a: KnowledgeResult, b: KnowledgeResult) -> float:
        if abs(a.confidence - b.confidence) > tie_epsilon:
            return b.confidence - a.confidence
        return a.latency_ms - b.latency_ms

    merged.sort(key=cmp_to_key(_compare))
    return merged[:max_results]
