"""Multi-dimension quality metrics for stored contexts.

Usage counters live in ``metadata.quality_metrics`` and are bumped by the
store (``increment_context_reference``, ``record_context_search``). The
scores below are derived from those counters plus the row itself, so they
can be recomputed at any time.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from devmind.store.models import Context

SECONDS_PER_DAY = 86400.0

# (max age in days, freshness score); older than the last bound scores FRESHNESS_FLOOR.
FRESHNESS_STEPS: tuple[tuple[int, float], ...] = ((7, 1.0), (30, 0.8), (90, 0.5), (180, 0.3))
FRESHNESS_FLOOR = 0.1

OVERALL_WEIGHTS = {
    "relevance": 0.30,
    "freshness": 0.25,
    "accuracy": 0.20,
    "usefulness": 0.15,
    "completeness": 0.10,
}


@dataclass(frozen=True)
class QualityMetrics:
    """Derived quality of one context; every score is in [0, 1]."""

    overall: float
    relevance: float
    freshness: float
    completeness: float
    accuracy: float
    usefulness: float
    reference_count: int
    search_count: int
    last_accessed: float
    user_rating: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def freshness(created_at: float, last_accessed: float | None, now: float) -> float:
    days = math.floor((now - (last_accessed or created_at)) / SECONDS_PER_DAY)
    for max_days, score in FRESHNESS_STEPS:
        if days <= max_days:
            return score
    return FRESHNESS_FLOOR


def relevance(reference_count: int, search_count: int) -> float:
    """0.5 for unused content, rising logarithmically toward 1.0."""
    if reference_count == 0 and search_count == 0:
        return 0.5
    usage = reference_count * 2 + search_count
    return min(0.5 + math.log(1 + usage) / math.log(100) * 0.5, 1.0)


def completeness(context: Context) -> float:
    score = 0.5
    length = len(context.content)
    if length > 100:
        score += 0.1
    if length > 300:
        score += 0.1
    if length > 1000:
        score += 0.1
    if context.file_path:
        score += 0.1
    if context.line_start and context.line_end:
        score += 0.05
    if context.tags:
        score += 0.05
    if context.language:
        score += 0.05
    return min(score, 1.0)


def accuracy(user_rating: float | None, quality_score: float | None) -> float:
    if user_rating is not None:
        return max(0.0, min(float(user_rating), 1.0))
    if quality_score is not None:
        return quality_score
    return 0.6


def calculate_quality_metrics(context: Context, now: float) -> QualityMetrics:
    """Score *context* as of *now* (epoch seconds)."""
    counters = context.meta.get("quality_metrics") or {}
    references = int(counters.get("reference_count") or 0)
    searches = int(counters.get("search_count") or 0)
    last_accessed = counters.get("last_accessed")
    rating = counters.get("user_rating")

    fresh = freshness(context.created_at, last_accessed, now)
    rel = relevance(references, searches)
    comp = completeness(context)
    acc = accuracy(rating, context.quality_score)
    useful = rel * 0.4 + fresh * 0.3 + acc * 0.3

    overall = (
        rel * OVERALL_WEIGHTS["relevance"]
        + fresh * OVERALL_WEIGHTS["freshness"]
        + acc * OVERALL_WEIGHTS["accuracy"]
        + useful * OVERALL_WEIGHTS["usefulness"]
        + comp * OVERALL_WEIGHTS["completeness"]
    )
    return QualityMetrics(
        overall=overall,
        relevance=rel,
        freshness=fresh,
        completeness=comp,
        accuracy=acc,
        usefulness=useful,
        reference_count=references,
        search_count=searches,
        last_accessed=last_accessed or context.created_at,
        user_rating=rating,
    )


def bump_usage(meta: dict[str, Any], counter: str, now: float) -> dict[str, Any]:
    """Return a copy of *meta* with ``quality_metrics[counter]`` incremented."""
    updated = dict(meta)
    metrics = dict(updated.get("quality_metrics") or {})
    metrics[counter] = int(metrics.get(counter) or 0) + 1
    metrics["last_accessed"] = now
    updated["quality_metrics"] = metrics
    return updated
