"""Value scoring along four heuristic dimensions.

Each dimension is an independent 0-100 heuristic built from keyword
density, structural signals and a process-type multiplier. The weighted
total decides retention downstream.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping

import structlog

from devmind.pipeline import patterns
from devmind.pipeline.models import ProcessDetection, ScoreWeights, ValueScore

logger = structlog.get_logger()

MAX_DIMENSION = 100.0


def _clamp(score: float) -> float:
    return max(0.0, min(MAX_DIMENSION, score))


def _count_keywords(lowered: str, keywords: Iterable[str]) -> int:
    return sum(1 for kw in keywords if kw.lower() in lowered)


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive totals (not banker's rounding)."""
    return int(math.floor(value + 0.5))


class ValueScorer:
    """Score content for how much it is worth remembering."""

    def score(
        self,
        content: str,
        process: ProcessDetection,
        weights: ScoreWeights | Mapping[str, float | None] | None = None,
    ) -> ValueScore:
        """Score *content* detected as *process*.

        Args:
            content: Raw text.
            process: ProcessDetector output; selects multipliers.
            weights: Dimension weights. Missing weights use the defaults.

        Returns:
            ValueScore with clamped dimensions and a rounded weighted total.
        """
        if not isinstance(weights, ScoreWeights):
            weights = ScoreWeights.from_mapping(dict(weights) if weights else None)

        lowered = content.lower()
        process_type = process.type.value
        multipliers: dict[str, float] = {}

        code = self._code_significance(content, lowered, process_type, multipliers)
        problem = self._problem_complexity(content, lowered, process_type, multipliers)
        solution = self._solution_importance(lowered, process_type, multipliers)
        reuse = self._reusability(content, lowered)

        total = (
            code * weights.code_significance
            + problem * weights.problem_complexity
            + solution * weights.solution_importance
            + reuse * weights.reusability
        )
        result = ValueScore(
            code_significance=code,
            problem_complexity=problem,
            solution_importance=solution,
            reusability=reuse,
            total_score=round_half_up(total),
            details={
                "code_details": self._code_details(lowered),
                "problem_details": self._problem_details(lowered),
                "solution_details": self._solution_details(lowered),
                "reusability_details": self._reusability_details(content, lowered),
            },
            multipliers=multipliers,
        )
        logger.debug("content_scored", process_type=process_type, total_score=result.total_score)
        return result

    @staticmethod
    def _multiplier(dimension: str, process_type: str) -> float:
        return patterns.PROCESS_MULTIPLIERS.get(dimension, {}).get(process_type, 1.0)

    def _code_significance(
        self, content: str, lowered: str, process_type: str, multipliers: dict[str, float]
    ) -> float:
        score = float(_count_keywords(lowered, patterns.ALGORITHM_KEYWORDS) * patterns.ALGORITHM_KEYWORD_SCORE)
        score += sum(points for pattern, points in patterns.QUALITY_INDICATORS if pattern.search(content))
        score += min(20.0, len(content.split("\n")) / 10)

        factor = self._multiplier("code_significance", process_type)
        multipliers["code_significance"] = factor
        score *= factor
        if process_type == "feature_add":
            # New features earn a base score even without detailed code.
            score = max(score, float(patterns.FEATURE_ADD_CODE_FLOOR))
        return _clamp(score)

    def _problem_complexity(
        self, content: str, lowered: str, process_type: str, multipliers: dict[str, float]
    ) -> float:
        score = 0.0
        if patterns.CHANGED_FILES_HEADER_RE.search(content):
            file_count = len(patterns.CHANGED_FILE_ITEM_RE.findall(content))
            for minimum, points in patterns.CHANGED_FILE_TIERS:
                if file_count >= minimum:
                    score += points
                    break

        lines_added = patterns.LINES_ADDED_RE.search(content)
        if lines_added:
            score += min(30.0, int(lines_added.group(1)) / 10)

        score += _count_keywords(lowered, patterns.COMPLEXITY_KEYWORDS) * patterns.COMPLEXITY_KEYWORD_SCORE
        score += _count_keywords(lowered, patterns.TECH_STACK_KEYWORDS) * patterns.TECH_STACK_SCORE
        score += sum(points for pattern, points in patterns.IMPACT_INDICATORS if pattern.search(content))

        factor = self._multiplier("problem_complexity", process_type)
        if process_type == "feature_add" and score <= 0:
            factor = 1.0
        multipliers["problem_complexity"] = factor
        return _clamp(score * factor)

    def _solution_importance(
        self, lowered: str, process_type: str, multipliers: dict[str, float]
    ) -> float:
        score = float(
            sum(_count_keywords(lowered, keywords) * points for keywords, points in patterns.SOLUTION_KEYWORD_GROUPS)
        )
        factor = self._multiplier("solution_importance", process_type)
        multipliers["solution_importance"] = factor
        return _clamp(score * factor)

    @staticmethod
    def _reusability(content: str, lowered: str) -> float:
        score = float(_count_keywords(lowered, patterns.ABSTRACTION_KEYWORDS) * patterns.ABSTRACTION_SCORE)
        if any(marker in content for marker in patterns.DOC_MARKERS):
            score += patterns.DOC_MARKER_SCORE
        score += _count_keywords(lowered, patterns.VERSATILITY_KEYWORDS) * patterns.VERSATILITY_SCORE
        if any(marker in lowered for marker in patterns.EXAMPLE_MARKERS):
            score += patterns.EXAMPLE_SCORE

        for _name, keywords, regex, points in patterns.REUSABLE_PATTERNS:
            signals = _count_keywords(lowered, keywords)
            if regex is not None and regex.search(content):
                signals += 1
            if signals >= patterns.REUSABLE_PATTERN_MIN_SIGNALS:
                score += points
        return _clamp(score)

    @staticmethod
    def _code_details(lowered: str) -> str:
        details = []
        if "algorithm" in lowered:
            details.append("Contains algorithm implementation")
        if "optimization" in lowered:
            details.append("Includes optimization techniques")
        if "performance" in lowered:
            details.append("Addresses performance concerns")
        return "; ".join(details) or "Standard code change"

    @staticmethod
    def _problem_details(lowered: str) -> str:
        details = []
        if "memory leak" in lowered:
            details.append("Memory leak issue")
        if "concurrency" in lowered:
            details.append("Concurrency problem")
        if "security" in lowered:
            details.append("Security concern")
        return "; ".join(details) or "Standard complexity problem"

    @staticmethod
    def _solution_details(lowered: str) -> str:
        details = []
        if "innovative" in lowered:
            details.append("Innovative approach")
        if "comprehensive" in lowered:
            details.append("Comprehensive solution")
        if "extensible" in lowered:
            details.append("Extensible design")
        return "; ".join(details) or "Standard solution approach"

    @staticmethod
    def _reusability_details(content: str, lowered: str) -> str:
        details = []
        if "/**" in content or "///" in content:
            details.append("Well documented")
        if "generic" in lowered:
            details.append("Generic implementation")
        if "```" in content:
            details.append("Includes code examples")
        return "; ".join(details) or "Standard reusability level"
