"""Content classification and development-process detection.

Two independent passes over raw text:

- ContentClassifier assigns one of the stored context types, plus change
  kind, impact level and how loudly the item should be surfaced.
- ProcessDetector names the development activity behind the text. Its
  result selects the scorer's per-process multipliers and the decision
  engine's memory type.

Both are table-driven; see devmind.pipeline.patterns.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import structlog

from devmind.pipeline import patterns
from devmind.pipeline.models import (
    Classification,
    KeyElements,
    MemoryTier,
    ProcessDetection,
    ProcessType,
)

logger = structlog.get_logger()

DEFAULT_TYPE = "conversation"


def looks_like_code(content: str) -> bool:
    return any(indicator.search(content) for indicator in patterns.CODE_INDICATORS)


def _confidence_label(confidence: float) -> str:
    if confidence >= 0.8:
        return "high"
    if confidence >= 0.6:
        return "medium"
    return "low"


class ContentClassifier:
    """Map raw text (and optional metadata) to a context type.

    Scores every type in TYPE_PATTERNS; the highest wins and ties go to the
    type registered first. Content matching nothing is a low-confidence
    conversation.
    """

    def __init__(self, *, detect_force_remember: bool = True) -> None:
        self._detect_force_remember = detect_force_remember

    def classify(self, content: str, metadata: Mapping[str, Any] | None = None) -> Classification:
        metadata = metadata or {}
        best_type, confidence, features = self._detect_type(content, metadata)
        force_remember = self._should_force_remember(content, metadata)

        return Classification(
            type=best_type,
            confidence=confidence,
            reasoning=(
                f"type: {best_type}, confidence: {_confidence_label(confidence)} "
                f"({confidence:.2f}), matched features: {len(features)}"
            ),
            features=features,
            change_type=self._detect_change_type(content, metadata),
            impact_level=self._assess_impact(content, best_type),
            force_remember=force_remember,
            memory_tier=self._memory_tier(best_type, force_remember),
        )

    def classify_many(
        self, items: Iterable[tuple[str, Mapping[str, Any] | None]]
    ) -> list[Classification]:
        return [self.classify(content, metadata) for content, metadata in items]

    @staticmethod
    def classification_stats(results: Iterable[Classification]) -> dict[str, int]:
        """Count results per type."""
        return dict(Counter(result.type for result in results))

    def _detect_type(
        self, content: str, metadata: Mapping[str, Any]
    ) -> tuple[str, float, list[str]]:
        scores: dict[str, float] = {}
        features: list[str] = []

        change_type = metadata.get("change_type")
        mapped = patterns.METADATA_CHANGE_TYPE_MAP.get(change_type) if isinstance(change_type, str) else None
        if mapped is not None:
            scores[mapped] = patterns.METADATA_CHANGE_TYPE_BONUS
            features.append(f"change_type:{change_type}")

        code_like = looks_like_code(content)
        for type_name, type_patterns in patterns.TYPE_PATTERNS.items():
            matched = [p.pattern for p in type_patterns if p.search(content)]
            type_score = patterns.TYPE_MATCH_SCORE * len(matched)
            if type_name.startswith("code_") and code_like:
                type_score += patterns.CODE_LIKE_BONUS
                matched.append("code_syntax")
            if type_score > 0:
                scores[type_name] = scores.get(type_name, 0.0) + type_score
                features.append(f"{type_name}:{','.join(matched)}")

        if not scores:
            return DEFAULT_TYPE, 0.0, features

        # Registration order breaks ties: the earliest type keeps the lead.
        best_type = DEFAULT_TYPE
        best_score = 0.0
        for type_name in patterns.TYPE_PATTERNS:
            score = scores.get(type_name, 0.0)
            if score > best_score:
                best_type, best_score = type_name, score
        return best_type, round(min(best_score, 1.0), 4), features

    def _should_force_remember(self, content: str, metadata: Mapping[str, Any]) -> bool:
        if not self._detect_force_remember:
            return False
        if metadata.get("force_remember") is True:
            return True
        if any(p.search(content) for p in patterns.FORCE_REMEMBER_PATTERNS):
            return True
        return any(p.search(content) for p in patterns.HIGH_VALUE_PATTERNS)

    @staticmethod
    def _memory_tier(type_name: str, force_remember: bool) -> MemoryTier:
        if force_remember or type_name in patterns.SILENT_TIER_TYPES:
            return MemoryTier.SILENT
        if type_name in patterns.NOTIFY_TIER_TYPES:
            return MemoryTier.NOTIFY
        if type_name in patterns.NONE_TIER_TYPES:
            return MemoryTier.NONE
        return MemoryTier.SILENT

    @staticmethod
    def _detect_change_type(content: str, metadata: Mapping[str, Any]) -> str | None:
        given = metadata.get("change_type")
        if isinstance(given, str) and given in patterns.CHANGE_TYPE_PATTERNS:
            return given
        for change_type, change_patterns in patterns.CHANGE_TYPE_PATTERNS.items():
            if any(p.search(content) for p in change_patterns):
                return change_type
        return None

    @staticmethod
    def _assess_impact(content: str, type_name: str) -> str:
        for level, level_patterns in patterns.IMPACT_LEVEL_PATTERNS.items():
            if any(p.search(content) for p in level_patterns):
                return level
        return patterns.DEFAULT_IMPACT.get(type_name, patterns.DEFAULT_IMPACT_FALLBACK)


def _unique(items: Iterable[str], limit: int = patterns.MAX_KEY_ELEMENTS) -> list[str]:
    return list(dict.fromkeys(items))[:limit]


class ProcessDetector:
    """Detect which development activity a piece of content records.

    Each process type scores 10 per keyword found, 15 per pattern matched,
    plus a fixed per-type boost. Recent history adds weight to activities the
    user has been doing lately. On equal scores the later type wins.
    """

    def detect(
        self, content: str, history: Sequence[Mapping[str, Any]] | None = None
    ) -> ProcessDetection:
        lowered = content.lower()
        scores: dict[str, float] = {}
        for process in ProcessType:
            name = process.value
            keyword_hits = sum(1 for kw in patterns.PROCESS_KEYWORDS[name] if kw.lower() in lowered)
            pattern_hits = sum(1 for p in patterns.PROCESS_PATTERNS[name] if p.search(content))
            scores[name] = (
                keyword_hits * patterns.KEYWORD_SCORE
                + pattern_hits * patterns.PATTERN_SCORE
                + patterns.PROCESS_BOOSTS[name]
            )

        for name, bonus in self._history_scores(history).items():
            scores[name] += bonus

        best = ProcessType.CODE_CHANGE.value
        for name, score in scores.items():
            if score >= scores[best]:
                best = name

        process = ProcessType(best)
        top = sorted(scores.items(), key=lambda item: item[1], reverse=True)[:3]
        reasoning = "Detected as {} based on scores: {}".format(
            best, ", ".join(f"{name}({score:.0f})" for name, score in top)
        )
        logger.debug("process_detected", process_type=best, score=scores[best])
        return ProcessDetection(
            type=process,
            confidence=float(min(100, scores[best])),
            key_elements=self._key_elements(content, lowered, best),
            reasoning=reasoning,
            scores=scores,
        )

    @staticmethod
    def _history_scores(history: Sequence[Mapping[str, Any]] | None) -> dict[str, int]:
        if not history:
            return {}
        recent = Counter(entry.get("type") for entry in list(history)[-patterns.HISTORY_WINDOW :])
        return {name: recent[name] * boost for name, boost in patterns.HISTORY_BOOSTS.items()}

    @staticmethod
    def _key_elements(content: str, lowered: str, process: str) -> KeyElements:
        return KeyElements(
            files=_unique(m.group(0) for m in patterns.FILE_REFERENCE_RE.finditer(content)),
            functions=_unique(m.group(0) for m in patterns.FUNCTION_NAME_RE.finditer(content)),
            classes=_unique(m.group(0) for m in patterns.CLASS_NAME_RE.finditer(content)),
            keywords=_unique(kw for kw in patterns.PROCESS_KEYWORDS[process] if kw.lower() in lowered),
        )
