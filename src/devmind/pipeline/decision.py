"""Retain / ask / ignore decisions from value scores.

Two passes. The basic pass maps the total score onto the thresholds. The
escalation pass looks at content features and may move the verdict one step
up. A rare bug fix keeps an ask or auto verdict but still claims the pass,
so later rules do not fire for it. Security-flagged content always
escalates and takes precedence over the other rules. Escalation never
lowers a verdict.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import structlog

from devmind.config.constants import CONFIDENCE_CEILING, MAX_SUGGESTED_TAGS
from devmind.pipeline import patterns
from devmind.pipeline.models import (
    Decision,
    DecisionAction,
    Priority,
    ProcessDetection,
    Thresholds,
    ValueScore,
)

logger = structlog.get_logger()

AUTO = DecisionAction.AUTO_REMEMBER
ASK = DecisionAction.ASK_CONFIRMATION
IGNORE = DecisionAction.IGNORE

_STRONG_DIMENSION = 80
_RANK = {IGNORE: 0, ASK: 1, AUTO: 2}


@dataclass(frozen=True)
class EscalationRule:
    """One step up for content carrying *feature*.

    ``from_action`` restricts the rule to a basic verdict; ``None`` lets it
    fire on any verdict, raising it to at least ``to_action``.
    ``process_type`` restricts it to one detected process.
    """

    name: str
    feature: str
    from_action: DecisionAction | None
    to_action: DecisionAction
    increment: float
    cap: float
    process_type: str | None = None

    def applies(self, action: DecisionAction, process_type: str, features: Mapping[str, bool]) -> bool:
        if not features.get(self.feature):
            return False
        if self.process_type is not None and self.process_type != process_type:
            return False
        return self.from_action is None or action is self.from_action

    def target(self, action: DecisionAction) -> DecisionAction:
        return max(action, self.to_action, key=_RANK.__getitem__)


# First match wins.
ESCALATION_RULES: tuple[EscalationRule, ...] = (
    EscalationRule("rare_bug_fix", "rare_issue", None, ASK, 0.1, 0.9, process_type="bug_fix"),
    EscalationRule("high_reusability", "high_reusability", ASK, AUTO, 0.1, 0.9),
    EscalationRule("architecture", "has_architecture", ASK, AUTO, 0.15, 0.9),
    EscalationRule("performance", "has_performance", IGNORE, ASK, 0.1, 0.8),
)

SECURITY_INCREMENT = 0.2


def analyze_features(content: str) -> dict[str, bool]:
    """Flag each feature in FEATURE_KEYWORDS present in *content*."""
    lowered = content.lower()
    return {
        feature: any(kw in lowered for kw in keywords)
        for feature, keywords in patterns.FEATURE_KEYWORDS.items()
    }


class DecisionEngine:
    """Turn a value score into an action, priority and tags."""

    def decide(
        self,
        content: str,
        process: ProcessDetection,
        score: ValueScore,
        thresholds: Thresholds | Mapping[str, float | None] | None = None,
    ) -> Decision:
        if not isinstance(thresholds, Thresholds):
            thresholds = Thresholds.from_mapping(dict(thresholds) if thresholds else None)

        action, confidence = self._basic(score.total_score, thresholds)
        features = analyze_features(content)
        action, confidence, fired = self._escalate(action, confidence, process.type.value, features)

        decision = Decision(
            action=action,
            confidence=round(confidence, 4),
            reasoning=self._reasoning(score, process, action),
            memory_type=patterns.PROCESS_TO_MEMORY_TYPE.get(process.type.value, patterns.DEFAULT_MEMORY_TYPE),
            priority=self._priority(action, score.total_score),
            suggested_tags=self._suggested_tags(content, process),
            features=features,
            rules_fired=fired,
        )
        logger.debug(
            "decision_made",
            action=action.value,
            total_score=score.total_score,
            rules_fired=fired,
        )
        return decision

    @staticmethod
    def _basic(total: int, thresholds: Thresholds) -> tuple[DecisionAction, float]:
        # low_value only labels the rationale; there is no branch for it.
        if total >= thresholds.high_value:
            return AUTO, 0.9
        if total >= thresholds.medium_value:
            return ASK, 0.7
        return IGNORE, 0.8

    @staticmethod
    def _escalate(
        action: DecisionAction,
        confidence: float,
        process_type: str,
        features: Mapping[str, bool],
    ) -> tuple[DecisionAction, float, list[str]]:
        if features.get("has_security"):
            escalated = ASK if action is IGNORE else AUTO
            return escalated, min(CONFIDENCE_CEILING, confidence + SECURITY_INCREMENT), ["security"]

        for rule in ESCALATION_RULES:
            if rule.applies(action, process_type, features):
                return rule.target(action), min(rule.cap, confidence + rule.increment), [rule.name]
        return action, confidence, []

    @staticmethod
    def _reasoning(score: ValueScore, process: ProcessDetection, action: DecisionAction) -> str:
        reasons = [
            f"Total score: {score.total_score}/100",
            f"Process type: {process.type.value} (confidence: {process.confidence:g}%)",
        ]
        if action is AUTO:
            if score.total_score >= 90:
                reasons.append("Exceptional value content")
            elif score.total_score >= 80:
                reasons.append("High-value content worth remembering")
        elif action is ASK:
            reasons.append("Medium-value content, user confirmation recommended")
        else:
            reasons.append("Low-value content, not worth remembering")

        strong = [
            name.replace("_", " ")
            for name, value in score.dimensions().items()
            if value >= _STRONG_DIMENSION
        ]
        if strong:
            reasons.append(f"Strong in: {', '.join(strong)}")
        return "; ".join(reasons)

    @staticmethod
    def _priority(action: DecisionAction, total: int) -> Priority:
        if action is AUTO and total >= 90:
            return Priority.CRITICAL
        if action is AUTO and total >= 80:
            return Priority.HIGH
        if action is ASK:
            return Priority.MEDIUM
        return Priority.LOW

    @staticmethod
    def _suggested_tags(content: str, process: ProcessDetection) -> list[str]:
        lowered = content.lower()
        tags = [process.type.value.replace("_", "-", 1)]
        for keyword, tag in patterns.KEYWORD_TAGS:
            if keyword in lowered and tag not in tags:
                tags.append(tag)
        for keyword in process.key_elements.keywords[:2]:
            tag = "-".join(keyword.lower().split())
            if tag not in tags:
                tags.append(tag)
        return tags[:MAX_SUGGESTED_TAGS]
