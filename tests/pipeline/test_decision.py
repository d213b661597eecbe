"""Tests for the decision engine."""

from __future__ import annotations

import pytest

from devmind.pipeline import (
    DecisionAction,
    DecisionEngine,
    KeyElements,
    Priority,
    ProcessDetection,
    ProcessType,
    ValueScore,
    analyze_features,
)


def _process(process_type: ProcessType = ProcessType.CODE_CHANGE, keywords: list[str] | None = None) -> ProcessDetection:
    return ProcessDetection(
        type=process_type,
        confidence=40.0,
        key_elements=KeyElements(keywords=keywords or []),
        reasoning="",
    )


def _score(total: int, code: float = 0.0) -> ValueScore:
    return ValueScore(
        code_significance=code,
        problem_complexity=0.0,
        solution_importance=0.0,
        reusability=0.0,
        total_score=total,
    )


def _decide(content: str, total: int, process_type: ProcessType = ProcessType.CODE_CHANGE, **kwargs):
    return DecisionEngine().decide(content, _process(process_type), _score(total), **kwargs)


class TestAnalyzeFeatures:
    def test_flags(self) -> None:
        features = analyze_features("A rare edge case")
        assert features["rare_issue"] is True
        assert not any(v for k, v in features.items() if k != "rare_issue")


class TestBasicDecision:
    """Thresholds alone."""

    @pytest.mark.parametrize(
        ("total", "action", "confidence", "priority"),
        [
            (92, DecisionAction.AUTO_REMEMBER, 0.9, Priority.CRITICAL),
            (85, DecisionAction.AUTO_REMEMBER, 0.9, Priority.HIGH),
            (80, DecisionAction.AUTO_REMEMBER, 0.9, Priority.HIGH),
            (60, DecisionAction.ASK_CONFIRMATION, 0.7, Priority.MEDIUM),
            (50, DecisionAction.ASK_CONFIRMATION, 0.7, Priority.MEDIUM),
            (10, DecisionAction.IGNORE, 0.8, Priority.LOW),
        ],
    )
    def test_thresholds(
        self, total: int, action: DecisionAction, confidence: float, priority: Priority
    ) -> None:
        decision = _decide("plain notes", total)

        assert decision.action is action
        assert decision.confidence == pytest.approx(confidence)
        assert decision.priority is priority
        assert decision.rules_fired == []

    def test_custom_thresholds(self) -> None:
        decision = _decide("plain notes", 60, thresholds={"high_value": 55})
        assert decision.action is DecisionAction.AUTO_REMEMBER

    def test_memory_type_follows_process(self) -> None:
        assert _decide("x", 10).memory_type == "code_modify"
        assert _decide("x", 10, ProcessType.SOLUTION_DESIGN).memory_type == "solution"
        assert _decide("x", 10, ProcessType.TESTING).memory_type == "test"

    def test_reasoning(self) -> None:
        decision = DecisionEngine().decide("x", _process(), _score(92, code=85.0))

        assert "Total score: 92/100" in decision.reasoning
        assert "Exceptional value content" in decision.reasoning
        assert "Strong in: code significance" in decision.reasoning


class TestEscalation:
    """Feature-driven escalation; never lowers a verdict."""

    def test_security_escalates_ignore_to_ask(self) -> None:
        decision = _decide("security hardening", 10)

        assert decision.action is DecisionAction.ASK_CONFIRMATION
        assert decision.confidence == pytest.approx(0.95)
        assert decision.rules_fired == ["security"]

    def test_security_escalates_ask_to_auto_with_low_priority(self) -> None:
        """An escalated auto below the high band keeps low priority."""
        decision = _decide("security hardening", 60)

        assert decision.action is DecisionAction.AUTO_REMEMBER
        assert decision.confidence == pytest.approx(0.9)
        assert decision.priority is Priority.LOW

    def test_security_keeps_auto(self) -> None:
        decision = _decide("security hardening", 85)

        assert decision.action is DecisionAction.AUTO_REMEMBER
        assert decision.confidence == pytest.approx(0.95)

    def test_security_preempts_other_rules(self) -> None:
        decision = _decide("security of this reusable helper", 60)
        assert decision.rules_fired == ["security"]

    def test_rare_issue_only_for_bug_fix(self) -> None:
        bug = _decide("a rare edge case", 10, ProcessType.BUG_FIX)
        other = _decide("a rare edge case", 10, ProcessType.CODE_CHANGE)

        assert bug.action is DecisionAction.ASK_CONFIRMATION
        assert bug.confidence == pytest.approx(0.9)
        assert bug.rules_fired == ["rare_bug_fix"]
        assert other.action is DecisionAction.IGNORE

    def test_rare_bug_fix_keeps_ask_and_claims_the_pass(self) -> None:
        """A rare bug fix at the ask level stays there; reusability does not promote it."""
        decision = _decide("a rare reusable helper", 60, ProcessType.BUG_FIX)

        assert decision.action is DecisionAction.ASK_CONFIRMATION
        assert decision.confidence == pytest.approx(0.8)
        assert decision.rules_fired == ["rare_bug_fix"]

    def test_rare_bug_fix_keeps_auto(self) -> None:
        decision = _decide("a rare edge case", 85, ProcessType.BUG_FIX)

        assert decision.action is DecisionAction.AUTO_REMEMBER
        assert decision.confidence == pytest.approx(0.9)
        assert decision.rules_fired == ["rare_bug_fix"]

    def test_security_still_precedes_rare_bug_fix(self) -> None:
        decision = _decide("a rare security hole", 60, ProcessType.BUG_FIX)
        assert decision.rules_fired == ["security"]
        assert decision.action is DecisionAction.AUTO_REMEMBER

    def test_reusability_promotes_ask(self) -> None:
        decision = _decide("a reusable helper", 60)

        assert decision.action is DecisionAction.AUTO_REMEMBER
        assert decision.confidence == pytest.approx(0.8)
        assert decision.rules_fired == ["high_reusability"]

    def test_architecture_promotes_ask(self) -> None:
        decision = _decide("architecture notes", 60)

        assert decision.action is DecisionAction.AUTO_REMEMBER
        assert decision.confidence == pytest.approx(0.85)

    def test_performance_only_lifts_ignore(self) -> None:
        lifted = _decide("performance notes", 10)
        unchanged = _decide("performance notes", 60)

        assert lifted.action is DecisionAction.ASK_CONFIRMATION
        assert lifted.confidence == pytest.approx(0.8)
        assert unchanged.action is DecisionAction.ASK_CONFIRMATION
        assert unchanged.rules_fired == []

    def test_rule_needs_matching_verdict(self) -> None:
        """Reusability only promotes ask; an ignore stays ignored."""
        decision = _decide("a reusable helper", 10)
        assert decision.action is DecisionAction.IGNORE


class TestSuggestedTags:
    def test_process_tag_then_keywords_capped(self) -> None:
        content = "algorithm performance security optimization refactor architecture"
        decision = DecisionEngine().decide(content, _process(keywords=["algorithm"]), _score(10))

        assert decision.suggested_tags == ["code-change", "algorithm", "performance", "security", "optimization"]

    def test_only_first_underscore_replaced(self) -> None:
        decision = _decide("x", 10, ProcessType.SOLUTION_DESIGN)
        assert decision.suggested_tags == ["solution-design"]

    def test_key_element_keywords(self) -> None:
        decision = DecisionEngine().decide(
            "x", _process(ProcessType.BUG_FIX, ["fix bug", "resolve", "patch"]), _score(10)
        )
        assert decision.suggested_tags == ["bug-fix", "fix-bug", "resolve"]
