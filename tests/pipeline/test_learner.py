"""Tests for feedback-driven parameter learning."""

from __future__ import annotations

from typing import Any

import pytest

from devmind.config.models import DevMindConfig, LearnerConfig
from devmind.core.errors import StoreError
from devmind.pipeline import FeedbackLearner, normalize_weights
from devmind.pipeline.learner import DEFAULT_REASON, RESET_REASON
from devmind.store import MemoryStore, ParameterType, Session


@pytest.fixture
def config() -> DevMindConfig:
    """Learning starts from the first event so single calls are observable."""
    return DevMindConfig(learner=LearnerConfig(min_samples=1))


@pytest.fixture
def learner(store: MemoryStore) -> FeedbackLearner:
    return FeedbackLearner(store)


@pytest.fixture
def context_id(store: MemoryStore, session: Session) -> str:
    return store.create_context(session.id, "bug_fix", "fixed the flaky cache test")


def _assert_weight_invariants(learner: FeedbackLearner) -> None:
    weights = learner.get_weights().to_dict()
    assert sum(weights.values()) == pytest.approx(1.0, abs=1e-6)
    assert all(0.1 - 1e-9 <= w <= 0.5 + 1e-9 for w in weights.values())


class TestNormalizeWeights:
    def test_equal_weights(self) -> None:
        result = normalize_weights({"a": 1.0, "b": 1.0, "c": 1.0, "d": 1.0})
        assert result == pytest.approx({"a": 0.25, "b": 0.25, "c": 0.25, "d": 0.25}, abs=1e-6)

    def test_dominant_weight_clipped(self) -> None:
        """The clipped share is redistributed across the rest."""
        result = normalize_weights({"a": 10.0, "b": 1.0, "c": 1.0, "d": 1.0})

        assert result["a"] == pytest.approx(0.5)
        assert result["b"] == pytest.approx(1 / 6, abs=1e-6)
        assert sum(result.values()) == pytest.approx(1.0, abs=1e-6)

    def test_empty(self) -> None:
        assert normalize_weights({}) == {}


class TestDefaults:
    """Parameters are seeded from config on first use."""

    def test_seeded_on_init(self, learner: FeedbackLearner, store: MemoryStore) -> None:
        assert learner.get_thresholds().to_dict() == {"high_value": 80.0, "medium_value": 50.0, "low_value": 25.0}
        assert learner.get_weights().to_dict() == pytest.approx(
            {"code_significance": 0.3, "problem_complexity": 0.25, "solution_importance": 0.25, "reusability": 0.2}
        )
        params = store.list_parameters()
        assert len(params) == 7
        assert {p.update_reason for p in params} == {DEFAULT_REASON}

    def test_existing_values_not_overwritten(self, store: MemoryStore) -> None:
        store.set_parameter(ParameterType.THRESHOLD, "high_value", 70.0, "manual")
        learner = FeedbackLearner(store)
        assert learner.get_thresholds().high_value == 70.0

    def test_reset(self, learner: FeedbackLearner, store: MemoryStore) -> None:
        store.set_parameter(ParameterType.THRESHOLD, "high_value", 60.0, "manual")

        learner.reset_to_defaults()

        record = store.get_parameter(ParameterType.THRESHOLD, "high_value")
        assert record is not None
        assert record.parameter_value == 80.0
        assert record.previous_value == 60.0
        assert record.update_reason == RESET_REASON


class TestMinimumSamples:
    def test_skips_until_enough_feedback(self, store: MemoryStore, context_id: str) -> None:
        strict = DevMindConfig(learner=LearnerConfig(min_samples=10))
        learner = FeedbackLearner(store, strict)

        outcome = learner.learn(context_id, "rejected", value_score=95)

        assert outcome.adjusted is False
        assert outcome.total_feedback == 1
        assert outcome.skipped_reason == "Not enough samples yet (1/10)"
        assert learner.get_weights() == learner.default_weights()

    def test_unknown_context(self, learner: FeedbackLearner) -> None:
        with pytest.raises(StoreError):
            learner.learn("missing", "accepted")


class TestWeightLearning:
    """Weight nudges and renormalization."""

    def test_high_score_rejection(self, learner: FeedbackLearner, context_id: str) -> None:
        outcome = learner.learn(context_id, "rejected", value_score=90)

        assert outcome.adjusted is True
        assert {c.reason for c in outcome.changes} == {"Adjusted down due to high-score rejection"}
        weights = learner.get_weights()
        # Every weight drops by 0.025, then all are rescaled by 1 / 0.9.
        assert weights.code_significance == pytest.approx(0.275 / 0.9, abs=1e-6)
        assert weights.reusability == pytest.approx(0.175 / 0.9, abs=1e-6)
        _assert_weight_invariants(learner)

    def test_low_score_acceptance(self, learner: FeedbackLearner, context_id: str) -> None:
        outcome = learner.learn(context_id, "accepted", value_score=30)

        assert outcome.adjusted is True
        assert {c.reason for c in outcome.changes} == {"Adjusted up due to low-score acceptance"}
        weights = learner.get_weights()
        assert weights.code_significance == pytest.approx(0.325 / 1.1, abs=1e-6)
        _assert_weight_invariants(learner)

    @pytest.mark.parametrize(
        ("action", "value_score"),
        [("accepted", 90), ("rejected", 40), ("modified", 90), ("accepted", None)],
    )
    def test_no_adjustment(
        self, learner: FeedbackLearner, context_id: str, action: str, value_score: float | None
    ) -> None:
        outcome = learner.learn(context_id, action, value_score=value_score)

        assert outcome.adjusted is False
        assert outcome.changes == []
        assert outcome.skipped_reason is None

    def test_invariants_hold_under_repeated_rejection(self, learner: FeedbackLearner, context_id: str) -> None:
        for _ in range(30):
            learner.learn(context_id, "rejected", value_score=95)
            _assert_weight_invariants(learner)

    def test_history_records_changes(
        self, learner: FeedbackLearner, context_id: str, clock: Any
    ) -> None:
        clock.advance(60)
        learner.learn(context_id, "rejected", value_score=90)

        history = learner.get_learning_history(limit=2)

        assert {p.parameter_type for p in history} == {"weight"}
        assert all(p.previous_value is not None for p in history)
        assert all(p.updated_at == clock.now for p in history)


class TestThresholdLearning:
    """High threshold moves with per-process acceptance rates."""

    def _feedback(self, learner: FeedbackLearner, context_id: str, action: str, n: int):
        outcome = None
        for _ in range(n):
            outcome = learner.learn(context_id, action, process_type="bug_fix")
        return outcome

    def test_waits_for_process_samples(self, learner: FeedbackLearner, context_id: str) -> None:
        self._feedback(learner, context_id, "rejected", 4)
        assert learner.get_thresholds().high_value == 80.0

    def test_low_acceptance_lowers(self, learner: FeedbackLearner, context_id: str) -> None:
        outcome = self._feedback(learner, context_id, "rejected", 5)

        assert learner.get_thresholds().high_value == 75.0
        assert outcome.changes[0].reason == "Lowered due to low acceptance rate for bug_fix"

    def test_high_acceptance_raises(self, learner: FeedbackLearner, context_id: str) -> None:
        self._feedback(learner, context_id, "accepted", 5)
        assert learner.get_thresholds().high_value == 85.0

    def test_middling_rate_holds(self, learner: FeedbackLearner, context_id: str) -> None:
        self._feedback(learner, context_id, "accepted", 3)
        self._feedback(learner, context_id, "rejected", 2)
        assert learner.get_thresholds().high_value == 80.0

    def test_clamped_to_floor(self, learner: FeedbackLearner, store: MemoryStore, context_id: str) -> None:
        store.set_parameter(ParameterType.THRESHOLD, "high_value", 22.0, "manual")

        self._feedback(learner, context_id, "rejected", 5)
        assert learner.get_thresholds().high_value == 20.0

        outcome = self._feedback(learner, context_id, "rejected", 1)
        assert outcome.adjusted is False

    def test_clamped_to_ceiling(self, learner: FeedbackLearner, store: MemoryStore, context_id: str) -> None:
        store.set_parameter(ParameterType.THRESHOLD, "high_value", 93.0, "manual")
        self._feedback(learner, context_id, "accepted", 5)
        assert learner.get_thresholds().high_value == 95.0

    def test_stats(self, learner: FeedbackLearner, context_id: str) -> None:
        self._feedback(learner, context_id, "accepted", 2)
        learner.learn(context_id, "rejected")

        stats = learner.feedback_stats()
        assert (stats.total, stats.accepted, stats.rejected) == (3, 2, 1)
        by_type = learner.process_type_stats()
        assert by_type["bug_fix"].total == 2
        assert by_type["bug_fix"].acceptance_rate == 1.0
