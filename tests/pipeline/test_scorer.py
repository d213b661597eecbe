"""Tests for value scoring."""

from __future__ import annotations

import pytest

from devmind.pipeline import KeyElements, ProcessDetection, ProcessType, ScoreWeights, Thresholds, ValueScorer
from devmind.pipeline.scorer import round_half_up


def _process(process_type: ProcessType) -> ProcessDetection:
    return ProcessDetection(type=process_type, confidence=50.0, key_elements=KeyElements(), reasoning="")


class TestRoundHalfUp:
    @pytest.mark.parametrize(("value", "expected"), [(0.5, 1), (2.5, 3), (3.49, 3), (0.03, 0), (35.566, 36)])
    def test_rounds(self, value: float, expected: int) -> None:
        assert round_half_up(value) == expected


class TestValueScorer:
    """Dimension heuristics and the weighted total."""

    def test_terse_bug_fix_scores_near_zero(self) -> None:
        score = ValueScorer().score(
            "fix: resolve null pointer in parseConfig (fixes #42)", _process(ProcessType.BUG_FIX)
        )

        assert score.code_significance == pytest.approx(0.1)  # one line
        assert score.problem_complexity == 0.0
        assert score.solution_importance == 0.0
        assert score.reusability == 0.0
        assert score.total_score == 0
        assert score.multipliers["problem_complexity"] == 1.3

    def test_rich_code_change(self) -> None:
        content = (
            "Implemented a generic, reusable algorithm to fix a race condition in production. "
            "Performance improved."
        )
        score = ValueScorer().score(content, _process(ProcessType.CODE_CHANGE))

        # (algorithm + performance) * 15 + quality 18 + 0.1 for one line, times 1.2
        assert score.code_significance == pytest.approx(48.1 * 1.2)
        # race condition 12 + production 25
        assert score.problem_complexity == pytest.approx(37.0)
        # generic + reusable
        assert score.solution_importance == pytest.approx(24.0)
        # abstraction keyword "generic"
        assert score.reusability == pytest.approx(15.0)
        assert score.total_score == 36
        assert score.details["code_details"] == "Contains algorithm implementation; Addresses performance concerns"

    def test_feature_add_floor(self) -> None:
        """feature_add earns a code floor and skips the problem multiplier at zero."""
        score = ValueScorer().score("hello there", _process(ProcessType.FEATURE_ADD))

        assert score.code_significance == 30.0
        assert score.problem_complexity == 0.0
        assert score.multipliers["problem_complexity"] == 1.0
        assert score.multipliers["solution_importance"] == 1.2
        assert score.total_score == 9

    def test_dimensions_clamped(self) -> None:
        content = "algorithm complexity big o optimization performance 算法 复杂度 优化 性能"
        score = ValueScorer().score(content, _process(ProcessType.REFACTOR))
        assert score.code_significance == 100.0

    def test_changed_files_and_lines(self) -> None:
        content = "Files changed:\n- a.py\n- b.py\n- c.ts\n120 lines added"
        score = ValueScorer().score(content, _process(ProcessType.TESTING))

        # three files -> 25, 120 lines -> 12
        assert score.problem_complexity == pytest.approx(37.0)

    def test_reusable_pattern_needs_two_signals(self) -> None:
        scorer = ValueScorer()
        one = scorer.score("a redux thing", _process(ProcessType.CODE_CHANGE))
        two = scorer.score("a redux provider", _process(ProcessType.CODE_CHANGE))

        assert one.reusability == 0.0
        assert two.reusability == 18.0

    def test_standard_details(self) -> None:
        score = ValueScorer().score("plain words", _process(ProcessType.TESTING))
        assert score.details == {
            "code_details": "Standard code change",
            "problem_details": "Standard complexity problem",
            "solution_details": "Standard solution approach",
            "reusability_details": "Standard reusability level",
        }


class TestWeights:
    """Weights arrive as ScoreWeights or a partial mapping."""

    def test_partial_mapping_fills_defaults(self) -> None:
        score = ValueScorer().score(
            "hello there", _process(ProcessType.FEATURE_ADD), {"code_significance": 1.0}
        )
        assert score.total_score == 30

    def test_dataclass_weights(self) -> None:
        weights = ScoreWeights(code_significance=0.5, problem_complexity=0.2, solution_importance=0.2, reusability=0.1)
        score = ValueScorer().score("hello there", _process(ProcessType.FEATURE_ADD), weights)
        assert score.total_score == 15

    def test_from_mapping_treats_none_as_missing(self) -> None:
        assert ScoreWeights.from_mapping({"code_significance": None}) == ScoreWeights()
        assert Thresholds.from_mapping({"high_value": None, "low_value": 10}) == Thresholds(low_value=10.0)

    def test_from_mapping_ignores_unknown_keys(self) -> None:
        weights = ScoreWeights.from_mapping({"bogus": 9.0, "reusability": 0.4})
        assert weights.to_dict() == {
            "code_significance": 0.3,
            "problem_complexity": 0.25,
            "solution_importance": 0.25,
            "reusability": 0.4,
        }
