"""Feedback-driven tuning of scorer weights and decision thresholds.

The learning_parameters table is the only source of truth: every read goes
to the store and every change is written back before learn() returns, so
the next scoring call sees it without any apply step.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from devmind.config.constants import (
    THRESHOLD_MAX,
    THRESHOLD_MIN,
    WEIGHT_MAX,
    WEIGHT_MIN,
    WEIGHT_SUM_TOLERANCE,
)
from devmind.config.models import DevMindConfig
from devmind.pipeline.models import LearningOutcome, ParameterChange, ScoreWeights, Thresholds
from devmind.store import (
    FeedbackAction,
    FeedbackStats,
    LearningParameter,
    MemoryStore,
    ParameterType,
    ProcessTypeStats,
)

logger = structlog.get_logger()

DEFAULT_REASON = "Initial default value"
RESET_REASON = "Reset to default value"

_BISECTION_ROUNDS = 200


def _clip(value: float, low: float = WEIGHT_MIN, high: float = WEIGHT_MAX) -> float:
    return max(low, min(high, value))


def normalize_weights(weights: dict[str, float]) -> dict[str, float]:
    """Rescale so the weights sum to 1 with each inside [WEIGHT_MIN, WEIGHT_MAX].

    Finds a common scale factor ``s`` such that ``sum(clip(w * s)) == 1``.
    The clipped sum grows monotonically with ``s``, so bisection converges.
    Requires ``len(weights) * WEIGHT_MIN <= 1 <= len(weights) * WEIGHT_MAX``.
    """
    if not weights:
        return {}
    names = list(weights)
    base = [max(weights[n], 1e-9) for n in names]

    low, high = 0.0, WEIGHT_MAX / min(base)
    for _ in range(_BISECTION_ROUNDS):
        mid = (low + high) / 2
        total = sum(_clip(w * mid) for w in base)
        if abs(total - 1.0) <= WEIGHT_SUM_TOLERANCE / 10:
            low = high = mid
            break
        if total < 1.0:
            low = mid
        else:
            high = mid
    scale = (low + high) / 2
    return {n: _clip(w * scale) for n, w in zip(names, base, strict=True)}


class FeedbackLearner:
    """Adjust weights and thresholds from accept/reject feedback.

    Nothing moves until the feedback log holds ``min_samples`` events.
    After that, each event may:

    - nudge every weight down (rejected, score above the floor) or up
      (accepted, score below the ceiling), followed by renormalization
    - move the high threshold by ``threshold_step`` when the event's process
      type has enough samples and an extreme acceptance rate
    """

    def __init__(self, store: MemoryStore, config: DevMindConfig | None = None) -> None:
        self.store = store
        self.config = config or store.config
        self._ensure_defaults()

    # ------------------------------------------------------------------
    # Defaults
    # ------------------------------------------------------------------

    def default_thresholds(self) -> Thresholds:
        pipeline = self.config.pipeline
        return Thresholds(
            high_value=pipeline.high_threshold,
            medium_value=pipeline.medium_threshold,
            low_value=pipeline.low_threshold,
        )

    def default_weights(self) -> ScoreWeights:
        pipeline = self.config.pipeline
        return ScoreWeights(
            code_significance=pipeline.code_significance_weight,
            problem_complexity=pipeline.problem_complexity_weight,
            solution_importance=pipeline.solution_importance_weight,
            reusability=pipeline.reusability_weight,
        )

    def _defaults(self) -> Iterable[tuple[ParameterType, str, float]]:
        for name, value in self.default_thresholds().to_dict().items():
            yield ParameterType.THRESHOLD, name, value
        for name, value in self.default_weights().to_dict().items():
            yield ParameterType.WEIGHT, name, value

    def _ensure_defaults(self) -> None:
        for parameter_type, name, value in self._defaults():
            if self.store.get_parameter(parameter_type, name) is None:
                self.store.set_parameter(parameter_type, name, value, DEFAULT_REASON)

    def reset_to_defaults(self) -> None:
        """Overwrite every parameter with its configured default."""
        for parameter_type, name, value in self._defaults():
            self.store.set_parameter(parameter_type, name, value, RESET_REASON)
        logger.info("learning_parameters_reset")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _read(self, parameter_type: ParameterType, defaults: dict[str, float]) -> dict[str, float]:
        values = {}
        for name, default in defaults.items():
            record = self.store.get_parameter(parameter_type, name)
            values[name] = record.parameter_value if record is not None else default
        return values

    def get_thresholds(self) -> Thresholds:
        """Current thresholds, read fresh from the store."""
        return Thresholds(**self._read(ParameterType.THRESHOLD, self.default_thresholds().to_dict()))

    def get_weights(self) -> ScoreWeights:
        """Current weights, read fresh from the store."""
        return ScoreWeights(**self._read(ParameterType.WEIGHT, self.default_weights().to_dict()))

    def get_learning_history(self, limit: int = 20) -> list[LearningParameter]:
        return self.store.list_parameters(limit=limit)

    def feedback_stats(self) -> FeedbackStats:
        return self.store.feedback_stats()

    def process_type_stats(self) -> dict[str, ProcessTypeStats]:
        return {stats.process_type: stats for stats in self.store.process_type_stats()}

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------

    def learn(
        self,
        context_id: str,
        action: FeedbackAction | str,
        *,
        process_type: str | None = None,
        value_score: float | None = None,
        user_comment: str | None = None,
    ) -> LearningOutcome:
        """Record one feedback event and adapt parameters if warranted.

        Raises:
            StoreError: The context does not exist or the action is invalid.
        """
        entry = self.store.record_feedback(
            context_id,
            action,
            process_type=process_type,
            value_score=value_score,
            user_comment=user_comment,
        )
        total = self.store.feedback_stats().total
        min_samples = self.config.learner.min_samples
        if total < min_samples:
            logger.debug("learning_skipped", total_feedback=total, min_samples=min_samples)
            return LearningOutcome(
                feedback_id=entry.id,
                total_feedback=total,
                adjusted=False,
                skipped_reason=f"Not enough samples yet ({total}/{min_samples})",
            )

        changes = self._adjust_weights(entry.feedback_action, value_score)
        if process_type:
            changes.extend(self._adjust_thresholds(process_type))

        if changes:
            logger.info(
                "learning_applied",
                feedback_id=entry.id,
                changes=[(c.parameter_name, c.old_value, c.new_value) for c in changes],
            )
        return LearningOutcome(
            feedback_id=entry.id,
            total_feedback=total,
            adjusted=bool(changes),
            changes=changes,
        )

    def _adjust_weights(self, action: str, value_score: float | None) -> list[ParameterChange]:
        learner = self.config.learner
        step = learner.adjustment_step * 0.5
        if value_score is None:
            return []
        if action == FeedbackAction.REJECTED.value and value_score > learner.rejected_score_floor:
            direction, reason = -1.0, "Adjusted down due to high-score rejection"
        elif action == FeedbackAction.ACCEPTED.value and value_score < learner.accepted_score_ceiling:
            direction, reason = 1.0, "Adjusted up due to low-score acceptance"
        else:
            return []

        current = self.get_weights().to_dict()
        nudged = {name: _clip(value + direction * step) for name, value in current.items()}
        normalized = normalize_weights(nudged)

        changes = []
        for name, new_value in normalized.items():
            old_value = current[name]
            if abs(new_value - old_value) > 1e-12:
                self.store.set_parameter(ParameterType.WEIGHT, name, new_value, reason)
                changes.append(
                    ParameterChange(ParameterType.WEIGHT.value, name, old_value, new_value, reason)
                )
        if changes:
            logger.info("weights_adjusted", direction=direction, weights=normalized)
        return changes

    def _adjust_thresholds(self, process_type: str) -> list[ParameterChange]:
        learner = self.config.learner
        stats = self.process_type_stats().get(process_type)
        if stats is None or stats.total < learner.process_min_samples:
            return []

        rate = stats.acceptance_rate
        current = self.get_thresholds().high_value
        if rate < 0.5:
            new_value = max(THRESHOLD_MIN, current - learner.threshold_step)
            reason = f"Lowered due to low acceptance rate for {process_type}"
        elif rate > 0.9:
            new_value = min(THRESHOLD_MAX, current + learner.threshold_step)
            reason = f"Raised due to high acceptance rate for {process_type}"
        else:
            return []

        if new_value == current:
            return []
        self.store.set_parameter(ParameterType.THRESHOLD, "high_value", new_value, reason)
        logger.info(
            "threshold_adjusted",
            process_type=process_type,
            acceptance_rate=round(rate, 3),
            old_value=current,
            new_value=new_value,
        )
        return [ParameterChange(ParameterType.THRESHOLD.value, "high_value", current, new_value, reason)]
