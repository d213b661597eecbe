"""Ingestion entry point.

evaluate() runs the full classify -> detect -> score -> decide pipeline on
one piece of text without touching the store. MemoryManager wraps it with
the learner's live parameters and persists what the decision says to keep.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Literal

import structlog

from devmind.config.constants import INDEXER_TOOL_NAME
from devmind.config.models import DevMindConfig
from devmind.pipeline.classifier import ContentClassifier, ProcessDetector
from devmind.pipeline.decision import DecisionEngine
from devmind.pipeline.enrich import extract_references
from devmind.pipeline.learner import FeedbackLearner
from devmind.pipeline.models import (
    DecisionAction,
    Evaluation,
    LearningOutcome,
    ProcessingAction,
    ProcessingResult,
    ScoreWeights,
    Thresholds,
)
from devmind.pipeline.scorer import ValueScorer
from devmind.store import FeedbackAction, MemoryStore, Session

logger = structlog.get_logger()

Language = Literal["en", "zh"]

EXPLICIT_INTENT = "explicit_memory"
AUTO_SESSION_NAME = "Auto memory"
AUTO_SESSION_TOOL = "devmind"

MESSAGES: dict[str, dict[str, str]] = {
    "user_explicit_stored": {"en": "Stored (User explicit)", "zh": "已记忆（用户主动）"},
    "auto_stored": {"en": "Auto-stored", "zh": "已自动记忆"},
    "confirmation_needed": {
        "en": "Suggested to remember (confirmation needed)",
        "zh": "建议记忆（需要确认）",
    },
    "ignored": {"en": "Ignored (low value score)", "zh": "已忽略（价值评分较低）"},
}

_classifier = ContentClassifier()
_detector = ProcessDetector()
_scorer = ValueScorer()
_engine = DecisionEngine()


def message_for(key: str, language: str = "en") -> str:
    variants = MESSAGES.get(key, {})
    return variants.get(language) or variants.get("en") or key


def evaluate(
    content: str,
    context: Mapping[str, Any] | None = None,
    *,
    weights: ScoreWeights | Mapping[str, float | None] | None = None,
    thresholds: Thresholds | Mapping[str, float | None] | None = None,
) -> Evaluation:
    """Run the whole pipeline on *content*.

    Args:
        content: Raw text.
        context: Optional ``{"metadata": {...}, "history": [...]}``. Metadata
            feeds the classifier, history the process detector.
        weights: Scorer weights; defaults when omitted.
        thresholds: Decision thresholds; defaults when omitted.
    """
    context = context or {}
    metadata = context.get("metadata") or {}
    history = context.get("history") or None

    classification = _classifier.classify(content, metadata)
    process = _detector.detect(content, history)
    scores = _scorer.score(content, process, weights)
    decision = _engine.decide(content, process, scores, thresholds)
    references = extract_references(content)

    return Evaluation(
        classification=classification,
        process=process,
        scores=scores,
        decision=decision,
        related_issues=references.issues,
        related_prs=references.prs,
    )


class MemoryManager:
    """Evaluate content with learned parameters and store what is worth keeping."""

    def __init__(self, store: MemoryStore, config: DevMindConfig | None = None) -> None:
        self.store = store
        self.config = config or store.config
        self.learner = FeedbackLearner(store, self.config)

    def process(
        self,
        content: str,
        project_path: str,
        intent: str | None = None,
        history: Sequence[Mapping[str, Any]] | None = None,
        metadata: Mapping[str, Any] | None = None,
        *,
        language: Language = "en",
    ) -> ProcessingResult:
        """Evaluate *content* and store it when the decision (or the user) says so.

        Thresholds and weights are read from the learner on every call.
        An explicit intent always stores, whatever the score.
        """
        explicit = intent == EXPLICIT_INTENT
        evaluation = evaluate(
            content,
            {"metadata": metadata, "history": history},
            weights=None if explicit else self.learner.get_weights(),
            thresholds=None if explicit else self.learner.get_thresholds(),
        )
        action = evaluation.decision.action

        if explicit:
            memory_id = self._store(content, project_path, evaluation, metadata, explicit=True)
            return ProcessingResult(
                action=ProcessingAction.MEMORY_STORED,
                evaluation=evaluation,
                memory_id=memory_id,
                message=message_for("user_explicit_stored", language),
            )
        if action is DecisionAction.AUTO_REMEMBER:
            memory_id = self._store(content, project_path, evaluation, metadata, explicit=False)
            return ProcessingResult(
                action=ProcessingAction.MEMORY_STORED,
                evaluation=evaluation,
                memory_id=memory_id,
                message=message_for("auto_stored", language),
            )
        if action is DecisionAction.ASK_CONFIRMATION:
            return ProcessingResult(
                action=ProcessingAction.CONFIRMATION_NEEDED,
                evaluation=evaluation,
                message=message_for("confirmation_needed", language),
            )
        return ProcessingResult(
            action=ProcessingAction.IGNORED,
            evaluation=evaluation,
            message=message_for("ignored", language),
        )

    def record_feedback(
        self,
        context_id: str,
        action: FeedbackAction | str,
        *,
        process_type: str | None = None,
        value_score: float | None = None,
        user_comment: str | None = None,
    ) -> LearningOutcome:
        return self.learner.learn(
            context_id,
            action,
            process_type=process_type,
            value_score=value_score,
            user_comment=user_comment,
        )

    def _session_for(self, project_path: str) -> Session:
        project = self.store.get_or_create_project(project_path)
        for session in self.store.get_active_sessions(project.id):
            if session.tool_used != INDEXER_TOOL_NAME:
                return session
        return self.store.create_session(project.id, AUTO_SESSION_NAME, tool_used=AUTO_SESSION_TOOL)

    def _store(
        self,
        content: str,
        project_path: str,
        evaluation: Evaluation,
        metadata: Mapping[str, Any] | None,
        *,
        explicit: bool,
    ) -> str:
        session = self._session_for(project_path)
        meta = dict(metadata or {})
        meta["auto_memory"] = {**evaluation.audit_trail(), "explicit": explicit}
        context_id = self.store.create_context(
            session.id,
            evaluation.decision.memory_type,
            content,
            tags=evaluation.decision.suggested_tags,
            quality_score=min(1.0, max(0.0, evaluation.scores.total_score / 100)),
            metadata=meta,
        )
        logger.info(
            "memory_stored",
            context_id=context_id,
            memory_type=evaluation.decision.memory_type,
            total_score=evaluation.scores.total_score,
            explicit=explicit,
        )
        return context_id


def format_result(result: ProcessingResult, language: Language = "en") -> str:
    """Human-readable report of a processing result."""
    evaluation = result.evaluation
    process = evaluation.process
    scores = evaluation.scores
    decision = evaluation.decision

    if language == "zh":
        body = [
            "评估结果：",
            f"- 过程类型：{process.type.value}（置信度 {process.confidence:g}%）",
            f"- 价值评分：{scores.total_score}/100",
            f"  * 代码显著性：{scores.code_significance:g}",
            f"  * 问题复杂度：{scores.problem_complexity:g}",
            f"  * 解决方案重要性：{scores.solution_importance:g}",
            f"  * 可复用性：{scores.reusability:g}",
            "",
            f"建议标签：{', '.join(decision.suggested_tags)}",
            "",
            f"决策理由：{decision.reasoning}",
        ]
    else:
        body = [
            "Evaluation Result:",
            f"- Process Type: {process.type.value} (Confidence {process.confidence:g}%)",
            f"- Value Score: {scores.total_score}/100",
            f"  * Code Significance: {scores.code_significance:g}",
            f"  * Problem Complexity: {scores.problem_complexity:g}",
            f"  * Solution Importance: {scores.solution_importance:g}",
            f"  * Reusability: {scores.reusability:g}",
            "",
            f"Suggested Tags: {', '.join(decision.suggested_tags)}",
            "",
            f"Decision Reasoning: {decision.reasoning}",
        ]
    return "\n".join([result.message, "", *body])
