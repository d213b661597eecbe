"""Ingestion pipeline: classify, detect, score, decide and learn."""

from devmind.pipeline.classifier import ContentClassifier, ProcessDetector, looks_like_code
from devmind.pipeline.decision import DecisionEngine, EscalationRule, analyze_features
from devmind.pipeline.enrich import References, extract_references
from devmind.pipeline.learner import FeedbackLearner, normalize_weights
from devmind.pipeline.manager import MemoryManager, evaluate, format_result
from devmind.pipeline.models import (
    Classification,
    Decision,
    DecisionAction,
    Evaluation,
    KeyElements,
    LearningOutcome,
    MemoryTier,
    ParameterChange,
    Priority,
    ProcessDetection,
    ProcessingAction,
    ProcessingResult,
    ProcessType,
    ScoreWeights,
    Thresholds,
    ValueScore,
)
from devmind.pipeline.scorer import ValueScorer

__all__ = [
    # Entry points
    "evaluate",
    "format_result",
    "MemoryManager",
    # Stages
    "ContentClassifier",
    "ProcessDetector",
    "ValueScorer",
    "DecisionEngine",
    "FeedbackLearner",
    "EscalationRule",
    "analyze_features",
    "extract_references",
    "looks_like_code",
    "normalize_weights",
    # Results
    "Classification",
    "Decision",
    "DecisionAction",
    "Evaluation",
    "KeyElements",
    "LearningOutcome",
    "MemoryTier",
    "ParameterChange",
    "Priority",
    "ProcessDetection",
    "ProcessingAction",
    "ProcessingResult",
    "ProcessType",
    "References",
    "ScoreWeights",
    "Thresholds",
    "ValueScore",
]
