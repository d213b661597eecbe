"""Result types produced by the ingestion pipeline.

Classification -> ProcessDetection -> ValueScore -> Decision, bundled as an
Evaluation. ProcessingResult and LearningOutcome are what MemoryManager and
FeedbackLearner hand back to callers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class ProcessType(str, Enum):
    """Development activity detected in a piece of content."""

    CODE_CHANGE = "code_change"
    FEATURE_ADD = "feature_add"
    BUG_FIX = "bug_fix"
    SOLUTION_DESIGN = "solution_design"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    REFACTOR = "refactor"


class DecisionAction(str, Enum):
    """Verdict of the decision engine."""

    AUTO_REMEMBER = "auto_remember"
    ASK_CONFIRMATION = "ask_confirmation"
    IGNORE = "ignore"


class Priority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class MemoryTier(str, Enum):
    """How loudly a stored memory should be surfaced."""

    SILENT = "silent"
    NOTIFY = "notify"
    NONE = "none"


class ProcessingAction(str, Enum):
    """Outcome of MemoryManager.process()."""

    MEMORY_STORED = "memory_stored"
    CONFIRMATION_NEEDED = "confirmation_needed"
    IGNORED = "ignored"


@dataclass(frozen=True)
class Classification:
    """Fine-grained content type with the evidence behind it."""

    type: str
    confidence: float
    reasoning: str
    features: list[str] = field(default_factory=list)
    change_type: str | None = None
    impact_level: str = "minor"
    force_remember: bool = False
    memory_tier: MemoryTier = MemoryTier.SILENT


@dataclass(frozen=True)
class KeyElements:
    """Identifiers pulled out of the content, at most five of each."""

    files: list[str] = field(default_factory=list)
    functions: list[str] = field(default_factory=list)
    classes: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ProcessDetection:
    """Detected development activity; confidence is 0-100."""

    type: ProcessType
    confidence: float
    key_elements: KeyElements
    reasoning: str
    scores: dict[str, float] = field(default_factory=dict)


def _with_defaults(defaults: Any, values: dict[str, float | None] | None) -> dict[str, float]:
    merged = asdict(defaults)
    for key, default in merged.items():
        value = (values or {}).get(key)
        merged[key] = default if value is None else float(value)
    return merged


@dataclass(frozen=True)
class ScoreWeights:
    """Per-dimension weights; normally sum to 1."""

    code_significance: float = 0.3
    problem_complexity: float = 0.25
    solution_importance: float = 0.25
    reusability: float = 0.2

    @classmethod
    def from_mapping(cls, values: dict[str, float | None] | None) -> ScoreWeights:
        """Build from a partial mapping; missing, None or unknown keys use defaults."""
        return cls(**_with_defaults(cls(), values))

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Thresholds:
    """Decision cut-offs on the 0-100 value scale."""

    high_value: float = 80.0
    medium_value: float = 50.0
    low_value: float = 25.0

    @classmethod
    def from_mapping(cls, values: dict[str, float | None] | None) -> Thresholds:
        return cls(**_with_defaults(cls(), values))

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ValueScore:
    """Four 0-100 dimensions and their weighted total."""

    code_significance: float
    problem_complexity: float
    solution_importance: float
    reusability: float
    total_score: int
    details: dict[str, str] = field(default_factory=dict)
    multipliers: dict[str, float] = field(default_factory=dict)

    def dimensions(self) -> dict[str, float]:
        return {
            "code_significance": self.code_significance,
            "problem_complexity": self.problem_complexity,
            "solution_importance": self.solution_importance,
            "reusability": self.reusability,
        }


@dataclass(frozen=True)
class Decision:
    """Whether and how to remember a piece of content."""

    action: DecisionAction
    confidence: float
    reasoning: str
    memory_type: str
    priority: Priority
    suggested_tags: list[str] = field(default_factory=list)
    features: dict[str, bool] = field(default_factory=dict)
    rules_fired: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Evaluation:
    """Full pipeline output for one piece of content."""

    classification: Classification
    process: ProcessDetection
    scores: ValueScore
    decision: Decision
    related_issues: list[str] = field(default_factory=list)
    related_prs: list[str] = field(default_factory=list)

    def audit_trail(self) -> dict[str, Any]:
        """JSON-ready record stored in a remembered context's metadata."""
        return {
            "classification": {
                "type": self.classification.type,
                "confidence": self.classification.confidence,
                "change_type": self.classification.change_type,
                "impact_level": self.classification.impact_level,
                "memory_tier": self.classification.memory_tier.value,
            },
            "process_type": self.process.type.value,
            "process_confidence": self.process.confidence,
            "value_score": {**self.scores.dimensions(), "total_score": self.scores.total_score},
            "decision": {
                "action": self.decision.action.value,
                "confidence": self.decision.confidence,
                "reasoning": self.decision.reasoning,
                "priority": self.decision.priority.value,
                "rules_fired": list(self.decision.rules_fired),
            },
            "related_issues": list(self.related_issues),
            "related_prs": list(self.related_prs),
        }


@dataclass(frozen=True)
class ProcessingResult:
    """What MemoryManager.process() did with a piece of content."""

    action: ProcessingAction
    evaluation: Evaluation
    memory_id: str | None = None
    message: str = ""

    @property
    def stored(self) -> bool:
        return self.memory_id is not None


@dataclass(frozen=True)
class ParameterChange:
    """One learner adjustment."""

    parameter_type: str
    parameter_name: str
    old_value: float
    new_value: float
    reason: str


@dataclass(frozen=True)
class LearningOutcome:
    """Result of FeedbackLearner.learn()."""

    feedback_id: str
    total_feedback: int
    adjusted: bool
    changes: list[ParameterChange] = field(default_factory=list)
    skipped_reason: str | None = None
