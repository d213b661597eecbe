"""Report types produced by ProjectOptimizer.

Every strategy is read-only and returns one of these. to_dict() gives the
JSON-ready form callers log or return over the wire.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal


class OptimizationStrategy(str, Enum):
    DEDUPLICATION = "deduplication"
    CLUSTERING = "clustering"
    COMPRESSION = "compression"
    SUMMARIZATION = "summarization"
    RANKING = "ranking"
    ARCHIVING = "archiving"


DEFAULT_STRATEGIES: tuple[OptimizationStrategy, ...] = (
    OptimizationStrategy.DEDUPLICATION,
    OptimizationStrategy.CLUSTERING,
    OptimizationStrategy.COMPRESSION,
    OptimizationStrategy.SUMMARIZATION,
)


class _Serializable:
    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


@dataclass
class DuplicateGroup(_Serializable):
    """Contexts sharing one normalized-content hash."""

    master_id: str
    duplicate_ids: list[str]
    similarity: float


@dataclass
class DeduplicationResult(_Serializable):
    total_scanned: int
    duplicates_found: int
    space_reclaimed: int
    groups: list[DuplicateGroup] = field(default_factory=list)

    @property
    def removable_ids(self) -> list[str]:
        return [cid for group in self.groups for cid in group.duplicate_ids]


@dataclass
class MemoryCluster(_Serializable):
    """A group of semantically close contexts."""

    id: str
    name: str
    description: str
    centroid: list[float]
    members: list[str]
    size: int
    created_at: float
    avg_similarity: float
    common_tags: list[str]
    dominant_type: str
    time_range: tuple[float, float]


@dataclass
class ClusteringResult(_Serializable):
    clusters: list[MemoryCluster] = field(default_factory=list)
    average_size: float = 0.0
    outliers: int = 0
    outlier_ids: list[str] = field(default_factory=list)


@dataclass
class CompressionResult(_Serializable):
    original_size: int
    original_count: int
    compressed_size: int
    compressed_count: int
    ratio: float
    saved_bytes: int
    technique: str = "whitespace+comment removal"


@dataclass
class SummarizationResult(_Serializable):
    summaries_created: int
    content_reduction: float  # percent of characters saved
    summaries: dict[str, str] = field(default_factory=dict)


@dataclass
class RankingResult(_Serializable):
    contexts_ranked: int
    score_range: tuple[float, float]
    scores: dict[str, float] = field(default_factory=dict)


@dataclass
class ArchiveResult(_Serializable):
    contexts_archived: int
    space_freed: int
    archived_ids: list[str] = field(default_factory=list)


@dataclass
class OptimizationReport(_Serializable):
    """Outcome of optimize_project()."""

    timestamp: float
    project_id: str
    strategies: list[str]
    results: dict[str, Any] = field(default_factory=dict)
    time_taken_ms: float = 0.0
    memory_used: int = 0
    recommendations: list[str] = field(default_factory=list)


Priority = Literal["high", "medium", "low"]


@dataclass
class Recommendation(_Serializable):
    priority: Priority
    action: str
    impact: str
    effort: str


@dataclass
class StorageAnalysis(_Serializable):
    total_size: int
    avg_context_size: float
    largest_contexts: list[tuple[str, int]]


@dataclass
class RedundancyAnalysis(_Serializable):
    estimated_duplicates: int
    potential_savings: float


@dataclass
class PerformanceAnalysis(_Serializable):
    query_speed: Literal["fast", "medium", "slow"]
    indexing_needed: bool
    compression_potential: float


@dataclass
class OptimizationInsights(_Serializable):
    """Storage, redundancy and performance analysis for a project."""

    storage: StorageAnalysis
    redundancy: RedundancyAnalysis
    performance: PerformanceAnalysis
    recommendations: list[Recommendation] = field(default_factory=list)
