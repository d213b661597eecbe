"""Read-only optimization passes over a project's stored contexts."""

from devmind.optimizer.clustering import RawCluster, average_pairwise_similarity, kmeans, stack_vectors
from devmind.optimizer.models import (
    DEFAULT_STRATEGIES,
    ArchiveResult,
    ClusteringResult,
    CompressionResult,
    DeduplicationResult,
    DuplicateGroup,
    MemoryCluster,
    OptimizationInsights,
    OptimizationReport,
    OptimizationStrategy,
    PerformanceAnalysis,
    RankingResult,
    Recommendation,
    RedundancyAnalysis,
    StorageAnalysis,
    SummarizationResult,
)
from devmind.optimizer.ops import (
    TYPE_RELEVANCE,
    ProjectOptimizer,
    content_hash,
    metadata_similarity,
    normalize_content,
    strip_content,
)

__all__ = [
    "ProjectOptimizer",
    "OptimizationStrategy",
    "DEFAULT_STRATEGIES",
    "TYPE_RELEVANCE",
    # Helpers
    "content_hash",
    "normalize_content",
    "strip_content",
    "metadata_similarity",
    "kmeans",
    "stack_vectors",
    "average_pairwise_similarity",
    "RawCluster",
    # Results
    "ArchiveResult",
    "ClusteringResult",
    "CompressionResult",
    "DeduplicationResult",
    "DuplicateGroup",
    "MemoryCluster",
    "OptimizationInsights",
    "OptimizationReport",
    "PerformanceAnalysis",
    "RankingResult",
    "Recommendation",
    "RedundancyAnalysis",
    "StorageAnalysis",
    "SummarizationResult",
]
