"""Project memory optimizer.

Strategies are independent, composable and report-only: each reads a list
of contexts and describes what could be reclaimed or reorganized. Nothing
is deleted or rewritten here except through apply_deduplication(), the
explicit caller-confirmed step.
"""

from __future__ import annotations

import hashlib
import re
import time
import tracemalloc
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

import numpy as np
import structlog

from devmind.config.models import DevMindConfig
from devmind.optimizer.clustering import average_pairwise_similarity, kmeans, stack_vectors
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
from devmind.store import Context, MemoryStore
from devmind.store.embedding import EmbedFn, cosine_similarity, decode_vector
from devmind.store.quality import SECONDS_PER_DAY

logger = structlog.get_logger()

_WHITESPACE_RE = re.compile(r"\s+")
_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
_LINE_COMMENT_RE = re.compile(r"//[^\n]*")

TYPE_RELEVANCE: dict[str, float] = {
    "error": 0.9,
    "bug_report": 0.9,
    "solution": 0.85,
    "bug_fix": 0.85,
    "design": 0.85,
    "test": 0.75,
    "code": 0.7,
    "code_create": 0.7,
    "code_modify": 0.7,
    "code_delete": 0.7,
    "code_refactor": 0.7,
    "code_optimize": 0.7,
    "feature_add": 0.7,
    "feature_update": 0.7,
    "feature_remove": 0.7,
    "configuration": 0.65,
    "documentation": 0.6,
    "learning": 0.6,
    "commit": 0.55,
    "conversation": 0.5,
}
DEFAULT_RELEVANCE = 0.5

# (max age in days, adjustment); first match wins.
RECENCY_STEPS: tuple[tuple[float, float], ...] = ((7, 0.2), (30, 0.1))
STALE_DAYS = 180
STALE_PENALTY = 0.2

SUMMARY_PREVIEWS = 3
SUMMARY_PREVIEW_CHARS = 100
COMPRESSION_SAMPLE = 100
COMMENT_SHARE_ESTIMATE = 0.9

LARGE_PROJECT_CONTEXTS = 10_000
INDEXING_THRESHOLD = 1_000
SLOW_RUN_MS = 10_000
LARGE_STORAGE_BYTES = 100 * 1024 * 1024


def byte_size(text: str) -> int:
    return len(text.encode("utf-8"))


def normalize_content(content: str) -> str:
    return _WHITESPACE_RE.sub(" ", content.lower()).strip()


def content_hash(content: str) -> str:
    return hashlib.md5(normalize_content(content).encode("utf-8")).hexdigest()


def strip_content(content: str) -> str:
    """Drop C-style comments, then collapse whitespace."""
    stripped = _BLOCK_COMMENT_RE.sub("", content)
    stripped = _LINE_COMMENT_RE.sub("", stripped)
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def metadata_similarity(a: Context, b: Context) -> float:
    """Similarity from type, length and file path, for contexts without embeddings."""
    if normalize_content(a.content) == normalize_content(b.content):
        return 1.0
    score = 0.3 if a.type == b.type else 0.0
    longest = max(len(a.content), len(b.content))
    if longest:
        score += 0.3 * min(len(a.content), len(b.content)) / longest
    if a.file_path and a.file_path == b.file_path:
        score += 0.4
    return min(1.0, score)


def _format_day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).date().isoformat()


class ProjectOptimizer:
    """Deduplicate, cluster, compress, summarize, rank and archive a project's contexts.

    Usage::

        optimizer = ProjectOptimizer(store)
        report = optimizer.optimize_project(project_id)
        dedup = optimizer.deduplicate(store.list_contexts_by_project(project_id))
        optimizer.apply_deduplication(dedup)  # the only mutating call
    """

    def __init__(
        self,
        store: MemoryStore,
        config: DevMindConfig | None = None,
        embed: EmbedFn | None = None,
    ) -> None:
        self.store = store
        self.config = config or store.config
        self.embed = embed

    def _vector(self, context: Context) -> np.ndarray | None:
        vector = decode_vector(context.embedding)
        if vector is None and self.embed is not None:
            vector = np.asarray(self.embed(context.content), dtype=np.float32)
        if vector is None or vector.size == 0:
            return None
        return vector

    # ------------------------------------------------------------------
    # Deduplication
    # ------------------------------------------------------------------

    def deduplicate(
        self, contexts: Sequence[Context], threshold: float | None = None
    ) -> DeduplicationResult:
        """Group contexts whose normalized content hashes match.

        A group counts once its average pairwise similarity reaches
        *threshold*. The master is the highest quality member, then the
        longest, then the oldest; the rest are removable.
        """
        threshold = self.config.optimizer.dedup_threshold if threshold is None else threshold
        buckets: dict[str, list[Context]] = defaultdict(list)
        for context in contexts:
            buckets[content_hash(context.content)].append(context)

        result = DeduplicationResult(total_scanned=len(contexts), duplicates_found=0, space_reclaimed=0)
        for group in buckets.values():
            if len(group) < 2:
                continue
            similarity = self._group_similarity(group)
            if similarity < threshold:
                logger.debug("duplicate_group_rejected", size=len(group), similarity=similarity)
                continue
            master = min(group, key=lambda c: (-c.quality_score, -len(c.content), c.created_at))
            duplicates = [c for c in group if c.id != master.id]
            result.groups.append(
                DuplicateGroup(
                    master_id=master.id,
                    duplicate_ids=[c.id for c in duplicates],
                    similarity=round(similarity, 4),
                )
            )
            result.duplicates_found += len(duplicates)
            result.space_reclaimed += sum(byte_size(c.content) for c in duplicates)

        logger.info(
            "deduplication_scanned",
            scanned=result.total_scanned,
            duplicates=result.duplicates_found,
            space_reclaimed=result.space_reclaimed,
        )
        return result

    def _group_similarity(self, group: Sequence[Context]) -> float:
        vectors = [self._vector(c) for c in group]
        total = 0.0
        pairs = 0
        for i in range(len(group)):
            for j in range(i + 1, len(group)):
                vi, vj = vectors[i], vectors[j]
                if vi is not None and vj is not None and vi.shape == vj.shape:
                    total += cosine_similarity(vi, vj)
                else:
                    total += metadata_similarity(group[i], group[j])
                pairs += 1
        return total / pairs if pairs else 1.0

    def apply_deduplication(self, result: DeduplicationResult) -> int:
        """Delete every removable context in *result*. Returns rows deleted."""
        ids = result.removable_ids
        if not ids:
            return 0
        deleted = self.store.delete_contexts_batch(ids)
        logger.info("deduplication_applied", requested=len(ids), deleted=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Clustering
    # ------------------------------------------------------------------

    def cluster(
        self,
        contexts: Sequence[Context],
        min_cluster_size: int | None = None,
        max_clusters: int | None = None,
        similarity_threshold: float | None = None,
    ) -> ClusteringResult:
        """k-means over embeddings; clusters under *min_cluster_size* become outliers."""
        opts = self.config.optimizer
        min_cluster_size = opts.min_cluster_size if min_cluster_size is None else min_cluster_size
        max_clusters = opts.max_clusters if max_clusters is None else max_clusters
        similarity_threshold = (
            opts.cluster_similarity_threshold if similarity_threshold is None else similarity_threshold
        )

        with_vectors = [(c, v) for c in contexts if (v := self._vector(c)) is not None]
        if not with_vectors:
            return ClusteringResult()

        matrix, kept = stack_vectors([v for _, v in with_vectors])
        members_ctx = [with_vectors[i][0] for i in kept]
        raw = kmeans(
            matrix,
            max_clusters,
            similarity_threshold,
            max_iterations=opts.max_iterations,
            convergence=opts.convergence_similarity,
            rng=np.random.default_rng(opts.seed),
        )

        now = self.store.now()
        result = ClusteringResult()
        for index, found in enumerate(raw):
            member_contexts = [members_ctx[i] for i in found.members]
            if len(member_contexts) < min_cluster_size:
                result.outliers += len(member_contexts)
                result.outlier_ids.extend(c.id for c in member_contexts)
                continue
            result.clusters.append(
                self._describe_cluster(index, found.centroid, member_contexts, matrix[found.members], now)
            )

        if result.clusters:
            result.average_size = sum(c.size for c in result.clusters) / len(result.clusters)
        logger.info(
            "clustering_completed",
            clusters=len(result.clusters),
            average_size=round(result.average_size, 1),
            outliers=result.outliers,
        )
        return result

    @staticmethod
    def _describe_cluster(
        index: int,
        centroid: np.ndarray,
        members: Sequence[Context],
        vectors: np.ndarray,
        now: float,
    ) -> MemoryCluster:
        types = Counter(c.type for c in members)
        dominant = types.most_common(1)[0][0]
        tag_counts = Counter(tag for c in members for tag in c.tag_list)
        common_tags = [tag for tag, n in tag_counts.items() if n > len(members) * 0.3]
        created = [c.created_at for c in members]

        tag_part = f" related to {', '.join(common_tags)}" if common_tags else ""
        return MemoryCluster(
            id=f"cluster-{int(now * 1000)}-{index}",
            name=f"Cluster {index + 1}: {dominant}",
            description=f"A cluster of {len(members)} {dominant} contexts{tag_part}",
            centroid=[float(x) for x in centroid],
            members=[c.id for c in members],
            size=len(members),
            created_at=now,
            avg_similarity=round(average_pairwise_similarity(vectors), 4),
            common_tags=common_tags,
            dominant_type=dominant,
            time_range=(min(created), max(created)),
        )

    # ------------------------------------------------------------------
    # Compression and summarization
    # ------------------------------------------------------------------

    def compress(self, contexts: Sequence[Context]) -> CompressionResult:
        """Measure what comment and whitespace stripping would save.

        A context only counts as compressed when it shrinks by more than
        ``compression_min_reduction``.
        """
        keep_ratio = 1.0 - self.config.optimizer.compression_min_reduction
        original_size = 0
        compressed_size = 0
        compressed_count = 0
        for context in contexts:
            before = byte_size(context.content)
            after = byte_size(strip_content(context.content))
            original_size += before
            if after < before * keep_ratio:
                compressed_size += after
                compressed_count += 1
            else:
                compressed_size += before

        ratio = compressed_size / original_size if original_size else 1.0
        result = CompressionResult(
            original_size=original_size,
            original_count=len(contexts),
            compressed_size=compressed_size,
            compressed_count=compressed_count,
            ratio=round(ratio, 4),
            saved_bytes=original_size - compressed_size,
        )
        logger.info("compression_estimated", saved_bytes=result.saved_bytes, compressed=compressed_count)
        return result

    def summarize(self, contexts: Sequence[Context]) -> SummarizationResult:
        """Build one text summary per context type with enough members."""
        by_type: dict[str, list[Context]] = defaultdict(list)
        for context in contexts:
            by_type[context.type].append(context)

        summaries: dict[str, str] = {}
        original_chars = 0
        summary_chars = 0
        for type_name, group in by_type.items():
            if len(group) < self.config.optimizer.summary_min_group:
                continue
            summary = self._group_summary(type_name, group)
            summaries[type_name] = summary
            original_chars += sum(len(c.content) for c in group)
            summary_chars += len(summary)

        reduction = (original_chars - summary_chars) / original_chars * 100 if original_chars else 0.0
        logger.info("summaries_generated", summaries=len(summaries), content_reduction=round(reduction, 1))
        return SummarizationResult(
            summaries_created=len(summaries),
            content_reduction=round(reduction, 2),
            summaries=summaries,
        )

    @staticmethod
    def _group_summary(type_name: str, group: Sequence[Context]) -> str:
        created = [c.created_at for c in group]
        lines = [
            f"Summary of {len(group)} {type_name} contexts:",
            "",
            f"Time range: {_format_day(min(created))} to {_format_day(max(created))}",
        ]
        files = {c.file_path for c in group if c.file_path}
        if files:
            lines.append(f"Files involved: {len(files)}")
        lines += ["", "Key points:"]
        for context in group[:SUMMARY_PREVIEWS]:
            preview = context.content[:SUMMARY_PREVIEW_CHARS].replace("\n", " ")
            lines.append(f"- {preview}...")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Ranking and archiving
    # ------------------------------------------------------------------

    def relevance(self, context: Context, now: float | None = None) -> float:
        """Type relevance adjusted for age, clamped to [0, 1]."""
        now = self.store.now() if now is None else now
        score = TYPE_RELEVANCE.get(context.type, DEFAULT_RELEVANCE)
        age_days = (now - context.created_at) / SECONDS_PER_DAY
        for max_days, bonus in RECENCY_STEPS:
            if age_days < max_days:
                score += bonus
                break
        else:
            if age_days > STALE_DAYS:
                score -= STALE_PENALTY
        return max(0.0, min(1.0, score))

    def rank(self, contexts: Sequence[Context]) -> RankingResult:
        now = self.store.now()
        scores = {c.id: round(self.relevance(c, now), 4) for c in contexts}
        values = list(scores.values())
        score_range = (min(values), max(values)) if values else (0.0, 0.0)
        return RankingResult(contexts_ranked=len(contexts), score_range=score_range, scores=scores)

    def archive(self, contexts: Sequence[Context], days: int | None = None) -> ArchiveResult:
        """Flag contexts created more than *days* ago."""
        days = self.config.optimizer.archive_days if days is None else days
        cutoff = self.store.now() - days * SECONDS_PER_DAY
        old = [c for c in contexts if c.created_at < cutoff]
        result = ArchiveResult(
            contexts_archived=len(old),
            space_freed=sum(byte_size(c.content) for c in old),
            archived_ids=[c.id for c in old],
        )
        logger.info("archive_candidates_found", contexts=result.contexts_archived, space_freed=result.space_freed)
        return result

    # ------------------------------------------------------------------
    # Whole-project passes
    # ------------------------------------------------------------------

    def optimize_project(
        self,
        project_id: str,
        strategies: Iterable[OptimizationStrategy | str] | None = None,
    ) -> OptimizationReport:
        """Run the selected strategies over every context in a project."""
        selected = [OptimizationStrategy(s) for s in (strategies or DEFAULT_STRATEGIES)]
        contexts = self.store.list_contexts_by_project(project_id)
        report = OptimizationReport(
            timestamp=self.store.now(),
            project_id=project_id,
            strategies=[s.value for s in selected],
        )
        logger.info("optimization_started", project_id=project_id, contexts=len(contexts))

        started_tracing = not tracemalloc.is_tracing()
        if started_tracing:
            tracemalloc.start()
        before, _ = tracemalloc.get_traced_memory()
        start = time.perf_counter()
        try:
            for strategy in selected:
                report.results[strategy.value] = self._run(strategy, contexts).to_dict()
        finally:
            report.time_taken_ms = round((time.perf_counter() - start) * 1000, 3)
            after, _ = tracemalloc.get_traced_memory()
            report.memory_used = after - before
            if started_tracing:
                tracemalloc.stop()

        report.recommendations = self._report_recommendations(report, len(contexts))
        logger.info("optimization_completed", project_id=project_id, time_taken_ms=report.time_taken_ms)
        return report

    def _run(
        self, strategy: OptimizationStrategy, contexts: Sequence[Context]
    ) -> (
        DeduplicationResult
        | ClusteringResult
        | CompressionResult
        | SummarizationResult
        | RankingResult
        | ArchiveResult
    ):
        if strategy is OptimizationStrategy.DEDUPLICATION:
            return self.deduplicate(contexts)
        if strategy is OptimizationStrategy.CLUSTERING:
            return self.cluster(contexts)
        if strategy is OptimizationStrategy.COMPRESSION:
            return self.compress(contexts)
        if strategy is OptimizationStrategy.SUMMARIZATION:
            return self.summarize(contexts)
        if strategy is OptimizationStrategy.RANKING:
            return self.rank(contexts)
        return self.archive(contexts)

    @staticmethod
    def _report_recommendations(report: OptimizationReport, context_count: int) -> list[str]:
        results = report.results
        recommendations = []
        dedup = results.get(OptimizationStrategy.DEDUPLICATION.value)
        if dedup and dedup["duplicates_found"] > 10:
            recommendations.append("Many duplicates detected; run deduplication regularly")
        compression = results.get(OptimizationStrategy.COMPRESSION.value)
        if compression and compression["ratio"] > 0.8:
            recommendations.append("Compression gains are limited; consider a more aggressive strategy")
        clustering = results.get(OptimizationStrategy.CLUSTERING.value)
        if clustering and clustering["outliers"] > context_count * 0.3:
            recommendations.append("Many outliers; consider tuning clustering parameters")
        if report.time_taken_ms > SLOW_RUN_MS:
            recommendations.append("Optimization is slow; schedule it for off-peak hours")
        if context_count > LARGE_PROJECT_CONTEXTS:
            recommendations.append("Large number of contexts; enable archiving")
        return recommendations

    def get_insights(self, project_id: str) -> OptimizationInsights:
        """Storage, redundancy and performance analysis with prioritized actions."""
        contexts = self.store.list_contexts_by_project(project_id)
        sizes = [(c.id, byte_size(c.content)) for c in contexts]
        total_size = sum(size for _, size in sizes)
        avg_size = total_size / len(sizes) if sizes else 0.0
        largest = sorted(sizes, key=lambda item: item[1], reverse=True)[:5]

        seen: set[str] = set()
        duplicates = 0
        for context in contexts:
            digest = content_hash(context.content)
            if digest in seen:
                duplicates += 1
            else:
                seen.add(digest)

        count = len(contexts)
        if count < INDEXING_THRESHOLD:
            query_speed = "fast"
        elif count < LARGE_PROJECT_CONTEXTS:
            query_speed = "medium"
        else:
            query_speed = "slow"
        potential = self._compression_potential(contexts)

        recommendations = []
        if duplicates > 10:
            recommendations.append(
                Recommendation("high", "Run deduplication", f"Removes {duplicates} duplicate memories", "low")
            )
        if potential > 20:
            recommendations.append(
                Recommendation("medium", "Enable content compression", f"Saves about {potential:.0f}% storage", "medium")
            )
        if query_speed == "slow":
            recommendations.append(
                Recommendation("high", "Optimize query indexes", "Significantly faster queries", "medium")
            )
        if total_size > LARGE_STORAGE_BYTES:
            recommendations.append(
                Recommendation("medium", "Archive old memories", "Frees storage and speeds up queries", "low")
            )

        return OptimizationInsights(
            storage=StorageAnalysis(total_size=total_size, avg_context_size=avg_size, largest_contexts=largest),
            redundancy=RedundancyAnalysis(estimated_duplicates=duplicates, potential_savings=duplicates * avg_size),
            performance=PerformanceAnalysis(
                query_speed=query_speed,
                indexing_needed=count > INDEXING_THRESHOLD,
                compression_potential=round(potential, 2),
            ),
            recommendations=recommendations,
        )

    @staticmethod
    def _compression_potential(contexts: Sequence[Context]) -> float:
        """Estimated percent saving from a sample of contexts."""
        sample = contexts[:COMPRESSION_SAMPLE]
        original = sum(len(c.content) for c in sample)
        if not original:
            return 0.0
        estimated = sum(len(_WHITESPACE_RE.sub(" ", c.content)) * COMMENT_SHARE_ESTIMATE for c in sample)
        return (original - estimated) / original * 100
