"""Persistent memory store: schema, search, maintenance and backups."""

from devmind.store.backup import (
    RestoreResult,
    create_backup,
    read_backup,
    restore_backup,
    validate_backup,
    write_backup,
)
from devmind.store.db import BulkWriter, Database
from devmind.store.embedding import EmbedFn, cosine_similarity, decode_vector, encode_vector
from devmind.store.fts import sanitize_query
from devmind.store.maintenance import MaintenanceEvent, MaintenanceQueue, MaintenanceWorker
from devmind.store.models import (
    ChangeType,
    Context,
    ContextFile,
    ContextType,
    FeedbackAction,
    FileIndexEntry,
    LearningParameter,
    ParameterType,
    Project,
    Relationship,
    RelationType,
    Session,
    SessionStatus,
    UserFeedback,
)
from devmind.store.ops import (
    DeleteSummary,
    EmbeddingStats,
    FeedbackStats,
    MemoryStore,
    ProcessTypeStats,
    SearchHit,
    StoreStats,
    normalize_tags,
)
from devmind.store.quality import QualityMetrics, calculate_quality_metrics

__all__ = [
    # Facade
    "MemoryStore",
    "DeleteSummary",
    "EmbeddingStats",
    "FeedbackStats",
    "ProcessTypeStats",
    "SearchHit",
    "StoreStats",
    "normalize_tags",
    # Models
    "ChangeType",
    "Context",
    "ContextFile",
    "ContextType",
    "FeedbackAction",
    "FileIndexEntry",
    "LearningParameter",
    "ParameterType",
    "Project",
    "Relationship",
    "RelationType",
    "Session",
    "SessionStatus",
    "UserFeedback",
    # Database
    "BulkWriter",
    "Database",
    # Search / vectors
    "sanitize_query",
    "EmbedFn",
    "cosine_similarity",
    "decode_vector",
    "encode_vector",
    # Maintenance
    "MaintenanceEvent",
    "MaintenanceQueue",
    "MaintenanceWorker",
    # Quality
    "QualityMetrics",
    "calculate_quality_metrics",
    # Backup
    "RestoreResult",
    "create_backup",
    "read_backup",
    "restore_backup",
    "validate_backup",
    "write_backup",
]
