"""Configuration constants.

This module contains values that should NOT be user-configurable: storage
format identifiers, parameter bounds the learner must respect, and fixed
protocol limits.

For configurable values, see models.py (StoreConfig, LearnerConfig, etc.).
"""

# =============================================================================
# Backup Format
# =============================================================================

BACKUP_FORMAT_VERSION = "1.0"
"""Version stamped into every backup document."""

BACKUP_DATA_KEYS = ("projects", "sessions", "contexts", "relationships")
"""Arrays a backup document must carry under ``data`` to be restorable."""

BACKUP_OPTIONAL_KEYS = ("context_files",)
"""Arrays written under ``data`` that older documents may lack."""

# =============================================================================
# Embeddings
# =============================================================================

DEFAULT_EMBEDDING_VERSION = "v1.0"
"""Version tag recorded when the caller does not supply one."""

DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
"""Model tag recorded when the caller does not supply one."""

# =============================================================================
# Full-Text Search
# =============================================================================

FTS_OPERATOR_CHARS = r'[-()"*^$\[\]{}:]'
"""FTS5 query metacharacters stripped before a query reaches the index."""

SEARCH_MAX_LIMIT = 500
"""Hard cap on rows returned by a single search call."""

INDEXER_TOOL_NAME = "codebase-indexer"
"""``tool_used`` value identifying a project's long-lived indexing session."""

# =============================================================================
# Learning Parameter Bounds
# =============================================================================
# The learner clamps every adjustment into these ranges. They are invariants
# of the decision pipeline, not tuning knobs.

THRESHOLD_MIN = 20.0
THRESHOLD_MAX = 95.0
"""Valid range for decision thresholds."""

WEIGHT_MIN = 0.1
WEIGHT_MAX = 0.5
"""Valid range for each scorer weight after normalization."""

WEIGHT_SUM_TOLERANCE = 1e-6
"""Allowed drift of the weight sum from 1.0."""

# =============================================================================
# Decision Engine
# =============================================================================

CONFIDENCE_CEILING = 0.95
"""No escalation may push decision confidence above this."""

MAX_SUGGESTED_TAGS = 5
"""Upper bound on tags suggested for a remembered item."""
