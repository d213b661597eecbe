"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (DEVMIND__SECTION__KEY)
3. Repo YAML (.devmind/config.yaml)
4. Global YAML (~/.config/devmind/config.yaml)
5. Built-in defaults (this file)

Environment Variable Format:
    DEVMIND__<SECTION>__<KEY>=<VALUE>

Examples:
    DEVMIND__LOGGING__LEVEL=DEBUG
    DEVMIND__STORE__DEDUP_WINDOW_SEC=5
    DEVMIND__LEARNER__MIN_SAMPLES=20
    DEVMIND__OPTIMIZER__ARCHIVE_DAYS=120
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from devmind.config.constants import THRESHOLD_MAX, THRESHOLD_MIN, WEIGHT_MAX, WEIGHT_MIN

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        DEVMIND__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every store write.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class DatabaseConfig(BaseModel):
    """Database connection configuration.

    Env vars:
        DEVMIND__DATABASE__PATH: SQLite file location
        DEVMIND__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
    """

    path: str | None = Field(
        default=None,
        description="SQLite database file. Default: .devmind/memory.db under the root.",
    )
    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks. "
        "RISK: Too low makes background compaction fail under contention.",
    )
    cache_size_kb: int = Field(
        default=64000,
        description="SQLite page cache size in KiB.",
    )

    @field_validator("busy_timeout_ms", "cache_size_kb")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Must be positive, got {v}")
        return v


class StoreConfig(BaseModel):
    """Memory store behaviour.

    Env vars:
        DEVMIND__STORE__DEDUP_WINDOW_SEC: Identical-write collapse window
        DEVMIND__STORE__VACUUM_EVERY_N_DELETES: Deletions between compactions
        DEVMIND__STORE__SEARCH_DEFAULT_LIMIT: Default search results
        DEVMIND__STORE__SIMILARITY_THRESHOLD: Minimum cosine for semantic hits
        DEVMIND__STORE__HYBRID_WEIGHT: Semantic share of the hybrid score
    """

    dedup_window_sec: float = Field(
        default=5.0,
        description="Identical (session, type, content) writes inside this trailing "
        "window return the existing id instead of inserting.",
    )
    vacuum_every_n_deletes: int = Field(
        default=10,
        description="Enqueue a background VACUUM after this many context deletions.",
    )
    search_default_limit: int = Field(
        default=20,
        description="Default number of rows returned by search.",
    )
    default_quality_score: float = Field(
        default=0.5,
        description="Quality score given to contexts created without one.",
    )
    similarity_threshold: float = Field(
        default=0.5,
        ge=-1.0,
        le=1.0,
        description="Semantic search drops contexts whose cosine similarity is below this.",
    )
    hybrid_weight: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Hybrid search weight on similarity; keyword rank gets the rest.",
    )

    @field_validator("dedup_window_sec")
    @classmethod
    def validate_window(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Dedup window cannot be negative, got {v}")
        return v

    @field_validator("vacuum_every_n_deletes", "search_default_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"Must be positive, got {v}")
        return v


class PipelineConfig(BaseModel):
    """Default scorer weights and decision thresholds.

    These seed the learning_parameters table on first startup. After that the
    stored values are authoritative.

    Env vars:
        DEVMIND__PIPELINE__HIGH_THRESHOLD: Auto-remember threshold
        DEVMIND__PIPELINE__MEDIUM_THRESHOLD: Ask-confirmation threshold
    """

    high_threshold: float = Field(default=80.0, ge=THRESHOLD_MIN, le=THRESHOLD_MAX)
    medium_threshold: float = Field(default=50.0, ge=THRESHOLD_MIN, le=THRESHOLD_MAX)
    low_threshold: float = Field(default=25.0, ge=0.0, le=THRESHOLD_MAX)
    code_significance_weight: float = Field(default=0.3, ge=WEIGHT_MIN, le=WEIGHT_MAX)
    problem_complexity_weight: float = Field(default=0.25, ge=WEIGHT_MIN, le=WEIGHT_MAX)
    solution_importance_weight: float = Field(default=0.25, ge=WEIGHT_MIN, le=WEIGHT_MAX)
    reusability_weight: float = Field(default=0.2, ge=WEIGHT_MIN, le=WEIGHT_MAX)

    @model_validator(mode="after")
    def validate_weight_sum(self) -> "PipelineConfig":
        total = (
            self.code_significance_weight
            + self.problem_complexity_weight
            + self.solution_importance_weight
            + self.reusability_weight
        )
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Default weights must sum to 1.0, got {total:.4f}")
        return self


class LearnerConfig(BaseModel):
    """Feedback learner tuning.

    Env vars:
        DEVMIND__LEARNER__MIN_SAMPLES: Feedback count before any adjustment
        DEVMIND__LEARNER__ADJUSTMENT_STEP: Relative weight step
    """

    min_samples: int = Field(
        default=10,
        description="Total feedback events required before parameters move.",
    )
    adjustment_step: float = Field(
        default=0.05,
        description="Weight step. Each nudge moves weights by half of this.",
    )
    threshold_step: float = Field(
        default=5.0,
        description="Points the high threshold moves per adjustment.",
    )
    process_min_samples: int = Field(
        default=5,
        description="Per-process-type feedback count before thresholds move.",
    )
    rejected_score_floor: int = Field(
        default=70,
        description="A rejection of an item scored above this nudges weights down.",
    )
    accepted_score_ceiling: int = Field(
        default=50,
        description="An acceptance of an item scored below this nudges weights up.",
    )


class OptimizerConfig(BaseModel):
    """Optimizer strategy defaults.

    Env vars:
        DEVMIND__OPTIMIZER__DEDUP_THRESHOLD: Near-duplicate similarity
        DEVMIND__OPTIMIZER__ARCHIVE_DAYS: Age before archiving
    """

    dedup_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    min_cluster_size: int = Field(default=3, ge=1)
    max_clusters: int = Field(default=20, ge=1)
    cluster_similarity_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    max_iterations: int = Field(default=50, ge=1)
    convergence_similarity: float = Field(
        default=0.99,
        description="A centroid that stays at least this similar to its previous "
        "position counts as converged.",
    )
    compression_min_reduction: float = Field(
        default=0.2,
        description="A context counts as compressed only above this size reduction.",
    )
    summary_min_group: int = Field(default=5, ge=1)
    archive_days: int = Field(default=90, ge=1)
    seed: int | None = Field(
        default=None,
        description="Seed for k-means centroid initialization. None = nondeterministic.",
    )


class DevMindConfig(BaseModel):
    """Root configuration for DevMind.

    All settings can be configured via:
    1. Environment variables: DEVMIND__SECTION__KEY
    2. YAML config files (repo or global)
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    learner: LearnerConfig = Field(default_factory=LearnerConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
