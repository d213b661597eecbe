"""Config module exports."""

from devmind.config.loader import DevMindSettings, load_config, resolve_db_path
from devmind.config.models import (
    DatabaseConfig,
    DevMindConfig,
    LearnerConfig,
    LoggingConfig,
    OptimizerConfig,
    PipelineConfig,
    StoreConfig,
)

__all__ = [
    "load_config",
    "resolve_db_path",
    "DevMindConfig",
    "DevMindSettings",
    "DatabaseConfig",
    "LearnerConfig",
    "LoggingConfig",
    "OptimizerConfig",
    "PipelineConfig",
    "StoreConfig",
]
