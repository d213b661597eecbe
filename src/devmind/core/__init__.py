"""Core module exports."""

from devmind.core.errors import (
    BackupError,
    ConfigError,
    DevMindError,
    ErrorCode,
    StoreError,
)
from devmind.core.logging import (
    clear_request_id,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
)

__all__ = [
    # Errors
    "BackupError",
    "ConfigError",
    "DevMindError",
    "ErrorCode",
    "StoreError",
    # Logging
    "clear_request_id",
    "configure_logging",
    "get_logger",
    "get_request_id",
    "set_request_id",
]
