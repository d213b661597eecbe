"""DevMind error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Store
- 4xxx: Backup
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002

    # Store (3xxx)
    STORE_NOT_FOUND = 3001
    STORE_INVALID_VALUE = 3002

    # Backup (4xxx)
    BACKUP_INVALID_DOCUMENT = 4001
    BACKUP_UNREADABLE = 4002


@dataclass(eq=False)
class DevMindError(Exception):
    """Base error with structured context for callers and logs."""

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'STORE_NOT_FOUND')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(DevMindError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class StoreError(DevMindError):
    """Persistent store errors."""

    @classmethod
    def not_found(cls, entity: str, entity_id: str) -> "StoreError":
        return cls(
            code=ErrorCode.STORE_NOT_FOUND,
            message=f"{entity} not found: {entity_id}",
            details={"entity": entity, "id": entity_id},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "StoreError":
        return cls(
            code=ErrorCode.STORE_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )


class BackupError(DevMindError):
    """Backup document errors. Raised before any destructive step."""

    @classmethod
    def invalid_document(cls, reason: str) -> "BackupError":
        return cls(
            code=ErrorCode.BACKUP_INVALID_DOCUMENT,
            message=f"Invalid backup document: {reason}",
            details={"reason": reason},
        )

    @classmethod
    def unreadable(cls, path: str, reason: str) -> "BackupError":
        return cls(
            code=ErrorCode.BACKUP_UNREADABLE,
            message=f"Cannot read backup at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

