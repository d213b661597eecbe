"""SQLModel definitions for the memory store.

Single source of truth for all table schemas.

Tables:
- projects, sessions, contexts: the ownership chain. Deleting a parent
  cascades to its children at the SQLite level (PRAGMA foreign_keys=ON).
- relationships, context_files: edges and file associations hanging off a
  context; both cascade with it.
- file_index: codebase snapshot rows, searched separately from contexts.
- learning_parameters, user_feedback: the feedback learner's durable state.

Timestamps are unix epoch seconds (float). Enum-valued columns store the
enum ``.value`` as plain text. The ``metadata`` columns hold JSON text and
are exposed as ``metadata_json`` because SQLAlchemy reserves ``metadata``.

The full-text index over contexts is not a SQLModel table; see fts.py.
"""

import json
from enum import Enum
from typing import Any

from sqlalchemy import (
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

# ============================================================================
# ENUMS
# ============================================================================


class ContextType(str, Enum):
    """Kind of stored memory item.

    The first eight are the coarse types; the rest are the fine-grained
    subtypes produced by the classifier.
    """

    CODE = "code"
    CONVERSATION = "conversation"
    ERROR = "error"
    SOLUTION = "solution"
    DOCUMENTATION = "documentation"
    TEST = "test"
    CONFIGURATION = "configuration"
    COMMIT = "commit"
    CODE_CREATE = "code_create"
    CODE_MODIFY = "code_modify"
    CODE_DELETE = "code_delete"
    CODE_REFACTOR = "code_refactor"
    CODE_OPTIMIZE = "code_optimize"
    BUG_FIX = "bug_fix"
    BUG_REPORT = "bug_report"
    FEATURE_ADD = "feature_add"
    FEATURE_UPDATE = "feature_update"
    FEATURE_REMOVE = "feature_remove"
    DESIGN = "design"
    LEARNING = "learning"


class SessionStatus(str, Enum):
    """Lifecycle state of a session."""

    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"


class RelationType(str, Enum):
    """Directed edge kinds between contexts."""

    DEPENDS_ON = "depends_on"
    RELATED_TO = "related_to"
    FIXES = "fixes"
    IMPLEMENTS = "implements"
    TESTS = "tests"
    DOCUMENTS = "documents"
    REFERENCES = "references"

    @property
    def default_strength(self) -> float:
        return RELATION_DEFAULT_STRENGTH[self]


RELATION_DEFAULT_STRENGTH: dict[RelationType, float] = {
    RelationType.DEPENDS_ON: 0.9,
    RelationType.FIXES: 0.8,
    RelationType.IMPLEMENTS: 0.8,
    RelationType.TESTS: 0.7,
    RelationType.DOCUMENTS: 0.6,
    RelationType.RELATED_TO: 0.5,
    RelationType.REFERENCES: 0.3,
}


class ChangeType(str, Enum):
    """How a context touched a file."""

    ADD = "add"
    MODIFY = "modify"
    DELETE = "delete"
    REFACTOR = "refactor"
    RENAME = "rename"


class ParameterType(str, Enum):
    """Learning parameter families."""

    THRESHOLD = "threshold"
    WEIGHT = "weight"


class FeedbackAction(str, Enum):
    """User verdict on a stored or proposed memory."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MODIFIED = "modified"


def _values(enum_cls: type[Enum]) -> str:
    return ", ".join(f"'{member.value}'" for member in enum_cls)


# ============================================================================
# HELPERS
# ============================================================================


class _JsonMetadataMixin:
    """Accessors for the JSON ``metadata`` column."""

    @property
    def meta(self) -> dict[str, Any]:
        try:
            loaded = json.loads(self.metadata_json or "{}")
        except json.JSONDecodeError:
            return {}
        return loaded if isinstance(loaded, dict) else {}


def _metadata_column() -> Any:
    return Field(default="{}", sa_column=Column("metadata", Text, nullable=False, default="{}"))


# ============================================================================
# OWNERSHIP CHAIN
# ============================================================================


class Project(_JsonMetadataMixin, SQLModel, table=True):
    """A filesystem root memories are grouped under."""

    __tablename__ = "projects"

    id: str = Field(primary_key=True)
    name: str
    path: str = Field(unique=True, index=True)
    git_remote_url: str | None = None
    language: str | None = None
    framework: str | None = None
    created_at: float
    last_accessed: float = Field(index=True)
    metadata_json: str = _metadata_column()


class Session(_JsonMetadataMixin, SQLModel, table=True):
    """A working session inside a project."""

    __tablename__ = "sessions"
    __table_args__ = (CheckConstraint(f"status IN ({_values(SessionStatus)})", name="ck_session_status"),)

    id: str = Field(primary_key=True)
    project_id: str = Field(
        sa_column=Column(String, ForeignKey("projects.id", ondelete="CASCADE"), index=True, nullable=False)
    )
    name: str
    started_at: float = Field(index=True)
    ended_at: float | None = None
    tool_used: str = Field(index=True)
    status: str = Field(default=SessionStatus.ACTIVE.value, index=True)
    metadata_json: str = _metadata_column()


class Context(_JsonMetadataMixin, SQLModel, table=True):
    """One stored memory item."""

    __tablename__ = "contexts"

    id: str = Field(primary_key=True)
    # Stable integer key for the full-text index; implicit rowids move on VACUUM.
    seq: int | None = Field(default=None, sa_column=Column(Integer, unique=True, index=True))
    session_id: str = Field(
        sa_column=Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), index=True, nullable=False)
    )
    type: str = Field(index=True)
    content: str = Field(sa_column=Column(Text, nullable=False))
    file_path: str | None = Field(default=None, index=True)
    line_start: int | None = None
    line_end: int | None = None
    language: str | None = None
    tags: str = ""  # sorted, comma-separated
    quality_score: float = Field(default=0.5, sa_column=Column(Float, nullable=False, default=0.5, index=True))
    created_at: float = Field(index=True)
    embedding: bytes | None = Field(default=None, sa_column=Column(LargeBinary, nullable=True))
    embedding_text: str | None = None
    embedding_version: str | None = None
    embedding_model: str | None = None
    metadata_json: str = _metadata_column()

    @property
    def tag_list(self) -> list[str]:
        return [t for t in self.tags.split(",") if t] if self.tags else []


class Relationship(SQLModel, table=True):
    """Directed, typed, weighted edge between two contexts."""

    __tablename__ = "relationships"
    __table_args__ = (
        UniqueConstraint("from_context_id", "to_context_id", "type", name="uq_relationship_edge"),
        CheckConstraint("strength >= 0 AND strength <= 1", name="ck_relationship_strength"),
    )

    id: str = Field(primary_key=True)
    from_context_id: str = Field(
        sa_column=Column(String, ForeignKey("contexts.id", ondelete="CASCADE"), index=True, nullable=False)
    )
    to_context_id: str = Field(
        sa_column=Column(String, ForeignKey("contexts.id", ondelete="CASCADE"), index=True, nullable=False)
    )
    type: str
    strength: float = 1.0
    created_at: float


class ContextFile(SQLModel, table=True):
    """File touched by a context."""

    __tablename__ = "context_files"
    __table_args__ = (
        CheckConstraint(
            f"change_type IS NULL OR change_type IN ({_values(ChangeType)})",
            name="ck_context_file_change_type",
        ),
    )

    id: str = Field(primary_key=True)
    context_id: str = Field(
        sa_column=Column(String, ForeignKey("contexts.id", ondelete="CASCADE"), index=True, nullable=False)
    )
    file_path: str = Field(index=True)
    change_type: str | None = None
    line_ranges: str | None = None  # JSON [[start, end], ...]
    diff_stats: str | None = None  # JSON {"additions": n, "deletions": m}
    created_at: float


# ============================================================================
# CODEBASE SNAPSHOT
# ============================================================================


class FileIndexEntry(_JsonMetadataMixin, SQLModel, table=True):
    """Snapshot of one project file."""

    __tablename__ = "file_index"
    __table_args__ = (UniqueConstraint("project_id", "relative_path", name="uq_file_index_path"),)

    id: str = Field(primary_key=True)
    project_id: str = Field(
        sa_column=Column(String, ForeignKey("projects.id", ondelete="CASCADE"), index=True, nullable=False)
    )
    session_id: str | None = Field(
        default=None,
        sa_column=Column(String, ForeignKey("sessions.id", ondelete="SET NULL"), index=True, nullable=True),
    )
    file_path: str
    relative_path: str
    content: str = Field(sa_column=Column(Text, nullable=False))
    language: str | None = None
    file_type: str | None = None
    size: int = 0
    modified_time: float
    indexed_at: float
    hash: str
    tags: str = ""
    metadata_json: str = _metadata_column()


# ============================================================================
# LEARNING STATE
# ============================================================================


class LearningParameter(SQLModel, table=True):
    """Live scorer weight or decision threshold."""

    __tablename__ = "learning_parameters"
    __table_args__ = (
        UniqueConstraint("parameter_type", "parameter_name", name="uq_learning_parameter"),
        CheckConstraint(f"parameter_type IN ({_values(ParameterType)})", name="ck_parameter_type"),
    )

    id: str = Field(primary_key=True)
    parameter_type: str
    parameter_name: str
    parameter_value: float
    previous_value: float | None = None
    update_reason: str | None = None
    updated_at: float = Field(index=True)


class UserFeedback(SQLModel, table=True):
    """Immutable feedback log entry."""

    __tablename__ = "user_feedback"
    __table_args__ = (
        CheckConstraint(f"feedback_action IN ({_values(FeedbackAction)})", name="ck_feedback_action"),
    )

    id: str = Field(primary_key=True)
    context_id: str = Field(
        sa_column=Column(String, ForeignKey("contexts.id", ondelete="CASCADE"), index=True, nullable=False)
    )
    feedback_action: str = Field(index=True)
    process_type: str | None = Field(default=None, index=True)
    value_score: float | None = None
    user_comment: str | None = None
    created_at: float
