"""Memory store facade.

This module implements MemoryStore - the entry point for every persistent
operation. It owns the Database, runs schema evolution on open, and runs a
background maintenance worker for compaction.

Write invariants:
- Dedup-on-write: an identical (session, type, content) create inside the
  trailing window returns the existing id. The check and the insert share
  one BEGIN IMMEDIATE transaction.
- Cascades are enforced by SQLite foreign keys: project -> sessions ->
  contexts -> (relationships, context_files, user_feedback).
- The FTS index follows every context mutation through triggers.
"""

from __future__ import annotations

import hashlib
import json
import threading
import time
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
from sqlalchemy import func, or_, text
from sqlalchemy.exc import OperationalError
from sqlmodel import col, select

from devmind.config.constants import (
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_EMBEDDING_VERSION,
    INDEXER_TOOL_NAME,
    SEARCH_MAX_LIMIT,
)
from devmind.config.models import DevMindConfig
from devmind.core.errors import StoreError
from devmind.store.db import Database
from devmind.store.embedding import EmbedFn, cosine_similarity, decode_vector, encode_vector
from devmind.store.fts import FTS_TABLE, MATCH_ALL, sanitize_query
from devmind.store.maintenance import MaintenanceEvent, MaintenanceWorker
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
from devmind.store.quality import QualityMetrics, bump_usage, calculate_quality_metrics
from devmind.store.schema import migrate

logger = structlog.get_logger()

Clock = Callable[[], float]

# Hybrid ranking: the blended match score, then live quality metrics.
HYBRID_MATCH_WEIGHT = 0.5
HYBRID_QUALITY_WEIGHTS = {"relevance": 0.30, "freshness": 0.15, "usefulness": 0.05}


# ============================================================================
# RESULT TYPES
# ============================================================================


@dataclass
class DeleteSummary:
    """Rows removed by a project delete, counted before the cascade."""

    deleted_projects: int
    deleted_sessions: int
    deleted_contexts: int


@dataclass
class EmptyProject:
    """A project that owns no contexts."""

    project: Project
    session_count: int


@dataclass
class EmbeddingStats:
    """Embedding coverage across all contexts."""

    total: int
    with_embedding: int
    models: dict[str, int] = field(default_factory=dict)

    @property
    def coverage(self) -> float:
        return self.with_embedding / self.total if self.total else 0.0


@dataclass
class SearchHit:
    """A context ranked by semantic or hybrid search."""

    context: Context
    similarity: float = 0.0
    keyword_score: float = 0.0
    score: float = 0.0


@dataclass
class FileHistoryEntry:
    """One context that touched a file."""

    context_id: str
    change_type: str | None
    created_at: float
    content_preview: str


@dataclass
class IndexDeleteSummary:
    """Rows removed by delete_project_index."""

    deleted_files: int
    deleted_sessions: int


@dataclass
class FeedbackStats:
    """Acceptance counts over the whole feedback log."""

    total: int
    accepted: int
    rejected: int
    modified: int

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.total if self.total else 0.0


@dataclass
class ProcessTypeStats:
    """Acceptance counts for one process type."""

    process_type: str
    total: int
    accepted: int

    @property
    def acceptance_rate(self) -> float:
        return self.accepted / self.total if self.total else 0.0


@dataclass
class StoreStats:
    """Row counts for get_stats()."""

    total_projects: int
    total_sessions: int
    total_contexts: int
    active_sessions: int


# ============================================================================
# HELPERS
# ============================================================================


def new_id() -> str:
    return uuid.uuid4().hex


def normalize_tags(tags: str | Iterable[str] | None) -> str:
    """De-duplicate, trim and sort tags into the stored comma-separated form."""
    if tags is None:
        return ""
    items = tags.split(",") if isinstance(tags, str) else list(tags)
    return ",".join(sorted({t.strip() for t in items if t and t.strip()}))


def _dump_meta(meta: Mapping[str, Any] | str | None) -> str:
    if meta is None:
        return "{}"
    if isinstance(meta, str):
        return meta
    return json.dumps(dict(meta), ensure_ascii=False, default=str)


def _enum_value(enum_cls: Any, value: Any, field_name: str) -> str:
    try:
        return str(enum_cls(value).value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise StoreError.invalid_value(field_name, value, f"expected one of: {allowed}") from None


def _check_unit_interval(value: float, field_name: str) -> float:
    if not 0.0 <= value <= 1.0:
        raise StoreError.invalid_value(field_name, value, "must be within [0, 1]")
    return float(value)


def _next_seq(db_session: Any) -> int:
    """Next full-text key. Call inside an immediate transaction."""
    return int(db_session.execute(text("SELECT COALESCE(MAX(seq), 0) + 1 FROM contexts")).scalar_one())


class MemoryStore:
    """
    Persistent memory for development-session artifacts.

    Usage::

        store = MemoryStore(Path(".devmind/memory.db"))
        project = store.get_or_create_project("/work/app")
        session = store.create_session(project.id, "debugging", tool_used="cli")
        ctx_id = store.create_context(session.id, "bug_fix", "fixed race in cache")
        hits = store.search_contexts("race", project_id=project.id)
        store.close()
    """

    def __init__(
        self,
        db_path: Path | str,
        config: DevMindConfig | None = None,
        clock: Clock | None = None,
        *,
        start_maintenance: bool = True,
    ) -> None:
        self.config = config or DevMindConfig()
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock or time.time

        self.db = Database(self.db_path, self.config.database)
        self.db.create_all()
        migrate(self.db.engine)

        self._delete_lock = threading.Lock()
        self._deletes_since_compaction = 0
        self.maintenance = MaintenanceWorker(self.db)
        if start_maintenance:
            self.maintenance.start()
        logger.debug("memory_store_opened", path=str(self.db_path))

    def now(self) -> float:
        return self._clock()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self,
        name: str,
        path: str,
        *,
        git_remote_url: str | None = None,
        language: str | None = None,
        framework: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> Project:
        now = self.now()
        project = Project(
            id=new_id(),
            name=name,
            path=path,
            git_remote_url=git_remote_url,
            language=language,
            framework=framework,
            created_at=now,
            last_accessed=now,
            metadata_json=_dump_meta(metadata),
        )
        with self.db.session() as session:
            session.add(project)
            session.commit()
        logger.debug("project_created", project_id=project.id, path=path)
        return project

    def get_project(self, project_id: str) -> Project | None:
        with self.db.session() as session:
            return session.get(Project, project_id)

    def get_project_by_path(self, path: str) -> Project | None:
        with self.db.session() as session:
            return session.exec(select(Project).where(Project.path == path)).first()

    def get_or_create_project(
        self,
        path: str,
        name: str | None = None,
        *,
        language: str | None = None,
        framework: str | None = None,
        git_remote_url: str | None = None,
    ) -> Project:
        """Return the project at *path*, creating it on first encounter."""
        existing = self.get_project_by_path(path)
        if existing is not None:
            self.touch_project(existing.id)
            return self.get_project(existing.id) or existing
        return self.create_project(
            name or Path(path).name or path,
            path,
            git_remote_url=git_remote_url,
            language=language,
            framework=framework,
        )

    def touch_project(self, project_id: str) -> bool:
        with self.db.session() as session:
            project = session.get(Project, project_id)
            if project is None:
                return False
            project.last_accessed = self.now()
            session.add(project)
            session.commit()
        return True

    def list_projects(self, limit: int | None = None) -> list[Project]:
        stmt = select(Project).order_by(col(Project.last_accessed).desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def get_empty_projects(self) -> list[EmptyProject]:
        """Projects without any context, most recently used first."""
        sql = text(
            """
            SELECT p.id, COUNT(DISTINCT s.id) AS session_count
            FROM projects p
            LEFT JOIN sessions s ON p.id = s.project_id
            LEFT JOIN contexts c ON s.id = c.session_id
            GROUP BY p.id
            HAVING COUNT(c.id) = 0
            ORDER BY p.last_accessed DESC
            """
        )
        with self.db.session() as session:
            rows = session.execute(sql).all()
            result = []
            for project_id, session_count in rows:
                project = session.get(Project, project_id)
                if project is not None:
                    result.append(EmptyProject(project=project, session_count=int(session_count)))
            return result

    def delete_project(self, project_id: str) -> DeleteSummary:
        return self.delete_projects([project_id])

    def delete_projects(self, project_ids: Sequence[str]) -> DeleteSummary:
        """Delete projects; sessions, contexts and their edges cascade."""
        if not project_ids:
            return DeleteSummary(0, 0, 0)
        params = {f"p{i}": pid for i, pid in enumerate(project_ids)}
        placeholders = ", ".join(f":{k}" for k in params)
        with self.db.immediate_transaction() as session:
            sessions = session.execute(
                text(f"SELECT COUNT(*) FROM sessions WHERE project_id IN ({placeholders})"), params
            ).scalar_one()
            contexts = session.execute(
                text(
                    "SELECT COUNT(*) FROM contexts c JOIN sessions s ON c.session_id = s.id "
                    f"WHERE s.project_id IN ({placeholders})"
                ),
                params,
            ).scalar_one()
            deleted = session.execute(
                text(f"DELETE FROM projects WHERE id IN ({placeholders})"), params
            ).rowcount
        summary = DeleteSummary(int(deleted), int(sessions), int(contexts))
        if summary.deleted_contexts:
            self._count_deletions(summary.deleted_contexts)
        logger.info(
            "projects_deleted",
            projects=summary.deleted_projects,
            sessions=summary.deleted_sessions,
            contexts=summary.deleted_contexts,
        )
        return summary

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(
        self,
        project_id: str,
        name: str,
        *,
        tool_used: str = "unknown",
        status: SessionStatus | str = SessionStatus.ACTIVE,
        metadata: Mapping[str, Any] | None = None,
    ) -> Session:
        status_value = _enum_value(SessionStatus, status, "status")
        record = Session(
            id=new_id(),
            project_id=project_id,
            name=name,
            started_at=self.now(),
            tool_used=tool_used,
            status=status_value,
            metadata_json=_dump_meta(metadata),
        )
        with self.db.session() as session:
            if session.get(Project, project_id) is None:
                raise StoreError.not_found("project", project_id)
            session.add(record)
            session.commit()
        logger.debug("session_created", session_id=record.id, project_id=project_id)
        return record

    def get_session(self, session_id: str) -> Session | None:
        with self.db.session() as session:
            return session.get(Session, session_id)

    def list_sessions(self, project_id: str) -> list[Session]:
        stmt = (
            select(Session)
            .where(Session.project_id == project_id)
            .order_by(col(Session.started_at).desc())
        )
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def get_active_sessions(self, project_id: str | None = None) -> list[Session]:
        stmt = select(Session).where(Session.status == SessionStatus.ACTIVE.value)
        if project_id is not None:
            stmt = stmt.where(Session.project_id == project_id)
        stmt = stmt.order_by(col(Session.started_at).desc())
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def end_session(self, session_id: str) -> bool:
        return self._update_session_fields(
            session_id, status=SessionStatus.COMPLETED.value, ended_at=self.now()
        )

    def reactivate_session(self, session_id: str) -> bool:
        return self._update_session_fields(
            session_id, status=SessionStatus.ACTIVE.value, ended_at=None
        )

    def update_session(
        self,
        session_id: str,
        *,
        name: str | None = None,
        tool_used: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Update the given fields. False when nothing was given or the session is missing."""
        updates: dict[str, Any] = {}
        if name is not None:
            updates["name"] = name
        if tool_used is not None:
            updates["tool_used"] = tool_used
        if metadata is not None:
            updates["metadata_json"] = _dump_meta(metadata)
        if not updates:
            return False
        return self._update_session_fields(session_id, **updates)

    def _update_session_fields(self, session_id: str, **updates: Any) -> bool:
        with self.db.session() as session:
            record = session.get(Session, session_id)
            if record is None:
                return False
            for key, value in updates.items():
                setattr(record, key, value)
            session.add(record)
            session.commit()
        return True

    def get_project_main_session(self, project_id: str) -> Session | None:
        """The project's earliest session."""
        stmt = (
            select(Session)
            .where(Session.project_id == project_id)
            .order_by(col(Session.started_at).asc())
            .limit(1)
        )
        with self.db.session() as session:
            return session.exec(stmt).first()

    def get_or_create_indexing_session(self, project_id: str) -> Session:
        """The project's single active codebase-indexer session."""
        stmt = select(Session).where(
            Session.project_id == project_id,
            Session.tool_used == INDEXER_TOOL_NAME,
            Session.status == SessionStatus.ACTIVE.value,
        )
        with self.db.immediate_transaction() as session:
            existing = session.exec(stmt).first()
            if existing is not None:
                return existing
            if session.get(Project, project_id) is None:
                raise StoreError.not_found("project", project_id)
            record = Session(
                id=new_id(),
                project_id=project_id,
                name="Codebase index",
                started_at=self.now(),
                tool_used=INDEXER_TOOL_NAME,
                status=SessionStatus.ACTIVE.value,
            )
            session.add(record)
        logger.debug("indexing_session_created", session_id=record.id, project_id=project_id)
        return record

    def delete_session(self, session_id: str) -> bool:
        """Delete a session; its contexts and their edges cascade."""
        with self.db.immediate_transaction() as session:
            contexts = session.execute(
                text("SELECT COUNT(*) FROM contexts WHERE session_id = :id"), {"id": session_id}
            ).scalar_one()
            deleted = session.execute(
                text("DELETE FROM sessions WHERE id = :id"), {"id": session_id}
            ).rowcount
        if deleted and contexts:
            self._count_deletions(int(contexts))
        return bool(deleted)

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def create_context(
        self,
        session_id: str,
        type: ContextType | str,
        content: str,
        *,
        file_path: str | None = None,
        line_start: int | None = None,
        line_end: int | None = None,
        language: str | None = None,
        tags: str | Iterable[str] | None = None,
        quality_score: float | None = None,
        metadata: Mapping[str, Any] | None = None,
        files: Sequence[Mapping[str, Any]] | None = None,
    ) -> str:
        """Store a context and return its id.

        An identical (session, type, content) row created within the last
        ``store.dedup_window_sec`` seconds is returned instead of inserting
        a new one.

        Args:
            files: Extra file associations, each ``{file_path, change_type,
                line_ranges, diff_stats}``. A ``file_path`` argument adds one
                association on its own.

        Raises:
            StoreError: unknown session, invalid type, empty content or a
                quality score outside [0, 1].
        """
        type_value = _enum_value(ContextType, type, "type")
        if not content or not content.strip():
            raise StoreError.invalid_value("content", content, "content is required")
        score = _check_unit_interval(
            self.config.store.default_quality_score if quality_score is None else quality_score,
            "quality_score",
        )
        meta = dict(metadata or {})
        now = self.now()
        window_start = now - self.config.store.dedup_window_sec

        dedup_stmt = (
            select(Context.id)
            .where(
                Context.session_id == session_id,
                Context.type == type_value,
                Context.content == content,
                Context.created_at > window_start,
            )
            .limit(1)
        )

        with self.db.immediate_transaction() as session:
            if session.get(Session, session_id) is None:
                raise StoreError.not_found("session", session_id)

            existing = session.exec(dedup_stmt).first()
            if existing is not None:
                logger.info("context_deduplicated", context_id=existing, session_id=session_id)
                return existing

            context = Context(
                id=new_id(),
                seq=_next_seq(session),
                session_id=session_id,
                type=type_value,
                content=content,
                file_path=file_path,
                line_start=line_start,
                line_end=line_end,
                language=language,
                tags=normalize_tags(tags),
                quality_score=score,
                created_at=now,
                embedding_version=DEFAULT_EMBEDDING_VERSION,
                metadata_json=_dump_meta(meta),
            )
            session.add(context)
            session.flush()

            for assoc in self._file_associations(context, meta, files):
                session.add(assoc)

        logger.debug("context_created", context_id=context.id, type=type_value)
        return context.id

    def _file_associations(
        self,
        context: Context,
        meta: Mapping[str, Any],
        files: Sequence[Mapping[str, Any]] | None,
    ) -> list[ContextFile]:
        records: list[ContextFile] = []
        seen: set[str] = set()
        if context.file_path:
            line_ranges = (
                json.dumps([[context.line_start, context.line_end]])
                if context.line_start and context.line_end
                else None
            )
            records.append(
                ContextFile(
                    id=new_id(),
                    context_id=context.id,
                    file_path=context.file_path,
                    change_type=self._change_type_or_none(meta.get("change_type")),
                    line_ranges=line_ranges,
                    created_at=context.created_at,
                )
            )
            seen.add(context.file_path)
        for entry in files or ():
            path = entry.get("file_path")
            if not path or path in seen:
                continue
            seen.add(path)
            records.append(
                ContextFile(
                    id=new_id(),
                    context_id=context.id,
                    file_path=path,
                    change_type=self._change_type_or_none(entry.get("change_type")),
                    line_ranges=json.dumps(entry["line_ranges"]) if entry.get("line_ranges") else None,
                    diff_stats=json.dumps(entry["diff_stats"]) if entry.get("diff_stats") else None,
                    created_at=context.created_at,
                )
            )
        return records

    @staticmethod
    def _change_type_or_none(value: Any) -> str | None:
        if value is None:
            return None
        try:
            return ChangeType(value).value
        except ValueError:
            return None

    def get_context(self, context_id: str) -> Context | None:
        with self.db.session() as session:
            return session.get(Context, context_id)

    def list_contexts_by_session(self, session_id: str, limit: int | None = None) -> list[Context]:
        stmt = (
            select(Context)
            .where(Context.session_id == session_id)
            .order_by(col(Context.created_at).desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def list_contexts_by_project(self, project_id: str, limit: int | None = None) -> list[Context]:
        stmt = (
            select(Context)
            .join(Session, col(Context.session_id) == col(Session.id))
            .where(Session.project_id == project_id)
            .order_by(col(Context.created_at).desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def list_all_contexts(self, limit: int | None = None) -> list[Context]:
        stmt = select(Context).order_by(col(Context.created_at).desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def list_context_files(self, context_id: str) -> list[ContextFile]:
        stmt = (
            select(ContextFile)
            .where(ContextFile.context_id == context_id)
            .order_by(col(ContextFile.file_path))
        )
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def update_context(
        self,
        context_id: str,
        *,
        content: str | None = None,
        tags: str | Iterable[str] | None = None,
        quality_score: float | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        """Update the given fields. False when nothing was given or the context is missing."""
        updates: dict[str, Any] = {}
        if content is not None:
            if not content.strip():
                raise StoreError.invalid_value("content", content, "content is required")
            updates["content"] = content
        if tags is not None:
            updates["tags"] = normalize_tags(tags)
        if quality_score is not None:
            updates["quality_score"] = _check_unit_interval(quality_score, "quality_score")
        if metadata is not None:
            updates["metadata_json"] = _dump_meta(metadata)
        if not updates:
            return False

        with self.db.session() as session:
            context = session.get(Context, context_id)
            if context is None:
                return False
            for key, value in updates.items():
                setattr(context, key, value)
            session.add(context)
            session.commit()
        return True

    def delete_context(self, context_id: str) -> bool:
        with self.db.session() as session:
            result = session.execute(text("DELETE FROM contexts WHERE id = :id"), {"id": context_id})
            session.commit()
        deleted = bool(result.rowcount)
        if deleted:
            self._count_deletions(1)
        return deleted

    def delete_contexts_batch(self, context_ids: Sequence[str]) -> int:
        """Delete contexts in one transaction; returns how many existed."""
        if not context_ids:
            return 0
        deleted = 0
        with self.db.immediate_transaction() as session:
            for context_id in context_ids:
                result = session.execute(
                    text("DELETE FROM contexts WHERE id = :id"), {"id": context_id}
                )
                deleted += int(result.rowcount)
        if deleted:
            self._count_deletions(deleted)
        logger.info("contexts_deleted", requested=len(context_ids), deleted=deleted)
        return deleted

    def _count_deletions(self, count: int) -> None:
        every = self.config.store.vacuum_every_n_deletes
        with self._delete_lock:
            self._deletes_since_compaction += count
            due = self._deletes_since_compaction >= every
            if due:
                self._deletes_since_compaction = 0
        if due:
            logger.debug("compaction_enqueued", every=every)
            self.maintenance.submit(MaintenanceEvent.COMPACT)

    def increment_context_reference(self, context_id: str) -> bool:
        return self._bump_usage(context_id, "reference_count")

    def record_context_search(self, context_id: str) -> bool:
        return self._bump_usage(context_id, "search_count")

    def _bump_usage(self, context_id: str, counter: str) -> bool:
        with self.db.session() as session:
            context = session.get(Context, context_id)
            if context is None:
                return False
            context.metadata_json = _dump_meta(bump_usage(context.meta, counter, self.now()))
            session.add(context)
            session.commit()
        return True

    def get_quality_metrics(self, context_id: str) -> QualityMetrics:
        context = self.get_context(context_id)
        if context is None:
            raise StoreError.not_found("context", context_id)
        return calculate_quality_metrics(context, self.now())

    def refresh_quality_metrics(self, context_id: str) -> QualityMetrics:
        """Recompute the metrics and persist them into ``metadata.quality_metrics``."""
        with self.db.session() as session:
            context = session.get(Context, context_id)
            if context is None:
                raise StoreError.not_found("context", context_id)
            metrics = calculate_quality_metrics(context, self.now())
            meta = context.meta
            meta["quality_metrics"] = {**(meta.get("quality_metrics") or {}), **metrics.to_dict()}
            context.metadata_json = _dump_meta(meta)
            session.add(context)
            session.commit()
        return metrics

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_contexts(
        self,
        query: str,
        project_id: str | None = None,
        limit: int | None = None,
    ) -> list[Context]:
        """Full-text search ordered by quality score.

        Queries are sanitized first. A query with nothing searchable left, or
        one the index rejects, degrades to a recency-ordered listing.
        """
        limit = min(limit or self.config.store.search_default_limit, SEARCH_MAX_LIMIT)
        sanitized = sanitize_query(query)
        if sanitized == MATCH_ALL:
            return self._recent_contexts(project_id, limit)

        sql = f"SELECT c.id FROM contexts c JOIN {FTS_TABLE} ON c.seq = {FTS_TABLE}.rowid"
        params: dict[str, Any] = {"query": sanitized, "limit": limit}
        if project_id is not None:
            sql += (
                " JOIN sessions s ON c.session_id = s.id"
                f" WHERE {FTS_TABLE} MATCH :query AND s.project_id = :pid"
            )
            params["pid"] = project_id
        else:
            sql += f" WHERE {FTS_TABLE} MATCH :query"
        sql += " ORDER BY c.quality_score DESC LIMIT :limit"

        try:
            with self.db.session() as session:
                ids = [row[0] for row in session.execute(text(sql), params)]
                return self._load_contexts(session, ids)
        except OperationalError as e:
            logger.warning("fts_query_failed", query=sanitized, error=str(e))
            return self._recent_contexts(project_id, limit)

    def _recent_contexts(self, project_id: str | None, limit: int) -> list[Context]:
        stmt = select(Context)
        if project_id is not None:
            stmt = stmt.join(Session, col(Context.session_id) == col(Session.id)).where(
                Session.project_id == project_id
            )
        stmt = stmt.order_by(col(Context.created_at).desc()).limit(limit)
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    @staticmethod
    def _load_contexts(session: Any, ids: list[str]) -> list[Context]:
        if not ids:
            return []
        rows = session.exec(select(Context).where(col(Context.id).in_(ids))).all()
        by_id = {c.id: c for c in rows}
        return [by_id[i] for i in ids if i in by_id]

    def search_contexts_by_file(
        self,
        file_path: str,
        project_id: str | None = None,
        limit: int = 50,
    ) -> list[Context]:
        stmt = (
            select(Context)
            .join(ContextFile, col(ContextFile.context_id) == col(Context.id))
            .where(ContextFile.file_path == file_path)
        )
        if project_id is not None:
            stmt = stmt.join(Session, col(Context.session_id) == col(Session.id)).where(
                Session.project_id == project_id
            )
        stmt = stmt.distinct().order_by(col(Context.created_at).desc()).limit(limit)
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def get_file_history(self, file_path: str, limit: int = 50) -> list[FileHistoryEntry]:
        sql = text(
            """
            SELECT cf.context_id, cf.change_type, cf.created_at, SUBSTR(c.content, 1, 200)
            FROM context_files cf
            JOIN contexts c ON cf.context_id = c.id
            WHERE cf.file_path = :path
            ORDER BY cf.created_at DESC
            LIMIT :limit
            """
        )
        with self.db.session() as session:
            rows = session.execute(sql, {"path": file_path, "limit": limit}).all()
        return [
            FileHistoryEntry(context_id=r[0], change_type=r[1], created_at=r[2], content_preview=r[3])
            for r in rows
        ]

    def find_duplicate_contexts(self, project_id: str) -> list[Context]:
        """Exact-content duplicates within a project, excluding the best-scored copy of each."""
        sql = text(
            """
            SELECT DISTINCT c1.id, c1.created_at FROM contexts c1
            JOIN contexts c2 ON c1.id != c2.id AND c1.content = c2.content
            JOIN sessions s1 ON c1.session_id = s1.id
            JOIN sessions s2 ON c2.session_id = s2.id
            WHERE s1.project_id = :pid AND s2.project_id = :pid
              AND (c1.quality_score < c2.quality_score
                   OR (c1.quality_score = c2.quality_score AND c1.id < c2.id))
            ORDER BY c1.created_at DESC
            """
        )
        with self.db.session() as session:
            ids = [row[0] for row in session.execute(sql, {"pid": project_id})]
            return self._load_contexts(session, ids)

    def get_low_quality_contexts(
        self,
        project_id: str,
        threshold: float = 0.3,
        days_old: float = 30,
    ) -> list[Context]:
        """Contexts scored below *threshold* and older than *days_old* days."""
        cutoff = self.now() - days_old * 86400
        stmt = (
            select(Context)
            .join(Session, col(Context.session_id) == col(Session.id))
            .where(
                Session.project_id == project_id,
                col(Context.quality_score) < threshold,
                col(Context.created_at) < cutoff,
            )
            .order_by(col(Context.quality_score).asc(), col(Context.created_at).asc())
        )
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    def update_context_embedding(
        self,
        context_id: str,
        vector: Sequence[float],
        text_used: str,
        version: str = DEFAULT_EMBEDDING_VERSION,
        model: str = DEFAULT_EMBEDDING_MODEL,
    ) -> bool:
        with self.db.session() as session:
            context = session.get(Context, context_id)
            if context is None:
                return False
            context.embedding = encode_vector(vector)
            context.embedding_text = text_used
            context.embedding_version = version
            context.embedding_model = model
            session.add(context)
            session.commit()
        return True

    def get_context_embedding(self, context_id: str) -> list[float] | None:
        context = self.get_context(context_id)
        if context is None:
            return None
        vector = decode_vector(context.embedding)
        return vector.tolist() if vector is not None else None

    def get_contexts_without_embedding(self, limit: int = 100) -> list[Context]:
        stmt = (
            select(Context)
            .where(col(Context.embedding).is_(None))
            .order_by(col(Context.created_at).desc())
            .limit(limit)
        )
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def get_contexts_for_vector_search(
        self,
        project_id: str | None = None,
        session_id: str | None = None,
    ) -> list[Context]:
        stmt = select(Context).where(col(Context.embedding).is_not(None))
        if project_id is not None:
            stmt = stmt.join(Session, col(Context.session_id) == col(Session.id)).where(
                Session.project_id == project_id
            )
        if session_id is not None:
            stmt = stmt.where(Context.session_id == session_id)
        stmt = stmt.order_by(col(Context.created_at).desc())
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def semantic_search(
        self,
        query: str,
        embed: EmbedFn,
        *,
        project_id: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SearchHit]:
        """Rank contexts with stored embeddings by cosine similarity to *query*.

        *embed* turns the query into a vector of the stored kind. Contexts
        below ``store.similarity_threshold`` are dropped; vectors of another
        length score 0.
        """
        limit = min(limit or self.config.store.search_default_limit, SEARCH_MAX_LIMIT)
        threshold = self.config.store.similarity_threshold if threshold is None else threshold
        query_vector = list(embed(query))

        hits = []
        for context in self.get_contexts_for_vector_search(project_id=project_id):
            similarity = cosine_similarity(query_vector, decode_vector(context.embedding))
            if similarity >= threshold:
                hits.append(SearchHit(context=context, similarity=similarity, score=similarity))
        hits.sort(key=lambda h: h.similarity, reverse=True)
        logger.debug("semantic_search", candidates=len(hits), limit=limit)
        return hits[:limit]

    def hybrid_search(
        self,
        query: str,
        embed: EmbedFn,
        *,
        project_id: str | None = None,
        limit: int | None = None,
    ) -> list[SearchHit]:
        """Blend keyword rank with semantic similarity, then weight by quality.

        Keyword hits score by position (``1 - index / n``) times
        ``1 - hybrid_weight``; semantic hits add ``similarity * hybrid_weight``.
        The blend is then mixed with each context's live relevance,
        freshness and usefulness. A query with nothing searchable contributes
        no keyword scores.
        """
        limit = min(limit or self.config.store.search_default_limit, SEARCH_MAX_LIMIT)
        weight = self.config.store.hybrid_weight

        merged: dict[str, SearchHit] = {}
        if sanitize_query(query) != MATCH_ALL:
            keyword = self.search_contexts(query, project_id=project_id, limit=SEARCH_MAX_LIMIT)
            for index, context in enumerate(keyword):
                rank_score = max(0.0, 1 - index / len(keyword))
                merged[context.id] = SearchHit(
                    context=context,
                    keyword_score=rank_score,
                    score=rank_score * (1 - weight),
                )
        for hit in self.semantic_search(query, embed, project_id=project_id, limit=SEARCH_MAX_LIMIT):
            existing = merged.get(hit.context.id)
            if existing is None:
                merged[hit.context.id] = SearchHit(
                    context=hit.context, similarity=hit.similarity, score=hit.similarity * weight
                )
            else:
                existing.similarity = hit.similarity
                existing.score += hit.similarity * weight

        now = self.now()
        for hit in merged.values():
            metrics = calculate_quality_metrics(hit.context, now).to_dict()
            hit.score = hit.score * HYBRID_MATCH_WEIGHT + sum(
                metrics[name] * w for name, w in HYBRID_QUALITY_WEIGHTS.items()
            )
        ranked = sorted(merged.values(), key=lambda h: h.score, reverse=True)
        return ranked[:limit]

    def get_embedding_stats(self) -> EmbeddingStats:
        with self.db.session() as session:
            total = session.exec(select(func.count()).select_from(Context)).one()
            rows = session.execute(
                text(
                    "SELECT COALESCE(embedding_model, 'unknown'), COUNT(*) FROM contexts "
                    "WHERE embedding IS NOT NULL GROUP BY embedding_model ORDER BY COUNT(*) DESC"
                )
            ).all()
        models = {name: int(count) for name, count in rows}
        return EmbeddingStats(total=int(total), with_embedding=sum(models.values()), models=models)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def create_relationship(
        self,
        from_context_id: str,
        to_context_id: str,
        type: RelationType | str,
        strength: float | None = None,
    ) -> str:
        """Create or replace the (from, to, type) edge and return its id."""
        relation = RelationType(_enum_value(RelationType, type, "type"))
        value = _check_unit_interval(
            relation.default_strength if strength is None else strength, "strength"
        )
        stmt = select(Relationship).where(
            Relationship.from_context_id == from_context_id,
            Relationship.to_context_id == to_context_id,
            Relationship.type == relation.value,
        )
        with self.db.immediate_transaction() as session:
            for context_id in (from_context_id, to_context_id):
                if session.get(Context, context_id) is None:
                    raise StoreError.not_found("context", context_id)
            existing = session.exec(stmt).first()
            if existing is not None:
                existing.strength = value
                session.add(existing)
                return existing.id
            edge = Relationship(
                id=new_id(),
                from_context_id=from_context_id,
                to_context_id=to_context_id,
                type=relation.value,
                strength=value,
                created_at=self.now(),
            )
            session.add(edge)
        return edge.id

    def get_related_contexts(
        self,
        context_id: str,
        type: RelationType | str | None = None,
    ) -> list[Context]:
        """Targets of outgoing edges, strongest first."""
        stmt = (
            select(Context)
            .join(Relationship, col(Relationship.to_context_id) == col(Context.id))
            .where(Relationship.from_context_id == context_id)
        )
        if type is not None:
            stmt = stmt.where(Relationship.type == _enum_value(RelationType, type, "type"))
        stmt = stmt.order_by(col(Relationship.strength).desc())
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def list_relationships(self, context_id: str | None = None) -> list[Relationship]:
        stmt = select(Relationship)
        if context_id is not None:
            stmt = stmt.where(
                or_(
                    Relationship.from_context_id == context_id,
                    Relationship.to_context_id == context_id,
                )
            )
        stmt = stmt.order_by(col(Relationship.created_at).desc())
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    # ------------------------------------------------------------------
    # File index
    # ------------------------------------------------------------------

    def add_file_to_index(
        self,
        project_id: str,
        session_id: str | None,
        scanned_file: Mapping[str, Any],
    ) -> str:
        """Upsert one scanned file by (project, relative_path).

        ``scanned_file`` carries ``path``, ``relative_path``, ``content``,
        ``language``, ``size`` and ``modified_time``; ``file_type``, ``tags``
        and ``metadata`` are optional.
        """
        relative_path = scanned_file.get("relative_path")
        if not relative_path:
            raise StoreError.invalid_value("relative_path", relative_path, "relative_path is required")
        content = scanned_file.get("content") or ""
        record = {
            "id": new_id(),
            "project_id": project_id,
            "session_id": session_id,
            "file_path": scanned_file.get("path") or relative_path,
            "relative_path": relative_path,
            "content": content,
            "language": scanned_file.get("language"),
            "file_type": scanned_file.get("file_type") or Path(relative_path).suffix.lstrip(".") or None,
            "size": int(scanned_file.get("size") or len(content.encode("utf-8"))),
            "modified_time": float(scanned_file.get("modified_time") or self.now()),
            "indexed_at": self.now(),
            "hash": hashlib.sha256(content.encode("utf-8")).hexdigest(),
            "tags": normalize_tags(scanned_file.get("tags")),
            "metadata": _dump_meta(scanned_file.get("metadata")),
        }
        if self.get_project(project_id) is None:
            raise StoreError.not_found("project", project_id)
        with self.db.bulk_writer() as writer:
            writer.upsert_many(
                FileIndexEntry,
                [record],
                conflict_columns=["project_id", "relative_path"],
                update_columns=[
                    "session_id",
                    "file_path",
                    "content",
                    "language",
                    "file_type",
                    "size",
                    "modified_time",
                    "indexed_at",
                    "hash",
                    "tags",
                    "metadata",
                ],
            )
        with self.db.session() as session:
            stored = session.exec(
                select(FileIndexEntry.id).where(
                    FileIndexEntry.project_id == project_id,
                    FileIndexEntry.relative_path == relative_path,
                )
            ).one()
        return stored

    def get_project_index_files(self, project_id: str) -> list[FileIndexEntry]:
        stmt = (
            select(FileIndexEntry)
            .where(FileIndexEntry.project_id == project_id)
            .order_by(col(FileIndexEntry.relative_path))
        )
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def delete_project_index(self, project_id: str) -> IndexDeleteSummary:
        """Remove a project's file snapshot and its indexing sessions."""
        params = {"pid": project_id, "tool": INDEXER_TOOL_NAME}
        with self.db.bulk_writer() as writer:
            files = writer.delete_where(FileIndexEntry, "project_id = :pid", {"pid": project_id})
            contexts = writer.conn.execute(
                text(
                    "SELECT COUNT(*) FROM contexts c JOIN sessions s ON c.session_id = s.id "
                    "WHERE s.project_id = :pid AND s.tool_used = :tool"
                ),
                params,
            ).scalar_one()
            sessions = writer.delete_where(Session, "project_id = :pid AND tool_used = :tool", params)
        if contexts:
            self._count_deletions(int(contexts))
        return IndexDeleteSummary(deleted_files=files, deleted_sessions=sessions)

    # ------------------------------------------------------------------
    # Learning parameters and feedback
    # ------------------------------------------------------------------

    def get_parameter(self, parameter_type: ParameterType | str, name: str) -> LearningParameter | None:
        type_value = _enum_value(ParameterType, parameter_type, "parameter_type")
        stmt = select(LearningParameter).where(
            LearningParameter.parameter_type == type_value,
            LearningParameter.parameter_name == name,
        )
        with self.db.session() as session:
            return session.exec(stmt).first()

    def set_parameter(
        self,
        parameter_type: ParameterType | str,
        name: str,
        value: float,
        reason: str | None = None,
    ) -> LearningParameter:
        """Insert or update a parameter, keeping the prior value in ``previous_value``."""
        type_value = _enum_value(ParameterType, parameter_type, "parameter_type")
        stmt = select(LearningParameter).where(
            LearningParameter.parameter_type == type_value,
            LearningParameter.parameter_name == name,
        )
        with self.db.immediate_transaction() as session:
            record = session.exec(stmt).first()
            if record is None:
                record = LearningParameter(
                    id=new_id(),
                    parameter_type=type_value,
                    parameter_name=name,
                    parameter_value=float(value),
                    previous_value=None,
                    update_reason=reason,
                    updated_at=self.now(),
                )
            else:
                record.previous_value = record.parameter_value
                record.parameter_value = float(value)
                record.update_reason = reason
                record.updated_at = self.now()
            session.add(record)
        return record

    def list_parameters(
        self,
        parameter_type: ParameterType | str | None = None,
        limit: int | None = None,
    ) -> list[LearningParameter]:
        """Parameters, most recently updated first."""
        stmt = select(LearningParameter)
        if parameter_type is not None:
            stmt = stmt.where(
                LearningParameter.parameter_type
                == _enum_value(ParameterType, parameter_type, "parameter_type")
            )
        stmt = stmt.order_by(col(LearningParameter.updated_at).desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.db.session() as session:
            return list(session.exec(stmt).all())

    def delete_parameters(self) -> int:
        with self.db.bulk_writer() as writer:
            return writer.delete_where(LearningParameter, "1 = 1", {})

    def record_feedback(
        self,
        context_id: str,
        action: FeedbackAction | str,
        *,
        process_type: str | None = None,
        value_score: float | None = None,
        user_comment: str | None = None,
    ) -> UserFeedback:
        entry = UserFeedback(
            id=new_id(),
            context_id=context_id,
            feedback_action=_enum_value(FeedbackAction, action, "feedback_action"),
            process_type=process_type,
            value_score=value_score,
            user_comment=user_comment,
            created_at=self.now(),
        )
        with self.db.session() as session:
            if session.get(Context, context_id) is None:
                raise StoreError.not_found("context", context_id)
            session.add(entry)
            session.commit()
        return entry

    def feedback_stats(self) -> FeedbackStats:
        sql = text("SELECT feedback_action, COUNT(*) FROM user_feedback GROUP BY feedback_action")
        with self.db.session() as session:
            counts = {action: int(n) for action, n in session.execute(sql)}
        return FeedbackStats(
            total=sum(counts.values()),
            accepted=counts.get(FeedbackAction.ACCEPTED.value, 0),
            rejected=counts.get(FeedbackAction.REJECTED.value, 0),
            modified=counts.get(FeedbackAction.MODIFIED.value, 0),
        )

    def process_type_stats(self) -> list[ProcessTypeStats]:
        sql = text(
            """
            SELECT process_type,
                   COUNT(*),
                   SUM(CASE WHEN feedback_action = :accepted THEN 1 ELSE 0 END)
            FROM user_feedback
            WHERE process_type IS NOT NULL
            GROUP BY process_type
            ORDER BY process_type
            """
        )
        with self.db.session() as session:
            rows = session.execute(sql, {"accepted": FeedbackAction.ACCEPTED.value}).all()
        return [ProcessTypeStats(process_type=r[0], total=int(r[1]), accepted=int(r[2] or 0)) for r in rows]

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def get_stats(self) -> StoreStats:
        with self.db.session() as session:
            projects = session.exec(select(func.count()).select_from(Project)).one()
            sessions = session.exec(select(func.count()).select_from(Session)).one()
            contexts = session.exec(select(func.count()).select_from(Context)).one()
            active = session.exec(
                select(func.count())
                .select_from(Session)
                .where(Session.status == SessionStatus.ACTIVE.value)
            ).one()
        return StoreStats(
            total_projects=int(projects),
            total_sessions=int(sessions),
            total_contexts=int(contexts),
            active_sessions=int(active),
        )

    def vacuum(self) -> None:
        """Compact the database file synchronously."""
        self.maintenance.wait_idle()
        self.maintenance.compact()

    def close(self) -> None:
        self.maintenance.stop(wait_for_pending=True)
        self.db.dispose()
        logger.debug("memory_store_closed", path=str(self.db_path))

    def __enter__(self) -> MemoryStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
