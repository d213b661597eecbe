"""Backup and restore of the memory store.

A backup is a JSON document::

    {
      "version": "1.0",
      "timestamp": <epoch seconds>,
      "database_path": "...",
      "data": {"projects": [...], "sessions": [...], "contexts": [...], "relationships": [...],
               "context_files": [...]},
      "stats": {"projects": n, "sessions": n, "contexts": n, "relationships": n}
    }

Rows are serialized column-for-column. Context embeddings are base64 of
their float32 bytes. Restore validates the whole document before touching
the database, then replaces every row in one transaction, preserving ids
and timestamps.

``context_files`` is optional. Documents without it get their file
associations rebuilt from each context's ``file_path`` and
``metadata.files_changed``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import text

from devmind.config.constants import (
    BACKUP_DATA_KEYS,
    BACKUP_FORMAT_VERSION,
    BACKUP_OPTIONAL_KEYS,
    DEFAULT_EMBEDDING_VERSION,
)
from devmind.core.errors import BackupError
from devmind.store.embedding import base64_to_blob, blob_to_base64
from devmind.store.models import Context, ContextFile, Project, Relationship, Session
from devmind.store.schema import migrate_context_files

if TYPE_CHECKING:
    from devmind.store.ops import MemoryStore

logger = structlog.get_logger()

_TABLES: dict[str, Any] = {
    "projects": Project,
    "sessions": Session,
    "contexts": Context,
    "relationships": Relationship,
    "context_files": ContextFile,
}

# Required keys per row; everything else falls back to column defaults.
_REQUIRED: dict[str, tuple[str, ...]] = {
    "projects": ("id", "name", "path", "created_at"),
    "sessions": ("id", "project_id", "name", "started_at"),
    "contexts": ("id", "session_id", "type", "content", "created_at"),
    "relationships": ("id", "from_context_id", "to_context_id", "type"),
    "context_files": ("id", "context_id", "file_path"),
}


@dataclass
class RestoreResult:
    """Row counts written by restore_backup."""

    projects: int
    sessions: int
    contexts: int
    relationships: int
    context_files: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "projects": self.projects,
            "sessions": self.sessions,
            "contexts": self.contexts,
            "relationships": self.relationships,
            "context_files": self.context_files,
        }


def _dump_rows(store: MemoryStore, table: str) -> list[dict[str, Any]]:
    with store.db.engine.connect() as conn:
        result = conn.execute(text(f"SELECT * FROM {table} ORDER BY rowid"))
        rows = [dict(row._mapping) for row in result]
    if table == "contexts":
        for row in rows:
            row["embedding"] = blob_to_base64(row.get("embedding"))
    return rows


def create_backup(store: MemoryStore) -> dict[str, Any]:
    """Snapshot projects, sessions, contexts, relationships and file associations."""
    data = {key: _dump_rows(store, key) for key in BACKUP_DATA_KEYS + BACKUP_OPTIONAL_KEYS}
    document = {
        "version": BACKUP_FORMAT_VERSION,
        "timestamp": store.now(),
        "database_path": str(store.db_path),
        "data": data,
        "stats": {key: len(data[key]) for key in BACKUP_DATA_KEYS},
    }
    logger.info("backup_created", **document["stats"])
    return document


def write_backup(store: MemoryStore, path: Path) -> dict[str, Any]:
    document = create_backup(store)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, ensure_ascii=False, indent=2), encoding="utf-8")
    return document


def read_backup(path: Path) -> dict[str, Any]:
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise BackupError.unreadable(str(path), str(e)) from e
    except json.JSONDecodeError as e:
        raise BackupError.unreadable(str(path), f"invalid JSON: {e}") from e
    if not isinstance(loaded, dict):
        raise BackupError.invalid_document("top level must be an object")
    return loaded


def validate_backup(document: Any) -> dict[str, list[dict[str, Any]]]:
    """Check shape before any mutation.

    Returns:
        The ``data`` section, keyed by table.

    Raises:
        BackupError: a ``data`` array is missing, is not a list of objects,
            a row lacks a required key, or a file association names a
            context the document does not carry.
    """
    if not isinstance(document, Mapping):
        raise BackupError.invalid_document("document must be an object")
    data = document.get("data")
    if not isinstance(data, Mapping):
        raise BackupError.invalid_document("missing 'data' section")

    validated: dict[str, list[dict[str, Any]]] = {}
    present = [key for key in BACKUP_OPTIONAL_KEYS if data.get(key) is not None]
    for key in (*BACKUP_DATA_KEYS, *present):
        rows = data.get(key)
        if not isinstance(rows, list):
            raise BackupError.invalid_document(f"'data.{key}' must be a list")
        for index, row in enumerate(rows):
            if not isinstance(row, Mapping):
                raise BackupError.invalid_document(f"'data.{key}[{index}]' must be an object")
            missing = [k for k in _REQUIRED[key] if row.get(k) is None]
            if missing:
                raise BackupError.invalid_document(
                    f"'data.{key}[{index}]' is missing {', '.join(missing)}"
                )
        validated[key] = [dict(row) for row in rows]

    if "context_files" in validated:
        context_ids = {row["id"] for row in validated["contexts"]}
        for index, row in enumerate(validated["context_files"]):
            if row["context_id"] not in context_ids:
                raise BackupError.invalid_document(
                    f"'data.context_files[{index}]' references unknown context {row['context_id']}"
                )
    return validated


def _metadata_text(value: Any) -> str:
    if value is None:
        return "{}"
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _project_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "path": row["path"],
        "git_remote_url": row.get("git_remote_url"),
        "language": row.get("language"),
        "framework": row.get("framework"),
        "created_at": row["created_at"],
        "last_accessed": row.get("last_accessed") or row["created_at"],
        "metadata": _metadata_text(row.get("metadata")),
    }


def _session_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "project_id": row["project_id"],
        "name": row["name"],
        "started_at": row["started_at"],
        "ended_at": row.get("ended_at"),
        "tool_used": row.get("tool_used") or "unknown",
        "status": row.get("status") or "active",
        "metadata": _metadata_text(row.get("metadata")),
    }


def _context_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "seq": row.get("seq"),
        "session_id": row["session_id"],
        "type": row["type"],
        "content": row["content"],
        "file_path": row.get("file_path"),
        "line_start": row.get("line_start"),
        "line_end": row.get("line_end"),
        "language": row.get("language"),
        "tags": row.get("tags") or "",
        "quality_score": 0.5 if row.get("quality_score") is None else row["quality_score"],
        "created_at": row["created_at"],
        "embedding": base64_to_blob(row.get("embedding")),
        "embedding_text": row.get("embedding_text"),
        "embedding_version": row.get("embedding_version") or DEFAULT_EMBEDDING_VERSION,
        "embedding_model": row.get("embedding_model"),
        "metadata": _metadata_text(row.get("metadata")),
    }


def _relationship_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "from_context_id": row["from_context_id"],
        "to_context_id": row["to_context_id"],
        "type": row["type"],
        "strength": 1.0 if row.get("strength") is None else row["strength"],
        "created_at": row.get("created_at") or 0.0,
    }


def _context_file_row(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "context_id": row["context_id"],
        "file_path": row["file_path"],
        "change_type": row.get("change_type"),
        "line_ranges": row.get("line_ranges"),
        "diff_stats": row.get("diff_stats"),
        "created_at": row.get("created_at") or 0.0,
    }


_ROW_BUILDERS = {
    "projects": _project_row,
    "sessions": _session_row,
    "contexts": _context_row,
    "relationships": _relationship_row,
    "context_files": _context_file_row,
}


def _fill_seq(rows: list[dict[str, Any]]) -> None:
    """Number contexts from documents written before ``seq`` existed."""
    next_seq = max((r["seq"] for r in rows if r["seq"] is not None), default=0) + 1
    for row in rows:
        if row["seq"] is None:
            row["seq"] = next_seq
            next_seq += 1


def restore_backup(store: MemoryStore, document: Any) -> RestoreResult:
    """Replace the store's contents with *document*.

    Validation happens first; an invalid document leaves the store untouched.
    Clearing and re-inserting share one transaction, so a failing insert
    rolls the whole restore back. Clearing contexts cascades their file
    associations away; they come back from the document when it carries
    them and are rebuilt from the contexts otherwise.
    """
    data = validate_backup(document)
    prepared = {key: [_ROW_BUILDERS[key](row) for row in rows] for key, rows in data.items()}
    _fill_seq(prepared["contexts"])

    with store.db.bulk_writer() as writer:
        writer.delete_where(ContextFile, "1 = 1", {})
        for key in reversed(BACKUP_DATA_KEYS):
            writer.delete_where(_TABLES[key], "1 = 1", {})
        for key in BACKUP_DATA_KEYS:
            writer.insert_many(_TABLES[key], prepared[key])
        if "context_files" in prepared:
            file_count = writer.insert_many(ContextFile, prepared["context_files"])
        else:
            file_count = migrate_context_files(writer.conn)

    result = RestoreResult(
        **{key: len(prepared[key]) for key in BACKUP_DATA_KEYS}, context_files=file_count
    )
    logger.info("backup_restored", **result.to_dict())
    return result
