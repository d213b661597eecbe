"""Additive schema evolution and one-time data migrations.

Runs on every open after ``create_all``. ``create_all`` only creates missing
tables, so columns introduced after a database file was first written are
added here with ``ALTER TABLE ... ADD COLUMN``. Every step logs and
continues on failure: a database that cannot be migrated is still usable
for everything the old schema supports.
"""

from __future__ import annotations

import json
import uuid
from typing import Any

import structlog
from sqlalchemy import Connection, Engine, text
from sqlalchemy.exc import SQLAlchemyError

from devmind.store.fts import create_fts, drop_stale_fts

logger = structlog.get_logger()

# (table, column, column DDL) added when missing, in order.
ADDITIVE_COLUMNS: tuple[tuple[str, str, str], ...] = (
    ("contexts", "seq", "INTEGER"),
    ("contexts", "quality_score", "REAL NOT NULL DEFAULT 0.5"),
    ("contexts", "embedding", "BLOB"),
    ("contexts", "embedding_text", "TEXT"),
    ("contexts", "embedding_version", "TEXT DEFAULT 'v1.0'"),
    ("contexts", "embedding_model", "TEXT"),
    ("contexts", "metadata", "TEXT NOT NULL DEFAULT '{}'"),
    ("sessions", "metadata", "TEXT NOT NULL DEFAULT '{}'"),
    ("projects", "metadata", "TEXT NOT NULL DEFAULT '{}'"),
)


def table_columns(conn: Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(text(f"PRAGMA table_info({table})"))}


def add_missing_columns(conn: Connection) -> list[str]:
    """Add every column in ADDITIVE_COLUMNS a table lacks.

    Returns:
        ``table.column`` names that were added.
    """
    added: list[str] = []
    cache: dict[str, set[str]] = {}
    for table, column, ddl in ADDITIVE_COLUMNS:
        if table not in cache:
            cache[table] = table_columns(conn, table)
        if column in cache[table]:
            continue
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
        cache[table].add(column)
        added.append(f"{table}.{column}")
        logger.info("schema_column_added", table=table, column=column)
    return added


def assign_context_seq(conn: Connection) -> int:
    """Give every context without one a unique ``seq`` and index the column.

    New values start above the current maximum, offset by rowid.

    Returns:
        Number of contexts that received a ``seq``.
    """
    base = conn.execute(text("SELECT COALESCE(MAX(seq), 0) FROM contexts")).scalar_one()
    assigned = conn.execute(
        text("UPDATE contexts SET seq = :base + rowid WHERE seq IS NULL"), {"base": base}
    ).rowcount
    conn.execute(text("CREATE UNIQUE INDEX IF NOT EXISTS ix_contexts_seq ON contexts (seq)"))
    return int(assigned)


def needs_context_files_migration(conn: Connection) -> bool:
    existing = conn.execute(text("SELECT COUNT(*) FROM context_files")).scalar_one()
    if existing:
        return False
    candidates = conn.execute(
        text(
            "SELECT COUNT(*) FROM contexts "
            "WHERE file_path IS NOT NULL OR metadata LIKE '%files_changed%'"
        )
    ).scalar_one()
    return candidates > 0


def _association_rows(
    context_id: str,
    file_path: str | None,
    raw_meta: str | None,
    created_at: Any,
) -> list[dict[str, Any]]:
    meta = json.loads(raw_meta or "{}")
    if not isinstance(meta, dict):
        meta = {}

    rows: list[dict[str, Any]] = []
    files_changed = meta.get("files_changed")
    if isinstance(files_changed, list):
        for entry in files_changed:
            if not isinstance(entry, dict) or not entry.get("file_path"):
                continue
            rows.append(
                {
                    "id": uuid.uuid4().hex,
                    "context_id": context_id,
                    "file_path": entry["file_path"],
                    "change_type": entry.get("change_type") or None,
                    "line_ranges": json.dumps(entry["line_ranges"]) if entry.get("line_ranges") else None,
                    "diff_stats": json.dumps(entry["diff_stats"]) if entry.get("diff_stats") else None,
                    "created_at": created_at,
                }
            )
    elif file_path:
        rows.append(
            {
                "id": uuid.uuid4().hex,
                "context_id": context_id,
                "file_path": file_path,
                "change_type": meta.get("change_type") or None,
                "line_ranges": None,
                "diff_stats": None,
                "created_at": created_at,
            }
        )
    return rows


def migrate_context_files(conn: Connection) -> int:
    """Flatten legacy file references into ``context_files`` rows.

    Sources, per context: ``metadata.files_changed`` entries that carry a
    ``file_path``; otherwise the context's own ``file_path`` with
    ``metadata.change_type``. A row that fails is logged and skipped.

    Returns:
        Number of association rows inserted.
    """
    insert = text(
        "INSERT INTO context_files "
        "(id, context_id, file_path, change_type, line_ranges, diff_stats, created_at) "
        "VALUES (:id, :context_id, :file_path, :change_type, :line_ranges, :diff_stats, :created_at)"
    )
    migrated = 0
    contexts = conn.execute(text("SELECT id, file_path, metadata, created_at FROM contexts")).all()
    for context_id, file_path, raw_meta, created_at in contexts:
        try:
            # A failed statement does not abort the surrounding SQLite transaction.
            for row in _association_rows(context_id, file_path, raw_meta, created_at):
                conn.execute(insert, row)
                migrated += 1
        except (ValueError, SQLAlchemyError) as e:
            logger.warning("migration_row_failed", context_id=context_id, error=str(e))
    return migrated


def migrate(engine: Engine) -> None:
    """Bring an opened database up to the current schema.

    Each step runs in its own transaction so one failure does not undo
    the others.
    """
    try:
        with engine.begin() as conn:
            add_missing_columns(conn)
    except SQLAlchemyError as e:
        logger.warning("schema_columns_failed", error=str(e))

    try:
        with engine.begin() as conn:
            if drop_stale_fts(conn):
                logger.info("fts_index_dropped", reason="rowid_keyed")
            assigned = assign_context_seq(conn)
            if assigned:
                logger.info("context_seq_assigned", rows=assigned)
            if create_fts(conn):
                logger.info("fts_index_created")
    except SQLAlchemyError as e:
        logger.warning("fts_setup_failed", error=str(e))

    try:
        with engine.begin() as conn:
            if needs_context_files_migration(conn):
                count = migrate_context_files(conn)
                logger.info("context_files_migrated", rows=count)
    except SQLAlchemyError as e:
        logger.warning("context_files_migration_failed", error=str(e))
