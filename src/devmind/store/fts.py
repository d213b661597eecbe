"""FTS5 full-text index over contexts.

The index is an external-content table: it stores only the tokenized
postings and reads ``content``/``tags`` back from ``contexts`` by ``seq``,
a stable integer key. VACUUM may renumber implicit rowids, never ``seq``.
Triggers keep it in lockstep with every INSERT, UPDATE and DELETE on
``contexts``, including deletes fired by ON DELETE CASCADE, inside the
same transaction as the mutation.
"""

from __future__ import annotations

import re

from sqlalchemy import Connection, text

from devmind.config.constants import FTS_OPERATOR_CHARS

FTS_TABLE = "contexts_fts"

MATCH_ALL = "*"
"""Sentinel returned by sanitize_query when nothing searchable is left."""

_OPERATOR_RE = re.compile(FTS_OPERATOR_CHARS)
_WHITESPACE_RE = re.compile(r"\s+")
_NON_WORD_RE = re.compile(r"[^a-zA-Z0-9\u4e00-\u9fa5_]")

_STALE_KEY = "content_rowid='rowid'"
_TRIGGERS = ("contexts_fts_ai", "contexts_fts_ad", "contexts_fts_au")

_DDL = (
    f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(
        id UNINDEXED,
        content,
        tags,
        content='contexts',
        content_rowid='seq'
    )
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS contexts_fts_ai AFTER INSERT ON contexts BEGIN
        INSERT INTO {FTS_TABLE}(rowid, id, content, tags)
        VALUES (new.seq, new.id, new.content, new.tags);
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS contexts_fts_ad AFTER DELETE ON contexts BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, id, content, tags)
        VALUES ('delete', old.seq, old.id, old.content, old.tags);
    END
    """,
    f"""
    CREATE TRIGGER IF NOT EXISTS contexts_fts_au AFTER UPDATE ON contexts BEGIN
        INSERT INTO {FTS_TABLE}({FTS_TABLE}, rowid, id, content, tags)
        VALUES ('delete', old.seq, old.id, old.content, old.tags);
        INSERT INTO {FTS_TABLE}(rowid, id, content, tags)
        VALUES (new.seq, new.id, new.content, new.tags);
    END
    """,
)


def fts_exists(conn: Connection) -> bool:
    row = conn.execute(
        text("SELECT name FROM sqlite_master WHERE type = 'table' AND name = :name"),
        {"name": FTS_TABLE},
    ).first()
    return row is not None


def drop_stale_fts(conn: Connection) -> bool:
    """Drop an index keyed on implicit rowids, as written by older releases."""
    row = conn.execute(
        text("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"),
        {"name": FTS_TABLE},
    ).first()
    if row is None or _STALE_KEY not in (row[0] or ""):
        return False
    for trigger in _TRIGGERS:
        conn.execute(text(f"DROP TRIGGER IF EXISTS {trigger}"))
    conn.execute(text(f"DROP TABLE {FTS_TABLE}"))
    return True


def create_fts(conn: Connection) -> bool:
    """Create the FTS table and its triggers if absent.

    Returns True when the table was newly created, in which case it is
    populated from existing contexts. Every context must already carry a
    ``seq``.
    """
    created = not fts_exists(conn)
    for statement in _DDL:
        conn.execute(text(statement))
    if created:
        rebuild_fts(conn)
    return created


def rebuild_fts(conn: Connection) -> None:
    """Re-derive the whole index from ``contexts``."""
    conn.execute(text(f"INSERT INTO {FTS_TABLE}({FTS_TABLE}) VALUES ('rebuild')"))


def sanitize_query(query: str | None) -> str:
    """Strip FTS5 operator syntax from a free-text query.

    Returns MATCH_ALL when nothing searchable remains; callers treat that as
    "no text filter" and fall back to a recency listing.
    """
    if not query or not query.strip():
        return MATCH_ALL

    sanitized = _WHITESPACE_RE.sub(" ", _OPERATOR_RE.sub(" ", query)).strip()
    if not sanitized:
        sanitized = _WHITESPACE_RE.sub(" ", _NON_WORD_RE.sub(" ", query)).strip()
    return sanitized or MATCH_ALL
