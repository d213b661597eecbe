"""Database engine and bulk writer.

This module provides:
- Database: Connection manager with WAL mode and foreign keys enforced
- BulkWriter: Core-SQL bulk inserts/upserts for restore and file indexing
- Session utilities for ORM and serializable transactions

The hybrid pattern:
- Use ORM sessions for single-row reads and writes (projects, sessions)
- Use immediate_transaction where a read decides a write (dedup-on-write)
- Use BulkWriter for high-volume operations (restore, index snapshots)
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import event, text
from sqlmodel import Session, SQLModel, create_engine

from devmind.config.models import DatabaseConfig

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()


class Database:
    """
    Database connection manager with WAL mode and hybrid access patterns.

    Configures SQLite for a single writer with background compaction:
    - WAL mode so readers never block on the maintenance worker
    - Configurable busy timeout to handle contention with VACUUM
    - Foreign keys enabled so cascades fire at the storage level

    Usage::

        db = Database(Path("memory.db"))
        db.create_all()

        # ORM access
        with db.session() as session:
            project = session.get(Project, project_id)

        # Read-then-write under a RESERVED lock
        with db.immediate_transaction() as session:
            existing = session.exec(select(Context).where(...)).first()
            if existing is None:
                session.add(Context(...))

        # Bulk access
        with db.bulk_writer() as writer:
            writer.insert_many(Context, rows)
    """

    def __init__(self, db_path: Path, config: DatabaseConfig | None = None) -> None:
        """Initialize database with path to SQLite file."""
        self.db_path = db_path
        self.config = config or DatabaseConfig()
        self.engine = self._create_engine()

    def _create_engine(self) -> Engine:
        """Create SQLAlchemy engine with proper configuration."""
        engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        busy_timeout_ms = self.config.busy_timeout_ms
        cache_size_kb = self.config.cache_size_kb

        def _on_connect(dbapi_conn: Any, connection_record: Any) -> None:
            _configure_pragmas(dbapi_conn, connection_record, busy_timeout_ms, cache_size_kb)

        event.listen(engine, "connect", _on_connect)
        return engine

    def create_all(self) -> None:
        """Create all tables from SQLModel metadata."""
        SQLModel.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session for low-volume operations."""
        with Session(self.engine, expire_on_commit=False) as session:
            yield session

    @contextmanager
    def immediate_transaction(self) -> Generator[Session, None, None]:
        """
        Session with BEGIN IMMEDIATE for serializable writes.

        BEGIN IMMEDIATE acquires a RESERVED lock immediately, blocking
        other writers but allowing readers. Use it whenever a read decides
        whether a write happens.

        The session auto-commits on successful exit and rolls back
        on exception.
        """
        with Session(self.engine, expire_on_commit=False) as session:
            session.execute(text("BEGIN IMMEDIATE"))
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    @contextmanager
    def bulk_writer(self) -> Generator[BulkWriter, None, None]:
        """
        Bulk writer for high-volume inserts.

        Auto-commits on successful exit, rolls back on exception.
        """
        writer = BulkWriter(self.engine)
        try:
            yield writer
            writer.commit()
        except Exception:
            writer.rollback()
            raise
        finally:
            writer.close()

    def execute_raw(self, sql: str, params: dict[str, Any] | None = None) -> list[Any]:
        """Execute raw SQL and return all rows (empty for statements)."""
        with self.engine.connect() as conn:
            result = conn.execute(text(sql), params or {})
            rows = list(result) if result.returns_rows else []
            conn.commit()
            return rows

    def vacuum(self) -> None:
        """Run VACUUM outside any transaction."""
        with self.engine.connect().execution_options(isolation_level="AUTOCOMMIT") as conn:
            conn.execute(text("VACUUM"))
        logger.debug("database_vacuumed", path=str(self.db_path))

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()


def _configure_pragmas(
    dbapi_conn: Any,
    _connection_record: Any,
    busy_timeout_ms: int = 30000,
    cache_size_kb: int = 64000,
) -> None:
    """Configure SQLite for concurrent access and referential integrity."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute(f"PRAGMA cache_size=-{int(cache_size_kb)}")
    cursor.close()


class BulkWriter:
    """
    High-volume writes using Core SQL.

    Bypasses ORM object instantiation for restore and index snapshots.
    Uses SQLModel table metadata to avoid hardcoded table names.

    Example::

        with db.bulk_writer() as writer:
            writer.delete_where(Relationship, "1 = 1", {})
            writer.insert_many(Context, context_rows)
    """

    def __init__(self, engine: Engine) -> None:
        """Initialize bulk writer with database engine."""
        self.engine = engine
        self.conn = engine.connect()
        self.transaction = self.conn.begin()

    def insert_many(self, model_class: type[SQLModel], records: list[dict[str, Any]]) -> int:
        """
        Bulk insert records into table defined by model_class.

        Args:
            model_class: SQLModel class (e.g., Context, Relationship)
            records: List of dicts keyed by column name

        Returns:
            Number of records inserted
        """
        if not records:
            return 0

        table = model_class.__table__  # type: ignore[attr-defined]
        self.conn.execute(table.insert(), records)
        return len(records)

    def upsert_many(
        self,
        model_class: type[SQLModel],
        records: list[dict[str, Any]],
        conflict_columns: list[str],
        update_columns: list[str],
    ) -> int:
        """
        Bulk upsert (insert or update on conflict).

        Args:
            model_class: SQLModel class
            records: List of dicts keyed by column name
            conflict_columns: Columns that define uniqueness
            update_columns: Columns to update on conflict

        Returns:
            Number of records processed
        """
        if not records:
            return 0

        table = model_class.__table__  # type: ignore[attr-defined]

        conflict_cols = ", ".join(conflict_columns)
        update_sets = ", ".join(f"{col} = excluded.{col}" for col in update_columns)

        columns = list(records[0].keys())
        col_names = ", ".join(columns)
        placeholders = ", ".join(f":{col}" for col in columns)

        sql = f"""
            INSERT INTO {table.name} ({col_names})
            VALUES ({placeholders})
            ON CONFLICT ({conflict_cols})
            DO UPDATE SET {update_sets}
        """

        for record in records:
            self.conn.execute(text(sql), record)

        return len(records)

    def delete_where(
        self,
        model_class: type[SQLModel],
        condition: str,
        params: dict[str, Any],
    ) -> int:
        """
        Bulk delete with condition.

        Returns:
            Number of rows affected
        """
        table = model_class.__table__  # type: ignore[attr-defined]
        sql = f"DELETE FROM {table.name} WHERE {condition}"
        result = self.conn.execute(text(sql), params)
        return int(result.rowcount)

    def commit(self) -> None:
        """Commit the current transaction."""
        self.transaction.commit()

    def rollback(self) -> None:
        """Rollback the current transaction."""
        self.transaction.rollback()

    def close(self) -> None:
        """Close the connection."""
        self.conn.close()
