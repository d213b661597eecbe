"""Tests for MemoryStore CRUD, dedup-on-write and cascades."""

from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy import text

from devmind.config.constants import INDEXER_TOOL_NAME
from devmind.core.errors import StoreError
from devmind.store import (
    FeedbackAction,
    MemoryStore,
    ParameterType,
    Project,
    RelationType,
    Session,
    SessionStatus,
    normalize_tags,
)

DAY = 86400.0


def _count(store: MemoryStore, table: str) -> int:
    return int(store.db.execute_raw(f"SELECT COUNT(*) FROM {table}")[0][0])


class TestNormalizeTags:
    """Tag normalization."""

    @pytest.mark.parametrize(
        ("tags", "expected"),
        [
            (None, ""),
            ("b, a,,a ", "a,b"),
            (["perf", " cache ", "perf"], "cache,perf"),
            ([], ""),
        ],
    )
    def test_normalizes(self, tags: Any, expected: str) -> None:
        assert normalize_tags(tags) == expected


class TestProjects:
    """Project lifecycle."""

    def test_get_or_create_is_idempotent_by_path(self, store: MemoryStore) -> None:
        """The same path always maps to one project."""
        first = store.get_or_create_project("/work/app")
        second = store.get_or_create_project("/work/app")

        assert first.id == second.id
        assert first.name == "app"
        assert len(store.list_projects()) == 1

    def test_get_or_create_touches_last_accessed(self, store: MemoryStore, clock: Any) -> None:
        """Re-opening a project refreshes last_accessed."""
        created = store.get_or_create_project("/work/app")
        clock.advance(60)

        reopened = store.get_or_create_project("/work/app")

        assert reopened.last_accessed == created.last_accessed + 60

    def test_empty_projects_listed(self, store: MemoryStore, session: Session) -> None:
        """Projects owning no contexts are reported with their session counts."""
        store.create_context(session.id, "code", "def f(): pass")
        empty = store.get_or_create_project("/work/empty")
        store.create_session(empty.id, "s1")

        result = store.get_empty_projects()

        assert [e.project.id for e in result] == [empty.id]
        assert result[0].session_count == 1


class TestSessions:
    """Session lifecycle."""

    def test_create_requires_project(self, store: MemoryStore) -> None:
        with pytest.raises(StoreError):
            store.create_session("missing", "orphan")

    def test_invalid_status_rejected(self, store: MemoryStore, project: Project) -> None:
        with pytest.raises(StoreError):
            store.create_session(project.id, "s", status="archived")

    def test_end_and_reactivate(self, store: MemoryStore, session: Session, clock: Any) -> None:
        """Ending stamps ended_at; reactivating clears it."""
        clock.advance(10)
        assert store.end_session(session.id)
        ended = store.get_session(session.id)
        assert ended is not None
        assert ended.status == SessionStatus.COMPLETED.value
        assert ended.ended_at == clock.now

        assert store.reactivate_session(session.id)
        active = store.get_session(session.id)
        assert active is not None
        assert active.status == SessionStatus.ACTIVE.value
        assert active.ended_at is None

    def test_active_sessions_filtered_by_project(self, store: MemoryStore, session: Session) -> None:
        other = store.get_or_create_project("/work/other")
        store.create_session(other.id, "elsewhere")
        assert [s.id for s in store.get_active_sessions(session.project_id)] == [session.id]

    def test_update_with_nothing_returns_false(self, store: MemoryStore, session: Session) -> None:
        assert store.update_session(session.id) is False
        assert store.update_session(session.id, name="renamed") is True
        renamed = store.get_session(session.id)
        assert renamed is not None
        assert renamed.name == "renamed"

    def test_main_session_is_earliest(self, store: MemoryStore, session: Session, clock: Any) -> None:
        clock.advance(5)
        store.create_session(session.project_id, "later")
        main = store.get_project_main_session(session.project_id)
        assert main is not None
        assert main.id == session.id

    def test_indexing_session_is_singleton(self, store: MemoryStore, project: Project) -> None:
        """One active indexer session per project."""
        first = store.get_or_create_indexing_session(project.id)
        second = store.get_or_create_indexing_session(project.id)

        assert first.id == second.id
        assert first.tool_used == INDEXER_TOOL_NAME


class TestCreateContext:
    """Context creation and validation."""

    def test_round_trip(self, store: MemoryStore, session: Session) -> None:
        """Created fields read back unchanged."""
        context_id = store.create_context(
            session.id,
            "bug_fix",
            "fixed race in cache",
            file_path="src/cache.py",
            line_start=10,
            line_end=20,
            language="python",
            tags=["cache", "race", "cache"],
            quality_score=0.8,
            metadata={"change_type": "modify"},
        )

        context = store.get_context(context_id)
        assert context is not None
        assert context.type == "bug_fix"
        assert context.tags == "cache,race"
        assert context.quality_score == 0.8
        assert context.meta == {"change_type": "modify"}
        assert context.embedding_version == "v1.0"

    def test_file_path_creates_association(self, store: MemoryStore, session: Session) -> None:
        """file_path and extra files become context_files rows, deduplicated by path."""
        context_id = store.create_context(
            session.id,
            "code_modify",
            "tweak",
            file_path="a.py",
            line_start=1,
            line_end=3,
            metadata={"change_type": "modify"},
            files=[
                {"file_path": "a.py", "change_type": "add"},
                {"file_path": "b.py", "change_type": "bogus", "diff_stats": {"additions": 2}},
            ],
        )

        files = store.list_context_files(context_id)
        assert [(f.file_path, f.change_type) for f in files] == [("a.py", "modify"), ("b.py", None)]
        assert files[0].line_ranges == "[[1, 3]]"

    @pytest.mark.parametrize(
        ("kwargs", "field"),
        [
            ({"type": "nonsense", "content": "x"}, "type"),
            ({"type": "code", "content": "   "}, "content"),
            ({"type": "code", "content": "x", "quality_score": 1.5}, "quality_score"),
        ],
    )
    def test_invalid_input_rejected(
        self, store: MemoryStore, session: Session, kwargs: dict[str, Any], field: str
    ) -> None:
        with pytest.raises(StoreError) as exc_info:
            store.create_context(session.id, **kwargs)
        assert exc_info.value.details["field"] == field

    def test_unknown_session_rejected(self, store: MemoryStore) -> None:
        with pytest.raises(StoreError):
            store.create_context("missing", "code", "x")

    def test_default_quality_score(self, store: MemoryStore, session: Session) -> None:
        context = store.get_context(store.create_context(session.id, "code", "x = 1"))
        assert context is not None
        assert context.quality_score == 0.5


class TestDedupOnWrite:
    """Identical writes inside the window collapse."""

    def test_identical_write_within_window_returns_same_id(
        self, store: MemoryStore, session: Session, clock: Any
    ) -> None:
        first = store.create_context(session.id, "code", "print('hi')")
        clock.advance(3)
        second = store.create_context(session.id, "code", "print('hi')")

        assert first == second
        assert _count(store, "contexts") == 1

    def test_identical_write_after_window_inserts(
        self, store: MemoryStore, session: Session, clock: Any
    ) -> None:
        first = store.create_context(session.id, "code", "print('hi')")
        clock.advance(6)
        second = store.create_context(session.id, "code", "print('hi')")

        assert first != second
        assert _count(store, "contexts") == 2

    def test_different_type_is_not_a_duplicate(self, store: MemoryStore, session: Session) -> None:
        first = store.create_context(session.id, "code", "same")
        second = store.create_context(session.id, "test", "same")
        assert first != second

    def test_other_session_is_not_a_duplicate(
        self, store: MemoryStore, session: Session, project: Project
    ) -> None:
        other = store.create_session(project.id, "other")
        first = store.create_context(session.id, "code", "same")
        second = store.create_context(other.id, "code", "same")
        assert first != second


class TestUpdateAndDelete:
    """Mutation and cascades."""

    def test_update_fields(self, store: MemoryStore, session: Session) -> None:
        context_id = store.create_context(session.id, "code", "old")
        assert store.update_context(context_id, content="new", tags="b,a", quality_score=0.9)

        context = store.get_context(context_id)
        assert context is not None
        assert (context.content, context.tags, context.quality_score) == ("new", "a,b", 0.9)

    def test_update_nothing_or_missing(self, store: MemoryStore, session: Session) -> None:
        context_id = store.create_context(session.id, "code", "x")
        assert store.update_context(context_id) is False
        assert store.update_context("missing", content="y") is False

    def test_delete_context_cascades_edges(self, store: MemoryStore, session: Session) -> None:
        """Relationships, file rows and feedback go with the context."""
        a = store.create_context(session.id, "code", "a", file_path="a.py")
        b = store.create_context(session.id, "code", "b")
        store.create_relationship(a, b, RelationType.DEPENDS_ON)
        store.record_feedback(a, FeedbackAction.ACCEPTED)

        assert store.delete_context(a)

        assert _count(store, "relationships") == 0
        assert _count(store, "context_files") == 0
        assert _count(store, "user_feedback") == 0
        assert store.get_context(b) is not None

    def test_delete_project_cascades(self, store: MemoryStore, session: Session, project: Project) -> None:
        """Deleting a project removes sessions and contexts and reports counts."""
        store.create_context(session.id, "code", "a")
        store.create_context(session.id, "code", "b")

        summary = store.delete_project(project.id)

        assert (summary.deleted_projects, summary.deleted_sessions, summary.deleted_contexts) == (1, 1, 2)
        assert _count(store, "sessions") == 0
        assert _count(store, "contexts") == 0

    def test_delete_batch_counts_existing(self, store: MemoryStore, session: Session) -> None:
        a = store.create_context(session.id, "code", "a")
        b = store.create_context(session.id, "code", "b")
        assert store.delete_contexts_batch([a, b, "missing"]) == 2
        assert store.delete_contexts_batch([]) == 0

    def test_delete_session_cascades(self, store: MemoryStore, session: Session) -> None:
        store.create_context(session.id, "code", "a")
        assert store.delete_session(session.id)
        assert _count(store, "contexts") == 0


class TestRelationships:
    """Typed, weighted edges."""

    def test_default_strength_by_type(self, store: MemoryStore, session: Session) -> None:
        a = store.create_context(session.id, "code", "a")
        b = store.create_context(session.id, "code", "b")
        store.create_relationship(a, b, "fixes")

        edge = store.list_relationships(a)[0]
        assert edge.strength == RelationType.FIXES.default_strength

    def test_same_edge_is_replaced(self, store: MemoryStore, session: Session) -> None:
        """(from, to, type) is unique; a repeat updates strength."""
        a = store.create_context(session.id, "code", "a")
        b = store.create_context(session.id, "code", "b")
        first = store.create_relationship(a, b, "related_to", 0.2)
        second = store.create_relationship(a, b, "related_to", 0.7)

        assert first == second
        edges = store.list_relationships()
        assert len(edges) == 1
        assert edges[0].strength == 0.7

    def test_strength_out_of_range(self, store: MemoryStore, session: Session) -> None:
        a = store.create_context(session.id, "code", "a")
        b = store.create_context(session.id, "code", "b")
        with pytest.raises(StoreError):
            store.create_relationship(a, b, "related_to", 1.2)

    def test_missing_endpoint(self, store: MemoryStore, session: Session) -> None:
        a = store.create_context(session.id, "code", "a")
        with pytest.raises(StoreError):
            store.create_relationship(a, "missing", "related_to")

    def test_related_strongest_first(self, store: MemoryStore, session: Session) -> None:
        a = store.create_context(session.id, "code", "a")
        b = store.create_context(session.id, "code", "b")
        c = store.create_context(session.id, "code", "c")
        store.create_relationship(a, b, "related_to", 0.3)
        store.create_relationship(a, c, "depends_on", 0.9)

        assert [x.id for x in store.get_related_contexts(a)] == [c, b]
        assert [x.id for x in store.get_related_contexts(a, "related_to")] == [b]


class TestFileIndex:
    """Codebase snapshot rows."""

    def test_upsert_by_relative_path(self, store: MemoryStore, project: Project) -> None:
        """Re-indexing a path updates the existing row."""
        first = store.add_file_to_index(project.id, None, {"relative_path": "src/a.py", "content": "x"})
        second = store.add_file_to_index(project.id, None, {"relative_path": "src/a.py", "content": "y = 2"})

        files = store.get_project_index_files(project.id)
        assert first == second
        assert len(files) == 1
        assert files[0].content == "y = 2"
        assert files[0].file_type == "py"

    def test_delete_project_index(self, store: MemoryStore, project: Project) -> None:
        indexer = store.get_or_create_indexing_session(project.id)
        store.add_file_to_index(project.id, indexer.id, {"relative_path": "a.py", "content": "x"})

        summary = store.delete_project_index(project.id)

        assert (summary.deleted_files, summary.deleted_sessions) == (1, 1)


class TestParametersAndFeedback:
    """Learning parameters and the feedback log."""

    def test_set_parameter_keeps_previous(self, store: MemoryStore, clock: Any) -> None:
        store.set_parameter(ParameterType.THRESHOLD, "high", 80, "initial")
        clock.advance(1)
        updated = store.set_parameter("threshold", "high", 75, "lowered")

        assert updated.parameter_value == 75
        assert updated.previous_value == 80
        assert updated.update_reason == "lowered"
        assert len(store.list_parameters(ParameterType.THRESHOLD)) == 1

    def test_invalid_parameter_type(self, store: MemoryStore) -> None:
        with pytest.raises(StoreError):
            store.set_parameter("bias", "x", 1.0)

    def test_feedback_stats(self, store: MemoryStore, session: Session) -> None:
        context_id = store.create_context(session.id, "code", "a")
        store.record_feedback(context_id, "accepted", process_type="bug_fix")
        store.record_feedback(context_id, "accepted", process_type="bug_fix")
        store.record_feedback(context_id, "rejected", process_type="refactoring")
        store.record_feedback(context_id, "modified")

        stats = store.feedback_stats()
        assert (stats.total, stats.accepted, stats.rejected, stats.modified) == (4, 2, 1, 1)
        assert stats.acceptance_rate == 0.5

        by_type = {s.process_type: s for s in store.process_type_stats()}
        assert by_type["bug_fix"].acceptance_rate == 1.0
        assert by_type["refactoring"].total == 1

    def test_feedback_requires_context(self, store: MemoryStore) -> None:
        with pytest.raises(StoreError):
            store.record_feedback("missing", "accepted")


class TestStatsAndQuality:
    """Counters and derived metrics."""

    def test_get_stats(self, store: MemoryStore, session: Session) -> None:
        store.create_context(session.id, "code", "a")
        stats = store.get_stats()
        assert (stats.total_projects, stats.total_sessions, stats.total_contexts, stats.active_sessions) == (
            1,
            1,
            1,
            1,
        )

    def test_usage_counters_feed_metrics(self, store: MemoryStore, session: Session) -> None:
        context_id = store.create_context(session.id, "code", "a")
        store.increment_context_reference(context_id)
        store.record_context_search(context_id)

        metrics = store.refresh_quality_metrics(context_id)

        assert (metrics.reference_count, metrics.search_count) == (1, 1)
        context = store.get_context(context_id)
        assert context is not None
        assert context.meta["quality_metrics"]["overall"] == metrics.overall

    def test_metrics_for_missing_context(self, store: MemoryStore) -> None:
        with pytest.raises(StoreError):
            store.get_quality_metrics("missing")

    def test_low_quality_contexts(self, store: MemoryStore, session: Session, clock: Any) -> None:
        old_low = store.create_context(session.id, "code", "old low", quality_score=0.1)
        store.create_context(session.id, "code", "old high", quality_score=0.9)
        clock.advance(40 * DAY)
        store.create_context(session.id, "code", "new low", quality_score=0.1)

        assert [c.id for c in store.get_low_quality_contexts(session.project_id)] == [old_low]

    def test_find_duplicates_keeps_best_copy(
        self, store: MemoryStore, session: Session, project: Project
    ) -> None:
        other = store.create_session(project.id, "other")
        keep = store.create_context(session.id, "code", "same text", quality_score=0.9)
        drop = store.create_context(other.id, "code", "same text", quality_score=0.2)

        duplicates = [c.id for c in store.find_duplicate_contexts(project.id)]

        assert duplicates == [drop]
        assert keep not in duplicates


class TestContextManager:
    def test_close_on_exit(self, tmp_path: Any) -> None:
        with MemoryStore(tmp_path / "m.db", start_maintenance=False) as memory:
            memory.get_or_create_project("/x")
        with memory.db.engine.connect() as conn:
            assert conn.execute(text("SELECT COUNT(*) FROM projects")).scalar_one() == 1
