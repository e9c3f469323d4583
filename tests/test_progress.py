import sqlite3
import threading
from pathlib import Path

import pytest

from certpath import ledger
from certpath.models import LOCKED, LedgerState, Module
from certpath.pathway import ModuleGraph
from certpath.progress import SCHEMA_VERSION, ProgressStore


def _graph() -> ModuleGraph:
    modules = tuple(
        Module(id=f"m{i}", title=f"M{i}", description="d", icon_type="quiz", status=LOCKED, xp_reward=100)
        for i in range(1, 4)
    )
    return ModuleGraph.initial(modules)


def test_profiles_crud() -> None:
    store = ProgressStore(":memory:")
    bob = store.create_profile("bob")
    store.create_profile("alice")
    assert [profile.name for profile in store.list_profiles()] == ["alice", "bob"]
    assert store.get_profile(bob.id) == bob
    with pytest.raises(sqlite3.IntegrityError):
        store.create_profile("bob")


def test_migration_sets_user_version_and_schema_history() -> None:
    store = ProgressStore(":memory:")
    version = int(store._conn.execute("PRAGMA user_version").fetchone()[0])  # noqa: SLF001
    assert version == SCHEMA_VERSION
    rows = store._conn.execute("SELECT version FROM schema_migrations ORDER BY version").fetchall()  # noqa: SLF001
    assert [int(row["version"]) for row in rows] == [1, 2]


def test_newer_schema_is_refused(tmp_path: Path) -> None:
    db_path = tmp_path / "future.db"
    conn = sqlite3.connect(db_path)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
    conn.close()
    with pytest.raises(RuntimeError):
        ProgressStore(db_path)


def test_snapshot_round_trip_keeps_order(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "progress.db"
    store = ProgressStore(db_path)
    profile = store.create_profile("alice")
    assert store.load_snapshot(profile.id) is None

    graph = _graph().complete("m1").graph
    state, _ = ledger.grant(LedgerState(), 500, "Lesson", "Completed")
    state, pending = ledger.grant_pending(state, 25, "Drill", "Video Reps")
    state, _ = ledger.spend(state, 100, "Shop", "Badge")
    state, _ = ledger.resolve_pending(state, pending.id, "reject")
    store.save_snapshot(profile.id, graph, state)
    store.close()

    reopened = ProgressStore(db_path)
    stored = reopened.load_snapshot(profile.id)
    assert stored is not None
    assert stored.graph == graph
    assert stored.ledger == state
    reopened.close()


def test_save_snapshot_replaces_previous_rows() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("alice")
    state, _ = ledger.grant(LedgerState(), 10, "Drill", "a")
    store.save_snapshot(profile.id, _graph(), state)
    state, _ = ledger.grant(state, 20, "Drill", "b")
    store.save_snapshot(profile.id, _graph().complete("m1").graph, state)

    stored = store.load_snapshot(profile.id)
    assert stored is not None
    assert stored.ledger.balance == 30
    assert len(stored.ledger.transactions) == 2
    assert stored.graph.statuses() == ["completed", "active", "locked"]


def test_delete_profile_removes_snapshot() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("remove-me")
    state, _ = ledger.grant(LedgerState(), 10, "Drill", "a")
    store.save_snapshot(profile.id, _graph(), state)

    assert store.delete_profile(profile.id) is True
    assert store.get_profile(profile.id) is None
    assert store.load_snapshot(profile.id) is None
    assert store.delete_profile(profile.id) is False


def test_feedback_views_and_stats() -> None:
    store = ProgressStore(":memory:")
    good = store.add_feedback("s1", "How do I teach bunting?", "Square early.", "positive")
    bad = store.add_feedback("s2", "Best glove size?", "Any.", "negative", comment="too vague")
    store.add_feedback("s3", "Warmup routine?", "Jog.", "positive")

    assert {record.id for record in store.list_feedback("positive")} == {good.id, good.id + 2}
    assert [record.id for record in store.list_feedback("negative")] == [bad.id]
    assert [record.id for record in store.list_feedback(search="VAGUE")] == [bad.id]

    starred = store.toggle_feedback_star(good.id)
    assert starred is not None and starred.status == "starred"
    assert [record.id for record in store.list_feedback("starred")] == [good.id]

    archived = store.toggle_feedback_archive(bad.id)
    assert archived is not None and archived.status == "archived"
    assert bad.id not in {record.id for record in store.list_feedback("all")}
    assert [record.id for record in store.list_feedback("archived")] == [bad.id]

    stats = store.feedback_stats()
    assert (stats.total, stats.positive, stats.negative, stats.pending) == (3, 2, 1, 1)

    unstarred = store.toggle_feedback_star(good.id)
    assert unstarred is not None and unstarred.status == "new"


def test_feedback_validation_and_delete() -> None:
    store = ProgressStore(":memory:")
    with pytest.raises(ValueError):
        store.add_feedback("s1", "p", "r", "meh")
    with pytest.raises(ValueError):
        store.list_feedback("everything")
    record = store.add_feedback("s1", "p", "r", "negative")
    assert store.delete_feedback(record.id) is True
    assert store.delete_feedback(record.id) is False
    assert store.toggle_feedback_star(record.id) is None


def test_concurrent_snapshot_and_feedback_writes(tmp_path: Path) -> None:
    store = ProgressStore(tmp_path / "progress.db")
    profile = store.create_profile("alice")
    errors: list[BaseException] = []

    def _save_snapshots() -> None:
        try:
            state = LedgerState()
            for index in range(30):
                state, _ = ledger.grant(state, 1, "Drill", f"tick {index}")
                store.save_snapshot(profile.id, _graph(), state)
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    def _add_feedback() -> None:
        try:
            for index in range(30):
                store.add_feedback(f"s{index}", "prompt", "response", "positive")
                store.create_profile(f"coach-{index}")
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)

    threads = [threading.Thread(target=_save_snapshots), threading.Thread(target=_add_feedback)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    stored = store.load_snapshot(profile.id)
    assert stored is not None
    assert stored.ledger.balance == 30
    assert store.feedback_stats().total == 30
    assert len(store.list_profiles()) == 31
    store.close()
