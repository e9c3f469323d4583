"""SQLite persistence for profiles, pathway snapshots, ledgers, and feedback."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .ledger import rebuild
from .models import FeedbackRecord, LedgerState, Module, Transaction
from .pathway import ModuleGraph

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

FEEDBACK_VIEWS = ("all", "positive", "negative", "starred", "archived", "pending")
FEEDBACK_RATINGS = frozenset({"positive", "negative"})


@dataclass(frozen=True)
class Profile:
    """User profile record."""

    id: int
    name: str


@dataclass(frozen=True)
class StoredProgress:
    """Last committed snapshot for one profile."""

    graph: ModuleGraph
    ledger: LedgerState


@dataclass(frozen=True)
class FeedbackStats:
    """Counts shown in the feedback console header."""

    total: int
    positive: int
    negative: int
    pending: int


class ProgressStore:
    """Database access layer for learner progress."""

    def __init__(self, db_path: Path | str) -> None:
        """Initialize database and schema."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        # Autoplay video ticks commit from a timer thread; every write takes `_lock`.
        self._conn = sqlite3.connect(target, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            elif version == 2:
                self._migrate_to_v2()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now(UTC).isoformat()),
                )
            logger.info("Applied schema migration v%d", version)

    def _migrate_to_v1(self) -> None:
        """Create profile, pathway, and ledger tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS module_progress (
                    profile_id INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    module_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    icon_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    xp_reward INTEGER NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (profile_id, module_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS ledger_transactions (
                    profile_id INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    transaction_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    type TEXT NOT NULL,
                    resolution TEXT,
                    PRIMARY KEY (profile_id, transaction_id)
                )
                """)

    def _migrate_to_v2(self) -> None:
        """Add the admin feedback console table."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS feedback (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    user_prompt TEXT NOT NULL,
                    model_response TEXT NOT NULL,
                    rating TEXT NOT NULL,
                    comment TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'new'
                )
                """)

    def list_profiles(self) -> list[Profile]:
        """Return profiles ordered by name."""
        rows = self._conn.execute("SELECT id, name FROM profiles ORDER BY name").fetchall()
        return [Profile(id=int(row["id"]), name=str(row["name"])) for row in rows]

    def create_profile(self, name: str) -> Profile:
        """Create a new profile."""
        now = datetime.now(UTC).isoformat()
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO profiles (name, created_at) VALUES (?, ?)",
                (name, now),
            )
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Could not create profile.")
        return Profile(id=int(row_id), name=name)

    def get_profile(self, profile_id: int) -> Profile | None:
        """Get one profile by id."""
        row = self._conn.execute("SELECT id, name FROM profiles WHERE id = ?", (profile_id,)).fetchone()
        if row is None:
            return None
        return Profile(id=int(row["id"]), name=str(row["name"]))

    def delete_profile(self, profile_id: int) -> bool:
        """Delete profile and all associated progress data."""
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM ledger_transactions WHERE profile_id = ?", (profile_id,))
            self._conn.execute("DELETE FROM module_progress WHERE profile_id = ?", (profile_id,))
            cursor = self._conn.execute("DELETE FROM profiles WHERE id = ?", (profile_id,))
        return cursor.rowcount > 0

    def load_snapshot(self, profile_id: int) -> StoredProgress | None:
        """Return the last committed snapshot, or None when nothing was stored."""
        with self._lock:
            module_rows = self._conn.execute(
                """
                SELECT module_id, title, description, icon_type, status, xp_reward
                FROM module_progress
                WHERE profile_id = ?
                ORDER BY position ASC
                """,
                (profile_id,),
            ).fetchall()
            transaction_rows = self._conn.execute(
                """
                SELECT transaction_id, created_at, description, category, amount, type, resolution
                FROM ledger_transactions
                WHERE profile_id = ?
                ORDER BY position ASC
                """,
                (profile_id,),
            ).fetchall()
        if not module_rows and not transaction_rows:
            return None

        graph = ModuleGraph(
            modules=tuple(
                Module(
                    id=str(row["module_id"]),
                    title=str(row["title"]),
                    description=str(row["description"]),
                    icon_type=str(row["icon_type"]),
                    status=str(row["status"]),
                    xp_reward=int(row["xp_reward"]),
                )
                for row in module_rows
            )
        )
        transactions = tuple(
            Transaction(
                id=str(row["transaction_id"]),
                timestamp=str(row["created_at"]),
                description=str(row["description"]),
                category=str(row["category"]),
                amount=int(row["amount"]),
                type=str(row["type"]),
                resolution=str(row["resolution"]) if row["resolution"] is not None else None,
            )
            for row in transaction_rows
        )
        return StoredProgress(graph=graph, ledger=rebuild(transactions))

    def save_snapshot(self, profile_id: int, graph: ModuleGraph, ledger: LedgerState) -> None:
        """Replace the stored snapshot for one profile in a single transaction."""
        now = datetime.now(UTC).isoformat()
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM module_progress WHERE profile_id = ?", (profile_id,))
            self._conn.executemany(
                """
                INSERT INTO module_progress (
                    profile_id,
                    position,
                    module_id,
                    title,
                    description,
                    icon_type,
                    status,
                    xp_reward,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        profile_id,
                        position,
                        module.id,
                        module.title,
                        module.description,
                        module.icon_type,
                        module.status,
                        module.xp_reward,
                        now,
                    )
                    for position, module in enumerate(graph.modules)
                ],
            )
            self._conn.execute("DELETE FROM ledger_transactions WHERE profile_id = ?", (profile_id,))
            self._conn.executemany(
                """
                INSERT INTO ledger_transactions (
                    profile_id,
                    position,
                    transaction_id,
                    created_at,
                    description,
                    category,
                    amount,
                    type,
                    resolution
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        profile_id,
                        position,
                        item.id,
                        item.timestamp,
                        item.description,
                        item.category,
                        item.amount,
                        item.type,
                        item.resolution,
                    )
                    for position, item in enumerate(ledger.transactions)
                ],
            )

    def add_feedback(
        self,
        session_id: str,
        user_prompt: str,
        model_response: str,
        rating: str,
        comment: str = "",
    ) -> FeedbackRecord:
        """Record one rated model response."""
        if rating not in FEEDBACK_RATINGS:
            raise ValueError(f"Unknown feedback rating: {rating!r}")
        now = datetime.now(UTC).isoformat()
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO feedback (session_id, user_prompt, model_response, rating, comment, created_at, status)
                VALUES (?, ?, ?, ?, ?, ?, 'new')
                """,
                (session_id, user_prompt, model_response, rating, comment, now),
            )
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Could not record feedback.")
        record = self.get_feedback(int(row_id))
        if record is None:
            raise RuntimeError("Could not record feedback.")
        return record

    def get_feedback(self, feedback_id: int) -> FeedbackRecord | None:
        row = self._conn.execute("SELECT * FROM feedback WHERE id = ?", (feedback_id,)).fetchone()
        return _feedback_from_row(row) if row is not None else None

    def list_feedback(self, view: str = "all", search: str = "") -> list[FeedbackRecord]:
        """Return feedback newest first, filtered by console view and search text."""
        if view not in FEEDBACK_VIEWS:
            raise ValueError(f"Unknown feedback view: {view!r}")
        rows = self._conn.execute("SELECT * FROM feedback ORDER BY created_at DESC, id DESC").fetchall()
        needle = search.strip().lower()
        records: list[FeedbackRecord] = []
        for row in rows:
            record = _feedback_from_row(row)
            if needle and needle not in record.user_prompt.lower() and needle not in record.comment.lower():
                continue
            if _feedback_matches_view(record, view):
                records.append(record)
        return records

    def toggle_feedback_star(self, feedback_id: int) -> FeedbackRecord | None:
        return self._toggle_feedback_status(feedback_id, "starred")

    def toggle_feedback_archive(self, feedback_id: int) -> FeedbackRecord | None:
        return self._toggle_feedback_status(feedback_id, "archived")

    def _toggle_feedback_status(self, feedback_id: int, status: str) -> FeedbackRecord | None:
        """Flip between `status` and `new`."""
        record = self.get_feedback(feedback_id)
        if record is None:
            return None
        target = "new" if record.status == status else status
        with self._lock, self._conn:
            self._conn.execute("UPDATE feedback SET status = ? WHERE id = ?", (target, feedback_id))
        return self.get_feedback(feedback_id)

    def delete_feedback(self, feedback_id: int) -> bool:
        with self._lock, self._conn:
            cursor = self._conn.execute("DELETE FROM feedback WHERE id = ?", (feedback_id,))
        return cursor.rowcount > 0

    def feedback_stats(self) -> FeedbackStats:
        row = self._conn.execute("""
            SELECT
                COUNT(*) AS total,
                COALESCE(SUM(rating = 'positive'), 0) AS positive,
                COALESCE(SUM(rating = 'negative'), 0) AS negative,
                COALESCE(SUM(status = 'new'), 0) AS pending
            FROM feedback
            """).fetchone()
        return FeedbackStats(
            total=int(row["total"]),
            positive=int(row["positive"]),
            negative=int(row["negative"]),
            pending=int(row["pending"]),
        )

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass


def _feedback_from_row(row: sqlite3.Row) -> FeedbackRecord:
    return FeedbackRecord(
        id=int(row["id"]),
        session_id=str(row["session_id"]),
        user_prompt=str(row["user_prompt"]),
        model_response=str(row["model_response"]),
        rating=str(row["rating"]),
        comment=str(row["comment"]),
        timestamp=str(row["created_at"]),
        status=str(row["status"]),
    )


def _feedback_matches_view(record: FeedbackRecord, view: str) -> bool:
    if view == "archived":
        return record.status == "archived"
    if view == "starred":
        return record.status == "starred"
    if view == "pending":
        return record.status == "new"
    if record.status == "archived":
        return False
    if view in FEEDBACK_RATINGS:
        return record.rating == view
    return True
