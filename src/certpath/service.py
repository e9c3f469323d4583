"""Application service for profiles, pathway progression, and the currency ledger."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import cast

from . import __version__
from . import ledger as ledger_ops
from .config import EngineConfig
from .content_loader import Catalog, load_catalog
from .errors import ConfigurationError, InsufficientFunds, InvalidAmount, InvalidTransition, PersistenceFailure
from .models import (
    APPROVE,
    ICON_VIDEO,
    LOCKED,
    FeedbackRecord,
    LedgerState,
    Module,
    TierStatus,
    Transaction,
)
from .pathway import ModuleGraph
from .progress import SCHEMA_VERSION, FeedbackStats, Profile, ProgressStore
from .quiz import QuizAttempt, QuizResult
from .snapshot import graph_from_dict, graph_to_dict, ledger_from_dict, ledger_to_dict
from .video import VideoGate, VideoTicker

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 1
COMPLETION_CATEGORY = "Lesson"


@dataclass(frozen=True)
class Interaction:
    """Whether a module may be opened right now, and why not."""

    allowed: bool
    reason: str = ""


@dataclass(frozen=True)
class EngineEvent:
    """Discrete state change for presentation layers to react to."""

    kind: str
    profile_id: int
    module_id: str | None = None
    amount: int = 0
    detail: str = ""


@dataclass(frozen=True)
class CompletionOutcome:
    """Effect of one completion request."""

    module_id: str
    completed: bool
    unlocked_id: str | None
    granted: int
    transaction: Transaction | None


@dataclass(frozen=True)
class QuizOutcome:
    """Scored quiz plus the completion it triggered, if it passed."""

    result: QuizResult
    completion: CompletionOutcome | None


@dataclass(frozen=True)
class ProfileTransferSummary:
    """Summary emitted by profile export/import operations."""

    profile_id: int
    profile_name: str
    module_rows: int
    transaction_rows: int


EventListener = Callable[[EngineEvent], None]


class ProgressionSession:
    """Owns one profile's module graph and ledger.

    Every event is handled under the session lock. New state is computed from
    the current state, written to the store, and only then made visible; if
    the write fails the previous state stays the state of record.
    """

    def __init__(
        self,
        profile_id: int,
        catalog: Catalog,
        store: ProgressStore,
        config: EngineConfig,
        listeners: list[EventListener] | None = None,
    ) -> None:
        self.profile_id = profile_id
        self.catalog = catalog
        self.config = config
        self._store = store
        self._listeners: list[EventListener] = list(listeners or [])
        self._lock = threading.RLock()
        self._override = False
        self._quiz: QuizAttempt | None = None
        self._quiz_module_id: str | None = None
        self._video: VideoGate | None = None
        self._video_module_id: str | None = None
        self._ticker: VideoTicker | None = None

        stored = store.load_snapshot(profile_id)
        if stored is None:
            self._graph = ModuleGraph.initial(catalog.modules)
            self._ledger = LedgerState()
        else:
            self._graph = stored.graph.merged_with(catalog.modules)
            self._ledger = stored.ledger

    # -- read models -------------------------------------------------------

    @property
    def graph(self) -> ModuleGraph:
        return self._graph

    def modules(self) -> list[Module]:
        """Return modules in pathway order with current statuses."""
        return list(self._graph.modules)

    def ledger(self) -> LedgerState:
        return self._ledger

    def tier(self) -> TierStatus:
        return ledger_ops.tier_status(self._ledger.lifetime_earned, self.config.tiers)

    @property
    def override_enabled(self) -> bool:
        return self._override

    @property
    def quiz_attempt(self) -> QuizAttempt | None:
        return self._quiz

    @property
    def video_gate(self) -> VideoGate | None:
        return self._video

    def add_listener(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    # -- override ----------------------------------------------------------

    def set_override(self, enabled: bool) -> None:
        """Permit or forbid interaction with locked modules; statuses are untouched."""
        with self._lock:
            self._override = bool(enabled)
            logger.info("Profile %s admin override %s", self.profile_id, "on" if self._override else "off")

    def toggle_override(self, enabled: bool | None = None) -> bool:
        with self._lock:
            self.set_override(not self._override if enabled is None else enabled)
            return self._override

    def unlock_all(self) -> None:
        self.set_override(True)

    # -- progression -------------------------------------------------------

    def attempt_interact(self, module_id: str) -> Interaction:
        """Return whether the module may be opened."""
        with self._lock:
            module = self._graph.get(module_id)
            if module_id in self.catalog.blocked:
                return Interaction(allowed=False, reason="blocked")
            if module.status == LOCKED and not self._override:
                return Interaction(allowed=False, reason="locked")
            return Interaction(allowed=True)

    def complete_module(self, module_id: str, reward_xp: int) -> CompletionOutcome:
        """Complete a module, unlock its successor, and grant the reward.

        Already-completed modules are a no-op. Locked modules are rejected
        unless the admin override is on.
        """
        if reward_xp < 0:
            raise ValueError(f"reward_xp must be non-negative, got {reward_xp}.")
        with self._lock:
            try:
                completion = self._graph.complete(module_id, allow_locked=self._override)
            except InvalidTransition:
                logger.warning("Profile %s rejected completion of locked module %s", self.profile_id, module_id)
                raise
            if not completion.changed:
                return CompletionOutcome(
                    module_id=module_id, completed=False, unlocked_id=None, granted=0, transaction=None
                )

            new_ledger = self._ledger
            transaction: Transaction | None = None
            events = [EngineEvent(kind="module_completed", profile_id=self.profile_id, module_id=module_id)]
            if completion.unlocked is not None:
                events.append(
                    EngineEvent(kind="module_unlocked", profile_id=self.profile_id, module_id=completion.unlocked.id)
                )
            if reward_xp > 0:
                title = completion.graph.get(module_id).title
                new_ledger, transaction = ledger_ops.grant(
                    self._ledger, reward_xp, COMPLETION_CATEGORY, f'Completed "{title}"'
                )
                events.append(
                    EngineEvent(kind="xp_granted", profile_id=self.profile_id, module_id=module_id, amount=reward_xp)
                )
            self._commit(completion.graph, new_ledger, events)
            logger.info("Profile %s completed %s (+%d)", self.profile_id, module_id, reward_xp)
            return CompletionOutcome(
                module_id=module_id,
                completed=True,
                unlocked_id=completion.unlocked.id if completion.unlocked is not None else None,
                granted=reward_xp,
                transaction=transaction,
            )

    def claim_module(self, module_id: str) -> CompletionOutcome:
        """Directly claim a module that has no quiz or video to pass."""
        with self._lock:
            module = self._graph.get(module_id)
            if self.catalog.quiz_for(module_id) is not None or module_id in self.catalog.blocked:
                raise InvalidTransition(f"Module '{module_id}' is completed by passing its quiz.")
            if module.icon_type == ICON_VIDEO:
                raise InvalidTransition(f"Module '{module_id}' is completed by watching its video.")
            return self.complete_module(module_id, module.xp_reward)

    # -- quiz --------------------------------------------------------------

    def start_quiz(self, module_id: str) -> QuizAttempt:
        """Open a fresh attempt for a module's quiz, discarding any previous one."""
        with self._lock:
            self._require_interaction(module_id)
            quiz = self.catalog.quiz_for(module_id)
            if quiz is None:
                raise InvalidTransition(f"Module '{module_id}' has no quiz.")
            self._quiz = QuizAttempt(quiz, self.config.pass_ratio)
            self._quiz_module_id = module_id
            return self._quiz

    def submit_quiz_answer(self, question_index: int, selected_option: int) -> None:
        with self._lock:
            attempt = self._require_quiz()
            if question_index != attempt.current_index:
                raise InvalidTransition(
                    f"Question {question_index} is not the current question ({attempt.current_index})."
                )
            attempt.select(selected_option)

    def confirm_quiz_answer(self) -> bool:
        with self._lock:
            return self._require_quiz().confirm()

    def advance_quiz(self) -> QuizOutcome | None:
        """Move to the next question; on the last one, score and apply the result.

        A passed attempt whose completion could not be saved stays open, so
        calling this again retries the completion.
        """
        with self._lock:
            attempt = self._require_quiz()
            if not attempt.finished and attempt.advance():
                return None
            result = attempt.result()
            module_id = cast(str, self._quiz_module_id)
            if not result.passed:
                logger.info(
                    "Profile %s failed quiz for %s (%d/%d)", self.profile_id, module_id, result.score, result.total
                )
                return QuizOutcome(result=result, completion=None)
            reward = self.config.quiz_reward
            if reward is None:
                reward = self._graph.get(module_id).xp_reward
            completion = self.complete_module(module_id, reward)
            self._quiz = None
            self._quiz_module_id = None
            return QuizOutcome(result=result, completion=completion)

    def retry_quiz(self) -> QuizAttempt:
        with self._lock:
            attempt = self._require_quiz()
            attempt.retry()
            return attempt

    def close_quiz(self) -> None:
        """Abandon the current attempt with no state change."""
        with self._lock:
            self._quiz = None
            self._quiz_module_id = None

    # -- video -------------------------------------------------------------

    def start_video(self, module_id: str, *, autoplay: bool = False) -> VideoGate:
        """Open a viewing for a video module; autoplay drives it from a timer."""
        with self._lock:
            self._require_interaction(module_id)
            if self._graph.get(module_id).icon_type != ICON_VIDEO:
                raise InvalidTransition(f"Module '{module_id}' is not a video module.")
            self.close_video()
            self._video = VideoGate()
            self._video_module_id = module_id
            self._video.play()
            if autoplay:
                self._ticker = VideoTicker(
                    self._ticker_step, self.config.video_tick_percent, self.config.video_tick_seconds
                )
                self._ticker.start()
            return self._video

    def tick_video_progress(self, delta_percent: float) -> CompletionOutcome | None:
        """Advance the open viewing; completes the module when it reaches 100."""
        with self._lock:
            gate = self._video
            if gate is None:
                raise InvalidTransition("No video is open.")
            if not gate.tick(delta_percent):
                return None
            module_id = cast(str, self._video_module_id)
            reward = self.config.video_reward
            if reward is None:
                reward = self._graph.get(module_id).xp_reward
            try:
                return self.complete_module(module_id, reward)
            except PersistenceFailure:
                gate.reopen()
                raise

    def close_video(self) -> None:
        """Cancel any ticker and discard viewing progress."""
        with self._lock:
            if self._ticker is not None:
                self._ticker.cancel()
                self._ticker = None
            self._video = None
            self._video_module_id = None

    def _ticker_step(self, delta_percent: float) -> bool:
        with self._lock:
            gate = self._video
            if gate is None or not gate.playing:
                return True
            self.tick_video_progress(delta_percent)
            return gate.completed

    # -- ledger ------------------------------------------------------------

    def earn(self, amount: int, category: str, description: str, pending: bool = False) -> Transaction:
        """Post a standalone earn action, optionally held for verification."""
        with self._lock:
            if pending:
                new_ledger, transaction = ledger_ops.grant_pending(self._ledger, amount, category, description)
                event = EngineEvent(kind="pending_recorded", profile_id=self.profile_id, amount=amount, detail=category)
            else:
                new_ledger, transaction = ledger_ops.grant(self._ledger, amount, category, description)
                event = EngineEvent(kind="xp_granted", profile_id=self.profile_id, amount=amount, detail=category)
            self._commit(self._graph, new_ledger, [event])
            logger.info("Profile %s earned %d (%s, pending=%s)", self.profile_id, amount, category, pending)
            return transaction

    def spend(self, amount: int, category: str, description: str) -> Transaction:
        with self._lock:
            try:
                new_ledger, transaction = ledger_ops.spend(self._ledger, amount, category, description)
            except (InsufficientFunds, InvalidAmount):
                logger.warning("Profile %s spend of %r rejected", self.profile_id, amount)
                raise
            event = EngineEvent(kind="spent", profile_id=self.profile_id, amount=amount, detail=category)
            self._commit(self._graph, new_ledger, [event])
            logger.info("Profile %s spent %d on %s", self.profile_id, amount, description)
            return transaction

    def resolve_pending(self, transaction_id: str, outcome: str) -> Transaction:
        """Approve or reject a pending posting (coach/admin verification)."""
        with self._lock:
            new_ledger, resolved = ledger_ops.resolve_pending(self._ledger, transaction_id, outcome)
            event = EngineEvent(
                kind="pending_resolved",
                profile_id=self.profile_id,
                amount=resolved.amount if outcome == APPROVE else 0,
                detail=outcome,
            )
            self._commit(self._graph, new_ledger, [event])
            logger.info("Profile %s pending %s -> %s", self.profile_id, transaction_id, outcome)
            return resolved

    # -- internals ---------------------------------------------------------

    def _require_interaction(self, module_id: str) -> None:
        interaction = self.attempt_interact(module_id)
        if interaction.allowed:
            return
        if interaction.reason == "blocked":
            raise ConfigurationError(f"Module '{module_id}' is unavailable: {self.catalog.blocked[module_id]}")
        raise InvalidTransition(f"Module '{module_id}' is locked.")

    def _require_quiz(self) -> QuizAttempt:
        if self._quiz is None:
            raise InvalidTransition("No quiz is open.")
        return self._quiz

    def _commit(self, graph: ModuleGraph, new_ledger: LedgerState, events: list[EngineEvent]) -> None:
        try:
            self._store.save_snapshot(self.profile_id, graph, new_ledger)
        except sqlite3.Error as exc:
            logger.error("Profile %s snapshot write failed", self.profile_id, exc_info=True)
            raise PersistenceFailure(f"Could not save progress: {exc}") from exc
        self._graph = graph
        self._ledger = new_ledger
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("Event listener failed for %s", event.kind)

    def close(self) -> None:
        self.close_video()
        self.close_quiz()


class ProgressionService:
    """Coordinates profiles and hands out one session per profile."""

    def __init__(self, db_path: Path | str | None = None, config: EngineConfig | None = None) -> None:
        """Initialize service with database path."""
        self.config = config or EngineConfig()
        self.catalog = load_catalog()
        self.progress = ProgressStore(db_path if db_path is not None else self.config.db_path)
        self._sessions: dict[int, ProgressionSession] = {}
        self._sessions_lock = threading.Lock()
        self._listeners: list[EventListener] = []

    def list_profiles(self) -> list[Profile]:
        """Return all profiles."""
        return self.progress.list_profiles()

    def create_profile(self, name: str) -> Profile:
        """Create profile by name."""
        return self.progress.create_profile(name.strip())

    def delete_profile(self, profile_id: int) -> bool:
        """Delete one profile by id."""
        with self._sessions_lock:
            session = self._sessions.pop(profile_id, None)
        if session is not None:
            session.close()
        return self.progress.delete_profile(profile_id)

    def add_listener(self, listener: EventListener) -> None:
        """Subscribe to events from every current and future session."""
        with self._sessions_lock:
            self._listeners.append(listener)
            sessions = list(self._sessions.values())
        for session in sessions:
            session.add_listener(listener)

    def session(self, profile_id: int) -> ProgressionSession:
        """Return the single session owning this profile's state."""
        with self._sessions_lock:
            existing = self._sessions.get(profile_id)
            if existing is not None:
                return existing
            if self.progress.get_profile(profile_id) is None:
                raise KeyError(profile_id)
            session = ProgressionSession(profile_id, self.catalog, self.progress, self.config, self._listeners)
            self._sessions[profile_id] = session
            return session

    def export_profile(self, profile_id: int, export_path: Path | str) -> ProfileTransferSummary:
        """Export a profile's pathway and ledger to a JSON file."""
        profile = self.progress.get_profile(profile_id)
        if profile is None:
            raise KeyError(profile_id)
        session = self.session(profile_id)
        payload = {
            "format_version": EXPORT_FORMAT_VERSION,
            "exported_at": datetime.now(UTC).isoformat(),
            "source": {
                "app_version": __version__,
                "schema_version": SCHEMA_VERSION,
            },
            "profile": {
                "name": profile.name,
            },
            "modules": graph_to_dict(session.graph),
            "ledger": ledger_to_dict(session.ledger()),
        }

        path = Path(export_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return ProfileTransferSummary(
            profile_id=profile.id,
            profile_name=profile.name,
            module_rows=len(session.graph.modules),
            transaction_rows=len(session.ledger().transactions),
        )

    def import_profile(self, import_path: Path | str, profile_name: str | None = None) -> ProfileTransferSummary:
        """Import a profile export JSON file as a new profile."""
        path = Path(import_path)
        raw_obj: object = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw_obj, dict):
            raise ValueError("Import file root must be a JSON object.")
        raw = cast(dict[str, object], raw_obj)

        format_version = raw.get("format_version", 0)
        if isinstance(format_version, bool) or not isinstance(format_version, int):
            raise ValueError("Import file has invalid format_version.")
        if format_version > EXPORT_FORMAT_VERSION:
            raise ValueError(
                f"Import file format version {format_version} is newer than supported {EXPORT_FORMAT_VERSION}."
            )

        target_name = (profile_name or "").strip()
        if not target_name:
            profile_section_obj = raw.get("profile")
            if isinstance(profile_section_obj, dict):
                profile_name_raw: object = cast(dict[str, object], profile_section_obj).get("name")
                if isinstance(profile_name_raw, str):
                    target_name = profile_name_raw.strip()
        if not target_name:
            raise ValueError("Could not determine profile name from import file.")

        graph = graph_from_dict(raw.get("modules", [])).merged_with(self.catalog.modules)
        state = ledger_from_dict(raw.get("ledger", {}))

        profile = self.create_profile(target_name)
        self.progress.save_snapshot(profile.id, graph, state)
        return ProfileTransferSummary(
            profile_id=profile.id,
            profile_name=profile.name,
            module_rows=len(graph.modules),
            transaction_rows=len(state.transactions),
        )

    def add_feedback(
        self, session_id: str, user_prompt: str, model_response: str, rating: str, comment: str = ""
    ) -> FeedbackRecord:
        return self.progress.add_feedback(session_id, user_prompt, model_response, rating, comment)

    def list_feedback(self, view: str = "all", search: str = "") -> list[FeedbackRecord]:
        return self.progress.list_feedback(view, search)

    def feedback_stats(self) -> FeedbackStats:
        return self.progress.feedback_stats()

    def close(self) -> None:
        """Close resources."""
        with self._sessions_lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
        self.progress.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort cleanup for test/process teardown."""
        try:
            self.close()
        except Exception:
            pass
