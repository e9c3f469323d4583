"""Simulated video watch progress with a once-only completion signal."""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable

from .errors import InvalidTransition

logger = logging.getLogger(__name__)

COMPLETE_PERCENT = 100.0


class VideoGate:
    """Watch progress for one viewing, in [0, 100].

    Progress only moves while playing and never goes backwards except on
    `restart`. `on_complete` fires exactly once per viewing.
    """

    def __init__(self, on_complete: Callable[[], None] | None = None) -> None:
        self._on_complete = on_complete
        self.progress = 0.0
        self.playing = False
        self.completed = False

    def play(self) -> None:
        self.playing = True

    def pause(self) -> None:
        self.playing = False

    def tick(self, delta_percent: float) -> bool:
        """Advance progress; return True only on the tick that reaches 100."""
        if delta_percent < 0:
            raise InvalidTransition("Video progress cannot move backwards.")
        if not self.playing or self.completed:
            return False
        self.progress = min(COMPLETE_PERCENT, self.progress + delta_percent)
        if self.progress < COMPLETE_PERCENT:
            return False
        self.completed = True
        self.playing = False
        if self._on_complete is not None:
            self._on_complete()
        return True

    def reopen(self) -> None:
        """Undo a completion that could not be recorded.

        Progress stays just short of 100 so the next tick signals again.
        """
        self.progress = math.nextafter(COMPLETE_PERCENT, 0.0)
        self.completed = False
        self.playing = True

    def restart(self) -> None:
        """Start the viewing over from zero."""
        self.progress = 0.0
        self.playing = False
        self.completed = False


class VideoTicker:
    """Call `tick(step_percent)` on a background timer until it returns True or is cancelled.

    `tick` runs outside the ticker's own lock so it may take the owning
    session's lock without ordering problems against `cancel`.
    """

    def __init__(self, tick: Callable[[float], bool], step_percent: float, interval_seconds: float) -> None:
        self._tick = tick
        self.step_percent = step_percent
        self.interval_seconds = interval_seconds
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None
        self._cancelled = False

    def start(self) -> None:
        with self._lock:
            self._cancelled = False
            if self._timer is None:
                self._schedule()

    def cancel(self) -> None:
        """Stop ticking; a tick already in flight is the last one."""
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def running(self) -> bool:
        with self._lock:
            return self._timer is not None and not self._cancelled

    def _schedule(self) -> None:
        self._timer = threading.Timer(self.interval_seconds, self._run)
        self._timer.daemon = True
        self._timer.start()

    def _run(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._timer = None
        try:
            done = self._tick(self.step_percent)
        except Exception:
            logger.exception("Video tick failed; stopping ticker.")
            return
        with self._lock:
            if done or self._cancelled:
                return
            self._schedule()
