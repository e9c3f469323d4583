"""Engine configuration.

All tunable reward and pacing parameters live here rather than in the
controllers that use them.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError
from .models import Tier

DEFAULT_DB_PATH = Path(".certpath") / "progress.db"

DEFAULT_TIERS: tuple[Tier, ...] = (
    Tier(name="Rookie", minimum=0),
    Tier(name="All-Star", minimum=1000),
    Tier(name="MVP", minimum=5000),
    Tier(name="Hall of Famer", minimum=10000),
)


@dataclass(frozen=True)
class EngineConfig:
    """Reward, threshold, and pacing parameters for one engine instance."""

    db_path: Path | str = DEFAULT_DB_PATH
    pass_ratio: float = 0.8
    # None means "use the module's own xp_reward".
    quiz_reward: int | None = None
    video_reward: int | None = None
    video_tick_percent: float = 0.5
    video_tick_seconds: float = 0.05
    tiers: tuple[Tier, ...] = field(default=DEFAULT_TIERS)

    def __post_init__(self) -> None:
        if not 0 < self.pass_ratio <= 1:
            raise ConfigurationError(f"pass_ratio must be in (0, 1], got {self.pass_ratio}.")
        for name in ("quiz_reward", "video_reward"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {value}.")
        if self.video_tick_percent <= 0 or self.video_tick_seconds <= 0:
            raise ConfigurationError("Video tick rate must be positive.")
        validate_tiers(self.tiers)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build config from CERTPATH_* environment variables."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        if env.get("CERTPATH_DB"):
            kwargs["db_path"] = Path(env["CERTPATH_DB"])
        if env.get("CERTPATH_QUIZ_REWARD"):
            kwargs["quiz_reward"] = _parse_int("CERTPATH_QUIZ_REWARD", env["CERTPATH_QUIZ_REWARD"])
        if env.get("CERTPATH_VIDEO_REWARD"):
            kwargs["video_reward"] = _parse_int("CERTPATH_VIDEO_REWARD", env["CERTPATH_VIDEO_REWARD"])
        if env.get("CERTPATH_PASS_RATIO"):
            raw = env["CERTPATH_PASS_RATIO"]
            try:
                kwargs["pass_ratio"] = float(raw)
            except ValueError as exc:
                raise ConfigurationError(f"CERTPATH_PASS_RATIO is not a number: {raw!r}") from exc
        return cls(**kwargs)  # type: ignore[arg-type]


def validate_tiers(tiers: tuple[Tier, ...]) -> None:
    """Require a non-empty, strictly ascending tier table starting at zero."""
    if not tiers:
        raise ConfigurationError("Tier table must not be empty.")
    if tiers[0].minimum != 0:
        raise ConfigurationError("First tier must start at 0.")
    for previous, current in zip(tiers, tiers[1:]):
        if current.minimum <= previous.minimum:
            raise ConfigurationError(f"Tier '{current.name}' is not above '{previous.name}'.")


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} is not an integer: {raw!r}") from exc
