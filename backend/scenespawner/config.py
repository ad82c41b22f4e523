"""Scene Spawner configuration.

All settings are environment-sourced (loaded from backend/.env by database.py).
Values are read when the config is built, not at import, so a process picks up
whatever the environment holds when the scene service is first created.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_MODEL = "veo-2.0-generate-001"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_BUCKET = "generated_scenes"
ARTIFACT_PREFIX = "generated-scenes"


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True)
class PollPolicy:
    """Bounded wait policy for long-running provider operations.

    The loop stops at whichever comes first: max_attempts polls or max_wait
    seconds since submission.
    """
    interval: float = 5.0
    backoff: float = 1.0
    max_interval: float = 30.0
    max_wait: float = 600.0
    max_attempts: int = 120
    max_transient_errors: int = 5

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError("Poll interval must be positive")
        if self.backoff < 1.0:
            raise ValueError("Poll backoff must be >= 1.0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_wait <= 0:
            raise ValueError("max_wait must be positive")

    def next_interval(self, current: float) -> float:
        return min(current * self.backoff, self.max_interval)

    @classmethod
    def from_env(cls) -> "PollPolicy":
        return cls(
            interval=_env_float("SCENE_POLL_INTERVAL_SECONDS", 5.0),
            backoff=_env_float("SCENE_POLL_BACKOFF", 1.0),
            max_interval=_env_float("SCENE_POLL_MAX_INTERVAL_SECONDS", 30.0),
            max_wait=_env_float("SCENE_POLL_MAX_WAIT_SECONDS", 600.0),
            max_attempts=_env_int("SCENE_POLL_MAX_ATTEMPTS", 120),
            max_transient_errors=_env_int("SCENE_MAX_TRANSIENT_ERRORS", 5),
        )


@dataclass(frozen=True)
class SceneSpawnerConfig:
    api_key: Optional[str]
    model: str = DEFAULT_MODEL
    api_base: str = DEFAULT_API_BASE
    duration_seconds: int = 5
    aspect_ratio: str = "16:9"
    storage_bucket: str = DEFAULT_BUCKET
    public_api_url: str = "http://localhost:8001"
    rate_limit_seconds: int = 0
    request_timeout_seconds: float = 60.0
    poll_policy: PollPolicy = field(default_factory=PollPolicy)

    @classmethod
    def from_env(cls) -> "SceneSpawnerConfig":
        return cls(
            api_key=(os.getenv("GEMINI_API_KEY") or "").strip() or None,
            model=os.getenv("SCENE_MODEL", DEFAULT_MODEL),
            api_base=os.getenv("SCENE_API_BASE", DEFAULT_API_BASE).rstrip("/"),
            duration_seconds=_env_int("SCENE_DURATION_SECONDS", 5),
            aspect_ratio=os.getenv("SCENE_ASPECT_RATIO", "16:9"),
            storage_bucket=os.getenv("SCENE_STORAGE_BUCKET", DEFAULT_BUCKET),
            public_api_url=os.getenv("PUBLIC_API_URL", "http://localhost:8001").rstrip("/"),
            rate_limit_seconds=_env_int("SCENE_RATE_LIMIT_SECONDS", 0),
            request_timeout_seconds=_env_float("SCENE_REQUEST_TIMEOUT_SECONDS", 60.0),
            poll_policy=PollPolicy.from_env(),
        )
