"""Engine configuration, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from summary_engine.processing.preprocessor import (
    BODY_CHAR_LIMIT,
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_THREAD_WINDOW,
    RETRY_CHAR_LIMIT,
)
from summary_engine.processing.types import SummaryLength


class ConfigError(Exception):
    """Raised when a configuration value is missing or out of range."""


def _env_bool(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


@dataclass
class EngineConfig:
    """Tunables for the summarization engine.

    Defaults match the documented behaviour; every field can be overridden
    through the environment via ``from_env``.
    """

    enabled: bool = True
    model_base_url: str = "http://127.0.0.1:11434"
    model_name: str = "llama3.2:3b"
    model_api_key: str = "local"
    cache_path: Path = field(default_factory=lambda: Path("data/summary_cache.db"))
    max_concurrent: int = 1
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    backoff_attempts: int = 6
    call_timeout: float = 30.0
    thread_window: int = DEFAULT_THREAD_WINDOW
    summary_length: SummaryLength = SummaryLength.SHORT
    retry_char_limit: int = RETRY_CHAR_LIMIT
    host_poll_interval: float = 5.0
    memory_pressure_percent: float = 90.0
    min_device_memory_gb: float = 4.0

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError for values the engine cannot work with."""
        if self.max_concurrent < 1:
            raise ConfigError("max_concurrent must be at least 1")
        if not 0 <= self.chunk_overlap < BODY_CHAR_LIMIT:
            raise ConfigError(f"chunk_overlap must be in [0, {BODY_CHAR_LIMIT})")
        if self.backoff_attempts < 1:
            raise ConfigError("backoff_attempts must be at least 1")
        if self.call_timeout <= 0:
            raise ConfigError("call_timeout must be positive")
        if self.thread_window < 1:
            raise ConfigError("thread_window must be at least 1")
        if not 0 < self.retry_char_limit < BODY_CHAR_LIMIT:
            raise ConfigError(f"retry_char_limit must be in (0, {BODY_CHAR_LIMIT})")
        if not 0 < self.memory_pressure_percent <= 100:
            raise ConfigError("memory_pressure_percent must be in (0, 100]")

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build EngineConfig from environment variables."""
        raw_length = os.environ.get("SUMMARY_LENGTH", "short").strip().lower()
        try:
            length = SummaryLength(raw_length)
        except ValueError:
            raise ConfigError(f"SUMMARY_LENGTH must be short, medium or full, got {raw_length!r}") from None
        return cls(
            enabled=_env_bool("SUMMARY_ENABLED", "true"),
            model_base_url=os.environ.get("LOCAL_MODEL_BASE_URL", "http://127.0.0.1:11434"),
            model_name=os.environ.get("LOCAL_MODEL_NAME", "llama3.2:3b"),
            model_api_key=os.environ.get("LOCAL_MODEL_API_KEY", "local"),
            cache_path=Path(os.environ.get("SUMMARY_CACHE_PATH", "data/summary_cache.db")),
            max_concurrent=_env_int("SUMMARY_MAX_CONCURRENT", 1),
            chunk_overlap=_env_int("SUMMARY_CHUNK_OVERLAP", DEFAULT_CHUNK_OVERLAP),
            backoff_attempts=_env_int("SUMMARY_BACKOFF_ATTEMPTS", 6),
            call_timeout=_env_float("SUMMARY_CALL_TIMEOUT", 30.0),
            thread_window=_env_int("SUMMARY_THREAD_WINDOW", DEFAULT_THREAD_WINDOW),
            summary_length=length,
            retry_char_limit=_env_int("SUMMARY_RETRY_CHAR_LIMIT", RETRY_CHAR_LIMIT),
            host_poll_interval=_env_float("HOST_POLL_INTERVAL_SECONDS", 5.0),
            memory_pressure_percent=_env_float("MEMORY_PRESSURE_PERCENT", 90.0),
            min_device_memory_gb=_env_float("MIN_DEVICE_MEMORY_GB", 4.0),
        )
