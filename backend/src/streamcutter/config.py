"""
Configuration for StreamCutter.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

DEFAULT_ALLOWED_TYPES: tuple[str, ...] = (
    "audio/mpeg",
    "audio/wav",
    "audio/mp3",
    "audio/mp4",
    "audio/ogg",
    "video/mp4",
    "video/avi",
    "video/quicktime",
    "video/x-msvideo",
    "video/webm",
)

ENV_PREFIX = "STREAMCUTTER_"


@dataclass(frozen=True)
class Config:
    """Resolved service configuration, shared read-only."""

    # External cutter binary, a bare command name is resolved via PATH
    ffmpeg_path: str = "ffmpeg"

    # Temp namespace, relative paths resolve against the working directory
    temp_dir: Path = field(default_factory=lambda: Path("temp"))

    max_file_size_mb: int = 100
    timeout_seconds: float = 600.0

    # Janitor
    cleanup_interval_seconds: float = 1800.0
    retention_age_seconds: float = 3600.0

    allowed_types: tuple[str, ...] = DEFAULT_ALLOWED_TYPES

    # HTTP layer
    enable_tracing: bool = True
    cors_origins: tuple[str, ...] = ("*",)

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def resolved_temp_dir(self) -> Path:
        path = Path(self.temp_dir)
        if path.is_absolute():
            return path
        return Path.cwd() / path

    def with_overrides(self, **changes) -> Config:
        return replace(self, **changes)

    def warnings(self) -> list[str]:
        """Configuration constraints that are violated but tolerated."""
        issues: list[str] = []
        if self.timeout_seconds >= self.retention_age_seconds:
            issues.append(
                f"timeout ({self.timeout_seconds:.0f}s) is not shorter than the retention age "
                f"({self.retention_age_seconds:.0f}s); the janitor may delete files of a slow in-flight cut."
            )
        if not self.allowed_types:
            issues.append("allowed_types is empty; every upload will be rejected.")
        return issues


# Default configuration instance
default_config = Config()


def _load_env() -> None:
    repo_env = Path(__file__).resolve().parents[3] / ".env"
    if repo_env.exists():
        load_dotenv(dotenv_path=repo_env)
    else:
        load_dotenv()


def _env(name: str) -> Optional[str]:
    value = os.environ.get(f"{ENV_PREFIX}{name}")
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _env(name)
    if raw is None:
        return default
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    return items or default


_CONFIG: Optional[Config] = None
_CONFIG_CACHE_KEY: Optional[tuple[Optional[str], ...]] = None

_ENV_KEYS = (
    "FFMPEG_PATH",
    "TEMP_DIR",
    "MAX_FILE_SIZE_MB",
    "TIMEOUT_MINUTES",
    "CLEANUP_INTERVAL_MINUTES",
    "RETENTION_MINUTES",
    "ALLOWED_TYPES",
    "TRACING",
    "CORS_ORIGINS",
)


def get_config() -> Config:
    """Return the singleton configuration built from env vars (and .env)."""
    global _CONFIG, _CONFIG_CACHE_KEY

    _load_env()
    cache_key = tuple(_env(name) for name in _ENV_KEYS)
    if _CONFIG is not None and _CONFIG_CACHE_KEY == cache_key:
        return _CONFIG

    defaults = default_config
    temp_dir = _env("TEMP_DIR")
    _CONFIG = Config(
        ffmpeg_path=_env("FFMPEG_PATH") or defaults.ffmpeg_path,
        temp_dir=Path(temp_dir) if temp_dir else defaults.temp_dir,
        max_file_size_mb=_env_int("MAX_FILE_SIZE_MB", defaults.max_file_size_mb),
        timeout_seconds=_env_float("TIMEOUT_MINUTES", defaults.timeout_seconds / 60) * 60,
        cleanup_interval_seconds=_env_float(
            "CLEANUP_INTERVAL_MINUTES", defaults.cleanup_interval_seconds / 60
        ) * 60,
        retention_age_seconds=_env_float("RETENTION_MINUTES", defaults.retention_age_seconds / 60) * 60,
        allowed_types=_env_list("ALLOWED_TYPES", defaults.allowed_types),
        enable_tracing=_env_bool("TRACING", defaults.enable_tracing),
        cors_origins=_env_list("CORS_ORIGINS", defaults.cors_origins),
    )
    _CONFIG_CACHE_KEY = cache_key
    return _CONFIG
