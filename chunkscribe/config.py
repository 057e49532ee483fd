"""
Configuration management with immutable snapshots.

Loads from: environment variables > settings.json > defaults
Provides immutable snapshots so a running request never sees a change.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict

from .types import PipelineSettings


logger = logging.getLogger(__name__)

# Defaults
DEFAULT_CONFIG: Dict[str, Any] = {
    # Models
    "transcription_model": "gemini-2.5-flash",
    "tts_model": "gemini-2.5-flash-preview-tts",
    "tts_voice": "Kore",
    "transcription_prompt": "",

    # Scheduling
    "max_concurrency": 4,
    "max_attempts": 5,
    "retry_base_delay": 1.5,
    "request_timeout": 120.0,

    # Rate limiting
    "retry_after_buffer": 2.0,
    "rate_limit_backoff_base": 30.0,
    "rate_limit_backoff_cap": 120.0,

    # Segmentation
    "text_chunk_chars": 5000,
    "audio_chunk_seconds": 45.0,
    "audio_overlap_seconds": 2.0,

    # Merging
    "overlap_max_words": 15,
    "overlap_min_words": 3,
    "gap_markers": False,
    "allow_partial": True,

    # Observability
    "log_level": "info",
    "metrics_enabled": False,
}

API_KEY_VARS = ("GEMINI_API_KEY", "GOOGLE_API_KEY")


def _coerce(default: Any, value: Any) -> Any:
    """Convert a JSON value to the type of its default."""
    if isinstance(default, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    return type(default)(value)


class Config:
    """
    Single source of truth for all settings.

    Usage:
        config = Config.load()
        settings = config.snapshot()  # Immutable copy for a pipeline
    """

    def __init__(self, data_dir: Path = None):
        for key, default in DEFAULT_CONFIG.items():
            setattr(self, key, default)

        # API Keys
        self.gemini_api_key: str = ""

        # Paths
        self.data_dir: Path = data_dir or Path.home() / ".chunkscribe"
        self.metrics_file: Path = self.data_dir / "metrics.jsonl"
        self.settings_file: Path = self.data_dir / "settings.json"
        self.env_file: Path = self.data_dir / ".env"

    @classmethod
    def load(cls, data_dir: Path = None, project_dir: Path = None) -> "Config":
        """Load configuration from all sources."""
        config = cls(data_dir)
        project_dir = project_dir or Path(".")
        config._load_settings(project_dir)
        config._load_env(project_dir)
        return config

    def _load_env(self, project_dir: Path) -> None:
        """Load API keys from .env files and environment."""
        # Project root first, then ~/.chunkscribe/.env overrides
        for env_file in (project_dir / ".env", self.env_file):
            if env_file.exists():
                self._parse_env_file(env_file)

        # Environment variables override file values
        for var in API_KEY_VARS:
            if os.getenv(var):
                self.gemini_api_key = os.environ[var]
                break

    def _parse_env_file(self, env_file: Path) -> None:
        """Parse a .env file and extract API keys."""
        found = {}
        try:
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    if line.startswith("export "):
                        line = line[len("export "):]
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip().strip("'\"")

                    if key in API_KEY_VARS and value:
                        found[key] = value
        except OSError as e:
            logger.warning("[Config] Error loading %s: %s", env_file, e)

        # Same precedence as the environment: GEMINI_API_KEY wins
        for var in API_KEY_VARS:
            if var in found:
                self.gemini_api_key = found[var]
                break

    def _load_settings(self, project_dir: Path) -> None:
        """Load settings from settings.json."""
        # Project root first, then ~/.chunkscribe/settings.json (overrides)
        for settings_file in (project_dir / "settings.json", self.settings_file):
            if settings_file.exists():
                self._apply_settings_file(settings_file)

    def _apply_settings_file(self, settings_file: Path) -> None:
        """Apply settings from a JSON file."""
        try:
            with open(settings_file) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("[Config] Error loading %s: %s", settings_file, e)
            return

        if not isinstance(data, dict):
            logger.warning("[Config] Ignoring %s: expected a JSON object", settings_file)
            return

        # Apply settings with type validation
        for key, default in DEFAULT_CONFIG.items():
            if key not in data:
                continue
            try:
                setattr(self, key, _coerce(default, data[key]))
            except (TypeError, ValueError):
                logger.warning("[Config] Ignoring invalid %s=%r in %s", key, data[key], settings_file)

    def update(self, **overrides: Any) -> None:
        """Apply overrides (e.g. from the command line); None values are skipped."""
        for key, value in overrides.items():
            if value is None:
                continue
            if key not in DEFAULT_CONFIG:
                raise KeyError(f"Unknown setting: {key}")
            setattr(self, key, _coerce(DEFAULT_CONFIG[key], value))

    def save_settings(self) -> None:
        """Save current settings to settings.json (never the API key)."""
        data = {key: getattr(self, key) for key in DEFAULT_CONFIG}
        self.data_dir.mkdir(parents=True, exist_ok=True)
        with open(self.settings_file, "w") as f:
            json.dump(data, f, indent=2)

    def snapshot(self) -> PipelineSettings:
        """
        Return immutable copy for a pipeline.

        Raises:
            ValueError: if a numeric setting is out of range
        """
        self._validate()
        values = {key: getattr(self, key) for key in DEFAULT_CONFIG}
        return PipelineSettings(
            gemini_api_key=self.gemini_api_key,
            metrics_file=str(self.metrics_file),
            **values,
        )

    def _validate(self) -> None:
        positive = ("max_concurrency", "max_attempts", "text_chunk_chars", "audio_chunk_seconds", "request_timeout")
        for key in positive:
            if getattr(self, key) <= 0:
                raise ValueError(f"{key} must be positive, got {getattr(self, key)}")

        non_negative = ("retry_base_delay", "retry_after_buffer", "rate_limit_backoff_base",
                        "rate_limit_backoff_cap", "audio_overlap_seconds")
        for key in non_negative:
            if getattr(self, key) < 0:
                raise ValueError(f"{key} must not be negative, got {getattr(self, key)}")

        if not 1 <= self.overlap_min_words <= self.overlap_max_words:
            raise ValueError("overlap_min_words must be between 1 and overlap_max_words")
