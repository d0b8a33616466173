"""Application configuration: loads .env, then overrides from settings.json."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Find the project root (where .env lives)
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# Runtime settings file for in-app configuration
_SETTINGS_FILE = _PROJECT_ROOT / "data" / "settings.json"

_PLACEHOLDER_KEYS = {"", "your-anon-key", "placeholder"}


def _load_settings() -> dict:
    """Load saved runtime settings from JSON file."""
    if _SETTINGS_FILE.exists():
        try:
            return json.loads(_SETTINGS_FILE.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass
    return {}


def _save_settings(settings: dict):
    """Persist runtime settings to JSON file."""
    _SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    _SETTINGS_FILE.write_text(
        json.dumps(settings, indent=2), encoding="utf-8"
    )


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# Load saved settings once at import time
_runtime = _load_settings()


class Config:
    """Central configuration: .env defaults, settings.json overrides."""

    # Paths
    PROJECT_ROOT: Path = _PROJECT_ROOT
    DATABASE_PATH: Path = Path(
        os.getenv("DATABASE_PATH", str(_PROJECT_ROOT / "data" / "automate_pos.db"))
    )
    BACKUP_PATH: Path = Path(
        os.getenv("DATABASE_BACKUP_PATH", str(_PROJECT_ROOT / "data" / "backups"))
    )

    # Remote system of record (settings.json overrides .env)
    REMOTE_URL: str = _runtime.get(
        "remote_url",
        os.getenv("REMOTE_URL", ""),
    )
    REMOTE_API_KEY: str = _runtime.get(
        "remote_api_key",
        os.getenv("REMOTE_API_KEY", ""),
    )
    REMOTE_TIMEOUT: float = float(_runtime.get(
        "remote_timeout",
        os.getenv("REMOTE_TIMEOUT", "15"),
    ))
    BUSINESS_ID: str = _runtime.get(
        "business_id",
        os.getenv("BUSINESS_ID", ""),
    )

    # Sync scheduling
    SYNC_ENABLED: bool = _as_bool(_runtime.get(
        "sync_enabled",
        os.getenv("SYNC_ENABLED", "true"),
    ))
    SYNC_INTERVAL_SECONDS: int = int(_runtime.get(
        "sync_interval_seconds",
        os.getenv("SYNC_INTERVAL_SECONDS", "30"),
    ))
    CONNECTIVITY_PROBE_SECONDS: int = int(_runtime.get(
        "connectivity_probe_seconds",
        os.getenv("CONNECTIVITY_PROBE_SECONDS", "30"),
    ))
    LAST_SYNC_TIMESTAMP: str = _runtime.get("last_sync_timestamp", "")

    # Retry policy shared by sync and AI calls
    RETRY_MAX_RETRIES: int = int(_runtime.get(
        "retry_max_retries",
        os.getenv("RETRY_MAX_RETRIES", "3"),
    ))
    RETRY_BASE_DELAY_MS: int = int(_runtime.get(
        "retry_base_delay_ms",
        os.getenv("RETRY_BASE_DELAY_MS", "1200"),
    ))
    RETRY_BACKOFF_FACTOR: float = float(_runtime.get(
        "retry_backoff_factor",
        os.getenv("RETRY_BACKOFF_FACTOR", "2.5"),
    ))

    # AI enhancement (OpenAI-compatible endpoint)
    AI_BASE_URL: str = _runtime.get(
        "ai_base_url",
        os.getenv("AI_BASE_URL", "https://api.openai.com/v1"),
    )
    AI_API_KEY: str = _runtime.get(
        "ai_api_key",
        os.getenv("AI_API_KEY", ""),
    )
    AI_MODEL: str = _runtime.get(
        "ai_model",
        os.getenv("AI_MODEL", "gpt-4o-mini"),
    )
    AI_TIMEOUT: int = int(_runtime.get(
        "ai_timeout",
        os.getenv("AI_TIMEOUT", "60"),
    ))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def remote_configured(cls) -> bool:
        """True when the remote URL and key look usable."""
        return (
            cls.REMOTE_URL.startswith("https://")
            and cls.REMOTE_API_KEY not in _PLACEHOLDER_KEYS
        )

    @classmethod
    def update_remote_settings(cls, url: str, api_key: str,
                               business_id: str, timeout: float):
        """Update remote connection settings and persist to disk."""
        cls.REMOTE_URL = url
        cls.REMOTE_API_KEY = api_key
        cls.BUSINESS_ID = business_id
        cls.REMOTE_TIMEOUT = timeout

        settings = _load_settings()
        settings["remote_url"] = url
        settings["remote_api_key"] = api_key
        settings["business_id"] = business_id
        settings["remote_timeout"] = timeout
        _save_settings(settings)

    @classmethod
    def update_sync_settings(cls, enabled: bool, interval_seconds: int):
        """Update background sync scheduling and persist."""
        cls.SYNC_ENABLED = enabled
        cls.SYNC_INTERVAL_SECONDS = interval_seconds

        settings = _load_settings()
        settings["sync_enabled"] = enabled
        settings["sync_interval_seconds"] = interval_seconds
        _save_settings(settings)

    @classmethod
    def update_retry_settings(cls, max_retries: int, base_delay_ms: int,
                              backoff_factor: float):
        """Update the shared retry budget and persist."""
        cls.RETRY_MAX_RETRIES = max_retries
        cls.RETRY_BASE_DELAY_MS = base_delay_ms
        cls.RETRY_BACKOFF_FACTOR = backoff_factor

        settings = _load_settings()
        settings["retry_max_retries"] = max_retries
        settings["retry_base_delay_ms"] = base_delay_ms
        settings["retry_backoff_factor"] = backoff_factor
        _save_settings(settings)

    @classmethod
    def update_ai_settings(cls, base_url: str, api_key: str,
                           model: str, timeout: int):
        """Update AI enhancement settings at runtime and persist to disk."""
        cls.AI_BASE_URL = base_url
        cls.AI_API_KEY = api_key
        cls.AI_MODEL = model
        cls.AI_TIMEOUT = timeout

        settings = _load_settings()
        settings["ai_base_url"] = base_url
        settings["ai_api_key"] = api_key
        settings["ai_model"] = model
        settings["ai_timeout"] = timeout
        _save_settings(settings)

    @classmethod
    def update_last_sync(cls, timestamp: str):
        """Record when the last sync cycle finished."""
        cls.LAST_SYNC_TIMESTAMP = timestamp
        settings = _load_settings()
        settings["last_sync_timestamp"] = timestamp
        _save_settings(settings)
