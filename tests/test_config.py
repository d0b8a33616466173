"""Tests for Config class: settings persistence and retrieval."""

import json

import pytest

from automate_pos.config import Config, _as_bool, _load_settings, _save_settings

_MUTABLE = (
    "REMOTE_URL", "REMOTE_API_KEY", "REMOTE_TIMEOUT", "BUSINESS_ID",
    "SYNC_ENABLED", "SYNC_INTERVAL_SECONDS", "LAST_SYNC_TIMESTAMP",
    "RETRY_MAX_RETRIES", "RETRY_BASE_DELAY_MS", "RETRY_BACKOFF_FACTOR",
    "AI_BASE_URL", "AI_API_KEY", "AI_MODEL", "AI_TIMEOUT",
)


@pytest.fixture
def settings_file(tmp_path):
    return tmp_path / "settings.json"


@pytest.fixture(autouse=True)
def restore_config():
    """Snapshot mutable Config attributes and restore them afterwards."""
    saved = {attr: getattr(Config, attr) for attr in _MUTABLE}
    yield
    for attr, val in saved.items():
        setattr(Config, attr, val)


class TestConfigDefaults:
    def test_retry_budget_types(self):
        assert isinstance(Config.RETRY_MAX_RETRIES, int)
        assert isinstance(Config.RETRY_BACKOFF_FACTOR, float)

    def test_sync_interval_positive(self):
        assert Config.SYNC_INTERVAL_SECONDS > 0

    def test_sync_enabled_is_bool(self):
        assert isinstance(Config.SYNC_ENABLED, bool)

    def test_database_path_under_project(self):
        assert Config.DATABASE_PATH.name.endswith(".db")


class TestSettingsFile:
    def test_missing_file_is_empty(self):
        assert _load_settings() == {}

    def test_round_trip(self, settings_file):
        _save_settings({"business_id": "BIZ-1"})
        assert json.loads(settings_file.read_text()) == {"business_id": "BIZ-1"}
        assert _load_settings() == {"business_id": "BIZ-1"}

    def test_corrupt_file_is_ignored(self, settings_file):
        settings_file.write_text("{not json")
        assert _load_settings() == {}


class TestUpdates:
    def test_update_remote_settings(self, settings_file):
        Config.update_remote_settings(
            "https://demo.example.co", "real-key", "BIZ-7", 20.0,
        )
        assert Config.REMOTE_URL == "https://demo.example.co"
        assert Config.BUSINESS_ID == "BIZ-7"
        saved = json.loads(settings_file.read_text())
        assert saved["remote_api_key"] == "real-key"
        assert saved["remote_timeout"] == 20.0

    def test_update_keeps_other_keys(self, settings_file):
        Config.update_sync_settings(False, 120)
        Config.update_last_sync("2026-05-01T00:00:00+00:00")
        saved = json.loads(settings_file.read_text())
        assert saved["sync_enabled"] is False
        assert saved["sync_interval_seconds"] == 120
        assert saved["last_sync_timestamp"] == "2026-05-01T00:00:00+00:00"
        assert Config.SYNC_ENABLED is False

    def test_update_retry_settings(self, settings_file):
        Config.update_retry_settings(5, 500, 2.0)
        assert (Config.RETRY_MAX_RETRIES, Config.RETRY_BASE_DELAY_MS,
                Config.RETRY_BACKOFF_FACTOR) == (5, 500, 2.0)
        assert json.loads(settings_file.read_text())["retry_max_retries"] == 5

    def test_update_ai_settings(self, settings_file):
        Config.update_ai_settings("http://localhost:1234/v1", "k", "m", 30)
        assert Config.AI_MODEL == "m"
        assert json.loads(settings_file.read_text())["ai_timeout"] == 30


class TestRemoteConfigured:
    @pytest.mark.parametrize("url,key,expected", [
        ("https://demo.example.co", "real-key", True),
        ("http://demo.example.co", "real-key", False),
        ("https://demo.example.co", "your-anon-key", False),
        ("https://demo.example.co", "", False),
        ("", "real-key", False),
    ])
    def test_remote_configured(self, monkeypatch, url, key, expected):
        monkeypatch.setattr(Config, "REMOTE_URL", url)
        monkeypatch.setattr(Config, "REMOTE_API_KEY", key)
        assert Config.remote_configured() is expected


@pytest.mark.parametrize("value,expected", [
    (True, True), ("true", True), ("1", True), ("on", True),
    ("false", False), ("0", False), ("", False),
])
def test_as_bool(value, expected):
    assert _as_bool(value) is expected
