"""
Unit tests for environment-driven settings.

Covers:
- defaults
- KS_* prefixed overrides per settings group
- JSON parsing of the channel map
- range validation
"""

import pytest
from pydantic import ValidationError

from knowledge_service.config import (
    NotificationSettings,
    SchedulerSettings,
    SearchSettings,
    Settings,
    StorageSettings,
)


class TestDefaults:
    def test_search_defaults(self):
        search = SearchSettings()
        assert search.default_limit == 5
        assert search.confidence_threshold == 0.7
        assert search.fallback_similarity == 0.5

    def test_scheduler_defaults(self, monkeypatch):
        monkeypatch.delenv("KS_SCHEDULER_INSTANCE_ID", raising=False)
        scheduler = SchedulerSettings()
        assert scheduler.poll_interval_seconds == 60.0
        assert scheduler.max_concurrency == 1
        assert scheduler.instance_id is None


class TestEnvironmentOverrides:
    def test_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("KS_SEARCH_DEFAULT_LIMIT", "12")
        monkeypatch.setenv("KS_SCHEDULER_POLL_INTERVAL_SECONDS", "5")
        monkeypatch.setenv("KS_QDRANT_BACKEND", "memory")
        monkeypatch.setenv("KS_HTTP_MCP_TRANSPORT", "http")

        settings = Settings()

        assert settings.search.default_limit == 12
        assert settings.scheduler.poll_interval_seconds == 5.0
        assert settings.storage.backend == "memory"
        assert settings.http.mcp_transport == "http"

    def test_channel_map_from_json(self, monkeypatch):
        monkeypatch.setenv("KS_NOTIFY_PROVIDER", "telegram")
        monkeypatch.setenv("KS_NOTIFY_CHANNELS", '{"alice": "1001", "bob": "1002"}')

        notify = NotificationSettings()

        assert notify.provider == "telegram"
        assert notify.channels == {"alice": "1001", "bob": "1002"}

    def test_qdrant_url_from_test_environment(self):
        assert StorageSettings().url == ":memory:"


class TestValidation:
    def test_out_of_range(self, monkeypatch):
        monkeypatch.setenv("KS_SEARCH_CONFIDENCE_THRESHOLD", "1.5")
        with pytest.raises(ValidationError):
            SearchSettings()

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("KS_QDRANT_BACKEND", "sqlite")
        with pytest.raises(ValidationError):
            StorageSettings()
