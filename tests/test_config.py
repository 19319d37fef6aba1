"""Tests for consent_audit.config — environment-bound settings."""

from __future__ import annotations

import pydantic
import pytest

from consent_audit import config


class TestDefaults:
    def test_crawl_defaults(self) -> None:
        crawl = config.CrawlConfig()
        assert crawl.navigation_timeout_ms == 25000
        assert crawl.quick_navigation_timeout_ms == 15000
        assert crawl.click_passes == 3

    def test_browser_defaults(self) -> None:
        browser = config.BrowserConfig()
        assert browser.headless is True
        assert browser.locale == "de-DE"

    def test_server_defaults(self) -> None:
        server = config.ServerConfig()
        assert server.port == 3001
        assert not server.is_production


class TestEnvironment:
    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUDIT_NAVIGATION_TIMEOUT_MS", "40000")
        monkeypatch.setenv("AUDIT_HEADLESS", "false")
        settings = config.load_settings()
        assert settings.crawl.navigation_timeout_ms == 40000
        assert settings.browser.headless is False

    def test_production_flag(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ENVIRONMENT", "production")
        assert config.ServerConfig().is_production

    def test_click_passes_must_be_positive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUDIT_CLICK_PASSES", "0")
        with pytest.raises(pydantic.ValidationError):
            config.CrawlConfig()


class TestValidateConfig:
    def test_defaults_are_valid(self) -> None:
        assert config.AuditSettings().validate_config() is None

    def test_poll_interval_exceeding_window(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUDIT_TRACKING_POLL_INTERVAL_MS", "5000")
        error = config.AuditSettings().validate_config()
        assert error is not None
        assert "AUDIT_TRACKING_POLL_INTERVAL_MS" in error

    def test_quick_timeout_exceeding_full(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AUDIT_QUICK_NAVIGATION_TIMEOUT_MS", "60000")
        error = config.AuditSettings().validate_config()
        assert error is not None
        assert "AUDIT_QUICK_NAVIGATION_TIMEOUT_MS" in error
