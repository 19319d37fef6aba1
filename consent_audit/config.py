"""
Runtime configuration for browser automation and the HTTP server.

Centralises all environment variable names, default values, and
configuration validation.  Uses ``pydantic_settings.BaseSettings``
for automatic environment variable binding, type coercion, and
validation; ``.env`` files are loaded by the server entry point
via ``python-dotenv``.
"""

from __future__ import annotations

import pydantic
import pydantic_settings

from consent_audit.utils import logger

log = logger.create_logger("Config")

_DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    " (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BrowserConfig(pydantic_settings.BaseSettings):
    """Browser launch and context settings.

    Attributes:
        headless: Run Chromium without a visible window.
        channel: Optional Playwright channel (e.g. ``chrome``).
        locale: Locale of every isolated context.
        timezone_id: Timezone of every isolated context.
        user_agent: User agent string; empty keeps Chromium's own.
        viewport_width: Viewport width in CSS pixels.
        viewport_height: Viewport height in CSS pixels.
    """

    headless: bool = pydantic.Field(default=True, validation_alias="AUDIT_HEADLESS")
    channel: str | None = pydantic.Field(default=None, validation_alias="AUDIT_BROWSER_CHANNEL")
    locale: str = pydantic.Field(default="de-DE", validation_alias="AUDIT_LOCALE")
    timezone_id: str = pydantic.Field(default="Europe/Berlin", validation_alias="AUDIT_TIMEZONE")
    user_agent: str = pydantic.Field(default=_DEFAULT_USER_AGENT, validation_alias="AUDIT_USER_AGENT")
    viewport_width: int = pydantic.Field(default=1920, validation_alias="AUDIT_VIEWPORT_WIDTH")
    viewport_height: int = pydantic.Field(default=1080, validation_alias="AUDIT_VIEWPORT_HEIGHT")


class CrawlConfig(pydantic_settings.BaseSettings):
    """Timing of page loads and consent interaction.

    All durations are milliseconds.
    """

    navigation_timeout_ms: int = pydantic.Field(default=25000, validation_alias="AUDIT_NAVIGATION_TIMEOUT_MS")
    quick_navigation_timeout_ms: int = pydantic.Field(
        default=15000, validation_alias="AUDIT_QUICK_NAVIGATION_TIMEOUT_MS"
    )
    grace_ms: int = pydantic.Field(default=2000, validation_alias="AUDIT_GRACE_MS")
    quick_grace_ms: int = pydantic.Field(default=1500, validation_alias="AUDIT_QUICK_GRACE_MS")
    tracking_poll_ms: int = pydantic.Field(default=3000, validation_alias="AUDIT_TRACKING_POLL_MS")
    tracking_poll_interval_ms: int = pydantic.Field(default=200, validation_alias="AUDIT_TRACKING_POLL_INTERVAL_MS")
    post_click_settle_ms: int = pydantic.Field(default=2000, validation_alias="AUDIT_POST_CLICK_SETTLE_MS")
    post_click_idle_ms: int = pydantic.Field(default=5000, validation_alias="AUDIT_POST_CLICK_IDLE_MS")
    click_passes: int = pydantic.Field(default=3, validation_alias="AUDIT_CLICK_PASSES")
    click_backoff_ms: int = pydantic.Field(default=500, validation_alias="AUDIT_CLICK_BACKOFF_MS")
    search_depth: int = pydantic.Field(default=5, validation_alias="AUDIT_SEARCH_DEPTH")

    @pydantic.field_validator("click_passes", "search_depth")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class ServerConfig(pydantic_settings.BaseSettings):
    """HTTP server settings."""

    host: str = pydantic.Field(default="0.0.0.0", validation_alias="UVICORN_HOST")
    port: int = pydantic.Field(default=3001, validation_alias="UVICORN_PORT")
    environment: str = pydantic.Field(default="development", validation_alias="ENVIRONMENT")

    @property
    def is_production(self) -> bool:
        """Return ``True`` when running with ``ENVIRONMENT=production``."""
        return self.environment == "production"


class AuditSettings(pydantic.BaseModel):
    """Aggregate of all configuration sections."""

    browser: BrowserConfig = pydantic.Field(default_factory=BrowserConfig)
    crawl: CrawlConfig = pydantic.Field(default_factory=CrawlConfig)
    server: ServerConfig = pydantic.Field(default_factory=ServerConfig)

    def validate_config(self) -> str | None:
        """Check that the timing settings are mutually consistent.

        Returns:
            An error message string when misconfigured, or ``None`` if valid.
        """
        crawl = self.crawl
        if crawl.tracking_poll_interval_ms > crawl.tracking_poll_ms:
            return "AUDIT_TRACKING_POLL_INTERVAL_MS must not exceed AUDIT_TRACKING_POLL_MS"
        if crawl.quick_navigation_timeout_ms > crawl.navigation_timeout_ms:
            return "AUDIT_QUICK_NAVIGATION_TIMEOUT_MS must not exceed AUDIT_NAVIGATION_TIMEOUT_MS"
        return None


def load_settings() -> AuditSettings:
    """Read settings from the environment and log the effective values."""
    settings = AuditSettings()
    log.debug(
        "Settings loaded",
        {
            "headless": settings.browser.headless,
            "locale": settings.browser.locale,
            "navigationTimeoutMs": settings.crawl.navigation_timeout_ms,
            "clickPasses": settings.crawl.click_passes,
        },
    )
    return settings
