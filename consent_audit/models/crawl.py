"""Pydantic models for raw page observations (one ``CrawlResult`` per load)."""

from __future__ import annotations

from typing import Any

import pydantic

from consent_audit.utils import serialization


class NetworkRequest(pydantic.BaseModel):
    """A network request captured during page load.

    ``status_code`` and ``response_headers`` are filled in by the
    response listener; headers are only kept for tracking-related
    endpoints.
    """

    model_config = serialization.CAMEL_CONFIG

    url: str
    domain: str
    method: str = "GET"
    resource_type: str = "other"
    is_third_party: bool = False
    timestamp: str = ""
    status_code: int | None = None
    response_headers: dict[str, str] | None = None


class RawCookie(pydantic.BaseModel):
    """A browser cookie exactly as one of the collection channels reported it."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    name: str
    value: str = ""
    domain: str = ""
    path: str = "/"
    expires: float = -1
    http_only: bool = False
    secure: bool = False
    same_site: str | None = None

    @property
    def identity(self) -> tuple[str, str, str]:
        """Identity used to compare cookies across snapshots."""
        return (self.name, self.domain.lstrip(".").lower(), self.path or "/")


class SetCookieHeader(pydantic.BaseModel):
    """A raw ``Set-Cookie`` response header value."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    url: str
    value: str

    @property
    def cookie_name(self) -> str:
        """Name of the cookie the header sets."""
        return self.value.split("=", 1)[0].strip()

    @property
    def http_only(self) -> bool:
        """Whether the header carries the ``HttpOnly`` attribute."""
        return any(part.strip().lower() == "httponly" for part in self.value.split(";")[1:])


class ScriptSource(pydantic.BaseModel):
    """A ``<script>`` element: external ``src`` or truncated inline body."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    src: str | None = None
    inline: str = ""

    @property
    def text(self) -> str:
        """Searchable text for pattern matching."""
        return self.src or self.inline


class ConsoleMessage(pydantic.BaseModel):
    """A console entry emitted by the page."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    type: str
    text: str


class TrackingGlobals(pydantic.BaseModel):
    """Snapshot of tracking-relevant ``window`` globals."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    has_gtag: bool = False
    has_data_layer: bool = False
    has_tcf_api: bool = False
    has_fbq: bool = False
    has_fb_events: bool = False
    has_ttq: bool = False
    has_lintrk: bool = False
    data_layer: list[Any] = pydantic.Field(default_factory=list)
    tcf_data: dict[str, Any] | None = None
    fbq_queue: list[Any] | None = None
    additional: dict[str, bool] = pydantic.Field(default_factory=dict)
    cmp_apis: list[str] = pydantic.Field(default_factory=list)

    @classmethod
    def empty(cls) -> TrackingGlobals:
        """Return a globals snapshot with nothing present."""
        return cls()

    def has(self, name: str) -> bool:
        """Return whether the global *name* was present on ``window``."""
        direct = {
            "gtag": self.has_gtag,
            "dataLayer": self.has_data_layer,
            "__tcfapi": self.has_tcf_api,
            "fbq": self.has_fbq,
            "fbevents": self.has_fb_events,
            "ttq": self.has_ttq,
            "lintrk": self.has_lintrk,
        }
        if name in direct:
            return direct[name]
        return bool(self.additional.get(name))


class CrawlResult(pydantic.BaseModel):
    """Immutable snapshot of one page load."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    url: str
    page_url: str
    page_domain: str
    html: str = ""
    # body of the navigation response, before any script ran
    document_html: str = ""
    scripts: list[ScriptSource] = pydantic.Field(default_factory=list)
    network_requests: list[NetworkRequest] = pydantic.Field(default_factory=list)
    cookies: list[RawCookie] = pydantic.Field(default_factory=list)
    set_cookie_headers: list[SetCookieHeader] = pydantic.Field(default_factory=list)
    tracking_globals: TrackingGlobals = pydantic.Field(default_factory=TrackingGlobals)
    console_messages: list[ConsoleMessage] = pydantic.Field(default_factory=list)
    captured_at: str = ""

    def script_text(self) -> str:
        """All script URLs and inline bodies joined for pattern matching."""
        return " ".join(s.text for s in self.scripts)

    def combined_content(self) -> str:
        """HTML plus script text, the haystack most extractors search."""
        return f"{self.html} {self.script_text()}"
