"""Pydantic models for consent interaction outcomes and the accept/reject experiment."""

from __future__ import annotations

from typing import Literal

import pydantic

from consent_audit.models import crawl
from consent_audit.utils import serialization

ConsentIntent = Literal["accept", "reject"]

ClickMethod = Literal[
    "selector",
    "label",
    "cmp-api",
    "save",
    "settings-essential",
    "settings-save",
]

ControlKind = Literal["accept", "reject", "essential", "save", "settings"]

ClickFailure = Literal["not-found", "click-failed", "navigated-away"]

RejectMethod = Literal[
    "direct",
    "essential-only",
    "save-button",
    "settings-toggle",
    "cmp-api",
    "unknown",
]


class ClickOutcome(pydantic.BaseModel):
    """Result of one consent interaction attempt.

    ``found=False`` with ``failure="not-found"`` is a normal outcome
    meaning no control of any kind was located on the page.
    """

    model_config = serialization.FROZEN_CAMEL_CONFIG

    found: bool
    clicked: bool
    method: ClickMethod | None = None
    label: str | None = None
    selector: str | None = None
    frame_url: str | None = None
    cmp: str | None = None
    matched_as: ControlKind | None = None
    passes: int = 1
    failure: ClickFailure | None = None

    @classmethod
    def not_found(cls, passes: int = 1) -> ClickOutcome:
        """Return the outcome for a page with no matching control."""
        return cls(found=False, clicked=False, passes=passes, failure="not-found")

    @property
    def succeeded(self) -> bool:
        """Whether a control was found and activated."""
        return self.found and self.clicked

    @property
    def is_save_action(self) -> bool:
        """Whether the effective action was an ambiguous "save preferences"."""
        return self.method in ("save", "settings-save")


class CookieSnapshot(pydantic.BaseModel):
    """Cookies observed before any consent interaction."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    cookies: list[crawl.RawCookie] = pydantic.Field(default_factory=list)
    cookie_count: int = 0
    tracking_cookies_found: list[str] = pydantic.Field(default_factory=list)


class ConsentArmResult(pydantic.BaseModel):
    """Cookies and interaction metadata after one experiment arm."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    cookies: list[crawl.RawCookie] = pydantic.Field(default_factory=list)
    cookie_count: int = 0
    new_cookies: list[crawl.RawCookie] = pydantic.Field(default_factory=list)
    button_found: bool = False
    click_successful: bool = False
    button_text: str | None = None
    method: ClickMethod | None = None
    reject_method: RejectMethod | None = None
    reclassified_as_accept: bool = False
    tracking_before_interaction: list[str] = pydantic.Field(default_factory=list)


class ExperimentAnalysis(pydantic.BaseModel):
    """Interpretation of the three snapshots."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    consent_works_properly: bool = False
    reject_works_properly: bool = False
    tracking_before_consent: bool = False
    reject_via_essential_button: bool = False
    reject_via_save_button: bool = False
    marketing_rejected_properly: bool = False
    issues: list[str] = pydantic.Field(default_factory=list)


class ConsentExperimentResult(pydantic.BaseModel):
    """Before / after-accept / after-reject cookie snapshots of one URL."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    before: CookieSnapshot = pydantic.Field(default_factory=CookieSnapshot)
    after_accept: ConsentArmResult = pydantic.Field(default_factory=ConsentArmResult)
    after_reject: ConsentArmResult = pydantic.Field(default_factory=ConsentArmResult)
    analysis: ExperimentAnalysis = pydantic.Field(default_factory=ExperimentAnalysis)
    attempts: int = 1
    error: str | None = None
