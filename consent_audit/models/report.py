"""Pydantic models for the compliance report.

Defines the GDPR and DMA checklists, issues, the score breakdown,
the audit trail and the root ``AnalysisResult`` aggregate that is
returned to callers and serialised with camelCase keys.
"""

from __future__ import annotations

from typing import Any, Literal

import pydantic

from consent_audit.models import consent, signals
from consent_audit.utils import serialization

Severity = Literal["error", "warning", "info"]

IssueCategory = Literal[
    "cookie-banner",
    "tcf",
    "consent-mode",
    "tracking",
    "cookies",
    "consent-test",
    "ecommerce",
    "third-party",
    "gdpr",
    "dma",
    "general",
]

SEVERITY_ORDER: dict[str, int] = {"error": 0, "warning": 1, "info": 2}


# ── Issues ──────────────────────────────────────────────────────


class Issue(pydantic.BaseModel):
    """A finding surfaced to the user."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    severity: Severity
    category: IssueCategory
    title: str
    description: str
    recommendation: str | None = None

    @property
    def rank(self) -> int:
        """Sort key: errors first, then warnings, then info."""
        return SEVERITY_ORDER[self.severity]


def sort_issues(issues: list[Issue]) -> list[Issue]:
    """Return *issues* ordered by severity, keeping generation order within a severity."""
    return sorted(issues, key=lambda issue: issue.rank)


# ── GDPR checklist ──────────────────────────────────────────────

CheckStatus = Literal["passed", "failed", "warning", "not_applicable"]

GdprCategory = Literal["consent", "transparency", "data_minimization", "security", "rights"]


class GdprCheck(pydantic.BaseModel):
    """One GDPR checklist item."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    id: str
    category: GdprCategory
    title: str
    description: str
    status: CheckStatus
    details: str
    legal_reference: str | None = None
    recommendation: str | None = None


class GdprSummary(pydantic.BaseModel):
    """Counts of each check status."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    passed: int = 0
    failed: int = 0
    warnings: int = 0
    not_applicable: int = 0


class GdprChecklist(pydantic.BaseModel):
    """Ordered GDPR checklist with its score."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    score: int = 100
    checks: list[GdprCheck] = pydantic.Field(default_factory=list)
    summary: GdprSummary = pydantic.Field(default_factory=GdprSummary)


# ── DMA checklist ───────────────────────────────────────────────

DmaStatus = Literal["compliant", "non_compliant", "requires_review"]


class DmaCheck(pydantic.BaseModel):
    """One requirement evaluated for one gatekeeper platform."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    id: str
    gatekeeper: str
    service: str
    requirement: str
    status: DmaStatus
    details: str
    recommendation: str | None = None


class DmaGatekeeper(pydantic.BaseModel):
    """A detected gatekeeper and the services that led to it."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    name: str
    services: list[str] = pydantic.Field(default_factory=list)


class DmaSummary(pydantic.BaseModel):
    """Counts of each DMA status."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    compliant: int = 0
    non_compliant: int = 0
    requires_review: int = 0


class DmaChecklist(pydantic.BaseModel):
    """DMA checklist; empty when no gatekeeper platform is present."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    applicable: bool = False
    gatekeepers: list[DmaGatekeeper] = pydantic.Field(default_factory=list)
    checks: list[DmaCheck] = pydantic.Field(default_factory=list)
    summary: DmaSummary = pydantic.Field(default_factory=DmaSummary)


# ── Score ───────────────────────────────────────────────────────

TrackingProfile = Literal["major", "secondary-only", "server-side-only", "none"]


class ScoreBreakdown(pydantic.BaseModel):
    """How the final score was derived.

    ``factors`` lists the human-readable adjustments in the order
    they were applied.
    """

    model_config = serialization.FROZEN_CAMEL_CONFIG

    overall: int
    gdpr_score: int
    tracking_score: int
    tracking_baseline: int
    tracking_profile: TrackingProfile
    penalties: int = 0
    bonuses: int = 0
    factors: list[str] = pydantic.Field(default_factory=list)


# ── Audit trail ─────────────────────────────────────────────────

StepStatus = Literal["running", "completed", "error"]


class AuditStep(pydantic.BaseModel):
    """One progress entry of an analysis run."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    step: str
    status: StepStatus
    message: str
    details: dict[str, Any] | None = None
    timestamp: str


class Anomaly(pydantic.BaseModel):
    """An extractor that failed closed on malformed input."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    extractor: str
    message: str


# ── Root aggregate ──────────────────────────────────────────────


class AnalysisResult(pydantic.BaseModel):
    """Complete, self-contained result of one analysis run."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    url: str
    timestamp: str
    status: Literal["success", "partial"] = "success"
    scan_mode: Literal["full", "quick"] = "full"
    cookie_banner: signals.CookieBannerResult
    tcf: signals.TcfResult
    google_consent_mode: signals.ConsentModeResult
    tracking_tags: signals.TrackingTagsResult
    data_layer: signals.DataLayerResult
    third_party_domains: signals.ThirdPartyDomainsResult
    cookies: list[signals.AnalyzedCookie] = pydantic.Field(default_factory=list)
    cookie_consent_test: consent.ConsentExperimentResult | None = None
    gdpr_checklist: GdprChecklist
    dma_checklist: DmaChecklist
    issues: list[Issue] = pydantic.Field(default_factory=list)
    score: int
    score_breakdown: ScoreBreakdown
    audit_steps: list[AuditStep] = pydantic.Field(default_factory=list)
    anomalies: list[Anomaly] = pydantic.Field(default_factory=list)
