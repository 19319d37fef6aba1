"""Pydantic models for the per-extractor signal results.

Each result is a flat record with no references to other signals and
a ``not_detected()`` factory used both for genuinely absent signals
and for extractors that failed closed on malformed input.
"""

from __future__ import annotations

from typing import Any, Literal

import pydantic

from consent_audit.utils import serialization

CookieCategory = Literal["necessary", "functional", "analytics", "marketing", "unknown"]

ConfidenceLevel = Literal["high", "medium", "low"]


# ============================================================================
# Cookies
# ============================================================================


class AnalyzedCookie(pydantic.BaseModel):
    """A raw cookie plus derived, never-mutating attributes."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    name: str
    value: str = ""
    domain: str = ""
    path: str = "/"
    expires: str | None = None
    http_only: bool = False
    secure: bool = False
    same_site: str | None = None
    category: CookieCategory = "unknown"
    service: str | None = None
    purpose: str | None = None
    lifetime_days: int | None = None
    is_long_lived: bool = False
    is_third_party: bool = False


# ============================================================================
# Cookie banner
# ============================================================================


class CookieBannerResult(pydantic.BaseModel):
    """Presence and shape of the consent banner."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    detected: bool = False
    provider: str | None = None
    has_accept_button: bool = False
    has_reject_button: bool = False
    has_essential_save_button: bool = False
    has_settings_option: bool = False
    blocks_content: bool = False
    has_privacy_policy_link: bool = False

    @classmethod
    def not_detected(cls) -> CookieBannerResult:
        """Return the result for a page without a banner."""
        return cls()

    @property
    def is_balanced(self) -> bool:
        """Accept and reject are both offered at the first layer."""
        return self.detected and self.has_accept_button and self.has_reject_button


# ============================================================================
# IAB TCF
# ============================================================================


class TcfResult(pydantic.BaseModel):
    """IAB Transparency & Consent Framework signals."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    detected: bool = False
    version: str | None = None
    cmp_id: int | None = None
    cmp_name: str | None = None
    tc_string: str | None = None
    valid_tc_string: bool = False
    gdpr_applies: bool | None = None
    detection_methods: list[str] = pydantic.Field(default_factory=list)

    @classmethod
    def not_detected(cls) -> TcfResult:
        """Return the result for a page without TCF."""
        return cls()


# ============================================================================
# Google Consent Mode
# ============================================================================

ConsentValue = Literal["granted", "denied"]

UpdateTrigger = Literal["banner_click", "tcf_api", "custom", "unknown"]


class ConsentModeUpdate(pydantic.BaseModel):
    """Details of the ``consent update`` call."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    detected: bool = False
    triggered_after_banner: bool = False
    update_settings: dict[str, ConsentValue] = pydantic.Field(default_factory=dict)
    update_trigger: UpdateTrigger | None = None


class ConsentModeParameters(pydantic.BaseModel):
    """Which Consent Mode parameters appear anywhere in the page."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    ad_storage: bool = False
    analytics_storage: bool = False
    ad_user_data: bool = False
    ad_personalization: bool = False
    functionality_storage: bool = False
    personalization_storage: bool = False
    security_storage: bool = False


class ConsentModeResult(pydantic.BaseModel):
    """Google Consent Mode detection and version classification."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    detected: bool = False
    version: Literal["v1", "v2"] | None = None
    default_consent: dict[str, ConsentValue] = pydantic.Field(default_factory=dict)
    update_consent: ConsentModeUpdate = pydantic.Field(default_factory=ConsentModeUpdate)
    parameters: ConsentModeParameters = pydantic.Field(default_factory=ConsentModeParameters)
    region_settings: list[str] = pydantic.Field(default_factory=list)
    wait_for_update: int | None = None

    @classmethod
    def not_detected(cls) -> ConsentModeResult:
        """Return the result for a page without Consent Mode."""
        return cls()


class ConsentModeCompleteness(pydantic.BaseModel):
    """Gaps in a Consent Mode implementation."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    missing_v2_parameters: list[str] = pydantic.Field(default_factory=list)
    has_proper_update_flow: bool = False


# ============================================================================
# Tracking tags
# ============================================================================

TagTier = Literal["major", "secondary"]

TagCategory = Literal["analytics", "advertising", "tag-manager", "session-replay", "marketing-automation"]

DetectionMethod = Literal["script", "network", "global"]

ServerSideType = Literal[
    "sgtm",
    "meta_capi",
    "tiktok_events_api",
    "linkedin_capi",
    "first_party_proxy",
    "custom_endpoint",
    "cookie_bridging",
]


class TagDetection(pydantic.BaseModel):
    """One detected tracking platform."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    platform: str
    name: str
    category: TagCategory
    tier: TagTier
    gatekeeper: str | None = None
    detection_methods: list[DetectionMethod] = pydantic.Field(default_factory=list)
    ids: list[str] = pydantic.Field(default_factory=list)
    via_tag_manager: bool = False


class MarketingParameters(pydantic.BaseModel):
    """Click-ID and campaign parameters seen in request URLs."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    gclid: bool = False
    dclid: bool = False
    wbraid: bool = False
    gbraid: bool = False
    fbclid: bool = False
    msclkid: bool = False
    ttclid: bool = False
    li_fat_id: bool = False
    utm: bool = False

    @property
    def any(self) -> bool:
        """Whether any parameter was seen."""
        return any(self.model_dump().values())

    def active(self) -> list[str]:
        """Names of the parameters that were seen."""
        return [name for name, seen in self.model_dump().items() if seen]


class ServerSideIndicator(pydantic.BaseModel):
    """Evidence of tracking routed through a server."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    type: ServerSideType
    confidence: ConfidenceLevel
    description: str
    evidence: list[str] = pydantic.Field(default_factory=list)


class ServerSideSummary(pydantic.BaseModel):
    """Boolean roll-up of server-side indicator types."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    has_server_side_gtm: bool = False
    has_meta_capi: bool = False
    has_first_party_proxy: bool = False
    has_tiktok_events_api: bool = False
    has_linkedin_capi: bool = False
    has_cookie_bridging: bool = False


class ServerSideTracking(pydantic.BaseModel):
    """Server-side tracking indicators, reported separately from client tags."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    detected: bool = False
    indicators: list[ServerSideIndicator] = pydantic.Field(default_factory=list)
    first_party_endpoints: list[str] = pydantic.Field(default_factory=list)
    cookie_bridging: bool = False
    summary: ServerSideSummary = pydantic.Field(default_factory=ServerSideSummary)


class TrackingTagsResult(pydantic.BaseModel):
    """Inventory of advertising and analytics tags."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    tags: list[TagDetection] = pydantic.Field(default_factory=list)
    marketing_parameters: MarketingParameters = pydantic.Field(default_factory=MarketingParameters)
    server_side: ServerSideTracking = pydantic.Field(default_factory=ServerSideTracking)

    @classmethod
    def not_detected(cls) -> TrackingTagsResult:
        """Return the result for a page without tracking tags."""
        return cls()

    def get(self, platform: str) -> TagDetection | None:
        """Return the detection for *platform*, if it was found."""
        for tag in self.tags:
            if tag.platform == platform:
                return tag
        return None

    def detected(self, platform: str) -> bool:
        """Return whether *platform* was found."""
        return self.get(platform) is not None

    @property
    def has_major_tags(self) -> bool:
        """Whether any major advertising/analytics platform was found."""
        return any(t.tier == "major" for t in self.tags)

    @property
    def has_secondary_tags(self) -> bool:
        """Whether any secondary tool (heatmaps, product analytics) was found."""
        return any(t.tier == "secondary" for t in self.tags)


# ============================================================================
# dataLayer / e-commerce
# ============================================================================

IssueSeverity = Literal["error", "warning", "info"]


class DataLayerEvent(pydantic.BaseModel):
    """Occurrences of one event name in the dataLayer."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    event: str
    count: int = 1
    has_ecommerce_data: bool = False
    parameters: list[str] = pydantic.Field(default_factory=list)


class EcommerceEvent(pydantic.BaseModel):
    """A well-known e-commerce event and the parameters it carried."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    name: str
    detected: bool = True
    has_value: bool = False
    has_currency: bool = False
    has_items: bool = False
    sample_data: dict[str, Any] | None = None


class EcommerceIssue(pydantic.BaseModel):
    """A missing-parameter finding for one e-commerce event."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    severity: IssueSeverity
    event: str
    issue: str
    recommendation: str


class ValueTracking(pydantic.BaseModel):
    """Whether revenue is measurable end to end."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    has_transaction_value: bool = False
    has_currency: bool = False
    has_items: bool = False
    purchase_tracked: bool = False


class EcommerceAnalysis(pydantic.BaseModel):
    """E-commerce funnel coverage reconstructed from the dataLayer."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    detected: bool = False
    platform: Literal["ga4", "ua", "both", "unknown"] = "unknown"
    events: list[EcommerceEvent] = pydantic.Field(default_factory=list)
    value_tracking: ValueTracking = pydantic.Field(default_factory=ValueTracking)
    issues: list[EcommerceIssue] = pydantic.Field(default_factory=list)


class DataLayerResult(pydantic.BaseModel):
    """Events, e-commerce coverage and custom fields of the dataLayer."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    has_data_layer: bool = False
    events: list[DataLayerEvent] = pydantic.Field(default_factory=list)
    ecommerce: EcommerceAnalysis = pydantic.Field(default_factory=EcommerceAnalysis)
    custom_dimensions: list[str] = pydantic.Field(default_factory=list)
    user_properties: list[str] = pydantic.Field(default_factory=list)
    raw_data_layer: list[Any] = pydantic.Field(default_factory=list)

    @classmethod
    def not_detected(cls) -> DataLayerResult:
        """Return the result for a page without a dataLayer."""
        return cls()


# ============================================================================
# Third-party domains
# ============================================================================

DomainCategory = Literal[
    "analytics",
    "advertising",
    "social",
    "cdn",
    "consent",
    "tag-manager",
    "fonts",
    "video",
    "payment",
    "support",
    "other",
]


class ThirdPartyDomain(pydantic.BaseModel):
    """Aggregated requests to one non-first-party domain."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    domain: str
    category: DomainCategory = "other"
    company: str | None = None
    country: str | None = None
    is_eu_based: bool | None = None
    request_count: int = 0
    cookies_set: int = 0
    known: bool = False


class ThirdPartyRisk(pydantic.BaseModel):
    """Domains needing transfer-risk review."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    high_risk_domains: list[str] = pydantic.Field(default_factory=list)
    cross_border_transfers: list[str] = pydantic.Field(default_factory=list)
    unknown_domains: list[str] = pydantic.Field(default_factory=list)


class ThirdPartyDomainsResult(pydantic.BaseModel):
    """Domain→category/company/jurisdiction table."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    total_count: int = 0
    domains: list[ThirdPartyDomain] = pydantic.Field(default_factory=list)
    categories: dict[str, int] = pydantic.Field(default_factory=dict)
    risk_assessment: ThirdPartyRisk = pydantic.Field(default_factory=ThirdPartyRisk)

    @classmethod
    def not_detected(cls) -> ThirdPartyDomainsResult:
        """Return the result for a page without third-party requests."""
        return cls()


class KnownDomain(pydantic.BaseModel):
    """Reference entry for a third-party domain."""

    model_config = serialization.FROZEN_CAMEL_CONFIG

    category: DomainCategory = "other"
    company: str
    country: str
    is_eu: bool
