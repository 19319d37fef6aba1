"""Read-only bundle of every signal the scorer looks at."""

from __future__ import annotations

import dataclasses

from consent_audit.models import consent, signals

TRACKING_COOKIE_CATEGORIES = ("marketing", "analytics")


@dataclasses.dataclass(frozen=True)
class AuditSignals:
    """Extractor outputs plus the optional consent experiment of one page."""

    cookie_banner: signals.CookieBannerResult
    tcf: signals.TcfResult
    consent_mode: signals.ConsentModeResult
    tracking_tags: signals.TrackingTagsResult
    data_layer: signals.DataLayerResult
    third_party: signals.ThirdPartyDomainsResult
    cookies: list[signals.AnalyzedCookie] = dataclasses.field(default_factory=list)
    experiment: consent.ConsentExperimentResult | None = None

    def cookies_in(self, *categories: signals.CookieCategory) -> list[signals.AnalyzedCookie]:
        """Cookies of the given categories."""
        return [c for c in self.cookies if c.category in categories]

    @property
    def tracking_cookies(self) -> list[signals.AnalyzedCookie]:
        return self.cookies_in(*TRACKING_COOKIE_CATEGORIES)

    @property
    def has_tracking(self) -> bool:
        """Any client-side tag, server-side indicator or tracking cookie."""
        return (
            bool(self.tracking_tags.tags)
            or self.tracking_tags.server_side.detected
            or bool(self.tracking_cookies)
        )

    @property
    def has_google_tags(self) -> bool:
        return any(t.gatekeeper == "Google" for t in self.tracking_tags.tags)

    @property
    def has_google_or_meta(self) -> bool:
        return any(t.gatekeeper in ("Google", "Meta") for t in self.tracking_tags.tags)
