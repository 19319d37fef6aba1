"""Shared fixtures for the test suite."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from consent_audit import scoring
from consent_audit.models import consent, crawl, report, signals
from consent_audit.scoring import context

# ── Crawl Factories ─────────────────────────────────────────────

CrawlFactory = Callable[..., crawl.CrawlResult]


@pytest.fixture()
def make_crawl() -> CrawlFactory:
    """Build a ``CrawlResult`` for ``https://www.example.com/`` with overrides."""

    def factory(
        *,
        html: str = "",
        document_html: str = "",
        scripts: list[str] | None = None,
        inline: list[str] | None = None,
        requests: list[str] | None = None,
        cookies: list[crawl.RawCookie] | None = None,
        set_cookies: list[tuple[str, str]] | None = None,
        data_layer: list[Any] | None = None,
        tcf_data: dict[str, Any] | None = None,
        **globals_flags: Any,
    ) -> crawl.CrawlResult:
        script_sources = [crawl.ScriptSource(src=src) for src in scripts or []]
        script_sources += [crawl.ScriptSource(inline=body) for body in inline or []]
        network = [
            crawl.NetworkRequest(url=url, domain=url.split("/")[2], is_third_party="example.com" not in url)
            for url in requests or []
        ]
        tracking_globals = crawl.TrackingGlobals(
            data_layer=data_layer or [],
            has_data_layer=data_layer is not None,
            tcf_data=tcf_data,
            **globals_flags,
        )
        return crawl.CrawlResult(
            url="https://www.example.com/",
            page_url="https://www.example.com/",
            page_domain="www.example.com",
            html=html,
            document_html=document_html,
            scripts=script_sources,
            network_requests=network,
            cookies=cookies or [],
            set_cookie_headers=[crawl.SetCookieHeader(url=url, value=value) for url, value in set_cookies or []],
            tracking_globals=tracking_globals,
        )

    return factory


@pytest.fixture()
def sample_cookie() -> crawl.RawCookie:
    """A basic first-party session cookie."""
    return crawl.RawCookie(
        name="session_id",
        value="abc123",
        domain="www.example.com",
        http_only=True,
        secure=True,
        same_site="Lax",
    )


@pytest.fixture()
def tracking_cookie() -> crawl.RawCookie:
    """A Google Analytics cookie living two years."""
    return crawl.RawCookie(
        name="_ga",
        value="GA1.2.123456789.1234567890",
        domain=".example.com",
        expires=1893456000,
        same_site="None",
    )


# ── Signal Factories ────────────────────────────────────────────

SignalsFactory = Callable[..., context.AuditSignals]


def ga4_tag(**overrides: Any) -> signals.TagDetection:
    """A detected GA4 tag."""
    fields: dict[str, Any] = {
        "platform": "google-analytics",
        "name": "Google Analytics",
        "category": "analytics",
        "tier": "major",
        "gatekeeper": "Google",
        "detection_methods": ["script"],
        "ids": ["G-ABC123"],
    }
    fields.update(overrides)
    return signals.TagDetection(**fields)


def hotjar_tag() -> signals.TagDetection:
    """A detected secondary session-replay tag."""
    return signals.TagDetection(
        platform="hotjar",
        name="Hotjar",
        category="session-replay",
        tier="secondary",
        detection_methods=["script"],
    )


@pytest.fixture()
def make_signals() -> SignalsFactory:
    """Build ``AuditSignals`` where every extractor found nothing unless overridden."""

    def factory(
        *,
        banner: signals.CookieBannerResult | None = None,
        tcf: signals.TcfResult | None = None,
        consent_mode: signals.ConsentModeResult | None = None,
        tags: list[signals.TagDetection] | None = None,
        tracking_tags: signals.TrackingTagsResult | None = None,
        data_layer: signals.DataLayerResult | None = None,
        third_party: signals.ThirdPartyDomainsResult | None = None,
        cookies: list[signals.AnalyzedCookie] | None = None,
        experiment: consent.ConsentExperimentResult | None = None,
    ) -> context.AuditSignals:
        if tracking_tags is None:
            tracking_tags = signals.TrackingTagsResult(tags=tags or [])
        return context.AuditSignals(
            cookie_banner=banner or signals.CookieBannerResult.not_detected(),
            tcf=tcf or signals.TcfResult.not_detected(),
            consent_mode=consent_mode or signals.ConsentModeResult.not_detected(),
            tracking_tags=tracking_tags,
            data_layer=data_layer or signals.DataLayerResult.not_detected(),
            third_party=third_party or signals.ThirdPartyDomainsResult.not_detected(),
            cookies=cookies or [],
            experiment=experiment,
        )

    return factory


@pytest.fixture()
def balanced_banner() -> signals.CookieBannerResult:
    """A banner offering accept and reject side by side."""
    return signals.CookieBannerResult(
        detected=True,
        provider="Usercentrics",
        has_accept_button=True,
        has_reject_button=True,
        has_settings_option=True,
        has_privacy_policy_link=True,
    )


@pytest.fixture()
def consent_mode_v2() -> signals.ConsentModeResult:
    """A complete Consent Mode v2 implementation with a banner-driven update."""
    return signals.ConsentModeResult(
        detected=True,
        version="v2",
        default_consent={
            "ad_storage": "denied",
            "analytics_storage": "denied",
            "ad_user_data": "denied",
            "ad_personalization": "denied",
        },
        update_consent=signals.ConsentModeUpdate(
            detected=True,
            triggered_after_banner=True,
            update_settings={"ad_storage": "granted"},
            update_trigger="banner_click",
        ),
        parameters=signals.ConsentModeParameters(
            ad_storage=True,
            analytics_storage=True,
            ad_user_data=True,
            ad_personalization=True,
        ),
    )


def analyzed(name: str, category: signals.CookieCategory, **overrides: Any) -> signals.AnalyzedCookie:
    """An analysed cookie of *category*."""
    return signals.AnalyzedCookie(name=name, domain=".example.com", category=category, **overrides)


# ── Result Factories ────────────────────────────────────────────


@pytest.fixture()
def analysis_result(make_signals: SignalsFactory) -> report.AnalysisResult:
    """A scored quick-scan result for a page without banner or tracking."""
    s = make_signals()
    scored = scoring.score_signals(s)
    return report.AnalysisResult(
        url="https://www.example.com/",
        timestamp="2026-01-01T00:00:00+00:00",
        scan_mode="quick",
        cookie_banner=s.cookie_banner,
        tcf=s.tcf,
        google_consent_mode=s.consent_mode,
        tracking_tags=s.tracking_tags,
        data_layer=s.data_layer,
        third_party_domains=s.third_party,
        gdpr_checklist=scored.gdpr_checklist,
        dma_checklist=scored.dma_checklist,
        issues=scored.issues,
        score=scored.breakdown.overall,
        score_breakdown=scored.breakdown,
        audit_steps=[
            report.AuditStep(step="page-load", status="completed", message="Seite geladen", timestamp="t"),
        ],
    )
