"""
Advertising and analytics tag detection.

Every platform is a ``PlatformDefinition`` row: script, network,
global and ID patterns.  One generic loop evaluates the rows, so a
new platform is a new row.  Server-side tracking indicators are
reported separately because they are invisible to the browser's
own tag inventory.
"""

from __future__ import annotations

import dataclasses
import re

from consent_audit.extractors import matching
from consent_audit.models import crawl, signals
from consent_audit.utils import logger
from consent_audit.utils import url as url_mod

log = logger.create_logger("TrackingTags")

GTM_PLATFORM = "google-tag-manager"

MAX_EVIDENCE = 5


@dataclasses.dataclass(frozen=True)
class PlatformDefinition:
    """Declarative detection rules for one tracking platform."""

    platform: str
    name: str
    category: signals.TagCategory
    tier: signals.TagTier
    script: tuple[str, ...] = ()
    network: tuple[str, ...] = ()
    globals: tuple[str, ...] = ()
    ids: tuple[str, ...] = ()
    gatekeeper: str | None = None
    # the global alone is shared with other products and needs an ID to count
    global_needs_id: bool = False


PLATFORMS: tuple[PlatformDefinition, ...] = (
    # ── Major advertising and analytics platforms ──
    PlatformDefinition(
        platform="google-analytics",
        name="Google Analytics",
        category="analytics",
        tier="major",
        gatekeeper="Google",
        script=(r"google-analytics\.com/(?:analytics|ga)\.js", r"googletagmanager\.com/gtag/js\?id=G-"),
        network=(r"google-analytics\.com/(?:g/|j/)?collect", r"analytics\.google\.com/g/collect"),
        globals=("gtag",),
        ids=(r"\b(G-[A-Z0-9]{6,12})\b", r"\b(UA-\d{4,10}-\d{1,4})\b"),
        global_needs_id=True,
    ),
    PlatformDefinition(
        platform=GTM_PLATFORM,
        name="Google Tag Manager",
        category="tag-manager",
        tier="major",
        gatekeeper="Google",
        script=(r"googletagmanager\.com/gtm\.js", r"googletagmanager\.com/ns\.html"),
        network=(r"googletagmanager\.com/gtm\.js",),
        ids=(r"\b(GTM-[A-Z0-9]{4,9})\b",),
    ),
    PlatformDefinition(
        platform="google-ads",
        name="Google Ads",
        category="advertising",
        tier="major",
        gatekeeper="Google",
        script=(r"googleadservices\.com/pagead/conversion", r"googletagmanager\.com/gtag/js\?id=AW-"),
        network=(r"googleadservices\.com/pagead", r"googleads\.g\.doubleclick\.net", r"google\.com/pagead/",
                 r"ad\.doubleclick\.net", r"google\.[a-z.]+/ads/ga-audiences"),
        ids=(r"\b(AW-\d{6,12})\b", r"\b(DC-\d{5,10})\b"),
    ),
    PlatformDefinition(
        platform="meta-pixel",
        name="Meta Pixel",
        category="advertising",
        tier="major",
        gatekeeper="Meta",
        script=(r"connect\.facebook\.net/[^\"'\s]*fbevents\.js", r"connect\.facebook\.net/signals"),
        network=(r"facebook\.com/tr[/?]",),
        globals=("fbq", "fbevents", "_fbq"),
        ids=(
            r"fbq\s*\(\s*['\"]init['\"]\s*,\s*['\"](\d{15,16})['\"]",
            r"facebook\.com/tr/?\?(?:[^\s\"'#]*&)?id=(\d{15,16})\b",
        ),
    ),
    PlatformDefinition(
        platform="linkedin-insight",
        name="LinkedIn Insight Tag",
        category="advertising",
        tier="major",
        gatekeeper="Microsoft",
        script=(r"snap\.licdn\.com/li\.lms-analytics",),
        network=(r"px\.ads\.linkedin\.com", r"linkedin\.com/px/"),
        globals=("lintrk", "_linkedin_data_partner_ids"),
        ids=(r"_linkedin_partner_id\s*=\s*['\"]?(\d{4,10})",),
    ),
    PlatformDefinition(
        platform="tiktok-pixel",
        name="TikTok Pixel",
        category="advertising",
        tier="major",
        gatekeeper="ByteDance",
        script=(r"analytics\.tiktok\.com/i18n/pixel",),
        network=(r"analytics\.tiktok\.com/api",),
        globals=("ttq",),
        ids=(r"ttq\.load\s*\(\s*['\"]([A-Z0-9]{15,25})['\"]",),
    ),
    PlatformDefinition(
        platform="pinterest-tag",
        name="Pinterest Tag",
        category="advertising",
        tier="major",
        script=(r"s\.pinimg\.com/ct/core\.js",),
        network=(r"ct\.pinterest\.com",),
        globals=("pintrk",),
        ids=(r"pintrk\s*\(\s*['\"]load['\"]\s*,\s*['\"](\d{10,16})['\"]",),
    ),
    PlatformDefinition(
        platform="snapchat-pixel",
        name="Snapchat Pixel",
        category="advertising",
        tier="major",
        script=(r"sc-static\.net/scevent\.min\.js",),
        network=(r"tr\.snapchat\.com",),
        globals=("snaptr",),
        ids=(r"snaptr\s*\(\s*['\"]init['\"]\s*,\s*['\"]([a-f0-9-]{36})['\"]",),
    ),
    PlatformDefinition(
        platform="x-pixel",
        name="X (Twitter) Pixel",
        category="advertising",
        tier="major",
        script=(r"static\.ads-twitter\.com/uwt\.js",),
        network=(r"analytics\.twitter\.com", r"t\.co/i/adsct", r"ads-api\.twitter\.com"),
        globals=("twq",),
        ids=(r"twq\s*\(\s*['\"](?:init|config)['\"]\s*,\s*['\"]([a-z0-9]{5,6})['\"]",),
    ),
    PlatformDefinition(
        platform="reddit-pixel",
        name="Reddit Pixel",
        category="advertising",
        tier="major",
        script=(r"redditstatic\.com/ads/pixel\.js",),
        network=(r"alb\.reddit\.com", r"pixel-config\.reddit\.com"),
        globals=("rdt",),
        ids=(r"rdt\s*\(\s*['\"]init['\"]\s*,\s*['\"]((?:t2|a2)_[a-z0-9]+)['\"]",),
    ),
    PlatformDefinition(
        platform="microsoft-ads",
        name="Microsoft Advertising (UET)",
        category="advertising",
        tier="major",
        gatekeeper="Microsoft",
        script=(r"bat\.bing\.com/bat\.js",),
        network=(r"bat\.bing\.com/action",),
        globals=("uetq",),
        ids=(r"\bti\s*:\s*['\"]?(\d{6,10})",),
    ),
    PlatformDefinition(
        platform="criteo",
        name="Criteo",
        category="advertising",
        tier="major",
        script=(r"static\.criteo\.net/js/ld/",),
        network=(r"\.criteo\.(?:com|net)/",),
        globals=("criteo_q",),
    ),
    # ── Secondary tools: heatmaps, product analytics, marketing automation ──
    PlatformDefinition(
        platform="hotjar",
        name="Hotjar",
        category="session-replay",
        tier="secondary",
        script=(r"static\.hotjar\.com",),
        network=(r"\.hotjar\.(?:com|io)/",),
        globals=("hj",),
        ids=(r"hjid\s*:\s*(\d{5,10})",),
    ),
    PlatformDefinition(
        platform="microsoft-clarity",
        name="Microsoft Clarity",
        category="session-replay",
        tier="secondary",
        gatekeeper="Microsoft",
        script=(r"clarity\.ms/tag/",),
        network=(r"\.clarity\.ms/collect",),
        globals=("clarity",),
        ids=(r"clarity\.ms/tag/([a-z0-9]{8,12})",),
    ),
    PlatformDefinition(
        platform="matomo",
        name="Matomo",
        category="analytics",
        tier="secondary",
        script=(r"matomo\.js", r"piwik\.js"),
        network=(r"matomo\.php", r"piwik\.php"),
        globals=("_paq",),
    ),
    PlatformDefinition(
        platform="hubspot",
        name="HubSpot",
        category="marketing-automation",
        tier="secondary",
        script=(r"js\.hs-scripts\.com/", r"js\.hs-analytics\.net"),
        network=(r"track\.hubspot\.com",),
        globals=("_hsq",),
        ids=(r"js\.hs-scripts\.com/(\d{5,10})\.js",),
    ),
    PlatformDefinition(
        platform="adobe-analytics",
        name="Adobe Analytics",
        category="analytics",
        tier="secondary",
        script=(r"assets\.adobedtm\.com", r"AppMeasurement\.js"),
        network=(r"\.omtrdc\.net/b/ss", r"\.2o7\.net"),
    ),
    PlatformDefinition(
        platform="segment",
        name="Segment",
        category="analytics",
        tier="secondary",
        script=(r"cdn\.segment\.com/analytics\.js",),
        network=(r"api\.segment\.io",),
    ),
    PlatformDefinition(
        platform="mixpanel",
        name="Mixpanel",
        category="analytics",
        tier="secondary",
        script=(r"cdn\.mxpnl\.com", r"mixpanel-2-latest"),
        network=(r"api(?:-js)?\.mixpanel\.com",),
        globals=("mixpanel",),
    ),
    PlatformDefinition(
        platform="amplitude",
        name="Amplitude",
        category="analytics",
        tier="secondary",
        script=(r"cdn\.amplitude\.com",),
        network=(r"api2?\.amplitude\.com",),
        globals=("amplitude",),
    ),
    PlatformDefinition(
        platform="plausible",
        name="Plausible",
        category="analytics",
        tier="secondary",
        script=(r"plausible\.io/js/",),
        network=(r"plausible\.io/api/event",),
    ),
    PlatformDefinition(
        platform="fullstory",
        name="FullStory",
        category="session-replay",
        tier="secondary",
        script=(r"fullstory\.com/s/fs\.js",),
        network=(r"rs\.fullstory\.com",),
    ),
)


@dataclasses.dataclass(frozen=True)
class _CompiledPlatform:
    definition: PlatformDefinition
    script: tuple[re.Pattern[str], ...]
    network: tuple[re.Pattern[str], ...]
    ids: tuple[re.Pattern[str], ...]


def _compile(definition: PlatformDefinition) -> _CompiledPlatform:
    return _CompiledPlatform(
        definition=definition,
        script=matching.compile_all(definition.script),
        network=matching.compile_all(definition.network),
        # IDs are case sensitive
        ids=matching.compile_all(definition.ids, flags=0),
    )


_COMPILED = tuple(_compile(p) for p in PLATFORMS)
_BY_PLATFORM = {c.definition.platform: c for c in _COMPILED}


# ============================================================================
# Marketing parameters
# ============================================================================

_CLICK_ID_PARAMETERS = ("gclid", "dclid", "wbraid", "gbraid", "fbclid", "msclkid", "ttclid", "li_fat_id")


def detect_marketing_parameters(crawl_result: crawl.CrawlResult) -> signals.MarketingParameters:
    """Click-ID and ``utm_*`` parameters in the page URL and request URLs."""
    seen: set[str] = set()
    for address in [crawl_result.page_url, *(r.url for r in crawl_result.network_requests)]:
        seen |= url_mod.query_parameter_names(address)
    flags: dict[str, bool] = {name: name in seen for name in _CLICK_ID_PARAMETERS}
    flags["utm"] = any(name.startswith("utm_") for name in seen)
    return signals.MarketingParameters(**flags)


# ============================================================================
# Server-side indicators
# ============================================================================

# Paths that only make sense as tracking endpoints.
_SGTM_PATH_RE = re.compile(r"/gtm\.js\?id=GTM-|/gtag/js\?id=|/g/collect\b|/j/collect\b|/mp/collect\b", re.I)
_SGTM_HOST_RE = re.compile(r"^(?:sgtm|gtm|sst|ss|server|tagging|tm|data|metrics|collect)\.", re.I)
_META_CAPI_RE = re.compile(r"/capi\b|conversions?[-_]?api|/fb[-_]?events?\b|/meta[-_]?events?\b", re.I)
_TIKTOK_API_RE = re.compile(r"business-api\.tiktok\.com|/tiktok[-_]?events?\b|/ttq[-_]?events?\b", re.I)
_LINKEDIN_CAPI_RE = re.compile(r"/linkedin[-_]?(?:capi|conversions?)\b|/li[-_]capi\b", re.I)
_PROXY_PATH_RE = re.compile(
    r"/(?:analytics|gtag|fbevents|uwt|pixel|insight|tracking)\.js\b|/collect\b|/tr/?\?|/pixel\b", re.I
)
_CUSTOM_ENDPOINT_RE = re.compile(r"/(?:track|tracking|events?|beacon|telemetry|log-event)\b", re.I)
_DEDUP_EVENT_ID_RE = re.compile(r"facebook\.com/tr[/?][^\s]*\beid=", re.I)
_BRIDGED_COOKIES = frozenset({"_ga", "_fbp", "_fbc", "_gcl_au", "FPID", "FPLC", "_ttp", "FPAU", "FPGCLAW"})
_TRACKING_HOST_RE = re.compile(r"google|facebook|doubleclick|tiktok|linkedin|bing|twitter", re.I)


def _first_party_requests(crawl_result: crawl.CrawlResult) -> list[crawl.NetworkRequest]:
    return [r for r in crawl_result.network_requests if not r.is_third_party]


def detect_server_side(crawl_result: crawl.CrawlResult) -> signals.ServerSideTracking:
    """Indicators that tracking is routed through the site's own servers."""
    first_party = _first_party_requests(crawl_result)
    indicators: list[signals.ServerSideIndicator] = []
    endpoints: list[str] = []

    def endpoint(request: crawl.NetworkRequest) -> str:
        return request.url.split("?", 1)[0][:200]

    def add(
        kind: signals.ServerSideType,
        confidence: signals.ConfidenceLevel,
        description: str,
        evidence: list[str],
    ) -> None:
        if evidence:
            indicators.append(
                signals.ServerSideIndicator(
                    type=kind, confidence=confidence, description=description, evidence=evidence[:MAX_EVIDENCE]
                )
            )

    sgtm_hits = [
        r for r in first_party if _SGTM_PATH_RE.search(r.url) and not _TRACKING_HOST_RE.search(r.domain)
    ]
    add(
        "sgtm",
        "high" if any(_SGTM_HOST_RE.search(r.domain) for r in sgtm_hits) else "medium",
        "Server-Side Google Tag Manager auf eigener Domain",
        [endpoint(r) for r in sgtm_hits],
    )

    capi_hits = [endpoint(r) for r in first_party if _META_CAPI_RE.search(r.url)]
    dedup_hits = [r.url[:200] for r in crawl_result.network_requests if _DEDUP_EVENT_ID_RE.search(r.url)]
    add("meta_capi", "medium", "Meta Conversions API (Server-Events)", capi_hits)
    add("meta_capi", "low", "Meta Pixel mit Event-ID (Deduplizierung mit Server-Events)", dedup_hits)

    tiktok_hits = [endpoint(r) for r in crawl_result.network_requests if _TIKTOK_API_RE.search(r.url)]
    add("tiktok_events_api", "medium", "TikTok Events API", tiktok_hits)

    linkedin_hits = [endpoint(r) for r in first_party if _LINKEDIN_CAPI_RE.search(r.url)]
    add("linkedin_capi", "medium", "LinkedIn Conversions API", linkedin_hits)

    proxy_hits = [
        r for r in first_party if _PROXY_PATH_RE.search(r.url) and r not in sgtm_hits
    ]
    add("first_party_proxy", "medium", "Tracking-Skripte oder -Endpunkte über eigene Domain", [endpoint(r) for r in proxy_hits])

    custom_hits = [
        r for r in first_party
        if r.method.upper() == "POST" and _CUSTOM_ENDPOINT_RE.search(r.url) and r not in proxy_hits
    ]
    add("custom_endpoint", "low", "Eigener Tracking-Endpunkt", [endpoint(r) for r in custom_hits])

    bridged = [
        f"{header.cookie_name} via {url_mod.extract_domain(header.url)}"
        for header in crawl_result.set_cookie_headers
        if header.cookie_name in _BRIDGED_COOKIES
        and header.http_only
        and not url_mod.is_third_party(header.url, crawl_result.page_url)
    ]
    add("cookie_bridging", "high", "Tracking-Cookies serverseitig als HttpOnly gesetzt", bridged)

    for r in sgtm_hits + proxy_hits + custom_hits:
        value = endpoint(r)
        if value not in endpoints:
            endpoints.append(value)

    kinds = {i.type for i in indicators}
    return signals.ServerSideTracking(
        detected=bool(indicators),
        indicators=indicators,
        first_party_endpoints=endpoints,
        cookie_bridging="cookie_bridging" in kinds,
        summary=signals.ServerSideSummary(
            has_server_side_gtm="sgtm" in kinds,
            has_meta_capi="meta_capi" in kinds,
            has_first_party_proxy="first_party_proxy" in kinds,
            has_tiktok_events_api="tiktok_events_api" in kinds,
            has_linkedin_capi="linkedin_capi" in kinds,
            has_cookie_bridging="cookie_bridging" in kinds,
        ),
    )


# ============================================================================
# Analysis
# ============================================================================


def _detect_platform(
    compiled: _CompiledPlatform,
    script_texts: list[str],
    request_urls: list[str],
    tracking_globals: crawl.TrackingGlobals,
    content: str,
) -> signals.TagDetection | None:
    definition = compiled.definition
    methods: list[signals.DetectionMethod] = []
    if matching.any_match_in(compiled.script, script_texts):
        methods.append("script")
    if matching.any_match_in(compiled.network, request_urls):
        methods.append("network")
    if any(tracking_globals.has(name) for name in definition.globals):
        methods.append("global")
    if not methods:
        return None

    ids: list[str] = []
    for pattern in compiled.ids:
        for found in matching.extract_ids(pattern, content):
            if found not in ids:
                ids.append(found)
    if methods == ["global"] and definition.global_needs_id and not ids:
        return None
    return signals.TagDetection(
        platform=definition.platform,
        name=definition.name,
        category=definition.category,
        tier=definition.tier,
        gatekeeper=definition.gatekeeper,
        detection_methods=methods,
        ids=ids,
    )


def _served_directly(tag: signals.TagDetection, crawl_result: crawl.CrawlResult) -> bool:
    """Whether the tag's loader is part of the document as the server sent it.

    Tags injected by a tag manager end up in the rendered DOM too, so
    the served document is the only reliable witness.  Without it, a
    script-tag sighting in the rendered DOM is the best available
    evidence.
    """
    if not crawl_result.document_html:
        return "script" in tag.detection_methods
    return matching.any_match(_BY_PLATFORM[tag.platform].script, crawl_result.document_html)


def analyze(crawl_result: crawl.CrawlResult) -> signals.TrackingTagsResult:
    """Detect tracking platforms, marketing parameters and server-side indicators."""
    script_texts = [crawl_result.html, *(s.text for s in crawl_result.scripts)]
    request_urls = [r.url for r in crawl_result.network_requests]
    content = crawl_result.combined_content() + " " + " ".join(request_urls)

    tags: list[signals.TagDetection] = []
    for compiled in _COMPILED:
        tag = _detect_platform(compiled, script_texts, request_urls, crawl_result.tracking_globals, content)
        if tag:
            tags.append(tag)

    if any(t.platform == GTM_PLATFORM for t in tags):
        tags = [
            t.model_copy(update={"via_tag_manager": True})
            if t.platform != GTM_PLATFORM and not _served_directly(t, crawl_result)
            else t
            for t in tags
        ]

    result = signals.TrackingTagsResult(
        tags=tags,
        marketing_parameters=detect_marketing_parameters(crawl_result),
        server_side=detect_server_side(crawl_result),
    )
    log.debug(
        "Tracking tags analysed",
        {
            "tags": [t.platform for t in tags],
            "serverSide": [i.type for i in result.server_side.indicators],
        },
    )
    return result
