"""
Cookie banner detection.

A banner is reported when a CMP fingerprint matches, when CMP network
traffic is seen, when banner class markers are present, when a dialog
element co-occurs with a cookie keyword, or when at least three
distinct banner keywords appear together.  Button presence is decided
from the labels of button-like elements using the same vocabulary the
consent engine clicks with.
"""

from __future__ import annotations

import html as html_mod
import re

from consent_audit.consent import search, vocabulary
from consent_audit.extractors import matching
from consent_audit.models import crawl, signals
from consent_audit.utils import logger

log = logger.create_logger("CookieBanner")

MIN_KEYWORD_HITS = 3

# CMP fingerprints in HTML and scripts, in priority order.  Short
# generic fragments are avoided so prose cannot trigger a provider.
_PROVIDER_RULES = matching.compile_table(
    {
        "Usercentrics": ("usercentrics", "uc_ui", "__uccmp", "usercentrics-root"),
        "Cookiebot": ("cookiebot", "cybotcookiebot"),
        "OneTrust": ("onetrust", "optanon", "cookielaw.org", "ot-sdk-container"),
        "CookieYes": ("cookieyes", "cky-consent", "cky_consent"),
        "Quantcast": ("quantcast choice", "qc-cmp2", "__qccmp"),
        "TrustArc": ("trustarc", "truste-consent"),
        "Didomi": ("didomi",),
        "Sourcepoint": ("sourcepoint", "sp_message_container", "privacy-mgmt.com"),
        "Consentmanager": ("consentmanager.net", "cmpbox"),
        "Osano": ("osano-cm", "osano.com"),
        "Klaro": ("klaro",),
        "Iubenda": ("iubenda",),
        "Termly": ("termly.io", "termly-code-snippet"),
        "Admiral": ("getadmiral",),
        "Securiti": ("securiti.ai",),
        "Transcend": ("transcend.io",),
        "LiveRamp": ("ats.rlcdn.com", "liveramp privacy manager"),
        "Borlabs Cookie": ("borlabs", "borlabscookie"),
        "Complianz": ("complianz", "cmplz-cookiebanner", "cmplz_"),
        "GDPR Cookie Consent": ("gdpr-cookie-consent", "webtoffee", "wt-cli"),
        "Cookie Notice": ("cookie-notice-js", "cookie-notice-container"),
        "Cookie Law Info": ("cookie-law-info",),
        "Real Cookie Banner": ("real-cookie-banner", "rcbconsentmanager", "devowl"),
        "CCM19": ("ccm19",),
        "Cookie Script": ("cookie-script.com", "cookiescript"),
        "CookieFirst": ("cookiefirst",),
        "Pandectes": ("pandectes",),
        "Orestbida": ("orestbida", "cc--main", "cc_banner"),
        "Axeptio": ("axeptio",),
        "Cookie Information": ("cookieinformation", "cookie-information"),
        "CookiePro": ("cookiepro",),
        "Crownpeak": ("crownpeak", "evidon"),
        "Ensighten": ("ensighten",),
    },
    literal=True,
)

# CMP hosts seen in network traffic.
_PROVIDER_DOMAIN_RULES = matching.compile_table(
    {
        "Cookiebot": ("cookiebot.com",),
        "OneTrust": ("onetrust.com", "cdn.cookielaw.org"),
        "Usercentrics": ("usercentrics.eu",),
        "Sourcepoint": ("privacy-mgmt.com",),
        "Quantcast": ("quantcast.com", "quantcast.mgr.consensu.org"),
        "Didomi": ("didomi.io", "sdk.privacy-center.org"),
        "TrustArc": ("trustarc.com",),
        "Iubenda": ("iubenda.com",),
        "Termly": ("termly.io",),
        "Osano": ("osano.com",),
        "CookieYes": ("cookieyes.com", "cdn-cookieyes.com"),
        "Klaro": ("klaro.org",),
        "Consentmanager": ("consentmanager.net",),
    },
    literal=True,
)

_BANNER_MARKERS = matching.compile_all(
    re.escape(marker)
    for marker in (
        "cookie-banner", "cookie-consent", "consent-banner", "privacy-banner", "gdpr-banner",
        "cookie-notice", "cookie-popup", "consent-popup", "cookie-modal", "consent-modal",
        "cookie-overlay", "consent-overlay", "cookie_banner", "consent_banner", "ot-sdk-container",
        "uc-banner", "uc-center-container", "rcb-banner", "didomi-notice", "didomi-popup",
        "qc-cmp2-container", "cky-consent-container", "cmplz-cookiebanner",
    )
)

_DIALOG_RE = re.compile(r"""role=["'](?:alert)?dialog["']|aria-modal=["']true["']|data-(?:consent|cookie|gdpr|cmp)\b""", re.I)
_DIALOG_KEYWORD_RE = re.compile(r"cookie|consent|datenschutz|privacy|dsgvo|gdpr", re.I)

_BANNER_KEYWORDS = matching.compile_all(
    re.escape(keyword)
    for keyword in (
        "cookie", "consent", "privacy", "datenschutz", "privatsphäre", "einwilligung",
        "akzeptieren", "accept", "ablehnen", "reject", "decline", "alle akzeptieren",
        "accept all", "alle ablehnen", "reject all", "einstellungen", "settings",
        "preferences", "cookie-einstellungen", "privacy settings", "nur essenzielle",
        "only essential",
    )
)

# Button-like elements: the label is the element text or a labelling attribute.
_BUTTON_RE = re.compile(
    r"<(button|a)\b([^>]*)>(.*?)</\1\s*>|<([a-z0-9-]+)\b([^>]*\brole=[\"']button[\"'][^>]*)>(.*?)</\4\s*>",
    re.I | re.S,
)
_INPUT_RE = re.compile(r"<input\b([^>]*\btype=[\"'](?:button|submit)[\"'][^>]*)>", re.I)
_LABEL_ATTR_RE = re.compile(r"""\b(?:aria-label|title|value)=["']([^"']+)["']""", re.I)
_TAG_RE = re.compile(r"<[^>]+>")

_HIGH_LAYER_RE = re.compile(
    r"position:\s*(?:fixed|absolute)[^;\"'}]*;[^\"'}]*?z-index:\s*\d{4,}"
    r"|z-index:\s*\d{4,}[^;\"'}]*;[^\"'}]*?position:\s*(?:fixed|absolute)",
    re.I,
)
_OVERLAY_MARKER_RE = re.compile(
    r"""(?:class|id)=["'][^"']*(?:overlay|backdrop|modal-backdrop|cookie-wall|consent-wall)[^"']*["']""", re.I
)
_SCROLL_LOCK_RE = re.compile(
    r"""<(?:body|html)\b[^>]*class=["'][^"']*(?:no-scroll|noscroll|modal-open|overflow-hidden|body-locked|scroll-lock)""",
    re.I,
)

_PRIVACY_LINK_RE = re.compile(
    r"""<a\b[^>]*href=["'][^"']*(?:datenschutz|privacy|privacidad)[^"']*["']"""
    r"""|<a\b[^>]*>[^<]{0,80}(?:datenschutzerklärung|datenschutzhinweis|datenschutz|privacy policy|privacy)[^<]{0,80}</a>""",
    re.I,
)


def _button_labels(html: str) -> list[str]:
    """Visible labels and labelling attributes of button-like elements."""
    labels: list[str] = []
    for match in _BUTTON_RE.finditer(html):
        attrs = match.group(2) or match.group(5) or ""
        inner = match.group(3) if match.group(3) is not None else match.group(6) or ""
        text = html_mod.unescape(_TAG_RE.sub(" ", inner)).strip()
        if text:
            labels.append(text)
        labels.extend(html_mod.unescape(v) for v in _LABEL_ATTR_RE.findall(attrs))
    for match in _INPUT_RE.finditer(html):
        labels.extend(html_mod.unescape(v) for v in _LABEL_ATTR_RE.findall(match.group(1)))
    return labels


def _has_control(labels: list[str], *intents: vocabulary.Intent) -> bool:
    return any(
        search.phrase_match_level(label, intent) > search.NO_MATCH for label in labels for intent in intents
    )


def detect_provider(crawl_result: crawl.CrawlResult) -> str | None:
    """CMP name from page fingerprints, else from CMP network traffic."""
    provider = matching.first_signal(_PROVIDER_RULES, crawl_result.combined_content())
    if provider:
        return provider
    for request in crawl_result.network_requests:
        provider = matching.first_signal(_PROVIDER_DOMAIN_RULES, request.url)
        if provider:
            return provider
    return None


def detect_presence(html: str) -> bool:
    """Banner markers, a cookie dialog, or co-occurring banner keywords."""
    if matching.any_match(_BANNER_MARKERS, html):
        return True
    if _DIALOG_RE.search(html) and _DIALOG_KEYWORD_RE.search(html):
        return True
    return matching.distinct_hits(_BANNER_KEYWORDS, html) >= MIN_KEYWORD_HITS


def detect_blocking(html: str) -> bool:
    """A high layered overlay together with a scroll-locked body, or both overlay signals."""
    high_layer = bool(_HIGH_LAYER_RE.search(html))
    overlay = bool(_OVERLAY_MARKER_RE.search(html))
    scroll_lock = bool(_SCROLL_LOCK_RE.search(html))
    return (scroll_lock and (high_layer or overlay)) or (high_layer and overlay)


def analyze(crawl_result: crawl.CrawlResult) -> signals.CookieBannerResult:
    """Detect the consent banner and the controls it offers."""
    html = crawl_result.html
    provider = detect_provider(crawl_result)
    detected = bool(provider) or detect_presence(html)
    if not detected:
        log.debug("No cookie banner detected")
        return signals.CookieBannerResult.not_detected()

    labels = _button_labels(html)
    result = signals.CookieBannerResult(
        detected=True,
        provider=provider,
        has_accept_button=_has_control(labels, "accept"),
        has_reject_button=_has_control(labels, "reject", "essential"),
        has_essential_save_button=_has_control(labels, "essential", "save"),
        has_settings_option=_has_control(labels, "settings"),
        blocks_content=detect_blocking(html),
        has_privacy_policy_link=bool(_PRIVACY_LINK_RE.search(html)),
    )
    log.debug(
        "Cookie banner analysed",
        {"provider": provider, "accept": result.has_accept_button, "reject": result.has_reject_button},
    )
    return result
