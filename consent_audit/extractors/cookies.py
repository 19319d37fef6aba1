"""
Cookie categorisation.

Assigns every cookie exactly one category from its name and domain
alone: exact name table first, then name patterns, then the setting
domain.  Lifetime is computed relative to an explicit ``now`` so the
result is reproducible.
"""

from __future__ import annotations

import math
import re
import time
from datetime import datetime, timezone

from consent_audit.extractors import matching
from consent_audit.models import crawl, signals
from consent_audit.utils import errors
from consent_audit.utils import url as url_mod

LONG_LIVED_DAYS = 400
_SECONDS_PER_DAY = 86400
_MAX_VALUE_CHARS = 50

# name → (category, service)
_EXACT: dict[str, tuple[signals.CookieCategory, str | None]] = {
    "PHPSESSID": ("necessary", None),
    "JSESSIONID": ("necessary", None),
    "ASP.NET_SessionId": ("necessary", None),
    "csrf": ("necessary", None),
    "_csrf": ("necessary", None),
    "csrftoken": ("necessary", None),
    "XSRF-TOKEN": ("necessary", None),
    "session": ("necessary", None),
    "sessionid": ("necessary", None),
    "__cf_bm": ("necessary", "Cloudflare"),
    "cf_clearance": ("necessary", "Cloudflare"),
    "CookieConsent": ("necessary", "Cookiebot"),
    "OptanonConsent": ("necessary", "OneTrust"),
    "OptanonAlertBoxClosed": ("necessary", "OneTrust"),
    "euconsent-v2": ("necessary", "IAB TCF"),
    "uc_settings": ("necessary", "Usercentrics"),
    "didomi_token": ("necessary", "Didomi"),
    "borlabs-cookie": ("necessary", "Borlabs"),
    "cmplz_consented_services": ("necessary", "Complianz"),
    "_ga": ("analytics", "Google Analytics"),
    "_gid": ("analytics", "Google Analytics"),
    "_gat": ("analytics", "Google Analytics"),
    "__utma": ("analytics", "Google Analytics"),
    "__utmb": ("analytics", "Google Analytics"),
    "__utmc": ("analytics", "Google Analytics"),
    "__utmz": ("analytics", "Google Analytics"),
    "_hjid": ("analytics", "Hotjar"),
    "_hjSessionUser": ("analytics", "Hotjar"),
    "_clck": ("analytics", "Microsoft Clarity"),
    "_clsk": ("analytics", "Microsoft Clarity"),
    "amplitude": ("analytics", "Amplitude"),
    "mixpanel": ("analytics", "Mixpanel"),
    "_pk_id": ("analytics", "Matomo"),
    "_pk_ses": ("analytics", "Matomo"),
    "ajs_anonymous_id": ("analytics", "Segment"),
    "_fbp": ("marketing", "Meta"),
    "_fbc": ("marketing", "Meta"),
    "fr": ("marketing", "Meta"),
    "_gcl_au": ("marketing", "Google Ads"),
    "_gcl_aw": ("marketing", "Google Ads"),
    "IDE": ("marketing", "Google Ads"),
    "NID": ("marketing", "Google"),
    "test_cookie": ("marketing", "Google Ads"),
    "_pin_unauth": ("marketing", "Pinterest"),
    "_pinterest_ct_ua": ("marketing", "Pinterest"),
    "lidc": ("marketing", "LinkedIn"),
    "bcookie": ("marketing", "LinkedIn"),
    "li_sugr": ("marketing", "LinkedIn"),
    "_ttp": ("marketing", "TikTok"),
    "_uetsid": ("marketing", "Microsoft Ads"),
    "_uetvid": ("marketing", "Microsoft Ads"),
    "MUID": ("marketing", "Microsoft Ads"),
    "_scid": ("marketing", "Snapchat"),
    "cto_bundle": ("marketing", "Criteo"),
    "personalization_id": ("marketing", "X (Twitter)"),
    "_rdt_uuid": ("marketing", "Reddit"),
    "lang": ("functional", None),
    "locale": ("functional", None),
    "timezone": ("functional", None),
    "currency": ("functional", None),
}

# Lower-cased exact lookups for names sent with unusual casing.
_EXACT_LOWER = {name.lower(): value for name, value in _EXACT.items()}

# Name patterns in priority order; marketing and analytics come
# before the generic "session" rule so "_hjSession_123" stays analytics.
_NAME_RULES = matching.compile_table(
    {
        "marketing": (r"^_gcl", r"^_fb", r"^_tt_", r"^_ttp", r"^_uet", r"^_pin", r"^_scid", r"^cto_", r"^__adroll",
                      r"^_rdt", r"^li_", r"^_li", r"^ads?_", r"^__gads", r"^__gpi"),
        "analytics": (r"^_ga(_|$)", r"^_gat", r"^__utm", r"^_hj", r"^_cl(ck|sk)", r"^_pk_", r"^amplitude",
                      r"^amp_", r"^mp_", r"^mixpanel", r"^ajs_", r"^_vwo", r"^_vis_opt", r"^optimizely",
                      r"^mf_", r"^_dc_gtm", r"^hubspotutk", r"^__hs"),
        "necessary": (r"sessid", r"session", r"csrf", r"xsrf", r"^__host-", r"^__secure-", r"consent",
                      r"^cookieconsent", r"^optanon", r"^euconsent", r"^cf_", r"^__cf"),
        "functional": (r"^lang", r"locale", r"language", r"timezone", r"currency", r"^wp-settings"),
    },
    flags=re.IGNORECASE,
)

# Domain fallbacks: (domain pattern, category, service).
_DOMAIN_RULES: tuple[tuple[re.Pattern[str], signals.CookieCategory, str], ...] = (
    (re.compile(r"doubleclick\.net$|googleadservices\.com$"), "marketing", "Google Ads"),
    (re.compile(r"google(\.[a-z.]+)?$|google-analytics\.com$"), "analytics", "Google"),
    (re.compile(r"facebook\.com$|fb\.com$|facebook\.net$"), "marketing", "Meta"),
    (re.compile(r"linkedin\.com$"), "marketing", "LinkedIn"),
    (re.compile(r"tiktok\.com$"), "marketing", "TikTok"),
    (re.compile(r"bing\.com$|clarity\.ms$"), "marketing", "Microsoft"),
    (re.compile(r"criteo\.com$|criteo\.net$"), "marketing", "Criteo"),
    (re.compile(r"hotjar\.com$"), "analytics", "Hotjar"),
)

_PURPOSES: dict[signals.CookieCategory, str] = {
    "necessary": "Technisch notwendig (Sitzung, Sicherheit, Einwilligung)",
    "functional": "Speichert Einstellungen wie Sprache oder Währung",
    "analytics": "Reichweitenmessung und Nutzungsanalyse",
    "marketing": "Werbung, Retargeting und Conversion-Tracking",
}


def categorize(name: str, domain: str = "") -> tuple[signals.CookieCategory, str | None]:
    """Return ``(category, service)`` for a cookie name and domain.

    Pure and deterministic; unmatched cookies are ``unknown``.
    """
    exact = _EXACT.get(name) or _EXACT_LOWER.get(name.lower())
    if exact:
        return exact

    by_name = matching.first_signal(_NAME_RULES, name)
    if by_name:
        return by_name, None  # type: ignore[return-value]

    clean_domain = domain.lstrip(".").lower()
    for pattern, category, service in _DOMAIN_RULES:
        if pattern.search(clean_domain):
            if service == "Google":
                # Google-set cookies starting with _g are measurement cookies
                return ("analytics" if name.startswith("_g") else "marketing"), service
            return category, service
    return "unknown", None


def lifetime_days(expires: float, now: float) -> int | None:
    """Whole days from *now* until *expires* (epoch seconds); ``None`` for session cookies."""
    if expires is None or expires <= 0:
        return None
    return round((expires - now) / _SECONDS_PER_DAY)


def analyze_cookie(cookie: crawl.RawCookie, page_domain: str, now: float) -> signals.AnalyzedCookie:
    """Derive the analysed view of one raw cookie."""
    if not cookie.name:
        raise errors.MalformedSignalInput("Cookie without a name")
    if isinstance(cookie.expires, float) and math.isnan(cookie.expires):
        raise errors.MalformedSignalInput(f"Cookie {cookie.name!r} has a non-numeric expiry")

    category, service = categorize(cookie.name, cookie.domain)
    days = lifetime_days(cookie.expires, now)
    value = cookie.value if len(cookie.value) <= _MAX_VALUE_CHARS else cookie.value[:_MAX_VALUE_CHARS] + "..."
    expires_iso = (
        datetime.fromtimestamp(cookie.expires, tz=timezone.utc).isoformat() if cookie.expires > 0 else None
    )
    cookie_domain = cookie.domain.lstrip(".")
    return signals.AnalyzedCookie(
        name=cookie.name,
        value=value,
        domain=cookie.domain,
        path=cookie.path,
        expires=expires_iso,
        http_only=cookie.http_only,
        secure=cookie.secure,
        same_site=cookie.same_site,
        category=category,
        service=service,
        purpose=_PURPOSES.get(category),
        lifetime_days=days,
        is_long_lived=days is not None and days > LONG_LIVED_DAYS,
        is_third_party=bool(cookie_domain) and not url_mod.is_same_site(cookie_domain, page_domain),
    )


def analyze(crawl_result: crawl.CrawlResult, now: float | None = None) -> list[signals.AnalyzedCookie]:
    """Categorise every cookie of *crawl_result*.

    Args:
        crawl_result: The page snapshot.
        now: Reference time in epoch seconds; defaults to the current time.
    """
    reference = time.time() if now is None else now
    return [analyze_cookie(c, crawl_result.page_domain, reference) for c in crawl_result.cookies]


def tracking_cookie_names(cookies: list[crawl.RawCookie]) -> list[str]:
    """Names of the marketing and analytics cookies in *cookies*."""
    names: list[str] = []
    for cookie in cookies:
        category, _ = categorize(cookie.name, cookie.domain)
        if category in ("marketing", "analytics") and cookie.name not in names:
            names.append(cookie.name)
    return names


def marketing_cookie_names(cookies: list[crawl.RawCookie]) -> list[str]:
    """Names of the marketing cookies in *cookies*."""
    return [c.name for c in cookies if categorize(c.name, c.domain)[0] == "marketing"]
