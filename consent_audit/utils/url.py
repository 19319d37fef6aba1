"""
URL and domain utility functions for crawl analysis.
"""

from __future__ import annotations

import re
from urllib import parse

from consent_audit.utils import errors

_TWO_PART_TLDS = frozenset([
    "co.uk", "com.au", "co.nz", "co.jp", "com.br",
    "co.in", "org.uk", "net.uk", "gov.uk", "co.at",
    "or.at", "com.tr", "com.pl", "com.es",
])


def normalize_url(raw: str) -> str:
    """Trim *raw*, default the scheme to ``https`` and validate it.

    Raises:
        errors.InvalidUrl: If the result has no hostname or is not http(s).
    """
    candidate = (raw or "").strip()
    if not candidate:
        raise errors.InvalidUrl("Ungültige URL: leer")
    if not candidate.startswith(("http://", "https://")):
        candidate = "https://" + candidate
    parsed = parse.urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.hostname or " " in parsed.netloc:
        raise errors.InvalidUrl(f"Ungültige URL: {raw}")
    return candidate


def extract_domain(url: str) -> str:
    """Extract the hostname from a URL string."""
    try:
        parsed = parse.urlparse(url)
        return parsed.hostname or "unknown"
    except ValueError:
        return "unknown"


def get_base_domain(domain: str) -> str:
    """Extract the registrable base domain from a full hostname.

    Handles common multi-part TLDs (e.g. ``co.uk``,
    ``com.au``) and strips a leading ``www.`` prefix or the
    leading dot of a cookie domain.

    Args:
        domain: A hostname like ``"www.example.co.uk"``.

    Returns:
        The base domain, e.g. ``"example.co.uk"``.
    """
    clean = re.sub(r"^www\.", "", domain.lstrip(".")).lower()
    parts = clean.split(".")
    if len(parts) >= 2:
        last_two = ".".join(parts[-2:])
        if last_two in _TWO_PART_TLDS and len(parts) >= 3:
            return ".".join(parts[-3:])
        return last_two
    return clean


def is_same_site(domain: str, page_domain: str) -> bool:
    """Return ``True`` if both hostnames share a registrable base domain."""
    return get_base_domain(domain) == get_base_domain(page_domain)


def is_third_party(request_url: str, page_url: str) -> bool:
    """Determine if a request URL is from a third-party domain relative to the page URL."""
    request_domain = extract_domain(request_url)
    page_domain = extract_domain(page_url)
    if request_domain == "unknown" or page_domain == "unknown":
        return True
    return not is_same_site(request_domain, page_domain)


def query_parameter_names(url: str) -> set[str]:
    """Return the lower-cased query parameter names of *url*."""
    try:
        query = parse.urlparse(url).query
    except ValueError:
        return set()
    return {name.lower() for name, _ in parse.parse_qsl(query, keep_blank_values=True)}
