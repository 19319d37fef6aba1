"""IAB TCF detection: ``__tcfapi`` presence, TC-string cookies and TC-string tokens."""

from __future__ import annotations

import re
from typing import Any

from consent_audit.models import crawl, signals
from consent_audit.utils import errors, logger

log = logger.create_logger("TCF")

MIN_TC_STRING_LENGTH = 20

TC_COOKIE_NAMES = ("euconsent-v2", "euconsent", "eupubconsent-v2", "eupubconsent", "__cmpcc", "__cmpconsent")

# Registered CMP IDs of the common CMPs.
CMP_NAMES: dict[int, str] = {
    5: "Usercentrics",
    6: "Sourcepoint",
    7: "Didomi",
    10: "Quantcast",
    21: "TrustArc",
    28: "OneTrust",
    31: "Consentmanager",
    123: "Iubenda",
    134: "Cookiebot",
    300: "Google Funding Choices",
    401: "CookieYes",
}

_BASE64URL_RE = re.compile(r"^[A-Za-z0-9_\-.]+$")
# Tokens in page content must be long enough not to collide with identifiers.
_TOKEN_RE = re.compile(r"(?<![A-Za-z0-9_\-])(C[A-Za-z0-9_\-]{39,}(?:\.[A-Za-z0-9_\-]+)*)")


def is_valid_tc_string(value: str | None) -> bool:
    """Minimal structural check: TCF v2 version prefix, length, base64url alphabet, first segment length."""
    if not value or len(value) < MIN_TC_STRING_LENGTH:
        return False
    # v2 core strings encode version 2 in the first six bits
    if not value.startswith("C"):
        return False
    if not _BASE64URL_RE.match(value):
        return False
    return len(value.split(".", 1)[0]) >= MIN_TC_STRING_LENGTH


def _int_field(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise errors.MalformedSignalInput(f"TCF field {key} is not numeric: {value!r}")
    try:
        return int(value)
    except ValueError as exc:
        raise errors.MalformedSignalInput(f"TCF field {key} is not numeric: {value!r}") from exc


def analyze(crawl_result: crawl.CrawlResult) -> signals.TcfResult:
    """Detect TCF and validate the TC string."""
    methods: list[str] = []
    tc_string: str | None = None
    cmp_id: int | None = None
    gdpr_applies: bool | None = None
    version: str | None = None

    globals_ = crawl_result.tracking_globals
    tcf_data = globals_.tcf_data
    if globals_.has_tcf_api:
        methods.append("api")
        version = "2"
    if tcf_data:
        if not isinstance(tcf_data, dict):
            raise errors.MalformedSignalInput("TCF data is not an object")
        raw_string = tcf_data.get("tcString")
        if raw_string:
            tc_string = str(raw_string)
        cmp_id = _int_field(tcf_data, "cmpId")
        if isinstance(tcf_data.get("gdprApplies"), bool):
            gdpr_applies = tcf_data["gdprApplies"]
        policy = _int_field(tcf_data, "tcfPolicyVersion")
        if policy is not None:
            version = "2.2" if policy >= 4 else "2.0"

    cookie_names = {c.name for c in crawl_result.cookies}
    for cookie in crawl_result.cookies:
        if cookie.name in TC_COOKIE_NAMES:
            if "cookie" not in methods:
                methods.append("cookie")
            if tc_string is None and cookie.value:
                tc_string = cookie.value
    if version is None and cookie_names & set(TC_COOKIE_NAMES):
        version = "1" if cookie_names & {"euconsent", "eupubconsent"} and not cookie_names & {"euconsent-v2", "eupubconsent-v2"} else "2"

    if tc_string is None:
        match = _TOKEN_RE.search(crawl_result.combined_content())
        if match:
            tc_string = match.group(1)
            methods.append("tc-string")

    if not methods:
        return signals.TcfResult.not_detected()

    result = signals.TcfResult(
        detected=True,
        version=version,
        cmp_id=cmp_id,
        cmp_name=CMP_NAMES.get(cmp_id) if cmp_id is not None else None,
        tc_string=tc_string,
        valid_tc_string=is_valid_tc_string(tc_string),
        gdpr_applies=gdpr_applies,
        detection_methods=methods,
    )
    log.debug("TCF detected", {"methods": methods, "cmpId": cmp_id, "valid": result.valid_tc_string})
    return result
