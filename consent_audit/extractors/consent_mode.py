"""
Google Consent Mode detection.

Detection is anchored to call syntax: a ``gtag('consent', ...)`` call,
a ``dataLayer.push(['consent', ...])`` or a consent parameter key
immediately followed by ``granted``/``denied``.  The bare word
"consent" in prose never counts.
"""

from __future__ import annotations

import json
import re
from typing import Any

from consent_audit.extractors import matching
from consent_audit.models import crawl, signals
from consent_audit.utils import errors, logger

log = logger.create_logger("ConsentMode")

PARAMETERS = (
    "ad_storage",
    "analytics_storage",
    "ad_user_data",
    "ad_personalization",
    "functionality_storage",
    "personalization_storage",
    "security_storage",
)

V2_PARAMETERS = ("ad_user_data", "ad_personalization")

_PARAM_ALT = "|".join(PARAMETERS)

_CALL_RE = re.compile(
    r"""(?:gtag\s*\(|dataLayer\.push\s*\(\s*\[)\s*['"]consent['"]\s*,\s*['"](default|update)['"]\s*,\s*(\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\})""",
    re.I,
)
_PARAM_VALUE_RE = re.compile(rf"""['"]?({_PARAM_ALT})['"]?\s*:\s*['"](granted|denied)['"]""", re.I)
_REGION_RE = re.compile(r"""['"]?region['"]?\s*:\s*\[([^\]]*)\]""", re.I)
_REGION_CODE_RE = re.compile(r"""['"]([A-Za-z]{2}(?:-[A-Za-z0-9]{1,3})?)['"]""")
_WAIT_RE = re.compile(r"""['"]?wait_for_update['"]?\s*:\s*(\d+)""", re.I)

_TCF_TRIGGER_RE = re.compile(
    r"__tcfapi\s*\(\s*['\"]addEventListener['\"]|tcloaded|useractioncomplete", re.I
)
_CMP_TRIGGER_RE = re.compile(
    r"CookiebotOnAccept|CookiebotOnConsentReady|OptanonWrapper|OneTrustGroupsUpdated|UC_UI_CMP_EVENT"
    r"|ucEvent|didomiOnReady|cmplz_fire_categories|klaro\.getManager",
)
_CLICK_TRIGGER_RE = re.compile(
    r"(?:onclick|addEventListener\s*\(\s*['\"]click['\"]|\.click\s*\()[\s\S]{0,500}?['\"]consent['\"]\s*,\s*['\"]update['\"]",
    re.I,
)
_AFTER_BANNER_PATTERNS = matching.compile_all(
    (
        r"CookieConsent[\s\S]{0,300}?['\"]consent['\"]\s*,\s*['\"]update['\"]",
        r"accept[\s\S]{0,300}?gtag\s*\(\s*['\"]consent['\"]\s*,\s*['\"]update['\"]",
        r"onAccept[\s\S]{0,200}?consent",
        r"consentCallback|updateConsent\s*\(|setConsent\s*\(",
        r"__tcfapi\s*\(\s*['\"]addEventListener['\"][\s\S]{0,500}?consent",
        r"CookiebotOnAccept|OptanonWrapper|OneTrustGroupsUpdated|UC_UI_CMP_EVENT",
    ),
    flags=re.I,
)


def _settings(payload: str) -> dict[str, signals.ConsentValue]:
    """Parameter → value pairs of a consent payload."""
    return {key.lower(): value.lower() for key, value in _PARAM_VALUE_RE.findall(payload)}  # type: ignore[misc]


def _data_layer_calls(data_layer: list[Any]) -> list[tuple[str, dict[str, Any]]]:
    """``('default'|'update', payload)`` of gtag-style consent entries in the dataLayer.

    gtag pushes its ``arguments`` object, which serialises either as a
    list or as a dict keyed ``"0"``, ``"1"``, ``"2"``.
    """
    calls: list[tuple[str, dict[str, Any]]] = []
    for entry in data_layer:
        if isinstance(entry, list):
            args = entry
        elif isinstance(entry, dict) and "0" in entry:
            args = [entry.get(str(i)) for i in range(len(entry))]
        else:
            continue
        if len(args) >= 3 and args[0] == "consent" and args[1] in ("default", "update"):
            if not isinstance(args[2], dict):
                raise errors.MalformedSignalInput(f"Consent {args[1]} entry without a parameter object")
            calls.append((args[1], args[2]))
    return calls


def _infer_trigger(content: str) -> signals.UpdateTrigger:
    if _TCF_TRIGGER_RE.search(content):
        return "tcf_api"
    if _CMP_TRIGGER_RE.search(content):
        return "custom"
    if _CLICK_TRIGGER_RE.search(content):
        return "banner_click"
    return "unknown"


def analyze(crawl_result: crawl.CrawlResult) -> signals.ConsentModeResult:
    """Detect Consent Mode, classify its version and extract its payloads."""
    content = crawl_result.combined_content()
    calls = [(kind.lower(), payload) for kind, payload in _CALL_RE.findall(content)]
    layer_calls = _data_layer_calls(crawl_result.tracking_globals.data_layer)
    param_hits = _PARAM_VALUE_RE.findall(content)

    if not calls and not layer_calls and not param_hits:
        return signals.ConsentModeResult.not_detected()

    default: dict[str, signals.ConsentValue] = {}
    update: dict[str, signals.ConsentValue] = {}
    payload_text: list[str] = []
    for kind, payload in calls:
        target = default if kind == "default" else update
        target.update(_settings(payload))
        payload_text.append(payload)
    for kind, payload in layer_calls:
        target = default if kind == "default" else update
        serialised = json.dumps(payload)
        target.update(_settings(serialised))
        payload_text.append(serialised)

    seen = {key.lower() for key, _ in param_hits} | set(default) | set(update)
    parameters = signals.ConsentModeParameters(**{name: name in seen for name in PARAMETERS})

    if any(name in seen for name in V2_PARAMETERS):
        version: str | None = "v2"
    elif seen:
        version = "v1"
    else:
        version = None

    regions: list[str] = []
    waits: list[int] = []
    for payload in payload_text:
        for block in _REGION_RE.findall(payload):
            regions.extend(code.upper() for code in _REGION_CODE_RE.findall(block) if code.upper() not in regions)
        waits.extend(int(v) for v in _WAIT_RE.findall(payload))

    update_detected = any(kind == "update" for kind, _ in calls) or any(kind == "update" for kind, _ in layer_calls)
    update_consent = signals.ConsentModeUpdate(
        detected=update_detected,
        triggered_after_banner=update_detected and matching.any_match(_AFTER_BANNER_PATTERNS, content),
        update_settings=update,
        update_trigger=_infer_trigger(content) if update_detected else None,
    )

    result = signals.ConsentModeResult(
        detected=True,
        version=version,  # type: ignore[arg-type]
        default_consent=default,
        update_consent=update_consent,
        parameters=parameters,
        region_settings=regions,
        wait_for_update=max(waits) if waits else None,
    )
    log.debug(
        "Consent Mode detected",
        {"version": version, "default": len(default), "update": update_detected},
    )
    return result


def check_completeness(result: signals.ConsentModeResult) -> signals.ConsentModeCompleteness:
    """Missing v2 parameters and whether updates follow a banner interaction."""
    missing = [name for name in V2_PARAMETERS if not getattr(result.parameters, name)]
    return signals.ConsentModeCompleteness(
        missing_v2_parameters=missing,
        has_proper_update_flow=result.update_consent.detected and result.update_consent.triggered_after_banner,
    )
