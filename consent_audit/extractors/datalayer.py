"""
dataLayer and e-commerce analysis.

Reconstructs event counts from the captured ``window.dataLayer``
(object pushes and gtag-style argument lists) and from event calls in
inline scripts, then checks the well-known e-commerce events for the
parameters revenue reporting depends on.
"""

from __future__ import annotations

import re
from typing import Any

from consent_audit.models import crawl, signals
from consent_audit.utils import errors, logger

log = logger.create_logger("DataLayer")

GA4_ECOMMERCE_EVENTS = (
    "view_item",
    "view_item_list",
    "select_item",
    "add_to_cart",
    "remove_from_cart",
    "view_cart",
    "begin_checkout",
    "add_shipping_info",
    "add_payment_info",
    "purchase",
    "refund",
    "view_promotion",
    "select_promotion",
)

UA_ECOMMERCE_EVENTS = (
    "productClick",
    "productDetail",
    "addToCart",
    "removeFromCart",
    "checkout",
    "checkoutOption",
    "purchase",
    "refund",
    "promoView",
    "promoClick",
)

# UA enhanced e-commerce action objects inside ``ecommerce``.
_UA_ACTIONS = ("purchase", "add", "remove", "checkout", "detail", "click", "refund", "impressions")

MAX_RAW_ENTRIES = 20
MAX_SAMPLE_STRING = 50
MAX_RAW_STRING = 500

_SENSITIVE_KEYS = frozenset(
    {"email", "e-mail", "phone", "phone_number", "address", "street", "user_id", "customer_id", "ip",
     "password", "first_name", "last_name", "firstname", "lastname", "name", "zip", "postal_code"}
)
_EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[a-z]{2,}", re.I)
_USER_ID_KEYS = ("user_id", "userId", "customer_id", "customerId", "member_id", "memberId", "account_id", "accountId")
_IGNORED_PARAMETERS = frozenset({"event", "gtm.uniqueEventId", "gtm.start", "eventCallback", "eventTimeout"})

_CODE_EVENT_RES = (
    re.compile(r"""gtag\s*\(\s*['"]event['"]\s*,\s*['"]([^'"]+)['"]\s*(?:,\s*(\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}))?"""),
    re.compile(r"""dataLayer\.push\s*\(\s*(\{[^{}]*?['"]?event['"]?\s*:\s*['"]([^'"]+)['"][^{}]*(?:\{[^{}]*\}[^{}]*)*\})"""),
)
_CODE_KEY_RE = re.compile(r"""['"]?([A-Za-z_][\w.]*)['"]?\s*:""")
_CODE_DIMENSION_RE = re.compile(r"\b(dimension\d{1,3})\b")
_CODE_USER_PROPERTIES_RE = re.compile(
    r"""gtag\s*\(\s*['"]set['"]\s*,\s*['"]user_properties['"]\s*,\s*\{([^}]*)\}|user_properties\s*:\s*\{([^}]*)\}"""
)


# ============================================================================
# Entry normalisation
# ============================================================================


def _as_args(entry: Any) -> list[Any] | None:
    """gtag argument lists arrive as lists or as ``{"0": ..., "1": ...}`` objects."""
    if isinstance(entry, list):
        return entry
    if isinstance(entry, dict) and "0" in entry:
        return [entry.get(str(i)) for i in range(len(entry)) if str(i) in entry]
    return None


def _event_payloads(data_layer: list[Any]) -> list[tuple[str, dict[str, Any]]]:
    """``(event name, parameters)`` for every event push in order."""
    events: list[tuple[str, dict[str, Any]]] = []
    for entry in data_layer:
        args = _as_args(entry)
        if args is not None:
            if len(args) >= 2 and args[0] == "event" and isinstance(args[1], str):
                params = args[2] if len(args) >= 3 and isinstance(args[2], dict) else {}
                events.append((args[1], params))
            continue
        if not isinstance(entry, dict):
            continue
        ecommerce = entry.get("ecommerce")
        if ecommerce is not None and not isinstance(ecommerce, dict):
            raise errors.MalformedSignalInput(f"dataLayer ecommerce is not an object: {type(ecommerce).__name__}")
        name = entry.get("event")
        if isinstance(name, str):
            events.append((name, {k: v for k, v in entry.items() if k not in _IGNORED_PARAMETERS}))
    return events


def _code_events(content: str) -> list[tuple[str, list[str]]]:
    """``(event name, parameter keys)`` of event calls written in page scripts."""
    found: list[tuple[str, list[str]]] = []
    for match in _CODE_EVENT_RES[0].finditer(content):
        found.append((match.group(1), _CODE_KEY_RE.findall(match.group(2) or "")))
    for match in _CODE_EVENT_RES[1].finditer(content):
        keys = [k for k in _CODE_KEY_RE.findall(match.group(1)) if k != "event"]
        found.append((match.group(2), keys))
    return found


def _has_ecommerce_data(params: dict[str, Any]) -> bool:
    return any(params.get(k) not in (None, "", []) for k in ("ecommerce", "items", "value", "currency"))


# ============================================================================
# Redaction
# ============================================================================


def redact(value: Any, max_string: int = MAX_SAMPLE_STRING, summarize_items: bool = True) -> Any:
    """Copy of *value* with PII removed and long values shortened."""
    if isinstance(value, dict):
        cleaned: dict[str, Any] = {}
        for key, item in value.items():
            if str(key).lower() in _SENSITIVE_KEYS:
                cleaned[key] = "[REDACTED]"
            elif summarize_items and key in ("items", "products") and isinstance(item, list):
                cleaned[key] = f"[{len(item)} items]"
            else:
                cleaned[key] = redact(item, max_string, summarize_items)
        return cleaned
    if isinstance(value, list):
        shown = [redact(v, max_string, summarize_items) for v in value[:10]]
        if len(value) > 10:
            shown.append(f"... und {len(value) - 10} weitere")
        return shown
    if isinstance(value, str):
        if _EMAIL_RE.search(value):
            return "[REDACTED]"
        if len(value) > max_string:
            return value[: max_string - 3] + "..."
    return value


# ============================================================================
# E-commerce
# ============================================================================


def _ua_action_fields(ecommerce: dict[str, Any]) -> tuple[bool, bool, bool]:
    """``(has_value, has_currency, has_items)`` of a UA enhanced e-commerce object."""
    has_value = has_items = False
    for action in _UA_ACTIONS:
        block = ecommerce.get(action)
        if not isinstance(block, dict):
            continue
        field = block.get("actionField")
        if isinstance(field, dict) and field.get("revenue") is not None:
            has_value = True
        if block.get("products"):
            has_items = True
    return has_value, bool(ecommerce.get("currencyCode")), has_items


def _event_fields(params: dict[str, Any]) -> tuple[bool, bool, bool]:
    """``(has_value, has_currency, has_items)`` of one event push."""
    has_value = params.get("value") is not None or params.get("revenue") is not None
    has_currency = bool(params.get("currency"))
    has_items = bool(params.get("items") or params.get("products"))

    ecommerce = params.get("ecommerce")
    if isinstance(ecommerce, dict):
        has_value = has_value or ecommerce.get("value") is not None or ecommerce.get("revenue") is not None
        has_currency = has_currency or bool(ecommerce.get("currency"))
        has_items = has_items or bool(ecommerce.get("items") or ecommerce.get("products"))
        ua_value, ua_currency, ua_items = _ua_action_fields(ecommerce)
        has_value, has_currency, has_items = has_value or ua_value, has_currency or ua_currency, has_items or ua_items
    return has_value, has_currency, has_items


def check_event(event: signals.EcommerceEvent) -> list[signals.EcommerceIssue]:
    """Missing-parameter findings for one e-commerce event."""
    issues: list[signals.EcommerceIssue] = []

    def add(severity: signals.IssueSeverity, issue: str, recommendation: str) -> None:
        issues.append(
            signals.EcommerceIssue(severity=severity, event=event.name, issue=issue, recommendation=recommendation)
        )

    if event.name == "purchase":
        if not event.has_value:
            add(
                "error",
                "Kein Transaktionswert (value) im Purchase-Event",
                'Fügen Sie den "value" Parameter hinzu für korrekte Umsatzerfassung in Google Ads und Analytics.',
            )
        if not event.has_currency:
            add(
                "error",
                "Keine Währung (currency) im Purchase-Event",
                'Fügen Sie den "currency" Parameter (z.B. "EUR") hinzu.',
            )
        if not event.has_items:
            add(
                "warning",
                "Keine Produktdaten (items) im Purchase-Event",
                'Fügen Sie das "items" Array mit Produktdetails hinzu.',
            )
    elif event.name == "add_to_cart":
        if not event.has_value:
            add("warning", "Kein Wert im add_to_cart Event", 'Der "value" Parameter ermöglicht Conversion-Wert-Berichte.')
        if not event.has_items:
            add("warning", "Keine Produktdaten im add_to_cart Event", 'Fügen Sie "items" hinzu.')
    elif event.name == "begin_checkout":
        if not event.has_value:
            add(
                "warning",
                "Kein Warenkorbwert im begin_checkout Event",
                'Der "value" Parameter hilft bei der Analyse von Checkout-Abbrüchen.',
            )
    elif event.name == "view_item":
        if not event.has_items:
            add(
                "info",
                "Keine Produktdaten im view_item Event",
                "Produktdaten ermöglichen Remarketing-Listen basierend auf Produktansichten.",
            )
    return issues


def analyze_ecommerce(
    payloads: list[tuple[str, dict[str, Any]]],
    code_events: list[tuple[str, list[str]]],
) -> signals.EcommerceAnalysis:
    """E-commerce coverage from dataLayer payloads and script event calls."""
    known = list(dict.fromkeys(GA4_ECOMMERCE_EVENTS + UA_ECOMMERCE_EVENTS))
    names = {name for name, _ in payloads} | {name for name, _ in code_events}
    has_ua_objects = any(
        isinstance(p.get("ecommerce"), dict) and any(a in p["ecommerce"] for a in _UA_ACTIONS) for _, p in payloads
    )

    ga4 = any(n in GA4_ECOMMERCE_EVENTS for n in names)
    ua = has_ua_objects or any(n in UA_ECOMMERCE_EVENTS and n not in GA4_ECOMMERCE_EVENTS for n in names)
    platform = "both" if ga4 and ua else "ga4" if ga4 else "ua" if ua else "unknown"

    events: list[signals.EcommerceEvent] = []
    issues: list[signals.EcommerceIssue] = []
    for name in known:
        if name not in names:
            continue
        has_value = has_currency = has_items = False
        sample: dict[str, Any] | None = None
        observed = False
        for event_name, params in payloads:
            if event_name != name:
                continue
            observed = True
            value, currency, items = _event_fields(params)
            has_value, has_currency, has_items = has_value or value, has_currency or currency, has_items or items
            if sample is None:
                ecommerce = params.get("ecommerce")
                sample = redact(ecommerce if isinstance(ecommerce, dict) else params)
        for event_name, keys in code_events:
            if event_name != name or not keys:
                continue
            observed = True
            has_value = has_value or "value" in keys or "revenue" in keys
            has_currency = has_currency or "currency" in keys
            has_items = has_items or "items" in keys or "products" in keys

        event = signals.EcommerceEvent(
            name=name, has_value=has_value, has_currency=has_currency, has_items=has_items, sample_data=sample
        )
        events.append(event)
        # Calls whose parameters are unknown are listed but not judged.
        if observed:
            issues.extend(check_event(event))

    purchase = next((e for e in events if e.name == "purchase"), None)
    value_tracking = signals.ValueTracking(
        has_transaction_value=any(e.has_value for e in events),
        has_currency=any(e.has_currency for e in events),
        has_items=any(e.has_items for e in events),
        purchase_tracked=purchase is not None,
    )
    return signals.EcommerceAnalysis(
        detected=bool(events),
        platform=platform,  # type: ignore[arg-type]
        events=events,
        value_tracking=value_tracking,
        issues=issues,
    )


# ============================================================================
# Custom fields
# ============================================================================


def _custom_dimensions(data_layer: list[Any], content: str) -> list[str]:
    found: list[str] = []

    def add(name: str) -> None:
        if name not in found:
            found.append(name)

    for entry in data_layer:
        candidates: list[dict[str, Any]] = []
        if isinstance(entry, dict) and "0" not in entry:
            candidates.append(entry)
        args = _as_args(entry)
        if args and len(args) >= 3 and isinstance(args[2], dict):
            candidates.append(args[2])
        for obj in candidates:
            for key in obj:
                if re.match(r"^(?:dimension|cd)\d+$", str(key), re.I) or str(key).startswith("custom_"):
                    add(str(key))
            custom_map = obj.get("custom_map")
            if isinstance(custom_map, dict):
                for key in custom_map:
                    add(str(key))
    for name in _CODE_DIMENSION_RE.findall(content):
        add(name)
    return found


def _user_properties(data_layer: list[Any], content: str) -> list[str]:
    found: list[str] = []

    def add(name: str) -> None:
        if name not in found:
            found.append(name)

    for entry in data_layer:
        if isinstance(entry, dict):
            props = entry.get("user_properties")
            if isinstance(props, dict):
                for key in props:
                    add(str(key))
            for key in _USER_ID_KEYS:
                if key in entry:
                    add(key)
        args = _as_args(entry)
        if args and len(args) >= 3 and args[0] == "set" and args[1] == "user_properties" and isinstance(args[2], dict):
            for key in args[2]:
                add(str(key))
    for match in _CODE_USER_PROPERTIES_RE.finditer(content):
        for key in _CODE_KEY_RE.findall(match.group(1) or match.group(2) or ""):
            add(key)
    return found


# ============================================================================
# Analysis
# ============================================================================


def analyze(crawl_result: crawl.CrawlResult) -> signals.DataLayerResult:
    """Events, e-commerce coverage and custom fields of the page's dataLayer."""
    globals_ = crawl_result.tracking_globals
    data_layer = globals_.data_layer
    content = crawl_result.combined_content()

    payloads = _event_payloads(data_layer)
    code_events = _code_events(content)
    if not globals_.has_data_layer and not data_layer and not code_events:
        return signals.DataLayerResult.not_detected()

    counts: dict[str, signals.DataLayerEvent] = {}
    for name, params in payloads:
        existing = counts.get(name)
        parameters = sorted(set(existing.parameters if existing else []) | set(map(str, params)))
        counts[name] = signals.DataLayerEvent(
            event=name,
            count=(existing.count + 1) if existing else 1,
            has_ecommerce_data=(existing.has_ecommerce_data if existing else False) or _has_ecommerce_data(params),
            parameters=parameters,
        )
    for name, keys in code_events:
        if name not in counts:
            counts[name] = signals.DataLayerEvent(event=name, count=1, parameters=sorted(set(keys)))

    result = signals.DataLayerResult(
        has_data_layer=globals_.has_data_layer or bool(data_layer),
        events=list(counts.values()),
        ecommerce=analyze_ecommerce(payloads, code_events),
        custom_dimensions=_custom_dimensions(data_layer, content),
        user_properties=_user_properties(data_layer, content),
        raw_data_layer=[redact(e, MAX_RAW_STRING, summarize_items=False) for e in data_layer[:MAX_RAW_ENTRIES]],
    )
    log.debug(
        "dataLayer analysed",
        {
            "events": len(result.events),
            "ecommerce": result.ecommerce.platform,
            "issues": len(result.ecommerce.issues),
        },
    )
    return result
