"""
Issue generation.

Walks every signal and the consent experiment and produces the
user-facing findings.  The absence of tracking is reported as
``info``: a page with nothing to disclose is not defective for
lacking a banner.
"""

from __future__ import annotations

from consent_audit.extractors import consent_mode as consent_mode_mod
from consent_audit.extractors import cookies as cookie_rules
from consent_audit.models import consent, report
from consent_audit.scoring import context
from consent_audit.utils import logger

log = logger.create_logger("Issues")

_MAX_LISTED = 5


def _issue(
    severity: report.Severity,
    category: report.IssueCategory,
    title: str,
    description: str,
    recommendation: str | None = None,
) -> report.Issue:
    return report.Issue(
        severity=severity, category=category, title=title, description=description, recommendation=recommendation
    )


def _listing(names: list[str]) -> str:
    shown = ", ".join(names[:_MAX_LISTED])
    if len(names) > _MAX_LISTED:
        shown += f" und {len(names) - _MAX_LISTED} weitere"
    return shown


# ── Cookie banner ───────────────────────────────────────────────


def banner_issues(s: context.AuditSignals) -> list[report.Issue]:
    banner = s.cookie_banner
    if not banner.detected:
        if not s.has_tracking:
            return [
                _issue(
                    "info",
                    "cookie-banner",
                    "Kein Tracking erkannt",
                    "Es wurden weder Tracking-Tags noch Marketing- oder Analytics-Cookies gefunden. "
                    "Ein Cookie-Banner ist daher möglicherweise nicht erforderlich.",
                )
            ]
        return [
            _issue(
                "error",
                "cookie-banner",
                "Kein Cookie-Banner erkannt",
                "Auf der Website wurde Tracking, aber kein Cookie-Banner/Consent-Management gefunden.",
                "Implementieren Sie einen DSGVO-konformen Cookie-Banner mit Consent-Management.",
            )
        ]

    issues: list[report.Issue] = []
    if not banner.has_reject_button:
        issues.append(
            _issue(
                "warning",
                "cookie-banner",
                "Keine Ablehnen-Option erkannt",
                "Der Cookie-Banner scheint keine einfache Möglichkeit zur Ablehnung zu bieten.",
                "Die DSGVO erfordert eine gleichwertige Ablehnen-Option neben der Akzeptieren-Option.",
            )
        )
    if not banner.has_settings_option:
        issues.append(
            _issue(
                "info",
                "cookie-banner",
                "Keine granularen Einstellungen erkannt",
                "Es wurde keine Option für granulare Cookie-Einstellungen gefunden.",
                "Erwägen Sie die Implementierung von kategoriebasierten Cookie-Einstellungen.",
            )
        )
    return issues


# ── TCF and Consent Mode ────────────────────────────────────────


def tcf_issues(s: context.AuditSignals) -> list[report.Issue]:
    if not s.has_google_or_meta:
        return []
    if not s.tcf.detected:
        return [
            _issue(
                "warning",
                "tcf",
                "TCF nicht implementiert",
                "Tracking-Tags erkannt, aber kein IAB TCF Framework gefunden.",
                "Implementieren Sie das IAB Transparency & Consent Framework für bessere Compliance.",
            )
        ]
    if not s.tcf.valid_tc_string:
        return [
            _issue(
                "warning",
                "tcf",
                "Kein gültiger TC String",
                "TCF erkannt, aber kein gültiger TC String gefunden.",
                "Stellen Sie sicher, dass der Consent Manager einen gültigen TC String generiert.",
            )
        ]
    return []


def consent_mode_issues(s: context.AuditSignals) -> list[report.Issue]:
    if not s.has_google_tags:
        return []
    mode = s.consent_mode
    issues: list[report.Issue] = []
    if not mode.detected:
        issues.append(
            _issue(
                "error",
                "consent-mode",
                "Google Consent Mode nicht erkannt",
                "Google Tags erkannt, aber kein Google Consent Mode implementiert.",
                "Implementieren Sie Google Consent Mode v2 für DSGVO-konforme Google Ads und Analytics.",
            )
        )
        return issues
    if mode.version == "v1":
        issues.append(
            _issue(
                "error",
                "consent-mode",
                "Google Consent Mode v1 erkannt",
                "Es wird noch Google Consent Mode v1 verwendet. Seit März 2024 ist v2 erforderlich.",
                "Aktualisieren Sie auf Google Consent Mode v2 mit ad_user_data und ad_personalization.",
            )
        )
    completeness = consent_mode_mod.check_completeness(mode)
    if completeness.missing_v2_parameters:
        issues.append(
            _issue(
                "warning",
                "consent-mode",
                "Fehlende Consent Mode v2 Parameter",
                f"Folgende v2 Parameter fehlen: {', '.join(completeness.missing_v2_parameters)}",
                "Fügen Sie die fehlenden Parameter für volle Google Ads Funktionalität hinzu.",
            )
        )
    if mode.default_consent and not mode.update_consent.detected:
        issues.append(
            _issue(
                "warning",
                "consent-mode",
                "Kein Consent Update erkannt",
                "Ein Default-Consent ist gesetzt, aber kein gtag('consent', 'update', ...) Aufruf wurde gefunden.",
                "Rufen Sie nach der Banner-Interaktion gtag('consent', 'update', ...) auf.",
            )
        )
    return issues


# ── Cookies ─────────────────────────────────────────────────────


def cookie_issues(s: context.AuditSignals) -> list[report.Issue]:
    issues: list[report.Issue] = []
    marketing = s.cookies_in("marketing")
    analytics = s.cookies_in("analytics")
    if not s.cookie_banner.detected:
        if marketing:
            issues.append(
                _issue(
                    "error",
                    "cookies",
                    "Marketing-Cookies ohne Consent",
                    f"{len(marketing)} Marketing-Cookie(s) gefunden, aber kein Consent-Management.",
                    "Marketing-Cookies dürfen nur nach ausdrücklicher Einwilligung gesetzt werden.",
                )
            )
        if analytics:
            issues.append(
                _issue(
                    "warning",
                    "cookies",
                    "Analytics-Cookies ohne Consent",
                    f"{len(analytics)} Analytics-Cookie(s) gefunden, aber kein Consent-Management.",
                    "Analytics-Cookies erfordern in der Regel eine Einwilligung gemäß DSGVO/ePrivacy.",
                )
            )

    long_lived = [c for c in s.tracking_cookies if c.is_long_lived]
    if long_lived:
        issues.append(
            _issue(
                "warning",
                "cookies",
                "Sehr lange Cookie-Laufzeiten",
                f"{len(long_lived)} Marketing/Analytics-Cookie(s) haben eine Laufzeit > 400 Tage.",
                "Reduzieren Sie die Gültigkeit auf maximal 13 Monate.",
            )
        )
    return issues


# ── Tracking tags ───────────────────────────────────────────────


def tracking_issues(s: context.AuditSignals) -> list[report.Issue]:
    tags = s.tracking_tags
    issues: list[report.Issue] = []

    ga = tags.get("google-analytics")
    if ga is not None:
        if len(ga.ids) > 1:
            issues.append(
                _issue(
                    "warning",
                    "tracking",
                    "Mehrere Google Analytics IDs erkannt",
                    f"Es wurden mehrere Measurement IDs gefunden ({', '.join(ga.ids)}).",
                    "Prüfen Sie, ob doppelte Pageviews ausgelöst werden oder Container konsolidiert werden sollten.",
                )
            )
        if any(i.startswith("UA-") for i in ga.ids):
            issues.append(
                _issue(
                    "info",
                    "tracking",
                    "UA-Property erkannt",
                    "Universal Analytics (UA) ist abgekündigt. Behalten Sie nur GA4-Implementierungen bei.",
                    "Entfernen Sie alte UA-Snippets und migrieren Sie alle Tags auf GA4.",
                )
            )
        if ga.via_tag_manager:
            issues.append(
                _issue(
                    "info",
                    "tracking",
                    "Google Analytics über GTM geladen",
                    "Google Analytics wird über den Google Tag Manager geladen.",
                )
            )

    gtm = tags.get("google-tag-manager")
    if gtm is not None and len(gtm.ids) > 1:
        issues.append(
            _issue(
                "warning",
                "tracking",
                "Mehrere GTM Container erkannt",
                f"Es wurden {len(gtm.ids)} GTM Container gefunden: {', '.join(gtm.ids)}.",
                "Konsolidieren Sie Container wenn möglich, um Konflikte und doppelte Tags zu vermeiden.",
            )
        )

    meta = tags.get("meta-pixel")
    if meta is not None:
        if meta.via_tag_manager:
            issues.append(
                _issue(
                    "info",
                    "tracking",
                    "Meta Pixel über GTM erkannt",
                    f"Der Meta Pixel wurde über den Google Tag Manager geladen. "
                    f"Erkennungsmethoden: {', '.join(meta.detection_methods)}.",
                    "Stellen Sie sicher, dass der Pixel erst nach Consent-Erteilung ausgelöst wird.",
                )
            )
        if len(meta.ids) > 1:
            issues.append(
                _issue(
                    "warning",
                    "tracking",
                    "Mehrere Meta Pixel IDs erkannt",
                    f"Es wurden {len(meta.ids)} Pixel IDs gefunden: {', '.join(meta.ids)}.",
                    "Prüfen Sie, ob alle Pixel IDs notwendig sind oder ob doppelte Events ausgelöst werden.",
                )
            )

    if tags.marketing_parameters.any:
        issues.append(
            _issue(
                "info",
                "tracking",
                "Marketing-Parameter erkannt",
                f"Folgende Kampagnen-Parameter wurden gefunden: {', '.join(tags.marketing_parameters.active())}.",
                "Stellen Sie sicher, dass Parameter nur nach Consent verarbeitet und gespeichert werden.",
            )
        )
    return issues


_SERVER_SIDE_ISSUES: tuple[tuple[str, str, str, str], ...] = (
    (
        "has_server_side_gtm",
        "Server-Side Google Tag Manager erkannt",
        "Es wurde ein Server-Side GTM Setup erkannt.",
        "Stellen Sie sicher, dass auch Server-Side Tags Consent-Signale respektieren.",
    ),
    (
        "has_meta_capi",
        "Meta Conversions API (CAPI) erkannt",
        "Server-Side Tracking für Meta/Facebook wurde erkannt.",
        "Implementieren Sie Event-Deduplizierung zwischen Browser-Pixel und Server-API.",
    ),
    (
        "has_first_party_proxy",
        "First-Party Tracking Proxy erkannt",
        "Tracking-Anfragen werden über die eigene Domain geleitet.",
        "First-Party Tracking kann Ad-Blocker umgehen, erfordert aber besondere DSGVO-Aufmerksamkeit.",
    ),
    (
        "has_tiktok_events_api",
        "TikTok Events API erkannt",
        "Server-Side Tracking für TikTok wurde erkannt.",
        "Stellen Sie sicher, dass Server-Side Events mit dem Consent-Status synchronisiert sind.",
    ),
    (
        "has_linkedin_capi",
        "LinkedIn Conversions API erkannt",
        "Server-Side Tracking für LinkedIn wurde erkannt.",
        "Implementieren Sie Event-Deduplizierung zwischen Insight Tag und Conversions API.",
    ),
    (
        "has_cookie_bridging",
        "Cookie-Bridging erkannt",
        "Tracking-Cookies werden serverseitig als HttpOnly First-Party-Cookies gesetzt.",
        "Serverseitig gesetzte Tracking-Cookies benötigen dieselbe Einwilligung wie clientseitige.",
    ),
)


def server_side_issues(s: context.AuditSignals) -> list[report.Issue]:
    server_side = s.tracking_tags.server_side
    if not server_side.detected:
        return []
    issues: list[report.Issue] = []
    for flag, title, description, recommendation in _SERVER_SIDE_ISSUES:
        if getattr(server_side.summary, flag):
            if flag == "has_first_party_proxy" and server_side.first_party_endpoints:
                description = (
                    f"Es wurden {len(server_side.first_party_endpoints)} First-Party Endpoint(s) für Tracking erkannt."
                )
            issues.append(_issue("info", "tracking", title, description, recommendation))
    for indicator in server_side.indicators:
        if indicator.confidence == "high" and indicator.evidence:
            issues.append(
                _issue(
                    "info",
                    "tracking",
                    f"Server-Side Tracking: {indicator.description}",
                    f"Evidenz: {'; '.join(indicator.evidence[:2])}",
                    "Server-Side Tracking erfordert besondere Datenschutz-Dokumentation.",
                )
            )
    return issues


# ── E-commerce and third parties ────────────────────────────────


def ecommerce_issues(s: context.AuditSignals) -> list[report.Issue]:
    return [
        _issue(finding.severity, "ecommerce", finding.issue, f"Event: {finding.event}", finding.recommendation)
        for finding in s.data_layer.ecommerce.issues
    ]


def third_party_issues(s: context.AuditSignals) -> list[report.Issue]:
    risk = s.third_party.risk_assessment
    issues: list[report.Issue] = []
    if risk.high_risk_domains:
        issues.append(
            _issue(
                "warning",
                "third-party",
                "Datenübermittlung in Hochrisiko-Drittländer",
                f"Anfragen an Dienste mit Sitz in unsicheren Drittländern: {_listing(risk.high_risk_domains)}.",
                "Prüfen Sie die Rechtsgrundlage der Übermittlung nach Kapitel V DSGVO.",
            )
        )
    if risk.unknown_domains:
        issues.append(
            _issue(
                "info",
                "third-party",
                "Unbekannte Drittanbieter",
                f"{len(risk.unknown_domains)} Drittanbieter-Domain(s) ohne Zuordnung: {_listing(risk.unknown_domains)}.",
                "Dokumentieren Sie alle eingebundenen Dienste in der Datenschutzerklärung.",
            )
        )
    return issues


# ── Consent experiment ──────────────────────────────────────────


def experiment_issues(experiment: consent.ConsentExperimentResult | None) -> list[report.Issue]:
    """Issues of the accept/reject experiment.

    A reject arm reclassified as an accept does not raise the
    pre-consent tracking issue for that arm.
    """
    if experiment is None:
        return []
    issues: list[report.Issue] = []
    before = experiment.before
    accept = experiment.after_accept
    reject = experiment.after_reject
    analysis = experiment.analysis

    if before.tracking_cookies_found:
        issues.append(
            _issue(
                "error",
                "consent-test",
                "Tracking vor Einwilligung",
                f"Vor jeder Interaktion wurden Tracking-Cookies gesetzt: {_listing(before.tracking_cookies_found)}.",
                "Blockieren Sie Tracking-Tags, bis eine Einwilligung vorliegt.",
            )
        )
    elif reject.tracking_before_interaction and not reject.reclassified_as_accept:
        issues.append(
            _issue(
                "error",
                "consent-test",
                "Tracking vor Einwilligung",
                "Beim Ablehnen-Test waren bereits vor der Interaktion Tracking-Cookies gesetzt: "
                f"{_listing(reject.tracking_before_interaction)}.",
                "Blockieren Sie Tracking-Tags, bis eine Einwilligung vorliegt.",
            )
        )

    if accept.button_found and not accept.click_successful:
        issues.append(
            _issue(
                "warning",
                "consent-test",
                "Akzeptieren-Klick fehlgeschlagen",
                "Der Akzeptieren-Button wurde gefunden, konnte aber nicht geklickt werden.",
            )
        )

    if experiment.error:
        issues.append(
            _issue(
                "info",
                "consent-test",
                "Einwilligungstest unvollständig",
                experiment.error,
            )
        )
        return issues

    if reject.reclassified_as_accept:
        issues.append(
            _issue(
                "warning",
                "consent-test",
                "Speichern-Aktion wirkt wie Zustimmung",
                "Die gefundene Speichern-Aktion setzte Marketing- oder Analytics-Cookies und wurde als "
                "Zustimmung gewertet. Eine echte Ablehnen-Option wurde nicht gefunden.",
                'Bieten Sie einen eindeutigen "Alle ablehnen" Button in der ersten Ebene an.',
            )
        )
    elif reject.click_successful and not analysis.reject_works_properly:
        issues.append(
            _issue(
                "error",
                "consent-test",
                "Ablehnung wird nicht respektiert",
                "Nach dem Ablehnen wurden dennoch Tracking-Cookies gesetzt: "
                f"{_listing(cookie_rules.tracking_cookie_names(reject.new_cookies))}.",
                "Stellen Sie sicher, dass Tags nach einer Ablehnung nicht ausgelöst werden.",
            )
        )
    elif reject.button_found and not reject.click_successful:
        issues.append(
            _issue(
                "warning",
                "consent-test",
                "Ablehnen-Klick fehlgeschlagen",
                "Die Ablehnen-Option wurde gefunden, konnte aber nicht geklickt werden.",
            )
        )
    return issues


# ── Public API ──────────────────────────────────────────────────


def generate(s: context.AuditSignals) -> list[report.Issue]:
    """All issues for one page, ordered error < warning < info."""
    issues: list[report.Issue] = []
    issues.extend(banner_issues(s))
    issues.extend(tcf_issues(s))
    issues.extend(consent_mode_issues(s))
    issues.extend(cookie_issues(s))
    issues.extend(experiment_issues(s.experiment))
    issues.extend(tracking_issues(s))
    issues.extend(server_side_issues(s))
    issues.extend(ecommerce_issues(s))
    issues.extend(third_party_issues(s))

    ordered = report.sort_issues(issues)
    log.info(
        "Issues generated",
        {
            "errors": sum(1 for i in ordered if i.severity == "error"),
            "warnings": sum(1 for i in ordered if i.severity == "warning"),
            "info": sum(1 for i in ordered if i.severity == "info"),
        },
    )
    return ordered
