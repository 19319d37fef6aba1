"""
GDPR (DSGVO) checklist.

Fifteen ordered checks, each resolving to exactly one of
``passed``, ``failed``, ``warning`` or ``not_applicable`` with a
German justification.  The checklist score is the share of passed
checks among the applicable ones.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable

from consent_audit.models import report
from consent_audit.scoring import context
from consent_audit.utils import logger

log = logger.create_logger("GDPR")

MAX_TRACKING_SERVICES = 5
MAX_LAX_SAME_SITE = 3
_NON_DISCLOSURE_CATEGORIES = ("cdn", "fonts")

Verdict = tuple[report.CheckStatus, str]


@dataclasses.dataclass(frozen=True)
class CheckDefinition:
    id: str
    category: report.GdprCategory
    title: str
    description: str
    legal_reference: str
    recommendation: str


CHECKS: tuple[CheckDefinition, ...] = (
    CheckDefinition(
        id="consent_banner",
        category="consent",
        title="Cookie-Banner vorhanden",
        description="Ein Cookie-Banner muss vor dem Setzen nicht-essentieller Cookies angezeigt werden.",
        legal_reference="Art. 6, Art. 7 DSGVO; § 25 TDDDG",
        recommendation="Implementieren Sie einen DSGVO-konformen Cookie-Banner.",
    ),
    CheckDefinition(
        id="consent_reject_option",
        category="consent",
        title="Gleichwertige Ablehnen-Option",
        description="Die Möglichkeit zur Ablehnung muss genauso einfach sein wie die Zustimmung.",
        legal_reference="Art. 7 Abs. 3 DSGVO; EuGH Planet49",
        recommendation='Fügen Sie einen gleichwertigen "Alle ablehnen" Button hinzu.',
    ),
    CheckDefinition(
        id="consent_granular",
        category="consent",
        title="Granulare Einwilligung möglich",
        description="Nutzer sollten einzelne Cookie-Kategorien auswählen können.",
        legal_reference="Art. 7 DSGVO; ErwGr. 32",
        recommendation="Ermöglichen Sie die separate Zustimmung für verschiedene Zwecke.",
    ),
    CheckDefinition(
        id="consent_no_preselection",
        category="consent",
        title="Keine vorausgewählten Checkboxen",
        description="Optionale Cookies dürfen nicht vorausgewählt sein.",
        legal_reference="EuGH Planet49 (C-673/17)",
        recommendation="Stellen Sie sicher, dass Marketing-Cookies standardmäßig deaktiviert sind.",
    ),
    CheckDefinition(
        id="consent_before_tracking",
        category="consent",
        title="Keine Cookies vor Einwilligung",
        description="Marketing/Analytics-Cookies dürfen erst nach Einwilligung gesetzt werden.",
        legal_reference="§ 25 Abs. 1 TDDDG; Art. 5 Abs. 3 ePrivacy-RL",
        recommendation="Implementieren Sie Consent Mode und blockieren Sie Tracking bis zur Zustimmung.",
    ),
    CheckDefinition(
        id="consent_reject_effective",
        category="consent",
        title="Ablehnung wird respektiert",
        description="Nach einer Ablehnung dürfen keine Marketing/Analytics-Cookies gesetzt werden.",
        legal_reference="Art. 7 Abs. 3 DSGVO; § 25 Abs. 1 TDDDG",
        recommendation="Stellen Sie sicher, dass Tags nach einer Ablehnung nicht ausgelöst werden.",
    ),
    CheckDefinition(
        id="consent_withdrawal",
        category="consent",
        title="Widerruf der Einwilligung möglich",
        description="Nutzer müssen ihre Einwilligung jederzeit widerrufen können.",
        legal_reference="Art. 7 Abs. 3 DSGVO",
        recommendation="Bieten Sie einen dauerhaft zugänglichen Link zu Cookie-Einstellungen.",
    ),
    CheckDefinition(
        id="transparency_purpose",
        category="transparency",
        title="Zweck der Datenverarbeitung erklärt",
        description="Der Zweck jeder Datenverarbeitung muss klar kommuniziert werden.",
        legal_reference="Art. 13, Art. 14 DSGVO",
        recommendation="Erklären Sie im Banner, wofür Cookies verwendet werden.",
    ),
    CheckDefinition(
        id="transparency_third_parties",
        category="transparency",
        title="Drittanbieter offengelegt",
        description="Alle Drittanbieter, die Daten erhalten, müssen genannt werden.",
        legal_reference="Art. 13 Abs. 1 lit. e DSGVO",
        recommendation="Listen Sie alle Tracking-Dienste und deren Zweck auf.",
    ),
    CheckDefinition(
        id="transparency_data_transfer",
        category="transparency",
        title="Internationale Datentransfers transparent",
        description="Übermittlungen in Drittländer müssen offengelegt werden.",
        legal_reference="Art. 13 Abs. 1 lit. f DSGVO; Kapitel V DSGVO",
        recommendation="Informieren Sie über US-Transfers und deren Rechtsgrundlage.",
    ),
    CheckDefinition(
        id="data_min_necessary",
        category="data_minimization",
        title="Nur notwendige Daten",
        description="Es sollten nur die für den Zweck erforderlichen Daten erhoben werden.",
        legal_reference="Art. 5 Abs. 1 lit. c DSGVO",
        recommendation="Prüfen Sie, ob alle Tracking-Tags wirklich benötigt werden.",
    ),
    CheckDefinition(
        id="data_min_retention",
        category="data_minimization",
        title="Angemessene Speicherdauer",
        description="Cookie-Laufzeiten sollten nicht länger als notwendig sein.",
        legal_reference="Art. 5 Abs. 1 lit. e DSGVO",
        recommendation="Reduzieren Sie Cookie-Laufzeiten auf maximal 13 Monate.",
    ),
    CheckDefinition(
        id="security_https",
        category="security",
        title="Sichere Übertragung (HTTPS)",
        description="Cookies sollten nur über HTTPS übertragen werden.",
        legal_reference="Art. 32 DSGVO",
        recommendation="Setzen Sie das Secure-Flag für alle Cookies.",
    ),
    CheckDefinition(
        id="security_same_site",
        category="security",
        title="SameSite-Attribut gesetzt",
        description="Cookies sollten ein SameSite-Attribut haben.",
        legal_reference="Art. 32 DSGVO",
        recommendation="Setzen Sie SameSite=Strict oder SameSite=Lax.",
    ),
    CheckDefinition(
        id="rights_access",
        category="rights",
        title="Zugang zu Datenschutzinformationen",
        description="Die Datenschutzerklärung muss leicht zugänglich sein.",
        legal_reference="Art. 12, Art. 13 DSGVO",
        recommendation="Verlinken Sie die Datenschutzerklärung im Cookie-Banner.",
    ),
)


# ============================================================================
# Consent checks
# ============================================================================


def _consent_banner(s: context.AuditSignals) -> Verdict:
    banner = s.cookie_banner
    if banner.detected:
        suffix = f" ({banner.provider})" if banner.provider else ""
        return "passed", f"Cookie-Banner erkannt{suffix}."
    if s.has_tracking:
        return "failed", "Tracking erkannt, aber kein Cookie-Banner gefunden."
    return "not_applicable", "Kein Tracking erkannt, Banner möglicherweise nicht erforderlich."


def _consent_reject_option(s: context.AuditSignals) -> Verdict:
    if not s.cookie_banner.detected:
        return "not_applicable", "Kein Banner erkannt."
    if s.cookie_banner.has_reject_button:
        return "passed", "Ablehnen-Option im Banner gefunden."
    return "failed", "Keine gleichwertige Ablehnen-Option erkannt."


def _consent_granular(s: context.AuditSignals) -> Verdict:
    if not s.cookie_banner.detected:
        return "not_applicable", "Kein Banner erkannt."
    if s.cookie_banner.has_settings_option:
        return "passed", "Einstellungen-Option für granulare Kontrolle vorhanden."
    return "warning", "Keine granularen Einstellungen erkannt."


def _consent_no_preselection(s: context.AuditSignals) -> Verdict:
    mode = s.consent_mode
    if not mode.detected and not s.tcf.detected:
        return "warning", "Keine Consent-Signale erkannt, Vorauswahl nicht prüfbar."
    if mode.default_consent:
        denied = (
            mode.default_consent.get("ad_storage") == "denied"
            or mode.default_consent.get("analytics_storage") == "denied"
        )
        if denied:
            return "passed", 'Default Consent auf "denied" gesetzt.'
        return "failed", 'Default Consent nicht auf "denied" gesetzt.'
    return "warning", "Default Consent-Einstellungen nicht erkannt."


def _consent_before_tracking(s: context.AuditSignals) -> Verdict:
    experiment = s.experiment
    if experiment is not None:
        if experiment.analysis.tracking_before_consent:
            names = ", ".join(experiment.before.tracking_cookies_found)
            return "failed", f"Tracking-Cookies vor Einwilligung erkannt: {names}."
        return "passed", "Keine Tracking-Cookies vor Einwilligung erkannt."
    if s.consent_mode.detected and s.consent_mode.default_consent:
        return "warning", "Consent Mode erkannt, aber Cookies vor Consent nicht getestet."
    return "warning", "Cookie-Verhalten vor Consent nicht vollständig prüfbar."


def _consent_reject_effective(s: context.AuditSignals) -> Verdict:
    experiment = s.experiment
    if experiment is None:
        return "not_applicable", "Einwilligungstest nicht durchgeführt."
    reject = experiment.after_reject
    if not reject.button_found:
        if not s.cookie_banner.detected and not s.has_tracking:
            return "not_applicable", "Kein Banner und kein Tracking erkannt."
        return "warning", "Ablehnung nicht testbar: keine Ablehnen-Option gefunden."
    if reject.reclassified_as_accept:
        return "warning", "Die gefundene Speichern-Aktion wirkte wie eine Zustimmung."
    if experiment.analysis.reject_works_properly:
        return "passed", "Nach der Ablehnung wurden keine Tracking-Cookies gesetzt."
    return "failed", "Trotz Ablehnung wurden Tracking-Cookies gesetzt."


def _consent_withdrawal(s: context.AuditSignals) -> Verdict:
    if s.cookie_banner.has_settings_option:
        return "passed", "Einstellungen-Option ermöglicht Widerruf."
    return "warning", "Keine offensichtliche Möglichkeit zum Widerruf erkannt."


# ============================================================================
# Transparency, minimisation, security, rights
# ============================================================================


def _transparency_purpose(s: context.AuditSignals) -> Verdict:
    if s.cookie_banner.detected:
        return "warning", "Banner vorhanden, Zweckerklärung sollte manuell geprüft werden."
    return "not_applicable", "Kein Banner erkannt."


def _transparency_third_parties(s: context.AuditSignals) -> Verdict:
    relevant = [d for d in s.third_party.domains if d.category not in _NON_DISCLOSURE_CATEGORIES]
    if relevant:
        return "warning", f"{len(relevant)} Drittanbieter erkannt. Prüfen Sie die Offenlegung."
    return "passed", "Keine relevanten Drittanbieter erkannt."


def _transparency_data_transfer(s: context.AuditSignals) -> Verdict:
    non_eu = [d for d in s.third_party.domains if d.is_eu_based is False]
    if non_eu:
        return "warning", f"{len(non_eu)} Nicht-EU-Dienste erkannt. Rechtsgrundlage prüfen."
    return "passed", "Keine Drittland-Transfers erkannt."


def _data_min_necessary(s: context.AuditSignals) -> Verdict:
    count = len(s.tracking_tags.tags)
    if count > MAX_TRACKING_SERVICES:
        return "warning", f"{count} Tracking-Dienste erkannt. Prüfen Sie die Notwendigkeit."
    if count:
        return "passed", f"{count} Tracking-Dienst(e) erkannt."
    return "passed", "Keine Tracking-Dienste erkannt."


def _data_min_retention(s: context.AuditSignals) -> Verdict:
    long_lived = [c for c in s.cookies if c.is_long_lived]
    if long_lived:
        return "warning", f"{len(long_lived)} Cookie(s) mit Laufzeit > 400 Tage."
    return "passed", "Keine übermäßig langen Cookie-Laufzeiten erkannt."


def _security_https(s: context.AuditSignals) -> Verdict:
    insecure = [c for c in s.cookies if not c.secure and c.category != "necessary"]
    if insecure:
        return "warning", f"{len(insecure)} Cookie(s) ohne Secure-Flag."
    return "passed", "Alle relevanten Cookies haben das Secure-Flag."


def _security_same_site(s: context.AuditSignals) -> Verdict:
    lax = [c for c in s.cookies if not c.same_site or c.same_site.lower() == "none"]
    if len(lax) > MAX_LAX_SAME_SITE:
        return "warning", f"{len(lax)} Cookie(s) ohne SameSite oder mit SameSite=None."
    return "passed", "SameSite-Attribute korrekt gesetzt."


def _rights_access(s: context.AuditSignals) -> Verdict:
    if not s.cookie_banner.detected:
        return "not_applicable", "Kein Banner erkannt."
    if s.cookie_banner.has_privacy_policy_link:
        return "passed", "Link zur Datenschutzerklärung gefunden."
    return "warning", "Prüfen Sie, ob Datenschutzinfos im Banner verlinkt sind."


_EVALUATORS: dict[str, Callable[[context.AuditSignals], Verdict]] = {
    "consent_banner": _consent_banner,
    "consent_reject_option": _consent_reject_option,
    "consent_granular": _consent_granular,
    "consent_no_preselection": _consent_no_preselection,
    "consent_before_tracking": _consent_before_tracking,
    "consent_reject_effective": _consent_reject_effective,
    "consent_withdrawal": _consent_withdrawal,
    "transparency_purpose": _transparency_purpose,
    "transparency_third_parties": _transparency_third_parties,
    "transparency_data_transfer": _transparency_data_transfer,
    "data_min_necessary": _data_min_necessary,
    "data_min_retention": _data_min_retention,
    "security_https": _security_https,
    "security_same_site": _security_same_site,
    "rights_access": _rights_access,
}


# ============================================================================
# Checklist
# ============================================================================


def checklist_score(summary: report.GdprSummary) -> int:
    """Share of passed checks among applicable ones; 100 if none apply."""
    applicable = summary.passed + summary.failed + summary.warnings
    if applicable == 0:
        return 100
    return round(summary.passed / applicable * 100)


def evaluate(s: context.AuditSignals) -> report.GdprChecklist:
    """Run every check in order and summarise the statuses."""
    checks: list[report.GdprCheck] = []
    counts: dict[report.CheckStatus, int] = {"passed": 0, "failed": 0, "warning": 0, "not_applicable": 0}
    for definition in CHECKS:
        status, details = _EVALUATORS[definition.id](s)
        counts[status] += 1
        checks.append(
            report.GdprCheck(
                id=definition.id,
                category=definition.category,
                title=definition.title,
                description=definition.description,
                status=status,
                details=details,
                legal_reference=definition.legal_reference,
                recommendation=definition.recommendation if status in ("failed", "warning") else None,
            )
        )

    summary = report.GdprSummary(
        passed=counts["passed"],
        failed=counts["failed"],
        warnings=counts["warning"],
        not_applicable=counts["not_applicable"],
    )
    score = checklist_score(summary)
    log.info("GDPR checklist evaluated", {"score": score, **summary.model_dump()})
    return report.GdprChecklist(score=score, checks=checks, summary=summary)
