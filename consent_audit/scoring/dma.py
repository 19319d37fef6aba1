"""
Digital Markets Act checklist for gatekeeper platforms.

Only gatekeepers whose tags were actually detected are evaluated.
Each gets a consent-signalling and a data-combination check; Meta
additionally gets a user-data encryption check.
"""

from __future__ import annotations

from consent_audit.models import report
from consent_audit.scoring import context
from consent_audit.utils import logger

log = logger.create_logger("DMA")

GATEKEEPERS = ("Google", "Meta", "Microsoft", "ByteDance")

_CONSENT_REQUIREMENT = "Einwilligungssignale an Gatekeeper übermitteln (Art. 5 DMA)"
_COMBINATION_REQUIREMENT = "Keine Datenkombination ohne Einwilligung (Art. 5 Abs. 2 DMA)"
_ENCRYPTION_REQUIREMENT = "Verschlüsselung von Nutzerdaten (Best Practice)"


def detect_gatekeepers(s: context.AuditSignals) -> list[report.DmaGatekeeper]:
    """Gatekeepers with at least one detected service, in fixed order."""
    services: dict[str, list[str]] = {}
    for tag in s.tracking_tags.tags:
        if tag.gatekeeper in GATEKEEPERS:
            services.setdefault(tag.gatekeeper, []).append(tag.name)
    return [report.DmaGatekeeper(name=name, services=services[name]) for name in GATEKEEPERS if name in services]


def _check_id(kind: str, gatekeeper: str) -> str:
    return f"dma_{kind}_{gatekeeper.lower()}"


def _consent_signalling(gatekeeper: report.DmaGatekeeper, s: context.AuditSignals) -> report.DmaCheck:
    mode = s.consent_mode
    recommendation: str | None = None
    if gatekeeper.name == "Google":
        if mode.detected and mode.version == "v2":
            if mode.update_consent.detected:
                status: report.DmaStatus = "compliant"
                details = "Google Consent Mode v2 mit Update-Funktion implementiert."
            else:
                status = "requires_review"
                details = "Consent Mode v2 erkannt, aber Update-Funktion nicht bestätigt."
                recommendation = (
                    'Stellen Sie sicher, dass gtag("consent", "update", ...) nach Nutzerinteraktion aufgerufen wird.'
                )
        elif mode.detected:
            status = "non_compliant"
            details = "Veraltete Consent Mode Version erkannt."
            recommendation = "Aktualisieren Sie auf Google Consent Mode v2 (seit März 2024 erforderlich)."
        else:
            status = "non_compliant"
            details = "Kein Google Consent Mode implementiert."
            recommendation = "Implementieren Sie Google Consent Mode v2 für DMA-Compliance."
    elif gatekeeper.name == "Meta":
        if s.cookie_banner.detected:
            status = "requires_review"
            details = "Cookie-Banner erkannt. Prüfen Sie die LDU-Integration."
            recommendation = "Implementieren Sie Meta Limited Data Use (LDU) für EU-Nutzer."
        else:
            status = "non_compliant"
            details = "Kein Consent-Management für Meta Pixel erkannt."
            recommendation = "Implementieren Sie ein CMP mit Meta LDU Integration."
    elif s.tcf.detected or s.cookie_banner.detected:
        status = "requires_review"
        details = f"Consent-Management erkannt. Prüfen Sie die {gatekeeper.name}-Integration."
    else:
        status = "non_compliant"
        details = "Kein Consent-Management erkannt."
        recommendation = "Implementieren Sie ein DSGVO-konformes Consent-Management."

    return report.DmaCheck(
        id=_check_id("consent", gatekeeper.name),
        gatekeeper=gatekeeper.name,
        service=", ".join(gatekeeper.services),
        requirement=_CONSENT_REQUIREMENT,
        status=status,
        details=details,
        recommendation=recommendation,
    )


def _data_combination(gatekeeper: report.DmaGatekeeper, s: context.AuditSignals) -> report.DmaCheck:
    params = s.consent_mode.parameters
    recommendation: str | None = None
    if s.consent_mode.detected or s.tcf.detected:
        if params.ad_user_data and params.ad_personalization:
            status: report.DmaStatus = "compliant"
            details = "Consent-Parameter für Datenkombination (ad_user_data, ad_personalization) implementiert."
        else:
            status = "requires_review"
            details = "Consent-Mechanismus vorhanden, aber Parameter für Datenkombination prüfen."
            recommendation = "Stellen Sie sicher, dass ad_user_data und ad_personalization gesetzt werden."
    else:
        status = "non_compliant"
        details = "Kein Consent für Datenkombination erkennbar."
        recommendation = "Implementieren Sie Consent Mode v2 mit allen erforderlichen Parametern."

    return report.DmaCheck(
        id=_check_id("data_combination", gatekeeper.name),
        gatekeeper=gatekeeper.name,
        service=", ".join(gatekeeper.services),
        requirement=_COMBINATION_REQUIREMENT,
        status=status,
        details=details,
        recommendation=recommendation,
    )


def _encryption(gatekeeper: report.DmaGatekeeper, s: context.AuditSignals) -> report.DmaCheck:
    if s.tracking_tags.server_side.summary.has_meta_capi:
        details = "Server-Side API erkannt. Prüfen Sie die Verschlüsselung der Nutzerdaten."
        recommendation = "Stellen Sie sicher, dass Nutzerdaten vor der Übermittlung gehasht werden."
    else:
        details = "Nur Client-Side Pixel erkannt."
        recommendation = "Erwägen Sie die Conversions API mit gehashten Nutzerdaten."
    return report.DmaCheck(
        id=_check_id("encryption", gatekeeper.name),
        gatekeeper=gatekeeper.name,
        service=", ".join(gatekeeper.services),
        requirement=_ENCRYPTION_REQUIREMENT,
        status="requires_review",
        details=details,
        recommendation=recommendation,
    )


def evaluate(s: context.AuditSignals) -> report.DmaChecklist:
    """Evaluate the DMA checks for every detected gatekeeper."""
    gatekeepers = detect_gatekeepers(s)
    if not gatekeepers:
        return report.DmaChecklist()

    checks: list[report.DmaCheck] = []
    for gatekeeper in gatekeepers:
        checks.append(_consent_signalling(gatekeeper, s))
        checks.append(_data_combination(gatekeeper, s))
        if gatekeeper.name == "Meta":
            checks.append(_encryption(gatekeeper, s))

    summary = report.DmaSummary(
        compliant=sum(1 for c in checks if c.status == "compliant"),
        non_compliant=sum(1 for c in checks if c.status == "non_compliant"),
        requires_review=sum(1 for c in checks if c.status == "requires_review"),
    )
    log.info("DMA checklist evaluated", {"gatekeepers": [g.name for g in gatekeepers], **summary.model_dump()})
    return report.DmaChecklist(applicable=True, gatekeepers=gatekeepers, checks=checks, summary=summary)
