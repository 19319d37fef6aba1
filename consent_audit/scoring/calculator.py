"""Compliance score calculator.

Blends the GDPR checklist score with a tracking-implementation
score.  The tracking score starts from a baseline that depends on
what kind of tracking exists, then applies fixed per-issue
penalties and good-practice bonuses.  A page without any tracking
signal has nothing to implement and keeps a tracking score of 0.
"""

from __future__ import annotations

from consent_audit.extractors import consent_mode as consent_mode_mod
from consent_audit.models import report
from consent_audit.scoring import context
from consent_audit.utils import logger

log = logger.create_logger("Score")

GDPR_WEIGHT = 0.4
TRACKING_WEIGHT = 0.6

# ── Baselines ───────────────────────────────────────────────

BASELINES: dict[report.TrackingProfile, int] = {
    "major": 100,
    "secondary-only": 70,
    "server-side-only": 85,
    "none": 0,
}

ERROR_PENALTY = 15
WARNING_PENALTY = 5
BONUS = 5


def clamp(value: float, low: int = 0, high: int = 100) -> int:
    """Round *value* and clamp it to ``[low, high]``."""
    return max(low, min(high, round(value)))


def tracking_profile(s: context.AuditSignals) -> report.TrackingProfile:
    """Classify which kind of tracking the page runs."""
    tags = s.tracking_tags
    if tags.has_major_tags:
        return "major"
    if tags.has_secondary_tags:
        return "secondary-only"
    if tags.server_side.detected:
        return "server-side-only"
    if s.tracking_cookies:
        # Tracking cookies whose tags were not recognised.
        return "secondary-only"
    return "none"


def _bonuses(s: context.AuditSignals) -> list[str]:
    earned: list[str] = []
    if s.cookie_banner.is_balanced:
        earned.append("Akzeptieren und Ablehnen gleichwertig angeboten")
    if s.tcf.detected and s.tcf.valid_tc_string:
        earned.append("Gültiger TC String")
    if (
        s.consent_mode.detected
        and s.consent_mode.version == "v2"
        and consent_mode_mod.check_completeness(s.consent_mode).has_proper_update_flow
    ):
        earned.append("Consent Mode v2 mit Update-Logik")
    experiment = s.experiment
    if (
        experiment is not None
        and experiment.error is None
        and experiment.analysis.consent_works_properly
        and experiment.analysis.reject_works_properly
    ):
        earned.append("Einwilligungstest erfolgreich")
    return earned


def calculate_score(
    s: context.AuditSignals,
    gdpr: report.GdprChecklist,
    issues: list[report.Issue],
) -> report.ScoreBreakdown:
    """Combine the GDPR score and the tracking score into the final score.

    Args:
        s: All signals of the page.
        gdpr: The evaluated GDPR checklist.
        issues: The generated issues.

    Returns:
        A :class:`ScoreBreakdown` whose ``overall`` is in ``[0, 100]``.
    """
    profile = tracking_profile(s)
    baseline = BASELINES[profile]
    factors: list[str] = []

    if profile == "none":
        penalties = bonuses = 0
        tracking_score = 0
        factors.append("Kein Tracking erkannt")
    else:
        errors = sum(1 for i in issues if i.severity == "error")
        warnings = sum(1 for i in issues if i.severity == "warning")
        penalties = errors * ERROR_PENALTY + warnings * WARNING_PENALTY
        if errors:
            factors.append(f"{errors} Fehler (-{errors * ERROR_PENALTY})")
        if warnings:
            factors.append(f"{warnings} Warnung(en) (-{warnings * WARNING_PENALTY})")
        earned = _bonuses(s)
        bonuses = len(earned) * BONUS
        factors.extend(f"{label} (+{BONUS})" for label in earned)
        tracking_score = clamp(baseline - penalties + bonuses)

    gdpr_score = clamp(gdpr.score)
    overall = clamp(GDPR_WEIGHT * gdpr_score + TRACKING_WEIGHT * tracking_score)

    log.success(
        "Score calculated",
        {
            "overall": overall,
            "gdpr": gdpr_score,
            "tracking": tracking_score,
            "profile": profile,
            "penalties": penalties,
            "bonuses": bonuses,
        },
    )
    return report.ScoreBreakdown(
        overall=overall,
        gdpr_score=gdpr_score,
        tracking_score=tracking_score,
        tracking_baseline=baseline,
        tracking_profile=profile,
        penalties=penalties,
        bonuses=bonuses,
        factors=factors,
    )
