"""Runs the scorer stages in order over one set of signals."""

from __future__ import annotations

import dataclasses

from consent_audit.models import report
from consent_audit.scoring import calculator, context, dma, gdpr, issues


@dataclasses.dataclass(frozen=True)
class ScoredReport:
    gdpr_checklist: report.GdprChecklist
    dma_checklist: report.DmaChecklist
    issues: list[report.Issue]
    breakdown: report.ScoreBreakdown


def score_signals(s: context.AuditSignals) -> ScoredReport:
    """Checklists, issues and score for *s*."""
    gdpr_checklist = gdpr.evaluate(s)
    dma_checklist = dma.evaluate(s)
    found = issues.generate(s)
    breakdown = calculator.calculate_score(s, gdpr_checklist, found)
    return ScoredReport(
        gdpr_checklist=gdpr_checklist,
        dma_checklist=dma_checklist,
        issues=found,
        breakdown=breakdown,
    )
