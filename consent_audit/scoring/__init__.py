"""Compliance scoring package.

Decomposes the report into the GDPR checklist, the DMA checklist,
issue generation and the final score.  The public entry point is
:func:`score_signals`.
"""

from __future__ import annotations

from consent_audit.scoring.calculator import calculate_score
from consent_audit.scoring.context import AuditSignals
from consent_audit.scoring.pipeline import score_signals

__all__ = ["AuditSignals", "calculate_score", "score_signals"]
