"""
Server-Sent Events formatting helpers.

Pure functions with no side-effects, safe to import from the route
and the streaming generator alike.
"""

from __future__ import annotations

import json
from typing import Any

from consent_audit.models import report
from consent_audit.utils import serialization

# ====================================================================
# SSE Formatting
# ====================================================================


def format_sse_event(event_type: str, data: dict[str, Any]) -> str:
    """Format a Server-Sent Event string."""
    return f"event: {event_type}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def format_step_event(step: report.AuditStep) -> str:
    """Format an audit-trail step as a ``step`` event."""
    return format_sse_event("step", serialization.to_camel_dict(step))


def format_complete_event(result: report.AnalysisResult) -> str:
    """Format the final result as a ``complete`` event."""
    return format_sse_event("complete", serialization.to_camel_dict(result))


def format_error_event(message: str) -> str:
    """Format a terminal ``error`` event."""
    return format_sse_event("error", {"error": message})
