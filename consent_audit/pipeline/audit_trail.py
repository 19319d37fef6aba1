"""
Audit trail of one analysis run.

Every step is recorded in order and, when a listener is attached,
forwarded to it as it happens so streaming clients can show live
progress.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from consent_audit.models import report
from consent_audit.utils import logger

log = logger.create_logger("AuditTrail")

StepListener = Callable[[report.AuditStep], Awaitable[None]]


class AuditTrail:
    """Ordered list of :class:`AuditStep` records with an optional live listener."""

    def __init__(self, on_step: StepListener | None = None) -> None:
        self._on_step = on_step
        self._steps: list[report.AuditStep] = []

    @property
    def steps(self) -> list[report.AuditStep]:
        """A copy of the recorded steps."""
        return list(self._steps)

    @property
    def has_errors(self) -> bool:
        return any(s.status == "error" for s in self._steps)

    async def record(
        self,
        step: str,
        status: report.StepStatus,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> report.AuditStep:
        """Append a step and notify the listener.

        Listener failures are logged and do not abort the analysis.
        """
        entry = report.AuditStep(
            step=step,
            status=status,
            message=message,
            details=details,
            timestamp=datetime.now(UTC).isoformat(),
        )
        self._steps.append(entry)
        if self._on_step is not None:
            try:
                await self._on_step(entry)
            except Exception as err:
                log.warn("Step listener failed", {"step": step, "error": str(err)})
        return entry

    async def running(self, step: str, message: str, details: dict[str, Any] | None = None) -> report.AuditStep:
        return await self.record(step, "running", message, details)

    async def completed(self, step: str, message: str, details: dict[str, Any] | None = None) -> report.AuditStep:
        return await self.record(step, "completed", message, details)

    async def failed(self, step: str, message: str, details: dict[str, Any] | None = None) -> report.AuditStep:
        return await self.record(step, "error", message, details)
