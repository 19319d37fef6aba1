"""
Streaming URL analysis.

Runs the orchestrator as a background task and relays every audit
step to the client as it happens, followed by a single ``complete``
or ``error`` event.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncGenerator

from consent_audit.models import report
from consent_audit.pipeline import orchestrator, sse_helpers
from consent_audit.utils import errors, logger
from consent_audit.utils import url as url_mod

log = logger.create_logger("Analyze")

# Maximum wall-clock time (seconds) for a single analysis run.
# Outer safety net; individual browser calls carry their own timeouts.
STREAM_TIMEOUT_SECONDS = 300  # 5 minutes


async def analyze_url_stream(
    audit: orchestrator.Orchestrator,
    url: str,
    *,
    quick: bool = False,
) -> AsyncGenerator[str]:
    """Analyze *url* and stream progress via SSE.

    Args:
        audit: The orchestrator bound to the shared session pool.
        url: The URL to analyze (scheme optional).
        quick: Skip the consent experiment and domain enrichment.
    """
    try:
        target = url_mod.normalize_url(url)
    except errors.InvalidUrl as err:
        yield sse_helpers.format_error_event(str(err))
        return

    domain = url_mod.extract_domain(target)
    logger.reset_timers()
    logger.start_log_file(domain)

    queue: asyncio.Queue[report.AuditStep] = asyncio.Queue()

    async def on_step(step: report.AuditStep) -> None:
        await queue.put(step)

    run = audit.analyze_quick if quick else audit.analyze
    task: asyncio.Task[report.AnalysisResult] = asyncio.create_task(run(target, on_step))

    try:
        async with asyncio.timeout(STREAM_TIMEOUT_SECONDS):
            while not task.done() or not queue.empty():
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield sse_helpers.format_step_event(getter.result())
                else:
                    getter.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await getter

            result = task.result()
            yield sse_helpers.format_complete_event(result)

    except TimeoutError:
        log.error("Analysis timed out", {"timeout_seconds": STREAM_TIMEOUT_SECONDS})
        yield sse_helpers.format_error_event(f"Analysis timed out after {STREAM_TIMEOUT_SECONDS // 60} minutes")
    except Exception as error:
        log.error("Analysis failed with exception", {"error": errors.get_error_message(error)})
        yield sse_helpers.format_error_event(errors.get_error_message(error))
    finally:
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        logger.end_log_file()
