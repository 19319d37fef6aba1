"""
Analysis orchestrator.

Drives one audit end to end:

- loads the page in an isolated session (quick scans retry the
  navigation once on timeout)
- runs the accept/reject consent experiment (full scans only)
- runs every signal extractor concurrently on worker threads
- scores the signals and assembles the final ``AnalysisResult``

Main crawl failures abort the run.  Failures of the consent
experiment or of the third-party enrichment degrade the result to
``partial`` and are recorded as ``error`` audit steps.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from playwright import async_api

from consent_audit import config
from consent_audit.browser import observer, pool
from consent_audit.consent import experiment as experiment_mod
from consent_audit.extractors import consent_mode, cookie_banner, cookies, datalayer, tcf, third_party, tracking_tags
from consent_audit.models import consent, crawl, report, signals
from consent_audit.pipeline import audit_trail
from consent_audit.scoring import context, pipeline as scoring_pipeline
from consent_audit.utils import errors, logger, retry
from consent_audit.utils import url as url_mod

log = logger.create_logger("Orchestrator")

T = TypeVar("T")

QUICK_NAVIGATION_RETRIES = 1


class Orchestrator:
    """Runs full and quick audits against a shared :class:`SessionPool`."""

    def __init__(
        self,
        session_pool: pool.SessionPool,
        settings: config.AuditSettings | None = None,
    ) -> None:
        self._pool = session_pool
        self._settings = settings or config.AuditSettings()

    # ==========================================================================
    # Public API
    # ==========================================================================

    async def analyze(
        self,
        url: str,
        on_step: audit_trail.StepListener | None = None,
    ) -> report.AnalysisResult:
        """Full audit including the consent experiment and domain enrichment.

        Raises:
            errors.InvalidUrl: *url* cannot be normalised.
            errors.AuditError: The main page load failed.
        """
        return await self._run(url, quick=False, on_step=on_step)

    async def analyze_quick(
        self,
        url: str,
        on_step: audit_trail.StepListener | None = None,
    ) -> report.AnalysisResult:
        """Page load and extractors only, with shorter waits.

        Raises:
            errors.InvalidUrl: *url* cannot be normalised.
            errors.AuditError: The main page load failed on every attempt.
        """
        return await self._run(url, quick=True, on_step=on_step)

    # ==========================================================================
    # Run
    # ==========================================================================

    async def _run(
        self,
        url: str,
        *,
        quick: bool,
        on_step: audit_trail.StepListener | None,
    ) -> report.AnalysisResult:
        target = url_mod.normalize_url(url)
        trail = audit_trail.AuditTrail(on_step)
        mode = "quick" if quick else "full"

        log.section(f"Auditing: {target}")
        log.info("Audit started", {"url": target, "mode": mode})
        log.start_timer("total-audit")

        # ── Page load ───────────────────────────────────────
        await trail.running("page-load", "Seite wird geladen")
        try:
            snapshot = await self._load(target, quick)
        except errors.AuditError as err:
            await trail.failed("page-load", f"Seite konnte nicht geladen werden: {err}")
            log.error("Main crawl failed", {"url": target, "error": errors.get_error_message(err)})
            raise
        await trail.completed(
            "page-load",
            "Seite geladen",
            {
                "requests": len(snapshot.network_requests),
                "cookies": len(snapshot.cookies),
                "scripts": len(snapshot.scripts),
            },
        )

        # ── Consent experiment ──────────────────────────────
        experiment: consent.ConsentExperimentResult | None = None
        if not quick:
            experiment = await self._run_experiment(target, trail)

        # ── Signal extraction ───────────────────────────────
        await trail.running("extraction", "Signale werden ausgewertet")
        anomalies: list[report.Anomaly] = []
        s = await self._extract(snapshot, experiment, quick, trail, anomalies)
        await trail.completed(
            "extraction",
            "Signale ausgewertet",
            {
                "banner": s.cookie_banner.detected,
                "tags": len(s.tracking_tags.tags),
                "thirdPartyDomains": s.third_party.total_count,
                "anomalies": len(anomalies),
            },
        )

        # ── Scoring ─────────────────────────────────────────
        await trail.running("scoring", "Bewertung wird berechnet")
        scored = scoring_pipeline.score_signals(s)
        await trail.completed(
            "scoring",
            "Bewertung abgeschlossen",
            {"score": scored.breakdown.overall, "issues": len(scored.issues)},
        )

        status = "partial" if trail.has_errors else "success"
        result = report.AnalysisResult(
            url=target,
            timestamp=datetime.now(UTC).isoformat(),
            status=status,
            scan_mode=mode,
            cookie_banner=s.cookie_banner,
            tcf=s.tcf,
            google_consent_mode=s.consent_mode,
            tracking_tags=s.tracking_tags,
            data_layer=s.data_layer,
            third_party_domains=s.third_party,
            cookies=s.cookies,
            cookie_consent_test=experiment,
            gdpr_checklist=scored.gdpr_checklist,
            dma_checklist=scored.dma_checklist,
            issues=scored.issues,
            score=scored.breakdown.overall,
            score_breakdown=scored.breakdown,
            audit_steps=trail.steps,
            anomalies=anomalies,
        )

        total_time = log.end_timer("total-audit", "Audit complete")
        log.success(
            "Audit finished",
            {
                "url": target,
                "status": status,
                "score": result.score,
                "totalTime": f"{(total_time / 1000):.2f}s",
            },
        )
        logger.save_result_file(
            url_mod.extract_domain(target),
            json.dumps(result.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False),
        )
        return result

    # ==========================================================================
    # Stages
    # ==========================================================================

    async def _load(self, target: str, quick: bool) -> crawl.CrawlResult:
        options = observer.LoadOptions.from_config(self._settings.crawl, quick=quick)

        async def attempt() -> crawl.CrawlResult:
            session = await self._pool.create_isolated_session()
            try:
                return await observer.load(session, target, options)
            finally:
                await self._pool.close_session(session)

        if not quick:
            return await attempt()
        return await retry.with_retry(
            attempt,
            max_retries=QUICK_NAVIGATION_RETRIES,
            retry_if=retry.is_navigation_timeout,
            context="quick-navigation",
        )

    async def _run_experiment(
        self,
        target: str,
        trail: audit_trail.AuditTrail,
    ) -> consent.ConsentExperimentResult | None:
        await trail.running("consent-test", "Einwilligungstest läuft")
        runner = experiment_mod.ConsentExperiment(self._pool, crawl_config=self._settings.crawl)
        try:
            result = await runner.run(target)
        except (errors.AuditError, async_api.Error) as err:
            message = errors.get_error_message(err)
            log.warn("Consent experiment failed", {"error": message})
            await trail.failed("consent-test", f"Einwilligungstest fehlgeschlagen: {message}")
            return None

        if result.error:
            await trail.failed("consent-test", result.error, {"attempts": result.attempts})
        else:
            await trail.completed(
                "consent-test",
                "Einwilligungstest abgeschlossen",
                {
                    "attempts": result.attempts,
                    "consentWorks": result.analysis.consent_works_properly,
                    "rejectWorks": result.analysis.reject_works_properly,
                },
            )
        return result

    async def _extract(
        self,
        snapshot: crawl.CrawlResult,
        experiment: consent.ConsentExperimentResult | None,
        quick: bool,
        trail: audit_trail.AuditTrail,
        anomalies: list[report.Anomaly],
    ) -> context.AuditSignals:
        """Run all extractors concurrently; malformed input yields a not-detected signal."""

        def guarded(name: str, fn: Callable[[], T], fallback: Callable[[], T]) -> Awaitable[T]:
            return _guarded(name, fn, fallback, anomalies)

        log.start_timer("extraction")
        (
            banner,
            tcf_result,
            mode_result,
            tags,
            data_layer,
            analyzed_cookies,
        ) = await asyncio.gather(
            guarded("cookie_banner", lambda: cookie_banner.analyze(snapshot), signals.CookieBannerResult.not_detected),
            guarded("tcf", lambda: tcf.analyze(snapshot), signals.TcfResult.not_detected),
            guarded("consent_mode", lambda: consent_mode.analyze(snapshot), signals.ConsentModeResult.not_detected),
            guarded("tracking_tags", lambda: tracking_tags.analyze(snapshot), signals.TrackingTagsResult.not_detected),
            guarded("datalayer", lambda: datalayer.analyze(snapshot), signals.DataLayerResult.not_detected),
            guarded("cookies", lambda: cookies.analyze(snapshot), list),
        )
        third_party_result = await self._third_party(snapshot, quick, trail, anomalies)
        log.end_timer("extraction", "Extractors finished")

        return context.AuditSignals(
            cookie_banner=banner,
            tcf=tcf_result,
            consent_mode=mode_result,
            tracking_tags=tags,
            data_layer=data_layer,
            third_party=third_party_result,
            cookies=analyzed_cookies,
            experiment=experiment,
        )

    async def _third_party(
        self,
        snapshot: crawl.CrawlResult,
        quick: bool,
        trail: audit_trail.AuditTrail,
        anomalies: list[report.Anomaly],
    ) -> signals.ThirdPartyDomainsResult:
        """Third-party inventory; falls back to the unenriched table if the reference data is unusable."""
        if quick:
            return await _guarded(
                "third_party",
                lambda: third_party.analyze(snapshot, enrich=False),
                signals.ThirdPartyDomainsResult.not_detected,
                anomalies,
            )
        try:
            return await _guarded(
                "third_party",
                lambda: third_party.analyze(snapshot),
                signals.ThirdPartyDomainsResult.not_detected,
                anomalies,
                passthrough=(OSError, ValueError),
            )
        except (OSError, ValueError) as err:
            log.warn("Third-party enrichment failed", {"error": str(err)})
            await trail.failed("third-party", f"Domain-Anreicherung fehlgeschlagen: {err}")
            return await _guarded(
                "third_party",
                lambda: third_party.analyze(snapshot, enrich=False),
                signals.ThirdPartyDomainsResult.not_detected,
                anomalies,
            )


async def _guarded(
    name: str,
    fn: Callable[[], T],
    fallback: Callable[[], T],
    anomalies: list[report.Anomaly],
    passthrough: tuple[type[Exception], ...] = (),
) -> T:
    """Run extractor *fn* on a worker thread.

    A failing extractor never aborts the audit: its error becomes an
    anomaly and its result the *fallback*.  Exceptions listed in
    *passthrough* propagate so the caller can recover differently.
    """
    try:
        return await asyncio.to_thread(fn)
    except passthrough:
        raise
    except errors.MalformedSignalInput as err:
        log.warn("Extractor rejected malformed input", {"extractor": name, "error": str(err)})
        anomalies.append(report.Anomaly(extractor=name, message=str(err)))
        return fallback()
    except Exception as err:
        message = f"{type(err).__name__}: {err}"
        log.error("Extractor failed", {"extractor": name, "error": message})
        anomalies.append(report.Anomaly(extractor=name, message=message))
        return fallback()
