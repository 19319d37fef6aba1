"""
Accept/reject consent experiment.

Loads the target twice, each time in a fresh isolated session: once
to accept the banner and once to reject it.  The accept arm also
records the "before consent" snapshot.  Cookie sets are compared by
``(name, domain, path)`` identity.

A reject arm whose effective action was an ambiguous "save
preferences" click is reclassified as an accept when marketing or
analytics cookies appear afterwards.  This is an approximation: a
site that sets marketing cookies regardless of the choice is
indistinguishable from one whose save button accepts everything.
"""

from __future__ import annotations

from consent_audit import config
from consent_audit.browser import observer, pool
from consent_audit.consent import engine as engine_mod
from consent_audit.extractors import cookies as cookie_rules
from consent_audit.models import consent, crawl
from consent_audit.utils import errors, logger, retry

log = logger.create_logger("ConsentExperiment")


# ============================================================================
# Cookie set helpers
# ============================================================================


def merge_cookies(base: list[crawl.RawCookie], newer: list[crawl.RawCookie]) -> list[crawl.RawCookie]:
    """Union of two cookie lists by identity; entries in *newer* win."""
    merged = {c.identity: c for c in base}
    for cookie in newer:
        merged[cookie.identity] = cookie
    return list(merged.values())


def new_cookies(before: list[crawl.RawCookie], after: list[crawl.RawCookie]) -> list[crawl.RawCookie]:
    """Cookies in *after* whose identity was not present in *before*."""
    seen = {c.identity for c in before}
    return [c for c in after if c.identity not in seen]


# ============================================================================
# Outcome classification
# ============================================================================


def classify_reject(
    outcome: consent.ClickOutcome,
    appeared: list[crawl.RawCookie],
) -> tuple[consent.RejectMethod | None, bool]:
    """Return ``(reject_method, reclassified_as_accept)`` for a reject arm.

    Args:
        outcome: The engine outcome of the reject interaction.
        appeared: Cookies that appeared after the interaction.
    """
    if not outcome.succeeded:
        return None, False

    reclassified = outcome.is_save_action and bool(cookie_rules.tracking_cookie_names(appeared))

    if outcome.method == "cmp-api":
        method: consent.RejectMethod = "cmp-api"
    elif outcome.method == "settings-essential" or outcome.matched_as == "essential":
        method = "essential-only"
    elif outcome.method == "settings-save":
        method = "settings-toggle"
    elif outcome.method == "save":
        method = "save-button"
    elif outcome.matched_as == "reject":
        method = "direct"
    else:
        method = "unknown"
    return method, reclassified


def analyze_outcome(
    before: consent.CookieSnapshot,
    accept: consent.ConsentArmResult,
    reject: consent.ConsentArmResult,
) -> consent.ExperimentAnalysis:
    """Interpret the three snapshots of one experiment."""
    issues: list[str] = []

    reject_pre_tracking = bool(reject.tracking_before_interaction) and not reject.reclassified_as_accept
    tracking_before = bool(before.tracking_cookies_found) or reject_pre_tracking
    if tracking_before:
        names = before.tracking_cookies_found or reject.tracking_before_interaction
        issues.append(f"Tracking-Cookies vor der Einwilligung gesetzt: {', '.join(names)}")

    if not accept.button_found:
        issues.append("Kein Akzeptieren-Button gefunden")
    elif not accept.click_successful:
        issues.append("Akzeptieren-Button gefunden, aber Klick fehlgeschlagen")

    if not reject.button_found:
        issues.append("Keine Ablehnen-Option gefunden")
    elif not reject.click_successful:
        issues.append("Ablehnen-Option gefunden, aber Klick fehlgeschlagen")

    after_reject_tracking = cookie_rules.tracking_cookie_names(reject.new_cookies)
    after_reject_marketing = cookie_rules.marketing_cookie_names(reject.new_cookies)

    if reject.reclassified_as_accept:
        issues.append(
            "Die Speichern-Aktion ohne Auswahl setzte Tracking-Cookies und wurde als Zustimmung gewertet"
        )
    elif reject.click_successful and after_reject_tracking:
        issues.append(f"Tracking-Cookies trotz Ablehnung gesetzt: {', '.join(after_reject_tracking)}")

    return consent.ExperimentAnalysis(
        consent_works_properly=accept.click_successful and not tracking_before,
        reject_works_properly=(
            reject.click_successful and not reject.reclassified_as_accept and not after_reject_tracking
        ),
        tracking_before_consent=tracking_before,
        reject_via_essential_button=reject.reject_method == "essential-only",
        reject_via_save_button=reject.reject_method in ("save-button", "settings-toggle"),
        marketing_rejected_properly=reject.click_successful and not after_reject_marketing,
        issues=issues,
    )


# ============================================================================
# Experiment
# ============================================================================


class ConsentExperiment:
    """Runs the accept and reject arms against one URL."""

    def __init__(
        self,
        session_pool: pool.SessionPool,
        engine: engine_mod.ConsentEngine | None = None,
        crawl_config: config.CrawlConfig | None = None,
    ) -> None:
        self._pool = session_pool
        self._config = crawl_config or config.CrawlConfig()
        self._engine = engine or engine_mod.ConsentEngine(self._config)

    async def run(self, url: str) -> consent.ConsentExperimentResult:
        """Run both arms, retrying the whole experiment once if a session dies.

        Raises:
            errors.NavigationTimeout: The accept arm never loaded.  Not retried.
            errors.SessionClosed: The session died on both attempts.
        """
        attempts = 0

        async def attempt() -> consent.ConsentExperimentResult:
            nonlocal attempts
            attempts += 1
            return await self._run_once(url)

        log.start_timer("consent-experiment")
        result = await retry.with_retry(
            attempt,
            max_retries=1,
            retry_if=retry.is_retryable_session_error,
            context="consent-experiment",
        )
        log.end_timer("consent-experiment", "Consent experiment complete")
        return result.model_copy(update={"attempts": attempts})

    async def _run_once(self, url: str) -> consent.ConsentExperimentResult:
        before, accept = await self._accept_arm(url)

        try:
            reject = await self._reject_arm(url)
        except (errors.NavigationTimeout, errors.NavigationFailed) as exc:
            # The accept arm still carries a usable result.
            log.warn("Reject arm failed", {"error": str(exc)})
            analysis = analyze_outcome(before, accept, consent.ConsentArmResult())
            return consent.ConsentExperimentResult(
                before=before,
                after_accept=accept,
                analysis=analysis,
                error=f"Ablehnen-Test fehlgeschlagen: {exc}",
            )

        analysis = analyze_outcome(before, accept, reject)
        log.info(
            "Consent experiment analysed",
            {
                "before": before.cookie_count,
                "afterAccept": accept.cookie_count,
                "afterReject": reject.cookie_count,
                "rejectMethod": reject.reject_method,
                "reclassified": reject.reclassified_as_accept,
                "issues": len(analysis.issues),
            },
        )
        return consent.ConsentExperimentResult(
            before=before,
            after_accept=accept,
            after_reject=reject,
            analysis=analysis,
        )

    # ==========================================================================
    # Arms
    # ==========================================================================

    async def _run_arm(
        self, url: str, intent: consent.ConsentIntent
    ) -> tuple[list[crawl.RawCookie], consent.ClickOutcome, list[crawl.RawCookie]]:
        """Load, interact and collect in a fresh session.

        Returns the pre-interaction cookies, the click outcome and the
        post-interaction cookies.
        """
        log.subsection(f"Consent arm: {intent}")
        session = await self._pool.create_isolated_session()
        try:
            snapshot = await observer.load(session, url, observer.LoadOptions.from_config(self._config))
            outcome = await self._engine.interact(session.page, intent)
            if outcome.succeeded:
                await self._engine.settle_and_reload(session.page)
            after = await observer.collect_cookies(session.page)
        finally:
            await self._pool.close_session(session)
        return snapshot.cookies, outcome, after

    async def _accept_arm(self, url: str) -> tuple[consent.CookieSnapshot, consent.ConsentArmResult]:
        pre, outcome, after = await self._run_arm(url, "accept")

        before = consent.CookieSnapshot(
            cookies=pre,
            cookie_count=len(pre),
            tracking_cookies_found=cookie_rules.tracking_cookie_names(pre),
        )
        # Accepting never removes cookies, so before ⊆ accept.
        merged = merge_cookies(pre, after)
        arm = consent.ConsentArmResult(
            cookies=merged,
            cookie_count=len(merged),
            new_cookies=new_cookies(pre, merged),
            button_found=outcome.found,
            click_successful=outcome.succeeded,
            button_text=outcome.label,
            method=outcome.method,
        )
        return before, arm

    async def _reject_arm(self, url: str) -> consent.ConsentArmResult:
        pre, outcome, after = await self._run_arm(url, "reject")

        appeared = new_cookies(pre, after)
        reject_method, reclassified = classify_reject(outcome, appeared)
        if reclassified:
            log.warn(
                "Save action set tracking cookies, treating it as accept",
                {"method": outcome.method, "cookies": cookie_rules.tracking_cookie_names(appeared)},
            )
        return consent.ConsentArmResult(
            cookies=after,
            cookie_count=len(after),
            new_cookies=appeared,
            button_found=outcome.found,
            click_successful=outcome.succeeded,
            button_text=outcome.label,
            method=outcome.method,
            reject_method=reject_method,
            reclassified_as_accept=reclassified,
            tracking_before_interaction=cookie_rules.tracking_cookie_names(pre),
        )
