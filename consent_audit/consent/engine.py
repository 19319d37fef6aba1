"""
Consent interaction engine.

Drives one consent intent (accept or reject) on a loaded page:

1. Direct search for CMP selectors and DE/EN labels.
2. Programmatic CMP API calls.
3. The settings drawer: open it, look for an essential-only
   control, otherwise switch off non-essential toggles and save.

The whole sequence is retried over a few passes with a short
backoff because banners animate in and attach listeners late.
Every attempt ends in a ``ClickOutcome``; failures are values,
not swallowed exceptions.
"""

from __future__ import annotations

import asyncio
import time
from urllib import parse

from playwright import async_api

from consent_audit import config
from consent_audit.browser import observer
from consent_audit.consent import search, vocabulary
from consent_audit.models import consent
from consent_audit.utils import errors, logger

log = logger.create_logger("ConsentEngine")

# Caps the wall-clock time of one interact() call.
_MAX_INTERACTION_SECONDS = 45.0
_CLICK_TIMEOUT_MS = 3000
_SAFETY_TIMEOUT_MS = 2000
_DRAWER_OPEN_WAIT_S = 1.0
_POST_CLICK_PAUSE_S = 0.3

_IS_CALLABLE_JS = """(path) => {
    let target = window;
    for (const part of path.split('.')) {
        if (target === null || target === undefined) return false;
        target = target[part];
    }
    return typeof target === 'function';
}"""

_IS_SAFE_TO_CLICK_JS = r"""el => {
    const tag = el.tagName.toLowerCase();
    if (tag === 'button' || el.type === 'submit' || el.type === 'button') return true;
    if (el.hasAttribute('onclick')) return true;
    if (el.getAttribute('role') === 'button' && !el.hasAttribute('href')) return true;
    const href = el.getAttribute('href');
    if (href === null || href === undefined) return true;
    const trimmed = href.trim();
    return trimmed === ''
        || trimmed.startsWith('#')
        || /^javascript:\s*(void\s*\(?\s*0?\s*\)?)?\s*;?\s*$/i.test(trimmed);
}"""

_TOGGLE_OFF_JS = """([keywords, maxDepth]) => {
    const labelOf = (el) => {
        const parts = [el.getAttribute('aria-label') || '', el.getAttribute('title') || '', el.name || ''];
        if (el.id) {
            const root = el.getRootNode();
            const label = root.querySelector ? root.querySelector('label[for="' + CSS.escape(el.id) + '"]') : null;
            if (label) parts.push(label.textContent || '');
        }
        const wrapping = el.closest('label');
        if (wrapping) parts.push(wrapping.textContent || '');
        const container = el.parentElement && el.parentElement.parentElement;
        if (container) parts.push((container.textContent || '').slice(0, 200));
        return parts.join(' ').toLowerCase();
    };
    const isOn = (el) => el.getAttribute('role')
        ? el.getAttribute('aria-checked') === 'true'
        : !!el.checked;

    let toggled = 0;
    const visit = (root, depth) => {
        if (depth > maxDepth) return;
        const toggles = root.querySelectorAll(
            'input[type="checkbox"], [role="switch"], [role="checkbox"]'
        );
        for (const el of toggles) {
            if (el.disabled || el.getAttribute('aria-disabled') === 'true' || !isOn(el)) continue;
            const label = labelOf(el);
            if (!keywords.some((k) => label.includes(k))) continue;
            el.click();
            toggled++;
        }
        for (const host of root.querySelectorAll('*')) {
            if (host.shadowRoot) visit(host.shadowRoot, depth + 1);
        }
    };
    visit(document, 0);
    return toggled;
}"""


def _strip_fragment(page_url: str) -> str:
    return parse.urldefrag(page_url)[0]


class ConsentEngine:
    """Locates and activates consent controls on a page."""

    def __init__(self, crawl_config: config.CrawlConfig | None = None) -> None:
        self._config = crawl_config or config.CrawlConfig()

    # ==========================================================================
    # Public API
    # ==========================================================================

    async def interact(self, page: async_api.Page, intent: consent.ConsentIntent) -> consent.ClickOutcome:
        """Carry out *intent* on *page*.

        Returns ``ClickOutcome.not_found`` when no control of any kind
        exists after all passes; that is a finding, not an error.

        Raises:
            errors.SessionClosed: If the page died during the interaction.
        """
        passes = self._config.click_passes
        deadline = time.monotonic() + _MAX_INTERACTION_SECONDS
        last: consent.ClickOutcome | None = None

        log.start_timer(f"interact-{intent}")
        for pass_no in range(1, passes + 1):
            outcome = await self._attempt(page, intent, pass_no)
            if outcome.succeeded:
                log.end_timer(f"interact-{intent}", "Consent interaction complete")
                log.success(
                    "Consent control activated",
                    {"intent": intent, "method": outcome.method, "label": outcome.label, "pass": pass_no},
                )
                return outcome
            last = outcome
            if pass_no < passes:
                if time.monotonic() >= deadline:
                    log.warn("Consent interaction time limit reached", {"intent": intent, "pass": pass_no})
                    break
                await asyncio.sleep(self._config.click_backoff_ms * pass_no / 1000)

        log.end_timer(f"interact-{intent}", "Consent interaction finished without success")
        if last is None or not last.found:
            log.info("No consent control found", {"intent": intent, "passes": passes})
            return consent.ClickOutcome.not_found(passes=passes)
        return last

    async def settle_and_reload(self, page: async_api.Page) -> None:
        """Let consent side effects land, reload, and wait for tags again."""
        await asyncio.sleep(self._config.post_click_settle_ms / 1000)
        await observer.wait_for_network_idle(page, self._config.post_click_idle_ms)

        log.debug("Reloading page after consent interaction")
        try:
            await page.reload(wait_until="domcontentloaded", timeout=self._config.navigation_timeout_ms)
        except async_api.Error as exc:
            raise observer.translate_error(exc, page.url) from exc

        await observer.wait_for_network_idle(page, self._config.post_click_idle_ms)
        await observer.wait_for_tracking_objects(
            page, self._config.tracking_poll_ms, self._config.tracking_poll_interval_ms
        )

    # ==========================================================================
    # Strategy sequence
    # ==========================================================================

    async def _attempt(
        self, page: async_api.Page, intent: consent.ConsentIntent, pass_no: int
    ) -> consent.ClickOutcome:
        kinds: tuple[vocabulary.Intent, ...] = ("accept",) if intent == "accept" else ("reject", "essential")

        failed: consent.ClickOutcome | None = None
        for kind in kinds:
            outcome = await self._click_best(page, kind, pass_no)
            if outcome is None:
                continue
            if outcome.succeeded:
                return outcome
            failed = failed or outcome

        api_outcome = await self._call_cmp_api(page, intent, pass_no)
        if api_outcome is not None:
            return api_outcome

        drawer_outcome = await self._settings_drawer(page, intent, pass_no)
        if drawer_outcome is not None and drawer_outcome.succeeded:
            return drawer_outcome
        failed = failed or drawer_outcome

        if intent == "reject":
            # A first-layer "save" with nothing toggled; its meaning is
            # decided later from the cookies it produces.
            save_outcome = await self._click_best(page, "save", pass_no, method="save")
            if save_outcome is not None:
                return save_outcome

        return failed or consent.ClickOutcome.not_found(passes=pass_no)

    async def _click_best(
        self,
        page: async_api.Page,
        kind: vocabulary.Intent,
        pass_no: int,
        method: consent.ClickMethod | None = None,
    ) -> consent.ClickOutcome | None:
        """Click the best candidate for *kind*; ``None`` when there is none."""
        best = await search.find_best(page, kind, self._config.search_depth)
        if best is None:
            return None

        candidate = best.candidate
        resolved_method: consent.ClickMethod = method or (
            "selector" if best.level == search.MATCH_CMP_SELECTOR else "label"
        )
        frame = self._frame_for(page, candidate)
        clicked, failure = await self._click(page, frame, candidate.selector)
        return consent.ClickOutcome(
            found=True,
            clicked=clicked,
            method=resolved_method,
            label=candidate.text[:120] or candidate.label or None,
            selector=candidate.matched_selector or candidate.selector,
            frame_url=frame.url if frame != page.main_frame else None,
            cmp=candidate.cmp,
            matched_as=kind,
            passes=pass_no,
            failure=failure,
        )

    async def _call_cmp_api(
        self, page: async_api.Page, intent: consent.ConsentIntent, pass_no: int
    ) -> consent.ClickOutcome | None:
        """Invoke the first available CMP API for *intent*."""
        for call in vocabulary.CMP_API_CALLS[intent]:
            available = await observer.evaluate(page, _IS_CALLABLE_JS, call.function, default=False)
            if not available:
                continue
            try:
                await page.evaluate(f"() => {{ {call.expression}; return true; }}")
            except async_api.Error as exc:
                if errors.is_session_destroyed(exc):
                    raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
                log.debug("CMP API call failed", {"cmp": call.cmp, "call": call.function, "error": exc.message[:120]})
                continue
            log.info("Consent applied via CMP API", {"cmp": call.cmp, "call": call.function})
            return consent.ClickOutcome(
                found=True,
                clicked=True,
                method="cmp-api",
                label=call.function,
                cmp=call.cmp,
                matched_as="reject" if intent == "reject" else "accept",
                passes=pass_no,
            )
        return None

    async def _settings_drawer(
        self, page: async_api.Page, intent: consent.ConsentIntent, pass_no: int
    ) -> consent.ClickOutcome | None:
        """Open the settings drawer and finish *intent* inside it."""
        opened = await self._click_best(page, "settings", pass_no)
        if opened is None or not opened.succeeded:
            return opened
        log.debug("Settings drawer opened", {"label": opened.label})
        await asyncio.sleep(_DRAWER_OPEN_WAIT_S)

        if intent == "accept":
            inside = await self._click_best(page, "accept", pass_no)
            return inside

        essential = await self._click_best(page, "essential", pass_no, method="settings-essential")
        if essential is not None and essential.succeeded:
            return essential

        toggled = await self._toggle_off_non_essential(page)
        saved = await self._click_best(page, "save", pass_no, method="settings-save")
        if saved is not None:
            log.debug("Settings saved", {"toggledOff": toggled, "clicked": saved.clicked})
        return saved

    async def _toggle_off_non_essential(self, page: async_api.Page) -> int:
        """Switch off checked toggles labelled with a non-essential purpose."""
        total = 0
        args = [list(vocabulary.NON_ESSENTIAL_TOGGLE_KEYWORDS), self._config.search_depth]
        for _, frame in search.searchable_frames(page, self._config.search_depth):
            try:
                total += int(await frame.evaluate(_TOGGLE_OFF_JS, args) or 0)
            except async_api.Error as exc:
                if errors.is_session_destroyed(exc):
                    raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
                log.debug("Toggle pass failed in frame", {"frame": frame.url[:80], "error": exc.message[:120]})
        return total

    # ==========================================================================
    # Clicking
    # ==========================================================================

    @staticmethod
    def _frame_for(page: async_api.Page, candidate: search.Candidate) -> async_api.Frame:
        frames = page.frames
        if 0 <= candidate.frame_index < len(frames):
            return frames[candidate.frame_index]
        return page.main_frame

    async def _click(
        self, page: async_api.Page, frame: async_api.Frame, selector: str
    ) -> tuple[bool, consent.ClickFailure | None]:
        """Click *selector* in *frame* unless it would leave the page."""
        locator = frame.locator(selector).first
        original_url = page.url

        try:
            safe = await locator.evaluate(_IS_SAFE_TO_CLICK_JS, timeout=_SAFETY_TIMEOUT_MS)
        except async_api.Error as exc:
            if errors.is_session_destroyed(exc):
                raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
            log.debug("Could not evaluate element safety", {"selector": selector, "error": exc.message[:120]})
            return False, "click-failed"
        if not safe:
            log.debug("Skipping click, element would navigate away", {"selector": selector})
            return False, "click-failed"

        try:
            await locator.click(timeout=_CLICK_TIMEOUT_MS)
        except async_api.TimeoutError:
            # Covered by an overlay or still animating; a DOM click
            # still reaches the listener.
            try:
                await locator.evaluate("el => el.click()", timeout=_CLICK_TIMEOUT_MS)
            except async_api.Error as exc:
                if errors.is_session_destroyed(exc):
                    raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
                log.debug("DOM click failed", {"selector": selector, "error": exc.message[:120]})
                return False, "click-failed"
        except async_api.Error as exc:
            if errors.is_session_destroyed(exc):
                raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
            log.debug("Click failed", {"selector": selector, "error": exc.message[:120]})
            return False, "click-failed"

        if await self._did_navigate_away(page, original_url):
            return False, "navigated-away"
        return True, None

    async def _did_navigate_away(self, page: async_api.Page, original_url: str) -> bool:
        """Restore the original page if the click navigated elsewhere."""
        await asyncio.sleep(_POST_CLICK_PAUSE_S)
        current_url = page.url
        if _strip_fragment(current_url) == _strip_fragment(original_url):
            return False

        log.warn(
            "Click caused navigation, restoring page",
            {"from": original_url[:80], "to": current_url[:80]},
        )
        try:
            await page.go_back(wait_until="domcontentloaded", timeout=self._config.quick_navigation_timeout_ms)
            if _strip_fragment(page.url) != _strip_fragment(original_url):
                await page.goto(
                    original_url, wait_until="domcontentloaded", timeout=self._config.navigation_timeout_ms
                )
        except async_api.Error as exc:
            raise observer.translate_error(exc, original_url) from exc
        return True
