"""
Page observer: loads one URL in an isolated session and records
everything the extractors need.

Listeners for requests, responses and console output are attached
before navigation.  After the page settles the observer waits a
grace period, polls for tracking objects injected by tag managers,
then snapshots HTML, scripts, tracking globals and cookies into an
immutable ``CrawlResult``.
"""

from __future__ import annotations

import asyncio
import re
import time
from datetime import datetime, timezone
from typing import Any, Literal

import pydantic
from playwright import async_api

from consent_audit import config
from consent_audit.browser import pool
from consent_audit.models import crawl
from consent_audit.utils import errors, logger
from consent_audit.utils import url as url_mod

log = logger.create_logger("Observer")

# ============================================================================
# Constants
# ============================================================================

MAX_TRACKED_REQUESTS = 5000
MAX_SCRIPTS = 500
MAX_INLINE_SCRIPT_CHARS = 20000
POST_POLL_SETTLE_MS = 500
SET_COOKIE_CAPTURE_TIMEOUT_S = 5

# Responses whose headers are kept: collect/pixel endpoints and
# the hosts of the major tag vendors.
_TRACKING_URL_RE = re.compile(
    r"/g/collect|/collect\b|/j/collect|/tr[/?]|/pixel|/events?\b|/track\b|/gtm\.js|/gtag/js"
    r"|google-analytics\.com|googletagmanager\.com|doubleclick\.net|facebook\.com/tr"
    r"|connect\.facebook\.net|analytics\.tiktok\.com|px\.ads\.linkedin\.com|snap\.licdn\.com"
    r"|bat\.bing\.com|ct\.pinterest\.com|analytics\.twitter\.com",
    re.IGNORECASE,
)

WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]


class LoadOptions(pydantic.BaseModel):
    """Timing of one page load.  All durations are milliseconds."""

    model_config = pydantic.ConfigDict(frozen=True)

    navigation_timeout_ms: int = 25000
    grace_ms: int = 2000
    tracking_poll_ms: int = 3000
    poll_interval_ms: int = 200
    wait_until: WaitUntil = "domcontentloaded"
    quick: bool = False

    @classmethod
    def from_config(cls, crawl_config: config.CrawlConfig, quick: bool = False) -> LoadOptions:
        """Build options from settings; quick mode shortens waits and skips polling."""
        if quick:
            return cls(
                navigation_timeout_ms=crawl_config.quick_navigation_timeout_ms,
                grace_ms=crawl_config.quick_grace_ms,
                tracking_poll_ms=0,
                poll_interval_ms=crawl_config.tracking_poll_interval_ms,
                quick=True,
            )
        return cls(
            navigation_timeout_ms=crawl_config.navigation_timeout_ms,
            grace_ms=crawl_config.grace_ms,
            tracking_poll_ms=crawl_config.tracking_poll_ms,
            poll_interval_ms=crawl_config.tracking_poll_interval_ms,
        )


# ============================================================================
# In-page scripts
# ============================================================================

_TRACKING_READY_JS = """() => {
    const w = window;
    return typeof w.gtag === 'function'
        || typeof w.fbq === 'function'
        || !!w.ttq
        || (Array.isArray(w.dataLayer) && w.dataLayer.length > 0)
        || !!w._linkedin_partner_id;
}"""

_SCRIPTS_JS = """([maxScripts, maxInline]) => {
    const out = [];
    for (const el of Array.from(document.querySelectorAll('script')).slice(0, maxScripts)) {
        if (el.src) {
            out.push({ src: el.src, inline: '' });
        } else {
            const text = el.textContent || '';
            if (text.trim()) out.push({ src: null, inline: text.slice(0, maxInline) });
        }
    }
    return out;
}"""

_TRACKING_GLOBALS_JS = """async () => {
    const w = window;
    const safe = (value) => {
        try {
            if (Object.prototype.toString.call(value) === '[object Arguments]') {
                value = Array.from(value);
            }
            return JSON.parse(JSON.stringify(value));
        } catch (e) {
            return null;
        }
    };

    let tcfData = null;
    if (typeof w.__tcfapi === 'function') {
        tcfData = await new Promise((resolve) => {
            const timer = setTimeout(() => resolve(null), 1000);
            try {
                w.__tcfapi('getTCData', 2, (data, success) => {
                    clearTimeout(timer);
                    resolve(success ? safe(data) : null);
                });
            } catch (e) {
                clearTimeout(timer);
                resolve(null);
            }
        });
    }

    const additionalNames = [
        '_fbq', 'ttq', '_linkedin_data_partner_ids', '_linkedin_partner_id', 'snaptr',
        'pintrk', 'twq', 'rdt', 'uetq', 'clarity', 'hj', '_paq', 'criteo_q', '_hsq',
        'analytics', 'mixpanel', 'amplitude', 'google_tag_manager', 'google_tag_data',
    ];
    const additional = {};
    for (const name of additionalNames) additional[name] = typeof w[name] !== 'undefined';

    const cmpNames = [
        '__tcfapi', '__cmp', '__uspapi', '__gpp', 'Cookiebot', 'CookieConsent', 'OneTrust',
        'OptanonActiveGroups', 'UC_UI', 'usercentrics', 'Didomi', 'klaro', '_sp_', 'consentmanager',
        'cmplz_accept_all', 'complianz', 'BorlabsCookie', 'Osano', 'CookieYes', 'iubenda', '_iub',
        'Termly', 'truste', 'axeptioSDK', 'CookieInformation', 'CCM', 'cookieconsent',
    ];
    const cmpApis = cmpNames.filter((name) => typeof w[name] !== 'undefined');

    const dataLayer = Array.isArray(w.dataLayer)
        ? w.dataLayer.slice(0, 50).map(safe).filter((entry) => entry !== null)
        : [];
    const fbqQueue = w.fbq && Array.isArray(w.fbq.queue) ? w.fbq.queue.slice(0, 50).map(safe) : null;

    return {
        hasGtag: typeof w.gtag === 'function',
        hasDataLayer: Array.isArray(w.dataLayer),
        hasTcfApi: typeof w.__tcfapi === 'function',
        hasFbq: typeof w.fbq === 'function',
        hasFbEvents: !!(w.fbq && (w.fbq.loaded || w.fbq.version)),
        hasTtq: typeof w.ttq !== 'undefined',
        hasLintrk: typeof w.lintrk === 'function',
        dataLayer,
        tcfData,
        fbqQueue,
        additional,
        cmpApis,
    };
}"""

_DOCUMENT_COOKIE_JS = "() => document.cookie"


# ============================================================================
# Error translation
# ============================================================================


def translate_error(exc: async_api.Error, url: str = "") -> errors.AuditError:
    """Map a Playwright error onto the audit error taxonomy."""
    if isinstance(exc, async_api.TimeoutError):
        return errors.NavigationTimeout(f"Timeout loading {url}: {exc.message}")
    if errors.is_session_destroyed(exc):
        return errors.SessionClosed(f"Browser session closed: {exc.message}")
    return errors.NavigationFailed(f"Navigation to {url} failed: {exc.message}")


async def evaluate(page: async_api.Page, script: str, arg: Any = None, default: Any = None) -> Any:
    """Evaluate *script* on *page*, returning *default* if the page script fails.

    Raises:
        errors.SessionClosed: If the page or browser is gone.
    """
    try:
        if arg is None:
            return await page.evaluate(script)
        return await page.evaluate(script, arg)
    except async_api.Error as exc:
        if errors.is_session_destroyed(exc):
            raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
        log.debug("Page evaluation failed", {"error": exc.message[:200]})
        return default


# ============================================================================
# Network recorder
# ============================================================================


class _Recorder:
    """Collects requests, responses, Set-Cookie headers and console output."""

    def __init__(self, page_url: str) -> None:
        self.page_url = page_url
        self.requests: list[crawl.NetworkRequest] = []
        self.set_cookie_headers: list[crawl.SetCookieHeader] = []
        self.console_messages: list[crawl.ConsoleMessage] = []
        self._pending_responses: dict[str, list[int]] = {}
        self._header_tasks: set[asyncio.Task[None]] = set()
        self._limit_logged = False

    def attach(self, page: async_api.Page) -> None:
        page.on("request", self.on_request)
        page.on("response", self.on_response)
        page.on("console", self.on_console)

    def detach(self, page: async_api.Page) -> None:
        page.remove_listener("request", self.on_request)
        page.remove_listener("response", self.on_response)
        page.remove_listener("console", self.on_console)

    def on_request(self, request: async_api.Request) -> None:
        if len(self.requests) >= MAX_TRACKED_REQUESTS:
            if not self._limit_logged:
                log.debug("Network request tracking limit reached", {"limit": MAX_TRACKED_REQUESTS})
                self._limit_logged = True
            return

        request_url = request.url
        idx = len(self.requests)
        self.requests.append(
            crawl.NetworkRequest(
                url=request_url,
                domain=url_mod.extract_domain(request_url),
                method=request.method,
                resource_type=request.resource_type,
                is_third_party=url_mod.is_third_party(request_url, self.page_url),
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
        )
        self._pending_responses.setdefault(request_url, []).append(idx)

    def on_response(self, response: async_api.Response) -> None:
        response_url = response.url
        indices = self._pending_responses.get(response_url)
        if indices:
            idx = indices.pop(0)
            tracked = self.requests[idx]
            tracked.status_code = response.status
            if _TRACKING_URL_RE.search(response_url):
                tracked.response_headers = dict(response.headers)
            if not indices:
                del self._pending_responses[response_url]

        task = asyncio.ensure_future(self._capture_set_cookie(response))
        self._header_tasks.add(task)
        task.add_done_callback(self._header_tasks.discard)

    def on_console(self, message: async_api.ConsoleMessage) -> None:
        self.console_messages.append(crawl.ConsoleMessage(type=message.type, text=message.text[:500]))

    async def _capture_set_cookie(self, response: async_api.Response) -> None:
        try:
            values = await response.header_values("set-cookie")
        except async_api.Error as exc:
            # The response body was already discarded by a navigation.
            log.debug("Set-Cookie capture failed", {"url": response.url[:120], "error": exc.message[:120]})
            return
        for value in values:
            self.set_cookie_headers.append(crawl.SetCookieHeader(url=response.url, value=value))

    async def drain(self) -> None:
        """Wait for outstanding Set-Cookie reads, bounded by a timeout."""
        if not self._header_tasks:
            return
        pending = list(self._header_tasks)
        done, not_done = await asyncio.wait(pending, timeout=SET_COOKIE_CAPTURE_TIMEOUT_S)
        for task in not_done:
            task.cancel()
        if not_done:
            log.debug("Set-Cookie capture timed out", {"pending": len(not_done), "done": len(done)})


# ============================================================================
# Waiting
# ============================================================================


async def wait_for_network_idle(page: async_api.Page, timeout_ms: int) -> bool:
    """Wait for network idle; ``False`` when the page kept talking."""
    if timeout_ms <= 0:
        return False
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        return True
    except async_api.TimeoutError:
        log.debug("Network idle timeout", {"timeoutMs": timeout_ms})
        return False
    except async_api.Error as exc:
        if errors.is_session_destroyed(exc):
            raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
        raise


async def wait_for_tracking_objects(page: async_api.Page, timeout_ms: int, interval_ms: int = 200) -> bool:
    """Poll until a known tracking object appears on ``window``."""
    if timeout_ms <= 0:
        return False
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        if await evaluate(page, _TRACKING_READY_JS, default=False):
            return True
        if time.monotonic() >= deadline:
            return False
        await asyncio.sleep(interval_ms / 1000)


# ============================================================================
# Capture
# ============================================================================


async def read_tracking_globals(page: async_api.Page) -> crawl.TrackingGlobals:
    """Snapshot tracking-relevant ``window`` globals."""
    raw = await evaluate(page, _TRACKING_GLOBALS_JS, default=None)
    if not isinstance(raw, dict):
        return crawl.TrackingGlobals.empty()
    try:
        return crawl.TrackingGlobals.model_validate(raw)
    except pydantic.ValidationError as exc:
        log.warn("Unexpected tracking globals shape", {"error": str(exc)[:200]})
        return crawl.TrackingGlobals.empty()


async def capture_scripts(page: async_api.Page) -> list[crawl.ScriptSource]:
    """Return external script URLs and truncated inline script bodies."""
    raw = await evaluate(page, _SCRIPTS_JS, [MAX_SCRIPTS, MAX_INLINE_SCRIPT_CHARS], default=[])
    return [crawl.ScriptSource(src=item.get("src"), inline=item.get("inline") or "") for item in raw or []]


async def read_document(response: async_api.Response | None) -> str:
    """Return the served document body, empty when there was none or it is unreadable."""
    if response is None:
        return ""
    try:
        return await response.text()
    except async_api.Error as exc:
        if errors.is_session_destroyed(exc):
            raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
        log.debug("Document body unavailable", {"url": response.url[:120], "error": exc.message[:120]})
        return ""


def _raw_cookie(cookie: dict[str, Any]) -> crawl.RawCookie:
    return crawl.RawCookie(
        name=cookie.get("name", ""),
        value=cookie.get("value", ""),
        domain=cookie.get("domain", ""),
        path=cookie.get("path") or "/",
        expires=cookie.get("expires", -1),
        http_only=cookie.get("httpOnly", False),
        secure=cookie.get("secure", False),
        same_site=cookie.get("sameSite"),
    )


def parse_document_cookie(header: str, hostname: str) -> list[crawl.RawCookie]:
    """Split a ``document.cookie`` string into cookies scoped to *hostname*."""
    cookies: list[crawl.RawCookie] = []
    for part in header.split(";"):
        name, sep, value = part.strip().partition("=")
        if not sep or not name:
            continue
        cookies.append(crawl.RawCookie(name=name.strip(), value=value.strip(), domain=hostname))
    return cookies


async def collect_cookies(page: async_api.Page) -> list[crawl.RawCookie]:
    """Collect cookies through three channels merged by identity.

    The browser protocol sees HttpOnly cookies of every domain, the
    context API sees the cookie jar, and ``document.cookie`` sees what
    page scripts see.  Earlier channels win on identity collisions;
    ``document.cookie`` entries are only added for unseen names.
    """
    merged: dict[tuple[str, str, str], crawl.RawCookie] = {}

    def add(cookie: crawl.RawCookie) -> None:
        if cookie.name and cookie.identity not in merged:
            merged[cookie.identity] = cookie

    try:
        cdp = await page.context.new_cdp_session(page)
        try:
            result = await cdp.send("Network.getAllCookies")
        finally:
            await cdp.detach()
        for cookie in result.get("cookies", []):
            add(_raw_cookie(cookie))
    except async_api.Error as exc:
        if errors.is_session_destroyed(exc):
            raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
        log.debug("CDP cookie channel unavailable", {"error": exc.message[:120]})

    try:
        for cookie in await page.context.cookies():
            add(_raw_cookie(dict(cookie)))
    except async_api.Error as exc:
        if errors.is_session_destroyed(exc):
            raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
        log.debug("Context cookie channel unavailable", {"error": exc.message[:120]})

    header = await evaluate(page, _DOCUMENT_COOKIE_JS, default="")
    if header:
        hostname = url_mod.extract_domain(page.url)
        seen_names = {c.name for c in merged.values()}
        for cookie in parse_document_cookie(header, hostname):
            if cookie.name not in seen_names:
                add(cookie)

    return list(merged.values())


# ============================================================================
# Load
# ============================================================================


async def load(
    session: pool.SessionHandle,
    url: str,
    options: LoadOptions | None = None,
) -> crawl.CrawlResult:
    """Load *url* in *session* and return the immutable crawl snapshot.

    Raises:
        errors.NavigationTimeout: The page never reached ``wait_until``.
        errors.SessionClosed: The page or browser died mid-load.
        errors.NavigationFailed: Any other navigation failure.
    """
    options = options or LoadOptions()
    page = session.page
    recorder = _Recorder(url)
    recorder.attach(page)
    hostname = url_mod.extract_domain(url)

    log.start_timer(f"load-{session.id}")
    log.info("Loading page", {"hostname": hostname, "quick": options.quick, "session": session.id})
    started = time.monotonic()

    try:
        try:
            response = await page.goto(url, wait_until=options.wait_until, timeout=options.navigation_timeout_ms)
        except async_api.Error as exc:
            raise translate_error(exc, url) from exc

        if response is not None and response.status >= 400:
            log.warn("Page returned error status", {"statusCode": response.status})

        document_html = await read_document(response)

        final_url = page.url
        if final_url != url:
            log.info("Redirected", {"from": url, "to": final_url})
        recorder.page_url = final_url

        # networkidle shares the hard timeout with the initial navigation
        elapsed_ms = int((time.monotonic() - started) * 1000)
        idle = await wait_for_network_idle(page, options.navigation_timeout_ms - elapsed_ms)
        if not idle:
            log.info("Network still active, proceeding with loaded DOM")

        await asyncio.sleep(options.grace_ms / 1000)

        if options.tracking_poll_ms > 0:
            found = await wait_for_tracking_objects(page, options.tracking_poll_ms, options.poll_interval_ms)
            log.debug("Tracking object poll finished", {"found": found})
            await asyncio.sleep(POST_POLL_SETTLE_MS / 1000)

        try:
            html = await page.content()
        except async_api.Error as exc:
            if errors.is_session_destroyed(exc):
                raise errors.SessionClosed(f"Browser session closed: {exc.message}") from exc
            log.warn("Could not read page content", {"error": exc.message[:200]})
            html = ""

        scripts = await capture_scripts(page)
        tracking_globals = await read_tracking_globals(page)
        cookies = await collect_cookies(page)
        await recorder.drain()
    finally:
        recorder.detach(page)

    result = crawl.CrawlResult(
        url=url,
        page_url=final_url,
        page_domain=url_mod.extract_domain(final_url),
        html=html,
        document_html=document_html,
        scripts=scripts,
        network_requests=list(recorder.requests),
        cookies=cookies,
        set_cookie_headers=list(recorder.set_cookie_headers),
        tracking_globals=tracking_globals,
        console_messages=list(recorder.console_messages),
        captured_at=datetime.now(timezone.utc).isoformat(),
    )
    log.end_timer(f"load-{session.id}", "Page captured")
    log.info(
        "Capture stats",
        {
            "requests": len(result.network_requests),
            "scripts": len(result.scripts),
            "cookies": len(result.cookies),
            "setCookieHeaders": len(result.set_cookie_headers),
        },
    )
    return result
