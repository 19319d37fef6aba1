"""
Browser session pool for isolated consent experiments.

One ``SessionPool`` owns a single Playwright driver and Chromium
process.  Every call to ``create_isolated_session`` opens a fresh
browser context (its own cookie jar and storage) with one page, so
the accept and reject arms of an experiment never share state.
"""

from __future__ import annotations

import asyncio
import itertools

from playwright import async_api

from consent_audit import config
from consent_audit.utils import errors, logger

log = logger.create_logger("SessionPool")

# Masks the most common automation fingerprints so consent banners
# render the way they do for real visitors.
_STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });

    Object.defineProperty(navigator, 'plugins', {
        get: () => [
            { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
            { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
            { name: 'Native Client', filename: 'internal-nacl-plugin' },
        ],
    });

    Object.defineProperty(navigator, 'languages', {
        get: () => ['de-DE', 'de', 'en-US', 'en'],
    });

    const originalQuery = window.navigator.permissions?.query;
    if (originalQuery) {
        window.navigator.permissions.query = (params) =>
            params.name === 'notifications'
                ? Promise.resolve({ state: Notification.permission })
                : originalQuery.call(window.navigator.permissions, params);
    }

    if (!window.chrome) {
        window.chrome = { runtime: {} };
    }
"""

_LAUNCH_ARGS = [
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
    "--disable-extensions",
    "--disable-dev-shm-usage",
]


class SessionHandle:
    """An isolated browser context and its single page."""

    def __init__(
        self,
        session_id: str,
        context: async_api.BrowserContext,
        page: async_api.Page,
    ) -> None:
        self.id = session_id
        self.context = context
        self.page = page
        self.closed = False

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"SessionHandle({self.id!r}, {state})"


class SessionPool:
    """
    Owns one browser process and hands out isolated sessions.

    The browser is launched lazily on first use; concurrent callers
    are serialised on an ``asyncio.Lock`` so only one launch happens.
    """

    def __init__(self, browser_config: config.BrowserConfig | None = None) -> None:
        self._config = browser_config or config.BrowserConfig()
        self._playwright: async_api.Playwright | None = None
        self._browser: async_api.Browser | None = None
        self._sessions: dict[str, SessionHandle] = {}
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._shut_down = False

    # ==========================================================================
    # State Getters
    # ==========================================================================

    @property
    def open_sessions(self) -> list[SessionHandle]:
        """Sessions that have been created and not yet closed."""
        return list(self._sessions.values())

    @property
    def is_running(self) -> bool:
        """Whether a browser process is currently connected."""
        return self._browser is not None and self._browser.is_connected()

    # ==========================================================================
    # Browser Lifecycle
    # ==========================================================================

    async def _ensure_browser(self) -> async_api.Browser:
        """Launch the driver and browser if they are not running yet."""
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._shut_down:
                raise errors.SessionUnavailable("Session pool has been shut down")

            log.info("Launching browser", {"headless": self._config.headless, "channel": self._config.channel})
            try:
                if self._playwright is None:
                    self._playwright = await async_api.async_playwright().start()
                launch_kwargs: dict[str, object] = {
                    "headless": self._config.headless,
                    "args": _LAUNCH_ARGS,
                }
                if self._config.channel:
                    launch_kwargs["channel"] = self._config.channel
                self._browser = await self._playwright.chromium.launch(**launch_kwargs)  # type: ignore[arg-type]
            except async_api.Error as exc:
                raise errors.SessionUnavailable(f"Browser launch failed: {exc}") from exc

            log.success("Browser launched")
            return self._browser

    async def create_isolated_session(self) -> SessionHandle:
        """Open a fresh context with its own cookie jar and one page.

        Raises:
            errors.SessionUnavailable: If the browser cannot be launched
                or the context cannot be created.
        """
        browser = await self._ensure_browser()
        session_id = f"session-{next(self._ids)}"

        try:
            context = await browser.new_context(
                viewport={"width": self._config.viewport_width, "height": self._config.viewport_height},
                locale=self._config.locale,
                timezone_id=self._config.timezone_id,
                user_agent=self._config.user_agent or None,
                java_script_enabled=True,
            )
            await context.add_init_script(_STEALTH_INIT_SCRIPT)
            page = await context.new_page()
        except async_api.Error as exc:
            raise errors.SessionUnavailable(f"Could not create browser session: {exc}") from exc

        handle = SessionHandle(session_id, context, page)
        self._sessions[session_id] = handle
        log.debug("Session created", {"session": session_id, "open": len(self._sessions)})
        return handle

    async def close_session(self, handle: SessionHandle) -> None:
        """Close *handle*'s context.  Closing twice is a no-op."""
        if handle.closed:
            return
        handle.closed = True
        self._sessions.pop(handle.id, None)
        try:
            await handle.context.close()
        except async_api.Error as exc:
            # A crashed browser has already torn the context down.
            log.debug("Context close error (non-fatal)", {"session": handle.id, "error": str(exc)})
        log.debug("Session closed", {"session": handle.id, "open": len(self._sessions)})

    async def shutdown(self) -> None:
        """Close every open session, the browser and the driver.

        Safe to call repeatedly and with sessions still open.
        """
        self._shut_down = True
        for handle in list(self._sessions.values()):
            await self.close_session(handle)

        async with self._lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except async_api.Error as exc:
                    log.debug("Browser close error (non-fatal)", {"error": str(exc)})
                self._browser = None

            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except async_api.Error as exc:
                    log.debug("Playwright stop error (non-fatal)", {"error": str(exc)})
                self._playwright = None

        log.debug("Session pool shut down")

    async def __aenter__(self) -> SessionPool:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()
