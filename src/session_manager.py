from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from settings import settings

log = logging.getLogger(__name__)

LAUNCH_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
]


class SessionInitError(RuntimeError):
    """The browser could not be launched; the session stays uninitialized."""


class SessionBusyError(RuntimeError):
    """Initialization and queue execution were attempted at the same time."""


class SessionManager:
    """
    Sole owner of the process-wide browser session (driver, browser, context, page).

    The manager is the single writer: only ``initialize`` and ``shutdown`` create or
    destroy browser resources. The executor and the screenshot ticker are readers
    that call ``current_page()`` on every use and must treat ``None`` as a normal,
    non-fatal condition.
    """

    def __init__(
        self,
        *,
        headless: Optional[bool] = None,
        viewport: Optional[Dict[str, int]] = None,
    ) -> None:
        self.headless = settings.headless if headless is None else headless
        self.viewport = viewport or {
            "width": settings.viewport_width,
            "height": settings.viewport_height,
        }
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self._lock = asyncio.Lock()
        self._active_runs = 0

    @property
    def active_runs(self) -> int:
        return self._active_runs

    def current_page(self) -> Optional[Page]:
        return self._page

    def is_ready(self) -> bool:
        return self._page is not None

    def is_initializing(self) -> bool:
        return self._lock.locked()

    async def initialize(self) -> None:
        """Launch a fresh browser and page, replacing any existing session."""
        if self._active_runs:
            raise SessionBusyError("Cannot initialize the browser while actions are running")

        async with self._lock:
            await self._close()
            log.info("Launching browser (headless=%s, viewport=%s)", self.headless, self.viewport)
            try:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=LAUNCH_ARGS,
                )
                self._context = await self._browser.new_context(viewport=self.viewport)
                self._page = await self._context.new_page()
            except Exception as exc:
                log.error("Failed to initialize browser: %s", exc)
                await self._close()
                raise SessionInitError(str(exc)) from exc
            log.info("Browser initialized successfully")

    async def shutdown(self) -> None:
        async with self._lock:
            if self._playwright is None and self._browser is None:
                return
            await self._close()
            log.info("Browser closed")

    @contextlib.asynccontextmanager
    async def in_use(self) -> AsyncIterator[None]:
        """Mark an action queue as running so initialization is refused meanwhile."""
        if self.is_initializing():
            raise SessionBusyError("The browser session is being (re)initialized")
        self._active_runs += 1
        try:
            yield
        finally:
            self._active_runs -= 1

    def status(self) -> Dict[str, Any]:
        return {
            "browser": "connected" if self._browser is not None else "disconnected",
            "page": self._page is not None,
            "activeRuns": self._active_runs,
            "viewport": dict(self.viewport),
        }

    async def _close(self) -> None:
        if self._page is not None:
            with contextlib.suppress(Exception):
                await self._page.close()
        if self._context is not None:
            with contextlib.suppress(Exception):
                await self._context.close()
        if self._browser is not None:
            with contextlib.suppress(Exception):
                await self._browser.close()
        if self._playwright is not None:
            with contextlib.suppress(Exception):
                await self._playwright.stop()

        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
