from __future__ import annotations

import asyncio
import base64
import contextlib
import logging
import time
from typing import Dict, Optional

from models import EventSink, ScreenshotEvent
from settings import settings

log = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


async def capture_screenshot(session) -> Optional[ScreenshotEvent]:
    """
    Capture the current viewport as a base64 PNG.

    Returns None when there is no page or the capture fails (typically because the
    page is mid-navigation). Capture errors are expected while actions run
    concurrently and are never raised.
    """
    page = session.current_page()
    if page is None:
        return None
    try:
        png = await page.screenshot(type="png", full_page=False)
    except Exception as exc:
        log.debug("Screenshot skipped: %s", exc)
        return None
    return ScreenshotEvent(
        screenshot=base64.b64encode(png).decode("ascii"),
        timestamp=now_ms(),
    )


class ScreenshotTicker:
    """Background task that pushes a screenshot to one client at a fixed period."""

    def __init__(self, session, sink: EventSink, interval_ms: Optional[int] = None) -> None:
        if interval_ms is None:
            interval_ms = settings.screenshot_interval_ms
        self.interval = interval_ms / 1000
        self._session = session
        self._sink = sink
        self._task: Optional[asyncio.Task] = None
        self.sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            self._task.cancel()
        self._task = asyncio.create_task(self._loop())
        log.info("Started screenshot capture every %.1fs", self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        log.info("Stopped screenshot capture")

    async def tick(self) -> bool:
        event = await capture_screenshot(self._session)
        if event is None:
            return False
        try:
            await self._sink(event)
        except Exception as exc:
            log.debug("Dropping ticker screenshot: %s", exc)
            return False
        self.sent += 1
        return True

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()


class TickerRegistry:
    """Keeps at most one ticker per client id."""

    def __init__(self) -> None:
        self._tickers: Dict[str, ScreenshotTicker] = {}

    def __len__(self) -> int:
        return len(self._tickers)

    def get(self, client_id: str) -> Optional[ScreenshotTicker]:
        return self._tickers.get(client_id)

    async def start(
        self,
        client_id: str,
        session,
        sink: EventSink,
        interval_ms: Optional[int] = None,
    ) -> ScreenshotTicker:
        previous = self._tickers.pop(client_id, None)
        if previous is not None:
            log.info("Replacing screenshot ticker for client %s", client_id)
            await previous.stop()
        ticker = ScreenshotTicker(session, sink, interval_ms)
        self._tickers[client_id] = ticker
        ticker.start()
        return ticker

    async def stop(self, client_id: str, ticker: Optional[ScreenshotTicker] = None) -> None:
        # A reconnect may already have replaced this connection's ticker.
        current = self._tickers.get(client_id)
        if ticker is None or current is ticker:
            self._tickers.pop(client_id, None)
            ticker = current
        if ticker is not None:
            await ticker.stop()

    async def stop_all(self) -> None:
        tickers = list(self._tickers.values())
        self._tickers.clear()
        for ticker in tickers:
            await ticker.stop()
