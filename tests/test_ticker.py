from __future__ import annotations

import asyncio
import base64

from executor import ActionExecutor
from fakes import PNG_BYTES, FakePage, FakeSession, RecordingSink
from ticker import ScreenshotTicker, TickerRegistry, capture_screenshot


def test_capture_encodes_png_as_base64() -> None:
    event = asyncio.run(capture_screenshot(FakeSession(FakePage())))

    assert event is not None
    assert base64.b64decode(event.screenshot) == PNG_BYTES
    assert event.timestamp > 1_600_000_000_000
    assert set(event.to_wire()) == {"type", "screenshot", "timestamp"}


def test_capture_without_page_or_mid_navigation_returns_none() -> None:
    assert asyncio.run(capture_screenshot(FakeSession(None))) is None
    assert asyncio.run(capture_screenshot(FakeSession(FakePage(fail_screenshot=True)))) is None


def test_tick_skips_failures_and_keeps_running() -> None:
    page = FakePage(fail_screenshot=True)
    sink = RecordingSink()

    async def scenario() -> None:
        ticker = ScreenshotTicker(FakeSession(page), sink, interval_ms=5)
        ticker.start()
        await asyncio.sleep(0.05)
        assert ticker.running
        page.fail_screenshot = False
        await asyncio.sleep(0.05)
        await ticker.stop()

    asyncio.run(scenario())

    assert len(sink.of_type("screenshot")) >= 1


def test_ticker_keeps_emitting_during_a_run_and_stops_after_stop() -> None:
    session = FakeSession(FakePage())
    ticker_sink = RecordingSink()
    run_sink = RecordingSink()

    async def scenario() -> int:
        ticker = ScreenshotTicker(session, ticker_sink, interval_ms=10)
        ticker.start()
        executor = ActionExecutor(session, settle_delay_ms=0)
        await executor.run([{"type": "waitForTimeout", "timeout": 150}], run_sink)
        during_run = ticker.sent
        await ticker.stop()
        stopped_at = ticker.sent
        await asyncio.sleep(0.05)
        assert ticker.sent == stopped_at
        assert not ticker.running
        return during_run

    during_run = asyncio.run(scenario())

    assert during_run >= 3
    assert run_sink.kinds[-1] == "execution_complete"


def test_stop_is_idempotent() -> None:
    async def scenario() -> None:
        ticker = ScreenshotTicker(FakeSession(None), RecordingSink(), interval_ms=10)
        await ticker.stop()
        ticker.start()
        await ticker.stop()
        await ticker.stop()

    asyncio.run(scenario())


def test_sink_errors_do_not_kill_the_ticker() -> None:
    class _ClosedSink:
        calls = 0

        async def __call__(self, event) -> None:
            _ClosedSink.calls += 1
            raise ConnectionError("closed")

    async def scenario() -> None:
        ticker = ScreenshotTicker(FakeSession(FakePage()), _ClosedSink(), interval_ms=5)
        ticker.start()
        await asyncio.sleep(0.05)
        assert ticker.running
        await ticker.stop()

    asyncio.run(scenario())
    assert _ClosedSink.calls >= 2


def test_registry_replaces_previous_ticker_for_same_client() -> None:
    async def scenario() -> None:
        registry = TickerRegistry()
        session = FakeSession(None)
        first = await registry.start("client-1", session, RecordingSink(), interval_ms=10)
        second = await registry.start("client-1", session, RecordingSink(), interval_ms=10)
        other = await registry.start("client-2", session, RecordingSink(), interval_ms=10)

        assert not first.running
        assert second.running and other.running
        assert len(registry) == 2

        # the first connection closing late must not stop its replacement
        await registry.stop("client-1", first)
        assert registry.get("client-1") is second
        assert second.running

        await registry.stop("client-1", second)
        assert registry.get("client-1") is None
        await registry.stop_all()
        assert not other.running
        assert len(registry) == 0

    asyncio.run(scenario())
