from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from executor import ActionExecutor, ExecutorBusyError
from models import ErrorEvent, OutboundEvent
from session_manager import SessionBusyError
from ticker import ScreenshotTicker, TickerRegistry, capture_screenshot

log = logging.getLogger(__name__)


class ProtocolError(ValueError):
    """An inbound channel message could not be decoded."""


def frame_text(frame: Dict[str, Any]) -> str:
    """Text of one ``websocket.receive`` frame; binary frames must be UTF-8."""
    text = frame.get("text")
    if text is not None:
        return text
    data = frame.get("bytes") or b""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ProtocolError("Binary frame is not valid UTF-8") from exc


def decode_message(text: str) -> Dict[str, Any]:
    try:
        message = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ProtocolError(f"Invalid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise ProtocolError("Message must be a JSON object")
    if not isinstance(message.get("type"), str):
        raise ProtocolError("Message is missing a 'type' field")
    return message


class ConnectionSender:
    """
    Event sink for one WebSocket.

    Frames are written one at a time because the executor and the ticker send
    concurrently. Once the socket is gone, events are dropped silently so that a
    run started by a client that disconnected still finishes.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._ws = websocket
        self._lock = asyncio.Lock()
        self.closed = False

    async def __call__(self, event: OutboundEvent) -> None:
        if self.closed:
            return
        async with self._lock:
            if self.closed:
                return
            try:
                await self._ws.send_json(event.to_wire())
            except Exception as exc:
                log.debug("WebSocket send failed, closing sender: %s", exc)
                self.closed = True

    def close(self) -> None:
        self.closed = True


class ChannelProtocolHandler:
    """Serves one client connection: decode, dispatch, stream events back."""

    def __init__(
        self,
        websocket: WebSocket,
        session,
        executor: ActionExecutor,
        tickers: TickerRegistry,
        *,
        client_id: Optional[str] = None,
        screenshot_interval_ms: Optional[int] = None,
    ) -> None:
        self._ws = websocket
        self._session = session
        self._executor = executor
        self._tickers = tickers
        self._interval_ms = screenshot_interval_ms
        self.client_id = client_id or uuid.uuid4().hex[:8]
        self.send = ConnectionSender(websocket)
        self.ticker: Optional[ScreenshotTicker] = None
        self._background: Set[asyncio.Task] = set()

    async def serve(self) -> None:
        await self._ws.accept()
        log.info("WebSocket client connected (%s)", self.client_id)
        self.ticker = await self._tickers.start(
            self.client_id, self._session, self.send, self._interval_ms
        )
        try:
            while True:
                frame = await self._ws.receive()
                if frame["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(frame.get("code", 1000))
                await self.handle_frame(frame)
        except WebSocketDisconnect:
            pass
        finally:
            self.send.close()
            await self._tickers.stop(self.client_id, self.ticker)
            log.info("WebSocket client disconnected (%s)", self.client_id)

    async def handle_frame(self, frame: Dict[str, Any]) -> None:
        try:
            text = frame_text(frame)
        except ProtocolError as exc:
            await self._reject(exc)
            return
        await self.handle_text(text)

    async def handle_text(self, text: str) -> None:
        try:
            message = decode_message(text)
        except ProtocolError as exc:
            await self._reject(exc)
            return
        await self.dispatch(message)

    async def _reject(self, exc: ProtocolError) -> None:
        log.warning("Rejected message from %s: %s", self.client_id, exc)
        await self.send(ErrorEvent(message=str(exc)))

    async def dispatch(self, message: Dict[str, Any]) -> None:
        kind = message["type"]
        log.info("Received message: %s", kind)

        if kind == "execute_actions":
            actions = message.get("actions")
            if not isinstance(actions, list):
                await self.send(ErrorEvent(message="execute_actions requires an 'actions' list"))
                return
            await self._start(actions, report=True)
        elif kind == "screenshot":
            event = await capture_screenshot(self._session)
            if event is not None:
                await self.send(event)
        elif kind == "navigate":
            url = message.get("url")
            if not isinstance(url, str) or not url:
                await self.send(ErrorEvent(message="navigate requires a 'url'"))
                return
            await self._start([{"type": "goto", "url": url}], report=False)
        else:
            log.warning("Unknown message type: %s", kind)
            await self.send(ErrorEvent(message=f"Unknown message type: {kind}"))

    async def _start(self, actions, *, report: bool) -> None:
        try:
            task = self._executor.start(actions, self.send, report=report)
        except (ExecutorBusyError, SessionBusyError) as exc:
            log.warning("Rejected queue from %s: %s", self.client_id, exc)
            await self.send(ErrorEvent(message=str(exc)))
            return
        if report:
            log.info("Starting execution of %d action(s)", len(actions))
        self._spawn(self._watch(task))

    async def _watch(self, task: asyncio.Task) -> None:
        try:
            await task
        except Exception as exc:
            log.exception("Action queue crashed")
            await self.send(ErrorEvent(message=f"Action queue failed: {exc}"))

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
