from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from models import (
    ACTION_TYPES,
    ClickAction,
    CompletionEvent,
    ErrorEvent,
    EvaluateAction,
    EventSink,
    GotoAction,
    HoverAction,
    OutboundEvent,
    PressAction,
    ProgressEvent,
    ScreenshotAction,
    ScrollAction,
    SelectAction,
    TypeAction,
    WaitForSelectorAction,
    WaitForTimeoutAction,
    parse_action,
)
from session_manager import SessionBusyError
from settings import settings
from ticker import capture_screenshot

log = logging.getLogger(__name__)


class ActionError(RuntimeError):
    """One action failed. Absorbed by the executor; never aborts a queue."""


class ExecutorBusyError(RuntimeError):
    """An action queue is already running against the shared page."""


@dataclass
class StepResult:
    ok: bool
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class RunSummary:
    run_id: str
    total: int
    results: List[StepResult] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)


def new_run_id() -> str:
    return uuid.uuid4().hex[:8]


def _first_line(exc: BaseException) -> str:
    text = str(exc).strip() or exc.__class__.__name__
    return text.splitlines()[0]


class ActionExecutor:
    """
    Runs action queues one step at a time against the session's current page.

    Failing steps are logged and reported as a failed ``StepResult``; the queue
    always continues and always ends with one completion event. Only one queue
    may run at a time because every queue drives the same page.

    ``evaluate`` actions execute caller-supplied JavaScript in the page without a
    sandbox: whoever submits the queue (usually the planner) is trusted.
    """

    def __init__(
        self,
        session,
        *,
        recorder=None,
        settle_delay_ms: Optional[int] = None,
        goto_timeout_ms: Optional[int] = None,
        selector_timeout_ms: Optional[int] = None,
        type_delay_ms: Optional[int] = None,
        scroll_step_px: Optional[int] = None,
    ) -> None:
        self._session = session
        self._recorder = recorder
        self.settle_delay_ms = settings.settle_delay_ms if settle_delay_ms is None else settle_delay_ms
        self.goto_timeout_ms = goto_timeout_ms or settings.goto_timeout_ms
        self.selector_timeout_ms = selector_timeout_ms or settings.selector_timeout_ms
        self.type_delay_ms = settings.type_delay_ms if type_delay_ms is None else type_delay_ms
        self.scroll_step_px = scroll_step_px or settings.scroll_step_px
        self._running = False
        self.current_run_id: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def state(self) -> str:
        return "running" if self._running else "idle"

    def start(
        self,
        queue: Sequence[Any],
        sink: EventSink,
        run_id: Optional[str] = None,
        *,
        report: bool = True,
    ) -> "asyncio.Task[RunSummary]":
        """
        Claim the executor and schedule ``queue`` as a background task.

        The claim happens synchronously, so a second call made before the first task
        gets scheduled is still refused with ``ExecutorBusyError``, and a queue sent
        while the browser is being (re)initialized is refused with
        ``SessionBusyError`` before it is accepted. With ``report=False`` no
        progress or completion events are sent (used for single navigations);
        screenshots still are.
        """
        if self._running:
            raise ExecutorBusyError(
                f"An action queue is already running (run {self.current_run_id})"
            )
        if self._session.is_initializing():
            raise SessionBusyError("The browser session is being (re)initialized")
        self._running = True
        self.current_run_id = run_id or new_run_id()
        return asyncio.create_task(
            self._run_claimed(tuple(queue), sink, self.current_run_id, report)
        )

    async def run(self, queue: Sequence[Any], sink: EventSink, run_id: Optional[str] = None) -> RunSummary:
        return await self.start(queue, sink, run_id)

    async def _run_claimed(self, queue, sink, run_id: str, report: bool) -> RunSummary:
        try:
            async with self._session.in_use():
                return await self._run(queue, sink, run_id, report)
        except SessionBusyError as exc:
            # Initialization began between the claim and the first step.
            log.warning("Run %s refused: %s", run_id, exc)
            await self._emit(sink, ErrorEvent(message=str(exc)))
            if report:
                await self._emit(sink, CompletionEvent(total_actions=len(queue), run_id=run_id))
            return RunSummary(
                run_id=run_id,
                total=len(queue),
                results=[StepResult(ok=False, error=str(exc), skipped=True) for _ in queue],
            )
        finally:
            self._running = False
            self.current_run_id = None

    async def _run(self, queue, sink, run_id: str, report: bool) -> RunSummary:
        total = len(queue)
        summary = RunSummary(run_id=run_id, total=total)
        log.info("Run %s: starting %d action(s)", run_id, total)
        await self._record("run_started", run_id, total)

        for index, raw in enumerate(queue):
            if report:
                await self._emit(sink, ProgressEvent(
                    current_step=index,
                    total_steps=total,
                    action=raw,
                    run_id=run_id,
                ))

            result = await self.execute(raw, sink)
            summary.results.append(result)
            await self._record("step_finished", run_id, index, _action_type(raw), result)

            event = await capture_screenshot(self._session)
            if event is not None:
                await self._emit(sink, event)

            if self.settle_delay_ms > 0:
                await asyncio.sleep(self.settle_delay_ms / 1000)

        if report:
            await self._emit(sink, CompletionEvent(total_actions=total, run_id=run_id))
        await self._record("run_finished", summary)
        log.info("Run %s: completed %d action(s), %d failed", run_id, total, summary.failed)
        return summary

    async def execute(self, raw: Any, sink: EventSink) -> StepResult:
        """Execute one raw action. Never raises for action-level failures."""
        action_type = _action_type(raw)
        if action_type not in ACTION_TYPES:
            log.warning("Unknown action type %r; skipping", action_type)
            return StepResult(ok=False, skipped=True, error=f"Unknown action type: {action_type}")

        try:
            action = parse_action(raw)
        except ValidationError as exc:
            log.warning("Invalid %s action: %s", action_type, exc.errors()[0].get("msg"))
            return StepResult(ok=False, error=f"Invalid {action_type} action")

        log.info("Executing action: %s", action_type)
        try:
            await self._perform(action, sink)
        except Exception as exc:
            log.warning("Error executing action %s: %s", action_type, _first_line(exc))
            return StepResult(ok=False, error=_first_line(exc))
        return StepResult(ok=True)

    def _require_page(self):
        page = self._session.current_page()
        if page is None:
            log.error("No active page")
            raise ActionError("No active page")
        return page

    async def _wait_for(self, page, selector: str, timeout: Optional[int] = None) -> None:
        await page.wait_for_selector(selector, timeout=timeout or self.selector_timeout_ms)

    async def _perform(self, action, sink: EventSink) -> None:
        if isinstance(action, WaitForTimeoutAction):
            await asyncio.sleep(action.timeout / 1000)
            return

        page = self._require_page()

        if isinstance(action, GotoAction):
            await page.goto(
                action.url,
                wait_until="networkidle",
                timeout=action.timeout or self.goto_timeout_ms,
            )
        elif isinstance(action, ClickAction):
            await self._wait_for(page, action.selector)
            await page.click(action.selector)
        elif isinstance(action, TypeAction):
            await self._wait_for(page, action.selector)
            await page.click(action.selector)
            delay = self.type_delay_ms if action.delay is None else action.delay
            await page.keyboard.type(action.text, delay=delay)
        elif isinstance(action, PressAction):
            await page.keyboard.press(action.key)
        elif isinstance(action, WaitForSelectorAction):
            await self._wait_for(page, action.selector, action.timeout)
        elif isinstance(action, ScrollAction):
            if action.direction == "down":
                await page.evaluate(f"window.scrollBy(0, {self.scroll_step_px})")
            elif action.direction == "up":
                await page.evaluate(f"window.scrollBy(0, -{self.scroll_step_px})")
            else:
                await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        elif isinstance(action, HoverAction):
            await self._wait_for(page, action.selector)
            await page.hover(action.selector)
        elif isinstance(action, SelectAction):
            await self._wait_for(page, action.selector)
            await page.select_option(action.selector, action.value)
        elif isinstance(action, EvaluateAction):
            await page.evaluate(action.script)
        elif isinstance(action, ScreenshotAction):
            event = await capture_screenshot(self._session)
            if event is not None:
                await self._emit(sink, event)

    async def _emit(self, sink: EventSink, event: OutboundEvent) -> None:
        try:
            await sink(event)
        except Exception as exc:
            log.debug("Dropping %s event: %s", event.type, exc)

    async def _record(self, hook: str, *args) -> None:
        # Recorder hooks do blocking database writes; keep them off the event loop.
        if self._recorder is None:
            return
        try:
            await asyncio.to_thread(getattr(self._recorder, hook), *args)
        except Exception:
            log.exception("Run recorder %s failed", hook)


def _action_type(raw: Any) -> Optional[str]:
    if isinstance(raw, dict):
        value = raw.get("type")
        return value if isinstance(value, str) else None
    return None
