from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest

import planner
from plan_tools import PlanValidationError, normalize_plan, validate_actions


class _FakeChat:
    def __init__(self, reply: str | None = None, error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.messages = None

    async def ainvoke(self, messages):
        self.messages = messages
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=self.reply)


def _use_llm(monkeypatch, llm) -> None:
    monkeypatch.setattr(planner, "_build_llm", lambda: llm)


def test_validate_actions_cleans_known_variants() -> None:
    cleaned = validate_actions([
        {"type": "goto", "url": "https://example.com", "comment": "ignored"},
        {"type": "waitForTimeout", "ms": 250},
    ])

    assert cleaned == [
        {"type": "goto", "url": "https://example.com"},
        {"type": "waitForTimeout", "timeout": 250},
    ]


@pytest.mark.parametrize(
    "actions",
    [
        [],
        "goto",
        [{"type": "fly"}],
        [{"type": "click"}],
        [{"url": "https://example.com"}],
    ],
)
def test_validate_actions_rejects_bad_shapes(actions) -> None:
    with pytest.raises(PlanValidationError):
        validate_actions(actions)


def test_normalize_plan_requires_message_and_collapses_repeats() -> None:
    with pytest.raises(PlanValidationError):
        normalize_plan({"actions": [{"type": "screenshot"}]})

    plan = normalize_plan({
        "message": "  Searching  ",
        "actions": [
            {"type": "click", "selector": "#q"},
            {"type": "click", "selector": "#q"},
            {"type": "waitForTimeout", "timeout": 100},
            {"type": "waitForTimeout", "timeout": 100},
        ],
    })

    assert plan["message"] == "Searching"
    assert [a["type"] for a in plan["actions"]] == ["click", "waitForTimeout", "waitForTimeout"]


def test_safe_json_handles_fenced_replies() -> None:
    text = 'Sure!\n```json\n{"message": "ok", "actions": []}\n```'
    assert planner._safe_json_from_text(text) == {"message": "ok", "actions": []}
    assert planner._safe_json_from_text("no json here") is None


def test_generate_plan_uses_valid_model_output(monkeypatch) -> None:
    reply = json.dumps({
        "message": "Opening example.com",
        "actions": [{"type": "goto", "url": "https://example.com"}, {"type": "screenshot"}],
    })
    chat = _FakeChat(reply)
    _use_llm(monkeypatch, chat)

    plan = asyncio.run(planner.generate_plan("open example"))

    assert plan.message == "Opening example.com"
    assert [a.type for a in plan.actions] == ["goto", "screenshot"]
    assert chat.messages[0]["role"] == "system"
    assert chat.messages[1] == {"role": "user", "content": "open example"}


@pytest.mark.parametrize(
    "chat",
    [
        None,
        _FakeChat(error=RuntimeError("503 upstream")),
        _FakeChat("I cannot do that"),
        _FakeChat(json.dumps({"message": "hi", "actions": [{"type": "rm -rf"}]})),
    ],
)
def test_generate_plan_falls_back_locally(monkeypatch, chat) -> None:
    _use_llm(monkeypatch, chat)

    plan = asyncio.run(planner.generate_plan("what is the weather in Paris"))

    assert plan.actions[0].type == "goto"
    assert plan.actions[0].url == "https://www.google.com"
    typed = [a for a in plan.actions if a.type == "type"]
    assert typed[0].text == "what is the weather in Paris"


def test_fallback_routes_by_keyword() -> None:
    assert planner.fallback_plan("order me a latte").actions[3].text == "coffee delivery near me"
    assert planner.fallback_plan("buy a kettle").actions[0].url == "https://www.amazon.com"
    assert planner.fallback_plan("book a flight to Oslo").actions[0].url.endswith("/travel/flights")
    assert planner.fallback_plan("").message


def test_plan_serializes_in_wire_shape() -> None:
    dumped = planner.fallback_plan("flight").model_dump(exclude_none=True)

    assert set(dumped) == {"message", "actions"}
    assert dumped["actions"][-1] == {"type": "waitForTimeout", "timeout": 3000}
