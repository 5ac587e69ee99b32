from __future__ import annotations
import json
import logging
import re
from typing import List, Dict, Any, Optional
from models import PlanModel
from plan_tools import PlanValidationError, normalize_plan

log = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a browser automation assistant. Convert the user's request into a short, "
    "friendly explanation and a sequence of browser actions that will run on a real "
    "Chromium page.\n\n"
    "Always answer with ONE JSON object: {\"message\": string, \"actions\": [...]}. "
    "No markdown, no extra text.\n\n"
    "Allowed actions (field names are exact):\n"
    "  - {\"type\":\"goto\", \"url\"}\n"
    "  - {\"type\":\"click\", \"selector\"}\n"
    "  - {\"type\":\"type\", \"selector\", \"text\"}\n"
    "  - {\"type\":\"press\", \"key\"}            e.g. Enter, Tab\n"
    "  - {\"type\":\"waitForSelector\", \"selector\", \"timeout\"?}   milliseconds\n"
    "  - {\"type\":\"waitForTimeout\", \"timeout\"}   milliseconds\n"
    "  - {\"type\":\"scroll\", \"direction\"?}     up | down, omit to scroll to the bottom\n"
    "  - {\"type\":\"hover\", \"selector\"}\n"
    "  - {\"type\":\"select\", \"selector\", \"value\"}\n"
    "  - {\"type\":\"evaluate\", \"script\"}\n"
    "  - {\"type\":\"screenshot\"}\n\n"
    "Use real URLs and specific CSS selectors, wait for elements before using them, "
    "and add screenshot actions at key steps."
)


# --------- Local fallback plans ---------
def _search_plan(url: str, box: str, query: str, results: str) -> List[Dict[str, Any]]:
    return [
        {"type": "goto", "url": url},
        {"type": "waitForSelector", "selector": box},
        {"type": "click", "selector": box},
        {"type": "type", "selector": box, "text": query},
        {"type": "press", "key": "Enter"},
        {"type": "waitForSelector", "selector": results},
    ]

def fallback_plan(prompt: str) -> PlanModel:
    """Fixed, keyword-routed plan used whenever the model cannot be used."""
    p = (prompt or "").strip()
    lower = p.lower()

    if any(k in lower for k in ("coffee", "latte", "order")):
        message = "I'll help you find coffee options! Let me search for local coffee shops and delivery."
        actions = _search_plan("https://www.google.com", "textarea[name='q'], input[name='q']",
                               "coffee delivery near me", "#search")
        actions.append({"type": "waitForTimeout", "timeout": 2000})
    elif any(k in lower for k in ("shop", "buy", "purchase")):
        message = "I'll help you find shopping options! Let me search for what you're looking for."
        actions = _search_plan("https://www.amazon.com", "#twotabsearchtextbox", p,
                               "[data-component-type='s-search-result']")
    elif any(k in lower for k in ("flight", "travel", "book")):
        message = "I'll help you search for flights! Let me open a travel booking site."
        actions = [
            {"type": "goto", "url": "https://www.google.com/travel/flights"},
            {"type": "waitForSelector", "selector": "input[placeholder*='Where from']"},
            {"type": "waitForTimeout", "timeout": 3000},
        ]
    else:
        message = "I'll search the web for your request. Let me open Google and look it up."
        actions = _search_plan("https://www.google.com", "textarea[name='q'], input[name='q']",
                               p or "search query", "#search")

    return PlanModel(**normalize_plan({"message": message, "actions": actions}))


# --------- LLM plumbing ---------
def _safe_json_from_text(text: str) -> Optional[Dict[str, Any]]:
    """
    Extract the first top-level JSON object from a possibly messy LLM response.
    Returns None if parsing fails.
    """
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass

    # markdown fences or commentary around the object
    m = re.search(r"\{.*\}", text, flags=re.DOTALL)
    if m:
        try:
            return json.loads(m.group(0))
        except ValueError:
            return None
    return None

def _build_llm():
    try:
        from llm import build_chat_llm
        return build_chat_llm()
    except Exception as exc:
        log.warning("Chat model unavailable: %s", exc)
        return None

async def _llm_plan(prompt: str) -> Optional[Dict[str, Any]]:
    """Ask the model for a plan. Returns the raw decoded object or None."""
    llm = _build_llm()
    if llm is None:
        return None

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]
    try:
        resp = await llm.ainvoke(messages)
    except Exception as exc:
        log.error("Planner request failed: %s", exc)
        return None
    text = getattr(resp, "content", None) or (resp if isinstance(resp, str) else None)
    if not isinstance(text, str):
        return None
    data = _safe_json_from_text(text)
    if data is None:
        log.warning("Planner reply was not JSON: %.200s", text)
    return data


# --------- Public API (called by FastAPI endpoints) ---------
async def generate_plan(prompt: str) -> PlanModel:
    """
    - First, ask the model for {message, actions}.
    - Validate every action; planner output is untrusted.
    - If the model is unavailable or the reply is invalid, return the local fallback.
    """
    data = await _llm_plan(prompt)
    if data is not None:
        try:
            plan = PlanModel(**normalize_plan(data))
            log.info("Planner produced %d action(s)", len(plan.actions))
            return plan
        except PlanValidationError as exc:
            log.warning("Discarding planner output: %s", exc)

    log.info("Using fallback plan")
    return fallback_plan(prompt)
