
from __future__ import annotations
from typing import Any, Dict, List, Tuple

from pydantic import ValidationError

from models import ACTION_TYPES, parse_action

Step = Dict[str, Any]


class PlanValidationError(ValueError):
    """Planner output does not have the {message, actions} shape."""


def _step_key(s: Step) -> Tuple:
    return (
        s.get("type"),
        s.get("url"),
        s.get("selector"),
        s.get("text"),
        s.get("key"),
        s.get("value"),
        s.get("script"),
        s.get("direction"),
    )

def _collapse_repeats(steps: List[Step]) -> List[Step]:
    # Models sometimes emit the same click/type twice in a row.
    out: List[Step] = []
    for s in steps:
        if out and s.get("type") != "waitForTimeout" and _step_key(out[-1]) == _step_key(s):
            out[-1] = s
            continue
        out.append(s)
    return out

def validate_actions(raw_actions: Any) -> List[Step]:
    """
    Check every entry against the Action variants and return cleaned dicts.
    Raises PlanValidationError on the first entry that does not fit.
    """
    if not isinstance(raw_actions, list) or not raw_actions:
        raise PlanValidationError("actions must be a non-empty list")

    cleaned: List[Step] = []
    for index, raw in enumerate(raw_actions):
        if not isinstance(raw, dict) or raw.get("type") not in ACTION_TYPES:
            raise PlanValidationError(f"action {index} has an unknown type")
        try:
            action = parse_action(raw)
        except ValidationError as exc:
            raise PlanValidationError(f"action {index} is invalid: {exc.errors()[0].get('msg')}") from exc
        cleaned.append(action.model_dump(exclude_none=True))
    return cleaned

def normalize_plan(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise PlanValidationError("plan must be a JSON object")
    message = data.get("message")
    if not isinstance(message, str) or not message.strip():
        raise PlanValidationError("plan is missing a message")
    actions = _collapse_repeats(validate_actions(data.get("actions")))
    return {"message": message.strip(), "actions": actions}
