
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel
from typing import Annotated, Any, Awaitable, Callable, Dict, List, Literal, Optional, Union


class _ActionBase(BaseModel):
    model_config = ConfigDict(extra="ignore")


class GotoAction(_ActionBase):
    type: Literal["goto"]
    url: str
    timeout: Optional[int] = None

class ClickAction(_ActionBase):
    type: Literal["click"]
    selector: str

class TypeAction(_ActionBase):
    type: Literal["type"]
    selector: str
    text: str
    delay: Optional[int] = None

class PressAction(_ActionBase):
    type: Literal["press"]
    key: str

class WaitForSelectorAction(_ActionBase):
    type: Literal["waitForSelector"]
    selector: str
    timeout: Optional[int] = None

class WaitForTimeoutAction(_ActionBase):
    type: Literal["waitForTimeout"]
    timeout: int = Field(ge=0, validation_alias=AliasChoices("timeout", "ms"))

class ScrollAction(_ActionBase):
    type: Literal["scroll"]
    direction: Optional[str] = None

class HoverAction(_ActionBase):
    type: Literal["hover"]
    selector: str

class SelectAction(_ActionBase):
    type: Literal["select"]
    selector: str
    value: str

class EvaluateAction(_ActionBase):
    type: Literal["evaluate"]
    script: str

class ScreenshotAction(_ActionBase):
    type: Literal["screenshot"]


Action = Annotated[
    Union[
        GotoAction,
        ClickAction,
        TypeAction,
        PressAction,
        WaitForSelectorAction,
        WaitForTimeoutAction,
        ScrollAction,
        HoverAction,
        SelectAction,
        EvaluateAction,
        ScreenshotAction,
    ],
    Field(discriminator="type"),
]

ACTION_ADAPTER: TypeAdapter = TypeAdapter(Action)

ACTION_TYPES = frozenset({
    "goto", "click", "type", "press", "waitForSelector", "waitForTimeout",
    "scroll", "hover", "select", "evaluate", "screenshot",
})


def parse_action(raw: Any) -> Action:
    """Validate one raw action dict. Raises pydantic.ValidationError."""
    return ACTION_ADAPTER.validate_python(raw)


# --------- Outbound channel events ---------
class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        # runId is left out when unset; every other field is always present.
        exclude = {"run_id"} if getattr(self, "run_id", None) is None else None
        return self.model_dump(by_alias=True, exclude=exclude)

class ProgressEvent(_Event):
    type: Literal["action_progress"] = "action_progress"
    current_step: int
    total_steps: int
    action: Any = None
    run_id: Optional[str] = None

class ScreenshotEvent(_Event):
    type: Literal["screenshot"] = "screenshot"
    screenshot: str
    timestamp: int

class CompletionEvent(_Event):
    type: Literal["execution_complete"] = "execution_complete"
    total_actions: int
    run_id: Optional[str] = None

class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    message: str


OutboundEvent = Union[ProgressEvent, ScreenshotEvent, CompletionEvent, ErrorEvent]

# Async callable that delivers one event to a connected client.
EventSink = Callable[[OutboundEvent], Awaitable[None]]


# --------- Plan Provider contract ---------
class PlanRequest(BaseModel):
    message: str = ""

class PlanModel(BaseModel):
    message: str
    actions: List[Action] = Field(default_factory=list)
