"""
Pydantic models for WebPilot sessions, actions, discovery and events
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class SessionStatus(str, Enum):
    """Lifecycle state of a browser session"""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    BUSY = "busy"
    CLOSED = "closed"


class Viewport(BaseModel):
    """Browser viewport size"""

    width: int = 1280
    height: int = 720


class BrowserOptions(BaseModel):
    """Launch options for a browser session"""

    headless: bool = True
    timeout_ms: int = Field(default=30000, gt=0)
    viewport: Viewport = Field(default_factory=Viewport)


class SessionInfo(BaseModel):
    """Public view of a session"""

    id: str
    status: SessionStatus
    current_url: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ActionResult(BaseModel):
    """
    Result of a single Action-Surface operation.

    Expected failures (selector not found, navigation timeout) are reported with
    success=False and never raised.
    """

    success: bool
    message: str
    data: dict[str, Any] | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _check_error_consistency(self) -> ActionResult:
        if self.success and self.error:
            raise ValueError("A successful ActionResult cannot carry an error")
        return self

    @classmethod
    def ok(cls, message: str, data: dict[str, Any] | None = None) -> ActionResult:
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(
        cls, message: str, error: str | None = None, data: dict[str, Any] | None = None
    ) -> ActionResult:
        return cls(success=False, message=message, error=error or message, data=data)


class FieldDescriptor(BaseModel):
    """A form control discovered on the page"""

    tag: str
    type: str = "text"
    name: str = ""
    id: str = ""
    placeholder: str = ""
    required: bool = False
    selector: str = ""
    label: str = ""

    @property
    def display_name(self) -> str:
        """Best human-readable key for the field (name, id, label, placeholder)"""
        return self.name or self.id or self.label or self.placeholder or self.tag


class ButtonDescriptor(BaseModel):
    """A button or submit input discovered on the page"""

    tag: str
    type: str = "button"
    text: str = ""
    id: str = ""
    class_name: str = ""
    selector: str = ""


class MatchStrategy(str, Enum):
    """Discovery strategies, in decreasing order of trust"""

    EXACT = "exact"
    ATTRIBUTE = "attribute"
    FIELD_SCORE = "field_score"
    SEMANTIC_TEXT = "semantic_text"
    BUTTON_ADJACENCY = "button_adjacency"
    FALLBACK = "fallback"

    @property
    def rank(self) -> int:
        return list(MatchStrategy).index(self)


class Candidate(BaseModel):
    """A scored guess at the target form or element"""

    selector: str = Field(min_length=1)
    matched_strategy: MatchStrategy
    score: float
    fields: list[FieldDescriptor] = Field(default_factory=list)
    buttons: list[ButtonDescriptor] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)

    @property
    def required_fields(self) -> list[FieldDescriptor]:
        return [f for f in self.fields if f.required]


class DiscoveryResult(BaseModel):
    """Outcome of a target discovery run"""

    success: bool
    message: str
    url: str = ""
    selector: str | None = None
    strategy: MatchStrategy | None = None
    candidates: list[Candidate] = Field(default_factory=list)
    ambiguous: bool = False

    @property
    def chosen(self) -> Candidate | None:
        if not self.selector:
            return None
        return next((c for c in self.candidates if c.selector == self.selector), None)


# ========== DOM capture used by discovery ==========


class FormContainer(BaseModel):
    """A form-like container captured from the page"""

    index: int
    selector: str
    tag: str = "form"
    id: str = ""
    class_name: str = ""
    name: str = ""
    action: str = ""
    top: float = 0.0
    bottom: float = 0.0
    fields: list[FieldDescriptor] = Field(default_factory=list)
    buttons: list[ButtonDescriptor] = Field(default_factory=list)


class TextMatch(BaseModel):
    """Heading, link or button text with geometry relative to forms"""

    text: str
    tag: str
    container_index: int | None = None  # container the element sits in
    nearest_index: int | None = None  # closest container by vertical distance
    distance: float | None = None


class LooseElement(BaseModel):
    """Any element whose id or class can be matched loosely"""

    selector: str
    tag: str
    id: str = ""
    class_name: str = ""


class PageSnapshot(BaseModel):
    """DOM capture consumed by the discovery algorithm"""

    url: str = ""
    containers: list[FormContainer] = Field(default_factory=list)
    text_matches: list[TextMatch] = Field(default_factory=list)
    buttons: list[TextMatch] = Field(default_factory=list)
    loose_elements: list[LooseElement] = Field(default_factory=list)
    # selector -> container index it resolved to (None if it is not a container)
    exact_matches: dict[str, int | None] = Field(default_factory=dict)


# ========== Events and transcripts ==========


class EventType(str, Enum):
    """Event types emitted on a session channel"""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"
    SCREENSHOT = "screenshot"
    CONNECTED = "connected"
    HEARTBEAT = "heartbeat"


class AutomationEvent(BaseModel):
    """One event on a session's stream"""

    session_id: str
    type: EventType
    message: str = ""
    timestamp: float = Field(default_factory=time.time)
    seq: int | None = None
    data: dict[str, Any] | None = None

    def to_wire(self) -> dict[str, Any]:
        """Wire shape: {type, timestamp, message, data?}; heartbeats carry only type"""
        if self.type == EventType.HEARTBEAT:
            return {"type": self.type.value}
        payload: dict[str, Any] = {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "message": self.message,
        }
        if self.data is not None:
            payload["data"] = self.data
        return payload


StepRole = Literal["user", "assistant", "tool", "handoff", "guard", "system"]
StepStatus = Literal["completed", "failed", "rejected", "blocked"]


class TranscriptStep(BaseModel):
    """One append-only entry in a run transcript"""

    role: StepRole
    tool_name: str | None = None
    arguments: dict[str, Any] | None = None
    output: Any = None
    status: StepStatus = "completed"
    policy: str | None = None


RunStatus = Literal["completed", "stopped", "failed"]


class RunResult(BaseModel):
    """Final outcome of an orchestrated run"""

    history: list[TranscriptStep] = Field(default_factory=list)
    last_policy: str | None = None
    final_output: Any = None
    status: RunStatus = "completed"
    screenshot_url: str | None = None

    def tool_calls(self, name: str | None = None) -> list[TranscriptStep]:
        """Tool steps in order, optionally filtered by tool name"""
        return [
            step
            for step in self.history
            if step.role == "tool" and (name is None or step.tool_name == name)
        ]
