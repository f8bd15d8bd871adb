"""
Inbound task submission schema
"""

from __future__ import annotations

from typing import Any

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ValidationError

MIN_PROMPT_LENGTH = 10


class RequestConfig(BaseModel):
    """Optional per-task overrides supplied with a submission"""

    model_config = ConfigDict(populate_by_name=True)

    model: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)
    max_tokens: int | None = Field(default=None, gt=0, alias="maxTokens")
    headless: bool | None = None
    timeout: int | None = Field(default=None, gt=0)


class AutomationRequest(BaseModel):
    """A task submission: natural-language prompt plus optional config"""

    model_config = ConfigDict(populate_by_name=True)

    prompt: str = Field(min_length=MIN_PROMPT_LENGTH)
    config: RequestConfig | None = None
    session_id: str | None = Field(default=None, alias="sessionId")


def validate_request(payload: dict[str, Any] | AutomationRequest) -> AutomationRequest:
    """
    Validate a raw submission.

    Args:
        payload: Decoded JSON body or an already-built AutomationRequest

    Returns:
        AutomationRequest

    Raises:
        ValidationError: With the pydantic error list as details
    """
    if isinstance(payload, AutomationRequest):
        return payload
    if not isinstance(payload, dict):
        raise ValidationError(
            "Invalid request data",
            details=[{"loc": [], "msg": f"Expected an object, got {type(payload).__name__}"}],
        )

    try:
        return AutomationRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        details = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid request data", details=details) from e
