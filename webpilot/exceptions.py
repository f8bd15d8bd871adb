"""
Error taxonomy for WebPilot and the mapping to structured error responses
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import TranscriptStep


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    SESSION = "session"
    AUTOMATION = "automation"
    INTERNAL = "internal"


class WebPilotError(Exception):
    """Base class for all WebPilot errors"""

    status_code = 500


class ValidationError(WebPilotError):
    """Malformed input, rejected before any browser or agent work"""

    status_code = 400

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.details = details or []


class SessionError(WebPilotError):
    """Reference to a missing, busy or closed session"""

    status_code = 404

    def __init__(self, message: str, session_id: str):
        super().__init__(message)
        self.session_id = session_id


class AutomationError(WebPilotError):
    """
    Engine or action failure that aborts a task.

    Carries a stable error code plus, when raised out of a run, the partial
    transcript and the last screenshot URL so callers can see where the page was left.
    """

    code = "AUTOMATION_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        history: list[TranscriptStep] | None = None,
        screenshot_url: str | None = None,
    ):
        super().__init__(message)
        if code:
            self.code = code
        self.history = history or []
        self.screenshot_url = screenshot_url


class StructuralError(AutomationError):
    """Engine used out of lifecycle order (an integration bug)"""

    code = "STRUCTURAL_ERROR"


class SessionNotReadyError(StructuralError):
    """Action attempted on an uninitialized or closed session"""

    code = "SESSION_NOT_READY"


class SessionAlreadyInitializedError(StructuralError):
    """initialize() called on a session that is already running"""

    code = "SESSION_ALREADY_INITIALIZED"


class BrowserInitializationError(AutomationError):
    """The browser driver could not be started"""

    code = "BROWSER_INIT_FAILED"


class BrowserCrashedError(AutomationError):
    """The browser process disconnected while a session was in use"""

    code = "BROWSER_CRASHED"


class ImageUploadError(AutomationError):
    """The remote image store rejected or failed an upload"""

    code = "IMAGE_UPLOAD_FAILED"


class ToolNotFoundError(AutomationError):
    """A tool name that is not registered"""

    code = "TOOL_NOT_FOUND"


def to_error_response(error: BaseException) -> dict[str, Any]:
    """
    Map an exception to the structured error response returned to callers.

    Args:
        error: Any exception raised while handling a task

    Returns:
        dict with kind, error, message, status_code and, where applicable, details,
        code, session_id, history and screenshot_url
    """
    if isinstance(error, ValidationError):
        return {
            "success": False,
            "kind": ErrorKind.VALIDATION.value,
            "error": "Validation error",
            "message": str(error),
            "details": error.details,
            "status_code": error.status_code,
        }

    if isinstance(error, SessionError):
        return {
            "success": False,
            "kind": ErrorKind.SESSION.value,
            "error": "Session error",
            "message": str(error),
            "code": "SESSION_ERROR",
            "session_id": error.session_id,
            "status_code": error.status_code,
        }

    if isinstance(error, AutomationError):
        response: dict[str, Any] = {
            "success": False,
            "kind": ErrorKind.AUTOMATION.value,
            "error": "Automation error",
            "message": str(error),
            "code": error.code,
            "status_code": error.status_code,
        }
        if error.history:
            response["history"] = [step.model_dump() for step in error.history]
        if error.screenshot_url:
            response["screenshot_url"] = error.screenshot_url
        return response

    return {
        "success": False,
        "kind": ErrorKind.INTERNAL.value,
        "error": "Internal server error",
        "message": str(error) or "An unexpected error occurred",
        "status_code": 500,
    }
