"""
WebPilot - natural-language browser automation on Playwright
"""

from .browser import AsyncBrowserSession
from .client import ApiClient, ChannelTransport, EventStreamClient, SSETransport
from .config import AutomationConfig
from .discovery import capture_page_snapshot, discover_target, field_category
from .events import EventChannel, format_sse, sse_stream
from .exceptions import (
    AutomationError,
    BrowserCrashedError,
    BrowserInitializationError,
    ImageUploadError,
    SessionAlreadyInitializedError,
    SessionError,
    SessionNotReadyError,
    StructuralError,
    ToolNotFoundError,
    ValidationError,
    WebPilotError,
    to_error_response,
)
from .image_store import (
    HttpImageStore,
    ImageStore,
    LocalImageStore,
    create_image_store,
    strip_screenshot_label,
)
from .llm_provider import AnthropicProvider, LLMProvider, LLMResponse, OpenAIProvider, ToolCall
from .models import (
    ActionResult,
    AutomationEvent,
    BrowserOptions,
    Candidate,
    DiscoveryResult,
    EventType,
    FieldDescriptor,
    MatchStrategy,
    PageSnapshot,
    RunResult,
    SessionInfo,
    SessionStatus,
    TranscriptStep,
    Viewport,
)
from .orchestrator import Orchestrator
from .policies import POLICIES, Policy, get_policy
from .router import TaskFeatures, parse_task, route_task
from .service import AutomationService
from .sessions import SessionHandle, SessionRegistry
from .tools import Tool, ToolRegistry, create_browser_tools
from .validation import AutomationRequest, RequestConfig, validate_request

__version__ = "0.1.0"

__all__ = [
    "ActionResult",
    "AnthropicProvider",
    "ApiClient",
    "AsyncBrowserSession",
    "AutomationConfig",
    "AutomationError",
    "AutomationEvent",
    "AutomationRequest",
    "AutomationService",
    "BrowserCrashedError",
    "BrowserInitializationError",
    "BrowserOptions",
    "Candidate",
    "ChannelTransport",
    "DiscoveryResult",
    "EventChannel",
    "EventStreamClient",
    "EventType",
    "FieldDescriptor",
    "HttpImageStore",
    "ImageStore",
    "ImageUploadError",
    "LLMProvider",
    "LLMResponse",
    "LocalImageStore",
    "MatchStrategy",
    "OpenAIProvider",
    "Orchestrator",
    "POLICIES",
    "PageSnapshot",
    "Policy",
    "RequestConfig",
    "RunResult",
    "SSETransport",
    "SessionAlreadyInitializedError",
    "SessionError",
    "SessionHandle",
    "SessionInfo",
    "SessionNotReadyError",
    "SessionRegistry",
    "SessionStatus",
    "StructuralError",
    "TaskFeatures",
    "Tool",
    "ToolCall",
    "ToolNotFoundError",
    "ToolRegistry",
    "TranscriptStep",
    "ValidationError",
    "Viewport",
    "WebPilotError",
    "capture_page_snapshot",
    "create_browser_tools",
    "create_image_store",
    "discover_target",
    "field_category",
    "format_sse",
    "get_policy",
    "parse_task",
    "route_task",
    "sse_stream",
    "strip_screenshot_label",
    "to_error_response",
    "validate_request",
]
