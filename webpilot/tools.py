"""
Capability registry: the Action Surface exposed as named, schema-validated tools.

Each tool pairs a pydantic parameter model (its JSON schema is what the LLM sees)
with an async handler bound to one AsyncBrowserSession.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ToolNotFoundError
from .models import ActionResult

if TYPE_CHECKING:
    from .browser import AsyncBrowserSession

INITIALIZE_BROWSER = "initialize_browser"
NAVIGATE = "navigate_to_url"
CLICK = "click_element"
FILL = "fill_input"
SELECT = "select_option"
EXTRACT_TEXT = "extract_text"
EXTRACT_LINKS = "extract_links"
WAIT_FOR_ELEMENT = "wait_for_element"
FIND_FORM_FIELDS = "find_form_fields"
FIND_BUTTONS = "find_buttons"
DISCOVER_TARGET_FORM = "discover_target_form"
SCROLL = "scroll_page"
SCREENSHOT = "take_screenshot"
PAGE_INFO = "get_current_page_info"
READ_PAGE = "read_page"
CLOSE_BROWSER = "close_browser"


# ========== Parameter models ==========


class ToolParams(BaseModel):
    model_config = ConfigDict(extra="forbid")


class NoParams(ToolParams):
    pass


class NavigateParams(ToolParams):
    url: str = Field(min_length=1, description="URL to navigate to")


class SelectorParams(ToolParams):
    selector: str = Field(min_length=1, description="CSS selector of the element")


class FillParams(ToolParams):
    selector: str = Field(min_length=1, description="CSS selector of the input")
    value: str = Field(description="Text to type into the input")


class SelectParams(ToolParams):
    selector: str = Field(min_length=1, description="CSS selector of the <select>")
    value: str = Field(description="Option value or label to select")


class ExtractLinksParams(ToolParams):
    selector: str = Field(default="a", min_length=1, description="Selector for link elements")


class WaitParams(ToolParams):
    selector: str = Field(min_length=1, description="CSS selector to wait for")
    timeout_ms: int | None = Field(default=None, gt=0, description="Timeout in milliseconds")


class DiscoverTargetParams(ToolParams):
    intent: str = Field(default="contact", description="What the form is for, e.g. 'contact'")
    selector: str | None = Field(
        default=None, description="Selector supplied by the user, tried before any heuristic"
    )


class ScrollParams(ToolParams):
    x: int = Field(default=0, description="Horizontal scroll offset in pixels")
    y: int = Field(default=500, description="Vertical scroll offset in pixels")


class ReadPageParams(ToolParams):
    format: Literal["raw", "text", "markdown"] = Field(
        default="markdown", description="Output format"
    )


# ========== Registry ==========

ToolHandler = Callable[[Any], Awaitable[ActionResult]]


@dataclass(frozen=True)
class Tool:
    """A named capability with a parameter schema and an async handler"""

    name: str
    description: str
    parameters: type[ToolParams]
    handler: ToolHandler

    def schema(self) -> dict[str, Any]:
        """OpenAI function-tool schema"""
        parameters = self.parameters.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class ToolRegistry:
    """
    Name -> Tool map with argument validation on invoke.

    Example:
        >>> registry = create_browser_tools(session)
        >>> result = await registry.invoke("navigate_to_url", {"url": "https://example.com"})
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(f"Unknown tool: {name}") from None

    def schemas(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """Schemas for the given tool names (all tools when None), in the order given"""
        selected = self.names() if names is None else list(names)
        return [self.get(name).schema() for name in selected]

    async def invoke(self, name: str, arguments: dict[str, Any] | None = None) -> ActionResult:
        """
        Validate arguments and run a tool.

        Invalid arguments are a reported failure; an unknown name raises
        ToolNotFoundError; structural session errors propagate.
        """
        tool = self.get(name)
        try:
            params = tool.parameters.model_validate(arguments or {})
        except pydantic.ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            return ActionResult.fail(f"Invalid arguments for {name}: {problems}", error=str(e))
        return await tool.handler(params)


def create_browser_tools(session: AsyncBrowserSession) -> ToolRegistry:
    """
    Build the full tool set bound to one session.

    Args:
        session: Session every handler acts on

    Returns:
        ToolRegistry with every Action-Surface tool
    """

    async def initialize_browser(params: NoParams) -> ActionResult:
        if session.is_ready:
            return ActionResult.ok("Browser already initialized", {"session_id": session.id})
        return await session.initialize()

    async def close_browser(params: NoParams) -> ActionResult:
        await session.close()
        return ActionResult.ok("Browser closed")

    async def navigate(params: NavigateParams) -> ActionResult:
        return await session.navigate(params.url)

    async def click(params: SelectorParams) -> ActionResult:
        return await session.click(params.selector)

    async def fill(params: FillParams) -> ActionResult:
        return await session.fill(params.selector, params.value)

    async def select(params: SelectParams) -> ActionResult:
        return await session.select_option(params.selector, params.value)

    async def extract_text(params: SelectorParams) -> ActionResult:
        return await session.extract_text(params.selector)

    async def extract_links(params: ExtractLinksParams) -> ActionResult:
        return await session.extract_links(params.selector)

    async def wait_for_element(params: WaitParams) -> ActionResult:
        return await session.wait_for_element(params.selector, params.timeout_ms)

    async def find_form_fields(params: NoParams) -> ActionResult:
        return await session.discover_form_fields()

    async def find_buttons(params: NoParams) -> ActionResult:
        return await session.discover_buttons()

    async def discover_target_form(params: DiscoverTargetParams) -> ActionResult:
        return await session.discover_target_form(params.intent, params.selector)

    async def scroll(params: ScrollParams) -> ActionResult:
        return await session.scroll(params.x, params.y)

    async def screenshot(params: NoParams) -> ActionResult:
        return await session.screenshot()

    async def page_info(params: NoParams) -> ActionResult:
        return await session.get_page_info()

    async def read_page(params: ReadPageParams) -> ActionResult:
        return await session.read_page(params.format)

    return ToolRegistry(
        [
            Tool(INITIALIZE_BROWSER, "Start the browser session (no-op if already running)", NoParams, initialize_browser),
            Tool(NAVIGATE, "Navigate to a URL and wait for the page to settle", NavigateParams, navigate),
            Tool(CLICK, "Click an element by CSS selector", SelectorParams, click),
            Tool(FILL, "Fill a text input or textarea", FillParams, fill),
            Tool(SELECT, "Select an option in a <select> element", SelectParams, select),
            Tool(EXTRACT_TEXT, "Extract text from all elements matching a selector", SelectorParams, extract_text),
            Tool(EXTRACT_LINKS, "Extract link text and hrefs", ExtractLinksParams, extract_links),
            Tool(WAIT_FOR_ELEMENT, "Wait for an element to become visible", WaitParams, wait_for_element),
            Tool(FIND_FORM_FIELDS, "List every input, textarea and select on the page", NoParams, find_form_fields),
            Tool(FIND_BUTTONS, "List every button and submit input on the page", NoParams, find_buttons),
            Tool(
                DISCOVER_TARGET_FORM,
                "Find the form matching an intent (e.g. contact) and report its selector and fields",
                DiscoverTargetParams,
                discover_target_form,
            ),
            Tool(SCROLL, "Scroll the page by an offset", ScrollParams, scroll),
            Tool(SCREENSHOT, "Take a screenshot and return its URL", NoParams, screenshot),
            Tool(PAGE_INFO, "Get the current page URL and title", NoParams, page_info),
            Tool(READ_PAGE, "Read the page content as markdown, text or raw HTML", ReadPageParams, read_page),
            Tool(CLOSE_BROWSER, "Close the browser session", NoParams, close_browser),
        ]
    )
