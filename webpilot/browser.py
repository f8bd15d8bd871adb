"""
Async browser session engine built on Playwright.

One AsyncBrowserSession owns one Chromium instance, context and page. Actions are
serialized by a lock and report expected failures through ActionResult; lifecycle
misuse and browser crashes raise.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal

from markdownify import markdownify
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .config import AutomationConfig
from .discovery import capture_page_snapshot, discover_target
from .exceptions import (
    BrowserCrashedError,
    BrowserInitializationError,
    SessionAlreadyInitializedError,
    SessionNotReadyError,
)
from .image_store import ImageStore, LocalImageStore, WebPilotLogger
from .models import (
    ActionResult,
    BrowserOptions,
    ButtonDescriptor,
    FieldDescriptor,
    SessionInfo,
    SessionStatus,
)

LAUNCH_ARGS = ["--disable-extensions", "--no-sandbox", "--disable-setuid-sandbox"]

_FIELDS_SCRIPT = """
() => {
    const esc = (s) => (window.CSS && CSS.escape) ? CSS.escape(s) : s;
    const clean = (s) => String(s || '').replace(/\\s+/g, ' ').trim();
    const labelOf = (el) => {
        if (el.id) {
            const l = document.querySelector(`label[for="${esc(el.id)}"]`);
            if (l) return clean(l.innerText || l.textContent);
        }
        const wrap = el.closest('label');
        return wrap ? clean(wrap.innerText || wrap.textContent) : clean(el.getAttribute('aria-label'));
    };
    const skip = new Set(['hidden', 'submit', 'button', 'reset', 'image']);
    return Array.from(document.querySelectorAll('input, textarea, select'))
        .filter((el) => !skip.has((el.getAttribute('type') || '').toLowerCase()))
        .map((el) => ({
            tag: el.tagName.toLowerCase(),
            type: el.getAttribute('type') || 'text',
            name: el.getAttribute('name') || '',
            id: el.id || '',
            placeholder: el.getAttribute('placeholder') || '',
            required: el.hasAttribute('required'),
            selector: el.id ? `#${esc(el.id)}` : (el.getAttribute('name') ? `[name="${el.getAttribute('name')}"]` : ''),
            label: labelOf(el),
        }));
}
"""

_BUTTONS_SCRIPT = """
() => {
    const esc = (s) => (window.CSS && CSS.escape) ? CSS.escape(s) : s;
    return Array.from(document.querySelectorAll('button, input[type="submit"], input[type="button"]'))
        .map((el) => {
            const text = String(el.innerText || el.textContent || el.value || '').replace(/\\s+/g, ' ').trim();
            return {
                tag: el.tagName.toLowerCase(),
                type: el.getAttribute('type') || 'button',
                text,
                id: el.id || '',
                class_name: el.getAttribute('class') || '',
                selector: el.id ? `#${esc(el.id)}` : `button:has-text("${text}")`,
            };
        });
}
"""

_LINKS_SCRIPT = """
(els) => els.map((el) => ({
    text: String(el.innerText || el.textContent || '').replace(/\\s+/g, ' ').trim(),
    href: el.href || el.getAttribute('href') || '',
}))
"""

ReadFormat = Literal["raw", "text", "markdown"]


class AsyncBrowserSession:
    """
    A single browser session and its Action Surface.

    State machine: uninitialized -> ready (initialize), ready -> busy -> ready around
    every action, ready|busy -> closed (close or crash). closed is terminal.

    Example:
        >>> async with AsyncBrowserSession(config=AutomationConfig(headless=True)) as session:
        ...     result = await session.navigate("https://example.com")
        ...     print(result.data["title"])
    """

    def __init__(
        self,
        session_id: str | None = None,
        config: AutomationConfig | None = None,
        options: BrowserOptions | None = None,
        image_store: ImageStore | None = None,
        logger: WebPilotLogger | None = None,
    ):
        """
        Create a session (no browser is started until initialize()).

        Args:
            session_id: Identifier used in logs and SessionInfo (generated if None)
            config: Runtime configuration (timeouts, screenshot quality, verbosity)
            options: Launch options; derived from config when None
            image_store: Where screenshots are uploaded. Defaults to a local store under
                ./screenshots, created on first screenshot.
            logger: Optional logger; print() is used when verbose and no logger is set
        """
        self.id = session_id or uuid.uuid4().hex
        self.config = config or AutomationConfig()
        self.options = options or self.config.browser_options()
        self.image_store = image_store
        self.logger = logger

        self.status = SessionStatus.UNINITIALIZED
        self.last_screenshot_url: str | None = None

        self.playwright: Playwright | None = None
        self.browser: Browser | None = None
        self.context: BrowserContext | None = None
        self.page: Page | None = None

        self._lock = asyncio.Lock()

    # ========== Logging ==========

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.info(message)
        elif self.config.verbose:
            print(message)

    def _warn(self, message: str) -> None:
        if self.logger:
            self.logger.warning(message)
        else:
            print(message)

    # ========== Lifecycle ==========

    @property
    def is_ready(self) -> bool:
        return self.status == SessionStatus.READY

    async def initialize(self) -> ActionResult:
        """
        Launch Chromium and open a page.

        Raises:
            SessionAlreadyInitializedError: If the session is already running
            SessionNotReadyError: If the session was closed
            BrowserInitializationError: If the driver cannot start (partial
                resources are torn down first)
        """
        if self.status == SessionStatus.CLOSED:
            raise SessionNotReadyError(f"Session {self.id} is closed")
        if self.status != SessionStatus.UNINITIALIZED:
            raise SessionAlreadyInitializedError(f"Session {self.id} is already initialized")

        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=self.options.headless, args=LAUNCH_ARGS
            )
            self.context = await self.browser.new_context(
                viewport={
                    "width": self.options.viewport.width,
                    "height": self.options.viewport.height,
                }
            )
            self.page = await self.context.new_page()
            self.page.set_default_timeout(self.config.action_timeout_ms)
            self.page.set_default_navigation_timeout(self.options.timeout_ms)
            self.page.on("pageerror", lambda err: self._warn(f"⚠️  [WebPilot] Page error: {err}"))
        except Exception as e:
            await self._teardown()
            raise BrowserInitializationError(f"Failed to launch browser: {e}") from e

        self.status = SessionStatus.READY
        mode = "headless" if self.options.headless else "headed"
        self._log(f"🚀 [WebPilot] Browser session {self.id[:8]} ready ({mode})")
        return ActionResult.ok("Browser initialized", {"session_id": self.id})

    async def close(self) -> None:
        """
        Close page, context, browser and driver, in that order.

        Idempotent and safe to call at any point: on a never-initialized session, on a
        closed one, or while an action is in flight. Teardown errors are logged, never
        raised.
        """
        if self.status == SessionStatus.CLOSED and self.playwright is None:
            return
        was_open = self.status in (SessionStatus.READY, SessionStatus.BUSY)
        self.status = SessionStatus.CLOSED
        await self._teardown()
        if was_open:
            self._log(f"🔒 [WebPilot] Browser session {self.id[:8]} closed")

    async def _teardown(self) -> None:
        page, context, browser, playwright = self.page, self.context, self.browser, self.playwright
        self.page = self.context = self.browser = None
        self.playwright = None

        for label, closer in (
            ("page", page.close if page else None),
            ("context", context.close if context else None),
            ("browser", browser.close if browser else None),
            ("driver", playwright.stop if playwright else None),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                self._warn(f"⚠️  [WebPilot] Error closing {label}: {e}")

    async def __aenter__(self) -> AsyncBrowserSession:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def info(self) -> SessionInfo:
        current_url = ""
        if self.page is not None:
            try:
                current_url = self.page.url
            except Exception:
                current_url = ""
        return SessionInfo(id=self.id, status=self.status, current_url=current_url)

    # ========== Action plumbing ==========

    def _ensure_ready(self, action: str, allow_busy: bool = False) -> None:
        allowed = (SessionStatus.READY, SessionStatus.BUSY) if allow_busy else (SessionStatus.READY,)
        if self.status not in allowed or self.page is None:
            raise SessionNotReadyError(
                f"Cannot {action}: session {self.id} is {self.status.value}"
            )

    @asynccontextmanager
    async def _action(self, action: str) -> AsyncIterator[Page]:
        self._ensure_ready(action, allow_busy=True)
        async with self._lock:
            # close() may have run while we waited for the lock
            self._ensure_ready(action)
            self.status = SessionStatus.BUSY
            try:
                yield self.page
            except BrowserCrashedError:
                await self.close()
                raise
            finally:
                if self.status == SessionStatus.BUSY:
                    self.status = SessionStatus.READY

    def _failure(self, action: str, error: Exception) -> ActionResult:
        """Turn a Playwright error into a reported failure, or raise if the browser died."""
        if self.status == SessionStatus.BUSY and self.browser is not None:
            try:
                connected = self.browser.is_connected()
            except Exception:
                connected = False
            if not connected:
                raise BrowserCrashedError(f"Browser disconnected during {action}: {error}")
        message = str(error).splitlines()[0] if str(error) else type(error).__name__
        return ActionResult.fail(f"{action} failed: {message}", error=str(error) or message)

    # ========== Navigation ==========

    async def navigate(self, url: str) -> ActionResult:
        """
        Navigate and wait for network idle.

        Args:
            url: Target URL; "https://" is assumed when no scheme is given

        Returns:
            ActionResult with data {url, title, status}
        """
        if "://" not in url and not url.startswith(("about:", "data:")):
            url = f"https://{url}"

        async with self._action("navigate") as page:
            try:
                response = await page.goto(
                    url, wait_until="networkidle", timeout=self.options.timeout_ms
                )
                title = await page.title()
            except Exception as e:
                return self._failure("navigate", e)

            self._log(f"🌐 [WebPilot] Navigated to {page.url}")
            return ActionResult.ok(
                f"Navigated to {page.url}",
                {
                    "url": page.url,
                    "title": title,
                    "status": response.status if response is not None else None,
                },
            )

    # ========== Interaction ==========

    async def click(self, selector: str) -> ActionResult:
        async with self._action("click") as page:
            try:
                await page.wait_for_selector(
                    selector, state="attached", timeout=self.config.action_timeout_ms
                )
                await page.click(selector)
            except Exception as e:
                return self._failure("click", e)
            return ActionResult.ok(f"Clicked {selector}", {"selector": selector})

    async def fill(self, selector: str, value: str) -> ActionResult:
        async with self._action("fill") as page:
            try:
                await page.wait_for_selector(
                    selector, state="attached", timeout=self.config.action_timeout_ms
                )
                await page.fill(selector, value)
            except Exception as e:
                return self._failure("fill", e)
            return ActionResult.ok(f"Filled {selector}", {"selector": selector, "value": value})

    async def select_option(self, selector: str, value: str) -> ActionResult:
        async with self._action("select_option") as page:
            try:
                await page.wait_for_selector(
                    selector, state="attached", timeout=self.config.action_timeout_ms
                )
                selected = await page.select_option(selector, value)
            except Exception as e:
                return self._failure("select_option", e)
            return ActionResult.ok(
                f"Selected '{value}' in {selector}",
                {"selector": selector, "value": value, "selected": selected},
            )

    async def scroll(self, x: int = 0, y: int = 500) -> ActionResult:
        async with self._action("scroll") as page:
            try:
                position = await page.evaluate(
                    "([x, y]) => { window.scrollBy(x, y); return {x: window.scrollX, y: window.scrollY}; }",
                    [x, y],
                )
            except Exception as e:
                return self._failure("scroll", e)
            return ActionResult.ok(f"Scrolled by ({x}, {y})", {"position": position})

    async def wait_for_element(
        self, selector: str, timeout_ms: int | None = None
    ) -> ActionResult:
        """
        Wait until an element is visible.

        Args:
            selector: Element selector
            timeout_ms: Bound on the wait (defaults to config.wait_timeout_ms)
        """
        timeout = timeout_ms or self.config.wait_timeout_ms
        async with self._action("wait_for_element") as page:
            try:
                await page.wait_for_selector(selector, state="visible", timeout=timeout)
            except Exception as e:
                return self._failure("wait_for_element", e)
            return ActionResult.ok(f"Element {selector} is visible", {"selector": selector})

    # ========== Extraction ==========

    async def extract_text(self, selector: str) -> ActionResult:
        """
        Text content of every element matching selector.

        Zero matches is a success with an empty list; an invalid selector is a failure.
        """
        async with self._action("extract_text") as page:
            try:
                elements = await page.query_selector_all(selector)
                texts = []
                for element in elements:
                    text = await element.text_content()
                    texts.append((text or "").strip())
            except Exception as e:
                return self._failure("extract_text", e)

            if not texts:
                return ActionResult.ok(f"No elements matched {selector}", {"texts": [], "count": 0})
            return ActionResult.ok(
                f"Extracted text from {len(texts)} element(s)", {"texts": texts, "count": len(texts)}
            )

    async def extract_links(self, selector: str = "a") -> ActionResult:
        async with self._action("extract_links") as page:
            try:
                links = await page.eval_on_selector_all(selector, _LINKS_SCRIPT)
            except Exception as e:
                return self._failure("extract_links", e)
            links = [link for link in links if link.get("href")]
            return ActionResult.ok(
                f"Extracted {len(links)} link(s)", {"links": links, "count": len(links)}
            )

    async def read_page(self, format: ReadFormat = "markdown") -> ActionResult:
        """
        Read page content.

        Args:
            format: "raw" (HTML), "text" (body inner text) or "markdown" (via markdownify)

        Returns:
            ActionResult with data {url, format, content, length}
        """
        if format not in ("raw", "text", "markdown"):
            return ActionResult.fail(f"Unsupported read format: {format}")

        async with self._action("read_page") as page:
            try:
                if format == "text":
                    content = await page.inner_text("body")
                else:
                    content = await page.content()
                    if format == "markdown":
                        content = markdownify(content, heading_style="ATX").strip()
            except Exception as e:
                return self._failure("read_page", e)
            return ActionResult.ok(
                f"Read page as {format}",
                {"url": page.url, "format": format, "content": content, "length": len(content)},
            )

    # ========== Discovery ==========

    async def discover_form_fields(self) -> ActionResult:
        async with self._action("discover_form_fields") as page:
            try:
                raw = await page.evaluate(_FIELDS_SCRIPT)
            except Exception as e:
                return self._failure("discover_form_fields", e)
            fields = [FieldDescriptor.model_validate(item) for item in raw]
            return ActionResult.ok(
                f"Found {len(fields)} form field(s)",
                {"fields": [f.model_dump() for f in fields], "count": len(fields)},
            )

    async def discover_buttons(self) -> ActionResult:
        async with self._action("discover_buttons") as page:
            try:
                raw = await page.evaluate(_BUTTONS_SCRIPT)
            except Exception as e:
                return self._failure("discover_buttons", e)
            buttons = [ButtonDescriptor.model_validate(item) for item in raw]
            return ActionResult.ok(
                f"Found {len(buttons)} button(s)",
                {"buttons": [b.model_dump() for b in buttons], "count": len(buttons)},
            )

    async def discover_target_form(
        self, intent: str = "contact", selector: str | None = None
    ) -> ActionResult:
        """
        Find the form matching an intent on the current page.

        Args:
            intent: Intent tag, e.g. "contact"
            selector: Optional caller-supplied selector, tried before any heuristic

        Returns:
            ActionResult whose data is a serialized DiscoveryResult
        """
        async with self._action("discover_target_form") as page:
            try:
                snapshot = await capture_page_snapshot(page, intent=intent, selector=selector)
            except Exception as e:
                return self._failure("discover_target_form", e)

        result = discover_target(snapshot, intent=intent, selector=selector)
        data = result.model_dump(mode="json")
        if not result.success:
            return ActionResult.fail(result.message, data=data)
        self._log(f"🔎 [WebPilot] {result.message}")
        return ActionResult.ok(result.message, data)

    # ========== Screenshots ==========

    def _image_store(self) -> ImageStore:
        if self.image_store is None:
            self.image_store = LocalImageStore(Path("screenshots"))
        return self.image_store

    async def screenshot(self) -> ActionResult:
        """
        Capture a JPEG screenshot and upload it.

        The first form on the page is captured as an element screenshot, so tall forms
        are not clipped; pages without a form are captured full-page.

        Returns:
            ActionResult with data {screenshot_url}; image bytes are never returned
        """
        async with self._action("screenshot") as page:
            try:
                form = await page.query_selector("form")
                if form is not None:
                    await form.scroll_into_view_if_needed()
                    image = await form.screenshot(
                        type="jpeg", quality=self.config.screenshot_quality
                    )
                else:
                    image = await page.screenshot(
                        type="jpeg", quality=self.config.screenshot_quality, full_page=True
                    )
            except Exception as e:
                return self._failure("screenshot", e)

            try:
                url = await self._image_store().upload(
                    image, filename=f"{self.id}_{uuid.uuid4().hex[:8]}.jpg"
                )
            except Exception as e:
                return ActionResult.fail(f"Screenshot upload failed: {e}", error=str(e))

            self.last_screenshot_url = url
            self._log(f"📸 [WebPilot] Screenshot: {url}")
            return ActionResult.ok("Screenshot captured", {"screenshot_url": url})

    # ========== Page info ==========

    async def get_page_info(self) -> ActionResult:
        async with self._action("get_page_info") as page:
            try:
                title = await page.title()
            except Exception as e:
                return self._failure("get_page_info", e)
            return ActionResult.ok(
                f"Page '{title}' at {page.url}", {"url": page.url, "title": title}
            )

    async def get_current_url(self) -> str:
        self._ensure_ready("get_current_url", allow_busy=True)
        return self.page.url

    async def get_page_title(self) -> str:
        async with self._action("get_page_title") as page:
            return await page.title()

