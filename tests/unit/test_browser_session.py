"""
Tests for the session engine state machine and Action Surface, on a fake driver
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakes import contact_form

from webpilot.browser import LAUNCH_ARGS
from webpilot.exceptions import (
    BrowserCrashedError,
    BrowserInitializationError,
    SessionAlreadyInitializedError,
    SessionNotReadyError,
    StructuralError,
)
from webpilot.models import SessionStatus


@pytest.mark.asyncio
async def test_initialize_launches_chromium(session, driver):
    result = await session.initialize()

    assert result.success
    assert session.status == SessionStatus.READY
    driver.playwright.chromium.launch.assert_awaited_once_with(headless=True, args=LAUNCH_ARGS)
    driver.browser.new_context.assert_awaited_once_with(viewport={"width": 1280, "height": 720})
    driver.page.set_default_timeout.assert_called_once_with(1000)


@pytest.mark.asyncio
async def test_double_initialize_is_structural(session):
    await session.initialize()

    with pytest.raises(SessionAlreadyInitializedError) as exc_info:
        await session.initialize()

    assert isinstance(exc_info.value, StructuralError)


@pytest.mark.asyncio
async def test_action_before_initialize_raises(session):
    with pytest.raises(SessionNotReadyError):
        await session.navigate("https://example.com")


@pytest.mark.asyncio
async def test_initialize_failure_tears_down(session, driver):
    driver.playwright.chromium.launch.side_effect = RuntimeError("Executable doesn't exist")

    with pytest.raises(BrowserInitializationError) as exc_info:
        await session.initialize()

    assert exc_info.value.code == "BROWSER_INIT_FAILED"
    driver.playwright.stop.assert_awaited_once()
    assert session.playwright is None
    assert session.status == SessionStatus.UNINITIALIZED


@pytest.mark.asyncio
async def test_close_order_and_idempotence(session, driver):
    await session.initialize()

    await session.close()
    await session.close()

    assert driver.close_calls == ["page", "context", "browser", "driver"]
    assert session.status == SessionStatus.CLOSED


@pytest.mark.asyncio
async def test_close_never_initialized(session, driver):
    await session.close()

    assert session.status == SessionStatus.CLOSED
    assert driver.close_calls == []


@pytest.mark.asyncio
async def test_close_swallows_teardown_errors(session, driver):
    await session.initialize()
    driver.context.close.side_effect = RuntimeError("context already gone")

    await session.close()

    driver.browser.close.assert_awaited_once()
    driver.playwright.stop.assert_awaited_once()
    assert session.status == SessionStatus.CLOSED


@pytest.mark.asyncio
async def test_closed_is_terminal(session):
    await session.initialize()
    await session.close()

    with pytest.raises(SessionNotReadyError):
        await session.click("#a")
    with pytest.raises(SessionNotReadyError):
        await session.initialize()


@pytest.mark.asyncio
async def test_async_context_manager(session, driver):
    async with session as s:
        assert s.status == SessionStatus.READY

    assert session.status == SessionStatus.CLOSED


@pytest.mark.asyncio
async def test_navigate(session, driver):
    await session.initialize()

    result = await session.navigate("example.com")

    assert result.success
    assert result.data == {"url": "https://example.com", "title": "Example Domain", "status": 200}
    driver.page.goto.assert_awaited_once_with(
        "https://example.com", wait_until="networkidle", timeout=5000
    )
    assert session.status == SessionStatus.READY


@pytest.mark.asyncio
async def test_navigate_timeout_is_reported(session, driver):
    await session.initialize()
    driver.page.goto.side_effect = TimeoutError("Timeout 5000ms exceeded")

    result = await session.navigate("https://slow.example.com")

    assert not result.success
    assert "Timeout" in result.error
    assert session.status == SessionStatus.READY


@pytest.mark.asyncio
async def test_missing_selector_is_reported(session, driver):
    await session.initialize()
    driver.page.wait_for_selector.side_effect = TimeoutError("waiting for locator('#nope')")

    result = await session.click("#nope")

    assert not result.success
    driver.page.click.assert_not_awaited()


@pytest.mark.asyncio
async def test_fill_and_select(session, driver):
    await session.initialize()

    fill = await session.fill("#email", "b@x.com")
    select = await session.select_option("#topic", "general")

    assert fill.success and select.success
    driver.page.fill.assert_awaited_once_with("#email", "b@x.com")
    assert select.data["selected"] == ["general"]


@pytest.mark.asyncio
async def test_extract_text(session, driver):
    await session.initialize()
    first, second = MagicMock(), MagicMock()
    first.text_content = AsyncMock(return_value="  Price: $10 ")
    second.text_content = AsyncMock(return_value=None)
    driver.page.query_selector_all.return_value = [first, second]

    result = await session.extract_text(".price")

    assert result.data == {"texts": ["Price: $10", ""], "count": 2}


@pytest.mark.asyncio
async def test_extract_text_zero_matches_is_success(session, driver):
    await session.initialize()

    result = await session.extract_text(".nothing")

    assert result.success
    assert result.data == {"texts": [], "count": 0}


@pytest.mark.asyncio
async def test_extract_text_invalid_selector_is_failure(session, driver):
    await session.initialize()
    driver.page.query_selector_all.side_effect = ValueError("Unexpected token '>>>'")

    result = await session.extract_text(">>>")

    assert not result.success


@pytest.mark.asyncio
async def test_extract_links_drops_empty_hrefs(session, driver):
    await session.initialize()
    driver.page.eval_on_selector_all.return_value = [
        {"text": "Home", "href": "https://example.com/"},
        {"text": "Nowhere", "href": ""},
    ]

    result = await session.extract_links()

    assert result.data["count"] == 1
    assert result.data["links"][0]["text"] == "Home"


@pytest.mark.asyncio
async def test_screenshot_returns_url_not_bytes(session, driver, image_store):
    await session.initialize()

    result = await session.screenshot()

    assert result.success
    assert result.data == {"screenshot_url": "https://images.test/shot-1.jpg"}
    assert image_store.uploads == [b"\xff\xd8jpeg-bytes"]
    assert session.last_screenshot_url == "https://images.test/shot-1.jpg"
    driver.page.screenshot.assert_awaited_once_with(type="jpeg", quality=70, full_page=True)


@pytest.mark.asyncio
async def test_screenshot_captures_the_whole_form_element(session, driver, image_store):
    await session.initialize()
    form = MagicMock()
    form.scroll_into_view_if_needed = AsyncMock()
    form.screenshot = AsyncMock(return_value=b"\xff\xd8form-bytes")
    driver.page.query_selector.return_value = form

    result = await session.screenshot()

    assert result.success
    form.scroll_into_view_if_needed.assert_awaited_once()
    form.screenshot.assert_awaited_once_with(type="jpeg", quality=70)
    driver.page.screenshot.assert_not_awaited()
    assert image_store.uploads == [b"\xff\xd8form-bytes"]


@pytest.mark.asyncio
async def test_screenshot_upload_failure_is_reported(session, driver, image_store):
    await session.initialize()
    image_store.upload = AsyncMock(side_effect=RuntimeError("503 from store"))

    result = await session.screenshot()

    assert not result.success
    assert "upload failed" in result.message


@pytest.mark.asyncio
async def test_read_page_markdown(session):
    await session.initialize()

    result = await session.read_page("markdown")

    assert result.data["content"].startswith("# Hello")
    assert "**WebPilot**" in result.data["content"]


@pytest.mark.asyncio
async def test_read_page_text_and_bad_format(session):
    await session.initialize()

    text = await session.read_page("text")
    bad = await session.read_page("pdf")

    assert text.data["content"] == "Hello\nWelcome to WebPilot"
    assert not bad.success


@pytest.mark.asyncio
async def test_discover_form_fields_and_buttons(session, dom):
    dom.fields = [contact_form()["fields"][0]]
    dom.buttons = [{"tag": "button", "type": "submit", "text": "Send", "selector": 'button:has-text("Send")'}]
    await session.initialize()

    fields = await session.discover_form_fields()
    buttons = await session.discover_buttons()

    assert fields.data["count"] == 1
    assert fields.data["fields"][0]["selector"] == "#name"
    assert buttons.data["buttons"][0]["text"] == "Send"


@pytest.mark.asyncio
async def test_discover_target_form(session, dom):
    dom.snapshot = {
        "url": "https://example.com/contact",
        "containers": [contact_form("#contact-form")],
        "exact_matches": {"form#contact-form": 0},
    }
    await session.initialize()

    result = await session.discover_target_form()

    assert result.success
    assert result.data["selector"] == "#contact-form"
    assert result.data["strategy"] == "exact"


@pytest.mark.asyncio
async def test_discover_target_form_no_match(session, dom):
    await session.initialize()

    result = await session.discover_target_form()

    assert not result.success
    assert result.message == "no matching target found"


@pytest.mark.asyncio
async def test_page_info(session, driver):
    await session.initialize()
    await session.navigate("https://example.com")

    info = await session.get_page_info()

    assert info.data == {"url": "https://example.com", "title": "Example Domain"}
    assert await session.get_current_url() == "https://example.com"
    assert await session.get_page_title() == "Example Domain"
    assert session.info().current_url == "https://example.com"


@pytest.mark.asyncio
async def test_crash_tears_down_and_raises(session, driver):
    await session.initialize()
    driver.browser.is_connected.return_value = False
    driver.page.click.side_effect = RuntimeError("Target page, context or browser has been closed")

    with pytest.raises(BrowserCrashedError):
        await session.click("#a")

    assert session.status == SessionStatus.CLOSED
    driver.playwright.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_actions_never_overlap(session, driver):
    await session.initialize()
    timeline = []

    async def slow_click(selector):
        timeline.append(("start", selector, session.status))
        await asyncio.sleep(0.01)
        timeline.append(("end", selector))

    driver.page.click.side_effect = slow_click

    await asyncio.gather(session.click("#a"), session.click("#b"))

    assert [entry[0] for entry in timeline] == ["start", "end", "start", "end"]
    assert all(entry[2] == SessionStatus.BUSY for entry in timeline if entry[0] == "start")
    assert session.status == SessionStatus.READY


@pytest.mark.asyncio
async def test_close_mid_action(session, driver):
    await session.initialize()
    started = asyncio.Event()

    async def slow_fill(selector, value):
        started.set()
        await asyncio.sleep(0.05)

    driver.page.fill.side_effect = slow_fill

    task = asyncio.create_task(session.fill("#name", "A"))
    await started.wait()
    await session.close()
    await task

    assert session.status == SessionStatus.CLOSED
    with pytest.raises(SessionNotReadyError):
        await session.fill("#name", "A")
