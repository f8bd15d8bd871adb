"""
Fixtures wiring the test doubles in fakes.py into sessions
"""

from unittest.mock import patch

import pytest
from fakes import FakeDom, RecordingImageStore, make_driver

from webpilot.browser import AsyncBrowserSession


@pytest.fixture
def dom():
    return FakeDom()


@pytest.fixture
def driver(dom):
    """Patches webpilot.browser.async_playwright with the fake driver"""
    fake = make_driver(dom)
    with patch("webpilot.browser.async_playwright", return_value=fake.starter):
        yield fake


@pytest.fixture
def image_store():
    return RecordingImageStore()


@pytest.fixture
def session(driver, config, image_store):
    """Uninitialized session wired to the fake driver"""
    return AsyncBrowserSession(session_id="test-session", config=config, image_store=image_store)
