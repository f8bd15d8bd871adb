"""
Pytest configuration and fixtures for WebPilot tests
"""

import os

import pytest

from webpilot.config import AutomationConfig


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers", "requires_browser: mark test as launching a real Chromium via Playwright"
    )


@pytest.fixture
def headless():
    """Fixture that returns headless mode based on CI environment"""
    # In CI, always use headless mode (no X server available)
    return os.getenv("CI", "").lower() in ("true", "1", "yes")


@pytest.fixture(scope="session")
def browser_available():
    """Check if Playwright's Chromium build is installed"""
    try:
        from playwright.sync_api import sync_playwright

        with sync_playwright() as p:
            return os.path.exists(p.chromium.executable_path)
    except Exception:
        return False


@pytest.fixture(autouse=True)
def skip_if_no_browser(request):
    """Automatically skip tests that need a real browser if Chromium is not installed"""
    marker = request.node.get_closest_marker("requires_browser")
    if marker and not request.getfixturevalue("browser_available"):
        pytest.skip("Chromium not installed. Run: playwright install chromium")


@pytest.fixture
def config():
    """Quiet config with short timeouts for tests"""
    return AutomationConfig(
        headless=True,
        verbose=False,
        navigation_timeout_ms=5000,
        action_timeout_ms=1000,
        wait_timeout_ms=1000,
        max_steps=10,
        reconnect_delay_s=0.01,
        heartbeat_interval_s=0.05,
    )
