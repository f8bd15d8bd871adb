"""
Tests for request validation, error responses and configuration
"""

from unittest.mock import patch

import pytest

from webpilot.config import AutomationConfig
from webpilot.exceptions import (
    AutomationError,
    BrowserCrashedError,
    SessionError,
    ValidationError,
    to_error_response,
)
from webpilot.models import TranscriptStep
from webpilot.validation import AutomationRequest, RequestConfig, validate_request


def test_valid_request_accepts_camel_case():
    request = validate_request(
        {
            "prompt": "Go to example.com and read the page title",
            "sessionId": "abc",
            "config": {"maxTokens": 512, "temperature": 0.2, "headless": True},
        }
    )

    assert request.session_id == "abc"
    assert request.config.max_tokens == 512
    assert request.config.headless is True


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"prompt": "short"},
        {"prompt": "Go to example.com please", "config": {"temperature": 3}},
        {"prompt": "Go to example.com please", "config": {"maxTokens": 0}},
        {"prompt": "Go to example.com please", "config": {"timeout": -1}},
        ["not", "an", "object"],
    ],
)
def test_invalid_requests_raise_validation_error(payload):
    with pytest.raises(ValidationError) as exc_info:
        validate_request(payload)

    assert exc_info.value.details
    assert exc_info.value.status_code == 400


def test_prebuilt_request_passes_through():
    request = AutomationRequest(prompt="Extract all links from example.com")

    assert validate_request(request) is request


def test_error_response_for_validation():
    try:
        validate_request({"prompt": "short"})
    except ValidationError as e:
        response = to_error_response(e)

    assert response["success"] is False
    assert response["kind"] == "validation"
    assert response["status_code"] == 400
    assert response["details"][0]["loc"] == ["prompt"]


def test_error_response_for_automation_error_carries_history():
    error = BrowserCrashedError(
        "Browser disconnected during click",
        history=[TranscriptStep(role="user", output="Click it")],
        screenshot_url="https://images.test/last.jpg",
    )

    response = to_error_response(error)

    assert response["kind"] == "automation"
    assert response["code"] == "BROWSER_CRASHED"
    assert response["status_code"] == 500
    assert response["history"][0]["output"] == "Click it"
    assert response["screenshot_url"] == "https://images.test/last.jpg"


def test_error_response_for_session_and_internal_errors():
    session = to_error_response(SessionError("Unknown session: abc", session_id="abc"))
    internal = to_error_response(KeyError("boom"))
    plain = to_error_response(AutomationError("LLM request failed", code="LLM_ERROR"))

    assert session["status_code"] == 404
    assert session["session_id"] == "abc"
    assert internal["kind"] == "internal"
    assert internal["status_code"] == 500
    assert plain["code"] == "LLM_ERROR"
    assert "history" not in plain


def test_config_from_env():
    env = {
        "WEBPILOT_MODEL": "gpt-4o",
        "WEBPILOT_HEADLESS": "true",
        "WEBPILOT_TIMEOUT_MS": "15000",
        "WEBPILOT_MAX_STEPS": "7",
        "WEBPILOT_VERBOSE": "no",
    }
    with patch.dict("os.environ", env, clear=False):
        config = AutomationConfig.from_env(max_steps=3)

    assert config.model == "gpt-4o"
    assert config.headless is True
    assert config.navigation_timeout_ms == 15000
    assert config.max_steps == 3
    assert config.verbose is False
    assert config.browser_options().timeout_ms == 15000


def test_config_merged_with_request_overrides():
    base = AutomationConfig(headless=False, temperature=0.0)

    merged = base.merged_with(RequestConfig(headless=True, maxTokens=256, timeout=9000))

    assert merged.headless is True
    assert merged.max_tokens == 256
    assert merged.navigation_timeout_ms == 9000
    assert merged.temperature == 0.0
    assert base.headless is False
    assert base.merged_with(None) is base
