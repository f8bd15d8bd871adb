"""
Runtime configuration for WebPilot.

Timeouts, the reconnect backoff and the tool-loop step ceiling live here as numbers,
independent of any prompt text.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from .models import BrowserOptions, Viewport

if TYPE_CHECKING:
    from .validation import RequestConfig


def _default_headless() -> bool:
    # Headed for local dev, headless in CI
    return os.environ.get("CI", "").lower() in ("true", "1", "yes")


class AutomationConfig(BaseModel):
    """
    Configuration shared by the session engine, orchestrator and event channel.

    Attributes:
        model: LLM model name used by the tool-calling runtime
        temperature: Sampling temperature for the LLM
        max_tokens: Optional completion token limit per LLM call
        headless: Run the browser without a window
        navigation_timeout_ms: Timeout for page navigation (networkidle)
        action_timeout_ms: Timeout for a selector to attach before click/fill/select
        wait_timeout_ms: Default timeout for wait_for_element
        viewport: Browser viewport
        max_steps: Ceiling on LLM iterations per policy run
        heartbeat_interval_s: Seconds between heartbeat events
        max_finished_sessions: Finished sessions kept for result/event lookup before the
            oldest are evicted
        reconnect_delay_s: Fixed client backoff before reconnecting a dropped stream
        upload_timeout_s: Timeout for a screenshot upload
        screenshot_quality: JPEG quality for screenshots (1-100)
        verbose: Print progress lines
    """

    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.0, ge=0, le=2)
    max_tokens: int | None = Field(default=None, gt=0)
    headless: bool = Field(default_factory=_default_headless)
    navigation_timeout_ms: int = Field(default=30000, gt=0)
    action_timeout_ms: int = Field(default=10000, gt=0)
    wait_timeout_ms: int = Field(default=20000, gt=0)
    viewport: Viewport = Field(default_factory=Viewport)
    max_steps: int = Field(default=25, gt=0)
    heartbeat_interval_s: float = Field(default=15.0, gt=0)
    max_finished_sessions: int = Field(default=100, ge=0)
    reconnect_delay_s: float = Field(default=3.0, ge=0)
    upload_timeout_s: float = Field(default=30.0, gt=0)
    screenshot_quality: int = Field(default=70, ge=1, le=100)
    verbose: bool = True

    @classmethod
    def from_env(cls, **overrides: Any) -> AutomationConfig:
        """
        Build a config from WEBPILOT_* environment variables.

        Recognised: WEBPILOT_MODEL, WEBPILOT_TEMPERATURE, WEBPILOT_MAX_TOKENS,
        WEBPILOT_HEADLESS, WEBPILOT_TIMEOUT_MS, WEBPILOT_MAX_STEPS, WEBPILOT_VERBOSE.
        Explicit keyword overrides win over the environment.
        """
        env: dict[str, Any] = {}
        if model := os.environ.get("WEBPILOT_MODEL"):
            env["model"] = model
        if temperature := os.environ.get("WEBPILOT_TEMPERATURE"):
            env["temperature"] = float(temperature)
        if max_tokens := os.environ.get("WEBPILOT_MAX_TOKENS"):
            env["max_tokens"] = int(max_tokens)
        if headless := os.environ.get("WEBPILOT_HEADLESS"):
            env["headless"] = headless.lower() in ("true", "1", "yes")
        if timeout_ms := os.environ.get("WEBPILOT_TIMEOUT_MS"):
            env["navigation_timeout_ms"] = int(timeout_ms)
        if max_steps := os.environ.get("WEBPILOT_MAX_STEPS"):
            env["max_steps"] = int(max_steps)
        if verbose := os.environ.get("WEBPILOT_VERBOSE"):
            env["verbose"] = verbose.lower() in ("true", "1", "yes")
        env.update(overrides)
        return cls(**env)

    def merged_with(self, request_config: RequestConfig | None) -> AutomationConfig:
        """Return a copy with the fields a task submission supplied applied on top"""
        if request_config is None:
            return self
        update: dict[str, Any] = {}
        if request_config.model is not None:
            update["model"] = request_config.model
        if request_config.temperature is not None:
            update["temperature"] = request_config.temperature
        if request_config.max_tokens is not None:
            update["max_tokens"] = request_config.max_tokens
        if request_config.headless is not None:
            update["headless"] = request_config.headless
        if request_config.timeout is not None:
            update["navigation_timeout_ms"] = request_config.timeout
        return self.model_copy(update=update)

    def browser_options(self) -> BrowserOptions:
        return BrowserOptions(
            headless=self.headless,
            timeout_ms=self.navigation_timeout_ms,
            viewport=self.viewport,
        )
