"""
Orchestrator: routes a task to policies and drives the bounded tool-call loop.

Safety rules are enforced here, not in prompt text:
    - a submit control is never clicked unless the task explicitly asked for submission
    - the target form is discovered before the first fill/select
    - missing required fields stop the run before anything is filled
    - an ambiguous target without a caller selector stops the run with the candidates
    - the browser session is closed when the run ends, whatever the outcome
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Literal

from .browser import AsyncBrowserSession
from .config import AutomationConfig
from .discovery import field_category
from .events import EventChannel
from .exceptions import AutomationError
from .llm_provider import LLMProvider, ToolCall
from .models import (
    ActionResult,
    Candidate,
    DiscoveryResult,
    EventType,
    FieldDescriptor,
    RunResult,
    SessionStatus,
    TranscriptStep,
)
from .policies import UNIFIED_POLICY, Policy, get_policy
from .router import TaskFeatures, parse_task, route_task
from .tools import (
    CLICK,
    CLOSE_BROWSER,
    DISCOVER_TARGET_FORM,
    FILL,
    FIND_BUTTONS,
    INITIALIZE_BROWSER,
    NAVIGATE,
    PAGE_INFO,
    SCREENSHOT,
    SELECT,
    ToolRegistry,
    create_browser_tools,
)

Mode = Literal["gateway", "unified"]

_SUBMIT_SELECTOR = re.compile(r"\bsubmit\b|\bsend\b|type\s*=\s*['\"]?submit", re.IGNORECASE)
_SUBMIT_LABEL = re.compile(r"^\s*(submit|send)\b", re.IGNORECASE)

_PLAIN_WORDS: dict[str, set[str]] = {
    "name": {"name", "full", "first", "last", "fname", "lname"},
    "email": {"email", "e", "mail", "address"},
    "phone": {"phone", "tel", "telephone", "mobile", "number"},
    "message": {"message", "msg", "comment", "comments", "enquiry", "inquiry", "question", "body"},
}
_FILLER_WORDS = {"your", "the", "field", "required", "optional"}


def _words(key: str) -> set[str]:
    return set(re.findall(r"[a-z]+", re.sub(r"([a-z])([A-Z])", r"\1 \2", key).lower()))


def plain_category(desc: FieldDescriptor) -> str | None:
    """
    Category of a field whose name, id and label say nothing beyond the category.

    "your-name" and "Full Name" are plain names; "company_name" and "user_name" are
    not, so a generic name value never stands in for them.
    """
    category = field_category(desc)
    if category is None:
        return None
    allowed = _PLAIN_WORDS[category] | _FILLER_WORDS
    for key in (desc.name, desc.id, desc.label):
        words = _words(key)
        if words and not words <= allowed:
            return None
    return category


def missing_required_fields(candidate: Candidate, caller_data: dict[str, str]) -> list[str]:
    """
    Names of required fields in candidate that caller_data does not cover.

    A field is covered when caller data has a non-empty value under its name, id or
    label. A plain field ("your-email", "Full Name") is also covered by any plain key
    of the same category (name, email, phone, message).
    """
    provided = {key.lower() for key, value in caller_data.items() if value}
    provided_categories = {
        plain_category(FieldDescriptor(tag="input", name=key)) for key in provided
    } - {None}

    missing: list[str] = []
    for desc in candidate.required_fields:
        keys = {desc.name.lower(), desc.id.lower(), desc.label.lower()} - {""}
        if keys & provided:
            continue
        category = plain_category(desc)
        if category and category in provided_categories:
            continue
        missing.append(desc.display_name)
    return missing


@dataclass
class _RunState:
    features: TaskFeatures
    caller_data: dict[str, str]
    target_selector: str | None
    discovery: DiscoveryResult | None = None
    submit_selectors: set[str] = field(default_factory=set)
    stopped: bool = False
    status: Literal["completed", "stopped", "failed"] = "completed"
    final_output: Any = None
    screenshot_url: str | None = None
    last_policy: str | None = None

    @property
    def fill_intended(self) -> bool:
        return bool(self.caller_data) or self.features.kind_scores.get("form", 0) > 0

    def stop(self, status: Literal["stopped", "failed"], final_output: str) -> None:
        self.stopped = True
        self.status = status
        self.final_output = final_output


class Orchestrator:
    """
    Runs a natural-language browser task against one session.

    Example:
        >>> session = AsyncBrowserSession(config=config)
        >>> llm = OpenAIProvider(model="gpt-4o-mini")
        >>> result = await Orchestrator(session, llm, config).run(
        ...     "Go to https://example.com and read the page title"
        ... )
        >>> print(result.final_output)
    """

    def __init__(
        self,
        session: AsyncBrowserSession,
        llm: LLMProvider,
        config: AutomationConfig | None = None,
        channel: EventChannel | None = None,
        mode: Mode = "gateway",
        registry: ToolRegistry | None = None,
    ):
        """
        Args:
            session: Browser session the tools act on (initialized here if needed)
            llm: Tool-calling LLM provider
            config: Step ceiling, model parameters, verbosity
            channel: Optional event channel for progress events
            mode: "gateway" (router + specialist policies) or "unified" (one policy)
            registry: Tool registry; defaults to create_browser_tools(session)
        """
        if mode not in ("gateway", "unified"):
            raise ValueError(f"Unknown mode: {mode}")
        self.session = session
        self.llm = llm
        self.config = config or session.config
        self.channel = channel
        self.mode = mode
        self.registry = registry or create_browser_tools(session)
        self.verbose = self.config.verbose

    # ========== Events and logging ==========

    def _emit(self, type: EventType, message: str, data: dict[str, Any] | None = None) -> None:
        if self.channel is not None:
            self.channel.emit(type, message, data)

    def _log(self, message: str) -> None:
        if self.verbose:
            print(message)

    # ========== Entry point ==========

    def plan(self, features: TaskFeatures) -> list[Policy]:
        if self.mode == "unified":
            return [UNIFIED_POLICY]
        return [get_policy(name) for name in route_task(features)]

    async def run(
        self,
        task: str,
        field_data: dict[str, str] | None = None,
        target_selector: str | None = None,
    ) -> RunResult:
        """
        Execute a task end to end.

        Args:
            task: Natural-language task
            field_data: Explicit form values; merged over values parsed from the task
            target_selector: Selector of the form to use; overrides one parsed from the task

        Returns:
            RunResult. status is "completed" when the model finished, "stopped" when a
            guard ended the run and "failed" when the step ceiling was reached.

        Raises:
            AutomationError: On structural or session failures. The exception carries the
                partial history and the last screenshot URL.
        """
        features = parse_task(task)
        state = _RunState(
            features=features,
            caller_data={**features.field_values, **(field_data or {})},
            target_selector=target_selector or features.target_selector,
        )
        history: list[TranscriptStep] = [TranscriptStep(role="user", output=task)]

        if self.verbose:
            print(f"\n{'=' * 70}")
            print(f"🤖 [WebPilot] Task: {task}")
            print(f"{'=' * 70}")
        self._emit(EventType.INFO, f"Starting automation: {task}")

        start = time.time()
        try:
            await self._ensure_browser(history)

            policies = self.plan(features)
            if self.mode == "gateway":
                self._log(f"🔀 [WebPilot] Route: {' → '.join(p.name for p in policies)}")

            previous_output: Any = None
            for policy in policies:
                if self.mode == "gateway":
                    history.append(
                        TranscriptStep(
                            role="handoff",
                            output=f"Gateway → {policy.name}",
                            policy=policy.name,
                        )
                    )
                    self._emit(EventType.INFO, f"Handing off to {policy.name}")

                state.last_policy = policy.name
                previous_output = await self._run_policy(policy, state, history, previous_output)
                if state.stopped:
                    break
        except AutomationError as e:
            await self._close_session(history)
            e.history = list(history)
            e.screenshot_url = e.screenshot_url or self._screenshot_url(state)
            self._emit(
                EventType.ERROR,
                f"Automation failed: {e}",
                {"done": True, "code": e.code, "screenshot_url": e.screenshot_url},
            )
            self._log(f"❌ [WebPilot] {e.code}: {e}")
            raise
        except BaseException as e:
            await self._close_session(history)
            self._emit(EventType.ERROR, f"Automation failed: {e}", {"done": True})
            raise

        await self._close_session(history)

        result = RunResult(
            history=history,
            last_policy=state.last_policy,
            final_output=state.final_output,
            status=state.status,
            screenshot_url=self._screenshot_url(state),
        )
        duration_ms = int((time.time() - start) * 1000)
        event_type = EventType.SUCCESS if result.status == "completed" else EventType.ERROR
        self._emit(
            event_type,
            f"Automation {result.status}",
            {
                "done": True,
                "status": result.status,
                "final_output": result.final_output,
                "screenshot_url": result.screenshot_url,
                "duration_ms": duration_ms,
            },
        )
        status_icon = "✅" if result.status == "completed" else "⚠️ "
        self._log(f"{status_icon} [WebPilot] Run {result.status} in {duration_ms}ms")
        return result

    # ========== Session lifecycle ==========

    async def _ensure_browser(self, history: list[TranscriptStep]) -> None:
        if self.session.status == SessionStatus.UNINITIALIZED:
            result = await self.registry.invoke(INITIALIZE_BROWSER)
            history.append(TranscriptStep(role="system", output=result.message))
            self._emit(EventType.INFO, "Browser initialized")

    async def _close_session(self, history: list[TranscriptStep]) -> None:
        already_closed = self.session.status == SessionStatus.CLOSED
        await self.session.close()
        if not already_closed:
            history.append(TranscriptStep(role="system", output="Browser session closed"))
            self._emit(EventType.INFO, "Browser closed")

    def _screenshot_url(self, state: _RunState) -> str | None:
        return state.screenshot_url or self.session.last_screenshot_url

    # ========== Tool-call loop ==========

    def _build_messages(
        self, policy: Policy, state: _RunState, previous_output: Any
    ) -> list[dict[str, Any]]:
        lines = [f"Task: {state.features.text}"]
        if state.features.urls:
            lines.append(f"URLs: {', '.join(state.features.urls)}")
        if self.session.page is not None and self.session.page.url not in ("", "about:blank"):
            lines.append(f"Current page: {self.session.page.url}")
        if state.caller_data:
            pairs = ", ".join(f"{k}={v!r}" for k, v in state.caller_data.items())
            lines.append(f"User data: {pairs}")
        if state.target_selector:
            lines.append(f"Target selector: {state.target_selector}")
        lines.append(f"Submission requested: {'yes' if state.features.submit_requested else 'no'}")
        if previous_output:
            lines.append(f"Previous step result: {previous_output}")

        return [
            {"role": "system", "content": policy.instructions},
            {"role": "user", "content": "\n".join(lines)},
        ]

    async def _run_policy(
        self,
        policy: Policy,
        state: _RunState,
        history: list[TranscriptStep],
        previous_output: Any,
    ) -> Any:
        messages = self._build_messages(policy, state, previous_output)
        tools = self.registry.schemas(policy.tools) if policy.tools else None

        for _ in range(self.config.max_steps):
            try:
                response = await self.llm.generate(
                    messages,
                    tools,
                    temperature=self.config.temperature,
                    max_tokens=self.config.max_tokens,
                )
            except Exception as e:
                raise AutomationError(f"LLM request failed: {e}", code="LLM_ERROR") from e

            if response.is_final:
                history.append(
                    TranscriptStep(role="assistant", output=response.content, policy=policy.name)
                )
                state.final_output = response.content
                self._log(f"🧠 [WebPilot] {policy.name}: {response.content}")
                return response.content

            messages.append(response.to_message())
            for call in response.tool_calls:
                output = await self._execute(call, policy, state, history)
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.id,
                        "content": json.dumps(output, default=str),
                    }
                )
                if state.stopped:
                    return state.final_output

        message = (
            f"{policy.name} did not finish within {self.config.max_steps} steps; run aborted."
        )
        screenshot_url = self._screenshot_url(state)
        if screenshot_url:
            message += f" Last screenshot: {screenshot_url}"
        history.append(
            TranscriptStep(role="system", output=message, status="failed", policy=policy.name)
        )
        state.stop("failed", message)
        self._emit(EventType.ERROR, message)
        return message

    async def _execute(
        self,
        call: ToolCall,
        policy: Policy,
        state: _RunState,
        history: list[TranscriptStep],
    ) -> dict[str, Any]:
        if not policy.allows(call.name):
            message = f"Tool {call.name} is not available to the {policy.name} policy"
            history.append(
                TranscriptStep(
                    role="assistant",
                    arguments={"requested_tool": call.name, **call.arguments},
                    output=message,
                    status="rejected",
                    policy=policy.name,
                )
            )
            self._log(f"🚫 [WebPilot] {message}")
            return {"success": False, "error": message}

        if call.name == CLICK:
            blocked = await self._guard_click(call, policy, state, history)
            if blocked is not None:
                return blocked

        if call.name in (FILL, SELECT):
            if state.discovery is None:
                await self._auto_discover(policy, state, history)
                if state.stopped:
                    return {"success": False, "error": state.final_output}
            if state.discovery is not None and self._check_target(state, history, policy):
                return {"success": False, "error": state.final_output}

        result = await self._invoke(call.name, call.arguments, policy, history)
        self._observe(call.name, result, state)

        discovered = state.discovery is not None and state.discovery.success
        if call.name == DISCOVER_TARGET_FORM and discovered:
            self._check_target(state, history, policy, fill_check=state.fill_intended)

        return result.model_dump(exclude_none=True)

    async def _invoke(
        self,
        name: str,
        arguments: dict[str, Any],
        policy: Policy,
        history: list[TranscriptStep],
    ) -> ActionResult:
        self._log(f"🔧 [WebPilot] {name}({json.dumps(arguments, default=str)})")
        result = await self.registry.invoke(name, arguments)
        history.append(
            TranscriptStep(
                role="tool",
                tool_name=name,
                arguments=arguments,
                output=result.model_dump(exclude_none=True),
                status="completed" if result.success else "failed",
                policy=policy.name,
            )
        )
        icon = "✅" if result.success else "❌"
        self._log(f"{icon} [WebPilot] {result.message}")
        return result

    def _observe(self, name: str, result: ActionResult, state: _RunState) -> None:
        """Update run state from a tool result and emit the matching event"""
        data = result.data or {}

        if not result.success:
            self._emit(EventType.ERROR, result.message, {"tool": name, "error": result.error})
            if name == DISCOVER_TARGET_FORM:
                state.discovery = (
                    DiscoveryResult.model_validate(data)
                    if data
                    else DiscoveryResult(success=False, message=result.message)
                )
            return

        if name == SCREENSHOT:
            state.screenshot_url = data.get("screenshot_url")
            self._emit(EventType.SCREENSHOT, "Screenshot captured", {"screenshot_url": state.screenshot_url})
        elif name in (NAVIGATE, PAGE_INFO):
            if name == NAVIGATE:
                # discovery describes the page it ran on
                state.discovery = None
            self._emit(
                EventType.SUCCESS, result.message, {"url": data.get("url"), "title": data.get("title")}
            )
        elif name == DISCOVER_TARGET_FORM:
            state.discovery = DiscoveryResult.model_validate(data)
            for candidate in state.discovery.candidates:
                for button in candidate.buttons:
                    if button.type == "submit" or _SUBMIT_LABEL.match(button.text):
                        if button.selector:
                            state.submit_selectors.add(button.selector)
            self._emit(
                EventType.SUCCESS,
                result.message,
                {
                    "selector": state.discovery.selector,
                    "strategy": state.discovery.strategy.value if state.discovery.strategy else None,
                },
            )
        elif name == FIND_BUTTONS:
            for button in data.get("buttons", []):
                if button.get("type") == "submit" or _SUBMIT_LABEL.match(button.get("text", "")):
                    if button.get("selector"):
                        state.submit_selectors.add(button["selector"])
            self._emit(EventType.SUCCESS, result.message)
        elif name != CLOSE_BROWSER:
            self._emit(EventType.SUCCESS, result.message)

    # ========== Guards ==========

    def _is_submit_control(self, selector: str, state: _RunState) -> bool:
        return selector in state.submit_selectors or bool(_SUBMIT_SELECTOR.search(selector))

    async def _guard_click(
        self,
        call: ToolCall,
        policy: Policy,
        state: _RunState,
        history: list[TranscriptStep],
    ) -> dict[str, Any] | None:
        selector = str(call.arguments.get("selector", ""))
        if not self._is_submit_control(selector, state):
            return None

        if not state.features.submit_requested:
            message = (
                f"Did not click {selector}: the task did not ask for the form to be submitted."
            )
            screenshot_url = self._screenshot_url(state)
            if screenshot_url:
                message += f" Screenshot: {screenshot_url}"
            message += " Ask again with an explicit request to submit if you want it sent."
            self._record_guard(history, policy, call, message, {"blocked_selector": selector})
            state.stop("stopped", message)
            return {"success": False, "error": message}

        # submission was requested; the form still has to be complete
        if state.discovery is None and state.fill_intended:
            await self._auto_discover(policy, state, history)
            if state.stopped:
                return {"success": False, "error": state.final_output}
        if state.discovery is not None and self._check_target(state, history, policy):
            return {"success": False, "error": state.final_output}
        return None

    async def _auto_discover(
        self, policy: Policy, state: _RunState, history: list[TranscriptStep]
    ) -> None:
        arguments: dict[str, Any] = {"intent": "contact"}
        if state.target_selector:
            arguments["selector"] = state.target_selector
        result = await self._invoke(DISCOVER_TARGET_FORM, arguments, policy, history)
        self._observe(DISCOVER_TARGET_FORM, result, state)

    def _check_target(
        self,
        state: _RunState,
        history: list[TranscriptStep],
        policy: Policy,
        fill_check: bool = True,
    ) -> bool:
        """
        Stop the run if the discovered target is ambiguous or incomplete.

        Returns:
            True if the run was stopped
        """
        discovery = state.discovery
        if discovery is None or state.stopped:
            return state.stopped

        if not discovery.success:
            where = f" on {discovery.url}" if discovery.url else ""
            message = f"Stopped before filling or submitting: {discovery.message}{where}."
            screenshot_url = self._screenshot_url(state)
            if screenshot_url:
                message += f" Screenshot: {screenshot_url}"
            details = {"discovery_error": discovery.message, "url": discovery.url}
            self._record_guard(history, policy, None, message, details)
            state.stop("stopped", message)
            return True

        # a caller selector that resolved yields a single candidate, so this only
        # fires when heuristics tied
        if discovery.ambiguous:
            tied = [
                c
                for c in discovery.candidates
                if c.score == discovery.candidates[0].score
                and c.matched_strategy == discovery.candidates[0].matched_strategy
            ]
            lines = [f"Several forms on {discovery.url} match equally well; tell me which one to use:"]
            if state.target_selector:
                lines[0] = f"{state.target_selector} did not match anything. " + lines[0]
            for candidate in tied:
                field_names = ", ".join(f.display_name for f in candidate.fields) or "no fields"
                required = ", ".join(f.display_name for f in candidate.required_fields) or "none"
                lines.append(
                    f"- {candidate.selector} at {discovery.url} (fields: {field_names}; required: {required})"
                )
            message = "\n".join(lines)
            self._record_guard(
                history,
                policy,
                None,
                message,
                {
                    "ambiguous": True,
                    "url": discovery.url,
                    "candidates": [
                        {
                            "selector": c.selector,
                            "url": discovery.url,
                            "fields": [f.display_name for f in c.fields],
                            "required": [f.display_name for f in c.required_fields],
                        }
                        for c in tied
                    ],
                },
            )
            state.stop("stopped", message)
            return True

        if not fill_check:
            return False

        chosen = discovery.chosen
        if chosen is None:
            return False
        missing = missing_required_fields(chosen, state.caller_data)
        if not missing:
            return False

        provided = ", ".join(state.caller_data) or "nothing"
        message = (
            f"Stopped before filling the form {chosen.selector} on {discovery.url}: "
            f"missing required fields: {', '.join(missing)}. You provided: {provided}."
        )
        screenshot_url = self._screenshot_url(state)
        if screenshot_url:
            message += f" Screenshot: {screenshot_url}"
        self._record_guard(
            history,
            policy,
            None,
            message,
            {"missing_fields": missing, "selector": chosen.selector, "url": discovery.url},
        )
        state.stop("stopped", message)
        return True

    def _record_guard(
        self,
        history: list[TranscriptStep],
        policy: Policy,
        call: ToolCall | None,
        message: str,
        details: dict[str, Any],
    ) -> None:
        arguments = None
        if call is not None:
            arguments = {"requested_tool": call.name, **call.arguments}
        history.append(
            TranscriptStep(
                role="guard",
                arguments=arguments,
                output={"message": message, **details},
                status="blocked",
                policy=policy.name,
            )
        )
        self._emit(EventType.ERROR, message, details)
        self._log(f"🛑 [WebPilot] {message}")
