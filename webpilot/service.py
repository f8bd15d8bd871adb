"""
AutomationService: accepts task submissions and runs them as background sessions.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from .config import AutomationConfig
from .events import EventChannel
from .exceptions import SessionError, to_error_response
from .image_store import ImageStore
from .llm_provider import LLMProvider, create_llm_provider
from .models import EventType, RunResult
from .orchestrator import Mode, Orchestrator
from .sessions import SessionHandle, SessionRegistry
from .validation import AutomationRequest, validate_request

LLMFactory = Callable[[AutomationConfig], LLMProvider]


def _default_llm_factory(config: AutomationConfig) -> LLMProvider:
    return create_llm_provider(config.model)


class AutomationService:
    """
    Front door for automation tasks.

    Submissions are validated before any browser work; each accepted task gets its own
    session, event channel and background task.

    Example:
        >>> service = AutomationService(AutomationConfig.from_env())
        >>> session_id = await service.start({"prompt": "Go to example.com and read the title"})
        >>> async for event in service.channel(session_id).subscribe():
        ...     print(event.type, event.message)
    """

    def __init__(
        self,
        config: AutomationConfig | None = None,
        llm_factory: LLMFactory | None = None,
        image_store: ImageStore | None = None,
        mode: Mode = "gateway",
    ):
        self.config = config or AutomationConfig.from_env()
        self.llm_factory = llm_factory or _default_llm_factory
        self.mode = mode
        self.registry = SessionRegistry(self.config, image_store=image_store)

    async def start(self, payload: dict[str, Any] | AutomationRequest) -> str:
        """
        Validate a submission and start it in the background.

        Args:
            payload: {"prompt": str, "config"?: {...}, "sessionId"?: str}

        Returns:
            Session id to subscribe to

        Raises:
            ValidationError: Malformed submission (nothing was started)
            SessionError: The requested session id is still running a task
        """
        request = validate_request(payload)
        config = self.config.merged_with(request.config)

        if request.session_id and request.session_id in self.registry:
            self.registry.require_idle(request.session_id)
            await self.registry.remove(request.session_id)

        handle = self.registry.create(request.session_id, config)
        handle.channel.start_heartbeat()
        handle.task = asyncio.create_task(self._run(handle, request.prompt, config))
        if config.verbose:
            print(f"🆕 [WebPilot] Session {handle.id} started")
        return handle.id

    async def _run(self, handle: SessionHandle, prompt: str, config: AutomationConfig) -> None:
        try:
            orchestrator = Orchestrator(
                handle.session,
                self.llm_factory(config),
                config,
                channel=handle.channel,
                mode=self.mode,
            )
            handle.result = await orchestrator.run(prompt)
        except Exception as e:
            # surfaced through result()/wait()
            handle.error = e
            await handle.session.close()
            events = handle.channel.events()
            if not events or not (events[-1].data or {}).get("done"):
                handle.channel.emit(EventType.ERROR, f"Automation failed: {e}", {"done": True})
        finally:
            await handle.channel.close()
            evicted = self.registry.mark_finished(handle.id)
            if evicted and config.verbose:
                print(f"🧹 [WebPilot] Evicted finished sessions: {', '.join(evicted)}")

    async def wait(self, session_id: str) -> RunResult:
        """Wait for a session's task and return its result (re-raising its error)"""
        handle = self.registry.get(session_id)
        if handle.task is not None:
            await asyncio.shield(handle.task)
        return self._outcome(handle)

    async def run(self, payload: dict[str, Any] | AutomationRequest) -> RunResult:
        """Start a task and wait for it"""
        session_id = await self.start(payload)
        return await self.wait(session_id)

    def result(self, session_id: str) -> RunResult | None:
        """
        Result of a finished task, None while it is still running.

        Raises:
            SessionError: Unknown session
            WebPilotError: The error the task ended with
        """
        handle = self.registry.get(session_id)
        if handle.running:
            return None
        return self._outcome(handle)

    @staticmethod
    def _outcome(handle: SessionHandle) -> RunResult:
        if handle.error is not None:
            raise handle.error
        if handle.result is None:
            raise SessionError(f"Session has no result: {handle.id}", session_id=handle.id)
        return handle.result

    def channel(self, session_id: str) -> EventChannel:
        return self.registry.get(session_id).channel

    def status(self, session_id: str) -> dict[str, Any]:
        handle = self.registry.get(session_id)
        info = handle.session.info()
        return {
            "session_id": handle.id,
            "running": handle.running,
            "browser_status": info.status.value,
            "current_url": info.current_url,
            "last_seq": handle.channel.last_seq,
        }

    async def stop(self, session_id: str) -> None:
        """Cancel a session's task and release its browser and channel"""
        await self.registry.remove(session_id)

    async def close(self) -> None:
        await self.registry.close_all()

    async def execute(self, payload: Any) -> dict[str, Any]:
        """
        Run a submission to completion and return a response dict.

        Success: {"success": True, "session_id", "result"}; failure: to_error_response().
        """
        try:
            session_id = await self.start(payload)
            result = await self.wait(session_id)
        except Exception as e:
            return to_error_response(e)
        return {"success": True, "session_id": session_id, "result": result.model_dump(mode="json")}
