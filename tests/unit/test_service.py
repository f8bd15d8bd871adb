"""
Tests for the AutomationService front door and the session registry
"""

import asyncio

import pytest
from fakes import ScriptedLLM, final, tool_call

from webpilot import tools as t
from webpilot.exceptions import AutomationError, SessionError, ValidationError
from webpilot.llm_provider import LLMProvider
from webpilot.models import EventType
from webpilot.service import AutomationService
from webpilot.sessions import SessionRegistry


class BlockingLLM(LLMProvider):
    def __init__(self):
        super().__init__("blocking-model")
        self.entered = asyncio.Event()

    async def generate(self, messages, tools=None, **kwargs):
        self.entered.set()
        await asyncio.Event().wait()


class BrokenLLM(LLMProvider):
    def __init__(self):
        super().__init__("broken-model")

    async def generate(self, messages, tools=None, **kwargs):
        raise RuntimeError("model unavailable")


def navigation_llm(config):
    return ScriptedLLM(
        [tool_call(t.NAVIGATE, url="https://example.com"), final("Title: Example Domain")]
    )


@pytest.fixture
def service(driver, config, image_store):
    return AutomationService(config, llm_factory=navigation_llm, image_store=image_store)


@pytest.mark.asyncio
async def test_invalid_submission_starts_nothing(service, driver):
    with pytest.raises(ValidationError):
        await service.start({"prompt": "hi"})

    assert len(service.registry) == 0
    driver.starter.start.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_completes_and_streams_events(service):
    session_id = await service.start({"prompt": "Go to https://example.com and read the page title"})
    result = await service.wait(session_id)

    assert result.status == "completed"
    assert result.final_output == "Title: Example Domain"
    assert service.result(session_id) is result

    channel = service.channel(session_id)
    events = channel.events()
    assert events[0].type == EventType.CONNECTED
    assert events[-1].data["done"] is True
    assert channel.closed

    status = service.status(session_id)
    assert status["running"] is False
    assert status["browser_status"] == "closed"
    assert status["last_seq"] == events[-1].seq


@pytest.mark.asyncio
async def test_execute_returns_response_dicts(service):
    ok = await service.execute({"prompt": "Go to https://example.com and read the page title"})
    bad = await service.execute({"prompt": ""})

    assert ok["success"] is True
    assert ok["result"]["status"] == "completed"
    assert bad["success"] is False
    assert bad["kind"] == "validation"
    assert bad["status_code"] == 400


@pytest.mark.asyncio
async def test_busy_session_id_is_rejected(driver, config, image_store):
    llm = BlockingLLM()
    service = AutomationService(config, llm_factory=lambda c: llm, image_store=image_store)
    prompt = "Go to https://example.com and wait"

    await service.start({"prompt": prompt, "sessionId": "busy"})
    await asyncio.wait_for(llm.entered.wait(), timeout=1)

    assert service.result("busy") is None
    with pytest.raises(SessionError):
        await service.start({"prompt": prompt, "sessionId": "busy"})

    channel = service.channel("busy")
    await service.stop("busy")

    assert "busy" not in service.registry
    assert channel.closed
    assert channel.events()[-1].data["done"] is True


@pytest.mark.asyncio
async def test_finished_session_id_can_be_reused(service):
    prompt = "Go to https://example.com and read the page title"

    first = await service.run({"prompt": prompt, "sessionId": "reuse-me"})
    second = await service.run({"prompt": prompt, "sessionId": "reuse-me"})

    assert first.status == second.status == "completed"
    assert service.registry.ids() == ["reuse-me"]


@pytest.mark.asyncio
async def test_failed_run_surfaces_error(driver, config, image_store):
    service = AutomationService(config, llm_factory=lambda c: BrokenLLM(), image_store=image_store)

    session_id = await service.start({"prompt": "Go to https://example.com and read the page title"})
    with pytest.raises(AutomationError) as exc_info:
        await service.wait(session_id)

    assert exc_info.value.code == "LLM_ERROR"
    last = service.channel(session_id).events()[-1]
    assert last.type == EventType.ERROR
    assert last.data["done"] is True

    response = await service.execute({"prompt": "Go to https://example.com and read the page title"})
    assert response["code"] == "LLM_ERROR"
    assert response["history"][0]["role"] == "user"


@pytest.mark.asyncio
async def test_registry_lookup_errors(config):
    registry = SessionRegistry(config)
    handle = registry.create("one")

    with pytest.raises(SessionError):
        registry.create("one")
    with pytest.raises(SessionError):
        registry.get("missing")
    assert registry.require_idle("one") is handle
    assert handle.channel.events()[0].type == EventType.CONNECTED

    await registry.close_all()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_oldest_finished_sessions_are_evicted(driver, config, image_store):
    capped = config.model_copy(update={"max_finished_sessions": 2})
    service = AutomationService(capped, llm_factory=navigation_llm, image_store=image_store)
    prompt = "Go to https://example.com and read the page title"

    for session_id in ("s1", "s2", "s3"):
        await service.run({"prompt": prompt, "sessionId": session_id})

    assert service.registry.ids() == ["s2", "s3"]
    with pytest.raises(SessionError):
        service.result("s1")
    assert service.result("s3").status == "completed"


@pytest.mark.asyncio
async def test_only_finished_sessions_are_evicted(config):
    registry = SessionRegistry(config.model_copy(update={"max_finished_sessions": 0}))
    running = registry.create("running")
    done = registry.create("done")

    evicted = registry.mark_finished("done")

    assert evicted == ["done"]
    assert registry.ids() == ["running"]
    assert registry.mark_finished("unknown") == []
    await done.channel.close()
    await running.channel.close()
