"""Unit tests for the chat service counters and session bookkeeping."""

import asyncio

import pytest

from arenabridge.middleware.error_handler import InvalidPromptError, ResponseTimeoutError
from arenabridge.services.chat_service import ChatService
from arenabridge.session.interaction import InteractionRequest
from doubles import FakeCapture, ScriptedCaptures, ok_response


@pytest.fixture
def service(deps, session_config):
    return ChatService(deps, session_config)


class TestRun:
    @pytest.mark.asyncio
    async def test_success_counted(self, service):
        result = await service.run(InteractionRequest(prompt="Hi", request_id="r1"))

        assert result.request_id == "r1"
        stats = service.get_stats()
        assert stats["succeeded"] == 1
        assert stats["failed"] == 0
        assert stats["retried"] == 0
        assert stats["active"] == 0

    @pytest.mark.asyncio
    async def test_failure_counted_and_reraised(self, service):
        with pytest.raises(InvalidPromptError):
            await service.run(InteractionRequest(prompt="  "))

        stats = service.get_stats()
        assert stats["failed"] == 1
        assert stats["succeeded"] == 0
        assert service.active_sessions() == {}

    @pytest.mark.asyncio
    async def test_retry_and_fallback_counters(self, service, deps):
        deps.capture_factory = ScriptedCaptures(FakeCapture(None), FakeCapture(ok_response()))
        await service.run(InteractionRequest(prompt="Hi"))
        assert service.get_stats()["retried"] == 1
        assert service.get_stats()["fallbacks"] == 0

    @pytest.mark.asyncio
    async def test_terminal_timeout(self, service, deps):
        deps.capture_factory = ScriptedCaptures(FakeCapture(None))
        with pytest.raises(ResponseTimeoutError):
            await service.run(InteractionRequest(prompt="Hi"))
        assert service.get_stats()["failed"] == 1


class TestActiveSessions:
    @pytest.mark.asyncio
    async def test_running_session_is_listed(self, service, deps):
        release = asyncio.Event()

        class BlockingCapture(FakeCapture):
            async def await_match(self, timeout):
                await release.wait()
                return ok_response()

        deps.capture_factory = ScriptedCaptures(BlockingCapture(None))
        task = asyncio.create_task(service.run(InteractionRequest(prompt="Hi", request_id="live")))
        for _ in range(1000):
            await asyncio.sleep(0)
            if service.active_sessions().get("live") == "awaiting_response":
                break

        assert service.active_sessions() == {"live": "awaiting_response"}
        assert service.get_stats()["active"] == 1

        release.set()
        await task
        assert service.active_sessions() == {}

    def test_empty_stats(self, service):
        assert service.get_stats() == {
            "active": 0,
            "succeeded": 0,
            "failed": 0,
            "retried": 0,
            "fallbacks": 0,
            "avg_duration_ms": 0,
        }
