"""Chat endpoints.

- POST /api/chat: run a prompt; streams progress and the result as SSE
  (``stream: false`` returns a single JSON envelope instead)
- POST /api/verify: run up to prompt submission and report success
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from uuid import uuid4

from fastapi import APIRouter, Request
from starlette.responses import StreamingResponse

from arenabridge.middleware.error_handler import BridgeError
from arenabridge.models.requests import ChatRequest, VerifyRequest
from arenabridge.models.responses import ApiResponse
from arenabridge.services.chat_service import ChatService
from arenabridge.session.events import QueueProgressSink
from arenabridge.session.interaction import InteractionRequest

logger = logging.getLogger(__name__)

# Seconds between client-disconnect checks while a session runs
_DISCONNECT_POLL = 1.0


def format_sse(event: str, payload: dict | str) -> str:
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return f"event: {event}\ndata: {data}\n\n"


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid4())


def _error_payload(exc: BridgeError) -> dict:
    return ApiResponse.fail(exc.message, meta=exc.details)


def create_chat_router(*, chat_service: ChatService, auto_solve_default: bool = True) -> APIRouter:
    """Factory that creates the chat router with injected dependencies."""
    chat_router = APIRouter(prefix="/api", tags=["chat"])

    def _auto_solve(value: bool | None) -> bool:
        return auto_solve_default if value is None else value

    @chat_router.post("/chat")
    async def chat(body: ChatRequest, request: Request):
        interaction = InteractionRequest(
            prompt=body.prompt,
            request_id=_request_id(request),
            model_id=body.model_id,
            auto_solve_captcha=_auto_solve(body.auto_solve_captcha),
            priority=body.priority,
            cancel_event=asyncio.Event(),
        )
        if not body.stream:
            result = await chat_service.run(interaction)
            return ApiResponse.ok(result.to_dict())

        return StreamingResponse(
            _stream(chat_service, interaction, request),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @chat_router.post("/verify")
    async def verify(request: Request, body: VerifyRequest | None = None) -> dict:
        body = body or VerifyRequest()
        interaction = InteractionRequest(
            prompt=body.prompt,
            request_id=_request_id(request),
            model_id=body.model_id,
            auto_solve_captcha=_auto_solve(body.auto_solve_captcha),
            verify=True,
        )
        result = await chat_service.run(interaction)
        return ApiResponse.ok(result.to_dict())

    return chat_router


async def _stream(
    chat_service: ChatService,
    interaction: InteractionRequest,
    request: Request,
) -> AsyncIterator[str]:
    """Yield progress events until the session ends, then the result."""
    queue: asyncio.Queue = asyncio.Queue()
    interaction.sink = QueueProgressSink(queue)
    task = asyncio.create_task(chat_service.run(interaction))

    try:
        while not task.done():
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait(
                {getter, task},
                timeout=_DISCONNECT_POLL,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if getter in done:
                yield format_sse("progress", getter.result().to_dict())
                continue
            getter.cancel()
            if not task.done() and await request.is_disconnected():
                logger.info(
                    "Client disconnected, cancelling session",
                    extra={"request_id": interaction.request_id},
                )
                interaction.cancel_event.set()

        while not queue.empty():
            yield format_sse("progress", queue.get_nowait().to_dict())

        try:
            result = task.result()
        except BridgeError as exc:
            yield format_sse("error", _error_payload(exc))
        except Exception:
            logger.exception(
                "Unhandled error in streamed session",
                extra={"request_id": interaction.request_id},
            )
            yield format_sse("error", ApiResponse.fail("Internal server error"))
        else:
            yield format_sse("result", ApiResponse.ok(result.to_dict()))
        yield "data: [DONE]\n\n"
    finally:
        if not task.done():
            if interaction.cancel_event is not None:
                interaction.cancel_event.set()
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError, BridgeError):
                await task
