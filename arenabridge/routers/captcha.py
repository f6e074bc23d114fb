"""Manual captcha resolution signal.

- POST /api/captcha/{request_id}/resolved: a human solved the challenge
- GET  /api/captcha/pending: request ids waiting on a human
"""

from __future__ import annotations

from fastapi import APIRouter

from arenabridge.captcha.gate import CaptchaSignals
from arenabridge.models.responses import ApiResponse


def create_captcha_router(*, signals: CaptchaSignals) -> APIRouter:
    captcha_router = APIRouter(prefix="/api/captcha", tags=["captcha"])

    @captcha_router.post("/{request_id}/resolved")
    async def resolved(request_id: str) -> dict:
        signalled = signals.signal(request_id)
        return ApiResponse(
            success=signalled,
            data={"request_id": request_id, "signalled": signalled},
            error=None if signalled else "No session is waiting on this request",
        ).model_dump()

    @captcha_router.get("/pending")
    async def pending() -> dict:
        return ApiResponse.ok({"request_ids": signals.pending()})

    return captcha_router
