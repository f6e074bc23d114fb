"""CapSolver client for Cloudflare Turnstile challenges.

Tasks are created via ``createTask`` and polled via ``getTaskResult`` until a
token is ready or the timeout elapses.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class CaptchaSolverError(Exception):
    """The solving service rejected the task or did not finish in time."""


class CaptchaSolver(Protocol):
    async def solve(self, url: str, params: dict[str, Any], timeout: float) -> str:
        """Return a challenge token for the page at *url*."""
        ...


class CapSolverClient:
    """Async client for the CapSolver REST API."""

    BASE_URL = "https://api.capsolver.com"
    TASK_TURNSTILE = "AntiTurnstileTaskProxyLess"

    def __init__(
        self,
        api_key: str,
        *,
        polling_interval: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.polling_interval = polling_interval
        self._client = client

    async def solve(self, url: str, params: dict[str, Any], timeout: float) -> str:
        """Solve the Turnstile challenge described by *params* (needs ``sitekey``)."""
        sitekey = params.get("sitekey")
        if not sitekey:
            raise CaptchaSolverError("No site key captured for the challenge")

        task: dict[str, Any] = {
            "type": self.TASK_TURNSTILE,
            "websiteURL": url,
            "websiteKey": sitekey,
        }
        metadata = {k: params[k] for k in ("action", "cData") if params.get(k)}
        if metadata:
            task["metadata"] = metadata

        async with self._session() as client:
            task_id = await self._create_task(client, task)
            solution = await self._get_task_result(client, task_id, timeout)

        token = solution.get("token")
        if not token:
            raise CaptchaSolverError("CapSolver returned no token")
        return token

    # ------------------------------------------------------------------
    # API calls
    # ------------------------------------------------------------------

    async def _create_task(self, client: httpx.AsyncClient, task: dict[str, Any]) -> str:
        response = await client.post(
            f"{self.BASE_URL}/createTask",
            json={"clientKey": self.api_key, "task": task},
        )
        data = response.json()
        if data.get("errorId") != 0:
            raise CaptchaSolverError(
                f"CapSolver task creation failed: {data.get('errorCode', 'UNKNOWN')} - "
                f"{data.get('errorDescription', 'No description')}"
            )
        task_id = data.get("taskId")
        logger.info("CapSolver task created: %s", task_id)
        return task_id

    async def _get_task_result(
        self, client: httpx.AsyncClient, task_id: str, timeout: float
    ) -> dict[str, Any]:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            await asyncio.sleep(self.polling_interval)
            response = await client.post(
                f"{self.BASE_URL}/getTaskResult",
                json={"clientKey": self.api_key, "taskId": task_id},
            )
            data = response.json()
            if data.get("errorId") != 0:
                raise CaptchaSolverError(
                    f"CapSolver task failed: {data.get('errorCode', 'UNKNOWN')}"
                )
            if data.get("status") == "ready":
                return data.get("solution") or {}
        raise CaptchaSolverError(f"CapSolver task {task_id} not solved within {timeout}s")

    def _session(self) -> httpx.AsyncClient:
        if self._client is not None:
            return contextlib.nullcontext(self._client)  # type: ignore[return-value]
        return httpx.AsyncClient(timeout=httpx.Timeout(30.0))

