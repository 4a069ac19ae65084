"""
Client Poller — submits a chat job and polls it to a terminal state, the same
way the browser chat does.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("COMPLETED", "FAILED")
DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_MAX_ATTEMPTS = 40

FALLBACK_REPLY = "Maaf, terjadi kesalahan yang tidak diketahui."


class PollerError(RuntimeError):
    pass


class JobAbandonedError(PollerError):
    """The job did not reach a terminal status within the poll budget."""


class JobNotFoundError(PollerError):
    """The server no longer knows the job (never created, or expired)."""


class SessionExpiredError(PollerError):
    """The session cookie was rejected (401)."""


def reply_text(status: Dict[str, Any]) -> str:
    """What the chat transcript shows for a terminal status."""
    if status.get("status") == "COMPLETED" and status.get("result"):
        return status["result"]
    if status.get("error"):
        return f"Maaf, terjadi kesalahan: {status['error']}"
    return FALLBACK_REPLY


class AssistantClient:
    def __init__(
        self,
        base_url: str,
        session_token: Optional[str] = None,
        cookie_name: str = "app_session",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        cookies = {cookie_name: session_token} if session_token else None
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            cookies=cookies,
            timeout=timeout_seconds,
            transport=transport,
        )
        self._sleep = sleep

    async def __aenter__(self) -> "AssistantClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def _check(response: httpx.Response) -> None:
        if response.status_code == 401:
            raise SessionExpiredError("Sesi Anda telah berakhir. Silakan login kembali.")
        response.raise_for_status()

    async def submit(self, messages: List[Dict[str, str]], model: Optional[str] = None) -> str:
        payload: Dict[str, Any] = {"messages": messages}
        if model:
            payload["model"] = model
        response = await self._http.post("/api/chat/start", json=payload)
        self._check(response)
        return response.json()["jobId"]

    async def get_status(self, job_id: str) -> Dict[str, Any]:
        response = await self._http.get("/api/chat/status", params={"id": job_id})
        if response.status_code == 404:
            raise JobNotFoundError(f"Job {job_id} not found.")
        self._check(response)
        return response.json()

    async def wait_for_result(
        self,
        job_id: str,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        on_update: Optional[Callable[[str], None]] = None,
    ) -> Dict[str, Any]:
        last_message = None
        for attempt in range(max_attempts):
            status = await self.get_status(job_id)
            message = status.get("statusMessage")
            if on_update and message and message != last_message:
                on_update(message)
            last_message = message

            if status.get("status") in TERMINAL_STATUSES:
                return status
            if attempt < max_attempts - 1:
                await self._sleep(interval)

        logger.warning(f"Giving up on job {job_id} after {max_attempts} polls.")
        raise JobAbandonedError(f"Job {job_id} did not finish after {max_attempts} attempts.")

    async def ask(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
        on_update: Optional[Callable[[str], None]] = None,
        **poll_options,
    ) -> str:
        job_id = await self.submit(messages, model)
        status = await self.wait_for_result(job_id, on_update=on_update, **poll_options)
        return reply_text(status)
