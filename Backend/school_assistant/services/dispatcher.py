"""
Job dispatch — hands a job id to the processor without waiting for it.

The caller never observes processing success or failure synchronously. The
only feedback is ``on_failure``, invoked when the hand-off itself could not
be made (broker down, trigger endpoint unreachable).
"""
import abc
import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

import httpx

from school_assistant.core.config import ConfigurationError

logger = logging.getLogger(__name__)

DispatchFailureCallback = Callable[[str, str], Awaitable[None]]

PROCESS_PATH = "/api/chat/process"
INTERNAL_SECRET_HEADER = "X-Internal-API-Secret"


class JobDispatcher(abc.ABC):
    def check_ready(self) -> None:
        """Raise ConfigurationError if this dispatcher cannot work at all."""

    @abc.abstractmethod
    async def enqueue(self, job_id: str, on_failure: DispatchFailureCallback) -> None:
        """Start processing ``job_id`` in the background and return at once."""


class _BackgroundTasksMixin:
    """Keeps strong references to fire-and-forget tasks until they finish."""

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task


class CeleryDispatcher(JobDispatcher):
    """Enqueues the Celery task; the payload stays in the job store."""

    def __init__(self, task):
        self.task = task

    async def enqueue(self, job_id: str, on_failure: DispatchFailureCallback) -> None:
        try:
            self.task.delay(job_id)
            logger.info(f"Job {job_id} enqueued to Celery.")
        except Exception as e:
            logger.error(f"Celery enqueue failed for job {job_id}: {e}")
            await on_failure(job_id, str(e))


class HttpDispatcher(_BackgroundTasksMixin, JobDispatcher):
    """
    POSTs ``{"jobId": ...}`` to the processing endpoint with the shared secret.
    The request runs as a detached task; connection failures and rejections
    are reported through ``on_failure``.
    """

    def __init__(
        self,
        base_url: Optional[str],
        secret: Optional[str],
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.secret = secret
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self._pending: Set[asyncio.Task] = set()

    def check_ready(self) -> None:
        if not self.secret:
            raise ConfigurationError("INTERNAL_API_SECRET is not set. Application is not configured correctly.")
        if not self.base_url:
            raise ConfigurationError("APP_BASE_URL is not set. Application is not configured correctly.")

    async def enqueue(self, job_id: str, on_failure: DispatchFailureCallback) -> None:
        self.check_ready()
        self._spawn(self._trigger(job_id, on_failure))

    async def _trigger(self, job_id: str, on_failure: DispatchFailureCallback) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}{PROCESS_PATH}",
                    json={"jobId": job_id},
                    headers={INTERNAL_SECRET_HEADER: self.secret},
                )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            await on_failure(job_id, f"Processing endpoint unreachable: {e}")
            return
        except httpx.HTTPError as e:
            # The request may have reached the processor; it owns the job now.
            logger.warning(f"Trigger for job {job_id} ended without a response: {e}")
            return

        if response.status_code >= 400:
            await on_failure(job_id, f"Processing endpoint rejected the trigger: HTTP {response.status_code}")
        else:
            logger.info(f"Job {job_id} triggered via HTTP.")


class InlineDispatcher(_BackgroundTasksMixin, JobDispatcher):
    """Runs the processor as a task in this event loop (development, tests)."""

    def __init__(self, processor_provider: Callable[[], object]):
        self.processor_provider = processor_provider
        self._pending: Set[asyncio.Task] = set()

    async def enqueue(self, job_id: str, on_failure: DispatchFailureCallback) -> None:
        try:
            processor = self.processor_provider()
        except Exception as e:
            await on_failure(job_id, str(e))
            return
        self._spawn(processor.process(job_id))
        logger.info(f"Job {job_id} scheduled in-process.")

    async def drain(self) -> None:
        """Wait for every scheduled job (tests and graceful shutdown)."""
        pending = list(self._pending)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
