"""
test_dispatcher.py
~~~~~~~~~~~~~~~~~~
Submitting chat jobs: PENDING record first, hand-off second, and dispatch
failures turned into FAILED records without blocking the caller.
"""
import asyncio
import json
from unittest.mock import MagicMock

import httpx
import pytest

from school_assistant.core.config import ConfigurationError, Settings
from school_assistant.api.deps import build_dispatcher
from school_assistant.services.dispatcher import CeleryDispatcher, HttpDispatcher, InlineDispatcher
from school_assistant.services.job_store import JobStatus
from school_assistant.services.orchestrator import DISPATCH_FAILURE_MESSAGE, JobOrchestrator

from conftest import FakeGateway, make_processor

MESSAGES = [{"role": "user", "text": "Berapa jumlah guru?"}]
PLAN_GURU = json.dumps({"searches": [{"sheetName": "GURU", "filters": []}]})


# ─── Celery ──────────────────────────────────────────────────────────────────

def test_celery_dispatch_enqueues_job_id_only(manager, store, user):
    task = MagicMock()
    orchestrator = JobOrchestrator(manager, CeleryDispatcher(task))

    job_id = asyncio.run(orchestrator.submit(user, MESSAGES))

    task.delay.assert_called_once_with(job_id)
    job = asyncio.run(store.get(job_id))
    assert job.status is JobStatus.PENDING
    assert job.input == {"messages": MESSAGES, "model": None}


def test_broker_failure_marks_job_failed(manager, store, user):
    task = MagicMock()
    task.delay.side_effect = ConnectionError("broker unreachable")
    orchestrator = JobOrchestrator(manager, CeleryDispatcher(task))

    job_id = asyncio.run(orchestrator.submit(user, MESSAGES))

    job = asyncio.run(store.get(job_id))
    assert job.status is JobStatus.FAILED
    assert job.error == DISPATCH_FAILURE_MESSAGE


def test_store_error_on_dispatch_failure_is_not_raised(manager, store, user):
    task = MagicMock()
    task.delay.side_effect = ConnectionError("broker unreachable")
    orchestrator = JobOrchestrator(manager, CeleryDispatcher(task))
    original_save = store.save

    async def failing_save(job):
        if job.status is JobStatus.FAILED:
            raise ConnectionError("redis unavailable")
        await original_save(job)

    store.save = failing_save
    job_id = asyncio.run(orchestrator.submit(user, MESSAGES))
    assert asyncio.run(store.get(job_id)).status is JobStatus.PENDING


# ─── HTTP Trigger ────────────────────────────────────────────────────────────

def _submit_and_drain(orchestrator, dispatcher, user):
    async def run():
        job_id = await orchestrator.submit(user, MESSAGES)
        await asyncio.gather(*list(dispatcher._pending))
        return job_id

    return asyncio.run(run())


def test_http_trigger_posts_job_id_with_secret(manager, store, user):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"message": "ok"})

    dispatcher = HttpDispatcher("https://app.example/", "s3cret", transport=httpx.MockTransport(handler))
    job_id = _submit_and_drain(JobOrchestrator(manager, dispatcher), dispatcher, user)

    request = requests[0]
    assert str(request.url) == "https://app.example/api/chat/process"
    assert request.headers["X-Internal-API-Secret"] == "s3cret"
    assert json.loads(request.content) == {"jobId": job_id}
    assert asyncio.run(store.get(job_id)).status is JobStatus.PENDING


def test_http_trigger_rejected_marks_job_failed(manager, store, user):
    dispatcher = HttpDispatcher(
        "https://app.example", "wrong", transport=httpx.MockTransport(lambda r: httpx.Response(403))
    )
    job_id = _submit_and_drain(JobOrchestrator(manager, dispatcher), dispatcher, user)
    assert asyncio.run(store.get(job_id)).status is JobStatus.FAILED


def test_http_trigger_unreachable_marks_job_failed(manager, store, user):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    dispatcher = HttpDispatcher("https://app.example", "s3cret", transport=httpx.MockTransport(handler))
    job_id = _submit_and_drain(JobOrchestrator(manager, dispatcher), dispatcher, user)
    assert asyncio.run(store.get(job_id)).error == DISPATCH_FAILURE_MESSAGE


def test_http_trigger_read_timeout_leaves_job_to_processor(manager, store, user):
    def handler(request):
        raise httpx.ReadTimeout("no response", request=request)

    dispatcher = HttpDispatcher("https://app.example", "s3cret", transport=httpx.MockTransport(handler))
    job_id = _submit_and_drain(JobOrchestrator(manager, dispatcher), dispatcher, user)
    assert asyncio.run(store.get(job_id)).status is JobStatus.PENDING


@pytest.mark.parametrize("base_url, secret", [("https://app.example", None), (None, "s3cret")])
def test_http_dispatch_requires_configuration(manager, store, user, base_url, secret):
    orchestrator = JobOrchestrator(manager, HttpDispatcher(base_url, secret))
    with pytest.raises(ConfigurationError):
        asyncio.run(orchestrator.submit(user, MESSAGES))
    assert store.writes == []


# ─── Inline ──────────────────────────────────────────────────────────────────

def test_inline_dispatch_runs_processor(manager, store, user):
    gateway = FakeGateway(json_responses=[PLAN_GURU], chat_responses=["Ada 2 guru."])
    dispatcher = InlineDispatcher(lambda: make_processor(manager, gateway))
    orchestrator = JobOrchestrator(manager, dispatcher)

    async def run():
        job_id = await orchestrator.submit(user, MESSAGES)
        # Submit returns before the processor has run.
        assert (await store.get(job_id)).status is JobStatus.PENDING
        await dispatcher.drain()
        return job_id

    job_id = asyncio.run(run())
    job = asyncio.run(store.get(job_id))
    assert job.status is JobStatus.COMPLETED
    assert job.result == "Ada 2 guru."


def test_inline_dispatch_failure_to_build_processor(manager, store, user):
    def broken():
        raise ConfigurationError("GEMINI_API_KEYS environment variable is not configured or empty.")

    orchestrator = JobOrchestrator(manager, InlineDispatcher(broken))
    job_id = asyncio.run(orchestrator.submit(user, MESSAGES))
    assert asyncio.run(store.get(job_id)).status is JobStatus.FAILED


# ─── Mode Selection ──────────────────────────────────────────────────────────

def test_build_dispatcher_modes():
    assert isinstance(build_dispatcher(Settings(JOB_DISPATCH_MODE="http")), HttpDispatcher)
    assert isinstance(build_dispatcher(Settings(JOB_DISPATCH_MODE="inline")), InlineDispatcher)
    with pytest.raises(ConfigurationError):
        build_dispatcher(Settings(JOB_DISPATCH_MODE="carrier-pigeon"))
