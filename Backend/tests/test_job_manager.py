"""
test_job_manager.py
~~~~~~~~~~~~~~~~~~~
The job state machine: PENDING -> PROCESSING -> COMPLETED | FAILED, with
terminal states never left and failures always written from a fresh read.
"""
import asyncio

import pytest

from school_assistant.services.job_manager import (
    MSG_ANALYZING,
    MSG_DONE,
    MSG_FAILED,
    MSG_GENERATING,
    MSG_PENDING,
    InvalidTransitionError,
)
from school_assistant.services.job_store import JobStatus

INPUT = {"messages": [{"role": "user", "text": "Berapa jumlah siswa?"}], "model": None}


def test_create_job_is_pending(manager, store, user):
    job = asyncio.run(manager.create_job(user, INPUT))

    stored = asyncio.run(store.get(job.job_id))
    assert stored.status is JobStatus.PENDING
    assert stored.status_message == MSG_PENDING
    assert stored.input == INPUT
    assert stored.user["id"] == "admin"


def test_job_ids_are_unique(manager, user):
    ids = {asyncio.run(manager.create_job(user, INPUT)).job_id for _ in range(5)}
    assert len(ids) == 5


def test_happy_path_transitions(manager, store, clock, user):
    async def run():
        job = await manager.create_job(user, INPUT)
        clock.advance(1)
        job = await manager.mark_processing(job, MSG_ANALYZING)
        job = await manager.update_message(job, MSG_GENERATING)
        clock.advance(1)
        return await manager.complete_job(job, "Ada 3 siswa.")

    job = asyncio.run(run())
    assert store.writes == [
        ("PENDING", MSG_PENDING),
        ("PROCESSING", MSG_ANALYZING),
        ("PROCESSING", MSG_GENERATING),
        ("COMPLETED", MSG_DONE),
    ]
    assert job.result == "Ada 3 siswa."
    assert job.updated_at > job.created_at


def test_completed_job_cannot_go_back(manager, user):
    async def run():
        job = await manager.create_job(user, INPUT)
        job = await manager.mark_processing(job)
        job = await manager.complete_job(job, "done")
        await manager.mark_processing(job)

    with pytest.raises(InvalidTransitionError):
        asyncio.run(run())


def test_pending_cannot_complete_directly(manager, user):
    async def run():
        job = await manager.create_job(user, INPUT)
        await manager.complete_job(job, "done")

    with pytest.raises(InvalidTransitionError):
        asyncio.run(run())


# ─── Failure Recording ───────────────────────────────────────────────────────

def test_fail_job_from_pending(manager, store, user):
    """Dispatch failures fail a job that never left PENDING."""
    job = asyncio.run(manager.create_job(user, INPUT))
    failed = asyncio.run(manager.fail_job(job.job_id, "Gagal memulai pemrosesan."))

    assert failed.status is JobStatus.FAILED
    stored = asyncio.run(store.get(job.job_id))
    assert stored.status_message == MSG_FAILED
    assert stored.error == "Gagal memulai pemrosesan."


def test_fail_job_does_not_clobber_completed(manager, store, user):
    """A stale in-memory handle must not overwrite a newer terminal record."""
    async def run():
        job = await manager.create_job(user, INPUT)
        job = await manager.mark_processing(job)
        await manager.complete_job(job, "jawaban")
        return job.job_id, await manager.fail_job(job.job_id, "late failure")

    job_id, failed = asyncio.run(run())
    assert failed is None
    job = asyncio.run(store.get(job_id))
    assert job.status is JobStatus.COMPLETED
    assert job.error is None


def test_fail_job_on_missing_record(manager):
    assert asyncio.run(manager.fail_job("gone", "boom")) is None


def test_fail_job_on_expired_record(manager, clock, user):
    job = asyncio.run(manager.create_job(user, INPUT))
    clock.advance(3600)
    assert asyncio.run(manager.fail_job(job.job_id, "boom")) is None
