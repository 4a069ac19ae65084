"""
Shared fakes for the chat job pipeline: a controllable clock, a scripted
Gemini gateway and a static data fetcher.
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from school_assistant.services.answer import AnswerGenerator
from school_assistant.services.data_cache import DataCache
from school_assistant.core.config import DataSource
from school_assistant.services.job_manager import JobManager
from school_assistant.services.job_processor import JobProcessor
from school_assistant.services.job_store import InMemoryJobStore
from school_assistant.services.retrieval import RetrievalPlanner

SISWA_CSV = (
    "NISN,Nama,Rombel Saat Ini,Jenis Kelamin\n"
    "001,Ahmad Fauzi,7A,L\n"
    "002,Budi Santoso,7B,L\n"
    "003,Citra Lestari,7A,P\n"
)

PRESENSI_CSV = (
    "Tanggal,NISN,Status\n"
    "2024-01-02,001,Hadir\n"
    "2024-01-02,002,Alpa\n"
    "2024-01-03,001,Sakit\n"
)

GURU_CSV = (
    "Nama Guru,Mata Pelajaran\n"
    "Dewi Anggraini,Matematika\n"
    "Eko Prasetyo,Bahasa Indonesia\n"
)

SCHOOL_DATA = {"SISWA": SISWA_CSV, "PRESENSI SHALAT": PRESENSI_CSV, "GURU": GURU_CSV}

SOURCES = [
    DataSource(name="SISWA", url="https://sheets.example/siswa.csv"),
    DataSource(name="PRESENSI SHALAT", url="https://sheets.example/presensi.csv"),
    DataSource(name="GURU", url="https://sheets.example/guru.csv"),
]


# ─── Fakes ───────────────────────────────────────────────────────────────────

class FakeClock:
    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """
    Scripted stand-in for GeminiGateway. Each queued response is returned in
    order; queued exceptions are raised instead.
    """

    def __init__(self, json_responses: Optional[list] = None, chat_responses: Optional[list] = None):
        self.json_responses = list(json_responses or [])
        self.chat_responses = list(chat_responses or [])
        self.json_calls: list[dict[str, Any]] = []
        self.chat_calls: list[dict[str, Any]] = []

    @staticmethod
    def _next(queue: list):
        response = queue.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    async def generate_json(self, model, prompt, response_schema=None, stage="generate_json"):
        self.json_calls.append({"model": model, "prompt": prompt, "stage": stage})
        return self._next(self.json_responses)

    async def chat(self, model, system_instruction, history, message, stage="answer"):
        self.chat_calls.append(
            {"model": model, "system_instruction": system_instruction, "history": list(history), "message": message}
        )
        return self._next(self.chat_responses)

    async def probe(self, model):
        return 1


class StaticFetcher:
    """Returns fixed sheet content and counts how often it was asked."""

    def __init__(self, data: dict[str, str], error: Optional[Exception] = None, delay: float = 0.0):
        self.data = dict(data)
        self.error = error
        self.delay = delay
        self.calls = 0

    async def __call__(self, sources):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return {s.name: self.data[s.name] for s in sources}


class RecordingStore(InMemoryJobStore):
    """In-memory store that remembers every (status, message) it was asked to write."""

    def __init__(self, ttl_seconds: int = 3600, clock=None):
        super().__init__(ttl_seconds, clock=clock or FakeClock())
        self.writes: list[tuple[str, str]] = []

    async def save(self, job) -> None:
        self.writes.append((job.status.value, job.status_message))
        await super().save(job)


def make_processor(
    manager: JobManager,
    gateway: FakeGateway,
    data: Optional[dict[str, str]] = None,
    **kwargs,
) -> JobProcessor:
    cache = DataCache(SOURCES, StaticFetcher(data or SCHOOL_DATA), ttl_seconds=600, clock=FakeClock())
    return JobProcessor(
        manager=manager,
        cache=cache,
        planner=RetrievalPlanner(gateway),
        answerer=AnswerGenerator(gateway),
        default_model="gemini-2.5-flash",
        **kwargs,
    )


# ─── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> RecordingStore:
    return RecordingStore(ttl_seconds=3600, clock=clock)


@pytest.fixture
def manager(store, clock) -> JobManager:
    return JobManager(store, clock=clock)


@pytest.fixture
def user() -> dict[str, Any]:
    return {"id": "admin", "name": "Administrator", "email": "admin@localhost", "isAdmin": True}
