"""
Session Store — durable key-value persistence of chat job records.

Records are JSON documents under ``job:<jobId>`` with a fixed TTL that is
re-applied on every write. There is no delete; records disappear by expiry.
"""
import abc
import json
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

import redis.asyncio as aioredis

from school_assistant.core.config import Settings
from school_assistant.core.redis_check import redis_unavailable_reason

logger = logging.getLogger(__name__)

JOB_KEY_PREFIX = "job:"


def job_key(job_id: str) -> str:
    return f"{JOB_KEY_PREFIX}{job_id}"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class Job:
    job_id: str
    status: JobStatus
    status_message: str
    input: Dict[str, Any]
    user: Dict[str, Any]
    created_at: float
    updated_at: float
    result: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "jobId": self.job_id,
            "status": self.status.value,
            "statusMessage": self.status_message,
            "input": self.input,
            "user": self.user,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            job_id=data["jobId"],
            status=JobStatus(data["status"]),
            status_message=data.get("statusMessage", ""),
            input=data.get("input") or {},
            user=data.get("user") or {},
            created_at=data.get("createdAt", 0.0),
            updated_at=data.get("updatedAt", 0.0),
            result=data.get("result"),
            error=data.get("error"),
        )


class JobStore(abc.ABC):
    """
    Abstract job persistence. ``save`` must be an atomic whole-record write.
    """

    @abc.abstractmethod
    async def get(self, job_id: str) -> Optional[Job]:
        """Return the stored job, or None if unknown or expired."""

    @abc.abstractmethod
    async def save(self, job: Job) -> None:
        """Write the whole record and (re)apply the TTL."""

    async def close(self) -> None:
        """Release connections held by the store."""


class RedisJobStore(JobStore):
    """Stores jobs in Redis with SET ... EX."""

    def __init__(self, client, ttl_seconds: int):
        self.client = client
        self.ttl_seconds = ttl_seconds

    async def get(self, job_id: str) -> Optional[Job]:
        raw = await self.client.get(job_key(job_id))
        if raw is None:
            return None
        return Job.from_dict(json.loads(raw))

    async def save(self, job: Job) -> None:
        await self.client.set(job_key(job.job_id), json.dumps(job.to_dict()), ex=self.ttl_seconds)

    async def close(self) -> None:
        await self.client.aclose()


@dataclass
class _Entry:
    payload: str
    expires_at: float


class InMemoryJobStore(JobStore):
    """
    Process-local store with the same TTL semantics as Redis.
    Suitable for development and tests; not shared between processes.
    """

    def __init__(self, ttl_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, _Entry] = {}

    async def get(self, job_id: str) -> Optional[Job]:
        key = job_key(job_id)
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return Job.from_dict(json.loads(entry.payload))

    async def save(self, job: Job) -> None:
        self._entries[job_key(job.job_id)] = _Entry(
            payload=json.dumps(job.to_dict()),
            expires_at=self.clock() + self.ttl_seconds,
        )


# ─── Factory ─────────────────────────────────────────────────────────────────

def build_job_store(cfg: Settings) -> JobStore:
    """
    Redis when reachable, otherwise an in-memory store (single process only).
    """
    reason = redis_unavailable_reason(cfg.REDIS_URL)
    if reason is None:
        logger.info(f"Job store connected to Redis at {cfg.REDIS_URL}")
        return RedisJobStore(aioredis.from_url(cfg.REDIS_URL, decode_responses=True), cfg.JOB_TTL_SECONDS)
    logger.warning(
        f"Job store: Redis not available ({reason}). Falling back to in-memory storage; "
        "jobs will not be visible to other processes."
    )
    return InMemoryJobStore(cfg.JOB_TTL_SECONDS)
