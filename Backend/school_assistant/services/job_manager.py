import logging
import time
import uuid
from typing import Any, Callable, Dict, Optional

from school_assistant.services.job_store import Job, JobStatus, JobStore

logger = logging.getLogger(__name__)

# User-visible progress strings (shown under the chat bubble while polling)
MSG_PENDING = "Menunggu untuk diproses..."
MSG_ANALYZING = "Menganalisis data..."
MSG_GENERATING = "Menghasilkan respons..."
MSG_DONE = "Selesai"
MSG_FAILED = "Gagal"


class InvalidTransitionError(RuntimeError):
    """Raised when a write would move a job out of a terminal state."""


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class JobManager:
    """
    Owns the job state machine on top of a JobStore.

    PENDING -> PROCESSING -> {COMPLETED | FAILED}; PENDING -> FAILED is only
    used when dispatch fails. Terminal states are never left.
    """

    def __init__(self, store: JobStore, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    async def create_job(self, user: Dict[str, Any], job_input: Dict[str, Any]) -> Job:
        now = self.clock()
        job = Job(
            job_id=str(uuid.uuid4()),
            status=JobStatus.PENDING,
            status_message=MSG_PENDING,
            input=job_input,
            user=user,
            created_at=now,
            updated_at=now,
        )
        await self.store.save(job)
        logger.info(f"Job {job.job_id} created for user {user.get('id')}.")
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self.store.get(job_id)

    async def _write(self, job: Job, status: JobStatus, message: str) -> Job:
        if status not in _ALLOWED_TRANSITIONS[job.status]:
            raise InvalidTransitionError(f"Job {job.job_id}: {job.status.value} -> {status.value} is not allowed.")
        job.status = status
        job.status_message = message
        job.updated_at = self.clock()
        await self.store.save(job)
        return job

    async def mark_processing(self, job: Job, message: str = MSG_ANALYZING) -> Job:
        return await self._write(job, JobStatus.PROCESSING, message)

    async def update_message(self, job: Job, message: str) -> Job:
        return await self._write(job, JobStatus.PROCESSING, message)

    async def complete_job(self, job: Job, result: str) -> Job:
        job.result = result
        job = await self._write(job, JobStatus.COMPLETED, MSG_DONE)
        logger.info(f"Job {job.job_id} completed ({len(result)} chars).")
        return job

    async def fail_job(self, job_id: str, error_msg: str) -> Optional[Job]:
        """
        Mark a job FAILED. Always re-reads the record first so the write never
        clobbers a newer state with a stale in-memory copy.
        Returns None if the record no longer exists or is already terminal.
        """
        job = await self.store.get(job_id)
        if job is None:
            logger.error(f"Job {job_id} not found while recording failure: {error_msg}")
            return None
        if job.is_terminal:
            logger.warning(f"Job {job_id} already {job.status.value}; not overwriting with failure: {error_msg}")
            return None
        job.error = error_msg
        job = await self._write(job, JobStatus.FAILED, MSG_FAILED)
        logger.error(f"Job {job_id} marked as FAILED: {error_msg}")
        return job
