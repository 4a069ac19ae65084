import logging
from typing import Any, Dict, List, Optional

from school_assistant.services.dispatcher import JobDispatcher
from school_assistant.services.job_manager import JobManager

logger = logging.getLogger(__name__)

DISPATCH_FAILURE_MESSAGE = "Gagal memulai pemrosesan."


class JobOrchestrator:
    """
    Accepts chat requests: writes a PENDING job, hands the job id to the
    dispatcher and returns without waiting for any processing.
    """

    def __init__(self, manager: JobManager, dispatcher: JobDispatcher):
        self.manager = manager
        self.dispatcher = dispatcher

    async def submit(self, user: Dict[str, Any], messages: List[Dict[str, str]], model: Optional[str] = None) -> str:
        # Fail before creating a record the processor could never pick up.
        self.dispatcher.check_ready()

        job = await self.manager.create_job(user, {"messages": messages, "model": model})
        await self.dispatcher.enqueue(job.job_id, self._on_dispatch_failure)
        return job.job_id

    async def _on_dispatch_failure(self, job_id: str, reason: str) -> None:
        logger.error(f"Failed to trigger processing for job {job_id}: {reason}")
        try:
            await self.manager.fail_job(job_id, DISPATCH_FAILURE_MESSAGE)
        except Exception as e:
            logger.error(f"Could not mark job {job_id} as FAILED after dispatch failure: {e}")
