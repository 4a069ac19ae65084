import asyncio
import logging
import threading

from school_assistant.core.celery_app import celery_app
from school_assistant.core.config import settings
from school_assistant.services.job_manager import JobManager
from school_assistant.services.job_store import build_job_store

logger = logging.getLogger(__name__)


def run_async_wrapper(coro):
    """
    Run an async coroutine synchronously, handling existing event loops.
    If a loop is already running (e.g. in Celery eager mode/API thread), run in a separate thread.
    Otherwise, use asyncio.run().
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        logger.info("Event loop detected. Running async task in separate thread.")
        result = None
        exception = None

        def run_in_thread():
            nonlocal result, exception
            try:
                result = asyncio.run(coro)
            except Exception as e:
                exception = e

        thread = threading.Thread(target=run_in_thread)
        thread.start()
        thread.join()

        if exception:
            raise exception
        return result
    return asyncio.run(coro)


async def _process(job_id: str) -> None:
    # The Redis and Gemini clients are bound to this invocation's event loop.
    from school_assistant.api.deps import build_processor, get_key_rotator

    store = build_job_store(settings)
    try:
        await build_processor(JobManager(store)).process(job_id)
    finally:
        await store.close()
        await get_key_rotator().aclose()


@celery_app.task(bind=True, name="school_assistant.tasks.process_chat_job")
def process_chat_job(self, job_id: str):
    """
    Worker entry point: the job id is the only payload, the record itself is
    read from the store. Failures are written to the job, never retried.
    """
    logger.info(f"Worker picked up job {job_id} (task {self.request.id}).")
    run_async_wrapper(_process(job_id))
    return {"jobId": job_id}
