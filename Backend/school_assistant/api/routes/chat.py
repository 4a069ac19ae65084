"""
Chat Routes — submit a chat job, poll its status, and the internal trigger
that runs the processor.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse

from school_assistant.api.deps import get_job_manager, get_orchestrator, get_processor
from school_assistant.api.schemas import ChatJobRequest, JobAccepted, JobStatusResponse
from school_assistant.core.config import ConfigurationError, Settings
from school_assistant.core.limiter import CHAT_START_LIMIT, limiter, polling_endpoint
from school_assistant.core.security import UserProfile, get_settings, require_internal_secret, require_user
from school_assistant.services.job_manager import JobManager
from school_assistant.services.job_processor import JobProcessor
from school_assistant.services.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/chat/start", status_code=202, response_model=JobAccepted)
@limiter.limit(CHAT_START_LIMIT)
async def start_chat(
    request: Request,
    payload: ChatJobRequest,
    user: UserProfile = Depends(require_user),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
    cfg: Settings = Depends(get_settings),
):
    """
    Accepts the conversation and returns a job id at once.
    The answer is fetched by polling /chat/status.
    """
    if payload.model and payload.model not in cfg.allowed_models:
        return _error(400, f"Model '{payload.model}' is not allowed.")

    messages = [m.model_dump() for m in payload.messages]
    try:
        job_id = await orchestrator.submit(user.model_dump(by_alias=True), messages, payload.model)
    except ConfigurationError as e:
        logger.error(f"Chat start failed: {e}")
        return _error(500, str(e))
    except Exception as e:
        logger.error(f"Chat start failed: {e}", exc_info=True)
        return _error(500, "Failed to start chat job.")

    return JobAccepted(jobId=job_id)


@router.get(
    "/chat/status",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
)
@polling_endpoint
async def get_chat_status(
    request: Request,
    id: Optional[str] = Query(default=None),
    user: UserProfile = Depends(require_user),
    manager: JobManager = Depends(get_job_manager),
):
    """
    Read-only snapshot of a job. Polled every few seconds by the client, so
    it is not rate limited.
    """
    if not id:
        return _error(400, "Job ID is required")

    job = await manager.get_job(id)
    if job is None:
        return _error(404, "Job not found")

    return JobStatusResponse(
        status=job.status.value,
        statusMessage=job.status_message,
        result=job.result,
        error=job.error,
    )


@router.post("/chat/process", dependencies=[Depends(require_internal_secret)])
async def process_chat(
    request: Request,
    background_tasks: BackgroundTasks,
    processor: JobProcessor = Depends(get_processor),
):
    """
    Internal trigger used by the HTTP dispatcher. Acknowledges at once and
    keeps processing after the response is sent.
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        body = None
    job_id = body.get("jobId") if isinstance(body, dict) else None
    if not job_id or not isinstance(job_id, str):
        return _error(400, "Job ID is required")

    background_tasks.add_task(processor.process, job_id)
    logger.info(f"Processing job {job_id} in the background.")
    return {"message": f"Processing job {job_id}"}
