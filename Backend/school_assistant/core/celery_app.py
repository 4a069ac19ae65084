"""
Celery application for chat jobs.

Redis is both broker and result backend. When it cannot be reached at import
time the app runs tasks eagerly, and the dispatcher then processes jobs
in-process instead.
"""
import logging

from celery import Celery

from school_assistant.core.config import Settings, settings
from school_assistant.core.redis_check import redis_unavailable_reason

logger = logging.getLogger(__name__)

# Longer than the slowest job (two Gemini calls plus the sheet fetch).
VISIBILITY_TIMEOUT_SECONDS = 600


def get_celery_app(cfg: Settings = settings) -> Celery:
    app = Celery(
        "school_assistant_tasks",
        broker=cfg.REDIS_URL,
        backend=cfg.REDIS_URL,
        include=["school_assistant.tasks"],
    )
    app.conf.update(
        # Job records live in the job store; Celery results are only diagnostics.
        result_expires=cfg.JOB_TTL_SECONDS,
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        # A job whose worker dies is redelivered, and the processor skips it if already terminal.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        broker_transport_options={"visibility_timeout": VISIBILITY_TIMEOUT_SECONDS},
    )

    reason = redis_unavailable_reason(cfg.REDIS_URL)
    if reason is None:
        logger.info(f"[Celery] Broker at {cfg.REDIS_URL}")
    else:
        logger.warning(f"[Celery] No broker ({reason}); tasks run eagerly.")
        app.conf.update(task_always_eager=True, task_eager_propagates=True)
    return app


celery_app = get_celery_app()
