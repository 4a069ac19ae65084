"""
Dependency builders.

Process-wide objects (job store, data cache, key rotator, dispatcher) are
built once and cached; everything else is assembled per request. Tests swap
any of them through ``app.dependency_overrides``.
"""
import logging
from functools import lru_cache
from typing import Optional

import httpx
from fastapi import Depends

from school_assistant.core.config import ConfigurationError, Settings, settings
from school_assistant.services.answer import AnswerGenerator
from school_assistant.services.data_cache import DataCache, HttpSourceFetcher
from school_assistant.services.dispatcher import CeleryDispatcher, HttpDispatcher, InlineDispatcher, JobDispatcher
from school_assistant.services.filter_executor import parse_sheet_relationships
from school_assistant.services.gemini_client import GeminiGateway, KeyRotator
from school_assistant.services.job_manager import JobManager
from school_assistant.services.job_processor import JobProcessor
from school_assistant.services.job_store import JobStore, build_job_store
from school_assistant.services.orchestrator import JobOrchestrator
from school_assistant.services.retrieval import RetrievalPlanner

logger = logging.getLogger(__name__)


# ─── Process-wide singletons ─────────────────────────────────────────────────

@lru_cache(maxsize=1)
def get_job_store() -> JobStore:
    return build_job_store(settings)


@lru_cache(maxsize=1)
def get_data_cache() -> DataCache:
    return DataCache(
        settings.data_sources(),
        HttpSourceFetcher(timeout_seconds=settings.DATA_FETCH_TIMEOUT_SECONDS),
        ttl_seconds=settings.DATA_CACHE_TTL_SECONDS,
    )


@lru_cache(maxsize=1)
def get_key_rotator() -> KeyRotator:
    return KeyRotator(settings.gemini_api_keys, timeout_seconds=settings.LLM_TIMEOUT_SECONDS)


# ─── Assembly ────────────────────────────────────────────────────────────────

def build_gateway() -> GeminiGateway:
    return GeminiGateway(get_key_rotator())


def build_processor(manager: JobManager, cfg: Settings = settings) -> JobProcessor:
    """The processor as both the Celery worker and the HTTP trigger use it."""
    gateway = build_gateway()
    return JobProcessor(
        manager=manager,
        cache=get_data_cache(),
        planner=RetrievalPlanner(gateway),
        answerer=AnswerGenerator(gateway),
        default_model=cfg.DEFAULT_MODEL,
        sample_size=cfg.SCHEMA_SAMPLE_ROWS,
        relationships=parse_sheet_relationships(cfg.SHEET_RELATIONSHIPS),
        full_data_fallback=cfg.FULL_DATA_FALLBACK,
        school_name=cfg.SCHOOL_NAME_FULL or cfg.SCHOOL_NAME_SHORT,
    )


def build_dispatcher(cfg: Settings = settings) -> JobDispatcher:
    mode = (cfg.JOB_DISPATCH_MODE or "celery").strip().lower()

    if mode == "http":
        return HttpDispatcher(cfg.APP_BASE_URL, cfg.INTERNAL_API_SECRET)

    if mode == "celery":
        from school_assistant.core.celery_app import celery_app
        from school_assistant.tasks import process_chat_job

        if not celery_app.conf.task_always_eager:
            return CeleryDispatcher(process_chat_job)
        # Eager Celery would run the whole pipeline inside the submit request.
        logger.warning("Celery is in eager mode; dispatching jobs in-process instead.")
    elif mode != "inline":
        raise ConfigurationError(f"Unknown JOB_DISPATCH_MODE '{cfg.JOB_DISPATCH_MODE}'.")

    return InlineDispatcher(lambda: build_processor(JobManager(get_job_store()), cfg))


@lru_cache(maxsize=1)
def get_dispatcher() -> JobDispatcher:
    return build_dispatcher(settings)


# ─── Request-scoped dependencies ─────────────────────────────────────────────

def get_job_manager(store: JobStore = Depends(get_job_store)) -> JobManager:
    return JobManager(store)


def get_gateway() -> GeminiGateway:
    return build_gateway()


def get_processor(manager: JobManager = Depends(get_job_manager)) -> JobProcessor:
    return build_processor(manager)


def get_orchestrator(
    manager: JobManager = Depends(get_job_manager),
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> JobOrchestrator:
    return JobOrchestrator(manager, dispatcher)


def get_google_transport() -> Optional[httpx.AsyncBaseTransport]:
    """The default network transport; tests substitute a mock one."""
    return None
