"""
Per-client rate limits (slowapi).

Counters live in Redis so every API process shares one budget per client.
Without Redis each process counts on its own in memory.
"""
import logging

from slowapi import Limiter
from slowapi.util import get_remote_address

from school_assistant.core.config import Settings, settings
from school_assistant.core.redis_check import redis_unavailable_reason

logger = logging.getLogger(__name__)

MEMORY_STORAGE = "memory://"

CHAT_START_LIMIT = "30/minute"
LOGIN_LIMIT = "10/minute"
STARTERS_LIMIT = "20/minute"


def limiter_storage_uri(cfg: Settings) -> str:
    reason = redis_unavailable_reason(cfg.REDIS_URL)
    if reason is None:
        return cfg.REDIS_URL
    logger.warning(f"Rate limits are per process: Redis unavailable ({reason}).")
    return MEMORY_STORAGE


def build_limiter(cfg: Settings) -> Limiter:
    storage_uri = limiter_storage_uri(cfg) if cfg.RATE_LIMIT_ENABLED else MEMORY_STORAGE
    logger.info(
        f"Rate limiting {'on' if cfg.RATE_LIMIT_ENABLED else 'off'} "
        f"(default {cfg.RATE_LIMIT_DEFAULT}, storage {storage_uri.split('://')[0]})"
    )
    return Limiter(
        key_func=get_remote_address,
        enabled=cfg.RATE_LIMIT_ENABLED,
        default_limits=[cfg.RATE_LIMIT_DEFAULT],
        storage_uri=storage_uri,
    )


limiter = build_limiter(settings)


def polling_endpoint(endpoint):
    """
    Mark a route that is polled on a timer (job status while a job runs,
    health checks). It sits outside every limit, the default included.
    """
    return limiter.exempt(endpoint)
