"""
Synchronous Redis reachability check, run once at startup by the components
that fall back to in-process state when Redis is down.
"""
from typing import Optional

import redis


def redis_unavailable_reason(url: Optional[str], timeout_seconds: float = 1.0) -> Optional[str]:
    """None when Redis answers a PING, otherwise why it did not."""
    if not url:
        return "REDIS_URL is not set"
    try:
        client = redis.from_url(url, socket_connect_timeout=timeout_seconds)
        try:
            client.ping()
        finally:
            client.close()
    except (redis.RedisError, OSError, ValueError) as e:
        return str(e) or e.__class__.__name__
    return None
