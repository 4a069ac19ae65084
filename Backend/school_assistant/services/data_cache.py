"""
Data Cache — time-boxed, all-or-nothing snapshot of the school sheets.

The snapshot is either fully fresh or fully stale. A refresh fetches every
configured source concurrently; if any fetch fails the whole refresh fails
and the previous snapshot is kept untouched.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Mapping, Optional, Sequence

import httpx

from school_assistant.core.config import ConfigurationError, DataSource

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 10 * 60

SourceFetcher = Callable[[Sequence[DataSource]], Awaitable[Dict[str, str]]]


class DataSourceError(RuntimeError):
    """Raised when a configured data source cannot be fetched."""


@dataclass(frozen=True)
class CacheSnapshot:
    data: Mapping[str, str]
    timestamp: float


class HttpSourceFetcher:
    """Fetches every source concurrently over one httpx client."""

    def __init__(self, timeout_seconds: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def _fetch_one(self, client: httpx.AsyncClient, source: DataSource) -> str:
        try:
            response = await client.get(source.url)
        except httpx.HTTPError as e:
            raise DataSourceError(f"Failed to fetch {source.name} ({source.url}): {e}") from e
        if response.status_code >= 400:
            raise DataSourceError(
                f"Failed to fetch {source.name} ({source.url}): HTTP {response.status_code} {response.reason_phrase}"
            )
        return response.text

    async def __call__(self, sources: Sequence[DataSource]) -> Dict[str, str]:
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds, follow_redirects=True, transport=self.transport
        ) as client:
            texts = await asyncio.gather(*(self._fetch_one(client, s) for s in sources))
        return {source.name: text for source, text in zip(sources, texts)}


class DataCache:
    """
    Owns one snapshot and its refresh policy. Clock and fetcher are injected
    so tests control time and nothing leaks between instances.
    """

    def __init__(
        self,
        sources: Sequence[DataSource],
        fetcher: SourceFetcher,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sources = list(sources)
        self.fetcher = fetcher
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._snapshot: Optional[CacheSnapshot] = None
        self._refresh_task: Optional[asyncio.Task] = None

    @property
    def snapshot(self) -> Optional[CacheSnapshot]:
        return self._snapshot

    def is_stale(self) -> bool:
        if self._snapshot is None:
            return True
        return self.clock() - self._snapshot.timestamp > self.ttl_seconds

    def invalidate(self) -> None:
        self._snapshot = None

    async def get_data(self) -> Dict[str, str]:
        if not self.is_stale():
            logger.debug("Using cached school data.")
            return dict(self._snapshot.data)

        # Share one in-flight refresh between callers on the same loop.
        task = self._refresh_task
        if task is None or task.done() or task.get_loop() is not asyncio.get_running_loop():
            task = asyncio.ensure_future(self._refresh())
            self._refresh_task = task
        try:
            snapshot = await asyncio.shield(task)
        finally:
            if self._refresh_task is task and task.done():
                self._refresh_task = None
        return dict(snapshot.data)

    async def _refresh(self) -> CacheSnapshot:
        if not self.sources:
            raise ConfigurationError("ORGANIZATION_DATA_SOURCES environment variable is not configured or empty.")

        logger.info(f"Cache is stale or empty. Fetching {len(self.sources)} data source(s)...")
        started = self.clock()
        data = await self.fetcher(self.sources)

        snapshot = CacheSnapshot(data=dict(data), timestamp=started)
        self._snapshot = snapshot
        logger.info(f"School data cache refreshed: {', '.join(snapshot.data)}")
        return snapshot
