"""
Gemini access with credential rotation.

Every logical call runs through ``KeyRotator.run``: quota / rate-limit errors
move on to the next key in the pool, anything else fails fast, and each
attempt is bounded by a hard timeout so a hung upstream call cannot leave a
job in PROCESSING until its record expires.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, TypeVar

from google import genai
from google.genai import errors, types

from school_assistant.core.config import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ClientFactory = Callable[[str], Any]

ALL_KEYS_BUSY_MESSAGE = (
    "Semua koneksi API sedang sibuk karena batas penggunaan telah tercapai. "
    "Silakan coba lagi dalam satu menit."
)


# ─── Custom Exceptions ───────────────────────────────────────────────────────
class MissingAPIKeyError(ConfigurationError):
    """Raised when GEMINI_API_KEYS is empty."""


class AllKeysBusyError(RuntimeError):
    """Raised when every key in the pool hit its quota within one logical call."""

    def __init__(self, message: str = ALL_KEYS_BUSY_MESSAGE):
        super().__init__(message)


class StageTimeoutError(TimeoutError):
    """Raised when a single Gemini attempt exceeds the configured timeout."""


def is_quota_error(exc: BaseException) -> bool:
    if isinstance(exc, errors.APIError):
        if getattr(exc, "code", None) == 429:
            return True
        if str(getattr(exc, "status", "") or "").upper() == "RESOURCE_EXHAUSTED":
            return True
    message = str(exc).lower()
    return "429" in message or "resource_exhausted" in message or "quota" in message


def _default_client_factory(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


class KeyRotator:
    """
    Round-robin over a pool of API keys. The rotation index belongs to the
    instance: a successful call moves it past the key that succeeded, a
    non-retriable error moves it past the failing key.
    """

    def __init__(
        self,
        api_keys: Sequence[str],
        client_factory: Optional[ClientFactory] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.api_keys = [k for k in api_keys if k]
        self.client_factory = client_factory or _default_client_factory
        self.timeout_seconds = timeout_seconds
        self._index = 0
        self._clients: dict[int, Any] = {}

    @property
    def next_index(self) -> int:
        return self._index

    def client_for(self, position: int) -> Any:
        if not self.api_keys:
            raise MissingAPIKeyError("GEMINI_API_KEYS environment variable is not configured or empty.")
        return self._client(position % len(self.api_keys))

    def _client(self, position: int) -> Any:
        # One client per key for the life of the rotator.
        if position not in self._clients:
            self._clients[position] = self.client_factory(self.api_keys[position])
        return self._clients[position]

    async def aclose(self) -> None:
        """Close the cached clients. Needed before the event loop that used them ends."""
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            await client.aio.aclose()

    async def _attempt(self, action: Callable[[Any], Awaitable[T]], client: Any, stage: str) -> T:
        if not self.timeout_seconds:
            return await action(client)
        try:
            return await asyncio.wait_for(action(client), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise StageTimeoutError(
                f"Gemini call ({stage}) timed out after {self.timeout_seconds:g} s."
            ) from e

    async def run(self, action: Callable[[Any], Awaitable[T]], stage: str = "llm") -> T:
        if not self.api_keys:
            raise MissingAPIKeyError("GEMINI_API_KEYS environment variable is not configured or empty.")

        pool_size = len(self.api_keys)
        start = self._index % pool_size

        for offset in range(pool_size):
            current = (start + offset) % pool_size
            client = self._client(current)
            logger.info(f"[{stage}] Attempting Gemini call with key index {current}.")
            try:
                result = await self._attempt(action, client, stage)
            except Exception as e:
                if is_quota_error(e):
                    logger.warning(f"[{stage}] Key index {current} is rate-limited. Trying next key...")
                    continue
                # Don't start the next call on a key that just failed hard.
                self._index = (current + 1) % pool_size
                logger.error(f"[{stage}] Non-retriable error with key index {current}: {e}")
                raise

            self._index = (current + 1) % pool_size
            return result

        logger.warning(f"[{stage}] All {pool_size} API key(s) are currently rate-limited.")
        raise AllKeysBusyError()


def _to_content(message: Mapping[str, Any]) -> types.Content:
    return types.Content(role=message["role"], parts=[types.Part(text=message["text"])])


class GeminiGateway:
    """The two Gemini call shapes the pipeline needs, plus a connectivity probe."""

    def __init__(self, rotator: KeyRotator):
        self.rotator = rotator

    async def generate_json(
        self,
        model: str,
        prompt: str,
        response_schema: Any = None,
        stage: str = "generate_json",
    ) -> str:
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=response_schema,
        )

        async def action(client) -> str:
            response = await client.aio.models.generate_content(model=model, contents=prompt, config=config)
            return response.text or ""

        return await self.rotator.run(action, stage=stage)

    async def chat(
        self,
        model: str,
        system_instruction: str,
        history: Sequence[Mapping[str, Any]],
        message: str,
        stage: str = "answer",
    ) -> str:
        contents = [_to_content(m) for m in history]
        config = types.GenerateContentConfig(system_instruction=system_instruction)

        async def action(client) -> str:
            chat = client.aio.chats.create(model=model, config=config, history=contents)
            response = await chat.send_message(message)
            return response.text or ""

        return await self.rotator.run(action, stage=stage)

    async def probe(self, model: str) -> int:
        """Cheap validity check of the first key (token count of a fixed string)."""
        client = self.rotator.client_for(0)
        response = await client.aio.models.count_tokens(model=model, contents="hello")
        return response.total_tokens or 0
