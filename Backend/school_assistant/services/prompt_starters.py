"""
Prompt starters — example questions generated from the sheet headers.
"""
from __future__ import annotations

import json
import logging

from google.genai import types

from school_assistant.services.data_cache import DataCache
from school_assistant.services.prompts import render_prompt
from school_assistant.services.retrieval import build_schema_context, extract_json

logger = logging.getLogger(__name__)

STARTER_COUNT = 4

STARTERS_RESPONSE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "questions": types.Schema(type=types.Type.ARRAY, items=types.Schema(type=types.Type.STRING)),
    },
)


def parse_questions(raw_text: str, limit: int = STARTER_COUNT) -> list[str]:
    payload = extract_json(raw_text or "")
    items = payload.get("questions") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        logger.warning("Prompt starter response could not be parsed.")
        return []
    return [q.strip() for q in items if isinstance(q, str) and q.strip()][:limit]


async def generate_prompt_starters(cache: DataCache, gateway, model: str, count: int = STARTER_COUNT) -> list[str]:
    data = await cache.get_data()
    schemas = {name: entry["headers"] for name, entry in build_schema_context(data).items()}
    prompt = render_prompt(
        "prompt_starters.txt",
        count=count,
        schemas=json.dumps(schemas, ensure_ascii=False, indent=2),
    )
    raw = await gateway.generate_json(
        model=model,
        prompt=prompt,
        response_schema=STARTERS_RESPONSE_SCHEMA,
        stage="prompt_starters",
    )
    return parse_questions(raw, count)
