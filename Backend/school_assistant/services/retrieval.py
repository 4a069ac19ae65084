"""
Retrieval Planner — one LLM call that decides which sheets and row filters
are relevant to a question, given only the sheet schemas.

The planner's output is treated as untrusted input: it is parsed defensively
and anything malformed degrades to an empty plan rather than an error.
"""
from __future__ import annotations

import json
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from google.genai import types

from school_assistant.services.prompts import render_prompt
from school_assistant.services.tabular import read_table, sample_rows

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)

PLAN_RESPONSE_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "searches": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "sheetName": types.Schema(type=types.Type.STRING),
                    "filters": types.Schema(
                        type=types.Type.ARRAY,
                        items=types.Schema(
                            type=types.Type.OBJECT,
                            properties={
                                "column": types.Schema(type=types.Type.STRING),
                                "value": types.Schema(type=types.Type.STRING),
                            },
                        ),
                    ),
                },
            ),
        )
    },
)


@dataclass(frozen=True)
class RowFilter:
    column: str
    value: str


@dataclass(frozen=True)
class PlanEntry:
    source_name: str
    filters: tuple[RowFilter, ...] = ()


@dataclass
class RetrievalPlan:
    entries: list[PlanEntry] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.entries


# ─── Schema Context ──────────────────────────────────────────────────────────

def build_schema_context(
    data: Mapping[str, str],
    sample_size: int = 0,
    rng: Optional[random.Random] = None,
) -> dict[str, dict[str, Any]]:
    """
    Compact description of each sheet: column headers and, optionally, a few
    random rows. Never the full data.
    """
    context: dict[str, dict[str, Any]] = {}
    for name, csv_text in data.items():
        if not csv_text:
            continue
        df = read_table(csv_text)
        if not df.columns:
            continue
        entry: dict[str, Any] = {"headers": df.columns}
        if sample_size > 0:
            seed = rng.randrange(2**32) if rng else None
            entry["samples"] = sample_rows(df, sample_size, seed=seed)
        context[name] = entry
    return context


# ─── Plan Parsing ────────────────────────────────────────────────────────────

def extract_json(text: str) -> Any:
    """Decode JSON from model output, looking inside a code fence or surrounding prose. None when nothing decodes."""
    text = text.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        return json.loads(text)
    except ValueError:
        pass

    # Prose around the JSON: take the first decodable object or array.
    decoder = json.JSONDecoder()
    for match in re.finditer(r"[\[{]", text):
        try:
            value, _ = decoder.raw_decode(text, match.start())
            return value
        except ValueError:
            continue
    return None


def _clean_scalar(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _parse_filters(raw_filters: Any) -> tuple[RowFilter, ...]:
    if not isinstance(raw_filters, list):
        return ()
    filters = []
    for raw in raw_filters:
        if not isinstance(raw, dict):
            continue
        column = _clean_scalar(raw.get("column"))
        value = _clean_scalar(raw.get("value"))
        if column and value:
            filters.append(RowFilter(column=column, value=value))
    return tuple(filters)


def parse_plan(raw_text: Optional[str]) -> RetrievalPlan:
    """
    Parse planner output into a RetrievalPlan. Accepts ``{"searches": [...]}``,
    ``{"plan": [...]}`` or a bare list, with ``sheetName`` or ``sourceName``
    per entry. Unparseable output yields an empty plan.
    """
    payload = extract_json(raw_text or "")

    if isinstance(payload, dict):
        items = payload.get("searches", payload.get("plan"))
    else:
        items = payload

    if not isinstance(items, list):
        logger.warning(f"Retrieval plan could not be parsed; treating as empty. Raw: {(raw_text or '')[:200]!r}")
        return RetrievalPlan()

    entries = []
    for item in items:
        if not isinstance(item, dict):
            continue
        name = _clean_scalar(item.get("sheetName", item.get("sourceName")))
        if not name:
            continue
        entries.append(PlanEntry(source_name=name, filters=_parse_filters(item.get("filters"))))
    return RetrievalPlan(entries=entries)


# ─── Planner ─────────────────────────────────────────────────────────────────

class RetrievalPlanner:
    def __init__(self, gateway):
        self.gateway = gateway

    async def plan(self, question: str, schema_context: Mapping[str, Any], model: str) -> RetrievalPlan:
        prompt = render_prompt(
            "retrieval_plan.txt",
            question=question,
            schemas=json.dumps(schema_context, ensure_ascii=False),
        )
        raw = await self.gateway.generate_json(
            model=model,
            prompt=prompt,
            response_schema=PLAN_RESPONSE_SCHEMA,
            stage="retrieval",
        )
        plan = parse_plan(raw)
        logger.info(
            f"Retrieval plan: {len(plan.entries)} source(s) "
            f"{[(e.source_name, len(e.filters)) for e in plan.entries]}"
        )
        return plan
