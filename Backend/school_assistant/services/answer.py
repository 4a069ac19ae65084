"""
Answer Generator — the second Gemini call, constrained to the data the
retrieval step selected.
"""
from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from school_assistant.services.prompts import render_prompt
from school_assistant.services.retrieval import RetrievalPlan

logger = logging.getLogger(__name__)


class AnswerOutcome(str, Enum):
    DATA = "data"                  # plan matched rows: answer from the subset only
    NO_MATCH = "no_match"          # plan named sources but no rows matched
    OUT_OF_SCOPE = "out_of_scope"  # planner found nothing relevant
    FULL_DATA = "full_data"        # out of scope, but fallback to the whole cache is enabled


_TEMPLATES = {
    AnswerOutcome.DATA: "answer_data.txt",
    AnswerOutcome.NO_MATCH: "answer_no_match.txt",
    AnswerOutcome.OUT_OF_SCOPE: "answer_out_of_scope.txt",
    AnswerOutcome.FULL_DATA: "answer_full_data.txt",
}


class EmptyAnswerError(RuntimeError):
    """Raised when Gemini returns no text for the final answer."""


def choose_outcome(plan: RetrievalPlan, subset: Mapping[str, str], full_data_fallback: bool = False) -> AnswerOutcome:
    if plan.is_empty:
        return AnswerOutcome.FULL_DATA if full_data_fallback else AnswerOutcome.OUT_OF_SCOPE
    if not subset:
        return AnswerOutcome.NO_MATCH
    return AnswerOutcome.DATA


def build_system_instruction(
    outcome: AnswerOutcome,
    question: str,
    data: Optional[Mapping[str, str]] = None,
    school_name: Optional[str] = None,
) -> str:
    """Render the system instruction for the chosen outcome."""
    data_json = json.dumps(dict(data or {}), ensure_ascii=False, indent=2)
    instruction = render_prompt(
        _TEMPLATES[outcome],
        question=question,
        data_json=data_json,
        school_name=school_name,
    )
    if outcome in (AnswerOutcome.DATA, AnswerOutcome.FULL_DATA):
        instruction = f"{instruction}\n\n{render_prompt('chart_instructions.txt')}"
    return instruction


class AnswerGenerator:
    def __init__(self, gateway):
        self.gateway = gateway

    async def generate(
        self,
        model: str,
        system_instruction: str,
        history: Sequence[Mapping[str, Any]],
        question: str,
    ) -> str:
        text = await self.gateway.chat(
            model=model,
            system_instruction=system_instruction,
            history=history,
            message=question,
            stage="answer",
        )
        if not text or not text.strip():
            raise EmptyAnswerError("Gemini returned an empty response body.")
        logger.debug(f"Answer generated — {len(text)} characters.")
        return text.strip()
