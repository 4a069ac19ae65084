"""
Job Processor — the worker side of the chat job pipeline.

    PENDING -> PROCESSING ("Menganalisis data...")
      1. cached school data
      2. retrieval plan from the sheet schemas
      3. filter the sheets by the plan
      4. ("Menghasilkan respons...") answer from the subset
    -> COMPLETED | FAILED

Nothing raised inside the pipeline escapes ``process``: failures become a
FAILED record, and a failure to write that record is logged, not raised.
"""
from __future__ import annotations

import logging
import random
from typing import Any, Optional

from school_assistant.services.answer import AnswerGenerator, AnswerOutcome, build_system_instruction, choose_outcome
from school_assistant.services.data_cache import DataCache
from school_assistant.services.filter_executor import SheetLink, execute_plan
from school_assistant.services.job_manager import MSG_ANALYZING, MSG_GENERATING, JobManager
from school_assistant.services.job_store import Job
from school_assistant.services.retrieval import RetrievalPlanner, build_schema_context

logger = logging.getLogger(__name__)

CHAT_ROLES = ("user", "model")
GENERIC_FAILURE = "Terjadi kesalahan yang tidak diketahui saat memproses permintaan."


class JobNotFoundError(LookupError):
    """Raised when a job record is missing (never created, or expired)."""


class InvalidJobInputError(ValueError):
    """Raised when a stored job has no usable question."""


def split_conversation(job_input: dict[str, Any]) -> tuple[list[dict[str, str]], str]:
    """(history without the newest message, newest user message text)."""
    messages = job_input.get("messages") or []
    if not messages or not isinstance(messages[-1], dict):
        raise InvalidJobInputError("Job input has no messages.")
    question = str(messages[-1].get("text") or "").strip()
    if not question:
        raise InvalidJobInputError("The newest message is empty.")
    history = [
        {"role": m["role"], "text": str(m.get("text") or "")}
        for m in messages[:-1]
        if isinstance(m, dict) and m.get("role") in CHAT_ROLES
    ]
    return history, question


class JobProcessor:
    def __init__(
        self,
        manager: JobManager,
        cache: DataCache,
        planner: RetrievalPlanner,
        answerer: AnswerGenerator,
        default_model: str,
        sample_size: int = 0,
        relationships: Optional[list[list[SheetLink]]] = None,
        full_data_fallback: bool = False,
        school_name: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ):
        self.manager = manager
        self.cache = cache
        self.planner = planner
        self.answerer = answerer
        self.default_model = default_model
        self.sample_size = sample_size
        self.relationships = relationships or []
        self.full_data_fallback = full_data_fallback
        self.school_name = school_name
        self.rng = rng or random.Random()

    async def process(self, job_id: str) -> None:
        try:
            job = await self.manager.get_job(job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found.")
            if job.is_terminal:
                logger.info(f"Job {job_id} is already {job.status.value}; nothing to do.")
                return

            job = await self.manager.mark_processing(job, MSG_ANALYZING)
            result = await self._run_pipeline(job)
            await self.manager.complete_job(job, result)

        except Exception as e:
            logger.error(f"Error processing job {job_id}: {e}", exc_info=True)
            await self._record_failure(job_id, str(e) or GENERIC_FAILURE)

    async def _run_pipeline(self, job: Job) -> str:
        history, question = split_conversation(job.input)
        model = job.input.get("model") or self.default_model

        # 1. Data
        data = await self.cache.get_data()

        # 2. Retrieval plan from schemas only
        schema_context = build_schema_context(data, self.sample_size, rng=self.rng)
        plan = await self.planner.plan(question, schema_context, model)

        # 3. Filter
        subset = execute_plan(plan, data, self.relationships)

        # 4. Generate
        await self.manager.update_message(job, MSG_GENERATING)
        outcome = choose_outcome(plan, subset, self.full_data_fallback)
        logger.info(f"Job {job.job_id}: answer outcome={outcome.value}, sources={list(subset)}")
        instruction = build_system_instruction(
            outcome,
            question,
            data=data if outcome is AnswerOutcome.FULL_DATA else subset,
            school_name=self.school_name,
        )
        return await self.answerer.generate(model, instruction, history, question)

    async def _record_failure(self, job_id: str, error_msg: str) -> None:
        # fail_job re-reads the record; a stale handle is never written back.
        try:
            await self.manager.fail_job(job_id, error_msg)
        except Exception as e:
            logger.critical(f"Could not record failure for job {job_id} ({error_msg}): {e}", exc_info=True)
