"""
Task executor: one attempt of one (economy x question) task.

Pipeline per task:

    catalogue lookup -> prompt version gate -> prompt rendering ->
    retrieval policy -> provider call -> output recovery -> cost ->
    persisted result (+ draft promotion for verified output)

Every attempt writes exactly one ai_task_results row and bumps the
request counters, whatever happens. The result row, the counters and the
draft promotion are written in one transaction.

Outcomes (ExecutionOutcome.kind):
    missing_data, skipped_dependency, missing_prompt, unsupported_provider,
    retrieval_blocked, missing_config, provider_error, format_invalid,
    completed
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ai_research_engine.config.schema import EngineSettings
from ai_research_engine.extractor import parse_answer
from ai_research_engine.llm_runner.models import (
    InvokeOptions,
    ProviderAdapter,
    ProviderResult,
)
from ai_research_engine.prompting import (
    PromptContext,
    assemble_prompt,
    render_question_prompt,
)
from ai_research_engine.retrieval.augmenter import RetrievalAugmenter
from ai_research_engine.storage import repository
from ai_research_engine.storage.db import connect
from ai_research_engine.utils.cost import COST_CURRENCY, estimate_cost
from ai_research_engine.utils.logging import log_with_context
from ai_research_engine.utils.time import elapsed_ms, utc_now, utc_timestamp

from .models import (
    ERROR_API,
    ERROR_DEPENDENCY_LOCKED,
    ERROR_MISSING_CONFIG,
    ERROR_MISSING_DATA,
    ERROR_MISSING_PROMPT,
    ERROR_PARSE,
    ERROR_QUOTA_EXCEEDED,
    ERROR_UNSUPPORTED_PROVIDER,
    RESULT_COMPLETED,
    RESULT_FAILED,
    RESULT_FORMAT_INVALID,
    RESULT_SKIPPED_DEPENDENCY,
    AIRequest,
    Batch,
    Model,
    PromptVersion,
    Provider,
    Task,
    TaskResult,
)

logger = logging.getLogger(__name__)

MISSING_PROMPT_TEXT = (
    "Missing question prompt from Question Library "
    "(QuestionPromptVersion.prompt_text is empty or not found). AI execution blocked."
)
MISSING_PROMPT_AUDIT_ACTION = "ai_run_failed_missing_prompt"
NO_TEXT_EXTRACTED_TEXT = (
    "Provider response contained no extractable text; "
    "stored full response JSON in output_raw_text for debugging."
)


@dataclass(frozen=True)
class RequestContext:
    """
    Everything shared by all tasks of one AI request.

    Attributes:
        adapter: Provider adapter, None when the provider type is unsupported
        adapter_error: Reason the adapter could not be built
    """

    request: AIRequest
    provider: Provider
    model: Model
    batch: Batch
    adapter: ProviderAdapter | None
    augmenter: RetrievalAugmenter
    adapter_error: str | None = None


@dataclass
class ExecutionOutcome:
    kind: str
    result: TaskResult
    result_id: int | None = None
    draft_written: bool = False

    @property
    def succeeded(self) -> bool:
        return self.result.status == RESULT_COMPLETED


def select_prompt_version(versions: list[PromptVersion]) -> PromptVersion | None:
    """
    Pick the prompt version to use for a question.

    The active version with the highest version_number wins; if none is
    active, the highest version_number overall.
    """
    if not versions:
        return None

    active = [version for version in versions if version.is_active]
    candidates = active or versions
    return max(candidates, key=lambda version: version.version_number)


def economy_context_snapshot(
    economy_id: str, economy_name: str, version: PromptVersion, question_prompt: str
) -> dict[str, Any]:
    """Audit snapshot stored with each attempt that reached prompt rendering."""
    return {
        "economy_id": economy_id,
        "economy_name": economy_name,
        "prompt_version": {
            "id": version.id,
            "version_number": version.version_number,
            "created_at": version.created_at,
            "is_active": version.is_active,
            "question_prompt_text": question_prompt,
        },
    }


class TaskExecutor:
    """
    Executes and persists task attempts.

    Attributes:
        db_path: SQLite database path
        settings: Engine settings (timeouts, token cap, skip_locked_tasks)
    """

    def __init__(self, db_path: str, settings: EngineSettings | None = None):
        self.db_path = db_path
        self.settings = settings or EngineSettings()

    async def execute(self, ctx: RequestContext, task: Task) -> ExecutionOutcome:
        """
        Run one attempt and persist it.

        Unexpected errors inside the attempt are recorded as failed/API_ERROR;
        only a failure to persist the attempt propagates.

        Args:
            ctx: Request-level context
            task: Task to attempt

        Returns:
            ExecutionOutcome with the persisted result
        """
        started = utc_now()

        try:
            kind, result = await self._attempt(ctx, task, started)
        except Exception as e:
            log_with_context(
                logger,
                logging.ERROR,
                f"Unexpected error while executing task {task.id}: {e}",
                context={"task_id": task.id},
                request_id=ctx.request.id,
                exc_info=True,
            )
            kind = "provider_error"
            result = self._result(
                ctx, task, started, RESULT_FAILED, error_code=ERROR_API, error_text=str(e)
            )

        outcome = ExecutionOutcome(kind=kind, result=result)
        self._persist(ctx, task, outcome)

        log_with_context(
            logger,
            logging.INFO,
            f"Task {task.id} finished: {kind}",
            context={
                "task_id": task.id,
                "status": result.status,
                "error_code": result.error_code,
                "tokens_in": result.tokens_in,
                "tokens_out": result.tokens_out,
                "cost_estimate": result.cost_estimate,
                "draft_written": outcome.draft_written,
            },
            request_id=ctx.request.id,
        )
        return outcome

    async def _attempt(
        self, ctx: RequestContext, task: Task, started: datetime
    ) -> tuple[str, TaskResult]:
        if self.settings.skip_locked_tasks and task.is_locked:
            return "skipped_dependency", self._result(
                ctx,
                task,
                started,
                RESULT_SKIPPED_DEPENDENCY,
                error_code=ERROR_DEPENDENCY_LOCKED,
                error_text="Task dependency is locked; AI execution skipped.",
            )

        with connect(self.db_path) as conn:
            economy = repository.get_economy(conn, task.economy_id)
            question = repository.get_question(conn, task.question_id)
            group = None
            versions: list[PromptVersion] = []
            if question is not None:
                versions = repository.list_prompt_versions(conn, question.id)
                if question.group_id:
                    group = repository.get_question_group(conn, question.group_id)

        if economy is None or question is None:
            return "missing_data", self._result(
                ctx,
                task,
                started,
                RESULT_FAILED,
                error_code=ERROR_MISSING_DATA,
                error_text="Economy or question not found",
            )

        version = select_prompt_version(versions)
        if version is None or not (version.prompt_text or "").strip():
            self._record_missing_prompt(ctx, task, question.id, question.question_code)
            return "missing_prompt", self._result(
                ctx,
                task,
                started,
                RESULT_FAILED,
                error_code=ERROR_MISSING_PROMPT,
                error_text=MISSING_PROMPT_TEXT,
                prompt_rendered_text="",
            )

        context = PromptContext.build(
            economy,
            question,
            ctx.batch,
            group,
            default_year=self.settings.default_reporting_year,
        )
        question_prompt = render_question_prompt(version.prompt_text, context)
        audit = {
            "prompt_version_id": version.id,
            "economy_context": economy_context_snapshot(
                economy.id, economy.name, version, question_prompt
            ),
        }

        if ctx.adapter is None:
            return "unsupported_provider", self._result(
                ctx,
                task,
                started,
                RESULT_FAILED,
                error_code=ERROR_UNSUPPORTED_PROVIDER,
                error_text=ctx.adapter_error or "Unsupported provider type",
                prompt_rendered_text=question_prompt,
                **audit,
            )

        retrieval = await ctx.augmenter.gather(
            ctx.request.retrieval_method, economy.name, question.question_text
        )
        if retrieval.blocked:
            kind = (
                "missing_config"
                if retrieval.error_code == ERROR_MISSING_CONFIG
                else "retrieval_blocked"
            )
            return kind, self._result(
                ctx,
                task,
                started,
                RESULT_FAILED,
                error_code=retrieval.error_code,
                error_text=retrieval.error_text,
                prompt_rendered_text=question_prompt,
                **audit,
            )

        prompt = assemble_prompt(question_prompt, context, evidence=retrieval.evidence)
        options = InvokeOptions(
            max_output_tokens=self.settings.max_output_tokens,
            timeout=self.settings.request_timeout_seconds,
            enable_web_search=retrieval.native_web_search,
        )

        response = await ctx.adapter.invoke(ctx.model.model_id, prompt, options)

        received = {
            "prompt_rendered_text": prompt,
            "tokens_in": response.tokens_in,
            "tokens_out": response.tokens_out,
            **audit,
        }

        # Output the vendor returned is kept even if interpreting it fails
        try:
            return self._interpret(ctx, task, started, question.answer_type, response, received)
        except Exception as e:
            log_with_context(
                logger,
                logging.ERROR,
                f"Failed to process provider response for task {task.id}: {e}",
                context={"task_id": task.id},
                request_id=ctx.request.id,
                exc_info=True,
            )
            return "provider_error", self._result(
                ctx,
                task,
                started,
                RESULT_FAILED,
                error_code=ERROR_API,
                error_text=str(e) or type(e).__name__,
                output_raw_text=response.raw_text,
                **received,
            )

    def _interpret(
        self,
        ctx: RequestContext,
        task: Task,
        started: datetime,
        answer_type: str,
        response: ProviderResult,
        received: dict[str, Any],
    ) -> tuple[str, TaskResult]:
        cost = 0.0
        if response.usage_reported:
            cost = estimate_cost(response.tokens_in, response.tokens_out, ctx.model.pricing)

        if not response.succeeded:
            return "provider_error", self._result(
                ctx,
                task,
                started,
                RESULT_FAILED,
                error_code=ERROR_QUOTA_EXCEEDED if response.is_quota_exhausted else ERROR_API,
                error_text=response.error,
                cost_estimate=cost,
                **received,
            )

        if not response.text_extracted:
            return "format_invalid", self._result(
                ctx,
                task,
                started,
                RESULT_FORMAT_INVALID,
                error_code=ERROR_PARSE,
                error_text=NO_TEXT_EXTRACTED_TEXT,
                output_raw_text=response.raw_text,
                cost_estimate=cost,
                **received,
            )

        parsed = parse_answer(response.raw_text, answer_type)

        if not parsed.recovered:
            return "format_invalid", self._result(
                ctx,
                task,
                started,
                RESULT_FORMAT_INVALID,
                error_code=parsed.error_code,
                error_text=parsed.error_text,
                output_raw_text=response.raw_text,
                cost_estimate=cost,
                **received,
            )

        return "completed", self._result(
            ctx,
            task,
            started,
            RESULT_COMPLETED,
            error_code=parsed.error_code,
            error_text=parsed.error_text,
            output_raw_text=response.raw_text,
            output_parsed=parsed.parsed,
            schema_validation_passed=parsed.schema_valid,
            cost_estimate=cost,
            **received,
        )

    def _result(
        self,
        ctx: RequestContext,
        task: Task,
        started: datetime,
        status: str,
        **fields: Any,
    ) -> TaskResult:
        finished = utc_now()
        return TaskResult(
            ai_request_id=ctx.request.id,
            task_id=task.id,
            status=status,
            provider_id=ctx.provider.id,
            model_id=ctx.model.id,
            retrieval_method=ctx.request.retrieval_method,
            started_at=utc_timestamp(started),
            completed_at=utc_timestamp(finished),
            duration_ms=elapsed_ms(started, finished),
            retry_count=0,
            cost_currency=COST_CURRENCY,
            **fields,
        )

    def _persist(self, ctx: RequestContext, task: Task, outcome: ExecutionOutcome) -> None:
        result = outcome.result
        with connect(self.db_path) as conn:
            outcome.result_id = repository.insert_task_result(conn, result)
            result.id = outcome.result_id

            if result.is_verified:
                repository.upsert_draft_response(
                    conn, task.id, result.output_parsed, outcome.result_id
                )
                repository.advance_task_to_in_progress(conn, task.id)
                outcome.draft_written = True

            repository.increment_request_counters(
                conn, ctx.request.id, failed=result.status != RESULT_COMPLETED
            )

    def _record_missing_prompt(
        self, ctx: RequestContext, task: Task, question_id: str, question_code: str
    ) -> None:
        line = f"Missing or empty prompt for question_code={question_code} (task_id={task.id})"

        with connect(self.db_path) as conn:
            repository.append_request_error(conn, ctx.request.id, line)

        try:
            with connect(self.db_path) as conn:
                repository.insert_audit_log(
                    conn,
                    entity_type="Task",
                    entity_id=task.id,
                    action=MISSING_PROMPT_AUDIT_ACTION,
                    after={
                        "ai_request_id": ctx.request.id,
                        "question_id": question_id,
                        "question_code": question_code,
                        "reason": "missing_or_empty_question_prompt",
                    },
                    actor_id=ctx.request.created_by,
                )
        except sqlite3.Error as e:
            log_with_context(
                logger,
                logging.ERROR,
                f"Failed to write audit log for missing prompt: {e}",
                context={"task_id": task.id, "question_code": question_code},
                request_id=ctx.request.id,
            )
