"""
Request orchestration for the AI Research Engine.

This module is the trigger entry point: given a queued AI request, it
validates the request-level configuration, runs every task of the request
through the TaskExecutor with bounded parallelism, and sets the terminal
request status.

Key responsibilities:
- Refuse requests whose provider, credential, model or batch is missing
- Move the request queued -> running -> completed/failed
- Respect cooperative cancellation between tasks
- Fail the request when every attempt hit provider quota exhaustion
- Return a summary dict for the CLI (or any other trigger)

Example:
    >>> from ai_research_engine.config.loader import load_config_or_default
    >>> engine = ResearchEngine(load_config_or_default())
    >>> summary = await engine.run_request("req-123")
    >>> summary["status"]
    'completed'

Known race: two requests over the same batch are not serialized per task,
so the last writer wins on a task's draft response.
"""

import asyncio
import logging
from typing import Any

from ai_research_engine.config.constants import MAX_TASK_CONCURRENCY
from ai_research_engine.config.loader import resolve_api_key
from ai_research_engine.config.schema import EngineConfig
from ai_research_engine.exceptions import (
    APIKeyMissingError,
    RecordNotFoundError,
    UnsupportedProviderError,
)
from ai_research_engine.llm_runner.models import (
    ProviderAdapter,
    ProviderCredential,
    build_adapter,
)
from ai_research_engine.retrieval.augmenter import FIRECRAWL_MODES, RetrievalAugmenter
from ai_research_engine.retrieval.firecrawl import FirecrawlClient
from ai_research_engine.storage import repository
from ai_research_engine.storage.db import connect, init_db_if_needed
from ai_research_engine.utils.logging import log_with_context
from ai_research_engine.utils.time import utc_timestamp

from .models import (
    ERROR_QUOTA_EXCEEDED,
    REQUEST_CANCELED,
    REQUEST_COMPLETED,
    REQUEST_FAILED,
    REQUEST_QUEUED,
    AIRequest,
    Task,
)
from .task_executor import ExecutionOutcome, RequestContext, TaskExecutor

logger = logging.getLogger(__name__)

QUOTA_EXHAUSTED_TEXT = (
    "Gemini quota exhausted or unavailable for this project/key. Provider cannot run."
)


def all_quota_exhausted(error_codes: list[str | None]) -> bool:
    """True when there is at least one result and every one hit quota exhaustion."""
    return bool(error_codes) and all(code == ERROR_QUOTA_EXCEEDED for code in error_codes)


class ResearchEngine:
    """
    Runs queued AI requests against the configured database.

    Attributes:
        config: Engine configuration
        db_path: SQLite database path (from config.storage)
        executor: Per-task executor
    """

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self.db_path = self.config.storage.sqlite_db_path
        self.executor = TaskExecutor(self.db_path, self.config.engine)

        init_db_if_needed(self.db_path)

    async def run_request(self, request_id: str) -> dict[str, Any]:
        """
        Execute one AI request end to end.

        Args:
            request_id: ID of the request to run

        Returns:
            {"request_id", "status", "processed", "completed", "failed", "total"}

        Raises:
            RecordNotFoundError: If the request does not exist
        """
        with connect(self.db_path) as conn:
            request = repository.get_ai_request(conn, request_id)

        if request is None:
            raise RecordNotFoundError(f"AI request not found: {request_id}")

        if request.status != REQUEST_QUEUED:
            logger.warning(
                f"Request {request_id} is not queued (status={request.status}), skipping"
            )
            return self._summary(request_id, request.status, [], 0)

        ctx, failure = self._prepare(request)
        if failure is not None:
            self._finish(request_id, REQUEST_FAILED, failure)
            log_with_context(
                logger,
                logging.ERROR,
                f"Request {request_id} failed before execution: {failure}",
                request_id=request_id,
            )
            return self._summary(request_id, REQUEST_FAILED, [], 0)

        with connect(self.db_path) as conn:
            claimed = repository.mark_request_running(conn, request_id, utc_timestamp())
            if not claimed:
                status = repository.get_request_status(conn, request_id)
                logger.warning(f"Request {request_id} was claimed or canceled elsewhere")
                return self._summary(request_id, status, [], 0)

            if request.task_ids:
                tasks = repository.list_tasks_by_ids(conn, request.task_ids)
            else:
                tasks = repository.list_batch_tasks(conn, request.batch_id)

        log_with_context(
            logger,
            logging.INFO,
            f"Starting request {request_id}: {len(tasks)} task(s)",
            context={
                "batch_id": request.batch_id,
                "provider_type": ctx.provider.provider_type,
                "model": ctx.model.model_id,
                "retrieval_method": request.retrieval_method,
                "max_concurrency": ctx.provider.max_concurrency,
            },
            request_id=request_id,
        )

        # Interrupted runs are never left running
        try:
            outcomes = await self._run_tasks(ctx, tasks)
        except BaseException as e:
            logger.error(f"Request {request_id} aborted: {e!r}", exc_info=True)
            self._finish(request_id, REQUEST_FAILED, str(e) or type(e).__name__)
            raise

        with connect(self.db_path) as conn:
            error_codes = [
                result.error_code for result in repository.list_task_results(conn, request_id)
            ]
            current = repository.get_request_status(conn, request_id)

        if current == REQUEST_CANCELED:
            logger.info(f"Request {request_id} was canceled after {len(outcomes)} task(s)")
            return self._summary(request_id, REQUEST_CANCELED, outcomes, len(tasks))

        if all_quota_exhausted(error_codes):
            status = REQUEST_FAILED
            self._finish(request_id, status, QUOTA_EXHAUSTED_TEXT)
        else:
            status = REQUEST_COMPLETED
            self._finish(request_id, status)

        summary = self._summary(request_id, status, outcomes, len(tasks))
        log_with_context(
            logger,
            logging.INFO,
            f"Request {request_id} {status}: "
            f"{summary['completed']}/{summary['total']} task(s) completed",
            context=summary,
            request_id=request_id,
        )
        return summary

    async def process_queued_requests(self) -> dict[str, Any]:
        """
        Run every queued request, oldest first.

        A request that raises is logged and the sweep moves on.

        Returns:
            {"processed", "total", "requests": [summary, ...]}
        """
        with connect(self.db_path) as conn:
            request_ids = repository.list_queued_request_ids(conn)

        logger.info(f"Found {len(request_ids)} queued request(s)")

        summaries = []
        for request_id in request_ids:
            try:
                summaries.append(await self.run_request(request_id))
            except Exception as e:
                logger.error(f"Request {request_id} failed: {e}", exc_info=True)
                summaries.append(
                    {
                        "request_id": request_id,
                        "status": REQUEST_FAILED,
                        "error": str(e),
                    }
                )

        return {
            "processed": len(summaries),
            "total": len(request_ids),
            "requests": summaries,
        }

    def _prepare(self, request: AIRequest) -> tuple[RequestContext | None, str | None]:
        """
        Resolve provider, credential, model, batch, adapter and retrieval.

        Returns:
            (context, None) when the request can run, else (None, failure text)
        """
        with connect(self.db_path) as conn:
            provider = repository.get_provider(conn, request.provider_id)
            model = repository.get_model(conn, request.model_id)
            batch = repository.get_batch(conn, request.batch_id)
            search_provider = (
                repository.find_search_provider(conn)
                if request.retrieval_method in FIRECRAWL_MODES
                else None
            )

        if provider is None:
            return None, "Provider not found"

        try:
            credential = ProviderCredential(
                provider_type=provider.provider_type,
                api_key=resolve_api_key(provider.api_key_env),
            )
        except APIKeyMissingError as e:
            logger.error(f"Provider {provider.name}: {e}")
            return None, "Provider API key not configured"

        if model is None:
            return None, "Model not found"

        if batch is None:
            return None, "Batch not found"

        adapter: ProviderAdapter | None = None
        adapter_error = None
        try:
            adapter = build_adapter(provider.provider_type, credential)
        except UnsupportedProviderError as e:
            logger.error(str(e))
            adapter_error = "Unsupported provider type"

        return (
            RequestContext(
                request=request,
                provider=provider,
                model=model,
                batch=batch,
                adapter=adapter,
                adapter_error=adapter_error,
                augmenter=self._build_augmenter(request, search_provider),
            ),
            None,
        )

    def _build_augmenter(self, request: AIRequest, search_provider) -> RetrievalAugmenter:
        settings = self.config.retrieval

        if request.retrieval_method not in FIRECRAWL_MODES:
            return RetrievalAugmenter(None, settings)

        if search_provider is None:
            return RetrievalAugmenter(
                None, settings, unavailable_reason="Firecrawl provider not configured"
            )

        try:
            api_key = resolve_api_key(search_provider.api_key_env)
        except APIKeyMissingError as e:
            logger.warning(f"Search provider {search_provider.name}: {e}")
            return RetrievalAugmenter(
                None, settings, unavailable_reason="Firecrawl API key not configured"
            )

        client = FirecrawlClient(
            api_key,
            search_url=settings.search_url,
            timeout=settings.timeout_seconds,
        )
        return RetrievalAugmenter(client, settings)

    async def _run_tasks(
        self, ctx: RequestContext, tasks: list[Task]
    ) -> list[ExecutionOutcome]:
        max_concurrent = min(ctx.provider.max_concurrency, MAX_TASK_CONCURRENCY)
        semaphore = asyncio.Semaphore(max_concurrent)
        logger.debug(f"Running tasks with max {max_concurrent} concurrent attempt(s)")

        async def _execute_with_semaphore(task: Task) -> ExecutionOutcome | None:
            async with semaphore:
                if self._is_canceled(ctx.request.id):
                    logger.info(f"Request {ctx.request.id} canceled, skipping task {task.id}")
                    return None
                return await self.executor.execute(ctx, task)

        running = [asyncio.create_task(_execute_with_semaphore(task)) for task in tasks]
        try:
            results = await asyncio.gather(*running)
        except BaseException:
            # No attempt may write after the request is finished
            for pending in running:
                pending.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise

        return [outcome for outcome in results if outcome is not None]

    def _is_canceled(self, request_id: str) -> bool:
        with connect(self.db_path) as conn:
            return repository.get_request_status(conn, request_id) == REQUEST_CANCELED

    def _finish(self, request_id: str, status: str, error_text: str | None = None) -> None:
        with connect(self.db_path) as conn:
            repository.finish_request(conn, request_id, status, utc_timestamp(), error_text)

    @staticmethod
    def _summary(
        request_id: str,
        status: str | None,
        outcomes: list[ExecutionOutcome],
        total: int,
    ) -> dict[str, Any]:
        completed = sum(1 for outcome in outcomes if outcome.succeeded)
        return {
            "request_id": request_id,
            "status": status,
            "processed": len(outcomes),
            "completed": completed,
            "failed": len(outcomes) - completed,
            "total": total,
        }


def run_request_sync(config: EngineConfig, request_id: str) -> dict[str, Any]:
    """Blocking wrapper for run_request (used by the CLI)."""
    return asyncio.run(ResearchEngine(config).run_request(request_id))


def process_queue_sync(config: EngineConfig) -> dict[str, Any]:
    """Blocking wrapper for process_queued_requests (used by the CLI)."""
    return asyncio.run(ResearchEngine(config).process_queued_requests())
