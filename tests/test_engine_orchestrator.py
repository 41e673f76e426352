"""
Tests for engine/orchestrator.py module.

Tests cover:
- Request validation failures and their recorded error text
- Status transitions and summaries
- Quota exhaustion rule for the terminal status
- Bounded concurrency from provider.max_concurrency
- Cooperative cancellation between tasks
- Queue sweeps
- Firecrawl availability resolution
"""

import asyncio

import pytest

from ai_research_engine.config.schema import EngineConfig, StorageSettings
from ai_research_engine.engine.orchestrator import (
    QUOTA_EXHAUSTED_TEXT,
    ResearchEngine,
    all_quota_exhausted,
    process_queue_sync,
    run_request_sync,
)
from ai_research_engine.exceptions import RecordNotFoundError, UnsupportedProviderError
from ai_research_engine.llm_runner.models import ProviderResult
from ai_research_engine.storage import repository
from ai_research_engine.storage.db import connect

VALID_ANSWER = "Answer: No\nLegal basis: Labour Code art. 12\nFlag: None"


class FakeAdapter:
    """Adapter double that can hold calls open to observe concurrency."""

    provider_type = "openai"

    def __init__(self, results=None, delay=0.0, on_call=None):
        self.results = list(results or [])
        self.delay = delay
        self.on_call = on_call
        self.calls = 0
        self.active = 0
        self.peak = 0

    async def invoke(self, model_id, prompt, options):
        self.calls += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.on_call:
                self.on_call(self.calls)
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        if self.results:
            return self.results.pop(0)
        return ProviderResult(raw_text=VALID_ANSWER, tokens_in=10, tokens_out=5)


@pytest.fixture
def config(db_path):
    return EngineConfig(storage=StorageSettings(sqlite_db_path=db_path))


@pytest.fixture
def fake_adapter(monkeypatch):
    """Route build_adapter to a FakeAdapter the test can configure."""
    adapter = FakeAdapter()

    def _build(provider_type, credential):
        if provider_type not in ("openai", "anthropic", "google"):
            raise UnsupportedProviderError(
                f"Unsupported provider type: {provider_type}", provider_type=provider_type
            )
        return adapter

    monkeypatch.setattr("ai_research_engine.engine.orchestrator.build_adapter", _build)
    return adapter


def request_row(db_path, request_id="req-1"):
    with connect(db_path) as conn:
        return repository.get_ai_request(conn, request_id)


def result_rows(db_path, request_id="req-1"):
    with connect(db_path) as conn:
        return repository.list_task_results(conn, request_id)


class TestAllQuotaExhausted:
    def test_empty(self):
        assert not all_quota_exhausted([])

    def test_all(self):
        assert all_quota_exhausted(["PROVIDER_QUOTA_EXCEEDED"] * 3)

    def test_mixed(self):
        assert not all_quota_exhausted(["PROVIDER_QUOTA_EXCEEDED", None])


class TestValidation:
    @pytest.mark.asyncio
    async def test_unknown_request(self, config):
        with pytest.raises(RecordNotFoundError):
            await ResearchEngine(config).run_request("missing")

    @pytest.mark.asyncio
    async def test_provider_not_found(self, config, db_path, seeder):
        seeder.request(provider_id="p-missing")

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary["status"] == "failed"
        assert summary["processed"] == 0
        request = request_row(db_path)
        assert request.status == "failed"
        assert request.error_text == "Provider not found"
        assert request.completed_at is not None

    @pytest.mark.asyncio
    async def test_api_key_missing(self, config, db_path, seeder, monkeypatch):
        monkeypatch.delenv("TEST_OPENAI_API_KEY", raising=False)
        seeder.standard()
        seeder.request()

        await ResearchEngine(config).run_request("req-1")

        assert request_row(db_path).error_text == "Provider API key not configured"

    @pytest.mark.asyncio
    async def test_model_not_found(self, config, db_path, seeder, api_key_env):
        seeder.standard()
        seeder.request(model_id="m-missing")

        await ResearchEngine(config).run_request("req-1")

        assert request_row(db_path).error_text == "Model not found"

    @pytest.mark.asyncio
    async def test_batch_not_found(self, config, db_path, seeder, api_key_env):
        seeder.standard()
        seeder.request(batch_id="b-missing")

        await ResearchEngine(config).run_request("req-1")

        assert request_row(db_path).error_text == "Batch not found"
        assert result_rows(db_path) == []

    @pytest.mark.asyncio
    async def test_not_queued_is_skipped(self, config, db_path, seeder):
        seeder.request(status="completed")

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary["status"] == "completed"
        assert summary["processed"] == 0
        assert result_rows(db_path) == []


class TestRunRequest:
    @pytest.mark.asyncio
    async def test_all_tasks_completed(self, config, db_path, seeder, api_key_env, fake_adapter):
        seeder.standard(tasks=3)
        seeder.request()

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary == {
            "request_id": "req-1",
            "status": "completed",
            "processed": 3,
            "completed": 3,
            "failed": 0,
            "total": 3,
        }
        request = request_row(db_path)
        assert request.status == "completed"
        assert request.started_at is not None
        assert request.completed_at is not None
        assert request.completed_tasks == 3
        assert request.failed_tasks == 0
        assert len(result_rows(db_path)) == 3

    @pytest.mark.asyncio
    async def test_selected_tasks_only(self, config, db_path, seeder, api_key_env, fake_adapter):
        seeder.standard(tasks=3)
        seeder.request(task_ids=["t-2"])

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary["total"] == 1
        assert [result.task_id for result in result_rows(db_path)] == ["t-2"]

    @pytest.mark.asyncio
    async def test_all_quota_fails_request(
        self, config, db_path, seeder, api_key_env, fake_adapter
    ):
        seeder.standard(tasks=2)
        seeder.request()
        fake_adapter.results = [
            ProviderResult.failure("Quota exceeded for metric, limit: 0"),
            ProviderResult.failure("RESOURCE_EXHAUSTED"),
        ]

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary["status"] == "failed"
        request = request_row(db_path)
        assert request.status == "failed"
        assert request.error_text == QUOTA_EXHAUSTED_TEXT
        assert request.failed_tasks == 2

    @pytest.mark.asyncio
    async def test_partial_quota_still_completes(
        self, config, db_path, seeder, api_key_env, fake_adapter
    ):
        seeder.standard(tasks=2)
        seeder.request()
        fake_adapter.results = [ProviderResult.failure("Quota exceeded for metric, limit: 0")]

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary["status"] == "completed"
        assert summary["failed"] == 1
        assert request_row(db_path).failed_tasks == 1

    @pytest.mark.asyncio
    async def test_missing_prompt_note_kept_on_completion(
        self, config, db_path, seeder, api_key_env, fake_adapter
    ):
        seeder.standard()
        seeder.question(id="q-2", question_code="LAB.9.9")
        seeder.task(id="t-2", question_id="q-2")
        seeder.request()

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary["status"] == "completed"
        assert fake_adapter.calls == 1
        request = request_row(db_path)
        assert request.status == "completed"
        assert "question_code=LAB.9.9" in request.error_text

    @pytest.mark.asyncio
    async def test_unsupported_provider_records_every_task(
        self, config, db_path, seeder, api_key_env, fake_adapter
    ):
        seeder.economy()
        seeder.question()
        seeder.prompt_version()
        seeder.batch()
        seeder.provider(provider_type="mistral")
        seeder.model()
        seeder.task(id="t-1")
        seeder.task(id="t-2")
        seeder.request()

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary["status"] == "completed"
        assert summary["failed"] == 2
        assert {result.error_code for result in result_rows(db_path)} == {
            "UNSUPPORTED_PROVIDER"
        }
        assert fake_adapter.calls == 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_sequential_by_default(self, config, db_path, seeder, api_key_env, fake_adapter):
        seeder.standard(tasks=4, max_concurrency=1)
        seeder.request()
        fake_adapter.delay = 0.01

        await ResearchEngine(config).run_request("req-1")

        assert fake_adapter.peak == 1
        assert fake_adapter.calls == 4

    @pytest.mark.asyncio
    async def test_bounded_parallelism(self, config, db_path, seeder, api_key_env, fake_adapter):
        seeder.standard(tasks=6, max_concurrency=2)
        seeder.request()
        fake_adapter.delay = 0.02

        await ResearchEngine(config).run_request("req-1")

        assert fake_adapter.peak == 2
        assert request_row(db_path).completed_tasks == 6

    @pytest.mark.asyncio
    async def test_raising_attempt_cancels_parallel_siblings(
        self, config, db_path, seeder, api_key_env, fake_adapter
    ):
        seeder.standard(tasks=2, max_concurrency=2)
        seeder.request()
        fake_adapter.delay = 0.05

        engine = ResearchEngine(config)
        execute = engine.executor.execute

        async def execute_or_raise(ctx, task):
            if task.id == "t-1":
                await asyncio.sleep(0.01)
                raise RuntimeError("disk I/O error")
            return await execute(ctx, task)

        engine.executor.execute = execute_or_raise

        with pytest.raises(RuntimeError, match="disk I/O error"):
            await engine.run_request("req-1")

        # The sibling's provider call would have finished by now
        await asyncio.sleep(0.1)

        assert fake_adapter.calls == 1
        request = request_row(db_path)
        assert request.status == "failed"
        assert request.error_text == "disk I/O error"
        assert request.completed_tasks == 0
        assert request.failed_tasks == 0
        assert result_rows(db_path) == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_remaining_tasks(
        self, config, db_path, seeder, api_key_env, fake_adapter
    ):
        seeder.standard(tasks=3)
        seeder.request()

        def cancel_on_first_call(call_number):
            if call_number == 1:
                with connect(db_path) as conn:
                    conn.execute("UPDATE ai_requests SET status = 'canceled' WHERE id = 'req-1'")

        fake_adapter.on_call = cancel_on_first_call

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary["status"] == "canceled"
        assert summary["processed"] == 1
        assert fake_adapter.calls == 1
        request = request_row(db_path)
        assert request.status == "canceled"
        assert request.completed_tasks == 1
        assert len(result_rows(db_path)) == 1


class TestRetrievalResolution:
    @pytest.mark.asyncio
    async def test_firecrawl_only_without_provider(
        self, config, db_path, seeder, api_key_env, fake_adapter
    ):
        seeder.standard()
        seeder.request(retrieval_method="firecrawl_only")

        await ResearchEngine(config).run_request("req-1")

        result = result_rows(db_path)[0]
        assert result.error_code == "MISSING_CONFIG"
        assert result.error_text.endswith("Firecrawl provider not configured")
        assert fake_adapter.calls == 0

    @pytest.mark.asyncio
    async def test_firecrawl_only_without_key(
        self, config, db_path, seeder, api_key_env, fake_adapter, monkeypatch
    ):
        monkeypatch.delenv("TEST_FIRECRAWL_KEY", raising=False)
        seeder.standard()
        seeder.provider(
            id="p-fc", name="Firecrawl", provider_type="firecrawl", api_key_env="TEST_FIRECRAWL_KEY"
        )
        seeder.request(retrieval_method="firecrawl_only")

        await ResearchEngine(config).run_request("req-1")

        assert result_rows(db_path)[0].error_text.endswith("Firecrawl API key not configured")

    @pytest.mark.asyncio
    async def test_firecrawl_preferred_without_provider_continues(
        self, config, db_path, seeder, api_key_env, fake_adapter
    ):
        seeder.standard()
        seeder.request(retrieval_method="firecrawl_preferred")

        summary = await ResearchEngine(config).run_request("req-1")

        assert summary["completed"] == 1
        assert fake_adapter.calls == 1


class TestQueue:
    @pytest.mark.asyncio
    async def test_process_queued_requests(
        self, config, db_path, seeder, api_key_env, fake_adapter
    ):
        seeder.standard()
        seeder.request(id="req-1", created_at="2025-06-01T00:00:00Z")
        seeder.request(id="req-2", created_at="2025-06-02T00:00:00Z", provider_id="p-missing")
        seeder.request(id="req-3", status="completed")

        sweep = await ResearchEngine(config).process_queued_requests()

        assert sweep["total"] == 2
        assert sweep["processed"] == 2
        assert [(s["request_id"], s["status"]) for s in sweep["requests"]] == [
            ("req-1", "completed"),
            ("req-2", "failed"),
        ]

    def test_sync_wrappers(self, config, db_path, seeder, api_key_env, fake_adapter):
        seeder.standard()
        seeder.request()

        summary = run_request_sync(config, "req-1")
        sweep = process_queue_sync(config)

        assert summary["status"] == "completed"
        assert sweep == {"processed": 0, "total": 0, "requests": []}
