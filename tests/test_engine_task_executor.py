"""
Tests for engine/task_executor.py module.

Each test seeds a small catalogue, runs one attempt through TaskExecutor
with a fake provider adapter and checks what was persisted: the result
row, request counters, the draft response and the task status.
"""

import json

import pytest

from ai_research_engine.config.schema import EngineSettings
from ai_research_engine.engine.models import AIRequest, PromptVersion
from ai_research_engine.engine.task_executor import (
    MISSING_PROMPT_AUDIT_ACTION,
    MISSING_PROMPT_TEXT,
    RequestContext,
    TaskExecutor,
    select_prompt_version,
)
from ai_research_engine.exceptions import RetrievalError
from ai_research_engine.llm_runner.models import ProviderResult
from ai_research_engine.retrieval import RetrievalAugmenter, SearchResult
from ai_research_engine.storage import repository
from ai_research_engine.storage.db import connect

VALID_ANSWER = (
    "Answer: Yes\n"
    "Legal basis: Employment Act 2007, s. 48\n"
    "URL: https://law.example/employment-act\n"
    "Reforms: No\n"
    "Date of enactment: 2007-10-22\n"
    "Date of enforcement: 2008-06-02\n"
    "Comments: Set by regulation\n"
    "Flag: None"
)


class FakeAdapter:
    """Provider adapter double recording prompts and returning a canned result."""

    provider_type = "openai"

    def __init__(self, result=None, error=None):
        self.result = result or ProviderResult(
            raw_text=VALID_ANSWER, tokens_in=1000, tokens_out=200, usage_reported=True
        )
        self.error = error
        self.calls = []

    async def invoke(self, model_id, prompt, options):
        self.calls.append((model_id, prompt, options))
        if self.error:
            raise self.error
        return self.result


class FakeSearchClient:
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error

    async def search(self, query, limit=3):
        if self.error:
            raise self.error
        return self.results


def build_context(db_path, adapter, retrieval_method="none", augmenter=None, adapter_error=None):
    with connect(db_path) as conn:
        provider = repository.get_provider(conn, "p-openai")
        model = repository.get_model(conn, "m-1")
        batch = repository.get_batch(conn, "b-1")

    return RequestContext(
        request=AIRequest(
            id="req-1",
            batch_id="b-1",
            provider_id="p-openai",
            model_id="m-1",
            retrieval_method=retrieval_method,
            status="running",
            created_by="user-1",
        ),
        provider=provider,
        model=model,
        batch=batch,
        adapter=adapter,
        augmenter=augmenter or RetrievalAugmenter(None),
        adapter_error=adapter_error,
    )


def load_task(db_path, task_id="t-1"):
    with connect(db_path) as conn:
        return repository.get_task(conn, task_id)


def load_state(db_path, task_id="t-1"):
    with connect(db_path) as conn:
        return {
            "results": repository.list_task_results(conn, "req-1"),
            "request": repository.get_ai_request(conn, "req-1"),
            "draft": repository.get_draft_response(conn, task_id),
            "task": repository.get_task(conn, task_id),
        }


@pytest.fixture
def catalogue(seeder):
    seeder.standard()
    seeder.request()
    return seeder


class TestSelectPromptVersion:
    def _version(self, number, active):
        return PromptVersion(
            id=f"pv-{number}",
            question_id="q-1",
            version_number=number,
            prompt_text="p",
            is_active=active,
        )

    def test_empty(self):
        assert select_prompt_version([]) is None

    def test_highest_active(self):
        versions = [self._version(1, True), self._version(2, True), self._version(3, False)]
        assert select_prompt_version(versions).id == "pv-2"

    def test_highest_when_none_active(self):
        versions = [self._version(1, False), self._version(4, False)]
        assert select_prompt_version(versions).id == "pv-4"


class TestVerifiedAttempt:
    @pytest.mark.asyncio
    async def test_completed_with_draft(self, db_path, catalogue):
        adapter = FakeAdapter()
        executor = TaskExecutor(db_path, EngineSettings(max_output_tokens=512))

        outcome = await executor.execute(build_context(db_path, adapter), load_task(db_path))

        assert outcome.kind == "completed"
        assert outcome.draft_written

        model_id, prompt, options = adapter.calls[0]
        assert model_id == "gpt-4o"
        assert prompt.startswith("In Kenya, Is there a statutory minimum wage?")
        assert options.max_output_tokens == 512
        assert not options.enable_web_search

        state = load_state(db_path)
        result = state["results"][0]
        assert result.status == "completed"
        assert result.schema_validation_passed
        assert result.error_code is None
        assert result.output_raw_text == VALID_ANSWER
        assert result.output_parsed["answer"] == "Yes"
        assert result.prompt_rendered_text == prompt
        assert result.prompt_version_id == "pv-q-1-1"
        assert result.economy_context["economy_name"] == "Kenya"
        assert result.economy_context["prompt_version"]["question_prompt_text"] == (
            "In Kenya, Is there a statutory minimum wage?"
        )
        assert (result.tokens_in, result.tokens_out) == (1000, 200)
        assert result.cost_estimate == pytest.approx(0.0045)
        assert result.cost_currency == "USD"
        assert result.retry_count == 0

        assert state["draft"].answer == "Yes"
        assert state["draft"].legal_basis == "Employment Act 2007, s. 48"
        assert state["draft"].source_result_id == result.id
        assert state["task"].status == "in_progress"
        assert state["request"].completed_tasks == 1
        assert state["request"].failed_tasks == 0

    @pytest.mark.asyncio
    async def test_locked_task_keeps_status(self, db_path, catalogue):
        with connect(db_path) as conn:
            conn.execute("UPDATE tasks SET dependency_status = 'locked' WHERE id = 't-1'")

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, FakeAdapter()), load_task(db_path)
        )

        assert outcome.kind == "completed"
        assert load_state(db_path)["task"].status == "not_started"

    @pytest.mark.asyncio
    async def test_submitted_task_not_regressed(self, db_path, catalogue):
        with connect(db_path) as conn:
            conn.execute("UPDATE tasks SET status = 'submitted' WHERE id = 't-1'")

        await TaskExecutor(db_path).execute(
            build_context(db_path, FakeAdapter()), load_task(db_path)
        )

        state = load_state(db_path)
        assert state["task"].status == "submitted"
        assert state["draft"] is not None


class TestUnverifiedAttempts:
    @pytest.mark.asyncio
    async def test_schema_invalid_no_draft(self, db_path, catalogue):
        adapter = FakeAdapter(ProviderResult(raw_text='{"answer": "Maybe", "flag": "None"}'))

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "completed"
        assert not outcome.draft_written

        state = load_state(db_path)
        result = state["results"][0]
        assert result.status == "completed"
        assert result.error_code == "SCHEMA_INVALID"
        assert result.output_parsed["answer"] == "Maybe"
        assert result.output_raw_text == '{"answer": "Maybe", "flag": "None"}'
        assert not result.schema_validation_passed
        assert state["draft"] is None
        assert state["task"].status == "not_started"
        assert state["request"].failed_tasks == 0

    @pytest.mark.asyncio
    async def test_unparseable_output(self, db_path, catalogue):
        adapter = FakeAdapter(ProviderResult(raw_text="I cannot help with that."))

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "format_invalid"
        state = load_state(db_path)
        result = state["results"][0]
        assert result.status == "format_invalid"
        assert result.error_code == "PARSE_ERROR"
        assert result.output_parsed is None
        assert result.output_raw_text == "I cannot help with that."
        assert state["draft"] is None
        assert state["request"].failed_tasks == 1

    @pytest.mark.asyncio
    async def test_no_text_extracted(self, db_path, catalogue):
        body = json.dumps({"output": []})
        adapter = FakeAdapter(
            ProviderResult(raw_text=body, tokens_in=5, text_extracted=False, usage_reported=True)
        )

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "format_invalid"
        result = load_state(db_path)["results"][0]
        assert result.error_code == "PARSE_ERROR"
        assert result.output_raw_text == body
        assert result.tokens_in == 5

    @pytest.mark.asyncio
    async def test_list_legal_basis_is_schema_invalid(self, db_path, catalogue):
        raw = json.dumps(
            {
                "answer": "Yes",
                "legal_basis": ["Employment Act 2007, s. 48", "Regulation 12"],
                "url": "https://law.example/employment-act",
                "reforms": "No",
                "date_of_enactment": "2007-10-22",
                "date_of_enforcement": "2008-06-02",
                "comments": "",
                "flag": "None",
            }
        )
        adapter = FakeAdapter(ProviderResult(raw_text=raw))

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "completed"
        assert not outcome.draft_written

        state = load_state(db_path)
        assert len(state["results"]) == 1
        result = state["results"][0]
        assert result.error_code == "SCHEMA_INVALID"
        assert "legal_basis must be a string" in result.error_text
        assert result.output_raw_text == raw
        assert state["draft"] is None
        assert state["request"].completed_tasks == 1

    @pytest.mark.asyncio
    async def test_deeply_nested_output_is_format_invalid(self, db_path, catalogue):
        raw = "[" * 200000 + "]" * 200000
        adapter = FakeAdapter(ProviderResult(raw_text=raw, tokens_in=10, tokens_out=400000))

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "format_invalid"
        result = load_state(db_path)["results"][0]
        assert result.status == "format_invalid"
        assert result.error_code == "PARSE_ERROR"
        assert result.output_raw_text == raw

    @pytest.mark.asyncio
    async def test_failure_after_response_keeps_output(self, db_path, catalogue, monkeypatch):
        def broken_parse(raw_text, answer_type):
            raise ValueError("parser crashed")

        monkeypatch.setattr("ai_research_engine.engine.task_executor.parse_answer", broken_parse)

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, FakeAdapter()), load_task(db_path)
        )

        assert outcome.kind == "provider_error"
        state = load_state(db_path)
        result = state["results"][0]
        assert result.status == "failed"
        assert result.error_code == "API_ERROR"
        assert result.error_text == "parser crashed"
        assert result.output_raw_text == VALID_ANSWER
        assert (result.tokens_in, result.tokens_out) == (1000, 200)
        assert result.prompt_version_id == "pv-q-1-1"
        assert state["request"].failed_tasks == 1

    @pytest.mark.asyncio
    async def test_no_cost_without_usage(self, db_path, catalogue):
        adapter = FakeAdapter(ProviderResult(raw_text=VALID_ANSWER))

        await TaskExecutor(db_path).execute(build_context(db_path, adapter), load_task(db_path))

        assert load_state(db_path)["results"][0].cost_estimate == 0.0


class TestProviderFailures:
    @pytest.mark.asyncio
    async def test_api_error(self, db_path, catalogue):
        adapter = FakeAdapter(ProviderResult.failure("OpenAI API error: HTTP 500"))

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "provider_error"
        state = load_state(db_path)
        result = state["results"][0]
        assert result.status == "failed"
        assert result.error_code == "API_ERROR"
        assert result.error_text == "OpenAI API error: HTTP 500"
        assert state["request"].failed_tasks == 1

    @pytest.mark.asyncio
    async def test_quota_error(self, db_path, catalogue):
        adapter = FakeAdapter(ProviderResult.failure("Quota exceeded for metric, limit: 0"))

        await TaskExecutor(db_path).execute(build_context(db_path, adapter), load_task(db_path))

        assert load_state(db_path)["results"][0].error_code == "PROVIDER_QUOTA_EXCEEDED"

    @pytest.mark.asyncio
    async def test_unexpected_exception_recorded(self, db_path, catalogue):
        adapter = FakeAdapter(error=RuntimeError("adapter exploded"))

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "provider_error"
        result = load_state(db_path)["results"][0]
        assert result.status == "failed"
        assert result.error_code == "API_ERROR"
        assert result.error_text == "adapter exploded"

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, db_path, catalogue):
        ctx = build_context(db_path, None, adapter_error="Unsupported provider type")

        outcome = await TaskExecutor(db_path).execute(ctx, load_task(db_path))

        assert outcome.kind == "unsupported_provider"
        result = load_state(db_path)["results"][0]
        assert result.error_code == "UNSUPPORTED_PROVIDER"
        assert result.error_text == "Unsupported provider type"
        assert result.prompt_version_id == "pv-q-1-1"


class TestPromptGate:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("prompt_text", [None, "", "   \n"])
    async def test_missing_prompt_blocks_call(self, db_path, seeder, prompt_text):
        seeder.economy()
        seeder.question()
        seeder.prompt_version(prompt_text=prompt_text)
        seeder.batch()
        seeder.provider()
        seeder.model()
        seeder.task()
        seeder.request()
        adapter = FakeAdapter()

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "missing_prompt"
        assert adapter.calls == []

        state = load_state(db_path)
        result = state["results"][0]
        assert result.status == "failed"
        assert result.error_code == "MISSING_PROMPT"
        assert result.error_text == MISSING_PROMPT_TEXT
        assert result.prompt_rendered_text == ""
        assert state["draft"] is None
        assert state["request"].error_text == (
            "Missing or empty prompt for question_code=LAB.1.1 (task_id=t-1)"
        )
        assert state["request"].failed_tasks == 1

        with connect(db_path) as conn:
            audit = conn.execute("SELECT * FROM audit_log").fetchone()
        assert audit["entity_type"] == "Task"
        assert audit["entity_id"] == "t-1"
        assert audit["action"] == MISSING_PROMPT_AUDIT_ACTION
        assert audit["actor_id"] == "user-1"
        assert json.loads(audit["after_json"])["question_code"] == "LAB.1.1"

    @pytest.mark.asyncio
    async def test_no_prompt_versions(self, db_path, seeder):
        seeder.economy()
        seeder.question()
        seeder.batch()
        seeder.provider()
        seeder.model()
        seeder.task()
        seeder.request()
        adapter = FakeAdapter()

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "missing_prompt"
        assert adapter.calls == []

    @pytest.mark.asyncio
    async def test_inactive_newer_version_ignored(self, db_path, catalogue):
        catalogue.prompt_version(version_number=2, prompt_text="NEWER {country}", is_active=False)
        adapter = FakeAdapter()

        await TaskExecutor(db_path).execute(build_context(db_path, adapter), load_task(db_path))

        assert adapter.calls[0][1].startswith("In Kenya")

    @pytest.mark.asyncio
    async def test_missing_economy(self, db_path, catalogue):
        catalogue.task(id="t-orphan", economy_id="eco-missing")
        adapter = FakeAdapter()

        outcome = await TaskExecutor(db_path).execute(
            build_context(db_path, adapter), load_task(db_path, "t-orphan")
        )

        assert outcome.kind == "missing_data"
        assert adapter.calls == []
        result = load_state(db_path, "t-orphan")["results"][0]
        assert result.error_code == "MISSING_DATA"


class TestRetrieval:
    @pytest.mark.asyncio
    async def test_evidence_appended(self, db_path, catalogue):
        adapter = FakeAdapter()
        augmenter = RetrievalAugmenter(
            FakeSearchClient([SearchResult("https://law.example/a", "Section 48")])
        )
        ctx = build_context(db_path, adapter, "firecrawl_preferred", augmenter)

        await TaskExecutor(db_path).execute(ctx, load_task(db_path))

        prompt = adapter.calls[0][1]
        assert prompt.endswith("\nSource 1: https://law.example/a\nSection 48\n")

    @pytest.mark.asyncio
    async def test_firecrawl_only_failure_blocks_call(self, db_path, catalogue):
        adapter = FakeAdapter()
        augmenter = RetrievalAugmenter(
            FakeSearchClient(error=RetrievalError("Firecrawl search failed: HTTP 500"))
        )
        ctx = build_context(db_path, adapter, "firecrawl_only", augmenter)

        outcome = await TaskExecutor(db_path).execute(ctx, load_task(db_path))

        assert outcome.kind == "retrieval_blocked"
        assert adapter.calls == []
        result = load_state(db_path)["results"][0]
        assert result.error_code == "RETRIEVAL_ERROR"

    @pytest.mark.asyncio
    async def test_firecrawl_only_unavailable(self, db_path, catalogue):
        adapter = FakeAdapter()
        augmenter = RetrievalAugmenter(None, unavailable_reason="Firecrawl provider not configured")
        ctx = build_context(db_path, adapter, "firecrawl_only", augmenter)

        outcome = await TaskExecutor(db_path).execute(ctx, load_task(db_path))

        assert outcome.kind == "missing_config"
        assert adapter.calls == []
        result = load_state(db_path)["results"][0]
        assert result.error_code == "MISSING_CONFIG"
        assert result.error_text == (
            "Firecrawl required but not available: Firecrawl provider not configured"
        )

    @pytest.mark.asyncio
    async def test_provider_native(self, db_path, catalogue):
        adapter = FakeAdapter()
        ctx = build_context(db_path, adapter, "provider_native_only")

        await TaskExecutor(db_path).execute(ctx, load_task(db_path))

        assert adapter.calls[0][2].enable_web_search


class TestSkipLocked:
    @pytest.mark.asyncio
    async def test_skip_locked_enabled(self, db_path, catalogue):
        with connect(db_path) as conn:
            conn.execute("UPDATE tasks SET dependency_status = 'locked' WHERE id = 't-1'")
        adapter = FakeAdapter()

        outcome = await TaskExecutor(db_path, EngineSettings(skip_locked_tasks=True)).execute(
            build_context(db_path, adapter), load_task(db_path)
        )

        assert outcome.kind == "skipped_dependency"
        assert adapter.calls == []
        state = load_state(db_path)
        assert state["results"][0].status == "skipped_dependency"
        assert state["results"][0].error_code == "DEPENDENCY_LOCKED"
        assert state["request"].failed_tasks == 1
