"""
Shared fixtures: a migrated temporary database and a catalogue seeder.

The catalogue tables are owned by the admin tooling, so tests write them
with plain SQL rather than through the engine's repository.
"""

import json

import pytest

from ai_research_engine.storage.db import connect, init_db_if_needed


class CatalogueSeeder:
    """Inserts catalogue and request rows into a test database."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    def _insert(self, table: str, **values) -> None:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with connect(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                tuple(values.values()),
            )

    def economy(self, id="eco-1", name="Kenya"):
        self._insert("economies", id=id, name=name)
        return id

    def question(
        self,
        id="q-1",
        question_code="LAB.1.1",
        question_text="Is there a statutory minimum wage?",
        answer_type="boolean_yesno",
        group_id=None,
    ):
        self._insert(
            "questions",
            id=id,
            question_code=question_code,
            question_text=question_text,
            answer_type=answer_type,
            group_id=group_id,
        )
        return id

    def prompt_version(
        self,
        question_id="q-1",
        version_number=1,
        prompt_text="In {country}, {question_text}",
        is_active=True,
        id=None,
    ):
        id = id or f"pv-{question_id}-{version_number}"
        self._insert(
            "question_prompt_versions",
            id=id,
            question_id=question_id,
            version_number=version_number,
            prompt_text=prompt_text,
            is_active=1 if is_active else 0,
            created_at="2025-01-01T00:00:00Z",
        )
        return id

    def batch(self, id="b-1", name="2025 cycle", reporting_year=2025, as_of_date="2025-05-01"):
        self._insert(
            "batches", id=id, name=name, reporting_year=reporting_year, as_of_date=as_of_date
        )
        return id

    def task(
        self,
        id="t-1",
        batch_id="b-1",
        economy_id="eco-1",
        question_id="q-1",
        status="not_started",
        dependency_status=None,
    ):
        self._insert(
            "tasks",
            id=id,
            batch_id=batch_id,
            economy_id=economy_id,
            question_id=question_id,
            status=status,
            dependency_status=dependency_status,
        )
        return id

    def provider(
        self,
        id="p-openai",
        name="OpenAI",
        provider_type="openai",
        api_key_env="TEST_OPENAI_API_KEY",
        is_enabled=True,
        max_concurrency=1,
    ):
        self._insert(
            "providers",
            id=id,
            name=name,
            provider_type=provider_type,
            api_key_env=api_key_env,
            is_enabled=1 if is_enabled else 0,
            max_concurrency=max_concurrency,
        )
        return id

    def model(self, id="m-1", provider_id="p-openai", model_id="gpt-4o", pricing=None):
        self._insert(
            "models",
            id=id,
            provider_id=provider_id,
            model_id=model_id,
            display_name=model_id,
            pricing_json=json.dumps(pricing) if pricing is not None else None,
        )
        return id

    def request(
        self,
        id="req-1",
        batch_id="b-1",
        provider_id="p-openai",
        model_id="m-1",
        retrieval_method="none",
        status="queued",
        task_ids=None,
        created_at="2025-06-01T00:00:00Z",
    ):
        self._insert(
            "ai_requests",
            id=id,
            batch_id=batch_id,
            task_ids_json=json.dumps(task_ids) if task_ids is not None else None,
            provider_id=provider_id,
            model_id=model_id,
            retrieval_method=retrieval_method,
            status=status,
            created_by="user-1",
            created_at=created_at,
        )
        return id

    def standard(self, tasks=1, max_concurrency=1):
        """Seed one economy, question, prompt, batch, provider, model and N tasks."""
        self.economy()
        self.question()
        self.prompt_version()
        self.batch()
        self.provider(max_concurrency=max_concurrency)
        self.model(pricing={"input": 2.5, "output": 10.0})
        return [self.task(id=f"t-{i}") for i in range(1, tasks + 1)]


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "engine.db")
    init_db_if_needed(path)
    return path


@pytest.fixture
def seeder(db_path):
    return CatalogueSeeder(db_path)


@pytest.fixture
def api_key_env(monkeypatch):
    monkeypatch.setenv("TEST_OPENAI_API_KEY", "sk-test-key")
    return "TEST_OPENAI_API_KEY"
