"""
Domain records and status vocabularies for the AI Research Engine.

Rows read from SQLite are converted into these dataclasses by the
repository layer; the engine never passes raw sqlite3.Row objects around.

Status vocabularies:
- Task.status: not_started -> in_progress -> submitted -> validated (or returned)
- AIRequest.status: queued -> running -> completed | failed | canceled
- AITaskResult.status: completed | failed | format_invalid | skipped_dependency
"""

from dataclasses import dataclass, field
from typing import Any, Literal

from ai_research_engine.utils.cost import ModelPricing

# ============================================================================
# Status vocabularies
# ============================================================================

TASK_NOT_STARTED = "not_started"
TASK_IN_PROGRESS = "in_progress"
TASK_SUBMITTED = "submitted"
TASK_VALIDATED = "validated"
TASK_RETURNED = "returned"

DEPENDENCY_LOCKED = "locked"

REQUEST_QUEUED = "queued"
REQUEST_RUNNING = "running"
REQUEST_COMPLETED = "completed"
REQUEST_FAILED = "failed"
REQUEST_CANCELED = "canceled"

RESULT_COMPLETED = "completed"
RESULT_FAILED = "failed"
RESULT_FORMAT_INVALID = "format_invalid"
RESULT_SKIPPED_DEPENDENCY = "skipped_dependency"

ResultStatus = Literal["completed", "failed", "format_invalid", "skipped_dependency"]

RetrievalMethod = Literal[
    "none", "provider_native_only", "firecrawl_preferred", "firecrawl_only"
]
RETRIEVAL_METHODS = ("none", "provider_native_only", "firecrawl_preferred", "firecrawl_only")

AnswerType = Literal["boolean_yesno", "integer", "text", "single_select", "multi_select"]

# ============================================================================
# Error codes recorded on task results
# ============================================================================

ERROR_MISSING_DATA = "MISSING_DATA"
ERROR_MISSING_PROMPT = "MISSING_PROMPT"
ERROR_MISSING_CONFIG = "MISSING_CONFIG"
ERROR_RETRIEVAL = "RETRIEVAL_ERROR"
ERROR_PARSE = "PARSE_ERROR"
ERROR_SCHEMA_INVALID = "SCHEMA_INVALID"
ERROR_API = "API_ERROR"
ERROR_QUOTA_EXCEEDED = "PROVIDER_QUOTA_EXCEEDED"
ERROR_UNSUPPORTED_PROVIDER = "UNSUPPORTED_PROVIDER"
ERROR_DEPENDENCY_LOCKED = "DEPENDENCY_LOCKED"

# ============================================================================
# Records
# ============================================================================


@dataclass(frozen=True)
class Economy:
    id: str
    name: str


@dataclass(frozen=True)
class QuestionGroup:
    id: str
    group_name: str = ""
    subgroup_name: str = ""
    indicator_name: str = ""
    pillar_name: str = ""


@dataclass(frozen=True)
class Question:
    id: str
    question_code: str
    question_text: str
    answer_type: str
    group_id: str | None = None


@dataclass(frozen=True)
class PromptVersion:
    id: str
    question_id: str
    version_number: int
    prompt_text: str | None
    is_active: bool
    created_at: str | None = None


@dataclass(frozen=True)
class Batch:
    id: str
    name: str
    reporting_year: int | None = None
    as_of_date: str | None = None
    provider_id: str | None = None
    model_id: str | None = None
    retrieval_method: str | None = None


@dataclass(frozen=True)
class Task:
    id: str
    batch_id: str
    economy_id: str
    question_id: str
    status: str = TASK_NOT_STARTED
    dependency_status: str | None = None

    @property
    def is_locked(self) -> bool:
        return self.dependency_status == DEPENDENCY_LOCKED


@dataclass(frozen=True)
class Provider:
    """
    LLM or search provider row.

    Attributes:
        api_key_env: Name of the environment variable holding the API key
        max_concurrency: Upper bound on parallel calls (1 = sequential)
        health_status / last_health_check_at: Owned by the health checker,
            read-only here
    """

    id: str
    name: str
    provider_type: str
    api_key_env: str | None = None
    is_enabled: bool = True
    max_concurrency: int = 1
    health_status: str | None = None
    last_health_check_at: str | None = None


@dataclass(frozen=True)
class Model:
    id: str
    provider_id: str
    model_id: str
    pricing: ModelPricing = field(default_factory=ModelPricing)
    display_name: str | None = None


@dataclass
class AIRequest:
    id: str
    batch_id: str
    provider_id: str
    model_id: str
    retrieval_method: str = "none"
    status: str = REQUEST_QUEUED
    task_ids: list[str] | None = None
    completed_tasks: int = 0
    failed_tasks: int = 0
    error_text: str | None = None
    created_by: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


@dataclass
class TaskResult:
    """
    One attempt of one task within one AI request.

    Inserted once and never updated.
    """

    ai_request_id: str
    task_id: str
    status: str
    provider_id: str | None = None
    model_id: str | None = None
    retrieval_method: str | None = None
    prompt_version_id: str | None = None
    prompt_rendered_text: str | None = None
    economy_context: dict[str, Any] | None = None
    started_at: str | None = None
    completed_at: str | None = None
    duration_ms: int = 0
    retry_count: int = 0
    output_raw_text: str | None = None
    output_parsed: dict[str, Any] | None = None
    schema_validation_passed: bool = False
    tokens_in: int = 0
    tokens_out: int = 0
    cost_estimate: float = 0.0
    cost_currency: str = "USD"
    error_code: str | None = None
    error_text: str | None = None
    id: int | None = None

    @property
    def is_verified(self) -> bool:
        """Completed with schema-valid structured output."""
        return (
            self.status == RESULT_COMPLETED
            and self.schema_validation_passed
            and self.output_parsed is not None
        )


@dataclass
class DraftResponse:
    task_id: str
    answer: Any = ""
    legal_basis: str = ""
    url: str = ""
    reforms: str = ""
    date_of_enactment: str = ""
    date_of_enforcement: str = ""
    comments: str = ""
    flag: str = "None"
    source_result_id: int | None = None
    updated_at: str | None = None
