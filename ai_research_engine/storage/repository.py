"""
Query and write helpers for the AI Research Engine.

Every function takes an open sqlite3.Connection (see storage.db.connect)
and converts rows into the dataclasses in engine.models. Callers own the
transaction: storage.db.connect() commits on success.

Write rules enforced here:
- ai_task_results rows are inserted, never updated
- request counters are incremented atomically in SQL
- task status only auto-advances not_started -> in_progress, and never
  for locked tasks
"""

import json
import logging
import sqlite3
from typing import Any

from ai_research_engine.engine.models import (
    DEPENDENCY_LOCKED,
    REQUEST_QUEUED,
    REQUEST_RUNNING,
    TASK_IN_PROGRESS,
    TASK_NOT_STARTED,
    AIRequest,
    Batch,
    DraftResponse,
    Economy,
    Model,
    PromptVersion,
    Provider,
    Question,
    QuestionGroup,
    Task,
    TaskResult,
)
from ai_research_engine.utils.cost import ModelPricing
from ai_research_engine.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

SEARCH_PROVIDER_TYPE = "firecrawl"

DRAFT_FIELDS = (
    "legal_basis",
    "url",
    "reforms",
    "date_of_enactment",
    "date_of_enforcement",
    "comments",
    "flag",
)


def _loads(value: str | None) -> Any:
    if value is None or value == "":
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Stored JSON column could not be decoded, returning None")
        return None


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False)


# ============================================================================
# Catalogue reads
# ============================================================================


def get_economy(conn: sqlite3.Connection, economy_id: str) -> Economy | None:
    row = conn.execute(
        "SELECT id, name FROM economies WHERE id = ?", (economy_id,)
    ).fetchone()
    return Economy(id=row["id"], name=row["name"]) if row else None


def get_question(conn: sqlite3.Connection, question_id: str) -> Question | None:
    row = conn.execute(
        """
        SELECT id, question_code, question_text, answer_type, group_id
        FROM questions WHERE id = ?
        """,
        (question_id,),
    ).fetchone()
    if row is None:
        return None
    return Question(
        id=row["id"],
        question_code=row["question_code"],
        question_text=row["question_text"],
        answer_type=row["answer_type"],
        group_id=row["group_id"],
    )


def get_question_group(conn: sqlite3.Connection, group_id: str) -> QuestionGroup | None:
    """Load a question group with its indicator and pillar names resolved."""
    row = conn.execute(
        """
        SELECT g.id, g.group_name, g.subgroup_name,
               i.name AS indicator_name, p.name AS pillar_name
        FROM question_groups g
        LEFT JOIN indicators i ON i.id = g.indicator_id
        LEFT JOIN pillars p ON p.id = g.pillar_id
        WHERE g.id = ?
        """,
        (group_id,),
    ).fetchone()
    if row is None:
        return None
    return QuestionGroup(
        id=row["id"],
        group_name=row["group_name"] or "",
        subgroup_name=row["subgroup_name"] or "",
        indicator_name=row["indicator_name"] or "",
        pillar_name=row["pillar_name"] or "",
    )


def list_prompt_versions(
    conn: sqlite3.Connection, question_id: str
) -> list[PromptVersion]:
    """All prompt versions of a question, highest version_number first."""
    rows = conn.execute(
        """
        SELECT id, question_id, version_number, prompt_text, is_active, created_at
        FROM question_prompt_versions
        WHERE question_id = ?
        ORDER BY version_number DESC
        """,
        (question_id,),
    ).fetchall()
    return [
        PromptVersion(
            id=row["id"],
            question_id=row["question_id"],
            version_number=row["version_number"],
            prompt_text=row["prompt_text"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )
        for row in rows
    ]


def get_batch(conn: sqlite3.Connection, batch_id: str) -> Batch | None:
    row = conn.execute(
        """
        SELECT id, name, reporting_year, as_of_date, provider_id, model_id,
               retrieval_method
        FROM batches WHERE id = ?
        """,
        (batch_id,),
    ).fetchone()
    if row is None:
        return None
    return Batch(
        id=row["id"],
        name=row["name"],
        reporting_year=row["reporting_year"],
        as_of_date=row["as_of_date"],
        provider_id=row["provider_id"],
        model_id=row["model_id"],
        retrieval_method=row["retrieval_method"],
    )


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        batch_id=row["batch_id"],
        economy_id=row["economy_id"],
        question_id=row["question_id"],
        status=row["status"],
        dependency_status=row["dependency_status"],
    )


def get_task(conn: sqlite3.Connection, task_id: str) -> Task | None:
    row = conn.execute(
        """
        SELECT id, batch_id, economy_id, question_id, status, dependency_status
        FROM tasks WHERE id = ?
        """,
        (task_id,),
    ).fetchone()
    return _row_to_task(row) if row else None


def list_batch_tasks(conn: sqlite3.Connection, batch_id: str) -> list[Task]:
    rows = conn.execute(
        """
        SELECT id, batch_id, economy_id, question_id, status, dependency_status
        FROM tasks WHERE batch_id = ?
        ORDER BY rowid
        """,
        (batch_id,),
    ).fetchall()
    return [_row_to_task(row) for row in rows]


def list_tasks_by_ids(conn: sqlite3.Connection, task_ids: list[str]) -> list[Task]:
    """Load tasks by id, preserving the requested order and skipping unknown ids."""
    tasks = []
    for task_id in task_ids:
        task = get_task(conn, task_id)
        if task is None:
            logger.warning(f"Requested task does not exist: task_id={task_id}")
            continue
        tasks.append(task)
    return tasks


def _row_to_provider(row: sqlite3.Row) -> Provider:
    return Provider(
        id=row["id"],
        name=row["name"],
        provider_type=row["provider_type"],
        api_key_env=row["api_key_env"],
        is_enabled=bool(row["is_enabled"]),
        max_concurrency=max(1, int(row["max_concurrency"] or 1)),
        health_status=row["health_status"],
        last_health_check_at=row["last_health_check_at"],
    )


_PROVIDER_COLUMNS = """
    id, name, provider_type, api_key_env, is_enabled, max_concurrency,
    health_status, last_health_check_at
"""


def get_provider(conn: sqlite3.Connection, provider_id: str) -> Provider | None:
    row = conn.execute(
        f"SELECT {_PROVIDER_COLUMNS} FROM providers WHERE id = ?", (provider_id,)
    ).fetchone()
    return _row_to_provider(row) if row else None


def find_search_provider(conn: sqlite3.Connection) -> Provider | None:
    """
    Find the enabled web search provider.

    Prefers a provider with provider_type "firecrawl"; falls back to an
    enabled provider whose name contains "firecrawl" (case-insensitive).
    """
    row = conn.execute(
        f"""
        SELECT {_PROVIDER_COLUMNS} FROM providers
        WHERE provider_type = ? AND is_enabled = 1
        ORDER BY rowid LIMIT 1
        """,
        (SEARCH_PROVIDER_TYPE,),
    ).fetchone()
    if row is not None:
        return _row_to_provider(row)

    row = conn.execute(
        f"""
        SELECT {_PROVIDER_COLUMNS} FROM providers
        WHERE is_enabled = 1 AND LOWER(name) LIKE ?
        ORDER BY rowid LIMIT 1
        """,
        (f"%{SEARCH_PROVIDER_TYPE}%",),
    ).fetchone()
    return _row_to_provider(row) if row else None


def get_model(conn: sqlite3.Connection, model_id: str) -> Model | None:
    row = conn.execute(
        """
        SELECT id, provider_id, model_id, display_name, pricing_json
        FROM models WHERE id = ?
        """,
        (model_id,),
    ).fetchone()
    if row is None:
        return None
    return Model(
        id=row["id"],
        provider_id=row["provider_id"],
        model_id=row["model_id"],
        display_name=row["display_name"],
        pricing=ModelPricing.from_dict(_loads(row["pricing_json"])),
    )


# ============================================================================
# AI requests
# ============================================================================


def _row_to_request(row: sqlite3.Row) -> AIRequest:
    return AIRequest(
        id=row["id"],
        batch_id=row["batch_id"],
        provider_id=row["provider_id"],
        model_id=row["model_id"],
        retrieval_method=row["retrieval_method"] or "none",
        status=row["status"],
        task_ids=_loads(row["task_ids_json"]) or None,
        completed_tasks=row["completed_tasks"],
        failed_tasks=row["failed_tasks"],
        error_text=row["error_text"],
        created_by=row["created_by"],
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
    )


def insert_ai_request(conn: sqlite3.Connection, request: AIRequest) -> None:
    """Insert a new AI request (normally created by the admin UI as queued)."""
    conn.execute(
        """
        INSERT INTO ai_requests (
            id, batch_id, task_ids_json, provider_id, model_id, retrieval_method,
            status, completed_tasks, failed_tasks, error_text, created_by,
            created_at, started_at, completed_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            request.id,
            request.batch_id,
            _dumps(request.task_ids),
            request.provider_id,
            request.model_id,
            request.retrieval_method,
            request.status,
            request.completed_tasks,
            request.failed_tasks,
            request.error_text,
            request.created_by,
            request.created_at or utc_timestamp(),
            request.started_at,
            request.completed_at,
        ),
    )


def get_ai_request(conn: sqlite3.Connection, request_id: str) -> AIRequest | None:
    row = conn.execute("SELECT * FROM ai_requests WHERE id = ?", (request_id,)).fetchone()
    return _row_to_request(row) if row else None


def get_request_status(conn: sqlite3.Connection, request_id: str) -> str | None:
    row = conn.execute(
        "SELECT status FROM ai_requests WHERE id = ?", (request_id,)
    ).fetchone()
    return row["status"] if row else None


def list_queued_request_ids(conn: sqlite3.Connection) -> list[str]:
    """Queued request ids, oldest first."""
    rows = conn.execute(
        "SELECT id FROM ai_requests WHERE status = ? ORDER BY created_at, rowid",
        (REQUEST_QUEUED,),
    ).fetchall()
    return [row["id"] for row in rows]


def mark_request_running(
    conn: sqlite3.Connection, request_id: str, started_at: str
) -> bool:
    """
    Move a queued request to running.

    Returns:
        False if the request was no longer queued (claimed or canceled elsewhere)
    """
    cursor = conn.execute(
        """
        UPDATE ai_requests SET status = ?, started_at = ?
        WHERE id = ? AND status = ?
        """,
        (REQUEST_RUNNING, started_at, request_id, REQUEST_QUEUED),
    )
    return cursor.rowcount == 1


def finish_request(
    conn: sqlite3.Connection,
    request_id: str,
    status: str,
    completed_at: str,
    error_text: str | None = None,
) -> bool:
    """
    Set the terminal status of a running or queued request.

    error_text, when given, is appended to any text already recorded
    (missing-prompt notes written during the run are kept). A request that
    was canceled meanwhile is left untouched.

    Returns:
        True if the row was updated
    """
    cursor = conn.execute(
        """
        UPDATE ai_requests
        SET status = ?,
            completed_at = ?,
            error_text = CASE
                WHEN ? IS NULL THEN error_text
                WHEN error_text IS NULL OR error_text = '' THEN ?
                ELSE error_text || char(10) || ?
            END
        WHERE id = ? AND status IN (?, ?)
        """,
        (
            status,
            completed_at,
            error_text,
            error_text,
            error_text,
            request_id,
            REQUEST_QUEUED,
            REQUEST_RUNNING,
        ),
    )
    return cursor.rowcount == 1


def append_request_error(conn: sqlite3.Connection, request_id: str, line: str) -> None:
    """Append one line to the request's error_text (newline-joined)."""
    conn.execute(
        """
        UPDATE ai_requests
        SET error_text = CASE
            WHEN error_text IS NULL OR error_text = '' THEN ?
            ELSE error_text || char(10) || ?
        END
        WHERE id = ?
        """,
        (line, line, request_id),
    )


def increment_request_counters(
    conn: sqlite3.Connection, request_id: str, failed: bool
) -> None:
    """
    Record one finished attempt.

    completed_tasks counts every finished attempt (progress);
    failed_tasks counts attempts whose outcome was not "completed".
    """
    conn.execute(
        """
        UPDATE ai_requests
        SET completed_tasks = completed_tasks + 1,
            failed_tasks = failed_tasks + ?
        WHERE id = ?
        """,
        (1 if failed else 0, request_id),
    )


# ============================================================================
# Task results
# ============================================================================


def insert_task_result(conn: sqlite3.Connection, result: TaskResult) -> int:
    """Insert one attempt row and return its id."""
    cursor = conn.execute(
        """
        INSERT INTO ai_task_results (
            ai_request_id, task_id, provider_id, model_id, retrieval_method,
            prompt_version_id, prompt_rendered_text, economy_context_json,
            started_at, completed_at, duration_ms, retry_count,
            output_raw_text, output_parsed_json, schema_validation_passed,
            tokens_in, tokens_out, cost_estimate, cost_currency,
            status, error_code, error_text
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            result.ai_request_id,
            result.task_id,
            result.provider_id,
            result.model_id,
            result.retrieval_method,
            result.prompt_version_id,
            result.prompt_rendered_text,
            _dumps(result.economy_context),
            result.started_at,
            result.completed_at,
            result.duration_ms,
            result.retry_count,
            result.output_raw_text,
            _dumps(result.output_parsed),
            1 if result.schema_validation_passed else 0,
            result.tokens_in,
            result.tokens_out,
            result.cost_estimate,
            result.cost_currency,
            result.status,
            result.error_code,
            result.error_text,
        ),
    )
    return cursor.lastrowid


def list_task_results(conn: sqlite3.Connection, request_id: str) -> list[TaskResult]:
    rows = conn.execute(
        "SELECT * FROM ai_task_results WHERE ai_request_id = ? ORDER BY id",
        (request_id,),
    ).fetchall()
    return [
        TaskResult(
            id=row["id"],
            ai_request_id=row["ai_request_id"],
            task_id=row["task_id"],
            status=row["status"],
            provider_id=row["provider_id"],
            model_id=row["model_id"],
            retrieval_method=row["retrieval_method"],
            prompt_version_id=row["prompt_version_id"],
            prompt_rendered_text=row["prompt_rendered_text"],
            economy_context=_loads(row["economy_context_json"]),
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            duration_ms=row["duration_ms"],
            retry_count=row["retry_count"],
            output_raw_text=row["output_raw_text"],
            output_parsed=_loads(row["output_parsed_json"]),
            schema_validation_passed=bool(row["schema_validation_passed"]),
            tokens_in=row["tokens_in"],
            tokens_out=row["tokens_out"],
            cost_estimate=row["cost_estimate"],
            cost_currency=row["cost_currency"],
            error_code=row["error_code"],
            error_text=row["error_text"],
        )
        for row in rows
    ]


# ============================================================================
# Draft responses and task status
# ============================================================================


def _to_column(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _draft_columns(draft: DraftResponse) -> tuple[str | None, ...]:
    """Draft field values in column order, non-strings stored as JSON text."""
    return (
        _to_column(draft.answer),
        *(_to_column(getattr(draft, key)) for key in DRAFT_FIELDS),
    )


def get_draft_response(conn: sqlite3.Connection, task_id: str) -> DraftResponse | None:
    row = conn.execute(
        "SELECT * FROM draft_responses WHERE task_id = ?", (task_id,)
    ).fetchone()
    if row is None:
        return None
    return DraftResponse(
        task_id=row["task_id"],
        answer=row["answer"] or "",
        legal_basis=row["legal_basis"] or "",
        url=row["url"] or "",
        reforms=row["reforms"] or "",
        date_of_enactment=row["date_of_enactment"] or "",
        date_of_enforcement=row["date_of_enforcement"] or "",
        comments=row["comments"] or "",
        flag=row["flag"] or "None",
        source_result_id=row["source_result_id"],
        updated_at=row["updated_at"],
    )


def upsert_draft_response(
    conn: sqlite3.Connection,
    task_id: str,
    fields: dict[str, Any],
    source_result_id: int | None,
) -> DraftResponse:
    """
    Create or update the draft answer of a task from verified fields.

    Merge rules on update:
    - answer overwrites whenever the new value is not None
    - every other field overwrites only when the new value is truthy,
      otherwise the existing value is kept
    New drafts default flag to "None".
    """
    existing = get_draft_response(conn, task_id)
    now = utc_timestamp()

    if existing is None:
        draft = DraftResponse(
            task_id=task_id,
            answer=fields.get("answer") if fields.get("answer") is not None else "",
            **{key: fields.get(key) or "" for key in DRAFT_FIELDS if key != "flag"},
            flag=fields.get("flag") or "None",
            source_result_id=source_result_id,
            updated_at=now,
        )
        conn.execute(
            """
            INSERT INTO draft_responses (
                task_id, answer, legal_basis, url, reforms, date_of_enactment,
                date_of_enforcement, comments, flag, source_result_id, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                draft.task_id,
                *_draft_columns(draft),
                draft.source_result_id,
                draft.updated_at,
            ),
        )
        return draft

    new_answer = fields.get("answer")
    draft = DraftResponse(
        task_id=task_id,
        answer=new_answer if new_answer is not None else existing.answer,
        **{key: fields.get(key) or getattr(existing, key) for key in DRAFT_FIELDS},
        source_result_id=source_result_id,
        updated_at=now,
    )
    conn.execute(
        """
        UPDATE draft_responses
        SET answer = ?, legal_basis = ?, url = ?, reforms = ?,
            date_of_enactment = ?, date_of_enforcement = ?, comments = ?,
            flag = ?, source_result_id = ?, updated_at = ?
        WHERE task_id = ?
        """,
        (
            *_draft_columns(draft),
            draft.source_result_id,
            draft.updated_at,
            task_id,
        ),
    )
    return draft


def advance_task_to_in_progress(conn: sqlite3.Connection, task_id: str) -> bool:
    """
    Move a task from not_started to in_progress unless it is locked.

    Returns:
        True if the status changed
    """
    cursor = conn.execute(
        """
        UPDATE tasks SET status = ?, updated_at = ?
        WHERE id = ? AND status = ?
          AND (dependency_status IS NULL OR dependency_status != ?)
        """,
        (TASK_IN_PROGRESS, utc_timestamp(), task_id, TASK_NOT_STARTED, DEPENDENCY_LOCKED),
    )
    return cursor.rowcount == 1


# ============================================================================
# Audit log
# ============================================================================


def insert_audit_log(
    conn: sqlite3.Connection,
    entity_type: str,
    entity_id: str,
    action: str,
    after: dict[str, Any] | None = None,
    before: dict[str, Any] | None = None,
    actor_id: str | None = None,
) -> int:
    cursor = conn.execute(
        """
        INSERT INTO audit_log (
            entity_type, entity_id, action, before_json, after_json, actor_id,
            created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            entity_type,
            entity_id,
            action,
            _dumps(before),
            _dumps(after),
            actor_id,
            utc_timestamp(),
        ),
    )
    return cursor.lastrowid
