"""
SQLite database initialization and schema management for the AI Research Engine.

This module provides database setup with schema versioning and migration
support. All timestamps are stored in ISO 8601 format with 'Z' suffix (UTC).

The database holds the research catalogue shared with the admin tooling
(economies, questions, prompt versions, batches, tasks, providers, models)
and the engine's own records:
- ai_requests: Batch-level collection requests and their counters
- ai_task_results: One immutable row per task attempt
- draft_responses: Structured answers promoted from verified attempts
- audit_log: Best-effort audit trail

Example usage:
    >>> from ai_research_engine.storage.db import init_db_if_needed
    >>> init_db_if_needed("./data/research_engine.db")

Security:
    - ALL queries use parameterized statements to prevent SQL injection
    - NO API keys are ever stored in the database (providers store only the
      name of the environment variable holding the key)
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ai_research_engine.exceptions import DatabaseMigrationError

from ..utils.time import utc_timestamp

logger = logging.getLogger(__name__)

# Current schema version - increment when migrations are added
CURRENT_SCHEMA_VERSION = 2

# Seconds to wait on a locked database before failing
BUSY_TIMEOUT_SECONDS = 30.0


@contextmanager
def connect(db_path: str) -> Iterator[sqlite3.Connection]:
    """
    Open a connection with Row access, commit on success and always close.

    Example:
        >>> with connect("./data/research_engine.db") as conn:
        ...     conn.execute("SELECT 1").fetchone()[0]
        1
    """
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    try:
        with conn:
            yield conn
    finally:
        conn.close()


def init_db_if_needed(db_path: str) -> None:
    """
    Initialize SQLite database with schema versioning.

    Creates the database file if it doesn't exist, initializes the
    schema_version table and applies any needed migrations. Idempotent.

    Args:
        db_path: Filesystem path to SQLite database file

    Raises:
        DatabaseMigrationError: If a migration fails
        ValueError: If the database schema is newer than this software
    """
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    with sqlite3.connect(db_path) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)
        conn.commit()

        current_version = get_schema_version(conn)

        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                f"Database schema upgrade needed: "
                f"v{current_version} -> v{CURRENT_SCHEMA_VERSION}"
            )
            apply_migrations(conn, current_version, CURRENT_SCHEMA_VERSION)
            logger.info(f"Database schema upgraded to v{CURRENT_SCHEMA_VERSION}")
        elif current_version == CURRENT_SCHEMA_VERSION:
            logger.debug(f"Database schema is current (v{CURRENT_SCHEMA_VERSION})")
        else:
            raise ValueError(
                f"Database schema version {current_version} is newer than "
                f"expected {CURRENT_SCHEMA_VERSION}. Update your software or "
                f"use a different database file."
            )
    # sqlite3's context manager only commits; close explicitly
    conn.close()


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the applied schema version (0 for a fresh database)."""
    cursor = conn.execute("SELECT MAX(version) FROM schema_version")
    result = cursor.fetchone()[0]
    return result if result is not None else 0


def apply_migrations(
    conn: sqlite3.Connection, from_version: int, to_version: int
) -> None:
    """
    Apply schema migrations from one version to another.

    Each migration runs in its own transaction and is recorded in
    schema_version. If migration to version N fails, the database remains
    at version N-1.

    Raises:
        DatabaseMigrationError: If any migration SQL fails (transaction rolled back)
        ValueError: If from_version > to_version (downgrades not supported)
    """
    if from_version > to_version:
        raise ValueError(
            f"Cannot downgrade schema from v{from_version} to v{to_version}. "
            f"Downgrades are not supported. Use a database backup instead."
        )

    for target_version in range(from_version + 1, to_version + 1):
        logger.info(f"Applying migration to schema version {target_version}")

        try:
            conn.execute("BEGIN")

            if target_version == 1:
                _migrate_to_v1(conn)
            elif target_version == 2:
                _migrate_to_v2(conn)
            else:
                raise ValueError(f"No migration defined for version {target_version}")

            timestamp = utc_timestamp()
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (target_version, timestamp),
            )

            conn.commit()
            logger.info(
                f"Successfully migrated to schema version {target_version} "
                f"at {timestamp}"
            )

        except (sqlite3.Error, ValueError) as e:
            conn.rollback()
            logger.error(
                f"Migration to version {target_version} failed: {e}", exc_info=True
            )
            raise DatabaseMigrationError(
                f"Failed to migrate database to version {target_version}: {e}"
            ) from e


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """
    Create the catalogue and engine tables.

    Catalogue (written by admin tooling, read by the engine):
    economies, pillars, indicators, question_groups, questions,
    question_prompt_versions, batches, tasks, providers, models

    Engine:
    ai_requests, ai_task_results, draft_responses
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS economies (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS pillars (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS indicators (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            pillar_id TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS question_groups (
            id TEXT PRIMARY KEY,
            group_name TEXT,
            subgroup_name TEXT,
            indicator_id TEXT,
            pillar_id TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS questions (
            id TEXT PRIMARY KEY,
            question_code TEXT NOT NULL,
            question_text TEXT NOT NULL,
            answer_type TEXT NOT NULL,
            group_id TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS question_prompt_versions (
            id TEXT PRIMARY KEY,
            question_id TEXT NOT NULL,
            version_number INTEGER NOT NULL,
            prompt_text TEXT,
            is_active INTEGER NOT NULL DEFAULT 0,
            created_at TEXT,
            UNIQUE(question_id, version_number)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS batches (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            reporting_year INTEGER,
            as_of_date TEXT,
            provider_id TEXT,
            model_id TEXT,
            retrieval_method TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            batch_id TEXT NOT NULL,
            economy_id TEXT NOT NULL,
            question_id TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'not_started',
            dependency_status TEXT,
            updated_at TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS providers (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            provider_type TEXT NOT NULL,
            api_key_env TEXT,
            is_enabled INTEGER NOT NULL DEFAULT 1,
            max_concurrency INTEGER NOT NULL DEFAULT 1,
            health_status TEXT,
            last_health_check_at TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS models (
            id TEXT PRIMARY KEY,
            provider_id TEXT NOT NULL,
            model_id TEXT NOT NULL,
            display_name TEXT,
            pricing_json TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS ai_requests (
            id TEXT PRIMARY KEY,
            batch_id TEXT NOT NULL,
            task_ids_json TEXT,
            provider_id TEXT NOT NULL,
            model_id TEXT NOT NULL,
            retrieval_method TEXT NOT NULL DEFAULT 'none',
            status TEXT NOT NULL DEFAULT 'queued',
            completed_tasks INTEGER NOT NULL DEFAULT 0,
            failed_tasks INTEGER NOT NULL DEFAULT 0,
            error_text TEXT,
            created_by TEXT,
            created_at TEXT NOT NULL,
            started_at TEXT,
            completed_at TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS ai_task_results (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            ai_request_id TEXT NOT NULL,
            task_id TEXT NOT NULL,
            provider_id TEXT,
            model_id TEXT,
            retrieval_method TEXT,
            prompt_version_id TEXT,
            prompt_rendered_text TEXT,
            economy_context_json TEXT,
            started_at TEXT,
            completed_at TEXT,
            duration_ms INTEGER NOT NULL DEFAULT 0,
            retry_count INTEGER NOT NULL DEFAULT 0,
            output_raw_text TEXT,
            output_parsed_json TEXT,
            schema_validation_passed INTEGER NOT NULL DEFAULT 0,
            tokens_in INTEGER NOT NULL DEFAULT 0,
            tokens_out INTEGER NOT NULL DEFAULT 0,
            cost_estimate REAL NOT NULL DEFAULT 0.0,
            cost_currency TEXT NOT NULL DEFAULT 'USD',
            status TEXT NOT NULL,
            error_code TEXT,
            error_text TEXT,
            FOREIGN KEY (ai_request_id) REFERENCES ai_requests(id)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS draft_responses (
            task_id TEXT PRIMARY KEY,
            answer TEXT,
            legal_basis TEXT,
            url TEXT,
            reforms TEXT,
            date_of_enactment TEXT,
            date_of_enforcement TEXT,
            comments TEXT,
            flag TEXT NOT NULL DEFAULT 'None',
            updated_at TEXT
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_tasks_batch
        ON tasks(batch_id)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_prompt_versions_question
        ON question_prompt_versions(question_id)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_ai_requests_status
        ON ai_requests(status, created_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_task_results_request
        ON ai_task_results(ai_request_id)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_task_results_task
        ON ai_task_results(task_id)
    """)


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """
    Add the audit trail and draft provenance.

    - audit_log table (best-effort entries written by the engine)
    - draft_responses.source_result_id: attempt that last wrote the draft
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS audit_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity_type TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            action TEXT NOT NULL,
            before_json TEXT,
            after_json TEXT,
            actor_id TEXT,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_audit_log_entity
        ON audit_log(entity_type, entity_id)
    """)

    conn.execute("""
        ALTER TABLE draft_responses ADD COLUMN source_result_id INTEGER
    """)
