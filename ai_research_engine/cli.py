"""
CLI entrypoint for the AI Research Engine.

Provides a dual-mode command-line interface with:
- Human-friendly output: Rich spinners, tables and panels
- Agent-friendly output: Structured JSON for automation

Commands:
    init-db: Create or migrate the SQLite database
    run-request: Execute one queued AI request
    process-queue: Execute every queued AI request
    show-request: Show a request's status, counters and task results
    validate-config: Validate the configuration file

Exit codes:
    0: Success
    1: Configuration error (invalid YAML, missing environment variable)
    2: Database error (cannot create/access SQLite)
    3: Request failed
    4: Request not found

Examples:
    ai-research-engine init-db --config engine.config.yaml
    ai-research-engine run-request 7d0c... --format json
    ai-research-engine process-queue --verbose

Security:
    - API keys are loaded from environment variables only
    - Errors may contain file paths but never API keys
"""

import sqlite3
import traceback
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from ai_research_engine.config.loader import load_config_or_default
from ai_research_engine.config.schema import EngineConfig
from ai_research_engine.engine.models import REQUEST_FAILED
from ai_research_engine.engine.orchestrator import process_queue_sync, run_request_sync
from ai_research_engine.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigValidationError,
    DatabaseError,
    RecordNotFoundError,
)
from ai_research_engine.storage import repository
from ai_research_engine.storage.db import (
    CURRENT_SCHEMA_VERSION,
    connect,
    init_db_if_needed,
)
from ai_research_engine.utils.console import (
    error,
    info,
    output_mode,
    print_queue_summary,
    print_request_details,
    print_request_summary,
    spinner,
    success,
)
from ai_research_engine.utils.logging import setup_logging

# Install Rich tracebacks for better error messages
install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_DB_ERROR = 2
EXIT_REQUEST_FAILED = 3
EXIT_NOT_FOUND = 4

app = typer.Typer(
    name="ai-research-engine",
    help="Run AI research requests over legal/policy question batches",
    add_completion=False,
)

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to YAML configuration file (default: ./engine.config.yaml if present)",
    dir_okay=False,
)
FormatOption = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


def _setup(format: str, verbose: bool) -> None:
    if format not in ("text", "json"):
        error(f"Invalid format: {format}. Must be 'text' or 'json'")
        raise typer.Exit(EXIT_CONFIG_ERROR)

    output_mode.format = format
    # Keep stderr quiet for agents unless asked
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_agent())


def _exit(code: int) -> None:
    output_mode.flush_json()
    raise typer.Exit(code)


def _load_config(config: Path | None, verbose: bool) -> EngineConfig:
    try:
        return load_config_or_default(config)
    except ConfigFileNotFoundError as e:
        error(f"Configuration file not found: {e}")
    except APIKeyMissingError as e:
        error(f"Environment variable missing: {e}")
    except ConfigValidationError as e:
        error(f"Configuration validation failed: {e}")
        if verbose:
            traceback.print_exc()
    _exit(EXIT_CONFIG_ERROR)


def _init_db(engine_config: EngineConfig, verbose: bool) -> None:
    db_path = engine_config.storage.sqlite_db_path
    try:
        with spinner("Initializing database..."):
            init_db_if_needed(db_path)
    except (DatabaseError, sqlite3.Error, OSError, ValueError) as e:
        error(f"Failed to initialize database: {e}")
        if verbose:
            traceback.print_exc()
        _exit(EXIT_DB_ERROR)


@app.command("init-db")
def init_db(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Create the SQLite database or migrate it to the current schema.

    Idempotent: running it on an up-to-date database does nothing.
    """
    _setup(format, verbose)
    engine_config = _load_config(config, verbose)
    _init_db(engine_config, verbose)

    db_path = engine_config.storage.sqlite_db_path
    success(f"Database ready: {db_path} (schema v{CURRENT_SCHEMA_VERSION})")
    output_mode.add_json("database_path", db_path)
    output_mode.add_json("schema_version", CURRENT_SCHEMA_VERSION)
    _exit(EXIT_SUCCESS)


@app.command("run-request")
def run_request(
    request_id: str = typer.Argument(..., help="ID of the queued AI request"),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Execute one queued AI request.

    Exit codes:
      0: Request completed (individual tasks may still have failed)
      3: Request failed
      4: Request not found
    """
    _setup(format, verbose)
    engine_config = _load_config(config, verbose)
    _init_db(engine_config, verbose)

    try:
        with spinner(f"Running request {request_id}..."):
            summary = run_request_sync(engine_config, request_id)
    except RecordNotFoundError as e:
        error(str(e))
        _exit(EXIT_NOT_FOUND)
    except (DatabaseError, sqlite3.Error) as e:
        error(f"Database error: {e}")
        if verbose:
            traceback.print_exc()
        _exit(EXIT_DB_ERROR)
    except Exception as e:
        error(f"Request {request_id} aborted: {e}")
        if verbose:
            traceback.print_exc()
        _exit(EXIT_REQUEST_FAILED)

    print_request_summary(summary)
    _exit(EXIT_REQUEST_FAILED if summary["status"] == REQUEST_FAILED else EXIT_SUCCESS)


@app.command("process-queue")
def process_queue(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Execute every queued AI request, oldest first.

    Exit code 3 when at least one request failed.
    """
    _setup(format, verbose)
    engine_config = _load_config(config, verbose)
    _init_db(engine_config, verbose)

    try:
        with spinner("Processing queued requests..."):
            sweep = process_queue_sync(engine_config)
    except (DatabaseError, sqlite3.Error) as e:
        error(f"Database error: {e}")
        if verbose:
            traceback.print_exc()
        _exit(EXIT_DB_ERROR)

    print_queue_summary(sweep)
    info(f"Processed {sweep['processed']}/{sweep['total']} queued request(s)")

    any_failed = any(summary["status"] == REQUEST_FAILED for summary in sweep["requests"])
    _exit(EXIT_REQUEST_FAILED if any_failed else EXIT_SUCCESS)


@app.command("show-request")
def show_request(
    request_id: str = typer.Argument(..., help="ID of the AI request"),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Show a request's status, counters and per-task results."""
    _setup(format, verbose)
    engine_config = _load_config(config, verbose)
    _init_db(engine_config, verbose)

    try:
        with connect(engine_config.storage.sqlite_db_path) as conn:
            request = repository.get_ai_request(conn, request_id)
            results = repository.list_task_results(conn, request_id) if request else []
    except sqlite3.Error as e:
        error(f"Database error: {e}")
        _exit(EXIT_DB_ERROR)

    if request is None:
        error(f"AI request not found: {request_id}")
        _exit(EXIT_NOT_FOUND)

    print_request_details(request, results)
    _exit(EXIT_SUCCESS)


@app.command("validate-config")
def validate_config(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """
    Validate the configuration file without running anything.

    Checks YAML syntax, field values and ${ENV_VAR} references.
    """
    _setup(format, verbose)
    engine_config = _load_config(config, verbose)

    success("Configuration is valid")
    info(f"Database: {engine_config.storage.sqlite_db_path}")
    info(f"Request timeout: {engine_config.engine.request_timeout_seconds:g}s")
    info(f"Max output tokens: {engine_config.engine.max_output_tokens}")
    info(f"Skip locked tasks: {engine_config.engine.skip_locked_tasks}")
    info(f"Search results per task: {engine_config.retrieval.result_limit}")

    output_mode.add_json("valid", True)
    output_mode.add_json("config", engine_config.model_dump())
    _exit(EXIT_SUCCESS)


@app.callback()
def main():
    """
    AI Research Engine - collect structured legal/policy answers from LLMs.

    Use 'ai-research-engine COMMAND --help' for detailed command documentation.
    """


if __name__ == "__main__":
    app()
