"""
Configuration schema models for the AI Research Engine.

Pydantic v2 models validating engine.config.yaml. Every section has
defaults, so an empty file (or no file at all) yields a usable config.

Models:
    StorageSettings: SQLite database location
    EngineSettings: Provider call limits and task execution switches
    RetrievalSettings: Firecrawl web search parameters
    EngineConfig: Root configuration model (validates entire YAML)
"""

from pydantic import BaseModel, field_validator

from .constants import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_REPORTING_YEAR,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RETRIEVAL_QUERY_SUFFIX,
    DEFAULT_RETRIEVAL_RESULT_LIMIT,
    DEFAULT_RETRIEVAL_TIMEOUT_SECONDS,
    DEFAULT_SQLITE_DB_PATH,
    FIRECRAWL_SEARCH_URL,
)


class StorageSettings(BaseModel):
    """
    Storage location settings.

    Attributes:
        sqlite_db_path: Path to the SQLite database shared with the admin tools
    """

    sqlite_db_path: str = DEFAULT_SQLITE_DB_PATH

    @field_validator("sqlite_db_path")
    @classmethod
    def validate_sqlite_db_path(cls, v: str) -> str:
        """Validate sqlite_db_path is non-empty."""
        if not v or v.isspace():
            raise ValueError("sqlite_db_path cannot be empty")
        return v


class EngineSettings(BaseModel):
    """
    Task execution settings.

    Attributes:
        request_timeout_seconds: Timeout for each generation call
        max_output_tokens: Output token cap sent to every vendor
        default_reporting_year: Value of {year} when the batch has none
        skip_locked_tasks: Record skipped_dependency instead of calling the
            provider for tasks whose dependency_status is "locked"
    """

    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    default_reporting_year: int = DEFAULT_REPORTING_YEAR
    skip_locked_tasks: bool = False

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if not 1 <= v <= 600:
            raise ValueError(f"request_timeout_seconds must be between 1 and 600 (got: {v})")
        return v

    @field_validator("max_output_tokens")
    @classmethod
    def validate_max_output_tokens(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"max_output_tokens must be positive (got: {v})")
        return v


class RetrievalSettings(BaseModel):
    """
    Firecrawl web search settings.

    The API key is not configured here: it comes from the enabled
    ``firecrawl`` provider row and its api_key_env variable.
    """

    search_url: str = FIRECRAWL_SEARCH_URL
    timeout_seconds: float = DEFAULT_RETRIEVAL_TIMEOUT_SECONDS
    result_limit: int = DEFAULT_RETRIEVAL_RESULT_LIMIT
    query_suffix: str = DEFAULT_RETRIEVAL_QUERY_SUFFIX

    @field_validator("search_url")
    @classmethod
    def validate_search_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"search_url must be an http(s) URL (got: {v!r})")
        return v

    @field_validator("result_limit")
    @classmethod
    def validate_result_limit(cls, v: int) -> int:
        if not 1 <= v <= 10:
            raise ValueError(f"result_limit must be between 1 and 10 (got: {v})")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeout_seconds must be positive (got: {v})")
        return v


class EngineConfig(BaseModel):
    """
    Root configuration model for engine.config.yaml.

    Example YAML:
        storage:
          sqlite_db_path: ./data/research_engine.db
        engine:
          request_timeout_seconds: 120
          skip_locked_tasks: false
        retrieval:
          result_limit: 3
    """

    storage: StorageSettings = StorageSettings()
    engine: EngineSettings = EngineSettings()
    retrieval: RetrievalSettings = RetrievalSettings()
