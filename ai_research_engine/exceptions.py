"""
Custom exceptions for the AI Research Engine.

This module provides a hierarchy of exceptions for configuration, storage
and programming faults. Per-task outcomes (provider failures, unparseable
output, missing prompts) are NOT exceptions: they are recorded as error
codes on persisted task results so a single bad task never aborts a request.

Exception Hierarchy:
    ResearchEngineError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   └── APIKeyMissingError
    ├── DatabaseError
    │   ├── DatabaseMigrationError
    │   └── RecordNotFoundError
    ├── ProviderError
    │   └── UnsupportedProviderError
    └── RetrievalError

Usage:
    from ai_research_engine.exceptions import ConfigurationError

    try:
        config = load_config(path)
    except ConfigFileNotFoundError as e:
        logger.error(f"Config file not found: {e}")
        sys.exit(1)
"""


class ResearchEngineError(Exception):
    """
    Base exception for all AI Research Engine errors.

    Catching this class catches every application-specific error.
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(ResearchEngineError):
    """
    Base class for configuration-related errors.

    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("/path/to/engine.config.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (YAML syntax or schema validation failed).

    Example:
        raise ConfigValidationError("engine.max_output_tokens: must be positive")
    """

    pass


class APIKeyMissingError(ConfigurationError):
    """
    Referenced environment variable is not set.

    Example:
        raise APIKeyMissingError("Environment variable ${FIRECRAWL_API_KEY} not set")
    """

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(ResearchEngineError):
    """
    Base class for database-related errors.

    Should be caught and result in exit code 2 (database error).
    """

    pass


class DatabaseMigrationError(DatabaseError):
    """
    Database schema migration failed.

    Example:
        raise DatabaseMigrationError("Failed to migrate database to version 2")
    """

    pass


class RecordNotFoundError(DatabaseError):
    """
    A row requested by identifier does not exist.

    Example:
        raise RecordNotFoundError("AI request not found: req-123")
    """

    pass


# ============================================================================
# Provider Errors
# ============================================================================


class ProviderError(ResearchEngineError):
    """Base class for LLM provider adapter errors."""

    pass


class UnsupportedProviderError(ProviderError):
    """
    No adapter exists for the requested provider type.

    The task executor records this as UNSUPPORTED_PROVIDER without making a call.

    Example:
        raise UnsupportedProviderError("Unsupported provider type: 'cohere'")
    """

    def __init__(self, message: str, provider_type: str | None = None):
        super().__init__(message)
        self.provider_type = provider_type


# ============================================================================
# Retrieval Errors
# ============================================================================


class RetrievalError(ResearchEngineError):
    """
    Web evidence search failed (HTTP error, timeout, malformed response).

    Raised by the search client and converted into a retrieval outcome by
    the augmenter.

    Example:
        raise RetrievalError("Firecrawl search failed: HTTP 500")
    """

    pass
