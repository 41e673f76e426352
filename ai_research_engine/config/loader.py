"""
Configuration loader for the AI Research Engine.

This module loads engine.config.yaml, resolves ${ENV_VAR} references,
validates the result with Pydantic and exposes the API-key lookup used
for provider rows (each provider row names the environment variable that
holds its key, the key itself is never stored in the database).

Functions:
    load_config: Load and validate a config file
    load_config_or_default: Same, but fall back to defaults when no file exists
    resolve_api_key: Read a provider API key from the environment
"""

import logging
import os
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from ai_research_engine.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigValidationError,
)

from .constants import DEFAULT_CONFIG_PATH
from .schema import EngineConfig

logger = logging.getLogger(__name__)

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def load_config(config_path: str | Path) -> EngineConfig:
    """
    Load engine.config.yaml and validate it.

    Args:
        config_path: Path to the YAML file (relative or absolute)

    Returns:
        EngineConfig with all ${ENV_VAR} references resolved

    Raises:
        ConfigFileNotFoundError: If the file doesn't exist
        ConfigValidationError: If YAML is invalid or schema validation fails
        APIKeyMissingError: If a referenced environment variable is not set

    Security:
        Uses yaml.safe_load() to prevent code injection.
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    # An empty file means "all defaults"
    if raw_config is None:
        raw_config = {}

    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping in {config_path}, "
            f"got {type(raw_config).__name__}"
        )

    raw_config = _resolve_env_vars_recursive(raw_config)

    try:
        config = EngineConfig.model_validate(raw_config)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            error_messages.append(f"  - {loc}: {error['msg']}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e

    logger.info(f"Loaded configuration from {config_path}")
    return config


def load_config_or_default(config_path: str | Path | None = None) -> EngineConfig:
    """
    Load the config file, or return defaults when it does not exist.

    An explicitly given path must exist; only the implicit default path
    (engine.config.yaml in the working directory) may be absent.

    Raises:
        ConfigFileNotFoundError: If an explicit config_path doesn't exist
        ConfigValidationError: If the file is invalid
    """
    if config_path is not None:
        return load_config(config_path)

    default_path = Path(DEFAULT_CONFIG_PATH)
    if default_path.exists():
        return load_config(default_path)

    logger.debug("No configuration file found, using defaults")
    return EngineConfig()


def resolve_api_key(env_var_name: str | None) -> str:
    """
    Read an API key from the named environment variable.

    Args:
        env_var_name: Name of the environment variable (e.g. "OPENAI_API_KEY")

    Returns:
        The key value

    Raises:
        APIKeyMissingError: If no variable is named, or it is unset or blank

    Security:
        NEVER logs the key value.
    """
    if not env_var_name or env_var_name.isspace():
        raise APIKeyMissingError("Provider has no API key environment variable configured")

    value = os.environ.get(env_var_name)
    if value is None:
        raise APIKeyMissingError(f"Environment variable ${env_var_name} not set")

    if not value.strip():
        raise APIKeyMissingError(f"Environment variable ${env_var_name} is empty or whitespace")

    return value.strip()


def _resolve_env_vars_recursive(obj):
    """
    Recursively resolve ${ENV_VAR} references in nested dicts/lists.

    Raises:
        APIKeyMissingError: If a referenced env var is not set
    """
    if isinstance(obj, dict):
        return {key: _resolve_env_vars_recursive(value) for key, value in obj.items()}

    if isinstance(obj, list):
        return [_resolve_env_vars_recursive(item) for item in obj]

    if isinstance(obj, str):

        def substitute(match: re.Match) -> str:
            env_var_name = match.group(1)
            env_value = os.environ.get(env_var_name)
            if env_value is None:
                raise APIKeyMissingError(
                    f"Environment variable ${{{env_var_name}}} not set. "
                    f"Please set it in your environment or .env file."
                )
            return env_value

        return ENV_VAR_PATTERN.sub(substitute, obj)

    return obj
