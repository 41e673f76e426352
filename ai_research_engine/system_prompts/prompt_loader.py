"""Output contract loader for the AI Research Engine.

The output contract is the text appended to every question prompt: it
restates the task context and asks for the labeled answer template.
Contracts are JSON files validated by the OutputContract model.

Path resolution order:
1. User config directory (~/.config/ai-research-engine/system_prompts/)
2. Package directory (ai_research_engine/system_prompts/)
"""

import json
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_CONTRACT = "contracts/labeled_template"


class PromptNotFoundError(Exception):
    """Raised when a requested contract file cannot be found."""

    pass


class OutputContract(BaseModel):
    """Schema for output contract JSON files.

    Example JSON:
    {
        "name": "labeled-template",
        "description": "Plain-text labeled answer template",
        "prompt": "\\nEconomy: {economy_name}\\n...",
        "required_placeholders": ["economy_name"],
        "metadata": {"version": "v1"}
    }
    """

    name: str = Field(description="Short identifier for this contract")
    description: str = Field(description="Human-readable description")
    prompt: str = Field(description="Contract text with {placeholder} markers")
    required_placeholders: list[str] = Field(
        default_factory=list,
        description="Placeholders that must appear in the prompt text",
    )
    metadata: dict[str, str] | None = Field(
        default=None, description="Optional metadata (version, format, etc.)"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure name is not empty."""
        if not v or v.isspace():
            raise ValueError("Contract name cannot be empty")
        return v

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        """Ensure prompt is not empty."""
        if not v or v.isspace():
            raise ValueError("Contract prompt text cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_placeholders_present(self) -> "OutputContract":
        missing = [
            name for name in self.required_placeholders if f"{{{name}}}" not in self.prompt
        ]
        if missing:
            raise ValueError(f"Contract prompt is missing placeholders: {', '.join(missing)}")
        return self


def _get_package_prompts_dir() -> Path:
    """Get the package-bundled system_prompts directory."""
    return Path(__file__).parent


def _get_user_prompts_dir() -> Path:
    """Get the user config directory for custom contracts (not created here)."""
    return Path.home() / ".config" / "ai-research-engine" / "system_prompts"


def _resolve_prompt_path(relative_path: str) -> Path:
    """Resolve a relative contract path, user directory first.

    Raises:
        PromptNotFoundError: If the file is not found in either location
    """
    if not relative_path.endswith(".json"):
        relative_path = f"{relative_path}.json"

    user_path = _get_user_prompts_dir() / relative_path
    if user_path.exists():
        logger.debug(f"Using user contract: {user_path}")
        return user_path

    package_path = _get_package_prompts_dir() / relative_path
    if package_path.exists():
        logger.debug(f"Using package contract: {package_path}")
        return package_path

    raise PromptNotFoundError(
        f"Output contract not found: {relative_path}\n"
        f"Searched in:\n"
        f"  - User dir: {user_path}\n"
        f"  - Package dir: {package_path}"
    )


def load_contract(relative_path: str = DEFAULT_CONTRACT) -> OutputContract:
    """Load an output contract from a JSON file.

    Args:
        relative_path: Relative path like "contracts/labeled_template"

    Returns:
        Validated OutputContract

    Raises:
        PromptNotFoundError: If the contract file cannot be found
        ValueError: If the JSON is invalid or fails validation
    """
    prompt_path = _resolve_prompt_path(relative_path)

    try:
        with prompt_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in contract file {prompt_path}: {e}") from e

    try:
        contract = OutputContract.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Failed to load contract from {prompt_path}: {e}") from e

    logger.info(f"Loaded output contract '{contract.name}' from {prompt_path}")
    return contract


@lru_cache(maxsize=1)
def get_default_contract() -> OutputContract:
    """Load (once) the default labeled-template contract."""
    return load_contract(DEFAULT_CONTRACT)
