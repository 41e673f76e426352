"""Output contract library for the AI Research Engine.

Contracts are JSON files under contracts/. User files in
~/.config/ai-research-engine/system_prompts/ take precedence over the
package defaults.
"""

from ai_research_engine.system_prompts.prompt_loader import (
    OutputContract,
    PromptNotFoundError,
    get_default_contract,
    load_contract,
)

__all__ = [
    "OutputContract",
    "load_contract",
    "get_default_contract",
    "PromptNotFoundError",
]
