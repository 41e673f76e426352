"""Prompt assembly for the AI Research Engine."""

from .assembler import (
    SYSTEM_CONTEXT_SEPARATOR,
    PromptContext,
    assemble_prompt,
    render_question_prompt,
    substitute_placeholders,
)

__all__ = [
    "SYSTEM_CONTEXT_SEPARATOR",
    "PromptContext",
    "assemble_prompt",
    "render_question_prompt",
    "substitute_placeholders",
]
