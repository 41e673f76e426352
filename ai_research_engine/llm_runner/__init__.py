"""
Provider adapters for the AI Research Engine.

One adapter per vendor (OpenAI, Anthropic, Google Gemini), all exposing
``async invoke(model_id, prompt, options) -> ProviderResult``.

Example:
    >>> from ai_research_engine.llm_runner import build_adapter, InvokeOptions
    >>> adapter = build_adapter("google", credential)
    >>> result = await adapter.invoke("gemini-1.5-pro", prompt, InvokeOptions())
"""

from .models import (
    InvokeOptions,
    ProviderAdapter,
    ProviderCredential,
    ProviderResult,
    build_adapter,
    is_quota_error,
)

__all__ = [
    "InvokeOptions",
    "ProviderAdapter",
    "ProviderCredential",
    "ProviderResult",
    "build_adapter",
    "is_quota_error",
]
