"""
Provider adapter abstraction and factory for the AI Research Engine.

Every vendor is reached through one asynchronous operation,
``invoke(model_id, prompt, options) -> ProviderResult``. Adapters never
raise for vendor-side problems: HTTP errors, timeouts and unreadable
bodies come back as a ProviderResult with ``error`` set, so the task
executor can always persist an attempt.

Key components:
- ProviderCredential: Resolved API key for one provider row
- InvokeOptions: Per-call limits (output tokens, timeout, native web search)
- ProviderResult: Normalized vendor response
- ProviderAdapter: Protocol implemented by every vendor client
- build_adapter: Factory keyed by provider_type

Example:
    >>> credential = ProviderCredential("openai", api_key)
    >>> adapter = build_adapter("openai", credential)
    >>> result = await adapter.invoke("gpt-4o", prompt, InvokeOptions())
    >>> result.raw_text, result.tokens_in, result.tokens_out
"""

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from ai_research_engine.config.constants import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
)
from ai_research_engine.exceptions import UnsupportedProviderError
from ai_research_engine.utils.cost import TokenUsage

SUPPORTED_PROVIDER_TYPES = ("openai", "anthropic", "google")

# Substrings of vendor error messages that mean the key or project has no
# quota left (as opposed to a transient rate limit).
QUOTA_ERROR_MARKERS = (
    "Quota exceeded",
    "limit: 0",
    "generate_content_free_tier_requests",
    "RESOURCE_EXHAUSTED",
    "insufficient_quota",
)


@dataclass(frozen=True)
class ProviderCredential:
    """
    API key for one provider, resolved from the environment at call time.

    Attributes:
        provider_type: Vendor identifier ("openai", "anthropic", "google", "firecrawl")
        api_key: Secret key (excluded from repr so it never reaches logs)
    """

    provider_type: str
    api_key: str = field(repr=False)


@dataclass(frozen=True)
class InvokeOptions:
    """
    Per-call options passed to ProviderAdapter.invoke().

    Attributes:
        max_output_tokens: Output token cap sent to the vendor
        timeout: Request timeout in seconds
        enable_web_search: Ask the vendor to run its own web search tool
            (only honoured by adapters that support it)
    """

    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    enable_web_search: bool = False


@dataclass
class ProviderResult:
    """
    Normalized response from one provider call.

    Attributes:
        raw_text: Extracted answer text. When nothing could be extracted from
            a JSON body, this holds the serialized body instead.
        tokens_in: Prompt tokens reported by the vendor (0 if unknown)
        tokens_out: Completion tokens reported by the vendor (0 if unknown)
        is_quota_exhausted: The error indicates exhausted quota
        error: Error message when the call failed, None on success
        text_extracted: False when raw_text is a serialized body rather than
            model output
        usage_reported: The vendor returned a usage block
    """

    raw_text: str = ""
    tokens_in: int = 0
    tokens_out: int = 0
    is_quota_exhausted: bool = False
    error: str | None = None
    text_extracted: bool = True
    usage_reported: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, message: str, error_code: str | None = None) -> "ProviderResult":
        """Build a failed result, flagging quota exhaustion from message or code."""
        return cls(
            error=message,
            is_quota_exhausted=is_quota_error(message) or is_quota_error(error_code),
            text_extracted=False,
        )


class ProviderAdapter(Protocol):
    """
    Protocol for vendor adapters.

    Implementations must:
    - Never raise for HTTP, network or parse failures (return ProviderResult.failure)
    - Never log the API key
    - Make exactly one HTTP call per invoke() (no retries)
    """

    provider_type: str

    async def invoke(
        self, model_id: str, prompt: str, options: InvokeOptions
    ) -> ProviderResult:
        """
        Send one prompt to the vendor and normalize the response.

        Args:
            model_id: Vendor model identifier (e.g. "gpt-4o", "gemini-1.5-pro")
            prompt: Fully assembled prompt
            options: Token cap, timeout and web search switch

        Returns:
            ProviderResult with text and usage, or with error set
        """
        ...


def is_quota_error(message: str | None) -> bool:
    """Return True if a vendor error message signals exhausted quota."""
    if not message:
        return False
    return any(marker in message for marker in QUOTA_ERROR_MARKERS)


def first_extracted_text(data: Any, extractors) -> str:
    """
    Run text extractors in order and return the first non-empty result.

    Each extractor takes the decoded response body and returns a string
    (possibly empty). Extractors must not raise on unexpected shapes.
    """
    for extractor in extractors:
        text = extractor(data)
        if text and text.strip():
            return text.strip()
    return ""


def result_from_body(
    data: dict[str, Any], text: str, usage: TokenUsage, usage_reported: bool
) -> ProviderResult:
    """
    Build a successful ProviderResult from a decoded body.

    When no text could be extracted the serialized body is kept as raw_text
    (with text_extracted=False) so the response is never lost.
    """
    if text:
        return ProviderResult(
            raw_text=text,
            tokens_in=usage.tokens_in,
            tokens_out=usage.tokens_out,
            usage_reported=usage_reported,
        )

    return ProviderResult(
        raw_text=json.dumps(data, ensure_ascii=False),
        tokens_in=usage.tokens_in,
        tokens_out=usage.tokens_out,
        text_extracted=False,
        usage_reported=usage_reported,
    )


def build_adapter(provider_type: str, credential: ProviderCredential) -> ProviderAdapter:
    """
    Factory function returning the adapter for a provider type.

    Supported provider types:
    - "openai": OpenAI Responses API
    - "anthropic": Anthropic Messages API
    - "google": Google Gemini generateContent API

    Args:
        provider_type: Provider identifier from the provider row
        credential: Resolved API key

    Returns:
        ProviderAdapter for the vendor

    Raises:
        UnsupportedProviderError: If no adapter exists for provider_type
    """
    if provider_type == "openai":
        # Import here to keep vendor modules lazy
        from ai_research_engine.llm_runner.openai_client import OpenAIAdapter

        return OpenAIAdapter(credential.api_key)

    if provider_type == "anthropic":
        from ai_research_engine.llm_runner.anthropic_client import AnthropicAdapter

        return AnthropicAdapter(credential.api_key)

    if provider_type == "google":
        from ai_research_engine.llm_runner.gemini_client import GeminiAdapter

        return GeminiAdapter(credential.api_key)

    raise UnsupportedProviderError(
        f"Unsupported provider type: {provider_type!r}. "
        f"Supported types: {', '.join(SUPPORTED_PROVIDER_TYPES)}",
        provider_type=provider_type,
    )
