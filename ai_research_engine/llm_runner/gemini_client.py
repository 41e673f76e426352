"""
Google Gemini generateContent adapter for the AI Research Engine.

API endpoint format:
    https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent

Model ids may be given with or without the ``models/`` prefix.

Text extraction tries, in order:
1. All parts of the first candidate, joined
2. The first part's text
3. ``candidates[0].content.text``
4. ``candidates[0].output``

Quota exhaustion (free tier "limit: 0", RESOURCE_EXHAUSTED) is flagged on
the result so the orchestrator can fail a request that never got a
single answer through.

Security: the API key travels as the ``key`` query parameter. It is passed
via httpx params and NEVER logged.
"""

import logging
from typing import Any

from ai_research_engine.llm_runner.http_config import VendorCallError, post_json
from ai_research_engine.llm_runner.models import (
    InvokeOptions,
    ProviderResult,
    first_extracted_text,
    result_from_body,
)
from ai_research_engine.utils.cost import TokenUsage

# Suppress HTTPX request logging (request URLs contain the key)
httpx_logger = logging.getLogger("httpx")
httpx_logger.setLevel(logging.WARNING)

GEMINI_API_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

logger = logging.getLogger(__name__)


def model_path(model_id: str) -> str:
    """
    Return the resource path for a model id.

    Example:
        >>> model_path("gemini-1.5-pro")
        'models/gemini-1.5-pro'
        >>> model_path("models/gemini-1.5-pro")
        'models/gemini-1.5-pro'
    """
    model_id = model_id.strip()
    if model_id.startswith("models/"):
        return model_id
    return f"models/{model_id}"


def _first_candidate(data: dict[str, Any]) -> dict[str, Any]:
    candidates = data.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        return candidates[0]
    return {}


def _content(data: dict[str, Any]) -> dict[str, Any]:
    content = _first_candidate(data).get("content")
    return content if isinstance(content, dict) else {}


def extract_joined_parts(data: dict[str, Any]) -> str:
    parts = _content(data).get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"]
    )


def extract_first_part(data: dict[str, Any]) -> str:
    parts = _content(data).get("parts")
    if isinstance(parts, list) and parts and isinstance(parts[0], dict):
        text = parts[0].get("text")
        return text if isinstance(text, str) else ""
    return ""


def extract_content_text(data: dict[str, Any]) -> str:
    text = _content(data).get("text")
    return text if isinstance(text, str) else ""


def extract_candidate_output(data: dict[str, Any]) -> str:
    output = _first_candidate(data).get("output")
    return output if isinstance(output, str) else ""


TEXT_EXTRACTORS = (
    extract_joined_parts,
    extract_first_part,
    extract_content_text,
    extract_candidate_output,
)


def extract_usage(data: dict[str, Any]) -> TokenUsage:
    """
    Extract token usage from ``usageMetadata``.

    Output tokens are ``candidatesTokenCount`` when positive, otherwise
    ``totalTokenCount - promptTokenCount`` (never negative).
    """
    metadata = data.get("usageMetadata")
    if not isinstance(metadata, dict):
        return TokenUsage()

    tokens_in = int(metadata.get("promptTokenCount") or 0)
    candidates_tokens = int(metadata.get("candidatesTokenCount") or 0)
    total_tokens = int(metadata.get("totalTokenCount") or 0)

    if candidates_tokens > 0:
        tokens_out = candidates_tokens
    else:
        tokens_out = max(0, total_tokens - tokens_in)

    return TokenUsage(tokens_in=tokens_in, tokens_out=tokens_out)


class GeminiAdapter:
    """
    Google Gemini API adapter.

    Attributes:
        api_key: Google API key (NEVER logged)
        provider_type: Always "google"
    """

    provider_type = "google"

    def __init__(self, api_key: str):
        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        self.api_key = api_key

    def endpoint(self, model_id: str) -> str:
        return f"{GEMINI_API_BASE_URL}/{model_path(model_id)}:generateContent"

    async def invoke(
        self, model_id: str, prompt: str, options: InvokeOptions
    ) -> ProviderResult:
        """
        Execute one generateContent call.

        Args:
            model_id: Gemini model id, with or without "models/" prefix
            prompt: Fully assembled prompt
            options: Token cap and timeout

        Returns:
            ProviderResult; is_quota_exhausted set when the key has no quota left
        """
        if not model_id or model_id.isspace():
            return ProviderResult.failure("model_id cannot be empty")

        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"maxOutputTokens": options.max_output_tokens},
        }

        headers = {"Content-Type": "application/json"}

        logger.debug(f"Sending request to Gemini: model={model_id}")

        try:
            data = await post_json(
                self.endpoint(model_id),
                payload,
                headers,
                timeout=options.timeout,
                vendor="Gemini",
                params={"key": self.api_key},
            )
        except VendorCallError as e:
            result = ProviderResult.failure(str(e), error_code=e.error_code)
            if result.is_quota_exhausted:
                logger.warning(f"Gemini quota exhausted: model={model_id}")
            return result

        text = first_extracted_text(data, TEXT_EXTRACTORS)

        if not text:
            logger.warning(
                f"Gemini response contained no extractable text: model={model_id}"
            )

        return result_from_body(
            data,
            text,
            extract_usage(data),
            isinstance(data.get("usageMetadata"), dict),
        )
