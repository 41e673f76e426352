"""
OpenAI Responses API adapter for the AI Research Engine.

Sends one prompt to ``POST /v1/responses`` and normalizes the answer.
When the request's retrieval mode is ``provider_native_only`` the call
enables OpenAI's built-in web search tool.

Text extraction tries, in order:
1. The ``output_text`` convenience field
2. Text parts of ``message`` items in ``output[]`` (newline-joined)
3. Text parts of any item in ``output[]``

Security: NEVER logs API keys.
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
from ai_research_engine.utils.cost import normalize_usage

# Suppress HTTPX request logging
httpx_logger = logging.getLogger("httpx")
httpx_logger.setLevel(logging.WARNING)

OPENAI_API_URL = "https://api.openai.com/v1/responses"

# Upper bound on web searches per request when native search is enabled
MAX_TOOL_CALLS = 10

logger = logging.getLogger(__name__)


def _text_parts(item: Any) -> list[str]:
    if not isinstance(item, dict):
        return []
    content = item.get("content")
    if not isinstance(content, list):
        return []
    return [
        part["text"]
        for part in content
        if isinstance(part, dict) and isinstance(part.get("text"), str)
    ]


def extract_output_text_field(data: dict[str, Any]) -> str:
    text = data.get("output_text")
    return text if isinstance(text, str) else ""


def extract_message_items(data: dict[str, Any]) -> str:
    output = data.get("output")
    if not isinstance(output, list):
        return ""
    texts: list[str] = []
    for item in output:
        if isinstance(item, dict) and item.get("type") == "message":
            texts.extend(_text_parts(item))
    return "\n".join(texts)


def extract_any_output_items(data: dict[str, Any]) -> str:
    output = data.get("output")
    if not isinstance(output, list):
        return ""
    texts: list[str] = []
    for item in output:
        texts.extend(_text_parts(item))
    return "\n".join(texts)


TEXT_EXTRACTORS = (
    extract_output_text_field,
    extract_message_items,
    extract_any_output_items,
)


class OpenAIAdapter:
    """
    OpenAI Responses API adapter.

    Attributes:
        api_key: OpenAI API key (NEVER logged)
        provider_type: Always "openai"
    """

    provider_type = "openai"

    def __init__(self, api_key: str):
        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        self.api_key = api_key

    def build_payload(
        self, model_id: str, prompt: str, options: InvokeOptions
    ) -> dict[str, Any]:
        """Build the Responses API request body."""
        payload: dict[str, Any] = {
            "model": model_id,
            "input": prompt,
            "max_output_tokens": options.max_output_tokens,
        }

        if options.enable_web_search:
            payload["tools"] = [{"type": "web_search"}]
            payload["tool_choice"] = "auto"
            payload["max_tool_calls"] = MAX_TOOL_CALLS

        return payload

    async def invoke(
        self, model_id: str, prompt: str, options: InvokeOptions
    ) -> ProviderResult:
        """
        Execute one Responses API call.

        Args:
            model_id: OpenAI model identifier (e.g. "gpt-4o")
            prompt: Fully assembled prompt
            options: Token cap, timeout and web search switch

        Returns:
            ProviderResult; error set on HTTP/network/parse failure
        """
        if not model_id or model_id.isspace():
            return ProviderResult.failure("model_id cannot be empty")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        logger.debug(
            f"Sending request to OpenAI: model={model_id}, "
            f"web_search={options.enable_web_search}"
        )

        try:
            data = await post_json(
                OPENAI_API_URL,
                self.build_payload(model_id, prompt, options),
                headers,
                timeout=options.timeout,
                vendor="OpenAI",
            )
        except VendorCallError as e:
            return ProviderResult.failure(str(e), error_code=e.error_code)

        usage_block = data.get("usage")
        usage = normalize_usage(usage_block if isinstance(usage_block, dict) else None)
        text = first_extracted_text(data, TEXT_EXTRACTORS)

        if not text:
            logger.warning(
                f"OpenAI response contained no message text: model={model_id}, "
                f"status={data.get('status')}"
            )

        return result_from_body(data, text, usage, isinstance(usage_block, dict))
