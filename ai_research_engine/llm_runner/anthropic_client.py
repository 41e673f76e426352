"""
Anthropic Messages API adapter for the AI Research Engine.

Sends the assembled prompt as a single user message. Anthropic has no
provider-native web search in this engine, so enable_web_search is ignored.

Security: NEVER logs API keys. The key is only sent in the x-api-key header.
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

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"

# Anthropic API version header (required)
ANTHROPIC_VERSION = "2023-06-01"

logger = logging.getLogger(__name__)


def extract_text_blocks(data: dict[str, Any]) -> str:
    content = data.get("content")
    if not isinstance(content, list):
        return ""
    return "".join(
        block["text"]
        for block in content
        if isinstance(block, dict)
        and block.get("type", "text") == "text"
        and isinstance(block.get("text"), str)
    )


def extract_single_block(data: dict[str, Any]) -> str:
    content = data.get("content")
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return ""


def extract_plain_content(data: dict[str, Any]) -> str:
    content = data.get("content")
    return content if isinstance(content, str) else ""


TEXT_EXTRACTORS = (
    extract_text_blocks,
    extract_single_block,
    extract_plain_content,
)


class AnthropicAdapter:
    """
    Anthropic Messages API adapter.

    Attributes:
        api_key: Anthropic API key (NEVER logged)
        provider_type: Always "anthropic"
    """

    provider_type = "anthropic"

    def __init__(self, api_key: str):
        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        self.api_key = api_key

    async def invoke(
        self, model_id: str, prompt: str, options: InvokeOptions
    ) -> ProviderResult:
        """
        Execute one Messages API call.

        Args:
            model_id: Anthropic model identifier (e.g. "claude-3-5-sonnet-20241022")
            prompt: Fully assembled prompt
            options: Token cap and timeout

        Returns:
            ProviderResult; error set on HTTP/network/parse failure
        """
        if not model_id or model_id.isspace():
            return ProviderResult.failure("model_id cannot be empty")

        if options.enable_web_search:
            logger.debug(
                f"Native web search is not supported for Anthropic, ignoring: model={model_id}"
            )

        payload = {
            "model": model_id,
            "max_tokens": options.max_output_tokens,
            "messages": [
                {"role": "user", "content": prompt},
            ],
        }

        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

        logger.debug(f"Sending request to Anthropic: model={model_id}")

        try:
            data = await post_json(
                ANTHROPIC_API_URL,
                payload,
                headers,
                timeout=options.timeout,
                vendor="Anthropic",
            )
        except VendorCallError as e:
            return ProviderResult.failure(str(e), error_code=e.error_code)

        usage_block = data.get("usage")
        usage = normalize_usage(usage_block if isinstance(usage_block, dict) else None)
        text = first_extracted_text(data, TEXT_EXTRACTORS)

        if not text:
            logger.warning(
                f"Anthropic response contained no text blocks: model={model_id}, "
                f"stop_reason={data.get('stop_reason')}"
            )

        return result_from_body(data, text, usage, isinstance(usage_block, dict))
