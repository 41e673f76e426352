"""
Firecrawl web search client.

Runs one search per task and returns the scraped results as markdown.
Any failure (HTTP error, timeout, malformed body) raises RetrievalError;
deciding whether that blocks the task is the augmenter's job.

Security: NEVER logs the API key.
"""

import logging
from dataclasses import dataclass
from typing import Any

from ai_research_engine.config.constants import (
    DEFAULT_RETRIEVAL_RESULT_LIMIT,
    DEFAULT_RETRIEVAL_TIMEOUT_SECONDS,
    FIRECRAWL_SEARCH_URL,
)
from ai_research_engine.exceptions import RetrievalError
from ai_research_engine.llm_runner.http_config import VendorCallError, post_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchResult:
    url: str
    content: str


class FirecrawlClient:
    """
    Firecrawl /v1/search client.

    Attributes:
        api_key: Firecrawl API key (NEVER logged)
        search_url: Search endpoint
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        api_key: str,
        search_url: str = FIRECRAWL_SEARCH_URL,
        timeout: float = DEFAULT_RETRIEVAL_TIMEOUT_SECONDS,
    ):
        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        self.api_key = api_key
        self.search_url = search_url
        self.timeout = timeout

    async def search(
        self, query: str, limit: int = DEFAULT_RETRIEVAL_RESULT_LIMIT
    ) -> list[SearchResult]:
        """
        Search the web and scrape result pages as markdown.

        Args:
            query: Search query
            limit: Maximum number of results

        Returns:
            Results in ranking order (may be empty)

        Raises:
            RetrievalError: On HTTP error, network failure, timeout or a malformed body
        """
        payload = {
            "query": query,
            "limit": limit,
            "scrapeOptions": {"formats": ["markdown"]},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        logger.debug(f"Sending Firecrawl search: limit={limit}")

        try:
            data = await post_json(
                self.search_url, payload, headers, timeout=self.timeout, vendor="Firecrawl"
            )
        except VendorCallError as e:
            detail = str(e)
            if e.status_code is not None and not detail.startswith("HTTP "):
                detail = f"HTTP {e.status_code}: {detail}"
            raise RetrievalError(f"Firecrawl search failed: {detail}") from e

        return self._parse_results(data, limit)

    def _parse_results(self, data: dict[str, Any], limit: int) -> list[SearchResult]:
        items = data.get("data") or []
        if not isinstance(items, list):
            raise RetrievalError("Firecrawl response 'data' is not a list")

        results = []
        for item in items[:limit]:
            if not isinstance(item, dict):
                continue
            results.append(
                SearchResult(
                    url=str(item.get("url") or ""),
                    content=str(item.get("markdown") or item.get("content") or ""),
                )
            )
        return results
