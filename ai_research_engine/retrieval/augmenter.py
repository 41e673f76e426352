"""
Retrieval policy: whether and how web evidence is added to a prompt.

| mode                  | success         | search failure        | no search provider    |
|-----------------------|-----------------|-----------------------|-----------------------|
| none                  | no evidence     | -                     | -                     |
| provider_native_only  | vendor searches | -                     | -                     |
| firecrawl_preferred   | evidence added  | continue without      | continue without      |
| firecrawl_only        | evidence added  | blocked (RETRIEVAL)   | blocked (MISSING_CONFIG) |

A blocked outcome means the task fails without any provider call.
Zero search results are not a failure.
"""

import logging
from dataclasses import dataclass

from ai_research_engine.config.schema import RetrievalSettings
from ai_research_engine.engine.models import ERROR_MISSING_CONFIG, ERROR_RETRIEVAL
from ai_research_engine.exceptions import RetrievalError

from .firecrawl import FirecrawlClient, SearchResult

logger = logging.getLogger(__name__)

MODE_NONE = "none"
MODE_PROVIDER_NATIVE = "provider_native_only"
MODE_FIRECRAWL_PREFERRED = "firecrawl_preferred"
MODE_FIRECRAWL_ONLY = "firecrawl_only"

FIRECRAWL_MODES = (MODE_FIRECRAWL_PREFERRED, MODE_FIRECRAWL_ONLY)

EVIDENCE_HEADER = "\n\n--- Web Evidence from Firecrawl ---\n"


@dataclass(frozen=True)
class RetrievalOutcome:
    """
    Result of applying the retrieval policy to one task.

    Attributes:
        evidence: Evidence block to append to the prompt ("" for none)
        native_web_search: Ask the provider adapter to search on its own
        blocked: Task must fail without calling the provider
        error_code: RETRIEVAL_ERROR or MISSING_CONFIG when blocked
        error_text: Explanation when blocked
    """

    evidence: str = ""
    native_web_search: bool = False
    blocked: bool = False
    error_code: str | None = None
    error_text: str | None = None


def format_evidence(results: list[SearchResult]) -> str:
    """
    Render search results as the evidence block appended to prompts.

    Returns "" when there are no results.
    """
    if not results:
        return ""

    block = EVIDENCE_HEADER
    for index, result in enumerate(results, start=1):
        block += f"\nSource {index}: {result.url}\n{result.content}\n"
    return block


def build_search_query(economy_name: str, question_text: str, suffix: str) -> str:
    return " ".join(part for part in (economy_name, question_text, suffix) if part)


class RetrievalAugmenter:
    """
    Applies the retrieval policy for one AI request.

    Attributes:
        client: Search client, None when no search provider is usable
        settings: Query suffix and result limit
        unavailable_reason: Why client is None (for error_text)
    """

    def __init__(
        self,
        client: FirecrawlClient | None,
        settings: RetrievalSettings | None = None,
        unavailable_reason: str | None = None,
    ):
        self.client = client
        self.settings = settings or RetrievalSettings()
        self.unavailable_reason = unavailable_reason or "Firecrawl provider not configured"

    async def gather(
        self, mode: str | None, economy_name: str, question_text: str
    ) -> RetrievalOutcome:
        """
        Decide evidence for one task.

        Args:
            mode: Request retrieval method (None is treated as "none")
            economy_name: Economy name for the search query
            question_text: Question text for the search query

        Returns:
            RetrievalOutcome (never raises for search failures)
        """
        if mode == MODE_PROVIDER_NATIVE:
            return RetrievalOutcome(native_web_search=True)

        if mode not in FIRECRAWL_MODES:
            return RetrievalOutcome()

        if self.client is None:
            if mode == MODE_FIRECRAWL_ONLY:
                return RetrievalOutcome(
                    blocked=True,
                    error_code=ERROR_MISSING_CONFIG,
                    error_text=f"Firecrawl required but not available: {self.unavailable_reason}",
                )
            logger.info(f"Continuing without web evidence: {self.unavailable_reason}")
            return RetrievalOutcome()

        query = build_search_query(economy_name, question_text, self.settings.query_suffix)

        try:
            results = await self.client.search(query, limit=self.settings.result_limit)
        except RetrievalError as e:
            if mode == MODE_FIRECRAWL_ONLY:
                logger.error(f"Required web search failed: {e}")
                return RetrievalOutcome(
                    blocked=True,
                    error_code=ERROR_RETRIEVAL,
                    error_text=f"Firecrawl required but failed: {e}",
                )
            logger.warning(f"Web search failed, continuing without evidence: {e}")
            return RetrievalOutcome()

        logger.debug(f"Web search returned {len(results)} result(s)")
        return RetrievalOutcome(evidence=format_evidence(results))
