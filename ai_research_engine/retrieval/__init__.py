"""Web evidence retrieval for the AI Research Engine."""

from .augmenter import RetrievalAugmenter, RetrievalOutcome, format_evidence
from .firecrawl import FirecrawlClient, SearchResult

__all__ = [
    "FirecrawlClient",
    "RetrievalAugmenter",
    "RetrievalOutcome",
    "SearchResult",
    "format_evidence",
]
