"""
Configuration constants for the AI Research Engine.

Defaults shared by the config schema, the provider adapters and the
retrieval client, kept here to avoid tight coupling between modules.
"""

# Default config file looked up by the CLI when --config is not given
DEFAULT_CONFIG_PATH = "engine.config.yaml"

DEFAULT_SQLITE_DB_PATH = "./data/research_engine.db"

# Generation calls are slow (web search tools can take a minute or more)
DEFAULT_REQUEST_TIMEOUT_SECONDS = 120.0

DEFAULT_MAX_OUTPUT_TOKENS = 1000

# Used for the {year} placeholder when a batch has no reporting year
DEFAULT_REPORTING_YEAR = 2026

# Firecrawl web search
FIRECRAWL_SEARCH_URL = "https://api.firecrawl.dev/v1/search"
DEFAULT_RETRIEVAL_TIMEOUT_SECONDS = 30.0
DEFAULT_RETRIEVAL_RESULT_LIMIT = 3
DEFAULT_RETRIEVAL_QUERY_SUFFIX = "legal basis"

# Upper bound for provider max_concurrency hints
MAX_TASK_CONCURRENCY = 20
