"""
Entry point for running the AI Research Engine as a module.

Enables execution via:
    python -m ai_research_engine [command] [options]

Examples:
    python -m ai_research_engine --help
    python -m ai_research_engine init-db
    python -m ai_research_engine run-request <request-id> --format json
"""

from ai_research_engine.cli import app

if __name__ == "__main__":
    app()
