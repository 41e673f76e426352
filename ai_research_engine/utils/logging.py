"""
Structured JSON logging for the AI Research Engine.

Provides standardized logging with:
- JSON formatted output to stderr
- UTC timestamps
- Structured context fields (request_id, task_id, provider, ...)
- Secret redaction (never log API keys in full)

All modules log through the standard logging module
(``logging.getLogger(__name__)``); the CLI calls setup_logging() once.

Examples:
    >>> setup_logging(verbose=True)
    >>> logger = logging.getLogger("ai_research_engine.engine.orchestrator")
    >>> log_with_context(logger, logging.INFO, "Request started",
    ...     context={"tasks": 12}, request_id="req-1")

Security:
    - NEVER log full API keys
    - Only stderr is used (stdout reserved for user output)
"""

import json
import logging
import re
import sys
from typing import Any

from ai_research_engine.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs each record as one JSON object.

    Fields:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level name
    - component: Logger name
    - message: Rendered log message
    - context: Structured data (from 'context' in extra)
    - request_id: AI request identifier (from 'request_id' in extra)
    - exception: Formatted traceback when exc_info is set
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "request_id"):
            log_entry["request_id"] = record.request_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Logging filter that redacts potential secrets from log records.

    Keeps only the last 4 characters of anything that looks like a key:
    "sk-proj-abcdef123456..." -> "sk-...3456"
    """

    SECRET_PATTERNS = [
        (re.compile(r"\bsk-[a-zA-Z0-9_-]{20,}\b"), "sk-...{last4}"),
        (re.compile(r"\bfc-[a-zA-Z0-9_-]{20,}\b"), "fc-...{last4}"),
        (re.compile(r"\bAIza[a-zA-Z0-9_-]{20,}\b"), "AIza...{last4}"),
        (re.compile(r"\bBearer\s+[a-zA-Z0-9_-]{20,}\b"), "Bearer ***{last4}"),
        (re.compile(r"([?&]key=)[a-zA-Z0-9_-]{8,}"), "{prefix}***{last4}"),
        (re.compile(r"\b[a-zA-Z0-9_]{32,}\b"), "***{last4}"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact_secrets(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_secrets(str(v)) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_secrets(str(arg)) for arg in record.args
                )

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, template in self.SECRET_PATTERNS:

            def redact_match(match: re.Match) -> str:
                matched = match.group(0)
                prefix = match.group(1) if match.re.groups else ""
                return template.format(last4=matched[-4:], prefix=prefix)

            text = pattern.sub(redact_match, text)

        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_secrets(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure structured JSON logging for the application.

    Args:
        verbose: If True, set log level to DEBUG. Otherwise, use INFO.
        quiet_logs: If True, only WARNING and above are emitted
            (used by --format json so stderr stays quiet for agents).
    """
    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove any existing handlers (prevents duplicate logs)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())

    root_logger.addHandler(handler)

    # Request URLs carry the Gemini API key as a query parameter
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    request_id: str | None = None,
    exc_info: bool = False,
) -> None:
    """
    Log a message with structured context and optional request_id.

    Equivalent to
    logger.log(level, message, extra={'context': {...}, 'request_id': '...'}).

    Args:
        logger: Logger instance
        level: Log level (logging.INFO, logging.WARNING, etc.)
        message: Human-readable log message
        context: Optional dict with additional structured data
        request_id: Optional AI request identifier
        exc_info: Attach the current exception traceback
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if request_id is not None:
        extra["request_id"] = request_id

    logger.log(level, message, extra=extra if extra else None, exc_info=exc_info)
