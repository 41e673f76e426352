"""
Shared HTTP plumbing for vendor adapters.

Provider calls are made exactly once: a failed call is recorded on the
task result and a retry is a new AI request, so there is no backoff
policy here, only the timeout and the error translation shared by all
adapters.

Example:
    >>> data = await post_json(url, payload, headers, timeout=120, vendor="OpenAI")
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class VendorCallError(Exception):
    """
    A vendor call did not produce a usable JSON body.

    Attributes:
        status_code: HTTP status, None for network errors and timeouts
        error_code: Vendor error code or status string (e.g. "RESOURCE_EXHAUSTED")
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


def extract_error_detail(response: httpx.Response) -> tuple[str, str | None]:
    """
    Extract the error message and code from a vendor error response.

    All three vendors use ``{"error": {"message": ..., "code"/"type"/"status": ...}}``.

    Returns:
        (message, error_code); message falls back to "HTTP <status>"

    Note:
        NEVER includes API keys, only the response body is inspected.
    """
    fallback = f"HTTP {response.status_code}"
    try:
        error_data = response.json()
    except ValueError:
        return fallback, None

    if not isinstance(error_data, dict):
        return fallback, None

    error = error_data.get("error")
    if not isinstance(error, dict):
        return fallback, None

    message = error.get("message") or fallback
    code = error.get("status") or error.get("code") or error.get("type")
    return str(message), str(code) if code is not None else None


async def post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
    vendor: str,
    params: dict[str, str] | None = None,
) -> dict[str, Any]:
    """
    POST a JSON payload and return the decoded JSON object.

    Args:
        url: Endpoint URL (must not contain secrets; pass keys via headers or params)
        payload: JSON request body
        headers: Request headers (NEVER logged)
        timeout: Timeout in seconds
        vendor: Vendor name used in log messages
        params: Optional query parameters (NEVER logged)

    Returns:
        Decoded response body

    Raises:
        VendorCallError: On HTTP error status, connection failure, timeout,
            or a body that is not a JSON object
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, json=payload, headers=headers, params=params)
            response.raise_for_status()

    except httpx.HTTPStatusError as e:
        message, code = extract_error_detail(e.response)
        logger.error(
            f"{vendor} API HTTP error: status={e.response.status_code}, detail={message}"
        )
        raise VendorCallError(message, status_code=e.response.status_code, error_code=code) from e

    except httpx.TimeoutException as e:
        logger.error(f"{vendor} API timeout after {timeout}s")
        raise VendorCallError(f"{vendor} request timed out after {timeout:g}s") from e

    except httpx.HTTPError as e:
        logger.error(f"{vendor} API connection error: {type(e).__name__}")
        raise VendorCallError(f"{vendor} connection error: {e}") from e

    try:
        data = response.json()
    except ValueError as e:
        raise VendorCallError(f"Failed to parse {vendor} response JSON: {e}") from e

    if not isinstance(data, dict):
        raise VendorCallError(
            f"{vendor} response is not a JSON object (got {type(data).__name__})"
        )

    return data
