"""Map provider HTTP failures onto the pipeline error taxonomy."""

import logging
from typing import NoReturn
import httpx

from app.core.errors import AuthError, TransportError

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = frozenset({
    "rateLimitExceeded",
    "userRateLimitExceeded",
    "dailyLimitExceeded",
    "quotaExceeded",
})


def _error_body(response: httpx.Response) -> dict | str:
    try:
        error_data = response.json() if response.content else {}
    except ValueError:
        return response.text[:200] or "Unknown error"
    if not isinstance(error_data, dict):
        return {}
    return error_data.get("error", {})


def _error_message(error: dict | str) -> str:
    if isinstance(error, dict):
        return error.get("message", "Unknown error")
    return str(error)


def _is_rate_limited(error: dict | str) -> bool:
    """Google APIs report quota exhaustion as 403 with a usage-limit reason."""
    if not isinstance(error, dict):
        return False
    if error.get("status") == "RESOURCE_EXHAUSTED":
        return True
    details = error.get("errors")
    if not isinstance(details, list):
        return False
    return any(
        isinstance(detail, dict)
        and (detail.get("reason") in RATE_LIMIT_REASONS or detail.get("domain") == "usageLimits")
        for detail in details
    )


def raise_for_api_error(response: httpx.Response, service: str, operation: str) -> None:
    """Raise AuthError or TransportError for a non-2xx provider response.

    401 and 403 mean the credential is missing scope or no longer valid, which
    only a reconnect fixes, except a 403 carrying a usage-limit reason, which
    is a rate limit. Everything else (429, 5xx, unexpected 4xx) is a transport
    failure left to the queue's retry policy.
    """
    if response.status_code < 400:
        return

    error = _error_body(response)
    error_message = _error_message(error)
    rate_limited = response.status_code == 429 or (
        response.status_code == 403 and _is_rate_limited(error)
    )
    extra = {
        "service": service,
        "operation": operation,
        "status_code": response.status_code,
        "error": error_message,
    }

    if rate_limited:
        logger.warning(f"{service} API rate limit exceeded", extra=extra)
        raise TransportError(
            f"{service} API rate limit exceeded during {operation}",
            status_code=429,
            error_code="rate_limited",
        )

    if response.status_code in (401, 403):
        logger.warning(f"{service} API rejected credential", extra=extra)
        raise AuthError(
            f"{service} authorization failed during {operation}: {error_message}"
        )

    logger.error(f"{service} API error", extra=extra)
    raise TransportError(
        f"{service} {operation} failed: {error_message}",
        status_code=502 if response.status_code >= 500 else response.status_code,
        error_code=f"{service.lower()}_api_error",
    )


def raise_transport_failure(exc: httpx.HTTPError, service: str, operation: str) -> NoReturn:
    """Convert an httpx timeout or network error into a TransportError."""
    if isinstance(exc, httpx.TimeoutException):
        logger.error(f"{service} API timeout", extra={"operation": operation})
        raise TransportError(
            f"{service} API request timeout during {operation}",
            status_code=504,
            error_code="provider_timeout",
        ) from exc

    logger.error(
        f"{service} API network error",
        extra={"operation": operation, "error": str(exc)}
    )
    raise TransportError(
        f"Unable to connect to {service} API during {operation}",
        error_code="provider_unreachable",
    ) from exc
