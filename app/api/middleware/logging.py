"""Request logging middleware for debugging."""

from __future__ import annotations

import time
from typing import Dict

from fastapi import FastAPI, Request

from api.logging_config import get_logger

logger = get_logger(__name__)


_SENSITIVE_HEADER_NAMES = {
    "authorization",
    "cookie",
    "set-cookie",
}

_QUIET_PATHS = ("/health", "/metrics")


def _redact_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Return a copy of headers with sensitive values redacted.

    Args:
        headers: Header mapping.

    Returns:
        Dict[str, str]: Redacted headers.
    """

    redacted: Dict[str, str] = {}
    for key, value in (headers or {}).items():
        if key.lower() in _SENSITIVE_HEADER_NAMES:
            redacted[key] = "<redacted>"
        else:
            redacted[key] = value
    return redacted


async def log_requests(request: Request, call_next):
    """
    Log request and response details for debugging purposes.

    Scrapes and health probes are not logged.
    """
    if request.url.path in _QUIET_PATHS:
        return await call_next(request)

    started = time.monotonic()
    logger.debug(
        "Received request (method=%s, url=%s, headers=%s)",
        request.method,
        request.url,
        _redact_headers(dict(request.headers)),
    )

    response = await call_next(request)

    logger.debug(
        "Sent response (method=%s, path=%s, status=%s, duration_ms=%.1f)",
        request.method,
        request.url.path,
        response.status_code,
        (time.monotonic() - started) * 1000,
    )
    return response


def setup_logging_middleware(app: FastAPI, *, debug: bool = False) -> None:
    """
    Configure request logging middleware for the FastAPI application.

    This middleware is only enabled when DEBUG mode is active.

    Args:
        app: The FastAPI application instance
        debug: Whether DEBUG mode is active
    """
    if debug:
        app.middleware("http")(log_requests)
