"""Security headers middleware.

The service only serves JSON and the Prometheus text format, so a fixed set of
headers that forbid framing and content sniffing is enough.
"""

from __future__ import annotations

from fastapi import FastAPI, Request


_HEADERS = (
    ("X-Content-Type-Options", "nosniff"),
    ("X-Frame-Options", "DENY"),
    ("Referrer-Policy", "no-referrer"),
    ("Cache-Control", "no-store"),
)


async def add_security_headers(request: Request, call_next):
    """Add security headers to every response.

    Args:
        request: Incoming request.
        call_next: Next ASGI middleware/callable.

    Returns:
        Response: The downstream response with headers applied.
    """

    response = await call_next(request)
    for name, value in _HEADERS:
        response.headers.setdefault(name, value)
    return response


def setup_security_headers_middleware(app: FastAPI) -> None:
    """Register the security headers middleware.

    Args:
        app: The FastAPI application instance.

    Returns:
        None
    """

    app.middleware("http")(add_security_headers)
