"""Route modules for the API."""

from . import health, metrics

__all__ = [
    "health",
    "metrics",
]
