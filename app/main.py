# Entry point for the FastAPI app
from typing import Optional

from fastapi import FastAPI

from api.config.lifecycle import build_lifespan
from api.middleware import setup_middleware
from api.routes import health, metrics as metrics_routes
from api.settings import settings
from backend.services.metrics.registry import MetricsRegistry
from backend.services.scheduling.scheduler import JobScheduler


def create_app(
    *,
    metrics: Optional[MetricsRegistry] = None,
    scheduler: Optional[JobScheduler] = None,
    debug: Optional[bool] = None,
) -> FastAPI:
    """Build the HTTP app.

    Args:
        metrics: Registry served at /metrics; the endpoint answers 404 without one.
        scheduler: Scheduler started and drained with the app lifespan.
        debug: Enable request logging; defaults to the DEBUG setting.

    Returns:
        FastAPI: Application instance.
    """

    app = FastAPI(
        title="Auto-Restic",
        description="Scheduled restic backups with encrypted off-site export and Prometheus metrics",
        version=settings.IMAGE_TAG,
        lifespan=build_lifespan(scheduler),
    )
    app.state.metrics = metrics
    app.state.scheduler = scheduler

    setup_middleware(app, debug=settings.DEBUG if debug is None else debug)

    app.include_router(health.router)
    if metrics is not None:
        app.include_router(metrics_routes.router)

    return app
