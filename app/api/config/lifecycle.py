"""Application lifecycle: scheduler startup and graceful drain."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from api.logging_config import get_logger
from backend.services.scheduling.scheduler import JobScheduler

logger = get_logger(__name__)


def build_lifespan(scheduler: Optional[JobScheduler]):
    """
    Build the lifespan handler that owns the job scheduler.

    The scheduler starts once the event loop runs and is drained when the
    server shuts down: the in-flight job finishes, queued jobs are dropped.

    Args:
        scheduler: Scheduler to run, or None for an HTTP-only app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                logger.info("Shutting down scheduler")
                await scheduler.shutdown()

    return lifespan
