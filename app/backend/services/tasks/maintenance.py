"""Repository maintenance jobs: integrity check and retention prune."""

from __future__ import annotations

from api.logging_config import get_logger
from backend.exceptions import AutoResticError
from backend.services.metrics.reconciler import Reconciler
from backend.services.metrics.registry import OPERATION_CHECK, OPERATION_PRUNE, MetricsRegistry
from backend.services.restic.client import RepositoryClient
from backend.services.tasks.base import Task
from models.config import ResticConfig

logger = get_logger(__name__)


class CheckTask(Task):
    name = "check"

    def __init__(self, repository: RepositoryClient, metrics: MetricsRegistry):
        self.repository = repository
        self.metrics = metrics

    def run(self) -> None:
        logger.info("Running repository check")
        try:
            self.repository.check()
        except AutoResticError as exc:
            self.metrics.record_operation_error(OPERATION_CHECK)
            logger.error("Repository check failed (operation=check): %s", exc)
            return
        logger.info("Repository check completed")


class PruneTask(Task):
    """Apply the keep-daily/weekly/monthly policy, then refresh repository metrics."""

    name = "prune"

    def __init__(
        self,
        repository: RepositoryClient,
        retention: ResticConfig,
        metrics: MetricsRegistry,
        reconciler: Reconciler,
    ):
        self.repository = repository
        self.retention = retention
        self.metrics = metrics
        self.reconciler = reconciler

    def run(self) -> None:
        logger.info(
            "Running forget and prune (keep_daily=%s, keep_weekly=%s, keep_monthly=%s)",
            self.retention.keep_daily,
            self.retention.keep_weekly,
            self.retention.keep_monthly,
        )
        try:
            self.repository.forget_and_prune(
                self.retention.keep_daily,
                self.retention.keep_weekly,
                self.retention.keep_monthly,
            )
        except AutoResticError as exc:
            self.metrics.record_operation_error(OPERATION_PRUNE)
            logger.error("Forget and prune failed (operation=prune): %s", exc)
        else:
            logger.info("Forget and prune completed")

        try:
            self.reconciler.reconcile_repository()
        except AutoResticError as exc:
            logger.error("Failed to refresh repository metrics after prune: %s", exc)
