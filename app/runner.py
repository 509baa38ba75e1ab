#!/usr/bin/env python3
"""Backup service entry point.

Startup order:
1. Configure logging.
2. Load and validate the configuration (fatal on error).
3. Open the restic repository (init when missing) and the object storage bucket.
4. Build tasks, register cron jobs and serve `/health` + `/metrics`.

SIGINT/SIGTERM are handled by uvicorn: the server stops accepting requests,
the lifespan drains the scheduler (the running job finishes, queued jobs are
dropped) and the process exits after at most `SHUTDOWN_GRACE_SECONDS` of
waiting for open connections.

Usage:
    python runner.py [--config FILE] [--port PORT]
"""

import argparse
import sys
from dataclasses import dataclass
from typing import Optional

import uvicorn

from api.logging_config import configure_logging, get_logger
from api.settings import Settings
from backend.exceptions import AutoResticError
from backend.services.export.pipeline import ArchiveExportPipeline
from backend.services.metrics.reconciler import Reconciler
from backend.services.metrics.registry import MetricsRegistry
from backend.services.restic.client import RepositoryClient
from backend.services.scheduling.cron import build_cron_trigger
from backend.services.scheduling.scheduler import JobScheduler
from backend.services.storage.object_store import ObjectStoreClient
from backend.services.tasks.backup import BackupTask
from backend.services.tasks.export import ExportTask, MetricsRefreshTask
from backend.services.tasks.maintenance import CheckTask, PruneTask
from main import create_app
from models.config import AppConfig, load_config

logger = get_logger(__name__)


@dataclass
class Service:
    """Fully wired service components."""

    config: AppConfig
    repository: RepositoryClient
    object_store: ObjectStoreClient
    metrics: MetricsRegistry
    scheduler: JobScheduler


def open_clients(config: AppConfig, settings: Settings):
    """Open the repository and the bucket.

    Returns:
        tuple: (RepositoryClient, ObjectStoreClient)

    Raises:
        AuthError: When the repository password is wrong.
        InitError: When a new repository cannot be created.
        RemoteStoreError: When the bucket is not accessible.
    """

    repository = RepositoryClient.open(
        config.restic.repository,
        config.restic.password,
        binary=settings.RESTIC_BINARY,
    )
    object_store = ObjectStoreClient.open(
        endpoint=config.s3.endpoint,
        access_key=config.s3.access_key,
        secret_key=config.s3.secret_key,
        bucket=config.s3.bucket,
        region=config.s3.region,
    )
    return repository, object_store


def build_scheduler(
    config: AppConfig,
    repository: RepositoryClient,
    object_store: ObjectStoreClient,
    metrics: MetricsRegistry,
) -> JobScheduler:
    """Build the tasks and register one cron job per operation.

    Args:
        config: Service configuration.
        repository: Opened repository client.
        object_store: Opened object storage client.
        metrics: Metrics registry.

    Returns:
        JobScheduler: Scheduler with all jobs registered (not started).
    """

    reconciler = Reconciler(repository, object_store, metrics, config.backup_names)
    pipeline = ArchiveExportPipeline(repository, object_store, config.s3.passphrase)

    scheduler = JobScheduler()
    scheduler.add_job(
        "backup",
        BackupTask(repository, config.backups, metrics, reconciler),
        build_cron_trigger(config.cron.backup),
    )
    scheduler.add_job(
        "check",
        CheckTask(repository, metrics),
        build_cron_trigger(config.cron.check),
    )
    scheduler.add_job(
        "prune",
        PruneTask(repository, config.restic, metrics, reconciler),
        build_cron_trigger(config.cron.prune),
    )
    scheduler.add_job(
        "export",
        ExportTask(repository, pipeline, config.backup_names, metrics, reconciler),
        build_cron_trigger(config.cron.s3),
        run_at_startup=config.cron.run_export_on_startup,
    )
    scheduler.add_job(
        "metrics",
        MetricsRefreshTask(reconciler),
        build_cron_trigger(config.cron.metrics),
        run_at_startup=config.cron.run_metrics_on_startup,
    )
    return scheduler


def build_service(settings: Settings, *, config_file: Optional[str] = None) -> Service:
    """Load configuration and wire every component.

    Raises:
        AutoResticError: On any fatal startup error.
    """

    config = load_config(settings, config_file=config_file)
    repository, object_store = open_clients(config, settings)

    metrics = MetricsRegistry()
    metrics.initialize(config.backup_names)

    scheduler = build_scheduler(config, repository, object_store, metrics)
    return Service(
        config=config,
        repository=repository,
        object_store=object_store,
        metrics=metrics,
        scheduler=scheduler,
    )


def serve(service: Service, settings: Settings, *, port: Optional[int] = None) -> None:
    """Run the HTTP server and the scheduler until a shutdown signal arrives."""

    app = create_app(
        metrics=service.metrics if service.config.metrics_enabled else None,
        scheduler=service.scheduler,
    )
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=settings.HTTP_HOST,
            port=port or settings.HTTP_PORT,
            log_config=None,
            timeout_graceful_shutdown=int(settings.SHUTDOWN_GRACE_SECONDS),
        )
    )
    logger.info("Serving HTTP (host=%s, port=%s)", settings.HTTP_HOST, port or settings.HTTP_PORT)
    server.run()


def main(argv=None) -> int:
    """Entry point."""

    parser = argparse.ArgumentParser(description="Scheduled restic backups with off-site export")
    parser.add_argument("--config", default=None, help="YAML config file (default: CONFIG_FILE)")
    parser.add_argument("--port", type=int, default=None, help="HTTP port (default: HTTP_PORT)")
    args = parser.parse_args(argv)

    settings = Settings()
    configure_logging(
        log_dir=settings.LOG_DIR,
        log_level=settings.LOG_LEVEL,
        debug=settings.DEBUG,
        log_filename=settings.LOG_FILENAME,
    )

    try:
        service = build_service(settings, config_file=args.config)
    except AutoResticError as exc:
        logger.critical("Startup failed: %s", exc)
        return 1

    serve(service, settings, port=args.port)
    logger.info("Shutdown complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
