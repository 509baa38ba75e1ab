"""Prometheus metrics for repository and object storage state.

The registry is owned by the service (not the process-global default) so that
tests and embedded uses can create independent instances.
"""

from __future__ import annotations

from typing import Iterable, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

NAMESPACE = "restic"

OPERATION_CHECK = "check"
OPERATION_PRUNE = "prune"
OPERATION_LIST = "list"
OPERATION_STATS = "stats"
OPERATION_LIST_OBJECTS = "list-objects"

OPERATION_CLASSES = (
    OPERATION_CHECK,
    OPERATION_PRUNE,
    OPERATION_LIST,
    OPERATION_STATS,
    OPERATION_LIST_OBJECTS,
)

CONTENT_TYPE = CONTENT_TYPE_LATEST


class MetricsRegistry:
    """Gauges and counters keyed by backup name or operation class.

    All setters overwrite (last write wins); counters only increase.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        def repo_gauge(name: str, documentation: str) -> Gauge:
            return Gauge(name, documentation, ["name"], namespace=NAMESPACE, subsystem="repository", registry=self.registry)

        def s3_gauge(name: str, documentation: str) -> Gauge:
            return Gauge(name, documentation, ["name"], namespace=NAMESPACE, subsystem="s3", registry=self.registry)

        self.snapshot_total = repo_gauge("snapshot_total", "Number of snapshots per backup name")
        self.snapshot_total_size = repo_gauge(
            "snapshot_total_size_bytes", "Raw data size of all snapshots per backup name"
        )
        self.snapshot_latest_size = repo_gauge(
            "snapshot_latest_size_bytes", "Bytes processed by the latest snapshot per backup name"
        )
        self.snapshot_latest_time = repo_gauge(
            "snapshot_latest_time", "Unix time of the latest snapshot per backup name"
        )
        self.backup_duration = repo_gauge("backup_duration_seconds", "Duration of the last backup run")

        self.s3_total = s3_gauge("total", "Number of object versions per backup name")
        self.s3_total_size = s3_gauge("total_size_bytes", "Size of all object versions per backup name")
        self.s3_latest_size = s3_gauge("latest_size_bytes", "Size of the latest object version per backup name")
        self.s3_latest_time = s3_gauge("latest_time", "Unix time of the latest object version per backup name")
        self.export_duration = s3_gauge("export_duration_seconds", "Duration of the last export")

        self.backup_failures = Counter(
            "backup_failures",
            "Failed backups per backup name",
            ["name"],
            namespace=NAMESPACE,
            subsystem="repository",
            registry=self.registry,
        )
        self.export_failures = Counter(
            "export_failures",
            "Failed exports per backup name",
            ["name"],
            namespace=NAMESPACE,
            subsystem="s3",
            registry=self.registry,
        )
        self.operation_errors = Counter(
            "operation_errors",
            "Failed repository/object storage operations per operation class",
            ["operation"],
            namespace=NAMESPACE,
            subsystem="scheduler",
            registry=self.registry,
        )

    def _name_series(self):
        return (
            self.snapshot_total,
            self.snapshot_total_size,
            self.snapshot_latest_size,
            self.snapshot_latest_time,
            self.backup_duration,
            self.s3_total,
            self.s3_total_size,
            self.s3_latest_size,
            self.s3_latest_time,
            self.export_duration,
        )

    def initialize(self, names: Iterable[str]) -> None:
        """Pre-register every series for the given backup names and all operation classes.

        Existing counter values are kept; gauges are created at zero when new.
        """

        for name in names:
            for gauge in self._name_series():
                gauge.labels(name=name)
            self.backup_failures.labels(name=name)
            self.export_failures.labels(name=name)

        for operation in OPERATION_CLASSES:
            self.operation_errors.labels(operation=operation)

    def reset_repository(self, name: str) -> None:
        for gauge in (self.snapshot_total, self.snapshot_total_size, self.snapshot_latest_size, self.snapshot_latest_time):
            gauge.labels(name=name).set(0)

    def reset_object_store(self, name: str) -> None:
        for gauge in (self.s3_total, self.s3_total_size, self.s3_latest_size, self.s3_latest_time):
            gauge.labels(name=name).set(0)

    def set_repository_stats(
        self,
        name: str,
        *,
        count: Optional[int] = None,
        total_size: Optional[int] = None,
        latest_size: Optional[int] = None,
        latest_time: Optional[float] = None,
    ) -> None:
        """Set repository gauges for one backup name; omitted values are left as they are."""

        if count is not None:
            self.snapshot_total.labels(name=name).set(count)
        if total_size is not None:
            self.snapshot_total_size.labels(name=name).set(total_size)
        if latest_size is not None:
            self.snapshot_latest_size.labels(name=name).set(latest_size)
        if latest_time is not None:
            self.snapshot_latest_time.labels(name=name).set(latest_time)

    def set_object_store_stats(
        self,
        name: str,
        *,
        count: Optional[int] = None,
        total_size: Optional[int] = None,
        latest_size: Optional[int] = None,
        latest_time: Optional[float] = None,
    ) -> None:
        """Set object storage gauges for one backup name; omitted values are left as they are."""

        if count is not None:
            self.s3_total.labels(name=name).set(count)
        if total_size is not None:
            self.s3_total_size.labels(name=name).set(total_size)
        if latest_size is not None:
            self.s3_latest_size.labels(name=name).set(latest_size)
        if latest_time is not None:
            self.s3_latest_time.labels(name=name).set(latest_time)

    def set_backup_duration(self, name: str, seconds: float) -> None:
        self.backup_duration.labels(name=name).set(seconds)

    def set_export_duration(self, name: str, seconds: float) -> None:
        self.export_duration.labels(name=name).set(seconds)

    def record_backup_failure(self, name: str) -> None:
        self.backup_failures.labels(name=name).inc()

    def record_export_failure(self, name: str) -> None:
        self.export_failures.labels(name=name).inc()

    def record_operation_error(self, operation: str) -> None:
        if operation not in OPERATION_CLASSES:
            raise ValueError(f"Unknown operation class: {operation}")
        self.operation_errors.labels(operation=operation).inc()

    def render(self) -> bytes:
        """Return the Prometheus text exposition of all series."""

        return generate_latest(self.registry)

    def sample(self, metric: str, labels: Optional[dict] = None) -> Optional[float]:
        """Return the current value of one sample, or None when it does not exist.

        Args:
            metric: Full sample name, e.g. `restic_repository_snapshot_total`.
            labels: Label values.
        """

        return self.registry.get_sample_value(metric, labels or {})
