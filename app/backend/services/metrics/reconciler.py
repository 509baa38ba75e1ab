"""Recompute metrics from repository and object storage listings."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from api.logging_config import get_logger
from backend.exceptions import AutoResticError
from backend.services.metrics.registry import (
    OPERATION_LIST,
    OPERATION_LIST_OBJECTS,
    OPERATION_STATS,
    MetricsRegistry,
)
from backend.services.restic.client import RepositoryClient
from backend.services.restic.schemas import Snapshot, SnapshotStats
from backend.services.storage.object_store import ObjectStoreClient, RemoteObject

logger = get_logger(__name__)


@dataclass
class _Fold:
    count: int = 0
    total_size: int = 0
    latest_size: int = 0
    latest_time: float = 0.0
    latest_seen: bool = field(default=False, repr=False)


def fold_snapshots(snapshots: Iterable[Snapshot]) -> Dict[str, _Fold]:
    """Group snapshots by backup name with count and newest snapshot values."""

    folds: Dict[str, _Fold] = {}
    for snapshot in snapshots:
        fold = folds.setdefault(snapshot.name, _Fold())
        fold.count += 1
        timestamp = snapshot.timestamp
        if not fold.latest_seen or timestamp > fold.latest_time:
            fold.latest_time = timestamp
            fold.latest_size = snapshot.summary.total_bytes_processed
            fold.latest_seen = True
    return folds


def fold_objects(objects: Iterable[RemoteObject]) -> Dict[str, _Fold]:
    """Group object versions by derived backup name.

    The version flagged latest supplies latest size/time; when none is flagged
    the newest version by modification time is used.
    """

    folds: Dict[str, _Fold] = {}
    for obj in objects:
        fold = folds.setdefault(obj.backup_name, _Fold())
        fold.count += 1
        fold.total_size += obj.size
        timestamp = obj.created_at.timestamp()
        if obj.is_latest or (not fold.latest_seen and timestamp > fold.latest_time):
            fold.latest_time = timestamp
            fold.latest_size = obj.size
            fold.latest_seen = fold.latest_seen or obj.is_latest
    return folds


class Reconciler:
    """Derive per-backup gauges from full listings.

    Configured names are always reset first, so a backup whose snapshots or
    objects disappeared drops to zero instead of keeping stale values.
    """

    def __init__(
        self,
        repository: RepositoryClient,
        object_store: ObjectStoreClient,
        metrics: MetricsRegistry,
        backup_names: Iterable[str],
    ):
        self.repository = repository
        self.object_store = object_store
        self.metrics = metrics
        self.backup_names: List[str] = list(backup_names)

    def reconcile_repository(self) -> None:
        """Refresh repository gauges from one snapshot listing and per-name stats.

        A failed pass leaves the previously published values untouched.

        Raises:
            AutoResticError: When listing or a stats query fails (counted first).
        """

        try:
            snapshots = self.repository.list_snapshots()
        except AutoResticError:
            self.metrics.record_operation_error(OPERATION_LIST)
            raise

        folds = fold_snapshots(snapshots)
        stats_by_name: Dict[str, SnapshotStats] = {}
        for name in folds:
            try:
                stats_by_name[name] = self.repository.stats_by_name(name)
            except AutoResticError:
                self.metrics.record_operation_error(OPERATION_STATS)
                raise

        # Gauges change only once every query succeeded.
        for name in self.backup_names:
            self.metrics.reset_repository(name)

        for name, fold in folds.items():
            self.metrics.set_repository_stats(
                name,
                count=fold.count,
                total_size=stats_by_name[name].total_size,
                latest_size=fold.latest_size,
                latest_time=fold.latest_time,
            )

        logger.debug("Reconciled repository metrics (snapshots=%s, names=%s)", len(snapshots), sorted(folds))

    def reconcile_object_store(self) -> None:
        """Refresh object storage gauges from one version listing.

        Raises:
            AutoResticError: When listing fails (counted first).
        """

        try:
            objects = self.object_store.list_objects()
        except AutoResticError:
            self.metrics.record_operation_error(OPERATION_LIST_OBJECTS)
            raise

        folds = fold_objects(objects)
        for name in self.backup_names:
            self.metrics.reset_object_store(name)

        for name, fold in folds.items():
            self.metrics.set_object_store_stats(
                name,
                count=fold.count,
                total_size=fold.total_size,
                latest_size=fold.latest_size,
                latest_time=fold.latest_time,
            )

        logger.debug("Reconciled object storage metrics (objects=%s, names=%s)", len(objects), sorted(folds))
