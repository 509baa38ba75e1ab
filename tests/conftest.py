"""Global pytest configuration and fixtures."""

import io
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Add app directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "app"))

from backend.exceptions import EngineError, RemoteStoreError  # noqa: E402
from backend.services.metrics.registry import MetricsRegistry  # noqa: E402
from backend.services.restic.schemas import Snapshot, SnapshotStats, name_tag  # noqa: E402
from backend.services.storage.object_store import RemoteObject  # noqa: E402


def make_snapshot(name: Optional[str], snapshot_id: str, when: datetime, *, size: int = 0) -> Snapshot:
    """Build a snapshot as restic would report it."""

    return Snapshot.model_validate(
        {
            "id": snapshot_id,
            "short_id": snapshot_id[:8],
            "time": when.isoformat(),
            "tags": [name_tag(name)] if name else None,
            "paths": [f"/data/{name or 'untagged'}"],
            "summary": {"total_bytes_processed": size},
        }
    )


class FakeRepository:
    """In-memory stand-in for RepositoryClient."""

    def __init__(self, snapshots: Optional[List[Snapshot]] = None):
        self.snapshots: List[Snapshot] = list(snapshots or [])
        self.stats: Dict[str, SnapshotStats] = {}
        self.calls: List[tuple] = []
        self.fail: Dict[str, Exception] = {}
        self.restore_files: Dict[str, bytes] = {"data.txt": b"hello"}

    def _maybe_fail(self, operation: str, key: Optional[str] = None) -> None:
        error = self.fail.get(f"{operation}:{key}") or self.fail.get(operation)
        if error is not None:
            raise error

    def backup(self, name, path, *, exclude=None, exclude_file=None):
        self.calls.append(("backup", name, path, exclude, exclude_file))
        self._maybe_fail("backup", name)
        self.snapshots.append(make_snapshot(name, f"{name}-{len(self.snapshots):056d}", datetime.now(timezone.utc)))

    def check(self):
        self.calls.append(("check",))
        self._maybe_fail("check")

    def forget_and_prune(self, keep_daily, keep_weekly, keep_monthly):
        self.calls.append(("forget_and_prune", keep_daily, keep_weekly, keep_monthly))
        self._maybe_fail("prune")

    def list_snapshots(self):
        self.calls.append(("list_snapshots",))
        self._maybe_fail("list")
        return list(self.snapshots)

    def list_latest_snapshots(self):
        self.calls.append(("list_latest_snapshots",))
        self._maybe_fail("list")
        latest: Dict[str, Snapshot] = {}
        for snapshot in self.snapshots:
            if snapshot.name not in latest or snapshot.time > latest[snapshot.name].time:
                latest[snapshot.name] = snapshot
        return list(latest.values())

    def stats_by_name(self, name):
        self.calls.append(("stats_by_name", name))
        self._maybe_fail("stats", name)
        return self.stats.get(name, SnapshotStats())

    def restore(self, snapshot_id, dest_dir):
        self.calls.append(("restore", snapshot_id, str(dest_dir)))
        self._maybe_fail("restore", snapshot_id)
        for relative, content in self.restore_files.items():
            path = Path(dest_dir) / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)


class FakeObjectStore:
    """In-memory stand-in for ObjectStoreClient keeping every version."""

    def __init__(self):
        self.objects: List[RemoteObject] = []
        self.bodies: Dict[tuple, bytes] = {}
        self.fail_upload: Optional[Exception] = None
        self.fail_list: Optional[Exception] = None
        self.read_size = 8 * 1024

    def upload_stream(self, key, stream):
        data = bytearray()
        while True:
            chunk = stream.read(self.read_size)
            if not chunk:
                break
            data.extend(chunk)
            if self.fail_upload is not None:
                raise self.fail_upload

        version_id = f"v{len(self.objects) + 1}"
        self.objects = [
            RemoteObject(o.key, o.version_id, o.size, o.created_at, False) if o.key == key else o
            for o in self.objects
        ]
        self.objects.append(
            RemoteObject(
                key=key,
                version_id=version_id,
                size=len(data),
                created_at=datetime.now(timezone.utc),
                is_latest=True,
            )
        )
        self.bodies[(key, version_id)] = bytes(data)

    def list_objects(self):
        if self.fail_list is not None:
            raise self.fail_list
        return list(self.objects)

    def download_stream(self, key, version_id=None):
        if version_id is None:
            version_id = next(o.version_id for o in self.objects if o.key == key and o.is_latest)
        return io.BytesIO(self.bodies[(key, version_id)])

    def remove_object(self, key, version_id):
        self.objects = [o for o in self.objects if not (o.key == key and o.version_id == version_id)]
        self.bodies.pop((key, version_id), None)


@pytest.fixture
def metrics():
    return MetricsRegistry()


@pytest.fixture
def fake_repository():
    return FakeRepository()


@pytest.fixture
def fake_store():
    return FakeObjectStore()


@pytest.fixture
def engine_error():
    return EngineError("Failed to run restic", command=["restic"], returncode=1, output="boom")


@pytest.fixture
def remote_error():
    return RemoteStoreError("bucket unavailable")
