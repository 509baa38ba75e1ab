"""Tests for scheduled task bodies."""

from datetime import datetime, timedelta, timezone

import pytest

from backend.exceptions import CommandError, EngineError, RemoteStoreError
from backend.services.export.pipeline import ArchiveExportPipeline
from backend.services.metrics.reconciler import Reconciler
from backend.services.tasks import backup as backup_module
from backend.services.tasks.backup import BackupTask
from backend.services.tasks.commands import run_shell_command
from backend.services.tasks.export import ExportTask, MetricsRefreshTask, latest_by_name
from backend.services.tasks.maintenance import CheckTask, PruneTask
from conftest import make_snapshot
from models.config import BackupSpec, ResticConfig

T0 = datetime(2024, 5, 1, 2, 0, tzinfo=timezone.utc)


@pytest.fixture
def reconciler(fake_repository, fake_store, metrics):
    return Reconciler(fake_repository, fake_store, metrics, ["db", "files", "logs"])


def _specs(*names, **extra):
    return [BackupSpec(name=name, path=f"/data/{name}", **extra) for name in names]


class TestBackupTask:
    def test_backs_up_every_unit_in_order(self, fake_repository, metrics, reconciler):
        task = BackupTask(fake_repository, _specs("db", "files"), metrics, reconciler)

        task.run()

        backups = [c for c in fake_repository.calls if c[0] == "backup"]
        assert [c[1] for c in backups] == ["db", "files"]
        assert metrics.sample("restic_repository_snapshot_total", {"name": "db"}) == 1
        assert metrics.sample("restic_repository_backup_duration_seconds", {"name": "db"}) >= 0

    def test_failure_is_isolated_per_unit(self, fake_repository, metrics, reconciler):
        fake_repository.fail["backup:files"] = EngineError("Failed to backup directory /data/files")
        task = BackupTask(fake_repository, _specs("db", "files", "logs"), metrics, reconciler)

        task.run()

        assert [c[1] for c in fake_repository.calls if c[0] == "backup"] == ["db", "files", "logs"]
        assert metrics.sample("restic_repository_backup_failures_total", {"name": "files"}) == 1
        assert metrics.sample("restic_repository_backup_failures_total", {"name": "db"}) in (None, 0)
        assert metrics.sample("restic_repository_snapshot_total", {"name": "logs"}) == 1
        assert metrics.sample("restic_repository_snapshot_total", {"name": "files"}) == 0

    def test_exclude_options_are_forwarded(self, fake_repository, metrics, reconciler):
        unit = BackupSpec(name="db", path="/data/db", exclude="*.tmp")
        BackupTask(fake_repository, [unit], metrics, reconciler).run()

        assert fake_repository.calls[0] == ("backup", "db", "/data/db", "*.tmp", None)

    def test_pre_and_post_commands_wrap_the_backup(self, fake_repository, metrics, reconciler, monkeypatch):
        order = []
        monkeypatch.setattr(backup_module, "run_shell_command", lambda command: order.append(command))
        original_backup = fake_repository.backup

        def backup(*args, **kwargs):
            order.append("backup")
            return original_backup(*args, **kwargs)

        fake_repository.backup = backup
        specs = _specs("db", pre_command="dump", post_command="cleanup")

        BackupTask(fake_repository, specs, metrics, reconciler).run()

        assert order == ["dump", "backup", "cleanup"]

    def test_failed_pre_command_skips_backup(self, fake_repository, metrics, reconciler, monkeypatch):
        def failing(command):
            raise CommandError("exit 1", command=command, returncode=1)

        monkeypatch.setattr(backup_module, "run_shell_command", failing)
        specs = _specs("db", pre_command="false")

        BackupTask(fake_repository, specs, metrics, reconciler).run()

        assert not [c for c in fake_repository.calls if c[0] == "backup"]
        assert metrics.sample("restic_repository_backup_failures_total", {"name": "db"}) == 1

    def test_failed_pre_command_does_not_stop_other_units(self, fake_repository, metrics, reconciler, monkeypatch):
        def pre_command(command):
            if command == "dump-db":
                raise CommandError("exit 1", command=command, returncode=1)

        monkeypatch.setattr(backup_module, "run_shell_command", pre_command)
        units = [
            BackupSpec(name="db", path="/data/db", pre_command="dump-db"),
            BackupSpec(name="files", path="/data/files", pre_command="sync-files"),
        ]

        metrics.initialize(["db", "files"])
        BackupTask(fake_repository, units, metrics, reconciler).run()

        assert [c[1] for c in fake_repository.calls if c[0] == "backup"] == ["files"]
        assert metrics.sample("restic_repository_snapshot_total", {"name": "files"}) == 1
        assert metrics.sample("restic_repository_backup_failures_total", {"name": "files"}) == 0
        assert metrics.sample("restic_repository_backup_failures_total", {"name": "db"}) == 1
        assert metrics.sample("restic_repository_snapshot_total", {"name": "db"}) == 0

    def test_reconcile_failure_does_not_raise(self, fake_repository, metrics, reconciler):
        fake_repository.fail["list"] = EngineError("Failed to list snapshots")

        BackupTask(fake_repository, _specs("db"), metrics, reconciler).run()

        assert metrics.sample("restic_scheduler_operation_errors_total", {"operation": "list"}) == 1


class TestShellCommand:
    def test_success_returns_output(self):
        assert "hello" in run_shell_command("echo hello")

    def test_nonzero_exit_raises(self):
        with pytest.raises(CommandError) as excinfo:
            run_shell_command("echo oops >&2; exit 3")

        assert excinfo.value.returncode == 3
        assert "oops" in excinfo.value.output


class TestMaintenanceTasks:
    def test_check_failure_increments_counter(self, fake_repository, metrics):
        fake_repository.fail["check"] = EngineError("Failed to check restic repository")

        CheckTask(fake_repository, metrics).run()

        assert metrics.sample("restic_scheduler_operation_errors_total", {"operation": "check"}) == 1

    def test_prune_uses_configured_retention(self, fake_repository, metrics, reconciler):
        retention = ResticConfig(password="x", keep_daily=5, keep_weekly=2, keep_monthly=1)

        PruneTask(fake_repository, retention, metrics, reconciler).run()

        assert ("forget_and_prune", 5, 2, 1) in fake_repository.calls
        assert ("list_snapshots",) in fake_repository.calls

    def test_prune_failure_still_refreshes_metrics(self, fake_repository, metrics, reconciler):
        fake_repository.fail["prune"] = EngineError("Failed to forget old backups")

        PruneTask(fake_repository, ResticConfig(password="x"), metrics, reconciler).run()

        assert metrics.sample("restic_scheduler_operation_errors_total", {"operation": "prune"}) == 1
        assert ("list_snapshots",) in fake_repository.calls


class TestExportTask:
    @pytest.fixture
    def pipeline(self, fake_repository, fake_store):
        return ArchiveExportPipeline(fake_repository, fake_store, "passphrase", iterations=1_000)

    def test_latest_by_name(self):
        snapshots = [
            make_snapshot("db", "a1", T0),
            make_snapshot("db", "a2", T0 + timedelta(hours=1)),
            make_snapshot("files", "b1", T0),
        ]

        latest = latest_by_name(snapshots)

        assert latest["db"].id == "a2"
        assert latest["files"].id == "b1"

    def test_exports_newest_snapshot_per_configured_name(
        self, fake_repository, fake_store, pipeline, metrics, reconciler
    ):
        fake_repository.snapshots = [
            make_snapshot("db", "a1", T0),
            make_snapshot("db", "a2", T0 + timedelta(hours=1)),
            make_snapshot("unconfigured", "z1", T0),
        ]

        ExportTask(fake_repository, pipeline, ["db"], metrics, reconciler).run()

        restores = [c[1] for c in fake_repository.calls if c[0] == "restore"]
        assert restores == ["a2"]
        assert [o.key for o in fake_store.objects] == ["db.tar.gz.enc"]
        assert metrics.sample("restic_s3_total", {"name": "db"}) == 1
        assert metrics.sample("restic_s3_export_duration_seconds", {"name": "db"}) >= 0

    def test_missing_snapshot_counts_as_export_failure(
        self, fake_repository, fake_store, pipeline, metrics, reconciler
    ):
        fake_repository.snapshots = [make_snapshot("db", "a1", T0)]

        ExportTask(fake_repository, pipeline, ["files", "db"], metrics, reconciler).run()

        assert metrics.sample("restic_s3_export_failures_total", {"name": "files"}) == 1
        assert [o.key for o in fake_store.objects] == ["db.tar.gz.enc"]

    def test_upload_failure_is_isolated(self, fake_repository, fake_store, pipeline, metrics, reconciler):
        fake_repository.snapshots = [make_snapshot("db", "a1", T0), make_snapshot("files", "b1", T0)]
        fake_store.fail_upload = RemoteStoreError("connection reset")

        ExportTask(fake_repository, pipeline, ["db", "files"], metrics, reconciler).run()

        assert metrics.sample("restic_s3_export_failures_total", {"name": "db"}) == 1
        assert metrics.sample("restic_s3_export_failures_total", {"name": "files"}) == 1

    def test_listing_failure_aborts_run(self, fake_repository, fake_store, pipeline, metrics, reconciler):
        fake_repository.fail["list"] = EngineError("Failed to list snapshots")

        ExportTask(fake_repository, pipeline, ["db"], metrics, reconciler).run()

        assert metrics.sample("restic_scheduler_operation_errors_total", {"operation": "list"}) == 1
        assert not [c for c in fake_repository.calls if c[0] == "restore"]

    def test_empty_snapshot_export_is_counted(self, fake_repository, fake_store, pipeline, metrics, reconciler):
        fake_repository.snapshots = [make_snapshot("db", "a1", T0)]
        fake_repository.restore_files = {}

        ExportTask(fake_repository, pipeline, ["db"], metrics, reconciler).run()

        assert metrics.sample("restic_s3_total", {"name": "db"}) == 1
        assert metrics.sample("restic_s3_latest_size_bytes", {"name": "db"}) > 0


class TestMetricsRefreshTask:
    def test_object_store_refresh_runs_when_repository_fails(self, fake_repository, fake_store, metrics, reconciler):
        fake_repository.fail["list"] = EngineError("Failed to list snapshots")
        fake_store.objects = []

        MetricsRefreshTask(reconciler).run()

        assert metrics.sample("restic_scheduler_operation_errors_total", {"operation": "list"}) == 1
        assert metrics.sample("restic_s3_total", {"name": "db"}) == 0

    def test_repository_refresh_runs_when_object_store_fails(self, fake_repository, fake_store, metrics, reconciler):
        fake_repository.snapshots = [make_snapshot("db", "a1", T0)]
        fake_store.fail_list = RemoteStoreError("denied")

        MetricsRefreshTask(reconciler).run()

        assert metrics.sample("restic_repository_snapshot_total", {"name": "db"}) == 1
        assert metrics.sample("restic_scheduler_operation_errors_total", {"operation": "list-objects"}) == 1
