"""Tests for the administrative command line."""

import io
from datetime import datetime, timedelta, timezone

import pytest

import cli
from backend.services.export.pipeline import ArchiveExportPipeline
from backend.services.storage.object_store import RemoteObject
from conftest import make_snapshot

T0 = datetime(2024, 5, 1, 2, 0, tzinfo=timezone.utc)


def test_format_table_aligns_columns():
    text = cli.format_table(("Name", "ID"), [("db", "abc"), ("files-long", "d")])

    assert text.splitlines() == [
        "Name        ID",
        "----        --",
        "db          abc",
        "files-long  d",
    ]


def test_restic_ls_sorts_by_name_then_newest(fake_repository):
    fake_repository.snapshots = [
        make_snapshot("files", "f1" * 32, T0),
        make_snapshot("db", "d1" * 32, T0),
        make_snapshot("db", "d2" * 32, T0 + timedelta(days=1)),
    ]
    out = io.StringIO()

    cli.restic_ls(fake_repository, out)

    lines = out.getvalue().splitlines()
    assert lines[0].split() == ["Name", "Date", "ID"]
    assert [line.split()[-1] for line in lines[2:]] == ["d2" * 32, "d1" * 32, "f1" * 32]
    assert "2024-05-02 02:00:00" in lines[2]


def test_restic_rm_reports_removed_name():
    class Repository:
        def remove_by_name(self, name):
            self.removed = name
            return ""

    repository = Repository()
    out = io.StringIO()

    cli.restic_rm(repository, "db", out)

    assert repository.removed == "db"
    assert out.getvalue() == "Removed backup: db\n"


def test_s3_ls_lists_every_version(fake_store):
    fake_store.objects = [
        RemoteObject("files.tar.gz.enc", "v3", 30, T0, True),
        RemoteObject("db.tar.gz.enc", "v1", 10, T0, False),
        RemoteObject("db.tar.gz.enc", "v2", 20, T0 + timedelta(days=7), True),
    ]
    out = io.StringIO()

    cli.s3_ls(fake_store, out)

    rows = [line.split() for line in out.getvalue().splitlines()[2:]]
    assert [(row[0], row[3]) for row in rows] == [
        ("db.tar.gz.enc", "v2"),
        ("db.tar.gz.enc", "v1"),
        ("files.tar.gz.enc", "v3"),
    ]


def test_s3_rm_removes_one_version(fake_store):
    fake_store.objects = [
        RemoteObject("db.tar.gz.enc", "v1", 10, T0, False),
        RemoteObject("db.tar.gz.enc", "v2", 20, T0, True),
    ]

    cli.s3_rm(fake_store, "db.tar.gz.enc", "v1", io.StringIO())

    assert [o.version_id for o in fake_store.objects] == ["v2"]


def test_s3_restore_extracts_under_backup_name(fake_repository, fake_store, tmp_path):
    pipeline = ArchiveExportPipeline(fake_repository, fake_store, "passphrase", iterations=1_000)
    fake_repository.restore_files = {"dump.sql": b"select 1;"}
    pipeline.export_snapshot("snap-1", "db")
    out = io.StringIO()

    cli.s3_restore(pipeline, "db.tar.gz.enc", "", str(tmp_path), out)

    assert (tmp_path / "db" / "dump.sql").read_bytes() == b"select 1;"
    assert "Restored S3 object db.tar.gz.enc" in out.getvalue()


@pytest.mark.parametrize(
    "argv, expected",
    [
        (["restic", "ls"], {"group": "restic", "command": "ls"}),
        (["restic", "rm", "--name", "db"], {"command": "rm", "name": "db"}),
        (["s3", "restore", "--object-key", "db.tar.gz.enc", "--target", "/tmp/x"], {"version_id": ""}),
        (["--config", "c.yaml", "s3", "ls"], {"config": "c.yaml", "group": "s3"}),
    ],
)
def test_parser(argv, expected):
    args = cli.build_parser().parse_args(argv)

    for key, value in expected.items():
        assert getattr(args, key) == value


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["restic"])
