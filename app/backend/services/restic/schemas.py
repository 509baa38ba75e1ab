"""Result schemas for restic JSON output.

Each schema validates the fields this service relies on and ignores
everything else, so newer restic releases adding fields keep working.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from api.logging_config import get_logger

logger = get_logger(__name__)

NAME_TAG_PREFIX = "name="
_FRACTION = re.compile(r"(\.\d+)")


def name_tag(name: str) -> str:
    """Return the snapshot tag that carries a backup name."""

    return f"{NAME_TAG_PREFIX}{name}"


class SnapshotSummary(BaseModel):
    """Statistics restic records for the backup run that created a snapshot."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    files_new: int = 0
    files_changed: int = 0
    files_unmodified: int = 0
    dirs_new: int = 0
    dirs_changed: int = 0
    dirs_unmodified: int = 0
    data_blobs: int = 0
    tree_blobs: int = 0
    data_added: int = 0
    total_files_processed: int = 0
    total_bytes_processed: int = 0
    total_duration: float = 0.0
    snapshot_id: str = ""


class Snapshot(BaseModel):
    """One entry of `restic snapshots --json`."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(..., min_length=1)
    time: datetime
    short_id: str = ""
    tree: str = ""
    paths: List[str] = Field(default_factory=list)
    hostname: str = ""
    username: str = ""
    tags: List[str] = Field(default_factory=list)
    excludes: List[str] = Field(default_factory=list)
    program_version: str = ""
    summary: SnapshotSummary = Field(default_factory=SnapshotSummary)

    @field_validator("paths", "tags", "excludes", mode="before")
    @classmethod
    def _null_as_empty(cls, value):
        return [] if value is None else value

    @field_validator("time", mode="before")
    @classmethod
    def _truncate_nanoseconds(cls, value):
        # restic prints nanoseconds; datetime holds microseconds.
        if isinstance(value, str):
            return _FRACTION.sub(lambda m: m.group(1)[:7], value)
        return value

    @field_validator("summary", mode="before")
    @classmethod
    def _null_summary(cls, value):
        return {} if value is None else value

    @property
    def name(self) -> str:
        """Backup name from the `name=` tag, or the snapshot id when untagged."""

        resolved = resolve_snapshot_name(self.tags)
        if resolved is None:
            logger.debug("Snapshot has no name tag; using its id as name (snapshot=%s)", self.id)
            return self.id
        return resolved

    @property
    def timestamp(self) -> float:
        """Creation time as unix seconds."""

        return self.time.timestamp()


class SnapshotStats(BaseModel):
    """Output of `restic stats --json --mode raw-data`."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    total_size: int = 0
    total_uncompressed_size: int = 0
    compression_ratio: float = 0.0
    compression_progress: float = 0.0
    compression_space_saving: float = 0.0
    total_blob_count: int = 0
    snapshots_count: int = 0


def resolve_snapshot_name(tags: Optional[List[str]]) -> Optional[str]:
    """Return the backup name carried in a tag list.

    Args:
        tags: Snapshot tags.

    Returns:
        Optional[str]: Name from the first `name=` tag, or None.
    """

    for tag in tags or []:
        if tag.startswith(NAME_TAG_PREFIX):
            return tag[len(NAME_TAG_PREFIX):]
    return None


SNAPSHOT_LIST = TypeAdapter(List[Snapshot])
