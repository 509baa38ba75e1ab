"""S3-compatible object storage client for exported archives.

The bucket is expected to be versioned (and usually WORM-locked); every
export creates a new version of `<backup-name>.tar.gz.enc`. Retention and
lifecycle enforcement belong to the bucket, not to this client.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, BinaryIO, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from api.logging_config import get_logger
from backend.exceptions import RemoteStoreError

logger = get_logger(__name__)

ARCHIVE_SUFFIX = ".tar.gz.enc"


def archive_key(backup_name: str) -> str:
    """Return the object key of a backup's exported archive."""

    return f"{backup_name}{ARCHIVE_SUFFIX}"


def backup_name_from_key(key: str) -> str:
    """Derive the backup name from an object key (best effort).

    Keys without the archive suffix are returned unchanged.
    """

    if key.endswith(ARCHIVE_SUFFIX):
        return key[: -len(ARCHIVE_SUFFIX)]
    return key


@dataclass(frozen=True)
class RemoteObject:
    """One version of an object in the bucket."""

    key: str
    version_id: str
    size: int
    created_at: datetime
    is_latest: bool

    @property
    def backup_name(self) -> str:
        return backup_name_from_key(self.key)


def _normalize_endpoint(endpoint: str) -> str:
    endpoint = str(endpoint or "").strip()
    if endpoint and "://" not in endpoint:
        return f"https://{endpoint}"
    return endpoint


class ObjectStoreClient:
    """Thin wrapper around a boto3 S3 client bound to one bucket."""

    def __init__(self, client: Any, bucket: str):
        """Initialize the store.

        Args:
            client: boto3 S3 client.
            bucket: Bucket name.
        """

        self._client = client
        self.bucket = bucket

    @classmethod
    def from_credentials(
        cls,
        *,
        endpoint: str,
        access_key: str,
        secret_key: str,
        bucket: str,
        region: Optional[str] = None,
    ) -> "ObjectStoreClient":
        """Build a client from static credentials without contacting the endpoint.

        Args:
            endpoint: Endpoint host or URL (https is assumed without a scheme).
            access_key: Access key id.
            secret_key: Secret access key.
            bucket: Bucket name.
            region: Optional region name.

        Returns:
            ObjectStoreClient: Store instance.
        """

        client = boto3.client(
            "s3",
            endpoint_url=_normalize_endpoint(endpoint) or None,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=BotoConfig(retries={"max_attempts": 1, "mode": "standard"}),
        )
        return cls(client, bucket)

    @classmethod
    def open(cls, **kwargs) -> "ObjectStoreClient":
        """Build a client and verify that the bucket is reachable.

        Args:
            **kwargs: Forwarded to `from_credentials`.

        Returns:
            ObjectStoreClient: Store instance.

        Raises:
            RemoteStoreError: When the bucket does not exist or is not accessible.
        """

        store = cls.from_credentials(**kwargs)
        store.ensure_bucket()
        logger.info("Opened object storage bucket (bucket=%s)", store.bucket)
        return store

    def ensure_bucket(self) -> None:
        """Check that the bucket exists and the credentials can access it.

        Raises:
            RemoteStoreError: When the bucket is missing or inaccessible.
        """

        try:
            self._client.head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as exc:
            raise RemoteStoreError(f"Bucket {self.bucket} does not exist or is not accessible: {exc}") from exc

    def list_objects(self) -> List[RemoteObject]:
        """List every object version in the bucket (delete markers excluded).

        Returns:
            List[RemoteObject]: All versions.

        Raises:
            RemoteStoreError: When listing fails.
        """

        objects: List[RemoteObject] = []
        try:
            paginator = self._client.get_paginator("list_object_versions")
            for page in paginator.paginate(Bucket=self.bucket):
                for version in page.get("Versions", []) or []:
                    created_at = version.get("LastModified")
                    if isinstance(created_at, datetime) and created_at.tzinfo is None:
                        created_at = created_at.replace(tzinfo=timezone.utc)
                    objects.append(
                        RemoteObject(
                            key=str(version["Key"]),
                            version_id=str(version.get("VersionId") or "null"),
                            size=int(version.get("Size") or 0),
                            created_at=created_at or datetime.fromtimestamp(0, tz=timezone.utc),
                            is_latest=bool(version.get("IsLatest")),
                        )
                    )
        except (BotoCoreError, ClientError) as exc:
            raise RemoteStoreError(f"Failed to list objects in {self.bucket}: {exc}") from exc

        return objects

    def upload_stream(self, key: str, stream: BinaryIO) -> None:
        """Upload an object from a readable stream of unknown length.

        boto3 reads the stream in parts and switches to a multipart upload once
        the data exceeds its threshold.

        Args:
            key: Object key.
            stream: Readable binary stream.

        Raises:
            RemoteStoreError: When the upload fails.
        """

        try:
            self._client.upload_fileobj(stream, self.bucket, key)
        except (BotoCoreError, ClientError) as exc:
            raise RemoteStoreError(f"Failed to upload {key}: {exc}") from exc

    def download_stream(self, key: str, version_id: Optional[str] = None) -> BinaryIO:
        """Open a streaming download of one object version.

        Args:
            key: Object key.
            version_id: Version id; the latest version when omitted.

        Returns:
            BinaryIO: Streaming body; the caller closes it.

        Raises:
            RemoteStoreError: When the object cannot be opened.
        """

        kwargs = {"Bucket": self.bucket, "Key": key}
        if version_id:
            kwargs["VersionId"] = version_id
        try:
            response = self._client.get_object(**kwargs)
        except (BotoCoreError, ClientError) as exc:
            raise RemoteStoreError(f"Failed to download {key} ({version_id}): {exc}") from exc
        return response["Body"]

    def remove_object(self, key: str, version_id: str) -> None:
        """Remove one object version.

        Locked (WORM) versions are refused by the bucket and surface as errors.

        Args:
            key: Object key.
            version_id: Version id.

        Raises:
            RemoteStoreError: When removal fails.
        """

        try:
            self._client.delete_object(Bucket=self.bucket, Key=key, VersionId=version_id)
        except (BotoCoreError, ClientError) as exc:
            raise RemoteStoreError(f"Failed to remove {key} ({version_id}): {exc}") from exc
