"""Encrypted streaming export of restic snapshots to object storage.

Flow per snapshot:

    restic restore -> temp dir -> tar | gzip | encrypt -> bounded stream -> upload

The producer (archiving) runs on a dedicated worker thread, the upload on the
calling thread. The bounded stream between them applies backpressure so the
archive is never fully buffered. The temporary directory is removed whatever
the outcome.
"""

from __future__ import annotations

import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from api.logging_config import get_logger
from backend.exceptions import EngineError, PipelineError
from backend.services.export.archive import extract_archive, write_archive
from backend.services.export.archive_crypto import DEFAULT_ITERATIONS
from backend.services.export.stream import DEFAULT_MAX_CHUNKS, BoundedByteStream, StreamClosedError
from backend.services.restic.client import RepositoryClient
from backend.services.storage.object_store import ObjectStoreClient, archive_key

logger = get_logger(__name__)


class ArchiveExportPipeline:
    """Export snapshots as encrypted archives and restore them back."""

    def __init__(
        self,
        repository: RepositoryClient,
        object_store: ObjectStoreClient,
        passphrase: str,
        *,
        iterations: int = DEFAULT_ITERATIONS,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        temp_dir: Optional[str] = None,
    ):
        self.repository = repository
        self.object_store = object_store
        self._passphrase = passphrase
        self.iterations = iterations
        self.max_chunks = max_chunks
        self.temp_dir = temp_dir

    def export_snapshot(self, snapshot_id: str, backup_name: str) -> str:
        """Restore a snapshot and upload it as `<backup_name>.tar.gz.enc`.

        Args:
            snapshot_id: Snapshot to export.
            backup_name: Backup name used for the object key.

        Returns:
            str: Object key written.

        Raises:
            PipelineError: When restoring or archiving fails.
            RemoteStoreError: When the upload fails.
        """

        key = archive_key(backup_name)
        with tempfile.TemporaryDirectory(prefix="auto-restic-export-", dir=self.temp_dir) as workdir:
            try:
                self.repository.restore(snapshot_id, workdir)
            except EngineError as exc:
                raise PipelineError(f"Failed to restore snapshot {snapshot_id}: {exc}") from exc

            self.stream_directory(Path(workdir), key)

        logger.info("Exported snapshot (backup=%s, snapshot=%s, key=%s)", backup_name, snapshot_id, key)
        return key

    def stream_directory(self, source_dir: Path, key: str) -> None:
        """Archive a directory and upload it without buffering the archive.

        Args:
            source_dir: Directory whose contents are archived.
            key: Destination object key.

        Raises:
            PipelineError: When archiving fails.
            RemoteStoreError: When the upload fails.
        """

        stream = BoundedByteStream(self.max_chunks)
        writer, reader = stream.endpoints()

        def produce() -> None:
            error: Optional[BaseException] = None
            try:
                write_archive(source_dir, writer, self._passphrase, iterations=self.iterations)
            except BaseException as exc:
                error = exc
                raise
            finally:
                writer.close(error)

        upload_error: Optional[BaseException] = None
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="archive-producer") as executor:
            producer = executor.submit(produce)
            try:
                self.object_store.upload_stream(key, reader)
            except Exception as exc:
                upload_error = exc
            finally:
                reader.close()

            producer_error = producer.exception()

        # A producer failure reaches the uploader through the stream, so the
        # upload error already carries it as its cause.
        if upload_error is not None:
            raise upload_error
        if producer_error is not None:
            if isinstance(producer_error, PipelineError) and not isinstance(producer_error, StreamClosedError):
                raise producer_error
            raise PipelineError(f"Failed to archive {source_dir}: {producer_error}") from producer_error

    def restore_object(self, key: str, version_id: Optional[str], target_dir: str) -> None:
        """Download, decrypt and unpack one archive version into a directory.

        Args:
            key: Object key.
            version_id: Version id, latest when omitted.
            target_dir: Destination directory.

        Raises:
            RemoteStoreError: When the download cannot be opened.
            ArchiveEncryptionError: When the passphrase is wrong or the archive is corrupt.
            PipelineError: When unpacking fails.
        """

        body = self.object_store.download_stream(key, version_id)
        try:
            extract_archive(body, target_dir, self._passphrase)
        finally:
            body.close()

        logger.info("Restored archive (key=%s, version=%s, target=%s)", key, version_id, target_dir)
