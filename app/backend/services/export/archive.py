"""Encrypted tar.gz archives of directory trees.

`write_archive` walks a directory and streams `tar | gzip | encrypt` into any
writable sink. `extract_archive` reverses it: the decrypted tarball is spooled
to a temporary file and only unpacked after the HMAC has been verified.

Preserved: directory structure, regular file contents, symlinks (target stored
verbatim), permission bits and modification times (whole seconds). Owner ids
are recorded but never applied on extraction.
"""

from __future__ import annotations

import os
import tarfile
import tempfile
from pathlib import Path
from typing import BinaryIO, Union

from api.logging_config import get_logger
from backend.exceptions import PipelineError
from backend.services.export.archive_crypto import DEFAULT_ITERATIONS, EncryptingWriter, decrypt_stream

logger = get_logger(__name__)

PathLike = Union[str, Path]


def _iter_entries(source_dir: Path):
    """Yield (absolute path, archive name) for every entry below `source_dir`, sorted."""

    for root, dirnames, filenames in os.walk(source_dir, followlinks=False):
        dirnames.sort()
        root_path = Path(root)
        for name in sorted(dirnames + filenames):
            path = root_path / name
            yield path, path.relative_to(source_dir).as_posix()


def write_archive(
    source_dir: PathLike,
    sink: BinaryIO,
    passphrase: str,
    *,
    iterations: int = DEFAULT_ITERATIONS,
) -> int:
    """Write an encrypted tar.gz of a directory's contents into a sink.

    The directory itself is not part of the archive; its children are stored
    with paths relative to it. An empty directory yields a valid archive.

    Args:
        source_dir: Directory to archive.
        sink: Writable binary stream; it is not closed.
        passphrase: Encryption passphrase.
        iterations: PBKDF2 iteration count.

    Returns:
        int: Encrypted bytes written to the sink.

    Raises:
        PipelineError: When the directory cannot be read.
    """

    source_dir = Path(source_dir)
    if not source_dir.is_dir():
        raise PipelineError(f"Archive source is not a directory: {source_dir}")

    count = 0
    with EncryptingWriter(sink, passphrase, iterations=iterations) as encrypted:
        try:
            with tarfile.open(fileobj=encrypted, mode="w|gz", format=tarfile.PAX_FORMAT) as tar:
                for path, arcname in _iter_entries(source_dir):
                    tarinfo = tar.gettarinfo(str(path), arcname=arcname)
                    if tarinfo is None:
                        logger.debug("Skipping unsupported file type (path=%s)", path)
                        continue
                    tarinfo.mtime = int(tarinfo.mtime)
                    if tarinfo.isreg():
                        with open(path, "rb") as f:
                            tar.addfile(tarinfo, f)
                    else:
                        tar.addfile(tarinfo)
                    count += 1
        except OSError as exc:
            raise PipelineError(f"Failed to archive {source_dir}: {exc}") from exc

    logger.debug("Archived directory (path=%s, entries=%s, bytes=%s)", source_dir, count, encrypted.bytes_written)
    return encrypted.bytes_written


def _extraction_filter(member: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo:
    member = tarfile.tar_filter(member, dest_path)
    return member.replace(uid=None, gid=None, uname=None, gname=None, deep=False)


def extract_archive(source: BinaryIO, target_dir: PathLike, passphrase: str) -> None:
    """Decrypt and unpack an encrypted archive into a directory.

    Args:
        source: Readable encrypted stream (e.g. an S3 body).
        target_dir: Destination directory; created when missing.
        passphrase: Archive passphrase.

    Raises:
        ArchiveEncryptionError: When decryption or verification fails.
        PipelineError: When the tarball cannot be unpacked.
    """

    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    with tempfile.TemporaryFile() as plain:
        decrypt_stream(source, plain, passphrase)
        plain.seek(0)
        try:
            with tarfile.open(fileobj=plain, mode="r:gz") as tar:
                tar.extractall(path=str(target_dir), filter=_extraction_filter)
        except (OSError, tarfile.TarError) as exc:
            raise PipelineError(f"Failed to extract archive into {target_dir}: {exc}") from exc

    logger.info("Extracted archive (target=%s)", target_dir)
