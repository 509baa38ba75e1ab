"""Streaming passphrase encryption for exported archives.

The encrypted stream format is:
    [MAGIC(8)][VERSION(1)][SALT(16)][IV(16)][ITERATIONS(4)][CIPHERTEXT...][HMAC(32)]

Encryption uses:
    - AES-256-CTR for streaming encryption
    - HMAC-SHA256 over the ciphertext for integrity
    - PBKDF2-HMAC-SHA256 for key derivation

Both directions work on file-like objects and never hold more than one chunk
in memory, so archives of any size can be piped through them. The ciphertext
length is not known up front; the HMAC is always the final 32 bytes.
"""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from typing import BinaryIO

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from backend.exceptions import ArchiveEncryptionError


MAGIC = b"ARSTENC1"
VERSION = 1
SALT_LEN = 16
IV_LEN = 16
HMAC_LEN = 32
HEADER_LEN = 8 + 1 + SALT_LEN + IV_LEN + 4
DEFAULT_ITERATIONS = 200_000
DEFAULT_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class EncryptedHeader:
    """Parsed header of an encrypted archive."""

    salt: bytes
    iv: bytes
    iterations: int


def _derive_keys(*, passphrase: str, salt: bytes, iterations: int) -> tuple[bytes, bytes]:
    """Derive encryption + HMAC keys from a passphrase.

    Args:
        passphrase: Archive passphrase.
        salt: Random salt.
        iterations: PBKDF2 iteration count.

    Returns:
        tuple[bytes, bytes]: (enc_key, hmac_key).

    Raises:
        ArchiveEncryptionError: When the passphrase is empty.
    """

    if not str(passphrase or "").strip():
        raise ArchiveEncryptionError("Archive passphrase is required")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=64,
        salt=salt,
        iterations=int(iterations),
    )
    key_material = kdf.derive(passphrase.encode("utf-8"))
    return key_material[:32], key_material[32:]


def parse_header(header: bytes) -> EncryptedHeader:
    """Validate and parse the fixed-size archive header.

    Args:
        header: First `HEADER_LEN` bytes of the stream.

    Returns:
        EncryptedHeader: Parsed header.

    Raises:
        ArchiveEncryptionError: When the header is truncated or not ours.
    """

    if len(header) < HEADER_LEN:
        raise ArchiveEncryptionError("Encrypted archive is truncated (header)")

    if header[: len(MAGIC)] != MAGIC:
        raise ArchiveEncryptionError("Archive does not appear to be encrypted")

    version = header[len(MAGIC)]
    if version != VERSION:
        raise ArchiveEncryptionError(f"Unsupported encrypted archive version: {version}")

    offset = len(MAGIC) + 1
    salt = header[offset : offset + SALT_LEN]
    offset += SALT_LEN
    iv = header[offset : offset + IV_LEN]
    offset += IV_LEN
    iterations = struct.unpack(">I", header[offset : offset + 4])[0]

    return EncryptedHeader(salt=salt, iv=iv, iterations=int(iterations))


class EncryptingWriter:
    """Write-only file object that encrypts everything written into a sink.

    The header is written on the first write (or on `finish`). `finish` writes
    the trailing HMAC; using the writer as a context manager calls it only when
    the block completes without an exception, so a failed archive never ends
    in a valid tag.
    """

    def __init__(self, sink: BinaryIO, passphrase: str, *, iterations: int = DEFAULT_ITERATIONS):
        salt = os.urandom(SALT_LEN)
        iv = os.urandom(IV_LEN)
        enc_key, hmac_key = _derive_keys(passphrase=passphrase, salt=salt, iterations=int(iterations))

        self._sink = sink
        self._encryptor = Cipher(algorithms.AES(enc_key), modes.CTR(iv)).encryptor()
        self._mac = hmac.HMAC(hmac_key, hashes.SHA256())
        self._header = MAGIC + bytes([VERSION]) + salt + iv + struct.pack(">I", int(iterations))
        self._header_written = False
        self._finished = False
        self.bytes_written = 0

    def _emit(self, data: bytes) -> None:
        if not self._header_written:
            self._sink.write(self._header)
            self._header_written = True
            self.bytes_written += len(self._header)
        if data:
            self._sink.write(data)
            self.bytes_written += len(data)

    def write(self, data: bytes) -> int:
        if self._finished:
            raise ValueError("write to finished EncryptingWriter")
        out = self._encryptor.update(bytes(data))
        if out:
            self._mac.update(out)
        self._emit(out)
        return len(data)

    def flush(self) -> None:
        flush = getattr(self._sink, "flush", None)
        if flush is not None:
            flush()

    def finish(self) -> None:
        """Finalize the cipher and write the HMAC tag."""

        if self._finished:
            return
        final = self._encryptor.finalize()
        if final:
            self._mac.update(final)
        self._emit(final)
        self._sink.write(self._mac.finalize())
        self.bytes_written += HMAC_LEN
        self._finished = True

    def __enter__(self) -> "EncryptingWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.finish()


def _read_exact(source: BinaryIO, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = source.read(size - len(data))
        if not chunk:
            break
        data.extend(chunk)
    return bytes(data)


def decrypt_stream(
    source: BinaryIO,
    sink: BinaryIO,
    passphrase: str,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Decrypt an encrypted archive stream into a sink.

    Plaintext is written as it is decrypted; the HMAC is only known to be valid
    once this function returns, so callers must not trust the sink's contents
    when it raises.

    Args:
        source: Readable encrypted stream.
        sink: Writable destination for plaintext.
        passphrase: Archive passphrase.
        chunk_size: Streaming chunk size.

    Returns:
        int: Number of plaintext bytes written.

    Raises:
        ArchiveEncryptionError: When the stream is truncated, the passphrase is
            wrong or the archive was modified.
    """

    header = parse_header(_read_exact(source, HEADER_LEN))
    enc_key, hmac_key = _derive_keys(passphrase=passphrase, salt=header.salt, iterations=header.iterations)

    decryptor = Cipher(algorithms.AES(enc_key), modes.CTR(header.iv)).decryptor()
    mac = hmac.HMAC(hmac_key, hashes.SHA256())

    # The last HMAC_LEN bytes seen so far may be the tag; hold them back.
    tail = b""
    written = 0
    try:
        while True:
            chunk = source.read(int(chunk_size))
            if not chunk:
                break
            data = tail + chunk
            body, tail = data[:-HMAC_LEN], data[-HMAC_LEN:]
            if body:
                mac.update(body)
                out = decryptor.update(body)
                if out:
                    sink.write(out)
                    written += len(out)
    except OSError as exc:
        raise ArchiveEncryptionError(f"Failed to read encrypted archive: {exc}") from exc

    if len(tail) != HMAC_LEN:
        raise ArchiveEncryptionError("Encrypted archive is truncated (HMAC)")

    try:
        mac.verify(tail)
    except InvalidSignature as exc:
        raise ArchiveEncryptionError("Invalid archive passphrase or corrupted archive") from exc

    final = decryptor.finalize()
    if final:
        sink.write(final)
        written += len(final)
    return written

