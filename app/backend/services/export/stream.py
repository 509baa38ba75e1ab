"""Bounded in-memory byte stream connecting the archive producer to the uploader.

One producer thread writes archive bytes into a `StreamWriter`; one consumer
reads them through a `StreamReader` (a regular file-like object that boto3 can
upload from). At most `max_chunks` written chunks are buffered, so a slow
upload blocks the producer instead of growing memory.

The writer must be closed exactly once, optionally with the error that stopped
production; the reader then sees end-of-stream, or the error.
"""

from __future__ import annotations

import io
import queue
import threading
from typing import Optional, Tuple

from backend.exceptions import PipelineError

DEFAULT_MAX_CHUNKS = 16
_POLL_SECONDS = 0.1


class StreamClosedError(PipelineError):
    """Raised on the producer side when the reader was closed early."""


class _Channel:
    def __init__(self, max_chunks: int):
        self.chunks: "queue.Queue[Optional[bytes]]" = queue.Queue(maxsize=max(1, int(max_chunks)))
        self.reader_closed = threading.Event()
        self.writer_closed = threading.Event()
        self.error: Optional[BaseException] = None


class StreamWriter:
    """Producer end of a `BoundedByteStream`."""

    def __init__(self, channel: _Channel):
        self._channel = channel
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        """Queue a chunk, blocking while the buffer is full.

        Raises:
            StreamClosedError: When the reader side has been closed.
            ValueError: When the writer was already closed.
        """

        if self._channel.writer_closed.is_set():
            raise ValueError("write to closed stream")
        if not data:
            return 0

        chunk = bytes(data)
        while True:
            if self._channel.reader_closed.is_set():
                raise StreamClosedError("Stream reader closed before the archive was complete")
            try:
                self._channel.chunks.put(chunk, timeout=_POLL_SECONDS)
                return len(chunk)
            except queue.Full:
                continue

    def flush(self) -> None:
        pass

    def close(self, error: Optional[BaseException] = None) -> None:
        """Signal end-of-stream; only the first call has an effect.

        Args:
            error: Error that stopped the producer, surfaced to the reader.
        """

        with self._lock:
            if self._channel.writer_closed.is_set():
                return
            self._channel.error = error
            self._channel.writer_closed.set()

        while not self._channel.reader_closed.is_set():
            try:
                self._channel.chunks.put(None, timeout=_POLL_SECONDS)
                return
            except queue.Full:
                continue

    @property
    def closed(self) -> bool:
        return self._channel.writer_closed.is_set()


class StreamReader(io.RawIOBase):
    """Consumer end of a `BoundedByteStream`."""

    def __init__(self, channel: _Channel):
        super().__init__()
        self._channel = channel
        self._buffer = bytearray()
        self._eof = False

    def readable(self) -> bool:
        return True

    def _next_chunk(self) -> None:
        chunk = self._channel.chunks.get()
        if chunk is None:
            self._eof = True
            return
        self._buffer.extend(chunk)

    def _raise_if_failed(self) -> None:
        # A failed producer never looks like a clean end of stream.
        error = self._channel.error
        if self._eof and error is not None:
            raise PipelineError(f"Archive producer failed: {error}") from error

    def read(self, size: int = -1) -> bytes:
        """Read up to `size` bytes, blocking until that many are available or EOF.

        Raises:
            PipelineError: When the producer closed the stream with an error;
                raised again on every later read.
        """

        if self.closed:
            raise ValueError("read from closed stream")

        while not self._eof and (size is None or size < 0 or len(self._buffer) < size):
            self._next_chunk()
        self._raise_if_failed()

        if size is None or size < 0:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def readall(self) -> bytes:
        return self.read(-1)

    def readinto(self, target) -> int:
        data = self.read(len(target))
        target[: len(data)] = data
        return len(data)

    def close(self) -> None:
        """Close the reader and unblock a producer waiting on a full buffer."""

        if not self.closed:
            self._channel.reader_closed.set()
            # Drain so a blocked put() returns promptly.
            try:
                while True:
                    self._channel.chunks.get_nowait()
            except queue.Empty:
                pass
        super().close()


class BoundedByteStream:
    """Single-producer, single-consumer byte pipe with a bounded buffer."""

    def __init__(self, max_chunks: int = DEFAULT_MAX_CHUNKS):
        channel = _Channel(max_chunks)
        self.writer = StreamWriter(channel)
        self.reader = StreamReader(channel)

    def endpoints(self) -> Tuple[StreamWriter, StreamReader]:
        return self.writer, self.reader
