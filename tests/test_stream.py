"""Tests for the bounded producer/consumer byte stream."""

import threading
import time

import pytest

from backend.exceptions import PipelineError
from backend.services.export.stream import BoundedByteStream, StreamClosedError


def _produce(writer, chunks, error=None):
    try:
        for chunk in chunks:
            writer.write(chunk)
    finally:
        writer.close(error)


def test_reader_receives_all_bytes_in_order():
    stream = BoundedByteStream(max_chunks=2)
    chunks = [bytes([i]) * 1000 for i in range(50)]
    producer = threading.Thread(target=_produce, args=(stream.writer, chunks))
    producer.start()

    data = bytearray()
    while True:
        part = stream.reader.read(4096)
        if not part:
            break
        data.extend(part)
    producer.join(timeout=5)

    assert bytes(data) == b"".join(chunks)


def test_read_fills_requested_size_until_eof():
    stream = BoundedByteStream(max_chunks=8)
    _produce(stream.writer, [b"ab", b"cd", b"ef"])

    assert stream.reader.read(5) == b"abcde"
    assert stream.reader.read(5) == b"f"
    assert stream.reader.read(5) == b""


def test_producer_blocks_when_buffer_is_full():
    stream = BoundedByteStream(max_chunks=2)
    written = []

    def produce():
        for i in range(5):
            stream.writer.write(b"x")
            written.append(i)
        stream.writer.close()

    producer = threading.Thread(target=produce, daemon=True)
    producer.start()
    time.sleep(0.3)

    assert len(written) == 2

    assert stream.reader.read() == b"xxxxx"
    producer.join(timeout=5)
    assert len(written) == 5


def test_producer_error_surfaces_at_end_of_stream():
    stream = BoundedByteStream()
    _produce(stream.writer, [b"partial"], error=RuntimeError("disk gone"))

    assert stream.reader.read(7) == b"partial"
    with pytest.raises(PipelineError, match="disk gone"):
        stream.reader.read(1)


def test_producer_error_is_raised_on_every_later_read():
    stream = BoundedByteStream()
    _produce(stream.writer, [b"partial"], error=RuntimeError("disk gone"))

    for _ in range(3):
        with pytest.raises(PipelineError, match="disk gone"):
            stream.reader.read()


def test_close_is_idempotent():
    stream = BoundedByteStream()
    stream.writer.close()
    stream.writer.close(RuntimeError("ignored"))

    assert stream.reader.read() == b""
    assert stream.writer.closed


def test_closing_reader_unblocks_producer():
    stream = BoundedByteStream(max_chunks=1)
    errors = []

    def produce():
        try:
            while True:
                stream.writer.write(b"data")
        except StreamClosedError as exc:
            errors.append(exc)
        finally:
            stream.writer.close()

    producer = threading.Thread(target=produce, daemon=True)
    producer.start()
    stream.reader.read(4)
    stream.reader.close()
    producer.join(timeout=5)

    assert not producer.is_alive()
    assert len(errors) == 1


def test_write_after_close_is_rejected():
    stream = BoundedByteStream()
    stream.writer.close()

    with pytest.raises(ValueError):
        stream.writer.write(b"late")
