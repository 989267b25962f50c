"""Splits a photo's byte stream into the ranges sent to an upload session."""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from typing import BinaryIO

from photo_import.models import Chunk

logger = logging.getLogger(__name__)

# Graph requires session fragments to be a multiple of 320 KiB; 32000 KiB is 100 of them.
CHUNK_SIZE = 32000 * 1024


def split_chunks(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Generator[Chunk, None, None]:
    """Yield consecutive chunks of *stream* until a zero-length read.

    Every chunk except the last is exactly *chunk_size* bytes, even when the
    stream returns short reads. *stream* is closed once the generator is
    exhausted, fails, or is discarded.
    """
    if chunk_size <= 0:
        stream.close()
        raise ValueError("chunk_size must be positive")

    offset = 0
    try:
        while True:
            data = _read_full(stream, chunk_size)
            if not data:
                break
            chunk = Chunk(data=data, start=offset, end=offset + len(data) - 1)
            offset += len(data)
            yield chunk
    finally:
        stream.close()
        logger.debug("Closed content stream after %d bytes", offset)


def _read_full(stream: BinaryIO, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        block = stream.read(size - len(buf))
        if not block:
            break
        buf += block
    return bytes(buf)


def stream_length(stream: BinaryIO) -> int | None:
    """Return the remaining length of a seekable stream, or None if it cannot seek."""
    try:
        if not stream.seekable():
            return None
        position = stream.tell()
        end = stream.seek(0, os.SEEK_END)
        stream.seek(position)
    except (AttributeError, OSError, ValueError):
        return None
    return end - position
