"""Streaming zlib codec.

Both directions are readable wrappers, so a transfer is just a stream
copy: ``file -> CompressingReader -> socket`` on the sender and
``socket -> DecompressingReader -> file`` on the receiver. Neither side
holds more than a chunk in memory.
"""

from __future__ import annotations

import io
import logging
import zlib
from typing import BinaryIO

from rdev.errors import CodecError

logger = logging.getLogger(__name__)

FAST = 1  # favour throughput over ratio
DEFAULT_CHUNK_SIZE = 64 * 1024


class CompressingReader(io.RawIOBase):
    """Reads *raw* and yields its zlib-compressed form."""

    def __init__(self, raw: BinaryIO, level: int = FAST, chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__()
        self._raw = raw
        self._chunk_size = chunk_size
        self._compressor = zlib.compressobj(level)
        self._pending = b""
        self._finished = False
        self.bytes_in = 0
        self.bytes_out = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending and not self._finished:
            chunk = self._raw.read(self._chunk_size)
            if chunk:
                self.bytes_in += len(chunk)
                self._pending = self._compressor.compress(chunk)
            else:
                self._pending = self._compressor.flush()
                self._finished = True
        n = min(len(buffer), len(self._pending))
        buffer[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        self.bytes_out += n
        return n


class DecompressingReader(io.RawIOBase):
    """Reads a zlib stream from *raw* and yields the original bytes.

    Stops at the stream's end marker. Raises :class:`CodecError` on
    corrupt input or if *raw* runs dry before the end marker.
    """

    def __init__(self, raw: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE):
        super().__init__()
        self._raw = raw
        self._chunk_size = chunk_size
        self._decompressor = zlib.decompressobj()
        self._pending = b""
        self.bytes_in = 0
        self.bytes_out = 0

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        while not self._pending and not self._decompressor.eof:
            data = self._decompressor.unconsumed_tail
            if not data:
                data = self._raw.read(self._chunk_size)
                if not data:
                    raise CodecError(
                        f"Compressed stream ended early after {self.bytes_in} bytes"
                    )
                self.bytes_in += len(data)
            try:
                self._pending = self._decompressor.decompress(data, self._chunk_size)
            except zlib.error as exc:
                raise CodecError(f"Corrupt compressed stream: {exc}") from exc
        n = min(len(buffer), len(self._pending))
        buffer[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        self.bytes_out += n
        return n

    @property
    def trailing_bytes(self) -> int:
        """Number of bytes received after the end marker."""
        return len(self._decompressor.unused_data)