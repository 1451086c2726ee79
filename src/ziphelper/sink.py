"""Byte-counting wrapper around archive output streams."""

from __future__ import annotations

from typing import BinaryIO


class OutputSink:
    """
    Tracks the write position of an output stream.

    ZIP records reference each other by absolute offset, so the writers need
    to know how many bytes have gone out. Streams such as sockets or HTTP
    response bodies cannot report that through ``tell()``, hence the count is
    kept here. Patching earlier bytes is only possible on seekable streams.
    """

    def __init__(self, stream: BinaryIO, start_offset: int = 0) -> None:
        self._stream = stream
        self._offset = start_offset
        self._closed = False

    @property
    def offset(self) -> int:
        """Number of bytes written so far."""
        return self._offset

    @property
    def seekable(self) -> bool:
        try:
            return bool(self._stream.seekable())
        except AttributeError:
            return False

    def write(self, data: bytes) -> None:
        if self._closed:
            raise RuntimeError("OutputSink is closed")
        if not data:
            return
        self._stream.write(data)
        self._offset += len(data)

    def write_at_offset(self, data: bytes, offset: int) -> None:
        """
        Overwrite bytes already written, then return to the end.

        Used to fill in CRC and sizes of a local header once the entry data
        has been written.
        """
        if not self.seekable:
            raise RuntimeError("Cannot patch a non-seekable stream")
        if offset + len(data) > self._offset:
            raise ValueError(f"Patch at {offset} runs past written data ({self._offset} bytes)")

        position = self._stream.tell()
        self._stream.seek(position - (self._offset - offset))
        self._stream.write(data)
        self._stream.seek(position)

    def flush(self) -> None:
        flush = getattr(self._stream, "flush", None)
        if flush is not None:
            flush()

    def close(self) -> None:
        """Stop accepting writes. The wrapped stream is left open."""
        self._closed = True
