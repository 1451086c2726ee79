"""Archive backends.

Two interchangeable writers sit behind :class:`ArchiveBackend`:

* :class:`BufferedArchive` records additions and encodes them into a
  random-access backing file when finished. It can look entries up and change
  their compression after they were added.
* :class:`StreamingArchive` encodes every addition straight into a borrowed
  output stream, which may be non-seekable. Nothing can be looked up or
  changed once written.

Callers query :attr:`ArchiveBackend.supports_locate` instead of checking the
concrete type.
"""

from __future__ import annotations

import logging
import os
import struct
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from .exceptions import (
    ArchiveOpenError,
    FileNotFoundInArchiveError,
    FinalizeError,
    SourceFileMissingError,
    SourceFileUnreadableError,
)
from .sink import OutputSink
from .structures import (
    LOCAL_HEADER_CRC_OFFSET,
    MAX_32,
    MAX_ENTRIES,
    Compression,
    DataDescriptor,
    EndOfCentralDirectory,
    GeneralPurposeFlag,
    LocalFileHeader,
    ZipEntry,
)
from .utils import dos_datetime, sanitize_arcname

logger = logging.getLogger(__name__)

# Default chunk size for reading source files
CHUNK_SIZE = 64 * 1024  # 64 KB

DEFAULT_COMPRESSLEVEL = 6


def _check_compression(compression: int) -> Compression:
    if compression not in (Compression.STORED, Compression.DEFLATED):
        raise ValueError(
            f"Unsupported compression method: {compression}. "
            "Use Compression.STORED or Compression.DEFLATED."
        )
    return Compression(compression)


def _open_source(source_path: str | Path) -> BinaryIO:
    """Open a file to archive, mapping OS errors onto ziphelper errors."""
    path = os.fspath(source_path)
    if not os.path.exists(path):
        raise SourceFileMissingError(path)
    if os.path.isdir(path):
        raise SourceFileUnreadableError(path, "is a directory")
    try:
        return open(path, "rb")  # noqa: SIM115
    except FileNotFoundError as exc:
        raise SourceFileMissingError(path) from exc
    except OSError as exc:
        raise SourceFileUnreadableError(path, exc.strerror or str(exc)) from exc


class ArchiveBackend(ABC):
    """
    Capability interface shared by the archive writers.

    Attributes:
        supports_locate: Whether :meth:`locate` can report existing entries.
        supports_set_compression: Whether :meth:`set_compression` works.
        compresslevel: DEFLATE level used for compressed entries.
    """

    supports_locate: bool = False
    supports_set_compression: bool = False

    def __init__(self, compresslevel: int = DEFAULT_COMPRESSLEVEL) -> None:
        self.compresslevel = compresslevel
        self._entries: list[ZipEntry] = []
        self._closed = False
        self._failure: FinalizeError | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def backing_path(self) -> Path | None:
        """Path of the backing file, or None when there is none to copy."""
        return None

    @property
    @abstractmethod
    def entry_names(self) -> list[str]:
        """Names of the entries added so far, in archive order."""

    @abstractmethod
    def add_file(
        self,
        entry_name: str,
        source_path: str | Path,
        compression: int | None = None,
    ) -> None:
        """
        Add the file at *source_path* under *entry_name*.

        Args:
            entry_name: Name inside the archive.
            source_path: File to read the entry bytes from.
            compression: Compression method, DEFLATED when None.
        """

    def locate(self, entry_name: str) -> bool:
        """Whether an entry named *entry_name* exists."""
        raise NotImplementedError(f"{type(self).__name__} cannot look up entries")

    def set_compression(self, entry_name: str, compression: int) -> None:
        """Change the compression method of an entry already added."""
        raise NotImplementedError(f"{type(self).__name__} cannot modify added entries")

    @abstractmethod
    def finish(self) -> None:
        """Write the central directory and release the output."""

    def _check_closed(self) -> None:
        if self._failure is not None:
            raise FinalizeError(
                f"{type(self).__name__} cannot be completed: {self._failure}"
            ) from self._failure
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} is closed")

    def _fail(self, message: str) -> FinalizeError:
        """Record that the archive can no longer be completed."""
        self._failure = FinalizeError(message)
        return self._failure

    def _write_entry(
        self,
        sink: OutputSink,
        entry_name: str,
        source_path: str | Path,
        compression: Compression,
        use_data_descriptor: bool,
    ) -> ZipEntry:
        """
        Encode one file into *sink*.

        With *use_data_descriptor* the CRC and sizes trail the data, so the
        sink never has to seek. Otherwise the local header is patched in place.
        """
        flags = GeneralPurposeFlag.UTF8
        if use_data_descriptor:
            flags |= GeneralPurposeFlag.DATA_DESCRIPTOR

        with _open_source(source_path) as f:
            stat = os.fstat(f.fileno())
            mod_time, mod_date = dos_datetime(stat.st_mtime)
            entry = ZipEntry(
                filename=entry_name,
                compression=compression,
                mod_time=mod_time,
                mod_date=mod_date,
                flags=flags,
                local_header_offset=sink.offset,
                external_attr=(stat.st_mode & 0o777) << 16,
            )
            if entry.local_header_offset > MAX_32:
                raise self._fail(
                    f"Archive exceeds 4GB ZIP32 limit before '{entry_name}'. "
                    "ZIP64 not supported."
                )

            header = LocalFileHeader(
                flags=flags,
                compression=compression,
                mod_time=mod_time,
                mod_date=mod_date,
                filename=entry.arcname,
            )
            sink.write(header.to_bytes())
            entry.crc32, entry.compressed_size, entry.uncompressed_size = self._write_data(
                sink, f, compression
            )

        if entry.exceeds_zip32():
            raise self._fail(
                f"Entry '{entry_name}' exceeds 4GB ZIP32 limit "
                f"(compressed={entry.compressed_size}, uncompressed={entry.uncompressed_size}). "
                "ZIP64 not supported."
            )

        if use_data_descriptor:
            descriptor = DataDescriptor(
                crc32=entry.crc32,
                compressed_size=entry.compressed_size,
                uncompressed_size=entry.uncompressed_size,
            )
            sink.write(descriptor.to_bytes())
        else:
            patch = struct.pack("<III", entry.crc32, entry.compressed_size, entry.uncompressed_size)
            sink.write_at_offset(patch, entry.local_header_offset + LOCAL_HEADER_CRC_OFFSET)

        logger.debug(
            "Wrote %s (%s, %d -> %d bytes)",
            entry_name,
            compression.name,
            entry.uncompressed_size,
            entry.compressed_size,
        )
        return entry

    def _write_data(
        self,
        sink: OutputSink,
        source: BinaryIO,
        compression: Compression,
    ) -> tuple[int, int, int]:
        """
        Compress and write file data.

        Returns:
            Tuple of (crc32, compressed_size, uncompressed_size).
        """
        crc = 0
        uncompressed_size = 0
        compressed_size = 0

        if compression == Compression.DEFLATED:
            compressor = zlib.compressobj(self.compresslevel, zlib.DEFLATED, -zlib.MAX_WBITS)
        else:
            compressor = None

        while True:
            chunk = source.read(CHUNK_SIZE)
            if not chunk:
                break

            crc = zlib.crc32(chunk, crc)
            uncompressed_size += len(chunk)

            if compressor:
                chunk = compressor.compress(chunk)
            sink.write(chunk)
            compressed_size += len(chunk)

        if compressor:
            remaining = compressor.flush()
            sink.write(remaining)
            compressed_size += len(remaining)

        return crc & 0xFFFFFFFF, compressed_size, uncompressed_size

    def _write_central_directory(self, sink: OutputSink) -> None:
        if len(self._entries) > MAX_ENTRIES:
            raise FinalizeError(
                f"Entry count {len(self._entries)} exceeds ZIP32 limit of {MAX_ENTRIES}"
            )

        cd_offset = sink.offset
        for entry in self._entries:
            sink.write(entry.to_central_directory_header().to_bytes())
        cd_size = sink.offset - cd_offset

        if cd_offset > MAX_32 or cd_size > MAX_32:
            raise FinalizeError("Central directory lies beyond the 4GB ZIP32 limit")

        eocd = EndOfCentralDirectory(
            total_entries=len(self._entries),
            cd_size=cd_size,
            cd_offset=cd_offset,
        )
        sink.write(eocd.to_bytes())

    def __enter__(self) -> ArchiveBackend:
        return self

    def _release(self) -> None:
        """Drop the output without writing the central directory."""
        self._closed = True

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        if exc_type is not None:
            self._release()
        else:
            self.finish()


@dataclass
class PendingEntry:
    """A file recorded in a buffered archive, encoded when it is finished."""

    source_path: str
    compression: Compression = Compression.DEFLATED


class BufferedArchive(ArchiveBackend):
    """
    Archive backed by a random-access file.

    Additions only record where the bytes come from; sources are read when
    :meth:`finish` runs. Re-adding an existing name replaces that entry in
    place, keeping its position in the archive.

    Example:
        >>> archive = BufferedArchive("/tmp/book.zip")
        >>> archive.add_file("mimetype", "/tmp/book/mimetype", Compression.STORED)
        >>> archive.finish()
    """

    supports_locate = True
    supports_set_compression = True

    def __init__(self, path: str | Path, compresslevel: int = DEFAULT_COMPRESSLEVEL) -> None:
        """
        Create (or truncate) the backing file.

        Raises:
            ArchiveOpenError: If the backing file cannot be created.
        """
        super().__init__(compresslevel)
        self.path = Path(path)
        try:
            self._file = self.path.open("w+b")  # noqa: SIM115
        except OSError as exc:
            raise ArchiveOpenError(str(self.path), exc.strerror or str(exc)) from exc
        self._sink = OutputSink(self._file)
        self._pending: dict[str, PendingEntry] = {}

    @property
    def backing_path(self) -> Path:
        return self.path

    @property
    def entry_names(self) -> list[str]:
        return list(self._pending)

    def add_file(
        self,
        entry_name: str,
        source_path: str | Path,
        compression: int | None = None,
    ) -> None:
        self._check_closed()
        name = sanitize_arcname(entry_name)
        comp = _check_compression(compression if compression is not None else Compression.DEFLATED)
        self._pending[name] = PendingEntry(os.fspath(source_path), comp)

    def locate(self, entry_name: str) -> bool:
        return sanitize_arcname(entry_name) in self._pending

    def set_compression(self, entry_name: str, compression: int) -> None:
        self._check_closed()
        name = sanitize_arcname(entry_name)
        if name not in self._pending:
            raise FileNotFoundInArchiveError(name)
        self._pending[name].compression = _check_compression(compression)

    def finish(self) -> None:
        """
        Encode every recorded entry and the central directory, then close
        the backing file.

        Raises:
            SourceFileMissingError: A recorded source disappeared.
            SourceFileUnreadableError: A recorded source cannot be read.
            FinalizeError: The archive needs ZIP64.
        """
        if self._closed:
            return
        self._closed = True

        try:
            for name, pending in self._pending.items():
                entry = self._write_entry(
                    self._sink,
                    name,
                    pending.source_path,
                    pending.compression,
                    use_data_descriptor=False,
                )
                self._entries.append(entry)
            self._write_central_directory(self._sink)
        finally:
            self._sink.close()
            self._file.close()

        logger.debug("Closed %s with %d entries", self.path, len(self._entries))

    def _release(self) -> None:
        super()._release()
        self._sink.close()
        self._file.close()


class StreamingArchive(ArchiveBackend):
    """
    Forward-only archive writing into a caller-owned stream.

    The stream only needs ``write()``; it is never seeked, told or closed.
    Entries cannot be looked up, so duplicate names are written as-is.

    Example:
        >>> archive = StreamingArchive(response.raw)
        >>> archive.add_file("a.txt", "/tmp/src/a.txt")
        >>> archive.finish()
    """

    def __init__(self, stream: BinaryIO, compresslevel: int = DEFAULT_COMPRESSLEVEL) -> None:
        super().__init__(compresslevel)
        self._sink = OutputSink(stream)

    @property
    def entry_names(self) -> list[str]:
        return [entry.filename for entry in self._entries]

    @property
    def bytes_written(self) -> int:
        return self._sink.offset

    def add_file(
        self,
        entry_name: str,
        source_path: str | Path,
        compression: int | None = None,
    ) -> None:
        """
        Encode the file into the stream immediately.

        Raises:
            SourceFileMissingError: If *source_path* does not exist.
            SourceFileUnreadableError: If *source_path* cannot be read.
        """
        self._check_closed()
        name = sanitize_arcname(entry_name)
        comp = _check_compression(compression if compression is not None else Compression.DEFLATED)
        entry = self._write_entry(self._sink, name, source_path, comp, use_data_descriptor=True)
        self._entries.append(entry)

    def finish(self) -> None:
        """
        Write the central directory and flush the stream.

        Raises:
            FinalizeError: The archive needs ZIP64, or an earlier entry
                already overflowed and the stream holds a partial archive.
        """
        if self._failure is not None:
            self._release()
            raise FinalizeError(
                f"{type(self).__name__} cannot be completed: {self._failure}"
            ) from self._failure
        if self._closed:
            return
        self._closed = True

        try:
            self._write_central_directory(self._sink)
            self._sink.flush()
        finally:
            self._sink.close()

        logger.debug("Finished stream with %d entries", len(self._entries))

    def _release(self) -> None:
        super()._release()
        self._sink.close()
