"""ZIP record encoders.

Only the records needed to write a single-disk ZIP32 archive are modelled.
Layouts follow PKWARE's APPNOTE.TXT:
https://pkware.cachefly.net/webdocs/casestudies/APPNOTE.TXT
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar


class Compression(IntEnum):
    """Per-entry compression methods."""

    STORED = 0  # No compression
    DEFLATED = 8  # DEFLATE compression


class GeneralPurposeFlag(IntEnum):
    """General purpose bit flags used by the writers."""

    DATA_DESCRIPTOR = 1 << 3  # CRC and sizes follow the file data
    UTF8 = 1 << 11  # Filename is UTF-8 encoded


LOCAL_FILE_HEADER_SIG = 0x04034B50
CENTRAL_DIR_HEADER_SIG = 0x02014B50
END_OF_CENTRAL_DIR_SIG = 0x06054B50
DATA_DESCRIPTOR_SIG = 0x08074B50

# ZIP32 limits
MAX_32 = 0xFFFFFFFF
MAX_ENTRIES = 0xFFFF

# Offset of the CRC-32 field inside a local file header
LOCAL_HEADER_CRC_OFFSET = 14

VERSION = 20  # 2.0: DEFLATE and folders


@dataclass
class LocalFileHeader:
    """Local file header (precedes each entry's data)."""

    SIGNATURE: ClassVar[int] = LOCAL_FILE_HEADER_SIG
    STRUCT_FORMAT: ClassVar[str] = "<IHHHHHIIIHH"
    FIXED_SIZE: ClassVar[int] = 30

    flags: int = GeneralPurposeFlag.UTF8
    compression: int = Compression.DEFLATED
    mod_time: int = 0
    mod_date: int = 0
    crc32: int = 0
    compressed_size: int = 0
    uncompressed_size: int = 0
    filename: bytes = b""

    def to_bytes(self) -> bytes:
        return struct.pack(
            self.STRUCT_FORMAT,
            self.SIGNATURE,
            VERSION,
            self.flags,
            self.compression,
            self.mod_time,
            self.mod_date,
            self.crc32,
            self.compressed_size,
            self.uncompressed_size,
            len(self.filename),
            0,
        ) + self.filename

    @classmethod
    def from_bytes(cls, data: bytes) -> LocalFileHeader:
        """Parse a header, mostly useful to inspect written archives."""
        if len(data) < cls.FIXED_SIZE:
            raise ValueError(f"Data too short for LocalFileHeader: {len(data)} < {cls.FIXED_SIZE}")

        fields = struct.unpack(cls.STRUCT_FORMAT, data[: cls.FIXED_SIZE])
        if fields[0] != cls.SIGNATURE:
            raise ValueError(f"Invalid local file header signature: {fields[0]:#010x}")

        name_len = fields[9]
        return cls(
            flags=fields[2],
            compression=fields[3],
            mod_time=fields[4],
            mod_date=fields[5],
            crc32=fields[6],
            compressed_size=fields[7],
            uncompressed_size=fields[8],
            filename=data[cls.FIXED_SIZE : cls.FIXED_SIZE + name_len],
        )


@dataclass
class DataDescriptor:
    """Trailer carrying CRC and sizes when they were unknown at header time."""

    SIGNATURE: ClassVar[int] = DATA_DESCRIPTOR_SIG
    STRUCT_FORMAT: ClassVar[str] = "<IIII"

    crc32: int = 0
    compressed_size: int = 0
    uncompressed_size: int = 0

    def to_bytes(self) -> bytes:
        return struct.pack(
            self.STRUCT_FORMAT,
            self.SIGNATURE,
            self.crc32,
            self.compressed_size,
            self.uncompressed_size,
        )


@dataclass
class CentralDirectoryHeader:
    """Central directory file header."""

    SIGNATURE: ClassVar[int] = CENTRAL_DIR_HEADER_SIG
    STRUCT_FORMAT: ClassVar[str] = "<IHHHHHHIIIHHHHHII"

    flags: int = GeneralPurposeFlag.UTF8
    compression: int = Compression.DEFLATED
    mod_time: int = 0
    mod_date: int = 0
    crc32: int = 0
    compressed_size: int = 0
    uncompressed_size: int = 0
    external_attr: int = 0
    local_header_offset: int = 0
    filename: bytes = b""

    def to_bytes(self) -> bytes:
        return struct.pack(
            self.STRUCT_FORMAT,
            self.SIGNATURE,
            VERSION,  # made by
            VERSION,  # needed
            self.flags,
            self.compression,
            self.mod_time,
            self.mod_date,
            self.crc32,
            self.compressed_size,
            self.uncompressed_size,
            len(self.filename),
            0,  # extra
            0,  # comment
            0,  # disk number start
            0,  # internal attributes
            self.external_attr,
            self.local_header_offset,
        ) + self.filename


@dataclass
class EndOfCentralDirectory:
    """End of central directory record for a single-disk archive."""

    SIGNATURE: ClassVar[int] = END_OF_CENTRAL_DIR_SIG
    STRUCT_FORMAT: ClassVar[str] = "<IHHHHIIH"

    total_entries: int = 0
    cd_size: int = 0
    cd_offset: int = 0

    def to_bytes(self) -> bytes:
        return struct.pack(
            self.STRUCT_FORMAT,
            self.SIGNATURE,
            0,
            0,
            self.total_entries,
            self.total_entries,
            self.cd_size,
            self.cd_offset,
            0,
        )


@dataclass
class ZipEntry:
    """Bookkeeping for an entry already written to the output."""

    filename: str
    compression: int
    mod_time: int
    mod_date: int
    flags: int = GeneralPurposeFlag.UTF8
    crc32: int = 0
    compressed_size: int = 0
    uncompressed_size: int = 0
    local_header_offset: int = 0
    external_attr: int = 0o644 << 16

    @property
    def arcname(self) -> bytes:
        return self.filename.encode("utf-8")

    def exceeds_zip32(self) -> bool:
        """Whether any size or offset needs ZIP64 extensions."""
        return (
            self.compressed_size > MAX_32
            or self.uncompressed_size > MAX_32
            or self.local_header_offset > MAX_32
        )

    def to_central_directory_header(self) -> CentralDirectoryHeader:
        return CentralDirectoryHeader(
            flags=self.flags,
            compression=self.compression,
            mod_time=self.mod_time,
            mod_date=self.mod_date,
            crc32=self.crc32,
            compressed_size=self.compressed_size,
            uncompressed_size=self.uncompressed_size,
            external_attr=self.external_attr,
            local_header_offset=self.local_header_offset,
            filename=self.arcname,
        )
