"""
ziphelper - Assemble files and folders into ZIP archives.

Files are added one by one or as whole folder trees, with stable entry names
and a skip/overwrite policy for names already present. Two backends share the
same interface: a buffered archive written to a temporary file and copied to
the destination when finished, and a streaming archive writing straight into a
non-seekable destination such as an HTTP response.

Example:
    >>> import ziphelper
    >>>
    >>> # Simple one-liner
    >>> ziphelper.create("book.epub", "/tmp/book", uncompressed=["mimetype"])
    >>>
    >>> # Step by step
    >>> helper = ziphelper.ZipHelper()
    >>> archive = helper.create_zip("/tmp/work/book")
    >>> helper.add_uncompressed_file_to_archive(archive, "/tmp/book", "mimetype")
    >>> helper.add_folder_to_archive(archive, "/tmp/book", ziphelper.SKIP)
    >>> with open("book.epub", "wb") as out:
    ...     helper.close_archive_and_copy_to_stream(archive, out)
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Iterable

from .backends import ArchiveBackend, BufferedArchive, StreamingArchive
from .exceptions import (
    ArchiveOpenError,
    FileNotFoundInArchiveError,
    FinalizeError,
    PathResolutionError,
    SourceFileMissingError,
    SourceFileUnreadableError,
    UnsafePathError,
    ZipHelperError,
)
from .helper import ZIP_EXTENSION, ExistingFileMode, ZipHelper
from .structures import Compression
from .utils import format_size, normalize_path, resolve_path

__version__ = "0.1.0"
__all__ = [
    # Main classes
    "ZipHelper",
    "ArchiveBackend",
    "BufferedArchive",
    "StreamingArchive",
    # Convenience functions
    "create",
    # Constants
    "Compression",
    "ExistingFileMode",
    "STORED",
    "DEFLATED",
    "SKIP",
    "OVERWRITE",
    "ZIP_EXTENSION",
    # Utilities
    "normalize_path",
    "resolve_path",
    "format_size",
    # Exceptions
    "ZipHelperError",
    "ArchiveOpenError",
    "PathResolutionError",
    "SourceFileMissingError",
    "SourceFileUnreadableError",
    "FinalizeError",
    "UnsafePathError",
    "FileNotFoundInArchiveError",
]

# Convenience aliases
STORED = Compression.STORED
DEFLATED = Compression.DEFLATED
SKIP = ExistingFileMode.SKIP
OVERWRITE = ExistingFileMode.OVERWRITE


def create(
    output: str | os.PathLike[str],
    root_folder: str | os.PathLike[str],
    *,
    stream: bool = False,
    existing_file_mode: ExistingFileMode | str = SKIP,
    uncompressed: Iterable[str] = (),
) -> Path:
    """
    Archive a whole folder into a ZIP file.

    This is a convenience function for simple use cases. For more control,
    use ZipHelper directly.

    Args:
        output: Path of the ZIP file to write.
        root_folder: Folder whose contents become the archive entries.
        stream: Write through a StreamingArchive instead of building a
            buffered archive in a temporary folder first.
        existing_file_mode: Policy for entries that are already present.
        uncompressed: Local paths under *root_folder* to add first, stored.

    Returns:
        Path of the written archive.

    Example:
        >>> ziphelper.create("book.epub", "/tmp/book", uncompressed=["mimetype"])
        PosixPath('book.epub')
    """
    output = Path(output)

    if stream:
        with output.open("wb") as out:
            helper = ZipHelper(StreamingArchive(out))
            archive = helper.create_zip(output)
            with archive:
                _populate(helper, archive, root_folder, existing_file_mode, uncompressed, output)
                helper.close_archive_and_copy_to_stream(archive, out)
        return output

    with tempfile.TemporaryDirectory() as tmp_dir:
        helper = ZipHelper()
        archive = helper.create_zip(Path(tmp_dir) / output.stem)
        with archive:
            _populate(helper, archive, root_folder, existing_file_mode, uncompressed, output)
            with output.open("wb") as out:
                helper.close_archive_and_copy_to_stream(archive, out)
    return output


def _populate(
    helper: ZipHelper,
    archive: ArchiveBackend,
    root_folder: str | os.PathLike[str],
    existing_file_mode: ExistingFileMode | str,
    uncompressed: Iterable[str],
    output: Path,
) -> None:
    for local_path in uncompressed:
        helper.add_uncompressed_file_to_archive(archive, root_folder, local_path, existing_file_mode)
    # The output may sit inside root_folder
    helper.add_folder_to_archive(archive, root_folder, existing_file_mode, exclude=[output])
