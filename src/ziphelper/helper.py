"""Assemble files and folders into a ZIP archive and copy it to a stream."""

from __future__ import annotations

import logging
import os
import shutil
import warnings
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator

from .backends import CHUNK_SIZE, ArchiveBackend, BufferedArchive, StreamingArchive
from .structures import Compression
from .utils import normalize_path, resolve_path, sanitize_arcname

logger = logging.getLogger(__name__)

ZIP_EXTENSION = ".zip"


class ExistingFileMode(str, Enum):
    """What to do when an entry with the same name is already in the archive."""

    SKIP = "skip"
    OVERWRITE = "overwrite"


class ZipHelper:
    """
    Adds files to an archive while keeping entry names stable and unique.

    A helper either builds a :class:`BufferedArchive` of its own or appends
    to the :class:`StreamingArchive` it was given. It remembers the local
    paths added explicitly, so a later folder walk does not add them twice.

    Note:
        Streaming archives cannot look up entries, so ``SKIP`` never skips
        anything there. Only paths this helper recorded are protected from
        duplication during folder walks.

    Example:
        >>> helper = ZipHelper()
        >>> archive = helper.create_zip("/tmp/book")
        >>> helper.add_uncompressed_file_to_archive(archive, "/tmp/book", "mimetype")
        >>> helper.add_folder_to_archive(archive, "/tmp/book", ExistingFileMode.SKIP)
        >>> with open("book.epub", "wb") as out:
        ...     helper.close_archive_and_copy_to_stream(archive, out)
    """

    def __init__(self, archive: StreamingArchive | None = None) -> None:
        self.archive = archive
        self._already_added: dict[str, None] = {}

    @property
    def already_added(self) -> list[str]:
        """Local paths added so far, in insertion order."""
        return list(self._already_added)

    def create_zip(self, tmp_folder_path: str | os.PathLike[str]) -> ArchiveBackend:
        """
        Return the streaming archive given at construction, or a new
        buffered archive at ``tmp_folder_path + ".zip"``.

        Raises:
            ArchiveOpenError: If the backing file cannot be created.
        """
        if self.archive is not None:
            return self.archive

        zip_file_path = os.fspath(tmp_folder_path) + ZIP_EXTENSION
        logger.debug("Creating buffered archive at %s", zip_file_path)
        return BufferedArchive(zip_file_path)

    @staticmethod
    def get_zip_file_path(archive: ArchiveBackend) -> str:
        """Path of the archive's backing file, empty for streaming archives."""
        backing_path = archive.backing_path
        return str(backing_path) if backing_path is not None else ""

    def add_file_to_archive(
        self,
        archive: ArchiveBackend,
        root_folder_path: str | os.PathLike[str],
        local_file_path: str,
        existing_file_mode: ExistingFileMode | str = ExistingFileMode.OVERWRITE,
        compression: int = Compression.DEFLATED,
    ) -> None:
        """
        Add the file found under *root_folder_path* as *local_file_path*.

        ``add_file_to_archive(archive, "/tmp/xlsx/foo", "bar/baz.xml")`` adds
        ``/tmp/xlsx/foo/bar/baz.xml`` under the entry name ``bar/baz.xml``.

        Args:
            archive: Archive returned by :meth:`create_zip`.
            root_folder_path: Folder left out of the entry name.
            local_file_path: Path of the file under the root folder. Both
                ``/`` and ``\\`` separators are accepted.
            existing_file_mode: Skip or overwrite an entry that already exists.
            compression: Compression method for this entry.

        Raises:
            PathResolutionError: If the source file does not exist.
            SourceFileMissingError: Raised by streaming archives.
            SourceFileUnreadableError: Raised by streaming archives.
        """
        local_path = self._add_file_with_compression(
            archive, root_folder_path, local_file_path, existing_file_mode, compression
        )
        self._already_added[local_path] = None

    def add_uncompressed_file_to_archive(
        self,
        archive: ArchiveBackend,
        root_folder_path: str | os.PathLike[str],
        local_file_path: str,
        existing_file_mode: ExistingFileMode | str = ExistingFileMode.OVERWRITE,
    ) -> None:
        """Same as :meth:`add_file_to_archive`, storing the file uncompressed."""
        self.add_file_to_archive(
            archive, root_folder_path, local_file_path, existing_file_mode, Compression.STORED
        )

    def add_folder_to_archive(
        self,
        archive: ArchiveBackend,
        folder_path: str | os.PathLike[str],
        existing_file_mode: ExistingFileMode | str = ExistingFileMode.OVERWRITE,
        exclude: Iterable[str | os.PathLike[str]] = (),
    ) -> None:
        """
        Add every file below *folder_path*, named relative to it.

        Folders are visited before their contents and siblings in name order.
        Folders themselves get no entry. Files already added through
        :meth:`add_file_to_archive` are left alone. The first failing file
        aborts the walk.

        Args:
            archive: Archive returned by :meth:`create_zip`.
            folder_path: Folder to walk; entry names are relative to it.
            existing_file_mode: Skip or overwrite entries that already exist.
            exclude: Files to leave out, such as the archive being written
                when it lies inside *folder_path*.

        Raises:
            PathResolutionError: If *folder_path* does not exist.
            NotADirectoryError: If *folder_path* is not a folder.
        """
        folder = resolve_path(folder_path)
        if not os.path.isdir(folder):
            raise NotADirectoryError(f"Not a directory: '{os.fspath(folder_path)}'")

        excluded = {normalize_path(path) for path in exclude}
        prefix = folder.rstrip("/") + "/"
        for item in self._iter_folder(Path(folder)):
            if not item.is_file():
                continue

            item_path = normalize_path(item)
            if item_path in excluded:
                logger.debug("Skipping excluded %s", item_path)
                continue
            local_path = item_path[len(prefix):]

            if self.should_skip_file(archive, local_path, existing_file_mode):
                logger.debug("Skipping existing entry %s", local_path)
                continue
            if local_path in self._already_added:
                logger.debug("Skipping %s, already added", local_path)
                continue

            archive.add_file(local_path, item_path)
            self._already_added[local_path] = None
            logger.debug("Added %s", local_path)

    def close_archive_and_copy_to_stream(self, archive: ArchiveBackend, stream: BinaryIO) -> None:
        """
        Finish the archive and deliver its bytes to *stream*.

        Buffered archives are closed and their backing file is copied into
        *stream* in chunks. Streaming archives already wrote into their own
        stream and only get their central directory.

        Raises:
            FinalizeError: If the archive exceeds ZIP32 limits.
        """
        archive.finish()

        backing_path = archive.backing_path
        if backing_path is not None:
            self._copy_zip_to_stream(backing_path, stream)

        logger.info("Finalized archive with %d entries", len(archive.entry_names))

    @staticmethod
    def should_skip_file(
        archive: ArchiveBackend,
        local_path: str,
        existing_file_mode: ExistingFileMode | str,
    ) -> bool:
        """Whether *local_path* is already in the archive and must be skipped."""
        # Archives without lookup never report an existing entry
        return (
            ExistingFileMode(existing_file_mode) is ExistingFileMode.SKIP
            and archive.supports_locate
            and archive.locate(local_path)
        )

    def _add_file_with_compression(
        self,
        archive: ArchiveBackend,
        root_folder_path: str | os.PathLike[str],
        local_file_path: str,
        existing_file_mode: ExistingFileMode | str,
        compression: int,
    ) -> str:
        """Add one file without recording it. Returns the entry name."""
        compression = Compression(compression)
        local_path = sanitize_arcname(local_file_path)

        if self.should_skip_file(archive, local_path, existing_file_mode):
            logger.debug("Skipping existing entry %s", local_path)
            return local_path

        full_path = resolve_path(f"{os.fspath(root_folder_path)}/{local_path}")
        if archive.supports_set_compression:
            archive.add_file(local_path, full_path)
            archive.set_compression(local_path, compression)
        else:
            archive.add_file(local_path, full_path, compression)

        logger.debug("Added %s (%s)", local_path, compression.name)
        return local_path

    def _iter_folder(self, folder: Path) -> Iterator[Path]:
        """Yield everything below *folder*, parents first, siblings sorted."""
        for item in sorted(folder.iterdir()):
            yield item
            if item.is_dir():
                if item.is_symlink():
                    warnings.warn(f"Not following symlinked folder: '{item}'", stacklevel=3)
                    continue
                yield from self._iter_folder(item)

    @staticmethod
    def _copy_zip_to_stream(zip_file_path: Path, stream: BinaryIO) -> None:
        with open(zip_file_path, "rb") as zip_file:
            shutil.copyfileobj(zip_file, stream, CHUNK_SIZE)
