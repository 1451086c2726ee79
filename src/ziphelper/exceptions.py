"""Custom exceptions for ziphelper."""


class ZipHelperError(Exception):
    """Base exception for all ziphelper errors."""


class ArchiveOpenError(ZipHelperError):
    """The archive backing file could not be created."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        message = f"Cannot create archive at '{path}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class PathResolutionError(ZipHelperError):
    """A source path does not exist or cannot be resolved."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Cannot resolve path: '{path}'")


class SourceFileMissingError(ZipHelperError):
    """The file to add to the archive does not exist."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Source file not found: '{path}'")


class SourceFileUnreadableError(ZipHelperError):
    """The file to add to the archive cannot be opened for reading."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        message = f"Source file not readable: '{path}'"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class FinalizeError(ZipHelperError):
    """The archive could not be finalized (ZIP32 limits exceeded)."""


class UnsafePathError(ZipHelperError):
    """Entry name would escape the archive root or contains invalid bytes."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Unsafe archive entry name: {path!r}")


class FileNotFoundInArchiveError(ZipHelperError):
    """Requested entry not found in archive."""

    def __init__(self, filename: str) -> None:
        self.filename = filename
        super().__init__(f"File not found in archive: '{filename}'")
