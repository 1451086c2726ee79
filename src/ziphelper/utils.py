"""Utility functions for ziphelper."""

from __future__ import annotations

import os
import posixpath
import time

from .exceptions import PathResolutionError, UnsafePathError


def normalize_separators(path: str) -> str:
    """Turn Windows-style separators into forward slashes."""
    return path.replace("\\", "/")


def normalize_path(path: str | os.PathLike[str]) -> str:
    """
    Return the absolute form of *path* using only forward slashes.

    Relative paths are anchored at the current working directory, ``.`` and
    ``..`` segments and repeated separators are collapsed, and the platform
    separator is replaced with ``/``. Symlinks are not followed and the
    filesystem is not consulted, so normalizing an already normalized path
    returns it unchanged.

    Examples:
        >>> normalize_path("/tmp/src/../src//a.txt")
        '/tmp/src/a.txt'
    """
    absolute = os.path.abspath(os.fspath(path))
    if os.sep != "/":
        absolute = absolute.replace(os.sep, "/")
    else:
        # POSIX keeps a leading "//" as implementation defined; fold it
        absolute = "/" + absolute.lstrip("/")
    return absolute


def resolve_path(path: str | os.PathLike[str]) -> str:
    """
    Normalize *path* and check that it exists.

    Raises:
        PathResolutionError: If nothing exists at the normalized path.
    """
    normalized = normalize_path(path)
    if not os.path.exists(normalized):
        raise PathResolutionError(os.fspath(path))
    return normalized


def dos_datetime(timestamp: float | None = None) -> tuple[int, int]:
    """
    Convert a Unix timestamp to DOS date and time format.

    Args:
        timestamp: Unix timestamp. If None, uses current time.

    Returns:
        Tuple of (dos_time, dos_date) as 16-bit integers.
    """
    if timestamp is None:
        timestamp = time.time()

    t = time.localtime(timestamp)

    # DOS dates start in 1980
    year = max(t.tm_year, 1980)

    dos_time = (t.tm_sec // 2) | (t.tm_min << 5) | (t.tm_hour << 11)
    dos_date = t.tm_mday | (t.tm_mon << 5) | ((year - 1980) << 9)

    return dos_time, dos_date


def sanitize_arcname(path: str) -> str:
    """
    Turn a local file path into an archive entry name.

    - Converts backslashes to forward slashes
    - Removes leading slashes and drive letters
    - Collapses ``.`` segments and repeated slashes

    Raises:
        UnsafePathError: If the name is empty, contains a NUL byte, cannot be
            encoded as UTF-8 or escapes the archive root through ``..`` segments.
    """
    if "\x00" in path:
        raise UnsafePathError(path)

    name = normalize_separators(path)

    if len(name) >= 2 and name[1] == ":":
        name = name[2:]

    name = posixpath.normpath(name.lstrip("/")).lstrip("/")

    if name in (".", "..") or name.startswith("../"):
        raise UnsafePathError(path)

    try:
        encoded = name.encode("utf-8")
    except UnicodeEncodeError as exc:
        # Undecodable bytes in a POSIX file name come back as lone surrogates
        raise UnsafePathError(path) from exc

    if len(encoded) > 0xFFFF:
        raise ValueError(f"Archive name too long ({len(encoded)} bytes, max 65535)")

    return name


def format_size(size: int, binary: bool = False) -> str:
    """
    Format a size in bytes to a human-readable string.

    Examples:
        >>> format_size(1500000)
        '1.50 MB'
        >>> format_size(1572864, binary=True)
        '1.50 MiB'
    """
    if binary:
        units = ["B", "KiB", "MiB", "GiB", "TiB"]
        divisor = 1024.0
    else:
        units = ["B", "KB", "MB", "GB", "TB"]
        divisor = 1000.0

    value = float(size)
    for unit in units[:-1]:
        if abs(value) < divisor:
            return f"{value:.2f} {unit}" if value != int(value) else f"{int(value)} {unit}"
        value /= divisor

    return f"{value:.2f} {units[-1]}"
