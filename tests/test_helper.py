"""Integration tests for ZipHelper."""

import io
import os
import tempfile
import zipfile
from pathlib import Path
from unittest import mock

import pytest

from ziphelper import (
    BufferedArchive,
    create,
    Compression,
    ExistingFileMode,
    PathResolutionError,
    SourceFileMissingError,
    SourceFileUnreadableError,
    StreamingArchive,
    ZipHelper,
)
from ziphelper.exceptions import ArchiveOpenError, FinalizeError, UnsafePathError


class NonSeekableBuffer(io.RawIOBase):
    """Write-only sink that refuses to seek, like an HTTP response body."""

    def __init__(self):
        super().__init__()
        self.data = bytearray()

    def writable(self):
        return True

    def seekable(self):
        return False

    def write(self, b):
        self.data.extend(b)
        return len(b)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as td:
        yield Path(td)


@pytest.fixture
def src(temp_dir):
    """Source tree with a.txt ("hello") and sub/b.txt ("world")."""
    root = temp_dir / "src"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("hello")
    (root / "sub" / "b.txt").write_text("world")
    return root


@pytest.fixture
def buffered(temp_dir):
    """Helper building its own buffered archive."""
    helper = ZipHelper()
    archive = helper.create_zip(temp_dir / "work")
    return helper, archive


@pytest.fixture
def streaming():
    """Helper appending to a streaming archive over a non-seekable sink."""
    sink = NonSeekableBuffer()
    helper = ZipHelper(StreamingArchive(sink))
    archive = helper.create_zip("unused")
    return helper, archive, sink


def finalize_to_bytes(helper, archive):
    out = io.BytesIO()
    helper.close_archive_and_copy_to_stream(archive, out)
    return out.getvalue()


class TestCreateZip:
    """Tests for archive handle resolution."""

    def test_creates_buffered_archive(self, temp_dir):
        helper = ZipHelper()
        archive = helper.create_zip(temp_dir / "work")

        assert isinstance(archive, BufferedArchive)
        assert (temp_dir / "work.zip").exists()
        assert helper.get_zip_file_path(archive) == str(temp_dir / "work.zip")

    def test_reuses_streaming_archive(self):
        archive = StreamingArchive(io.BytesIO())
        helper = ZipHelper(archive)

        assert helper.create_zip("/nowhere/work") is archive
        assert helper.get_zip_file_path(archive) == ""

    def test_backing_file_cannot_be_created(self, temp_dir):
        with pytest.raises(ArchiveOpenError) as exc_info:
            ZipHelper().create_zip(temp_dir / "missing" / "work")
        assert exc_info.value.path.endswith("work.zip")


class TestAddFolder:
    """Tests for recursive folder addition."""

    def test_folder_scenario_buffered(self, src, buffered):
        helper, archive = buffered
        helper.add_folder_to_archive(archive, src)

        with zipfile.ZipFile(io.BytesIO(finalize_to_bytes(helper, archive))) as zf:
            assert zf.namelist() == ["a.txt", "sub/b.txt"]
            assert zf.read("a.txt") == b"hello"
            assert zf.read("sub/b.txt") == b"world"

    def test_folder_scenario_streaming(self, src, streaming):
        helper, archive, sink = streaming
        helper.add_folder_to_archive(archive, src)
        helper.close_archive_and_copy_to_stream(archive, sink)

        with zipfile.ZipFile(io.BytesIO(bytes(sink.data))) as zf:
            assert sorted(zf.namelist()) == ["a.txt", "sub/b.txt"]
            assert zf.read("a.txt") == b"hello"
            assert zf.read("sub/b.txt") == b"world"

    def test_no_directory_entries(self, src, buffered):
        (src / "empty").mkdir()
        (src / "sub" / "deeper").mkdir()
        (src / "sub" / "deeper" / "c.txt").write_text("deep")
        helper, archive = buffered

        helper.add_folder_to_archive(archive, src)

        with zipfile.ZipFile(io.BytesIO(finalize_to_bytes(helper, archive))) as zf:
            assert not any(name.endswith("/") for name in zf.namelist())
            assert zf.namelist() == ["a.txt", "sub/b.txt", "sub/deeper/c.txt"]

    def test_preorder_sorted_entry_order(self, src, buffered):
        (src / "z.txt").write_text("last")
        (src / "m").mkdir()
        (src / "m" / "n.txt").write_text("middle")
        helper, archive = buffered

        helper.add_folder_to_archive(archive, src)

        assert archive.entry_names == ["a.txt", "m/n.txt", "sub/b.txt", "z.txt"]

    def test_unnormalized_folder_path(self, src, buffered):
        helper, archive = buffered
        helper.add_folder_to_archive(archive, f"{src}/sub/..//")

        assert archive.entry_names == ["a.txt", "sub/b.txt"]

    def test_records_already_added(self, src, buffered):
        helper, archive = buffered
        helper.add_folder_to_archive(archive, src)

        assert helper.already_added == ["a.txt", "sub/b.txt"]

    def test_empty_folder(self, temp_dir, buffered):
        (temp_dir / "empty").mkdir()
        helper, archive = buffered

        helper.add_folder_to_archive(archive, temp_dir / "empty")

        with zipfile.ZipFile(io.BytesIO(finalize_to_bytes(helper, archive))) as zf:
            assert zf.namelist() == []

    def test_missing_folder(self, temp_dir, buffered):
        helper, archive = buffered
        with pytest.raises(PathResolutionError):
            helper.add_folder_to_archive(archive, temp_dir / "nope")

    def test_file_instead_of_folder(self, src, buffered):
        helper, archive = buffered
        with pytest.raises(NotADirectoryError):
            helper.add_folder_to_archive(archive, src / "a.txt")

    def test_failure_aborts_walk(self, src, streaming):
        helper, archive, _ = streaming
        failure = SourceFileUnreadableError(str(src / "sub" / "b.txt"))

        with mock.patch.object(archive, "add_file", side_effect=[None, failure]):
            with pytest.raises(SourceFileUnreadableError):
                helper.add_folder_to_archive(archive, src)

        assert helper.already_added == ["a.txt"]

    def test_undecodable_file_name(self, src, streaming):
        try:
            with open(os.fsencode(src) + b"/\xff.txt", "wb") as f:
                f.write(b"raw")
        except (OSError, ValueError):
            pytest.skip("file system rejects non UTF-8 names")
        helper, archive, _ = streaming

        with pytest.raises(UnsafePathError):
            helper.add_folder_to_archive(archive, src)

    def test_excluded_file(self, src, buffered):
        helper, archive = buffered
        helper.add_folder_to_archive(archive, src, exclude=[f"{src}/sub/../a.txt"])

        assert archive.entry_names == ["sub/b.txt"]
        assert helper.already_added == ["sub/b.txt"]

    def test_symlinked_folder_not_followed(self, src, temp_dir, buffered):
        outside = temp_dir / "outside"
        outside.mkdir()
        (outside / "x.txt").write_text("x")
        try:
            (src / "link").symlink_to(outside, target_is_directory=True)
        except OSError:
            pytest.skip("symlinks not supported")
        helper, archive = buffered

        with pytest.warns(UserWarning, match="symlinked folder"):
            helper.add_folder_to_archive(archive, src)

        assert archive.entry_names == ["a.txt", "sub/b.txt"]


class TestExistingFilePolicy:
    """Tests for the skip/overwrite policy."""

    def test_skip_twice_buffered_keeps_one_entry(self, src, buffered):
        helper, archive = buffered
        helper.add_file_to_archive(archive, src, "a.txt", ExistingFileMode.SKIP)
        helper.add_file_to_archive(archive, src, "a.txt", ExistingFileMode.SKIP)

        with zipfile.ZipFile(io.BytesIO(finalize_to_bytes(helper, archive))) as zf:
            assert zf.namelist() == ["a.txt"]

    def test_skip_twice_streaming_writes_both(self, src, streaming):
        helper, archive, sink = streaming
        helper.add_file_to_archive(archive, src, "a.txt", "skip")
        helper.add_file_to_archive(archive, src, "a.txt", "skip")
        helper.close_archive_and_copy_to_stream(archive, sink)

        with zipfile.ZipFile(io.BytesIO(bytes(sink.data))) as zf:
            assert zf.namelist().count("a.txt") == 2

    def test_overwrite_keeps_second_content(self, temp_dir, buffered):
        first = temp_dir / "first"
        second = temp_dir / "second"
        first.mkdir()
        second.mkdir()
        (first / "a.txt").write_text("first")
        (second / "a.txt").write_text("second")
        helper, archive = buffered

        helper.add_file_to_archive(archive, first, "a.txt", ExistingFileMode.OVERWRITE)
        helper.add_file_to_archive(archive, second, "a.txt", ExistingFileMode.OVERWRITE)

        with zipfile.ZipFile(io.BytesIO(finalize_to_bytes(helper, archive))) as zf:
            assert zf.namelist() == ["a.txt"]
            assert zf.read("a.txt") == b"second"

    def test_skip_keeps_first_content(self, temp_dir, buffered):
        first = temp_dir / "first"
        second = temp_dir / "second"
        first.mkdir()
        second.mkdir()
        (first / "a.txt").write_text("first")
        (second / "a.txt").write_text("second")
        helper, archive = buffered

        helper.add_file_to_archive(archive, first, "a.txt", ExistingFileMode.SKIP)
        helper.add_file_to_archive(archive, second, "a.txt", ExistingFileMode.SKIP)

        with zipfile.ZipFile(io.BytesIO(finalize_to_bytes(helper, archive))) as zf:
            assert zf.read("a.txt") == b"first"

    def test_skipped_entry_needs_no_source(self, src, temp_dir, buffered):
        helper, archive = buffered
        helper.add_file_to_archive(archive, src, "a.txt")

        # Nothing to resolve under an empty root since the name is skipped
        helper.add_file_to_archive(archive, temp_dir / "nope", "a.txt", ExistingFileMode.SKIP)

        assert archive.entry_names == ["a.txt"]

    def test_should_skip_file(self, src, buffered, streaming):
        helper, archive = buffered
        helper.add_file_to_archive(archive, src, "a.txt")

        assert ZipHelper.should_skip_file(archive, "a.txt", ExistingFileMode.SKIP)
        assert not ZipHelper.should_skip_file(archive, "a.txt", ExistingFileMode.OVERWRITE)
        assert not ZipHelper.should_skip_file(archive, "b.txt", ExistingFileMode.SKIP)

        _, stream_archive, _ = streaming
        stream_archive.add_file("a.txt", src / "a.txt")
        assert not ZipHelper.should_skip_file(stream_archive, "a.txt", ExistingFileMode.SKIP)

    def test_invalid_mode(self, src, buffered):
        helper, archive = buffered
        with pytest.raises(ValueError):
            helper.add_file_to_archive(archive, src, "a.txt", "merge")


class TestAddFile:
    """Tests for individual file addition."""

    def test_stored_then_folder_does_not_duplicate_buffered(self, src, buffered):
        helper, archive = buffered
        helper.add_file_to_archive(
            archive, src, "a.txt", ExistingFileMode.SKIP, Compression.STORED
        )
        helper.add_folder_to_archive(archive, src, ExistingFileMode.SKIP)

        with zipfile.ZipFile(io.BytesIO(finalize_to_bytes(helper, archive))) as zf:
            assert zf.namelist() == ["a.txt", "sub/b.txt"]
            assert zf.getinfo("a.txt").compress_type == zipfile.ZIP_STORED
            assert zf.getinfo("sub/b.txt").compress_type == zipfile.ZIP_DEFLATED

    def test_stored_then_folder_does_not_duplicate_streaming(self, src, streaming):
        helper, archive, sink = streaming
        helper.add_uncompressed_file_to_archive(archive, src, "a.txt", ExistingFileMode.SKIP)
        helper.add_folder_to_archive(archive, src, ExistingFileMode.SKIP)
        helper.close_archive_and_copy_to_stream(archive, sink)

        with zipfile.ZipFile(io.BytesIO(bytes(sink.data))) as zf:
            assert zf.namelist() == ["a.txt", "sub/b.txt"]
            assert zf.getinfo("a.txt").compress_type == zipfile.ZIP_STORED

    def test_stored_content_is_identical(self, temp_dir, buffered):
        root = temp_dir / "data"
        root.mkdir()
        payload = bytes(range(256)) * 512
        (root / "blob.bin").write_bytes(payload)
        helper, archive = buffered

        helper.add_uncompressed_file_to_archive(archive, root, "blob.bin")

        with zipfile.ZipFile(io.BytesIO(finalize_to_bytes(helper, archive))) as zf:
            info = zf.getinfo("blob.bin")
            assert info.compress_type == zipfile.ZIP_STORED
            assert info.compress_size == len(payload)
            assert zf.read("blob.bin") == payload

    def test_backslash_local_path(self, src, buffered):
        helper, archive = buffered
        helper.add_file_to_archive(archive, src, "sub\\b.txt")

        assert archive.entry_names == ["sub/b.txt"]
        assert helper.already_added == ["sub/b.txt"]

    def test_missing_source(self, src, buffered):
        helper, archive = buffered
        with pytest.raises(PathResolutionError):
            helper.add_file_to_archive(archive, src, "missing.txt")
        assert helper.already_added == []

    def test_unsupported_compression(self, src, buffered):
        helper, archive = buffered
        with pytest.raises(ValueError):
            helper.add_file_to_archive(archive, src, "a.txt", compression=12)
        assert archive.entry_names == []

    def test_streaming_source_is_a_directory(self, src, streaming):
        helper, archive, _ = streaming
        with pytest.raises(SourceFileUnreadableError):
            helper.add_file_to_archive(archive, src, "sub")


class TestFinalize:
    """Tests for closing archives and copying them out."""

    def test_round_trip_to_file(self, src, temp_dir, buffered):
        helper, archive = buffered
        helper.add_folder_to_archive(archive, src)

        output = temp_dir / "out.zip"
        with output.open("wb") as out:
            helper.close_archive_and_copy_to_stream(archive, out)

        with zipfile.ZipFile(output) as zf:
            assert zf.testzip() is None
            assert {name: zf.read(name) for name in zf.namelist()} == {
                "a.txt": b"hello",
                "sub/b.txt": b"world",
            }

    def test_copy_is_chunked(self, src, buffered):
        helper, archive = buffered
        helper.add_folder_to_archive(archive, src)

        with mock.patch("ziphelper.helper.shutil.copyfileobj") as copy:
            helper.close_archive_and_copy_to_stream(archive, io.BytesIO())

        assert copy.call_count == 1
        assert copy.call_args[0][2] == 64 * 1024

    def test_buffered_source_removed_before_finalize(self, src, buffered):
        helper, archive = buffered
        helper.add_folder_to_archive(archive, src)
        (src / "sub" / "b.txt").unlink()

        with pytest.raises(SourceFileMissingError):
            helper.close_archive_and_copy_to_stream(archive, io.BytesIO())
        assert archive.closed

    def test_too_many_entries(self, src, buffered):
        helper, archive = buffered
        helper.add_folder_to_archive(archive, src)

        with mock.patch("ziphelper.backends.MAX_ENTRIES", 1):
            with pytest.raises(FinalizeError, match="Entry count"):
                helper.close_archive_and_copy_to_stream(archive, io.BytesIO())

    def test_streaming_too_many_entries(self, src, streaming):
        helper, archive, sink = streaming
        helper.add_folder_to_archive(archive, src)

        with mock.patch("ziphelper.backends.MAX_ENTRIES", 1):
            with pytest.raises(FinalizeError):
                helper.close_archive_and_copy_to_stream(archive, sink)

    def test_archive_closed_after_finalize(self, src, buffered):
        helper, archive = buffered
        helper.add_file_to_archive(archive, src, "a.txt")
        finalize_to_bytes(helper, archive)

        with pytest.raises(RuntimeError, match="closed"):
            helper.add_file_to_archive(archive, src, "sub/b.txt")


class TestCreateFunction:
    """Tests for the create() convenience function."""

    @pytest.mark.parametrize("stream", [False, True])
    def test_create(self, src, temp_dir, stream):
        output = create(temp_dir / "out.zip", src, stream=stream, uncompressed=["sub/b.txt"])

        with zipfile.ZipFile(output) as zf:
            assert zf.namelist() == ["sub/b.txt", "a.txt"]
            assert zf.getinfo("sub/b.txt").compress_type == zipfile.ZIP_STORED

    @pytest.mark.parametrize("stream", [False, True])
    def test_output_inside_root_is_left_out(self, src, stream):
        # Left over from an earlier run as well as being written now
        (src / "out.zip").write_bytes(b"old")

        output = create(src / "out.zip", src, stream=stream)

        with zipfile.ZipFile(output) as zf:
            assert zf.namelist() == ["a.txt", "sub/b.txt"]
