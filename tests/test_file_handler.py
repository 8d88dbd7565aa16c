"""Tests for file_handler module: encoding-aware read/write and tree edits."""

import os

import pytest

from template_sync.file_handler import (
    copy_entry,
    prune_empty_parents,
    read_file_with_encoding,
    remove_entry,
    remove_tree,
    write_file,
)

needs_symlinks = pytest.mark.skipif(os.name == "nt", reason="symlinks not available")

# =============================================================================
# read_file_with_encoding
# =============================================================================


class TestReadFileWithEncoding:
    """Tests for read_file_with_encoding(path)."""

    def test_utf8_file(self, tmp_path):
        """UTF-8 file returns content and 'utf-8' encoding."""
        f = tmp_path / "utf8.txt"
        f.write_text("Hello, world!", encoding="utf-8")
        content, encoding = read_file_with_encoding(f)
        assert content == "Hello, world!"
        assert encoding == "utf-8"

    def test_empty_file(self, tmp_path):
        """Empty file returns empty string and 'utf-8' default encoding."""
        f = tmp_path / "empty.txt"
        f.write_bytes(b"")
        assert read_file_with_encoding(f) == ("", "utf-8")

    def test_non_utf8_file(self, tmp_path):
        """Non-UTF-8 file detects encoding and returns decoded content."""
        f = tmp_path / "latin1.txt"
        f.write_bytes("Café résumé naïve".encode("latin-1"))
        content, encoding = read_file_with_encoding(f)
        assert "Caf" in content
        assert isinstance(encoding, str)


# =============================================================================
# write_file
# =============================================================================


class TestWriteFile:
    """Tests for write_file(path, content, encoding)."""

    def test_write_basic(self, tmp_path):
        """Writes content and returns bytes written count."""
        f = tmp_path / "output.txt"
        count = write_file(f, "Hello, world!")
        assert f.read_text(encoding="utf-8") == "Hello, world!"
        assert count == len(b"Hello, world!")

    def test_creates_parent_directories(self, tmp_path):
        f = tmp_path / "sub" / "deep" / "output.txt"
        write_file(f, "nested content")
        assert f.read_text(encoding="utf-8") == "nested content"

    def test_write_with_encoding(self, tmp_path):
        f = tmp_path / "latin.txt"
        write_file(f, "Café", encoding="latin-1")
        assert f.read_bytes() == "Café".encode("latin-1")

    @needs_symlinks
    def test_replaces_symlink_instead_of_writing_through(self, tmp_path):
        target = tmp_path / "target.txt"
        target.write_text("original")
        link = tmp_path / "link.txt"
        link.symlink_to(target)

        write_file(link, "new")

        assert not link.is_symlink()
        assert link.read_text() == "new"
        assert target.read_text() == "original"


# =============================================================================
# Tree edits
# =============================================================================


class TestCopyEntry:
    """Tests for copy_entry(src, dest)."""

    def test_copies_file_and_creates_parents(self, tmp_path):
        src = tmp_path / "src.txt"
        src.write_text("data")
        dest = tmp_path / "out" / "nested" / "dest.txt"
        copy_entry(src, dest)
        assert dest.read_text() == "data"

    def test_preserves_mode(self, tmp_path):
        src = tmp_path / "run.sh"
        src.write_text("#!/bin/sh\n")
        src.chmod(0o755)
        dest = tmp_path / "copy.sh"
        copy_entry(src, dest)
        assert os.stat(dest).st_mode & 0o777 == 0o755

    def test_missing_source_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            copy_entry(tmp_path / "missing", tmp_path / "dest")

    def test_directory_source_raises(self, tmp_path):
        (tmp_path / "dir").mkdir()
        with pytest.raises(IsADirectoryError):
            copy_entry(tmp_path / "dir", tmp_path / "dest")

    @needs_symlinks
    def test_symlink_recreated_not_followed(self, tmp_path):
        (tmp_path / "real").mkdir()
        src = tmp_path / "link"
        src.symlink_to("real")
        dest = tmp_path / "out" / "link"
        copy_entry(src, dest)
        assert dest.is_symlink()
        assert os.readlink(dest) == "real"

    @needs_symlinks
    def test_dangling_symlink_copied(self, tmp_path):
        src = tmp_path / "dangling"
        src.symlink_to("nowhere")
        dest = tmp_path / "copy"
        copy_entry(src, dest)
        assert os.readlink(dest) == "nowhere"

    @needs_symlinks
    def test_file_over_existing_symlink(self, tmp_path):
        victim = tmp_path / "victim.txt"
        victim.write_text("keep")
        dest = tmp_path / "dest"
        dest.symlink_to(victim)
        src = tmp_path / "src.txt"
        src.write_text("fresh")

        copy_entry(src, dest)

        assert not dest.is_symlink()
        assert dest.read_text() == "fresh"
        assert victim.read_text() == "keep"


class TestRemoveEntry:
    """Tests for remove_entry() and prune_empty_parents()."""

    def test_removes_and_prunes(self, tmp_path):
        f = tmp_path / "a" / "b" / "c.txt"
        f.parent.mkdir(parents=True)
        f.write_text("x")
        assert remove_entry(f, tmp_path) is True
        assert not (tmp_path / "a").exists()
        assert tmp_path.exists()

    def test_stops_at_non_empty_parent(self, tmp_path):
        f = tmp_path / "a" / "b" / "c.txt"
        f.parent.mkdir(parents=True)
        f.write_text("x")
        (tmp_path / "a" / "keep.txt").write_text("k")
        remove_entry(f, tmp_path)
        assert not (tmp_path / "a" / "b").exists()
        assert (tmp_path / "a").is_dir()

    def test_missing_returns_false(self, tmp_path):
        assert remove_entry(tmp_path / "nope", tmp_path) is False

    @needs_symlinks
    def test_removes_dangling_symlink(self, tmp_path):
        link = tmp_path / "d" / "link"
        link.parent.mkdir()
        link.symlink_to("gone")
        assert remove_entry(link, tmp_path) is True
        assert not os.path.lexists(link)

    def test_prune_never_leaves_root(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        prune_empty_parents(root, root)
        assert root.is_dir()

    def test_prune_ignores_paths_outside_root(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        root = tmp_path / "root"
        root.mkdir()
        prune_empty_parents(outside, root)
        assert outside.is_dir()


class TestRemoveTree:
    """Tests for remove_tree()."""

    def test_removes_directory(self, tmp_path):
        d = tmp_path / "d"
        (d / "sub").mkdir(parents=True)
        (d / "sub" / "f").write_text("x")
        remove_tree(d)
        assert not d.exists()

    @needs_symlinks
    def test_symlinked_root_unlinked_not_followed(self, tmp_path):
        real = tmp_path / "real"
        real.mkdir()
        (real / "f").write_text("x")
        link = tmp_path / "link"
        link.symlink_to(real)
        remove_tree(link)
        assert not os.path.lexists(link)
        assert (real / "f").exists()
