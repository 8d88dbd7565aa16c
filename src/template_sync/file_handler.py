"""File handler module: encoding-aware read/write and symlink-aware tree edits.

Provides the filesystem primitives the resolution executor applies.
Every function here is a plain synchronous call with no side effects
besides file I/O; callers decide when to persist state around them.
"""

import os
import shutil
from pathlib import Path

from charset_normalizer import from_bytes

# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def write_file(
    path: Path, content: str, encoding: str = "utf-8"
) -> int:
    """Write content to a file, creating parent directories as needed.

    An existing symlink at *path* is replaced by a regular file rather
    than written through.

    Args:
        path: Path to the output file.
        content: String content to write.
        encoding: Encoding to use (default: utf-8).

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.is_symlink():
        path.unlink()
    encoded = content.encode(encoding)
    path.write_bytes(encoded)
    return len(encoded)


# =============================================================================
# Tree edits
# =============================================================================


def copy_entry(src: Path, dest: Path) -> None:
    """Copy a file or symlink from *src* to *dest*.

    Symlinks are recreated with the same target instead of copying what
    they point to, so directory links and dangling links survive a sync.
    Parent directories are created as needed.

    Raises:
        FileNotFoundError: If *src* does not exist (not even as a link).
        IsADirectoryError: If *src* is a real directory.
    """
    if not os.path.lexists(src):
        raise FileNotFoundError(f"Source not found: {src}")
    if src.is_dir() and not src.is_symlink():
        raise IsADirectoryError(f"Cannot copy a directory: {src}")

    dest.parent.mkdir(parents=True, exist_ok=True)

    if src.is_symlink():
        target = os.readlink(src)
        if os.path.lexists(dest):
            dest.unlink()
        os.symlink(target, dest)
        return

    if dest.is_symlink():
        dest.unlink()
    shutil.copyfile(src, dest)
    shutil.copymode(src, dest)


def remove_entry(path: Path, stop_at: Path) -> bool:
    """Remove a file or symlink and prune empty parents.

    Parent directories are removed while empty, walking up to but never
    including *stop_at*.

    Returns:
        ``True`` if something was removed, ``False`` if *path* was
        already absent.
    """
    if not os.path.lexists(path):
        return False

    path.unlink()
    prune_empty_parents(path.parent, stop_at)
    return True


def prune_empty_parents(directory: Path, stop_at: Path) -> None:
    """Remove *directory* and its ancestors while they are empty."""
    stop = stop_at.resolve()
    current = directory
    while True:
        try:
            resolved = current.resolve()
        except OSError:
            return
        if resolved == stop or stop not in resolved.parents:
            return
        try:
            if any(current.iterdir()):
                return
            current.rmdir()
        except OSError:
            return
        current = current.parent


def remove_tree(path: Path) -> None:
    """Remove a real directory subtree (never follows a symlinked root)."""
    if path.is_symlink():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
