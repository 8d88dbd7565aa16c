"""Content fingerprints for template and project paths.

A fingerprint is a SHA-256 hex digest that changes whenever the synced
content of a path changes:

* Regular files and symlinks to files hash their byte content.
* Symlinks to directories and dangling symlinks hash ``"symlink:" + target``
  so the digest is stable without dereferencing the link.
* A missing path yields ``MISSING`` and a real directory ``DIRECTORY``;
  neither can ever equal a hex digest.

There is no locking.  Callers treat one planning pass as a consistent
snapshot of both trees.
"""

from __future__ import annotations

import hashlib
import os
import stat
from pathlib import Path

from .models import EntryKind

MISSING = ""
DIRECTORY = "<directory>"

_CHUNK_SIZE = 1024 * 1024


def classify_entry(path: Path) -> EntryKind | None:
    """Return the ``EntryKind`` of *path*, or ``None`` if it does not exist.

    Uses ``lstat`` first so broken symlinks are still seen.
    """
    try:
        st = os.lstat(path)
    except (FileNotFoundError, NotADirectoryError):
        return None

    if stat.S_ISLNK(st.st_mode):
        try:
            target = os.stat(path)
        except OSError:
            return EntryKind.BROKEN_SYMLINK
        if stat.S_ISDIR(target.st_mode):
            return EntryKind.SYMLINK_DIR
        return EntryKind.SYMLINK_FILE

    if stat.S_ISDIR(st.st_mode):
        return EntryKind.DIRECTORY
    return EntryKind.FILE


def hash_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of *data*."""
    return hashlib.sha256(data).hexdigest()


def fingerprint(path: Path) -> str:
    """Compute the fingerprint of *path*.

    Args:
        path: Absolute or cwd-relative path inside a tree.

    Returns:
        A hex digest, ``MISSING`` or ``DIRECTORY``.

    Raises:
        OSError: If the path exists but cannot be read.
    """
    kind = classify_entry(path)
    if kind is None:
        return MISSING
    if kind == EntryKind.DIRECTORY:
        return DIRECTORY
    if kind in (EntryKind.SYMLINK_DIR, EntryKind.BROKEN_SYMLINK):
        return hash_bytes(f"symlink:{os.readlink(path)}".encode("utf-8"))

    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def exists(path: Path) -> bool:
    """Return ``True`` if *path* exists, counting dangling symlinks."""
    return os.path.lexists(path)
