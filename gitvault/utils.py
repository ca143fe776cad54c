"""
Shared utility helpers.

This module contains small, reusable helpers that do not belong
to the manifest, the backends, or encryption orchestration.
"""

from __future__ import annotations

import hashlib
import os
import secrets
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import Dict, Optional, Tuple

from .config import ARCHIVE_PATH_DELIMITER, GENERATED_PASSPHRASE_BYTES


# ---------------------------------------------------------------------------
# Hashing / identifiers
# ---------------------------------------------------------------------------


def short_hash(data: bytes, length: int = 8, algorithm: str = "sha1") -> str:
    """Return a short hex hash useful for filenames or IDs."""
    return hashlib.new(algorithm, data).hexdigest()[:length]


def path_hash(managed_path: str) -> str:
    """Return the 8-hex identity of a normalized managed path."""
    return short_hash(managed_path.encode("utf-8"))


def normalize_managed_path(relative: str | Path, is_dir: bool) -> str:
    """
    Normalize a repo-relative path into its manifest form.

    Separators become '/', leading './' and trailing separators are
    dropped, and directories get exactly one trailing '/' so that a
    directory never shares an identity with a same-named file.
    """

    text = str(relative).replace(os.sep, "/")
    posix = PurePosixPath(text).as_posix()
    while posix.startswith("./"):
        posix = posix[2:]
    posix = posix.rstrip("/")
    return posix + "/" if is_dir else posix


def archive_file_name(managed_path: str, suffix: str) -> str:
    """Flatten a managed path into the archive file name stored in the vault."""
    return managed_path.replace("/", ARCHIVE_PATH_DELIMITER) + suffix


def generate_passphrase() -> str:
    """Generate a random passphrase for paths added without one."""
    return secrets.token_urlsafe(GENERATED_PASSPHRASE_BYTES)


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_parent_dir(path: Path) -> None:
    """Ensure the parent directory of a file exists."""
    path.parent.mkdir(parents=True, exist_ok=True)


def atomic_write_bytes(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """
    Write bytes through a temporary sibling and rename it into place.

    The file either keeps its previous content or holds the complete
    new content; readers never observe a partial write.
    """

    ensure_parent_dir(path)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        if mode is not None:
            os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def atomic_write_text(path: Path, text: str, mode: Optional[int] = None) -> None:
    atomic_write_bytes(path, text.encode("utf-8"), mode=mode)


def remove_path(path: Path) -> None:
    """Remove a file, symlink or directory tree if it exists."""
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)


def file_size(path: Path) -> int:
    return path.stat().st_size


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def tree_digest(path: Path) -> Dict[str, Tuple[int, Optional[str]]]:
    """
    Describe a file or directory structurally.

    Returns a mapping of paths relative to ``path.parent`` (so the
    top-level name is part of every key) to ``(size, sha256)``.
    Directories are included with size 0 and no digest so that empty
    directories are compared too.
    """

    base = path.parent
    result: Dict[str, Tuple[int, Optional[str]]] = {}

    if path.is_file():
        result[path.relative_to(base).as_posix()] = (file_size(path), _sha256_file(path))
        return result

    result[path.relative_to(base).as_posix() + "/"] = (0, None)
    for item in sorted(path.rglob("*")):
        rel = item.relative_to(base).as_posix()
        if item.is_dir():
            result[rel + "/"] = (0, None)
        elif item.is_file():
            result[rel] = (file_size(item), _sha256_file(item))
    return result
