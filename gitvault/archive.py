"""
Archive capability: tar.gz in memory.

Sources are copied under a temporary root that keeps their top-level
name, so an archive always extracts to exactly one entry carrying the
original file or directory name.
"""

from __future__ import annotations

import gzip
import io
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path, PurePosixPath
from typing import List

from .errors import NotFound, ValidationFailed


def create_archive(source: Path) -> bytes:
    """Archive ``source`` (file or directory) into tar.gz bytes."""
    source = Path(source)
    if not source.exists():
        raise NotFound(f"Cannot archive missing path: {source}")

    with tempfile.TemporaryDirectory(prefix="gv-stage-") as tmp:
        staged = Path(tmp) / source.name
        if source.is_dir():
            shutil.copytree(source, staged, symlinks=True)
        else:
            shutil.copy2(source, staged)

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
            tar.add(str(staged), arcname=source.name)
        return buffer.getvalue()


def _check_member(member: tarfile.TarInfo) -> None:
    name = PurePosixPath(member.name)
    if name.is_absolute() or ".." in name.parts:
        raise ValidationFailed(f"Unsafe path in archive: {member.name}")
    if not (member.isfile() or member.isdir() or member.issym()):
        raise ValidationFailed(f"Unsupported member type in archive: {member.name}")
    if member.issym():
        target = PurePosixPath(member.linkname)
        if target.is_absolute() or ".." in (name.parent / target).parts:
            raise ValidationFailed(f"Symlink escapes archive: {member.name} -> {member.linkname}")


def extract_archive(data: bytes, dest_dir: Path) -> List[Path]:
    """
    Extract tar.gz bytes into ``dest_dir``.

    Returns the top-level paths that were created.

    Raises:
        ValidationFailed: if the archive is unreadable or holds unsafe members
    """

    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            members = tar.getmembers()
            for member in members:
                _check_member(member)
            if hasattr(tarfile, "data_filter"):
                tar.extractall(str(dest_dir), members=members, filter="data")
            else:
                tar.extractall(str(dest_dir), members=members)
    except (tarfile.TarError, EOFError, gzip.BadGzipFile, zlib.error) as e:
        raise ValidationFailed(f"Archive could not be extracted: {e}")

    tops = sorted({PurePosixPath(m.name).parts[0] for m in members if m.name})
    return [dest_dir / name for name in tops]
