"""
Large file routing.

Decides whether a freshly sealed archive should go through Git LFS and,
if so, registers a tracking pattern in .gitattributes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from . import git
from .config import STORAGE_DIR_NAME, VAULT_DIR_NAME

logger = logging.getLogger(__name__)

LFS_ATTRIBUTES = "filter=lfs diff=lfs merge=lfs -text"
LFS_COMMENT = "# gitvault: large encrypted archives"


def should_track_lfs(archive_size_bytes: int, threshold_bytes: int) -> bool:
    """A non-positive threshold disables LFS routing."""
    return threshold_bytes > 0 and archive_size_bytes >= threshold_bytes


@dataclass(frozen=True)
class LfsDecision:
    tracked: bool
    size: int
    threshold: int
    pattern: Optional[str] = None
    reason: str = ""


class LfsRouter:
    def __init__(
        self,
        repo_root: Path,
        available: Callable[[], bool] = git.lfs_available,
        install: Callable[[Path], bool] = git.lfs_install,
    ):
        self.repo_root = Path(repo_root)
        self.available = available
        self.install = install

    def wildcard_pattern(self, suffix: str) -> str:
        return f"{VAULT_DIR_NAME}/{STORAGE_DIR_NAME}/*{suffix}"

    def route(self, archive_path: Path, threshold_bytes: int, suffix: str) -> LfsDecision:
        size = archive_path.stat().st_size
        if not should_track_lfs(size, threshold_bytes):
            return LfsDecision(False, size, threshold_bytes, reason="below threshold")

        if not self.available():
            logger.warning(
                "Archive %s is %d bytes (threshold %d) but Git LFS is not available; "
                "it will be stored directly in Git",
                archive_path.name, size, threshold_bytes,
            )
            return LfsDecision(
                False, size, threshold_bytes,
                reason="Git LFS not available; archive stored directly in Git",
            )

        self.install(self.repo_root)
        rel = archive_path.resolve().relative_to(self.repo_root.resolve()).as_posix()
        pattern = self.register_pattern(rel, suffix)
        return LfsDecision(True, size, threshold_bytes, pattern=pattern, reason="above threshold")

    def register_pattern(self, archive_rel: str, suffix: str) -> str:
        """
        Ensure .gitattributes routes the archive through LFS.

        The storage-wide wildcard is preferred. If the wildcard is already
        present with other attributes, it is left alone and a pattern for
        this one archive is added instead.
        """

        lines = git.read_attributes(self.repo_root)
        wildcard = self.wildcard_pattern(suffix)

        conflicting = False
        for line in lines:
            parts = line.split()
            if not parts or parts[0].startswith("#") or parts[0] != wildcard:
                continue
            if " ".join(parts[1:]) == LFS_ATTRIBUTES:
                return wildcard
            conflicting = True

        pattern = archive_rel if conflicting else wildcard
        entry = f"{pattern} {LFS_ATTRIBUTES}"
        if entry not in lines:
            if LFS_COMMENT not in lines:
                lines.append(LFS_COMMENT)
            lines.append(entry)
            git.write_attributes(self.repo_root, lines)
        return pattern
