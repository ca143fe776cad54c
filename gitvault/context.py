"""
Repository context.

A ``RepoContext`` is the explicit replacement for "current directory"
state: every operation receives one and derives all of its paths from it.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import git
from .config import CONFIG_FILE_NAME, STORAGE_DIR_NAME, VAULT_DIR_NAME
from .errors import NotFound


@dataclass(frozen=True)
class RepoContext:
    root: Path
    hooks_dir: Path

    @property
    def vault_dir(self) -> Path:
        return self.root / VAULT_DIR_NAME

    @property
    def storage_dir(self) -> Path:
        return self.vault_dir / STORAGE_DIR_NAME

    @property
    def config_path(self) -> Path:
        return self.vault_dir / CONFIG_FILE_NAME

    @classmethod
    def for_root(cls, root: str | Path, hooks_dir: Optional[Path] = None) -> "RepoContext":
        """Build a context for a known root without asking git anything."""
        root = Path(root).resolve()
        return cls(root=root, hooks_dir=hooks_dir or root / ".git" / "hooks")

    @classmethod
    def discover(cls, workspace: str | Path = ".") -> "RepoContext":
        """
        Locate the repository containing ``workspace``.

        Raises:
            NotFound: if ``workspace`` is not inside a git repository
        """

        workspace = Path(workspace).resolve()
        root = git.repository_root(workspace)
        if root is None:
            raise NotFound(f"Not a Git repository: {workspace}")
        root = root.resolve()
        return cls(root=root, hooks_dir=git.hooks_dir(root))

    def relative(self, path: Path) -> str:
        """Return ``path`` relative to the root in posix form."""
        return path.resolve().relative_to(self.root).as_posix()
