"""
Git collaborator.

Thin wrappers around the ``git`` (and ``git lfs``) command line plus the
ignore-list maintenance that add/remove need. Nothing here knows about
the manifest or secrets.
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .errors import DependencyUnavailable

logger = logging.getLogger(__name__)

GITIGNORE: str = ".gitignore"
GITATTRIBUTES: str = ".gitattributes"

_REMOTE_NAME_RE = re.compile(r"[/:]([^/:]+?)(?:\.git)?/?$")


class GitError(RuntimeError):
    """A git command exited with a non-zero status."""


def run_git(
    args: Sequence[str],
    cwd: Path,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """
    Run ``git <args>`` in ``cwd`` and capture its output as text.

    Raises:
        DependencyUnavailable: if git is not installed
        GitError: if ``check`` is set and git fails
    """

    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        raise DependencyUnavailable("git command not found")

    if check and result.returncode != 0:
        raise GitError(f"git {' '.join(args)} failed: {result.stderr.strip()}")
    return result


# ---------------------------------------------------------------------------
# Repository discovery
# ---------------------------------------------------------------------------


def repository_root(workspace: Path) -> Optional[Path]:
    """Return the top-level directory of the repository containing ``workspace``."""
    result = run_git(["rev-parse", "--show-toplevel"], cwd=workspace, check=False)
    if result.returncode != 0:
        return None
    return Path(result.stdout.strip())


def hooks_dir(repo_root: Path) -> Path:
    """
    Resolve the directory git actually runs hooks from.

    Honors ``core.hooksPath`` (absolute or relative to the repository
    root), then asks git for its own hooks path, which also covers
    worktrees and separate git dirs.
    """

    configured = run_git(["config", "core.hooksPath"], cwd=repo_root, check=False)
    custom = configured.stdout.strip()
    if configured.returncode == 0 and custom:
        path = Path(custom).expanduser()
        return path if path.is_absolute() else repo_root / path

    git_path = run_git(["rev-parse", "--git-path", "hooks"], cwd=repo_root, check=False)
    if git_path.returncode == 0 and git_path.stdout.strip():
        path = Path(git_path.stdout.strip())
        return path if path.is_absolute() else repo_root / path

    return repo_root / ".git" / "hooks"


def project_name(repo_root: Path) -> str:
    """
    Return a stable project name for naming external secrets.

    Uses the basename of the ``origin`` remote, falling back to the
    repository directory name.
    """

    try:
        result = run_git(["remote", "get-url", "origin"], cwd=repo_root, check=False)
    except DependencyUnavailable:
        return repo_root.name

    if result.returncode == 0:
        match = _REMOTE_NAME_RE.search(result.stdout.strip())
        if match:
            return match.group(1)
    return repo_root.name


# ---------------------------------------------------------------------------
# Index operations (best-effort)
# ---------------------------------------------------------------------------


def stage(repo_root: Path, paths: Iterable[str | Path]) -> bool:
    """Stage ``paths``; returns False (and logs) instead of raising."""
    rel = [str(p) for p in paths]
    if not rel:
        return True
    try:
        run_git(["add", "--", *rel], cwd=repo_root)
    except (GitError, DependencyUnavailable) as e:
        logger.warning("Could not stage %s: %s", ", ".join(rel), e)
        return False
    return True


def unstage_remove(repo_root: Path, path: str | Path) -> bool:
    """Drop ``path`` from the index without touching the working tree."""
    try:
        run_git(["rm", "--cached", "--ignore-unmatch", "--quiet", "-r", "--", str(path)], cwd=repo_root)
    except (GitError, DependencyUnavailable) as e:
        logger.warning("Could not remove %s from the index: %s", path, e)
        return False
    return True


# ---------------------------------------------------------------------------
# Ignore list
# ---------------------------------------------------------------------------


def _read_lines(path: Path) -> List[str]:
    if not path.exists():
        return []
    return path.read_text(encoding="utf-8").splitlines()


def _write_lines(path: Path, lines: List[str]) -> None:
    path.write_text("\n".join(lines) + "\n" if lines else "", encoding="utf-8")


def update_ignore(repo_root: Path, patterns: Iterable[str]) -> bool:
    """Append missing ``patterns`` to .gitignore. Returns True if it changed."""
    path = repo_root / GITIGNORE
    lines = _read_lines(path)
    added = [p for p in patterns if p not in lines]
    if not added:
        return False
    _write_lines(path, lines + added)
    return True


def prune_ignore(repo_root: Path, patterns: Iterable[str]) -> bool:
    """Remove exact ``patterns`` lines from .gitignore. Returns True if it changed."""
    path = repo_root / GITIGNORE
    lines = _read_lines(path)
    drop = set(patterns)
    kept = [line for line in lines if line not in drop]
    if len(kept) == len(lines):
        return False
    _write_lines(path, kept)
    return True


# ---------------------------------------------------------------------------
# Large file storage
# ---------------------------------------------------------------------------


def lfs_available() -> bool:
    try:
        return subprocess.run(["git", "lfs", "version"], capture_output=True).returncode == 0
    except FileNotFoundError:
        return False


def lfs_install(repo_root: Path) -> bool:
    result = run_git(["lfs", "install", "--local"], cwd=repo_root, check=False)
    if result.returncode != 0:
        logger.warning("git lfs install failed: %s", result.stderr.strip())
        return False
    return True


def read_attributes(repo_root: Path) -> List[str]:
    return _read_lines(repo_root / GITATTRIBUTES)


def write_attributes(repo_root: Path, lines: List[str]) -> None:
    _write_lines(repo_root / GITATTRIBUTES, lines)
