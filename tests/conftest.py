"""Shared test fixtures for gitvault."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import Dict, List

import pytest

from gitvault.cipher import AesGcmCipher
from gitvault.context import RepoContext
from gitvault.errors import NotFound
from gitvault.lfs import LfsRouter
from gitvault.operations import Vault


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


class FakeOnePassword:
    """In-memory stand-in for the ``op`` CLI client."""

    def __init__(self, vaults: List[str] = None, available: bool = True, signed_in: bool = True):
        self.vaults = vaults if vaults is not None else ["Personal", "Work"]
        self.available = available
        self.signed_in = signed_in
        self.items: Dict[str, Dict] = {}
        self._next_id = 1

    def is_available(self) -> bool:
        return self.available

    def is_signed_in(self) -> bool:
        return self.signed_in

    def list_vaults(self) -> List[str]:
        return list(self.vaults)

    def list_items(self, vault: str) -> List[Dict[str, str]]:
        return [
            {"id": item_id, "title": item["title"]}
            for item_id, item in self.items.items()
            if item["vault"] == vault
        ]

    def create_item(self, title: str, vault: str, secret: str, fields: Dict[str, str]) -> str:
        item_id = f"item{self._next_id}"
        self._next_id += 1
        self.items[item_id] = {"title": title, "vault": vault, "password": secret, "fields": dict(fields)}
        return item_id

    def _get(self, item_id: str) -> Dict:
        if item_id not in self.items:
            raise NotFound(f"1Password: \"{item_id}\" isn't an item")
        return self.items[item_id]

    def edit_item(self, item_id: str, vault: str, fields: Dict[str, str]) -> None:
        item = self._get(item_id)
        for key, value in fields.items():
            if key == "password":
                item["password"] = value
            else:
                item["fields"][key] = value

    def delete_item(self, item_id: str, vault: str) -> None:
        self._get(item_id)
        del self.items[item_id]

    def get_secret(self, item_id: str, vault: str) -> str:
        return self._get(item_id)["password"]

    def get_fields(self, item_id: str, vault: str) -> Dict[str, str]:
        return dict(self._get(item_id)["fields"])


@pytest.fixture
def fast_cipher() -> AesGcmCipher:
    """AES-GCM with a tiny scrypt cost so tests stay fast."""
    return AesGcmCipher(n=2 ** 4, r=8, p=1)


@pytest.fixture
def repo_ctx(tmp_path: Path) -> RepoContext:
    """A repository-shaped directory; git itself is not required."""
    root = tmp_path / "project"
    (root / ".git" / "hooks").mkdir(parents=True)
    return RepoContext.for_root(root)


@pytest.fixture
def lfs_calls() -> List[Path]:
    return []


@pytest.fixture
def lfs_router(repo_ctx: RepoContext, lfs_calls: List[Path]) -> LfsRouter:
    """LFS router that reports Git LFS as available without running it."""
    def install(root: Path) -> bool:
        lfs_calls.append(root)
        return True

    return LfsRouter(repo_ctx.root, available=lambda: True, install=install)


@pytest.fixture
def vault(repo_ctx: RepoContext, fast_cipher: AesGcmCipher, lfs_router: LfsRouter) -> Vault:
    """A file-backed vault initialized in ``repo_ctx``."""
    vault, _ = Vault.initialize(repo_ctx, cipher=fast_cipher, lfs_router=lfs_router)
    return vault


@pytest.fixture
def fake_op() -> FakeOnePassword:
    return FakeOnePassword()


@pytest.fixture
def external_vault(repo_ctx: RepoContext, fast_cipher: AesGcmCipher, lfs_router: LfsRouter, fake_op) -> Vault:
    """A vault whose secrets live in the fake 1Password client."""
    vault, _ = Vault.initialize(
        repo_ctx,
        storage_mode="externalManager",
        namespace="Work",
        cipher=fast_cipher,
        lfs_router=lfs_router,
        op_client=fake_op,
    )
    return vault


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A real, empty git repository."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    root = tmp_path / "gitrepo"
    root.mkdir()
    subprocess.run(["git", "init", "-q", str(root)], check=True)
    subprocess.run(["git", "-C", str(root), "config", "user.email", "test@example.com"], check=True)
    subprocess.run(["git", "-C", str(root), "config", "user.name", "Test"], check=True)
    return root


def write_tree(base: Path, files: Dict[str, str]) -> None:
    for rel, content in files.items():
        path = base / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
