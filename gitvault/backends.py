"""
Secret backends.

A backend keeps the passphrase of each managed path. Operations only
ever talk to the ``SecretBackend`` interface; which implementation an
entry uses is decided once, when the entry is created, and recorded in
the manifest.

Secrets of removed entries are tombstoned, never destroyed: the
passphrase may be the only way to read archives already in history.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .config import BASE_NAME, REMOVED_SUFFIX, SECRET_SUFFIX, STORAGE_EXTERNAL, STORAGE_FILE
from .errors import AlreadyExists, AuthRequired, DependencyUnavailable, NotFound, PermissionDenied
from .manifest import STATUS_ACTIVE, STATUS_REMOVED, SecretRef
from .onepassword import OnePasswordCLI
from .utils import atomic_write_text

logger = logging.getLogger(__name__)


class SecretBackend(ABC):
    kind: str = ""

    @abstractmethod
    def store(self, hash_: str, path: str, passphrase: str, overwrite: bool = False) -> SecretRef:
        """
        Store the passphrase for ``hash_``.

        Raises:
            AlreadyExists: if a live secret exists and ``overwrite`` is False
        """

    @abstractmethod
    def retrieve(self, ref: SecretRef) -> str:
        """
        Raises:
            NotFound: if the record is absent
        """

    @abstractmethod
    def mark_removed(self, ref: SecretRef) -> SecretRef:
        """Tombstone the secret; returns where the tombstone lives."""

    @abstractmethod
    def restore(self, hash_: str, ref: SecretRef) -> SecretRef:
        """Undo ``mark_removed``; used when a removal is rolled back."""

    @abstractmethod
    def discard(self, ref: SecretRef) -> None:
        """Destroy a secret that was never committed (rollback of an add)."""

    def has(self, ref: SecretRef) -> Optional[bool]:
        """Whether the record exists, or None when that cannot be known cheaply."""
        return None


# ---------------------------------------------------------------------------
# File backend
# ---------------------------------------------------------------------------


class FileBackend(SecretBackend):
    """Passphrase files with mode 0600 beside the vault config."""

    kind = STORAGE_FILE

    def __init__(self, vault_dir: str | Path):
        self.vault_dir = Path(vault_dir)

    def secret_name(self, hash_: str) -> str:
        return f"{BASE_NAME}-{hash_}{SECRET_SUFFIX}"

    def _resolve(self, ref: SecretRef) -> Path:
        if not ref.path:
            raise NotFound("Secret reference has no file path")
        return self.vault_dir / ref.path

    def _tombstone_name(self, hash_: str) -> str:
        name = f"{BASE_NAME}-{hash_}{REMOVED_SUFFIX}"
        counter = 1
        while (self.vault_dir / name).exists():
            name = f"{BASE_NAME}-{hash_}.{counter}{REMOVED_SUFFIX}"
            counter += 1
        return name

    def store(self, hash_: str, path: str, passphrase: str, overwrite: bool = False) -> SecretRef:
        name = self.secret_name(hash_)
        target = self.vault_dir / name
        if target.exists() and not overwrite:
            raise AlreadyExists(
                f"Password file {target} already exists for '{path}'. "
                "Rename the path or remove the stale password file."
            )
        try:
            atomic_write_text(target, passphrase, mode=0o600)
        except PermissionError as e:
            raise PermissionDenied(f"Cannot write password file {target}: {e}")
        logger.debug("Stored passphrase for %s in %s", path, target)
        return SecretRef(path=name)

    def retrieve(self, ref: SecretRef) -> str:
        target = self._resolve(ref)
        try:
            return target.read_text(encoding="utf-8").rstrip("\r\n")
        except FileNotFoundError:
            raise NotFound(f"Password file not found: {target}")
        except PermissionError as e:
            raise PermissionDenied(f"Cannot read password file {target}: {e}")

    def mark_removed(self, ref: SecretRef) -> SecretRef:
        source = self._resolve(ref)
        if not source.exists():
            raise NotFound(f"Password file not found: {source}")
        hash_ = source.name[len(BASE_NAME) + 1:].split(".")[0]
        tombstone = self._tombstone_name(hash_)
        os.replace(source, self.vault_dir / tombstone)
        return SecretRef(path=tombstone)

    def restore(self, hash_: str, ref: SecretRef) -> SecretRef:
        name = self.secret_name(hash_)
        os.replace(self._resolve(ref), self.vault_dir / name)
        return SecretRef(path=name)

    def discard(self, ref: SecretRef) -> None:
        self._resolve(ref).unlink(missing_ok=True)

    def has(self, ref: SecretRef) -> Optional[bool]:
        return bool(ref.path) and self._resolve(ref).exists()


# ---------------------------------------------------------------------------
# External manager backend
# ---------------------------------------------------------------------------


class ExternalManagerBackend(SecretBackend):
    """
    Passphrases kept as items in an external secret manager.

    Items are titled ``gv-<project>-<hash>`` and carry ``path`` and
    ``status`` fields. The manager must be installed and signed in;
    there is no fallback to file storage.
    """

    kind = STORAGE_EXTERNAL

    def __init__(self, client: OnePasswordCLI, namespace: str, project: str):
        self.client = client
        self.namespace = namespace
        self.project = project
        self._ready = False

    def item_title(self, hash_: str) -> str:
        return f"{BASE_NAME}-{self.project}-{hash_}"

    def is_available(self) -> bool:
        return self.client.is_available()

    def is_authenticated(self) -> bool:
        return self.client.is_signed_in()

    def ensure_ready(self) -> None:
        """
        Raises:
            DependencyUnavailable: if the manager CLI is not installed
            AuthRequired: if it is not signed in
        """

        if self._ready:
            return
        if not self.is_available():
            raise DependencyUnavailable("1Password CLI (op) is not available")
        if not self.is_authenticated():
            raise AuthRequired("Not signed in to 1Password CLI. Run 'op signin' and retry.")
        self._ready = True

    def _namespace(self, ref: SecretRef) -> str:
        return ref.namespace or self.namespace

    def _live_item(self, hash_: str) -> Optional[str]:
        title = self.item_title(hash_)
        for item in self.client.list_items(self.namespace):
            if item["title"] != title:
                continue
            fields = self.client.get_fields(item["id"], self.namespace)
            if fields.get("status", STATUS_ACTIVE) != STATUS_REMOVED:
                return item["id"]
        return None

    def store(self, hash_: str, path: str, passphrase: str, overwrite: bool = False) -> SecretRef:
        self.ensure_ready()
        live = self._live_item(hash_)
        if live is not None:
            if not overwrite:
                raise AlreadyExists(
                    f"1Password item '{self.item_title(hash_)}' already exists in '{self.namespace}'. "
                    "Rename the path to break the collision."
                )
            self.client.edit_item(live, self.namespace, {"password": passphrase})
            return SecretRef(item_id=live, namespace=self.namespace)

        item_id = self.client.create_item(
            self.item_title(hash_),
            self.namespace,
            passphrase,
            {"path": path, "status": STATUS_ACTIVE},
        )
        return SecretRef(item_id=item_id, namespace=self.namespace)

    def retrieve(self, ref: SecretRef) -> str:
        if not ref.item_id:
            raise NotFound("Secret reference has no item id")
        self.ensure_ready()
        return self.client.get_secret(ref.item_id, self._namespace(ref))

    def mark_removed(self, ref: SecretRef) -> SecretRef:
        self.ensure_ready()
        self.client.edit_item(ref.item_id, self._namespace(ref), {"status": STATUS_REMOVED})
        return ref

    def restore(self, hash_: str, ref: SecretRef) -> SecretRef:
        self.ensure_ready()
        self.client.edit_item(ref.item_id, self._namespace(ref), {"status": STATUS_ACTIVE})
        return ref

    def discard(self, ref: SecretRef) -> None:
        self.ensure_ready()
        self.client.delete_item(ref.item_id, self._namespace(ref))
