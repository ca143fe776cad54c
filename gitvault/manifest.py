"""
Vault manifest loading, validation, and persistence.

This module answers one question:
    "What does the vault manage?"

Responsibilities:
- Load the vault config YAML file
- Validate structure and version
- Normalize defaults
- Expose a clean Python representation
- Persist it atomically

This module does NOT:
- Touch archives or secrets
- Encrypt anything
- Talk to git
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .config import (
    CIPHER_AES_GCM,
    CIPHER_GPG,
    DEFAULT_CIPHER,
    DEFAULT_LFS_THRESHOLD_BYTES,
    STORAGE_FILE,
    STORAGE_MODES,
    SUPPORTED_CONFIG_VERSION,
)
from .errors import ConfigError, DuplicateIdentity, NotFound
from .utils import atomic_write_text

STATUS_ACTIVE = "active"
STATUS_REMOVED = "removed"


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


@dataclass
class SecretRef:
    """Where a backend keeps one passphrase."""

    path: Optional[str] = None
    item_id: Optional[str] = None
    namespace: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        return {k: v for k, v in (("path", self.path), ("item_id", self.item_id), ("namespace", self.namespace)) if v}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SecretRef":
        data = data or {}
        return cls(path=data.get("path"), item_id=data.get("item_id"), namespace=data.get("namespace"))


@dataclass
class ManagedPathEntry:
    hash: str
    path: str
    backend: str = STORAGE_FILE
    status: str = STATUS_ACTIVE
    secret_ref: SecretRef = field(default_factory=SecretRef)
    created_at: Optional[str] = None
    removed_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    @property
    def is_directory(self) -> bool:
        return self.path.endswith("/")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "hash": self.hash,
            "path": self.path,
            "status": self.status,
            "backend": self.backend,
            "secret_ref": self.secret_ref.to_dict(),
        }
        if self.created_at:
            data["created_at"] = self.created_at
        if self.removed_at:
            data["removed_at"] = self.removed_at
        return data


@dataclass
class VaultConfig:
    version: int = SUPPORTED_CONFIG_VERSION
    storage_mode: str = STORAGE_FILE
    external_namespace: Optional[str] = None
    lfs_threshold_bytes: int = DEFAULT_LFS_THRESHOLD_BYTES
    cipher: str = DEFAULT_CIPHER
    managed_paths: List[ManagedPathEntry] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def active_entries(self) -> List[ManagedPathEntry]:
        return [e for e in self.managed_paths if e.is_active]

    def find(self, key: str, include_removed: bool = False) -> Optional[ManagedPathEntry]:
        """
        Return the entry whose hash or path equals ``key``.

        Active entries win; with ``include_removed`` the most recent
        removed entry is returned when no active one matches.
        """

        matches = [e for e in self.managed_paths if key in (e.hash, e.path)]
        for entry in matches:
            if entry.is_active:
                return entry
        if include_removed and matches:
            return matches[-1]
        return None

    def history(self, path: str) -> List[ManagedPathEntry]:
        """All lifecycle entries ever recorded for ``path``, oldest first."""
        return [e for e in self.managed_paths if e.path == path]

    # ------------------------------------------------------------------
    # Mutations (in memory; callers persist with ManifestStore.save)
    # ------------------------------------------------------------------

    def add_entry(self, entry: ManagedPathEntry) -> None:
        """
        Register a new active entry.

        Raises:
            DuplicateIdentity: if an active entry already owns the hash
        """

        existing = self.find(entry.hash)
        if existing is not None:
            raise DuplicateIdentity(
                f"Identity {entry.hash} is already used by '{existing.path}'. "
                f"Rename '{entry.path}' to break the collision."
            )
        if entry.created_at is None:
            entry.created_at = utc_now()
        self.managed_paths.append(entry)

    def mark_removed(self, hash_: str, secret_ref: Optional[SecretRef] = None) -> ManagedPathEntry:
        """
        Flip the active entry for ``hash_`` to removed.

        Raises:
            NotFound: if no active entry has that hash
        """

        entry = self.find(hash_)
        if entry is None:
            raise NotFound(f"No active entry with hash {hash_}")
        entry.status = STATUS_REMOVED
        entry.removed_at = utc_now()
        if secret_ref is not None:
            entry.secret_ref = secret_ref
        return entry

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "version": self.version,
            "storage_mode": self.storage_mode,
            "lfs_threshold_bytes": self.lfs_threshold_bytes,
            "cipher": self.cipher,
        }
        if self.external_namespace:
            data["external_namespace"] = self.external_namespace
        data["managed_paths"] = [e.to_dict() for e in self.managed_paths]
        return data


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ManifestStore:
    """Reads and writes the single ``VaultConfig`` of a repository."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> VaultConfig:
        """
        Load and validate the vault config.

        Raises:
            NotFound: if the config file does not exist
            ConfigError: if it is unreadable or invalid
        """

        if not self.path.exists():
            raise NotFound(f"Vault config not found: {self.path}")

        try:
            with self.path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read vault config {self.path}: {e}")

        if not isinstance(raw, dict):
            raise ConfigError(f"Vault config {self.path} is not a mapping")
        return self._from_dict(raw)

    def save(self, config: VaultConfig) -> None:
        """Persist ``config`` with a write-to-temp-then-rename."""
        text = yaml.safe_dump(config.to_dict(), sort_keys=False, default_flow_style=False)
        atomic_write_text(self.path, text)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> VaultConfig:
        version = data.get("version")
        if version != SUPPORTED_CONFIG_VERSION:
            raise ConfigError(f"Unsupported vault config version: {version}")

        storage_mode = data.get("storage_mode", STORAGE_FILE)
        if storage_mode not in STORAGE_MODES:
            raise ConfigError(f"Unknown storage mode: {storage_mode}")

        cipher = data.get("cipher", DEFAULT_CIPHER)
        if cipher not in (CIPHER_AES_GCM, CIPHER_GPG):
            raise ConfigError(f"Unknown cipher: {cipher}")

        try:
            threshold = int(data.get("lfs_threshold_bytes", DEFAULT_LFS_THRESHOLD_BYTES))
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid lfs_threshold_bytes: {data.get('lfs_threshold_bytes')!r}")

        return VaultConfig(
            version=version,
            storage_mode=storage_mode,
            external_namespace=data.get("external_namespace"),
            lfs_threshold_bytes=threshold,
            cipher=cipher,
            managed_paths=[cls._parse_entry(e) for e in data.get("managed_paths") or []],
        )

    @staticmethod
    def _parse_entry(data: Dict[str, Any]) -> ManagedPathEntry:
        if not isinstance(data, dict) or "hash" not in data or "path" not in data:
            raise ConfigError(f"Managed path entry missing 'hash' or 'path': {data!r}")

        status = data.get("status", STATUS_ACTIVE)
        if status not in (STATUS_ACTIVE, STATUS_REMOVED):
            raise ConfigError(f"Invalid status '{status}' for '{data['path']}'")

        backend = data.get("backend", STORAGE_FILE)
        if backend not in STORAGE_MODES:
            raise ConfigError(f"Invalid backend '{backend}' for '{data['path']}'")

        return ManagedPathEntry(
            hash=str(data["hash"]),
            path=str(data["path"]),
            backend=backend,
            status=status,
            secret_ref=SecretRef.from_dict(data.get("secret_ref")),
            created_at=data.get("created_at"),
            removed_at=data.get("removed_at"),
        )
