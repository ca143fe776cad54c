"""
Error taxonomy.

Every failure the vault reports to a user is one of these. Single-path
operations raise them after rolling back; batch operations catch them
per entry and report instead of aborting.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class VaultError(RuntimeError):
    """Base class for all vault failures."""

    def __init__(self, message: str, rolled_back: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.rolled_back: List[str] = list(rolled_back or [])


class NotFound(VaultError):
    """A path, entry, secret or archive does not exist."""


class AlreadyManaged(VaultError):
    """The path is already an active managed entry."""


class DuplicateIdentity(AlreadyManaged):
    """A different path already owns the same 8-hex identity."""


class AlreadyExists(VaultError):
    """A live secret already exists for this identity."""


class ValidationFailed(VaultError):
    """A sealed archive did not reproduce its source."""


class DecryptionFailed(VaultError):
    """The cipher rejected the passphrase or the archive is corrupt."""


class AuthRequired(VaultError):
    """The external secret manager is not signed in."""


class DependencyUnavailable(VaultError):
    """A required external tool is missing."""


class PermissionDenied(VaultError):
    """The filesystem refused an operation."""


class InvalidPath(VaultError):
    """The path cannot be managed (outside the repository, inside the vault...)."""


class SecretBackendError(VaultError):
    """The secret backend failed for a reason other than a missing record."""


class ConfigError(VaultError):
    """The vault configuration is missing or malformed."""
