"""
gitvault

Keeps sensitive files and directories inside a Git repository as
encrypted archives. Paths are sealed before each commit and restored
after checkout and merge; every path has its own password, kept in a
local file or in an external secret manager.
"""

__version__ = "0.1.0"

from .backends import ExternalManagerBackend, FileBackend, SecretBackend
from .context import RepoContext
from .errors import VaultError
from .manifest import ManagedPathEntry, ManifestStore, VaultConfig
from .operations import Vault
from .sealer import Sealer

__all__ = [
    "ExternalManagerBackend",
    "FileBackend",
    "SecretBackend",
    "RepoContext",
    "VaultError",
    "ManagedPathEntry",
    "ManifestStore",
    "VaultConfig",
    "Vault",
    "Sealer",
]
