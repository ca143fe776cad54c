"""
Global configuration and environment handling.

This module is responsible for:
- Defining the on-disk layout of a vault
- Defining global constants and defaults
- Loading the few values that may come from the environment

Nothing in this file should depend on:
- the filesystem
- the manifest structure
- git or any other external tool
- CLI arguments
"""

from __future__ import annotations

import os
from typing import Final, Optional

# ---------------------------------------------------------------------------
# Tool / format versioning
# ---------------------------------------------------------------------------

SUPPORTED_CONFIG_VERSION: Final[int] = 1
TOOL_VERSION: Final[str] = "0.1.0"

# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------

BASE_NAME: Final[str] = "gv"
VAULT_DIR_NAME: Final[str] = ".vault"
STORAGE_DIR_NAME: Final[str] = "storage"
CONFIG_FILE_NAME: Final[str] = "config.yaml"

SECRET_SUFFIX: Final[str] = ".pw"
REMOVED_SUFFIX: Final[str] = ".removed"
ARCHIVE_BASE_SUFFIX: Final[str] = ".tar.gz"

# Separator substitute used when flattening a managed path into a file name
ARCHIVE_PATH_DELIMITER: Final[str] = "-"

# ---------------------------------------------------------------------------
# Default behavior
# ---------------------------------------------------------------------------

STORAGE_FILE: Final[str] = "file"
STORAGE_EXTERNAL: Final[str] = "externalManager"
STORAGE_MODES: Final[tuple] = (STORAGE_FILE, STORAGE_EXTERNAL)

CIPHER_AES_GCM: Final[str] = "aes-gcm"
CIPHER_GPG: Final[str] = "gpg"
DEFAULT_CIPHER: Final[str] = CIPHER_AES_GCM

DEFAULT_LFS_THRESHOLD_BYTES: Final[int] = 5 * 1024 * 1024
DEFAULT_EXTERNAL_NAMESPACE: Final[str] = "Personal"

# scrypt / AES-GCM parameters for the built-in cipher
SCRYPT_N: Final[int] = 2 ** 15
SCRYPT_R: Final[int] = 8
SCRYPT_P: Final[int] = 1
SALT_SIZE: Final[int] = 16
AES_NONCE_SIZE: Final[int] = 12
AES_TAG_SIZE: Final[int] = 16

GENERATED_PASSPHRASE_BYTES: Final[int] = 32

# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------

HOOK_MARKER: Final[str] = "# gitvault hook marker"
HOOK_SHEBANG: Final[str] = "#!/usr/bin/env sh"

# hook name -> gv subcommand
HOOK_COMMANDS: Final[dict] = {
    "pre-commit": "encrypt",
    "post-checkout": "decrypt",
    "post-merge": "decrypt",
}

# ---------------------------------------------------------------------------
# Environment variable names
# ---------------------------------------------------------------------------

ENV_PASSWORD: Final[str] = "GV_PASSWORD"
ENV_OP_TIMEOUT: Final[str] = "GV_OP_TIMEOUT"
ENV_MODE: Final[str] = "GV_MODE"  # e.g. dev / prod

DEFAULT_EXTERNAL_CALL_TIMEOUT: Final[float] = 30.0

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_password_from_env() -> Optional[str]:
    """
    Return the passphrase supplied through the environment, if any.

    An empty value is treated as absent so that an exported-but-blank
    variable never becomes a real passphrase.
    """

    raw = os.getenv(ENV_PASSWORD)
    return raw or None


def get_external_call_timeout() -> float:
    """
    Return the timeout, in seconds, for a single secret-manager CLI call.

    Raises:
        RuntimeError: if the variable is set but not a positive number
    """

    raw = os.getenv(ENV_OP_TIMEOUT)
    if not raw:
        return DEFAULT_EXTERNAL_CALL_TIMEOUT

    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"Invalid {ENV_OP_TIMEOUT}: {raw!r}")

    if value <= 0:
        raise RuntimeError(f"{ENV_OP_TIMEOUT} must be positive, got {raw!r}")
    return value


def get_execution_mode() -> str:
    """
    Return the current execution mode.

    This can be used to slightly alter behavior between environments
    (e.g. dev vs CI), but should never bypass security controls silently.
    """

    return os.getenv(ENV_MODE, "prod")
