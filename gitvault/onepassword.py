"""
1Password CLI client.

The external secret manager is driven through the ``op`` command line.
Every call is bounded by a timeout and either returns a value or raises;
there are no retries.
"""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Dict, List, Optional, Sequence

from .config import get_external_call_timeout
from .errors import DependencyUnavailable, NotFound, SecretBackendError

logger = logging.getLogger(__name__)

SECRET_FIELD = "password"
ITEM_CATEGORY = "Secure Note"


class OnePasswordCLI:
    def __init__(self, binary: str = "op", timeout: Optional[float] = None):
        self.binary = binary
        self.timeout = timeout if timeout is not None else get_external_call_timeout()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(self, args: Sequence[str], check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError:
            raise DependencyUnavailable(f"{self.binary} command not found")
        except subprocess.TimeoutExpired:
            raise SecretBackendError(f"'{self.binary} {args[0]}' timed out after {self.timeout:g}s")

        if check and result.returncode != 0:
            stderr = result.stderr.strip()
            if "isn't an item" in stderr or "not found" in stderr.lower():
                raise NotFound(f"1Password: {stderr}")
            raise SecretBackendError(f"'{self.binary} {' '.join(args[:2])}' failed: {stderr}")
        return result

    def _json(self, args: Sequence[str]):
        result = self._run([*args, "--format=json"])
        try:
            return json.loads(result.stdout or "null")
        except json.JSONDecodeError as e:
            raise SecretBackendError(f"Unexpected output from {self.binary}: {e}")

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        try:
            return self._run(["--version"], check=False).returncode == 0
        except (DependencyUnavailable, SecretBackendError):
            return False

    def is_signed_in(self) -> bool:
        try:
            return self._run(["whoami"], check=False).returncode == 0
        except (DependencyUnavailable, SecretBackendError):
            return False

    # ------------------------------------------------------------------
    # Vaults and items
    # ------------------------------------------------------------------

    def list_vaults(self) -> List[str]:
        return [v["name"] for v in self._json(["vault", "list"]) or []]

    def list_items(self, vault: str) -> List[Dict[str, str]]:
        items = self._json(["item", "list", "--vault", vault]) or []
        return [{"id": i["id"], "title": i.get("title", "")} for i in items]

    def create_item(self, title: str, vault: str, secret: str, fields: Dict[str, str]) -> str:
        """Create a secure note holding ``secret``; returns the new item id."""
        assignments = [f"{SECRET_FIELD}[password]={secret}"]
        assignments += [f"{key}[text]={value}" for key, value in fields.items()]
        created = self._json(
            ["item", "create", "--category", ITEM_CATEGORY, "--title", title, "--vault", vault, *assignments]
        )
        logger.debug("Created 1Password item %s in %s", title, vault)
        return created["id"]

    def edit_item(self, item_id: str, vault: str, fields: Dict[str, str]) -> None:
        assignments = [f"{key}={value}" for key, value in fields.items()]
        self._run(["item", "edit", item_id, "--vault", vault, *assignments])

    def delete_item(self, item_id: str, vault: str) -> None:
        self._run(["item", "delete", item_id, "--vault", vault])

    def get_secret(self, item_id: str, vault: str) -> str:
        result = self._run(["item", "get", item_id, "--vault", vault, "--fields", SECRET_FIELD, "--reveal"])
        secret = result.stdout.rstrip("\n")
        if not secret:
            raise NotFound(f"1Password item {item_id} has no {SECRET_FIELD} field")
        return secret

    def get_fields(self, item_id: str, vault: str) -> Dict[str, str]:
        item = self._json(["item", "get", item_id, "--vault", vault])
        return {
            f.get("label", ""): f.get("value", "")
            for f in item.get("fields", [])
            if f.get("label") and f.get("label") != SECRET_FIELD
        }
