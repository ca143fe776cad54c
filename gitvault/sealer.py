"""
Seal / unseal orchestration.

Combines the archive and cipher capabilities into the three operations
the vault needs, and owns the validation and replace-on-restore rules:

- ``seal``    archive + encrypt a path into an archive file
- ``unseal``  decrypt + extract an archive into a directory
- ``verify``  check that a passphrase opens an archive

Nothing here knows where passphrases come from.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from .archive import create_archive, extract_archive
from .cipher import PassphraseCipher
from .errors import DecryptionFailed, NotFound, ValidationFailed
from .utils import atomic_write_bytes, remove_path, tree_digest

logger = logging.getLogger(__name__)


class Sealer:
    def __init__(self, cipher: PassphraseCipher):
        self.cipher = cipher

    @property
    def suffix(self) -> str:
        return self.cipher.suffix

    def check_available(self) -> None:
        """Fail fast when the cipher cannot run; archiving is always available."""
        self.cipher.check_available()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def seal(self, source: Path, passphrase: str, archive_path: Path) -> Path:
        """Encrypt ``source`` into ``archive_path`` (written atomically)."""
        payload = self.cipher.encrypt(create_archive(source), passphrase)
        atomic_write_bytes(archive_path, payload)
        logger.debug("Sealed %s -> %s (%d bytes)", source, archive_path, len(payload))
        return archive_path

    def unseal(self, archive_path: Path, passphrase: str, dest_dir: Path) -> Path:
        """
        Extract ``archive_path`` into ``dest_dir``.

        Returns the single top-level path the archive produced.

        Raises:
            NotFound: if the archive is missing
            DecryptionFailed: on a wrong passphrase
            ValidationFailed: if the archive does not hold exactly one top-level entry
        """

        try:
            data = archive_path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"Archive not found: {archive_path}")

        extracted = extract_archive(self.cipher.decrypt(data, passphrase), dest_dir)
        if len(extracted) != 1:
            raise ValidationFailed(
                f"Archive {archive_path.name} holds {len(extracted)} top-level entries, expected 1"
            )
        return extracted[0]

    def verify(self, archive_path: Path, passphrase: str) -> bool:
        """Return True if ``passphrase`` opens ``archive_path`` into a readable archive."""
        with tempfile.TemporaryDirectory(prefix="gv-verify-") as tmp:
            try:
                self.unseal(archive_path, passphrase, Path(tmp))
            except (DecryptionFailed, ValidationFailed):
                return False
        return True

    def matches(self, archive_path: Path, passphrase: str, source: Path) -> bool:
        """
        Return True if the archive reproduces ``source``.

        Compares relative paths, sizes and content digests. Any failure
        to open the archive counts as a mismatch.
        """

        with tempfile.TemporaryDirectory(prefix="gv-check-") as tmp:
            try:
                restored = self.unseal(archive_path, passphrase, Path(tmp))
            except (NotFound, DecryptionFailed, ValidationFailed):
                return False
            if restored.name != source.name:
                return False
            return tree_digest(restored) == tree_digest(source)

    def validate(self, archive_path: Path, passphrase: str, source: Path) -> None:
        """
        Round-trip check run right after sealing a new path.

        Raises:
            ValidationFailed: if the archive does not reproduce ``source``
        """

        if not self.matches(archive_path, passphrase, source):
            raise ValidationFailed(f"Round-trip validation failed for {source}")

    def restore(self, archive_path: Path, passphrase: str, target: Path) -> Path:
        """
        Replace ``target`` with the content of ``archive_path``.

        The archive is extracted into a scratch directory beside the
        target first. Any stale plaintext at ``target`` is removed only
        once extraction succeeded, then the fresh copy is moved in, so
        old and new content never merge and a file can become a
        directory (or the reverse).
        """

        target.parent.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix=".gv-unseal-", dir=str(target.parent)))
        try:
            extracted = self.unseal(archive_path, passphrase, scratch)
            if extracted.name != target.name:
                raise ValidationFailed(
                    f"Archive {archive_path.name} holds '{extracted.name}', expected '{target.name}'"
                )
            if target.exists() or target.is_symlink():
                logger.info("Removing existing %s before restore", target)
                remove_path(target)
            os.replace(extracted, target)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)
        return target
