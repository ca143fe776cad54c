"""
Vault operations.

The transactional workflows built on top of the manifest, the secret
backends, the sealer and the LFS router:

- initialize    create (or reconfigure) the vault of a repository
- add           start managing a path
- remove        stop managing a path, tombstoning its secret
- encrypt_all   re-seal managed paths (pre-commit hook)
- decrypt_all   restore managed paths (post-checkout / post-merge hooks)
- list_entries  report every entry and its health

Single-path operations roll back completely on failure. Batch operations
isolate failures per entry and report them in a ``BatchResult``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from . import git
from .backends import ExternalManagerBackend, FileBackend, SecretBackend
from .cipher import PassphraseCipher, cipher_for
from .config import (
    BASE_NAME,
    DEFAULT_CIPHER,
    DEFAULT_EXTERNAL_NAMESPACE,
    DEFAULT_LFS_THRESHOLD_BYTES,
    REMOVED_SUFFIX,
    SECRET_SUFFIX,
    STORAGE_EXTERNAL,
    STORAGE_FILE,
    STORAGE_MODES,
    VAULT_DIR_NAME,
)
from .context import RepoContext
from .errors import (
    AlreadyExists,
    AlreadyManaged,
    ConfigError,
    DuplicateIdentity,
    InvalidPath,
    NotFound,
    ValidationFailed,
    VaultError,
)
from .hooks import HookInstaller, HookResult, default_hooks
from .lfs import LfsDecision, LfsRouter
from .manifest import ManagedPathEntry, ManifestStore, SecretRef, VaultConfig
from .onepassword import OnePasswordCLI
from .sealer import Sealer
from .utils import archive_file_name, generate_passphrase, normalize_managed_path, path_hash

logger = logging.getLogger(__name__)

Confirm = Callable[[str], bool]

# Batch outcome statuses
ENCRYPTED = "encrypted"
DECRYPTED = "decrypted"
UNCHANGED = "unchanged"
SKIPPED = "skipped"
FAILED = "failed"

# Health statuses reported by list_entries
HEALTH_OK = "OK"
HEALTH_REMOVED = "Removed"
HEALTH_MISSING_ARCHIVE = "Missing archive"
HEALTH_MISSING_FILE = "Missing file"
HEALTH_MISSING_SECRET = "Missing secret"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class AddResult:
    entry: ManagedPathEntry
    archive_path: Path
    lfs: LfsDecision
    generated_passphrase: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass
class RemoveResult:
    entry: ManagedPathEntry
    archive_path: Path
    ignore_pruned: bool = False
    warnings: List[str] = field(default_factory=list)


@dataclass
class EntryOutcome:
    entry: ManagedPathEntry
    status: str
    message: str = ""


@dataclass
class BatchResult:
    action: str
    outcomes: List[EntryOutcome] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def skipped(self) -> List[EntryOutcome]:
        return [o for o in self.outcomes if o.status == SKIPPED]

    @property
    def failed(self) -> List[EntryOutcome]:
        return [o for o in self.outcomes if o.status == FAILED]


@dataclass
class ListRow:
    entry: ManagedPathEntry
    archive_size: Optional[int]
    health: str


@dataclass
class InitResult:
    config: VaultConfig
    hooks: List[HookResult] = field(default_factory=list)
    reconfigured: bool = False


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


class Vault:
    def __init__(
        self,
        ctx: RepoContext,
        config: VaultConfig,
        store: Optional[ManifestStore] = None,
        cipher: Optional[PassphraseCipher] = None,
        backends: Optional[Dict[str, SecretBackend]] = None,
        op_client: Optional[OnePasswordCLI] = None,
        lfs_router: Optional[LfsRouter] = None,
    ):
        self.ctx = ctx
        self.config = config
        self.store = store or ManifestStore(ctx.config_path)
        self.sealer = Sealer(cipher or cipher_for(config.cipher))
        self.lfs_router = lfs_router or LfsRouter(ctx.root)
        self._backends: Dict[str, SecretBackend] = dict(backends or {})
        self._op_client = op_client

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def open(cls, ctx: RepoContext, **kwargs) -> "Vault":
        """
        Load the vault of ``ctx``.

        Raises:
            NotFound: if the repository has no vault
            ConfigError: if its config is invalid
        """

        store = ManifestStore(ctx.config_path)
        return cls(ctx, store.load(), store=store, **kwargs)

    @classmethod
    def is_initialized(cls, ctx: RepoContext) -> bool:
        return ManifestStore(ctx.config_path).exists()

    @classmethod
    def initialize(
        cls,
        ctx: RepoContext,
        storage_mode: str = STORAGE_FILE,
        namespace: Optional[str] = None,
        cipher_name: Optional[str] = None,
        lfs_threshold_bytes: int = DEFAULT_LFS_THRESHOLD_BYTES,
        install_hooks: bool = True,
        reconfigure: bool = False,
        **kwargs,
    ) -> Tuple["Vault", InitResult]:
        """
        Create the vault directory, config, ignore patterns and hooks.

        With ``reconfigure`` an existing vault keeps its managed paths and
        only has its settings replaced. ``cipher_name`` defaults to the
        existing vault's cipher, or to the default cipher for a new vault.
        The cipher cannot change while paths are active, since their
        archive names follow it.

        Raises:
            AlreadyExists: if a vault exists and ``reconfigure`` is False
            ConfigError: on a cipher change with active paths
            DependencyUnavailable / AuthRequired: if the chosen cipher or
                external manager cannot be used
        """

        if storage_mode not in STORAGE_MODES:
            raise ConfigError(f"Unknown storage mode: {storage_mode}")

        store = ManifestStore(ctx.config_path)
        existing: Optional[VaultConfig] = None
        if store.exists():
            if not reconfigure:
                raise AlreadyExists(f"A vault is already initialized in {ctx.root}")
            existing = store.load()

        if cipher_name is None:
            cipher_name = existing.cipher if existing else DEFAULT_CIPHER
        if existing and cipher_name != existing.cipher and existing.active_entries():
            raise ConfigError(
                f"Cannot switch the cipher from {existing.cipher} to {cipher_name} "
                f"while {len(existing.active_entries())} path(s) are managed; remove them first"
            )

        cipher = kwargs.pop("cipher", None) or cipher_for(cipher_name)
        cipher.check_available()

        config = VaultConfig(
            storage_mode=storage_mode,
            lfs_threshold_bytes=lfs_threshold_bytes,
            cipher=cipher_name,
            managed_paths=existing.managed_paths if existing else [],
        )
        vault = cls(ctx, config, store=store, cipher=cipher, **kwargs)

        if storage_mode == STORAGE_EXTERNAL:
            config.external_namespace = vault._select_namespace(namespace)

        ctx.storage_dir.mkdir(parents=True, exist_ok=True)
        store.save(config)

        result = InitResult(config=config, reconfigured=existing is not None)
        git.update_ignore(ctx.root, vault.secret_ignore_patterns())
        if install_hooks:
            result.hooks = vault.install_hooks()
        git.stage(ctx.root, [vault._rel(ctx.config_path), git.GITIGNORE])
        logger.info("Initialized vault in %s (storage: %s)", ctx.vault_dir, storage_mode)
        return vault, result

    def _select_namespace(self, namespace: Optional[str]) -> str:
        backend = self.backend_for(STORAGE_EXTERNAL)
        backend.ensure_ready()
        available = backend.client.list_vaults()
        if namespace:
            if namespace not in available:
                raise NotFound(f"1Password vault '{namespace}' not found (available: {', '.join(available)})")
        elif not available:
            raise NotFound("No 1Password vaults found; create one and retry")
        else:
            namespace = DEFAULT_EXTERNAL_NAMESPACE if DEFAULT_EXTERNAL_NAMESPACE in available else available[0]
        backend.namespace = namespace
        return namespace

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def backend_for(self, kind: str) -> SecretBackend:
        """Return the backend for ``kind``, building it on first use."""
        if kind not in self._backends:
            if kind == STORAGE_FILE:
                self._backends[kind] = FileBackend(self.ctx.vault_dir)
            elif kind == STORAGE_EXTERNAL:
                self._backends[kind] = ExternalManagerBackend(
                    self._op_client or OnePasswordCLI(),
                    namespace=self.config.external_namespace or DEFAULT_EXTERNAL_NAMESPACE,
                    project=git.project_name(self.ctx.root),
                )
            else:
                raise ConfigError(f"Unknown backend: {kind}")
        return self._backends[kind]

    def archive_path(self, managed_path: str) -> Path:
        return self.ctx.storage_dir / archive_file_name(managed_path, self.sealer.suffix)

    def plaintext_path(self, entry: ManagedPathEntry) -> Path:
        return self.ctx.root / entry.path.rstrip("/")

    def secret_ignore_patterns(self) -> List[str]:
        return [
            f"{VAULT_DIR_NAME}/{BASE_NAME}-*{SECRET_SUFFIX}",
            f"{VAULT_DIR_NAME}/{BASE_NAME}-*{REMOVED_SUFFIX}",
        ]

    def install_hooks(self) -> List[HookResult]:
        return HookInstaller(self.ctx.hooks_dir).install_all(default_hooks())

    def uninstall_hooks(self) -> List[HookResult]:
        installer = HookInstaller(self.ctx.hooks_dir)
        return [installer.uninstall(hook) for hook in default_hooks()]

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.ctx.root).as_posix()

    def _resolve(self, path: str | Path) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.ctx.root / path

    def _managed_form(self, path: str | Path) -> str:
        """Normalize ``path`` to manifest form, raising InvalidPath if it cannot be managed."""
        resolved = self._resolve(path)
        try:
            rel = self.ctx.relative(resolved)
        except ValueError:
            raise InvalidPath(f"'{path}' is outside the repository {self.ctx.root}")

        if rel in ("", "."):
            raise InvalidPath("The repository root itself cannot be managed")
        top = rel.split("/")[0]
        if top in (VAULT_DIR_NAME, ".git"):
            raise InvalidPath(f"'{rel}' is inside {top}/ and cannot be managed")
        return normalize_managed_path(rel, resolved.is_dir())

    def lookup(self, path: str | Path) -> ManagedPathEntry:
        """
        Find the active entry for ``path``, which need not exist on disk.

        Both the file and the directory form of the path are tried.

        Raises:
            NotFound: if no active entry matches
        """

        try:
            rel = self.ctx.relative(self._resolve(path))
        except ValueError:
            raise InvalidPath(f"'{path}' is outside the repository {self.ctx.root}")

        base = normalize_managed_path(rel, is_dir=False)
        for candidate in (base, base + "/"):
            entry = self.config.find(candidate)
            if entry is not None:
                return entry
        raise NotFound(f"Path not managed by the vault: {path}")

    # ------------------------------------------------------------------
    # Add
    # ------------------------------------------------------------------

    def add(self, path: str | Path, passphrase: Optional[str] = None) -> AddResult:
        """
        Start managing ``path``.

        Order: store secret -> seal -> validate -> LFS routing -> manifest.
        The manifest write is the commit point; any failure before it
        deletes the archive and the new secret again.

        Raises:
            NotFound, InvalidPath, AlreadyManaged, DuplicateIdentity,
            AlreadyExists, ValidationFailed, AuthRequired, ...
        """

        source = self._resolve(path)
        if not source.exists():
            raise NotFound(f"'{path}' does not exist")
        if not (source.is_file() or source.is_dir()):
            raise InvalidPath(f"'{path}' is not a file or directory")

        managed = self._managed_form(source)
        hash_ = path_hash(managed)

        existing = self.config.find(hash_)
        if existing is not None:
            if existing.path == managed:
                raise AlreadyManaged(f"Path already managed: '{managed}' (hash: {hash_})")
            raise DuplicateIdentity(
                f"'{managed}' has the same identity ({hash_}) as managed path '{existing.path}'. "
                "Rename the path to break the collision."
            )

        self.sealer.check_available()
        generated = None
        if passphrase is None:
            generated = passphrase = generate_passphrase()

        backend = self.backend_for(self.config.storage_mode)
        archive = self.archive_path(managed)
        ref = backend.store(hash_, managed, passphrase)

        entry: Optional[ManagedPathEntry] = None
        try:
            self.sealer.seal(source, passphrase, archive)
            self.sealer.validate(archive, passphrase, source)
            decision = self.lfs_router.route(archive, self.config.lfs_threshold_bytes, self.sealer.suffix)
            entry = ManagedPathEntry(hash=hash_, path=managed, backend=backend.kind, secret_ref=ref)
            self.config.add_entry(entry)
            self.store.save(self.config)
        except BaseException as e:
            rolled_back = self._rollback_add(entry, archive, backend, ref)
            if isinstance(e, VaultError):
                e.rolled_back.extend(rolled_back)
                raise
            if isinstance(e, Exception):
                raise VaultError(f"Failed to add '{managed}': {e}", rolled_back) from e
            raise

        result = AddResult(entry=entry, archive_path=archive, lfs=decision, generated_passphrase=generated)
        self._after_add(result)
        logger.info("Added %s (hash %s)", managed, hash_)
        return result

    def _rollback_add(
        self,
        entry: Optional[ManagedPathEntry],
        archive: Path,
        backend: SecretBackend,
        ref: SecretRef,
    ) -> List[str]:
        rolled_back: List[str] = []
        if entry is not None and entry in self.config.managed_paths:
            self.config.managed_paths.remove(entry)
            rolled_back.append("manifest entry")
        if archive.exists():
            archive.unlink()
            rolled_back.append(f"archive {archive.name}")
        try:
            backend.discard(ref)
            rolled_back.append("stored secret")
        except VaultError as e:
            logger.error("Could not discard secret during rollback: %s", e)
        return rolled_back

    def _after_add(self, result: AddResult) -> None:
        """Ignore-list and staging; failures are reported, not rolled back."""
        root = self.ctx.root
        try:
            git.update_ignore(root, [f"/{result.entry.path}", *self.secret_ignore_patterns()])
        except OSError as e:
            result.warnings.append(f"Could not update {git.GITIGNORE}: {e}")

        to_stage = [self._rel(result.archive_path), self._rel(self.ctx.config_path), git.GITIGNORE]
        if result.lfs.tracked:
            to_stage.insert(0, git.GITATTRIBUTES)
        if not git.stage(root, to_stage):
            result.warnings.append("Could not stage vault files; stage them manually before committing")

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    def remove(self, path: str | Path, prune_ignore: bool = False) -> RemoveResult:
        """
        Stop managing ``path``.

        The stored passphrase must open the current archive, otherwise
        nothing is changed. The archive is deleted, the secret is
        tombstoned and the entry is marked removed; the plaintext in the
        working tree is left alone.

        Raises:
            NotFound: if the path, its secret or its archive is missing
            ValidationFailed: if the stored passphrase does not open the archive
        """

        entry = self.lookup(path)
        backend = self.backend_for(entry.backend)
        passphrase = backend.retrieve(entry.secret_ref)

        archive = self.archive_path(entry.path)
        if not archive.exists():
            raise NotFound(f"Archive not found: {archive}. Aborting removal.")
        if not self.sealer.verify(archive, passphrase):
            raise ValidationFailed(
                f"Stored passphrase for '{entry.path}' does not open {archive.name}. "
                "The secret may be wrong or the archive corrupted. Aborting removal."
            )

        aside = archive.with_name(archive.name + ".removing")
        os.replace(archive, aside)
        original = (entry.status, entry.removed_at, entry.secret_ref)
        tombstone: Optional[SecretRef] = None
        try:
            tombstone = backend.mark_removed(entry.secret_ref)
            self.config.mark_removed(entry.hash, tombstone)
            self.store.save(self.config)
        except BaseException as e:
            rolled_back = []
            entry.status, entry.removed_at, entry.secret_ref = original
            if tombstone is not None:
                backend.restore(entry.hash, tombstone)
                rolled_back.append("secret tombstone")
            os.replace(aside, archive)
            rolled_back.append(f"archive {archive.name}")
            if isinstance(e, VaultError):
                e.rolled_back.extend(rolled_back)
                raise
            if isinstance(e, Exception):
                raise VaultError(f"Failed to remove '{entry.path}': {e}", rolled_back) from e
            raise

        aside.unlink()
        result = RemoveResult(entry=entry, archive_path=archive)
        root = self.ctx.root
        if not git.unstage_remove(root, self._rel(archive)):
            result.warnings.append(f"Could not remove {archive.name} from the index")

        to_stage = [self._rel(self.ctx.config_path)]
        if prune_ignore and git.prune_ignore(root, [f"/{entry.path}"]):
            result.ignore_pruned = True
            to_stage.append(git.GITIGNORE)
        if not git.stage(root, to_stage):
            result.warnings.append("Could not stage the vault config; stage it manually")

        logger.info("Removed %s (hash %s)", entry.path, entry.hash)
        return result

    # ------------------------------------------------------------------
    # Batch encrypt / decrypt
    # ------------------------------------------------------------------

    def _select(self, path: Optional[str | Path]) -> List[ManagedPathEntry]:
        if path is None:
            return self.config.active_entries()
        return [self.lookup(path)]

    def encrypt_all(
        self,
        path: Optional[str | Path] = None,
        password: Optional[str] = None,
        write: bool = False,
        confirm: Optional[Confirm] = None,
    ) -> BatchResult:
        """
        Re-seal every active entry (or just ``path``).

        Entries whose archive already matches the working tree are left
        untouched unless ``password`` asks for re-encryption. With
        ``write`` that password is saved to the entry's backend once the
        entry is sealed, so later runs keep using it. Without ``write``
        the stored secret no longer opens the archive, and later runs
        skip the entry rather than silently re-sealing it. Missing
        plaintext or secrets skip the entry; the batch never aborts
        because of one entry.
        """

        self.sealer.check_available()
        if write and password is None:
            logger.warning("--write has no effect without an explicit password")
            write = False

        result = BatchResult("encrypt")
        refs_changed = False
        for entry in self._select(path):
            try:
                outcome = self._encrypt_one(entry, password)
            except NotFound as e:
                outcome = EntryOutcome(entry, SKIPPED, str(e))
            except (VaultError, OSError) as e:
                outcome = EntryOutcome(entry, FAILED, str(e))

            if outcome.status == ENCRYPTED and write:
                try:
                    changed, note = self._persist_password(entry, password, confirm)
                except VaultError as e:
                    changed, note = False, f"password not saved: {e}"
                refs_changed = refs_changed or changed
                outcome.message = note
            result.outcomes.append(outcome)

        if refs_changed:
            self.store.save(self.config)

        for outcome in result.outcomes:
            if outcome.status in (SKIPPED, FAILED):
                logger.warning("%s %s: %s", outcome.status.capitalize(), outcome.entry.path, outcome.message)
        return result

    def _encrypt_one(self, entry: ManagedPathEntry, password: Optional[str]) -> EntryOutcome:
        source = self.plaintext_path(entry)
        if not source.exists():
            return EntryOutcome(entry, SKIPPED, "plaintext not found in working tree")

        if password is not None:
            passphrase = password
        else:
            passphrase = self.backend_for(entry.backend).retrieve(entry.secret_ref)
        archive = self.archive_path(entry.path)

        if password is None and archive.exists():
            if self.sealer.matches(archive, passphrase, source):
                return EntryOutcome(entry, UNCHANGED)
            if not self.sealer.verify(archive, passphrase):
                return EntryOutcome(
                    entry,
                    SKIPPED,
                    "the stored secret does not open the archive; "
                    "run encrypt with --password and --write to keep the new password",
                )

        self.sealer.seal(source, passphrase, archive)
        git.stage(self.ctx.root, [self._rel(archive)])
        message = ""
        if password is not None:
            message = "sealed with the given password; the stored secret was not changed"
        logger.info("Encrypted %s", entry.path)
        return EntryOutcome(entry, ENCRYPTED, message)

    def decrypt_all(
        self,
        path: Optional[str | Path] = None,
        password: Optional[str] = None,
        write: bool = False,
        confirm: Optional[Confirm] = None,
    ) -> BatchResult:
        """
        Restore every active entry (or just ``path``) from its archive.

        ``password`` overrides the stored secret. With ``write`` the
        password is saved to the entry's backend, but only after that
        entry decrypted successfully, and only after ``confirm`` agrees
        when a different secret is already stored.
        """

        self.sealer.check_available()
        if write and password is None:
            logger.warning("--write has no effect without an explicit password")
            write = False

        result = BatchResult("decrypt")
        refs_changed = False
        for entry in self._select(path):
            try:
                outcome = self._decrypt_one(entry, password)
            except NotFound as e:
                outcome = EntryOutcome(entry, SKIPPED, str(e))
            except (VaultError, OSError) as e:
                outcome = EntryOutcome(entry, FAILED, str(e))

            if outcome.status == DECRYPTED and write:
                try:
                    changed, note = self._persist_password(entry, password, confirm)
                except VaultError as e:
                    changed, note = False, f"password not saved: {e}"
                refs_changed = refs_changed or changed
                outcome.message = note
            result.outcomes.append(outcome)

        if refs_changed:
            self.store.save(self.config)

        for outcome in result.outcomes:
            if outcome.status in (SKIPPED, FAILED):
                logger.warning("%s %s: %s", outcome.status.capitalize(), outcome.entry.path, outcome.message)
        return result

    def _decrypt_one(self, entry: ManagedPathEntry, password: Optional[str]) -> EntryOutcome:
        archive = self.archive_path(entry.path)
        if not archive.exists():
            return EntryOutcome(entry, SKIPPED, f"archive {archive.name} not found")

        if password is not None:
            passphrase = password
        else:
            passphrase = self.backend_for(entry.backend).retrieve(entry.secret_ref)
        self.sealer.restore(archive, passphrase, self.plaintext_path(entry))
        logger.info("Decrypted %s", entry.path)
        return EntryOutcome(entry, DECRYPTED)

    def _persist_password(
        self,
        entry: ManagedPathEntry,
        password: str,
        confirm: Optional[Confirm],
    ) -> Tuple[bool, str]:
        backend = self.backend_for(entry.backend)
        try:
            current = backend.retrieve(entry.secret_ref)
        except NotFound:
            current = None

        if current == password:
            return False, "stored secret already matches"
        if current is not None:
            question = f"A secret is already stored for '{entry.path}'. Overwrite it?"
            if confirm is None or not confirm(question):
                return False, "existing secret kept"

        entry.secret_ref = backend.store(entry.hash, entry.path, password, overwrite=True)
        return True, "password saved"

    # ------------------------------------------------------------------
    # List
    # ------------------------------------------------------------------

    def list_entries(self, include_removed: bool = True) -> List[ListRow]:
        rows: List[ListRow] = []
        for entry in self.config.managed_paths:
            if not entry.is_active:
                if include_removed:
                    rows.append(ListRow(entry, None, HEALTH_REMOVED))
                continue

            archive = self.archive_path(entry.path)
            size = archive.stat().st_size if archive.exists() else None
            if size is None:
                health = HEALTH_MISSING_ARCHIVE
            elif self.backend_for(entry.backend).has(entry.secret_ref) is False:
                health = HEALTH_MISSING_SECRET
            elif not self.plaintext_path(entry).exists():
                health = HEALTH_MISSING_FILE
            else:
                health = HEALTH_OK
            rows.append(ListRow(entry, size, health))
        return rows
