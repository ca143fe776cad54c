"""Tests for the transactional vault operations."""

from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from conftest import FakeOnePassword, write_tree
from gitvault.context import RepoContext
from gitvault.errors import (
    AlreadyExists,
    AlreadyManaged,
    AuthRequired,
    ConfigError,
    DuplicateIdentity,
    InvalidPath,
    NotFound,
    ValidationFailed,
    VaultError,
)
from gitvault.manifest import STATUS_ACTIVE, STATUS_REMOVED, ManifestStore
from gitvault.operations import (
    DECRYPTED,
    ENCRYPTED,
    FAILED,
    HEALTH_MISSING_ARCHIVE,
    HEALTH_MISSING_FILE,
    HEALTH_MISSING_SECRET,
    HEALTH_OK,
    HEALTH_REMOVED,
    SKIPPED,
    UNCHANGED,
    Vault,
)
from gitvault.utils import path_hash


def _statuses(result) -> dict:
    return {o.entry.path: o.status for o in result.outcomes}


def _gitignore(ctx: RepoContext) -> List[str]:
    return (ctx.root / ".gitignore").read_text().splitlines()


@pytest.fixture
def populated(vault: Vault) -> Vault:
    write_tree(vault.ctx.root, {
        "secrets/db.env": "DB_PASSWORD=hunter2\n",
        "config/keys/a.pem": "AAA",
        "config/keys/sub/b.pem": "BBB",
        "notes.txt": "private notes",
    })
    vault.add("secrets/db.env", "pw-db")
    vault.add("config/keys", "pw-keys")
    vault.add("notes.txt", "pw-notes")
    return vault


class TestInitialize:
    def test_creates_layout(self, vault: Vault) -> None:
        ctx = vault.ctx
        assert ctx.storage_dir.is_dir()
        assert ManifestStore(ctx.config_path).load().managed_paths == []
        assert ".vault/gv-*.pw" in _gitignore(ctx)
        assert ".vault/gv-*.removed" in _gitignore(ctx)
        for name in ("pre-commit", "post-checkout", "post-merge"):
            assert (ctx.hooks_dir / name).exists()

    def test_twice_requires_reconfigure(self, populated: Vault, fast_cipher) -> None:
        with pytest.raises(AlreadyExists):
            Vault.initialize(populated.ctx, cipher=fast_cipher)

        vault, result = Vault.initialize(
            populated.ctx, cipher=fast_cipher, lfs_threshold_bytes=0, reconfigure=True
        )
        assert result.reconfigured
        assert vault.config.lfs_threshold_bytes == 0
        assert len(Vault.open(populated.ctx, cipher=fast_cipher).config.active_entries()) == 3

    def test_reconfigure_keeps_cipher_of_managed_archives(self, populated: Vault, fast_cipher) -> None:
        ctx = populated.ctx
        archives = sorted(p.name for p in ctx.storage_dir.iterdir())

        with pytest.raises(ConfigError, match="Cannot switch the cipher"):
            Vault.initialize(ctx, cipher_name="gpg", cipher=fast_cipher, reconfigure=True)
        assert ManifestStore(ctx.config_path).load().cipher == "aes-gcm"

        vault, _ = Vault.initialize(ctx, cipher=fast_cipher, lfs_threshold_bytes=0, reconfigure=True)
        assert vault.config.cipher == "aes-gcm"
        assert vault.decrypt_all().skipped == []
        vault.encrypt_all()
        assert sorted(p.name for p in ctx.storage_dir.iterdir()) == archives

    def test_reconfigure_without_cipher_keeps_stored_one(self, vault: Vault, fast_cipher) -> None:
        store = ManifestStore(vault.ctx.config_path)
        config = store.load()
        config.cipher = "gpg"
        store.save(config)

        reconfigured, _ = Vault.initialize(vault.ctx, cipher=fast_cipher, reconfigure=True)

        assert reconfigured.config.cipher == "gpg"

    def test_external_requires_sign_in(self, repo_ctx: RepoContext, fast_cipher) -> None:
        with pytest.raises(AuthRequired):
            Vault.initialize(
                repo_ctx,
                storage_mode="externalManager",
                cipher=fast_cipher,
                op_client=FakeOnePassword(signed_in=False),
            )
        assert not repo_ctx.config_path.exists()

    def test_external_namespace_must_exist(self, repo_ctx: RepoContext, fast_cipher) -> None:
        with pytest.raises(NotFound):
            Vault.initialize(
                repo_ctx,
                storage_mode="externalManager",
                namespace="Nope",
                cipher=fast_cipher,
                op_client=FakeOnePassword(),
            )

    def test_external_default_namespace(self, repo_ctx: RepoContext, fast_cipher) -> None:
        vault, _ = Vault.initialize(
            repo_ctx,
            storage_mode="externalManager",
            cipher=fast_cipher,
            op_client=FakeOnePassword(vaults=["Team", "Personal"]),
        )
        assert vault.config.external_namespace == "Personal"


class TestAdd:
    def test_add_file(self, vault: Vault) -> None:
        ctx = vault.ctx
        write_tree(ctx.root, {"secrets/db.env": "x=1"})
        result = vault.add("secrets/db.env", "pw1")

        hash_ = path_hash("secrets/db.env")
        assert result.entry.hash == hash_
        assert result.archive_path == ctx.storage_dir / "secrets-db.env.tar.gz.enc"
        assert result.archive_path.exists()
        assert (ctx.vault_dir / f"gv-{hash_}.pw").read_text() == "pw1"
        assert result.generated_passphrase is None
        assert "/secrets/db.env" in _gitignore(ctx)

        reloaded = ManifestStore(ctx.config_path).load()
        assert reloaded.find("secrets/db.env").secret_ref.path == f"gv-{hash_}.pw"

    def test_add_directory_gets_trailing_separator(self, vault: Vault) -> None:
        write_tree(vault.ctx.root, {"config/keys/a.pem": "A"})
        result = vault.add(vault.ctx.root / "config" / "keys", "pw1")

        assert result.entry.path == "config/keys/"
        assert result.entry.is_directory
        assert result.archive_path.name == "config-keys-.tar.gz.enc"
        assert "/config/keys/" in _gitignore(vault.ctx)

    def test_add_generates_passphrase(self, vault: Vault) -> None:
        write_tree(vault.ctx.root, {"a.txt": "a"})
        result = vault.add("a.txt")

        assert result.generated_passphrase
        backend = vault.backend_for("file")
        assert backend.retrieve(result.entry.secret_ref) == result.generated_passphrase

    def test_add_twice(self, populated: Vault) -> None:
        with pytest.raises(AlreadyManaged):
            populated.add("secrets/db.env", "pw")

    def test_invalid_paths(self, vault: Vault, tmp_path: Path) -> None:
        outside = tmp_path / "outside.txt"
        outside.write_text("x")
        with pytest.raises(NotFound):
            vault.add("missing.txt", "pw")
        with pytest.raises(InvalidPath):
            vault.add(outside, "pw")
        with pytest.raises(InvalidPath):
            vault.add(".vault/config.yaml", "pw")
        with pytest.raises(InvalidPath):
            vault.add(vault.ctx.root, "pw")

    def test_duplicate_identity(self, vault: Vault, monkeypatch) -> None:
        write_tree(vault.ctx.root, {"a.txt": "a", "b.txt": "b"})
        monkeypatch.setattr("gitvault.operations.path_hash", lambda path: "cafebabe")
        vault.add("a.txt", "pw-a")

        with pytest.raises(DuplicateIdentity):
            vault.add("b.txt", "pw-b")
        assert not (vault.ctx.storage_dir / "b.txt.tar.gz.enc").exists()
        assert (vault.ctx.vault_dir / "gv-cafebabe.pw").read_text() == "pw-a"

    def test_stale_secret_blocks_add(self, vault: Vault) -> None:
        write_tree(vault.ctx.root, {"a.txt": "a"})
        stale = vault.ctx.vault_dir / f"gv-{path_hash('a.txt')}.pw"
        stale.write_text("old")

        with pytest.raises(AlreadyExists):
            vault.add("a.txt", "pw")
        assert stale.read_text() == "old"
        assert not (vault.ctx.storage_dir / "a.txt.tar.gz.enc").exists()
        assert vault.config.managed_paths == []

    def test_failed_validation_leaves_nothing(self, vault: Vault, monkeypatch) -> None:
        write_tree(vault.ctx.root, {"a.txt": "a"})

        def broken(*args, **kwargs):
            raise ValidationFailed("Round-trip validation failed")

        monkeypatch.setattr(vault.sealer, "validate", broken)
        with pytest.raises(ValidationFailed) as excinfo:
            vault.add("a.txt", "pw")

        assert "stored secret" in excinfo.value.rolled_back
        assert list(vault.ctx.storage_dir.iterdir()) == []
        assert list(vault.ctx.vault_dir.glob("*.pw")) == []
        assert ManifestStore(vault.ctx.config_path).load().managed_paths == []
        assert vault.config.managed_paths == []

    def test_failed_manifest_write_rolls_back(self, vault: Vault, monkeypatch) -> None:
        write_tree(vault.ctx.root, {"a.txt": "a"})

        def broken(config):
            raise OSError("disk full")

        monkeypatch.setattr(vault.store, "save", broken)
        with pytest.raises(VaultError, match="disk full") as excinfo:
            vault.add("a.txt", "pw")

        assert "manifest entry" in excinfo.value.rolled_back
        assert vault.config.managed_paths == []
        assert list(vault.ctx.storage_dir.iterdir()) == []
        assert list(vault.ctx.vault_dir.glob("*.pw")) == []

    def test_large_archive_routed_to_lfs(self, vault: Vault, lfs_calls) -> None:
        write_tree(vault.ctx.root, {"big.bin": "x" * 64})
        vault.config.lfs_threshold_bytes = 1
        result = vault.add("big.bin", "pw")

        assert result.lfs.tracked
        assert lfs_calls == [vault.ctx.root]
        attributes = (vault.ctx.root / ".gitattributes").read_text()
        assert ".vault/storage/*.tar.gz.enc filter=lfs" in attributes

    def test_small_archive_not_routed(self, vault: Vault, lfs_calls) -> None:
        write_tree(vault.ctx.root, {"small.txt": "x"})
        result = vault.add("small.txt", "pw")

        assert not result.lfs.tracked
        assert lfs_calls == []
        assert not (vault.ctx.root / ".gitattributes").exists()


class TestRemove:
    def test_remove_tombstones_secret(self, populated: Vault) -> None:
        ctx = populated.ctx
        hash_ = path_hash("secrets/db.env")
        result = populated.remove("secrets/db.env")

        assert not result.archive_path.exists()
        assert not (ctx.vault_dir / f"gv-{hash_}.pw").exists()
        assert (ctx.vault_dir / f"gv-{hash_}.removed").read_text() == "pw-db"
        assert (ctx.root / "secrets" / "db.env").exists()

        entry = ManifestStore(ctx.config_path).load().find("secrets/db.env", include_removed=True)
        assert entry.status == STATUS_REMOVED
        assert entry.removed_at is not None
        assert entry.secret_ref.path == f"gv-{hash_}.removed"
        assert "/secrets/db.env" in _gitignore(ctx)
        assert not list(ctx.storage_dir.glob("*.removing"))

    def test_remove_directory_without_trailing_separator(self, populated: Vault) -> None:
        result = populated.remove("config/keys")
        assert result.entry.path == "config/keys/"

    def test_prune_ignore(self, populated: Vault) -> None:
        result = populated.remove("notes.txt", prune_ignore=True)

        assert result.ignore_pruned
        lines = _gitignore(populated.ctx)
        assert "/notes.txt" not in lines
        assert "/secrets/db.env" in lines
        assert ".vault/gv-*.pw" in lines

    def test_wrong_secret_aborts(self, populated: Vault) -> None:
        ctx = populated.ctx
        secret = ctx.vault_dir / f"gv-{path_hash('notes.txt')}.pw"
        secret.write_text("not-the-password")
        archive = populated.archive_path("notes.txt")

        with pytest.raises(ValidationFailed):
            populated.remove("notes.txt")

        assert archive.exists()
        assert secret.read_text() == "not-the-password"
        assert ManifestStore(ctx.config_path).load().find("notes.txt").status == STATUS_ACTIVE

    def test_missing_archive_aborts(self, populated: Vault) -> None:
        populated.archive_path("notes.txt").unlink()
        with pytest.raises(NotFound):
            populated.remove("notes.txt")
        assert populated.config.find("notes.txt").is_active

    def test_unmanaged_path(self, populated: Vault) -> None:
        with pytest.raises(NotFound):
            populated.remove("other.txt")

    def test_failed_manifest_write_restores_everything(self, populated: Vault, monkeypatch) -> None:
        ctx = populated.ctx
        hash_ = path_hash("notes.txt")
        archive = populated.archive_path("notes.txt")

        def broken(config):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(populated.store, "save", broken)
        with pytest.raises(VaultError) as excinfo:
            populated.remove("notes.txt")

        assert excinfo.value.rolled_back
        assert archive.exists()
        assert (ctx.vault_dir / f"gv-{hash_}.pw").read_text() == "pw-notes"
        assert not (ctx.vault_dir / f"gv-{hash_}.removed").exists()
        entry = populated.config.find("notes.txt")
        assert entry.is_active
        assert entry.removed_at is None

    def test_add_remove_readd_lifecycle(self, vault: Vault) -> None:
        ctx = vault.ctx
        write_tree(ctx.root, {"secrets/db.env": "v1"})
        vault.add("secrets/db.env", "pw1")
        vault.remove("secrets/db.env")
        vault.add("secrets/db.env", "pw2")

        history = ManifestStore(ctx.config_path).load().history("secrets/db.env")
        assert [e.status for e in history] == [STATUS_REMOVED, STATUS_ACTIVE]
        assert history[0].hash == history[1].hash

        archive = vault.archive_path("secrets/db.env")
        assert vault.sealer.verify(archive, "pw2")
        assert not vault.sealer.verify(archive, "pw1")

        vault.remove("secrets/db.env")
        hash_ = path_hash("secrets/db.env")
        assert (ctx.vault_dir / f"gv-{hash_}.removed").read_text() == "pw1"
        assert (ctx.vault_dir / f"gv-{hash_}.1.removed").read_text() == "pw2"


class TestEncryptAll:
    def test_unchanged_entries_are_not_resealed(self, populated: Vault) -> None:
        archive = populated.archive_path("notes.txt")
        before = archive.read_bytes()

        result = populated.encrypt_all()

        assert set(_statuses(result).values()) == {UNCHANGED}
        assert archive.read_bytes() == before

    def test_changed_entry_is_resealed(self, populated: Vault) -> None:
        root = populated.ctx.root
        (root / "config" / "keys" / "a.pem").write_text("rotated")

        result = populated.encrypt_all()

        assert _statuses(result)["config/keys/"] == ENCRYPTED
        assert _statuses(result)["notes.txt"] == UNCHANGED
        assert populated.sealer.matches(
            populated.archive_path("config/keys/"), "pw-keys", root / "config" / "keys"
        )

    def test_missing_plaintext_and_secret_are_skipped(self, populated: Vault) -> None:
        ctx = populated.ctx
        (ctx.root / "notes.txt").unlink()
        (ctx.vault_dir / f"gv-{path_hash('secrets/db.env')}.pw").unlink()
        (ctx.root / "secrets" / "db.env").write_text("changed")

        result = populated.encrypt_all()

        assert _statuses(result) == {
            "secrets/db.env": SKIPPED,
            "config/keys/": UNCHANGED,
            "notes.txt": SKIPPED,
        }

    def test_password_override(self, populated: Vault) -> None:
        result = populated.encrypt_all("notes.txt", password="override")

        assert _statuses(result) == {"notes.txt": ENCRYPTED}
        archive = populated.archive_path("notes.txt")
        assert populated.sealer.verify(archive, "override")
        secret = populated.ctx.vault_dir / f"gv-{path_hash('notes.txt')}.pw"
        assert secret.read_text() == "pw-notes"

    def test_hook_run_keeps_unwritten_override(self, populated: Vault) -> None:
        populated.encrypt_all("notes.txt", password="override")
        (populated.ctx.root / "notes.txt").write_text("edited after override")

        result = populated.encrypt_all()

        assert _statuses(result)["notes.txt"] == SKIPPED
        assert "--write" in result.skipped[0].message
        assert populated.sealer.verify(populated.archive_path("notes.txt"), "override")

    def test_override_with_write_is_used_by_later_runs(self, populated: Vault) -> None:
        result = populated.encrypt_all("notes.txt", password="override", write=True, confirm=lambda q: True)

        assert result.outcomes[0].message == "password saved"
        secret = populated.ctx.vault_dir / f"gv-{path_hash('notes.txt')}.pw"
        assert secret.read_text() == "override"
        assert _statuses(populated.encrypt_all())["notes.txt"] == UNCHANGED

        (populated.ctx.root / "notes.txt").write_text("edited")
        assert _statuses(populated.encrypt_all())["notes.txt"] == ENCRYPTED
        assert populated.sealer.verify(populated.archive_path("notes.txt"), "override")

    def test_override_write_declined_keeps_secret(self, populated: Vault) -> None:
        result = populated.encrypt_all("notes.txt", password="override", write=True, confirm=lambda q: False)

        assert result.outcomes[0].status == ENCRYPTED
        assert result.outcomes[0].message == "existing secret kept"
        secret = populated.ctx.vault_dir / f"gv-{path_hash('notes.txt')}.pw"
        assert secret.read_text() == "pw-notes"

    def test_empty_password_is_an_override(self, populated: Vault) -> None:
        result = populated.encrypt_all("notes.txt", password="")

        assert _statuses(result) == {"notes.txt": ENCRYPTED}
        archive = populated.archive_path("notes.txt")
        assert populated.sealer.verify(archive, "")
        assert not populated.sealer.verify(archive, "pw-notes")

    def test_unmanaged_path(self, populated: Vault) -> None:
        with pytest.raises(NotFound):
            populated.encrypt_all("other.txt")


class TestDecryptAll:
    def test_restores_everything(self, populated: Vault) -> None:
        root = populated.ctx.root
        (root / "secrets" / "db.env").unlink()
        (root / "config" / "keys" / "a.pem").write_text("local change")
        (root / "config" / "keys" / "stale.pem").write_text("stale")

        result = populated.decrypt_all()

        assert set(_statuses(result).values()) == {DECRYPTED}
        assert (root / "secrets" / "db.env").read_text() == "DB_PASSWORD=hunter2\n"
        assert (root / "config" / "keys" / "a.pem").read_text() == "AAA"
        assert not (root / "config" / "keys" / "stale.pem").exists()

    def test_batch_isolation(self, populated: Vault) -> None:
        ctx = populated.ctx
        for rel in ("secrets/db.env", "notes.txt"):
            (ctx.root / rel).unlink()
        (ctx.vault_dir / f"gv-{path_hash('notes.txt')}.pw").unlink()

        result = populated.decrypt_all()

        assert _statuses(result) == {
            "secrets/db.env": DECRYPTED,
            "config/keys/": DECRYPTED,
            "notes.txt": SKIPPED,
        }
        assert (ctx.root / "secrets" / "db.env").exists()
        assert not (ctx.root / "notes.txt").exists()

    def test_missing_archive_is_skipped(self, populated: Vault) -> None:
        populated.archive_path("notes.txt").unlink()
        result = populated.decrypt_all()
        assert _statuses(result)["notes.txt"] == SKIPPED
        assert result.count(DECRYPTED) == 2

    def test_wrong_password_fails_entry_only(self, populated: Vault) -> None:
        root = populated.ctx.root
        (root / "notes.txt").write_text("local")

        result = populated.decrypt_all("notes.txt", password="wrong")

        assert _statuses(result) == {"notes.txt": FAILED}
        assert (root / "notes.txt").read_text() == "local"

    def test_empty_password_is_not_replaced_by_stored_secret(self, populated: Vault) -> None:
        root = populated.ctx.root
        (root / "notes.txt").write_text("local")

        result = populated.decrypt_all("notes.txt", password="")

        assert _statuses(result) == {"notes.txt": FAILED}
        assert (root / "notes.txt").read_text() == "local"

    def test_single_directory_not_on_disk(self, populated: Vault) -> None:
        import shutil

        keys = populated.ctx.root / "config" / "keys"
        shutil.rmtree(keys)
        result = populated.decrypt_all("config/keys")

        assert _statuses(result) == {"config/keys/": DECRYPTED}
        assert (keys / "sub" / "b.pem").read_text() == "BBB"

    def test_write_restores_lost_secret(self, populated: Vault) -> None:
        ctx = populated.ctx
        secret = ctx.vault_dir / f"gv-{path_hash('notes.txt')}.pw"
        secret.unlink()

        result = populated.decrypt_all("notes.txt", password="pw-notes", write=True)

        assert result.outcomes[0].status == DECRYPTED
        assert result.outcomes[0].message == "password saved"
        assert secret.read_text() == "pw-notes"

    def test_write_never_persists_after_failed_decrypt(self, populated: Vault) -> None:
        secret = populated.ctx.vault_dir / f"gv-{path_hash('notes.txt')}.pw"
        secret.unlink()

        result = populated.decrypt_all("notes.txt", password="wrong", write=True)

        assert result.outcomes[0].status == FAILED
        assert not secret.exists()

    def test_write_asks_before_overwriting(self, populated: Vault) -> None:
        populated.encrypt_all("notes.txt", password="new-pw")
        secret = populated.ctx.vault_dir / f"gv-{path_hash('notes.txt')}.pw"
        questions = []

        def decline(question: str) -> bool:
            questions.append(question)
            return False

        populated.decrypt_all("notes.txt", password="new-pw", write=True, confirm=decline)
        assert len(questions) == 1
        assert secret.read_text() == "pw-notes"

        populated.decrypt_all("notes.txt", password="new-pw", write=True, confirm=lambda q: True)
        assert secret.read_text() == "new-pw"

    def test_write_without_password_is_ignored(self, populated: Vault) -> None:
        result = populated.decrypt_all("notes.txt", write=True)
        assert result.outcomes[0].status == DECRYPTED
        assert result.outcomes[0].message == ""


class TestListEntries:
    def test_health(self, populated: Vault) -> None:
        ctx = populated.ctx
        write_tree(ctx.root, {"extra.txt": "x", "gone.txt": "y"})
        populated.add("extra.txt", "pw")
        populated.add("gone.txt", "pw")
        populated.remove("gone.txt")

        (ctx.root / "notes.txt").unlink()
        populated.archive_path("config/keys/").unlink()
        (ctx.vault_dir / f"gv-{path_hash('extra.txt')}.pw").unlink()

        rows = {row.entry.path: row for row in populated.list_entries()}

        assert rows["secrets/db.env"].health == HEALTH_OK
        assert rows["secrets/db.env"].archive_size > 0
        assert rows["notes.txt"].health == HEALTH_MISSING_FILE
        assert rows["config/keys/"].health == HEALTH_MISSING_ARCHIVE
        assert rows["config/keys/"].archive_size is None
        assert rows["extra.txt"].health == HEALTH_MISSING_SECRET
        assert rows["gone.txt"].health == HEALTH_REMOVED

        active = populated.list_entries(include_removed=False)
        assert "gone.txt" not in [row.entry.path for row in active]


class TestExternalStorage:
    def test_add_and_remove(self, external_vault: Vault, fake_op: FakeOnePassword) -> None:
        root = external_vault.ctx.root
        write_tree(root, {"secrets/db.env": "x"})
        result = external_vault.add("secrets/db.env", "pw1")

        ref = result.entry.secret_ref
        assert result.entry.backend == "externalManager"
        assert ref.namespace == "Work"
        item = fake_op.items[ref.item_id]
        assert item["title"] == f"gv-project-{path_hash('secrets/db.env')}"
        assert item["password"] == "pw1"
        assert not list(external_vault.ctx.vault_dir.glob("*.pw"))

        (root / "secrets" / "db.env").unlink()
        assert _statuses(external_vault.decrypt_all()) == {"secrets/db.env": DECRYPTED}

        external_vault.remove("secrets/db.env")
        assert item["fields"]["status"] == "removed"
        assert item["password"] == "pw1"

    def test_failed_add_deletes_item(self, external_vault: Vault, fake_op: FakeOnePassword, monkeypatch) -> None:
        write_tree(external_vault.ctx.root, {"a.txt": "a"})

        def broken(*args, **kwargs):
            raise ValidationFailed("Round-trip validation failed")

        monkeypatch.setattr(external_vault.sealer, "validate", broken)
        with pytest.raises(ValidationFailed):
            external_vault.add("a.txt", "pw")
        assert fake_op.items == {}

    def test_signed_out_fails_cleanly(self, external_vault: Vault, fake_op: FakeOnePassword) -> None:
        write_tree(external_vault.ctx.root, {"a.txt": "a"})
        fake_op.signed_in = False
        external_vault._backends.clear()

        with pytest.raises(AuthRequired):
            external_vault.add("a.txt", "pw")
        assert not list(external_vault.ctx.vault_dir.glob("*.pw"))
        assert list(external_vault.ctx.storage_dir.iterdir()) == []
