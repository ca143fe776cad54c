"""Tests for archiving and the seal/unseal orchestration."""

from __future__ import annotations

import io
import tarfile
from pathlib import Path

import pytest

from conftest import write_tree
from gitvault.archive import create_archive, extract_archive
from gitvault.errors import DecryptionFailed, NotFound, ValidationFailed
from gitvault.sealer import Sealer
from gitvault.utils import tree_digest


def _tar_with(name: str, data: bytes = b"x") -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        info = tarfile.TarInfo(name)
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


class TestArchive:
    def test_directory_keeps_top_level_name(self, tmp_path: Path) -> None:
        write_tree(tmp_path / "src" / "keys", {"a.pem": "A", "nested/b.pem": "B"})
        (tmp_path / "src" / "keys" / "empty").mkdir()

        extracted = extract_archive(create_archive(tmp_path / "src" / "keys"), tmp_path / "out")

        assert extracted == [tmp_path / "out" / "keys"]
        assert (tmp_path / "out" / "keys" / "nested" / "b.pem").read_text() == "B"
        assert (tmp_path / "out" / "keys" / "empty").is_dir()

    def test_missing_source(self, tmp_path: Path) -> None:
        with pytest.raises(NotFound):
            create_archive(tmp_path / "nope")

    def test_rejects_path_traversal(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationFailed):
            extract_archive(_tar_with("../evil.txt"), tmp_path / "out")
        assert not (tmp_path / "evil.txt").exists()

    def test_rejects_garbage(self, tmp_path: Path) -> None:
        with pytest.raises(ValidationFailed):
            extract_archive(b"not a tarball", tmp_path / "out")


class TestSealer:
    def test_round_trip_file(self, tmp_path: Path, fast_cipher) -> None:
        source = tmp_path / "db.env"
        source.write_bytes(b"PASSWORD=\x00\xffbinary")
        sealer = Sealer(fast_cipher)
        archive = sealer.seal(source, "pw1", tmp_path / "vault" / "db.env.tar.gz.enc")

        restored = sealer.unseal(archive, "pw1", tmp_path / "out")
        assert restored.read_bytes() == source.read_bytes()
        assert tree_digest(restored) == tree_digest(source)

    def test_round_trip_directory(self, tmp_path: Path, fast_cipher) -> None:
        source = tmp_path / "config"
        write_tree(source, {"a.yml": "a: 1", "deep/b.yml": "b: 2"})
        sealer = Sealer(fast_cipher)
        archive = sealer.seal(source, "pw1", tmp_path / "config.tar.gz.enc")

        sealer.validate(archive, "pw1", source)
        assert sealer.verify(archive, "pw1")
        assert not sealer.verify(archive, "wrong")

    def test_unseal_wrong_passphrase(self, tmp_path: Path, fast_cipher) -> None:
        source = tmp_path / "db.env"
        source.write_text("x")
        sealer = Sealer(fast_cipher)
        archive = sealer.seal(source, "pw1", tmp_path / "a.enc")
        with pytest.raises(DecryptionFailed):
            sealer.unseal(archive, "pw2", tmp_path / "out")

    def test_unseal_missing_archive(self, tmp_path: Path, fast_cipher) -> None:
        with pytest.raises(NotFound):
            Sealer(fast_cipher).unseal(tmp_path / "missing.enc", "pw1", tmp_path / "out")

    def test_matches_detects_changes(self, tmp_path: Path, fast_cipher) -> None:
        source = tmp_path / "config"
        write_tree(source, {"a.yml": "a: 1"})
        sealer = Sealer(fast_cipher)
        archive = sealer.seal(source, "pw1", tmp_path / "config.enc")

        assert sealer.matches(archive, "pw1", source)
        (source / "a.yml").write_text("a: 2")
        assert not sealer.matches(archive, "pw1", source)
        (source / "a.yml").write_text("a: 1")
        (source / "extra").mkdir()
        assert not sealer.matches(archive, "pw1", source)

    def test_validate_fails_on_mismatch(self, tmp_path: Path, fast_cipher) -> None:
        source = tmp_path / "db.env"
        source.write_text("one")
        sealer = Sealer(fast_cipher)
        archive = sealer.seal(source, "pw1", tmp_path / "a.enc")
        source.write_text("two")
        with pytest.raises(ValidationFailed):
            sealer.validate(archive, "pw1", source)

    def test_restore_replaces_stale_content(self, tmp_path: Path, fast_cipher) -> None:
        source = tmp_path / "config"
        write_tree(source, {"a.yml": "a: 1"})
        sealer = Sealer(fast_cipher)
        archive = sealer.seal(source, "pw1", tmp_path / "vault" / "config.enc")

        (source / "stale.yml").write_text("old")
        (source / "a.yml").write_text("changed")
        sealer.restore(archive, "pw1", source)

        assert sorted(p.name for p in source.iterdir()) == ["a.yml"]
        assert (source / "a.yml").read_text() == "a: 1"

    def test_restore_file_over_directory(self, tmp_path: Path, fast_cipher) -> None:
        target = tmp_path / "data"
        target.write_text("file content")
        sealer = Sealer(fast_cipher)
        archive = sealer.seal(target, "pw1", tmp_path / "vault" / "data.enc")

        target.unlink()
        write_tree(target, {"inner.txt": "dir content"})
        sealer.restore(archive, "pw1", target)

        assert target.is_file()
        assert target.read_text() == "file content"
        assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".gv-")] == []

    def test_failed_restore_keeps_existing_plaintext(self, tmp_path: Path, fast_cipher) -> None:
        target = tmp_path / "db.env"
        target.write_text("v1")
        sealer = Sealer(fast_cipher)
        archive = sealer.seal(target, "pw1", tmp_path / "vault" / "db.enc")
        target.write_text("local edits")

        with pytest.raises(DecryptionFailed):
            sealer.restore(archive, "wrong", target)
        assert target.read_text() == "local edits"
