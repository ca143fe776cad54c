"""
Passphrase ciphers.

The encrypt/decrypt capability used by the sealer. It is intentionally
dumb about archives, secrets and the manifest: bytes and a passphrase
in, bytes out.
"""

from __future__ import annotations

import shutil
import struct
import subprocess
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from Crypto.Cipher import AES
from Crypto.Protocol.KDF import scrypt
from Crypto.Random import get_random_bytes

from .config import (
    AES_NONCE_SIZE,
    AES_TAG_SIZE,
    ARCHIVE_BASE_SUFFIX,
    CIPHER_AES_GCM,
    CIPHER_GPG,
    SALT_SIZE,
    SCRYPT_N,
    SCRYPT_P,
    SCRYPT_R,
)
from .errors import ConfigError, DecryptionFailed, DependencyUnavailable


class PassphraseCipher(ABC):
    name: str = ""
    suffix: str = ""

    def check_available(self) -> None:
        """
        Raises:
            DependencyUnavailable: if the cipher cannot run on this machine
        """

    @abstractmethod
    def encrypt(self, data: bytes, passphrase: str) -> bytes:
        ...

    @abstractmethod
    def decrypt(self, data: bytes, passphrase: str) -> bytes:
        """
        Raises:
            DecryptionFailed: on a wrong passphrase or a corrupt payload
        """


class AesGcmCipher(PassphraseCipher):
    """
    scrypt-derived AES-256-GCM.

    Layout: MAGIC | log2(N) | r | p | salt | nonce | tag | ciphertext.
    The KDF cost is stored in the header so archives stay readable if
    the defaults change.
    """

    name = CIPHER_AES_GCM
    suffix = ARCHIVE_BASE_SUFFIX + ".enc"

    MAGIC = b"GVA1"
    _HEADER = struct.Struct(">4sBBB")

    def __init__(self, n: int = SCRYPT_N, r: int = SCRYPT_R, p: int = SCRYPT_P):
        if n < 2 or n & (n - 1):
            raise ValueError("scrypt N must be a power of two")
        self.n = n
        self.r = r
        self.p = p

    @staticmethod
    def _derive(passphrase: str, salt: bytes, n: int, r: int, p: int) -> bytes:
        return scrypt(passphrase.encode("utf-8"), salt, key_len=32, N=n, r=r, p=p)

    def encrypt(self, data: bytes, passphrase: str) -> bytes:
        salt = get_random_bytes(SALT_SIZE)
        key = self._derive(passphrase, salt, self.n, self.r, self.p)
        cipher = AES.new(key, AES.MODE_GCM, nonce=get_random_bytes(AES_NONCE_SIZE))
        header = self._HEADER.pack(self.MAGIC, self.n.bit_length() - 1, self.r, self.p)
        cipher.update(header)
        ciphertext, tag = cipher.encrypt_and_digest(data)
        return header + salt + cipher.nonce + tag + ciphertext

    def decrypt(self, data: bytes, passphrase: str) -> bytes:
        size = self._HEADER.size
        minimum = size + SALT_SIZE + AES_NONCE_SIZE + AES_TAG_SIZE
        if len(data) < minimum:
            raise DecryptionFailed("Archive is truncated")

        magic, log_n, r, p = self._HEADER.unpack(data[:size])
        if magic != self.MAGIC:
            raise DecryptionFailed("Archive was not produced by the aes-gcm cipher")

        offset = size
        salt = data[offset:offset + SALT_SIZE]
        offset += SALT_SIZE
        nonce = data[offset:offset + AES_NONCE_SIZE]
        offset += AES_NONCE_SIZE
        tag = data[offset:offset + AES_TAG_SIZE]
        ciphertext = data[offset + AES_TAG_SIZE:]

        key = self._derive(passphrase, salt, 1 << log_n, r, p)
        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        cipher.update(data[:size])
        try:
            return cipher.decrypt_and_verify(ciphertext, tag)
        except ValueError:
            raise DecryptionFailed("Wrong passphrase or corrupted archive")


class GpgCipher(PassphraseCipher):
    """Symmetric ``gpg`` encryption, compatible with archives made by hand."""

    name = CIPHER_GPG
    suffix = ARCHIVE_BASE_SUFFIX + ".gpg"

    def __init__(self, binary: str = "gpg"):
        self.binary = binary

    def check_available(self) -> None:
        if shutil.which(self.binary) is None:
            raise DependencyUnavailable(f"{self.binary} command not found")

    def _run(self, mode: str, data: bytes, passphrase: str) -> bytes:
        self.check_available()
        with tempfile.TemporaryDirectory(prefix="gv-gpg-") as tmp:
            pass_file = Path(tmp) / "passphrase"
            pass_file.write_text(passphrase, encoding="utf-8")
            pass_file.chmod(0o600)
            source = Path(tmp) / "input"
            source.write_bytes(data)
            output = Path(tmp) / "output"
            result = subprocess.run(
                [
                    self.binary, "--batch", "--yes", "--quiet",
                    "--pinentry-mode", "loopback",
                    "--passphrase-file", str(pass_file),
                    mode, "--output", str(output), str(source),
                ],
                capture_output=True,
            )
            if result.returncode != 0:
                stderr = result.stderr.decode("utf-8", "replace").strip()
                if mode == "--decrypt":
                    raise DecryptionFailed(f"gpg decryption failed: {stderr}")
                raise RuntimeError(f"gpg encryption failed: {stderr}")
            return output.read_bytes()

    def encrypt(self, data: bytes, passphrase: str) -> bytes:
        return self._run("--symmetric", data, passphrase)

    def decrypt(self, data: bytes, passphrase: str) -> bytes:
        return self._run("--decrypt", data, passphrase)


def cipher_for(name: str) -> PassphraseCipher:
    if name == CIPHER_AES_GCM:
        return AesGcmCipher()
    if name == CIPHER_GPG:
        return GpgCipher()
    raise ConfigError(f"Unknown cipher: {name}")
