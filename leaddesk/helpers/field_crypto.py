"""AES-256-CBC field encryption with scrypt key derivation.

Protects individual lead fields (e.g. ``leads.sin_full``) at rest while
allowing exact recovery.  The ``ENCRYPTION_KEY`` environment variable holds
the master secret; a 32-byte key is derived from it with scrypt on every
call, and a fresh 16-byte IV is drawn for every encryption.

Token format (stored verbatim in text columns)::

    <32 lowercase hex chars IV>:<lowercase hex ciphertext>

.. warning::
    The scrypt salt is a fixed, non-secret constant shared by every
    installation.  Changing it makes every existing token undecryptable,
    so it stays until a versioned token format and a migration exist.

The tokens carry no authentication tag: a tampered token may decrypt to
garbage when the padding happens to validate.  Callers that need
tamper-evidence must not rely on this module for it.

This module never logs.  Errors are raised to the immediate caller.
"""

import os
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

ENV_VAR = "ENCRYPTION_KEY"

KEY_DERIVATION_SALT = b"salt"
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1
KEY_LENGTH = 32
IV_LENGTH = 16

_BLOCK_BITS = algorithms.AES.block_size
_HEX_RE = re.compile(r"(?:[0-9a-f]{2})+")


class FieldCryptoError(Exception):
    """Base class for field encryption failures."""


class ConfigurationError(FieldCryptoError):
    """The master secret is missing or empty at call time."""


class MalformedTokenError(FieldCryptoError):
    """The token does not have the ``<hex>:<hex>`` shape."""


class DecryptionError(FieldCryptoError):
    """A well-formed token could not be decrypted."""


@dataclass(frozen=True)
class FieldCryptoConfig:
    """Configuration context carrying the master secret."""

    master_secret: str = ""

    def __repr__(self) -> str:
        state = "<set>" if self.master_secret else "<unset>"
        return f"FieldCryptoConfig(master_secret={state})"

    @classmethod
    def from_env(cls) -> "FieldCryptoConfig":
        return cls(master_secret=os.environ.get(ENV_VAR, ""))


ConfigSource = FieldCryptoConfig | Callable[[], FieldCryptoConfig]


class FieldCipher:
    """Encrypts and decrypts string fields under the configured master secret.

    *config* is either a fixed :class:`FieldCryptoConfig` or a zero-argument
    callable returning one.  A callable is invoked on every operation, so a
    changed environment takes effect without rebuilding the cipher.
    """

    def __init__(self, config: ConfigSource) -> None:
        self._config = config

    def _master_secret(self) -> str:
        config = self._config() if callable(self._config) else self._config
        if not config.master_secret:
            raise ConfigurationError(f"encryption key not defined ({ENV_VAR})")
        return config.master_secret

    @staticmethod
    def _derive_key(master_secret: str) -> bytes:
        kdf = Scrypt(
            salt=KEY_DERIVATION_SALT,
            length=KEY_LENGTH,
            n=SCRYPT_N,
            r=SCRYPT_R,
            p=SCRYPT_P,
        )
        return kdf.derive(master_secret.encode("utf-8"))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt *plaintext* and return an ``iv:ciphertext`` hex token.

        Raises:
            ConfigurationError: If no master secret is configured.
        """
        key = self._derive_key(self._master_secret())
        iv = secrets.token_bytes(IV_LENGTH)

        padder = padding.PKCS7(_BLOCK_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        """Decrypt a token previously produced by :meth:`encrypt`.

        Raises:
            ConfigurationError: If no master secret is configured.
            MalformedTokenError: If *token* is not ``<hex>:<hex>``.
            DecryptionError: If the key is wrong, the ciphertext is corrupt,
                the IV has the wrong length, or the result is not UTF-8.
        """
        master_secret = self._master_secret()
        iv, ciphertext = _parse_token(token)
        key = self._derive_key(master_secret)

        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(_BLOCK_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError as exc:
            raise DecryptionError(f"token could not be decrypted: {exc}") from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("decrypted field is not valid UTF-8") from exc


def _parse_token(token: str) -> tuple[bytes, bytes]:
    """Split *token* on its first colon and decode both hex halves."""
    if not isinstance(token, str):
        raise MalformedTokenError(f"token must be a string, got {type(token).__name__}")

    iv_hex, sep, ciphertext_hex = token.partition(":")
    if not sep:
        raise MalformedTokenError("token is missing the ':' separator")
    if not _HEX_RE.fullmatch(iv_hex) or not _HEX_RE.fullmatch(ciphertext_hex):
        raise MalformedTokenError("token halves must be non-empty lowercase hex")

    return bytes.fromhex(iv_hex), bytes.fromhex(ciphertext_hex)


_default_cipher = FieldCipher(FieldCryptoConfig.from_env)


def encrypt(plaintext: str) -> str:
    """Encrypt *plaintext* under ``ENCRYPTION_KEY`` (read on every call)."""
    return _default_cipher.encrypt(plaintext)


def decrypt(token: str) -> str:
    """Decrypt *token* under ``ENCRYPTION_KEY`` (read on every call)."""
    return _default_cipher.decrypt(token)
