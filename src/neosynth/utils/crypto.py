"""Cryptographic helpers: key digests, password hashing, TOTP seed encryption."""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets

import bcrypt
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from neosynth.errors.neosynth_errors import MisconfiguredError, NeoSynthError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 16

DEFAULT_BCRYPT_ROUNDS = 12


def sha256_hex(data: bytes) -> str:
    """Single SHA-256 hash, hex encoded."""
    return hashlib.sha256(data).hexdigest()


def hash_api_key(plaintext: str) -> str:
    """Deterministic one-way digest used to store and look up API keys."""
    return sha256_hex(plaintext.encode("utf-8"))


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without leaking the mismatch position."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def random_hex(nbytes: int = 32) -> str:
    """Hex string carrying *nbytes* bytes of randomness."""
    return secrets.token_hex(nbytes)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


def hash_password(plaintext: str, *, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> tuple[str, str]:
    """Hash a password with a fresh bcrypt salt.

    Returns:
        Tuple of (password hash, salt). The salt is embedded in the hash as
        well; it is returned separately for storage alongside the credential.
    """
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(plaintext.encode("utf-8"), salt)
    return hashed.decode("ascii"), salt.decode("ascii")


def verify_password(plaintext: str, password_hash: str) -> bool:
    """Check *plaintext* against a stored bcrypt hash.

    Malformed hashes verify as ``False`` rather than raising.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(plaintext.encode("utf-8"), password_hash.encode("ascii"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


# ---------------------------------------------------------------------------
# TOTP seed encryption
# ---------------------------------------------------------------------------


class TotpCipher:
    """AES-256-CBC encryption for TOTP seeds at rest.

    Ciphertext format is ``hex(iv) + hex(ciphertext)`` with a random IV per
    value, so decryption only needs the server key.

    Usage::

        cipher = TotpCipher.from_hex(config.auth.totp_encryption_key)
        stored = cipher.encrypt("JBSWY3DPEHPK3PXP")
        cipher.decrypt(stored)
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            msg = f"TOTP encryption key must be {KEY_LENGTH} bytes, got {len(key)}"
            raise MisconfiguredError(msg)
        self._key = key

    @classmethod
    def from_hex(cls, hex_key: str) -> TotpCipher:
        """Build a cipher from the operator-provided hex key.

        Raises:
            MisconfiguredError: If the key is absent, not hex, or the wrong length.
        """
        if not hex_key:
            msg = "TOTP encryption key is not configured"
            raise MisconfiguredError(msg)
        if len(hex_key) != KEY_LENGTH * 2:
            msg = (
                f"TOTP encryption key has invalid length: {len(hex_key)}, "
                f"expected {KEY_LENGTH * 2} hex characters"
            )
            raise MisconfiguredError(msg)
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as exc:
            msg = "TOTP encryption key is not valid hex"
            raise MisconfiguredError(msg) from exc
        return cls(key)

    @staticmethod
    def generate_key() -> str:
        """Generate a new random key suitable for ``totp_encryption_key``."""
        return os.urandom(KEY_LENGTH).hex()

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a TOTP seed, returning ``hex(iv) + hex(ciphertext)``."""
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()
        return iv.hex() + ciphertext.hex()

    def decrypt(self, encrypted: str) -> str:
        """Decrypt a value produced by :meth:`encrypt`.

        Raises:
            NeoSynthError: If the stored value is corrupt or was encrypted with
                another key.
        """
        try:
            iv = bytes.fromhex(encrypted[: IV_LENGTH * 2])
            ciphertext = bytes.fromhex(encrypted[IV_LENGTH * 2 :])
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
            data = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return (unpadder.update(data) + unpadder.finalize()).decode("utf-8")
        except ValueError as exc:
            logger.error("TOTP secret decryption failed")
            msg = "Failed to decrypt TOTP secret"
            raise NeoSynthError(msg, code="totp-decrypt-failed") from exc
