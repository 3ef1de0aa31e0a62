"""
Encryption utilities for CAS document passwords.

Passwords are stored with AES-256-CBC (PKCS7 padding) and a fresh random IV
per value. There is no MAC: a wrong key or IV is only detected when the
padding or the UTF-8 decode fails, so some mismatches can decrypt to garbage.
"""

import os
import re
from dataclasses import dataclass
from typing import Optional

import structlog
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from app.core.exceptions import ConfigError, DecryptionError

logger = structlog.get_logger(__name__)

KEY_SIZE = 32
IV_SIZE = 16
_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class EncryptedSecret:
    """Ciphertext and IV, both hex encoded, as persisted on the CAS record."""

    ciphertext_hex: str
    iv_hex: str


def derive_key(raw_key: str) -> bytes:
    """
    Turn the configured key into 32 bytes.

    64 hex characters are decoded as-is; anything else is taken as UTF-8
    bytes, zero-padded or truncated to 32.
    """
    if _HEX_KEY_RE.match(raw_key):
        return bytes.fromhex(raw_key)
    return raw_key.encode("utf-8")[:KEY_SIZE].ljust(KEY_SIZE, b"\0")


class CredentialVault:
    """Encrypts and decrypts CAS passwords for at-rest storage."""

    def __init__(self, key: Optional[str]):
        self._raw_key = key or ""

    def _get_key(self) -> bytes:
        if not self._raw_key:
            raise ConfigError("CAS_ENCRYPTION_KEY is not set")
        return derive_key(self._raw_key)

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        """
        Encrypt a password with a fresh IV.

        Args:
            plaintext: The CAS password as typed by the advisor

        Returns:
            EncryptedSecret with hex ciphertext and hex IV
        """
        key = self._get_key()
        iv = os.urandom(IV_SIZE)

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return EncryptedSecret(ciphertext_hex=ciphertext.hex(), iv_hex=iv.hex())

    def decrypt(self, secret: EncryptedSecret) -> str:
        """
        Recover a password encrypted with encrypt().

        Raises:
            ConfigError: If no key is configured
            DecryptionError: If key / IV / ciphertext do not yield valid plaintext
        """
        key = self._get_key()

        try:
            iv = bytes.fromhex(secret.iv_hex)
            ciphertext = bytes.fromhex(secret.ciphertext_hex)

            decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()

            return plaintext.decode("utf-8")
        except (ValueError, TypeError) as e:
            # ValueError covers bad hex, bad IV length, bad padding and UnicodeDecodeError
            logger.warning("cas_password_decrypt_failed", error_type=type(e).__name__)
            raise DecryptionError("Stored CAS password could not be decrypted") from e


def mask_identity_number(value: Optional[str]) -> Optional[str]:
    """
    Mask all but the last 4 characters of a PAN for display.

    "ABCDE1234F" -> "******234F"
    """
    if not value:
        return value
    if len(value) <= 4:
        return value
    return "*" * (len(value) - 4) + value[-4:]
