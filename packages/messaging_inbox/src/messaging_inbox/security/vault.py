"""
Credential Vault

AES-256-GCM encryption for channel credentials stored in the database.

Stored format: base64(iv):base64(auth_tag):base64(ciphertext)
"""

import base64
import binascii
import functools
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from basecore.settings import get_settings

IV_LENGTH = 16
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000


class DecryptionError(Exception):
    """Stored credential could not be decrypted (malformed or tampered)."""


def derive_key(secret: str) -> bytes:
    """
    Turn the configured secret into a 256-bit key.

    A 64-character hex string is used as the raw key. Anything else is
    treated as a passphrase and stretched with PBKDF2-SHA256, salted with
    its own first 64 characters.
    """
    if not secret:
        raise ValueError("ENCRYPTION_KEY is not configured")

    if len(secret) == 64:
        try:
            return bytes.fromhex(secret)
        except ValueError:
            pass

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=secret[:64].encode("utf-8"),
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


class CredentialVault:
    """Encrypts and decrypts credential strings with one workspace-wide key."""

    def __init__(self, secret: str):
        self._aesgcm = AESGCM(derive_key(secret))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a credential. Empty input stays empty."""
        if not plaintext:
            return ""

        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return ":".join(base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext))

    def decrypt(self, token: str) -> str:
        """
        Decrypt a stored credential.

        Raises:
            DecryptionError: On a malformed triplet or authentication failure
        """
        if not token:
            return ""

        parts = token.split(":")
        if len(parts) != 3:
            raise DecryptionError("Decryption failed: invalid encrypted format")

        try:
            iv, tag, ciphertext = (base64.b64decode(part, validate=True) for part in parts)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Decryption failed: {e}") from e

        if len(iv) != IV_LENGTH or len(tag) != TAG_LENGTH:
            raise DecryptionError("Decryption failed: invalid iv or tag length")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Decryption failed: authentication tag mismatch") from e

        return plaintext.decode("utf-8")


@functools.lru_cache()
def get_vault() -> CredentialVault:
    """Get the vault keyed by ENCRYPTION_KEY (cached)."""
    return CredentialVault(get_settings().ENCRYPTION_KEY)
