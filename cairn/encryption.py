"""
Symmetric encryption of secret strings.

Keys are derived from the scope password in one of two ways:
- with a salt: scrypt over (password, salt), a slow password hash
- without a salt: BLAKE2b over the password, for records written before
  the stage had a salt

Ciphertext is ``base64(nonce || ChaCha20-Poly1305(value))``.
"""

import base64
import binascii
import hashlib
import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import DecryptionError

logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 12
SALT_BYTES = 16

# Interactive-strength scrypt parameters
SCRYPT_N = 2**14
SCRYPT_R = 8
SCRYPT_P = 1


def generate_salt() -> str:
    """Return a fresh random salt, base64-encoded."""
    return base64.b64encode(os.urandom(SALT_BYTES)).decode("ascii")


@lru_cache(maxsize=64)
def derive_key(password: str, salt: str | None = None) -> bytes:
    """Derive a 32-byte key from ``password`` (and ``salt`` if given).

    Derived keys are cached, so the slow path is paid once per
    (password, salt) pair and not once per secret.
    """
    if salt is None:
        return hashlib.blake2b(password.encode("utf-8"), digest_size=KEY_BYTES).digest()

    kdf = Scrypt(
        salt=base64.b64decode(salt),
        length=KEY_BYTES,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt(value: str, key: str, salt: str | None = None) -> str:
    """Encrypt ``value`` with a key derived from ``key``.

    Args:
        value: Plaintext to encrypt
        key: Password to derive the encryption key from
        salt: Optional base64 salt enabling the slow key derivation

    Returns:
        Base64 of nonce followed by the authenticated ciphertext. A fresh
        nonce is drawn per call, so equal inputs give different outputs.
    """
    nonce = os.urandom(NONCE_BYTES)
    ciphertext = ChaCha20Poly1305(derive_key(key, salt)).encrypt(
        nonce, value.encode("utf-8"), None
    )
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt(encrypted_value: str, key: str, salt: str | None = None) -> str:
    """Decrypt a value produced by ``encrypt``.

    When a salt is given and the salted key does not open the box, the
    unsalted key is tried as well so values encrypted before the salt
    existed still decrypt.

    Raises:
        DecryptionError: If the ciphertext is malformed, tampered with, or
            the key is wrong
    """
    try:
        combined = base64.b64decode(encrypted_value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(f"Encrypted value is not valid base64: {e}") from e

    if len(combined) <= NONCE_BYTES:
        raise DecryptionError("Encrypted value is too short")

    nonce, ciphertext = combined[:NONCE_BYTES], combined[NONCE_BYTES:]

    candidates = [salt, None] if salt is not None else [None]
    for candidate in candidates:
        try:
            plaintext = ChaCha20Poly1305(derive_key(key, candidate)).decrypt(
                nonce, ciphertext, None
            )
        except InvalidTag:
            continue
        if candidate is None and salt is not None:
            logger.debug("Decrypted a value written before the salt existed")
        return plaintext.decode("utf-8")

    raise DecryptionError("Failed to decrypt value: wrong password or corrupted data")
