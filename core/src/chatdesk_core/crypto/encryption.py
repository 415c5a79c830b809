from __future__ import annotations

import base64
import logging
from enum import Enum

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

DEFAULT_KDF_ITERATIONS = 480_000
KDF_SALT = b"chatdesk.api-keys.v1"


class DecryptionError(Exception):
    """Ciphertext is malformed or was produced under a different key."""


class DecryptPolicy(Enum):
    """What a read path does when stored ciphertext cannot be decrypted."""

    SKIP_ON_FAILURE = "skip_on_failure"
    FAIL_FAST = "fail_fast"


def derive_fernet_key(secret: str, *, iterations: int = DEFAULT_KDF_ITERATIONS) -> bytes:
    """Derive a Fernet-compatible key from a master secret using PBKDF2-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=KDF_SALT,
        iterations=iterations,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


class DataEncryption:
    """Symmetric string encryption under one master secret.

    Each call uses a fresh IV, so encrypting the same plaintext twice gives
    different tokens; only decrypt(encrypt(x)) == x is guaranteed.
    """

    def __init__(self, secret: str, *, iterations: int = DEFAULT_KDF_ITERATIONS) -> None:
        self._fernet = Fernet(derive_fernet_key(secret, iterations=iterations))

    def encrypt(self, data: str) -> str:
        return self._fernet.encrypt(data.encode("utf-8")).decode("ascii")

    def decrypt(self, encrypted_data: str) -> str:
        try:
            return self._fernet.decrypt(encrypted_data).decode("utf-8")
        except (InvalidToken, TypeError, ValueError) as exc:
            raise DecryptionError("Ciphertext could not be decrypted") from exc


def decrypt_with_policy(
    encryption: DataEncryption,
    encrypted_data: str,
    policy: DecryptPolicy,
    *,
    context: str,
) -> str | None:
    """Decrypt, applying `policy` on failure.

    SKIP_ON_FAILURE logs (never the ciphertext or key) and returns None;
    FAIL_FAST re-raises DecryptionError.
    """

    try:
        return encryption.decrypt(encrypted_data)
    except DecryptionError:
        if policy is DecryptPolicy.FAIL_FAST:
            raise
        logger.warning("Failed to decrypt %s; treating as not found", context)
        return None
