"""Root-of-trust protection for master secrets.

Only master secrets go through here; API keys are encrypted with
`DataEncryption` keyed by a master secret.

The default `KeyFileSecureStorage` keeps its Fernet key in config/, apart
from the databases in db/, so a copied database alone does not expose the
master secret. It is weaker than an OS keychain: anything running as the
same user can read the key file. No keychain backend ships with the core;
a platform build passes its own `SecureStorage` to `DatabaseManager`.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)


class SecureStorageError(Exception):
    """Secure storage is unavailable or a protected value cannot be recovered."""


class SecureStorage(Protocol):
    def is_available(self) -> bool: ...

    def encrypt_string(self, plaintext: str) -> bytes: ...

    def decrypt_string(self, ciphertext: bytes) -> str: ...


class KeyFileSecureStorage:
    """Protect strings with a Fernet key kept in a user-only key file."""

    def __init__(self, key_path: Path) -> None:
        self.key_path = Path(key_path)
        self._fernet: Fernet | None = None

    def _load_or_create_key(self) -> Fernet:
        if self._fernet is not None:
            return self._fernet

        if self.key_path.exists():
            if os.name == "posix":
                mode = self.key_path.stat().st_mode & 0o777
                if mode & 0o077:
                    raise SecureStorageError(
                        f"Secure storage key has insecure permissions: {oct(mode)} "
                        f"(run: chmod 600 {self.key_path})"
                    )
            key = self.key_path.read_bytes().strip()
        else:
            key = Fernet.generate_key()
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(key)
            logger.info("Created secure storage key at %s", self.key_path)

        try:
            self._fernet = Fernet(key)
        except ValueError as exc:
            raise SecureStorageError(f"Secure storage key at {self.key_path} is invalid") from exc
        return self._fernet

    def is_available(self) -> bool:
        try:
            self._load_or_create_key()
        except (OSError, SecureStorageError):
            logger.warning("Secure storage is not available at %s", self.key_path)
            return False
        return True

    def encrypt_string(self, plaintext: str) -> bytes:
        try:
            fernet = self._load_or_create_key()
        except OSError as exc:
            raise SecureStorageError(f"Secure storage key unreadable: {exc}") from exc
        return fernet.encrypt(plaintext.encode("utf-8"))

    def decrypt_string(self, ciphertext: bytes) -> str:
        try:
            fernet = self._load_or_create_key()
        except OSError as exc:
            raise SecureStorageError(f"Secure storage key unreadable: {exc}") from exc

        try:
            return fernet.decrypt(ciphertext).decode("utf-8")
        except (InvalidToken, TypeError, ValueError) as exc:
            raise SecureStorageError("Failed to decrypt value from secure storage") from exc
