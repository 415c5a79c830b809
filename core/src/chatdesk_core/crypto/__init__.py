from chatdesk_core.crypto.encryption import (
    DataEncryption,
    DecryptionError,
    DecryptPolicy,
    decrypt_with_policy,
)
from chatdesk_core.crypto.key_manager import EncryptionKeyManager
from chatdesk_core.crypto.secure_storage import (
    KeyFileSecureStorage,
    SecureStorage,
    SecureStorageError,
)

__all__ = [
    "DataEncryption",
    "DecryptPolicy",
    "DecryptionError",
    "EncryptionKeyManager",
    "KeyFileSecureStorage",
    "SecureStorage",
    "SecureStorageError",
    "decrypt_with_policy",
]
