from .config_encryption import (
    NO_ENCRYPTION,
    ConfigEncryption,
    EncryptionMode,
    decrypt_config,
    encrypt_config,
    is_encrypted_config,
    resolve_config_encryption,
)

__all__ = [
    "NO_ENCRYPTION",
    "ConfigEncryption",
    "EncryptionMode",
    "decrypt_config",
    "encrypt_config",
    "is_encrypted_config",
    "resolve_config_encryption",
]
