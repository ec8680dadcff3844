"""Encryption of definition configs at rest.

Encrypted configs are stored as an envelope::

    {"__rf_encrypted": true, "value": "<iv hex>:<tag hex>:<ciphertext hex>"}

The plaintext is the JSON serialization of the config, sealed with
AES-256-GCM. In ``none`` mode configs pass through untouched in both
directions.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..core.config import Settings
from ..errors import ConfigDecryptionError, DriverConfigError

ENCRYPTED_MARKER = "__rf_encrypted"

_AAD = b"relayflow-config"
_IV_BYTES = 12
_TAG_BYTES = 16


class EncryptionMode(str, Enum):
    NONE = "none"
    AES_GCM = "aes-gcm"


@dataclass(frozen=True)
class ConfigEncryption:
    mode: EncryptionMode = EncryptionMode.NONE
    master_key: Optional[bytes] = None

    @property
    def enabled(self) -> bool:
        return self.mode == EncryptionMode.AES_GCM and self.master_key is not None


NO_ENCRYPTION = ConfigEncryption()


def resolve_config_encryption(settings: Settings) -> ConfigEncryption:
    """Build the encryption options from settings.

    Raises:
        DriverConfigError: If aes-gcm is requested with a missing or malformed key.
    """
    cfg = settings.encryption
    if cfg.mode != EncryptionMode.AES_GCM.value:
        return NO_ENCRYPTION
    if not cfg.master_key_b64:
        raise DriverConfigError("ENCRYPTION_MASTER_KEY_B64 is required when ENCRYPTION_MODE=aes-gcm")
    try:
        master_key = base64.b64decode(cfg.master_key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DriverConfigError(f"Failed to decode ENCRYPTION_MASTER_KEY_B64: {e}") from e
    if len(master_key) != 32:
        raise DriverConfigError("ENCRYPTION_MASTER_KEY_B64 must decode to 32 bytes for aes-gcm")
    return ConfigEncryption(mode=EncryptionMode.AES_GCM, master_key=master_key)


def encrypt_value(value: str, master_key: bytes) -> str:
    iv = os.urandom(_IV_BYTES)
    sealed = AESGCM(master_key).encrypt(iv, value.encode("utf-8"), _AAD)
    ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    return f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"


def decrypt_value(encrypted: str, master_key: bytes) -> str:
    parts = encrypted.split(":")
    if len(parts) != 3:
        raise ConfigDecryptionError("Invalid encrypted value format")
    try:
        iv, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        plain = AESGCM(master_key).decrypt(iv, ciphertext + tag, _AAD)
    except (ValueError, InvalidTag) as e:
        raise ConfigDecryptionError("Encrypted config could not be decrypted") from e
    return plain.decode("utf-8")


def is_encrypted_config(value: Any) -> bool:
    return isinstance(value, dict) and ENCRYPTED_MARKER in value


def encrypt_config(value: Any, opts: ConfigEncryption) -> Any:
    """Wrap ``value`` in an encryption envelope when encryption is enabled."""
    if value is None or not opts.enabled:
        return value
    assert opts.master_key is not None
    return {ENCRYPTED_MARKER: True, "value": encrypt_value(json.dumps(value), opts.master_key)}


def decrypt_config(value: Any, opts: ConfigEncryption) -> Any:
    """Unwrap an encryption envelope.

    Plain (unmarked) configs are returned as-is, also in aes-gcm mode, so
    definitions written before encryption was enabled keep working.

    Raises:
        ConfigDecryptionError: If the envelope is present but cannot be opened.
    """
    if value is None or not is_encrypted_config(value):
        return value
    if not opts.enabled:
        raise ConfigDecryptionError("config is encrypted but encryption is not configured")
    assert opts.master_key is not None
    payload = value.get("value")
    if not payload:
        return None
    try:
        return json.loads(decrypt_value(str(payload), opts.master_key))
    except json.JSONDecodeError as e:
        raise ConfigDecryptionError("Decrypted config is not valid JSON") from e
