from __future__ import annotations

import base64

import pytest

from relayflow.core.config import Settings
from relayflow.crypto.config_encryption import (
    ENCRYPTED_MARKER,
    NO_ENCRYPTION,
    ConfigEncryption,
    EncryptionMode,
    decrypt_config,
    decrypt_value,
    encrypt_config,
    encrypt_value,
    is_encrypted_config,
    resolve_config_encryption,
)
from relayflow.errors import ConfigDecryptionError, DriverConfigError

KEY = bytes(range(32))
ENABLED = ConfigEncryption(mode=EncryptionMode.AES_GCM, master_key=KEY)


def test_encrypt_config_produces_envelope_that_decrypts() -> None:
    sealed = encrypt_config({"token": "abc", "n": 1}, ENABLED)

    assert is_encrypted_config(sealed)
    assert sealed[ENCRYPTED_MARKER] is True
    assert "abc" not in sealed["value"]
    assert len(sealed["value"].split(":")) == 3
    assert decrypt_config(sealed, ENABLED) == {"token": "abc", "n": 1}


def test_each_encryption_uses_a_fresh_iv() -> None:
    assert encrypt_value("same", KEY) != encrypt_value("same", KEY)


def test_none_mode_passes_configs_through() -> None:
    config = {"token": "abc"}
    assert encrypt_config(config, NO_ENCRYPTION) is config
    assert decrypt_config(config, NO_ENCRYPTION) is config
    assert decrypt_config(None, ENABLED) is None


def test_plain_config_passes_through_in_aes_mode() -> None:
    assert decrypt_config({"plain": True}, ENABLED) == {"plain": True}


def test_envelope_without_encryption_configured_fails() -> None:
    sealed = encrypt_config({"a": 1}, ENABLED)
    with pytest.raises(ConfigDecryptionError):
        decrypt_config(sealed, NO_ENCRYPTION)


def test_wrong_key_fails() -> None:
    sealed = encrypt_config({"a": 1}, ENABLED)
    other = ConfigEncryption(mode=EncryptionMode.AES_GCM, master_key=b"\x01" * 32)
    with pytest.raises(ConfigDecryptionError):
        decrypt_config(sealed, other)


@pytest.mark.parametrize("value", ["only-two:parts", "zz:zz:zz", "00:00:00"])
def test_malformed_ciphertext_fails(value: str) -> None:
    with pytest.raises(ConfigDecryptionError):
        decrypt_value(value, KEY)


def test_resolve_from_settings_none_mode() -> None:
    assert resolve_config_encryption(Settings()) == NO_ENCRYPTION


def test_resolve_from_settings_aes_mode() -> None:
    settings = Settings(ENCRYPTION_MODE="aes-gcm", ENCRYPTION_MASTER_KEY_B64=base64.b64encode(KEY).decode())
    resolved = resolve_config_encryption(settings)
    assert resolved.enabled is True
    assert resolved.master_key == KEY


@pytest.mark.parametrize(
    "key_b64",
    [None, "not base64!!", base64.b64encode(b"short").decode()],
)
def test_resolve_rejects_bad_keys(key_b64) -> None:
    settings = Settings(ENCRYPTION_MODE="aes-gcm", ENCRYPTION_MASTER_KEY_B64=key_b64)
    with pytest.raises(DriverConfigError):
        resolve_config_encryption(settings)
