from __future__ import annotations

import pytest
from pydantic import ValidationError

from relayflow.core.config import EncryptionConfig, LoggingConfig, QueueConfig, Settings, get_settings


def test_defaults() -> None:
    settings = Settings()

    assert settings.queue_driver == "memory"
    assert settings.queue_driver_path is None
    assert settings.queue_config_json is None
    assert settings.database_url is None
    assert settings.encryption_mode == "none"
    assert settings.plugins_path == "plugins"
    assert settings.load_builtin_plugins is True


def test_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUEUE_DRIVER", "redis")
    monkeypatch.setenv("QUEUE_DRIVER_PATH", "my_pkg.queue")
    monkeypatch.setenv("QUEUE_CONFIG_JSON", '{"url": "redis://localhost", "max_size": 10}')
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("PLUGINS_PATH", "/srv/plugins")

    settings = get_settings()

    assert settings.queue_driver == "redis"
    assert settings.queue_driver_path == "my_pkg.queue"
    assert settings.queue_config_json == {"url": "redis://localhost", "max_size": 10}
    assert settings.database_url == "sqlite+aiosqlite:///:memory:"
    assert settings.plugins_path == "/srv/plugins"


def test_empty_queue_config_is_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUEUE_CONFIG_JSON", "")
    assert Settings().queue_config_json is None


def test_invalid_queue_config_json_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUEUE_CONFIG_JSON", "{not json")
    with pytest.raises(ValidationError):
        Settings()


def test_encryption_mode_normalized_and_validated() -> None:
    assert Settings(ENCRYPTION_MODE=" AES-GCM ").encryption_mode == "aes-gcm"
    with pytest.raises(ValidationError):
        Settings(ENCRYPTION_MODE="rot13")


def test_grouped_views() -> None:
    settings = Settings(
        QUEUE_DRIVER="custom",
        QUEUE_CONFIG_JSON={"a": 1},
        RELAYFLOW_LOG_LEVEL="DEBUG",
        ENCRYPTION_MODE="aes-gcm",
        ENCRYPTION_MASTER_KEY_B64="a2V5",
    )

    assert settings.queue == QueueConfig(driver="custom", driver_path=None, config={"a": 1})
    assert isinstance(settings.logging, LoggingConfig)
    assert settings.logging.level == "DEBUG"
    assert settings.encryption == EncryptionConfig(mode="aes-gcm", master_key_b64="a2V5")
