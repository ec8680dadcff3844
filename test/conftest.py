from __future__ import annotations

import sys
from typing import Any, AsyncIterator, Callable, Iterator, Optional

import pytest
import pytest_asyncio
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from relayflow.capabilities.base import ActionCapabilityEntry, TriggerCapabilityEntry
from relayflow.capabilities.registry import CapabilityRegistry
from relayflow.repos.memory import MemoryRepoBundle, build_memory_repos
from relayflow.repos.sql import SqlRepoBundle, build_sql_repos, create_all, create_engine, create_sessionmaker
from relayflow.schemas.domain import CapabilityDescriptor, CapabilityKind


class TestDatabaseConfig(BaseModel):
    """Database configuration container for tests."""

    url: str = Field(
        default="sqlite+aiosqlite:///:memory:",
        description="Test database connection URL (defaults to in-memory SQLite)",
    )


class TestSettings(BaseSettings):
    """Test environment settings, read from ``test/.env`` when present.

    Nested values use ``__`` as delimiter, e.g. ``DATABASE__URL``.
    """

    __test__ = False

    model_config = SettingsConfigDict(
        env_file="test/.env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    database: TestDatabaseConfig = Field(default_factory=TestDatabaseConfig)


@pytest.fixture(scope="session")
def test_config() -> TestSettings:
    """Fixture providing test configuration from Pydantic settings model."""
    return TestSettings()


@pytest.fixture(autouse=True)
def _isolated_relayflow_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "QUEUE_DRIVER",
        "QUEUE_DRIVER_PATH",
        "QUEUE_CONFIG_JSON",
        "DATABASE_URL",
        "ENCRYPTION_MODE",
        "ENCRYPTION_MASTER_KEY_B64",
        "PLUGINS_PATH",
        "RELAYFLOW_LOAD_BUILTIN_PLUGINS",
        "RELAYFLOW_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def registry() -> CapabilityRegistry:
    return CapabilityRegistry()


@pytest.fixture
def memory_repos() -> MemoryRepoBundle:
    return build_memory_repos()


@pytest_asyncio.fixture
async def sql_repos(test_config: TestSettings) -> AsyncIterator[SqlRepoBundle]:
    engine = create_engine(test_config.database.url)
    await create_all(engine)
    try:
        yield build_sql_repos(session_factory=create_sessionmaker(engine))
    finally:
        await engine.dispose()


@pytest.fixture
def trigger_entry() -> Callable[..., TriggerCapabilityEntry]:
    """Build a TRIGGER registry entry; the key defaults to the capability id."""

    def _make(
        plugin_name: str,
        capability_id: str,
        factory: Callable[..., Any],
        *,
        key: Optional[str] = None,
    ) -> TriggerCapabilityEntry:
        return TriggerCapabilityEntry(
            plugin_name=plugin_name,
            capability_id=capability_id,
            capability=CapabilityDescriptor(
                kind=CapabilityKind.TRIGGER, key=key or capability_id, display_name=capability_id
            ),
            factory=factory,
        )

    return _make


@pytest.fixture
def action_entry() -> Callable[..., ActionCapabilityEntry]:
    """Build an ACTION registry entry; the key defaults to the capability id."""

    def _make(
        plugin_name: str,
        capability_id: str,
        factory: Callable[..., Any],
        *,
        key: Optional[str] = None,
    ) -> ActionCapabilityEntry:
        return ActionCapabilityEntry(
            plugin_name=plugin_name,
            capability_id=capability_id,
            capability=CapabilityDescriptor(
                kind=CapabilityKind.ACTION, key=key or capability_id, display_name=capability_id
            ),
            factory=factory,
        )

    return _make


@pytest.fixture
def isolated_plugin_modules() -> Iterator[None]:
    """Forget plugin modules imported from temporary plugin directories."""
    yield
    for name in [n for n in sys.modules if n.startswith("relayflow_plugin_")]:
        sys.modules.pop(name, None)
