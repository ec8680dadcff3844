from __future__ import annotations

"""Process-wide application context.

``RelayflowApp`` owns one capability registry, one queue, one trigger runtime
manager and one action consumer, constructed explicitly and torn down with
``shutdown()``:

- ``start()``: register plugins, load the queue driver, start the consumer,
  start all enabled triggers.
- ``shutdown()``: stop the triggers, stop the queue (in-flight work
  finishes), wait for the consumer to go idle, dispose the database engine.

Typical use::

    async with RelayflowApp.from_settings(get_settings()) as app:
        ...
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncEngine

from .capabilities.registry import CapabilityRegistry
from .core.config import Settings
from .core.logging_config import setup_logging
from .crypto.config_encryption import NO_ENCRYPTION, ConfigEncryption, resolve_config_encryption
from .plugins.loader import (
    load_builtin_plugins,
    load_plugins,
    register_plugin,
    registered_plugin_name,
    reload_plugin,
)
from .queue.base import Queue
from .queue.loader import load_queue
from .repos.interfaces import (
    ActionDefinitionRepository,
    ActionInvocationRepository,
    TriggerBindingRepository,
    TriggerDefinitionRepository,
    TriggerEventRepository,
)
from .repos.memory import MemoryRepoBundle, build_memory_repos
from .repos.sql import SqlRepoBundle, build_sql_repos, create_all, create_engine, create_sessionmaker
from .runtime.action_consumer import ActionConsumer, ExecuteActionFn
from .runtime.action_executor import PluginActionExecutor
from .runtime.trigger_manager import TriggerRuntimeManager
from .runtime.trigger_runner import TriggerRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RelayflowDeps:
    """Repositories the runtime reads and writes.

    Built from a ``MemoryRepoBundle`` / ``SqlRepoBundle`` with ``from_bundle``
    or assembled by hand from any implementation of the repository Protocols.
    """

    trigger_definitions: TriggerDefinitionRepository
    action_definitions: ActionDefinitionRepository
    bindings: TriggerBindingRepository
    trigger_events: TriggerEventRepository
    invocations: ActionInvocationRepository

    @classmethod
    def from_bundle(cls, bundle: Union[MemoryRepoBundle, SqlRepoBundle]) -> "RelayflowDeps":
        return cls(
            trigger_definitions=bundle.trigger_definitions,
            action_definitions=bundle.action_definitions,
            bindings=bundle.bindings,
            trigger_events=bundle.trigger_events,
            invocations=bundle.invocations,
        )


class RelayflowApp:
    """Wire registry, queue, trigger manager and consumer for one process."""

    def __init__(
        self,
        *,
        deps: RelayflowDeps,
        registry: Optional[CapabilityRegistry] = None,
        queue: Optional[Queue] = None,
        queue_driver: Optional[str] = None,
        queue_driver_path: Optional[str] = None,
        queue_config: Optional[Dict[str, Any]] = None,
        encryption: ConfigEncryption = NO_ENCRYPTION,
        plugins_path: Optional[str] = None,
        include_builtin_plugins: bool = True,
        execute_action: Optional[ExecuteActionFn] = None,
        engine: Optional[AsyncEngine] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.deps = deps
        self.registry = registry or CapabilityRegistry()
        self.encryption = encryption
        self.plugins_path = plugins_path
        self.include_builtin_plugins = include_builtin_plugins
        self.settings = settings

        self._queue = queue
        self._queue_driver = queue_driver
        self._queue_driver_path = queue_driver_path
        self._queue_config = queue_config
        self._execute_action = execute_action
        self._engine = engine

        self._runner: Optional[TriggerRunner] = None
        self._manager: Optional[TriggerRuntimeManager] = None
        self._consumer: Optional[ActionConsumer] = None
        self._started = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "RelayflowApp":
        """Build an app from ``Settings``.

        ``DATABASE_URL`` selects the SQL repositories; without it the
        in-memory repositories are used.

        Raises:
            DriverConfigError: If the encryption settings are unusable.
        """
        engine: Optional[AsyncEngine] = None
        bundle: Union[MemoryRepoBundle, SqlRepoBundle]
        if settings.database_url:
            engine = create_engine(settings.database_url)
            bundle = build_sql_repos(session_factory=create_sessionmaker(engine))
        else:
            bundle = build_memory_repos()
        return cls(
            deps=RelayflowDeps.from_bundle(bundle),
            queue_driver=settings.queue_driver,
            queue_driver_path=settings.queue_driver_path,
            queue_config=settings.queue_config_json,
            encryption=resolve_config_encryption(settings),
            plugins_path=settings.plugins_path,
            include_builtin_plugins=settings.load_builtin_plugins,
            engine=engine,
            settings=settings,
        )

    # ------------------------------------------------------------------
    # Accessors (valid after start())
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    @property
    def queue(self) -> Queue:
        return self._require(self._queue, "queue")

    @property
    def runner(self) -> TriggerRunner:
        return self._require(self._runner, "runner")

    @property
    def manager(self) -> TriggerRuntimeManager:
        return self._require(self._manager, "manager")

    @property
    def consumer(self) -> ActionConsumer:
        return self._require(self._consumer, "consumer")

    def _require(self, value: Any, name: str) -> Any:
        if value is None:
            raise RuntimeError(f"RelayflowApp.{name} is only available after start()")
        return value

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._started:
            return
        if self.settings is not None:
            log_cfg = self.settings.logging
            setup_logging(log_cfg.level, log_cfg.format, log_cfg.enable_file, log_cfg.file_dir)
        if self._engine is not None:
            await create_all(self._engine)

        self._register_plugins()

        if self._queue is None:
            loaded = await load_queue(self._queue_driver, self._queue_driver_path, self._queue_config)
            self._queue = loaded.instance
            logger.info("Queue driver loaded: %s", loaded.name)

        self._runner = TriggerRunner(
            events=self.deps.trigger_events,
            bindings=self.deps.bindings,
            action_definitions=self.deps.action_definitions,
            queue=self._queue,
        )
        self._consumer = ActionConsumer(
            queue=self._queue,
            invocations=self.deps.invocations,
            execute_action=self._execute_action
            or PluginActionExecutor(
                action_definitions=self.deps.action_definitions,
                registry=self.registry,
                encryption=self.encryption,
            ),
        )
        self._manager = TriggerRuntimeManager(
            definitions=self.deps.trigger_definitions,
            registry=self.registry,
            fire_trigger=self._runner.fire_trigger,
            encryption=self.encryption,
        )

        self._started = True
        await self._consumer.start()
        await self._manager.start_all()
        logger.info("Relayflow started")

    async def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        if self._manager is not None:
            await self._manager.stop_all()
        try:
            if self._queue is not None:
                await self._queue.stop()
            if self._consumer is not None:
                await self._consumer.wait_idle()
        finally:
            if self._engine is not None:
                await self._engine.dispose()
        logger.info("Relayflow stopped")

    async def __aenter__(self) -> "RelayflowApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Plugins
    # ------------------------------------------------------------------

    def _register_plugins(self) -> None:
        plugins = load_builtin_plugins() if self.include_builtin_plugins else []
        if self.plugins_path:
            plugins.extend(load_plugins(self.plugins_path))
        for plugin in plugins:
            if plugin.name in self.registry.plugins():
                continue
            try:
                register_plugin(self.registry, plugin)
            except Exception as e:
                logger.error("Failed to register plugin", extra={"plugin_name": plugin.name, "error": str(e)})

    async def reload_plugin(self, name: str) -> List[str]:
        """Hot-reload a plugin from ``plugins_path``.

        ``name`` is the plugin's directory or module name; runtimes are matched
        by the name the plugin registered under (its ``NAME`` when set).
        Runtimes built by the plugin are stopped first and reloaded afterwards,
        also when the new version fails to load, in which case they restart on
        whatever capabilities are still registered and the error propagates.

        Returns:
            Ids of the trigger definitions that were restarted.
        """
        if not self.plugins_path:
            raise RuntimeError("reload_plugin requires a plugins_path")
        stopped = await self.manager.remove_plugin_triggers(registered_plugin_name(name))
        try:
            reload_plugin(self.registry, self.plugins_path, name)
        finally:
            for definition_id in stopped:
                await self.manager.reload_trigger(definition_id)
        return stopped
