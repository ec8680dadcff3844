from __future__ import annotations

"""Trigger runtime manager.

``TriggerRuntimeManager`` keeps exactly one live runtime per enabled trigger
definition.

Lifecycle
---------

Per definition the manager moves through::

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
    RUNNING -> RELOADING -> RUNNING

- ``start_all`` starts every enabled definition. A definition whose capability
  is missing, whose config cannot be decrypted, or whose factory/``start()``
  fails is logged and left STOPPED; the others still start.
- ``reload_trigger`` re-reads one definition, stops its runtime and starts a
  new one with the fresh config.
- ``stop_all`` stops everything; individual stop failures are logged. Starts
  begun before ``stop_all`` either do not happen or are undone once their
  ``start()`` returns.

Concurrency
-----------

Lifecycle operations on the same definition id are serialized by a
per-definition ``asyncio.Lock``; different ids proceed independently. Locks
only exist while some caller holds or waits for them.
``emit`` calls of one runtime are serialized by a separate per-definition lock
so events are persisted in call order, and so a runtime may emit from inside
its own ``start()``.

Emit wiring
-----------

Each runtime receives ``services.emit``. Calling it hands the payload to the
injected ``fire_trigger(definition_id, payload)``, which persists the trigger
event and enqueues the dispatch messages, and returns the event id. Emits
from a runtime that has been stopped or replaced are ignored.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from ..capabilities.base import (
    TriggerCapabilityEntry,
    TriggerRuntime,
    TriggerRuntimeContext,
    TriggerRuntimeServices,
)
from ..capabilities.registry import CapabilityRegistry
from ..core.aio import maybe_await
from ..core.logging_config import create_plugin_logger
from ..crypto.config_encryption import NO_ENCRYPTION, ConfigEncryption, decrypt_config
from ..errors import InvalidTriggerRuntimeError
from ..repos.interfaces import TriggerDefinitionRepository
from ..schemas.domain import TriggerDefinition, TriggerEmitPayload, TriggerRuntimeState

logger = logging.getLogger(__name__)

FireTriggerFn = Callable[[str, TriggerEmitPayload], Awaitable[str]]
"""
FireTriggerFn:
    ``fire_trigger(definition_id, payload) -> event_id``. Persists the trigger
    event, resolves the bound actions and enqueues their dispatch messages.
"""


@dataclass(frozen=True)
class ManagedTrigger:
    """A started runtime and the registry entry that built it."""

    definition_id: str
    entry: TriggerCapabilityEntry
    runtime: TriggerRuntime
    token: object

    @property
    def plugin_name(self) -> str:
        return self.entry.plugin_name


class _KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def busy(self) -> List[str]:
        """Keys currently held or awaited."""
        return list(self._users)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users[key] - 1
            if remaining:
                self._users[key] = remaining
            else:
                del self._users[key]
                del self._locks[key]


class TriggerRuntimeManager:
    """Supervise the runtime of every enabled trigger definition.

    The manager is dependency-injected:

    - ``definitions``: where trigger definitions are read from.
    - ``registry``: resolves ``capability_id`` to a trigger factory.
    - ``fire_trigger``: called by every ``emit``.
    - ``encryption``: decrypts definition configs before factories see them.
    """

    def __init__(
        self,
        *,
        definitions: TriggerDefinitionRepository,
        registry: CapabilityRegistry,
        fire_trigger: FireTriggerFn,
        encryption: ConfigEncryption = NO_ENCRYPTION,
    ) -> None:
        self._definitions = definitions
        self._registry = registry
        self._fire_trigger = fire_trigger
        self._encryption = encryption

        self._runtimes: Dict[str, ManagedTrigger] = {}
        self._states: Dict[str, TriggerRuntimeState] = {}
        self._active_tokens: Dict[str, object] = {}
        self._locks = _KeyedLocks()
        self._emit_locks = _KeyedLocks()
        # Bumped by stop_all; a start begun under an older epoch is abandoned.
        self._epoch = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def state(self, definition_id: str) -> TriggerRuntimeState:
        return self._states.get(definition_id, TriggerRuntimeState.STOPPED)

    def running_ids(self) -> List[str]:
        return sorted(self._runtimes)

    def get_runtime(self, definition_id: str) -> Optional[TriggerRuntime]:
        managed = self._runtimes.get(definition_id)
        return managed.runtime if managed is not None else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_all(self) -> List[str]:
        """Start a runtime for every enabled definition.

        Returns:
            Ids of the definitions whose runtime is running afterwards.
        """
        epoch = self._epoch
        definitions = await self._definitions.list_enabled()
        started: List[str] = []
        for definition in definitions:
            async with self._locks.hold(definition.id):
                if definition.id in self._runtimes:
                    started.append(definition.id)
                    continue
                if await self._start_definition(definition, epoch=epoch):
                    started.append(definition.id)
        logger.info(
            "Trigger runtimes started: %d of %d enabled definitions",
            len(started),
            len(definitions),
        )
        return started

    async def reload_trigger(self, definition_id: str) -> TriggerRuntimeState:
        """Restart one definition's runtime with its current persisted config.

        A definition that is missing or disabled only has its runtime removed.
        Concurrent reloads of the same id run one after the other.

        Returns:
            The definition's state once the reload has finished.
        """
        epoch = self._epoch
        async with self._locks.hold(definition_id):
            definition = await self._definitions.get(definition_id)
            existing = self._runtimes.get(definition_id)

            if definition is None or not definition.is_enabled:
                if existing is not None:
                    self._states[definition_id] = TriggerRuntimeState.STOPPING
                    await self._stop_managed(existing)
                    self._runtimes.pop(definition_id, None)
                self._states.pop(definition_id, None)
                logger.info(
                    "Trigger disabled or missing; runtime removed",
                    extra={"trigger_definition_id": definition_id},
                )
                return TriggerRuntimeState.STOPPED

            if existing is not None:
                self._states[definition_id] = TriggerRuntimeState.RELOADING
                await self._stop_managed(existing)
                self._runtimes.pop(definition_id, None)
            await self._start_definition(definition, epoch=epoch, reloading=existing is not None)
            return self.state(definition_id)

    async def stop_trigger(self, definition_id: str) -> None:
        """Stop one runtime if it is running. Failures are logged."""
        async with self._locks.hold(definition_id):
            managed = self._runtimes.pop(definition_id, None)
            if managed is None:
                return
            self._states[definition_id] = TriggerRuntimeState.STOPPING
            await self._stop_managed(managed)
            self._states.pop(definition_id, None)

    async def stop_all(self) -> None:
        """Stop every tracked runtime and every start still in progress.

        Never raises: a runtime whose ``stop()`` fails is logged and the rest
        are still stopped.
        """
        self._epoch += 1
        # Waiting on the lock of a busy id lets an in-flight start finish and
        # notice the new epoch before stop_trigger looks at it.
        ids = sorted(set(self._runtimes) | set(self._locks.busy()))
        results = await asyncio.gather(*(self.stop_trigger(i) for i in ids), return_exceptions=True)
        for definition_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error stopping trigger runtime",
                    exc_info=result,
                    extra={"trigger_definition_id": definition_id},
                )
        logger.info("Trigger runtimes stopped: %d", len(ids))

    async def notify_config_change(self, definition_id: str, config: Any) -> None:
        """Apply a changed config to a running runtime.

        Runtimes implementing ``on_config_change`` receive the decrypted config
        in place; others are reloaded.
        """
        async with self._locks.hold(definition_id):
            managed = self._runtimes.get(definition_id)
            if managed is None:
                return
            hook = getattr(managed.runtime, "on_config_change", None)
            if callable(hook):
                await maybe_await(hook(decrypt_config(config, self._encryption)))
                logger.info("Trigger config applied in place", extra={"trigger_definition_id": definition_id})
                return
        await self.reload_trigger(definition_id)

    async def remove_plugin_triggers(self, plugin_name: str) -> List[str]:
        """Stop every runtime built by ``plugin_name`` (before it is unloaded).

        Returns:
            Ids of the stopped definitions, so they can be reloaded once the
            plugin is registered again.
        """
        ids = [i for i, m in list(self._runtimes.items()) if m.plugin_name == plugin_name]
        for definition_id in ids:
            await self.stop_trigger(definition_id)
        return ids

    # ------------------------------------------------------------------
    # Internals (callers hold the definition lock)
    # ------------------------------------------------------------------

    async def _start_definition(self, definition: TriggerDefinition, *, epoch: int, reloading: bool = False) -> bool:
        definition_id = definition.id
        if epoch != self._epoch:
            self._states.pop(definition_id, None)
            logger.info(
                "Trigger start skipped; runtimes are shutting down",
                extra={"trigger_definition_id": definition_id},
            )
            return False
        if not reloading:
            self._states[definition_id] = TriggerRuntimeState.STARTING
        token = object()
        self._active_tokens[definition_id] = token
        try:
            entry = self._registry.get_trigger(definition.capability_id)
            plugin_logger = create_plugin_logger(entry.plugin_name, definition_id)
            context = TriggerRuntimeContext(
                definition_id=definition_id,
                capability_id=entry.capability_id,
                capability=entry.capability,
                plugin_name=entry.plugin_name,
                config=decrypt_config(definition.config, self._encryption),
                services=TriggerRuntimeServices(
                    logger=plugin_logger,
                    emit=self._make_emit(definition_id, entry, token),
                ),
            )
            runtime = await maybe_await(entry.factory(context))
            if not (callable(getattr(runtime, "start", None)) and callable(getattr(runtime, "stop", None))):
                raise InvalidTriggerRuntimeError(
                    f"Trigger runtime for capability '{entry.capability_id}' must implement start() and stop() methods"
                )
            await runtime.start()
        except Exception as e:
            if self._active_tokens.get(definition_id) is token:
                self._active_tokens.pop(definition_id, None)
            self._states.pop(definition_id, None)
            logger.error(
                "Failed to start trigger runtime",
                exc_info=True,
                extra={
                    "trigger_definition_id": definition_id,
                    "capability_id": definition.capability_id,
                    "error": str(e),
                },
            )
            return False

        managed = ManagedTrigger(definition_id=definition_id, entry=entry, runtime=runtime, token=token)
        if epoch != self._epoch:
            # stop_all ran while start() was in progress.
            self._states[definition_id] = TriggerRuntimeState.STOPPING
            await self._stop_managed(managed)
            self._states.pop(definition_id, None)
            logger.info(
                "Trigger runtime stopped right after start; runtimes are shutting down",
                extra={"trigger_definition_id": definition_id},
            )
            return False

        self._runtimes[definition_id] = managed
        self._states[definition_id] = TriggerRuntimeState.RUNNING
        logger.info(
            "Trigger runtime %s",
            "reloaded" if reloading else "started",
            extra={"trigger_definition_id": definition_id, "plugin_name": entry.plugin_name},
        )
        return True

    async def _stop_managed(self, managed: ManagedTrigger) -> None:
        definition_id = managed.definition_id
        if self._active_tokens.get(definition_id) is managed.token:
            self._active_tokens.pop(definition_id, None)
        try:
            await managed.runtime.stop()
        except Exception as e:
            logger.warning(
                "Trigger runtime stop failed",
                extra={"trigger_definition_id": definition_id, "error": str(e)},
            )
        dispose = getattr(managed.runtime, "dispose", None)
        if callable(dispose):
            try:
                await maybe_await(dispose())
            except Exception as e:
                logger.warning(
                    "Trigger runtime dispose failed",
                    extra={"trigger_definition_id": definition_id, "error": str(e)},
                )

    def _make_emit(self, definition_id: str, entry: TriggerCapabilityEntry, token: object):
        audit = {
            "trigger_definition_id": definition_id,
            "plugin_name": entry.plugin_name,
            "capability_key": entry.capability.key,
        }

        async def emit(
            context: Union[TriggerEmitPayload, Mapping[str, Any], None] = None,
            *,
            metadata: Optional[Mapping[str, Any]] = None,
            scheduled_for: Optional[datetime] = None,
        ) -> Optional[str]:
            if isinstance(context, TriggerEmitPayload):
                payload = context
            else:
                payload = TriggerEmitPayload(
                    context=dict(context) if context is not None else None,
                    metadata=dict(metadata) if metadata is not None else None,
                    scheduled_for=scheduled_for,
                )
            async with self._emit_locks.hold(definition_id):
                if self._active_tokens.get(definition_id) is not token:
                    logger.warning("Ignoring emit from a stopped trigger runtime", extra=audit)
                    return None
                logger.debug("Trigger fire STARTED", extra=audit)
                try:
                    event_id = await self._fire_trigger(definition_id, payload)
                except Exception as e:
                    logger.warning("Trigger fire FAILED", extra={**audit, "error": str(e)})
                    raise
                logger.debug("Trigger fire SUCCEEDED", extra={**audit, "trigger_event_id": event_id})
                return event_id

        return emit
