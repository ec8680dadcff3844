from __future__ import annotations

"""Capability registry.

The registry maps capability ids to the plugin-provided entries that can build
runtimes for them.

The trigger runtime manager resolves ``TriggerDefinition.capability_id``
through ``get_trigger``; the action executor resolves action definitions
through ``get_action``. Registry state lives only in memory and is rebuilt
from plugin discovery when the process starts.
"""

import logging
import threading
from typing import Dict, List, Optional

from ..errors import (
    CapabilityNotFoundError,
    DuplicateCapabilityError,
    InvalidCapabilityError,
)
from ..schemas.domain import CapabilityKind
from .base import ActionCapabilityEntry, CapabilityEntry, TriggerCapabilityEntry

logger = logging.getLogger(__name__)


class CapabilityRegistry:
    """
    In-memory mapping of capability ids to registry entries.

    Entries are owned by plugins so that unloading or replacing a plugin can
    drop all of its capabilities in one step.

    Notes:
        - ``register_trigger``/``register_action`` never overwrite; a second
          registration of the same capability id raises ``DuplicateCapabilityError``.
        - Lookups raise ``CapabilityNotFoundError`` when the id is unknown or
          refers to the other kind.
        - All methods are safe to call from multiple threads.
    """

    def __init__(self) -> None:
        """Initialize an empty capability registry."""
        self._lock = threading.RLock()
        self._by_id: Dict[str, CapabilityEntry] = {}
        self._by_plugin: Dict[str, List[str]] = {}

    def register_trigger(self, entry: TriggerCapabilityEntry) -> None:
        """
        Register a TRIGGER capability.

        Args:
            entry: The trigger entry (plugin name, capability id, descriptor, factory).

        Raises:
            InvalidCapabilityError: If the descriptor is not a TRIGGER or the factory is not callable.
            DuplicateCapabilityError: If the capability id is already registered.
        """
        if not isinstance(entry, TriggerCapabilityEntry):
            raise InvalidCapabilityError(f"expected a TriggerCapabilityEntry, got {type(entry).__name__}")
        self._register(entry)

    def register_action(self, entry: ActionCapabilityEntry) -> None:
        """
        Register an ACTION capability.

        Args:
            entry: The action entry (plugin name, capability id, descriptor, factory).

        Raises:
            InvalidCapabilityError: If the descriptor is not an ACTION or the factory is not callable.
            DuplicateCapabilityError: If the capability id is already registered.
        """
        if not isinstance(entry, ActionCapabilityEntry):
            raise InvalidCapabilityError(f"expected an ActionCapabilityEntry, got {type(entry).__name__}")
        self._register(entry)

    def register(self, entry: CapabilityEntry) -> None:
        """Register an entry of either kind."""
        if isinstance(entry, TriggerCapabilityEntry):
            self.register_trigger(entry)
        else:
            self.register_action(entry)

    def _register(self, entry: CapabilityEntry) -> None:
        if not entry.plugin_name or not entry.capability_id:
            raise InvalidCapabilityError("plugin name and capability id are required")
        if entry.capability.kind != entry.kind:
            raise InvalidCapabilityError(
                f"capability '{entry.capability_id}' declares kind {entry.capability.kind.value} "
                f"but was registered as {entry.kind.value}"
            )
        if not callable(entry.factory):
            raise InvalidCapabilityError(f"factory for capability '{entry.capability_id}' is not callable")

        with self._lock:
            if entry.capability_id in self._by_id:
                raise DuplicateCapabilityError(entry.plugin_name, entry.capability_id)
            self._by_id[entry.capability_id] = entry
            self._by_plugin.setdefault(entry.plugin_name, []).append(entry.capability_id)

        logger.debug(
            "Registered %s capability %s",
            entry.kind.value,
            entry.capability_id,
            extra={"plugin_name": entry.plugin_name, "capability_key": entry.capability.key},
        )

    def remove_plugin(self, plugin_name: str) -> List[str]:
        """
        Remove every capability owned by a plugin.

        Idempotent: removing an unknown plugin is a no-op.

        Args:
            plugin_name: The plugin whose capabilities should be dropped.

        Returns:
            The ids of the removed capabilities.
        """
        with self._lock:
            ids = self._by_plugin.pop(plugin_name, [])
            for capability_id in ids:
                self._by_id.pop(capability_id, None)
        if ids:
            logger.info("Removed %d capabilities of plugin %s", len(ids), plugin_name)
        return list(ids)

    def get_trigger(self, capability_id: str) -> TriggerCapabilityEntry:
        """
        Retrieve a TRIGGER capability by id.

        Raises:
            CapabilityNotFoundError: If no trigger capability is registered with the id.
        """
        entry = self._by_id.get(capability_id)
        if not isinstance(entry, TriggerCapabilityEntry):
            raise CapabilityNotFoundError(capability_id, CapabilityKind.TRIGGER.value)
        return entry

    def get_action(self, capability_id: str) -> ActionCapabilityEntry:
        """
        Retrieve an ACTION capability by id.

        Raises:
            CapabilityNotFoundError: If no action capability is registered with the id.
        """
        entry = self._by_id.get(capability_id)
        if not isinstance(entry, ActionCapabilityEntry):
            raise CapabilityNotFoundError(capability_id, CapabilityKind.ACTION.value)
        return entry

    def has(self, capability_id: str) -> bool:
        return capability_id in self._by_id

    def list_capabilities(self, kind: Optional[CapabilityKind] = None) -> List[CapabilityEntry]:
        """List registered entries, optionally filtered by kind."""
        with self._lock:
            entries = list(self._by_id.values())
        if kind is None:
            return entries
        return [e for e in entries if e.kind == kind]

    def plugins(self) -> List[str]:
        with self._lock:
            return sorted(self._by_plugin)

    def capability_ids_for(self, plugin_name: str) -> List[str]:
        with self._lock:
            return list(self._by_plugin.get(plugin_name, []))
