from __future__ import annotations

"""In-memory repository implementations.

Used as the default persistence backend when no ``DATABASE_URL`` is set and as
the fake of choice in tests. ``MemoryStore`` keeps every table; the repository
classes are thin views over it so they can be injected separately.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..errors import DefinitionNotFoundError, InvalidStatusTransitionError
from ..schemas.domain import (
    ActionDefinition,
    ActionInvocation,
    InvocationStatus,
    TriggerActionBinding,
    TriggerDefinition,
    TriggerEvent,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MemoryStore:
    """Shared tables for the in-memory repositories."""

    trigger_definitions: Dict[str, TriggerDefinition] = field(default_factory=dict)
    action_definitions: Dict[str, ActionDefinition] = field(default_factory=dict)
    bindings: List[TriggerActionBinding] = field(default_factory=list)
    trigger_events: Dict[str, TriggerEvent] = field(default_factory=dict)
    invocations: Dict[str, ActionInvocation] = field(default_factory=dict)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def upsert_trigger_definition(self, definition: TriggerDefinition) -> TriggerDefinition:
        self.trigger_definitions[definition.id] = definition
        return definition

    def upsert_action_definition(self, definition: ActionDefinition) -> ActionDefinition:
        self.action_definitions[definition.id] = definition
        return definition

    def bind(self, trigger_definition_id: str, action_definition_id: str, *, sort_order: int = 0) -> None:
        self.bindings.append(
            TriggerActionBinding(
                trigger_definition_id=trigger_definition_id,
                action_definition_id=action_definition_id,
                sort_order=sort_order,
            )
        )


@dataclass(frozen=True)
class MemoryTriggerDefinitionRepository:
    store: MemoryStore

    async def list_enabled(self) -> list[TriggerDefinition]:
        return [d for d in self.store.trigger_definitions.values() if d.is_enabled]

    async def get(self, definition_id: str) -> Optional[TriggerDefinition]:
        return self.store.trigger_definitions.get(definition_id)


@dataclass(frozen=True)
class MemoryActionDefinitionRepository:
    store: MemoryStore

    async def get(self, definition_id: str) -> Optional[ActionDefinition]:
        return self.store.action_definitions.get(definition_id)


@dataclass(frozen=True)
class MemoryTriggerBindingRepository:
    store: MemoryStore

    async def list_for_trigger(self, trigger_definition_id: str) -> list[TriggerActionBinding]:
        bindings = [
            b for b in self.store.bindings if b.trigger_definition_id == trigger_definition_id and b.is_enabled
        ]
        return sorted(bindings, key=lambda b: b.sort_order)


@dataclass(frozen=True)
class MemoryTriggerEventRepository:
    store: MemoryStore

    async def create(self, *, trigger_definition_id: str, context: Optional[dict[str, Any]]) -> TriggerEvent:
        event = TriggerEvent(trigger_definition_id=trigger_definition_id, context=context)
        self.store.trigger_events[event.id] = event
        return event

    async def get(self, event_id: str) -> Optional[TriggerEvent]:
        return self.store.trigger_events.get(event_id)


@dataclass(frozen=True)
class MemoryActionInvocationRepository:
    store: MemoryStore

    async def create(
        self,
        *,
        action_definition_id: str,
        trigger_event_id: Optional[str] = None,
        manual_invoker_id: Optional[str] = None,
        attempt: int = 1,
    ) -> ActionInvocation:
        invocation = ActionInvocation(
            action_definition_id=action_definition_id,
            trigger_event_id=trigger_event_id,
            manual_invoker_id=manual_invoker_id,
            attempt=attempt,
        )
        self.store.invocations[invocation.id] = invocation
        return invocation

    async def update(
        self,
        invocation_id: str,
        *,
        status: InvocationStatus,
        result: Any = None,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> ActionInvocation:
        async with self.store.lock:
            current = self.store.invocations.get(invocation_id)
            if current is None:
                raise DefinitionNotFoundError(invocation_id, "action invocation")
            if current.status.is_terminal or not status.is_terminal:
                raise InvalidStatusTransitionError(invocation_id, current.status.value, status.value)
            updated = current.model_copy(
                update={
                    "status": status,
                    "result": result,
                    "error": error,
                    "completed_at": completed_at or _utc_now(),
                }
            )
            self.store.invocations[invocation_id] = updated
            return updated

    async def get(self, invocation_id: str) -> Optional[ActionInvocation]:
        return self.store.invocations.get(invocation_id)

    async def list_for_action(self, action_definition_id: str, limit: int = 100) -> list[ActionInvocation]:
        rows = [i for i in self.store.invocations.values() if i.action_definition_id == action_definition_id]
        rows.sort(key=lambda i: i.created_at, reverse=True)
        return rows[:limit]


@dataclass(frozen=True)
class MemoryRepoBundle:
    """Convenience bundle of the in-memory repositories."""

    store: MemoryStore
    trigger_definitions: MemoryTriggerDefinitionRepository
    action_definitions: MemoryActionDefinitionRepository
    bindings: MemoryTriggerBindingRepository
    trigger_events: MemoryTriggerEventRepository
    invocations: MemoryActionInvocationRepository


def build_memory_repos(store: Optional[MemoryStore] = None) -> MemoryRepoBundle:
    """Build a ``MemoryRepoBundle`` around a (possibly new) ``MemoryStore``."""
    store = store or MemoryStore()
    return MemoryRepoBundle(
        store=store,
        trigger_definitions=MemoryTriggerDefinitionRepository(store),
        action_definitions=MemoryActionDefinitionRepository(store),
        bindings=MemoryTriggerBindingRepository(store),
        trigger_events=MemoryTriggerEventRepository(store),
        invocations=MemoryActionInvocationRepository(store),
    )
