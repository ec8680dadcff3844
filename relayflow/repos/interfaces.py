from __future__ import annotations

"""Repository interface contracts.

The runtime depends on these Protocols instead of concrete persistence
implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak sessions/transactions to callers.
- Trigger events are append-only.
- An action invocation is created PENDING and updated to a terminal status
  exactly once; a second terminal update raises
  ``InvalidStatusTransitionError``.
"""

from datetime import datetime
from typing import Any, Optional, Protocol

from ..schemas.domain import (
    ActionDefinition,
    ActionInvocation,
    InvocationStatus,
    TriggerActionBinding,
    TriggerDefinition,
    TriggerEvent,
)


class TriggerDefinitionRepository(Protocol):
    """Read access to trigger definitions."""

    async def list_enabled(self) -> list[TriggerDefinition]:
        """
        List every enabled trigger definition.

        Returns:
            The enabled definitions, in no particular order.
        """
        ...

    async def get(self, definition_id: str) -> Optional[TriggerDefinition]:
        """
        Retrieve a definition by id.

        Returns:
            The definition if found (enabled or not), else None.
        """
        ...


class ActionDefinitionRepository(Protocol):
    """Read access to action definitions."""

    async def get(self, definition_id: str) -> Optional[ActionDefinition]: ...


class TriggerBindingRepository(Protocol):
    """Which actions run when a trigger fires."""

    async def list_for_trigger(self, trigger_definition_id: str) -> list[TriggerActionBinding]:
        """
        List enabled bindings of a trigger.

        Returns:
            Bindings ordered by ``sort_order``.
        """
        ...


class TriggerEventRepository(Protocol):
    """Append-only store of trigger firings."""

    async def create(self, *, trigger_definition_id: str, context: Optional[dict[str, Any]]) -> TriggerEvent:
        """
        Persist one trigger event.

        Args:
            trigger_definition_id: The trigger that fired.
            context: The payload the runtime emitted.

        Returns:
            The stored event, including its generated id.
        """
        ...

    async def get(self, event_id: str) -> Optional[TriggerEvent]: ...


class ActionInvocationRepository(Protocol):
    """Durable record of action execution attempts."""

    async def create(
        self,
        *,
        action_definition_id: str,
        trigger_event_id: Optional[str] = None,
        manual_invoker_id: Optional[str] = None,
        attempt: int = 1,
    ) -> ActionInvocation:
        """
        Create a PENDING invocation.

        Returns:
            The stored invocation, including its generated id.
        """
        ...

    async def update(
        self,
        invocation_id: str,
        *,
        status: InvocationStatus,
        result: Any = None,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
    ) -> ActionInvocation:
        """
        Move an invocation to a terminal status.

        Raises:
            DefinitionNotFoundError: If the invocation does not exist.
            InvalidStatusTransitionError: If it is already terminal.
        """
        ...

    async def get(self, invocation_id: str) -> Optional[ActionInvocation]: ...

    async def list_for_action(self, action_definition_id: str, limit: int = 100) -> list[ActionInvocation]: ...
