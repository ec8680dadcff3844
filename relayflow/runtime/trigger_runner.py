from __future__ import annotations

"""Trigger firing and manual invocation.

``TriggerRunner`` is the producer side of the action pipeline. It turns a
trigger firing into one persisted ``TriggerEvent`` plus one
``ActionDispatchMessage`` per enabled binding, and turns a manual request into a
single dispatch message. It never executes actions itself.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from ..errors import DefinitionNotFoundError
from ..queue.base import Queue
from ..repos.interfaces import (
    ActionDefinitionRepository,
    TriggerBindingRepository,
    TriggerEventRepository,
)
from ..schemas.domain import ActionDispatchMessage, TriggerEmitPayload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerRunner:
    """Persist trigger events and enqueue the actions bound to them.

    Attributes:
        events: Append-only trigger event store.
        bindings: Resolves which actions a trigger fans out to.
        action_definitions: Used to skip disabled or deleted actions.
        queue: Destination of the dispatch messages.
    """

    events: TriggerEventRepository
    bindings: TriggerBindingRepository
    action_definitions: ActionDefinitionRepository
    queue: Queue

    async def fire_trigger(self, definition_id: str, payload: TriggerEmitPayload) -> str:
        """Record one firing of a trigger and enqueue its bound actions.

        The event is persisted before anything is enqueued, so every dispatch
        message references an existing event.

        Args:
            definition_id: The trigger definition that fired.
            payload: What the runtime emitted.

        Returns:
            The id of the persisted trigger event.
        """
        event = await self.events.create(trigger_definition_id=definition_id, context=payload.context)
        targets = await self._enabled_targets(definition_id)
        for action_definition_id in targets:
            await self.queue.enqueue_action(
                ActionDispatchMessage(
                    action_definition_id=action_definition_id,
                    trigger_event_id=event.id,
                    context=payload.context,
                    attempt=1,
                )
            )
        logger.info(
            "Trigger fired",
            extra={
                "trigger_definition_id": definition_id,
                "trigger_event_id": event.id,
                "dispatched": len(targets),
            },
        )
        return event.id

    async def invoke_action_manually(
        self,
        action_definition_id: str,
        invoker_id: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> ActionDispatchMessage:
        """Enqueue one action on behalf of a user, without a trigger event.

        Raises:
            DefinitionNotFoundError: If the action definition does not exist.
        """
        definition = await self.action_definitions.get(action_definition_id)
        if definition is None:
            raise DefinitionNotFoundError(action_definition_id, kind="action definition")
        message = ActionDispatchMessage(
            action_definition_id=action_definition_id,
            manual_invoker_id=invoker_id,
            context=dict(context) if context is not None else None,
            attempt=1,
        )
        await self.queue.enqueue_action(message)
        logger.info(
            "Action invoked manually",
            extra={"action_definition_id": action_definition_id, "manual_invoker_id": invoker_id},
        )
        return message

    async def _enabled_targets(self, trigger_definition_id: str) -> List[str]:
        targets: List[str] = []
        for binding in await self.bindings.list_for_trigger(trigger_definition_id):
            if not binding.is_enabled:
                continue
            action = await self.action_definitions.get(binding.action_definition_id)
            if action is None or not action.is_enabled:
                logger.debug(
                    "Skipping binding to unavailable action",
                    extra={
                        "trigger_definition_id": trigger_definition_id,
                        "action_definition_id": binding.action_definition_id,
                    },
                )
                continue
            targets.append(action.id)
        return targets
