from __future__ import annotations

"""Default ``execute_action`` implementation backed by plugin capabilities."""

import logging
from dataclasses import dataclass
from typing import Any

from ..capabilities.base import (
    ActionExecutionInput,
    ActionInvocationContext,
    ActionRuntimeContext,
    ActionRuntimeServices,
)
from ..capabilities.registry import CapabilityRegistry
from ..core.aio import maybe_await
from ..core.logging_config import create_plugin_logger
from ..crypto.config_encryption import NO_ENCRYPTION, ConfigEncryption, decrypt_config
from ..errors import ActionExecutionError
from ..repos.interfaces import ActionDefinitionRepository
from ..schemas.domain import ActionDispatchMessage, ActionInvocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PluginActionExecutor:
    """Run the ACTION capability an action definition points at.

    One runtime is built per execution and disposed afterwards.

    Raises (from ``__call__``):
        ActionExecutionError: If the definition is missing or disabled, or the
            runtime has no ``execute`` method.
        CapabilityNotFoundError: If no ACTION capability matches.
        ConfigDecryptionError: If the definition config cannot be decrypted.
    """

    action_definitions: ActionDefinitionRepository
    registry: CapabilityRegistry
    encryption: ConfigEncryption = NO_ENCRYPTION

    async def __call__(self, message: ActionDispatchMessage, invocation: ActionInvocation) -> Any:
        definition = await self.action_definitions.get(message.action_definition_id)
        if definition is None:
            raise ActionExecutionError(f"Action definition not found: '{message.action_definition_id}'")
        if not definition.is_enabled:
            raise ActionExecutionError(f"Action definition is disabled: '{definition.id}'")

        entry = self.registry.get_action(definition.capability_id)
        config = decrypt_config(definition.config, self.encryption)
        context = ActionRuntimeContext(
            definition_id=definition.id,
            capability_id=entry.capability_id,
            capability=entry.capability,
            plugin_name=entry.plugin_name,
            services=ActionRuntimeServices(logger=create_plugin_logger(entry.plugin_name, definition.id)),
        )
        runtime = await maybe_await(entry.factory(context))
        execute = getattr(runtime, "execute", None)
        if not callable(execute):
            raise ActionExecutionError(
                f"Action runtime for capability '{entry.capability_id}' must implement execute()"
            )

        try:
            return await maybe_await(
                execute(
                    ActionExecutionInput(
                        config=config,
                        payload=message.context,
                        invocation=ActionInvocationContext(
                            invocation_id=invocation.id,
                            trigger_event_id=message.trigger_event_id,
                            manual_invoker_id=message.manual_invoker_id,
                            attempt=message.attempt,
                            context=message.context,
                        ),
                    )
                )
            )
        finally:
            dispose = getattr(runtime, "dispose", None)
            if callable(dispose):
                try:
                    await maybe_await(dispose())
                except Exception as e:
                    logger.warning(
                        "Action runtime dispose failed",
                        extra={"action_definition_id": definition.id, "error": str(e)},
                    )
