"""Schemas and DTOs for relayflow."""

from .domain import (
    ActionDefinition,
    ActionDispatchMessage,
    ActionInvocation,
    CapabilityDescriptor,
    CapabilityKind,
    InvocationStatus,
    TriggerActionBinding,
    TriggerDefinition,
    TriggerEmitPayload,
    TriggerEvent,
    TriggerRuntimeState,
)

__all__ = [
    "ActionDefinition",
    "ActionDispatchMessage",
    "ActionInvocation",
    "CapabilityDescriptor",
    "CapabilityKind",
    "InvocationStatus",
    "TriggerActionBinding",
    "TriggerDefinition",
    "TriggerEmitPayload",
    "TriggerEvent",
    "TriggerRuntimeState",
]
