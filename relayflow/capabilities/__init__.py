"""Capability contracts and the capability registry.

A *capability* is a unit of pluggable functionality exposed by a plugin.

- TRIGGER capabilities build runtimes that observe events and ``emit``.
- ACTION capabilities build runtimes that execute queued dispatch messages.

This package exports:

- ``CapabilityRegistry``: capability id → registry entry, grouped by plugin.
- ``TriggerCapabilityEntry``/``ActionCapabilityEntry``: the closed set of
  registry entry variants.
- runtime contracts (``TriggerRuntime``, ``ActionRuntime``) and the contexts
  their factories receive.
"""

from .base import (
    ActionCapabilityEntry,
    ActionExecutionInput,
    ActionFactory,
    ActionInvocationContext,
    ActionRuntime,
    ActionRuntimeContext,
    ActionRuntimeServices,
    CapabilityEntry,
    TriggerCapabilityEntry,
    TriggerFactory,
    TriggerRuntime,
    TriggerRuntimeContext,
    TriggerRuntimeServices,
    maybe_await,
)
from .registry import CapabilityRegistry

__all__ = [
    "ActionCapabilityEntry",
    "ActionExecutionInput",
    "ActionFactory",
    "ActionInvocationContext",
    "ActionRuntime",
    "ActionRuntimeContext",
    "ActionRuntimeServices",
    "CapabilityEntry",
    "CapabilityRegistry",
    "TriggerCapabilityEntry",
    "TriggerFactory",
    "TriggerRuntime",
    "TriggerRuntimeContext",
    "TriggerRuntimeServices",
    "maybe_await",
]
