from __future__ import annotations

"""Capability runtime contracts and registry entries.

A capability is a typed unit of plugin functionality. Two kinds exist:

- TRIGGER capabilities build long-lived runtimes that observe something and
  call ``services.emit(...)`` when it happens.
- ACTION capabilities build short-lived runtimes whose ``execute`` performs the
  side effect for one queued dispatch message.

Registry entries are a closed variant over the kind
(``TriggerCapabilityEntry`` / ``ActionCapabilityEntry``). Each fixes its factory
signature and is validated when registered, not when first used.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Mapping,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from ..core.aio import maybe_await
from ..core.logging_config import PluginLogger
from ..schemas.domain import CapabilityDescriptor, CapabilityKind, TriggerEmitPayload

__all__ = [
    "ActionCapabilityEntry",
    "ActionExecutionInput",
    "ActionFactory",
    "ActionInvocationContext",
    "ActionRuntime",
    "ActionRuntimeContext",
    "ActionRuntimeServices",
    "CapabilityEntry",
    "EmitFn",
    "TriggerCapabilityEntry",
    "TriggerFactory",
    "TriggerRuntime",
    "TriggerRuntimeContext",
    "TriggerRuntimeServices",
    "maybe_await",
]


class EmitFn(Protocol):
    """Signature of ``TriggerRuntimeServices.emit``.

    ``context`` is the event payload (a mapping) or a complete
    ``TriggerEmitPayload``. Returns the id of the persisted trigger event, or
    None when the runtime has already been stopped.
    """

    async def __call__(
        self,
        context: Union[TriggerEmitPayload, Mapping[str, Any], None] = None,
        *,
        metadata: Optional[Mapping[str, Any]] = None,
        scheduled_for: Optional[datetime] = None,
    ) -> Optional[str]: ...


# ---------------------------------------------------------------------------
# Trigger runtimes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriggerRuntimeServices:
    """Services injected into a trigger runtime.

    Attributes
    ----------
    logger:
        Logger bound to the plugin and the definition id.
    emit:
        Records one firing of the trigger. Awaiting it persists the trigger
        event and enqueues the dispatch messages; it never waits for actions
        to execute.
    """

    logger: PluginLogger
    emit: EmitFn


@dataclass(frozen=True)
class TriggerRuntimeContext:
    """Everything a trigger factory receives to build a runtime."""

    definition_id: str
    capability_id: str
    capability: CapabilityDescriptor
    plugin_name: str
    config: Any
    services: TriggerRuntimeServices
    secrets: Optional[Dict[str, Any]] = None


@runtime_checkable
class TriggerRuntime(Protocol):
    """Protocol for live trigger runtimes.

    Runtimes may additionally implement ``on_config_change(config)`` to apply a
    new config in place, and ``dispose()`` to release resources after ``stop()``.
    """

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


TriggerFactory = Callable[[TriggerRuntimeContext], Union[TriggerRuntime, Awaitable[TriggerRuntime]]]


# ---------------------------------------------------------------------------
# Action runtimes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionRuntimeServices:
    logger: PluginLogger


@dataclass(frozen=True)
class ActionRuntimeContext:
    definition_id: str
    capability_id: str
    capability: CapabilityDescriptor
    plugin_name: str
    services: ActionRuntimeServices


@dataclass(frozen=True)
class ActionInvocationContext:
    invocation_id: str
    trigger_event_id: Optional[str] = None
    manual_invoker_id: Optional[str] = None
    attempt: int = 1
    context: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class ActionExecutionInput:
    """Input of one ``ActionRuntime.execute`` call."""

    config: Any
    invocation: ActionInvocationContext
    payload: Optional[Dict[str, Any]] = None
    secrets: Optional[Dict[str, Any]] = None


@runtime_checkable
class ActionRuntime(Protocol):
    """Protocol for action runtimes. ``dispose()`` is optional."""

    async def execute(self, input: ActionExecutionInput) -> Any: ...


ActionFactory = Callable[[ActionRuntimeContext], Union[ActionRuntime, Awaitable[ActionRuntime]]]


# ---------------------------------------------------------------------------
# Registry entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriggerCapabilityEntry:
    """Registry entry for a TRIGGER capability."""

    plugin_name: str
    capability_id: str
    capability: CapabilityDescriptor
    factory: TriggerFactory
    metadata: Dict[str, Any] = field(default_factory=dict)

    kind = CapabilityKind.TRIGGER


@dataclass(frozen=True)
class ActionCapabilityEntry:
    """Registry entry for an ACTION capability."""

    plugin_name: str
    capability_id: str
    capability: CapabilityDescriptor
    factory: ActionFactory
    metadata: Dict[str, Any] = field(default_factory=dict)

    kind = CapabilityKind.ACTION


CapabilityEntry = Union[TriggerCapabilityEntry, ActionCapabilityEntry]
