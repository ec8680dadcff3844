"""Error types for relayflow.

Defines a small hierarchy of exceptions mirroring the failure categories the
runtime distinguishes:

- configuration errors (bad driver config, unresolvable modules),
- lookups that find nothing,
- duplicate capability registrations,
- action execution failures (recorded, never propagated by the consumer),
- queue infrastructure failures (always propagated).
"""

from __future__ import annotations

from typing import Optional


class RelayflowError(Exception):
    """Base error for all relayflow exceptions."""


class DriverConfigError(RelayflowError):
    """Raised when a driver or runtime setting cannot be used as configured."""


class NotFoundError(RelayflowError):
    """Raised when a lookup finds nothing."""


class CapabilityNotFoundError(NotFoundError):
    """Raised when no capability of the requested kind is registered."""

    def __init__(self, capability_id: str, kind: Optional[str] = None) -> None:
        self.capability_id = capability_id
        label = f"{kind.lower()} capability" if kind else "capability"
        super().__init__(f"Unknown {label}: '{capability_id}'")


class DefinitionNotFoundError(NotFoundError):
    """Raised when a trigger or action definition does not exist."""

    def __init__(self, definition_id: str, kind: str = "definition") -> None:
        self.definition_id = definition_id
        super().__init__(f"{kind} not found: '{definition_id}'")


class DriverNotFoundError(NotFoundError):
    """Raised when no resolution strategy can import the requested driver."""

    def __init__(self, driver: str, attempts: list[str]) -> None:
        self.driver = driver
        self.attempts = attempts
        super().__init__(f"Driver '{driver}' could not be resolved (tried: {', '.join(attempts)})")


class DuplicateCapabilityError(RelayflowError):
    """Raised when a (plugin, capability id) pair is registered twice."""

    def __init__(self, plugin_name: str, capability_id: str) -> None:
        self.plugin_name = plugin_name
        self.capability_id = capability_id
        super().__init__(f"Capability '{capability_id}' is already registered (plugin '{plugin_name}')")


class InvalidCapabilityError(DriverConfigError):
    """Raised when a plugin hands over a malformed capability."""


class InvalidTriggerRuntimeError(DriverConfigError):
    """Raised when a trigger factory returns an object without lifecycle methods."""


class ConfigDecryptionError(DriverConfigError):
    """Raised when an encrypted definition config cannot be decrypted."""


class ActionExecutionError(RelayflowError):
    """Raised when an action cannot be executed or reports a failure."""


class QueueError(RelayflowError):
    """Raised for queue infrastructure failures."""


class InvalidDispatchMessageError(RelayflowError):
    """Raised when a dispatch message does not reference exactly one origin."""


class InvalidStatusTransitionError(RelayflowError):
    """Raised when an invocation leaves a terminal status."""

    def __init__(self, invocation_id: str, current: str, requested: str) -> None:
        super().__init__(f"Invocation '{invocation_id}' cannot move from {current} to {requested}")
