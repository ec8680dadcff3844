"""relayflow: runtime orchestration for pluggable triggers and actions.

The package turns declarative trigger definitions into live, supervised
runtimes, decouples trigger firing from action execution through a pluggable
queue, and records every execution attempt as a persisted invocation.

Main entry points:

- ``CapabilityRegistry``: plugin capabilities keyed by (plugin, capability id).
- ``TriggerRuntimeManager``: lifecycle of one runtime per enabled definition.
- ``ActionConsumer``: drains the queue into tracked invocations.
- ``RelayflowApp``: process-wide wiring of all of the above.
"""

__version__ = "0.1.0"
