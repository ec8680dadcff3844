"""Repository interfaces and implementations for relayflow persistence.

The repository layer is the persistence boundary of the runtime.

Responsibilities
----------------

- Provide a small set of async repository interfaces (Protocols) that the
  runtime depends on.
- Persist durable records of:

  - trigger and action definitions (read by the runtime),
  - trigger events (append-only),
  - action invocations (created PENDING, completed once).

Design notes
------------

The runtime is written against interfaces so it can be used with:

- the in-memory implementation in ``repos.memory`` (default and tests),
- a SQL database (async SQLAlchemy implementation in ``repos.sql``),
- any other backend the host application provides.
"""

from .interfaces import (
    ActionDefinitionRepository,
    ActionInvocationRepository,
    TriggerBindingRepository,
    TriggerDefinitionRepository,
    TriggerEventRepository,
)
from .memory import MemoryRepoBundle, MemoryStore, build_memory_repos

__all__ = [
    "ActionDefinitionRepository",
    "ActionInvocationRepository",
    "TriggerBindingRepository",
    "TriggerDefinitionRepository",
    "TriggerEventRepository",
    "MemoryRepoBundle",
    "MemoryStore",
    "build_memory_repos",
]
