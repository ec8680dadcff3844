from __future__ import annotations

"""Queue driver contract.

A queue transports action dispatch messages from producers (trigger firings,
manual invocations) to exactly one consumer handler.

Contract every driver satisfies:

- ``enqueue_action(message)`` is async and may suspend on backpressure.
- ``consume_actions(handler)`` registers the single handler and returns without
  blocking; delivery happens asynchronously, one message at a time per
  consumer unless the driver documents concurrent delivery.
- ``stop()`` lets in-flight work finish, releases driver resources, and once it
  returns the handler is never invoked again.

Messages are ``ActionDispatchMessage`` instances on the producer side. Drivers
that serialize may hand the consumer the wire form (a mapping with camelCase
keys); the consumer validates either shape.
"""

from typing import Any, Awaitable, Callable, Mapping, Protocol, Union, runtime_checkable

from ..schemas.domain import ActionDispatchMessage

QueueMessage = Union[ActionDispatchMessage, Mapping[str, Any]]
MessageHandler = Callable[[QueueMessage], Awaitable[None]]


@runtime_checkable
class Queue(Protocol):
    """Protocol implemented by queue drivers."""

    async def enqueue_action(self, message: QueueMessage) -> None: ...

    async def consume_actions(self, handler: MessageHandler) -> None: ...

    async def stop(self) -> None: ...


QueueFactory = Callable[..., Union[Queue, Awaitable[Queue]]]
"""
QueueFactory:
    A callable accepting ``config=`` (driver-specific, possibly None) and
    returning a ``Queue`` or an awaitable resolving to one.
"""
