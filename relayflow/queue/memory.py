from __future__ import annotations

"""In-process FIFO queue driver.

``MemoryQueue`` is the built-in ``memory`` driver: an ``asyncio.Queue`` drained
by a single pump task.

- Delivery is strictly serial: the pump awaits the handler before taking the
  next message, so handler invocations never overlap.
- ``max_size`` (config) bounds the buffer; ``enqueue_action`` suspends while
  it is full. ``0`` means unbounded.
- ``stop()`` waits for the in-flight handler call. With ``drain_on_stop``
  (default) messages already enqueued are delivered first; otherwise they are
  dropped. Nothing is persisted. A producer still waiting for buffer space
  when ``stop()`` runs gets ``QueueError`` and its message is withdrawn.
- A handler exception is logged and the pump moves on to the next message.
"""

import asyncio
import logging
from typing import Any, Mapping, Optional

from ..errors import QueueError
from .base import MessageHandler, QueueMessage

logger = logging.getLogger(__name__)

_STOP = object()


class _Slot:
    __slots__ = ("message", "withdrawn")

    def __init__(self, message: QueueMessage) -> None:
        self.message = message
        self.withdrawn = False


class MemoryQueue:
    """Single-process FIFO queue with serial delivery."""

    def __init__(self, *, max_size: int = 0, drain_on_stop: bool = True) -> None:
        self._buffer: asyncio.Queue[Any] = asyncio.Queue(maxsize=max_size)
        self._drain_on_stop = drain_on_stop
        self._handler: Optional[MessageHandler] = None
        self._pump_task: Optional[asyncio.Task[None]] = None
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def pending(self) -> int:
        """Number of messages waiting for delivery."""
        return self._buffer.qsize()

    async def enqueue_action(self, message: QueueMessage) -> None:
        if self._stopped:
            raise QueueError("memory queue is stopped")
        slot = _Slot(message)
        await self._buffer.put(slot)
        if self._stopped:
            # Only reachable after waiting for space in a full buffer.
            slot.withdrawn = True
            raise QueueError("memory queue stopped while waiting for buffer space")

    async def consume_actions(self, handler: MessageHandler) -> None:
        if self._stopped:
            raise QueueError("memory queue is stopped")
        if self._handler is not None:
            raise QueueError("memory queue already has a consumer")
        self._handler = handler
        self._pump_task = asyncio.get_running_loop().create_task(self._pump(), name="relayflow-memory-queue")

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        task = self._pump_task
        if task is None:
            self._log_dropped(self._drain_buffer())
            return
        try:
            self._buffer.put_nowait(_STOP)
        except asyncio.QueueFull:
            # Pump is busy with buffered messages and checks the flag after each one.
            pass
        if task is asyncio.current_task():
            # Called from inside the handler; the pump exits once it returns.
            return
        await task

    async def _pump(self) -> None:
        assert self._handler is not None
        while True:
            slot = await self._buffer.get()
            if slot is _STOP:
                break
            if not slot.withdrawn:
                try:
                    await self._handler(slot.message)
                except Exception:
                    logger.exception("Queue handler failed; continuing with the next message")
            if self._stopped and (not self._drain_on_stop or self._buffer.empty()):
                break
        self._log_dropped(self._drain_buffer())

    def _log_dropped(self, items: list[Any]) -> None:
        dropped = sum(1 for s in items if s is not _STOP and not s.withdrawn)
        if dropped:
            logger.warning("Memory queue stopped with %d undelivered messages", dropped)

    def _drain_buffer(self) -> list[Any]:
        items = []
        while not self._buffer.empty():
            items.append(self._buffer.get_nowait())
        return items


def create_memory_queue(*, config: Optional[Mapping[str, Any]] = None) -> MemoryQueue:
    """Factory for the built-in ``memory`` driver.

    Recognized config keys: ``max_size`` (int), ``drain_on_stop`` (bool).
    """
    cfg = dict(config or {})
    return MemoryQueue(
        max_size=int(cfg.get("max_size", 0)),
        drain_on_stop=bool(cfg.get("drain_on_stop", True)),
    )


create_queue = create_memory_queue
