"""Pluggable action queue: contract, built-in memory driver and loader."""

from .base import MessageHandler, Queue, QueueFactory, QueueMessage
from .loader import QUEUE_DRIVERS, load_queue
from .memory import MemoryQueue, create_memory_queue

__all__ = [
    "MessageHandler",
    "Queue",
    "QueueFactory",
    "QueueMessage",
    "QUEUE_DRIVERS",
    "load_queue",
    "MemoryQueue",
    "create_memory_queue",
]
