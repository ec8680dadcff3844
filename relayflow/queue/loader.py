"""Queue driver loading.

Resolves the configured queue driver through the shared named driver loader:
``memory`` (or an empty name) is the built-in in-process queue; other names
come from an explicit module path, the ``relayflow_plugins.queue`` package, or
an installed module of the same name. Driver modules export ``default`` or
``create_queue``.
"""

from __future__ import annotations

from typing import Any, Optional

from ..drivers.loader import DriverSpec, LoadedDriver, resolve_named_driver
from ..errors import DriverConfigError
from .base import Queue


def _memory_factory():
    from .memory import create_memory_queue

    return create_memory_queue


QUEUE_DRIVERS = DriverSpec(
    kind="queue",
    factory_export="create_queue",
    builtins={"memory": _memory_factory},
    conventional_prefix="relayflow_plugins.queue",
)


async def load_queue(driver: Optional[str], path: Optional[str] = None, config: Any = None) -> LoadedDriver[Queue]:
    """
    Load and construct the queue driver.

    Args:
        driver: Driver name (``memory`` when empty).
        path: Optional explicit module path.
        config: Driver configuration passed to the factory.

    Raises:
        DriverConfigError: If the module is unusable or returns something that is not a queue.
        DriverNotFoundError: If the driver cannot be resolved.
    """
    loaded = await resolve_named_driver(QUEUE_DRIVERS, driver, path, config)
    if not isinstance(loaded.instance, Queue):
        raise DriverConfigError(
            f"queue driver '{loaded.name}' returned {type(loaded.instance).__name__}, "
            "which lacks enqueue_action/consume_actions/stop"
        )
    return loaded
