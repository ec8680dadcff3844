"""Storage driver contract and loader.

The storage subsystem itself lives outside the runtime core; this module only
defines the driver contract the host application relies on and resolves the
configured driver with the same named driver loader the queue uses. Driver
modules export ``default`` or ``create_storage``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable

from .drivers.loader import DriverSpec, LoadedDriver, resolve_named_driver
from .errors import DriverConfigError, NotFoundError


@dataclass(frozen=True)
class ObjectHead:
    size: int
    content_type: Optional[str] = None
    metadata: Optional[Dict[str, str]] = None


@runtime_checkable
class StorageDriver(Protocol):
    async def put(
        self,
        bucket: str,
        key: str,
        body: bytes,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> ObjectHead: ...

    async def get(self, bucket: str, key: str) -> bytes: ...

    async def head(self, bucket: str, key: str) -> ObjectHead: ...

    async def delete(self, bucket: str, key: str) -> None: ...


class MemoryStorage:
    """Dict-backed storage driver for tests and single-process setups."""

    def __init__(self) -> None:
        self._objects: Dict[Tuple[str, str], Tuple[bytes, ObjectHead]] = {}

    async def put(
        self,
        bucket: str,
        key: str,
        body: bytes,
        *,
        content_type: Optional[str] = None,
        metadata: Optional[Mapping[str, str]] = None,
    ) -> ObjectHead:
        head = ObjectHead(size=len(body), content_type=content_type, metadata=dict(metadata or {}))
        self._objects[(bucket, key)] = (bytes(body), head)
        return head

    async def get(self, bucket: str, key: str) -> bytes:
        return self._entry(bucket, key)[0]

    async def head(self, bucket: str, key: str) -> ObjectHead:
        return self._entry(bucket, key)[1]

    async def delete(self, bucket: str, key: str) -> None:
        self._objects.pop((bucket, key), None)

    def _entry(self, bucket: str, key: str) -> Tuple[bytes, ObjectHead]:
        try:
            return self._objects[(bucket, key)]
        except KeyError as e:
            raise NotFoundError(f"object not found: {bucket}/{key}") from e


def create_memory_storage(*, config: Any = None) -> MemoryStorage:
    _ = config
    return MemoryStorage()


STORAGE_DRIVERS = DriverSpec(
    kind="storage",
    factory_export="create_storage",
    builtins={"memory": lambda: create_memory_storage},
    conventional_prefix="relayflow_plugins.storage",
)


async def load_storage(
    driver: Optional[str], path: Optional[str] = None, config: Any = None
) -> LoadedDriver[StorageDriver]:
    """Load and construct the storage driver (``memory`` when the name is empty)."""
    loaded = await resolve_named_driver(STORAGE_DRIVERS, driver, path, config)
    if not isinstance(loaded.instance, StorageDriver):
        raise DriverConfigError(f"storage driver '{loaded.name}' returned {type(loaded.instance).__name__}")
    return loaded
