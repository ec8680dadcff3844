from __future__ import annotations

"""Generic named driver loader.

Subsystems with pluggable backends (the action queue, the storage driver)
resolve a driver from a name plus an optional explicit module reference. The
resolution runs a fixed list of strategies, first match wins:

1. **reserved**: the subsystem's default name (``memory``; also used when the
   name is empty) and its other built-ins map to in-tree factories. Built-ins
   other than the default only apply when no explicit path is given.
2. **explicit path**: a dotted module path or a ``.py`` file path. The module
   must expose a callable ``default`` or the subsystem's named export (e.g.
   ``create_queue``); anything else is a ``DriverConfigError``.
3. **conventional package**: ``<prefix>.<name>`` (e.g.
   ``relayflow_plugins.queue.redis``).
4. **bare package**: the name itself as an importable module.

``DriverNotFoundError`` is raised when no strategy resolves. Factories are
called with ``config=...`` and may be sync or async.
"""

import importlib
import importlib.util
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Generic, List, Mapping, Optional, Tuple, TypeVar

from ..core.aio import maybe_await
from ..errors import DriverConfigError, DriverNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DriverFactory = Callable[..., Any]
Resolved = Tuple[DriverFactory, str]


@dataclass(frozen=True)
class DriverSpec:
    """Describes how one subsystem resolves its drivers.

    Attributes
    ----------
    kind:
        Subsystem label used in logs and errors (``queue``, ``storage``).
    factory_export:
        Named factory export looked up when a module has no ``default``.
    builtins:
        Reserved names mapped to zero-arg callables returning the factory
        (lazy so that built-in modules import only when used).
    conventional_prefix:
        Package under which drivers are looked up by name.
    default:
        Name used when the requested driver name is empty.
    """

    kind: str
    factory_export: str
    builtins: Mapping[str, Callable[[], DriverFactory]] = field(default_factory=dict)
    conventional_prefix: Optional[str] = None
    default: str = "memory"


@dataclass(frozen=True)
class LoadedDriver(Generic[T]):
    name: str
    instance: T


def resolve_factory(module: Any, spec: DriverSpec) -> DriverFactory:
    """Pick the driver factory exported by a module.

    Raises:
        DriverConfigError: If neither ``default`` nor the named export is callable.
    """
    default = getattr(module, "default", None)
    if callable(default):
        return default
    named = getattr(module, spec.factory_export, None)
    if callable(named):
        return named
    name = getattr(module, "__name__", repr(module))
    raise DriverConfigError(
        f"{spec.kind} module '{name}' does not export a factory (expected 'default' or '{spec.factory_export}')"
    )


def import_module_path(path: str) -> ModuleType:
    """Import a module from a dotted path or a ``.py`` file path."""
    candidate = Path(path)
    if path.endswith(".py") or candidate.is_file():
        if not candidate.is_file():
            raise FileNotFoundError(path)
        module_name = f"_relayflow_driver_{abs(hash(str(candidate.resolve())))}"
        spec = importlib.util.spec_from_file_location(module_name, candidate)
        if spec is None or spec.loader is None:
            raise ImportError(f"cannot load module from {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        spec.loader.exec_module(module)
        return module
    return importlib.import_module(path)


def _try_import(module_name: str) -> Optional[ModuleType]:
    """Import ``module_name``; None if it (or a parent package) does not exist.

    Errors raised while executing an existing module propagate.
    """
    try:
        return importlib.import_module(module_name)
    except ModuleNotFoundError as e:
        missing = e.name or ""
        if module_name == missing or module_name.startswith(missing + "."):
            return None
        raise


def _reserved(spec: DriverSpec, name: str, path: Optional[str], attempts: List[str]) -> Optional[Resolved]:
    attempts.append(f"builtin:{name}")
    getter = spec.builtins.get(name)
    if getter is None:
        return None
    if path and name != spec.default:
        return None
    return getter(), name


def _explicit_path(spec: DriverSpec, name: str, path: Optional[str], attempts: List[str]) -> Optional[Resolved]:
    if not path:
        return None
    attempts.append(f"path:{path}")
    try:
        module = import_module_path(path)
    except (ImportError, FileNotFoundError) as e:
        raise DriverConfigError(f"{spec.kind} driver module '{path}' could not be imported: {e}") from e
    return resolve_factory(module, spec), name


def _conventional(spec: DriverSpec, name: str, path: Optional[str], attempts: List[str]) -> Optional[Resolved]:
    if path or not spec.conventional_prefix:
        return None
    module_name = f"{spec.conventional_prefix}.{name.replace('-', '_')}"
    attempts.append(module_name)
    module = _try_import(module_name)
    if module is None:
        return None
    return resolve_factory(module, spec), name


def _bare_package(spec: DriverSpec, name: str, path: Optional[str], attempts: List[str]) -> Optional[Resolved]:
    if path:
        return None
    attempts.append(name)
    module = _try_import(name)
    if module is None:
        return None
    return resolve_factory(module, spec), name


STRATEGIES = (_reserved, _explicit_path, _conventional, _bare_package)


async def resolve_named_driver(
    spec: DriverSpec,
    driver: Optional[str],
    path: Optional[str] = None,
    config: Any = None,
) -> LoadedDriver[Any]:
    """
    Resolve, construct and return a driver instance.

    Args:
        spec: The subsystem's resolution rules.
        driver: Requested driver name (empty means ``spec.default``).
        path: Optional explicit module path or file path.
        config: Driver configuration handed to the factory as ``config=``.

    Returns:
        ``LoadedDriver`` with the resolved name and the constructed instance.

    Raises:
        DriverConfigError: If a module is found but cannot be used.
        DriverNotFoundError: If no strategy resolves the name.
    """
    name = (driver or "").strip() or spec.default
    attempts: List[str] = []
    for strategy in STRATEGIES:
        resolved = strategy(spec, name, path, attempts)
        if resolved is None:
            continue
        factory, label = resolved
        instance = await maybe_await(factory(config=config))
        logger.info("Loaded %s driver %s", spec.kind, label, extra={"driver": label, "driver_path": path})
        return LoadedDriver(name=label, instance=instance)
    raise DriverNotFoundError(name, attempts)
