from __future__ import annotations

"""Plugin discovery, registration and hot reload.

A plugin is a Python package (a directory with ``__init__.py``) or a single
``.py`` module under the plugins path. It exposes:

- ``CAPABILITIES``: descriptors (dicts with ``kind``, ``key``,
  ``displayName`` and optional ``configSchema`` / ``id``, or
  ``CapabilityDescriptor`` instances),
- ``TRIGGERS``: capability key -> trigger factory,
- ``ACTIONS``: capability key -> action factory,
- optionally ``NAME`` to override the directory/module name.

Capability ids default to ``"<plugin>:<key>"``.
"""

import importlib
import importlib.util
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from ..capabilities.base import ActionCapabilityEntry, TriggerCapabilityEntry
from ..capabilities.registry import CapabilityRegistry
from ..errors import InvalidCapabilityError
from ..schemas.domain import CapabilityDescriptor, CapabilityKind

logger = logging.getLogger(__name__)

BUILTIN_PLUGIN_MODULES = ("relayflow.plugins.builtin.schedule",)

_MODULE_PREFIX = "relayflow_plugin_"


@dataclass(frozen=True)
class PluginCapability:
    capability_id: str
    descriptor: CapabilityDescriptor


@dataclass(frozen=True)
class LoadedPlugin:
    """An imported plugin module and the capabilities it declares."""

    name: str
    module: ModuleType
    capabilities: List[PluginCapability] = field(default_factory=list)

    def factory_for(self, capability: PluginCapability) -> Any:
        table_name = "TRIGGERS" if capability.descriptor.kind is CapabilityKind.TRIGGER else "ACTIONS"
        table: Mapping[str, Any] = getattr(self.module, table_name, None) or {}
        return table.get(capability.descriptor.key)


def _parse_capabilities(plugin_name: str, raw: Any) -> List[PluginCapability]:
    if not isinstance(raw, (list, tuple)):
        raise InvalidCapabilityError(f"plugin '{plugin_name}' must define CAPABILITIES as a list")
    parsed: List[PluginCapability] = []
    for item in raw:
        if isinstance(item, CapabilityDescriptor):
            parsed.append(PluginCapability(f"{plugin_name}:{item.key}", item))
            continue
        if not isinstance(item, Mapping):
            raise InvalidCapabilityError(f"plugin '{plugin_name}' declares a non-mapping capability")
        data = dict(item)
        capability_id = data.pop("id", None)
        try:
            descriptor = CapabilityDescriptor.model_validate(data)
        except ValidationError as e:
            raise InvalidCapabilityError(f"plugin '{plugin_name}' declares an invalid capability: {e}") from e
        parsed.append(PluginCapability(capability_id or f"{plugin_name}:{descriptor.key}", descriptor))
    return parsed


def plugin_from_module(module: ModuleType, default_name: str) -> LoadedPlugin:
    """Build a ``LoadedPlugin`` from an already imported module.

    Raises:
        InvalidCapabilityError: If ``CAPABILITIES`` is missing or malformed.
    """
    name = getattr(module, "NAME", None) or default_name
    return LoadedPlugin(
        name=name,
        module=module,
        capabilities=_parse_capabilities(name, getattr(module, "CAPABILITIES", None)),
    )


def _plugin_candidates(base: Path) -> Dict[str, Path]:
    candidates: Dict[str, Path] = {}
    for entry in sorted(base.iterdir()):
        if entry.name.startswith((".", "_")):
            continue
        if entry.is_dir() and (entry / "__init__.py").is_file():
            candidates[entry.name] = entry / "__init__.py"
        elif entry.is_file() and entry.suffix == ".py":
            candidates[entry.stem] = entry
    return candidates


def _import_plugin_file(name: str, path: Path, *, cache_bust: bool = False) -> ModuleType:
    module_name = f"{_MODULE_PREFIX}{name}"
    previous: Dict[str, ModuleType] = {}
    if cache_bust:
        for key in [k for k in sys.modules if k == module_name or k.startswith(module_name + ".")]:
            previous[key] = sys.modules.pop(key)
        importlib.invalidate_caches()
    elif module_name in sys.modules:
        return sys.modules[module_name]

    search = [str(path.parent)] if path.name == "__init__.py" else None
    spec = importlib.util.spec_from_file_location(module_name, path, submodule_search_locations=search)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot import plugin from {path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        # Keep the last good version importable; its capabilities stay registered.
        for key in [k for k in sys.modules if k == module_name or k.startswith(module_name + ".")]:
            del sys.modules[key]
        sys.modules.update(previous)
        raise
    return module


def registered_plugin_name(name: str) -> str:
    """Name under which the imported plugin ``name`` (directory or module) registers.

    This differs from ``name`` when the plugin sets ``NAME``.
    """
    module = sys.modules.get(f"{_MODULE_PREFIX}{name}")
    if module is None:
        return name
    return getattr(module, "NAME", None) or name


def load_plugin_by_name(plugins_path: str | Path, name: str, *, cache_bust: bool = False) -> Optional[LoadedPlugin]:
    """Import one plugin from ``plugins_path``.

    Returns:
        The plugin, or None if no package/module called ``name`` exists.

    Raises:
        InvalidCapabilityError: If the plugin's capabilities are malformed.
        Exception: Whatever importing the plugin module raises.
    """
    base = Path(plugins_path).resolve()
    if not base.is_dir():
        return None
    path = _plugin_candidates(base).get(name)
    if path is None:
        return None
    module = _import_plugin_file(name, path, cache_bust=cache_bust)
    return plugin_from_module(module, name)


def load_plugins(plugins_path: str | Path) -> List[LoadedPlugin]:
    """Import every plugin under ``plugins_path``.

    A missing directory yields no plugins. Plugins that fail to import or
    declare malformed capabilities are logged and skipped.
    """
    base = Path(plugins_path).resolve()
    if not base.is_dir():
        logger.info("Plugins path does not exist, no plugins loaded: %s", base)
        return []
    plugins: List[LoadedPlugin] = []
    for name, path in _plugin_candidates(base).items():
        try:
            module = _import_plugin_file(name, path)
            plugins.append(plugin_from_module(module, name))
        except Exception as e:
            logger.warning("Skipping invalid plugin", extra={"plugin_name": name, "error": str(e)})
    logger.info("Loaded %d plugin(s) from %s", len(plugins), base)
    return plugins


def load_builtin_plugins() -> List[LoadedPlugin]:
    plugins = []
    for module_path in BUILTIN_PLUGIN_MODULES:
        module = importlib.import_module(module_path)
        plugins.append(plugin_from_module(module, module_path.rsplit(".", 1)[-1]))
    return plugins


def register_plugin(registry: CapabilityRegistry, plugin: LoadedPlugin) -> List[str]:
    """Register every capability of ``plugin``.

    Registration is all-or-nothing: if one capability is rejected, the ones
    already registered for this plugin are removed again.

    Returns:
        The registered capability ids.

    Raises:
        InvalidCapabilityError: If a capability has no factory.
        DuplicateCapabilityError: If a capability id is already taken.
    """
    registered: List[str] = []
    try:
        for capability in plugin.capabilities:
            factory = plugin.factory_for(capability)
            if factory is None:
                raise InvalidCapabilityError(
                    f"plugin '{plugin.name}' declares capability '{capability.descriptor.key}' without a factory"
                )
            entry_cls = (
                TriggerCapabilityEntry
                if capability.descriptor.kind is CapabilityKind.TRIGGER
                else ActionCapabilityEntry
            )
            registry.register(
                entry_cls(
                    plugin_name=plugin.name,
                    capability_id=capability.capability_id,
                    capability=capability.descriptor,
                    factory=factory,
                )
            )
            registered.append(capability.capability_id)
    except Exception:
        if registered:
            registry.remove_plugin(plugin.name)
        raise
    logger.info(
        "Plugin registered",
        extra={"plugin_name": plugin.name, "capabilities": len(registered)},
    )
    return registered


def reload_plugin(registry: CapabilityRegistry, plugins_path: str | Path, name: str) -> Optional[LoadedPlugin]:
    """Re-import a plugin from disk and replace its capabilities.

    The capabilities registered under the previous version's name are
    replaced, even when the new version changes ``NAME``. If the plugin no
    longer exists its capabilities are only removed. If the new version fails
    to import, the previous capabilities stay registered.

    Returns:
        The reloaded plugin, or None if it disappeared.

    Raises:
        InvalidCapabilityError: If the new version declares malformed capabilities.
        DuplicateCapabilityError: If one of its capability ids is already taken.
        Exception: Whatever importing the new version raises.
    """
    previous_name = registered_plugin_name(name)
    plugin = load_plugin_by_name(plugins_path, name, cache_bust=True)
    registry.remove_plugin(previous_name)
    if plugin is None:
        logger.warning("Plugin missing; removed from registry", extra={"plugin_name": previous_name})
        return None
    register_plugin(registry, plugin)
    logger.info("Plugin hot-reloaded", extra={"plugin_name": plugin.name})
    return plugin
