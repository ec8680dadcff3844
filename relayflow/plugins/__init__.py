"""Plugin discovery and registration.

See ``relayflow.plugins.loader`` for the module contract a plugin satisfies.
"""

from .loader import (
    LoadedPlugin,
    PluginCapability,
    load_builtin_plugins,
    load_plugin_by_name,
    load_plugins,
    plugin_from_module,
    register_plugin,
    registered_plugin_name,
    reload_plugin,
)

__all__ = [
    "LoadedPlugin",
    "PluginCapability",
    "load_builtin_plugins",
    "load_plugin_by_name",
    "load_plugins",
    "plugin_from_module",
    "register_plugin",
    "registered_plugin_name",
    "reload_plugin",
]
