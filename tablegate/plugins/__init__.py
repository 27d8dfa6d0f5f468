"""Plugin registry.

Plugins are enabled by name (``PLUGINS_ENABLED='["hello_world"]'``). New
plugins are added to ``PLUGIN_REGISTRY``; nothing is imported by convention.
"""

from __future__ import annotations

from collections.abc import Iterable

from tablegate.core.errors import PluginLoadError
from tablegate.plugins.base import Plugin, PluginRegistrar
from tablegate.plugins.hello_world import HelloWorldPlugin
from tablegate.plugins.hooks import HookManager
from tablegate.plugins.manager import PluginFactory, PluginManager

PLUGIN_REGISTRY: dict[str, PluginFactory] = {
    HelloWorldPlugin.name: HelloWorldPlugin,
}


def select_factories(
    names: Iterable[str],
    registry: dict[str, PluginFactory] | None = None,
) -> list[PluginFactory]:
    """Map enabled plugin names to factories, preserving order.

    Raises:
        PluginLoadError: If a name is not in the registry.
    """
    source = PLUGIN_REGISTRY if registry is None else registry
    factories: list[PluginFactory] = []
    for name in names:
        factory = source.get(name)
        if factory is None:
            raise PluginLoadError(
                code="plugin_not_registered",
                message=f"Plugin '{name}' is not registered",
                details={"plugin": name},
            )
        factories.append(factory)
    return factories


__all__ = [
    "HookManager",
    "PLUGIN_REGISTRY",
    "Plugin",
    "PluginFactory",
    "PluginManager",
    "PluginRegistrar",
    "select_factories",
]
