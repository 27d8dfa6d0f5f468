"""Plugin loading and lifecycle coordination.

``load_all()`` runs once at process start:

1. discover: instantiate every factory from the explicit registry, in order
2. resolve: depth-first topological sort over declared dependencies
3. register: each plugin, in resolved order, declares actions/grants/hooks
4. boot: each plugin, in the same order, after *all* registrations

The resolved order is deterministic for a fixed discovery order: plugins are
visited in discovery order and dependencies in declaration order.

Permission grants from different plugins on the same (table, role) pair are
unioned. The merged actions and grants are immutable once loading finished.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Iterable, Mapping
from types import MappingProxyType

from tablegate.core.errors import (
    CyclicDependencyError,
    MissingDependencyError,
    PluginLoadError,
)
from tablegate.plugins.base import Plugin, PluginRegistrar
from tablegate.plugins.hooks import HookManager
from tablegate.schemas.actions import ActionHandler

logger = logging.getLogger(__name__)

PluginFactory = Callable[[], Plugin]


class PluginManager:
    """Discovers, orders, registers and boots plugins."""

    def __init__(
        self,
        factories: Iterable[PluginFactory],
        hooks: HookManager | None = None,
        *,
        reserved_actions: Collection[str] = (),
    ) -> None:
        """Initialize the manager.

        Args:
            factories: Plugin factories in discovery order.
            hooks: Shared hook registry (a fresh one when omitted).
            reserved_actions: Action names plugins may not register (built-ins).
        """
        self._factories = list(factories)
        self._hooks = hooks or HookManager()
        self._reserved = frozenset(reserved_actions)
        self._plugins: dict[str, Plugin] = {}
        self._ordered: list[Plugin] = []
        self._actions: dict[str, ActionHandler] = {}
        self._permissions: dict[str, dict[str, list[str]]] = {}
        self._loaded = False

    @property
    def hooks(self) -> HookManager:
        return self._hooks

    @property
    def loaded(self) -> bool:
        return self._loaded

    def discover(self) -> list[Plugin]:
        """Instantiate every registered factory.

        Raises:
            PluginLoadError: If two plugins share a name or a name is empty.
        """
        discovered: dict[str, Plugin] = {}
        for factory in self._factories:
            plugin = factory()
            if not plugin.name:
                raise PluginLoadError(
                    code="plugin_missing_name",
                    message=f"Plugin {type(plugin).__name__} does not declare a name",
                )
            if plugin.name in discovered:
                raise PluginLoadError(
                    code="plugin_duplicate_name",
                    message=f"Duplicate plugin name '{plugin.name}'",
                    details={"plugin": plugin.name},
                )
            discovered[plugin.name] = plugin

        self._plugins = discovered
        return list(discovered.values())

    def resolve_load_order(self) -> list[Plugin]:
        """Topologically sort discovered plugins (dependencies first).

        Raises:
            CyclicDependencyError: If the dependency graph has a cycle.
            MissingDependencyError: If a dependency was not discovered.
        """
        resolved: dict[str, Plugin] = {}
        in_progress: list[str] = []

        def visit(plugin: Plugin) -> None:
            name = plugin.name
            if name in resolved:
                return
            if name in in_progress:
                cycle = in_progress[in_progress.index(name):] + [name]
                raise CyclicDependencyError(
                    code="plugin_dependency_cycle",
                    message=f"Circular plugin dependency: {' -> '.join(cycle)}",
                    details={"plugin": name, "cycle": cycle},
                )

            in_progress.append(name)
            for dependency in plugin.dependencies:
                target = self._plugins.get(dependency)
                if target is None:
                    raise MissingDependencyError(
                        code="plugin_missing_dependency",
                        message=(
                            f"Missing dependency '{dependency}' required by plugin '{name}'"
                        ),
                        details={"plugin": name, "dependency": dependency},
                    )
                visit(target)
            in_progress.pop()
            resolved[name] = plugin

        for plugin in self._plugins.values():
            visit(plugin)

        return list(resolved.values())

    def _collect(self, plugin: Plugin, registrar: PluginRegistrar) -> None:
        for action, handler in registrar.actions.items():
            if action in self._reserved:
                raise PluginLoadError(
                    code="plugin_action_reserved",
                    message=f"Plugin '{plugin.name}' cannot override built-in action '{action}'",
                    details={"plugin": plugin.name, "action": action},
                )
            if action in self._actions:
                raise PluginLoadError(
                    code="plugin_action_conflict",
                    message=f"Action '{action}' registered by more than one plugin",
                    details={"plugin": plugin.name, "action": action},
                )
            self._actions[action] = handler

        for table, roles in registrar.permissions.items():
            for role, actions in roles.items():
                merged = self._permissions.setdefault(table, {}).setdefault(role, [])
                merged.extend(a for a in actions if a not in merged)

    def load_all(self) -> list[Plugin]:
        """Discover, resolve, register and boot every plugin.

        Returns:
            Plugins in resolved order.

        Raises:
            PluginLoadError: On duplicate names, cycles, missing dependencies,
                action conflicts, or a second call.
        """
        if self._loaded:
            raise PluginLoadError(
                code="plugins_already_loaded",
                message="Plugins have already been loaded",
            )

        self.discover()
        ordered = self.resolve_load_order()

        for plugin in ordered:
            registrar = PluginRegistrar(self._hooks)
            plugin.register(registrar)
            self._collect(plugin, registrar)

        for plugin in ordered:
            plugin.boot()

        self._ordered = ordered
        self._loaded = True

        logger.info(
            "plugins.loaded",
            extra={
                "plugins": [p.name for p in ordered],
                "actions": sorted(self._actions),
                "hooks": self._hooks.count(),
            },
        )
        return list(ordered)

    def install_all(self) -> None:
        """Run every plugin's idempotent ``install()`` in resolved order."""
        for plugin in self._ordered:
            plugin.install()
            logger.info("plugins.installed", extra={"plugin": plugin.name})

    def uninstall(self, name: str) -> None:
        plugin = self._plugins.get(name)
        if plugin is None:
            raise PluginLoadError(
                code="plugin_not_found",
                message=f"Plugin '{name}' is not loaded",
                details={"plugin": name},
            )
        plugin.uninstall()
        logger.info("plugins.uninstalled", extra={"plugin": name})

    def plugins(self) -> list[Plugin]:
        return list(self._ordered)

    def describe(self) -> list[dict[str, object]]:
        return [
            {
                "name": p.name,
                "display_name": p.display_name or p.name,
                "version": p.version,
                "dependencies": list(p.dependencies),
            }
            for p in self._ordered
        ]

    @property
    def custom_actions(self) -> Mapping[str, ActionHandler]:
        return MappingProxyType(self._actions)

    @property
    def permissions(self) -> Mapping[str, Mapping[str, list[str]]]:
        """Merged grants as table -> role -> actions."""
        return MappingProxyType(
            {table: MappingProxyType(dict(roles)) for table, roles in self._permissions.items()}
        )
