"""Plugin interface and registrar.

Lifecycle, driven by ``PluginManager``:

- ``register(registrar)``: declare hooks, actions and permission grants.
- ``boot()``: runs after every plugin registered; may rely on capabilities
  declared by any other plugin.
- ``install()``: one-time setup (seed data, migrations). Must be idempotent.
- ``uninstall()``: explicit cleanup.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable

from tablegate.plugins.hooks import HookCallback, HookManager
from tablegate.schemas.actions import ActionHandler


class Plugin(ABC):
    """Base class for extension modules.

    Subclasses set ``name`` (unique machine name), ``display_name``,
    ``version`` and ``dependencies`` (names of plugins that must load first).
    """

    name: str = ""
    display_name: str = ""
    version: str = "0.0.0"
    dependencies: tuple[str, ...] = ()

    @abstractmethod
    def register(self, registrar: "PluginRegistrar") -> None:
        """Declare hooks, actions and permission grants."""

    def boot(self) -> None:
        return None

    def install(self) -> None:
        return None

    def uninstall(self) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, version={self.version!r})"


class PluginRegistrar:
    """Surface handed to one plugin during registration.

    Hooks go straight to the shared ``HookManager``; actions and permission
    grants are collected here and merged by the manager.
    """

    def __init__(self, hooks: HookManager) -> None:
        self._hooks = hooks
        self._actions: dict[str, ActionHandler] = {}
        self._permissions: dict[str, dict[str, list[str]]] = {}

    def on_before(self, action: str, callback: HookCallback) -> None:
        self._hooks.register(action, callback, "before")

    def on_after(self, action: str, callback: HookCallback) -> None:
        self._hooks.register(action, callback, "after")

    def register_action(self, name: str, handler: ActionHandler) -> None:
        self._actions[name] = handler

    def register_permission(self, table: str, role: str, actions: Iterable[str]) -> None:
        """Grant ``actions`` on ``table`` to ``role``.

        Example:
            registrar.register_permission("orders", "admin", ["create", "update"])
        """
        current = self._permissions.setdefault(table, {}).setdefault(role, [])
        for action in actions:
            if action not in current:
                current.append(action)

    @property
    def actions(self) -> dict[str, ActionHandler]:
        return dict(self._actions)

    @property
    def permissions(self) -> dict[str, dict[str, list[str]]]:
        return {table: {role: list(a) for role, a in roles.items()} for table, roles in self._permissions.items()}
