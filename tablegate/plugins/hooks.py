"""Before/after action hooks contributed by plugins.

Hooks receive a mutable context dict. Before-hooks run ahead of the handler
and may adjust ``params``/``body``; after-hooks run once the handler returned
and may adjust ``result``. Hooks registered for ``*`` apply to every action.
Callbacks run in registration order; exceptions propagate to the pipeline.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from typing import Any, Callable, Literal

logger = logging.getLogger(__name__)

HookPhase = Literal["before", "after"]
HookCallback = Callable[[MutableMapping[str, Any]], None]

ALL_ACTIONS = "*"


class HookManager:
    """Registry of action hooks, populated during plugin registration."""

    def __init__(self) -> None:
        self._hooks: dict[str, list[tuple[str, HookCallback]]] = {"before": [], "after": []}

    def register(self, action: str, callback: HookCallback, phase: HookPhase) -> None:
        if phase not in self._hooks:
            raise ValueError(f"Unknown hook phase: {phase}")
        self._hooks[phase].append((action, callback))

    def hooks_for(self, action: str, phase: HookPhase) -> list[HookCallback]:
        return [cb for name, cb in self._hooks[phase] if name in (action, ALL_ACTIONS)]

    def run(self, phase: HookPhase, action: str, context: MutableMapping[str, Any]) -> None:
        callbacks = self.hooks_for(action, phase)
        for callback in callbacks:
            callback(context)
        if callbacks:
            logger.debug(
                "hooks.ran",
                extra={"phase": phase, "action": action, "count": len(callbacks)},
            )

    def count(self) -> int:
        return sum(len(entries) for entries in self._hooks.values())
