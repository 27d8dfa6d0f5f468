"""Example plugin.

Stamps every action with a start time, tags created rows, and adds a
``hello`` action.
"""

from __future__ import annotations

import time
from collections.abc import MutableMapping
from typing import Any

from tablegate.plugins.base import Plugin, PluginRegistrar
from tablegate.schemas.actions import ActionCall, ActionResult


def _stamp(context: MutableMapping[str, Any]) -> None:
    context["hello_world_before"] = time.time()


def _tag_created(context: MutableMapping[str, Any]) -> None:
    result = context.get("result")
    if isinstance(result, dict):
        result.setdefault("plugin_meta", {})["hello_world"] = "created"


def _hello(call: ActionCall) -> ActionResult:
    return ActionResult(payload={"message": "Hello from plugin", "query": dict(call.params)})


class HelloWorldPlugin(Plugin):
    name = "hello_world"
    display_name = "Hello World Plugin"
    version = "1.0.0"

    def register(self, registrar: PluginRegistrar) -> None:
        registrar.on_before("*", _stamp)
        registrar.on_after("create", _tag_created)
        registrar.register_action("hello", _hello)
