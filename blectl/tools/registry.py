"""Named, schema-described operations exposed to the JSON-RPC server."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from jsonschema import validators

from blectl.core.errors import ToolArgumentError, ToolError

if TYPE_CHECKING:
    from blectl.core.session import BLESession

LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[["BLESession", dict[str, Any]], Awaitable[str]]


def object_schema(
    properties: dict[str, dict[str, Any]] | None = None,
    required: Sequence[str] = (),
) -> dict[str, Any]:
    schema: dict[str, Any] = {"type": "object", "properties": dict(properties or {})}
    if required:
        schema["required"] = list(required)
    return schema


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


def tool(
    collection: list[Tool],
    name: str,
    description: str,
    properties: dict[str, dict[str, Any]] | None = None,
    required: Sequence[str] = (),
) -> Callable[[ToolHandler], ToolHandler]:
    """Register the decorated coroutine as a tool in ``collection``."""

    def decorate(handler: ToolHandler) -> ToolHandler:
        collection.append(Tool(name, description, object_schema(properties, required), handler))
        return handler

    return decorate


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for item in tools:
            self.register(item)

    def register(self, item: Tool) -> None:
        validator_cls = validators.validator_for(item.input_schema)
        validator_cls.check_schema(item.input_schema)
        self._tools[item.name] = item

    def get(self, name: str) -> Tool:
        found = self._tools.get(name)
        if found is None:
            raise ToolError(f"Unknown tool: {name}")
        return found

    def names(self) -> list[str]:
        return sorted(self._tools)

    def list_tools(self) -> list[dict[str, Any]]:
        return [self._tools[name].describe() for name in self.names()]

    def validate(self, name: str, arguments: dict[str, Any]) -> Tool:
        found = self.get(name)
        validator = validators.validator_for(found.input_schema)(found.input_schema)
        error = next(iter(sorted(validator.iter_errors(arguments), key=lambda e: list(e.path))), None)
        if error is not None:
            path = ".".join(str(p) for p in error.path)
            where = f" ({path})" if path else ""
            raise ToolArgumentError(f"Invalid arguments for {name}{where}: {error.message}")
        return found

    async def call(self, name: str, arguments: dict[str, Any], session: BLESession) -> str:
        found = self.validate(name, arguments)
        LOGGER.debug("Calling tool %s with %s", name, arguments)
        return await found.handler(session, arguments)


def default_registry() -> ToolRegistry:
    from blectl.tools import core_ble, debug, ftms, hrs

    return ToolRegistry([*core_ble.TOOLS, *ftms.TOOLS, *hrs.TOOLS, *debug.TOOLS])
