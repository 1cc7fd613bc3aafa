"""Tool Registry for the MCP Gateway.

Single catalog of tools keyed by name. Tools are registered at startup
and invoked concurrently for the lifetime of the process.
"""

import asyncio
import inspect
import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from shared.logging import get_logger
from shared.models import ToolDefinition, ToolResult
from shared.schema import validate_schema

logger = get_logger(__name__)


# A handler receives validated arguments and returns a ToolResult; sync
# handlers are run in a worker thread.
ToolHandler = Callable[[dict[str, Any]], Union[ToolResult, Awaitable[ToolResult]]]


@dataclass(frozen=True)
class RegisteredTool:
    definition: ToolDefinition
    handler: ToolHandler


class ToolRegistry:
    """
    Central registry for all MCP tools.

    Responsibilities:
    - Register tools (last registration of a name wins)
    - List tools for discovery
    - Validate arguments against the declared schema
    - Invoke handlers, turning every failure into an error result

    Writers replace the whole mapping under a lock; readers take the
    current mapping without locking.
    """

    def __init__(self) -> None:
        self._tools: Mapping[str, RegisteredTool] = MappingProxyType({})
        self._write_lock = threading.Lock()

    def register(
        self,
        name: str,
        description: str,
        input_schema: dict[str, Any],
        handler: ToolHandler
    ) -> None:
        """
        Register a tool, overwriting any previous tool of the same name.

        Args:
            name: Unique tool name
            description: Human-readable description
            input_schema: JSON Schema of the arguments
            handler: Function executing the tool
        """
        entry = RegisteredTool(
            definition=ToolDefinition(
                name=name,
                description=description,
                input_schema=input_schema,
            ),
            handler=handler,
        )

        with self._write_lock:
            if name in self._tools:
                logger.warning("Tool already registered, overwriting", tool=name)
            updated = dict(self._tools)
            updated[name] = entry
            self._tools = MappingProxyType(updated)

        logger.info("Tool registered", tool=name)

    def get(self, name: str) -> Optional[ToolDefinition]:
        """Get a tool definition by name."""
        entry = self._tools.get(name)
        return entry.definition if entry else None

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[ToolDefinition]:
        """Snapshot of all registered tools, sorted by name."""
        tools = self._tools
        return [tools[name].definition for name in sorted(tools)]

    def size(self) -> int:
        return len(self._tools)

    def validate_input(
        self,
        name: str,
        arguments: dict[str, Any]
    ) -> tuple[bool, list[str]]:
        """
        Validate arguments against a tool's input schema.

        Returns:
            Tuple of (is_valid, list of error messages)
        """
        entry = self._tools.get(name)
        if entry is None:
            return False, [f"Tool not found: {name}"]
        return validate_schema(arguments, entry.definition.input_schema)

    async def invoke(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        """
        Invoke a registered tool.

        Never raises: unknown tools, invalid arguments and handler
        exceptions all come back as error results.

        Args:
            name: Tool name
            arguments: Tool arguments

        Returns:
            Result of the tool
        """
        entry = self._tools.get(name)
        if entry is None:
            logger.warning("Tool not found", tool=name)
            return ToolResult.error(f"Tool not found: {name}")

        is_valid, errors = validate_schema(arguments, entry.definition.input_schema)
        if not is_valid:
            logger.warning("Invalid tool arguments", tool=name, errors=errors)
            return ToolResult.error(f"Invalid arguments: {'; '.join(errors)}")

        try:
            logger.info("Invoking tool", tool=name)
            if inspect.iscoroutinefunction(entry.handler):
                result = await entry.handler(arguments)
            else:
                result = await asyncio.to_thread(entry.handler, arguments)
                if inspect.isawaitable(result):
                    result = await result
        except Exception as e:
            logger.error("Tool execution failed", tool=name, error=str(e), exc_info=True)
            return ToolResult.error(f"Tool execution failed: {e}")

        if not isinstance(result, ToolResult):
            logger.error("Tool returned an unexpected type", tool=name, type=type(result).__name__)
            return ToolResult.error(f"Tool execution failed: {name} returned no result")

        return result

    def clear(self) -> None:
        """Clear all registered tools. Use with caution."""
        with self._write_lock:
            self._tools = MappingProxyType({})
        logger.warning("Tool registry cleared")


# Global registry instance
_registry: Optional[ToolRegistry] = None


def get_registry() -> ToolRegistry:
    """Get the global tool registry instance."""
    global _registry
    if _registry is None:
        _registry = ToolRegistry()
    return _registry
