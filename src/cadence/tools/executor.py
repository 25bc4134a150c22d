"""
Tool dispatch for the agent loop.

The loop only knows the IToolExecutor contract. ToolExecutor is the stock
implementation: a per-task registry of handlers that validates arguments
and turns whatever a handler returns into a ToolResult.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from .base import IToolHandler, ToolCategory, ToolDefinition, ToolResult

logger = logging.getLogger(__name__)


class IToolExecutor(ABC):
    """What the agent loop needs from a tool executor"""

    @abstractmethod
    async def execute(self, name: str, args: Dict[str, Any]) -> ToolResult:
        """
        Run one tool.

        A failed tool is reported as ``ToolResult(success=False)``. Raising
        is reserved for failures of the executor itself and fails the task.
        """
        pass

    def get_tool_definitions_for_llm(self) -> List[Dict[str, Any]]:
        return []


class ToolExecutor(IToolExecutor):
    """
    Registry-backed executor.

    Handlers are kept in registration order; that order is also the order
    the model sees the tool list in. ``context`` is handed to every handler
    call unchanged.
    """

    def __init__(self, context: Any = None):
        self.context = context
        self._handlers: Dict[str, IToolHandler] = {}

    def register(self, handler: IToolHandler) -> None:
        """
        Add a handler.

        Raises:
            ValueError: if the name is taken
        """
        if handler.name in self._handlers:
            raise ValueError(f"Tool handler '{handler.name}' is already registered")
        self._handlers[handler.name] = handler
        logger.debug(f"Registered tool {handler.name} [{handler.category.value}]")

    def register_multiple(self, handlers: Iterable[IToolHandler]) -> None:
        for handler in handlers:
            self.register(handler)

    def unregister(self, name: str) -> bool:
        return self._handlers.pop(name, None) is not None

    def _select(self, categories: Optional[Iterable[ToolCategory]]) -> List[IToolHandler]:
        if categories is None:
            return list(self._handlers.values())
        wanted = set(categories)
        return [h for h in self._handlers.values() if h.category in wanted]

    def get_tool_definitions(self, categories: Optional[Iterable[ToolCategory]] = None) -> List[ToolDefinition]:
        return [handler.get_definition() for handler in self._select(categories)]

    def get_tool_definitions_for_llm(self, categories: Optional[Iterable[ToolCategory]] = None) -> List[Dict[str, Any]]:
        """Definitions as ``{name, description, input_schema}`` dicts (Anthropic tool format)"""
        return [
            {"name": d.name, "description": d.description, "input_schema": d.input_schema}
            for d in self.get_tool_definitions(categories)
        ]

    async def execute(self, name: str, args: Dict[str, Any]) -> ToolResult:
        """
        Validate ``args`` and run the named handler.

        Unknown tools and invalid arguments come back as failed results so
        the model can correct itself. A handler that raises is an executor
        failure: the error is re-raised as RuntimeError.
        """
        handler = self._handlers.get(name)
        if handler is None:
            logger.warning(f"Model asked for unknown tool: {name}")
            return ToolResult.fail(f"Unknown tool: {name}. Available tools: {self.get_tool_names()}")

        try:
            handler.validate_input(args)
        except ValueError as e:
            logger.warning(f"Rejected arguments for {name}: {e}")
            return ToolResult.fail(f"Invalid input for tool '{name}': {e}")

        logger.debug(f"Dispatching {name} with {args}")
        try:
            response = await handler.execute(args, self.context)
        except Exception as e:
            logger.error(f"Tool {name} raised: {e}", exc_info=True)
            raise RuntimeError(f"Tool '{name}' execution failed: {e}") from e

        if response.metadata and response.metadata.get("error"):
            logger.warning(f"Tool {name} reported an error: {response.to_string()[:200]}")
            return ToolResult.fail(response.to_string())

        return ToolResult.ok(response.content)

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self._handlers

    def get_tool_names(self) -> List[str]:
        return list(self._handlers)

    def get_tools_by_category(self, category: ToolCategory) -> List[IToolHandler]:
        return self._select([category])

    def clear(self) -> None:
        self._handlers.clear()
