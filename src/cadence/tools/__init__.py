"""
Tools module - Tool result types, handler base classes and the executor.
"""

from .base import (
    IToolHandler,
    BaseToolHandler,
    ToolDefinition,
    ToolResponse,
    ToolCategory,
    ToolResult,
    ToolOutput,
    TextOutput,
    FileOutput,
    CommandOutput,
    SearchOutput,
    SearchMatch,
    GenericOutput,
    coerce_tool_output,
)
from .executor import IToolExecutor, ToolExecutor
from .task_tools import AttemptCompletionHandler


def create_default_tool_executor(completion_tool_name: str = "attempt_completion") -> ToolExecutor:
    """
    Create a ToolExecutor with the task lifecycle tools registered.

    Domain tools (filesystem, git, browser, MCP) are registered by the
    caller on the returned executor.
    """
    executor = ToolExecutor()
    executor.register(AttemptCompletionHandler(completion_tool_name))
    return executor


__all__ = [
    # Base classes
    "IToolHandler",
    "BaseToolHandler",
    "ToolDefinition",
    "ToolResponse",
    "ToolCategory",
    # Results
    "ToolResult",
    "ToolOutput",
    "TextOutput",
    "FileOutput",
    "CommandOutput",
    "SearchOutput",
    "SearchMatch",
    "GenericOutput",
    "coerce_tool_output",
    # Executor
    "IToolExecutor",
    "ToolExecutor",
    "create_default_tool_executor",
    # Task tools
    "AttemptCompletionHandler",
]
