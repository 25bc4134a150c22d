"""
Base classes and result types for the tool system.

Tool outputs are a closed union of known shapes plus a generic fallback.
Raw handler returns are coerced into it by the ToolExecutor, so the agent
loop only ever sees ToolResult.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum


class ToolCategory(Enum):
    """Categories of tools available to the agent"""
    FILE = "file"  # File system operations
    COMMAND = "command"  # Shell / process execution
    SEARCH = "search"  # Code and web search
    BROWSER = "browser"  # Browser automation
    MCP = "mcp"  # Tools proxied from MCP servers
    TASK = "task"  # Task lifecycle (completion, questions)


@dataclass(frozen=True)
class TextOutput:
    text: str
    kind: str = field(default="text", init=False)


@dataclass(frozen=True)
class FileOutput:
    path: str
    content: str
    kind: str = field(default="file", init=False)


@dataclass(frozen=True)
class CommandOutput:
    stdout: str
    stderr: str = ""
    exit_code: int = 0
    kind: str = field(default="command", init=False)


@dataclass(frozen=True)
class SearchMatch:
    path: str
    line: Optional[int] = None
    text: str = ""


@dataclass(frozen=True)
class SearchOutput:
    matches: List[SearchMatch]
    kind: str = field(default="search", init=False)


@dataclass(frozen=True)
class GenericOutput:
    """Anything that doesn't fit a known shape"""
    value: Any
    kind: str = field(default="generic", init=False)


ToolOutput = Union[TextOutput, FileOutput, CommandOutput, SearchOutput, GenericOutput]

KNOWN_OUTPUTS = (TextOutput, FileOutput, CommandOutput, SearchOutput, GenericOutput)


def coerce_tool_output(raw: Any) -> ToolOutput:
    """
    Map a raw handler return value onto the ToolOutput union.

    Strings become TextOutput; dicts are matched on their keys; everything
    else is wrapped in GenericOutput.
    """
    if isinstance(raw, KNOWN_OUTPUTS):
        return raw
    if isinstance(raw, str):
        return TextOutput(raw)
    if isinstance(raw, dict):
        keys = set(raw)
        if {"path", "content"} <= keys and isinstance(raw["content"], str):
            return FileOutput(path=str(raw["path"]), content=raw["content"])
        if "stdout" in keys and ("exit_code" in keys or "stderr" in keys):
            return CommandOutput(
                stdout=str(raw.get("stdout", "")),
                stderr=str(raw.get("stderr", "")),
                exit_code=int(raw.get("exit_code", 0)),
            )
        if isinstance(raw.get("matches"), list):
            matches = []
            for match in raw["matches"]:
                if isinstance(match, dict) and "path" in match:
                    matches.append(SearchMatch(
                        path=str(match["path"]),
                        line=match.get("line"),
                        text=str(match.get("text", "")),
                    ))
                else:
                    return GenericOutput(raw)
            return SearchOutput(matches)
    return GenericOutput(raw)


@dataclass(frozen=True)
class ToolResult:
    """Result of one tool execution: success with data, or an error message"""
    success: bool
    data: Optional[ToolOutput] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=coerce_tool_output(data) if data is not None else None)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_content(self) -> Any:
        """Content for a tool_result block sent back to the model"""
        if not self.success:
            return self.error or "Tool execution failed"
        if self.data is None:
            return ""
        if isinstance(self.data, TextOutput):
            return self.data.text
        if isinstance(self.data, GenericOutput) and isinstance(self.data.value, str):
            return self.data.value
        return asdict(self.data)


@dataclass
class ToolResponse:
    """Raw response from a tool handler"""
    content: Any  # The actual result content
    metadata: Optional[Dict[str, Any]] = None  # Additional metadata

    def to_string(self) -> str:
        """Convert response to string format"""
        if isinstance(self.content, str):
            return self.content
        return str(self.content)


@dataclass
class ToolDefinition:
    """Definition of a tool for LLM"""
    name: str
    description: str
    input_schema: Dict[str, Any]  # JSON schema for tool inputs
    category: ToolCategory


class IToolHandler(ABC):
    """
    One tool the model can call.

    A handler describes itself to the model through get_definition() and
    does the work in execute(). validate_input() checks arguments against
    the definition's schema before execute() is called.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name"""
        pass

    @property
    @abstractmethod
    def category(self) -> ToolCategory:
        """Tool category"""
        pass

    @abstractmethod
    def get_definition(self) -> ToolDefinition:
        """
        Get the tool definition for the LLM.

        Returns:
            ToolDefinition with name, description, and input schema
        """
        pass

    @abstractmethod
    async def execute(self, input_data: Dict[str, Any], context: Any) -> ToolResponse:
        """
        Execute the tool with given input.

        Args:
            input_data: Tool input parameters
            context: Execution context (the running task, if any)

        Returns:
            ToolResponse with results

        Raises:
            Exception if execution fails
        """
        pass

    def validate_input(self, input_data: Dict[str, Any]) -> None:
        """
        Validate tool input before execution.

        Raises:
            ValueError if validation fails
        """
        pass


_JSON_TYPES = {
    "string": str,
    "integer": int,
    "number": (int, float),
    "boolean": bool,
    "array": list,
    "object": dict,
}


class BaseToolHandler(IToolHandler):
    """
    Base implementation of IToolHandler with common functionality.

    Subclasses only need to implement:
    - name property
    - category property
    - get_definition()
    - execute()
    """

    def validate_input(self, input_data: Dict[str, Any]) -> None:
        """Check required properties and top-level JSON types against the schema"""
        if not isinstance(input_data, dict):
            raise ValueError(f"expected an object, got {type(input_data).__name__}")

        schema = self.get_definition().input_schema
        missing = [key for key in schema.get("required", []) if key not in input_data]
        if missing:
            raise ValueError(f"missing required field(s): {', '.join(missing)}")

        for key, prop in schema.get("properties", {}).items():
            expected = _JSON_TYPES.get(prop.get("type"))
            if key not in input_data or expected is None:
                continue
            value = input_data[key]
            # bool is an int subclass; don't let True pass as a number
            if isinstance(value, bool) and prop.get("type") in ("integer", "number"):
                raise ValueError(f"field '{key}' must be {prop['type']}")
            if not isinstance(value, expected):
                raise ValueError(f"field '{key}' must be {prop['type']}")

    def _format_error(self, error: Exception) -> str:
        """Format an error message for returning to the LLM"""
        return f"Error executing {self.name}: {str(error)}"

    def _success_response(self, content: Any, metadata: Optional[Dict] = None) -> ToolResponse:
        """Create a successful tool response"""
        return ToolResponse(content=content, metadata=metadata)

    def _error_response(self, error: Exception) -> ToolResponse:
        """Create an error tool response"""
        return ToolResponse(
            content=self._format_error(error),
            metadata={"error": True}
        )
