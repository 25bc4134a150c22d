"""
Task lifecycle tools.
"""

from typing import Any, Dict

from .base import BaseToolHandler, ToolCategory, ToolDefinition, ToolResponse

COMPLETION_DESCRIPTION = """Call this once the task is finished to end the run.

Put a short account of the outcome in `result`. Every other tool call in the
same reply runs before the task ends, so do not call this while you are still
waiting on a tool's output."""


class AttemptCompletionHandler(BaseToolHandler):
    """
    Definition of the completion tool.

    The orchestrator stops the loop when it sees a call to this tool and
    never routes it to the executor. Registering the handler is what puts the
    tool in front of the model; execute() only runs if something calls the
    executor directly.
    """

    def __init__(self, name: str = "attempt_completion"):
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def category(self) -> ToolCategory:
        return ToolCategory.TASK

    def get_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self._name,
            description=COMPLETION_DESCRIPTION,
            input_schema={
                "type": "object",
                "properties": {
                    "result": {"type": "string", "description": "Outcome of the task"},
                },
                "required": ["result"],
            },
            category=ToolCategory.TASK,
        )

    async def execute(self, input_data: Dict[str, Any], context: Any) -> ToolResponse:
        return self._success_response(input_data["result"], metadata={"completion": True})
