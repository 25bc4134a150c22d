"""
Error message formatting for logs and error callbacks.
"""

from typing import Any, Dict

from .categories import ErrorCategory, categorize_error


class ErrorFormatter:
    """
    Formats errors into short, categorized messages.
    """

    # Hints shown next to a categorized error
    SUGGESTIONS = {
        ErrorCategory.LIMIT: [
            "Review the prompt: the model may not know which tool to call",
            "Raise CADENCE_MAX_CONSECUTIVE_MISTAKES or CADENCE_MAX_TURNS if the task is long",
        ],
        ErrorCategory.AUTH: [
            "Check LLM_API_KEY or ANTHROPIC_API_KEY",
            "Confirm the key has access to LLM_MODEL_ID",
        ],
        ErrorCategory.TIMEOUT: [
            "Wrap the AI service or tool executor with a deadline that fits the workload",
            "For Ollama: Set `OLLAMA_TIMEOUT=0` for unlimited timeout",
        ],
        ErrorCategory.NETWORK: [
            "Check connectivity to the provider host",
            "For Ollama: confirm OLLAMA_BASE_URL points at a running server",
        ],
        ErrorCategory.API: [
            "Check the service status page for outages",
            "Retries are exhausted by now; rerun the task later",
        ],
        ErrorCategory.TOOL: [
            "Compare the arguments with the tool input schema",
            "Check the on_tool_execute callback if one is installed",
        ],
        ErrorCategory.INTERNAL: [
            "Run again with LOG_LEVEL=DEBUG",
            "Inspect the traceback in the failure log entry",
        ],
    }

    @staticmethod
    def format_error_concise(error: Exception) -> str:
        """
        Format an error concisely for logs or inline display.

        Args:
            error: The exception to format

        Returns:
            Concise error string
        """
        category, explanation = categorize_error(error)
        return f"{category.value.upper()}: {explanation} - {str(error)[:100]}"

    @staticmethod
    def to_dict(error: Exception) -> Dict[str, Any]:
        """Structured form used by result() and JSON logging"""
        category, explanation = categorize_error(error)
        return {
            "category": category.value,
            "explanation": explanation,
            "type": type(error).__name__,
            "code": getattr(error, "code", None),
            "message": str(error),
            "suggestions": list(ErrorFormatter.SUGGESTIONS.get(category, [])),
        }


def format_error_for_user(error: Exception) -> str:
    """
    Format an error as a multi-line report with suggestions.

    Args:
        error: The exception to format

    Returns:
        Formatted error message
    """
    category, explanation = categorize_error(error)
    lines = [
        f"Task failed ({category.value}): {explanation}",
        f"  {type(error).__name__}: {str(error)[:200]}",
    ]
    for suggestion in ErrorFormatter.SUGGESTIONS.get(category, []):
        lines.append(f"  - {suggestion}")
    return "\n".join(lines)
