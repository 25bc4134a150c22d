#!/usr/bin/env python
"""
Entry point for running a single Cadence task from the command line.

    python run.py "Summarize the README" --image diagram.png --file notes.md

Provider and limits come from the environment (LLM_PROVIDER, LLM_MODEL_ID,
LLM_API_KEY, CADENCE_MAX_TURNS, ...) or a .env file.
"""

import sys
import os
import asyncio
import argparse
from pathlib import Path

# Add src directory to Python path
project_root = Path(__file__).parent
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

# Check for required dependencies
try:
    from dotenv import load_dotenv
except ImportError as e:
    print(f"""
Error: Missing required dependencies

{e}

Please make sure you have activated your virtual environment and installed the package:

    pip install -e .

Then try running again:
    python run.py "your task"
""")
    sys.exit(1)

# Load environment variables
load_dotenv()

# Configure logging before importing application modules
from cadence.logging_config import configure_logging, get_logger
configure_logging()

from cadence.agent import TaskCallbacks, TaskConfig, TaskOrchestrator, TaskStatus
from cadence.errors import format_error_for_user
from cadence.llm import create_ai_service
from cadence.messages import TextBlock
from cadence.tools import create_default_tool_executor

logger = get_logger("cadence.run")

SYSTEM_PROMPT = (
    "You are an autonomous assistant working through a task one step at a time. "
    "Use the available tools to make progress. When the task is finished, call "
    "the {completion_tool} tool with a summary of the result."
)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one Cadence task")
    parser.add_argument("prompt", help="Task description")
    parser.add_argument("--image", action="append", default=[], help="Image URL or data URI to attach")
    parser.add_argument("--file", action="append", default=[], help="File path to attach")
    return parser.parse_args(argv)


async def run_task(args: argparse.Namespace) -> int:
    config = TaskConfig.from_env()
    executor = create_default_tool_executor(config.completion_tool_name)

    provider = os.getenv("LLM_PROVIDER", "ollama")
    ai_service = create_ai_service(
        provider_type=provider,
        model_id=os.getenv("LLM_MODEL_ID") or None,
        api_key=os.getenv("LLM_API_KEY") or None,
        system_prompt=SYSTEM_PROMPT.format(completion_tool=config.completion_tool_name),
        tools=executor.get_tool_definitions_for_llm(),
    )

    async def on_stream_content(content, partial):
        for block in content:
            if isinstance(block, TextBlock):
                sys.stdout.write(block.text)
        sys.stdout.flush()

    async def on_error(error):
        print(f"\n{format_error_for_user(error)}", file=sys.stderr)

    task = TaskOrchestrator(
        ai_service,
        executor,
        config=config,
        callbacks=TaskCallbacks(on_stream_content=on_stream_content, on_error=on_error),
    )

    print(f"Task {task.task_id} | provider: {provider} | model: {getattr(ai_service, 'model_id', 'default')}\n")

    try:
        result = await task.start(args.prompt, images=args.image, files=args.file)
    except (KeyboardInterrupt, asyncio.CancelledError):
        await task.abort()
        result = task.result()
    finally:
        close = getattr(ai_service, "close", None)
        if close is not None:
            await close()

    print()
    if result["completion_message"]:
        print(f"\nResult: {result['completion_message']}")
    print(f"Status: {result['status']} after {result['turns']} turns")

    return 0 if task.status is TaskStatus.COMPLETED else 1


def main():
    """Run one task and exit with its status."""
    args = parse_args()
    try:
        sys.exit(asyncio.run(run_task(args)))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(130)


if __name__ == "__main__":
    main()
