"""
TaskOrchestrator - drives the multi-turn agent loop for one task.

This module implements the main agentic loop that:
1. Seeds the conversation with the user's prompt
2. Streams a reply over the (possibly compressed) history
3. Decodes streamed tool invocations and executes them one at a time
4. Feeds tool results back and repeats until the completion tool is called

Cancellation is cooperative. abort() raises a flag that the loop polls at
the start of every turn and after every stream read or tool call; work that
is already in flight is not interrupted, its result is discarded.
"""

import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..errors import (
    AlreadyStarted,
    ErrorFormatter,
    MistakeLimitExceeded,
    TaskCancelled,
    TaskError,
    TurnLimitExceeded,
)
from ..llm.provider import AIService
from ..messages import (
    ContentBlock,
    ConversationMessage,
    DisplayKind,
    DisplayMessage,
    FileBlock,
    ImageBlock,
    TextBlock,
    ToolResultBlock,
    estimate_tokens,
)
from ..observability import TaskMetrics
from ..tools import IToolExecutor, ToolResult
from .history import DEFAULT_MAX_MESSAGES, HistoryStore, TruncationStrategy
from .state import DEFAULT_MAX_CONSECUTIVE_MISTAKES, TaskPhase, TaskRecord, TaskState, TaskStatus
from .stream import StreamDecoder, ToolInvocation

logger = logging.getLogger(__name__)

DEFAULT_CONTINUE_PROMPT = (
    "Please continue with the next step or use the attempt_completion tool if you're done."
)


def new_correlation_id() -> str:
    """Time-ordered id: 48-bit millisecond timestamp followed by random bits"""
    return f"{int(time.time() * 1000):012x}{uuid.uuid4().hex[:20]}"


@dataclass
class TaskConfig:
    """Configuration for a task execution"""
    task_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    max_consecutive_mistakes: int = DEFAULT_MAX_CONSECUTIVE_MISTAKES
    max_turns: Optional[int] = None
    max_messages: int = DEFAULT_MAX_MESSAGES
    completion_tool_name: str = "attempt_completion"
    continue_prompt: str = DEFAULT_CONTINUE_PROMPT
    # Compress the model-facing view when its estimated size exceeds this
    context_token_limit: Optional[int] = None
    compression_strategy: TruncationStrategy = TruncationStrategy.HALF

    @classmethod
    def from_env(cls, env_dict: Optional[Mapping[str, str]] = None) -> "TaskConfig":
        """Create config from environment variables"""
        env_dict = os.environ if env_dict is None else env_dict

        def get_int(key: str, default: Optional[int]) -> Optional[int]:
            raw = env_dict.get(key)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError:
                logger.warning(f"Invalid {key} value: {raw!r}, using default {default}")
                return default

        strategy = env_dict.get("CADENCE_COMPRESSION_STRATEGY", TruncationStrategy.HALF.value)
        try:
            compression_strategy = TruncationStrategy(strategy)
        except ValueError:
            logger.warning(f"Invalid CADENCE_COMPRESSION_STRATEGY value: {strategy!r}, using half")
            compression_strategy = TruncationStrategy.HALF

        return cls(
            max_consecutive_mistakes=get_int("CADENCE_MAX_CONSECUTIVE_MISTAKES", DEFAULT_MAX_CONSECUTIVE_MISTAKES),
            max_turns=get_int("CADENCE_MAX_TURNS", None),
            max_messages=get_int("CADENCE_MAX_MESSAGES", DEFAULT_MAX_MESSAGES),
            completion_tool_name=env_dict.get("CADENCE_COMPLETION_TOOL", "attempt_completion"),
            context_token_limit=get_int("CADENCE_CONTEXT_TOKEN_LIMIT", None),
            compression_strategy=compression_strategy,
        )


@dataclass
class TaskCallbacks:
    """
    Outward lifecycle hooks. Every hook is awaited in sequence, so a slow
    hook slows the loop down.

    on_tool_execute may return a ToolResult to stand in for the executor
    (e.g. a user denied the call); returning None lets the executor run.
    """
    on_state_change: Optional[Callable[[TaskStatus], Awaitable[None]]] = None
    on_message_update: Optional[Callable[[DisplayMessage], Awaitable[None]]] = None
    on_stream_content: Optional[Callable[[Tuple[ContentBlock, ...], bool], Awaitable[None]]] = None
    on_tool_execute: Optional[Callable[[str, Dict[str, Any]], Awaitable[Optional[ToolResult]]]] = None
    on_error: Optional[Callable[[Exception], Awaitable[None]]] = None


class TaskOrchestrator:
    """
    Runs one task from prompt to a terminal status.

    Owns the task's TaskState, HistoryStore and StreamDecoder; the AI
    service and tool executor are injected. Nothing is shared between
    instances.
    """

    def __init__(
        self,
        ai_service: AIService,
        tool_executor: IToolExecutor,
        config: Optional[TaskConfig] = None,
        callbacks: Optional[TaskCallbacks] = None,
    ):
        self.config = config or TaskConfig()
        self.ai_service = ai_service
        self.tool_executor = tool_executor
        self.callbacks = callbacks or TaskCallbacks()

        self.task_id = self.config.task_id
        self.correlation_id = new_correlation_id()

        self.state = TaskState(max_consecutive_mistakes=self.config.max_consecutive_mistakes)
        self.history = HistoryStore(max_messages=self.config.max_messages)
        self.decoder = StreamDecoder()
        self.metrics = TaskMetrics()

        self.turn_count = 0
        self.completion_message: Optional[str] = None
        self.last_error: Optional[Exception] = None
        self._started = False
        self._error_reported = False

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def start(
        self,
        prompt: str,
        images: Optional[Sequence[str]] = None,
        files: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        """
        Run the task to completion, failure or cancellation.

        Failures are reported through on_error/on_state_change, not raised.

        Returns:
            Dict containing task results (see result())

        Raises:
            AlreadyStarted: on a second call
        """
        if self._started:
            raise AlreadyStarted(self.task_id)
        self._started = True

        if self.state.abort_requested:
            logger.info(f"Task {self.task_id} was aborted before start; not running")
            return self.result()

        logger.info(f"Starting task {self.task_id} (correlation {self.correlation_id})", extra=self._log_context())
        logger.debug(f"Initial prompt: {prompt[:200]}...")

        try:
            self._check_abort()
            self.state.set_state(TaskStatus.RUNNING, TaskPhase.INITIALIZING)
            await self._notify_state_change(TaskStatus.RUNNING)

            user_content = self._build_user_content(prompt, images, files)
            await self.history.append(ConversationMessage.user(user_content))
            await self._say(DisplayKind.SAY, user_content)

            await self._initiate_task_loop()
            await self._mark_completed()

        except TaskCancelled:
            logger.info(f"Task {self.task_id} cancelled after {self.turn_count} turns")

        except Exception as e:
            await self._handle_error(e)

        finally:
            self.decoder.reset()
            self.state.is_streaming = False

        logger.info(self.metrics.get_formatted_summary())
        return self.result()

    async def abort(self) -> None:
        """
        Request cancellation.

        Safe at any point in the lifecycle; a second call is a no-op. A
        non-terminal task moves to CANCELLED right away, and the loop stops
        at its next check.
        """
        if not self.state.request_abort():
            logger.debug(f"Abort already requested for task {self.task_id}")
            return

        if self.state.is_terminal():
            logger.debug(f"Abort requested on finished task {self.task_id} ({self.state.status.value})")
            return

        logger.info(f"Abort requested for task {self.task_id}")
        self.state.set_state(TaskStatus.CANCELLED, TaskPhase.CLEANUP)
        try:
            await self._notify_state_change(TaskStatus.CANCELLED)
        except Exception as e:
            logger.error(f"on_state_change failed during abort: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _initiate_task_loop(self) -> None:
        """
        Main task loop - one turn per iteration until the completion tool
        is called or a limit is hit.
        """
        while True:
            self._check_abort()

            if self.config.max_turns is not None and self.turn_count >= self.config.max_turns:
                raise TurnLimitExceeded(self.config.max_turns)

            if await self._run_turn():
                break

    async def _run_turn(self) -> bool:
        """
        Stream one reply, execute its tool invocations and record the turn.

        Returns:
            True if the completion tool was called
        """
        self.turn_count += 1
        self.metrics.record_turn()
        limit = f"/{self.config.max_turns}" if self.config.max_turns else ""
        logger.info(f"=== Turn {self.turn_count}{limit} ===", extra=self._log_context(turn=self.turn_count))

        self.decoder.reset()
        self.decoder.request_id = f"{self.correlation_id}:{self.turn_count}"
        self.state.set_phase(TaskPhase.STREAMING)
        self.state.is_streaming = True
        self.state.is_waiting_for_first_chunk = True

        view = await self._model_view()
        self._check_abort()

        results: List[ToolResultBlock] = []
        completion: Optional[ToolInvocation] = None
        invocation_count = 0

        stream = self.ai_service.stream(view)
        try:
            async for chunk in stream:
                self._check_abort()
                self.state.is_waiting_for_first_chunk = False
                self.metrics.record_chunk()

                decoded = self.decoder.consume(chunk)

                if decoded.content:
                    await self._notify_stream_content(decoded.content, chunk.partial)

                for invocation in decoded.invocations:
                    invocation_count += 1

                    if invocation.name == self.config.completion_tool_name:
                        completion = invocation
                        self.state.record_tool_use(invocation.name)
                        logger.info(f"Task completion requested: {invocation.input.get('result', '')}")
                        continue

                    result = await self._execute_tool(invocation)
                    self._check_abort()
                    results.append(ToolResultBlock(
                        tool_use_id=invocation.id,
                        output=result.to_content(),
                        is_error=not result.success,
                    ))

                if chunk.is_last:
                    break
        finally:
            self.state.is_streaming = False
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        dropped = self.decoder.finish()
        self.metrics.record_decoder_losses(
            parse_failures=len(self.decoder.tool_uses.parse_errors),
            dropped_deltas=self.decoder.tool_uses.dropped_deltas,
            incomplete=len(dropped),
        )
        if self.decoder.reasoning.has_reasoning():
            logger.debug(f"Reasoning ({len(self.decoder.reasoning.content)} chars) kept out of history")

        await self._record_reply(results)

        logger.info(f"Turn {self.turn_count}: {invocation_count} tool invocation(s)")
        self.state.set_phase(TaskPhase.EXECUTING)

        if completion is not None:
            self.completion_message = completion.input.get("result", "Task completed")
            return True

        consecutive = self.state.record_turn(invocation_count)
        if invocation_count == 0:
            self.metrics.record_mistake(consecutive)
            if self.state.has_reached_max_mistakes():
                raise MistakeLimitExceeded(consecutive, self.state.max_consecutive_mistakes)

            await self.history.append(ConversationMessage.user([TextBlock(self.config.continue_prompt)]))

        return False

    async def _model_view(self) -> List[ConversationMessage]:
        """Truncated history for the next request, compressing first if it is too large"""
        view = await self.history.get_truncated_view()

        limit = self.config.context_token_limit
        if limit is not None and estimate_tokens(view) > limit and len(self.history) > 2:
            await self.history.compress(self.config.compression_strategy)
            self.metrics.record_compression()
            view = await self.history.get_truncated_view()

        return view

    async def _record_reply(self, results: List[ToolResultBlock]) -> None:
        """Append the assistant reply, then the tool results as one user turn"""
        assistant_content = self.decoder.assistant_content()
        if assistant_content:
            await self.history.append(ConversationMessage.assistant(assistant_content))

            text_blocks = [b for b in assistant_content if isinstance(b, TextBlock)]
            if text_blocks:
                await self._say(DisplayKind.SAY, text_blocks)

        if results:
            await self.history.append(ConversationMessage.user(results))

    async def _execute_tool(self, invocation: ToolInvocation) -> ToolResult:
        """
        Run one tool invocation.

        on_tool_execute gets the first look; the executor runs if it
        returns None. Exceptions propagate and fail the task.
        """
        self.state.set_phase(TaskPhase.TOOL_EXECUTING)
        logger.debug(f"Executing tool: {invocation.name} ({invocation.id})")

        result = None
        if self.callbacks.on_tool_execute is not None:
            result = await self.callbacks.on_tool_execute(invocation.name, dict(invocation.input))
        if result is None:
            result = await self.tool_executor.execute(invocation.name, dict(invocation.input))
        if not isinstance(result, ToolResult):
            result = ToolResult.ok(result)

        self.state.record_tool_use(invocation.name)
        self.metrics.record_tool_call(invocation.name, result.success)
        if not result.success:
            logger.warning(f"Tool {invocation.name} failed: {result.error}", extra=self._log_context(tool=invocation.name))

        await self._say(
            DisplayKind.TOOL,
            tool_name=invocation.name,
            tool_input=dict(invocation.input),
            tool_output=result.to_content(),
        )

        self.state.set_phase(TaskPhase.STREAMING)
        return result

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _check_abort(self) -> None:
        if self.state.abort_requested:
            raise TaskCancelled("Task was aborted")

    async def _mark_completed(self) -> None:
        self._check_abort()
        self.state.set_state(TaskStatus.COMPLETED, TaskPhase.CLEANUP)
        logger.info(f"Task completed successfully in {self.turn_count} turns", extra=self._log_context())
        await self._notify_state_change(TaskStatus.COMPLETED)

    async def _handle_error(self, error: Exception) -> None:
        """Record a failure: FAILED, then on_error exactly once"""
        if self.state.abort_requested or self.state.is_terminal():
            logger.info(f"Ignoring error after task {self.task_id} ended: {error}")
            return

        self.last_error = error
        logger.error(
            f"Task {self.task_id} failed after {self.turn_count} turns: "
            f"{ErrorFormatter.format_error_concise(error)}",
            exc_info=not isinstance(error, TaskError),
            extra=self._log_context(),
        )

        self.state.set_state(TaskStatus.FAILED, TaskPhase.CLEANUP)

        try:
            await self._notify_state_change(TaskStatus.FAILED)
        except Exception as e:
            logger.error(f"on_state_change failed while reporting failure: {e}", exc_info=True)

        if self._error_reported:
            return
        self._error_reported = True
        if self.callbacks.on_error is not None:
            try:
                await self.callbacks.on_error(error)
            except Exception as e:
                logger.error(f"on_error callback failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Messages and notifications
    # ------------------------------------------------------------------

    def _build_user_content(
        self,
        prompt: str,
        images: Optional[Sequence[str]],
        files: Optional[Sequence[str]],
    ) -> List[ContentBlock]:
        """Build the initial user message content"""
        content: List[ContentBlock] = [TextBlock(f"<task>\n{prompt}\n</task>")]
        content.extend(ImageBlock(image) for image in images or [])
        content.extend(FileBlock(path) for path in files or [])
        return content

    async def _say(self, kind: DisplayKind, content: Optional[List[ContentBlock]] = None, **fields: Any) -> None:
        stored = await self.history.append_ui(DisplayMessage(kind=kind, content=list(content or []), **fields))
        if self.callbacks.on_message_update is not None:
            await self.callbacks.on_message_update(stored)

    def _log_context(self, **more: Any) -> Dict[str, Any]:
        return {"task_id": self.task_id, "correlation_id": self.correlation_id, **more}

    async def _notify_state_change(self, status: TaskStatus) -> None:
        if self.callbacks.on_state_change is not None:
            await self.callbacks.on_state_change(status)

    async def _notify_stream_content(self, content: Tuple[ContentBlock, ...], partial: bool) -> None:
        if self.callbacks.on_stream_content is not None:
            await self.callbacks.on_stream_content(content, partial)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def status(self) -> TaskStatus:
        return self.state.status

    @property
    def started(self) -> bool:
        return self._started

    def record(self) -> TaskRecord:
        return self.state.record(self.task_id, self.correlation_id)

    def result(self) -> Dict[str, Any]:
        """Build the final task result"""
        return {
            "task_id": self.task_id,
            "correlation_id": self.correlation_id,
            "status": self.state.status.value,
            "turns": self.turn_count,
            "completion_message": self.completion_message,
            "tools_used": dict(self.metrics.tool_calls_by_name),
            "error": ErrorFormatter.to_dict(self.last_error) if self.last_error else None,
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "correlation_id": self.correlation_id,
            "started": self._started,
            "turns": self.turn_count,
            **self.state.summary(),
            "history": self.history.summary(),
            "metrics": self.metrics.get_summary(),
        }
