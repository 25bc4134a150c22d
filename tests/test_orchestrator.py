"""Tests for the TaskOrchestrator turn loop."""

import pytest

from conftest import (
    RecordingToolExecutor,
    ScriptedAIService,
    completion_turn,
    last_chunk,
    text_chunk,
    tool_call_chunks,
)
from cadence.agent import TaskConfig, TaskOrchestrator, TaskStatus
from cadence.agent.task import new_correlation_id
from cadence.errors import AlreadyStarted, MistakeLimitExceeded, TurnLimitExceeded
from cadence.messages import (
    ConversationMessage,
    DisplayKind,
    FileBlock,
    ImageBlock,
    Role,
    StreamChunk,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    ToolUseDelta,
)
from cadence.tools import ToolResult


def make_task(turns, executor=None, recorder=None, **config_kwargs):
    ai = ScriptedAIService(turns)
    executor = executor or RecordingToolExecutor()
    callbacks = recorder.callbacks() if recorder is not None else None
    task = TaskOrchestrator(ai, executor, config=TaskConfig(**config_kwargs), callbacks=callbacks)
    return task, ai, executor


class TestHappyPath:
    """Tool turn followed by completion."""

    @pytest.mark.asyncio
    async def test_runs_tool_then_completes(self, recorder):
        turns = [
            [text_chunk("Let me look. ")] + tool_call_chunks("t1", "read_file", {"path": "a.txt"}) + [last_chunk()],
            completion_turn("All done"),
        ]
        task, ai, executor = make_task(turns, recorder=recorder)

        result = await task.start("Read a.txt")

        assert task.status is TaskStatus.COMPLETED
        assert recorder.states == [TaskStatus.RUNNING, TaskStatus.COMPLETED]
        assert recorder.errors == []
        assert executor.calls == [("read_file", {"path": "a.txt"})]
        assert result["status"] == "completed"
        assert result["completion_message"] == "All done"
        assert result["turns"] == 2
        assert result["tools_used"] == {"read_file": 1}

    @pytest.mark.asyncio
    async def test_history_layout(self, recorder):
        turns = [
            [text_chunk("Looking")] + tool_call_chunks("t1", "read_file", {"path": "a"}) + [last_chunk()],
            completion_turn(),
        ]
        task, ai, _ = make_task(turns, recorder=recorder)
        await task.start("Read a")

        history = task.history.get_history()
        assert [m.role for m in history] == [Role.USER, Role.ASSISTANT, Role.USER, Role.ASSISTANT]
        assert history[1].content == (
            TextBlock("Looking"),
            ToolUseBlock(id="t1", name="read_file", input={"path": "a"}),
        )
        assert history[2].content == (ToolResultBlock(tool_use_id="t1", output="read_file ok"),)

        # Second request saw the tool result
        assert len(ai.requests[1]) == 3

    @pytest.mark.asyncio
    async def test_initial_message_wraps_prompt_with_attachments(self):
        task, ai, _ = make_task([completion_turn()])
        await task.start("fix it", images=["data:image/png;base64,AAA"], files=["notes.md"])

        first = task.history.get_history()[0]
        assert first.role is Role.USER
        assert first.content == (
            TextBlock("<task>\nfix it\n</task>"),
            ImageBlock("data:image/png;base64,AAA"),
            FileBlock("notes.md"),
        )

    @pytest.mark.asyncio
    async def test_stream_content_forwarded(self, recorder):
        turns = [[text_chunk("Hel"), text_chunk("lo")] + completion_turn()]
        task, _, _ = make_task(turns, recorder=recorder)
        await task.start("greet")

        assert recorder.streamed_text == "Hello"
        assert all(partial for _, partial in recorder.stream)

    @pytest.mark.asyncio
    async def test_display_messages(self, recorder):
        turns = [
            tool_call_chunks("t1", "list_files") + [last_chunk()],
            completion_turn(),
        ]
        task, _, _ = make_task(turns, recorder=recorder)
        await task.start("list")

        kinds = [m.kind for m in recorder.messages]
        assert kinds[0] is DisplayKind.SAY
        tool_messages = [m for m in recorder.messages if m.kind is DisplayKind.TOOL]
        assert [m.tool_name for m in tool_messages] == ["list_files"]
        assert tool_messages[0].tool_output == "list_files ok"
        assert len(task.history.get_ui_history()) == len(recorder.messages)

    @pytest.mark.asyncio
    async def test_completion_alongside_other_tool(self):
        turns = [
            tool_call_chunks("t1", "write_file", {"path": "a", "content": "x"})
            + completion_turn("wrote it", tool_use_id="t2")
        ]
        task, _, executor = make_task(turns)
        await task.start("write")

        assert task.status is TaskStatus.COMPLETED
        assert [name for name, _ in executor.calls] == ["write_file"]
        assert task.completion_message == "wrote it"
        assert task.history.get_history()[-1].content[0].tool_use_id == "t1"

    @pytest.mark.asyncio
    async def test_stream_without_last_chunk(self):
        turns = [tool_call_chunks("done", "attempt_completion", {"result": "ok"})]
        task, _, _ = make_task(turns)
        await task.start("go")
        assert task.status is TaskStatus.COMPLETED


class TestToolResults:
    """Failed tools are fed back; raised exceptions fail the task."""

    @pytest.mark.asyncio
    async def test_failed_result_goes_back_as_error(self, recorder):
        executor = RecordingToolExecutor({"read_file": ToolResult.fail("no such file")})
        turns = [
            tool_call_chunks("t1", "read_file", {"path": "missing"}) + [last_chunk()],
            completion_turn(),
        ]
        task, _, _ = make_task(turns, executor=executor, recorder=recorder)
        await task.start("read")

        assert task.status is TaskStatus.COMPLETED
        results = task.history.get_history()[2].content
        assert results == (ToolResultBlock(tool_use_id="t1", output="no such file", is_error=True),)
        assert task.metrics.tool_failures == 1

    @pytest.mark.asyncio
    async def test_executor_exception_fails_task(self, recorder):
        executor = RecordingToolExecutor({"run": RuntimeError("tool crashed")})
        turns = [tool_call_chunks("t1", "run", {"cmd": "ls"}) + [last_chunk()]]
        task, _, _ = make_task(turns, executor=executor, recorder=recorder)

        await task.start("run it")

        assert task.status is TaskStatus.FAILED
        assert recorder.states == [TaskStatus.RUNNING, TaskStatus.FAILED]
        assert len(recorder.errors) == 1
        assert str(recorder.errors[0]) == "tool crashed"
        assert task.result()["error"]["type"] == "RuntimeError"

    @pytest.mark.asyncio
    async def test_on_tool_execute_overrides_executor(self, recorder):
        async def deny(name, args):
            return ToolResult.fail("denied by user")

        turns = [
            tool_call_chunks("t1", "delete_file", {"path": "a"}) + [last_chunk()],
            completion_turn(),
        ]
        ai = ScriptedAIService(turns)
        executor = RecordingToolExecutor()
        task = TaskOrchestrator(ai, executor, callbacks=recorder.callbacks(on_tool_execute=deny))

        await task.start("clean up")

        assert executor.calls == []
        assert task.history.get_history()[2].content[0].output == "denied by user"

    @pytest.mark.asyncio
    async def test_on_tool_execute_none_falls_through(self, recorder):
        seen = []

        async def observe(name, args):
            seen.append(name)
            return None

        turns = [
            tool_call_chunks("t1", "read_file", {"path": "a"}) + [last_chunk()],
            completion_turn(),
        ]
        ai = ScriptedAIService(turns)
        executor = RecordingToolExecutor()
        task = TaskOrchestrator(ai, executor, callbacks=recorder.callbacks(on_tool_execute=observe))

        await task.start("read")

        assert seen == ["read_file"]
        assert executor.calls == [("read_file", {"path": "a"})]

    @pytest.mark.asyncio
    async def test_tools_run_in_arrival_order(self):
        turns = [
            tool_call_chunks("t1", "first") + tool_call_chunks("t2", "second") + [last_chunk()],
            completion_turn(),
        ]
        task, _, executor = make_task(turns)
        await task.start("go")

        assert [name for name, _ in executor.calls] == ["first", "second"]
        results = task.history.get_history()[2].content
        assert [r.tool_use_id for r in results] == ["t1", "t2"]


class TestMistakes:
    """Turns without tool use."""

    @pytest.mark.asyncio
    async def test_mistake_limit_fails_task(self, recorder):
        task, ai, _ = make_task(
            [[text_chunk("I think..."), last_chunk()]],
            recorder=recorder,
            max_consecutive_mistakes=3,
        )

        await task.start("do something")

        assert task.status is TaskStatus.FAILED
        assert len(ai.requests) == 3
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], MistakeLimitExceeded)
        assert recorder.states == [TaskStatus.RUNNING, TaskStatus.FAILED]
        assert task.metrics.mistakes == 3

    @pytest.mark.asyncio
    async def test_continue_prompt_appended_after_mistake(self):
        turns = [
            [text_chunk("Hmm"), last_chunk()],
            completion_turn(),
        ]
        task, ai, _ = make_task(turns, continue_prompt="Keep going")
        await task.start("go")

        history = task.history.get_history()
        assert history[2] == ConversationMessage.user([TextBlock("Keep going")])
        assert task.status is TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_tool_use_resets_counter(self):
        turns = [
            [text_chunk("Hmm"), last_chunk()],
            tool_call_chunks("t1", "read_file") + [last_chunk()],
            [text_chunk("Hmm again"), last_chunk()],
            completion_turn(),
        ]
        task, _, _ = make_task(turns, max_consecutive_mistakes=2)
        await task.start("go")

        assert task.status is TaskStatus.COMPLETED
        assert task.turn_count == 4

    @pytest.mark.asyncio
    async def test_unparseable_arguments_count_as_mistake(self, recorder):
        broken = [
            StreamChunk(tool_use_delta=ToolUseDelta(id="t1", name="write")),
            StreamChunk(tool_use_delta=ToolUseDelta(id="t1", input='{"path": ')),
            StreamChunk(tool_use_delta=ToolUseDelta(id="t1")),
            last_chunk(),
        ]
        task, _, executor = make_task([broken, completion_turn()], recorder=recorder)
        await task.start("write")

        assert executor.calls == []
        assert task.metrics.parse_failures == 1
        assert task.metrics.mistakes == 1
        assert task.status is TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_turn_limit(self, recorder):
        turns = [tool_call_chunks("t1", "list_files") + [last_chunk()]]
        task, ai, _ = make_task(turns, recorder=recorder, max_turns=2)

        await task.start("loop forever")

        assert task.status is TaskStatus.FAILED
        assert len(ai.requests) == 2
        assert isinstance(recorder.errors[0], TurnLimitExceeded)


class TestAbort:
    """Cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_abort_during_stream_discards_turn(self, recorder):
        turns = [[text_chunk("Starting")] + tool_call_chunks("t1", "write_file", {"path": "a"}) + [last_chunk()]]
        ai = ScriptedAIService(turns)
        executor = RecordingToolExecutor()
        task = None

        async def abort_on_text(content, partial):
            await recorder.on_stream_content(content, partial)
            await task.abort()

        task = TaskOrchestrator(ai, executor, callbacks=recorder.callbacks(on_stream_content=abort_on_text))
        await task.start("write a")

        assert task.status is TaskStatus.CANCELLED
        assert recorder.states == [TaskStatus.RUNNING, TaskStatus.CANCELLED]
        assert recorder.errors == []
        assert executor.calls == []
        assert len(task.history.get_history()) == 1

    @pytest.mark.asyncio
    async def test_abort_during_tool_discards_result(self, recorder):
        task = None

        class AbortingExecutor(RecordingToolExecutor):
            async def execute(self, name, args):
                result = await super().execute(name, args)
                await task.abort()
                return result

        executor = AbortingExecutor()
        turns = [tool_call_chunks("t1", "run") + tool_call_chunks("t2", "run") + [last_chunk()]]
        task, _, _ = make_task(turns, executor=executor, recorder=recorder)

        await task.start("run")

        assert task.status is TaskStatus.CANCELLED
        assert len(executor.calls) == 1
        assert len(task.history.get_history()) == 1

    @pytest.mark.asyncio
    async def test_abort_twice_transitions_once(self, recorder):
        task, _, _ = make_task([completion_turn()], recorder=recorder)

        await task.abort()
        await task.abort()

        assert task.status is TaskStatus.CANCELLED
        assert recorder.states == [TaskStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_abort_before_start_skips_run(self, recorder):
        task, ai, _ = make_task([completion_turn()], recorder=recorder)

        await task.abort()
        result = await task.start("never runs")

        assert ai.requests == []
        assert result["status"] == "cancelled"
        assert recorder.states == [TaskStatus.CANCELLED]

    @pytest.mark.asyncio
    async def test_abort_after_completion_is_noop(self, recorder):
        task, _, _ = make_task([completion_turn()], recorder=recorder)
        await task.start("go")

        await task.abort()

        assert task.status is TaskStatus.COMPLETED
        assert recorder.states == [TaskStatus.RUNNING, TaskStatus.COMPLETED]
        assert task.record().abort_requested


class TestLifecycle:
    """Start semantics and failure reporting."""

    @pytest.mark.asyncio
    async def test_second_start_raises(self):
        task, _, _ = make_task([completion_turn()])
        await task.start("go")

        with pytest.raises(AlreadyStarted):
            await task.start("again")

    @pytest.mark.asyncio
    async def test_stream_error_fails_once(self, recorder):
        turns = [[text_chunk("partial"), ValueError("stream broke")]]
        task, _, _ = make_task(turns, recorder=recorder)

        await task.start("go")

        assert task.status is TaskStatus.FAILED
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], ValueError)
        assert task.last_error is recorder.errors[0]

    @pytest.mark.asyncio
    async def test_failing_message_callback_fails_task(self, recorder):
        async def ui_down(message):
            raise RuntimeError("ui down")

        ai = ScriptedAIService([completion_turn()])
        task = TaskOrchestrator(ai, RecordingToolExecutor(), callbacks=recorder.callbacks(on_message_update=ui_down))

        result = await task.start("hi")

        assert task.status is TaskStatus.FAILED
        assert recorder.states == [TaskStatus.RUNNING, TaskStatus.FAILED]
        assert len(recorder.errors) == 1
        assert str(recorder.errors[0]) == "ui down"
        assert result["status"] == "failed"
        assert ai.requests == []

    @pytest.mark.asyncio
    async def test_context_limit_compresses_view(self):
        turns = [
            tool_call_chunks("t1", "read_file", {"path": "a"}) + [last_chunk()],
            completion_turn(),
        ]
        task, ai, _ = make_task(turns, context_token_limit=1)
        await task.start("read")

        assert task.metrics.compressions == 1
        assert len(ai.requests[0]) == 1
        assert len(ai.requests[1]) == 2
        assert len(task.history.get_history()) == 4

    @pytest.mark.asyncio
    async def test_summary_and_record(self):
        task, _, _ = make_task([completion_turn()], task_id="task-42")
        await task.start("go")

        record = task.record()
        assert record.id == "task-42"
        assert record.status is TaskStatus.COMPLETED
        summary = task.summary()
        assert summary["task_id"] == "task-42"
        assert summary["status"] == "completed"
        assert summary["history"]["api_messages"] == 2

    def test_correlation_ids_are_time_ordered(self):
        first = new_correlation_id()
        second = new_correlation_id()
        assert len(first) == 32
        assert first[:12] <= second[:12]


class TestTaskConfig:
    """Environment-driven configuration."""

    def test_defaults(self):
        config = TaskConfig.from_env({})
        assert config.max_consecutive_mistakes == 3
        assert config.max_turns is None
        assert config.completion_tool_name == "attempt_completion"

    def test_reads_values(self):
        config = TaskConfig.from_env({
            "CADENCE_MAX_CONSECUTIVE_MISTAKES": "5",
            "CADENCE_MAX_TURNS": "40",
            "CADENCE_MAX_MESSAGES": "500",
            "CADENCE_COMPLETION_TOOL": "finish",
            "CADENCE_COMPRESSION_STRATEGY": "quarter",
        })
        assert config.max_consecutive_mistakes == 5
        assert config.max_turns == 40
        assert config.max_messages == 500
        assert config.completion_tool_name == "finish"
        assert config.compression_strategy.value == "quarter"

    def test_invalid_values_fall_back(self):
        config = TaskConfig.from_env({"CADENCE_MAX_TURNS": "lots", "CADENCE_COMPRESSION_STRATEGY": "all"})
        assert config.max_turns is None
        assert config.compression_strategy.value == "half"

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("CADENCE_MAX_TURNS", "7")
        assert TaskConfig.from_env().max_turns == 7
