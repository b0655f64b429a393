import asyncio
from pathlib import Path

import pytest

from buddy_agent.agent import AgentStatus, create_agent
from buddy_agent.config import AgentConfig, Config
from buddy_agent.exceptions import AgentBusyError, LLMAPIError
from buddy_agent.llm import LLMProvider, LLMResponse


def _text_response(text: str, stop_reason: str = "end_turn", usage: dict | None = None) -> LLMResponse:
    return LLMResponse(
        content=[{"type": "text", "text": text}],
        stop_reason=stop_reason,
        usage=usage or {},
    )


def _tool_response(*calls: tuple[str, dict], text: str = "", usage: dict | None = None) -> LLMResponse:
    content: list[dict] = []
    if text:
        content.append({"type": "text", "text": text})
    for index, (name, arguments) in enumerate(calls):
        content.append({"type": "tool_use", "id": f"toolu_{index}_{name}", "name": name, "input": arguments})
    return LLMResponse(content=content, stop_reason="tool_use", usage=usage or {})


class ScriptedProvider(LLMProvider):
    def __init__(self, responses: list[LLMResponse], repeat_last: bool = False):
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.calls: list[dict] = []

    async def complete(self, system, messages, tools, cancel_token=None) -> LLMResponse:
        self.calls.append({"system": system, "messages": messages, "tools": tools})
        if self.repeat_last and len(self.responses) == 1:
            return self.responses[0]
        return self.responses.pop(0)


class BlockingProvider(LLMProvider):
    """Blocks until the run is cancelled."""

    def __init__(self):
        self.started = asyncio.Event()
        self.calls = 0

    async def complete(self, system, messages, tools, cancel_token=None) -> LLMResponse:
        self.calls += 1
        self.started.set()
        return await cancel_token.run(asyncio.sleep(30, result=_text_response("late")))


class FailingProvider(LLMProvider):
    async def complete(self, system, messages, tools, cancel_token=None) -> LLMResponse:
        raise LLMAPIError("API error 500: Internal Server Error", status_code=500)


def _agent(tmp_path: Path, provider: LLMProvider, **agent_config):
    config = Config(agent=AgentConfig(**agent_config))
    agent = create_agent(config, workspace=tmp_path, provider=provider)
    events: list = []
    agent.subscribe(events.append)
    return agent, events


@pytest.mark.asyncio
async def test_plain_answer_ends_on_end_turn(tmp_path: Path):
    provider = ScriptedProvider([_text_response("Hello there")])
    agent, events = _agent(tmp_path, provider)

    status = await agent.start_task("say hi")

    assert status is AgentStatus.COMPLETED
    assert len(provider.calls) == 1
    assert [event.kind for event in events] == ["task_started", "message"]
    assert events[1].text == "Hello there"
    assert agent.state.is_running is False


@pytest.mark.asyncio
async def test_backend_receives_catalog_system_prompt_and_history(tmp_path: Path):
    provider = ScriptedProvider([_text_response("ok")])
    agent, _ = _agent(tmp_path, provider)

    await agent.start_task("inspect")

    call = provider.calls[0]
    assert str(tmp_path) in call["system"]
    assert [tool["name"] for tool in call["tools"]][0] == "read_file"
    assert call["messages"] == [
        {"role": "user", "content": [{"type": "text", "text": "inspect"}]},
    ]


@pytest.mark.asyncio
async def test_tool_results_are_sequenced_and_fed_back(tmp_path: Path):
    provider = ScriptedProvider([
        _tool_response(
            ("write_to_file", {"path": "notes.txt", "content": "hello"}),
            ("read_file", {"path": "notes.txt"}),
            text="Writing then reading.",
        ),
        _tool_response(("attempt_completion", {"result": "Wrote notes"})),
    ])
    agent, events = _agent(tmp_path, provider)

    status = await agent.start_task("write notes")

    assert status is AgentStatus.COMPLETED
    assert [event.kind for event in events] == [
        "task_started",
        "message",
        "tool_use",
        "tool_result",
        "tool_use",
        "tool_result",
        "message",
        "tool_use",
        "task_complete",
    ]
    assert events[3].result == "Successfully wrote to notes.txt"
    assert events[5].result == "hello"

    second_call_messages = provider.calls[1]["messages"]
    tool_results = [
        message["content"][0]
        for message in second_call_messages
        if message["role"] == "user" and message["content"][0]["type"] == "tool_result"
    ]
    assert [block["tool_use_id"] for block in tool_results] == [
        "toolu_0_write_to_file",
        "toolu_1_read_file",
    ]
    assert [message.role for message in agent.messages] == [
        "user",
        "assistant",
        "user",
        "user",
        "assistant",
        "user",
    ]


@pytest.mark.asyncio
async def test_completion_stops_loop_without_further_iterations(tmp_path: Path):
    provider = ScriptedProvider([
        _tool_response(("attempt_completion", {"result": "Done", "command": "npm start"})),
        _text_response("never sent"),
    ])
    agent, events = _agent(tmp_path, provider)

    status = await agent.start_task("finish")

    assert status is AgentStatus.COMPLETED
    assert len(provider.calls) == 1
    complete = events[-1]
    assert complete.kind == "task_complete"
    assert complete.result == "Done"
    assert complete.suggested_command == "npm start"
    assert agent.state.is_running is False
    assert agent.messages[-1].content[0]["content"] == "[TASK_COMPLETE]: Done\n\nSuggested command: npm start"


@pytest.mark.asyncio
async def test_sentinel_text_inside_ordinary_result_does_not_stop(tmp_path: Path):
    (tmp_path / "log.txt").write_text("[TASK_COMPLETE]: fake", encoding="utf-8")
    provider = ScriptedProvider([
        _tool_response(("read_file", {"path": "log.txt"})),
        _text_response("The log claims completion."),
    ])
    agent, events = _agent(tmp_path, provider)

    await agent.start_task("read log")

    assert len(provider.calls) == 2
    assert "task_complete" not in [event.kind for event in events]


@pytest.mark.asyncio
async def test_followup_question_stops_and_conversation_continues(tmp_path: Path):
    provider = ScriptedProvider([
        _tool_response(("ask_followup_question", {"question": "Which file?"})),
        _text_response("Editing src/app.py"),
    ])
    agent, events = _agent(tmp_path, provider)

    status = await agent.start_task("fix the bug")

    assert status is AgentStatus.COMPLETED
    assert events[-1].kind == "followup_question"
    assert events[-1].question == "Which file?"
    assert len(provider.calls) == 1

    await agent.send_message("src/app.py")

    assert len(provider.calls) == 2
    history = provider.calls[1]["messages"]
    assert history[2]["content"][0]["content"] == "[FOLLOWUP_QUESTION]: Which file?"
    assert history[-1] == {"role": "user", "content": [{"type": "text", "text": "src/app.py"}]}


@pytest.mark.asyncio
async def test_max_iterations_emitted_once_without_extra_iteration(tmp_path: Path):
    provider = ScriptedProvider(
        [_tool_response(("list_files", {"path": "."}))],
        repeat_last=True,
    )
    agent, events = _agent(tmp_path, provider)

    status = await agent.start_task("loop forever")

    assert status is AgentStatus.MAX_ITERATIONS_REACHED
    assert len(provider.calls) == 50
    reached = [event for event in events if event.kind == "max_iterations_reached"]
    assert len(reached) == 1
    assert reached[0].iterations == 50
    assert events[-1].kind == "max_iterations_reached"


@pytest.mark.asyncio
async def test_max_iterations_not_emitted_on_early_completion(tmp_path: Path):
    provider = ScriptedProvider([
        _tool_response(("list_files", {"path": "."})),
        _tool_response(("attempt_completion", {"result": "Done"})),
    ])
    agent, events = _agent(tmp_path, provider, max_iterations=2)

    status = await agent.start_task("two steps")

    assert status is AgentStatus.COMPLETED
    assert "max_iterations_reached" not in [event.kind for event in events]


@pytest.mark.asyncio
async def test_backend_error_emits_error_event_and_resets_state(tmp_path: Path):
    agent, events = _agent(tmp_path, FailingProvider())

    status = await agent.start_task("anything")

    assert status is AgentStatus.ERROR
    assert events[-1].kind == "error"
    assert "500" in events[-1].message
    assert isinstance(agent.last_error, LLMAPIError)
    assert agent.state.is_running is False


@pytest.mark.asyncio
async def test_abort_during_backend_call(tmp_path: Path):
    provider = BlockingProvider()
    agent, events = _agent(tmp_path, provider)

    run = asyncio.create_task(agent.start_task("long task"))
    await asyncio.wait_for(provider.started.wait(), timeout=2.0)
    assert agent.state.is_running is True
    assert agent.state.current_task == "long task"

    agent.abort()
    agent.abort()
    status = await asyncio.wait_for(run, timeout=2.0)

    assert status is AgentStatus.ABORTED
    assert provider.calls == 1
    assert [event.kind for event in events].count("task_aborted") == 1
    assert events[-1].kind == "task_aborted"
    assert agent.state.is_running is False
    assert agent.status is AgentStatus.ABORTED


@pytest.mark.asyncio
async def test_abort_kills_running_command_and_stops(tmp_path: Path):
    provider = ScriptedProvider([
        _tool_response(("execute_command", {"command": "sleep 10"})),
        _text_response("never sent"),
    ])
    agent, events = _agent(tmp_path, provider)

    def _abort_on_tool_use(event):
        if event.kind == "tool_use":
            asyncio.get_running_loop().call_later(0.2, agent.abort)

    agent.subscribe(_abort_on_tool_use)
    status = await asyncio.wait_for(agent.start_task("run it"), timeout=5.0)

    assert status is AgentStatus.ABORTED
    assert len(provider.calls) == 1
    kinds = [event.kind for event in events]
    assert kinds[-3:] == ["tool_use", "tool_result", "task_aborted"]
    assert events[-2].result == "[ERROR] Command aborted: sleep 10"


def test_abort_when_idle_is_a_no_op(tmp_path: Path):
    agent, events = _agent(tmp_path, ScriptedProvider([]))

    agent.abort()

    assert events == []
    assert agent.status is AgentStatus.IDLE


@pytest.mark.asyncio
async def test_second_task_while_running_is_rejected(tmp_path: Path):
    provider = BlockingProvider()
    agent, _ = _agent(tmp_path, provider)

    run = asyncio.create_task(agent.start_task("first"))
    await asyncio.wait_for(provider.started.wait(), timeout=2.0)

    with pytest.raises(AgentBusyError):
        await agent.start_task("second")
    with pytest.raises(AgentBusyError):
        await agent.send_message("more")

    agent.abort()
    await asyncio.wait_for(run, timeout=2.0)
    assert [message.text for message in agent.messages] == ["first"]


@pytest.mark.asyncio
async def test_images_are_attached_to_first_user_message(tmp_path: Path):
    provider = ScriptedProvider([_text_response("A cat")])
    agent, _ = _agent(tmp_path, provider)

    await agent.start_task("what is this?", images=["data:image/jpeg;base64,QUJD"])

    content = provider.calls[0]["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": "what is this?"}
    assert content[1] == {
        "type": "image",
        "source": {"type": "base64", "media_type": "image/jpeg", "data": "QUJD"},
    }


@pytest.mark.asyncio
async def test_usage_accumulates_across_iterations(tmp_path: Path):
    provider = ScriptedProvider([
        _tool_response(("list_files", {"path": "."}), usage={"input_tokens": 100, "output_tokens": 20}),
        _text_response("done", usage={"input_tokens": 150, "output_tokens": 30}),
    ])
    agent, _ = _agent(tmp_path, provider)

    await agent.start_task("count")

    assert agent.usage.input_tokens == 250
    assert agent.usage.output_tokens == 50
    assert agent.state.tokens_used == 300


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_the_loop(tmp_path: Path):
    provider = ScriptedProvider([_text_response("fine")])
    agent, events = _agent(tmp_path, provider)

    def _broken(event):
        raise RuntimeError("host crashed")

    agent.subscribe(_broken)
    status = await agent.start_task("go")

    assert status is AgentStatus.COMPLETED
    assert [event.kind for event in events] == ["task_started", "message"]


@pytest.mark.asyncio
async def test_agents_are_independent_instances(tmp_path: Path):
    first, _ = _agent(tmp_path, ScriptedProvider([_text_response("one")]))
    second, _ = _agent(tmp_path, ScriptedProvider([_text_response("two")]))

    await first.start_task("a")

    assert len(first.messages) == 2
    assert second.messages == []
