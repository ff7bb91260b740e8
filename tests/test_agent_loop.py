import json
from pathlib import Path

import pytest

from agent_studio.agent import AgentState, create_agent, repair_history
from agent_studio.error_handling.errors import IterationLimitError, StorageError
from agent_studio.logging_v2 import RunLogger
from agent_studio.provider_ir import (
    CompletionResponse,
    StreamEvent,
    ToolInvocation,
    Turn,
    find_orphaned_invocations,
)
from agent_studio.provider_runtime import MockClient, ProviderRuntimeError
from agent_studio.storage import JSONConversationStore, ProjectContext


def _listing_call(call_id="c1"):
    return ToolInvocation(id=call_id, name="list_directory", arguments={"path": "."})


def _tool_response(*calls):
    return CompletionResponse(content="", tool_calls=list(calls), finish_reason="tool_calls")


@pytest.fixture
def store(settings):
    return JSONConversationStore(settings["storage"]["root"])


@pytest.fixture
def context(project_dir, store):
    ctx = ProjectContext(
        project_id="demo",
        working_directory=str(project_dir),
        display_name="Demo",
        provider="mock",
        model="mock",
    )
    store.save_project(ctx)
    return ctx


def _agent(context, store, settings, client, chat_id="chat-1", **kwargs):
    return create_agent(context, store, chat_id, settings=settings, client=client, **kwargs)


def test_tool_round_trip_event_sequence(context, store, settings, project_dir):
    (project_dir / "index.js").write_text("console.log(1)")
    client = MockClient()
    agent = _agent(context, store, settings, client)

    events = list(agent.run("what is in here?"))

    assert [e.type for e in events] == ["thinking", "tool_call", "tool_result", "thinking", "content", "done"]
    assert events[1].tool_call.id == "mock-0"
    assert events[2].tool_result.tool_call_id == "mock-0"
    assert "index.js" in events[2].tool_result.result
    assert events[4].content == "Workspace inspected."
    assert agent.state is AgentState.DONE

    history = store.load_history("chat-1")
    assert [t.role for t in history] == ["user", "assistant", "tool", "assistant"]
    assert history[0].content == "what is in here?"
    assert find_orphaned_invocations(history) == []


def test_first_request_carries_system_prompt_and_tools(context, store, settings, project_dir):
    client = MockClient(script=[CompletionResponse(content="hi")])
    agent = _agent(context, store, settings, client)
    list(agent.run("hello"))

    request = client.requests[0]
    assert request.turns[0].role == "system"
    assert str(project_dir.resolve()) in request.turns[0].content
    assert request.turns[-1].role == "user"
    assert len(request.tools) == 14
    assert request.max_tokens == 4096


def test_iteration_cap_stops_after_exact_number_of_calls(context, store, settings):
    client = MockClient(responder=lambda request: _tool_response(_listing_call("loop")))
    agent = _agent(context, store, settings, client)

    events = list(agent.run("never stop"))

    assert len(client.requests) == 10
    assert [e.type for e in events].count("thinking") == 10
    assert events[-1].type == "error"
    assert events[-1].error == "Maximum iterations reached"
    assert agent.state is AgentState.ERROR
    history = store.load_history("chat-1")
    assert len(history) == 21
    assert find_orphaned_invocations(history) == []


def test_iteration_cap_from_settings(context, store, settings):
    settings["agent"]["max_iterations"] = 1
    client = MockClient(responder=lambda request: _tool_response(_listing_call()))
    agent = _agent(context, store, settings, client)

    with pytest.raises(IterationLimitError):
        agent.complete("go")
    assert len(client.requests) == 1


def test_duplicate_and_missing_ids_are_reassigned(context, store, settings):
    calls = [_listing_call("dup"), _listing_call("dup"), _listing_call("")]
    client = MockClient(script=[_tool_response(*calls), CompletionResponse(content="ok")])
    agent = _agent(context, store, settings, client)

    events = list(agent.run("list three times"))

    ids = [e.tool_call.id for e in events if e.type == "tool_call"]
    assert ids[0] == "dup"
    assert len(set(ids)) == 3
    assert all(ids)
    results = [e.tool_result.tool_call_id for e in events if e.type == "tool_result"]
    assert results == ids
    assert find_orphaned_invocations(store.load_history("chat-1")) == []


def test_streamed_text_is_forwarded_in_order(context, store, settings):
    stream = [StreamEvent.text("Hel"), StreamEvent.text("lo"), StreamEvent.done("stop")]
    client = MockClient(script=[stream])
    agent = _agent(context, store, settings, client)

    events = list(agent.run("hi"))

    assert [e.content for e in events if e.type == "content"] == ["Hel", "lo"]
    assert store.load_history("chat-1")[-1].content == "Hello"


def test_provider_error_ends_run(context, store, settings):
    client = MockClient(script=[ProviderRuntimeError("Unauthorized", status_code=401, body="bad key")])
    agent = _agent(context, store, settings, client)

    events = list(agent.run("hi"))

    assert [e.type for e in events] == ["thinking", "error"]
    assert events[-1].error.startswith("Unauthorized")
    assert "credential" in events[-1].error
    assert agent.state is AgentState.ERROR
    assert isinstance(agent.last_error, ProviderRuntimeError)
    assert [t.role for t in store.load_history("chat-1")] == ["user"]


def test_cancellation_between_iterations(context, store, settings):
    client = MockClient()
    agent = _agent(context, store, settings, client)
    cancelled = []

    events = []
    for event in agent.run("look around", should_continue=lambda: not cancelled):
        events.append(event)
        if event.type == "tool_result":
            cancelled.append(True)

    assert events[-1].type == "error"
    assert events[-1].error == "Session cancelled"
    assert len(client.requests) == 1
    history = store.load_history("chat-1")
    assert [t.role for t in history] == ["user", "assistant", "tool"]


def test_closing_mid_batch_leaves_no_orphans(context, store, settings):
    calls = [_listing_call("a"), ToolInvocation(id="b", name="read_file", arguments={"path": "x"})]
    client = MockClient(script=[_tool_response(*calls)])
    agent = _agent(context, store, settings, client)

    gen = agent.run("two tools")
    for event in gen:
        if event.type == "tool_result":
            break
    gen.close()

    assert agent.state is AgentState.ERROR
    history = store.load_history("chat-1")
    assert [t.role for t in history] == ["user", "assistant", "tool"]
    assert find_orphaned_invocations(history) == []
    outcomes = history[-1].tool_results
    assert outcomes[0].error_type is None
    assert outcomes[1].error_type == "cancelled"


def _fail_appends(monkeypatch, store, role):
    original = store.append_turn

    def append_turn(chat_id, turn):
        if turn.role == role:
            raise StorageError(f"Failed to persist {role} turn: disk full")
        return original(chat_id, turn)

    monkeypatch.setattr(store, "append_turn", append_turn)


def test_user_turn_storage_failure_is_fatal(context, store, settings, monkeypatch):
    client = MockClient()
    agent = _agent(context, store, settings, client)
    _fail_appends(monkeypatch, store, "user")

    events = list(agent.run("hello"))

    assert [e.type for e in events] == ["error"]
    assert "disk full" in events[0].error
    assert agent.state is AgentState.ERROR
    assert isinstance(agent.last_error, StorageError)
    assert client.requests == []


def test_tool_turn_storage_failure_is_fatal(context, store, settings, monkeypatch):
    client = MockClient()
    agent = _agent(context, store, settings, client)
    _fail_appends(monkeypatch, store, "tool")

    events = list(agent.run("look around"))

    assert [e.type for e in events] == ["thinking", "tool_call", "tool_result", "error"]
    assert [e.type for e in events].count("error") == 1
    assert agent.state is AgentState.ERROR
    assert len(client.requests) == 1
    assert [t.role for t in store.load_history("chat-1")] == ["user", "assistant"]


def test_history_reloads_into_new_session(context, store, settings):
    first = _agent(context, store, settings, MockClient(script=[CompletionResponse(content="one")]))
    assert first.complete("first") == "one"

    client = MockClient(script=[CompletionResponse(content="two")])
    second = _agent(context, store, settings, client)
    assert second.complete("second") == "two"

    roles = [t.role for t in client.requests[0].turns]
    assert roles == ["system", "user", "assistant", "user"]
    assert len(store.load_history("chat-1")) == 4


def test_unanswered_calls_are_repaired_on_load(context, store, settings):
    store.append_turn("chat-1", Turn.user("start"))
    store.append_turn("chat-1", Turn.assistant("", [_listing_call("lost")]))

    client = MockClient(script=[CompletionResponse(content="resumed")])
    agent = _agent(context, store, settings, client)
    list(agent.run("continue"))

    history = store.load_history("chat-1")
    assert [t.role for t in history] == ["user", "assistant", "tool", "user", "assistant"]
    assert history[2].tool_results[0].tool_call_id == "lost"
    assert history[2].tool_results[0].error_type == "interrupted"
    assert find_orphaned_invocations(history) == []


def test_repair_history_noop_for_complete_history():
    assert repair_history([]) == []
    assert repair_history([Turn.user("a"), Turn.assistant("b")]) == []


def test_run_logger_mirrors_events(context, store, settings, tmp_path):
    settings["logging"]["enabled"] = True
    run_logger = RunLogger(settings)
    agent = _agent(context, store, settings, MockClient(), run_logger=run_logger)

    list(agent.run("inspect"))

    run_dir = Path(run_logger.run_dir)
    assert run_dir.parent == (tmp_path / "logging").resolve()
    meta = json.loads((run_dir / "meta.json").read_text())
    assert meta["provider"] == "mock"
    types = [json.loads(line)["type"] for line in (run_dir / "events.jsonl").read_text().splitlines()]
    assert types == ["thinking", "tool_call", "tool_result", "thinking", "content", "done"]
    assert len((run_dir / "turns.jsonl").read_text().splitlines()) == 4
