import types

import pytest

from agent_studio.provider_ir import CompletionRequest, ToolDefinition, ToolInvocation, ToolOutcome, Turn
from agent_studio.provider_routing import provider_router
from agent_studio.provider_runtime import ProviderRuntimeError, provider_registry


def _tools():
    return [
        ToolDefinition(
            name="fetch_data",
            description="Fetch data",
            parameters={"type": "object", "properties": {"key": {"type": "string"}}, "required": ["key"]},
        )
    ]


def _runtime():
    descriptor, model = provider_router.get_runtime_descriptor("anthropic/claude-sonnet-4")
    return provider_registry.create_runtime(descriptor), model


def _fake_client(monkeypatch, messages):
    class FakeAnthropic:
        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.messages = messages

    monkeypatch.setattr("agent_studio.provider_runtime.Anthropic", FakeAnthropic)
    runtime, model = _runtime()
    return runtime, model, runtime.create_client("fake-key")


def test_anthropic_request_encoding():
    runtime, model = _runtime()
    call = ToolInvocation(id="toolu_1", name="fetch_data", arguments={"key": "a"})
    turns = [
        Turn.system("You are helpful."),
        Turn.system("  Second rule.  "),
        Turn.user("Hi"),
        Turn.assistant("Looking", [call]),
        Turn.tool([ToolOutcome("toolu_1", "Error: missing", is_error=True, name="fetch_data")]),
    ]
    body = runtime.build_request(model, CompletionRequest(turns=turns, tools=_tools()))

    assert body["system"] == "You are helpful.\n  Second rule."
    assert body["max_tokens"] == 4096
    assert body["temperature"] == 0.7
    assert body["tools"][0]["input_schema"]["required"] == ["key"]
    assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
    assistant = body["messages"][1]["content"]
    assert assistant[0] == {"type": "text", "text": "Looking"}
    assert assistant[1] == {"type": "tool_use", "id": "toolu_1", "name": "fetch_data", "input": {"key": "a"}}
    result = body["messages"][2]["content"][0]
    assert result["type"] == "tool_result"
    assert result["tool_use_id"] == "toolu_1"
    assert result["is_error"] is True


def test_anthropic_complete_success(monkeypatch):
    response = types.SimpleNamespace(
        content=[
            {"type": "text", "text": "Hello"},
            {"type": "tool_use", "id": "call-1", "name": "fetch_data", "input": {"key": "bar"}},
        ],
        stop_reason="tool_use",
        usage=types.SimpleNamespace(input_tokens=12, output_tokens=34),
        model="claude-sonnet-4",
    )

    class FakeMessages:
        def create(self, **kwargs):
            assert "stream" not in kwargs
            return response

    runtime, model, client = _fake_client(monkeypatch, FakeMessages())
    result = runtime.complete(client=client, model=model, request=CompletionRequest([Turn.user("Hi")], _tools()))

    assert result.content == "Hello"
    assert result.tool_calls == [ToolInvocation(id="call-1", name="fetch_data", arguments={"key": "bar"})]
    assert result.finish_reason == "tool_calls"
    assert result.usage.to_dict() == {"prompt_tokens": 12, "completion_tokens": 34, "total_tokens": 46}


def test_anthropic_stream_assembles_tool_input(monkeypatch):
    events = [
        {"type": "message_start", "message": {"usage": {"input_tokens": 5}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Let me "}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "check."}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_start", "index": 1,
         "content_block": {"type": "tool_use", "id": "toolu_9", "name": "fetch_data", "input": {}}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": '{"ke'}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "input_json_delta", "partial_json": 'y": "x"}'}},
        {"type": "content_block_stop", "index": 1},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 7}},
        {"type": "message_stop"},
    ]

    class FakeMessages:
        def create(self, **kwargs):
            assert kwargs["stream"] is True
            return iter(events)

    runtime, model, client = _fake_client(monkeypatch, FakeMessages())
    out = list(runtime.stream_complete(client=client, model=model, request=CompletionRequest([Turn.user("Hi")])))

    assert [e.type for e in out] == ["content", "content", "tool_call", "done"]
    assert "".join(e.content for e in out if e.type == "content") == "Let me check."
    assert out[2].tool_call == ToolInvocation(id="toolu_9", name="fetch_data", arguments={"key": "x"})
    assert out[3].finish_reason == "tool_calls"
    assert out[3].usage.total_tokens == 12


def test_anthropic_stream_malformed_arguments_become_empty(monkeypatch):
    events = [
        {"type": "content_block_start", "index": 0,
         "content_block": {"type": "tool_use", "id": "toolu_1", "name": "fetch_data"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": '{"key": '}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_stop"},
    ]

    class FakeMessages:
        def create(self, **kwargs):
            return iter(events)

    runtime, model, client = _fake_client(monkeypatch, FakeMessages())
    out = list(runtime.stream_complete(client=client, model=model, request=CompletionRequest([Turn.user("Hi")])))

    assert out[0].tool_call.arguments == {}
    assert out[-1].type == "done"


def test_anthropic_stream_error(monkeypatch):
    class FakeStatusError(Exception):
        status_code = 401
        response = None
        body = {"error": {"message": "invalid x-api-key"}}

    class FakeMessages:
        def create(self, **kwargs):
            raise FakeStatusError("unauthorized")

    runtime, model, client = _fake_client(monkeypatch, FakeMessages())
    out = list(runtime.stream_complete(client=client, model=model, request=CompletionRequest([Turn.user("Hi")])))

    assert len(out) == 1
    assert out[0].type == "error"
    assert out[0].status_code == 401
    assert "invalid x-api-key" in out[0].body


def test_anthropic_complete_error_raises(monkeypatch):
    class FakeMessages:
        def create(self, **kwargs):
            raise RuntimeError("connection refused")

    runtime, model, client = _fake_client(monkeypatch, FakeMessages())
    with pytest.raises(ProviderRuntimeError) as excinfo:
        runtime.complete(client=client, model=model, request=CompletionRequest([Turn.user("Hi")]))
    assert excinfo.value.status_code is None
    assert "connection refused" in str(excinfo.value)


def test_anthropic_missing_package(monkeypatch):
    monkeypatch.setattr("agent_studio.provider_runtime.Anthropic", None)
    runtime, _ = _runtime()
    with pytest.raises(ProviderRuntimeError):
        runtime.create_client("fake-key")
