import pytest

from agent_studio.provider_ir import (
    AgentEvent,
    ToolInvocation,
    ToolOutcome,
    Turn,
    find_orphaned_invocations,
)
from agent_studio.state.session_state import AgentSession


def test_turn_dict_roundtrip_preserves_tool_traffic():
    call = ToolInvocation(id="call-1", name="list_directory", arguments={"path": "."})
    assistant = Turn.assistant("Looking", [call])
    tool = Turn.tool([ToolOutcome("call-1", "📄 a.txt (1 B)", name="list_directory")])

    restored = [Turn.from_dict(t.to_dict()) for t in (assistant, tool)]

    assert restored[0].tool_calls == [call]
    assert restored[1].tool_results[0].result == "📄 a.txt (1 B)"
    assert restored[1].tool_results[0].name == "list_directory"
    assert restored[0].created_at == assistant.created_at


def test_tool_turn_summary_lists_each_outcome():
    turn = Turn.tool([ToolOutcome("a", "one"), ToolOutcome("b", "Error: two", is_error=True)])
    assert turn.content == "a: one\n\nb: Error: two"


def test_turn_role_constraints():
    with pytest.raises(ValueError):
        Turn(role="user", tool_calls=[ToolInvocation(id="x", name="read_file")])
    with pytest.raises(ValueError):
        Turn(role="assistant", tool_results=[ToolOutcome("x", "r")])
    with pytest.raises(ValueError):
        Turn(role="narrator")
    with pytest.raises(ValueError):
        Turn.tool([])


def test_find_orphaned_invocations():
    calls = [ToolInvocation(id="a", name="read_file"), ToolInvocation(id="b", name="read_file")]
    turns = [
        Turn.user("go"),
        Turn.assistant("", calls),
        Turn.tool([ToolOutcome("a", "ok"), ToolOutcome("a", "again")]),
        Turn.assistant("", [ToolInvocation(id="c", name="read_file")]),
    ]
    assert find_orphaned_invocations(turns) == ["a", "b", "c"]

    complete = turns[:2] + [Turn.tool([ToolOutcome("a", "ok"), ToolOutcome("b", "ok")])]
    assert find_orphaned_invocations(complete) == []


def test_agent_event_wire_shape():
    call = ToolInvocation(id="call-1", name="read_file", arguments={"path": "a"})
    assert AgentEvent(type="thinking").to_dict() == {"type": "thinking"}
    assert AgentEvent(type="tool_call", tool_call=call).to_dict() == {
        "type": "tool_call",
        "toolCall": {"id": "call-1", "name": "read_file", "arguments": {"path": "a"}},
    }
    outcome = ToolOutcome("call-1", "Error: nope", is_error=True, error_type="not_found")
    assert AgentEvent(type="tool_result", tool_result=outcome).to_dict()["toolResult"]["error_type"] == "not_found"
    assert AgentEvent(type="error", error="boom").to_dict() == {"type": "error", "error": "boom"}


def test_session_snapshot_excludes_credential(tmp_path):
    session = AgentSession(
        project_id="p1",
        chat_id="c1",
        project_dir=str(tmp_path),
        project_name="Demo",
        provider="openai",
        model="gpt-4o",
        credential="sk-secret",
        env_overlay={"PORT": "3000"},
    )
    session.add_turn(Turn.system("prompt"))
    session.add_turn(Turn.assistant("", [ToolInvocation(id="x", name="read_file")]))

    snapshot = session.create_snapshot()

    assert "sk-secret" not in str(snapshot)
    assert "sk-secret" not in repr(session)
    assert snapshot["env_keys"] == ["PORT"]
    assert snapshot["tool_analysis"]["orphaned_invocations"] == ["x"]
    assert session.system_prompt == "prompt"
