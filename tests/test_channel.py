import json

import pytest

from agent_studio.channel import ChatChannel, ProjectLocks
from agent_studio.provider_ir import CompletionResponse
from agent_studio.provider_runtime import MockClient
from agent_studio.storage import JSONConversationStore, ProjectContext


@pytest.fixture
def store(settings, project_dir):
    store = JSONConversationStore(settings["storage"]["root"])
    store.save_project(ProjectContext(
        project_id="demo",
        working_directory=str(project_dir),
        display_name="Demo",
        provider="mock",
        model="mock",
    ))
    return store


@pytest.fixture
def sent():
    return []


@pytest.fixture
def channel(store, settings, sent):
    return ChatChannel(store, sent.append, settings=settings, locks=ProjectLocks(), client=MockClient())


def test_join_acknowledges(channel, sent):
    channel.handle({"type": "join", "projectId": "demo", "chatId": "c1"})
    assert sent == [{"type": "joined", "projectId": "demo", "chatId": "c1"}]

    channel.handle(json.dumps({"type": "join", "project_id": "demo", "chat_id": "c2"}))
    assert sent[-1]["chatId"] == "c2"
    assert channel.chat_id == "c2"


def test_join_unknown_project(channel, sent):
    channel.handle({"type": "join", "projectId": "nope", "chatId": "c1"})
    assert sent == [{"type": "error", "error": "Unknown project: nope"}]
    assert channel.chat_id is None


def test_message_before_join(channel, sent):
    channel.handle({"type": "message", "content": "hi"})
    assert sent == [{"type": "error", "error": "Not joined to a chat"}]


@pytest.mark.parametrize(
    "frame, error",
    [
        ('{"type": "shout"}', "Unknown message type: shout"),
        ("{not json", "Invalid JSON frame"),
        ("[1, 2]", "Frame must be a JSON object"),
    ],
)
def test_protocol_errors(channel, sent, frame, error):
    channel.handle(frame)
    assert sent == [{"type": "error", "error": error}]


def test_message_forwards_agent_events(channel, sent, store):
    channel.handle({"type": "join", "projectId": "demo", "chatId": "c1"})
    channel.handle({"type": "message", "content": "look around"})

    types = [frame["type"] for frame in sent[1:]]
    assert types == ["thinking", "tool_call", "tool_result", "thinking", "content", "done"]
    assert sent[2]["toolCall"]["name"] == "list_directory"
    assert sent[3]["toolResult"]["tool_call_id"] == "mock-0"
    assert len(store.load_history("c1")) == 4


def test_close_drops_frames(channel, sent):
    channel.handle({"type": "join", "projectId": "demo", "chatId": "c1"})
    channel.close()
    channel.handle({"type": "message", "content": "hi"})
    assert sent == [{"type": "joined", "projectId": "demo", "chatId": "c1"}]
    assert channel.closed


def test_failed_send_closes_channel(store, settings):
    def broken(frame):
        raise ConnectionError("peer gone")

    channel = ChatChannel(store, broken, settings=settings, locks=ProjectLocks(), client=MockClient())
    channel.handle({"type": "join", "projectId": "demo", "chatId": "c1"})
    assert channel.closed


def test_agent_creation_failure_reported(store, settings, sent):
    def factory(*args, **kwargs):
        raise ValueError("Unknown provider: nowhere")

    channel = ChatChannel(store, sent.append, settings=settings, locks=ProjectLocks(), agent_factory=factory)
    channel.handle({"type": "join", "projectId": "demo", "chatId": "c1"})
    channel.handle({"type": "message", "content": "hi"})
    assert sent[-1] == {"type": "error", "error": "Unknown provider: nowhere"}


def test_shared_client_serves_scripted_reply(store, settings, sent):
    client = MockClient(script=[CompletionResponse(content="hello there")])
    channel = ChatChannel(store, sent.append, settings=settings, locks=ProjectLocks(), client=client)
    channel.handle({"type": "join", "projectId": "demo", "chatId": "c1"})
    channel.handle({"type": "message", "content": "hi"})
    assert [f.get("content") for f in sent if f["type"] == "content"] == ["hello there"]
