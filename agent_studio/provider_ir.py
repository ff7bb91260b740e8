"""Provider-agnostic intermediate representation (IR) for conversations and tool use.

Every runtime in :mod:`agent_studio.provider_runtime` consumes and produces these
objects; nothing outside the runtimes sees a vendor payload.
"""

from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional


Role = Literal["system", "user", "assistant", "tool"]
FinishReason = Literal["stop", "tool_calls", "length", "error"]
StreamEventType = Literal["content", "tool_call", "done", "error"]
AgentEventType = Literal["thinking", "content", "tool_call", "tool_result", "error", "done"]

ROLES = ("system", "user", "assistant", "tool")
FINISH_REASONS = ("stop", "tool_calls", "length", "error")


def _utc_now() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


@dataclass
class ToolInvocation:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": dict(self.arguments)}

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "ToolInvocation":
        args = raw.get("arguments")
        return ToolInvocation(
            id=str(raw.get("id") or ""),
            name=str(raw.get("name") or ""),
            arguments=dict(args) if isinstance(args, dict) else {},
        )


@dataclass
class ToolOutcome:
    tool_call_id: str
    result: str
    is_error: bool = False
    name: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "tool_call_id": self.tool_call_id,
            "result": self.result,
            "is_error": self.is_error,
        }
        if self.name:
            out["name"] = self.name
        if self.error_type:
            out["error_type"] = self.error_type
        return out

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "ToolOutcome":
        return ToolOutcome(
            tool_call_id=str(raw.get("tool_call_id") or ""),
            result=str(raw.get("result") or ""),
            is_error=bool(raw.get("is_error", False)),
            name=raw.get("name"),
            error_type=raw.get("error_type"),
        )


@dataclass
class Turn:
    """One persisted step of a conversation.

    ``tool_calls`` is only populated on assistant turns and ``tool_results`` only on
    tool turns. Turns are never mutated once appended to a history.
    """

    role: Role
    content: str = ""
    tool_calls: List[ToolInvocation] = field(default_factory=list)
    tool_results: List[ToolOutcome] = field(default_factory=list)
    id: Optional[str] = None
    created_at: Optional[str] = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown turn role: {self.role!r}")
        if self.tool_calls and self.role != "assistant":
            raise ValueError("Only assistant turns may carry tool invocations")
        if self.tool_results and self.role != "tool":
            raise ValueError("Only tool turns may carry tool outcomes")
        if self.created_at is None:
            self.created_at = _utc_now()

    @staticmethod
    def system(content: str) -> "Turn":
        return Turn(role="system", content=content)

    @staticmethod
    def user(content: str) -> "Turn":
        return Turn(role="user", content=content)

    @staticmethod
    def assistant(content: str, tool_calls: Optional[List[ToolInvocation]] = None) -> "Turn":
        return Turn(role="assistant", content=content, tool_calls=list(tool_calls or []))

    @staticmethod
    def tool(outcomes: List[ToolOutcome]) -> "Turn":
        if not outcomes:
            raise ValueError("A tool turn needs at least one outcome")
        summary = "\n\n".join(f"{o.tool_call_id}: {o.result}" for o in outcomes)
        return Turn(role="tool", content=summary, tool_results=list(outcomes))

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
        }
        if self.tool_calls:
            out["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_results:
            out["tool_results"] = [tr.to_dict() for tr in self.tool_results]
        return out

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "Turn":
        return Turn(
            role=raw.get("role", "user"),
            content=raw.get("content") or "",
            tool_calls=[ToolInvocation.from_dict(tc) for tc in raw.get("tool_calls") or []],
            tool_results=[ToolOutcome.from_dict(tr) for tr in raw.get("tool_results") or []],
            id=raw.get("id"),
            created_at=raw.get("created_at"),
        )


@dataclass
class ToolDefinition:
    """Catalog entry: name, description and a JSON-schema object for the arguments."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})

    @property
    def properties(self) -> Dict[str, Any]:
        return dict(self.parameters.get("properties") or {})

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required") or [])


@dataclass
class CompletionRequest:
    turns: List[Turn]
    tools: List[ToolDefinition] = field(default_factory=list)
    max_tokens: int = 4096
    temperature: float = 0.7


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class CompletionResponse:
    content: str = ""
    tool_calls: List[ToolInvocation] = field(default_factory=list)
    finish_reason: FinishReason = "stop"
    usage: Optional[Usage] = None
    model: Optional[str] = None


@dataclass
class StreamEvent:
    type: StreamEventType
    content: Optional[str] = None
    tool_call: Optional[ToolInvocation] = None
    finish_reason: Optional[FinishReason] = None
    usage: Optional[Usage] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    body: Optional[str] = None

    @staticmethod
    def text(content: str) -> "StreamEvent":
        return StreamEvent(type="content", content=content)

    @staticmethod
    def call(invocation: ToolInvocation) -> "StreamEvent":
        return StreamEvent(type="tool_call", tool_call=invocation)

    @staticmethod
    def done(finish_reason: FinishReason, usage: Optional[Usage] = None) -> "StreamEvent":
        return StreamEvent(type="done", finish_reason=finish_reason, usage=usage)

    @staticmethod
    def failure(message: str, status_code: Optional[int] = None, body: Optional[str] = None) -> "StreamEvent":
        return StreamEvent(type="error", error=message, status_code=status_code, body=body, finish_reason="error")


@dataclass
class AgentEvent:
    """Event emitted by the agent loop, forwarded verbatim to the client channel."""

    type: AgentEventType
    content: Optional[str] = None
    tool_call: Optional[ToolInvocation] = None
    tool_result: Optional[ToolOutcome] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type}
        if self.content is not None:
            out["content"] = self.content
        if self.tool_call is not None:
            out["toolCall"] = self.tool_call.to_dict()
        if self.tool_result is not None:
            out["toolResult"] = self.tool_result.to_dict()
        if self.error is not None:
            out["error"] = self.error
        return out


def find_orphaned_invocations(turns: List[Turn]) -> List[str]:
    """Return ids of assistant tool invocations lacking exactly one outcome in the next turn."""
    orphans: List[str] = []
    for idx, turn in enumerate(turns):
        if turn.role != "assistant" or not turn.tool_calls:
            continue
        following = turns[idx + 1] if idx + 1 < len(turns) else None
        answered: Dict[str, int] = {}
        if following is not None and following.role == "tool":
            for outcome in following.tool_results:
                answered[outcome.tool_call_id] = answered.get(outcome.tool_call_id, 0) + 1
        for call in turn.tool_calls:
            if answered.get(call.id, 0) != 1:
                orphans.append(call.id)
    return orphans


__all__ = [
    "AgentEvent",
    "CompletionRequest",
    "CompletionResponse",
    "FinishReason",
    "Role",
    "StreamEvent",
    "ToolDefinition",
    "ToolInvocation",
    "ToolOutcome",
    "Turn",
    "Usage",
    "find_orphaned_invocations",
]
