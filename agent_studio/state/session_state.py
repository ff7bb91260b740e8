"""
Session state for one chat bound to one project
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..provider_ir import Turn, find_orphaned_invocations


@dataclass
class AgentSession:
    """Working context of one chat: project, provider binding and turn history.

    ``turns`` starts with the system prompt; the environment overlay is shared by
    reference with the tool executor so ``set_env_variable`` is visible to every
    later shell command of the session.
    """

    project_id: str
    chat_id: str
    project_dir: str
    project_name: str
    provider: str
    model: str
    credential: str = field(default="", repr=False)
    env_overlay: Dict[str, str] = field(default_factory=dict)
    turns: List[Turn] = field(default_factory=list)
    provider_metadata: Dict[str, Any] = field(default_factory=dict)

    def add_turn(self, turn: Turn) -> None:
        """Add a turn to the working history"""
        self.turns.append(turn)

    def extend(self, turns: List[Turn]) -> None:
        self.turns.extend(turns)

    @property
    def system_prompt(self) -> Optional[str]:
        if self.turns and self.turns[0].role == "system":
            return self.turns[0].content
        return None

    # --- Provider metadata ----------------------------------------------------
    def set_provider_metadata(self, key: str, value: Any) -> None:
        self.provider_metadata[key] = value

    def analyze_tool_usage(self) -> Dict[str, Any]:
        """Count turns and tool traffic in the current history"""
        return {
            "total_turns": len(self.turns),
            "assistant_turns": len([t for t in self.turns if t.role == "assistant"]),
            "tool_invocations": sum(len(t.tool_calls) for t in self.turns),
            "tool_outcomes": sum(len(t.tool_results) for t in self.turns),
            "error_outcomes": sum(1 for t in self.turns for o in t.tool_results if o.is_error),
            "orphaned_invocations": find_orphaned_invocations(self.turns),
        }

    def create_snapshot(self) -> Dict[str, Any]:
        """Serializable view of the session; the credential is never included"""
        return {
            "project_id": self.project_id,
            "chat_id": self.chat_id,
            "project_dir": self.project_dir,
            "project_name": self.project_name,
            "provider": self.provider,
            "model": self.model,
            "env_keys": sorted(self.env_overlay.keys()),
            "turns": [turn.to_dict() for turn in self.turns],
            "tool_analysis": self.analyze_tool_usage(),
            "provider_metadata": self.provider_metadata,
        }
