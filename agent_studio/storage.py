"""
JSON-file persistence for projects and conversation turns.

Layout under the storage root::

    projects/<project_id>.json
    chats/<chat_id>/turns/<seq>.json
"""

import json
import logging
import os
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from .error_handling.errors import StorageError
from .provider_ir import Turn


logger = logging.getLogger(__name__)


class JSONStorage:
    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        os.makedirs(self.root, exist_ok=True)

    def _p(self, rel: str) -> str:
        full = os.path.abspath(os.path.join(self.root, rel))
        if not full.startswith(self.root + os.sep) and full != self.root:
            raise ValueError("Path escapes storage root")
        return full

    def exists(self, rel: str) -> bool:
        return os.path.exists(self._p(rel))

    def write_json(self, rel: str, content: Any) -> None:
        path = self._p(rel)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(content, f, indent=2)
        os.replace(tmp, path)

    def read_json(self, rel: str) -> Any:
        path = self._p(rel)
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def list(self, rel_dir: str) -> List[str]:
        base = self._p(rel_dir)
        out: List[str] = []
        if not os.path.isdir(base):
            return out
        for dirpath, _, filenames in os.walk(base):
            for name in filenames:
                if name.endswith(".tmp"):
                    continue
                full = os.path.join(dirpath, name)
                out.append(os.path.relpath(full, self.root))
        out.sort()
        return out


@dataclass
class ProjectContext:
    project_id: str
    working_directory: str
    display_name: str
    provider: str
    model: str
    credential: str = field(default="", repr=False)
    environment_overlay: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "working_directory": self.working_directory,
            "display_name": self.display_name,
            "provider": self.provider,
            "model": self.model,
            "credential": self.credential,
            "environment_overlay": dict(self.environment_overlay),
        }

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "ProjectContext":
        return ProjectContext(
            project_id=str(raw["project_id"]),
            working_directory=str(raw["working_directory"]),
            display_name=str(raw.get("display_name") or raw["project_id"]),
            provider=str(raw.get("provider") or "openai"),
            model=str(raw.get("model") or ""),
            credential=str(raw.get("credential") or ""),
            environment_overlay={str(k): str(v) for k, v in (raw.get("environment_overlay") or {}).items()},
        )


class ConversationStore(ABC):
    """Storage collaborator consumed by the agent loop"""

    @abstractmethod
    def load_history(self, chat_id: str) -> List[Turn]:
        """Return the persisted turns of a chat in append order."""

    @abstractmethod
    def append_turn(self, chat_id: str, turn: Turn) -> Turn:
        """Persist one turn and return it as stored (with its assigned id)."""

    @abstractmethod
    def get_project_context(self, project_id: str) -> ProjectContext:
        """Return the working directory, provider binding and overlay of a project."""

    @abstractmethod
    def save_project(self, context: ProjectContext) -> None:
        """Register or update a project."""


def _check_id(kind: str, value: str) -> str:
    if not value or value in (".", "..") or "/" in value or "\\" in value or os.sep in value:
        raise StorageError(f"Invalid {kind} id: {value!r}")
    return value


class JSONConversationStore(ConversationStore):
    """File-backed store; appends to one chat are serialized by a per-chat lock."""

    def __init__(self, root: str):
        self.storage = JSONStorage(root)
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _chat_lock(self, chat_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(chat_id)
            if lock is None:
                lock = self._locks[chat_id] = threading.Lock()
            return lock

    def _turns_dir(self, chat_id: str) -> str:
        return os.path.join("chats", _check_id("chat", chat_id), "turns")

    def load_history(self, chat_id: str) -> List[Turn]:
        turns_dir = self._turns_dir(chat_id)
        try:
            files = self.storage.list(turns_dir)
            return [Turn.from_dict(self.storage.read_json(rel)) for rel in files]
        except (OSError, ValueError) as exc:
            raise StorageError(f"Failed to load history for chat {chat_id}: {exc}") from exc

    def append_turn(self, chat_id: str, turn: Turn) -> Turn:
        turns_dir = self._turns_dir(chat_id)
        with self._chat_lock(chat_id):
            try:
                seq = len(self.storage.list(turns_dir))
                stored = replace(turn, id=turn.id or uuid.uuid4().hex)
                self.storage.write_json(os.path.join(turns_dir, f"{seq:06d}.json"), stored.to_dict())
            except (OSError, TypeError, ValueError) as exc:
                raise StorageError(f"Failed to persist {turn.role} turn for chat {chat_id}: {exc}") from exc
        logger.debug("Persisted %s turn #%d for chat %s", stored.role, seq, chat_id)
        return stored

    def get_project_context(self, project_id: str) -> ProjectContext:
        rel = os.path.join("projects", f"{_check_id('project', project_id)}.json")
        if not self.storage.exists(rel):
            raise StorageError(f"Unknown project: {project_id}")
        try:
            return ProjectContext.from_dict(self.storage.read_json(rel))
        except (OSError, ValueError, KeyError) as exc:
            raise StorageError(f"Failed to load project {project_id}: {exc}") from exc

    def save_project(self, context: ProjectContext) -> None:
        rel = os.path.join("projects", f"{_check_id('project', context.project_id)}.json")
        try:
            self.storage.write_json(rel, context.to_dict())
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Failed to save project {context.project_id}: {exc}") from exc

    def find_project(self, project_id: str) -> Optional[ProjectContext]:
        try:
            return self.get_project_context(project_id)
        except StorageError:
            return None
