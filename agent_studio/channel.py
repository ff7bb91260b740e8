"""
Duplex chat channel protocol.

Inbound frames::

    {"type": "join", "project_id": "...", "chat_id": "..."}
    {"type": "message", "content": "..."}

Outbound frames are agent events, one per send, plus a ``joined``
acknowledgement and ``error`` frames for protocol violations.
"""

import contextlib
import json
import logging
import threading
from typing import Any, Callable, Dict, Optional, Union

from .agent import Agent, create_agent
from .error_handling.errors import AgentStudioError
from .logging_v2.run_logger import RunLogger
from .provider_runtime import ProviderRuntimeError
from .settings import get_setting
from .storage import ConversationStore


logger = logging.getLogger(__name__)

Frame = Dict[str, Any]


class ProjectLocks:
    """One lock per project so runs touching the same directory do not interleave."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, project_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = self._locks[project_id] = threading.Lock()
            return lock


project_locks = ProjectLocks()


def _frame_id(frame: Frame, snake: str, camel: str) -> Optional[str]:
    value = frame.get(snake) or frame.get(camel)
    return str(value) if value else None


class ChatChannel:
    """Protocol handler for one client connection.

    ``send`` delivers one outbound frame; once :meth:`close` is called, frames
    are dropped and the active run is told to stop after its current tool batch.
    """

    def __init__(
        self,
        store: ConversationStore,
        send: Callable[[Frame], None],
        *,
        settings: Optional[Dict[str, Any]] = None,
        locks: Optional[ProjectLocks] = None,
        agent_factory: Callable[..., Agent] = create_agent,
        client: Any = None,
    ):
        self.store = store
        self.send = send
        self.settings = settings or {}
        self.locks = locks or project_locks
        self.agent_factory = agent_factory
        self.client = client
        self.project_id: Optional[str] = None
        self.chat_id: Optional[str] = None
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        if not self.closed:
            logger.info("Channel for chat %s closed", self.chat_id)
        self._closed.set()

    def _send(self, frame: Frame) -> None:
        if self.closed:
            return
        try:
            self.send(frame)
        except (ConnectionError, OSError) as exc:
            logger.info("Channel send failed, closing: %s", exc)
            self.close()

    def _error(self, message: str) -> None:
        self._send({"type": "error", "error": message})

    def handle(self, frame: Union[str, bytes, Frame]) -> None:
        """Dispatch one inbound frame; returns once any resulting run has finished."""
        if isinstance(frame, (str, bytes)):
            try:
                frame = json.loads(frame)
            except ValueError:
                self._error("Invalid JSON frame")
                return
        if not isinstance(frame, dict):
            self._error("Frame must be a JSON object")
            return

        kind = frame.get("type")
        if kind == "join":
            self._join(frame)
        elif kind == "message":
            if self.project_id is None or self.chat_id is None:
                self._error("Not joined to a chat")
                return
            content = frame.get("content")
            if not isinstance(content, str) or not content.strip():
                self._error("Message content must be a non-empty string")
                return
            self._run(content)
        else:
            self._error(f"Unknown message type: {kind}")

    def _join(self, frame: Frame) -> None:
        project_id = _frame_id(frame, "project_id", "projectId")
        chat_id = _frame_id(frame, "chat_id", "chatId")
        if not project_id or not chat_id:
            self._error("join requires projectId and chatId")
            return
        try:
            self.store.get_project_context(project_id)
        except AgentStudioError as exc:
            self._error(str(exc))
            return
        self.project_id, self.chat_id = project_id, chat_id
        logger.info("Channel joined project %s chat %s", project_id, chat_id)
        self._send({"type": "joined", "projectId": project_id, "chatId": chat_id})

    def _run(self, content: str) -> None:
        serialize = bool(get_setting(self.settings, "channel.serialize_per_project", True))
        guard = self.locks.lock_for(self.project_id) if serialize else contextlib.nullcontext()
        with guard:
            try:
                context = self.store.get_project_context(self.project_id)
                run_logger = RunLogger(self.settings) if get_setting(self.settings, "logging.enabled", False) else None
                agent = self.agent_factory(
                    context,
                    self.store,
                    self.chat_id,
                    settings=self.settings,
                    client=self.client,
                    run_logger=run_logger,
                )
            except (AgentStudioError, ProviderRuntimeError, ValueError, OSError) as exc:
                logger.error("Could not start session for chat %s: %s", self.chat_id, exc)
                self._send({"type": "error", "error": str(exc)})
                return
            for event in agent.run(content, should_continue=lambda: not self.closed):
                self._send(event.to_dict())
