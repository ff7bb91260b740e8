"""
Agent loop: drives one user message through provider round-trips and tool calls.

The loop is a synchronous generator of :class:`AgentEvent`. Turns are persisted
in causal order (user, assistant, tool, assistant, ...) before the step that
depends on them runs, so a crash never leaves a history the next run cannot
replay.
"""
from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Set

from .compilation.system_prompt import build_system_prompt
from .error_handling.error_handler import ErrorHandler
from .error_handling.errors import (
    AgentStudioError,
    IterationLimitError,
    SessionCancelledError,
    StorageError,
)
from .execution.tool_executor import ToolExecutor
from .logging_v2.run_logger import RunLogger
from .provider_ir import (
    AgentEvent,
    CompletionRequest,
    ToolInvocation,
    ToolOutcome,
    Turn,
)
from .provider_runtime import ProviderAdapter, ProviderRuntimeError, create_provider
from .settings import ToolSettings, get_setting
from .state.session_state import AgentSession
from .storage import ConversationStore, ProjectContext


logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10
INTERRUPTED_RESULT = "Error: Interrupted before the tool finished"
CANCELLED_RESULT = "Error: Session cancelled before the tool ran"


class AgentState(str, enum.Enum):
    AWAITING_INPUT = "awaiting-input"
    REQUESTING_COMPLETION = "requesting-completion"
    EXECUTING_TOOLS = "executing-tools"
    DONE = "done"
    ERROR = "error"


@dataclass
class AgentConfig:
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_tokens: int = 4096
    temperature: float = 0.7

    @classmethod
    def from_settings(cls, doc: Optional[Mapping[str, Any]]) -> "AgentConfig":
        doc = doc or {}
        return cls(
            max_iterations=int(get_setting(doc, "agent.max_iterations", DEFAULT_MAX_ITERATIONS)),
            max_tokens=int(get_setting(doc, "agent.max_tokens", 4096)),
            temperature=float(get_setting(doc, "agent.temperature", 0.7)),
        )


def _always() -> bool:
    return True


def _unique_id(call: ToolInvocation, seen: Set[str]) -> ToolInvocation:
    call_id = call.id
    if not call_id or call_id in seen:
        call_id = f"call_{uuid.uuid4().hex[:12]}"
        logger.debug("Reassigned tool call id %r -> %s", call.id, call_id)
    seen.add(call_id)
    if call_id == call.id:
        return call
    return ToolInvocation(id=call_id, name=call.name, arguments=dict(call.arguments))


class Agent:
    """State machine over {awaiting-input, requesting-completion, executing-tools, done, error}.

    One message is processed to completion before the next is accepted; the
    caller must fully drain :meth:`run` before calling it again.
    """

    def __init__(
        self,
        session: AgentSession,
        provider: ProviderAdapter,
        executor: ToolExecutor,
        store: ConversationStore,
        *,
        config: Optional[AgentConfig] = None,
        run_logger: Optional[RunLogger] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        self.session = session
        self.provider = provider
        self.executor = executor
        self.store = store
        self.config = config or AgentConfig()
        self.run_logger = run_logger
        self.error_handler = error_handler or executor.error_handler
        self.tools = executor.catalog()
        self.state = AgentState.AWAITING_INPUT
        self.iterations = 0
        self.last_error: Optional[Exception] = None

    @property
    def chat_id(self) -> str:
        return self.session.chat_id

    # --- bookkeeping --------------------------------------------------------
    def _transition(self, state: AgentState) -> None:
        logger.debug("Agent %s: %s -> %s", self.chat_id, self.state.value, state.value)
        self.state = state

    def _emit(self, event: AgentEvent) -> AgentEvent:
        if self.run_logger is not None:
            self.run_logger.log_event(event)
        return event

    def _persist(self, turn: Turn) -> Turn:
        stored = self.store.append_turn(self.chat_id, turn)
        self.session.add_turn(stored)
        if self.run_logger is not None:
            self.run_logger.log_turn(stored)
        return stored

    def _fail(self, error: Exception, message: Optional[str] = None) -> AgentEvent:
        self.last_error = error
        self._transition(AgentState.ERROR)
        return self._emit(AgentEvent(type="error", error=message or str(error)))

    def _request(self) -> CompletionRequest:
        return CompletionRequest(
            turns=list(self.session.turns),
            tools=self.tools,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )

    # --- loop ---------------------------------------------------------------
    def run(self, user_message: str, should_continue: Callable[[], bool] = _always) -> Iterator[AgentEvent]:
        """Process one user message, yielding events until a single done or error."""
        if self.state not in (AgentState.AWAITING_INPUT, AgentState.DONE, AgentState.ERROR):
            raise AgentStudioError("Agent is already processing a message")
        self.iterations = 0
        self.last_error = None
        try:
            yield from self._run(user_message, should_continue)
        except GeneratorExit:
            self.last_error = SessionCancelledError()
            self._transition(AgentState.ERROR)
            raise
        except StorageError as exc:
            logger.error("Persistence failed for chat %s: %s", self.chat_id, exc)
            yield self._fail(exc)
        except Exception as exc:
            logger.exception("Agent run failed for chat %s", self.chat_id)
            yield self._fail(exc, f"Internal error: {exc}")

    def _run(self, user_message: str, should_continue: Callable[[], bool]) -> Iterator[AgentEvent]:
        self._persist(Turn.user(user_message))
        self._transition(AgentState.REQUESTING_COMPLETION)

        while True:
            if not should_continue():
                yield self._fail(SessionCancelledError())
                return
            if self.iterations >= self.config.max_iterations:
                logger.warning("Chat %s hit the iteration cap (%d)", self.chat_id, self.config.max_iterations)
                yield self._fail(IterationLimitError(self.config.max_iterations))
                return
            self.iterations += 1

            yield self._emit(AgentEvent(type="thinking"))
            content: List[str] = []
            calls: List[ToolInvocation] = []
            seen: Set[str] = set()
            for event in self.provider.stream_complete(self._request()):
                if event.type == "content" and event.content:
                    content.append(event.content)
                    yield self._emit(AgentEvent(type="content", content=event.content))
                elif event.type == "tool_call" and event.tool_call is not None:
                    call = _unique_id(event.tool_call, seen)
                    calls.append(call)
                    yield self._emit(AgentEvent(type="tool_call", tool_call=call))
                elif event.type == "error":
                    error = ProviderRuntimeError(
                        event.error or "Provider error",
                        status_code=event.status_code,
                        body=event.body,
                    )
                    self.error_handler.handle_provider_error(error)
                    yield self._fail(error, self.error_handler.format_provider_message(error))
                    return
                elif event.type == "done" and event.usage is not None:
                    self.session.set_provider_metadata("last_usage", event.usage.to_dict())

            self._persist(Turn.assistant("".join(content), calls))
            if not calls:
                self._transition(AgentState.DONE)
                yield self._emit(AgentEvent(type="done"))
                return

            self._transition(AgentState.EXECUTING_TOOLS)
            yield from self._execute_batch(calls)
            self._transition(AgentState.REQUESTING_COMPLETION)

    def _execute_batch(self, calls: List[ToolInvocation]) -> Iterator[AgentEvent]:
        outcomes: List[ToolOutcome] = []
        try:
            for call in calls:
                outcome = self.executor.execute(call)
                outcomes.append(outcome)
                yield self._emit(AgentEvent(type="tool_result", tool_result=outcome))
        except GeneratorExit:
            # consumer went away mid-batch; answer every invocation anyway
            for call in calls[len(outcomes):]:
                outcomes.append(ToolOutcome(call.id, CANCELLED_RESULT, True, call.name, "cancelled"))
            self._persist(Turn.tool(outcomes))
            raise
        self._persist(Turn.tool(outcomes))

    def complete(self, user_message: str) -> str:
        """Run one message to completion and return the concatenated assistant text."""
        parts: List[str] = []
        for event in self.run(user_message):
            if event.type == "content" and event.content:
                parts.append(event.content)
            elif event.type == "error":
                raise self.last_error or AgentStudioError(event.error or "Agent run failed")
        return "".join(parts)


def repair_history(turns: List[Turn]) -> List[Turn]:
    """Tool turns needed to answer an assistant turn left unanswered by a crash."""
    if not turns or turns[-1].role != "assistant" or not turns[-1].tool_calls:
        return []
    outcomes = [
        ToolOutcome(call.id, INTERRUPTED_RESULT, True, call.name, "interrupted")
        for call in turns[-1].tool_calls
    ]
    return [Turn.tool(outcomes)]


def create_agent(
    context: ProjectContext,
    store: ConversationStore,
    chat_id: str,
    *,
    settings: Optional[Dict[str, Any]] = None,
    client: Any = None,
    run_logger: Optional[RunLogger] = None,
    error_handler: Optional[ErrorHandler] = None,
) -> Agent:
    """Build a session for ``chat_id`` with its persisted history reloaded."""
    settings = settings or {}
    session = AgentSession(
        project_id=context.project_id,
        chat_id=chat_id,
        project_dir=context.working_directory,
        project_name=context.display_name,
        provider=context.provider,
        model=context.model,
        credential=context.credential,
        env_overlay=dict(context.environment_overlay),
    )
    executor = ToolExecutor(
        context.working_directory,
        session.env_overlay,
        settings=ToolSettings.from_settings(settings),
        error_handler=error_handler,
    )
    session.add_turn(Turn.system(build_system_prompt(context.display_name, executor.root, executor.catalog())))

    history = store.load_history(chat_id)
    for repair in repair_history(history):
        logger.warning("Chat %s had unanswered tool calls; recording them as interrupted", chat_id)
        history.append(store.append_turn(chat_id, repair))
    session.extend(history)

    provider = create_provider(
        context.provider,
        context.credential,
        context.model,
        base_url=get_setting(settings, f"providers.{context.provider}.base_url"),
        client=client,
    )
    session.set_provider_metadata("provider_id", provider.provider_id)
    session.set_provider_metadata("model", provider.model)

    if run_logger is not None and run_logger.enabled:
        run_logger.start_run(chat_id)
        run_logger.write_meta({
            "project_id": context.project_id,
            "chat_id": chat_id,
            "provider": provider.provider_id,
            "model": provider.model,
            "history_turns": len(history),
        })

    return Agent(
        session,
        provider,
        executor,
        store,
        config=AgentConfig.from_settings(settings),
        run_logger=run_logger,
        error_handler=executor.error_handler,
    )
