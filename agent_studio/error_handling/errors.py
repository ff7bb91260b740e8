"""
Error taxonomy for the agent loop and tool executor
"""

from typing import Optional


class AgentStudioError(Exception):
    """Base class for errors raised by agent_studio"""


class ToolError(AgentStudioError):
    """A tool failed; the executor turns this into an error-flagged outcome."""

    error_type = "execution_error"

    def __init__(self, message: str, error_type: Optional[str] = None):
        super().__init__(message)
        if error_type:
            self.error_type = error_type


class PathTraversalError(ToolError):
    error_type = "path_traversal"


class ToolTimeoutError(ToolError):
    error_type = "timeout"


class InvalidArgumentsError(ToolError):
    error_type = "invalid_arguments"


class UnknownToolError(ToolError):
    error_type = "unknown_tool"


class StorageError(AgentStudioError):
    """Persisting or loading a conversation turn failed."""


class IterationLimitError(AgentStudioError):
    """The agent loop exhausted its provider round-trip budget."""

    def __init__(self, limit: int):
        super().__init__("Maximum iterations reached")
        self.limit = limit


class SessionCancelledError(AgentStudioError):
    """The consuming channel went away mid-run."""

    def __init__(self, message: str = "Session cancelled"):
        super().__init__(message)
