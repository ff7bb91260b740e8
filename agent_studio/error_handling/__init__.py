"""
Error handling for the agent loop and tool executor
"""

from .error_handler import ErrorHandler
from .errors import (
    AgentStudioError,
    InvalidArgumentsError,
    IterationLimitError,
    PathTraversalError,
    SessionCancelledError,
    StorageError,
    ToolError,
    ToolTimeoutError,
    UnknownToolError,
)

__all__ = [
    "AgentStudioError",
    "ErrorHandler",
    "InvalidArgumentsError",
    "IterationLimitError",
    "PathTraversalError",
    "SessionCancelledError",
    "StorageError",
    "ToolError",
    "ToolTimeoutError",
    "UnknownToolError",
]
