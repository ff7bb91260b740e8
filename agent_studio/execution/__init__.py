"""
Tool execution and argument validation.

This module dispatches tool invocations against one project directory.
"""
from .tool_executor import ToolExecutor

__all__ = ["ToolExecutor"]
