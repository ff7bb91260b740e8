"""
State management for agent sessions
"""

from .session_state import AgentSession

__all__ = ["AgentSession"]
