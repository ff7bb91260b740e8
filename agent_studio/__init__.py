"""
Agent Studio

A project-scoped coding agent: a provider-agnostic completion layer, a
sandboxed tool executor and a streaming agent loop.
"""

from .agent import Agent, AgentConfig, create_agent
from .provider_routing import provider_router
from .provider_runtime import create_provider, provider_registry

__all__ = [
    'Agent',
    'AgentConfig',
    'create_agent',
    'create_provider',
    'provider_registry',
    'provider_router',
]
