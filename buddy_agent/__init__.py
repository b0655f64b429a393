"""Buddy Agent - agentic execution core for a coding assistant."""

__version__ = "0.1.0"

from buddy_agent.agent import Agent, AgentStatus, create_agent
from buddy_agent.config import Config

__all__ = ["Agent", "AgentStatus", "Config", "create_agent", "__version__"]
