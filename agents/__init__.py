# Agents package: the answer-producing side of the bots
from .agent_base import AgentBase, AgentError
from .http_agent import HttpAgent, create_agent
from .types import AgentContext

__all__ = ["AgentBase", "AgentError", "AgentContext", "HttpAgent", "create_agent"]
