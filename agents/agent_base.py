"""Boundary between the queue workers and whatever produces answers.

Workers only rely on `process_request(message, context) -> str`. An agent may
raise (any exception counts as a transient failure and is retried by the
worker pool) or take arbitrarily long.
"""

from .types import AgentContext


class AgentError(Exception):
    """Raised by agents when an answer could not be produced."""


class AgentBase:
    def process_request(self, message: str, context: AgentContext) -> str:
        raise NotImplementedError
