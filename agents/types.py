from typing import TypedDict


class AgentContext(TypedDict):
    platform: str
    userId: str
    userName: str
