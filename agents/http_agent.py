import logging
from typing import Optional

import requests

from core.config import AgentConfig

from .agent_base import AgentBase, AgentError
from .types import AgentContext

logger = logging.getLogger(__name__)


class HttpAgent(AgentBase):
    """Asks a model runner over HTTP: POST {"prompt", "context"} -> {"response"}."""

    def __init__(self, url: str, timeout: float = 30.0, session: Optional[requests.Session] = None) -> None:
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def process_request(self, message: str, context: AgentContext) -> str:
        logger.info(
            "Processing request platform=%s user_id=%s user_name=%s",
            context["platform"],
            context["userId"],
            context["userName"],
        )
        try:
            resp = self.session.post(
                self.url, json={"prompt": message, "context": dict(context)}, timeout=self.timeout
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise AgentError(f"model runner call failed: {e}") from e

        answer = (data.get("response") or data.get("result")) if isinstance(data, dict) else None
        if not answer:
            raise AgentError("model runner returned an empty response")
        logger.info(
            "Request processed successfully platform=%s user_id=%s response_length=%d",
            context["platform"],
            context["userId"],
            len(answer),
        )
        return str(answer)


def create_agent(config: AgentConfig) -> HttpAgent:
    logger.info("Initializing agent url=%s", config.url)
    return HttpAgent(config.url, timeout=config.timeout)
