"""Runtime configuration read from the environment (and a local .env file)."""

from __future__ import annotations

import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    host: str = "localhost"
    port: int = 6379
    password: Optional[str] = None
    db: int = 0
    url: Optional[str] = None

    def to_url(self) -> str:
        if self.url:
            return self.url
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class QueueConfig(BaseModel):
    name: str = "bot-requests"
    concurrency: int = Field(5, ge=1)
    attempts: int = Field(3, ge=1)
    backoff_seconds: float = Field(2.0, gt=0)


class AgentConfig(BaseModel):
    url: str = "http://localhost:8001/generate"
    timeout: float = Field(30.0, gt=0)


class TelegramConfig(BaseModel):
    token: Optional[str] = None
    timeout: float = Field(60.0, gt=0)


class TwitterConfig(BaseModel):
    bearer_token: Optional[str] = None
    bot_username: str = "ask_starknet"
    poll_interval: float = Field(60.0, gt=0)
    timeout: float = Field(120.0, gt=0)
    state_file: str = "runs/twitter_bot_state.json"


class BotConfig(BaseModel):
    redis: RedisConfig = Field(default_factory=RedisConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    twitter: TwitterConfig = Field(default_factory=TwitterConfig)
    log_level: str = "INFO"


def load_config(env: Optional[Mapping[str, str]] = None) -> BotConfig:
    """Build a BotConfig from `env` (defaults to os.environ after loading .env).

    Unset variables keep the model defaults; bad values raise pydantic.ValidationError.
    """
    if env is None:
        load_dotenv()
        env = os.environ

    def pick(**names: str) -> dict:
        return {field: env[var] for field, var in names.items() if env.get(var)}

    return BotConfig.model_validate(
        {
            "redis": pick(
                host="REDIS_HOST", port="REDIS_PORT", password="REDIS_PASSWORD", db="REDIS_DB", url="REDIS_URL"
            ),
            "queue": pick(
                name="QUEUE_NAME",
                concurrency="WORKER_CONCURRENCY",
                attempts="JOB_ATTEMPTS",
                backoff_seconds="JOB_BACKOFF_SECONDS",
            ),
            "agent": pick(url="AGENT_URL", timeout="AGENT_TIMEOUT"),
            "telegram": pick(token="TELEGRAM_BOT_TOKEN", timeout="TELEGRAM_TIMEOUT"),
            "twitter": pick(
                bearer_token="TWITTER_BEARER_TOKEN",
                bot_username="TWITTER_BOT_USERNAME",
                poll_interval="TWITTER_POLL_INTERVAL",
                timeout="TWITTER_TIMEOUT",
                state_file="TWITTER_STATE_FILE",
            ),
            **pick(log_level="LOG_LEVEL"),
        }
    )
