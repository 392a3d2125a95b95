"""Job record, result and event models shared by the queue, worker and bots.

A job moves through an explicit state machine instead of being inferred from
exception flow:

    waiting -> active -> delayed -> waiting -> active -> ... -> completed | failed

``completed`` and ``failed`` are terminal.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator


class Platform(str, Enum):
    TELEGRAM = "telegram"
    TWITTER = "twitter"
    DISCORD = "discord"


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)

    def can_transition_to(self, target: "JobState") -> bool:
        return target in _TRANSITIONS[self]


_TRANSITIONS = {
    JobState.WAITING: {JobState.ACTIVE},
    JobState.ACTIVE: {JobState.DELAYED, JobState.COMPLETED, JobState.FAILED},
    JobState.DELAYED: {JobState.WAITING},
    JobState.COMPLETED: set(),
    JobState.FAILED: set(),
}


class InvalidTransition(Exception):
    def __init__(self, job_key: str, current: JobState, target: JobState) -> None:
        super().__init__(f"job {job_key}: cannot move from {current.value} to {target.value}")
        self.job_key = job_key
        self.current = current
        self.target = target


class JobResult(BaseModel):
    """Outcome of the attempt that finished a job.

    ``response`` is present iff ``success``; ``error`` is present iff not.
    """

    success: bool
    response: Optional[str] = None
    error: Optional[str] = None
    processing_time: float = 0.0

    @model_validator(mode="after")
    def _check_payload(self) -> "JobResult":
        if self.success and self.response is None:
            raise ValueError("successful result requires a response")
        if not self.success and self.error is None:
            raise ValueError("failed result requires an error")
        if self.success and self.error is not None:
            raise ValueError("successful result cannot carry an error")
        if not self.success and self.response is not None:
            raise ValueError("failed result cannot carry a response")
        return self

    @classmethod
    def ok(cls, response: str, processing_time: float) -> "JobResult":
        return cls(success=True, response=response, processing_time=processing_time)

    @classmethod
    def failure(cls, error: str, processing_time: float) -> "JobResult":
        return cls(success=False, error=error, processing_time=processing_time)


class JobRecord(BaseModel):
    platform: Platform
    user_id: str
    user_name: str
    message: str
    message_id: str
    timestamp: float = Field(default_factory=time.time)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    attempts_made: int = 0
    max_attempts: int = 3
    state: JobState = JobState.WAITING
    result: Optional[JobResult] = None

    @property
    def job_key(self) -> str:
        return make_job_key(self.platform, self.message_id)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def is_final_attempt(self) -> bool:
        return self.attempts_made >= self.max_attempts - 1


class JobEvent(BaseModel):
    job_key: str
    event: JobState
    result: JobResult


class QueueMetrics(BaseModel):
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0


class ProcessedTweet(BaseModel):
    id: str
    timestamp: float


def make_job_key(platform: Platform, message_id: str) -> str:
    return f"{Platform(platform).value}-{message_id}"


__all__ = [
    "Platform",
    "JobState",
    "InvalidTransition",
    "JobResult",
    "JobRecord",
    "JobEvent",
    "QueueMetrics",
    "ProcessedTweet",
    "make_job_key",
]
