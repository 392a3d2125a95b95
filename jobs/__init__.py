"""Job contract, durable queue and completion waiter shared by every bot."""

from __future__ import annotations

from .models import JobEvent, JobRecord, JobResult, JobState, Platform, QueueMetrics
from .queue import DEFAULT_QUEUE_NAME, JobNotFound, QueueBackend, QueueOptions
from .waiter import PENDING, CompletionWaiter, PendingJob

__all__ = [
    "JobEvent",
    "JobRecord",
    "JobResult",
    "JobState",
    "Platform",
    "QueueMetrics",
    "QueueBackend",
    "QueueOptions",
    "JobNotFound",
    "DEFAULT_QUEUE_NAME",
    "CompletionWaiter",
    "PendingJob",
    "PENDING",
]
