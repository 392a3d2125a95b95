"""Submit a job and block until it finishes or a timeout elapses.

A timeout is not an error: the caller gets ``PENDING`` back and the job keeps
running in the workers. Its late result is not delivered by this waiter.
"""

from __future__ import annotations

import logging
from typing import Union

from .models import JobRecord, JobResult
from .queue import QueueBackend, TerminalSubscription

logger = logging.getLogger(__name__)


class _Pending:
    _instance = None

    def __new__(cls) -> "_Pending":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "PENDING"

    def __bool__(self) -> bool:
        return False


PENDING = _Pending()

WaitOutcome = Union[JobResult, _Pending]


class PendingJob:
    """A submitted job with a live subscription to its terminal event."""

    def __init__(self, backend: QueueBackend, job: JobRecord, subscription: TerminalSubscription) -> None:
        self.backend = backend
        self.job = job
        self._subscription = subscription

    @property
    def job_key(self) -> str:
        return self.job.job_key

    def wait(self, timeout: float) -> WaitOutcome:
        try:
            # the job may have finished before (or while) we subscribed
            current = self.backend.get(self.job_key)
            if current is not None and current.is_terminal and current.result is not None:
                return current.result
            event = self._subscription.wait(timeout)
            if event is None:
                logger.warning("Timeout waiting for job completion job_key=%s timeout=%.1fs", self.job_key, timeout)
                return PENDING
            return event.result
        finally:
            self.close()

    def close(self) -> None:
        self._subscription.close()


class CompletionWaiter:
    def __init__(self, backend: QueueBackend) -> None:
        self.backend = backend

    def submit(self, record: JobRecord) -> PendingJob:
        subscription = self.backend.subscribe(record.job_key)
        try:
            job = self.backend.enqueue(record)
        except Exception:
            subscription.close()
            raise
        return PendingJob(self.backend, job, subscription)

    def submit_and_wait(self, record: JobRecord, timeout: float) -> WaitOutcome:
        return self.submit(record).wait(timeout)


__all__ = ["CompletionWaiter", "PendingJob", "PENDING", "WaitOutcome"]
