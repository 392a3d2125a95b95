"""Redis-backed durable job queue.

Layout under the queue name ``<q>``:

- ``<q>:job:<key>``    hash, field ``data`` holds the JobRecord JSON
- ``<q>:waiting``      list of ready job keys (FIFO)
- ``<q>:active``       list of job keys currently owned by a worker
- ``<q>:delayed``      zset of job keys waiting for a retry, score = ready time
- ``<q>:completed``    zset of completed job keys, score = finish time
- ``<q>:failed``       zset of failed job keys, score = finish time
- ``<q>:lock:<key>``   lease held by the worker running the job, expires unless renewed
- ``<q>:stalled``      set of active job keys seen without a lease on the last check
- ``<q>:events:<key>`` pub/sub channel carrying the job's terminal JobEvent

Every state change of a job goes through this class; bots and workers never
write job state themselves.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Set, Union

import redis
from pydantic import BaseModel

from .models import (
    InvalidTransition,
    JobEvent,
    JobRecord,
    JobResult,
    JobState,
    QueueMetrics,
)
from .redis_helpers import blmove, hget, llen, to_text, zcard, zrange, zrangebyscore, zrem

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_NAME = "bot-requests"

STALLED_ERROR = "job stalled: worker lease expired"


class QueueOptions(BaseModel):
    attempts: int = 3
    backoff_delay: float = 2.0
    keep_completed: int = 100
    completed_max_age: float = 3600.0
    keep_failed: int = 50
    lock_duration: float = 30.0


class JobNotFound(KeyError):
    def __init__(self, job_key: str) -> None:
        super().__init__(job_key)
        self.job_key = job_key

    def __str__(self) -> str:
        return f"job {self.job_key} not found"


class TerminalSubscription:
    """Pub/sub subscription to one job's terminal event.

    Without `on_terminal` the event is read by whoever calls `wait()`. With it,
    a listener thread delivers the event to the callback as soon as it is
    published, and `wait()` only blocks until that has happened.
    """

    def __init__(
        self,
        pubsub: Any,
        channel: str,
        job_key: str,
        on_terminal: Optional[Callable[[JobEvent], None]] = None,
    ) -> None:
        self.job_key = job_key
        self._pubsub = pubsub
        self._channel = channel
        self._on_terminal = on_terminal
        self._event: Optional[JobEvent] = None
        self._received = threading.Event()
        self._listener: Any = None
        self._closed = False
        if on_terminal is None:
            self._pubsub.subscribe(channel)
            self._await_confirmation()
        else:
            self._pubsub.subscribe(**{channel: self._handle})
            self._listener = self._pubsub.run_in_thread(sleep_time=0.01, daemon=True)

    def _await_confirmation(self, timeout: float = 1.0) -> None:
        # the server must have registered the subscription before the job can finish
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            message = self._pubsub.get_message(timeout=deadline - time.monotonic())
            if message and message.get("type") == "subscribe":
                return

    def _handle(self, message: Dict[str, Any]) -> None:
        if self._received.is_set():
            return
        event = JobEvent.model_validate_json(to_text(message["data"]))
        self._event = event
        if self._on_terminal is not None:
            try:
                self._on_terminal(event)
            except Exception:
                logger.exception("Terminal callback failed job_key=%s", self.job_key)
        self._received.set()

    def wait(self, timeout: float) -> Optional[JobEvent]:
        """Block up to `timeout` seconds for the terminal event. None on timeout."""
        if self._listener is not None:
            return self._event if self._received.wait(timeout) else None
        deadline = time.monotonic() + timeout
        while not self._received.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            message = self._pubsub.get_message(ignore_subscribe_messages=True, timeout=remaining)
            if message and message.get("type") == "message":
                self._handle(message)
        return self._event

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._listener is not None:
            # the listener closes the pubsub connection on its way out
            self._listener.stop()
            self._listener.join(timeout=1.0)
            return
        try:
            self._pubsub.unsubscribe(self._channel)
        finally:
            self._pubsub.close()

    def __enter__(self) -> "TerminalSubscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class QueueBackend:
    def __init__(
        self,
        client: redis.Redis,
        name: str = DEFAULT_QUEUE_NAME,
        options: Optional[QueueOptions] = None,
    ) -> None:
        self.client = client
        self.name = name
        self.options = options or QueueOptions()

    @classmethod
    def from_url(
        cls, url: str, name: str = DEFAULT_QUEUE_NAME, options: Optional[QueueOptions] = None
    ) -> "QueueBackend":
        client = redis.Redis.from_url(url, decode_responses=True)
        return cls(client, name=name, options=options)

    # -- keys ---------------------------------------------------------------

    def _job_hash(self, job_key: str) -> str:
        return f"{self.name}:job:{job_key}"

    def _channel(self, job_key: str) -> str:
        return f"{self.name}:events:{job_key}"

    def _lock(self, job_key: str) -> str:
        return f"{self.name}:lock:{job_key}"

    @property
    def _waiting(self) -> str:
        return f"{self.name}:waiting"

    @property
    def _active(self) -> str:
        return f"{self.name}:active"

    @property
    def _delayed(self) -> str:
        return f"{self.name}:delayed"

    @property
    def _completed(self) -> str:
        return f"{self.name}:completed"

    @property
    def _failed(self) -> str:
        return f"{self.name}:failed"

    @property
    def _stalled(self) -> str:
        return f"{self.name}:stalled"

    # -- helpers ------------------------------------------------------------

    def _require(self, job_key: str) -> JobRecord:
        job = self.get(job_key)
        if job is None:
            raise JobNotFound(job_key)
        return job

    @staticmethod
    def _advance(job: JobRecord, target: JobState, **changes: Any) -> JobRecord:
        if not job.state.can_transition_to(target):
            raise InvalidTransition(job.job_key, job.state, target)
        changes["state"] = target
        return job.model_copy(update=changes)

    def backoff_delay(self, attempts_made: int) -> float:
        """Delay before the retry that follows `attempts_made` failed attempts."""
        return self.options.backoff_delay * (2 ** max(attempts_made - 1, 0))

    # -- public API ---------------------------------------------------------

    def enqueue(self, record: JobRecord) -> JobRecord:
        """Store `record` and queue it, unless a job with the same key already exists.

        A duplicate submission returns the stored job untouched.
        """
        job_key = record.job_key
        hash_key = self._job_hash(job_key)
        job = record.model_copy(
            update={
                "state": JobState.WAITING,
                "attempts_made": 0,
                "max_attempts": self.options.attempts,
                "result": None,
            }
        )
        with self.client.pipeline() as pipe:
            while True:
                try:
                    pipe.watch(hash_key)
                    raw = pipe.hget(hash_key, "data")
                    if raw is not None:
                        pipe.unwatch()
                        existing = JobRecord.model_validate_json(to_text(raw))
                        logger.info(
                            "Job %s already queued (state=%s), reusing it", job_key, existing.state.value
                        )
                        return existing
                    pipe.multi()
                    pipe.hset(hash_key, "data", job.model_dump_json())
                    pipe.rpush(self._waiting, job_key)
                    pipe.execute()
                    break
                except redis.WatchError:
                    continue
        logger.info(
            "Adding job to queue job_key=%s platform=%s user_id=%s",
            job_key,
            job.platform.value,
            job.user_id,
        )
        return job

    def get(self, job_key: str) -> Optional[JobRecord]:
        raw = hget(self.client, self._job_hash(job_key), "data")
        if raw is None:
            return None
        return JobRecord.model_validate_json(raw)

    def subscribe(
        self, job_key: str, on_terminal: Optional[Callable[[JobEvent], None]] = None
    ) -> TerminalSubscription:
        return TerminalSubscription(self.client.pubsub(), self._channel(job_key), job_key, on_terminal)

    def reserve(self, timeout: float = 1.0) -> Optional[JobRecord]:
        """Take the next ready job, blocking up to `timeout` seconds when idle."""
        member = blmove(self.client, self._waiting, self._active, timeout)
        if member is None:
            return None
        job_key = to_text(member)
        job = self.get(job_key)
        if job is None:
            # evicted while queued; nothing left to run
            self.client.lrem(self._active, 1, job_key)
            return None
        job = self._advance(job, JobState.ACTIVE)
        pipe = self.client.pipeline()
        pipe.set(self._lock(job_key), "1", px=self._lock_ms)
        pipe.hset(self._job_hash(job_key), "data", job.model_dump_json())
        pipe.execute()
        return job

    @property
    def _lock_ms(self) -> int:
        return max(int(self.options.lock_duration * 1000), 1)

    def extend_lock(self, job_key: str) -> bool:
        """Renew the lease on an active job. False if the lease was already lost."""
        return bool(self.client.pexpire(self._lock(job_key), self._lock_ms))

    def recover_stalled(self) -> int:
        """Hand active jobs whose worker stopped renewing its lease back to the queue.

        A job is stalled when it is found in the active list without a lease on
        two consecutive checks. The lost run counts as a failed attempt, so a
        job with no attempts left is failed rather than retried. Returns the
        number of jobs recovered.
        """
        recovered = 0
        for member in self.client.smembers(self._stalled):
            job_key = to_text(member)
            if self.client.exists(self._lock(job_key)):
                continue
            # lrem doubles as a claim when several pools check at once
            if self.client.lrem(self._active, 1, job_key) == 0:
                continue
            job = self.get(job_key)
            if job is None:
                continue
            recovered += 1
            if job.state is JobState.ACTIVE:
                logger.warning("Job %s stalled; worker lease expired", job_key)
                self.retry(job_key, STALLED_ERROR)
            else:
                # moved to active but never marked as such
                self.client.rpush(self._waiting, job_key)

        candidates = [to_text(m) for m in self.client.lrange(self._active, 0, -1)]
        pipe = self.client.pipeline()
        pipe.delete(self._stalled)
        for job_key in candidates:
            if not self.client.exists(self._lock(job_key)):
                pipe.sadd(self._stalled, job_key)
        pipe.execute()
        return recovered

    def promote_delayed(self, now: Optional[float] = None) -> int:
        """Move retry-wait jobs whose backoff has elapsed back to the waiting list."""
        now = time.time() if now is None else now
        moved = 0
        for member in zrangebyscore(self.client, self._delayed, 0, now):
            # zrem doubles as a claim when several workers promote at once
            if zrem(self.client, self._delayed, member) == 0:
                continue
            job_key = to_text(member)
            job = self.get(job_key)
            if job is None:
                continue
            job = self._advance(job, JobState.WAITING)
            pipe = self.client.pipeline()
            pipe.hset(self._job_hash(job_key), "data", job.model_dump_json())
            pipe.rpush(self._waiting, job_key)
            pipe.execute()
            moved += 1
        if moved:
            logger.debug("Promoted %d delayed jobs", moved)
        return moved

    def retry(self, job_key: str, error: str) -> JobRecord:
        """Schedule another attempt after the backoff delay.

        When the attempt budget is already spent the job fails instead.
        """
        job = self._require(job_key)
        attempts_made = job.attempts_made + 1
        if attempts_made >= job.max_attempts:
            return self.fail(job_key, JobResult.failure(error, 0.0))

        delay = self.backoff_delay(attempts_made)
        job = self._advance(job, JobState.DELAYED, attempts_made=attempts_made)
        pipe = self.client.pipeline()
        pipe.hset(self._job_hash(job_key), "data", job.model_dump_json())
        pipe.lrem(self._active, 1, job_key)
        pipe.delete(self._lock(job_key))
        pipe.zadd(self._delayed, {job_key: time.time() + delay})
        pipe.execute()
        logger.warning(
            "Job %s attempt %d/%d failed (%s); retrying in %.1fs",
            job_key,
            attempts_made,
            job.max_attempts,
            error,
            delay,
        )
        return job

    def complete(self, job_key: str, result: JobResult) -> JobRecord:
        job = self._finish(job_key, JobState.COMPLETED, result, self._completed)
        logger.info(
            "Job completed job_key=%s success=%s processing_time=%.3f",
            job_key,
            result.success,
            result.processing_time,
        )
        return job

    def fail(self, job_key: str, result: JobResult) -> JobRecord:
        job = self._finish(job_key, JobState.FAILED, result, self._failed)
        logger.error("Job failed job_key=%s error=%s", job_key, result.error)
        return job

    def _finish(self, job_key: str, target: JobState, result: JobResult, done_set: str) -> JobRecord:
        job = self._advance(self._require(job_key), target, result=result)
        event = JobEvent(job_key=job_key, event=target, result=result)
        pipe = self.client.pipeline()
        pipe.hset(self._job_hash(job_key), "data", job.model_dump_json())
        pipe.lrem(self._active, 1, job_key)
        pipe.delete(self._lock(job_key))
        pipe.zadd(done_set, {job_key: time.time()})
        pipe.publish(self._channel(job_key), event.model_dump_json())
        pipe.execute()
        self.sweep()
        return job

    def sweep(self, now: Optional[float] = None) -> int:
        """Apply terminal retention; returns how many job hashes were dropped.

        Completed jobs: the `keep_completed` most recent, none older than
        `completed_max_age`. Failed jobs: the `keep_failed` most recent.
        """
        now = time.time() if now is None else now
        opts = self.options
        expired: Dict[str, Set[str]] = {
            self._completed: self._over_count(self._completed, opts.keep_completed),
            self._failed: self._over_count(self._failed, opts.keep_failed),
        }
        for member in zrangebyscore(self.client, self._completed, 0, now - opts.completed_max_age):
            expired[self._completed].add(to_text(member))

        removed = 0
        pipe = self.client.pipeline()
        for done_set, keys in expired.items():
            for job_key in keys:
                pipe.zrem(done_set, job_key)
                pipe.delete(self._job_hash(job_key))
                removed += 1
        if removed:
            pipe.execute()
            logger.debug("Retention sweep removed %d jobs", removed)
        return removed

    def _over_count(self, done_set: str, keep: int) -> Set[str]:
        excess = zcard(self.client, done_set) - keep
        if excess <= 0:
            return set()
        return {to_text(m) for m in zrange(self.client, done_set, 0, excess - 1)}

    def list_keys(self, state: JobState) -> List[str]:
        """Job keys currently in `state`, oldest first."""
        if state in (JobState.WAITING, JobState.ACTIVE):
            name = self._waiting if state is JobState.WAITING else self._active
            members: List[Union[bytes, str]] = list(self.client.lrange(name, 0, -1))
        else:
            name = {
                JobState.DELAYED: self._delayed,
                JobState.COMPLETED: self._completed,
                JobState.FAILED: self._failed,
            }[state]
            members = zrange(self.client, name, 0, -1)
        return [to_text(m) for m in members]

    def get_metrics(self) -> QueueMetrics:
        return QueueMetrics(
            waiting=llen(self.client, self._waiting),
            active=llen(self.client, self._active),
            delayed=zcard(self.client, self._delayed),
            completed=zcard(self.client, self._completed),
            failed=zcard(self.client, self._failed),
        )

    def close(self) -> None:
        self.client.close()


__all__ = ["QueueBackend", "QueueOptions", "TerminalSubscription", "JobNotFound", "DEFAULT_QUEUE_NAME", "STALLED_ERROR"]
