import logging
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Set

from agents import AgentBase, create_agent
from agents.types import AgentContext
from core import init_logging, load_config
from core.config import BotConfig
from jobs.models import JobRecord, JobResult
from jobs.queue import QueueBackend, QueueOptions

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
SWEEP_INTERVAL = 60.0
STALL_INTERVAL = 30.0


def handle_job(job: JobRecord, agent: AgentBase) -> JobResult:
    """Run one attempt of `job` through the agent.

    A failure is re-raised while attempts remain so the queue schedules a retry.
    On the final attempt it becomes a failed JobResult instead, so every job
    ends up terminal and nobody waits on it forever.
    """
    start = time.monotonic()
    logger.info(
        "Processing job job_key=%s platform=%s user_id=%s attempt=%d",
        job.job_key,
        job.platform.value,
        job.user_id,
        job.attempts_made + 1,
    )
    context: AgentContext = {
        "platform": job.platform.value,
        "userId": job.user_id,
        "userName": job.user_name,
    }
    try:
        response = agent.process_request(job.message, context)
    except Exception as e:
        logger.error("Error processing job job_key=%s: %s", job.job_key, e)
        if not job.is_final_attempt:
            raise
        return JobResult.failure(str(e) or type(e).__name__, time.monotonic() - start)
    return JobResult.ok(response, time.monotonic() - start)


def run_job(backend: QueueBackend, job: JobRecord, agent: AgentBase) -> Optional[JobResult]:
    """Run `job` and record the outcome. Returns the result, or None when retried."""
    try:
        result = handle_job(job, agent)
    except Exception as e:
        backend.retry(job.job_key, str(e) or type(e).__name__)
        return None
    backend.complete(job.job_key, result)
    return result


def run_once(backend: QueueBackend, agent: AgentBase, timeout: float = 5.0) -> bool:
    """Run one iteration of the worker loop in the calling thread.

    Returns True if a job was processed (or rescheduled), False if none was ready.
    """
    backend.promote_delayed()
    job = backend.reserve(timeout)
    if job is None:
        return False
    run_job(backend, job, agent)
    return True


class WorkerPool:
    """Runs up to `concurrency` jobs at once on a thread pool.

    A slot is taken before a job is reserved, so jobs beyond the limit stay
    in the waiting list until a running one finishes. The dispatcher renews
    the lease of every running job and periodically requeues jobs whose
    worker died without finishing them.
    """

    def __init__(
        self,
        backend: QueueBackend,
        agent: AgentBase,
        concurrency: int = DEFAULT_CONCURRENCY,
        poll_timeout: float = 1.0,
        sweep_interval: float = SWEEP_INTERVAL,
        stall_interval: float = STALL_INTERVAL,
    ) -> None:
        self.backend = backend
        self.agent = agent
        self.concurrency = concurrency
        self.poll_timeout = poll_timeout
        self.sweep_interval = sweep_interval
        self.stall_interval = stall_interval
        self.renew_interval = backend.options.lock_duration / 2
        self._running_keys: Set[str] = set()
        self._keys_lock = threading.Lock()
        self._slots = threading.Semaphore(concurrency)
        self._stop = threading.Event()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Worker already started")
            return
        self._stop.clear()
        self._recover_stalled()
        self._executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="job")
        self._dispatcher = threading.Thread(target=self._dispatch, name="job-dispatcher", daemon=True)
        self._dispatcher.start()
        logger.info("Worker started concurrency=%d queue=%s", self.concurrency, self.backend.name)

    def stop(self, wait: bool = True) -> None:
        self._stop.set()
        if self._dispatcher is not None:
            self._dispatcher.join(timeout=self.poll_timeout * 2 + 1)
            self._dispatcher = None
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
        logger.info("Worker stopped")

    def _recover_stalled(self) -> None:
        try:
            recovered = self.backend.recover_stalled()
        except Exception:
            logger.exception("Stalled job check failed")
            return
        if recovered:
            logger.warning("Recovered %d stalled jobs", recovered)

    def _renew_leases(self) -> None:
        with self._keys_lock:
            keys = list(self._running_keys)
        for job_key in keys:
            try:
                if not self.backend.extend_lock(job_key):
                    logger.warning("Lease lost for running job job_key=%s", job_key)
            except Exception:
                logger.exception("Failed to renew lease job_key=%s", job_key)

    def _dispatch(self) -> None:
        last_sweep = last_stall_check = last_renew = time.monotonic()
        while not self._stop.is_set():
            now = time.monotonic()
            if now - last_renew >= self.renew_interval:
                last_renew = now
                self._renew_leases()
            if now - last_stall_check >= self.stall_interval:
                last_stall_check = now
                self._recover_stalled()

            if not self._slots.acquire(timeout=self.poll_timeout):
                continue
            try:
                self.backend.promote_delayed()
                job = self.backend.reserve(self.poll_timeout)
            except Exception:
                self._slots.release()
                logger.exception("Failed to reserve job")
                self._stop.wait(self.poll_timeout)
                continue
            if job is None:
                self._slots.release()
            else:
                assert self._executor is not None
                with self._keys_lock:
                    self._running_keys.add(job.job_key)
                self._executor.submit(self._run, job)

            if time.monotonic() - last_sweep >= self.sweep_interval:
                last_sweep = time.monotonic()
                try:
                    self.backend.sweep()
                except Exception:
                    logger.exception("Retention sweep failed")

    def _run(self, job: JobRecord) -> None:
        try:
            run_job(self.backend, job, self.agent)
        except Exception:
            logger.exception("Worker: job %s could not be recorded", job.job_key)
        finally:
            with self._keys_lock:
                self._running_keys.discard(job.job_key)
            self._slots.release()


def build_backend(config: BotConfig) -> QueueBackend:
    options = QueueOptions(attempts=config.queue.attempts, backoff_delay=config.queue.backoff_seconds)
    return QueueBackend.from_url(config.redis.to_url(), name=config.queue.name, options=options)


def build_pool(config: BotConfig, backend: QueueBackend) -> WorkerPool:
    return WorkerPool(backend, create_agent(config.agent), concurrency=config.queue.concurrency)


def main() -> None:
    config = load_config()
    init_logging(config.log_level)
    backend = build_backend(config)
    pool = build_pool(config, backend)

    stop_event = threading.Event()

    def ask_exit(signum, frame) -> None:
        logger.info("Received signal %s, shutting down...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, ask_exit)

    pool.start()
    logger.info("Worker started, waiting for tasks...")
    stop_event.wait()
    pool.stop()
    backend.close()
    logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
