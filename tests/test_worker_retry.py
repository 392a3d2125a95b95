import time

import pytest

from agents import AgentBase, AgentError
from conftest import make_job
from jobs.models import JobState
from worker.worker import handle_job, run_job, run_once


class CountingAgent(AgentBase):
    def __init__(self, fail_times: int = 0, answer: str = "hello") -> None:
        self.fail_times = fail_times
        self.answer = answer
        self.calls = []

    def process_request(self, message, context):
        self.calls.append((message, dict(context)))
        if len(self.calls) <= self.fail_times:
            raise AgentError("model runner call failed")
        return self.answer


def _drain(backend, agent, deadline: float = 5.0) -> None:
    end = time.time() + deadline
    while time.time() < end:
        job = backend.get("telegram-1")
        if job is not None and job.is_terminal:
            return
        run_once(backend, agent, timeout=0.05)
    raise AssertionError("job never reached a terminal state")


def test_handle_job_passes_context_to_agent():
    agent = CountingAgent()
    result = handle_job(make_job("1", message="hi"), agent)

    assert result.success is True
    assert result.response == "hello"
    assert result.processing_time >= 0
    assert agent.calls == [("hi", {"platform": "telegram", "userId": "u-1", "userName": "alice"})]


def test_handle_job_reraises_while_attempts_remain():
    with pytest.raises(AgentError):
        handle_job(make_job("1"), CountingAgent(fail_times=1))


def test_handle_job_converts_failure_on_final_attempt():
    job = make_job("1").model_copy(update={"attempts_made": 2})
    result = handle_job(job, CountingAgent(fail_times=1))

    assert result.success is False
    assert result.error == "model runner call failed"
    assert result.response is None


def test_always_failing_job_is_attempted_exactly_max_attempts(backend):
    agent = CountingAgent(fail_times=100)
    backend.enqueue(make_job("1"))

    _drain(backend, agent)

    job = backend.get("telegram-1")
    assert len(agent.calls) == 3
    assert job.state is JobState.COMPLETED
    assert job.attempts_made == 2
    assert job.result.success is False
    assert job.result.error == "model runner call failed"


def test_transient_failure_recovers_on_retry(backend):
    agent = CountingAgent(fail_times=1)
    backend.enqueue(make_job("1"))

    _drain(backend, agent)

    job = backend.get("telegram-1")
    assert len(agent.calls) == 2
    assert job.result.success is True
    assert job.result.response == "hello"


def test_run_job_returns_none_when_retried(backend):
    backend.enqueue(make_job("1"))
    job = backend.reserve(timeout=0.1)
    assert run_job(backend, job, CountingAgent(fail_times=1)) is None
    assert backend.get("telegram-1").state is JobState.DELAYED


def test_run_once_without_jobs_returns_false(backend):
    assert run_once(backend, CountingAgent(), timeout=0.05) is False
