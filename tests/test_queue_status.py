import json

from conftest import make_job
from jobs.models import JobResult
from scripts.queue_status import main, report


def test_report_lists_jobs_in_state(backend):
    backend.enqueue(make_job("1"))
    backend.enqueue(make_job("2"))
    backend.reserve(timeout=0.1)
    backend.fail("telegram-1", JobResult.failure("boom", 0.1))

    out = report(backend, state="failed", sweep=True)
    assert out["removed"] == 0
    assert out["metrics"]["failed"] == 1
    assert out["metrics"]["waiting"] == 1
    assert out["jobs"] == [{"job_key": "telegram-1", "attempts_made": 0, "success": False}]


def test_main_prints_json(backend, capsys):
    backend.enqueue(make_job("1"))
    main(["--state", "waiting"], backend=backend)

    printed = json.loads(capsys.readouterr().out)
    assert printed["jobs"][0]["job_key"] == "telegram-1"
