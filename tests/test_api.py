from fastapi.testclient import TestClient

from api.main import app, get_backend
from jobs.models import JobResult


def _client(backend):
    app.dependency_overrides[get_backend] = lambda: backend
    return TestClient(app)


def test_root_and_metrics(backend):
    client = _client(backend)
    try:
        assert client.get("/").json() == {"status": "ok"}
        assert client.get("/metrics").json() == {
            "waiting": 0,
            "active": 0,
            "delayed": 0,
            "completed": 0,
            "failed": 0,
        }
    finally:
        app.dependency_overrides.clear()


def test_submit_and_read_job(backend):
    client = _client(backend)
    body = {
        "platform": "discord",
        "user_id": "1",
        "user_name": "carol",
        "message": "hello?",
        "message_id": "abc",
    }
    try:
        created = client.post("/jobs", json=body).json()
        assert created == {"job_key": "discord-abc", "state": "waiting"}
        # resubmitting the same message is a no-op
        client.post("/jobs", json=body)
        assert client.get("/metrics").json()["waiting"] == 1

        backend.reserve(timeout=0.1)
        backend.complete("discord-abc", JobResult.ok("hi carol", 0.3))
        job = client.get("/jobs/discord-abc").json()
        assert job["state"] == "completed"
        assert job["result"]["response"] == "hi carol"

        assert client.get("/jobs/discord-nope").status_code == 404
        assert client.post("/jobs", json={**body, "message": ""}).status_code == 422
    finally:
        app.dependency_overrides.clear()
