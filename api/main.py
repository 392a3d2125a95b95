from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, Field

from core import load_config
from jobs.models import JobRecord, Platform, QueueMetrics
from jobs.queue import QueueBackend
from worker.worker import build_backend

app = FastAPI(title="bot-requests status")

_backend: Optional[QueueBackend] = None


def get_backend() -> QueueBackend:
    global _backend
    if _backend is None:
        _backend = build_backend(load_config())
    return _backend


class JobRequest(BaseModel):
    platform: Platform
    user_id: str
    user_name: str
    message: str = Field(min_length=1)
    message_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


@app.get('/')
def root():
    return {'status': 'ok'}


@app.get('/metrics')
def metrics(backend: QueueBackend = Depends(get_backend)) -> QueueMetrics:
    return backend.get_metrics()


@app.post('/jobs')
def create_job(req: JobRequest, backend: QueueBackend = Depends(get_backend)) -> Dict[str, Any]:
    job = backend.enqueue(JobRecord(**req.model_dump()))
    return {'job_key': job.job_key, 'state': job.state.value}


@app.get('/jobs/{job_key}')
def get_job(job_key: str, backend: QueueBackend = Depends(get_backend)) -> Dict[str, Any]:
    job = backend.get(job_key)
    if job is None:
        raise HTTPException(status_code=404, detail='job not found')
    return {'job_key': job_key, **job.model_dump(mode='json')}
