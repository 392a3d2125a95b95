"""Worker package initializer.

Re-exports the commonly used worker symbols so callers can write
`from worker import WorkerPool`.
"""

from __future__ import annotations

from .worker import WorkerPool, build_backend, build_pool, handle_job, main, run_job, run_once

__all__ = [
    "main",
    "run_once",
    "run_job",
    "handle_job",
    "WorkerPool",
    "build_backend",
    "build_pool",
]
