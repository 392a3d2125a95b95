#!/usr/bin/env python3
"""Print queue metrics and, optionally, the jobs in one state.

Usage:
  python -m scripts.queue_status [--state completed] [--sweep]
"""
from __future__ import annotations

import argparse
import json
from typing import List, Optional

from core import load_config
from jobs.models import JobState
from jobs.queue import QueueBackend
from worker.worker import build_backend


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser()
    p.add_argument(
        "--state",
        choices=[s.value for s in JobState],
        help="Also list the job keys currently in this state",
    )
    p.add_argument(
        "--sweep",
        action="store_true",
        help="Apply the retention policy before reporting",
    )
    return p.parse_args(argv)


def report(backend: QueueBackend, state: Optional[str] = None, sweep: bool = False) -> dict:
    out: dict = {}
    if sweep:
        out["removed"] = backend.sweep()
    out["metrics"] = backend.get_metrics().model_dump()
    if state:
        keys = backend.list_keys(JobState(state))
        jobs = []
        for key in keys:
            job = backend.get(key)
            if job is None:
                continue
            jobs.append(
                {
                    "job_key": key,
                    "attempts_made": job.attempts_made,
                    "success": job.result.success if job.result else None,
                }
            )
        out["jobs"] = jobs
    return out


def main(argv: Optional[List[str]] = None, backend: Optional[QueueBackend] = None) -> None:
    args = parse_args(argv)
    backend = backend or build_backend(load_config())
    print(json.dumps(report(backend, args.state, args.sweep), indent=2))


if __name__ == "__main__":
    main()
