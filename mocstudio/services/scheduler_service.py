"""
MOC Studio
Scheduler Service.

Job registry for the periodic sweeps. Jobs are not run in-process on a
timer: an external cron triggers them through ``flask run-job <name>`` or
the scheduler endpoint, and each run executes inside the app context.

Architecture:
    - register_job: decorator that adds a job function to the registry
    - SchedulerService: holds the app and executes jobs by name
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask

from mocstudio.models import db

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}

# Suggested cron expressions for the registered sweeps
DEFAULT_SCHEDULES = {
    "task_due_reminder": "0 7 * * *",
    "overdue_review_scanner": "0 8 * * *",
}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("task_due_reminder")
        def send_task_due_reminders(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Executes registered jobs within the Flask app context.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def list_jobs(cls) -> list[dict]:
        return [
            {
                "job_name": name,
                "description": (fn.__doc__ or "").strip().splitlines()[0] if fn.__doc__ else "",
                "schedule": DEFAULT_SCHEDULES.get(name),
            }
            for name, fn in _job_registry.items()
        ]

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        A failed job rolls back its own work; the failure is reported in
        the returned dict and logged with its traceback.

        Returns:
            Dict with job_name, status, duration_ms, result, error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        with cls._app.app_context():
            try:
                result = fn(cls._app)
                db.session.commit()
            except Exception as exc:
                db.session.rollback()
                status = "failed"
                error = str(exc)
                logger.exception("Job %s failed: %s", job_name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Job %s finished: %s in %dms", job_name, status, duration_ms,
            extra={"event_type": "job.run", "duration_ms": duration_ms},
        )

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }
