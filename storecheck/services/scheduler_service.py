"""
StoreCheck
Scheduler Service.

Lightweight job registry for the maintenance sweeps. There is no background
worker: jobs are triggered by cron through ``flask run-job <name>`` or
manually via ``POST /api/v1/jobs/<name>/run``.

Architecture:
    - register_job: decorator that adds a function to the registry
    - SchedulerService.run_job: executes one job inside the app context and
      reports status, duration, result or error
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask, current_app, has_app_context

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("action_plan_overdue_scan")
        def scan_overdue_plans(app):
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
    """Runs registered jobs within a Flask app context."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with job_name, status, duration_ms, result and error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app and not has_app_context():
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            if has_app_context():
                result = fn(current_app._get_current_object())
            else:
                with cls._app.app_context():
                    result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("Job %s finished: status=%s duration_ms=%d", job_name, status, duration_ms)

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs."""
        return [
            {"job_name": name, "description": (fn.__doc__ or "").strip()}
            for name, fn in sorted(_job_registry.items())
        ]
