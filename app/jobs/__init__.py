"""
Background Jobs Module

Handles scheduled tasks for:
- Delivery bookkeeping retries
"""

from app.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler
from app.jobs.bookkeeping_jobs import retry_bookkeeping

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "retry_bookkeeping",
]
