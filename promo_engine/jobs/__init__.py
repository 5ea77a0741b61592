"""
Background Jobs Module

Handles scheduled tasks for:
- Promotion status sync (SCHEDULED -> ACTIVE -> EXPIRED)
"""

from promo_engine.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from promo_engine.jobs.promotion_jobs import sync_promotion_statuses

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "sync_promotion_statuses",
]
