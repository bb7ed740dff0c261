# backend/modules/incentives/tasks/celery_config.py

"""
Celery configuration for scheduled incentive runs.

The monthly slab run and the quarterly evaluation are durable background
jobs; beat triggers them at the start of each month for the month that
just closed.
"""

import os

from celery import Celery
from celery.schedules import crontab

# Redis configuration
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Create Celery app
celery_app = Celery(
    "incentive_tasks",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["modules.incentives.tasks.incentive_tasks"],
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Result backend settings
    result_expires=86400,
    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Retry settings
    task_default_retry_delay=300,
    task_max_retries=3,
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,
    # Beat schedule for periodic tasks
    beat_schedule={
        "monthly-incentive-run": {
            "task": "incentives.run_monthly",
            "schedule": crontab(day_of_month="1", hour="1", minute="0"),
            "args": (),
        },
        "quarterly-evaluation-run": {
            "task": "incentives.run_quarterly",
            "schedule": crontab(day_of_month="1", hour="3", minute="0"),
            "args": (),
        },
    },
)

celery_app.conf.task_routes = {
    "incentives.*": {"queue": "incentives"},
}
