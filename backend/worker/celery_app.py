"""Celery application configuration.

This module sets up the Celery app with:
- Redis as broker and result backend
- Task routing to the workflows queue
- Serialization and timezone settings
- Beat schedule for the dispatch cycle
- Worker logging through the shared structlog setup
"""

from celery import Celery, signals
from celery.schedules import crontab

from app.config import get_settings
from core.logging_config import setup_logging

settings = get_settings()

celery_app = Celery(
    "doula_workflows",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.workflow.*": {"queue": "workflows"},
        "worker.tasks.*": {"queue": "default"},
    },
    task_default_queue="default",

    # Result expiration (24 hours)
    result_expires=86400,

    # Task execution limits; the hard limit stays below the scheduler lease
    task_soft_time_limit=240,
    task_time_limit=280,
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    task_reject_on_worker_lost=True,
    task_acks_on_failure_or_timeout=True,

    beat_schedule={
        "dispatch-due-executions": {
            "task": "worker.tasks.workflow.dispatch_due_executions",
            "schedule": crontab(minute="*/1"),  # Every minute
            "options": {"queue": "workflows"},
        },
    },

    include=[
        "worker.tasks.workflow",
    ],
)


@signals.setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    """Workers log through the same structlog pipeline as the API."""
    setup_logging()
