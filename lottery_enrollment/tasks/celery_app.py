"""
Celery application configuration for background tasks.
"""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from ..config import get_settings
from ..utils.logging_config import setup_logging

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "lottery_enrollment",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "lottery_enrollment.tasks.notification_tasks",
        "lottery_enrollment.tasks.invitation_tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Periodic tasks configuration
celery_app.conf.beat_schedule = {
    "expire-overdue-invitations": {
        "task": "expire_overdue_invitations_task",
        "schedule": settings.invitation_expiry_interval_seconds,
    },
}


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Workers log through the same dictConfig as the services."""
    setup_logging()
