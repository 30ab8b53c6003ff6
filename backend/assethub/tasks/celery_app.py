"""Celery application configuration."""
from celery import Celery
from celery.signals import worker_process_init

from assethub.config import get_settings
from assethub.logging_config import configure_logging

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "assethub",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["assethub.tasks.derivative_tasks", "assethub.tasks.maintenance"],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=900,  # 15 minutes hard limit
    task_soft_time_limit=600,  # 10 minutes soft limit

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result backend settings
    result_expires=3600,  # 1 hour
)


@worker_process_init.connect
def _init_worker_logging(**kwargs):
    configure_logging()
