"""
Celery application for background and scheduled syncs.

Beat enqueues `sync_due_integrations_task` every SYNC_SCAN_INTERVAL_MINUTES.
The hard time limit stays below SYNC_STALE_AFTER_MINUTES so a killed run is
always older than the stale-recovery window by the time the next scan sees it.
"""
from datetime import timedelta

from celery import Celery

from app.core.config import settings

_stale_seconds = settings.sync_stale_after_minutes * 60

celery_app = Celery(
    "catalyst_integrations",
    include=[
        "app.integrations.tasks",
    ],
)

celery_app.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer=settings.celery_task_serializer,
    result_serializer=settings.celery_result_serializer,
    accept_content=settings.celery_accept_content,
    timezone=settings.celery_timezone,
    enable_utc=settings.celery_enable_utc,
    beat_schedule={
        "sync-due-integrations": {
            "task": "app.integrations.tasks.sync_due_integrations_task",
            "schedule": timedelta(minutes=settings.sync_scan_interval_minutes),
        },
    },
    task_track_started=True,
    task_time_limit=max(_stale_seconds - 60, 60),
    task_soft_time_limit=max(_stale_seconds - 300, 30),
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_connection_retry_on_startup=True,
)
