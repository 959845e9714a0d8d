"""
tasks/celery_app.py
Celery application for booking notifications.

    celery -A tasks.celery_app worker -Q notifications --loglevel=info
"""

from celery import Celery
from kombu import Queue

from config.settings import settings

celery_app = Celery(
    "wedding_vendor",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tasks.notification_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Booking events are only acked once the notification row is stored
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # Nothing reads task results back
    task_ignore_result=True,

    task_queues=(Queue("notifications"),),
    task_default_queue="notifications",
    task_routes={"tasks.notification_tasks.record_booking_event": {"queue": "notifications"}},
)
