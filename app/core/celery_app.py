from celery import Celery
from app.core.config import settings

celery_app = Celery(
    "booking_tasks",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.tasks.reconciliation"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    beat_schedule={
        # Safety net for bookings whose in-process reconciler was lost
        "reconcile-pending-bookings": {
            "task": "app.tasks.reconcile_pending_bookings",
            "schedule": settings.RECONCILE_SWEEP_MINUTES * 60.0,
        },
    },
)
