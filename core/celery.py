from celery import Celery
from core.config import settings

celery_app = Celery(
    "marketplace_orders",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["tasks.email_tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    worker_prefetch_multiplier=1,
    # Notifications must never hold a request open when Redis is down
    broker_connection_retry_on_startup=False,
    broker_transport_options={"max_retries": 1},
    task_always_eager=settings.TESTING,
)
