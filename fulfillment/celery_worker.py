"""
Celery Worker Configuration
Customer notifications run here, off the request path, with Redis as broker
and result backend.

Start a worker: celery -A fulfillment.celery_worker worker -Q notifications
"""

from celery import Celery

from fulfillment.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    'fulfillment_worker',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['fulfillment.tasks']
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,

    # Notification tasks run on their own queue
    task_routes={
        'fulfillment.tasks.send_order_*': {'queue': 'notifications'},
    },
    task_default_queue='default',

    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_soft_time_limit=30,
    task_time_limit=60,

    result_expires=3600,
    broker_connection_retry_on_startup=True,
)


if __name__ == '__main__':
    celery_app.start()
