"""
Celery Tasks
Background customer notifications, sent off the request path.
"""

import asyncio
import logging
import time

from fulfillment.celery_worker import celery_app
from fulfillment.services.notifications import get_notification_service

logger = logging.getLogger(__name__)


def _contact(payload: dict) -> dict:
    address = payload.get("address") or {}
    return {
        "customer_name": address.get("name") or "there",
        "customer_email": address.get("email"),
        "customer_phone": address.get("phone"),
    }


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(ConnectionError,),
    retry_backoff=True
)
def send_order_confirmation(self, payload: dict) -> dict:
    """
    Confirm a placed order to the customer.

    Args:
        payload: order_id, amount, cod and the delivery address dict
    """
    task_id = self.request.id
    order_id = payload.get("order_id", "unknown")
    start_time = time.time()

    service = get_notification_service()
    result = asyncio.run(service.send_order_confirmation(
        order_id=order_id,
        street=(payload.get("address") or {}).get("street", ""),
        amount=payload.get("amount", 0.0),
        cod=payload.get("cod", False),
        **_contact(payload),
    ))

    elapsed = round(time.time() - start_time, 3)
    if result.success:
        logger.info(f"Task {task_id}: confirmation for order #{order_id} sent in {elapsed}s")
    else:
        logger.warning(f"Task {task_id}: confirmation for order #{order_id} failed - {result.error_message}")

    return {**result.to_dict(), "task_id": task_id, "processing_time_seconds": elapsed}


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(ConnectionError,),
    retry_backoff=True
)
def send_order_status_update(self, payload: dict) -> dict:
    """
    Tell the customer their order moved to a new aggregate status.

    Args:
        payload: order_id, amount, cod, status and the delivery address dict
    """
    task_id = self.request.id
    order_id = payload.get("order_id", "unknown")
    status = payload.get("status", "")

    service = get_notification_service()
    result = asyncio.run(service.send_order_status(
        order_id=order_id,
        amount=payload.get("amount", 0.0),
        cod=payload.get("cod", False),
        status=status,
        **_contact(payload),
    ))

    if result.success:
        logger.info(f"Task {task_id}: order #{order_id} '{status}' notification sent")
    else:
        logger.warning(f"Task {task_id}: order #{order_id} '{status}' notification failed - {result.error_message}")

    return {**result.to_dict(), "task_id": task_id}


def dispatch(task, payload: dict) -> bool:
    """
    Queue a notification task without letting broker trouble reach the caller.

    Returns:
        bool: True if the task was queued
    """
    try:
        task.delay(payload)
        return True
    except Exception as e:
        logger.warning(
            f"Could not queue {task.name} for order #{payload.get('order_id')}: {e}"
        )
        return False
