"""
Customer notifications: order confirmation and status changes.

Development mode keeps messages in a mock outbox; staging and production
send through Twilio and SendGrid.
"""

import logging
from functools import lru_cache

from fulfillment.core.config import get_settings
from fulfillment.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)
from fulfillment.services.notifications.mock import MockNotificationService, OutboxMessage

logger = logging.getLogger(__name__)


@lru_cache()
def get_notification_service() -> BaseNotificationService:
    settings = get_settings()

    if settings.is_development:
        logger.info("Notification Service: MockNotificationService (development mode)")
        return MockNotificationService()

    # Twilio and SendGrid are imported only when real delivery is configured
    from fulfillment.services.notifications.real import RealNotificationService

    logger.info(f"Notification Service: RealNotificationService ({settings.env_mode.value} mode)")
    return RealNotificationService(settings)


__all__ = [
    "get_notification_service",
    "BaseNotificationService",
    "NotificationResult",
    "MockNotificationService",
    "OutboxMessage",
]
