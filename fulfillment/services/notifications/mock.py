"""
Mock Notification Service

Keeps customer messages in an in-memory outbox instead of sending them.
Latency and a failure rate can be dialed in to exercise task retries.
"""

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass
from typing import Optional

from fulfillment.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)

logger = logging.getLogger(__name__)


@dataclass
class OutboxMessage:
    channel: str
    to: str
    body: str
    subject: Optional[str] = None
    message_id: Optional[str] = None


class MockNotificationService(BaseNotificationService):

    def __init__(self, failure_rate: float = 0.05, latency: tuple[float, float] = (0.1, 0.3)):
        self.failure_rate = failure_rate
        self.latency = latency
        self.outbox: list[OutboxMessage] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _deliver(self, message: OutboxMessage) -> NotificationResult:
        low, high = self.latency
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))

        if self.failure_rate and random.random() < self.failure_rate:
            logger.warning(f"Mock {message.channel} to {message.to} dropped (simulated)")
            return NotificationResult(
                success=False,
                error_message=f"Simulated {message.channel} failure",
                provider=self.provider_name,
            )

        message.message_id = f"{message.channel}_mock_{uuid.uuid4().hex[:12]}"
        self.outbox.append(message)
        logger.info(f"Mock {message.channel} to {message.to}: {(message.subject or message.body)[:50]}")
        return NotificationResult(success=True, message_id=message.message_id, provider=self.provider_name)

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        return await self._deliver(OutboxMessage(channel="sms", to=to_phone, body=message))

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        return await self._deliver(OutboxMessage(
            channel="email",
            to=to_email,
            subject=subject,
            body=body_text or body_html,
        ))

    async def health_check(self) -> bool:
        return True
