"""
Real Notification Service

Customer messages through Twilio (SMS) and SendGrid (email). Both SDKs are
blocking, so every send runs in a worker thread.
"""

import asyncio
import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from fulfillment.core.config import Settings, get_settings
from fulfillment.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)

logger = logging.getLogger(__name__)

SENDGRID_ACCEPTED = (200, 201, 202)


class RealNotificationService(BaseNotificationService):
    """
    Twilio + SendGrid delivery.

    A channel without credentials is skipped with a failed result rather
    than an exception; the order flow never depends on a message going out.
    """

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()

        self.twilio_client = None
        self.twilio_from_number = settings.twilio_phone_number
        if settings.twilio_account_sid and settings.twilio_auth_token:
            self.twilio_client = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)
        else:
            logger.warning("Twilio credentials not configured; SMS disabled")

        self.sendgrid_client = None
        self.sendgrid_from_email = settings.sendgrid_from_email
        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
        else:
            logger.warning("SendGrid credentials not configured; email disabled")

        logger.info(
            f"RealNotificationService initialized "
            f"(sms={'on' if self.twilio_client else 'off'}, email={'on' if self.sendgrid_client else 'off'})"
        )

    @property
    def provider_name(self) -> str:
        return "real"

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        if self.twilio_client is None:
            return NotificationResult(success=False, error_message="SMS channel disabled", provider="twilio")

        try:
            sent = await asyncio.to_thread(
                self.twilio_client.messages.create,
                body=message,
                from_=self.twilio_from_number,
                to=to_phone,
            )
        except TwilioException as e:
            logger.error(f"Twilio rejected SMS to {to_phone}: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="twilio")

        logger.info(f"SMS {sent.sid} queued for {to_phone}")
        return NotificationResult(success=True, message_id=sent.sid, provider="twilio")

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        if self.sendgrid_client is None:
            return NotificationResult(success=False, error_message="Email channel disabled", provider="sendgrid")

        mail = Mail(
            from_email=self.sendgrid_from_email,
            to_emails=to_email,
            subject=subject,
            html_content=body_html,
            plain_text_content=body_text,
        )
        try:
            response = await asyncio.to_thread(self.sendgrid_client.send, mail)
        except Exception as e:
            # python-http-client raises per-status HTTPError subclasses
            logger.error(f"SendGrid rejected '{subject}' to {to_email}: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="sendgrid")

        accepted = response.status_code in SENDGRID_ACCEPTED
        if accepted:
            logger.info(f"Email '{subject}' accepted for {to_email}")
        else:
            logger.warning(f"SendGrid answered {response.status_code} for {to_email}")
        return NotificationResult(
            success=accepted,
            message_id=response.headers.get("X-Message-Id"),
            error_message=None if accepted else f"HTTP {response.status_code}",
            provider="sendgrid",
        )

    async def health_check(self) -> bool:
        """Healthy when at least one channel is configured."""
        return self.twilio_client is not None or self.sendgrid_client is not None
