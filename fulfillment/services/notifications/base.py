"""
Notification Service Abstract Base Class

Defines interface for sending SMS and Email notifications about orders.
Supports both Mock (development) and Real (production) implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message_id": self.message_id,
            "error_message": self.error_message,
            "provider": self.provider,
        }


def payment_note(cod: bool) -> str:
    return "Pay cash on delivery." if cod else "Paid online."


def confirmation_message(order_id: int, customer_name: str, street: str, amount: float, cod: bool) -> str:
    return (
        f"Hi {customer_name}! Your order #{order_id} has been placed.\n"
        f"Delivery to: {street}\n"
        f"Total: {amount:.2f}. {payment_note(cod)}"
    )


def status_message(order_id: int, customer_name: str, amount: float, cod: bool, status: str) -> str:
    if status == "Delivered":
        headline = f"Your order #{order_id} has been delivered. Enjoy your meal!"
    else:
        headline = f"Your order #{order_id} is now: {status}."
    return f"Hi {customer_name}! {headline}\nTotal: {amount:.2f}. {payment_note(cod)}"


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send an SMS message."""
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""
        pass

    async def _send_both(
        self,
        customer_email: Optional[str],
        customer_phone: Optional[str],
        subject: str,
        message: str,
    ) -> NotificationResult:
        sms_result = None
        if customer_phone:
            sms_result = await self.send_sms(customer_phone, message)

        email_result = None
        if customer_email:
            body_html = "".join(f"<p>{line}</p>" for line in message.splitlines())
            email_result = await self.send_email(
                to_email=customer_email,
                subject=subject,
                body_html=body_html,
                body_text=message,
            )

        sent = [r for r in (sms_result, email_result) if r is not None]
        if not sent:
            return NotificationResult(
                success=False,
                error_message="No contact details on order",
                provider=self.provider_name,
            )
        return NotificationResult(
            success=any(r.success for r in sent),
            message_id=sent[0].message_id,
            error_message=None if any(r.success for r in sent) else sent[0].error_message,
            provider=self.provider_name,
        )

    async def send_order_confirmation(
        self,
        order_id: int,
        customer_name: str,
        customer_email: Optional[str],
        customer_phone: Optional[str],
        street: str,
        amount: float,
        cod: bool,
    ) -> NotificationResult:
        """Send order confirmation via email and/or SMS."""
        message = confirmation_message(order_id, customer_name, street, amount, cod)
        return await self._send_both(
            customer_email,
            customer_phone,
            f"Order Confirmed #{order_id}",
            message,
        )

    async def send_order_status(
        self,
        order_id: int,
        customer_name: str,
        customer_email: Optional[str],
        customer_phone: Optional[str],
        amount: float,
        cod: bool,
        status: str,
    ) -> NotificationResult:
        """Send an order status change (including delivery) via email and/or SMS."""
        message = status_message(order_id, customer_name, amount, cod, status)
        return await self._send_both(
            customer_email,
            customer_phone,
            f"Order #{order_id}: {status}",
            message,
        )

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
