"""
                        Services Module

Business logic for multi-restaurant drone fulfillment. Collaborators with
an outside dependency have a Mock (development) and a Real implementation.

Services:
    - orders: cart decomposition, delivery zones, fulfillment status
    - hubs: hub registry and zone-to-hub resolution
    - drones: drone registry, battery and delivery lifecycle
    - districts: restaurant district index (registry or in-memory)
    - notifications: customer SMS / email (Twilio + SendGrid)
"""

from fulfillment.services.drones import get_drone_service
from fulfillment.services.hubs import get_hub_service
from fulfillment.services.notifications import get_notification_service
from fulfillment.services.orders import get_order_service

__all__ = [
    "get_order_service",
    "get_hub_service",
    "get_drone_service",
    "get_notification_service",
]
