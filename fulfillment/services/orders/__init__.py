"""
Order placement, zoning and fulfillment status.
"""

from functools import lru_cache

from fulfillment.core.config import get_settings
from fulfillment.services.districts import get_district_index
from fulfillment.services.hubs import get_hub_resolver
from fulfillment.services.orders.capacity import CapacityPolicy, DronePlan, plan_drones
from fulfillment.services.orders.decomposer import CartDecomposition, decompose_cart
from fulfillment.services.orders.service import OrderService, PaymentVerification, PlacedOrder
from fulfillment.services.orders.status import aggregate_status, parse_status
from fulfillment.services.orders.zones import DeliveryZone, ZoneBuildResult, build_zones


@lru_cache()
def get_order_service() -> OrderService:
    settings = get_settings()
    return OrderService(
        district_index=get_district_index(),
        hub_resolver=get_hub_resolver(),
        policy=CapacityPolicy.from_settings(settings),
        settings=settings,
    )


__all__ = [
    "get_order_service",
    "OrderService",
    "PlacedOrder",
    "PaymentVerification",
    "CartDecomposition",
    "decompose_cart",
    "CapacityPolicy",
    "DronePlan",
    "plan_drones",
    "aggregate_status",
    "parse_status",
    "DeliveryZone",
    "ZoneBuildResult",
    "build_zones",
]
