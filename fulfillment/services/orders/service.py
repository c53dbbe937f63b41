"""
Order Fulfillment Service

Orchestrates checkout and the per-restaurant fulfillment lifecycle:

    cart -> decompose -> zones (district index) -> hub + drone plan per zone
         -> Order row with OrderRestaurant rows and embedded zones
    restaurant status update -> aggregate status -> delivered notification

Zone and hub lookups degrade instead of failing: an order is always placed
once its input is valid.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import select, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment import tasks
from fulfillment.core.config import Settings, get_settings
from fulfillment.core.exceptions import NotFound, PermissionDenied, ValidationFailed
from fulfillment.core.metrics import DELIVERED_NOTIFICATIONS, ORDERS_PLACED, ZONE_DEGRADATIONS
from fulfillment.models import (
    FulfillmentStatus,
    HubPendingOrder,
    Order,
    OrderRestaurant,
    PendingOrderStatus,
)
from fulfillment.services.districts.base import BaseDistrictIndex
from fulfillment.services.hubs.resolver import HubResolver
from fulfillment.services.locks import order_locks
from fulfillment.services.orders.capacity import CapacityPolicy, plan_drones
from fulfillment.services.orders.decomposer import CartDecomposition, decompose_cart
from fulfillment.services.orders.status import (
    INITIAL_STATUS,
    aggregate_status,
    parse_status,
    promote_instant_delivery,
)
from fulfillment.services.orders.zones import DeliveryZone, ZoneBuildResult, build_zones

logger = logging.getLogger(__name__)

PAYMENT_PAID = "true"
PAYMENT_CASH_ON_DELIVERY = "ok"


@dataclass
class PlacedOrder:
    order: Order
    checkout_url: str
    zones: list[DeliveryZone]
    degraded_reason: Optional[str] = None


@dataclass
class PaymentVerification:
    success: bool
    message: str
    order_id: int


def normalize_items(items: Iterable[Mapping[str, Any]]) -> list[dict]:
    """Validate cart line items and bring them to one shape."""
    normalized = []
    for position, item in enumerate(items, start=1):
        price = item.get("price")
        quantity = item.get("quantity")

        if not isinstance(price, (int, float)) or isinstance(price, bool) or price < 0:
            raise ValidationFailed(f"Item {position}: price must be a non-negative number")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise ValidationFailed(f"Item {position}: quantity must be a positive integer")

        food_id = item.get("food_id") or item.get("id")
        if not food_id:
            raise ValidationFailed(f"Item {position}: food id is required")

        restaurant_id = item.get("restaurant_id")
        normalized.append({
            "food_id": str(food_id),
            "name": item.get("name"),
            "price": float(price),
            "quantity": quantity,
            "restaurant_id": str(restaurant_id) if restaurant_id else None,
        })
    return normalized


class OrderService:
    """
    Order placement and fulfillment state.

    Each public coroutine takes the caller's AsyncSession and commits its
    own unit of work.
    """

    def __init__(
        self,
        district_index: BaseDistrictIndex,
        hub_resolver: HubResolver,
        policy: Optional[CapacityPolicy] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.district_index = district_index
        self.hub_resolver = hub_resolver
        self.policy = policy or CapacityPolicy.from_settings(self.settings)

    # =========================================================================
    # PLACEMENT
    # =========================================================================

    async def plan_zones(self, decomposition: CartDecomposition) -> ZoneBuildResult:
        """Group by district, then resolve hubs and drone counts."""
        result = await build_zones(
            decomposition,
            self.district_index,
            timeout=self.settings.registry_timeout_seconds,
            unknown_district=self.settings.unknown_district,
        )

        resolutions = await asyncio.gather(
            *(self.hub_resolver.resolve(zone.district) for zone in result.zones)
        )
        for zone, resolution in zip(result.zones, resolutions):
            zone.hub_id = resolution.hub_id
            zone.hub_code = resolution.hub_code
            zone.hub_name = resolution.hub_name
            zone.hub_resolution = resolution.to_dict()

            plan = plan_drones(zone.items, self.policy)
            zone.recommended_drones = plan.recommended_drones
            zone.estimated_weight = plan.estimated_weight

        return result

    def checkout_url(self, order: Order) -> str:
        base = self.settings.client_domain.rstrip("/")
        if order.cod:
            return f"{base}/verify?success=ok&orderId={order.id}"
        return f"{base}/checkout?orderId={order.id}&amount={order.amount:.2f}"

    async def place_order(
        self,
        session: AsyncSession,
        customer_id: str,
        items: Iterable[Mapping[str, Any]],
        address: Optional[Mapping[str, Any]],
        cod: bool = False,
    ) -> PlacedOrder:
        """
        Place a checkout spanning any number of restaurants.

        The total is computed from the items; a client-supplied total is
        never consulted.

        Raises:
            ValidationFailed: Missing customer, empty cart, bad items, or no address
        """
        if not customer_id:
            raise ValidationFailed("Customer id is required")
        items = list(items or [])
        if not items:
            raise ValidationFailed("Cart is empty")
        if not address:
            raise ValidationFailed("Delivery address is required")

        items = normalize_items(items)
        decomposition = decompose_cart(items)
        zone_result = await self.plan_zones(decomposition)

        order = Order(
            customer_id=str(customer_id),
            items=items,
            amount=decomposition.total_amount,
            address=dict(address),
            status=INITIAL_STATUS,
            payment=False,
            cod=cod,
            delivery_zones=[zone.to_dict() for zone in zone_result.zones],
            zones_degraded_reason=zone_result.degraded_reason,
        )
        order.restaurants = [
            OrderRestaurant(
                restaurant_id=rid,
                status=INITIAL_STATUS,
                amount=decomposition.amounts[rid],
                items=decomposition.items[rid],
            )
            for rid in decomposition.restaurant_ids
        ]
        session.add(order)
        await session.flush()

        for zone in zone_result.zones:
            if zone.hub_id is not None:
                session.add(HubPendingOrder(
                    hub_id=zone.hub_id,
                    order_id=order.id,
                    restaurant_ids=list(zone.restaurant_ids),
                    status=PendingOrderStatus.WAITING,
                ))

        await session.commit()

        ORDERS_PLACED.labels(str(len(zone_result.zones))).inc()
        if zone_result.degraded_reason:
            ZONE_DEGRADATIONS.labels(zone_result.degraded_reason).inc()

        logger.info(
            f"Order #{order.id} placed: {len(decomposition.restaurant_ids)} restaurant(s), "
            f"{len(zone_result.zones)} zone(s), amount={order.amount:.2f}"
        )

        return PlacedOrder(
            order=order,
            checkout_url=self.checkout_url(order),
            zones=zone_result.zones,
            degraded_reason=zone_result.degraded_reason,
        )

    async def verify_payment(
        self,
        session: AsyncSession,
        order_id: int,
        outcome: str,
    ) -> PaymentVerification:
        """
        Record the checkout outcome.

        ``"true"`` marks the order paid, ``"ok"`` confirms cash on delivery,
        anything else removes the order entirely.
        """
        order = await self.get_order(session, order_id)

        if outcome in (PAYMENT_PAID, PAYMENT_CASH_ON_DELIVERY):
            cod = outcome == PAYMENT_CASH_ON_DELIVERY
            order.payment = not cod
            order.cod = order.cod or cod
            await session.commit()

            tasks.dispatch(tasks.send_order_confirmation, self._notification_payload(order))
            logger.info(f"Order #{order.id} confirmed ({'cash on delivery' if cod else 'paid'})")
            message = "Order Placed via COD." if cod else "Order Placed."
            return PaymentVerification(success=True, message=message, order_id=order.id)

        await session.execute(
            delete(HubPendingOrder).where(HubPendingOrder.order_id == order.id)
        )
        await session.delete(order)
        await session.commit()

        logger.info(f"Order #{order_id} removed after failed payment")
        return PaymentVerification(success=False, message="Payment failed.", order_id=order_id)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_order(self, session: AsyncSession, order_id: int) -> Order:
        order = await session.get(Order, order_id)
        if order is None:
            raise NotFound(f"Order #{order_id} not found")
        return order

    async def list_orders(self, session: AsyncSession, paid_only: bool = True) -> list[Order]:
        query = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        if paid_only:
            query = query.where(Order.payment.is_(True))
        result = await session.execute(query)
        return list(result.scalars().all())

    async def customer_orders(self, session: AsyncSession, customer_id: str) -> list[Order]:
        result = await session.execute(
            select(Order)
            .where(Order.customer_id == customer_id, Order.payment.is_(True))
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())

    async def restaurant_orders(self, session: AsyncSession, restaurant_id: str) -> list[Order]:
        result = await session.execute(
            select(Order)
            .join(OrderRestaurant, OrderRestaurant.order_id == Order.id)
            .where(OrderRestaurant.restaurant_id == restaurant_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().unique().all())

    async def get_delivery_zones(self, session: AsyncSession, order_id: int) -> dict:
        """Zones of an order with a district/hub/drone summary."""
        order = await self.get_order(session, order_id)
        zones = order.delivery_zones or []
        districts = sorted({zone["district"] for zone in zones})

        return {
            "order_id": order.id,
            "zones": zones,
            "total_zones": len(zones),
            "district_count": len(districts),
            "districts": districts,
            "total_recommended_drones": sum(z.get("recommended_drones", 0) for z in zones),
            "unresolved_zones": sum(1 for z in zones if z.get("hub_id") is None),
            "degraded_reason": order.zones_degraded_reason,
        }

    # =========================================================================
    # FULFILLMENT STATUS
    # =========================================================================

    async def _load_for_update(self, session: AsyncSession, order_id: int) -> Order:
        result = await session.execute(
            select(Order)
            .where(Order.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFound(f"Order #{order_id} not found")
        return order

    async def _mark_dispatched(self, session: AsyncSession, order: Order) -> None:
        await session.execute(
            update(HubPendingOrder)
            .where(
                HubPendingOrder.order_id == order.id,
                HubPendingOrder.status != PendingOrderStatus.DISPATCHED,
            )
            .values(
                status=PendingOrderStatus.DISPATCHED,
                dispatched_at=datetime.now(timezone.utc),
            )
        )

    def _notification_payload(self, order: Order) -> dict:
        return {
            "order_id": order.id,
            "amount": order.amount,
            "cod": order.cod,
            "status": order.status.value,
            "address": order.address,
        }

    async def update_restaurant_status(
        self,
        session: AsyncSession,
        order_id: int,
        restaurant_id: str,
        status: str,
    ) -> Order:
        """
        Set one restaurant's status and re-derive the aggregate.

        Updates to the same order are serialized; the status is applied as
        an unconditional set.
 The delivered notification goes out once per order, even if the
        aggregate later leaves Delivered and comes back.

        Raises:
            ValidationFailed: Unknown status value
            NotFound: Unknown order
            PermissionDenied: Restaurant is not part of the order
        """
        target = parse_status(status)

        async with order_locks.hold(("order", order_id)):
            order = await self._load_for_update(session, order_id)

            entry = next(
                (e for e in order.restaurants if e.restaurant_id == str(restaurant_id)),
                None,
            )
            if entry is None:
                await session.rollback()
                raise PermissionDenied("You don't have permission to update this order.")

            previous = order.status
            entry.status = target
            order.status = aggregate_status(e.status for e in order.restaurants)

            delivered_now = (
                order.status == FulfillmentStatus.DELIVERED
                and previous != FulfillmentStatus.DELIVERED
            )
            if delivered_now:
                await self._mark_dispatched(session, order)

            notify = delivered_now and order.delivered_notified_at is None
            if notify:
                order.delivered_notified_at = datetime.now(timezone.utc)

            await session.commit()

        logger.info(
            f"Order #{order.id}: restaurant {restaurant_id} -> '{target.value}', "
            f"order status '{previous.value}' -> '{order.status.value}'"
        )

        if notify:
            DELIVERED_NOTIFICATIONS.inc()
            tasks.dispatch(tasks.send_order_status_update, self._notification_payload(order))

        return order

    async def override_status(
        self,
        session: AsyncSession,
        order_id: int,
        status: str,
    ) -> Order:
        """
        Admin override: apply ``status`` to every restaurant of the order.

        Orders without restaurant entries take the status directly, with
        Out for Delivery promoted to Delivered.
        """
        target = parse_status(status)

        async with order_locks.hold(("order", order_id)):
            order = await self._load_for_update(session, order_id)
            previous = order.status

            if order.restaurants:
                for entry in order.restaurants:
                    entry.status = target
                order.status = aggregate_status(e.status for e in order.restaurants)
            else:
                order.status = promote_instant_delivery(target)

            if order.status == FulfillmentStatus.DELIVERED and previous != FulfillmentStatus.DELIVERED:
                await self._mark_dispatched(session, order)
            if order.status == FulfillmentStatus.DELIVERED and order.delivered_notified_at is None:
                order.delivered_notified_at = datetime.now(timezone.utc)

            await session.commit()

        logger.info(f"Order #{order.id}: admin set '{target.value}', order status '{order.status.value}'")
        tasks.dispatch(tasks.send_order_status_update, self._notification_payload(order))
        return order
