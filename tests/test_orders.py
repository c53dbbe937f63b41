import asyncio

import pytest
from sqlalchemy import select

from fulfillment.core.config import Settings
from fulfillment.core.exceptions import NotFound, PermissionDenied, ValidationFailed
from fulfillment.models import (
    FulfillmentStatus,
    HubPendingOrder,
    Order,
    OrderRestaurant,
    PendingOrderStatus,
)
from fulfillment.services.districts import MockDistrictIndex
from fulfillment.services.hubs import HubResolver
from fulfillment.services.orders import OrderService
from fulfillment.services.orders.zones import DEGRADED_INDEX_TIMEOUT, DEGRADED_INDEX_UNAVAILABLE

from tests.conftest import ADDRESS, cart_item, hub_payload

STATUS_TASK = "fulfillment.tasks.send_order_status_update"
CONFIRM_TASK = "fulfillment.tasks.send_order_confirmation"


def _two_district_cart():
    return [
        cart_item("pho", 10.0, 1, "rest_a"),
        cart_item("banh-mi", 5.5, 2, "rest_a"),
        cart_item("com-tam", 8.0, 1, "rest_b"),
    ]


@pytest.fixture
async def hubs(session, hub_service):
    d1 = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    d3 = await hub_service.create_hub(session, hub_payload("HUB-D3", "District 3"))
    return {"District 1": d1["id"], "District 3": d3["id"]}


async def _pending(session, order_id):
    result = await session.execute(
        select(HubPendingOrder)
        .where(HubPendingOrder.order_id == order_id)
        .order_by(HubPendingOrder.id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# =============================================================================
# PLACEMENT
# =============================================================================

async def test_place_order_across_two_districts(session, order_service, hubs, settings):
    placed = await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)
    order = placed.order

    assert order.amount == 29.0
    assert order.status == FulfillmentStatus.FOOD_PROCESSING
    assert order.payment is False
    assert order.restaurant_ids == ["rest_a", "rest_b"]
    assert dict(order.restaurant_status) == {
        "rest_a": FulfillmentStatus.FOOD_PROCESSING,
        "rest_b": FulfillmentStatus.FOOD_PROCESSING,
    }
    assert dict(order.restaurant_amounts) == {"rest_a": 21.0, "rest_b": 8.0}
    assert sum(order.restaurant_amounts.values()) == order.amount

    zones = order.delivery_zones
    assert [z["district"] for z in zones] == ["District 1", "District 3"]
    assert zones[0]["hub_id"] == hubs["District 1"]
    assert zones[0]["hub_code"] == "HUB-D1"
    assert zones[0]["hub_resolution"] == {"status": "resolved", "hub_id": hubs["District 1"]}
    assert zones[0]["recommended_drones"] == 1
    assert zones[0]["estimated_weight"] == 1.5
    assert zones[1]["hub_id"] == hubs["District 3"]
    assert order.zones_degraded_reason is None

    assert placed.checkout_url == (
        f"{settings.client_domain}/checkout?orderId={order.id}&amount=29.00"
    )

    pending = await _pending(session, order.id)
    assert [(p.hub_id, p.restaurant_ids, p.status) for p in pending] == [
        (hubs["District 1"], ["rest_a"], PendingOrderStatus.WAITING),
        (hubs["District 3"], ["rest_b"], PendingOrderStatus.WAITING),
    ]


async def test_total_ignores_client_supplied_amount(session, order_service, hubs):
    items = [dict(cart_item("pho", 10.0, 2, "rest_a"), amount=1.0)]

    placed = await order_service.place_order(session, "cust-1", items, ADDRESS)

    assert placed.order.amount == 20.0


async def test_cash_on_delivery_checkout_url(session, order_service, hubs, settings):
    placed = await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS, cod=True)

    assert placed.checkout_url == f"{settings.client_domain}/verify?success=ok&orderId={placed.order.id}"


@pytest.mark.parametrize(
    "customer, items, address",
    [
        ("", [cart_item("pho", 10.0, 1, "rest_a")], ADDRESS),
        ("cust-1", [], ADDRESS),
        ("cust-1", [cart_item("pho", 10.0, 1, "rest_a")], None),
        ("cust-1", [cart_item("pho", -1.0, 1, "rest_a")], ADDRESS),
        ("cust-1", [cart_item("pho", 10.0, 0, "rest_a")], ADDRESS),
    ],
)
async def test_invalid_checkout_rejected_before_anything_is_stored(
    session, order_service, customer, items, address
):
    with pytest.raises(ValidationFailed):
        await order_service.place_order(session, customer, items, address)

    assert (await session.execute(select(Order))).first() is None


async def test_zone_without_active_hub_is_unresolved(session, order_service, hubs):
    items = [cart_item("pho", 10.0, 1, "rest_a"), cart_item("bun", 7.0, 1, "rest_c")]

    placed = await order_service.place_order(session, "cust-1", items, ADDRESS)

    d7 = placed.order.delivery_zones[1]
    assert d7["district"] == "District 7"
    assert d7["hub_id"] is None
    assert d7["hub_resolution"] == {"status": "unresolved", "reason": "no_active_hub"}
    assert len(await _pending(session, placed.order.id)) == 1


async def test_unavailable_district_index_still_places_order(session, session_maker, settings, hubs):
    service = OrderService(
        MockDistrictIndex(failure_rate=1.0),
        HubResolver(session_maker),
        settings=settings,
    )

    placed = await service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)

    assert placed.order.id is not None
    assert placed.order.delivery_zones == []
    assert placed.order.zones_degraded_reason == DEGRADED_INDEX_UNAVAILABLE
    assert len(placed.order.restaurant_ids) == 2


async def test_slow_district_index_times_out(session, session_maker, hubs):
    settings = Settings(_env_file=None, registry_timeout_seconds=0.05)
    service = OrderService(
        MockDistrictIndex({"rest_a": "District 1"}, latency=0.5),
        HubResolver(session_maker, timeout=0.05),
        settings=settings,
    )

    placed = await service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)

    assert placed.order.zones_degraded_reason == DEGRADED_INDEX_TIMEOUT


async def test_delivery_zone_summary(session, order_service, hubs):
    items = _two_district_cart() + [cart_item("bun", 1.0, 25, "rest_c")]
    placed = await order_service.place_order(session, "cust-1", items, ADDRESS)

    summary = await order_service.get_delivery_zones(session, placed.order.id)

    assert summary["total_zones"] == 3
    assert summary["districts"] == ["District 1", "District 3", "District 7"]
    assert summary["total_recommended_drones"] == 1 + 1 + 3
    assert summary["unresolved_zones"] == 1

    with pytest.raises(NotFound):
        await order_service.get_delivery_zones(session, 999)


# =============================================================================
# PAYMENT
# =============================================================================

async def test_paid_order_is_confirmed(session, order_service, hubs, dispatched):
    placed = await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)

    result = await order_service.verify_payment(session, placed.order.id, "true")

    assert result.success
    assert placed.order.payment is True
    assert [name for name, _ in dispatched] == [CONFIRM_TASK]
    assert dispatched[0][1]["address"]["email"] == ADDRESS["email"]
    assert [o.id for o in await order_service.customer_orders(session, "cust-1")] == [placed.order.id]


async def test_cash_on_delivery_is_confirmed_unpaid(session, order_service, hubs, dispatched):
    placed = await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS, cod=True)

    result = await order_service.verify_payment(session, placed.order.id, "ok")

    assert result.success
    assert result.message == "Order Placed via COD."
    assert placed.order.payment is False
    assert placed.order.cod is True
    assert len(dispatched) == 1


async def test_failed_payment_removes_order(session, session_maker, order_service, hubs, dispatched):
    placed = await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)
    order_id = placed.order.id

    result = await order_service.verify_payment(session, order_id, "false")

    assert not result.success
    assert dispatched == []
    async with session_maker() as fresh:
        assert await fresh.get(Order, order_id) is None
        assert (await fresh.execute(select(OrderRestaurant))).first() is None
        assert await _pending(fresh, order_id) == []


# =============================================================================
# RESTAURANT STATUS
# =============================================================================

async def test_status_lifecycle_notifies_once_on_delivery(session, order_service, hubs, dispatched):
    order_id = (await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)).order.id

    order = await order_service.update_restaurant_status(session, order_id, "rest_a", "Out for Delivery")
    assert order.status == FulfillmentStatus.OUT_FOR_DELIVERY

    order = await order_service.update_restaurant_status(session, order_id, "rest_b", "Preparing")
    assert order.status == FulfillmentStatus.OUT_FOR_DELIVERY
    assert dispatched == []

    order = await order_service.update_restaurant_status(session, order_id, "rest_b", "Out for Delivery")
    assert order.status == FulfillmentStatus.DELIVERED
    assert [name for name, _ in dispatched] == [STATUS_TASK]
    assert dispatched[0][1]["status"] == "Delivered"

    order = await order_service.update_restaurant_status(session, order_id, "rest_a", "Delivered")
    assert order.status == FulfillmentStatus.DELIVERED
    assert len(dispatched) == 1

    pending = await _pending(session, order_id)
    assert {p.status for p in pending} == {PendingOrderStatus.DISPATCHED}
    assert all(p.dispatched_at is not None for p in pending)


async def test_returning_to_delivered_does_not_notify_again(session, order_service, hubs, dispatched):
    order_id = (await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)).order.id

    await order_service.update_restaurant_status(session, order_id, "rest_a", "Out for Delivery")
    await order_service.update_restaurant_status(session, order_id, "rest_b", "Out for Delivery")
    order = await order_service.update_restaurant_status(session, order_id, "rest_a", "Preparing")
    assert order.status == FulfillmentStatus.PREPARING

    order = await order_service.update_restaurant_status(session, order_id, "rest_a", "Out for Delivery")

    assert order.status == FulfillmentStatus.DELIVERED
    assert order.delivered_notified_at is not None
    assert [name for name, _ in dispatched] == [STATUS_TASK]


async def test_status_jumps_are_allowed(session, order_service, hubs, dispatched):
    order_id = (await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)).order.id

    await order_service.update_restaurant_status(session, order_id, "rest_a", "Delivered")
    order = await order_service.update_restaurant_status(session, order_id, "rest_a", "Food Processing")

    assert order.restaurant_status["rest_a"] == FulfillmentStatus.FOOD_PROCESSING


async def test_restaurant_outside_order_is_denied(
    session, session_maker, order_service, hubs, dispatched
):
    order_id = (await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)).order.id

    with pytest.raises(PermissionDenied):
        await order_service.update_restaurant_status(session, order_id, "rest_c", "Preparing")

    async with session_maker() as fresh:
        order = await order_service.get_order(fresh, order_id)
        assert set(order.restaurant_status.values()) == {FulfillmentStatus.FOOD_PROCESSING}
    assert dispatched == []


async def test_unknown_status_and_order(session, order_service, hubs):
    order_id = (await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)).order.id

    with pytest.raises(ValidationFailed):
        await order_service.update_restaurant_status(session, order_id, "rest_a", "Cooking")
    with pytest.raises(NotFound):
        await order_service.update_restaurant_status(session, 999, "rest_a", "Preparing")


async def test_concurrent_restaurant_updates_both_survive(
    session, session_maker, order_service, hubs, dispatched
):
    order_id = (await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)).order.id

    async def update(restaurant_id):
        async with session_maker() as own:
            await order_service.update_restaurant_status(own, order_id, restaurant_id, "Out for Delivery")

    await asyncio.gather(update("rest_a"), update("rest_b"))

    async with session_maker() as fresh:
        order = await fresh.get(Order, order_id)
        assert set(order.restaurant_status.values()) == {FulfillmentStatus.OUT_FOR_DELIVERY}
        assert order.status == FulfillmentStatus.DELIVERED
    assert len(dispatched) == 1


async def test_restaurant_orders_lists_only_participating_orders(session, order_service, hubs):
    first = await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)
    await order_service.place_order(session, "cust-2", [cart_item("bun", 7.0, 1, "rest_c")], ADDRESS)

    orders = await order_service.restaurant_orders(session, "rest_b")

    assert [o.id for o in orders] == [first.order.id]


# =============================================================================
# ADMIN OVERRIDE
# =============================================================================

async def test_admin_override_applies_to_every_restaurant(session, order_service, hubs, dispatched):
    order_id = (await order_service.place_order(session, "cust-1", _two_district_cart(), ADDRESS)).order.id

    order = await order_service.override_status(session, order_id, "Ready for Pickup")

    assert set(order.restaurant_status.values()) == {FulfillmentStatus.READY_FOR_PICKUP}
    assert order.status == FulfillmentStatus.READY_FOR_PICKUP
    assert [name for name, _ in dispatched] == [STATUS_TASK]


async def test_admin_override_on_legacy_order_promotes_to_delivered(session, order_service, dispatched):
    placed = await order_service.place_order(session, "cust-1", [cart_item("legacy", 4.0, 2)], ADDRESS)
    assert placed.order.restaurant_ids == []
    assert placed.order.delivery_zones == []
    assert placed.order.amount == 8.0

    order = await order_service.override_status(session, placed.order.id, "Out for Delivery")

    assert order.status == FulfillmentStatus.DELIVERED
