import asyncio

import pytest
from sqlalchemy import select

from fulfillment.core.exceptions import (
    CapacityExceeded,
    NotFound,
    OwnershipConflict,
    ValidationFailed,
)
from fulfillment.models import Drone, DroneStatus, HubPendingOrder, Order, PendingOrderStatus

from tests.conftest import hub_payload


async def _drones(session, count: int, **extra) -> list[int]:
    drones = [Drone(drone_code=f"DRONE-{n:03d}", **extra) for n in range(count)]
    session.add_all(drones)
    await session.commit()
    return [d.id for d in drones]


async def test_create_hub_normalizes_code_and_applies_defaults(session, hub_service, settings):
    hub = await hub_service.create_hub(session, hub_payload("hub-d1", "District 1"))

    assert hub["hub_code"] == "HUB-D1"
    assert hub["status"] == "active"
    assert hub["capacity"]["max_drones"] == settings.default_hub_max_drones
    assert hub["operating_hours"] == {"open": "06:00", "close": "23:00"}
    assert hub["assigned_drones"] == []


async def test_duplicate_hub_code_rejected(session, hub_service):
    await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))

    with pytest.raises(OwnershipConflict):
        await hub_service.create_hub(session, hub_payload("hub-d1", "District 3"))


async def test_create_hub_requires_location(session, hub_service):
    with pytest.raises(ValidationFailed):
        await hub_service.create_hub(session, {"hub_code": "HUB-X", "name": "X"})


async def test_assignment_accepted_below_max_and_rejected_at_max(session, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1", max_drones=2))
    d1, d2, d3 = await _drones(session, 3)

    await hub_service.assign_drone(session, hub["id"], d1)
    result = await hub_service.assign_drone(session, hub["id"], d2)
    assert result["assigned_drones"] == [d1, d2]

    with pytest.raises(CapacityExceeded):
        await hub_service.assign_drone(session, hub["id"], d3)

    assert (await hub_service.get_hub(session, hub["id"]))["assigned_drones"] == [d1, d2]


async def test_assigning_member_again_is_ownership_conflict(session, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1", max_drones=3))
    (drone_id,) = await _drones(session, 1)
    await hub_service.assign_drone(session, hub["id"], drone_id)

    with pytest.raises(OwnershipConflict, match="this hub"):
        await hub_service.assign_drone(session, hub["id"], drone_id)


async def test_drone_in_another_hub_is_ownership_conflict(session, hub_service):
    first = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    second = await hub_service.create_hub(session, hub_payload("HUB-D3", "District 3"))
    (drone_id,) = await _drones(session, 1)
    await hub_service.assign_drone(session, first["id"], drone_id)

    with pytest.raises(OwnershipConflict, match="another hub"):
        await hub_service.assign_drone(session, second["id"], drone_id)

    drone = await session.get(Drone, drone_id)
    assert drone.assigned_hub_id == first["id"]


async def test_assign_unknown_drone_or_hub(session, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))

    with pytest.raises(NotFound):
        await hub_service.assign_drone(session, hub["id"], 999)
    with pytest.raises(NotFound):
        await hub_service.assign_drone(session, 999, 1)


async def test_concurrent_assignments_never_exceed_capacity(session, session_maker, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1", max_drones=1))
    drone_ids = await _drones(session, 4)

    async def attempt(drone_id):
        async with session_maker() as own:
            try:
                await hub_service.assign_drone(own, hub["id"], drone_id)
                return "ok"
            except CapacityExceeded:
                return "full"

    outcomes = await asyncio.gather(*(attempt(d) for d in drone_ids))

    assert outcomes.count("ok") == 1
    assert outcomes.count("full") == 3
    async with session_maker() as fresh:
        assert len(await hub_service.assigned_drone_ids(fresh, hub["id"])) == 1


async def test_concurrent_assignment_of_one_drone_to_two_hubs(session, session_maker, hub_service):
    first = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    second = await hub_service.create_hub(session, hub_payload("HUB-D3", "District 3"))
    (drone_id,) = await _drones(session, 1)

    async def attempt(hub_id):
        async with session_maker() as own:
            try:
                await hub_service.assign_drone(own, hub_id, drone_id)
                return hub_id
            except OwnershipConflict:
                return None

    outcomes = await asyncio.gather(attempt(first["id"]), attempt(second["id"]))
    winners = [o for o in outcomes if o is not None]

    assert len(winners) == 1
    async with session_maker() as fresh:
        drone = await fresh.get(Drone, drone_id)
        assert drone.assigned_hub_id == winners[0]


async def test_unassign_clears_only_hub(session, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    (drone_id,) = await _drones(session, 1, assigned_restaurant_id="rest_a", status=DroneStatus.CHARGING)
    await hub_service.assign_drone(session, hub["id"], drone_id)

    result = await hub_service.unassign_drone(session, hub["id"], drone_id)

    assert result["assigned_drones"] == []
    drone = (await session.execute(
        select(Drone).where(Drone.id == drone_id).execution_options(populate_existing=True)
    )).scalar_one()
    assert drone.assigned_hub_id is None
    assert drone.assigned_restaurant_id == "rest_a"
    assert drone.status == DroneStatus.CHARGING


async def test_unassign_drone_not_in_hub(session, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    (drone_id,) = await _drones(session, 1)

    with pytest.raises(ValidationFailed):
        await hub_service.unassign_drone(session, hub["id"], drone_id)


async def test_update_rejects_capacity_below_membership(session, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1", max_drones=5))
    for drone_id in await _drones(session, 3):
        await hub_service.assign_drone(session, hub["id"], drone_id)

    with pytest.raises(ValidationFailed):
        await hub_service.update_hub(session, hub["id"], {"max_drones": 2})

    updated = await hub_service.update_hub(session, hub["id"], {"max_drones": 3, "status": "maintenance"})
    assert updated["capacity"]["max_drones"] == 3
    assert updated["status"] == "maintenance"


async def test_update_rejects_duplicate_code(session, hub_service):
    await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    other = await hub_service.create_hub(session, hub_payload("HUB-D3", "District 3"))

    with pytest.raises(OwnershipConflict):
        await hub_service.update_hub(session, other["id"], {"hub_code": "hub-d1"})


async def test_delete_hub_with_drones_rejected(session, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    (drone_id,) = await _drones(session, 1)
    await hub_service.assign_drone(session, hub["id"], drone_id)

    with pytest.raises(ValidationFailed):
        await hub_service.delete_hub(session, hub["id"])

    await hub_service.unassign_drone(session, hub["id"], drone_id)
    await hub_service.delete_hub(session, hub["id"])

    with pytest.raises(NotFound):
        await hub_service.get_hub(session, hub["id"])


async def test_delete_hub_with_pending_orders_rejected(session, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    order = Order(customer_id="c1", items=[], amount=0.0, address={"street": "x"}, restaurants=[])
    session.add(order)
    await session.flush()
    pending = HubPendingOrder(hub_id=hub["id"], order_id=order.id, restaurant_ids=["rest_a"])
    session.add(pending)
    await session.commit()

    with pytest.raises(ValidationFailed, match="pending"):
        await hub_service.delete_hub(session, hub["id"])

    pending.status = PendingOrderStatus.DISPATCHED
    await session.commit()
    await hub_service.delete_hub(session, hub["id"])


async def test_drones_eligible_for_hub(session, hub_service):
    first = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    second = await hub_service.create_hub(session, hub_payload("HUB-D3", "District 3"))
    free, member, elsewhere = await _drones(session, 3)
    session.add(Drone(drone_code="DRONE-OFF", status=DroneStatus.OFFLINE))
    await session.commit()
    await hub_service.assign_drone(session, first["id"], member)
    await hub_service.assign_drone(session, second["id"], elsewhere)

    eligible = await hub_service.available_drones_for_hub(session, first["id"])

    assert [d.id for d in eligible] == [free, member]


async def test_hub_stats(session, hub_service):
    hub = await hub_service.create_hub(session, hub_payload("HUB-D1", "District 1"))
    await hub_service.create_hub(session, hub_payload("HUB-D2", "District 2", status="inactive"))
    (drone_id,) = await _drones(session, 1)
    await hub_service.assign_drone(session, hub["id"], drone_id)

    stats = await hub_service.stats(session)

    assert stats == {
        "total_hubs": 2,
        "active_hubs": 1,
        "inactive_hubs": 1,
        "maintenance_hubs": 0,
        "total_assigned_drones": 1,
        "total_pending_orders": 0,
    }
