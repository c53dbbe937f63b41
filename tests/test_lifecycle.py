import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from fulfillment.core.exceptions import CapacityExceeded, OwnershipConflict, ValidationFailed
from fulfillment.models import Drone, DroneStatus
from fulfillment.services.drones.lifecycle import (
    apply_status,
    calculate_charging_minutes,
    check_hub_assignment,
    parse_drone_status,
)
from fulfillment.services.locks import KeyedLock

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _drone(**overrides) -> Drone:
    values = dict(
        drone_code="DRONE-1",
        status=DroneStatus.AVAILABLE,
        battery_level=45.0,
        charging_rate=2.0,
        is_charging=False,
        current_order_id=None,
    )
    values.update(overrides)
    return Drone(**values)


def test_charging_minutes():
    assert calculate_charging_minutes(45, 2) == 28
    assert calculate_charging_minutes(100, 2) == 0
    assert calculate_charging_minutes(0, 3) == 34


def test_charging_minutes_rejects_non_positive_rate():
    with pytest.raises(ValidationFailed):
        calculate_charging_minutes(50, 0)


def test_move_to_charging_sets_estimate():
    drone = _drone()

    estimate = apply_status(drone, "charging", now=NOW)

    assert estimate.minutes_needed == 28
    assert drone.status == DroneStatus.CHARGING
    assert drone.is_charging is True
    assert drone.charging_started_at == NOW
    assert drone.estimated_full_charge_at == NOW + timedelta(minutes=28)


def test_charging_uses_supplied_battery_level():
    drone = _drone(battery_level=90.0)

    estimate = apply_status(drone, "charging", battery_level=20, now=NOW)

    assert drone.battery_level == 20
    assert estimate.minutes_needed == 40


def test_move_to_available_clears_charge_clock():
    drone = _drone()
    apply_status(drone, "charging", now=NOW)

    assert apply_status(drone, "available") is None
    assert drone.is_charging is False
    assert drone.charging_started_at is None
    assert drone.estimated_full_charge_at is None


def test_other_statuses_clear_charging_flag():
    drone = _drone()
    apply_status(drone, "charging", now=NOW)

    apply_status(drone, "maintenance")

    assert drone.status == DroneStatus.MAINTENANCE
    assert drone.is_charging is False


def test_busy_is_alias_of_delivering():
    assert parse_drone_status("busy") == DroneStatus.DELIVERING
    assert parse_drone_status("Charging") == DroneStatus.CHARGING


def test_unknown_status_rejected():
    with pytest.raises(ValidationFailed):
        apply_status(_drone(), "flying")


def test_cannot_leave_delivering_while_holding_order():
    drone = _drone(status=DroneStatus.DELIVERING, current_order_id=7, battery_level=60.0)

    with pytest.raises(ValidationFailed):
        apply_status(drone, "charging", battery_level=10)

    assert drone.status == DroneStatus.DELIVERING
    assert drone.battery_level == 60.0


def test_invalid_battery_level_rejected_before_mutation():
    drone = _drone()

    with pytest.raises(ValidationFailed):
        apply_status(drone, "charging", battery_level=120)

    assert drone.status == DroneStatus.AVAILABLE


def test_location_update():
    drone = _drone()

    apply_status(drone, "available", location={"latitude": 10.77, "district": "District 1"})

    assert drone.latitude == 10.77
    assert drone.location_district == "District 1"


def test_hub_assignment_checks_run_in_order():
    # At capacity wins even when the drone is already a member
    with pytest.raises(CapacityExceeded):
        check_hub_assignment(1, 2, [5, 6], 5, 1)

    with pytest.raises(OwnershipConflict, match="already assigned to this hub"):
        check_hub_assignment(1, 3, [5, 6], 5, 1)

    with pytest.raises(OwnershipConflict, match="another hub"):
        check_hub_assignment(1, 3, [5, 6], 9, 2)

    check_hub_assignment(1, 3, [5, 6], 9, None)


async def test_keyed_lock_serializes_same_key():
    locks = KeyedLock()
    active = 0
    peak = 0

    async def worker():
        nonlocal active, peak
        async with locks.hold(("order", 1)):
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    await asyncio.gather(*(worker() for _ in range(5)))

    assert peak == 1
    assert len(locks) == 0


async def test_keyed_lock_multiple_keys_in_any_order():
    locks = KeyedLock()
    order = []

    async def worker(name, *keys):
        async with locks.hold(*keys):
            order.append(name)
            await asyncio.sleep(0.01)

    await asyncio.wait_for(
        asyncio.gather(
            worker("a", ("hub", 1), ("drone", 2)),
            worker("b", ("drone", 2), ("hub", 1)),
        ),
        timeout=2,
    )

    assert sorted(order) == ["a", "b"]
    assert len(locks) == 0
