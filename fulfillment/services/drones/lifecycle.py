"""
Drone Lifecycle Rules

Status transitions, charging estimates and hub assignment checks. Nothing
here touches the database; the drone and hub services load rows, apply
these rules and persist the result.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from fulfillment.core.exceptions import (
    CapacityExceeded,
    OwnershipConflict,
    ValidationFailed,
)
from fulfillment.models import Drone, DroneStatus


@dataclass(frozen=True)
class ChargingEstimate:
    battery_level: float
    charging_rate: float
    minutes_needed: int
    started_at: datetime
    estimated_full_at: datetime

    def to_dict(self) -> dict:
        return {
            "battery_level": self.battery_level,
            "charging_rate": self.charging_rate,
            "minutes_needed": self.minutes_needed,
            "charging_started_at": self.started_at.isoformat(),
            "estimated_full_charge_at": self.estimated_full_at.isoformat(),
        }


def parse_drone_status(value: Union[str, DroneStatus]) -> DroneStatus:
    if isinstance(value, DroneStatus):
        return value
    try:
        return DroneStatus(value)
    except ValueError:
        valid = [s.value for s in DroneStatus] + ["busy"]
        raise ValidationFailed(f"Invalid drone status '{value}'. Options: {valid}")


def calculate_charging_minutes(battery_level: float, charging_rate: float) -> int:
    """
    Minutes to reach 100% from ``battery_level`` at ``charging_rate`` %/min.

    >>> calculate_charging_minutes(45, 2)
    28
    """
    if charging_rate <= 0:
        raise ValidationFailed("Charging rate must be positive")
    needed = max(100 - battery_level, 0)
    return math.ceil(needed / charging_rate)


def validate_battery_level(level: float) -> float:
    if level < 0 or level > 100:
        raise ValidationFailed("Battery level must be between 0 and 100")
    return level


def apply_status(
    drone: Drone,
    status: Union[str, DroneStatus],
    battery_level: Optional[float] = None,
    location: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> Optional[ChargingEstimate]:
    """
    Apply a status update to ``drone`` in place.

    - charging: start the charge clock from the current (or supplied) level
    - available: clear the charge clock unconditionally
    - anything else: clear the charging flag

    Returns:
        ChargingEstimate when the drone moves into charging, else None

    Raises:
        ValidationFailed: Unknown status, bad battery level, or leaving
            delivering while an order is still attached
    """
    status = parse_drone_status(status)
    now = now or datetime.now(timezone.utc)

    if battery_level is not None:
        validate_battery_level(battery_level)

    if drone.current_order_id is not None and status != DroneStatus.DELIVERING:
        raise ValidationFailed(
            f"Drone {drone.drone_code} is carrying order #{drone.current_order_id}; "
            f"complete the delivery first"
        )

    if battery_level is not None:
        drone.battery_level = battery_level

    estimate = None
    if status == DroneStatus.CHARGING:
        rate = drone.charging_rate or 2.0
        minutes = calculate_charging_minutes(drone.battery_level or 0, rate)
        drone.is_charging = True
        drone.charging_started_at = now
        drone.estimated_full_charge_at = now + timedelta(minutes=minutes)
        estimate = ChargingEstimate(
            battery_level=drone.battery_level,
            charging_rate=rate,
            minutes_needed=minutes,
            started_at=now,
            estimated_full_at=drone.estimated_full_charge_at,
        )
    elif status == DroneStatus.AVAILABLE:
        drone.is_charging = False
        drone.charging_started_at = None
        drone.estimated_full_charge_at = None
    else:
        drone.is_charging = False

    drone.status = status

    if location:
        drone.latitude = location.get("latitude", drone.latitude)
        drone.longitude = location.get("longitude", drone.longitude)
        drone.location_address = location.get("address", drone.location_address)
        drone.location_district = location.get("district", drone.location_district)

    return estimate


def check_hub_assignment(
    hub_id: int,
    max_drones: int,
    assigned_drone_ids: list[int],
    drone_id: int,
    drone_hub_id: Optional[int],
) -> None:
    """
    Raise unless ``drone_id`` may join hub ``hub_id``.

    Checked in order: hub capacity, already a member, member elsewhere.
    """
    if len(assigned_drone_ids) >= max_drones:
        raise CapacityExceeded(f"Hub has reached maximum capacity ({max_drones} drones).")

    if drone_id in assigned_drone_ids:
        raise OwnershipConflict("Drone already assigned to this hub.")

    if drone_hub_id is not None and drone_hub_id != hub_id:
        raise OwnershipConflict(
            "Drone is already assigned to another hub. Please unassign first."
        )
