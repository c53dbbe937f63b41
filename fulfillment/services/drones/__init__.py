"""
Drone registry and lifecycle rules.
"""

from functools import lru_cache

from fulfillment.core.config import get_settings
from fulfillment.services.drones.lifecycle import (
    ChargingEstimate,
    apply_status,
    calculate_charging_minutes,
    check_hub_assignment,
)
from fulfillment.services.drones.service import DroneService


@lru_cache()
def get_drone_service() -> DroneService:
    return DroneService(get_settings())


__all__ = [
    "get_drone_service",
    "DroneService",
    "ChargingEstimate",
    "apply_status",
    "calculate_charging_minutes",
    "check_hub_assignment",
]
