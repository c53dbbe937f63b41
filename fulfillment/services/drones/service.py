"""
Drone Registry Service

CRUD, status transitions, restaurant assignment and the dispatch/complete
cycle. State changes on one drone are serialized through ``fleet_locks``.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.config import Settings, get_settings
from fulfillment.core.exceptions import NotFound, OwnershipConflict, ValidationFailed
from fulfillment.models import Drone, DroneStatus, Order, Restaurant
from fulfillment.services.drones.lifecycle import (
    ChargingEstimate,
    apply_status,
    parse_drone_status,
    validate_battery_level,
)
from fulfillment.services.locks import fleet_locks

logger = logging.getLogger(__name__)

DRONE_FIELDS = (
    "drone_code", "max_weight", "max_items", "battery_level", "charging_rate",
    "model", "speed_kmh", "range_km",
)


class DroneService:
    """Drone registry operations. Every coroutine commits its own unit of work."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def _load(self, session: AsyncSession, drone_id: int, for_update: bool = False) -> Drone:
        query = select(Drone).where(Drone.id == drone_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        drone = (await session.execute(query)).scalar_one_or_none()
        if drone is None:
            raise NotFound(f"Drone #{drone_id} not found")
        return drone

    async def _ensure_code_free(
        self,
        session: AsyncSession,
        drone_code: str,
        exclude_id: Optional[int] = None,
    ) -> None:
        query = select(Drone.id).where(Drone.drone_code == drone_code)
        if exclude_id is not None:
            query = query.where(Drone.id != exclude_id)
        if (await session.execute(query)).first() is not None:
            raise OwnershipConflict(f"Drone code {drone_code} already exists.")

    async def _ensure_restaurant(self, session: AsyncSession, restaurant_id: str) -> None:
        if await session.get(Restaurant, restaurant_id) is None:
            raise NotFound(f"Restaurant {restaurant_id} not found")

    # =========================================================================
    # CRUD
    # =========================================================================

    async def list_drones(
        self,
        session: AsyncSession,
        status: Optional[str] = None,
        hub_id: Optional[int] = None,
    ) -> list[Drone]:
        query = select(Drone).order_by(Drone.id)
        if status:
            query = query.where(Drone.status == parse_drone_status(status))
        if hub_id is not None:
            query = query.where(Drone.assigned_hub_id == hub_id)
        return list((await session.execute(query)).scalars().all())

    async def get_drone(self, session: AsyncSession, drone_id: int) -> Drone:
        return await self._load(session, drone_id)

    async def create_drone(self, session: AsyncSession, data: dict[str, Any]) -> Drone:
        """
        Register a drone, available at the warehouse on a full battery unless
        told otherwise.

        Raises:
            ValidationFailed: Missing code, bad battery level or capacity
            OwnershipConflict: Duplicate drone code
        """
        if not data.get("drone_code"):
            raise ValidationFailed("Drone code is required")

        drone_code = str(data["drone_code"]).strip().upper()
        await self._ensure_code_free(session, drone_code)

        battery_level = data.get("battery_level")
        battery_level = 100.0 if battery_level is None else validate_battery_level(battery_level)

        restaurant_id = data.get("assigned_restaurant_id")
        if restaurant_id:
            await self._ensure_restaurant(session, restaurant_id)

        location = data.get("location") or {}
        drone = Drone(
            drone_code=drone_code,
            status=DroneStatus.AVAILABLE,
            latitude=location.get("latitude", 0.0),
            longitude=location.get("longitude", 0.0),
            location_address=location.get("address", "Warehouse"),
            location_district=location.get("district", ""),
            max_weight=data.get("max_weight") or self.settings.drone_max_weight_kg,
            max_items=data.get("max_items") or self.settings.drone_max_items,
            assigned_restaurant_id=restaurant_id or None,
            battery_level=battery_level,
            is_charging=False,
            charging_rate=data.get("charging_rate") or self.settings.default_charging_rate,
            model=data.get("model") or "DroneX-1000",
            speed_kmh=data.get("speed_kmh") or 60.0,
            range_km=data.get("range_km") or 20.0,
            total_deliveries=0,
        )
        if drone.charging_rate <= 0:
            raise ValidationFailed("Charging rate must be positive")

        session.add(drone)
        await session.commit()

        logger.info(f"Drone {drone.drone_code} registered")
        return drone

    async def update_drone(self, session: AsyncSession, drone_id: int, changes: dict[str, Any]) -> Drone:
        """Partial update of identity, capacity, battery and specifications."""
        async with fleet_locks.hold(("drone", drone_id)):
            drone = await self._load(session, drone_id, for_update=True)

            for field in DRONE_FIELDS:
                if field not in changes or changes[field] is None:
                    continue
                value = changes[field]

                if field == "drone_code":
                    value = str(value).strip().upper()
                    await self._ensure_code_free(session, value, exclude_id=drone.id)
                elif field == "battery_level":
                    validate_battery_level(value)
                elif field in ("max_weight", "max_items", "charging_rate") and value <= 0:
                    raise ValidationFailed(f"{field} must be positive")

                setattr(drone, field, value)

            await session.commit()

        logger.info(f"Drone {drone.drone_code} updated")
        return drone

    async def delete_drone(self, session: AsyncSession, drone_id: int) -> None:
        """
        Raises:
            ValidationFailed: The drone is carrying an order
        """
        async with fleet_locks.hold(("drone", drone_id)):
            drone = await self._load(session, drone_id, for_update=True)
            if drone.current_order_id is not None:
                raise ValidationFailed("Cannot delete drone that is currently assigned to an order.")

            await session.delete(drone)
            await session.commit()

        logger.info(f"Drone {drone.drone_code} removed")

    # =========================================================================
    # STATUS & BATTERY
    # =========================================================================

    async def update_status(
        self,
        session: AsyncSession,
        drone_id: int,
        status: str,
        battery_level: Optional[float] = None,
        location: Optional[dict] = None,
    ) -> tuple[Drone, Optional[ChargingEstimate]]:
        """
        Move a drone to a new status.

        Returns:
            The drone and, when it moved into charging, the charge estimate
        """
        async with fleet_locks.hold(("drone", drone_id)):
            drone = await self._load(session, drone_id, for_update=True)
            previous = drone.status
            estimate = apply_status(drone, status, battery_level=battery_level, location=location)
            await session.commit()

        logger.info(f"Drone {drone.drone_code}: '{previous.value}' -> '{drone.status.value}'")
        if estimate:
            logger.info(
                f"Drone {drone.drone_code} charging from {estimate.battery_level:.0f}%, "
                f"full in {estimate.minutes_needed} min"
            )
        return drone, estimate

    async def available_drones(
        self,
        session: AsyncSession,
        restaurant_id: Optional[str] = None,
    ) -> list[Drone]:
        """
        Available drones with at least ``min_dispatch_battery`` percent.

        With ``restaurant_id``, only that restaurant's drones and unassigned ones.
        """
        query = (
            select(Drone)
            .where(
                Drone.status == DroneStatus.AVAILABLE,
                Drone.battery_level >= self.settings.min_dispatch_battery,
            )
            .order_by(Drone.battery_level.desc(), Drone.id)
        )
        if restaurant_id:
            query = query.where(
                (Drone.assigned_restaurant_id == restaurant_id)
                | (Drone.assigned_restaurant_id.is_(None))
            )
        return list((await session.execute(query)).scalars().all())

    async def restaurant_drones(self, session: AsyncSession, restaurant_id: str) -> list[Drone]:
        result = await session.execute(
            select(Drone).where(Drone.assigned_restaurant_id == restaurant_id).order_by(Drone.id)
        )
        return list(result.scalars().all())

    # =========================================================================
    # RESTAURANT ASSIGNMENT
    # =========================================================================

    async def assign_restaurant(self, session: AsyncSession, drone_id: int, restaurant_id: str) -> Drone:
        async with fleet_locks.hold(("drone", drone_id)):
            drone = await self._load(session, drone_id, for_update=True)
            await self._ensure_restaurant(session, restaurant_id)

            if drone.assigned_restaurant_id not in (None, restaurant_id):
                raise OwnershipConflict(
                    f"Drone {drone.drone_code} belongs to restaurant {drone.assigned_restaurant_id}"
                )
            drone.assigned_restaurant_id = restaurant_id
            await session.commit()

        logger.info(f"Drone {drone.drone_code} assigned to restaurant {restaurant_id}")
        return drone

    async def unassign_restaurant(self, session: AsyncSession, drone_id: int) -> Drone:
        """Clear the restaurant assignment; status and hub are untouched."""
        async with fleet_locks.hold(("drone", drone_id)):
            drone = await self._load(session, drone_id, for_update=True)
            drone.assigned_restaurant_id = None
            await session.commit()

        logger.info(f"Drone {drone.drone_code} released from its restaurant")
        return drone

    # =========================================================================
    # DELIVERY CYCLE
    # =========================================================================

    async def dispatch(self, session: AsyncSession, drone_id: int, order_id: int) -> Drone:
        """
        Put an available drone on an order.

        Raises:
            NotFound: Unknown drone or order
            ValidationFailed: Drone not available or battery too low
        """
        async with fleet_locks.hold(("drone", drone_id)):
            drone = await self._load(session, drone_id, for_update=True)
            if await session.get(Order, order_id) is None:
                raise NotFound(f"Order #{order_id} not found")

            if drone.status != DroneStatus.AVAILABLE:
                raise ValidationFailed(f"Drone {drone.drone_code} is {drone.status.value}, not available")
            if drone.battery_level < self.settings.min_dispatch_battery:
                raise ValidationFailed(
                    f"Drone {drone.drone_code} battery at {drone.battery_level:.0f}%, "
                    f"needs {self.settings.min_dispatch_battery}%"
                )

            apply_status(drone, DroneStatus.DELIVERING)
            drone.current_order_id = order_id
            await session.commit()

        logger.info(f"Drone {drone.drone_code} dispatched with order #{order_id}")
        return drone

    async def complete_delivery(self, session: AsyncSession, drone_id: int) -> Drone:
        async with fleet_locks.hold(("drone", drone_id)):
            drone = await self._load(session, drone_id, for_update=True)
            if drone.current_order_id is None:
                raise ValidationFailed(f"Drone {drone.drone_code} is not carrying an order")

            order_id = drone.current_order_id
            drone.current_order_id = None
            apply_status(drone, DroneStatus.AVAILABLE)
            drone.total_deliveries = (drone.total_deliveries or 0) + 1
            await session.commit()

        logger.info(f"Drone {drone.drone_code} delivered order #{order_id}")
        return drone
