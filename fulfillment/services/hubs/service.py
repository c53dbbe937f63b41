"""
Hub Registry Service

CRUD for district hubs plus drone membership. Membership is read from
``Drone.assigned_hub_id``; assignment writes it with a compare-and-swap so
a drone can never end up in two hubs.
"""

import logging
from collections import defaultdict
from typing import Any, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.config import Settings, get_settings
from fulfillment.core.exceptions import NotFound, OwnershipConflict, ValidationFailed
from fulfillment.models import (
    Drone,
    DroneStatus,
    Hub,
    HubPendingOrder,
    HubStatus,
    PendingOrderStatus,
)
from fulfillment.services.drones.lifecycle import check_hub_assignment
from fulfillment.services.locks import fleet_locks

logger = logging.getLogger(__name__)

HUB_FIELDS = (
    "hub_code", "name", "address", "district", "city", "latitude", "longitude",
    "status", "max_drones", "max_orders", "open_time", "close_time",
)

ELIGIBLE_FOR_HUB = (DroneStatus.AVAILABLE, DroneStatus.CHARGING)


def parse_hub_status(value) -> HubStatus:
    if isinstance(value, HubStatus):
        return value
    try:
        return HubStatus(str(value).lower())
    except ValueError:
        raise ValidationFailed(
            f"Invalid hub status '{value}'. Options: {[s.value for s in HubStatus]}"
        )


class HubService:
    """Hub registry operations. Every coroutine commits its own unit of work."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    # =========================================================================
    # MEMBERSHIP QUERIES
    # =========================================================================

    async def assigned_drone_ids(self, session: AsyncSession, hub_id: int) -> list[int]:
        result = await session.execute(
            select(Drone.id).where(Drone.assigned_hub_id == hub_id).order_by(Drone.id)
        )
        return list(result.scalars().all())

    async def _membership(self, session: AsyncSession) -> dict[int, list[int]]:
        result = await session.execute(
            select(Drone.assigned_hub_id, Drone.id)
            .where(Drone.assigned_hub_id.is_not(None))
            .order_by(Drone.id)
        )
        members = defaultdict(list)
        for hub_id, drone_id in result.all():
            members[hub_id].append(drone_id)
        return members

    async def _load(self, session: AsyncSession, hub_id: int, for_update: bool = False) -> Hub:
        query = select(Hub).where(Hub.id == hub_id).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        hub = (await session.execute(query)).scalar_one_or_none()
        if hub is None:
            raise NotFound(f"Hub #{hub_id} not found")
        return hub

    async def _ensure_code_free(
        self,
        session: AsyncSession,
        hub_code: str,
        exclude_id: Optional[int] = None,
    ) -> None:
        query = select(Hub.id).where(Hub.hub_code == hub_code)
        if exclude_id is not None:
            query = query.where(Hub.id != exclude_id)
        if (await session.execute(query)).first() is not None:
            raise OwnershipConflict(f"Hub code {hub_code} already exists.")

    # =========================================================================
    # CRUD
    # =========================================================================

    async def list_hubs(
        self,
        session: AsyncSession,
        district: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[dict]:
        query = select(Hub).order_by(Hub.id).execution_options(populate_existing=True)
        if district:
            query = query.where(Hub.district == district)
        if status:
            query = query.where(Hub.status == parse_hub_status(status))

        hubs = (await session.execute(query)).scalars().all()
        members = await self._membership(session)
        return [hub.to_dict(assigned_drones=members.get(hub.id, [])) for hub in hubs]

    async def get_hub(self, session: AsyncSession, hub_id: int) -> dict:
        hub = await self._load(session, hub_id)
        return hub.to_dict(assigned_drones=await self.assigned_drone_ids(session, hub.id))

    async def create_hub(self, session: AsyncSession, data: dict[str, Any]) -> dict:
        """
        Register a hub. The code is stored uppercase and must be unique.

        Raises:
            ValidationFailed: Missing required fields or bad capacity
            OwnershipConflict: Duplicate hub code
        """
        missing = [f for f in ("hub_code", "name", "address", "district") if not data.get(f)]
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}")

        hub_code = str(data["hub_code"]).strip().upper()
        await self._ensure_code_free(session, hub_code)

        max_drones = data.get("max_drones") or self.settings.default_hub_max_drones
        max_orders = data.get("max_orders") or self.settings.default_hub_max_orders
        if max_drones < 1 or max_orders < 1:
            raise ValidationFailed("Hub capacity must be at least 1")

        hub = Hub(
            hub_code=hub_code,
            name=data["name"],
            address=data["address"],
            district=data["district"],
            city=data.get("city") or "Ho Chi Minh City",
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            status=parse_hub_status(data.get("status") or HubStatus.ACTIVE),
            max_drones=max_drones,
            max_orders=max_orders,
            open_time=data.get("open_time") or "06:00",
            close_time=data.get("close_time") or "23:00",
            pending_orders=[],
        )
        session.add(hub)
        await session.commit()

        logger.info(f"Hub {hub.hub_code} created in {hub.district}")
        return hub.to_dict(assigned_drones=[])

    async def update_hub(self, session: AsyncSession, hub_id: int, changes: dict[str, Any]) -> dict:
        """
        Apply a partial update.

        Lowering ``max_drones`` below the current membership is rejected.
        """
        async with fleet_locks.hold(("hub", hub_id)):
            hub = await self._load(session, hub_id, for_update=True)
            members = await self.assigned_drone_ids(session, hub.id)

            for field in HUB_FIELDS:
                if field not in changes or changes[field] is None:
                    continue
                value = changes[field]

                if field == "hub_code":
                    value = str(value).strip().upper()
                    await self._ensure_code_free(session, value, exclude_id=hub.id)
                elif field == "status":
                    value = parse_hub_status(value)
                elif field == "max_drones" and value < max(len(members), 1):
                    raise ValidationFailed(
                        f"Hub has {len(members)} drones assigned; max_drones cannot be {value}"
                    )
                elif field == "max_orders" and value < 1:
                    raise ValidationFailed("max_orders must be at least 1")

                setattr(hub, field, value)

            await session.commit()

        logger.info(f"Hub {hub.hub_code} updated")
        return hub.to_dict(assigned_drones=members)

    async def delete_hub(self, session: AsyncSession, hub_id: int) -> None:
        """
        Raises:
            ValidationFailed: Hub still has drones or undispatched orders
        """
        async with fleet_locks.hold(("hub", hub_id)):
            hub = await self._load(session, hub_id, for_update=True)

            if await self.assigned_drone_ids(session, hub.id):
                raise ValidationFailed("Cannot delete hub with assigned drones. Unassign drones first.")
            if hub.open_pending_orders:
                raise ValidationFailed("Cannot delete hub with pending orders.")

            await session.delete(hub)
            await session.commit()

        logger.info(f"Hub {hub.hub_code} deleted")

    # =========================================================================
    # DRONE MEMBERSHIP
    # =========================================================================

    async def assign_drone(self, session: AsyncSession, hub_id: int, drone_id: int) -> dict:
        """
        Add a drone to a hub.

        The hub and drone locks are held from the first read through commit.

        Raises:
            NotFound: Unknown hub or drone
            CapacityExceeded: Hub already holds max_drones drones
            OwnershipConflict: Drone already in this hub or in another one
        """
        async with fleet_locks.hold(("hub", hub_id), ("drone", drone_id)):
            hub = await self._load(session, hub_id, for_update=True)
            drone = (await session.execute(
                select(Drone)
                .where(Drone.id == drone_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )).scalar_one_or_none()
            if drone is None:
                raise NotFound(f"Drone #{drone_id} not found")

            members = await self.assigned_drone_ids(session, hub.id)
            check_hub_assignment(hub.id, hub.max_drones, members, drone.id, drone.assigned_hub_id)

            result = await session.execute(
                update(Drone)
                .where(Drone.id == drone.id, Drone.assigned_hub_id.is_(None))
                .values(assigned_hub_id=hub.id)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise OwnershipConflict("Drone is already assigned to another hub. Please unassign first.")

            await session.commit()
            members.append(drone.id)

        logger.info(f"Drone {drone.drone_code} assigned to hub {hub.hub_code} ({len(members)}/{hub.max_drones})")
        return hub.to_dict(assigned_drones=members)

    async def unassign_drone(self, session: AsyncSession, hub_id: int, drone_id: int) -> dict:
        """Remove a drone from a hub. Only the hub assignment is cleared."""
        async with fleet_locks.hold(("hub", hub_id), ("drone", drone_id)):
            hub = await self._load(session, hub_id, for_update=True)
            hub_code = hub.hub_code

            result = await session.execute(
                update(Drone)
                .where(Drone.id == drone_id, Drone.assigned_hub_id == hub.id)
                .values(assigned_hub_id=None)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise ValidationFailed(f"Drone #{drone_id} is not assigned to hub {hub_code}")

            await session.commit()
            members = await self.assigned_drone_ids(session, hub.id)

        logger.info(f"Drone #{drone_id} unassigned from hub {hub.hub_code}")
        return hub.to_dict(assigned_drones=members)

    async def available_drones_for_hub(self, session: AsyncSession, hub_id: int) -> list[Drone]:
        """Drones that are unassigned or already in this hub, and available or charging."""
        await self._load(session, hub_id)
        result = await session.execute(
            select(Drone)
            .where(
                (Drone.assigned_hub_id.is_(None)) | (Drone.assigned_hub_id == hub_id),
                Drone.status.in_(ELIGIBLE_FOR_HUB),
            )
            .order_by(Drone.id)
        )
        return list(result.scalars().all())

    # =========================================================================
    # STATISTICS
    # =========================================================================

    async def stats(self, session: AsyncSession) -> dict:
        by_status = dict((await session.execute(
            select(Hub.status, func.count(Hub.id)).group_by(Hub.status)
        )).all())

        assigned = (await session.execute(
            select(func.count(Drone.id)).where(Drone.assigned_hub_id.is_not(None))
        )).scalar() or 0

        pending = (await session.execute(
            select(func.count(HubPendingOrder.id))
            .where(HubPendingOrder.status != PendingOrderStatus.DISPATCHED)
        )).scalar() or 0

        return {
            "total_hubs": sum(by_status.values()),
            "active_hubs": by_status.get(HubStatus.ACTIVE, 0),
            "inactive_hubs": by_status.get(HubStatus.INACTIVE, 0),
            "maintenance_hubs": by_status.get(HubStatus.MAINTENANCE, 0),
            "total_assigned_drones": assigned,
            "total_pending_orders": pending,
        }
