"""
Hub Resolver

Picks the fulfillment hub for a delivery zone: an active hub registered for
the zone's district, preferring the one with the fewest assigned drones
(ties go to the lowest hub id).

A zone without a hub is not an error. The order is still placed and the
zone carries an ``unresolved`` tag with the reason, so "no hub configured"
and "lookup failed" stay distinguishable.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fulfillment.models import Drone, Hub, HubStatus

logger = logging.getLogger(__name__)

UNRESOLVED_NO_ACTIVE_HUB = "no_active_hub"
UNRESOLVED_LOOKUP_FAILED = "lookup_failed"
UNRESOLVED_LOOKUP_TIMEOUT = "lookup_timeout"


@dataclass(frozen=True)
class HubResolution:
    """Tagged outcome: resolved to a hub, or unresolved with a reason."""
    resolved: bool
    hub_id: Optional[int] = None
    hub_code: Optional[str] = None
    hub_name: Optional[str] = None
    assigned_drones: int = 0
    reason: Optional[str] = None

    @classmethod
    def to_hub(cls, hub_id: int, hub_code: str, hub_name: str, assigned_drones: int = 0):
        return cls(
            resolved=True,
            hub_id=hub_id,
            hub_code=hub_code,
            hub_name=hub_name,
            assigned_drones=assigned_drones,
        )

    @classmethod
    def unresolved(cls, reason: str):
        return cls(resolved=False, reason=reason)

    def to_dict(self) -> dict:
        if self.resolved:
            return {"status": "resolved", "hub_id": self.hub_id}
        return {"status": "unresolved", "reason": self.reason}


async def active_hubs_by_load(session: AsyncSession, district: str) -> list:
    """
    Active hubs of a district, least-loaded first.

    Returns rows of (id, hub_code, name, drone_count).
    """
    drone_count = func.count(Drone.id).label("drone_count")
    query = (
        select(Hub.id, Hub.hub_code, Hub.name, drone_count)
        .outerjoin(Drone, Drone.assigned_hub_id == Hub.id)
        .where(Hub.district == district, Hub.status == HubStatus.ACTIVE)
        .group_by(Hub.id, Hub.hub_code, Hub.name)
        .order_by(drone_count.asc(), Hub.id.asc())
    )
    result = await session.execute(query)
    return list(result.all())


class HubResolver:
    """Resolves zones to hubs through the hub registry, with a bounded wait."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        timeout: float = 2.0,
    ):
        self._session_maker = session_maker
        self.timeout = timeout

    async def _least_loaded(self, district: str):
        async with self._session_maker() as session:
            rows = await active_hubs_by_load(session, district)
        return rows[0] if rows else None

    async def resolve(self, district: str) -> HubResolution:
        try:
            row = await asyncio.wait_for(self._least_loaded(district), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Hub lookup for '{district}' timed out after {self.timeout}s")
            return HubResolution.unresolved(UNRESOLVED_LOOKUP_TIMEOUT)
        except SQLAlchemyError as e:
            logger.warning(f"Hub lookup for '{district}' failed: {e}")
            return HubResolution.unresolved(UNRESOLVED_LOOKUP_FAILED)

        if row is None:
            logger.warning(f"No active hub for district '{district}'; zone left pending")
            return HubResolution.unresolved(UNRESOLVED_NO_ACTIVE_HUB)

        return HubResolution.to_hub(row.id, row.hub_code, row.name, row.drone_count)
