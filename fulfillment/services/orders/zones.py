"""
Zone Builder

Groups the restaurants of a decomposed cart by district. Each district
becomes one delivery zone served by one hub.

If the district index cannot be reached the order is still placed, with no
zones; the reason is returned alongside the (empty) zone list so callers can
record it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from fulfillment.services.districts.base import BaseDistrictIndex, DistrictIndexUnavailable
from fulfillment.services.orders.decomposer import CartDecomposition

logger = logging.getLogger(__name__)

DEGRADED_INDEX_UNAVAILABLE = "district_index_unavailable"
DEGRADED_INDEX_TIMEOUT = "district_index_timeout"


@dataclass
class DeliveryZone:
    """
    Delivery grouping of restaurants that share a district.

    Hub and drone fields are filled in by the hub resolver and the
    capacity planner after the zone is built.
    """
    district: str
    restaurant_ids: list[str]
    items: list[dict]
    amount: float
    hub_id: Optional[int] = None
    hub_code: Optional[str] = None
    hub_name: Optional[str] = None
    hub_resolution: dict = field(default_factory=lambda: {"status": "pending"})
    recommended_drones: int = 1
    estimated_weight: float = 0.0

    def to_dict(self) -> dict:
        return {
            "district": self.district,
            "restaurant_ids": list(self.restaurant_ids),
            "items": self.items,
            "amount": self.amount,
            "hub_id": self.hub_id,
            "hub_code": self.hub_code,
            "hub_name": self.hub_name,
            "hub_resolution": dict(self.hub_resolution),
            "recommended_drones": self.recommended_drones,
            "estimated_weight": self.estimated_weight,
        }


@dataclass
class ZoneBuildResult:
    zones: list[DeliveryZone]
    degraded_reason: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


def group_by_district(
    decomposition: CartDecomposition,
    districts: dict[str, Optional[str]],
    unknown_district: str = "Unknown",
) -> list[DeliveryZone]:
    """Build one zone per district, in order of first appearance."""
    members: dict[str, list[str]] = {}
    for restaurant_id in decomposition.restaurant_ids:
        district = districts.get(restaurant_id) or unknown_district
        members.setdefault(district, []).append(restaurant_id)

    zones = []
    for district, restaurant_ids in members.items():
        items: list[dict] = []
        for restaurant_id in restaurant_ids:
            items.extend(decomposition.items[restaurant_id])
        amount = round(sum(decomposition.amounts[rid] for rid in restaurant_ids), 2)
        zones.append(DeliveryZone(
            district=district,
            restaurant_ids=restaurant_ids,
            items=items,
            amount=amount,
        ))
    return zones


async def build_zones(
    decomposition: CartDecomposition,
    district_index: BaseDistrictIndex,
    timeout: float = 2.0,
    unknown_district: str = "Unknown",
) -> ZoneBuildResult:
    """
    Resolve districts and group the cart's restaurants into zones.

    Args:
        decomposition: Output of decompose_cart
        district_index: Restaurant registry lookup
        timeout: Seconds to wait for the registry before degrading
        unknown_district: District for restaurants the registry cannot place

    Returns:
        ZoneBuildResult, with an empty zone list and a reason on degradation
    """
    if decomposition.is_legacy:
        return ZoneBuildResult(zones=[])

    try:
        districts = await asyncio.wait_for(
            district_index.lookup_districts(decomposition.restaurant_ids),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(
            f"District index timed out after {timeout}s; "
            f"placing order without delivery zones"
        )
        return ZoneBuildResult(zones=[], degraded_reason=DEGRADED_INDEX_TIMEOUT)
    except DistrictIndexUnavailable as e:
        logger.warning(f"District index unavailable ({e}); placing order without delivery zones")
        return ZoneBuildResult(zones=[], degraded_reason=DEGRADED_INDEX_UNAVAILABLE)

    zones = group_by_district(decomposition, districts, unknown_district)
    logger.debug(f"Built {len(zones)} zone(s): {[z.district for z in zones]}")
    return ZoneBuildResult(zones=zones)
