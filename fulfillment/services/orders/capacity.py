"""
Drone Capacity Planner

Recommends how many drones a delivery zone needs. Every unit of every item
is assumed to weigh ``unit_weight_kg``; a zone needs as many drones as the
tighter of the weight and item limits demands, and never fewer than one.
"""

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from fulfillment.core.config import Settings, get_settings


@dataclass(frozen=True)
class CapacityPolicy:
    unit_weight_kg: float = 0.5
    max_weight_kg: float = 5.0
    max_items: int = 10

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CapacityPolicy":
        settings = settings or get_settings()
        return cls(
            unit_weight_kg=settings.unit_weight_kg,
            max_weight_kg=settings.drone_max_weight_kg,
            max_items=settings.drone_max_items,
        )


@dataclass(frozen=True)
class DronePlan:
    item_count: int
    estimated_weight: float
    recommended_drones: int


def count_units(items: Iterable[Mapping[str, Any]]) -> int:
    total = 0
    for item in items:
        quantity = item.get("quantity") or 0
        if isinstance(quantity, (int, float)) and not isinstance(quantity, bool):
            total += int(quantity)
    return total


def plan_drones(
    items: Iterable[Mapping[str, Any]],
    policy: Optional[CapacityPolicy] = None,
) -> DronePlan:
    """
    Compute the recommended drone count for one zone's items.

    recommended = max(ceil(weight / max_weight_kg), ceil(units / max_items), 1)
    """
    policy = policy or CapacityPolicy()
    units = count_units(items)
    weight = round(units * policy.unit_weight_kg, 3)

    by_weight = math.ceil(weight / policy.max_weight_kg)
    by_items = math.ceil(units / policy.max_items)

    return DronePlan(
        item_count=units,
        estimated_weight=weight,
        recommended_drones=max(by_weight, by_items, 1),
    )
