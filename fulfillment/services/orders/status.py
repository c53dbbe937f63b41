"""
Fulfillment State Machine

Per-restaurant preparation statuses and the single aggregate status the
customer sees.

Aggregation is a join over an explicit rank table. A restaurant that is
Delivered carries no signal for the partial ranks (it only counts toward
"everyone handed off"), which reproduces the rule chain:

    1. all Delivered / Out for Delivery  -> Delivered
    2. any Out for Delivery              -> Out for Delivery
    3. any Ready for Pickup              -> Ready for Pickup
    4. any Preparing                     -> Preparing
    5. otherwise                         -> Food Processing

Out for Delivery counts as handed off because drone transit is treated as
instant delivery.
"""

from typing import Iterable, Mapping, Union

from fulfillment.core.exceptions import ValidationFailed
from fulfillment.models import FulfillmentStatus

# Statuses that count toward "every restaurant has handed off"
HANDED_OFF = frozenset({
    FulfillmentStatus.OUT_FOR_DELIVERY,
    FulfillmentStatus.DELIVERED,
})

# Rank used for rules 2-5; higher wins
AGGREGATE_RANK: Mapping[FulfillmentStatus, int] = {
    FulfillmentStatus.DELIVERED: 0,
    FulfillmentStatus.FOOD_PROCESSING: 0,
    FulfillmentStatus.PREPARING: 1,
    FulfillmentStatus.READY_FOR_PICKUP: 2,
    FulfillmentStatus.OUT_FOR_DELIVERY: 3,
}

_BY_RANK = {
    0: FulfillmentStatus.FOOD_PROCESSING,
    1: FulfillmentStatus.PREPARING,
    2: FulfillmentStatus.READY_FOR_PICKUP,
    3: FulfillmentStatus.OUT_FOR_DELIVERY,
}

INITIAL_STATUS = FulfillmentStatus.FOOD_PROCESSING


def parse_status(value: Union[str, FulfillmentStatus]) -> FulfillmentStatus:
    """Accept an enum member, its value ("Ready for Pickup") or its name."""
    if isinstance(value, FulfillmentStatus):
        return value
    try:
        return FulfillmentStatus(value)
    except ValueError:
        pass
    key = str(value).strip().upper().replace(" ", "_")
    try:
        return FulfillmentStatus[key]
    except KeyError:
        valid = [s.value for s in FulfillmentStatus]
        raise ValidationFailed(f"Invalid status '{value}'. Options: {valid}")


def aggregate_status(statuses: Iterable[FulfillmentStatus]) -> FulfillmentStatus:
    """
    Derive the order status from per-restaurant statuses.

    Pure and idempotent. An empty collection yields Food Processing.
    """
    statuses = list(statuses)
    if not statuses:
        return INITIAL_STATUS

    if all(s in HANDED_OFF for s in statuses):
        return FulfillmentStatus.DELIVERED

    return _BY_RANK[max(AGGREGATE_RANK[s] for s in statuses)]


def promote_instant_delivery(status: FulfillmentStatus) -> FulfillmentStatus:
    """Single-status form of rule 1, for orders with no restaurant entries."""
    if status in HANDED_OFF:
        return FulfillmentStatus.DELIVERED
    return status
