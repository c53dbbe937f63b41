"""
Order Decomposer

Splits a multi-restaurant cart into per-restaurant item groups and totals.
Pure function of the cart: no I/O, no side effects.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping


@dataclass(frozen=True)
class CartDecomposition:
    """
    Per-restaurant view of a cart.

    Attributes:
        restaurant_ids: Distinct restaurant ids in order of first appearance
        amounts: restaurant id -> sum of price * quantity
        items: restaurant id -> line items of that restaurant
        total_amount: Sum over every line item, attributed or not
    """
    restaurant_ids: tuple[str, ...]
    amounts: dict[str, float] = field(default_factory=dict)
    items: dict[str, list[dict]] = field(default_factory=dict)
    total_amount: float = 0.0

    @property
    def is_legacy(self) -> bool:
        """True when no item carries a restaurant id."""
        return not self.restaurant_ids


def line_total(item: Mapping[str, Any]) -> float:
    """price * quantity, treating missing or non-numeric values as zero."""
    price = item.get("price")
    quantity = item.get("quantity")
    if not isinstance(price, (int, float)) or isinstance(price, bool):
        price = 0
    if not isinstance(quantity, (int, float)) or isinstance(quantity, bool):
        quantity = 0
    return price * quantity


def decompose_cart(items: Iterable[Mapping[str, Any]]) -> CartDecomposition:
    """
    Group cart line items by their owning restaurant.

    Items without a ``restaurant_id`` count toward ``total_amount`` but are
    left out of both per-restaurant groupings.

    Args:
        items: Cart line items (dicts with price, quantity, restaurant_id)

    Returns:
        CartDecomposition whose ``amounts`` and ``items`` share one key set
    """
    restaurant_ids: list[str] = []
    amounts: dict[str, float] = {}
    grouped: dict[str, list[dict]] = {}
    total = 0.0

    for item in items:
        subtotal = line_total(item)
        total += subtotal

        restaurant_id = item.get("restaurant_id")
        if not restaurant_id:
            continue
        restaurant_id = str(restaurant_id)

        if restaurant_id not in grouped:
            restaurant_ids.append(restaurant_id)
            grouped[restaurant_id] = []
            amounts[restaurant_id] = 0.0

        grouped[restaurant_id].append(dict(item))
        amounts[restaurant_id] += subtotal

    return CartDecomposition(
        restaurant_ids=tuple(restaurant_ids),
        amounts={rid: round(value, 2) for rid, value in amounts.items()},
        items=grouped,
        total_amount=round(total, 2),
    )
