from __future__ import annotations

import math
from typing import Iterable, Mapping, Optional

from .domain import Category, DEFAULT_CONDITION_MULTIPLIERS, Subcategory

UNKNOWN_CONDITION_MULTIPLIER = 0.5


def round_currency(value: float) -> int:
    """Round to the nearest whole currency unit, halves going up."""
    return int(math.floor(value + 0.5))


def subcategory_multiplier(subcategories: Iterable[Subcategory], name: Optional[str]) -> float:
    if not name:
        return 1.0
    for sub in subcategories:
        if sub.name == name:
            return float(sub.price_modifier)
    return 1.0


def condition_multiplier(multipliers: Mapping[str, float], condition: str) -> float:
    value = multipliers.get(condition)
    # a zero multiplier counts as missing
    if not value:
        return UNKNOWN_CONDITION_MULTIPLIER
    return float(value)


def estimate_item_price(
    category: Category,
    *,
    condition: str,
    quantity: int,
    subcategory: Optional[str] = None,
) -> int:
    """Estimated value of one order line.

    ``base_price * subcategory multiplier * condition multiplier * quantity``,
    rounded to a whole unit. Unknown subcategories price at 1.0, unknown
    conditions at 0.5.
    """
    value = (
        category.base_price
        * subcategory_multiplier(category.subcategories, subcategory)
        * condition_multiplier(category.condition_multipliers, condition)
        * quantity
    )
    return round_currency(value)


def estimate_order_total(prices: Iterable[int]) -> int:
    return sum(prices)


def complete_condition_multipliers(partial: Optional[Mapping[str, float]]) -> dict[str, float]:
    merged = dict(DEFAULT_CONDITION_MULTIPLIERS)
    for key, value in (partial or {}).items():
        if key not in merged:
            raise ValueError(f"Unknown condition: {key}")
        merged[key] = float(value)
    return merged
