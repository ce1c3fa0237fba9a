"""
Pricing rules for hold allocations.

Each pricing mode is its own value type carrying exactly the data it needs;
`pricing_rule()` is the only way the flat request/row fields become a rule,
so an allocation can never hold FIXED pricing without a price.
"""

from dataclasses import dataclass
from typing import Optional, Union

from ticket_holds.models.enums import PricingMode
from ticket_holds.core.exceptions import ValidationError


@dataclass(frozen=True)
class OriginalPrice:
    mode = PricingMode.ORIGINAL


@dataclass(frozen=True)
class FixedPrice:
    price: int
    mode = PricingMode.FIXED

    def __post_init__(self) -> None:
        if self.price < 0:
            raise ValueError("Fixed price cannot be negative")


@dataclass(frozen=True)
class PercentageDiscount:
    percentage: int
    mode = PricingMode.PERCENTAGE_DISCOUNT

    def __post_init__(self) -> None:
        if not 0 <= self.percentage <= 100:
            raise ValueError("Discount percentage must be between 0 and 100")


@dataclass(frozen=True)
class FreeOfCharge:
    mode = PricingMode.FREE


PricingRule = Union[OriginalPrice, FixedPrice, PercentageDiscount, FreeOfCharge]


def pricing_rule(
    mode: PricingMode,
    custom_price: Optional[int] = None,
    discount_percentage: Optional[int] = None,
    field_prefix: str = "",
) -> PricingRule:
    """
    Build the rule for a pricing mode.

    Raises:
        ValidationError: a field the mode requires is missing or out of range.
    """
    mode = PricingMode(mode)
    try:
        if mode is PricingMode.ORIGINAL:
            return OriginalPrice()
        if mode is PricingMode.FREE:
            return FreeOfCharge()
        if mode is PricingMode.FIXED:
            if custom_price is None:
                raise ValidationError(
                    "A custom price is required when using fixed pricing.",
                    field=f"{field_prefix}custom_price",
                )
            return FixedPrice(price=custom_price)
        if mode is PricingMode.PERCENTAGE_DISCOUNT:
            if discount_percentage is None:
                raise ValidationError(
                    "A discount percentage is required when using percentage discount.",
                    field=f"{field_prefix}discount_percentage",
                )
            return PercentageDiscount(percentage=discount_percentage)
    except ValueError as e:
        field = "custom_price" if mode is PricingMode.FIXED else "discount_percentage"
        raise ValidationError(str(e), field=f"{field_prefix}{field}")
    raise ValidationError(f"Unsupported pricing mode: {mode}", field=f"{field_prefix}pricing_mode")


def rule_fields(rule: PricingRule) -> dict:
    """Flatten a rule back into the allocation columns"""
    return {
        "pricing_mode": rule.mode,
        "custom_price": rule.price if isinstance(rule, FixedPrice) else None,
        "discount_percentage": rule.percentage if isinstance(rule, PercentageDiscount) else None,
    }
