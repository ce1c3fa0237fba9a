"""
Unit price resolution for hold allocations.

All amounts are integer cents. Nothing here touches the database.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Tuple, Union

from ticket_holds.models.enums import PricingMode
from ticket_holds.models.pricing import (
    PricingRule,
    OriginalPrice,
    FixedPrice,
    PercentageDiscount,
    FreeOfCharge,
)


def _as_rule(allocation_or_rule) -> PricingRule:
    if isinstance(allocation_or_rule, (OriginalPrice, FixedPrice, PercentageDiscount, FreeOfCharge)):
        return allocation_or_rule
    return allocation_or_rule.pricing


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounding .5 away from zero, for non-negative operands"""
    return (2 * numerator + denominator) // (2 * denominator)


def resolve_price(allocation_or_rule: Union[PricingRule, object], original_price: int) -> int:
    """
    Unit price in cents for an allocation (or a bare pricing rule).

    >>> resolve_price(PercentageDiscount(25), 1000)
    750
    """
    rule = _as_rule(allocation_or_rule)
    if isinstance(rule, OriginalPrice):
        return original_price
    if isinstance(rule, FixedPrice):
        return rule.price
    if isinstance(rule, PercentageDiscount):
        price = round_half_up_div(original_price * (100 - rule.percentage), 100)
        return max(0, price)
    if isinstance(rule, FreeOfCharge):
        return 0
    raise TypeError(f"Unknown pricing rule: {rule!r}")


@dataclass(frozen=True)
class PriceQuote:
    unit_price: int
    original_price: int
    savings: int
    savings_percentage: int
    is_free: bool
    pricing_mode: PricingMode


@dataclass(frozen=True)
class OrderLine:
    ticket_definition_id: int
    quantity: int
    quote: PriceQuote

    @property
    def line_total(self) -> int:
        return self.quote.unit_price * self.quantity

    @property
    def line_savings(self) -> int:
        return self.quote.savings * self.quantity


@dataclass(frozen=True)
class OrderQuote:
    items: List[OrderLine] = field(default_factory=list)

    @property
    def subtotal(self) -> int:
        return sum(line.line_total for line in self.items)

    @property
    def total_savings(self) -> int:
        return sum(line.line_savings for line in self.items)

    @property
    def ticket_count(self) -> int:
        return sum(line.quantity for line in self.items)


def quote_line(allocation_or_rule, original_price: int) -> PriceQuote:
    """Price one unit and describe the saving against the catalog price"""
    rule = _as_rule(allocation_or_rule)
    unit_price = resolve_price(rule, original_price)
    savings = max(0, original_price - unit_price)
    percentage = round_half_up_div(savings * 100, original_price) if original_price > 0 else 0
    return PriceQuote(
        unit_price=unit_price,
        original_price=original_price,
        savings=savings,
        savings_percentage=percentage,
        is_free=unit_price == 0,
        pricing_mode=rule.mode,
    )


def quote_order(lines: Iterable[Tuple[int, int, object, int]]) -> OrderQuote:
    """
    Price an order.

    `lines` yields (ticket_definition_id, quantity, allocation_or_rule,
    original_price) tuples.
    """
    return OrderQuote(items=[
        OrderLine(
            ticket_definition_id=ticket_definition_id,
            quantity=quantity,
            quote=quote_line(allocation_or_rule, original_price),
        )
        for ticket_definition_id, quantity, allocation_or_rule, original_price in lines
    ])
