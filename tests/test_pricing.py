"""
Unit tests for pricing rules and price resolution
"""

import pytest

from ticket_holds.core.exceptions import ValidationError
from ticket_holds.models.enums import PricingMode
from ticket_holds.models.pricing import (
    FixedPrice,
    FreeOfCharge,
    OriginalPrice,
    PercentageDiscount,
    pricing_rule,
    rule_fields,
)
from ticket_holds.models.ticket_hold import HoldAllocation
from ticket_holds.services.pricing import quote_line, quote_order, resolve_price


@pytest.mark.unit
class TestPricingRule:
    """Smart constructor for pricing rules"""

    def test_builds_each_mode(self):
        assert pricing_rule(PricingMode.ORIGINAL) == OriginalPrice()
        assert pricing_rule(PricingMode.FIXED, custom_price=1200) == FixedPrice(1200)
        assert pricing_rule(PricingMode.PERCENTAGE_DISCOUNT, discount_percentage=25) == PercentageDiscount(25)
        assert pricing_rule(PricingMode.FREE) == FreeOfCharge()

    def test_accepts_raw_values(self):
        assert pricing_rule("percentage_discount", discount_percentage=10) == PercentageDiscount(10)

    def test_fixed_requires_custom_price(self):
        with pytest.raises(ValidationError) as exc_info:
            pricing_rule(PricingMode.FIXED)
        assert exc_info.value.details["errors"][0]["field"] == "custom_price"

    def test_discount_requires_percentage(self):
        with pytest.raises(ValidationError) as exc_info:
            pricing_rule(PricingMode.PERCENTAGE_DISCOUNT, field_prefix="allocations.0.")
        assert exc_info.value.details["errors"][0]["field"] == "allocations.0.discount_percentage"

    @pytest.mark.parametrize("percentage", [-1, 101])
    def test_discount_outside_range_rejected(self, percentage):
        with pytest.raises(ValidationError):
            pricing_rule(PricingMode.PERCENTAGE_DISCOUNT, discount_percentage=percentage)

    def test_negative_fixed_price_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            pricing_rule(PricingMode.FIXED, custom_price=-5)
        assert exc_info.value.code == "validation_error"

    def test_unused_fields_are_dropped(self):
        rule = pricing_rule(PricingMode.FREE, custom_price=100, discount_percentage=20)
        assert rule_fields(rule) == {
            "pricing_mode": PricingMode.FREE,
            "custom_price": None,
            "discount_percentage": None,
        }


@pytest.mark.unit
class TestResolvePrice:
    """Unit price resolution in integer cents"""

    def test_original(self):
        assert resolve_price(OriginalPrice(), 1000) == 1000

    def test_fixed(self):
        assert resolve_price(FixedPrice(350), 1000) == 350

    def test_quarter_discount(self):
        assert resolve_price(PercentageDiscount(25), 1000) == 750

    def test_full_discount_is_free(self):
        assert resolve_price(PercentageDiscount(100), 1000) == 0

    def test_zero_discount(self):
        assert resolve_price(PercentageDiscount(0), 999) == 999

    def test_discount_rounds_half_up(self):
        # 150 * 0.99 = 148.5
        assert resolve_price(PercentageDiscount(1), 150) == 149
        # 999 * 0.75 = 749.25
        assert resolve_price(PercentageDiscount(25), 999) == 749

    def test_free(self):
        assert resolve_price(FreeOfCharge(), 1000) == 0

    def test_reads_allocation_columns(self):
        allocation = HoldAllocation(
            ticket_definition_id=1,
            allocated_quantity=5,
            redeemed_count=0,
            pricing_mode=PricingMode.PERCENTAGE_DISCOUNT,
            discount_percentage=50,
        )
        assert resolve_price(allocation, 800) == 400


@pytest.mark.unit
class TestQuotes:

    def test_quote_line_reports_savings(self):
        quote = quote_line(PercentageDiscount(25), 1000)
        assert quote.unit_price == 750
        assert quote.savings == 250
        assert quote.savings_percentage == 25
        assert quote.is_free is False
        assert quote.pricing_mode == PricingMode.PERCENTAGE_DISCOUNT

    def test_fixed_price_above_original_has_no_savings(self):
        quote = quote_line(FixedPrice(1500), 1000)
        assert quote.savings == 0
        assert quote.savings_percentage == 0

    def test_free_ticket_of_free_definition(self):
        quote = quote_line(OriginalPrice(), 0)
        assert quote.is_free is True
        assert quote.savings_percentage == 0

    def test_quote_order_totals(self):
        order = quote_order([
            (1, 2, PercentageDiscount(25), 1000),
            (2, 3, FreeOfCharge(), 500),
        ])
        assert [line.line_total for line in order.items] == [1500, 0]
        assert order.subtotal == 1500
        assert order.total_savings == 500 + 1500
        assert order.ticket_count == 5
