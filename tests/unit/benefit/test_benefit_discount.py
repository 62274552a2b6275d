"""
Unit Tests for Discount Computation

Tests the three discount kinds and redemption amount rules.
"""

import pytest
from decimal import Decimal
from pydantic import TypeAdapter, ValidationError

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../.."))

from microservices.benefit_service.models import (
    Discount,
    FixedAmountDiscount,
    FreeItemDiscount,
    PercentageDiscount,
)
from microservices.benefit_service.redemption import compute_amounts


class TestDiscountKinds:
    """Tests for Discount.apply"""

    def test_percentage(self):
        assert PercentageDiscount(rate=Decimal("10")).apply(Decimal("80")) == Decimal("8.00")

    def test_percentage_rounds_half_up_to_cents(self):
        assert PercentageDiscount(rate=Decimal("12.5")).apply(Decimal("19.99")) == Decimal("2.50")

    def test_fixed_amount_capped_at_original(self):
        discount = FixedAmountDiscount(amount=Decimal("5"))
        assert discount.apply(Decimal("3")) == Decimal("3.00")
        assert discount.apply(Decimal("20")) == Decimal("5.00")

    def test_free_item_discounts_everything(self):
        assert FreeItemDiscount().apply(Decimal("12.34")) == Decimal("12.34")

    def test_percentage_rate_bounds(self):
        with pytest.raises(ValidationError):
            PercentageDiscount(rate=Decimal("0"))
        with pytest.raises(ValidationError):
            PercentageDiscount(rate=Decimal("100.5"))
        assert PercentageDiscount(rate=Decimal("100")).apply(Decimal("7")) == Decimal("7.00")

    def test_fixed_amount_must_be_positive(self):
        with pytest.raises(ValidationError):
            FixedAmountDiscount(amount=Decimal("0"))

    def test_discriminated_parsing(self):
        adapter = TypeAdapter(Discount)
        parsed = adapter.validate_python({"kind": "fixed_amount", "amount": "5"})
        assert isinstance(parsed, FixedAmountDiscount)
        assert isinstance(adapter.validate_python({"kind": "free_item"}), FreeItemDiscount)


class TestComputeAmounts:
    """Tests for compute_amounts"""

    def test_with_original_amount(self, factory):
        benefit = factory.make_benefit(discount=PercentageDiscount(rate=Decimal("10")))
        discount, final = compute_amounts(benefit, Decimal("40"))
        assert discount == Decimal("4.00")
        assert final == Decimal("36.00")

    def test_free_item_final_is_zero(self, factory):
        benefit = factory.make_benefit(discount=FreeItemDiscount())
        discount, final = compute_amounts(benefit, Decimal("15.50"))
        assert discount == Decimal("15.50")
        assert final == Decimal("0.00")

    def test_without_original_amount(self, factory):
        benefit = factory.make_benefit(discount=FixedAmountDiscount(amount=Decimal("5")))
        discount, final = compute_amounts(benefit, None)
        assert discount == Decimal("0.00")
        assert final is None
