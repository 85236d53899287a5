"""
Tests for promo code validation.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from detailing.promos import PromoCodeValidator, PromoRule


@pytest.fixture
def validator():
    return PromoCodeValidator()


class TestValidatePromoCode:
    def test_valid_at_minimum(self, validator):
        result = validator.validate_promo_code("welcome10", 50)
        assert result.valid is True
        assert result.code == "WELCOME10"
        assert result.discount_amount == Decimal("5.00")
        assert result.final_amount == Decimal("45.00")
        assert result.message == "10% discount applied!"

    def test_below_minimum(self, validator):
        result = validator.validate_promo_code("welcome10", 49)
        assert result.valid is False
        assert result.message == "Minimum order amount is $50"
        assert result.discount_amount == Decimal("0.00")

    def test_unknown_code(self, validator):
        result = validator.validate_promo_code("FREESTUFF", 500)
        assert result.valid is False
        assert result.message == "Invalid promo code"

    def test_code_is_trimmed_and_case_insensitive(self, validator):
        result = validator.validate_promo_code("  save20 ", Decimal("120.00"))
        assert result.valid is True
        assert result.discount_amount == Decimal("24.00")
        assert result.message == "20% discount applied!"

    def test_discount_rounds_half_up(self, validator):
        # 75.05 * 0.15 = 11.2575
        result = validator.validate_promo_code("NEWCUSTOMER", Decimal("75.05"))
        assert result.discount_amount == Decimal("11.26")
        assert result.final_amount == Decimal("63.79")

    def test_expired_code(self):
        validator = PromoCodeValidator([
            PromoRule(
                code="SUMMER",
                discount=Decimal("0.10"),
                min_amount=Decimal("0"),
                valid_until=datetime(2025, 9, 1, tzinfo=timezone.utc),
            ),
        ])
        result = validator.validate_promo_code("summer", 100, now=datetime(2025, 9, 2, tzinfo=timezone.utc))
        assert result.valid is False
        assert result.message == "Promo code is not active or has expired"

    def test_inactive_code(self):
        validator = PromoCodeValidator([
            PromoRule(code="OLD", discount=Decimal("0.10"), min_amount=Decimal("0"), is_active=False),
        ])
        assert validator.validate_promo_code("OLD", 100).valid is False

    def test_to_dict(self, validator):
        data = validator.validate_promo_code("WELCOME10", 80).to_dict()
        assert data["valid"] is True
        assert data["discount_amount"] == 8.0
        assert data["final_amount"] == 72.0
