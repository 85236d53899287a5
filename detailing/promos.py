"""
Promo Code Validator

Codes are matched case-insensitively after stripping whitespace. A code only
applies when the order amount reaches its minimum:

    discount_amount = round(amount * discount, 2)
    final_amount = amount - discount_amount

Promo discounts are independent of the frequency and seasonal adjustments;
the caller decides which amount to validate against.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

INVALID_CODE_MESSAGE = "Invalid promo code"
EXPIRED_CODE_MESSAGE = "Promo code is not active or has expired"


@dataclass(frozen=True)
class PromoRule:
    code: str
    discount: Decimal  # fraction, 0.10 = 10%
    min_amount: Decimal
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True

    def is_live(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        if self.valid_from and now < self.valid_from:
            return False
        if self.valid_until and now > self.valid_until:
            return False
        return True


DEFAULT_PROMO_RULES = (
    PromoRule(code="WELCOME10", discount=Decimal("0.10"), min_amount=Decimal("50")),
    PromoRule(code="SAVE20", discount=Decimal("0.20"), min_amount=Decimal("100")),
    PromoRule(code="NEWCUSTOMER", discount=Decimal("0.15"), min_amount=Decimal("75")),
)


@dataclass
class PromoValidation:
    valid: bool
    message: str
    code: Optional[str] = None
    discount: Decimal = Decimal("0")
    discount_amount: Decimal = Decimal("0.00")
    final_amount: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "message": self.message,
            "code": self.code,
            "discount": float(self.discount),
            "discount_amount": float(self.discount_amount),
            "final_amount": float(self.final_amount) if self.final_amount is not None else None,
        }


def _plain(value: Decimal) -> str:
    """Render 50.00 as "50" and 12.50 as "12.5"."""
    return format(value.normalize(), "f")


class PromoCodeValidator:
    def __init__(self, rules: Iterable[PromoRule] = DEFAULT_PROMO_RULES):
        self._rules = {rule.code.strip().upper(): rule for rule in rules}

    def get_rule(self, code: str) -> Optional[PromoRule]:
        return self._rules.get((code or "").strip().upper())

    def validate_promo_code(
        self,
        code: str,
        subtotal: Decimal | float | int,
        now: Optional[datetime] = None,
    ) -> PromoValidation:
        """
        Check a code against an order amount.

        Examples:
            >>> PromoCodeValidator().validate_promo_code("welcome10", 50).discount_amount
            Decimal('5.00')
            >>> PromoCodeValidator().validate_promo_code("welcome10", 49).message
            'Minimum order amount is $50'
        """
        amount = Decimal(str(subtotal))
        now = now or datetime.now(timezone.utc)

        rule = self.get_rule(code)
        if rule is None:
            return PromoValidation(valid=False, message=INVALID_CODE_MESSAGE)

        normalized = rule.code.upper()
        if not rule.is_live(now):
            return PromoValidation(valid=False, message=EXPIRED_CODE_MESSAGE, code=normalized)

        if amount < rule.min_amount:
            return PromoValidation(
                valid=False,
                message=f"Minimum order amount is ${_plain(rule.min_amount)}",
                code=normalized,
            )

        discount_amount = (amount * rule.discount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        return PromoValidation(
            valid=True,
            message=f"{_plain(rule.discount * 100)}% discount applied!",
            code=normalized,
            discount=rule.discount,
            discount_amount=discount_amount,
            final_amount=amount - discount_amount,
        )
