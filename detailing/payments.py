"""
Payment gateway contract.

The gateway itself (Stripe or similar) lives outside this package. The engine
creates an intent for the booking total and asks for refunds using the amount
from the cancellation policy.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    async def create_intent(self, amount: Decimal) -> str:
        ...

    async def refund(self, intent_ref: str, amount: Decimal) -> dict[str, Any]:
        ...


class OfflinePaymentGateway:
    """
    Gateway used when no payment provider is configured.

    Issues local references and records refunds in the log only.
    """

    async def create_intent(self, amount: Decimal) -> str:
        intent_ref = f"offline_{uuid.uuid4().hex}"
        logger.info(f"[PAYMENT] Created intent {intent_ref} for ${amount}")
        return intent_ref

    async def refund(self, intent_ref: str, amount: Decimal) -> dict[str, Any]:
        logger.info(f"[PAYMENT] Refund ${amount} on {intent_ref}")
        return {"intent_ref": intent_ref, "amount": str(amount), "status": "refunded"}
