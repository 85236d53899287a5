"""
Car detailing booking lifecycle and pricing engine.
"""
from .booking_engine import BookingRequest, BookingService, CancellationPolicy
from .catalog import Catalog, ServiceOrAddon
from .pricing import PriceBreakdown, PricingConfig, PricingEngine
from .promos import PromoCodeValidator, PromoRule, PromoValidation
from .slots import SlotFinder
from .subscriptions import SubscriptionRequest, SubscriptionScheduler

__version__ = "0.1.0"

__all__ = [
    "BookingRequest",
    "BookingService",
    "CancellationPolicy",
    "Catalog",
    "ServiceOrAddon",
    "PriceBreakdown",
    "PricingConfig",
    "PricingEngine",
    "PromoCodeValidator",
    "PromoRule",
    "PromoValidation",
    "SlotFinder",
    "SubscriptionRequest",
    "SubscriptionScheduler",
]
