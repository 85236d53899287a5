"""
Service wiring and FastAPI dependencies.

build_services() assembles the engine from a session factory. The app keeps
the result on app.state; routes reach it through get_services().
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .booking_engine import BookingService, CancellationPolicy
from .catalog import Catalog
from .core.config import Settings, get_settings
from .notifications import Notifier
from .payments import PaymentGateway
from .pricing import PricingConfig, PricingEngine
from .repository import BookingRepository, SubscriptionRepository
from .slots import SlotFinder
from .subscriptions import SubscriptionScheduler


@dataclass
class Services:
    pricing: PricingEngine
    slots: SlotFinder
    bookings: BookingService
    subscriptions: SubscriptionScheduler


def build_services(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Optional[Settings] = None,
    catalog: Optional[Catalog] = None,
    notifier: Optional[Notifier] = None,
    payments: Optional[PaymentGateway] = None,
) -> Services:
    settings = settings or get_settings()
    pricing = PricingEngine(catalog or Catalog.default(), PricingConfig.from_settings(settings))
    booking_repo = BookingRepository(session_factory)
    slots = SlotFinder(booking_repo, settings)
    bookings = BookingService(
        booking_repo,
        pricing,
        slots,
        policy=CancellationPolicy.from_settings(settings),
        notifier=notifier,
        payments=payments,
    )
    subscriptions = SubscriptionScheduler(SubscriptionRepository(session_factory), bookings)
    return Services(pricing=pricing, slots=slots, bookings=bookings, subscriptions=subscriptions)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Acting user id. Authentication happens upstream and sets X-User-Id."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id.strip()
