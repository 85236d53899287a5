"""
Subscription Scheduler

A subscription is a booking template repeated weekly, bi-weekly or monthly.
The first booking is created with the subscription; later ones come from the
due-service sweep.

Intervals:
    weekly      +7 days
    bi-weekly   +14 days
    monthly     same day next month, clamped to the month end
                (Jan 31 -> Feb 28 -> Mar 31, anchored on the start day)

Sweep (process_due_services), per active subscription due today or earlier,
in one transaction:
    1. insert the (subscription, due_date) run marker
    2. insert a pending booking priced against the current catalog
    3. advance next_due_date (compare-and-swap on version and active status)

A duplicate marker means another sweep got there first: skipped. A lost
compare-and-swap means the subscription was paused, cancelled or advanced
meanwhile: conflict. Either way nothing is written.
"""

import calendar
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from .booking_engine import BookingRequest, BookingService
from .domain import (
    Address,
    Booking,
    CartItem,
    Frequency,
    RECURRING_FREQUENCIES,
    Subscription,
    SubscriptionStatus,
    Vehicle,
    parse_date,
    parse_slot_time,
)
from .errors import DetailingError, NotFound, PolicyViolation, StateConflict, ValidationError
from .notifications import (
    BOOKING_CONFIRMATION,
    SUBSCRIPTION_CANCELLED,
    SUBSCRIPTION_PAUSED,
    SUBSCRIPTION_RESUMED,
    booking_payload,
    send_notification,
    subscription_payload,
)
from .repository import SubscriptionRepository

logger = logging.getLogger(__name__)

CREATED = "created"
SKIPPED = "skipped"
CONFLICT = "conflict"
FAILED = "failed"


def add_months(value: date, months: int, anchor_day: Optional[int] = None) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor_day or value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_interval(value: date, frequency: Frequency, anchor_day: Optional[int] = None) -> date:
    if frequency == Frequency.WEEKLY:
        return value + timedelta(days=7)
    if frequency == Frequency.BI_WEEKLY:
        return value + timedelta(days=14)
    if frequency == Frequency.MONTHLY:
        return add_months(value, 1, anchor_day)
    raise ValidationError(f"{frequency.value} is not a recurring frequency", {"frequency": frequency.value})


@dataclass
class SubscriptionRequest:
    services: Sequence[CartItem]
    vehicle: Vehicle
    address: Address
    start_date: date | str
    scheduled_time: str
    frequency: Frequency | str
    addons: Sequence[CartItem] = field(default_factory=list)
    special_instructions: Optional[str] = None


@dataclass
class SweepResult:
    subscription_id: str
    due_date: date
    outcome: str
    booking_id: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "subscription_id": self.subscription_id,
            "due_date": self.due_date.isoformat(),
            "outcome": self.outcome,
            "booking_id": self.booking_id,
            "message": self.message,
        }


class SubscriptionScheduler:
    def __init__(self, subscriptions: SubscriptionRepository, bookings: BookingService):
        self.subscriptions = subscriptions
        self.bookings = bookings

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.bookings.pricing.config.timezone)

    def _today(self, now: datetime) -> date:
        return now.astimezone(self.tz).date()

    async def create_subscription(
        self,
        user_id: str,
        request: SubscriptionRequest,
        now: Optional[datetime] = None,
    ) -> Subscription:
        now = now or datetime.now(timezone.utc)
        try:
            frequency = Frequency(request.frequency)
        except ValueError:
            frequency = None
        if frequency not in RECURRING_FREQUENCIES:
            raise ValidationError(
                "Subscription frequency must be weekly, bi-weekly or monthly",
                {"frequency": str(request.frequency)},
            )

        start_date = parse_date(request.start_date)
        if start_date < self._today(now):
            raise ValidationError("Start date cannot be in the past", {"start_date": start_date.isoformat()})

        subscription = Subscription(
            user_id=user_id,
            services=list(request.services),
            addons=list(request.addons),
            vehicle=request.vehicle,
            address=request.address,
            scheduled_time=parse_slot_time(request.scheduled_time),
            frequency=frequency,
            start_date=start_date,
            next_due_date=add_interval(start_date, frequency, start_date.day),
            occurrences=1,
            special_instructions=request.special_instructions,
        )
        first_booking = self._build_occurrence(subscription, start_date, now)
        subscription = await self.subscriptions.add(subscription, first_booking)

        logger.info(
            f"Subscription {subscription.id} created for user {user_id}: "
            f"{frequency.value} from {start_date}, first booking {first_booking.id}"
        )
        await self._notify_booking(first_booking)
        return subscription

    async def get_subscription(self, subscription_id: str, user_id: Optional[str] = None) -> Subscription:
        subscription = await self.subscriptions.get(subscription_id)
        if subscription is None or (user_id is not None and subscription.user_id != user_id):
            raise NotFound("Subscription not found", {"subscription_id": subscription_id})
        return subscription

    async def list_user_subscriptions(self, user_id: str) -> list[Subscription]:
        return await self.subscriptions.list_subscriptions(user_id=user_id)

    async def pause_subscription(self, subscription_id: str, user_id: str) -> Subscription:
        subscription = await self.get_subscription(subscription_id, user_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise StateConflict(
                f"Cannot pause a {subscription.status.value} subscription",
                {"subscription_id": subscription_id, "current_status": subscription.status.value},
            )
        updated = replace(subscription, status=SubscriptionStatus.PAUSED)
        updated = await self.subscriptions.update(updated, SubscriptionStatus.ACTIVE)
        logger.info(f"Subscription {subscription_id} paused")
        await self._notify(SUBSCRIPTION_PAUSED, updated)
        return updated

    async def resume_subscription(
        self,
        subscription_id: str,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Reactivate; an elapsed due date moves forward to the next one on or after today."""
        subscription = await self.get_subscription(subscription_id, user_id)
        if subscription.status != SubscriptionStatus.PAUSED:
            raise StateConflict(
                f"Cannot resume a {subscription.status.value} subscription",
                {"subscription_id": subscription_id, "current_status": subscription.status.value},
            )

        today = self._today(now or datetime.now(timezone.utc))
        next_due = subscription.next_due_date
        while next_due < today:
            next_due = add_interval(next_due, subscription.frequency, subscription.start_date.day)

        updated = replace(subscription, status=SubscriptionStatus.ACTIVE, next_due_date=next_due)
        updated = await self.subscriptions.update(updated, SubscriptionStatus.PAUSED)
        logger.info(f"Subscription {subscription_id} resumed, next service {next_due}")
        await self._notify(SUBSCRIPTION_RESUMED, updated)
        return updated

    async def cancel_subscription(
        self,
        subscription_id: str,
        user_id: str,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Stop future occurrences. Bookings already created are left alone."""
        subscription = await self.get_subscription(subscription_id, user_id)
        if subscription.status == SubscriptionStatus.CANCELLED:
            raise PolicyViolation("Subscription is already cancelled", {"subscription_id": subscription_id})

        updated = replace(
            subscription,
            status=SubscriptionStatus.CANCELLED,
            cancelled_at=now or datetime.now(timezone.utc),
            cancellation_reason=reason,
        )
        updated = await self.subscriptions.update(updated, subscription.status)
        logger.info(f"Subscription {subscription_id} cancelled: {reason}")
        await self._notify(SUBSCRIPTION_CANCELLED, updated, reason=reason)
        return updated

    async def process_due_services(self, now: Optional[datetime] = None) -> list[SweepResult]:
        """
        Create the next booking for every active subscription that is due.

        Creates at most one booking per subscription per call. Safe to run
        concurrently and repeatedly.
        """
        now = now or datetime.now(timezone.utc)
        today = self._today(now)
        results: list[SweepResult] = []

        for subscription in await self.subscriptions.list_due(today):
            due_date = subscription.next_due_date
            try:
                booking = self._build_occurrence(subscription, due_date, now)
            except DetailingError as e:
                logger.error(f"Cannot build booking for subscription {subscription.id} on {due_date}: {e.message}")
                results.append(SweepResult(subscription.id, due_date, FAILED, message=e.message))
                continue

            next_due = add_interval(due_date, subscription.frequency, subscription.start_date.day)
            try:
                created = await self.subscriptions.record_occurrence(subscription, due_date, booking, next_due)
            except StateConflict as e:
                logger.warning(f"Subscription {subscription.id} changed during sweep, skipping {due_date}")
                results.append(SweepResult(subscription.id, due_date, CONFLICT, message=e.message))
                continue

            if not created:
                results.append(SweepResult(subscription.id, due_date, SKIPPED))
                continue

            logger.info(f"Subscription {subscription.id}: booking {booking.id} created for {due_date}")
            results.append(SweepResult(subscription.id, due_date, CREATED, booking_id=booking.id))
            await self._notify_booking(booking)

        return results

    def _build_occurrence(self, subscription: Subscription, due_date: date, now: datetime) -> Booking:
        request = BookingRequest(
            services=subscription.services,
            addons=subscription.addons,
            vehicle=subscription.vehicle,
            address=subscription.address,
            scheduled_date=due_date,
            scheduled_time=subscription.scheduled_time,
            frequency=subscription.frequency,
            special_instructions=subscription.special_instructions,
        )
        return self.bookings.build_booking(
            subscription.user_id, request, now=now, subscription_id=subscription.id
        )

    async def _notify_booking(self, booking: Booking) -> None:
        await send_notification(
            self.bookings.notifier,
            BOOKING_CONFIRMATION,
            booking_payload(booking, subscription_id=booking.subscription_id),
        )

    async def _notify(self, template_name: str, subscription: Subscription, **extra) -> None:
        await send_notification(self.bookings.notifier, template_name, subscription_payload(subscription, **extra))
