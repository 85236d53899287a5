"""
Booking Lifecycle

BookingService drives a booking through its status flow (see domain.py) and
owns the cancellation, refund and reschedule rules.

Every transition follows the same steps:
    1. load the booking (NotFound, or NotFound for someone else's booking)
    2. check the transition and any business rule, before mutating anything
    3. write with compare-and-swap on (version, status); a lost race raises
       StateConflict and nothing is written
    4. after the write: payment refund and notification; their failures are
       logged and the transition stands

Cancellation Policy:
    hours_before = scheduled start (business timezone) - cancellation time
    >= 24h  -> 100% refund
    >= 12h  -> 50% refund
    <  12h  -> no refund

Admin cancellation opens a reschedule offer. The customer either claims the
full refund or picks a new slot; a picked slot is held until an admin
confirms or declines it, and the booking reports cancelled until then.
While a pick is pending the customer may still replace it or take the refund.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from .catalog import Catalog
from .core.config import Settings, get_settings
from .domain import (
    Actor,
    Address,
    AwaitingApproval,
    Booking,
    BookingStatus,
    Cancellation,
    CartItem,
    Frequency,
    OfferOpen,
    PaymentStatus,
    RefundClaimed,
    RefundDecision,
    RefundTier,
    RescheduleAccepted,
    Vehicle,
    VehicleType,
    assert_booking_transition,
    parse_date,
    parse_slot_time,
)
from .errors import NotFound, PolicyViolation, StateConflict, ValidationError
from .notifications import (
    ADMIN_CANCELLATION_RESCHEDULE,
    BOOKING_ACCEPTED,
    BOOKING_CANCELLATION,
    BOOKING_COMPLETION,
    BOOKING_CONFIRMATION,
    LoggingNotifier,
    Notifier,
    RESCHEDULE_CONFIRMED,
    RESCHEDULE_DECLINED,
    RESCHEDULE_PENDING,
    REVIEW_REQUEST,
    booking_payload,
    send_notification,
)
from .payments import OfflinePaymentGateway, PaymentGateway
from .pricing import PricingEngine, round_money
from .repository import BookingRepository
from .slots import SlotFinder

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BookingRequest:
    services: Sequence[CartItem]
    vehicle: Vehicle
    address: Address
    scheduled_date: date | str
    scheduled_time: str
    addons: Sequence[CartItem] = field(default_factory=list)
    frequency: Frequency | str = Frequency.ONE_TIME
    promo_code: Optional[str] = None
    special_instructions: Optional[str] = None


# ============================================================================
# CANCELLATION POLICY
# ============================================================================

class CancellationPolicy:
    def __init__(
        self,
        full_refund_hours: int = 24,
        partial_refund_hours: int = 12,
        partial_percentage: Decimal = Decimal("0.5"),
        timezone_name: str = "America/New_York",
    ):
        self.full_refund_hours = full_refund_hours
        self.partial_refund_hours = partial_refund_hours
        self.partial_percentage = partial_percentage
        self.tz = ZoneInfo(timezone_name)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CancellationPolicy":
        settings = settings or get_settings()
        return cls(
            full_refund_hours=settings.full_refund_hours,
            partial_refund_hours=settings.partial_refund_hours,
            partial_percentage=Decimal(settings.partial_refund_percentage),
            timezone_name=settings.business_timezone,
        )

    def hours_before(self, booking: Booking, at: datetime) -> float:
        return (booking.scheduled_at(self.tz) - at).total_seconds() / 3600

    def decide(self, booking: Booking, at: datetime) -> RefundDecision:
        """
        Refund for a customer cancellation made at `at`.

        Examples:
            scheduled in 30h -> full, 100%
            scheduled in 13h -> partial, 50%
            scheduled in 5h  -> none, 0%
        """
        hours = self.hours_before(booking, at)
        if hours >= self.full_refund_hours:
            tier, percentage = RefundTier.FULL, Decimal("1")
        elif hours >= self.partial_refund_hours:
            tier, percentage = RefundTier.PARTIAL, self.partial_percentage
        else:
            tier, percentage = RefundTier.NONE, Decimal("0")
        return RefundDecision(
            tier=tier,
            percentage=percentage,
            amount=round_money(booking.total_amount * percentage),
            hours_before=round(hours, 2),
        )

    def full_refund(self, booking: Booking) -> RefundDecision:
        return RefundDecision(
            tier=RefundTier.FULL,
            percentage=Decimal("1"),
            amount=round_money(booking.total_amount),
        )


# ============================================================================
# BOOKING SERVICE
# ============================================================================

class BookingService:
    def __init__(
        self,
        bookings: BookingRepository,
        pricing: PricingEngine,
        slots: SlotFinder,
        policy: Optional[CancellationPolicy] = None,
        notifier: Optional[Notifier] = None,
        payments: Optional[PaymentGateway] = None,
    ):
        self.bookings = bookings
        self.pricing = pricing
        self.slots = slots
        self.policy = policy or CancellationPolicy.from_settings()
        self.notifier = notifier or LoggingNotifier()
        self.payments = payments or OfflinePaymentGateway()

    @property
    def catalog(self) -> Catalog:
        return self.pricing.catalog

    # ------------------------------------------------------------------
    # creation
    # ------------------------------------------------------------------

    def build_booking(
        self,
        user_id: str,
        request: BookingRequest,
        now: Optional[datetime] = None,
        subscription_id: Optional[str] = None,
    ) -> Booking:
        """Validate and price a request into an unsaved pending booking."""
        now = now or now_utc()
        scheduled_date = parse_date(request.scheduled_date)
        scheduled_time = parse_slot_time(request.scheduled_time)
        try:
            frequency = Frequency(request.frequency)
        except ValueError:
            raise ValidationError(f"Invalid frequency: {request.frequency}", {"frequency": str(request.frequency)})

        self.catalog.validate_cart(request.services, request.addons, request.vehicle.type)

        priced_on = now.astimezone(ZoneInfo(self.pricing.config.timezone)).date()
        breakdown = self.pricing.quote(
            request.services,
            request.addons,
            frequency,
            promo_code=request.promo_code,
            on=priced_on,
            now=now,
        )
        if request.promo_code and breakdown.promo_code is None:
            raise ValidationError(breakdown.promo_message or "Invalid promo code", {"promo_code": request.promo_code})

        return Booking(
            user_id=user_id,
            subscription_id=subscription_id,
            line_items=breakdown.line_items,
            vehicle=request.vehicle,
            address=request.address,
            scheduled_date=scheduled_date,
            scheduled_time=scheduled_time,
            duration=breakdown.duration,
            frequency=frequency,
            subtotal=breakdown.subtotal,
            frequency_discount=breakdown.frequency_discount,
            promo_code=breakdown.promo_code,
            discount_amount=breakdown.promo_discount,
            tax=breakdown.tax,
            total_amount=breakdown.total,
            special_instructions=request.special_instructions,
        )

    async def create_booking(
        self,
        user_id: str,
        request: BookingRequest,
        now: Optional[datetime] = None,
    ) -> Booking:
        booking = await self.bookings.add(self.build_booking(user_id, request, now=now))
        logger.info(
            f"Booking {booking.id} created for user {user_id}: "
            f"{booking.scheduled_date} {booking.scheduled_time}, total ${booking.total_amount}"
        )
        await self._notify(BOOKING_CONFIRMATION, booking)
        return booking

    async def update_booking(
        self,
        booking_id: str,
        user_id: str,
        scheduled_date: Optional[date | str] = None,
        scheduled_time: Optional[str] = None,
        vehicle: Optional[dict] = None,
        address: Optional[dict] = None,
        special_instructions: Optional[str] = None,
    ) -> Booking:
        """
        Edit an open booking. vehicle and address are merged field by field.

        Prices stay as booked. A new date or time must fit an open slot.
        """
        booking = await self._load(booking_id, user_id=user_id)
        if booking.is_terminal or booking.status == BookingStatus.IN_PROGRESS:
            raise PolicyViolation(
                f"Cannot update a {booking.status.value} booking",
                {"booking_id": booking_id, "current_status": booking.status.value},
            )

        new_date = parse_date(scheduled_date) if scheduled_date else booking.scheduled_date
        new_time = parse_slot_time(scheduled_time) if scheduled_time else booking.scheduled_time
        if (new_date, new_time) != (booking.scheduled_date, booking.scheduled_time):
            if not await self.slots.is_slot_available(new_date, new_time, booking.duration, exclude_booking_id=booking.id):
                raise StateConflict(
                    "Selected time slot is not available",
                    {"date": new_date.isoformat(), "time": new_time},
                )

        expected = booking.status
        booking.scheduled_date = new_date
        booking.scheduled_time = new_time
        if vehicle:
            booking.vehicle = _merge(booking.vehicle, vehicle, "vehicle")
        if address:
            booking.address = _merge(booking.address, address, "address")
        if special_instructions:
            booking.special_instructions = special_instructions
        booking = await self.bookings.update(booking, expected)

        logger.info(f"Booking {booking_id} updated by {user_id}: {booking.scheduled_date} {booking.scheduled_time}")
        return booking

    # ------------------------------------------------------------------
    # admin decisions
    # ------------------------------------------------------------------

    async def accept_booking(self, booking_id: str, admin_id: str, notes: Optional[str] = None) -> Booking:
        booking = await self._load(booking_id)
        if booking.status != BookingStatus.PENDING:
            raise StateConflict(
                f"Cannot accept booking with status {booking.status.value}",
                {"booking_id": booking_id, "current_status": booking.status.value},
            )
        booking.status = BookingStatus.CONFIRMED
        booking.admin_notes.append(f"Accepted by {admin_id}" + (f": {notes}" if notes else ""))
        booking = await self.bookings.update(booking, BookingStatus.PENDING)

        logger.info(f"Booking {booking_id} accepted by {admin_id}")
        await self._notify(BOOKING_ACCEPTED, booking)
        return booking

    async def reject_booking(
        self,
        booking_id: str,
        admin_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Booking:
        reason = _require_reason(reason)
        booking = await self._load(booking_id)
        if booking.status != BookingStatus.PENDING:
            raise StateConflict(
                f"Cannot reject booking with status {booking.status.value}",
                {"booking_id": booking_id, "current_status": booking.status.value},
            )

        booking.status = BookingStatus.CANCELLED
        booking.cancellation = Cancellation(
            reason=reason,
            cancelled_at=now or now_utc(),
            cancelled_by=Actor.ADMIN,
            refund=self.policy.full_refund(booking),
        )
        booking.admin_notes.append(f"Rejected by {admin_id}: {reason}")
        booking = await self.bookings.update(booking, BookingStatus.PENDING)

        logger.info(f"Booking {booking_id} rejected by {admin_id}: {reason}")
        booking = await self._issue_refund(booking)
        await self._notify(BOOKING_CANCELLATION, booking, reason=reason)
        return booking

    # ------------------------------------------------------------------
    # cancellation
    # ------------------------------------------------------------------

    async def cancel_booking(
        self,
        booking_id: str,
        user_id: str,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Booking:
        reason = _require_reason(reason)
        now = now or now_utc()
        booking = await self._load(booking_id, user_id=user_id)
        if booking.is_terminal:
            raise PolicyViolation(
                f"Booking is already {booking.status.value} and cannot be cancelled",
                {"booking_id": booking_id, "current_status": booking.status.value},
            )
        if booking.status == BookingStatus.IN_PROGRESS:
            raise PolicyViolation(
                "Service is already in progress, contact support to cancel",
                {"booking_id": booking_id},
            )
        assert_booking_transition(booking.status, BookingStatus.CANCELLED)

        expected = booking.status
        refund = self.policy.decide(booking, now)
        booking.status = BookingStatus.CANCELLED
        booking.cancellation = Cancellation(
            reason=reason,
            cancelled_at=now,
            cancelled_by=Actor.CUSTOMER,
            refund=refund,
        )
        booking = await self.bookings.update(booking, expected)

        logger.info(
            f"Booking {booking_id} cancelled by customer {user_id} "
            f"{refund.hours_before}h before start, refund {refund.tier.value} ${refund.amount}"
        )
        booking = await self._issue_refund(booking)
        await self._notify(BOOKING_CANCELLATION, booking, reason=reason, refund=refund.to_dict())
        return booking

    async def admin_cancel_booking(
        self,
        booking_id: str,
        admin_id: str,
        reason: str,
        offer_reschedule: bool = True,
        now: Optional[datetime] = None,
    ) -> Booking:
        reason = _require_reason(reason)
        now = now or now_utc()
        booking = await self._load(booking_id)
        if booking.is_terminal:
            raise PolicyViolation(
                f"Booking is already {booking.status.value} and cannot be cancelled",
                {"booking_id": booking_id, "current_status": booking.status.value},
            )
        assert_booking_transition(booking.status, BookingStatus.CANCELLED)

        expected = booking.status
        booking.status = BookingStatus.CANCELLED
        if offer_reschedule:
            booking.cancellation = Cancellation(
                reason=reason,
                cancelled_at=now,
                cancelled_by=Actor.ADMIN,
                reschedule=OfferOpen(offered_at=now),
            )
        else:
            booking.cancellation = Cancellation(
                reason=reason,
                cancelled_at=now,
                cancelled_by=Actor.ADMIN,
                refund=self.policy.full_refund(booking),
            )
        booking.admin_notes.append(f"Cancelled by {admin_id}: {reason}")
        booking = await self.bookings.update(booking, expected)

        logger.info(f"Booking {booking_id} cancelled by admin {admin_id} (offer_reschedule={offer_reschedule})")
        if offer_reschedule:
            await self._notify(ADMIN_CANCELLATION_RESCHEDULE, booking, reason=reason)
        else:
            booking = await self._issue_refund(booking)
            await self._notify(BOOKING_CANCELLATION, booking, reason=reason)
        return booking

    async def claim_refund(self, booking_id: str, user_id: str, now: Optional[datetime] = None) -> Booking:
        """Customer declines the reschedule offer and takes a full refund."""
        now = now or now_utc()
        booking = await self._load(booking_id, user_id=user_id)
        cancellation = self._open_offer(booking)

        booking.cancellation = replace(
            cancellation,
            refund=self.policy.full_refund(booking),
            reschedule=RefundClaimed(claimed_at=now),
        )
        booking = await self.bookings.update(booking, BookingStatus.CANCELLED)

        logger.info(f"Refund claimed for booking {booking_id} by {user_id}")
        booking = await self._issue_refund(booking)
        await self._notify(BOOKING_CANCELLATION, booking, refund=booking.cancellation.refund.to_dict())
        return booking

    # ------------------------------------------------------------------
    # reschedule
    # ------------------------------------------------------------------

    async def reschedule_booking(
        self,
        booking_id: str,
        user_id: str,
        new_date: date | str,
        new_time: str,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Request a new slot for an admin-cancelled booking. Needs admin approval.

        A request still awaiting approval is replaced by the new one.
        """
        now = now or now_utc()
        new_date = parse_date(new_date)
        new_time = parse_slot_time(new_time)
        booking = await self._load(booking_id, user_id=user_id)
        cancellation = self._open_offer(booking)

        if not await self.slots.is_slot_available(new_date, new_time, booking.duration, exclude_booking_id=booking.id):
            raise StateConflict(
                "Selected time slot is not available",
                {"date": new_date.isoformat(), "time": new_time},
            )

        booking.cancellation = replace(
            cancellation,
            reschedule=AwaitingApproval(
                offered_at=cancellation.reschedule.offered_at,
                new_date=new_date,
                new_time=new_time,
                requested_at=now,
            ),
        )
        booking = await self.bookings.update(booking, BookingStatus.CANCELLED)

        logger.info(f"Booking {booking_id} reschedule requested for {new_date} {new_time}")
        await self._notify(RESCHEDULE_PENDING, booking, new_date=new_date.isoformat(), new_time=new_time)
        return booking

    async def confirm_reschedule(
        self,
        booking_id: str,
        admin_id: str,
        now: Optional[datetime] = None,
    ) -> Booking:
        now = now or now_utc()
        booking = await self._load(booking_id)
        if booking.status != BookingStatus.CANCELLED or not booking.awaiting_reschedule_approval:
            raise PolicyViolation(
                "No reschedule request is awaiting approval",
                {"booking_id": booking_id, "current_status": booking.status.value},
            )
        request: AwaitingApproval = booking.cancellation.reschedule

        if not await self.slots.is_slot_available(
            request.new_date, request.new_time, booking.duration, exclude_booking_id=booking.id
        ):
            raise StateConflict(
                "Requested time slot is no longer available",
                {"date": request.new_date.isoformat(), "time": request.new_time},
            )

        booking.original_scheduled_date = booking.scheduled_date
        booking.original_scheduled_time = booking.scheduled_time
        booking.scheduled_date = request.new_date
        booking.scheduled_time = request.new_time
        booking.status = BookingStatus.CONFIRMED
        booking.cancellation = replace(
            booking.cancellation,
            refund=None,
            reschedule=RescheduleAccepted(
                new_date=request.new_date,
                new_time=request.new_time,
                accepted_at=now,
            ),
        )
        booking.admin_notes.append(f"Reschedule confirmed by {admin_id}")
        booking = await self.bookings.update(booking, BookingStatus.CANCELLED)

        logger.info(f"Booking {booking_id} rescheduled to {booking.scheduled_date} {booking.scheduled_time}")
        await self._notify(RESCHEDULE_CONFIRMED, booking)
        return booking

    async def decline_reschedule(
        self,
        booking_id: str,
        admin_id: str,
        reason: Optional[str] = None,
    ) -> Booking:
        """Turn down a requested slot. The offer reopens for another pick or a refund."""
        booking = await self._load(booking_id)
        if booking.status != BookingStatus.CANCELLED or not booking.awaiting_reschedule_approval:
            raise PolicyViolation(
                "No reschedule request is awaiting approval",
                {"booking_id": booking_id, "current_status": booking.status.value},
            )
        request: AwaitingApproval = booking.cancellation.reschedule

        booking.cancellation = replace(booking.cancellation, reschedule=OfferOpen(offered_at=request.offered_at))
        booking.admin_notes.append(f"Reschedule declined by {admin_id}" + (f": {reason}" if reason else ""))
        booking = await self.bookings.update(booking, BookingStatus.CANCELLED)

        logger.info(f"Booking {booking_id} reschedule to {request.new_date} {request.new_time} declined by {admin_id}")
        await self._notify(
            RESCHEDULE_DECLINED,
            booking,
            new_date=request.new_date.isoformat(),
            new_time=request.new_time,
            reason=reason,
        )
        return booking

    # ------------------------------------------------------------------
    # fulfillment
    # ------------------------------------------------------------------

    async def start_booking(self, booking_id: str, admin_id: str) -> Booking:
        booking = await self._load(booking_id)
        assert_booking_transition(booking.status, BookingStatus.IN_PROGRESS)

        expected = booking.status
        booking.status = BookingStatus.IN_PROGRESS
        booking = await self.bookings.update(booking, expected)
        logger.info(f"Booking {booking_id} started by {admin_id}")
        return booking

    async def complete_booking(
        self,
        booking_id: str,
        admin_id: str,
        completion_notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        booking = await self._load(booking_id)
        assert_booking_transition(booking.status, BookingStatus.COMPLETED)

        expected = booking.status
        booking.status = BookingStatus.COMPLETED
        booking.completed_at = now or now_utc()
        booking.completion_notes = completion_notes
        booking = await self.bookings.update(booking, expected)

        logger.info(f"Booking {booking_id} completed by {admin_id}")
        await self._notify(BOOKING_COMPLETION, booking)
        await self._notify(REVIEW_REQUEST, booking)
        return booking

    async def mark_no_show(self, booking_id: str, admin_id: str) -> Booking:
        booking = await self._load(booking_id)
        assert_booking_transition(booking.status, BookingStatus.NO_SHOW)

        expected = booking.status
        booking.status = BookingStatus.NO_SHOW
        booking.admin_notes.append(f"Marked no-show by {admin_id}")
        booking = await self.bookings.update(booking, expected)
        logger.info(f"Booking {booking_id} marked no-show by {admin_id}")
        return booking

    async def add_review(
        self,
        booking_id: str,
        user_id: str,
        rating: int,
        review: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Booking:
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5", {"rating": rating})

        booking = await self._load(booking_id, user_id=user_id)
        if booking.status != BookingStatus.COMPLETED:
            raise PolicyViolation(
                "Only completed bookings can be reviewed",
                {"booking_id": booking_id, "current_status": booking.status.value},
            )
        if booking.rating is not None:
            raise PolicyViolation("Booking has already been reviewed", {"booking_id": booking_id})

        booking.rating = rating
        booking.review = review
        booking.reviewed_at = now or now_utc()
        booking = await self.bookings.update(booking, BookingStatus.COMPLETED)
        logger.info(f"Review added to booking {booking_id}: {rating}/5")
        return booking

    # ------------------------------------------------------------------
    # payment
    # ------------------------------------------------------------------

    async def create_payment_intent(self, booking_id: str, user_id: Optional[str] = None) -> Booking:
        booking = await self._load(booking_id, user_id=user_id)
        if booking.status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise PolicyViolation(
                f"Cannot take payment for a {booking.status.value} booking",
                {"booking_id": booking_id},
            )
        if booking.payment.status == PaymentStatus.PAID:
            raise PolicyViolation("Booking is already paid", {"booking_id": booking_id})

        intent_ref = await self.payments.create_intent(booking.total_amount)
        booking.payment = replace(booking.payment, intent_ref=intent_ref, status=PaymentStatus.PENDING)
        return await self.bookings.update(booking, booking.status)

    async def mark_paid(self, booking_id: str, intent_ref: str, now: Optional[datetime] = None) -> Booking:
        """
        Record a settled payment intent.

        A payment that lands after the booking was cancelled is refunded
        straight away by whatever refund the cancellation decided.
        """
        booking = await self._load(booking_id)
        if not booking.payment.intent_ref or booking.payment.intent_ref != intent_ref:
            raise ValidationError("Payment intent does not match booking", {"booking_id": booking_id})
        if booking.payment.status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            return booking

        booking.payment = replace(booking.payment, status=PaymentStatus.PAID, paid_at=now or now_utc())
        booking = await self.bookings.update(booking, booking.status)
        logger.info(f"Booking {booking_id} paid (${booking.total_amount})")
        if booking.status == BookingStatus.CANCELLED:
            booking = await self._issue_refund(booking)
        return booking

    def refund_for(self, booking: Booking) -> Optional[RefundDecision]:
        """Recompute the refund owed from the stored cancellation."""
        cancellation = booking.cancellation
        if booking.status != BookingStatus.CANCELLED or cancellation is None:
            return None
        if cancellation.cancelled_by == Actor.CUSTOMER:
            return self.policy.decide(booking, cancellation.cancelled_at)
        if cancellation.refund is not None:
            return self.policy.full_refund(booking)
        return None

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    async def get_booking(self, booking_id: str, user_id: Optional[str] = None) -> Booking:
        return await self._load(booking_id, user_id=user_id)

    async def list_user_bookings(self, user_id: str, status: Optional[BookingStatus] = None) -> list[Booking]:
        return await self.bookings.list_bookings(user_id=user_id, status=status)

    async def list_bookings(
        self,
        status: Optional[BookingStatus] = None,
        scheduled_date: Optional[date | str] = None,
    ) -> list[Booking]:
        on = parse_date(scheduled_date) if scheduled_date else None
        return await self.bookings.list_bookings(status=status, scheduled_date=on)

    async def booking_stats(self) -> dict:
        stats = await self.bookings.stats()
        stats["completed_revenue"] = float(stats["completed_revenue"])
        return stats

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    async def _load(self, booking_id: str, user_id: Optional[str] = None) -> Booking:
        booking = await self.bookings.get(booking_id)
        # Someone else's booking looks exactly like a missing one
        if booking is None or (user_id is not None and booking.user_id != user_id):
            raise NotFound("Booking not found", {"booking_id": booking_id})
        return booking

    def _open_offer(self, booking: Booking) -> Cancellation:
        cancellation = booking.cancellation
        if (
            booking.status != BookingStatus.CANCELLED
            or cancellation is None
            or not isinstance(cancellation.reschedule, (OfferOpen, AwaitingApproval))
        ):
            raise PolicyViolation(
                "No reschedule offer is open for this booking",
                {"booking_id": booking.id, "current_status": booking.status.value},
            )
        return cancellation

    async def _issue_refund(self, booking: Booking) -> Booking:
        """Refund a paid booking through the gateway after the cancellation is stored."""
        refund = booking.cancellation.refund if booking.cancellation else None
        if (
            refund is None
            or refund.amount <= 0
            or booking.payment.status != PaymentStatus.PAID
            or not booking.payment.intent_ref
        ):
            return booking

        try:
            await self.payments.refund(booking.payment.intent_ref, refund.amount)
        except Exception as e:
            logger.error(f"Refund of ${refund.amount} failed for booking {booking.id}: {e}")
            return booking

        booking.payment = replace(
            booking.payment,
            status=PaymentStatus.REFUNDED,
            refunded_at=now_utc(),
            refunded_amount=refund.amount,
        )
        try:
            return await self.bookings.update(booking, BookingStatus.CANCELLED)
        except StateConflict:
            logger.error(f"Refund issued for booking {booking.id} but payment record was not updated")
            return await self._load(booking.id)

    async def _notify(self, template_name: str, booking: Booking, **extra) -> None:
        await send_notification(self.notifier, template_name, booking_payload(booking, **extra))


def _require_reason(reason: Optional[str]) -> str:
    if not reason or not reason.strip():
        raise ValidationError("A cancellation reason is required")
    return reason.strip()


def _merge(current: Vehicle | Address, changes: dict, name: str) -> Vehicle | Address:
    allowed = {f.name for f in fields(current)}
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValidationError(f"Unknown {name} fields: {', '.join(unknown)}", {"fields": unknown})
    changes = {key: value for key, value in changes.items() if value is not None}
    if "type" in changes:
        try:
            changes["type"] = VehicleType(changes["type"])
        except ValueError:
            raise ValidationError(f"Unknown vehicle type: {changes['type']}", {"vehicle_type": str(changes["type"])})
    return replace(current, **changes)
