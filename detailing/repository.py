"""
Persistence adapter for bookings and subscriptions.

Each method opens its own session from the injected async_sessionmaker and
returns domain dataclasses, never ORM rows.

Updates are compare-and-swap:

    UPDATE bookings SET ..., version = version + 1
    WHERE id = :id AND version = :expected_version AND status = :expected_status

A rowcount of zero means someone else changed the row first; the caller gets
StateConflict and has to re-read.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .domain import (
    ACTIVE_STATUSES,
    Address,
    AwaitingApproval,
    Booking,
    BookingStatus,
    Cancellation,
    CartItem,
    LineItem,
    PaymentRecord,
    Subscription,
    SubscriptionStatus,
    Vehicle,
)
from .errors import StateConflict
from .models import BookingRecord, SubscriptionRecord, SubscriptionRunRecord, now_utc

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything is stored in UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# MAPPING
# ============================================================================

def booking_from_record(record: BookingRecord) -> Booking:
    return Booking(
        id=record.id,
        user_id=record.user_id,
        subscription_id=record.subscription_id,
        status=BookingStatus(record.status),
        line_items=[LineItem.from_dict(item) for item in record.line_items],
        vehicle=Vehicle.from_dict(record.vehicle),
        address=Address.from_dict(record.address),
        special_instructions=record.special_instructions,
        scheduled_date=record.scheduled_date,
        scheduled_time=record.scheduled_time,
        duration=record.duration,
        frequency=record.frequency,
        original_scheduled_date=record.original_scheduled_date,
        original_scheduled_time=record.original_scheduled_time,
        subtotal=Decimal(record.subtotal),
        frequency_discount=Decimal(record.frequency_discount),
        promo_code=record.promo_code,
        discount_amount=Decimal(record.discount_amount),
        tax=Decimal(record.tax),
        total_amount=Decimal(record.total_amount),
        payment=PaymentRecord.from_dict(record.payment),
        cancellation=Cancellation.from_dict(record.cancellation),
        admin_notes=list(record.admin_notes or []),
        completed_at=_aware(record.completed_at),
        completion_notes=record.completion_notes,
        rating=record.rating,
        review=record.review,
        reviewed_at=_aware(record.reviewed_at),
        version=record.version,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def booking_values(booking: Booking) -> dict:
    """Column values for a booking, excluding id, version and timestamps."""
    reschedule = booking.cancellation.reschedule if booking.cancellation else None
    return {
        "user_id": booking.user_id,
        "subscription_id": booking.subscription_id,
        "status": booking.status,
        "line_items": [item.to_dict() for item in booking.line_items],
        "vehicle": booking.vehicle.to_dict(),
        "address": booking.address.to_dict(),
        "special_instructions": booking.special_instructions,
        "scheduled_date": booking.scheduled_date,
        "scheduled_time": booking.scheduled_time,
        "duration": booking.duration,
        "frequency": booking.frequency,
        "original_scheduled_date": booking.original_scheduled_date,
        "original_scheduled_time": booking.original_scheduled_time,
        "subtotal": booking.subtotal,
        "frequency_discount": booking.frequency_discount,
        "promo_code": booking.promo_code,
        "discount_amount": booking.discount_amount,
        "tax": booking.tax,
        "total_amount": booking.total_amount,
        "payment": booking.payment.to_dict(),
        "cancellation": booking.cancellation.to_dict() if booking.cancellation else None,
        "reschedule_requested_date": (
            reschedule.new_date if isinstance(reschedule, AwaitingApproval) else None
        ),
        "admin_notes": list(booking.admin_notes),
        "completed_at": booking.completed_at,
        "completion_notes": booking.completion_notes,
        "rating": booking.rating,
        "review": booking.review,
        "reviewed_at": booking.reviewed_at,
    }


def subscription_from_record(record: SubscriptionRecord) -> Subscription:
    return Subscription(
        id=record.id,
        user_id=record.user_id,
        status=SubscriptionStatus(record.status),
        frequency=record.frequency,
        services=[CartItem.from_dict(item) for item in record.services],
        addons=[CartItem.from_dict(item) for item in record.addons],
        vehicle=Vehicle.from_dict(record.vehicle),
        address=Address.from_dict(record.address),
        scheduled_time=record.scheduled_time,
        special_instructions=record.special_instructions,
        start_date=record.start_date,
        next_due_date=record.next_due_date,
        occurrences=record.occurrences,
        cancelled_at=_aware(record.cancelled_at),
        cancellation_reason=record.cancellation_reason,
        version=record.version,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


def subscription_values(subscription: Subscription) -> dict:
    return {
        "user_id": subscription.user_id,
        "status": subscription.status,
        "frequency": subscription.frequency,
        "services": [item.to_dict() for item in subscription.services],
        "addons": [item.to_dict() for item in subscription.addons],
        "vehicle": subscription.vehicle.to_dict(),
        "address": subscription.address.to_dict(),
        "scheduled_time": subscription.scheduled_time,
        "special_instructions": subscription.special_instructions,
        "start_date": subscription.start_date,
        "next_due_date": subscription.next_due_date,
        "occurrences": subscription.occurrences,
        "cancelled_at": subscription.cancelled_at,
        "cancellation_reason": subscription.cancellation_reason,
    }


def _new_booking_record(booking: Booking) -> BookingRecord:
    return BookingRecord(id=booking.id, version=0, **booking_values(booking))


# ============================================================================
# BOOKINGS
# ============================================================================

class BookingRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def add(self, booking: Booking) -> Booking:
        async with self.session_factory() as session:
            record = _new_booking_record(booking)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return booking_from_record(record)

    async def get(self, booking_id: str) -> Optional[Booking]:
        async with self.session_factory() as session:
            record = await session.get(BookingRecord, booking_id)
            return booking_from_record(record) if record else None

    async def update(self, booking: Booking, expected_status: BookingStatus) -> Booking:
        """
        Write a modified booking if nobody changed it since it was read.

        booking.version must be the version that was read.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(BookingRecord)
                .where(
                    BookingRecord.id == booking.id,
                    BookingRecord.version == booking.version,
                    BookingRecord.status == expected_status,
                )
                .values(
                    **booking_values(booking),
                    version=BookingRecord.version + 1,
                    updated_at=now_utc(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                logger.info(
                    f"Lost update on booking {booking.id} "
                    f"(expected version={booking.version}, status={expected_status.value})"
                )
                raise StateConflict(
                    "Booking was modified concurrently, reload and retry",
                    {"booking_id": booking.id, "expected_version": booking.version},
                )
            await session.commit()

            record = await session.get(BookingRecord, booking.id, populate_existing=True)
            return booking_from_record(record)

    async def list_bookings(
        self,
        user_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        scheduled_date: Optional[date] = None,
    ) -> list[Booking]:
        query = select(BookingRecord)
        if user_id is not None:
            query = query.where(BookingRecord.user_id == user_id)
        if status is not None:
            query = query.where(BookingRecord.status == status)
        if scheduled_date is not None:
            query = query.where(BookingRecord.scheduled_date == scheduled_date)
        query = query.order_by(BookingRecord.scheduled_date.desc(), BookingRecord.scheduled_time.desc())

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [booking_from_record(record) for record in result.scalars().all()]

    async def list_slot_holders(self, on: date) -> list[Booking]:
        """
        Bookings that occupy time on a date: active bookings scheduled that day
        and cancelled bookings whose reschedule request targets it.
        """
        query = select(BookingRecord).where(
            or_(
                and_(
                    BookingRecord.scheduled_date == on,
                    BookingRecord.status.in_(list(ACTIVE_STATUSES)),
                ),
                and_(
                    BookingRecord.reschedule_requested_date == on,
                    BookingRecord.status == BookingStatus.CANCELLED,
                ),
            )
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [booking_from_record(record) for record in result.scalars().all()]

    async def stats(self) -> dict:
        query = select(
            BookingRecord.status,
            func.count(BookingRecord.id),
            func.coalesce(func.sum(BookingRecord.total_amount), 0),
        ).group_by(BookingRecord.status)

        async with self.session_factory() as session:
            rows = (await session.execute(query)).all()

        by_status = {status.value: 0 for status in BookingStatus}
        revenue = Decimal("0.00")
        for status, count, amount in rows:
            by_status[BookingStatus(status).value] = count
            if BookingStatus(status) == BookingStatus.COMPLETED:
                revenue = Decimal(str(amount)).quantize(Decimal("0.01"))
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "completed_revenue": revenue,
        }


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

class SubscriptionRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get(self, subscription_id: str) -> Optional[Subscription]:
        async with self.session_factory() as session:
            record = await session.get(SubscriptionRecord, subscription_id)
            return subscription_from_record(record) if record else None

    async def list_subscriptions(
        self,
        user_id: Optional[str] = None,
        status: Optional[SubscriptionStatus] = None,
    ) -> list[Subscription]:
        query = select(SubscriptionRecord)
        if user_id is not None:
            query = query.where(SubscriptionRecord.user_id == user_id)
        if status is not None:
            query = query.where(SubscriptionRecord.status == status)
        query = query.order_by(SubscriptionRecord.created_at)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [subscription_from_record(record) for record in result.scalars().all()]

    async def list_due(self, on: date) -> list[Subscription]:
        query = (
            select(SubscriptionRecord)
            .where(
                SubscriptionRecord.status == SubscriptionStatus.ACTIVE,
                SubscriptionRecord.next_due_date <= on,
            )
            .order_by(SubscriptionRecord.next_due_date)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [subscription_from_record(record) for record in result.scalars().all()]

    async def add(self, subscription: Subscription, first_booking: Booking) -> Subscription:
        """Insert a subscription together with its first booking and run marker."""
        async with self.session_factory() as session:
            async with session.begin():
                record = SubscriptionRecord(
                    id=subscription.id, version=0, **subscription_values(subscription)
                )
                session.add(record)
                await session.flush()
                session.add(_new_booking_record(first_booking))
                session.add(
                    SubscriptionRunRecord(
                        subscription_id=subscription.id,
                        due_date=subscription.start_date,
                        booking_id=first_booking.id,
                    )
                )
            await session.refresh(record)
            return subscription_from_record(record)

    async def update(self, subscription: Subscription, expected_status: SubscriptionStatus) -> Subscription:
        async with self.session_factory() as session:
            result = await session.execute(
                update(SubscriptionRecord)
                .where(
                    SubscriptionRecord.id == subscription.id,
                    SubscriptionRecord.version == subscription.version,
                    SubscriptionRecord.status == expected_status,
                )
                .values(
                    **subscription_values(subscription),
                    version=SubscriptionRecord.version + 1,
                    updated_at=now_utc(),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise StateConflict(
                    "Subscription was modified concurrently, reload and retry",
                    {"subscription_id": subscription.id, "expected_version": subscription.version},
                )
            await session.commit()

            record = await session.get(SubscriptionRecord, subscription.id, populate_existing=True)
            return subscription_from_record(record)

    async def record_occurrence(
        self,
        subscription: Subscription,
        due_date: date,
        booking: Booking,
        next_due_date: date,
    ) -> bool:
        """
        Atomically insert the run marker, the booking and advance the schedule.

        Returns False when the marker for (subscription, due_date) already
        exists. Raises StateConflict when the subscription changed since it was
        read (paused, cancelled or advanced by another sweep).
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(_new_booking_record(booking))
                    session.add(
                        SubscriptionRunRecord(
                            subscription_id=subscription.id,
                            due_date=due_date,
                            booking_id=booking.id,
                        )
                    )
                    await session.flush()

                    result = await session.execute(
                        update(SubscriptionRecord)
                        .where(
                            SubscriptionRecord.id == subscription.id,
                            SubscriptionRecord.version == subscription.version,
                            SubscriptionRecord.status == SubscriptionStatus.ACTIVE,
                        )
                        .values(
                            next_due_date=next_due_date,
                            occurrences=SubscriptionRecord.occurrences + 1,
                            version=SubscriptionRecord.version + 1,
                            updated_at=now_utc(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise StateConflict(
                            "Subscription changed during the sweep",
                            {"subscription_id": subscription.id, "due_date": due_date.isoformat()},
                        )
        except IntegrityError:
            logger.info(f"Occurrence already recorded for subscription {subscription.id} on {due_date}")
            return False
        return True

    async def list_runs(self, subscription_id: str) -> Sequence[SubscriptionRunRecord]:
        query = (
            select(SubscriptionRunRecord)
            .where(SubscriptionRunRecord.subscription_id == subscription_id)
            .order_by(SubscriptionRunRecord.due_date)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return result.scalars().all()
