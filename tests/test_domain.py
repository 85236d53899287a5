"""
Tests for booking status transitions and the value objects stored as JSON.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from detailing.domain import (
    Actor,
    AwaitingApproval,
    Booking,
    BookingStatus,
    Cancellation,
    Frequency,
    LineItem,
    NoOffer,
    OfferOpen,
    PaymentRecord,
    PaymentStatus,
    RefundDecision,
    RefundTier,
    RescheduleAccepted,
    ServiceCategory,
    assert_booking_transition,
    parse_date,
    parse_slot_time,
    reschedule_from_dict,
)
from detailing.errors import StateConflict, ValidationError

OFFERED_AT = datetime(2030, 7, 14, 9, 0, tzinfo=timezone.utc)


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (BookingStatus.PENDING, BookingStatus.CONFIRMED),
            (BookingStatus.PENDING, BookingStatus.CANCELLED),
            (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS),
            (BookingStatus.CONFIRMED, BookingStatus.COMPLETED),
            (BookingStatus.CONFIRMED, BookingStatus.NO_SHOW),
            (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED),
            (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED),
        ],
    )
    def test_allowed(self, current, target):
        assert_booking_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (BookingStatus.PENDING, BookingStatus.COMPLETED),
            (BookingStatus.PENDING, BookingStatus.IN_PROGRESS),
            (BookingStatus.COMPLETED, BookingStatus.CANCELLED),
            (BookingStatus.NO_SHOW, BookingStatus.CONFIRMED),
            (BookingStatus.CANCELLED, BookingStatus.PENDING),
        ],
    )
    def test_rejected(self, current, target):
        with pytest.raises(StateConflict):
            assert_booking_transition(current, target)


class TestParsing:
    def test_date_from_string(self):
        assert parse_date("2030-07-15") == date(2030, 7, 15)

    def test_datetime_becomes_date(self):
        assert parse_date(datetime(2030, 7, 15, 9, 30)) == date(2030, 7, 15)

    @pytest.mark.parametrize("value", ["2030-13-01", "tomorrow", ""])
    def test_bad_date(self, value):
        with pytest.raises(ValidationError):
            parse_date(value)

    def test_time_is_zero_padded(self):
        assert parse_slot_time("9:00") == "09:00"

    @pytest.mark.parametrize("value", ["25:00", "10", "ten:thirty", None])
    def test_bad_time(self, value):
        with pytest.raises(ValidationError):
            parse_slot_time(value)


class TestRescheduleVariant:
    def test_missing_is_no_offer(self):
        assert reschedule_from_dict(None) == NoOffer()

    def test_awaiting_approval_round_trip(self):
        variant = AwaitingApproval(
            offered_at=OFFERED_AT,
            new_date=date(2030, 7, 16),
            new_time="14:00",
            requested_at=datetime(2030, 7, 14, 10, 0, tzinfo=timezone.utc),
        )
        assert reschedule_from_dict(variant.to_dict()) == variant

    def test_cancellation_round_trip(self):
        cancellation = Cancellation(
            reason="Staff shortage",
            cancelled_at=OFFERED_AT,
            cancelled_by=Actor.ADMIN,
            refund=RefundDecision(RefundTier.FULL, Decimal("1"), Decimal("35.64")),
            reschedule=RescheduleAccepted(
                new_date=date(2030, 7, 16),
                new_time="14:00",
                accepted_at=OFFERED_AT,
            ),
        )
        assert Cancellation.from_dict(cancellation.to_dict()) == cancellation
        assert Cancellation.from_dict(None) is None


class TestBooking:
    @pytest.fixture
    def booking(self, make_booking_request):
        request = make_booking_request()
        return Booking(
            user_id="user-1",
            line_items=[LineItem("Interior Only", 1, Decimal("33.00"), 120, ServiceCategory.INTERIOR)],
            vehicle=request.vehicle,
            address=request.address,
            scheduled_date=date(2030, 7, 15),
            scheduled_time="10:00",
            duration=120,
            frequency=Frequency.ONE_TIME,
            subtotal=Decimal("33.00"),
            frequency_discount=Decimal("0.00"),
            discount_amount=Decimal("0.00"),
            tax=Decimal("2.64"),
            total_amount=Decimal("35.64"),
        )

    def test_end_time(self, booking):
        assert booking.end_time == "12:00"

    def test_scheduled_at_uses_business_timezone(self, booking):
        start = booking.scheduled_at(ZoneInfo("America/New_York"))
        assert start.astimezone(timezone.utc) == datetime(2030, 7, 15, 14, 0, tzinfo=timezone.utc)

    def test_flags_follow_variant(self, booking):
        assert booking.reschedule_offered is False
        booking.status = BookingStatus.CANCELLED
        booking.cancellation = Cancellation(
            reason="Weather",
            cancelled_at=OFFERED_AT,
            cancelled_by=Actor.ADMIN,
            reschedule=OfferOpen(offered_at=OFFERED_AT),
        )
        assert booking.reschedule_offered is True
        assert booking.reschedule_accepted is False
        assert booking.is_terminal is True

    def test_payment_record_round_trip(self):
        record = PaymentRecord(
            status=PaymentStatus.REFUNDED,
            intent_ref="pi_1",
            refunded_amount=Decimal("17.82"),
            refunded_at=OFFERED_AT,
        )
        assert PaymentRecord.from_dict(record.to_dict()) == record
        assert PaymentRecord.from_dict(None) == PaymentRecord()
