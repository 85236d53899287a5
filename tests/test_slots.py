"""
Tests for slot availability.

2030-07-15 is a Monday, 2030-07-21 a Sunday (closed).
"""

from datetime import date, datetime, timezone

import pytest

from detailing.core.config import Settings
from detailing.dependencies import build_services
from detailing.errors import NotFound, ValidationError
from detailing.slots import overlap

MONDAY = date(2030, 7, 15)
SUNDAY = date(2030, 7, 21)
CREATED_AT = datetime(2030, 7, 1, 12, 0, tzinfo=timezone.utc)


class TestOverlap:
    def test_touching_ranges_do_not_overlap(self):
        assert overlap(
            datetime(2030, 7, 15, 8), datetime(2030, 7, 15, 10),
            datetime(2030, 7, 15, 10), datetime(2030, 7, 15, 12),
        ) is False

    def test_nested_range_overlaps(self):
        assert overlap(
            datetime(2030, 7, 15, 8), datetime(2030, 7, 15, 12),
            datetime(2030, 7, 15, 9), datetime(2030, 7, 15, 10),
        ) is True


class TestAvailableSlots:
    @pytest.mark.asyncio
    async def test_empty_day(self, services):
        slots = await services.slots.get_available_slots(MONDAY)
        assert len(slots) == 17
        assert slots[0] == "08:00"
        assert slots[-1] == "16:00"

    @pytest.mark.asyncio
    async def test_shorter_duration_fits_later(self, services):
        slots = await services.slots.get_available_slots(MONDAY, duration=60)
        assert slots[-1] == "17:00"

    @pytest.mark.asyncio
    async def test_closed_day(self, services):
        assert await services.slots.get_available_slots(SUNDAY) == []

    @pytest.mark.asyncio
    async def test_iso_string_accepted(self, services):
        assert len(await services.slots.get_available_slots("2030-07-15")) == 17

    @pytest.mark.asyncio
    async def test_bad_date(self, services):
        with pytest.raises(ValidationError):
            await services.slots.get_available_slots("07/15/2030")

    @pytest.mark.asyncio
    async def test_booking_blocks_overlapping_starts(self, services, booking_service, make_booking_request):
        await booking_service.create_booking("user-1", make_booking_request(), now=CREATED_AT)

        slots = await services.slots.get_available_slots(MONDAY)
        assert "08:00" in slots
        for blocked in ("08:30", "09:00", "10:00", "11:00", "11:30"):
            assert blocked not in slots
        assert "12:00" in slots

    @pytest.mark.asyncio
    async def test_cancelled_booking_frees_slot(self, services, booking_service, make_booking_request):
        booking = await booking_service.create_booking("user-1", make_booking_request(), now=CREATED_AT)
        await booking_service.cancel_booking(booking.id, "user-1", "Not needed")

        assert len(await services.slots.get_available_slots(MONDAY)) == 17

    @pytest.mark.asyncio
    async def test_is_slot_available(self, services, booking_service, make_booking_request):
        booking = await booking_service.create_booking("user-1", make_booking_request(), now=CREATED_AT)

        assert await services.slots.is_slot_available(MONDAY, "11:00", 60) is False
        assert await services.slots.is_slot_available(MONDAY, "12:00", 60) is True
        assert await services.slots.is_slot_available(MONDAY, "10:00", 120, exclude_booking_id=booking.id) is True
        assert await services.slots.is_slot_available(MONDAY, "17:00", 120) is False
        assert await services.slots.is_slot_available(MONDAY, "07:00", 60) is False
        assert await services.slots.is_slot_available(SUNDAY, "10:00", 60) is False


class TestCapacity:
    @pytest.fixture
    def wide_services(self, session_factory, notifier, gateway):
        settings = Settings(DATABASE_URL="sqlite+aiosqlite:///:memory:", SLOT_CAPACITY=2)
        return build_services(session_factory, settings, notifier=notifier, payments=gateway)

    @pytest.mark.asyncio
    async def test_second_bay_keeps_slot_open(self, wide_services, make_booking_request):
        bookings = wide_services.bookings
        await bookings.create_booking("user-1", make_booking_request(), now=CREATED_AT)
        assert "10:00" in await wide_services.slots.get_available_slots(MONDAY)

        await bookings.create_booking("user-2", make_booking_request(), now=CREATED_AT)
        assert "10:00" not in await wide_services.slots.get_available_slots(MONDAY)


class TestRescheduleSlots:
    @pytest.mark.asyncio
    async def test_hourly_and_ignores_own_booking(self, services, booking_service, make_booking_request):
        booking = await booking_service.create_booking("user-1", make_booking_request(), now=CREATED_AT)
        await booking_service.create_booking(
            "user-2", make_booking_request(scheduled_time="13:00"), now=CREATED_AT
        )

        slots = await services.slots.get_reschedule_slots(booking.id, MONDAY)
        assert slots == ["08:00", "09:00", "10:00", "11:00", "15:00", "16:00"]

    @pytest.mark.asyncio
    async def test_other_users_booking(self, services, booking_service, make_booking_request):
        booking = await booking_service.create_booking("user-1", make_booking_request(), now=CREATED_AT)
        with pytest.raises(NotFound):
            await services.slots.get_reschedule_slots(booking.id, MONDAY, user_id="user-2")

    @pytest.mark.asyncio
    async def test_missing_booking(self, services):
        with pytest.raises(NotFound):
            await services.slots.get_reschedule_slots("nope", MONDAY)
