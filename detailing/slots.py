"""
Available time slots.

Slots are "HH:MM" start times inside business hours on working days. A slot
is free when [start, start + duration) fits before closing and overlaps fewer
than slot_capacity bookings that hold time that day:

    - pending, confirmed and in-progress bookings at their scheduled time
    - cancelled bookings whose reschedule request awaits approval, at the
      requested time
"""

from datetime import date, datetime, timedelta
from typing import Optional

from .core.config import Settings, get_settings
from .domain import ACTIVE_STATUSES, AwaitingApproval, Booking, parse_date, parse_time_of_day
from .errors import NotFound
from .repository import BookingRepository


def overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Check if two time ranges overlap."""
    return start_a < end_b and start_b < end_a


def held_interval(booking: Booking, on: date) -> Optional[tuple[datetime, datetime]]:
    """The time a booking occupies on a date, if any."""
    if booking.status in ACTIVE_STATUSES and booking.scheduled_date == on:
        start = datetime.combine(on, parse_time_of_day(booking.scheduled_time))
    elif booking.cancellation is not None and isinstance(booking.cancellation.reschedule, AwaitingApproval):
        request = booking.cancellation.reschedule
        if request.new_date != on:
            return None
        start = datetime.combine(on, parse_time_of_day(request.new_time))
    else:
        return None
    return start, start + timedelta(minutes=booking.duration)


class SlotFinder:
    def __init__(self, bookings: BookingRepository, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.bookings = bookings
        self.opens_at = parse_time_of_day(settings.business_hours_start)
        self.closes_at = parse_time_of_day(settings.business_hours_end)
        self.working_days = set(settings.working_days_list)
        self.slot_minutes = settings.slot_interval_minutes
        self.reschedule_slot_minutes = settings.reschedule_slot_minutes
        self.capacity = settings.slot_capacity
        self.default_duration = settings.default_duration_minutes

    def is_working_day(self, on: date) -> bool:
        return on.weekday() in self.working_days

    def candidate_starts(self, on: date, duration: int, step_minutes: int) -> list[datetime]:
        """Start times on a date whose appointment ends by closing time."""
        if not self.is_working_day(on):
            return []
        cursor = datetime.combine(on, self.opens_at)
        closing = datetime.combine(on, self.closes_at)
        starts = []
        while cursor + timedelta(minutes=duration) <= closing:
            starts.append(cursor)
            cursor += timedelta(minutes=step_minutes)
        return starts

    async def get_available_slots(
        self,
        on: date | str,
        duration: Optional[int] = None,
    ) -> list[str]:
        on = parse_date(on)
        return await self._free_slots(on, duration or self.default_duration, self.slot_minutes)

    async def get_reschedule_slots(
        self,
        booking_id: str,
        on: date | str,
        user_id: Optional[str] = None,
    ) -> list[str]:
        """Hourly slots for moving an existing booking, ignoring its own hold."""
        on = parse_date(on)
        booking = await self.bookings.get(booking_id)
        if booking is None or (user_id is not None and booking.user_id != user_id):
            raise NotFound("Booking not found", {"booking_id": booking_id})
        return await self._free_slots(
            on, booking.duration, self.reschedule_slot_minutes, exclude_booking_id=booking.id
        )

    async def is_slot_available(
        self,
        on: date,
        start_time: str,
        duration: int,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        if not self.is_working_day(on):
            return False
        start = datetime.combine(on, parse_time_of_day(start_time))
        end = start + timedelta(minutes=duration)
        if start.time() < self.opens_at or end > datetime.combine(on, self.closes_at):
            return False
        held = await self._held(on, exclude_booking_id)
        return self._fits(start, end, held)

    async def _free_slots(
        self,
        on: date,
        duration: int,
        step_minutes: int,
        exclude_booking_id: Optional[str] = None,
    ) -> list[str]:
        starts = self.candidate_starts(on, duration, step_minutes)
        if not starts:
            return []
        held = await self._held(on, exclude_booking_id)
        return [
            start.strftime("%H:%M")
            for start in starts
            if self._fits(start, start + timedelta(minutes=duration), held)
        ]

    async def _held(self, on: date, exclude_booking_id: Optional[str]) -> list[tuple[datetime, datetime]]:
        intervals = []
        for booking in await self.bookings.list_slot_holders(on):
            if booking.id == exclude_booking_id:
                continue
            interval = held_interval(booking, on)
            if interval:
                intervals.append(interval)
        return intervals

    def _fits(self, start: datetime, end: datetime, held: list[tuple[datetime, datetime]]) -> bool:
        clashes = sum(1 for held_start, held_end in held if overlap(start, end, held_start, held_end))
        return clashes < self.capacity
