"""
Domain types for the detailing booking engine.

Plain dataclasses and enums. The persistence layer (models.py) maps these to
tables; the engine (booking_engine.py, subscriptions.py) only ever works with
these types.

Booking Status Flow:
    pending -> confirmed -> in-progress -> completed
    pending, confirmed -> cancelled          (customer or admin)
    in-progress -> cancelled                 (admin only)
    confirmed, in-progress -> no-show        (admin only)

    cancelled, completed and no-show are terminal. The one way out of
    cancelled is an accepted reschedule offer (see Cancellation).
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional, Union
from zoneinfo import ZoneInfo

from .errors import StateConflict, ValidationError


# ============================================================================
# ENUMS
# ============================================================================

class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class Frequency(str, Enum):
    ONE_TIME = "one-time"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"


RECURRING_FREQUENCIES = (Frequency.WEEKLY, Frequency.BI_WEEKLY, Frequency.MONTHLY)


class VehicleType(str, Enum):
    SEDAN = "sedan"
    SUV = "suv"
    TRUCK = "truck"
    LUXURY = "luxury"
    OTHER = "other"


class ServiceCategory(str, Enum):
    INTERIOR = "interior"
    EXTERIOR = "exterior"
    FULL = "full"
    ADDON = "addon"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class Actor(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class RefundTier(str, Enum):
    FULL = "full"
    PARTIAL = "partial"
    NONE = "none"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
)

# Statuses that hold a time slot
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    },
    BookingStatus.IN_PROGRESS: {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    },
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.NO_SHOW: set(),
}


def assert_booking_transition(current: BookingStatus, target: BookingStatus) -> None:
    allowed = BOOKING_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise StateConflict(
            f"Invalid booking transition: {current.value} -> {target.value}",
            {"current_status": current.value, "target_status": target.value},
        )


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True)
class CartItem:
    """A service or add-on selected for pricing, by catalog name."""
    name: str
    quantity: int = 1

    def to_dict(self) -> dict:
        return {"name": self.name, "quantity": self.quantity}

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        return cls(name=data["name"], quantity=int(data.get("quantity") or 1))


@dataclass(frozen=True)
class Vehicle:
    make: str
    model: str
    year: int
    color: str
    type: VehicleType = VehicleType.SEDAN
    license_plate: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "make": self.make,
            "model": self.model,
            "year": self.year,
            "color": self.color,
            "type": self.type.value,
            "license_plate": self.license_plate,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Vehicle":
        return cls(
            make=data["make"],
            model=data["model"],
            year=int(data["year"]),
            color=data["color"],
            type=VehicleType(data.get("type") or VehicleType.SEDAN.value),
            license_plate=data.get("license_plate"),
        )


@dataclass(frozen=True)
class Address:
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "US"
    instructions: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "country": self.country,
            "instructions": self.instructions,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Address":
        return cls(
            street=data["street"],
            city=data["city"],
            state=data["state"],
            zip_code=data["zip_code"],
            country=data.get("country") or "US",
            instructions=data.get("instructions"),
        )


@dataclass(frozen=True)
class LineItem:
    """
    A booked service with its unit price frozen at booking time.

    price_at_booking never follows later catalog changes.
    """
    service_name: str
    quantity: int
    price_at_booking: Decimal
    duration: int
    category: str

    def to_dict(self) -> dict:
        return {
            "service_name": self.service_name,
            "quantity": self.quantity,
            "price_at_booking": str(self.price_at_booking),
            "duration": self.duration,
            "category": self.category,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            service_name=data["service_name"],
            quantity=int(data["quantity"]),
            price_at_booking=Decimal(str(data["price_at_booking"])),
            duration=int(data["duration"]),
            category=data["category"],
        )


@dataclass
class PaymentRecord:
    status: PaymentStatus = PaymentStatus.PENDING
    intent_ref: Optional[str] = None
    paid_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    refunded_amount: Optional[Decimal] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "intent_ref": self.intent_ref,
            "paid_at": _iso(self.paid_at),
            "refunded_at": _iso(self.refunded_at),
            "refunded_amount": str(self.refunded_amount) if self.refunded_amount is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "PaymentRecord":
        if not data:
            return cls()
        refunded = data.get("refunded_amount")
        return cls(
            status=PaymentStatus(data.get("status") or PaymentStatus.PENDING.value),
            intent_ref=data.get("intent_ref"),
            paid_at=_parse_dt(data.get("paid_at")),
            refunded_at=_parse_dt(data.get("refunded_at")),
            refunded_amount=Decimal(str(refunded)) if refunded is not None else None,
        )


@dataclass(frozen=True)
class RefundDecision:
    """Advisory refund data handed to the payment collaborator."""
    tier: RefundTier
    percentage: Decimal
    amount: Decimal
    hours_before: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "tier": self.tier.value,
            "percentage": str(self.percentage),
            "amount": str(self.amount),
            "hours_before": self.hours_before,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RefundDecision":
        return cls(
            tier=RefundTier(data["tier"]),
            percentage=Decimal(str(data["percentage"])),
            amount=Decimal(str(data["amount"])),
            hours_before=data.get("hours_before"),
        )


# ============================================================================
# RESCHEDULE OFFER (tagged variant)
# ============================================================================

@dataclass(frozen=True)
class NoOffer:
    kind: ClassVar[str] = "none"

    def to_dict(self) -> dict:
        return {"kind": self.kind}


@dataclass(frozen=True)
class OfferOpen:
    """Admin cancelled and offered a rebooking; customer has not chosen yet."""
    offered_at: datetime
    kind: ClassVar[str] = "offered"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "offered_at": _iso(self.offered_at)}


@dataclass(frozen=True)
class AwaitingApproval:
    """Customer picked a new slot; admin has to confirm it."""
    offered_at: datetime
    new_date: date
    new_time: str
    requested_at: datetime
    kind: ClassVar[str] = "awaiting_approval"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "offered_at": _iso(self.offered_at),
            "new_date": self.new_date.isoformat(),
            "new_time": self.new_time,
            "requested_at": _iso(self.requested_at),
        }


@dataclass(frozen=True)
class RescheduleAccepted:
    new_date: date
    new_time: str
    accepted_at: datetime
    kind: ClassVar[str] = "accepted"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "new_date": self.new_date.isoformat(),
            "new_time": self.new_time,
            "accepted_at": _iso(self.accepted_at),
        }


@dataclass(frozen=True)
class RefundClaimed:
    """Customer took the refund instead of rebooking."""
    claimed_at: datetime
    kind: ClassVar[str] = "refund_claimed"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "claimed_at": _iso(self.claimed_at)}


RescheduleOffer = Union[NoOffer, OfferOpen, AwaitingApproval, RescheduleAccepted, RefundClaimed]


def reschedule_from_dict(data: Optional[dict]) -> RescheduleOffer:
    kind = (data or {}).get("kind", NoOffer.kind)
    if kind == OfferOpen.kind:
        return OfferOpen(offered_at=_parse_dt(data["offered_at"]))
    if kind == AwaitingApproval.kind:
        return AwaitingApproval(
            offered_at=_parse_dt(data["offered_at"]),
            new_date=date.fromisoformat(data["new_date"]),
            new_time=data["new_time"],
            requested_at=_parse_dt(data["requested_at"]),
        )
    if kind == RescheduleAccepted.kind:
        return RescheduleAccepted(
            new_date=date.fromisoformat(data["new_date"]),
            new_time=data["new_time"],
            accepted_at=_parse_dt(data["accepted_at"]),
        )
    if kind == RefundClaimed.kind:
        return RefundClaimed(claimed_at=_parse_dt(data["claimed_at"]))
    return NoOffer()


@dataclass(frozen=True)
class Cancellation:
    """
    Why and how a booking was cancelled.

    refund is None while a reschedule offer is open: the customer either
    claims the full refund or rebooks, never both.
    """
    reason: str
    cancelled_at: datetime
    cancelled_by: Actor
    refund: Optional[RefundDecision] = None
    reschedule: RescheduleOffer = field(default_factory=NoOffer)

    def to_dict(self) -> dict:
        return {
            "reason": self.reason,
            "cancelled_at": _iso(self.cancelled_at),
            "cancelled_by": self.cancelled_by.value,
            "refund": self.refund.to_dict() if self.refund else None,
            "reschedule": self.reschedule.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Cancellation"]:
        if not data:
            return None
        return cls(
            reason=data["reason"],
            cancelled_at=_parse_dt(data["cancelled_at"]),
            cancelled_by=Actor(data["cancelled_by"]),
            refund=RefundDecision.from_dict(data["refund"]) if data.get("refund") else None,
            reschedule=reschedule_from_dict(data.get("reschedule")),
        )


# ============================================================================
# AGGREGATES
# ============================================================================

@dataclass
class Booking:
    user_id: str
    line_items: list[LineItem]
    vehicle: Vehicle
    address: Address
    scheduled_date: date
    scheduled_time: str
    duration: int
    frequency: Frequency
    subtotal: Decimal
    frequency_discount: Decimal
    discount_amount: Decimal
    tax: Decimal
    total_amount: Decimal
    status: BookingStatus = BookingStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    payment: PaymentRecord = field(default_factory=PaymentRecord)
    promo_code: Optional[str] = None
    special_instructions: Optional[str] = None
    subscription_id: Optional[str] = None
    cancellation: Optional[Cancellation] = None
    original_scheduled_date: Optional[date] = None
    original_scheduled_time: Optional[str] = None
    admin_notes: list[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    completion_notes: Optional[str] = None
    rating: Optional[int] = None
    review: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def reschedule_offered(self) -> bool:
        if self.cancellation is None:
            return False
        return isinstance(self.cancellation.reschedule, (OfferOpen, AwaitingApproval))

    @property
    def reschedule_accepted(self) -> bool:
        if self.cancellation is None:
            return False
        return isinstance(self.cancellation.reschedule, RescheduleAccepted)

    @property
    def awaiting_reschedule_approval(self) -> bool:
        return self.cancellation is not None and isinstance(
            self.cancellation.reschedule, AwaitingApproval
        )

    @property
    def end_time(self) -> str:
        start = datetime.combine(self.scheduled_date, parse_time_of_day(self.scheduled_time))
        return (start + timedelta(minutes=self.duration)).strftime("%H:%M")

    def scheduled_at(self, tz: ZoneInfo) -> datetime:
        """Scheduled start as an aware datetime in the business timezone."""
        return datetime.combine(
            self.scheduled_date, parse_time_of_day(self.scheduled_time)
        ).replace(tzinfo=tz)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value,
            "services": [item.to_dict() for item in self.line_items],
            "vehicle": self.vehicle.to_dict(),
            "address": self.address.to_dict(),
            "scheduled_date": self.scheduled_date.isoformat(),
            "scheduled_time": self.scheduled_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "frequency": self.frequency.value,
            "subtotal": float(self.subtotal),
            "frequency_discount": float(self.frequency_discount),
            "promo_code": self.promo_code,
            "discount_amount": float(self.discount_amount),
            "tax": float(self.tax),
            "total_amount": float(self.total_amount),
            "payment": self.payment.to_dict(),
            "special_instructions": self.special_instructions,
            "subscription_id": self.subscription_id,
            "cancellation": self.cancellation.to_dict() if self.cancellation else None,
            "reschedule_offered": self.reschedule_offered,
            "reschedule_accepted": self.reschedule_accepted,
            "original_scheduled_date": (
                self.original_scheduled_date.isoformat() if self.original_scheduled_date else None
            ),
            "original_scheduled_time": self.original_scheduled_time,
            "admin_notes": list(self.admin_notes),
            "completed_at": _iso(self.completed_at),
            "completion_notes": self.completion_notes,
            "rating": self.rating,
            "review": self.review,
            "reviewed_at": _iso(self.reviewed_at),
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class Subscription:
    user_id: str
    services: list[CartItem]
    addons: list[CartItem]
    vehicle: Vehicle
    address: Address
    scheduled_time: str
    frequency: Frequency
    start_date: date
    next_due_date: date
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    special_instructions: Optional[str] = None
    occurrences: int = 0
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value,
            "services": [item.to_dict() for item in self.services],
            "addons": [item.to_dict() for item in self.addons],
            "vehicle": self.vehicle.to_dict(),
            "address": self.address.to_dict(),
            "scheduled_time": self.scheduled_time,
            "frequency": self.frequency.value,
            "start_date": self.start_date.isoformat(),
            "next_due_date": self.next_due_date.isoformat(),
            "occurrences": self.occurrences,
            "special_instructions": self.special_instructions,
            "cancelled_at": _iso(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


# ============================================================================
# HELPERS
# ============================================================================

def parse_time_of_day(value: str) -> time:
    """Parse "HH:MM" (24h). Raises ValueError on anything else."""
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def parse_date(value: date | str) -> date:
    """Accept a date or an ISO "YYYY-MM-DD" string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date: {value}", {"date": str(value)})


def parse_slot_time(value: str) -> str:
    """Validate "HH:MM" and return it zero-padded."""
    try:
        return parse_time_of_day(value).strftime("%H:%M")
    except (AttributeError, TypeError, ValueError):
        raise ValidationError(f"Invalid time: {value}, expected HH:MM", {"time": str(value)})
