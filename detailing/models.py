"""
Detailing Persistence Models

SQLAlchemy models backing the booking engine. The engine never touches these
directly; repository.py maps them to the dataclasses in domain.py.

Tables:
    - bookings: one row per appointment, with a frozen pricing snapshot
    - subscriptions: recurring booking templates
    - subscription_runs: one row per (subscription, due date) that produced
      a booking; the unique constraint makes the due-service sweep idempotent

Every mutable row carries a version counter. Updates are compare-and-swap on
(id, version, status); see repository.py.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Enum as SAEnum,
    JSON,
)
from sqlalchemy.orm import Mapped, mapped_column

from .core.db import Base
from .domain import BookingStatus, Frequency, SubscriptionStatus


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum(enum_cls, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda x: [e.value for e in x],
    )


class SubscriptionRecord(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[SubscriptionStatus] = mapped_column(
        _enum(SubscriptionStatus, "subscription_status"),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )
    frequency: Mapped[Frequency] = mapped_column(_enum(Frequency, "subscription_frequency"), nullable=False)

    # Template cart
    services: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    addons: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    vehicle: Mapped[dict] = mapped_column(JSON, nullable=False)
    address: Mapped[dict] = mapped_column(JSON, nullable=False)
    scheduled_time: Mapped[str] = mapped_column(String(5), nullable=False)
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Schedule
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    next_due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    occurrences: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, onupdate=now_utc, nullable=False
    )


class BookingRecord(Base):
    """
    Booking with a full pricing snapshot.

    line_items hold the unit price at booking time; the amounts below are
    re-derivable from them alone, whatever the catalog says later.
    """
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    subscription_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus, "booking_status"),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )

    # What and where
    line_items: Mapped[list] = mapped_column(JSON, nullable=False)
    vehicle: Mapped[dict] = mapped_column(JSON, nullable=False)
    address: Mapped[dict] = mapped_column(JSON, nullable=False)
    special_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # When
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    scheduled_time: Mapped[str] = mapped_column(String(5), nullable=False)
    duration: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[Frequency] = mapped_column(_enum(Frequency, "booking_frequency"), nullable=False)
    original_scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    original_scheduled_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)

    # Pricing snapshot
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    frequency_discount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    promo_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    tax: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    payment: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    cancellation: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    # Mirrors the requested date of a reschedule awaiting approval so the
    # slot finder can query it without reading JSON.
    reschedule_requested_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)

    admin_notes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Review
    rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    review: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=now_utc, onupdate=now_utc, nullable=False
    )


class SubscriptionRunRecord(Base):
    __tablename__ = "subscription_runs"
    __table_args__ = (
        UniqueConstraint("subscription_id", "due_date", name="uq_subscription_runs_due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[str] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    booking_id: Mapped[str] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=now_utc, nullable=False)
