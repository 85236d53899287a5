"""
HTTP API

Thin FastAPI layer over the engine. Every response uses the envelope from
core/responses.py; engine errors are rendered by the handler in main.py.

Endpoints:
    Pricing:        /pricing/*, /promo-codes/validate
    Customer:       /bookings/*, /subscriptions/*
    Admin:          /admin/bookings/*, /admin/subscriptions/*
"""

import logging
import re
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator

from .booking_engine import BookingRequest
from .core.responses import success_response
from .dependencies import Services, get_services, get_user_id
from .domain import (
    Address,
    BookingStatus,
    CartItem,
    Frequency,
    RECURRING_FREQUENCIES,
    Vehicle,
    VehicleType,
)
from .subscriptions import SubscriptionRequest

logger = logging.getLogger(__name__)

TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ============================================================================
# REQUEST MODELS
# ============================================================================

class CartItemIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(default=1, ge=1, le=10)

    def to_domain(self) -> CartItem:
        return CartItem(name=self.name, quantity=self.quantity)


class VehicleIn(BaseModel):
    make: str = Field(..., min_length=1, max_length=50)
    model: str = Field(..., min_length=1, max_length=50)
    year: int = Field(..., ge=1900, le=2100)
    color: str = Field(..., min_length=1, max_length=30)
    type: VehicleType = VehicleType.SEDAN
    license_plate: Optional[str] = Field(default=None, max_length=20)

    def to_domain(self) -> Vehicle:
        return Vehicle(**self.model_dump())


class AddressIn(BaseModel):
    street: str = Field(..., min_length=1, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=50)
    zip_code: str = Field(..., min_length=3, max_length=12)
    country: str = "US"
    instructions: Optional[str] = Field(default=None, max_length=500)

    def to_domain(self) -> Address:
        return Address(**self.model_dump())


def _check_time(v: str) -> str:
    if not TIME_PATTERN.match(v):
        raise ValueError("Time must be HH:MM (24h)")
    return v


class PriceQuoteRequest(BaseModel):
    services: list[CartItemIn] = Field(..., min_length=1)
    addons: list[CartItemIn] = Field(default_factory=list)
    frequency: Frequency = Frequency.ONE_TIME
    promo_code: Optional[str] = None


class PromoValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    subtotal: Decimal = Field(..., ge=0)


class CreateBookingRequest(BaseModel):
    services: list[CartItemIn] = Field(..., min_length=1)
    addons: list[CartItemIn] = Field(default_factory=list)
    vehicle: VehicleIn
    address: AddressIn
    scheduled_date: date
    scheduled_time: str
    frequency: Frequency = Frequency.ONE_TIME
    promo_code: Optional[str] = Field(default=None, max_length=50)
    special_instructions: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("scheduled_time")
    @classmethod
    def validate_scheduled_time(cls, v: str) -> str:
        return _check_time(v)

    def to_domain(self) -> BookingRequest:
        return BookingRequest(
            services=[item.to_domain() for item in self.services],
            addons=[item.to_domain() for item in self.addons],
            vehicle=self.vehicle.to_domain(),
            address=self.address.to_domain(),
            scheduled_date=self.scheduled_date,
            scheduled_time=self.scheduled_time,
            frequency=self.frequency,
            promo_code=self.promo_code,
            special_instructions=self.special_instructions,
        )


class ReasonRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AdminCancelRequest(ReasonRequest):
    offer_reschedule: bool = True


class AcceptRequest(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=500)


class CompleteRequest(BaseModel):
    completion_notes: Optional[str] = Field(default=None, max_length=1000)


class RescheduleRequest(BaseModel):
    new_date: date
    new_time: str

    @field_validator("new_time")
    @classmethod
    def validate_new_time(cls, v: str) -> str:
        return _check_time(v)


class VehicleUpdateIn(BaseModel):
    make: Optional[str] = Field(default=None, min_length=1, max_length=50)
    model: Optional[str] = Field(default=None, min_length=1, max_length=50)
    year: Optional[int] = Field(default=None, ge=1900, le=2100)
    color: Optional[str] = Field(default=None, min_length=1, max_length=30)
    type: Optional[VehicleType] = None
    license_plate: Optional[str] = Field(default=None, max_length=20)


class AddressUpdateIn(BaseModel):
    street: Optional[str] = Field(default=None, min_length=1, max_length=255)
    city: Optional[str] = Field(default=None, min_length=1, max_length=100)
    state: Optional[str] = Field(default=None, min_length=1, max_length=50)
    zip_code: Optional[str] = Field(default=None, min_length=3, max_length=12)
    country: Optional[str] = None
    instructions: Optional[str] = Field(default=None, max_length=500)


class UpdateBookingRequest(BaseModel):
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    vehicle: Optional[VehicleUpdateIn] = None
    address: Optional[AddressUpdateIn] = None
    special_instructions: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("scheduled_time")
    @classmethod
    def validate_scheduled_time(cls, v: Optional[str]) -> Optional[str]:
        return _check_time(v) if v is not None else v


class DeclineRescheduleRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class ReviewRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(default=None, max_length=1000)


class MarkPaidRequest(BaseModel):
    intent_ref: str = Field(..., min_length=1)


class CreateSubscriptionRequest(BaseModel):
    services: list[CartItemIn] = Field(..., min_length=1)
    addons: list[CartItemIn] = Field(default_factory=list)
    vehicle: VehicleIn
    address: AddressIn
    start_date: date
    scheduled_time: str
    frequency: Frequency
    special_instructions: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("scheduled_time")
    @classmethod
    def validate_scheduled_time(cls, v: str) -> str:
        return _check_time(v)

    @field_validator("frequency")
    @classmethod
    def validate_frequency(cls, v: Frequency) -> Frequency:
        if v not in RECURRING_FREQUENCIES:
            raise ValueError("Subscriptions must be weekly, bi-weekly or monthly")
        return v

    def to_domain(self) -> SubscriptionRequest:
        return SubscriptionRequest(
            services=[item.to_domain() for item in self.services],
            addons=[item.to_domain() for item in self.addons],
            vehicle=self.vehicle.to_domain(),
            address=self.address.to_domain(),
            start_date=self.start_date,
            scheduled_time=self.scheduled_time,
            frequency=self.frequency,
            special_instructions=self.special_instructions,
        )


class CancelSubscriptionRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


# ============================================================================
# PRICING
# ============================================================================

pricing_router = APIRouter(tags=["pricing"])


@pricing_router.get("/pricing/services")
async def get_service_menu(
    vehicle_type: Optional[VehicleType] = None,
    services: Services = Depends(get_services),
):
    return success_response(services.pricing.service_menu(vehicle_type))


@pricing_router.get("/pricing/available-services")
async def get_available_services(services: Services = Depends(get_services)):
    return success_response(services.pricing.catalog.get_available_services())


@pricing_router.get("/pricing/seasonal/{service_name}")
async def get_seasonal_price(
    service_name: str,
    on: Optional[date] = None,
    services: Services = Depends(get_services),
):
    item = services.pricing.catalog.require(service_name)
    on = on or services.pricing.today()
    return success_response({
        "service_name": item.name,
        "date": on.isoformat(),
        "season": "peak" if services.pricing.is_peak(on) else "off-peak",
        "base_price": float(item.base_price),
        "seasonal_price": float(services.pricing.calculate_seasonal_price(item.name, on)),
    })


@pricing_router.post("/pricing/calculate")
async def calculate_price(
    payload: PriceQuoteRequest,
    services: Services = Depends(get_services),
):
    breakdown = services.pricing.quote(
        [item.to_domain() for item in payload.services],
        [item.to_domain() for item in payload.addons],
        payload.frequency,
        promo_code=payload.promo_code,
    )
    return success_response(breakdown.to_dict())


@pricing_router.post("/promo-codes/validate")
async def validate_promo_code(
    payload: PromoValidateRequest,
    services: Services = Depends(get_services),
):
    result = services.pricing.validate_promo(payload.code, payload.subtotal)
    return success_response(result.to_dict())


# ============================================================================
# CUSTOMER BOOKINGS
# ============================================================================

bookings_router = APIRouter(prefix="/bookings", tags=["bookings"])


@bookings_router.get("/available-slots")
async def get_available_slots(
    date: str = Query(..., description="YYYY-MM-DD"),
    duration: Optional[int] = Query(default=None, ge=15, le=600),
    services: Services = Depends(get_services),
):
    slots = await services.slots.get_available_slots(date, duration)
    return success_response({"date": date, "slots": slots})


@bookings_router.post("", status_code=201)
async def create_booking(
    payload: CreateBookingRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.create_booking(user_id, payload.to_domain())
    return success_response(booking.to_dict())


@bookings_router.get("")
async def list_my_bookings(
    status: Optional[BookingStatus] = None,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    bookings = await services.bookings.list_user_bookings(user_id, status)
    return success_response([booking.to_dict() for booking in bookings])


@bookings_router.get("/{booking_id}")
async def get_booking(
    booking_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.get_booking(booking_id, user_id=user_id)
    return success_response(booking.to_dict())


@bookings_router.put("/{booking_id}")
async def update_booking(
    booking_id: str,
    payload: UpdateBookingRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.update_booking(
        booking_id,
        user_id,
        scheduled_date=payload.scheduled_date,
        scheduled_time=payload.scheduled_time,
        vehicle=payload.vehicle.model_dump(exclude_none=True) if payload.vehicle else None,
        address=payload.address.model_dump(exclude_none=True) if payload.address else None,
        special_instructions=payload.special_instructions,
    )
    return success_response(booking.to_dict())


@bookings_router.post("/{booking_id}/cancel")
async def cancel_booking(
    booking_id: str,
    payload: ReasonRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.cancel_booking(booking_id, user_id, payload.reason)
    return success_response(booking.to_dict())


@bookings_router.get("/{booking_id}/refund")
async def get_refund(
    booking_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.get_booking(booking_id, user_id=user_id)
    refund = services.bookings.refund_for(booking)
    return success_response(refund.to_dict() if refund else None)


@bookings_router.post("/{booking_id}/claim-refund")
async def claim_refund(
    booking_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.claim_refund(booking_id, user_id)
    return success_response(booking.to_dict())


@bookings_router.get("/{booking_id}/reschedule-slots")
async def get_reschedule_slots(
    booking_id: str,
    date: str = Query(..., description="YYYY-MM-DD"),
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    slots = await services.slots.get_reschedule_slots(booking_id, date, user_id=user_id)
    return success_response({"date": date, "slots": slots})


@bookings_router.post("/{booking_id}/reschedule")
async def reschedule_booking(
    booking_id: str,
    payload: RescheduleRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.reschedule_booking(
        booking_id, user_id, payload.new_date, payload.new_time
    )
    return success_response(booking.to_dict())


@bookings_router.post("/{booking_id}/review")
async def add_review(
    booking_id: str,
    payload: ReviewRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.add_review(booking_id, user_id, payload.rating, payload.review)
    return success_response(booking.to_dict())


@bookings_router.post("/{booking_id}/payment-intent")
async def create_payment_intent(
    booking_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.create_payment_intent(booking_id, user_id=user_id)
    return success_response({
        "booking_id": booking.id,
        "intent_ref": booking.payment.intent_ref,
        "amount": float(booking.total_amount),
    })


# ============================================================================
# ADMIN
# ============================================================================

admin_router = APIRouter(prefix="/admin", tags=["admin"])


@admin_router.get("/bookings")
async def admin_list_bookings(
    status: Optional[BookingStatus] = None,
    date: Optional[str] = Query(default=None, description="YYYY-MM-DD"),
    _: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    bookings = await services.bookings.list_bookings(status=status, scheduled_date=date)
    return success_response([booking.to_dict() for booking in bookings])


@admin_router.get("/bookings/stats")
async def admin_booking_stats(
    _: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    return success_response(await services.bookings.booking_stats())


@admin_router.get("/bookings/{booking_id}")
async def admin_get_booking(
    booking_id: str,
    _: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.get_booking(booking_id)
    return success_response(booking.to_dict())


@admin_router.post("/bookings/{booking_id}/accept")
async def admin_accept_booking(
    booking_id: str,
    payload: Optional[AcceptRequest] = None,
    admin_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    notes = payload.notes if payload else None
    booking = await services.bookings.accept_booking(booking_id, admin_id, notes)
    return success_response(booking.to_dict())


@admin_router.post("/bookings/{booking_id}/reject")
async def admin_reject_booking(
    booking_id: str,
    payload: ReasonRequest,
    admin_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.reject_booking(booking_id, admin_id, payload.reason)
    return success_response(booking.to_dict())


@admin_router.post("/bookings/{booking_id}/cancel")
async def admin_cancel_booking(
    booking_id: str,
    payload: AdminCancelRequest,
    admin_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.admin_cancel_booking(
        booking_id, admin_id, payload.reason, offer_reschedule=payload.offer_reschedule
    )
    return success_response(booking.to_dict())


@admin_router.post("/bookings/{booking_id}/confirm-reschedule")
async def admin_confirm_reschedule(
    booking_id: str,
    admin_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.confirm_reschedule(booking_id, admin_id)
    return success_response(booking.to_dict())


@admin_router.post("/bookings/{booking_id}/decline-reschedule")
async def admin_decline_reschedule(
    booking_id: str,
    payload: DeclineRescheduleRequest,
    admin_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.decline_reschedule(booking_id, admin_id, payload.reason)
    return success_response(booking.to_dict())


@admin_router.post("/bookings/{booking_id}/start")
async def admin_start_booking(
    booking_id: str,
    admin_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.start_booking(booking_id, admin_id)
    return success_response(booking.to_dict())


@admin_router.post("/bookings/{booking_id}/complete")
async def admin_complete_booking(
    booking_id: str,
    payload: Optional[CompleteRequest] = None,
    admin_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    notes = payload.completion_notes if payload else None
    booking = await services.bookings.complete_booking(booking_id, admin_id, notes)
    return success_response(booking.to_dict())


@admin_router.post("/bookings/{booking_id}/no-show")
async def admin_mark_no_show(
    booking_id: str,
    admin_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.mark_no_show(booking_id, admin_id)
    return success_response(booking.to_dict())


@admin_router.post("/bookings/{booking_id}/mark-paid")
async def admin_mark_paid(
    booking_id: str,
    payload: MarkPaidRequest,
    _: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    booking = await services.bookings.mark_paid(booking_id, payload.intent_ref)
    return success_response(booking.to_dict())


@admin_router.post("/subscriptions/process-due")
async def admin_process_due_services(
    _: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    results = await services.subscriptions.process_due_services()
    logger.info(f"Due-service sweep finished: {len(results)} subscriptions processed")
    return success_response([result.to_dict() for result in results])


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

subscriptions_router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@subscriptions_router.post("", status_code=201)
async def create_subscription(
    payload: CreateSubscriptionRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    subscription = await services.subscriptions.create_subscription(user_id, payload.to_domain())
    return success_response(subscription.to_dict())


@subscriptions_router.get("")
async def list_my_subscriptions(
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    subscriptions = await services.subscriptions.list_user_subscriptions(user_id)
    return success_response([subscription.to_dict() for subscription in subscriptions])


@subscriptions_router.get("/{subscription_id}")
async def get_subscription(
    subscription_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    subscription = await services.subscriptions.get_subscription(subscription_id, user_id)
    return success_response(subscription.to_dict())


@subscriptions_router.post("/{subscription_id}/pause")
async def pause_subscription(
    subscription_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    subscription = await services.subscriptions.pause_subscription(subscription_id, user_id)
    return success_response(subscription.to_dict())


@subscriptions_router.post("/{subscription_id}/resume")
async def resume_subscription(
    subscription_id: str,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    subscription = await services.subscriptions.resume_subscription(subscription_id, user_id)
    return success_response(subscription.to_dict())


@subscriptions_router.post("/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str,
    payload: Optional[CancelSubscriptionRequest] = None,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    reason = payload.reason if payload else None
    subscription = await services.subscriptions.cancel_subscription(subscription_id, user_id, reason)
    return success_response(subscription.to_dict())


ROUTERS = (pricing_router, bookings_router, admin_router, subscriptions_router)
