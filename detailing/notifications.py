"""
Booking Notifications

Outbound messages for booking lifecycle events. Delivery (email, SMS, push)
is external; the engine only names a template and hands over a payload.

Notifications are sent after the state change is committed.
Failures are logged but never roll a transition back.
"""

import logging
from typing import Any, Protocol

from .domain import Booking, Subscription

logger = logging.getLogger(__name__)

BOOKING_CONFIRMATION = "booking_confirmation"
BOOKING_ACCEPTED = "booking_accepted"
BOOKING_CANCELLATION = "booking_cancellation"
ADMIN_CANCELLATION_RESCHEDULE = "admin_cancellation_reschedule"
RESCHEDULE_PENDING = "reschedule_pending"
RESCHEDULE_CONFIRMED = "reschedule_confirmed"
RESCHEDULE_DECLINED = "reschedule_declined"
BOOKING_COMPLETION = "booking_completion"
REVIEW_REQUEST = "review_request"

SUBSCRIPTION_PAUSED = "subscription_paused"
SUBSCRIPTION_RESUMED = "subscription_resumed"
SUBSCRIPTION_CANCELLED = "subscription_cancelled"


class Notifier(Protocol):
    async def notify(self, template_name: str, payload: dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """Default notifier: writes the message to the log instead of sending it."""

    async def notify(self, template_name: str, payload: dict[str, Any]) -> None:
        subject = payload.get("booking_id") or payload.get("subscription_id")
        logger.info(
            f"[NOTIFICATION] {template_name} for user {payload.get('user_id')}: "
            f"{subject} status={payload.get('status')}"
        )


def booking_payload(booking: Booking, **extra: Any) -> dict[str, Any]:
    payload = {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "status": booking.status.value,
        "scheduled_date": booking.scheduled_date.isoformat(),
        "scheduled_time": booking.scheduled_time,
        "services": [item.service_name for item in booking.line_items],
        "total_amount": str(booking.total_amount),
    }
    payload.update(extra)
    return payload


def subscription_payload(subscription: Subscription, **extra: Any) -> dict[str, Any]:
    payload = {
        "subscription_id": subscription.id,
        "user_id": subscription.user_id,
        "status": subscription.status.value,
        "frequency": subscription.frequency.value,
        "next_due_date": subscription.next_due_date.isoformat(),
    }
    payload.update(extra)
    return payload


async def send_notification(notifier: Notifier, template_name: str, payload: dict[str, Any]) -> bool:
    """
    Deliver one notification.

    Returns:
        True if the notifier accepted it, False if it raised
    """
    try:
        await notifier.notify(template_name, payload)
        return True
    except Exception as e:
        logger.error(f"Failed to send {template_name} notification: {e}")
        return False
