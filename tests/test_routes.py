"""
HTTP API tests: response envelope, error mapping and a full admin flow.
"""

import pytest

CUSTOMER = {"X-User-Id": "user-1"}
OTHER = {"X-User-Id": "user-2"}
ADMIN = {"X-User-Id": "admin-1"}


def booking_payload(**overrides):
    payload = {
        "services": [{"name": "Interior Only"}],
        "addons": [],
        "vehicle": {"make": "Honda", "model": "Civic", "year": 2021, "color": "Blue", "type": "sedan"},
        "address": {"street": "12 Main St", "city": "Springfield", "state": "NY", "zip_code": "10001"},
        "scheduled_date": "2030-07-15",
        "scheduled_time": "10:00",
    }
    payload.update(overrides)
    return payload


async def create_booking(client, headers=CUSTOMER, **overrides):
    response = await client.post("/bookings", json=booking_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"data": {"status": "ok"}, "status": "success"}


@pytest.mark.asyncio
async def test_service_menu_for_suv(client):
    response = await client.get("/pricing/services", params={"vehicle_type": "suv"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert {item["name"] for item in data["services"]} == {"Interior Only", "Exterior Only", "Full Detail"}
    assert data["addons"]


@pytest.mark.asyncio
async def test_seasonal_price(client):
    response = await client.get("/pricing/seasonal/Full Detail", params={"on": "2030-07-15"})
    data = response.json()["data"]
    assert data["season"] == "peak"
    assert data["base_price"] == 80.0
    assert data["seasonal_price"] == 88.0


@pytest.mark.asyncio
async def test_seasonal_price_unknown_service(client):
    response = await client.get("/pricing/seasonal/Moon Polish")
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_calculate_reports_invalid_promo(client):
    response = await client.post(
        "/pricing/calculate",
        json={"services": [{"name": "Exterior Only"}], "promo_code": "SAVE20"},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["promo_code"] is None
    assert data["promo_discount"] == 0
    assert "Minimum order amount is $100" in data["warnings"]


@pytest.mark.asyncio
async def test_validate_promo(client):
    response = await client.post("/promo-codes/validate", json={"code": "welcome10", "subtotal": "100.00"})
    data = response.json()["data"]
    assert data["valid"] is True
    assert data["discount_amount"] == 10.0
    assert data["final_amount"] == 90.0


@pytest.mark.asyncio
async def test_missing_user_header(client):
    response = await client.get("/bookings")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_and_fetch_booking(client, notifier):
    booking = await create_booking(client)
    assert booking["status"] == "pending"
    assert booking["end_time"] == "12:00"
    assert booking["reschedule_offered"] is False
    assert notifier.templates == ["booking_confirmation"]

    response = await client.get(f"/bookings/{booking['id']}", headers=CUSTOMER)
    assert response.status_code == 200
    assert response.json()["data"]["id"] == booking["id"]

    listed = await client.get("/bookings", headers=CUSTOMER)
    assert [b["id"] for b in listed.json()["data"]] == [booking["id"]]


@pytest.mark.asyncio
async def test_other_users_booking_is_not_found(client):
    booking = await create_booking(client)
    response = await client.get(f"/bookings/{booking['id']}", headers=OTHER)
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_bad_time_is_validation_error(client):
    response = await client.post("/bookings", json=booking_payload(scheduled_time="25:00"), headers=CUSTOMER)
    assert response.status_code == 422
    body = response.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_unknown_service_is_validation_error(client):
    response = await client.post(
        "/bookings", json=booking_payload(services=[{"name": "Moon Polish"}]), headers=CUSTOMER
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_accept_after_reject_conflicts(client):
    booking = await create_booking(client)
    rejected = await client.post(
        f"/admin/bookings/{booking['id']}/reject", json={"reason": "Fully booked"}, headers=ADMIN
    )
    assert rejected.json()["data"]["status"] == "cancelled"

    response = await client.post(f"/admin/bookings/{booking['id']}/accept", headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "STATE_CONFLICT"


@pytest.mark.asyncio
async def test_reschedule_flow(client):
    booking = await create_booking(client)
    booking_id = booking["id"]

    await client.post(f"/admin/bookings/{booking_id}/accept", json={"notes": "ok"}, headers=ADMIN)
    cancelled = await client.post(
        f"/admin/bookings/{booking_id}/cancel", json={"reason": "Staff shortage"}, headers=ADMIN
    )
    assert cancelled.json()["data"]["reschedule_offered"] is True

    slots = await client.get(
        f"/bookings/{booking_id}/reschedule-slots", params={"date": "2030-07-16"}, headers=CUSTOMER
    )
    assert "14:00" in slots.json()["data"]["slots"]

    requested = await client.post(
        f"/bookings/{booking_id}/reschedule",
        json={"new_date": "2030-07-16", "new_time": "14:00"},
        headers=CUSTOMER,
    )
    assert requested.status_code == 200
    assert requested.json()["data"]["status"] == "cancelled"

    declined = await client.post(
        f"/admin/bookings/{booking_id}/decline-reschedule", json={"reason": "Bay closed"}, headers=ADMIN
    )
    assert declined.status_code == 200
    assert declined.json()["data"]["reschedule_offered"] is True

    again = await client.post(
        f"/admin/bookings/{booking_id}/decline-reschedule", json={}, headers=ADMIN
    )
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "POLICY_VIOLATION"

    await client.post(
        f"/bookings/{booking_id}/reschedule",
        json={"new_date": "2030-07-16", "new_time": "14:00"},
        headers=CUSTOMER,
    )

    confirmed = await client.post(f"/admin/bookings/{booking_id}/confirm-reschedule", headers=ADMIN)
    data = confirmed.json()["data"]
    assert data["status"] == "confirmed"
    assert data["scheduled_date"] == "2030-07-16"
    assert data["original_scheduled_date"] == "2030-07-15"
    assert data["reschedule_accepted"] is True


@pytest.mark.asyncio
async def test_complete_review_and_stats(client):
    booking = await create_booking(client)
    booking_id = booking["id"]

    await client.post(f"/admin/bookings/{booking_id}/accept", headers=ADMIN)
    await client.post(f"/admin/bookings/{booking_id}/start", headers=ADMIN)
    completed = await client.post(
        f"/admin/bookings/{booking_id}/complete", json={"completion_notes": "Done"}, headers=ADMIN
    )
    assert completed.json()["data"]["status"] == "completed"

    review = await client.post(f"/bookings/{booking_id}/review", json={"rating": 5}, headers=CUSTOMER)
    assert review.json()["data"]["rating"] == 5

    again = await client.post(f"/bookings/{booking_id}/review", json={"rating": 4}, headers=CUSTOMER)
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "POLICY_VIOLATION"

    stats = (await client.get("/admin/bookings/stats", headers=ADMIN)).json()["data"]
    assert stats["total"] == 1
    assert stats["by_status"]["completed"] == 1
    assert stats["completed_revenue"] == booking["total_amount"]


@pytest.mark.asyncio
async def test_payment_intent_and_refund_lookup(client, gateway):
    booking = await create_booking(client)
    booking_id = booking["id"]

    intent = (await client.post(f"/bookings/{booking_id}/payment-intent", headers=CUSTOMER)).json()["data"]
    assert intent["intent_ref"] == "pi_test_1"

    paid = await client.post(
        f"/admin/bookings/{booking_id}/mark-paid", json={"intent_ref": "pi_test_1"}, headers=ADMIN
    )
    assert paid.json()["data"]["payment"]["status"] == "paid"

    await client.post(f"/bookings/{booking_id}/cancel", json={"reason": "Plans changed"}, headers=CUSTOMER)
    refund = (await client.get(f"/bookings/{booking_id}/refund", headers=CUSTOMER)).json()["data"]
    assert refund["tier"] == "full"
    assert gateway.refunds[0][0] == "pi_test_1"


@pytest.mark.asyncio
async def test_update_booking(client):
    booking = await create_booking(client)
    booking_id = booking["id"]

    response = await client.put(
        f"/bookings/{booking_id}",
        json={
            "scheduled_date": "2030-07-16",
            "scheduled_time": "13:00",
            "vehicle": {"color": "Red"},
            "special_instructions": "Park on the street",
        },
        headers=CUSTOMER,
    )
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["scheduled_date"] == "2030-07-16"
    assert data["scheduled_time"] == "13:00"
    assert data["vehicle"]["color"] == "Red"
    assert data["vehicle"]["make"] == "Honda"
    assert data["special_instructions"] == "Park on the street"
    assert data["total_amount"] == booking["total_amount"]

    bad_time = await client.put(f"/bookings/{booking_id}", json={"scheduled_time": "1pm"}, headers=CUSTOMER)
    assert bad_time.status_code == 422

    not_mine = await client.put(f"/bookings/{booking_id}", json={"special_instructions": "Hi"}, headers=OTHER)
    assert not_mine.status_code == 404

    await client.post(f"/bookings/{booking_id}/cancel", json={"reason": "Plans changed"}, headers=CUSTOMER)
    locked = await client.put(f"/bookings/{booking_id}", json={"special_instructions": "Hi"}, headers=CUSTOMER)
    assert locked.status_code == 409
    assert locked.json()["error"]["code"] == "POLICY_VIOLATION"


@pytest.mark.asyncio
async def test_late_payment_on_cancelled_booking_is_refunded(client, gateway):
    booking = await create_booking(client)
    booking_id = booking["id"]

    await client.post(f"/bookings/{booking_id}/payment-intent", headers=CUSTOMER)
    await client.post(f"/bookings/{booking_id}/cancel", json={"reason": "Plans changed"}, headers=CUSTOMER)

    paid = await client.post(
        f"/admin/bookings/{booking_id}/mark-paid", json={"intent_ref": "pi_test_1"}, headers=ADMIN
    )
    assert paid.json()["data"]["payment"]["status"] == "refunded"
    assert [ref for ref, _ in gateway.refunds] == ["pi_test_1"]


@pytest.mark.asyncio
async def test_available_slots_bad_date(client):
    response = await client.get("/bookings/available-slots", params={"date": "15-07-2030"})
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_one_time_subscription_rejected(client):
    payload = booking_payload()
    payload.pop("scheduled_date")
    payload.update({"start_date": "2030-07-15", "frequency": "one-time"})

    response = await client.post("/subscriptions", json=payload, headers=CUSTOMER)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_subscription_lifecycle(client):
    payload = booking_payload()
    payload.pop("scheduled_date")
    payload.update({"start_date": "2030-07-15", "frequency": "bi-weekly"})

    created = await client.post("/subscriptions", json=payload, headers=CUSTOMER)
    assert created.status_code == 201
    subscription = created.json()["data"]
    assert subscription["next_due_date"] == "2030-07-29"

    paused = await client.post(f"/subscriptions/{subscription['id']}/pause", headers=CUSTOMER)
    assert paused.json()["data"]["status"] == "paused"

    hidden = await client.get(f"/subscriptions/{subscription['id']}", headers=OTHER)
    assert hidden.status_code == 404

    sweep = await client.post("/admin/subscriptions/process-due", headers=ADMIN)
    assert sweep.json()["data"] == []

    cancelled = await client.post(
        f"/subscriptions/{subscription['id']}/cancel", json={"reason": "Moving"}, headers=CUSTOMER
    )
    assert cancelled.json()["data"]["status"] == "cancelled"
