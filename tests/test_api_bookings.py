import pytest
from datetime import timedelta
from httpx import AsyncClient
from uuid import UUID, uuid4

from app.core.config import settings
from app.core.security import create_access_token
from app.infrastructure.payment_gateway import GatewayPaymentStatus, notification_signature
from support import load_booking

API = "/api/v1"


def booking_payload(provider, slot, booking_date, consultation_type: str = "OFFLINE", duration: int = 60) -> dict:
    return {
        "doctor_id": str(provider.id),
        "schedule_id": str(slot.id),
        "booking_date": booking_date.isoformat(),
        "consultation_type": consultation_type,
        "duration_minutes": duration,
        "notes": "Sakit kepala sejak kemarin",
    }


def signed_notification(order_id: str, transaction_status: str, gross_amount: str = "102500.00") -> dict:
    return {
        "order_id": order_id,
        "status_code": "200",
        "gross_amount": gross_amount,
        "transaction_status": transaction_status,
        "signature_key": notification_signature(order_id, "200", gross_amount, settings.MIDTRANS_SERVER_KEY),
    }


@pytest.mark.integration
class TestProviderEndpoints:
    """Doctor catalog endpoints."""

    async def test_list_providers(self, client: AsyncClient, provider) -> None:
        response = await client.get(f"{API}/providers")

        assert response.status_code == 200
        data = response.json()
        assert [p["id"] for p in data] == [str(provider.id)]

    async def test_provider_detail_includes_schedule(self, client: AsyncClient, provider) -> None:
        response = await client.get(f"{API}/providers/{provider.id}")

        assert response.status_code == 200
        schedules = response.json()["schedules"]
        assert len(schedules) == 1
        assert schedules[0]["day_of_week"] == "MONDAY"
        assert schedules[0]["time_slot"] == "09:00:00"

    async def test_schedules_for_a_day(self, client: AsyncClient, provider) -> None:
        monday = await client.get(f"{API}/providers/{provider.id}/schedules", params={"day": "MONDAY"})
        sunday = await client.get(f"{API}/providers/{provider.id}/schedules", params={"day": "SUNDAY"})

        assert len(monday.json()) == 1
        assert sunday.json() == []

    async def test_unknown_provider(self, client: AsyncClient) -> None:
        response = await client.get(f"{API}/providers/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["error_code"] == "NOT_FOUND_ERROR"


@pytest.mark.bookings
@pytest.mark.integration
class TestBookingEndpoints:
    """Reserve, pay, cancel and report over HTTP."""

    async def test_available_slots(self, client: AsyncClient, provider, next_monday) -> None:
        response = await client.get(
            f"{API}/bookings/available-slots/{provider.id}", params={"date": next_monday.isoformat()}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["day_of_week"] == "MONDAY"
        assert len(data["slots"]) == 1
        assert data["slots"][0]["time_slot"] == "09:00:00"
        assert data["slots"][0]["is_available"] is True

    async def test_available_slots_past_date(self, client: AsyncClient, provider, next_monday) -> None:
        response = await client.get(
            f"{API}/bookings/available-slots/{provider.id}",
            params={"date": (next_monday - timedelta(days=14)).isoformat()},
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "INVALID_DATE"

    async def test_create_booking_requires_token(self, client: AsyncClient, provider, monday_slot, next_monday) -> None:
        response = await client.post(f"{API}/bookings", json=booking_payload(provider, monday_slot, next_monday))

        assert response.status_code == 401

    async def test_invalid_token_rejected(self, client: AsyncClient) -> None:
        response = await client.get(
            f"{API}/bookings/my-bookings", headers={"Authorization": "Bearer not-a-token"}
        )

        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHENTICATION_ERROR"

    async def test_create_booking(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday, user_id, gateway
    ) -> None:
        """Scenario A: one-hour offline visit."""
        response = await authenticated_client.post(
            f"{API}/bookings", json=booking_payload(provider, monday_slot, next_monday)
        )

        assert response.status_code == 201
        data = response.json()
        booking = data["booking"]
        assert booking["user_id"] == str(user_id)
        assert booking["status"] == "PENDING_PAYMENT"
        assert booking["payment_status"] == "PENDING"
        assert booking["consultation_fee"] == 100000
        assert booking["start_time"] == "09:00:00"
        assert booking["end_time"] == "10:00:00"
        assert booking["doctor"]["name"] == provider.name
        assert data["payment"]["amount"] == 102500
        assert data["payment"]["order_id"] == gateway.created[0]
        assert data["payment_error"] is None

    async def test_online_two_hour_booking(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday
    ) -> None:
        """Scenario B: online visit over two slot lengths."""
        response = await authenticated_client.post(
            f"{API}/bookings", json=booking_payload(provider, monday_slot, next_monday, "ONLINE", 120)
        )

        assert response.status_code == 201
        booking = response.json()["booking"]
        assert booking["end_time"] == "11:00:00"
        assert booking["consultation_fee"] == 100000

    async def test_double_booking_rejected(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday
    ) -> None:
        payload = booking_payload(provider, monday_slot, next_monday)
        first = await authenticated_client.post(f"{API}/bookings", json=payload)
        second = await authenticated_client.post(f"{API}/bookings", json=payload)

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["error_code"] == "SLOT_ALREADY_TAKEN"

        slots = await authenticated_client.get(
            f"{API}/bookings/available-slots/{provider.id}", params={"date": next_monday.isoformat()}
        )
        assert slots.json()["slots"][0]["is_available"] is False
        assert slots.json()["slots"][0]["unavailable_reason"] == "BOOKED"

    async def test_wrong_weekday_rejected(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday
    ) -> None:
        response = await authenticated_client.post(
            f"{API}/bookings", json=booking_payload(provider, monday_slot, next_monday + timedelta(days=1))
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "INVALID_DATE"

    async def test_gateway_outage_keeps_reservation(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday, gateway
    ) -> None:
        gateway.fail_create = 1
        response = await authenticated_client.post(
            f"{API}/bookings", json=booking_payload(provider, monday_slot, next_monday)
        )

        assert response.status_code == 201
        data = response.json()
        assert data["payment"] is None
        assert data["payment_error"]["error_code"] == "PAYMENT_SERVICE_UNAVAILABLE"
        booking_id = data["booking"]["id"]

        outcome = await authenticated_client.get(f"{API}/bookings/{booking_id}/outcome")
        assert outcome.json()["reason"] == "PAYMENT_SERVICE_UNAVAILABLE"
        assert outcome.json()["next_action"] == "RETRY"

        retry = await authenticated_client.post(f"{API}/payments/create/{booking_id}")
        assert retry.status_code == 201
        assert retry.json()["payment"]["order_id"].endswith("-2")

        history = await authenticated_client.get(f"{API}/payments/history/booking")
        assert sorted(p["status"] for p in history.json()) == ["ERROR", "OPEN"]

    async def test_get_booking_of_other_user_forbidden(
        self, authenticated_client: AsyncClient, pending_booking
    ) -> None:
        response = await authenticated_client.get(f"{API}/bookings/{pending_booking.id}")

        assert response.status_code == 403

    async def test_my_bookings(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday
    ) -> None:
        await authenticated_client.post(f"{API}/bookings", json=booking_payload(provider, monday_slot, next_monday))

        pending = await authenticated_client.get(
            f"{API}/bookings/my-bookings", params={"status": "PENDING_PAYMENT"}
        )
        confirmed = await authenticated_client.get(
            f"{API}/bookings/my-bookings", params={"status": "CONFIRMED"}
        )

        assert len(pending.json()) == 1
        assert confirmed.json() == []

    async def test_cancel_booking(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday, gateway, supervisor
    ) -> None:
        created = await authenticated_client.post(
            f"{API}/bookings", json=booking_payload(provider, monday_slot, next_monday)
        )
        booking_id = created.json()["booking"]["id"]

        response = await authenticated_client.patch(
            f"{API}/bookings/{booking_id}/cancel", json={"reason": "Sudah sembuh"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"
        assert response.json()["payment_status"] == "CANCELLED"
        assert response.json()["cancellation_reason"] == "Sudah sembuh"
        assert gateway.cancelled == [created.json()["payment"]["order_id"]]
        assert len(supervisor) == 0

        outcome = await authenticated_client.get(f"{API}/bookings/{booking_id}/outcome")
        assert outcome.json()["reason"] == "CANCELLED"
        assert outcome.json()["next_action"] == "START_OVER"

        again = await authenticated_client.patch(f"{API}/bookings/{booking_id}/cancel")
        assert again.status_code == 409

        rebook = await authenticated_client.post(
            f"{API}/bookings", json=booking_payload(provider, monday_slot, next_monday)
        )
        assert rebook.status_code == 201


@pytest.mark.payments
@pytest.mark.integration
class TestPaymentEndpoints:
    """Payment status, return nudge and the gateway webhook."""

    async def _create(self, client, provider, slot, booking_date) -> dict:
        response = await client.post(f"{API}/bookings", json=booking_payload(provider, slot, booking_date))
        assert response.status_code == 201
        return response.json()

    async def test_payment_status(self, authenticated_client: AsyncClient, provider, monday_slot, next_monday) -> None:
        created = await self._create(authenticated_client, provider, monday_slot, next_monday)
        order_id = created["payment"]["order_id"]

        response = await authenticated_client.get(f"{API}/payments/status/{order_id}")

        assert response.status_code == 200
        assert response.json()["payment"]["status"] == "OPEN"
        assert response.json()["payment"]["expiry_time"] is not None
        assert response.json()["booking"]["id"] == created["booking"]["id"]

        by_booking = await authenticated_client.get(f"{API}/payments/booking/{created['booking']['id']}")
        assert by_booking.json()["order_id"] == order_id

    async def test_payment_status_of_other_user(
        self, authenticated_client: AsyncClient, client: AsyncClient, provider, monday_slot, next_monday
    ) -> None:
        created = await self._create(authenticated_client, provider, monday_slot, next_monday)
        stranger = create_access_token(str(uuid4()))

        response = await client.get(
            f"{API}/payments/status/{created['payment']['order_id']}",
            headers={"Authorization": f"Bearer {stranger}"},
        )

        assert response.status_code == 403

    async def test_settlement_notification_confirms_booking(
        self, authenticated_client: AsyncClient, session_factory, provider, monday_slot, next_monday
    ) -> None:
        created = await self._create(authenticated_client, provider, monday_slot, next_monday)
        order_id = created["payment"]["order_id"]

        response = await authenticated_client.post(
            f"{API}/payments/notification", json=signed_notification(order_id, "settlement")
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "order_id": order_id}

        outcome = await authenticated_client.get(f"{API}/bookings/{created['booking']['id']}/outcome")
        data = outcome.json()
        assert data["status"] == "CONFIRMED"
        assert data["payment_status"] == "PAID"
        assert data["receipt"]["amount"] == 102500
        assert data["receipt"]["provider_name"] == provider.name
        assert data["receipt"]["start_time"] == "09:00:00"

    async def test_notification_with_bad_signature(
        self, client: AsyncClient, authenticated_client: AsyncClient, provider, monday_slot, next_monday
    ) -> None:
        created = await self._create(authenticated_client, provider, monday_slot, next_monday)
        payload = signed_notification(created["payment"]["order_id"], "settlement")
        payload["gross_amount"] = "1.00"

        response = await client.post(f"{API}/payments/notification", json=payload)

        assert response.status_code == 401
        booking = await authenticated_client.get(f"{API}/bookings/{created['booking']['id']}")
        assert booking.json()["status"] == "PENDING_PAYMENT"

    async def test_notification_for_unknown_order(self, client: AsyncClient) -> None:
        response = await client.post(
            f"{API}/payments/notification", json=signed_notification("BK-unknown-1", "settlement")
        )

        assert response.status_code == 404

    async def test_denied_notification_cancels(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday
    ) -> None:
        created = await self._create(authenticated_client, provider, monday_slot, next_monday)

        await authenticated_client.post(
            f"{API}/payments/notification", json=signed_notification(created["payment"]["order_id"], "deny")
        )

        outcome = await authenticated_client.get(f"{API}/bookings/{created['booking']['id']}/outcome")
        assert outcome.json()["status"] == "CANCELLED"
        assert outcome.json()["reason"] == "PAYMENT_FAILED"
        assert outcome.json()["next_action"] == "RETRY"

    async def test_return_from_payment_window(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday, gateway
    ) -> None:
        created = await self._create(authenticated_client, provider, monday_slot, next_monday)
        gateway.statuses[created["payment"]["order_id"]] = GatewayPaymentStatus.PAID

        response = await authenticated_client.post(f"{API}/payments/{created['booking']['id']}/return")

        assert response.status_code == 200
        assert response.json()["outcome"]["status"] == "CONFIRMED"
        assert response.json()["outcome"]["receipt"]["amount"] == 102500

    async def test_return_while_pending(
        self, authenticated_client: AsyncClient, provider, monday_slot, next_monday
    ) -> None:
        created = await self._create(authenticated_client, provider, monday_slot, next_monday)

        response = await authenticated_client.post(f"{API}/payments/{created['booking']['id']}/return")

        assert response.json()["outcome"]["reason"] == "PENDING"
        assert response.json()["outcome"]["next_action"] == "WAIT"

    async def test_cancel_payment(
        self, authenticated_client: AsyncClient, session_factory, provider, monday_slot, next_monday, gateway
    ) -> None:
        created = await self._create(authenticated_client, provider, monday_slot, next_monday)
        order_id = created["payment"]["order_id"]

        response = await authenticated_client.post(f"{API}/payments/cancel/{order_id}")

        assert response.status_code == 200
        assert gateway.cancelled == [order_id]
        booking = await load_booking(session_factory, UUID(created["booking"]["id"]))
        assert booking.status.value == "CANCELLED"

        again = await authenticated_client.post(f"{API}/payments/cancel/{order_id}")
        assert again.status_code == 409


@pytest.mark.integration
class TestFlowEndpoints:
    """Per-session hand-off between booking flow steps."""

    HEADERS = {"X-Flow-Session": "browser-session-01"}

    def _selection(self, provider, slot, booking_date) -> dict:
        return {
            "doctor_id": str(provider.id),
            "schedule_id": str(slot.id),
            "booking_date": booking_date.isoformat(),
            "time_slot": "09:00:00",
            "consultation_type": "ONLINE",
            "duration_minutes": 60,
        }

    async def test_store_and_consume(self, client: AsyncClient, provider, monday_slot, next_monday) -> None:
        record = self._selection(provider, monday_slot, next_monday)

        put = await client.put(f"{API}/flow/slot-selection", json=record, headers=self.HEADERS)
        assert put.status_code == 200

        got = await client.get(f"{API}/flow/slot-selection", headers=self.HEADERS)
        assert got.json()["schedule_id"] == record["schedule_id"]

        consumed = await client.get(f"{API}/flow/slot-selection", params={"consume": True}, headers=self.HEADERS)
        assert consumed.status_code == 200

        gone = await client.get(f"{API}/flow/slot-selection", headers=self.HEADERS)
        assert gone.status_code == 404

    async def test_sessions_are_isolated(self, client: AsyncClient, provider, monday_slot, next_monday) -> None:
        await client.put(
            f"{API}/flow/slot-selection",
            json=self._selection(provider, monday_slot, next_monday),
            headers=self.HEADERS,
        )

        other = await client.get(f"{API}/flow/slot-selection", headers={"X-Flow-Session": "browser-session-02"})

        assert other.status_code == 404

    async def test_invalid_record(self, client: AsyncClient) -> None:
        response = await client.put(f"{API}/flow/payment", json={"order_id": 1}, headers=self.HEADERS)

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    async def test_unknown_step(self, client: AsyncClient) -> None:
        response = await client.get(f"{API}/flow/confirmation", headers=self.HEADERS)

        assert response.status_code == 404

    async def test_session_header_required(self, client: AsyncClient) -> None:
        response = await client.get(f"{API}/flow/slot-selection")

        assert response.status_code == 422

    async def test_reset(self, client: AsyncClient, provider, monday_slot, next_monday) -> None:
        await client.put(
            f"{API}/flow/slot-selection",
            json=self._selection(provider, monday_slot, next_monday),
            headers=self.HEADERS,
        )

        response = await client.delete(f"{API}/flow", headers=self.HEADERS)

        assert response.status_code == 204
        gone = await client.get(f"{API}/flow/slot-selection", headers=self.HEADERS)
        assert gone.status_code == 404


@pytest.mark.integration
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["redis"] is False
