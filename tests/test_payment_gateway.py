import pytest
import base64
import json
from datetime import timedelta

import httpx

from app.core.clock import utcnow
from app.core.exceptions import PaymentGatewayError
from app.infrastructure.payment_gateway import (
    GatewayPaymentStatus,
    MidtransGateway,
    map_transaction_status,
    notification_signature,
    verify_notification_signature,
)

SERVER_KEY = "SB-Mid-server-test"


def make_gateway(handler, max_retries: int = 3) -> MidtransGateway:
    return MidtransGateway(
        server_key=SERVER_KEY,
        is_production=False,
        max_retries=max_retries,
        backoff_seconds=0,
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.unit
@pytest.mark.payments
class TestStatusMapping:
    """Midtrans transaction_status to gateway status."""

    @pytest.mark.parametrize("transaction_status,expected", [
        ("settlement", GatewayPaymentStatus.PAID),
        ("capture", GatewayPaymentStatus.PAID),
        ("pending", GatewayPaymentStatus.PENDING),
        ("deny", GatewayPaymentStatus.FAILED),
        ("cancel", GatewayPaymentStatus.FAILED),
        ("failure", GatewayPaymentStatus.FAILED),
        ("expire", GatewayPaymentStatus.EXPIRED),
        ("refund", GatewayPaymentStatus.PENDING),
        (None, GatewayPaymentStatus.PENDING),
    ])
    def test_map_transaction_status(self, transaction_status, expected) -> None:
        assert map_transaction_status(transaction_status) == expected

    def test_challenged_capture_is_not_paid(self) -> None:
        assert map_transaction_status("capture", "challenge") == GatewayPaymentStatus.PENDING
        assert map_transaction_status("capture", "accept") == GatewayPaymentStatus.PAID


@pytest.mark.unit
@pytest.mark.payments
class TestNotificationSignature:
    """sha512(order_id + status_code + gross_amount + server key)."""

    def test_valid_signature(self) -> None:
        payload = {
            "order_id": "BK-abc-1",
            "status_code": "200",
            "gross_amount": "102500.00",
        }
        payload["signature_key"] = notification_signature("BK-abc-1", "200", "102500.00", SERVER_KEY)

        assert verify_notification_signature(payload, SERVER_KEY) is True

    def test_tampered_amount_rejected(self) -> None:
        signature = notification_signature("BK-abc-1", "200", "102500.00", SERVER_KEY)
        payload = {
            "order_id": "BK-abc-1",
            "status_code": "200",
            "gross_amount": "1.00",
            "signature_key": signature,
        }

        assert verify_notification_signature(payload, SERVER_KEY) is False

    def test_missing_signature_rejected(self) -> None:
        assert verify_notification_signature({"order_id": "BK-abc-1"}, SERVER_KEY) is False


@pytest.mark.payments
class TestMidtransGateway:
    """HTTP behaviour of the Midtrans adapter."""

    async def test_create_session(self) -> None:
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"token": "snap-token", "redirect_url": "https://snap.test/r"})

        gateway = make_gateway(handler)
        before = utcnow()
        session = await gateway.create_session("BK-abc-1", 102500, timedelta(minutes=30))
        await gateway.aclose()

        assert seen["url"] == "https://app.sandbox.midtrans.com/snap/v1/transactions"
        assert seen["auth"] == "Basic " + base64.b64encode(f"{SERVER_KEY}:".encode()).decode()
        assert seen["body"]["transaction_details"] == {"order_id": "BK-abc-1", "gross_amount": 102500}
        assert seen["body"]["expiry"]["unit"] == "minutes"
        assert seen["body"]["expiry"]["duration"] == 30
        assert session.handle == "snap-token"
        assert session.redirect_url == "https://snap.test/r"
        # Expiry is the window sent to Snap, in naive UTC
        assert timedelta(minutes=29) <= session.expiry_at - before <= timedelta(minutes=30, seconds=1)

    async def test_create_session_without_token(self) -> None:
        gateway = make_gateway(lambda request: httpx.Response(200, json={"error_messages": ["nope"]}))

        with pytest.raises(PaymentGatewayError):
            await gateway.create_session("BK-abc-1", 102500, timedelta(minutes=30))

    @pytest.mark.parametrize("body,expected", [
        ({"status_code": "200", "transaction_status": "settlement"}, GatewayPaymentStatus.PAID),
        ({"status_code": "407", "transaction_status": "expire"}, GatewayPaymentStatus.EXPIRED),
        ({"status_code": "202", "transaction_status": "deny"}, GatewayPaymentStatus.FAILED),
        ({"status_code": "201", "transaction_status": "pending"}, GatewayPaymentStatus.PENDING),
    ])
    async def test_get_status(self, body, expected) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v2/BK-abc-1/status"
            return httpx.Response(200, json=body)

        assert await make_gateway(handler).get_status("BK-abc-1") == expected

    async def test_unknown_order_is_pending(self) -> None:
        """404 means no payment method was chosen yet."""
        gateway = make_gateway(lambda request: httpx.Response(404, json={"status_code": "404"}))

        assert await gateway.get_status("BK-abc-1") == GatewayPaymentStatus.PENDING

    async def test_timeouts_are_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"status_code": "200", "transaction_status": "settlement"})

        assert await make_gateway(handler).get_status("BK-abc-1") == GatewayPaymentStatus.PAID
        assert len(calls) == 3

    async def test_server_errors_exhaust_retries(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, text="unavailable")

        with pytest.raises(PaymentGatewayError) as exc_info:
            await make_gateway(handler).get_status("BK-abc-1")

        assert len(calls) == 3
        assert "after 3 attempts" in exc_info.value.message

    async def test_client_errors_not_retried(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(401, json={"status_message": "unauthorized"})

        with pytest.raises(PaymentGatewayError) as exc_info:
            await make_gateway(handler).cancel_session("BK-abc-1")

        assert len(calls) == 1
        assert exc_info.value.details["status_code"] == 401

    async def test_cancel_session(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"status_code": "200", "transaction_status": "cancel"})

        await make_gateway(handler).cancel_session("BK-abc-1")

        assert seen == [("POST", "/v2/BK-abc-1/cancel")]
