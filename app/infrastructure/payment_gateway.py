"""
Payment gateway adapter.

PaymentGateway is the interface the payment domain depends on; MidtransGateway
implements it against the Midtrans Snap and Core status APIs. Every call is
bounded by a request timeout and retried with exponential backoff; when the
retries run out a PaymentGatewayError is raised. A timeout is never reported
as a failed payment.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import asyncio
import base64
import enum
import hashlib
import hmac
import logging

import httpx

from app.core.config import settings
from app.core.exceptions import PaymentGatewayError

logger = logging.getLogger(__name__)

# Midtrans reports wall time in Jakarta (WIB, UTC+7)
GATEWAY_TZ = timezone(timedelta(hours=7))
GATEWAY_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class GatewayPaymentStatus(str, enum.Enum):
    """Payment status as reported by the gateway"""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


TRANSACTION_STATUS_MAP = {
    "settlement": GatewayPaymentStatus.PAID,
    "capture": GatewayPaymentStatus.PAID,
    "pending": GatewayPaymentStatus.PENDING,
    "authorize": GatewayPaymentStatus.PENDING,
    "deny": GatewayPaymentStatus.FAILED,
    "cancel": GatewayPaymentStatus.FAILED,
    "failure": GatewayPaymentStatus.FAILED,
    "expire": GatewayPaymentStatus.EXPIRED,
}


def map_transaction_status(transaction_status: Optional[str], fraud_status: Optional[str] = None) -> GatewayPaymentStatus:
    """Translate a Midtrans transaction_status into GatewayPaymentStatus"""
    if not transaction_status:
        return GatewayPaymentStatus.PENDING
    if transaction_status == "capture" and fraud_status == "challenge":
        return GatewayPaymentStatus.PENDING
    return TRANSACTION_STATUS_MAP.get(transaction_status.lower(), GatewayPaymentStatus.PENDING)


def notification_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    payload = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(payload.encode("utf-8")).hexdigest()


def verify_notification_signature(payload: Dict[str, Any], server_key: Optional[str] = None) -> bool:
    """Check the signature_key of a gateway notification"""
    signature = payload.get("signature_key")
    if not signature:
        return False
    expected = notification_signature(
        str(payload.get("order_id", "")),
        str(payload.get("status_code", "")),
        str(payload.get("gross_amount", "")),
        server_key if server_key is not None else settings.MIDTRANS_SERVER_KEY,
    )
    return hmac.compare_digest(expected, str(signature))


@dataclass(frozen=True)
class GatewaySession:
    """Handle returned by the gateway for a new order"""
    order_id: str
    handle: str
    redirect_url: Optional[str]
    expiry_at: datetime


class PaymentGateway(ABC):
    """Interface to an external payment gateway. All calls are safe to retry."""

    @abstractmethod
    async def create_session(self, order_id: str, amount: int, expiry_hint: timedelta) -> GatewaySession:
        ...

    @abstractmethod
    async def get_status(self, order_id: str) -> GatewayPaymentStatus:
        ...

    @abstractmethod
    async def cancel_session(self, order_id: str) -> None:
        ...

    async def aclose(self) -> None:
        return None


class MidtransGateway(PaymentGateway):
    """Midtrans Snap client"""

    SANDBOX_SNAP_URL = "https://app.sandbox.midtrans.com/snap/v1"
    PRODUCTION_SNAP_URL = "https://app.midtrans.com/snap/v1"
    SANDBOX_API_URL = "https://api.sandbox.midtrans.com/v2"
    PRODUCTION_API_URL = "https://api.midtrans.com/v2"

    def __init__(
        self,
        server_key: Optional[str] = None,
        is_production: Optional[bool] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        http: Optional[httpx.AsyncClient] = None
    ):
        self.server_key = server_key if server_key is not None else settings.MIDTRANS_SERVER_KEY
        production = settings.MIDTRANS_IS_PRODUCTION if is_production is None else is_production
        self.snap_url = self.PRODUCTION_SNAP_URL if production else self.SANDBOX_SNAP_URL
        self.api_url = self.PRODUCTION_API_URL if production else self.SANDBOX_API_URL
        self.max_retries = settings.PAYMENT_GATEWAY_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = (
            settings.PAYMENT_GATEWAY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self.http = http or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.PAYMENT_GATEWAY_TIMEOUT_SECONDS)
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    def _headers(self) -> Dict[str, str]:
        token = base64.b64encode(f"{self.server_key}:".encode("utf-8")).decode("ascii")
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Basic {token}",
        }

    async def _request(self, method: str, url: str, operation: str, json: Optional[dict] = None) -> Dict[str, Any]:
        """Send a request, retrying timeouts, transport errors and 5xx responses"""
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self.http.request(method, url, json=json, headers=self._headers())
                if response.status_code >= 500:
                    raise PaymentGatewayError(
                        f"Gateway returned {response.status_code}",
                        details={"operation": operation, "status_code": response.status_code},
                    )
                if response.status_code == 404:
                    return {"status_code": "404"}
                if response.status_code >= 400:
                    # Client errors do not get better on retry
                    raise PaymentGatewayError(
                        f"Gateway rejected {operation}: {response.status_code}",
                        details={"operation": operation, "status_code": response.status_code, "body": response.text},
                    )
                return response.json()
            except httpx.TimeoutException as e:
                last_error = e
                logger.warning(f"Gateway {operation} timed out (attempt {attempt}/{self.max_retries})")
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(f"Gateway {operation} transport error (attempt {attempt}/{self.max_retries}): {e}")
            except PaymentGatewayError as e:
                if e.details.get("status_code", 500) < 500:
                    raise
                last_error = e
                logger.warning(f"Gateway {operation} failed (attempt {attempt}/{self.max_retries}): {e.message}")

            if attempt < self.max_retries:
                await asyncio.sleep(self.backoff_seconds * (2 ** (attempt - 1)))

        logger.error(f"Gateway {operation} failed after {self.max_retries} attempts: {last_error}")
        raise PaymentGatewayError(
            f"Gateway {operation} failed after {self.max_retries} attempts",
            details={"operation": operation, "original_error": str(last_error)},
        )

    async def create_session(self, order_id: str, amount: int, expiry_hint: timedelta) -> GatewaySession:
        start = datetime.now(GATEWAY_TZ).replace(microsecond=0)
        duration = max(int(expiry_hint.total_seconds() // 60), 1)
        payload = {
            "transaction_details": {"order_id": order_id, "gross_amount": amount},
            "expiry": {
                "start_time": start.strftime(GATEWAY_TIME_FORMAT) + " +0700",
                "unit": "minutes",
                "duration": duration,
            },
        }
        data = await self._request("POST", f"{self.snap_url}/transactions", "create_session", json=payload)
        if "token" not in data:
            raise PaymentGatewayError(
                "Gateway did not return a payment token",
                details={"operation": "create_session", "response": data},
            )

        # Snap enforces exactly the window it was sent; its status API reports the same instant
        expiry_at = (start + timedelta(minutes=duration)).astimezone(timezone.utc).replace(tzinfo=None)
        logger.info(f"Created gateway session for {order_id}, expires {expiry_at.isoformat()}Z")
        return GatewaySession(
            order_id=order_id,
            handle=data["token"],
            redirect_url=data.get("redirect_url"),
            expiry_at=expiry_at,
        )

    async def get_status(self, order_id: str) -> GatewayPaymentStatus:
        data = await self._request("GET", f"{self.api_url}/{order_id}/status", "get_status")
        if str(data.get("status_code")) == "404":
            # The customer has not picked a payment method yet
            return GatewayPaymentStatus.PENDING
        return map_transaction_status(data.get("transaction_status"), data.get("fraud_status"))

    async def cancel_session(self, order_id: str) -> None:
        await self._request("POST", f"{self.api_url}/{order_id}/cancel", "cancel_session")
        logger.info(f"Cancelled gateway session {order_id}")
