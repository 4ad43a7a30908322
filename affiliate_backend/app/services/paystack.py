"""
Paystack REST client.

Amounts cross this boundary as integer minor units (kobo); callers convert
to and from Decimal major units.
"""
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Optional, Dict, Any

import httpx

from affiliate_backend.app.core.exceptions import ServiceError
from affiliate_backend.app.core.logging import get_logger
from affiliate_backend.app.core.metrics import gateway_requests_total, gateway_request_duration_seconds
from affiliate_backend.app.core.settings import get_settings

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class GatewayError(ServiceError):
    """Base exception for payment gateway errors."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message, status_code)


class GatewayNotConfiguredError(GatewayError):
    """PAYSTACK_SECRET_KEY not set."""

    def __init__(self):
        super().__init__("Payment system is not configured", 503)


class GatewayUnreachable(GatewayError):
    """Transport error, timeout or non-2xx answer. The outcome is unknown."""

    def __init__(self, message: str = "Payment gateway is unreachable"):
        super().__init__(message, 502)


class GatewayRejected(GatewayError):
    """The gateway answered but refused the request or sent an unusable body."""

    def __init__(self, message: str = "Payment gateway rejected the request"):
        super().__init__(message, 502)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class GatewayInitResult:
    authorization_url: str
    access_code: Optional[str]
    reference: str


@dataclass
class GatewayVerification:
    status: str
    amount_minor: int
    reference: str

    @property
    def is_success(self) -> bool:
        return self.status == "success"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class PaystackClient:
    """Thin async wrapper over the Paystack transaction API."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.PAYSTACK_TIMEOUT
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        if not self.secret_key:
            raise GatewayNotConfiguredError()
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, operation: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """Send a request and return the `data` object of a successful envelope."""
        headers = self._headers()
        start = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            gateway_requests_total.labels(operation=operation, outcome="unreachable").inc()
            logger.error("Paystack request failed", operation=operation, error=str(exc))
            raise GatewayUnreachable()
        finally:
            gateway_request_duration_seconds.labels(operation=operation).observe(time.time() - start)

        if not response.is_success:
            gateway_requests_total.labels(operation=operation, outcome="http_error").inc()
            logger.error(
                "Paystack returned error status",
                operation=operation,
                status=response.status_code,
                body=response.text[:500],
            )
            raise GatewayUnreachable(f"Payment gateway returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            gateway_requests_total.labels(operation=operation, outcome="malformed").inc()
            logger.error("Paystack returned non-JSON body", operation=operation, body=response.text[:500])
            raise GatewayRejected("Payment gateway sent a malformed response")

        if not isinstance(body, dict) or not body.get("status") or not isinstance(body.get("data"), dict):
            gateway_requests_total.labels(operation=operation, outcome="rejected").inc()
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning("Paystack rejected request", operation=operation, gateway_message=message)
            raise GatewayRejected(message or "Payment gateway rejected the request")

        gateway_requests_total.labels(operation=operation, outcome="ok").inc()
        return body["data"]

    async def initialize(
        self,
        email: str,
        amount_minor: int,
        reference: str,
        callback_url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> GatewayInitResult:
        payload: Dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "reference": reference,
            "callback_url": callback_url,
        }
        if metadata:
            payload["metadata"] = metadata
        data = await self._request("initialize", "POST", "/transaction/initialize", json=payload)
        authorization_url = data.get("authorization_url")
        if not authorization_url:
            raise GatewayRejected("Payment gateway returned no authorization URL")
        return GatewayInitResult(
            authorization_url=authorization_url,
            access_code=data.get("access_code"),
            reference=data.get("reference") or reference,
        )

    async def verify(self, reference: str) -> GatewayVerification:
        data = await self._request("verify", "GET", f"/transaction/verify/{reference}")
        status = data.get("status")
        amount = data.get("amount")
        if not isinstance(status, str) or isinstance(amount, bool) or not isinstance(amount, int):
            logger.error("Paystack verify payload incomplete", reference=reference, status=status, amount=amount)
            raise GatewayRejected("Payment gateway sent an incomplete verification")
        if status == "success" and amount <= 0:
            logger.error("Paystack verify reported success without a positive amount", reference=reference, amount=amount)
            raise GatewayRejected("Payment gateway reported a non-positive amount")
        return GatewayVerification(
            status=status,
            amount_minor=amount,
            reference=data.get("reference") or reference,
        )

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        """Check the `x-paystack-signature` header: HMAC-SHA512 of the raw body."""
        if not self.secret_key or not signature:
            return False
        expected = hmac.new(self.secret_key.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)


def get_gateway() -> PaystackClient:
    """FastAPI dependency for the payment gateway; overridden in tests."""
    return PaystackClient()
