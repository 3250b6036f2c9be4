"""
Paystack Payment Provider Implementation.

Talks to the Paystack REST API over httpx. Amounts are exchanged in kobo
(minor units). Webhooks are authenticated with an HMAC-SHA512 hex digest of
the raw request body keyed by the secret key, sent in x-paystack-signature.

NO DICTIONARIES - All data uses strongly typed models.
"""

import hashlib
import hmac
import json
from datetime import datetime
from typing import Any

import httpx
from structlog import get_logger

from studio_access.exceptions import InvalidSignatureError, PaymentProviderError
from studio_access.models.api import OutcomeStatus
from studio_access.models.domain import PaymentOutcome
from studio_access.observability.tracing import traced
from studio_access.services.payment_provider import (
    CheckoutRequest,
    CheckoutSession,
    WebhookEvent,
)

logger = get_logger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"

CHARGE_SUCCESS = "charge.success"
CHARGE_FAILED = "charge.failed"

# Paystack transaction statuses that are final failures
FAILED_STATUSES = frozenset({"failed", "abandoned", "reversed"})


def compute_signature(payload: bytes, secret_key: str) -> str:
    """HMAC-SHA512 hex digest Paystack sends with every webhook."""
    return hmac.new(secret_key.encode(), payload, hashlib.sha512).hexdigest()


def _parse_paid_at(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("paystack_paid_at_unparseable", paid_at=value)
        return None


def _outcome_status(paystack_status: str | None) -> OutcomeStatus:
    if paystack_status == "success":
        return OutcomeStatus.SUCCEEDED
    if paystack_status in FAILED_STATUSES:
        return OutcomeStatus.FAILED
    return OutcomeStatus.PENDING


def _outcome_from_transaction(data: dict[str, Any], status: OutcomeStatus) -> PaymentOutcome:
    currency = data.get("currency")
    return PaymentOutcome(
        reference=str(data.get("reference", "")),
        status=status,
        amount_minor=data.get("amount"),
        currency=currency.upper() if currency else None,
        raw_payload=json.dumps(data, default=str),
        paid_at=_parse_paid_at(data.get("paid_at")),
        provider_reference=str(data["reference"]) if data.get("reference") else None,
        gateway_message=data.get("gateway_response"),
    )


class PaystackProvider:
    """
    Paystack payment provider implementation.

    Implements the PaymentProvider protocol for Paystack. Our reference is
    passed to Paystack as the transaction reference, so provider_reference
    equals reference.
    """

    name = "paystack"

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout_seconds: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize Paystack provider.

        Args:
            secret_key: Paystack secret key (API bearer and webhook HMAC key)
            base_url: Paystack API base URL
            timeout_seconds: Per-request timeout
            http_client: Optional preconfigured client (tests inject a MockTransport)
        """
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    @traced("payment_initialize")
    async def initialize(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Initialize a Paystack transaction.

        Raises:
            PaymentProviderError: If Paystack rejects the request or is unreachable
        """
        logger.info(
            "initializing_paystack_transaction",
            reference=request.reference,
            amount_minor=request.amount_minor,
            currency=request.currency,
        )

        body = {
            "email": request.customer_email,
            "amount": request.amount_minor,
            "currency": request.currency,
            "reference": request.reference,
            "callback_url": request.callback_url,
            "metadata": {
                "principal_id": request.metadata_principal_id,
                "target_kind": request.metadata_target_kind,
                "target_id": request.metadata_target_id,
                "description": request.description,
            },
        }

        payload = await self._request("POST", "/transaction/initialize", json_body=body)
        data = payload.get("data") or {}
        authorization_url = data.get("authorization_url")
        if not payload.get("status") or not authorization_url:
            message = payload.get("message", "initialize rejected")
            logger.error(
                "paystack_initialize_rejected",
                reference=request.reference,
                message=message,
            )
            raise PaymentProviderError(f"Paystack initialize failed: {message}")

        logger.info("paystack_transaction_initialized", reference=request.reference)

        return CheckoutSession(
            authorization_url=authorization_url,
            provider_reference=str(data.get("reference") or request.reference),
        )

    @traced("payment_verify")
    async def verify(self, provider_reference: str) -> PaymentOutcome:
        """
        Verify a Paystack transaction by reference.

        Raises:
            PaymentProviderError: If Paystack is unreachable or the response is unusable
        """
        logger.info("verifying_paystack_transaction", reference=provider_reference)

        payload = await self._request("GET", f"/transaction/verify/{provider_reference}")
        data = payload.get("data")
        if not payload.get("status") or not isinstance(data, dict):
            message = payload.get("message", "verification failed")
            logger.error(
                "paystack_verify_rejected",
                reference=provider_reference,
                message=message,
            )
            raise PaymentProviderError(f"Paystack verify failed: {message}")

        outcome = _outcome_from_transaction(data, _outcome_status(data.get("status")))

        logger.info(
            "paystack_transaction_verified",
            reference=provider_reference,
            status=outcome.status.value,
            amount_minor=outcome.amount_minor,
        )
        return outcome

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse a Paystack webhook.

        Raises:
            InvalidSignatureError: Missing or wrong signature, or unparseable body
        """
        # An empty key makes the HMAC computable by anyone
        if not self.secret_key:
            logger.error("paystack_webhook_secret_missing")
            raise InvalidSignatureError("Paystack webhook secret is not configured")
        if not signature:
            raise InvalidSignatureError("Missing Paystack signature")

        expected = compute_signature(payload, self.secret_key)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            raise InvalidSignatureError("Invalid Paystack webhook signature")

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise InvalidSignatureError("Malformed Paystack webhook payload") from exc
        if not isinstance(event, dict):
            raise InvalidSignatureError("Malformed Paystack webhook payload")

        event_type = str(event.get("event", ""))
        data = event.get("data")
        if not isinstance(data, dict):
            data = {}

        outcome: PaymentOutcome | None = None
        if not data:
            logger.warning("paystack_webhook_without_transaction", event_type=event_type)
        elif event_type == CHARGE_SUCCESS:
            outcome = _outcome_from_transaction(data, OutcomeStatus.SUCCEEDED)
        elif event_type == CHARGE_FAILED:
            outcome = _outcome_from_transaction(data, OutcomeStatus.FAILED)

        logger.info(
            "paystack_webhook_verified",
            event_type=event_type,
            reference=data.get("reference"),
        )

        return WebhookEvent(
            event_id=f"{event_type}:{data.get('id', data.get('reference', ''))}",
            event_type=event_type,
            outcome=outcome,
        )

    async def _request(
        self, method: str, path: str, json_body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Call Paystack and return the decoded JSON envelope."""
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                json=json_body,
            )
        except httpx.HTTPError as exc:
            logger.error("paystack_request_failed", path=path, error=str(exc))
            raise PaymentProviderError(f"Paystack unreachable: {exc}") from exc

        try:
            payload: dict[str, Any] = response.json()
        except ValueError as exc:
            logger.error(
                "paystack_response_not_json",
                path=path,
                status_code=response.status_code,
            )
            raise PaymentProviderError(
                f"Paystack returned non-JSON response ({response.status_code})"
            ) from exc

        if response.status_code >= 500:
            raise PaymentProviderError(f"Paystack server error ({response.status_code})")

        return payload
