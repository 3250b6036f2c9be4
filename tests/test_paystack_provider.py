"""
Tests for PaystackProvider.

The Paystack API is replaced by an httpx.MockTransport.
"""

import json
from datetime import UTC, datetime

import httpx
import pytest

from studio_access.exceptions import InvalidSignatureError, PaymentProviderError
from studio_access.models.api import OutcomeStatus
from studio_access.services.payment_provider import CheckoutRequest
from studio_access.services.paystack_provider import (
    CHARGE_FAILED,
    CHARGE_SUCCESS,
    PaystackProvider,
    compute_signature,
)

SECRET = "sk_test_paystack"


def _provider(handler) -> PaystackProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PaystackProvider(SECRET, http_client=client)


def _checkout_request() -> CheckoutRequest:
    return CheckoutRequest(
        reference="SETMEDIA-1700000000000-42",
        amount_minor=500000,
        currency="NGN",
        customer_email="u42@example.com",
        description="Wedding",
        callback_url="https://studio.example/payment/verify",
        metadata_principal_id="U42",
        metadata_target_kind="gallery",
        metadata_target_id="5f0c6d0e-0000-4000-8000-000000000001",
    )


def _transaction(status: str = "success", amount: int = 500000) -> dict:
    return {
        "id": 302961,
        "reference": "SETMEDIA-1700000000000-42",
        "status": status,
        "amount": amount,
        "currency": "ngn",
        "paid_at": "2026-10-19T12:00:00.000Z",
        "gateway_response": "Approved",
    }


class TestInitialize:
    """Tests for initialize()."""

    async def test_initialize_posts_transaction(self):
        """The checkout is created with amount in kobo and our reference."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": "https://checkout.paystack.com/abc",
                        "access_code": "abc",
                        "reference": "SETMEDIA-1700000000000-42",
                    },
                },
            )

        session = await _provider(handler).initialize(_checkout_request())

        assert session.authorization_url == "https://checkout.paystack.com/abc"
        assert session.provider_reference == "SETMEDIA-1700000000000-42"

        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/transaction/initialize"
        assert request.headers["Authorization"] == f"Bearer {SECRET}"
        body = json.loads(request.content)
        assert body["amount"] == 500000
        assert body["email"] == "u42@example.com"
        assert body["reference"] == "SETMEDIA-1700000000000-42"
        assert body["metadata"]["principal_id"] == "U42"

    async def test_initialize_rejected(self):
        """status false is a provider error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"status": False, "message": "Invalid key"})

        with pytest.raises(PaymentProviderError, match="Invalid key"):
            await _provider(handler).initialize(_checkout_request())

    async def test_initialize_unreachable(self):
        """Transport errors are provider errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        with pytest.raises(PaymentProviderError, match="unreachable"):
            await _provider(handler).initialize(_checkout_request())

    async def test_initialize_non_json(self):
        """HTML error pages are provider errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="<html>Bad Gateway</html>")

        with pytest.raises(PaymentProviderError, match="non-JSON"):
            await _provider(handler).initialize(_checkout_request())


class TestVerify:
    """Tests for verify()."""

    async def test_verify_success(self):
        """A successful transaction maps to a succeeded outcome."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/transaction/verify/SETMEDIA-1700000000000-42"
            return httpx.Response(200, json={"status": True, "data": _transaction()})

        outcome = await _provider(handler).verify("SETMEDIA-1700000000000-42")

        assert outcome.status is OutcomeStatus.SUCCEEDED
        assert outcome.reference == "SETMEDIA-1700000000000-42"
        assert outcome.amount_minor == 500000
        assert outcome.currency == "NGN"
        assert outcome.paid_at == datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
        assert outcome.gateway_message == "Approved"
        assert json.loads(outcome.raw_payload)["id"] == 302961

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("failed", OutcomeStatus.FAILED),
            ("abandoned", OutcomeStatus.FAILED),
            ("reversed", OutcomeStatus.FAILED),
            ("ongoing", OutcomeStatus.PENDING),
            ("pending", OutcomeStatus.PENDING),
        ],
    )
    async def test_verify_status_mapping(self, status: str, expected: OutcomeStatus):
        """Paystack statuses map onto outcome statuses."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": True, "data": _transaction(status)})

        outcome = await _provider(handler).verify("SETMEDIA-1700000000000-42")

        assert outcome.status is expected

    async def test_verify_unknown_transaction(self):
        """Paystack's not-found envelope is a provider error."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404, json={"status": False, "message": "Transaction reference not found"}
            )

        with pytest.raises(PaymentProviderError, match="not found"):
            await _provider(handler).verify("NOPE")

    async def test_verify_server_error(self):
        """5xx responses are provider errors even with a JSON body."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"status": False})

        with pytest.raises(PaymentProviderError, match="server error"):
            await _provider(handler).verify("SETMEDIA-1700000000000-42")


class TestVerifyWebhook:
    """Tests for verify_webhook()."""

    def _unused(self, request: httpx.Request) -> httpx.Response:
        raise AssertionError("webhooks never call the API")

    def _body(self, event: str, data: dict) -> bytes:
        return json.dumps({"event": event, "data": data}).encode()

    async def test_valid_success_event(self):
        """charge.success with a correct signature yields a succeeded outcome."""
        body = self._body(CHARGE_SUCCESS, _transaction())

        event = await _provider(self._unused).verify_webhook(body, compute_signature(body, SECRET))

        assert event.event_type == CHARGE_SUCCESS
        assert event.event_id == "charge.success:302961"
        assert event.outcome is not None
        assert event.outcome.status is OutcomeStatus.SUCCEEDED
        assert event.outcome.reference == "SETMEDIA-1700000000000-42"

    async def test_valid_failed_event(self):
        """charge.failed yields a failed outcome."""
        body = self._body(CHARGE_FAILED, _transaction("failed"))

        event = await _provider(self._unused).verify_webhook(body, compute_signature(body, SECRET))

        assert event.outcome is not None
        assert event.outcome.status is OutcomeStatus.FAILED

    async def test_other_events_have_no_outcome(self):
        """Events unrelated to charges carry no outcome."""
        body = self._body("transfer.success", {"id": 7})

        event = await _provider(self._unused).verify_webhook(body, compute_signature(body, SECRET))

        assert event.outcome is None

    async def test_signature_case_insensitive(self):
        """Upper-case hex signatures are accepted."""
        body = self._body(CHARGE_SUCCESS, _transaction())
        signature = compute_signature(body, SECRET).upper()

        event = await _provider(self._unused).verify_webhook(body, signature)

        assert event.outcome is not None

    async def test_altered_body_rejected(self):
        """A body changed after signing fails verification."""
        body = self._body(CHARGE_SUCCESS, _transaction(amount=100))
        signature = compute_signature(body, SECRET)
        tampered = self._body(CHARGE_SUCCESS, _transaction(amount=500000))

        with pytest.raises(InvalidSignatureError):
            await _provider(self._unused).verify_webhook(tampered, signature)

    async def test_wrong_key_rejected(self):
        """A signature made with another key fails verification."""
        body = self._body(CHARGE_SUCCESS, _transaction())

        with pytest.raises(InvalidSignatureError):
            await _provider(self._unused).verify_webhook(
                body, compute_signature(body, "sk_other")
            )

    async def test_missing_signature_rejected(self):
        """Unsigned deliveries are rejected."""
        body = self._body(CHARGE_SUCCESS, _transaction())

        with pytest.raises(InvalidSignatureError, match="Missing"):
            await _provider(self._unused).verify_webhook(body, "")

    async def test_signed_garbage_rejected(self):
        """A correctly signed body that isn't JSON is rejected."""
        body = b"not json"

        with pytest.raises(InvalidSignatureError, match="Malformed"):
            await _provider(self._unused).verify_webhook(body, compute_signature(body, SECRET))

    async def test_empty_secret_rejects_self_signed_event(self):
        """With no secret configured, an HMAC keyed by the empty string is refused."""
        body = self._body(CHARGE_SUCCESS, _transaction())
        client = httpx.AsyncClient(transport=httpx.MockTransport(self._unused))
        unconfigured = PaystackProvider("", http_client=client)

        with pytest.raises(InvalidSignatureError, match="not configured"):
            await unconfigured.verify_webhook(body, compute_signature(body, ""))

    @pytest.mark.parametrize("data", [["SETMEDIA-1700000000000-42"], "charge", None, 7])
    async def test_non_object_data_has_no_outcome(self, data):
        """A signed charge event whose data isn't an object carries no outcome."""
        body = json.dumps({"event": CHARGE_SUCCESS, "data": data}).encode()

        event = await _provider(self._unused).verify_webhook(body, compute_signature(body, SECRET))

        assert event.event_type == CHARGE_SUCCESS
        assert event.outcome is None
        assert event.event_id == "charge.success:"
