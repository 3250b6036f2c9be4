"""
Stripe Payment Provider Implementation.

Uses Stripe Checkout Sessions. Our payment reference travels as the
session's client_reference_id; the session id is the provider reference.

NO DICTIONARIES - All data uses strongly typed models.
"""

from datetime import UTC, datetime
from typing import Any

import stripe
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

SIGNATURE_HEADER = "stripe-signature"

SUCCEEDED_EVENTS = frozenset(
    {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
)
FAILED_EVENTS = frozenset(
    {"checkout.session.async_payment_failed", "checkout.session.expired"}
)


def _field(obj: Any, name: str) -> Any:
    return getattr(obj, name, None)


def _session_status(session: Any) -> OutcomeStatus:
    if _field(session, "payment_status") in ("paid", "no_payment_required"):
        return OutcomeStatus.SUCCEEDED
    if _field(session, "status") == "expired":
        return OutcomeStatus.FAILED
    return OutcomeStatus.PENDING


def _event_time(event: Any) -> datetime | None:
    created = _field(event, "created")
    return datetime.fromtimestamp(created, tz=UTC) if isinstance(created, int) else None


def _outcome_from_session(
    session: Any,
    status: OutcomeStatus,
    raw_payload: str,
    settled_at: datetime | None = None,
) -> PaymentOutcome:
    currency = _field(session, "currency")
    # session.created is checkout creation, not payment
    paid_at = settled_at if status is OutcomeStatus.SUCCEEDED else None
    return PaymentOutcome(
        reference=str(_field(session, "client_reference_id") or ""),
        status=status,
        amount_minor=_field(session, "amount_total"),
        currency=currency.upper() if currency else None,
        raw_payload=raw_payload,
        paid_at=paid_at,
        provider_reference=_field(session, "id"),
        gateway_message=_field(session, "payment_status"),
    )


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe Checkout.
    """

    name = "stripe"

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        stripe.api_key = api_key

    @traced("payment_initialize")
    async def initialize(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a Stripe Checkout Session.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info(
                "creating_stripe_checkout_session",
                reference=request.reference,
                amount_minor=request.amount_minor,
                currency=request.currency,
            )

            return_url = f"{request.callback_url}?reference={request.reference}"
            session = stripe.checkout.Session.create(
                mode="payment",
                customer_email=request.customer_email,
                client_reference_id=request.reference,
                line_items=[
                    {
                        "quantity": 1,
                        "price_data": {
                            "currency": request.currency.lower(),
                            "unit_amount": request.amount_minor,
                            "product_data": {"name": request.description},
                        },
                    }
                ],
                metadata={
                    "reference": request.reference,
                    "principal_id": request.metadata_principal_id,
                    "target_kind": request.metadata_target_kind,
                    "target_id": request.metadata_target_id,
                },
                success_url=return_url,
                cancel_url=return_url,
                idempotency_key=request.reference,
            )

            logger.info(
                "stripe_checkout_session_created",
                reference=request.reference,
                session_id=session.id,
            )

            if not session.url:
                raise PaymentProviderError("Stripe returned a session without a URL")

            return CheckoutSession(authorization_url=session.url, provider_reference=session.id)

        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_failed",
                reference=request.reference,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe checkout failed: {exc}") from exc

    @traced("payment_verify")
    async def verify(self, provider_reference: str) -> PaymentOutcome:
        """
        Retrieve a Checkout Session and report its outcome.

        Raises:
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info("retrieving_stripe_checkout_session", session_id=provider_reference)

            session = stripe.checkout.Session.retrieve(provider_reference)
            outcome = _outcome_from_session(session, _session_status(session), str(session))

            logger.info(
                "stripe_checkout_session_retrieved",
                session_id=provider_reference,
                status=outcome.status.value,
            )
            return outcome

        except stripe.StripeError as exc:
            logger.error(
                "stripe_checkout_session_retrieve_failed",
                session_id=provider_reference,
                error=str(exc),
            )
            raise PaymentProviderError(f"Failed to get payment status: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse Stripe webhook event.

        Raises:
            InvalidSignatureError: If signature verification fails
        """
        if not self.webhook_secret:
            logger.error("stripe_webhook_secret_missing")
            raise InvalidSignatureError("Stripe webhook secret is not configured")

        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            raise InvalidSignatureError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            raise InvalidSignatureError("Malformed Stripe webhook payload") from exc

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)

        session = event.data.object
        raw_payload = payload.decode("utf-8", errors="replace")

        outcome: PaymentOutcome | None = None
        if event.type in SUCCEEDED_EVENTS:
            status = _session_status(session)
            # A completed session with a delayed payment method is still pending
            if status is OutcomeStatus.SUCCEEDED:
                outcome = _outcome_from_session(
                    session, status, raw_payload, settled_at=_event_time(event)
                )
        elif event.type in FAILED_EVENTS:
            outcome = _outcome_from_session(session, OutcomeStatus.FAILED, raw_payload)

        return WebhookEvent(event_id=event.id, event_type=event.type, outcome=outcome)
