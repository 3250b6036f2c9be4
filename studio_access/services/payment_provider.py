"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

import secrets
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from studio_access.models.domain import PaymentOutcome


@dataclass(frozen=True)
class CheckoutRequest:
    """
    Provider-agnostic checkout request.

    Represents a request to start collecting a payment for one content unit.
    """

    reference: str
    amount_minor: int
    currency: str
    customer_email: str
    description: str
    callback_url: str
    metadata_principal_id: str
    metadata_target_kind: str
    metadata_target_id: str


@dataclass(frozen=True)
class CheckoutSession:
    """
    Provider-agnostic checkout session.

    Returned after the provider accepted the checkout request.
    """

    authorization_url: str  # Where the buyer completes payment
    provider_reference: str  # Provider-side handle used for verification


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider-agnostic webhook event.

    outcome is None for event types that carry no payment result.
    """

    event_id: str
    event_type: str
    outcome: PaymentOutcome | None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    Any payment provider (Paystack, Stripe, etc.) must implement this interface.
    Reconciliation only ever sees the provider-agnostic types above.
    """

    name: str

    async def initialize(self, request: CheckoutRequest) -> CheckoutSession:
        """
        Create a checkout with the provider.

        Raises:
            PaymentProviderError: If the provider rejects or cannot be reached
        """
        ...

    async def verify(self, provider_reference: str) -> PaymentOutcome:
        """
        Fetch the authoritative outcome of a checkout.

        Raises:
            PaymentProviderError: If the provider cannot be reached
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify the signature over the raw payload, then parse it.

        Raises:
            InvalidSignatureError: If signature verification fails
        """
        ...


def to_minor_units(amount: Decimal) -> int:
    """Major currency units to minor units (naira to kobo, dollars to cents)."""
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def generate_reference(prefix: str) -> str:
    """Unique payment reference: PREFIX-<epoch ms>-<random>."""
    timestamp = int(time.time() * 1000)
    random_part = secrets.randbelow(1_000_000)
    return f"{prefix}-{timestamp}-{random_part}"
