"""
Payment Reconciliation Service - turns provider outcomes into entitlements.

A payment reference moves PENDING -> SUCCEEDED or PENDING -> FAILED exactly
once. Reconciliation locks the intent row, applies the transition and, on
success, adds the purchaser to the target unit's paid principals in the same
transaction. Replays (webhook retries, a verify racing a webhook) find a
terminal intent and change nothing.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from datetime import UTC, datetime
from uuid import UUID

from structlog import get_logger

from studio_access.config import settings
from studio_access.exceptions import (
    ContentNotFoundError,
    InvalidSignatureError,
    PaymentIntentNotFoundError,
    PaymentProviderError,
    PurchaseNotAllowedError,
)
from studio_access.models.api import (
    ContentKind,
    OutcomeStatus,
    PaymentState,
    ReconcileStatus,
)
from studio_access.models.domain import (
    PaymentIntentData,
    PaymentOutcome,
    Principal,
    PurchaseInitiation,
    ReconcileResult,
)
from studio_access.observability import metrics, trace_operation
from studio_access.services.access import evaluate, is_granted
from studio_access.services.entitlements import EntitlementStore
from studio_access.services.payment_provider import (
    CheckoutRequest,
    PaymentProvider,
    generate_reference,
    to_minor_units,
)

logger = get_logger(__name__)

AMOUNT_MISMATCH = "amount mismatch"
PAYMENT_FAILED = "payment failed"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _amount_matches(intent: PaymentIntentData, outcome: PaymentOutcome) -> bool:
    """Whether the provider charged exactly what the intent recorded."""
    if outcome.amount_minor is None:
        return False
    if outcome.amount_minor != to_minor_units(intent.amount):
        return False
    if outcome.currency is not None and outcome.currency.upper() != intent.currency.upper():
        return False
    return True


class ReconciliationService:
    """
    Purchase initiation, verification and webhook reconciliation.

    The provider is injected; the service never branches on provider name.
    """

    def __init__(
        self,
        store: EntitlementStore,
        provider: PaymentProvider,
        currency: str | None = None,
        reference_prefix: str | None = None,
        callback_url: str | None = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.currency = currency or settings.payment_currency
        self.reference_prefix = reference_prefix or settings.payment_reference_prefix
        self.callback_url = callback_url or settings.resolved_callback_url

    async def initiate_purchase(
        self,
        principal: Principal,
        kind: ContentKind,
        content_id: UUID,
        customer_email: str,
    ) -> PurchaseInitiation:
        """
        Start a purchase of one content unit.

        The charged amount is always the unit's recorded price. A principal
        who already has access is told so and nothing is created.

        Raises:
            ContentNotFoundError: Unit missing or not active
            PurchaseNotAllowedError: Unit is not for sale
            PaymentProviderError: Provider refused the checkout (intent marked failed)
        """
        unit = await self.store.get_content(kind, content_id)
        if unit is None or not unit.is_active:
            raise ContentNotFoundError(kind, content_id)

        if not unit.monetization.is_paid:
            raise PurchaseNotAllowedError(kind, content_id, "content is not for sale")
        if unit.monetization.price <= 0:
            raise PurchaseNotAllowedError(kind, content_id, "content has no price")

        price = unit.monetization.price

        if is_granted(evaluate(unit, principal)):
            logger.info(
                "purchase_skipped_already_entitled",
                principal_id=principal.principal_id,
                content_kind=kind.value,
                content_id=str(content_id),
            )
            return PurchaseInitiation(
                target_kind=kind, target_id=content_id, amount=price, currency=self.currency
            )

        reference = generate_reference(self.reference_prefix)

        async with self.store.transaction():
            intent = await self.store.create_payment_intent(
                reference=reference,
                principal_id=principal.principal_id,
                target_kind=kind,
                target_id=content_id,
                amount=price,
                currency=self.currency,
                provider=self.provider.name,
            )

        request = CheckoutRequest(
            reference=reference,
            amount_minor=to_minor_units(price),
            currency=self.currency,
            customer_email=customer_email,
            description=unit.title or f"{kind.value} {content_id}",
            callback_url=self.callback_url,
            metadata_principal_id=principal.principal_id,
            metadata_target_kind=kind.value,
            metadata_target_id=str(content_id),
        )

        try:
            checkout = await self.provider.initialize(request)
        except PaymentProviderError as exc:
            async with self.store.transaction():
                await self.store.transition_intent(
                    reference, PaymentState.FAILED, failure_reason=exc.message
                )
            metrics.record_error("PaymentProviderError", "initiate_purchase")
            logger.error(
                "purchase_initialize_failed",
                reference=reference,
                provider=self.provider.name,
                error=str(exc),
            )
            raise

        async with self.store.transaction():
            await self.store.attach_checkout(
                reference, checkout.provider_reference, checkout.authorization_url
            )

        metrics.record_purchase_initiated(self.provider.name, kind.value)
        logger.info(
            "purchase_initiated",
            reference=reference,
            principal_id=principal.principal_id,
            content_kind=kind.value,
            content_id=str(content_id),
            amount=str(price),
            currency=self.currency,
            provider=self.provider.name,
        )

        return PurchaseInitiation(
            target_kind=kind,
            target_id=content_id,
            amount=price,
            currency=self.currency,
            intent=PaymentIntentData(
                reference=intent.reference,
                principal_id=intent.principal_id,
                target_kind=intent.target_kind,
                target_id=intent.target_id,
                amount=intent.amount,
                currency=intent.currency,
                state=intent.state,
                provider=intent.provider,
                provider_reference=checkout.provider_reference,
                authorization_url=checkout.authorization_url,
                created_at=intent.created_at,
            ),
        )

    async def reconcile(self, reference: str, outcome: PaymentOutcome) -> ReconcileResult:
        """
        Apply a provider outcome to the intent for reference.

        Idempotent: a terminal intent returns ALREADY_PROCESSED untouched.

        Raises:
            PaymentIntentNotFoundError: No intent was ever created for reference,
                or the intent was created under another provider
        """
        with trace_operation(
            "payment_reconcile", reference=reference, outcome=outcome.status.value
        ) as span:
            async with self.store.transaction():
                intent = await self.store.lock_payment_intent(reference)
                if intent is None:
                    metrics.record_reconciliation(self.provider.name, "unknown_reference")
                    logger.warning(
                        "reconcile_unknown_reference",
                        reference=reference,
                        provider=self.provider.name,
                    )
                    raise PaymentIntentNotFoundError(reference)

                if intent.provider != self.provider.name:
                    metrics.record_reconciliation(self.provider.name, "provider_mismatch")
                    logger.warning(
                        "reconcile_provider_mismatch",
                        reference=reference,
                        provider=self.provider.name,
                        intent_provider=intent.provider,
                        security_event=True,
                    )
                    raise PaymentIntentNotFoundError(reference)

                result = await self._apply(intent, outcome)

            span.set_attribute("result", result.status.value)

        metrics.record_reconciliation(self.provider.name, result.status.value)
        logger.info(
            "payment_reconciled",
            reference=reference,
            result=result.status.value,
            state=result.state.value if result.state else None,
            provider=self.provider.name,
        )
        return result

    async def verify_purchase(self, reference: str) -> ReconcileResult:
        """
        Synchronously verify a reference with the provider and reconcile.

        A terminal intent is reported without calling the provider.

        Raises:
            PaymentIntentNotFoundError: Unknown reference
            PaymentProviderError: Provider unreachable, or intent belongs to another provider
        """
        intent = await self.store.get_payment_intent(reference)
        if intent is None:
            raise PaymentIntentNotFoundError(reference)

        if intent.state.is_terminal:
            return ReconcileResult(
                status=ReconcileStatus.ALREADY_PROCESSED, reference=reference, state=intent.state
            )

        if intent.provider != self.provider.name:
            raise PaymentProviderError(
                f"Reference {reference} belongs to provider {intent.provider}"
            )

        outcome = await self.provider.verify(intent.provider_reference or reference)
        return await self.reconcile(reference, outcome)

    async def handle_webhook(self, payload: bytes, signature: str) -> ReconcileResult:
        """
        Authenticate a webhook delivery, then reconcile its outcome.

        Nothing in the payload is trusted before the signature check passes.

        Raises:
            InvalidSignatureError: Signature missing or wrong
            PaymentIntentNotFoundError: Event names a reference we never issued
        """
        try:
            event = await self.provider.verify_webhook(payload, signature)
        except InvalidSignatureError as exc:
            metrics.record_webhook_signature_failure(self.provider.name)
            logger.warning(
                "webhook_signature_invalid",
                provider=self.provider.name,
                error=exc.message,
                security_event=True,
            )
            raise

        outcome = event.outcome
        if outcome is None or not outcome.reference:
            metrics.record_reconciliation(self.provider.name, ReconcileStatus.IGNORED.value)
            logger.info(
                "webhook_event_ignored",
                provider=self.provider.name,
                event_id=event.event_id,
                event_type=event.event_type,
            )
            return ReconcileResult(
                status=ReconcileStatus.IGNORED,
                reference=outcome.reference if outcome is not None else "",
            )

        return await self.reconcile(outcome.reference, outcome)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _apply(self, intent: PaymentIntentData, outcome: PaymentOutcome) -> ReconcileResult:
        """Apply outcome to a locked intent. Caller holds the transaction."""
        reference = intent.reference

        if intent.state.is_terminal:
            return ReconcileResult(
                status=ReconcileStatus.ALREADY_PROCESSED, reference=reference, state=intent.state
            )

        if outcome.status is OutcomeStatus.PENDING:
            return ReconcileResult(
                status=ReconcileStatus.PENDING, reference=reference, state=PaymentState.PENDING
            )

        if outcome.status is OutcomeStatus.FAILED:
            return await self._fail(intent, outcome, outcome.gateway_message or PAYMENT_FAILED)

        if not _amount_matches(intent, outcome):
            logger.error(
                "payment_amount_mismatch",
                reference=reference,
                expected_minor=to_minor_units(intent.amount),
                expected_currency=intent.currency,
                received_minor=outcome.amount_minor,
                received_currency=outcome.currency,
                security_event=True,
            )
            return await self._fail(intent, outcome, AMOUNT_MISMATCH)

        transitioned = await self.store.transition_intent(
            reference,
            PaymentState.SUCCEEDED,
            paid_at=outcome.paid_at or _utc_now(),
            provider_payload=outcome.raw_payload,
        )
        if not transitioned:
            return ReconcileResult(status=ReconcileStatus.ALREADY_PROCESSED, reference=reference)

        added = await self.store.add_paid_principal(
            intent.target_kind, intent.target_id, intent.principal_id, reference
        )
        logger.info(
            "entitlement_granted",
            reference=reference,
            principal_id=intent.principal_id,
            content_kind=intent.target_kind.value,
            content_id=str(intent.target_id),
            newly_added=added,
        )
        return ReconcileResult(
            status=ReconcileStatus.GRANTED, reference=reference, state=PaymentState.SUCCEEDED
        )

    async def _fail(
        self, intent: PaymentIntentData, outcome: PaymentOutcome, reason: str
    ) -> ReconcileResult:
        transitioned = await self.store.transition_intent(
            intent.reference,
            PaymentState.FAILED,
            failure_reason=reason,
            provider_payload=outcome.raw_payload,
        )
        if not transitioned:
            return ReconcileResult(
                status=ReconcileStatus.ALREADY_PROCESSED, reference=intent.reference
            )
        return ReconcileResult(
            status=ReconcileStatus.FAILED, reference=intent.reference, state=PaymentState.FAILED
        )
