"""
API Routes - FastAPI endpoints for access checks, downloads and payments.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

import mimetypes
from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studio_access.api.dependencies import (
    get_delivery_service,
    get_optional_principal,
    get_paystack_provider,
    get_principal,
    get_read_store,
    get_reconciliation_service,
    get_storage_backend,
    get_store,
    get_stripe_provider,
)
from studio_access.config import settings
from studio_access.db.session import get_read_db
from studio_access.exceptions import (
    ContentNotFoundError,
    DataIntegrityError,
    InvalidSignatureError,
    PaymentIntentNotFoundError,
    PaymentProviderError,
    PurchaseNotAllowedError,
    StorageError,
    WriteVerificationError,
)
from studio_access.models.api import (
    AccessDecisionResponse,
    AccessibleContentResponse,
    ContentKind,
    ContentPath,
    ContentSummary,
    DownloadLinkResponse,
    GalleryDownloadResponse,
    HealthResponse,
    InitializePaymentRequest,
    InitializePaymentResponse,
    UploadDownloadResponse,
    VerifyPaymentResponse,
    WebhookAckResponse,
)
from studio_access.models.domain import (
    BatchDownload,
    ContentUnit,
    Decision,
    Denied,
    Principal,
    Rejection,
    RequiresAuthentication,
    RequiresPayment,
    SingleDownload,
)
from studio_access.services.access import NOT_FOUND, is_granted
from studio_access.services.content import ContentService
from studio_access.services.delivery import SignedDeliveryService
from studio_access.services.entitlements import EntitlementStore
from studio_access.services.payment_provider import PaymentProvider
from studio_access.services.paystack_provider import SIGNATURE_HEADER as PAYSTACK_SIGNATURE
from studio_access.services.reconciliation import ReconciliationService
from studio_access.services.storage import LocalStorage, StorageBackend
from studio_access.services.stripe_provider import SIGNATURE_HEADER as STRIPE_SIGNATURE

logger = get_logger(__name__)

router = APIRouter()


def _rejection_error(decision: Decision) -> HTTPException:
    """Map a non-granted decision to its HTTP status."""
    if isinstance(decision, RequiresAuthentication):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(decision, RequiresPayment):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "message": "Payment required",
                "price": str(decision.price),
                "currency": settings.payment_currency,
            },
        )
    if isinstance(decision, Denied) and decision.reason == NOT_FOUND:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content not found")
    reason = decision.reason if isinstance(decision, Denied) else "access denied"
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=reason)


def _summary(unit: ContentUnit) -> ContentSummary:
    return ContentSummary(
        kind=unit.kind,
        content_id=unit.content_id,
        title=unit.title,
        visibility=unit.visibility,
        is_paid=unit.monetization.is_paid,
        price=unit.monetization.price,
        status=unit.status,
    )


def _expires_in(expires_at: datetime) -> int:
    return max(0, int((expires_at - datetime.now(UTC)).total_seconds()))


# ============================================================================
# Access & Delivery
# ============================================================================


@router.get("/v1/{content_path}/{content_id}/access", response_model=AccessDecisionResponse)
async def check_access(
    content_path: ContentPath,
    content_id: UUID,
    gallery_id: UUID | None = Query(None, description="Reach an upload through this gallery"),
    principal: Principal | None = Depends(get_optional_principal),
    delivery: SignedDeliveryService = Depends(get_delivery_service),
) -> AccessDecisionResponse:
    """
    Access decision for the caller.

    Always 200; the decision is in the body. Anonymous callers are allowed.
    """
    kind = content_path.kind
    decision = await delivery.check_access(kind, content_id, principal, gallery_id)

    return AccessDecisionResponse(
        kind=kind,
        content_id=content_id,
        decision=decision.kind,
        has_access=is_granted(decision),
        requires_payment=isinstance(decision, RequiresPayment),
        price=decision.price if isinstance(decision, RequiresPayment) else None,
        currency=settings.payment_currency if isinstance(decision, RequiresPayment) else None,
        reason=decision.reason if isinstance(decision, Denied) else None,
    )


@router.get("/v1/uploads/{upload_id}/download", response_model=UploadDownloadResponse)
async def download_upload(
    upload_id: UUID,
    gallery_id: UUID | None = Query(None, description="Reach the upload through this gallery"),
    principal: Principal | None = Depends(get_optional_principal),
    delivery: SignedDeliveryService = Depends(get_delivery_service),
) -> UploadDownloadResponse:
    """
    Signed download URL for one upload.

    401 authenticate, 402 pay (with price), 403 denied, 404 not found.
    """
    try:
        result = await delivery.issue_download(
            ContentKind.UPLOAD, upload_id, principal, via_gallery_id=gallery_id
        )
    except StorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage temporarily unavailable",
        ) from exc

    if isinstance(result, Rejection):
        raise _rejection_error(result.decision)
    if not isinstance(result, SingleDownload) or result.unit.stored_file is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content not found")

    stored = result.unit.stored_file
    return UploadDownloadResponse(
        upload_id=upload_id,
        file_name=stored.file_name,
        content_type=stored.content_type,
        download_url=result.link.url,
        expires_at=result.link.expires_at,
        expires_in=_expires_in(result.link.expires_at),
    )


@router.get("/v1/galleries/{gallery_id}/download", response_model=GalleryDownloadResponse)
async def download_gallery(
    gallery_id: UUID,
    principal: Principal | None = Depends(get_optional_principal),
    delivery: SignedDeliveryService = Depends(get_delivery_service),
) -> GalleryDownloadResponse:
    """
    Signed download URLs for every active upload in a gallery.

    Items that could not be signed are listed with an error.
    """
    result = await delivery.issue_download(ContentKind.GALLERY, gallery_id, principal)

    if isinstance(result, Rejection):
        raise _rejection_error(result.decision)
    if not isinstance(result, BatchDownload):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content not found")

    return GalleryDownloadResponse(
        gallery_id=gallery_id,
        gallery_title=result.gallery.title,
        downloads=[
            DownloadLinkResponse(
                upload_id=item.upload_id,
                file_name=item.file_name,
                content_type=item.content_type,
                download_url=item.url,
                error=item.error,
            )
            for item in result.items
        ],
        failed_count=result.failed_count,
        expires_at=result.expires_at,
        expires_in=_expires_in(result.expires_at),
    )


@router.get("/v1/files/{bucket}/{key:path}")
async def serve_file(
    bucket: str,
    key: str,
    expires: int = Query(...),
    signature: str = Query(...),
    storage: StorageBackend = Depends(get_storage_backend),
) -> FileResponse:
    """
    Serve a locally stored object behind a signed URL.

    Only available with the local storage backend.
    """
    if not isinstance(storage, LocalStorage):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    if not storage.verify_signature(key, bucket, expires, signature):
        logger.warning("signed_url_rejected", bucket=bucket, key=key)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired download link",
        )

    try:
        path = storage.path_for(key, bucket)
    except StorageError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found") from exc

    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return FileResponse(path, media_type=media_type, filename=path.name)


@router.get("/v1/me/content", response_model=AccessibleContentResponse)
async def list_my_content(
    principal: Principal = Depends(get_principal),
    store: EntitlementStore = Depends(get_read_store),
) -> AccessibleContentResponse:
    """
    Content the caller can open: public-unpaid, owned, allow-listed or purchased.

    Read operation - can use replica.
    """
    galleries, uploads = await ContentService(store).list_accessible(principal)
    return AccessibleContentResponse(
        galleries=[_summary(unit) for unit in galleries],
        uploads=[_summary(unit) for unit in uploads],
    )


# ============================================================================
# Payments
# ============================================================================


@router.post(
    "/v1/payments/initialize",
    response_model=InitializePaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def initialize_payment(
    request: InitializePaymentRequest,
    principal: Principal = Depends(get_principal),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> InitializePaymentResponse:
    """
    Start a purchase. The amount is the content's recorded price.

    Principals who already have access get already_entitled=true and no
    checkout.
    """
    try:
        initiation = await service.initiate_purchase(
            principal, request.item_kind, request.item_id, request.customer_email
        )
    except ContentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Content not found",
        ) from exc
    except PurchaseNotAllowedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=exc.reason,
        ) from exc
    except PaymentProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider unavailable",
        ) from exc
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        ) from exc

    intent = initiation.intent
    return InitializePaymentResponse(
        reference=intent.reference if intent else None,
        authorization_url=intent.authorization_url if intent else None,
        amount=initiation.amount,
        currency=initiation.currency,
        state=intent.state if intent else None,
        already_entitled=initiation.already_entitled,
    )


@router.get("/v1/payments/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    reference: str = Query(..., min_length=1, max_length=100),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> VerifyPaymentResponse:
    """
    Synchronously verify a payment with the provider and grant access on success.

    Safe to call repeatedly; settled references are reported as already processed.
    """
    try:
        result = await service.verify_purchase(reference)
    except PaymentIntentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown payment reference",
        ) from exc
    except PaymentProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider unavailable",
        ) from exc

    intent = await service.store.get_payment_intent(reference)
    if intent is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown payment reference",
        )

    return VerifyPaymentResponse(
        reference=reference,
        state=intent.state,
        result=result.status,
        amount=intent.amount,
        currency=intent.currency,
        target_kind=intent.target_kind,
        target_id=intent.target_id,
    )


async def _handle_webhook(
    request: Request,
    store: EntitlementStore,
    provider: PaymentProvider,
    signature_header: str,
) -> WebhookAckResponse:
    payload = await request.body()
    signature = request.headers.get(signature_header, "")
    service = ReconciliationService(store, provider)

    try:
        result = await service.handle_webhook(payload, signature)
    except InvalidSignatureError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        ) from exc
    except PaymentIntentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Unknown payment reference",
        ) from exc

    return WebhookAckResponse(status=result.status, reference=result.reference or None)


@router.post("/v1/payments/webhooks/paystack", response_model=WebhookAckResponse)
async def paystack_webhook(
    request: Request,
    store: EntitlementStore = Depends(get_store),
    provider: PaymentProvider = Depends(get_paystack_provider),
) -> WebhookAckResponse:
    """
    Handle Paystack webhook events (charge.success, charge.failed).

    Signature: HMAC-SHA512 of the raw body in x-paystack-signature.
    """
    return await _handle_webhook(request, store, provider, PAYSTACK_SIGNATURE)


@router.post("/v1/payments/webhooks/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    store: EntitlementStore = Depends(get_store),
    provider: PaymentProvider = Depends(get_stripe_provider),
) -> WebhookAckResponse:
    """Handle Stripe Checkout webhook events."""
    return await _handle_webhook(request, store, provider, STRIPE_SIGNATURE)


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            version=settings.api_version,
            timestamp=datetime.now(UTC),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
