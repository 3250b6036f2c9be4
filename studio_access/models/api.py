"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class ContentKind(str, Enum):
    """Kinds of content unit sharing the entitlement shape."""

    GALLERY = "gallery"
    UPLOAD = "upload"


class ContentPath(str, Enum):
    """URL segment naming a content kind."""

    GALLERIES = "galleries"
    UPLOADS = "uploads"

    @property
    def kind(self) -> ContentKind:
        return ContentKind.GALLERY if self is ContentPath.GALLERIES else ContentKind.UPLOAD


class Visibility(str, Enum):
    """Content visibility enumeration."""

    PUBLIC = "public"
    PRIVATE = "private"


class ContentStatus(str, Enum):
    """Content lifecycle enumeration."""

    ACTIVE = "active"
    ARCHIVED = "archived"
    DELETED = "deleted"  # Moved to the recycle bin


class PaymentState(str, Enum):
    """Payment intent state enumeration. Transitions only leave PENDING."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentState.PENDING


class OutcomeStatus(str, Enum):
    """Provider-reported outcome of a payment."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


class ReconcileStatus(str, Enum):
    """Result of reconciling a provider outcome against an intent."""

    GRANTED = "granted"
    FAILED = "failed"
    ALREADY_PROCESSED = "already_processed"
    PENDING = "pending"
    IGNORED = "ignored"


class DecisionKind(str, Enum):
    """Access decision enumeration."""

    GRANTED = "granted"
    REQUIRES_AUTHENTICATION = "requires_authentication"
    REQUIRES_PAYMENT = "requires_payment"
    DENIED = "denied"


class PrincipalRole(str, Enum):
    """Principal role. Only admin routes consult it."""

    CLIENT = "client"
    ADMIN = "admin"


# ============================================================================
# Access Models
# ============================================================================


class AccessDecisionResponse(BaseModel):
    """GET /v1/{kind}/{id}/access response."""

    kind: ContentKind
    content_id: UUID
    decision: DecisionKind
    has_access: bool
    requires_payment: bool = False
    price: Decimal | None = None
    currency: str | None = None
    reason: str | None = None


# ============================================================================
# Download Models
# ============================================================================


class DownloadLinkResponse(BaseModel):
    """One signed link (or per-item failure) in a download response."""

    upload_id: UUID
    file_name: str
    content_type: str
    download_url: str | None = None
    error: str | None = None


class UploadDownloadResponse(BaseModel):
    """GET /v1/uploads/{id}/download response."""

    upload_id: UUID
    file_name: str
    content_type: str
    download_url: str
    expires_at: datetime
    expires_in: int


class GalleryDownloadResponse(BaseModel):
    """GET /v1/galleries/{id}/download response."""

    gallery_id: UUID
    gallery_title: str
    downloads: list[DownloadLinkResponse]
    failed_count: int = 0
    expires_at: datetime
    expires_in: int


# ============================================================================
# Payment Models
# ============================================================================


class InitializePaymentRequest(BaseModel):
    """POST /v1/payments/initialize request body.

    The amount is never taken from the client; it is the content's price.
    """

    item_kind: ContentKind
    item_id: UUID
    customer_email: str = Field(
        ...,
        min_length=3,
        max_length=255,
        description="Email address for the provider receipt",
    )

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Basic shape check; the provider does full validation."""
        if "@" not in v:
            raise ValueError("customer_email must be an email address")
        return v


class InitializePaymentResponse(BaseModel):
    """POST /v1/payments/initialize response."""

    reference: str | None = None
    authorization_url: str | None = None
    amount: Decimal
    currency: str
    state: PaymentState | None = None
    already_entitled: bool = False


class VerifyPaymentResponse(BaseModel):
    """GET /v1/payments/verify response."""

    reference: str
    state: PaymentState
    result: ReconcileStatus
    amount: Decimal
    currency: str
    target_kind: ContentKind
    target_id: UUID


class WebhookAckResponse(BaseModel):
    """Webhook acknowledgement body."""

    status: ReconcileStatus
    reference: str | None = None


# ============================================================================
# Listing / Admin Models
# ============================================================================


class ContentSummary(BaseModel):
    """Content unit summary for listings."""

    kind: ContentKind
    content_id: UUID
    title: str
    visibility: Visibility
    is_paid: bool
    price: Decimal
    status: ContentStatus


class AccessibleContentResponse(BaseModel):
    """GET /v1/me/content response."""

    galleries: list[ContentSummary] = Field(default_factory=list)
    uploads: list[ContentSummary] = Field(default_factory=list)


class AllowListRequest(BaseModel):
    """POST /v1/admin/{kind}/{id}/allow-list request body."""

    principal_id: str = Field(..., min_length=1, max_length=255)


class AllowListResponse(BaseModel):
    """Allow-list change response."""

    kind: ContentKind
    content_id: UUID
    principal_id: str
    added: bool


class LifecycleRequest(BaseModel):
    """Archive/delete request body."""

    reason: str | None = Field(None, max_length=500)


class ContentStatusResponse(BaseModel):
    """Lifecycle transition response."""

    kind: ContentKind
    content_id: UUID
    status: ContentStatus
    recycle_bin_expires_at: datetime | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    version: str
    timestamp: datetime


class RecycleBinPurgeResponse(BaseModel):
    """POST /v1/admin/recycle-bin/purge response."""

    purged: int
