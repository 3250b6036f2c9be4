"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID

from studio_access.models.api import (
    ContentKind,
    ContentStatus,
    DecisionKind,
    OutcomeStatus,
    PaymentState,
    PrincipalRole,
    ReconcileStatus,
    Visibility,
)


@dataclass(frozen=True)
class Principal:
    """Already-verified caller identity supplied by the auth layer."""

    principal_id: str
    role: PrincipalRole = PrincipalRole.CLIENT

    def __post_init__(self) -> None:
        if not self.principal_id:
            raise ValueError("principal_id cannot be empty")

    @property
    def is_admin(self) -> bool:
        return self.role is PrincipalRole.ADMIN


@dataclass(frozen=True)
class Monetization:
    """Pay-per-unit settings. Price is ignored when is_paid is False."""

    is_paid: bool
    price: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        if self.price < 0:
            raise ValueError(f"Price cannot be negative: {self.price}")


@dataclass(frozen=True)
class StoredFile:
    """Location of an upload's bytes in the storage service."""

    storage_key: str
    bucket: str
    file_name: str
    content_type: str
    file_size: int = 0


@dataclass(frozen=True)
class ContentUnit:
    """
    Immutable snapshot of a gallery or upload with its entitlement relations.

    Galleries carry item_ids (contained uploads) and download_enabled;
    uploads carry stored_file.
    """

    content_id: UUID
    kind: ContentKind
    owner_id: str
    visibility: Visibility
    monetization: Monetization
    allow_list: frozenset[str] = frozenset()
    paid_principals: frozenset[str] = frozenset()
    status: ContentStatus = ContentStatus.ACTIVE
    title: str = ""
    stored_file: StoredFile | None = None
    download_enabled: bool = True
    item_ids: tuple[UUID, ...] = ()

    @property
    def is_public(self) -> bool:
        return self.visibility is Visibility.PUBLIC

    @property
    def is_active(self) -> bool:
        return self.status is ContentStatus.ACTIVE

    def contains(self, upload_id: UUID) -> bool:
        """Whether this gallery contains the given upload."""
        return self.kind is ContentKind.GALLERY and upload_id in self.item_ids


# ============================================================================
# Access Decisions
# ============================================================================


@dataclass(frozen=True)
class Granted:
    """No further gate."""

    kind: ClassVar[DecisionKind] = DecisionKind.GRANTED


@dataclass(frozen=True)
class RequiresAuthentication:
    """Unit is not public and no principal was supplied."""

    kind: ClassVar[DecisionKind] = DecisionKind.REQUIRES_AUTHENTICATION


@dataclass(frozen=True)
class RequiresPayment:
    """Unit is monetized and the principal holds no entitlement."""

    price: Decimal
    kind: ClassVar[DecisionKind] = DecisionKind.REQUIRES_PAYMENT


@dataclass(frozen=True)
class Denied:
    """No entitlement path exists."""

    reason: str
    kind: ClassVar[DecisionKind] = DecisionKind.DENIED


Decision = Granted | RequiresAuthentication | RequiresPayment | Denied


# ============================================================================
# Payments
# ============================================================================


@dataclass(frozen=True)
class PaymentIntentData:
    """Immutable payment intent snapshot."""

    reference: str
    principal_id: str
    target_kind: ContentKind
    target_id: UUID
    amount: Decimal
    currency: str
    state: PaymentState
    provider: str
    provider_reference: str | None = None
    authorization_url: str | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class PaymentOutcome:
    """Provider-agnostic outcome from a verify call or a webhook."""

    reference: str
    status: OutcomeStatus
    amount_minor: int | None
    currency: str | None
    raw_payload: str
    paid_at: datetime | None = None
    provider_reference: str | None = None
    gateway_message: str | None = None


@dataclass(frozen=True)
class ReconcileResult:
    """What a reconciliation attempt did."""

    status: ReconcileStatus
    reference: str
    state: PaymentState | None = None


# ============================================================================
# Delivery
# ============================================================================


@dataclass(frozen=True)
class SignedLink:
    """Time-boxed retrieval URL."""

    url: str
    expires_at: datetime


@dataclass(frozen=True)
class DownloadItem:
    """Per-item result of a batch download."""

    upload_id: UUID
    file_name: str
    content_type: str
    url: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.url is not None


@dataclass(frozen=True)
class SingleDownload:
    """Signed link for one upload."""

    unit: ContentUnit
    link: SignedLink


@dataclass(frozen=True)
class BatchDownload:
    """Signed links for every upload in a gallery, sharing one expiry."""

    gallery: ContentUnit
    expires_at: datetime
    items: tuple[DownloadItem, ...] = field(default_factory=tuple)

    @property
    def failed_count(self) -> int:
        return sum(1 for item in self.items if not item.ok)


@dataclass(frozen=True)
class Rejection:
    """Non-granted access decision surfaced verbatim to the caller."""

    decision: Decision


@dataclass(frozen=True)
class PurchaseInitiation:
    """
    Result of starting a purchase.

    intent is None when the principal already has access and nothing was
    charged.
    """

    target_kind: ContentKind
    target_id: UUID
    amount: Decimal
    currency: str
    intent: PaymentIntentData | None = None

    @property
    def already_entitled(self) -> bool:
        return self.intent is None


# ============================================================================
# Lifecycle
# ============================================================================


@dataclass(frozen=True)
class LifecycleChange:
    """Status a unit moved to; deleted units carry their purge deadline."""

    kind: ContentKind
    content_id: UUID
    status: ContentStatus
    recycle_bin_expires_at: datetime | None = None
