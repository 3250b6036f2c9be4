"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.

Allow-lists and paid-principal sets are join tables with a uniqueness
constraint on (content_kind, content_id, principal_id), so set semantics come
from the storage layer rather than application code.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from studio_access.models.api import ContentKind, ContentStatus, PaymentState, Visibility


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _enum_type(enum_cls: type[Enum], name: str) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=20,
        values_callable=lambda x: [e.value for e in x],
    )


class Gallery(Base):
    """
    ORM model for galleries table.

    A gallery groups uploads and can be purchased as a whole.
    """

    __tablename__ = "galleries"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Creator - always has access
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Access settings
    visibility: Mapped[Visibility] = mapped_column(
        _enum_type(Visibility, "visibility"), nullable=False, default=Visibility.PRIVATE
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    download_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Lifecycle
    status: Mapped[ContentStatus] = mapped_column(
        _enum_type(ContentStatus, "content_status"), nullable=False, default=ContentStatus.ACTIVE
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_gallery_price_non_negative"),
        Index("idx_galleries_owner_id", "owner_id"),
        Index("idx_galleries_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Gallery(id={self.id}, owner_id={self.owner_id}, is_paid={self.is_paid})>"


class Upload(Base):
    """
    ORM model for uploads table.

    A single media file, individually priceable.
    """

    __tablename__ = "uploads"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Uploader - always has access
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # File information
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Storage location (never exposed directly)
    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    bucket: Mapped[str] = mapped_column(String(255), nullable=False)

    # Access settings
    visibility: Mapped[Visibility] = mapped_column(
        _enum_type(Visibility, "visibility"), nullable=False, default=Visibility.PRIVATE
    )
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    # Lifecycle
    status: Mapped[ContentStatus] = mapped_column(
        _enum_type(ContentStatus, "content_status"), nullable=False, default=ContentStatus.ACTIVE
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_upload_price_non_negative"),
        CheckConstraint("file_size >= 0", name="ck_upload_file_size_non_negative"),
        Index("idx_uploads_owner_id", "owner_id"),
        Index("idx_uploads_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Upload(id={self.id}, owner_id={self.owner_id}, is_paid={self.is_paid})>"


class GalleryItem(Base):
    """Membership of an upload in a gallery."""

    __tablename__ = "gallery_items"

    gallery_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("galleries.id", ondelete="CASCADE"),
        primary_key=True,
    )
    upload_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("uploads.id", ondelete="CASCADE"),
        primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_gallery_items_upload_id", "upload_id"),)


class ContentAllowance(Base):
    """
    Allow-list entry: standing access regardless of payment.
    """

    __tablename__ = "content_allowances"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    content_kind: Mapped[ContentKind] = mapped_column(
        _enum_type(ContentKind, "content_kind"), nullable=False
    )
    content_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    principal_id: Mapped[str] = mapped_column(String(255), nullable=False)
    granted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint(
            "content_kind", "content_id", "principal_id", name="uq_content_allowance"
        ),
        Index("idx_content_allowances_principal", "principal_id"),
    )


class ContentPurchase(Base):
    """
    Paid-principal entry: append-only record of a completed purchase.
    """

    __tablename__ = "content_purchases"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    content_kind: Mapped[ContentKind] = mapped_column(
        _enum_type(ContentKind, "content_kind"), nullable=False
    )
    content_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    principal_id: Mapped[str] = mapped_column(String(255), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("content_kind", "content_id", "principal_id", name="uq_content_purchase"),
        Index("idx_content_purchases_principal", "principal_id"),
    )


class PaymentIntent(Base):
    """
    ORM model for payment_intents table.

    One purchase attempt. The reference is the system-wide idempotency key.
    """

    __tablename__ = "payment_intents"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)

    # Who pays for what
    principal_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_kind: Mapped[ContentKind] = mapped_column(
        _enum_type(ContentKind, "content_kind"), nullable=False
    )
    target_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)

    # Amount recorded at initiation (webhook amounts are never trusted over it)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    state: Mapped[PaymentState] = mapped_column(
        _enum_type(PaymentState, "payment_state"), nullable=False, default=PaymentState.PENDING
    )

    # Provider details
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    authorization_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Outcome
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_payload: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_intent_amount_non_negative"),
        UniqueConstraint("reference", name="uq_payment_intent_reference"),
        Index("idx_payment_intents_principal", "principal_id"),
        Index("idx_payment_intents_target", "target_kind", "target_id"),
        Index("idx_payment_intents_state", "state"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PaymentIntent(reference={self.reference}, principal_id={self.principal_id}, "
            f"state={self.state})>"
        )


class RecycleBinEntry(Base):
    """Deleted content kept for recovery until expires_at."""

    __tablename__ = "recycle_bin_entries"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    content_kind: Mapped[ContentKind] = mapped_column(
        _enum_type(ContentKind, "content_kind"), nullable=False
    )
    content_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)
    deleted_by: Mapped[str] = mapped_column(String(255), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    deleted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("content_kind", "content_id", name="uq_recycle_bin_content"),
        Index("idx_recycle_bin_expires_at", "expires_at"),
    )
