"""
Entitlement Store - persistence for content units, their entitlement sets,
and payment intents.

No business rules live here. The store provides:
- read-by-id snapshots (ContentUnit, PaymentIntentData)
- set-append for allow-lists and paid principals (INSERT ... ON CONFLICT DO
  NOTHING against a unique constraint, so adding twice is a no-op)
- guarded state transitions (intent leaves PENDING at most once)
- a transaction scope so an intent transition and its grant commit together

Mutating methods only flush; callers commit through transaction().
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from studio_access.db.models import (
    ContentAllowance,
    ContentPurchase,
    Gallery,
    GalleryItem,
    PaymentIntent,
    RecycleBinEntry,
    Upload,
)
from studio_access.exceptions import DatabaseError, DataIntegrityError, WriteVerificationError
from studio_access.models.api import ContentKind, ContentStatus, PaymentState, Visibility
from studio_access.models.domain import (
    ContentUnit,
    Monetization,
    PaymentIntentData,
    StoredFile,
)

logger = get_logger(__name__)

ContentRow = Gallery | Upload


def _model_for(kind: ContentKind) -> type[Gallery] | type[Upload]:
    return Gallery if kind is ContentKind.GALLERY else Upload


class EntitlementStore:
    """SQLAlchemy-backed entitlement store."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session."""
        self.session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Commit on success, roll back on any error.

        Raises:
            DatabaseError: Driver-level failure (connection lost, lock timeout)
        """
        try:
            yield
            await self.session.commit()
        except DBAPIError as exc:
            await self.session.rollback()
            logger.error("entitlement_transaction_failed", error=str(exc.orig))
            raise DatabaseError(str(exc.orig)) from exc
        except BaseException:
            await self.session.rollback()
            raise

    # ========================================================================
    # Content Units
    # ========================================================================

    async def get_content(self, kind: ContentKind, content_id: UUID) -> ContentUnit | None:
        """Load a content unit with its allow-list and paid principals."""
        row = await self.session.get(_model_for(kind), content_id)
        if row is None:
            return None
        return await self._to_unit(kind, row)

    async def get_gallery_items(self, gallery_id: UUID) -> list[ContentUnit]:
        """Uploads contained in a gallery, in gallery order."""
        stmt = (
            select(Upload)
            .join(GalleryItem, GalleryItem.upload_id == Upload.id)
            .where(GalleryItem.gallery_id == gallery_id)
            .order_by(GalleryItem.position, Upload.created_at)
        )
        result = await self.session.execute(stmt)
        return [
            self._build_unit(ContentKind.UPLOAD, row, frozenset(), frozenset(), ())
            for row in result.scalars().all()
        ]

    async def set_status(
        self, kind: ContentKind, content_id: UUID, status: ContentStatus
    ) -> bool:
        """Set lifecycle status. Returns False when the unit doesn't exist."""
        model = _model_for(kind)
        stmt = update(model).where(model.id == content_id).values(status=status)
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)

    async def delete_content(self, kind: ContentKind, content_id: UUID) -> None:
        """Permanently remove a unit and its entitlement rows."""
        model = _model_for(kind)
        await self.session.execute(
            delete(ContentAllowance).where(
                ContentAllowance.content_kind == kind,
                ContentAllowance.content_id == content_id,
            )
        )
        await self.session.execute(
            delete(ContentPurchase).where(
                ContentPurchase.content_kind == kind,
                ContentPurchase.content_id == content_id,
            )
        )
        await self.session.execute(delete(model).where(model.id == content_id))
        await self.session.flush()

    async def list_accessible(
        self, kind: ContentKind, principal_id: str
    ) -> list[ContentUnit]:
        """
        Active units the principal can access: public-unpaid, owned,
        allow-listed, or purchased.
        """
        model = _model_for(kind)
        allowed = select(ContentAllowance.content_id).where(
            ContentAllowance.content_kind == kind,
            ContentAllowance.principal_id == principal_id,
        )
        purchased = select(ContentPurchase.content_id).where(
            ContentPurchase.content_kind == kind,
            ContentPurchase.principal_id == principal_id,
        )
        stmt = (
            select(model)
            .where(
                model.status == ContentStatus.ACTIVE,
                or_(
                    (model.visibility == Visibility.PUBLIC) & (model.is_paid.is_(False)),
                    model.owner_id == principal_id,
                    model.id.in_(allowed),
                    model.id.in_(purchased),
                ),
            )
            .order_by(model.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return [
            self._build_unit(kind, row, frozenset(), frozenset(), ())
            for row in result.scalars().all()
        ]

    # ========================================================================
    # Entitlement Sets
    # ========================================================================

    async def add_to_allow_list(
        self,
        kind: ContentKind,
        content_id: UUID,
        principal_id: str,
        granted_by: str | None = None,
    ) -> bool:
        """Add principal to the allow-list. Returns False if already present."""
        stmt = (
            pg_insert(ContentAllowance)
            .values(
                content_kind=kind,
                content_id=content_id,
                principal_id=principal_id,
                granted_by=granted_by,
            )
            .on_conflict_do_nothing(constraint="uq_content_allowance")
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)

    async def add_paid_principal(
        self,
        kind: ContentKind,
        content_id: UUID,
        principal_id: str,
        payment_reference: str | None = None,
    ) -> bool:
        """Add principal to paid principals. Returns False if already present."""
        stmt = (
            pg_insert(ContentPurchase)
            .values(
                content_kind=kind,
                content_id=content_id,
                principal_id=principal_id,
                payment_reference=payment_reference,
            )
            .on_conflict_do_nothing(constraint="uq_content_purchase")
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)

    # ========================================================================
    # Payment Intents
    # ========================================================================

    async def create_payment_intent(
        self,
        reference: str,
        principal_id: str,
        target_kind: ContentKind,
        target_id: UUID,
        amount: Decimal,
        currency: str,
        provider: str,
    ) -> PaymentIntentData:
        """
        Persist a pending intent.

        Raises:
            DataIntegrityError: reference already used
            WriteVerificationError: row missing after insert
        """
        intent = PaymentIntent(
            reference=reference,
            principal_id=principal_id,
            target_kind=target_kind,
            target_id=target_id,
            amount=amount,
            currency=currency,
            provider=provider,
            state=PaymentState.PENDING,
        )
        self.session.add(intent)

        try:
            await self.session.flush()
        except IntegrityError as exc:
            logger.error("payment_intent_duplicate_reference", reference=reference)
            raise DataIntegrityError(f"Payment reference already exists: {reference}") from exc

        verified = await self.session.get(PaymentIntent, intent.id)
        if verified is None:
            raise WriteVerificationError(f"Payment intent {reference} not found after insert")

        return self._intent_to_domain(verified)

    async def attach_checkout(
        self, reference: str, provider_reference: str, authorization_url: str
    ) -> None:
        """Record the provider checkout details on an intent."""
        stmt = (
            update(PaymentIntent)
            .where(PaymentIntent.reference == reference)
            .values(provider_reference=provider_reference, authorization_url=authorization_url)
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def get_payment_intent(self, reference: str) -> PaymentIntentData | None:
        """Read an intent by reference."""
        stmt = select(PaymentIntent).where(PaymentIntent.reference == reference)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return self._intent_to_domain(row) if row is not None else None

    async def lock_payment_intent(self, reference: str) -> PaymentIntentData | None:
        """
        Read an intent with a row lock (SELECT FOR UPDATE).

        Concurrent reconciliations of the same reference queue behind this
        lock until the holder commits or rolls back.
        """
        stmt = (
            select(PaymentIntent)
            .where(PaymentIntent.reference == reference)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return self._intent_to_domain(row) if row is not None else None

    async def transition_intent(
        self,
        reference: str,
        state: PaymentState,
        paid_at: datetime | None = None,
        failure_reason: str | None = None,
        provider_payload: str | None = None,
    ) -> bool:
        """
        Move a PENDING intent to a terminal state.

        Returns False when the intent was no longer pending.
        """
        values: dict[str, object] = {"state": state, "provider_payload": provider_payload}
        if paid_at is not None:
            values["paid_at"] = paid_at
        if failure_reason is not None:
            values["failure_reason"] = failure_reason[:255]

        stmt = (
            update(PaymentIntent)
            .where(
                PaymentIntent.reference == reference,
                PaymentIntent.state == PaymentState.PENDING,
            )
            .values(**values)
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)

    # ========================================================================
    # Recycle Bin
    # ========================================================================

    async def add_recycle_bin_entry(
        self,
        kind: ContentKind,
        content_id: UUID,
        deleted_by: str,
        reason: str | None,
        expires_at: datetime,
    ) -> None:
        stmt = (
            pg_insert(RecycleBinEntry)
            .values(
                content_kind=kind,
                content_id=content_id,
                deleted_by=deleted_by,
                reason=reason,
                expires_at=expires_at,
            )
            .on_conflict_do_update(
                constraint="uq_recycle_bin_content",
                set_={"deleted_by": deleted_by, "reason": reason, "expires_at": expires_at},
            )
        )
        await self.session.execute(stmt)
        await self.session.flush()

    async def remove_recycle_bin_entry(self, kind: ContentKind, content_id: UUID) -> bool:
        stmt = delete(RecycleBinEntry).where(
            RecycleBinEntry.content_kind == kind,
            RecycleBinEntry.content_id == content_id,
        )
        result = await self.session.execute(stmt)
        await self.session.flush()
        return bool(result.rowcount)

    async def get_expired_recycle_bin_entries(
        self, now: datetime
    ) -> list[tuple[ContentKind, UUID]]:
        stmt = select(RecycleBinEntry).where(RecycleBinEntry.expires_at <= now)
        result = await self.session.execute(stmt)
        return [(entry.content_kind, entry.content_id) for entry in result.scalars().all()]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _principal_set(
        self,
        model: type[ContentAllowance] | type[ContentPurchase],
        kind: ContentKind,
        content_id: UUID,
    ) -> frozenset[str]:
        stmt = select(model.principal_id).where(
            model.content_kind == kind,
            model.content_id == content_id,
        )
        result = await self.session.execute(stmt)
        return frozenset(result.scalars().all())

    async def _item_ids(self, gallery_id: UUID) -> tuple[UUID, ...]:
        stmt = (
            select(GalleryItem.upload_id)
            .where(GalleryItem.gallery_id == gallery_id)
            .order_by(GalleryItem.position)
        )
        result = await self.session.execute(stmt)
        return tuple(result.scalars().all())

    async def _to_unit(self, kind: ContentKind, row: ContentRow) -> ContentUnit:
        allow_list = await self._principal_set(ContentAllowance, kind, row.id)
        paid_principals = await self._principal_set(ContentPurchase, kind, row.id)
        item_ids = await self._item_ids(row.id) if kind is ContentKind.GALLERY else ()
        return self._build_unit(kind, row, allow_list, paid_principals, item_ids)

    def _build_unit(
        self,
        kind: ContentKind,
        row: ContentRow,
        allow_list: frozenset[str],
        paid_principals: frozenset[str],
        item_ids: tuple[UUID, ...],
    ) -> ContentUnit:
        """Convert ORM row to domain model."""
        if isinstance(row, Upload):
            stored_file: StoredFile | None = StoredFile(
                storage_key=row.storage_key,
                bucket=row.bucket,
                file_name=row.file_name,
                content_type=row.content_type,
                file_size=row.file_size,
            )
            title = row.title or row.file_name
            download_enabled = True
        else:
            stored_file = None
            title = row.title
            download_enabled = row.download_enabled

        return ContentUnit(
            content_id=row.id,
            kind=kind,
            owner_id=row.owner_id,
            visibility=Visibility(row.visibility),
            monetization=Monetization(is_paid=row.is_paid, price=Decimal(row.price)),
            allow_list=allow_list,
            paid_principals=paid_principals,
            status=ContentStatus(row.status),
            title=title,
            stored_file=stored_file,
            download_enabled=download_enabled,
            item_ids=item_ids,
        )

    def _intent_to_domain(self, row: PaymentIntent) -> PaymentIntentData:
        """Convert ORM intent to domain model."""
        return PaymentIntentData(
            reference=row.reference,
            principal_id=row.principal_id,
            target_kind=ContentKind(row.target_kind),
            target_id=row.target_id,
            amount=Decimal(row.amount),
            currency=row.currency,
            state=PaymentState(row.state),
            provider=row.provider,
            provider_reference=row.provider_reference,
            authorization_url=row.authorization_url,
            paid_at=row.paid_at,
            failure_reason=row.failure_reason,
            created_at=row.created_at,
        )
