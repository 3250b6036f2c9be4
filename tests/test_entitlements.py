"""
Tests for EntitlementStore.

Exercises the SQLAlchemy store against a mocked AsyncSession: row to domain
conversion, set-append results, guarded transitions and transaction scope.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from studio_access.db.models import Gallery, PaymentIntent, Upload
from studio_access.exceptions import DatabaseError, DataIntegrityError, WriteVerificationError
from studio_access.models.api import ContentKind, ContentStatus, PaymentState, Visibility
from studio_access.services.entitlements import EntitlementStore


def create_mock_upload(
    upload_id: UUID | None = None,
    title: str | None = None,
    is_paid: bool = True,
    price: Decimal = Decimal("1000.00"),
) -> MagicMock:
    """Factory function to create mock Upload rows."""
    upload = MagicMock(spec=Upload)
    upload.id = upload_id or uuid4()
    upload.owner_id = "owner-studio"
    upload.title = title
    upload.file_name = "portrait.jpg"
    upload.content_type = "image/jpeg"
    upload.file_size = 2048
    upload.storage_key = "abc123"
    upload.bucket = "media"
    upload.visibility = Visibility.PRIVATE
    upload.is_paid = is_paid
    upload.price = price
    upload.status = ContentStatus.ACTIVE
    upload.created_at = datetime.now(UTC)
    return upload


def create_mock_gallery(gallery_id: UUID | None = None) -> MagicMock:
    """Factory function to create mock Gallery rows."""
    gallery = MagicMock(spec=Gallery)
    gallery.id = gallery_id or uuid4()
    gallery.owner_id = "owner-studio"
    gallery.title = "Wedding"
    gallery.visibility = Visibility.PUBLIC
    gallery.is_paid = True
    gallery.price = Decimal("5000.00")
    gallery.download_enabled = False
    gallery.status = ContentStatus.ARCHIVED
    gallery.created_at = datetime.now(UTC)
    return gallery


def create_mock_intent(
    reference: str = "PAY-REF-1", state: PaymentState = PaymentState.PENDING
) -> MagicMock:
    """Factory function to create mock PaymentIntent rows."""
    intent = MagicMock(spec=PaymentIntent)
    intent.id = uuid4()
    intent.reference = reference
    intent.principal_id = "U42"
    intent.target_kind = ContentKind.GALLERY
    intent.target_id = uuid4()
    intent.amount = Decimal("5000.00")
    intent.currency = "NGN"
    intent.state = state
    intent.provider = "paystack"
    intent.provider_reference = None
    intent.authorization_url = None
    intent.paid_at = None
    intent.failure_reason = None
    intent.created_at = datetime.now(UTC)
    return intent


def _scalars_result(values: list) -> MagicMock:
    result = MagicMock()
    result.scalars = MagicMock(return_value=MagicMock(all=MagicMock(return_value=values)))
    return result


def _rowcount_result(rowcount: int) -> MagicMock:
    result = MagicMock()
    result.rowcount = rowcount
    return result


class TestTransaction:
    """Tests for transaction()."""

    async def test_commits_on_success(self, db_session: AsyncMock):
        """A clean block commits."""
        store = EntitlementStore(db_session)

        async with store.transaction():
            pass

        db_session.commit.assert_awaited_once()
        db_session.rollback.assert_not_awaited()

    async def test_rolls_back_and_reraises(self, db_session: AsyncMock):
        """A failing block rolls back and the error propagates."""
        store = EntitlementStore(db_session)

        with pytest.raises(RuntimeError):
            async with store.transaction():
                raise RuntimeError("crash between transition and grant")

        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()


class TestGetContent:
    """Tests for get_content()."""

    async def test_missing_returns_none(self, db_session: AsyncMock):
        """Unknown ids give None."""
        store = EntitlementStore(db_session)

        assert await store.get_content(ContentKind.UPLOAD, uuid4()) is None

    async def test_upload_row_converted(self, db_session: AsyncMock):
        """Upload rows carry their entitlement sets and stored file."""
        row = create_mock_upload()
        db_session.get = AsyncMock(return_value=row)
        db_session.execute = AsyncMock(
            side_effect=[_scalars_result(["U1", "U2"]), _scalars_result(["U42"])]
        )
        store = EntitlementStore(db_session)

        unit = await store.get_content(ContentKind.UPLOAD, row.id)

        assert unit is not None
        assert unit.kind is ContentKind.UPLOAD
        assert unit.allow_list == frozenset({"U1", "U2"})
        assert unit.paid_principals == frozenset({"U42"})
        assert unit.monetization.price == Decimal("1000.00")
        assert unit.title == "portrait.jpg"
        assert unit.stored_file is not None
        assert unit.stored_file.storage_key == "abc123"
        assert unit.item_ids == ()

    async def test_gallery_row_converted(self, db_session: AsyncMock):
        """Gallery rows carry contained upload ids and download flag."""
        row = create_mock_gallery()
        item_ids = [uuid4(), uuid4()]
        db_session.get = AsyncMock(return_value=row)
        db_session.execute = AsyncMock(
            side_effect=[_scalars_result([]), _scalars_result([]), _scalars_result(item_ids)]
        )
        store = EntitlementStore(db_session)

        unit = await store.get_content(ContentKind.GALLERY, row.id)

        assert unit is not None
        assert unit.item_ids == tuple(item_ids)
        assert not unit.download_enabled
        assert unit.stored_file is None
        assert unit.status is ContentStatus.ARCHIVED
        assert unit.visibility is Visibility.PUBLIC


class TestSetAppend:
    """Set semantics of allow-lists and paid principals."""

    async def test_add_paid_principal_new(self, db_session: AsyncMock):
        """An inserted row reports a new member."""
        db_session.execute = AsyncMock(return_value=_rowcount_result(1))
        store = EntitlementStore(db_session)

        added = await store.add_paid_principal(ContentKind.GALLERY, uuid4(), "U42", "PAY-REF-1")

        assert added
        db_session.flush.assert_awaited()

    async def test_add_paid_principal_existing(self, db_session: AsyncMock):
        """ON CONFLICT DO NOTHING reports an existing member."""
        db_session.execute = AsyncMock(return_value=_rowcount_result(0))
        store = EntitlementStore(db_session)

        assert not await store.add_paid_principal(ContentKind.GALLERY, uuid4(), "U42")

    async def test_add_to_allow_list_existing(self, db_session: AsyncMock):
        """Allow-listing twice is a no-op."""
        db_session.execute = AsyncMock(return_value=_rowcount_result(0))
        store = EntitlementStore(db_session)

        assert not await store.add_to_allow_list(ContentKind.UPLOAD, uuid4(), "U42", "owner")


class TestPaymentIntents:
    """Intent creation, reads and guarded transitions."""

    async def test_create_payment_intent(self, db_session: AsyncMock):
        """A created intent is read back as pending."""
        row = create_mock_intent()
        db_session.get = AsyncMock(return_value=row)
        store = EntitlementStore(db_session)

        intent = await store.create_payment_intent(
            "PAY-REF-1", "U42", ContentKind.GALLERY, row.target_id, Decimal("5000"), "NGN",
            "paystack",
        )

        assert intent.reference == "PAY-REF-1"
        assert intent.state is PaymentState.PENDING
        db_session.add.assert_called_once()

    async def test_duplicate_reference(self, db_session: AsyncMock):
        """The unique reference constraint surfaces as DataIntegrityError."""
        db_session.flush = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("dup")))
        store = EntitlementStore(db_session)

        with pytest.raises(DataIntegrityError):
            await store.create_payment_intent(
                "PAY-REF-1", "U42", ContentKind.GALLERY, uuid4(), Decimal("5000"), "NGN",
                "paystack",
            )

    async def test_write_verification(self, db_session: AsyncMock):
        """A row that can't be read back is a write verification failure."""
        db_session.get = AsyncMock(return_value=None)
        store = EntitlementStore(db_session)

        with pytest.raises(WriteVerificationError):
            await store.create_payment_intent(
                "PAY-REF-1", "U42", ContentKind.GALLERY, uuid4(), Decimal("5000"), "NGN",
                "paystack",
            )

    async def test_lock_payment_intent(self, db_session: AsyncMock):
        """The locked read converts the row."""
        row = create_mock_intent(state=PaymentState.SUCCEEDED)
        result = MagicMock()
        result.scalar_one_or_none = MagicMock(return_value=row)
        db_session.execute = AsyncMock(return_value=result)
        store = EntitlementStore(db_session)

        intent = await store.lock_payment_intent("PAY-REF-1")

        assert intent is not None
        assert intent.state is PaymentState.SUCCEEDED
        statement = db_session.execute.call_args.args[0]
        assert statement._for_update_arg is not None

    async def test_get_payment_intent_missing(self, db_session: AsyncMock):
        """Unknown references read as None."""
        store = EntitlementStore(db_session)

        assert await store.get_payment_intent("NOPE") is None

    async def test_transition_from_pending(self, db_session: AsyncMock):
        """One updated row means the transition happened."""
        db_session.execute = AsyncMock(return_value=_rowcount_result(1))
        store = EntitlementStore(db_session)

        assert await store.transition_intent(
            "PAY-REF-1", PaymentState.SUCCEEDED, paid_at=datetime.now(UTC)
        )

    async def test_transition_of_terminal_intent(self, db_session: AsyncMock):
        """No updated row means the intent had already left PENDING."""
        db_session.execute = AsyncMock(return_value=_rowcount_result(0))
        store = EntitlementStore(db_session)

        assert not await store.transition_intent(
            "PAY-REF-1", PaymentState.FAILED, failure_reason="x" * 400
        )


class TestRecycleBin:
    """Recycle-bin reads."""

    async def test_expired_entries(self, db_session: AsyncMock):
        """Entries are returned as (kind, id) pairs."""
        entry = MagicMock()
        entry.content_kind = ContentKind.UPLOAD
        entry.content_id = uuid4()
        db_session.execute = AsyncMock(return_value=_scalars_result([entry]))
        store = EntitlementStore(db_session)

        expired = await store.get_expired_recycle_bin_entries(datetime.now(UTC))

        assert expired == [(ContentKind.UPLOAD, entry.content_id)]


class TestTransactionDriverErrors:
    """Driver failures inside a transaction."""

    async def test_driver_error_becomes_database_error(self, db_session: AsyncMock):
        """Lost connections surface as DatabaseError after a rollback."""
        db_session.commit = AsyncMock(
            side_effect=OperationalError("COMMIT", {}, Exception("connection reset"))
        )
        store = EntitlementStore(db_session)

        with pytest.raises(DatabaseError, match="connection reset"):
            async with store.transaction():
                pass

        db_session.rollback.assert_awaited_once()
