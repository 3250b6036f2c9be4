"""Initial schema: galleries, uploads, entitlement sets, payment intents, recycle bin.

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def upgrade() -> None:
    """Create all tables."""
    # Galleries - purchasable as a whole
    op.create_table(
        "galleries",
        _uuid_pk(),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("visibility", sa.String(20), nullable=False, server_default="private"),
        sa.Column("is_paid", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("download_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="ck_gallery_price_non_negative"),
    )
    op.create_index("idx_galleries_owner_id", "galleries", ["owner_id"])
    op.create_index("idx_galleries_status", "galleries", ["status"])

    # Uploads - single media files
    op.create_table(
        "uploads",
        _uuid_pk(),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(100), nullable=False),
        sa.Column("file_size", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("storage_key", sa.String(512), nullable=False),
        sa.Column("bucket", sa.String(255), nullable=False),
        sa.Column("visibility", sa.String(20), nullable=False, server_default="private"),
        sa.Column("is_paid", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="ck_upload_price_non_negative"),
        sa.CheckConstraint("file_size >= 0", name="ck_upload_file_size_non_negative"),
    )
    op.create_index("idx_uploads_owner_id", "uploads", ["owner_id"])
    op.create_index("idx_uploads_status", "uploads", ["status"])

    op.create_table(
        "gallery_items",
        sa.Column(
            "gallery_id",
            UUID(as_uuid=True),
            sa.ForeignKey("galleries.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "upload_id",
            UUID(as_uuid=True),
            sa.ForeignKey("uploads.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("idx_gallery_items_upload_id", "gallery_items", ["upload_id"])

    # Entitlement sets - uniqueness gives set semantics
    op.create_table(
        "content_allowances",
        _uuid_pk(),
        sa.Column("content_kind", sa.String(20), nullable=False),
        sa.Column("content_id", UUID(as_uuid=True), nullable=False),
        sa.Column("principal_id", sa.String(255), nullable=False),
        sa.Column("granted_by", sa.String(255), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "content_kind", "content_id", "principal_id", name="uq_content_allowance"
        ),
    )
    op.create_index("idx_content_allowances_principal", "content_allowances", ["principal_id"])

    op.create_table(
        "content_purchases",
        _uuid_pk(),
        sa.Column("content_kind", sa.String(20), nullable=False),
        sa.Column("content_id", UUID(as_uuid=True), nullable=False),
        sa.Column("principal_id", sa.String(255), nullable=False),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "content_kind", "content_id", "principal_id", name="uq_content_purchase"
        ),
    )
    op.create_index("idx_content_purchases_principal", "content_purchases", ["principal_id"])

    # Payment intents - reference is the idempotency key
    op.create_table(
        "payment_intents",
        _uuid_pk(),
        sa.Column("reference", sa.String(255), nullable=False),
        sa.Column("principal_id", sa.String(255), nullable=False),
        sa.Column("target_kind", sa.String(20), nullable=False),
        sa.Column("target_id", UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_reference", sa.String(255), nullable=True),
        sa.Column("authorization_url", sa.Text, nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column("provider_payload", sa.Text, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_payment_intent_amount_non_negative"),
        sa.UniqueConstraint("reference", name="uq_payment_intent_reference"),
    )
    op.create_index("idx_payment_intents_principal", "payment_intents", ["principal_id"])
    op.create_index("idx_payment_intents_target", "payment_intents", ["target_kind", "target_id"])
    op.create_index("idx_payment_intents_state", "payment_intents", ["state"])

    op.create_table(
        "recycle_bin_entries",
        _uuid_pk(),
        sa.Column("content_kind", sa.String(20), nullable=False),
        sa.Column("content_id", UUID(as_uuid=True), nullable=False),
        sa.Column("deleted_by", sa.String(255), nullable=False),
        sa.Column("reason", sa.String(500), nullable=True),
        sa.Column(
            "deleted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("content_kind", "content_id", name="uq_recycle_bin_content"),
    )
    op.create_index("idx_recycle_bin_expires_at", "recycle_bin_entries", ["expires_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("recycle_bin_entries")
    op.drop_table("payment_intents")
    op.drop_table("content_purchases")
    op.drop_table("content_allowances")
    op.drop_table("gallery_items")
    op.drop_table("uploads")
    op.drop_table("galleries")
